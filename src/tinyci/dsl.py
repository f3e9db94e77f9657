# src/tinyci/dsl.py
from __future__ import annotations

from dataclasses import replace
from typing import Dict, List, Optional, Sequence

from .model import EventKind, Job, Pipeline, Step, Trigger


# ---------------------------------------------------------------------
# Step helpers
# ---------------------------------------------------------------------

def sh(name: str, run: str, *, cwd: str | None = None, timeout: float | None = None) -> Step:
    """Create a shell step (run through /bin/sh -c)."""
    return Step(name=name, run=run, cwd=cwd, shell=True, timeout=timeout)


def cmd(name: str, run: str, *, cwd: str | None = None, timeout: float | None = None) -> Step:
    """Create a step that executes a program directly, without a shell."""
    return Step(name=name, run=run, cwd=cwd, shell=False, timeout=timeout)


# ---------------------------------------------------------------------
# Job helper
# ---------------------------------------------------------------------

def job(
    name: str,
    *steps: Step,  # allow: job("x", sh(...), sh(...))
    steps_list: Optional[List[Step]] = None,  # allow: job("x", steps_list=[...])
    env: Optional[Dict[str, str]] = None,
    cwd: str | None = None,  # default cwd applied to steps missing cwd
) -> Job:
    steps_final: List[Step] = []
    if steps_list:
        steps_final.extend(list(steps_list))
    steps_final.extend(list(steps))

    if cwd is not None:
        steps_final = [s if s.cwd is not None else replace(s, cwd=cwd) for s in steps_final]

    # force values to str for env compatibility
    return Job(
        name=name,
        steps=tuple(steps_final),
        env={k: str(v) for k, v in (env or {}).items()},
    )


# ---------------------------------------------------------------------
# Trigger + pipeline
# ---------------------------------------------------------------------

def on(*kinds: str | EventKind, branches: Sequence[str] = ("master",)) -> Trigger:
    """
    Trigger helper.

    Example:
        on("push", "pull_request", branches=["master"])
    """
    if not kinds:
        kinds = tuple(EventKind)
    return Trigger(kinds=tuple(kinds), branches=tuple(branches))


def pipeline(
    name: str,
    *jobs: Job,
    trigger: Trigger | None = None,
    env: Optional[Dict[str, str]] = None,
) -> Pipeline:
    """
    Workflow definition helper.

    Users can write:
        from tinyci import pipeline, job, sh, on

        def workflow():
            return pipeline(
                "CI",
                job(...),
                job(...),
                trigger=on("push", "pull_request", branches=["master"]),
            )

    Or use PIPELINE directly:
        PIPELINE = pipeline("CI", job(...))
    """
    return Pipeline(
        name=name,
        jobs=tuple(jobs),
        trigger=trigger if trigger is not None else on(),
        env={k: str(v) for k, v in (env or {}).items()},
    )
