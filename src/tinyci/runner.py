# runner.py
from __future__ import annotations

import os
import runpy
import shlex
import shutil
import signal
import subprocess
import threading
import time
from concurrent.futures import ThreadPoolExecutor, wait
from pathlib import Path
from typing import Dict, Iterable, List, Mapping, Optional

from .errors import ConfigError
from .model import (
    INVOCATION_FAILED,
    Event,
    Job,
    JobResult,
    JobStatus,
    Pipeline,
    PipelineResult,
    Step,
    StepResult,
    aggregate_status,
)
from .trigger import should_run
from .ui.console import Console, get_console


TOOL_HINTS = {
    "yarn": "Install Yarn (e.g., npm install -g yarn) or fix PATH.",
    "npm": "Install Node.js (includes npm) or fix PATH.",
    "node": "Install Node.js or fix PATH.",
    "cargo": "Install the Rust toolchain (rustup) or fix PATH.",
    "git": "Install Git or fix PATH.",
    "docker": "Install Docker and ensure the daemon is running.",
    "python3": "Install Python 3 or fix PATH (python3).",
}

# Leading words of a shell command that are not programs on PATH.
_SHELL_WORDS = frozenset({
    ".", ":", "[", "alias", "break", "case", "cd", "command", "continue", "echo", "eval",
    "exec", "exit", "export", "false", "for", "if", "printf", "pwd", "read", "readonly",
    "return", "set", "shift", "test", "times", "trap", "true", "type", "ulimit", "umask",
    "unset", "until", "wait", "while", "!", "{", "(", "[[", "declare", "function",
    "getopts", "hash", "let", "local", "select", "source", "time", "typeset",
})
_SHELL_SYNTAX = set("$`(){}<>|&;*?~")

# How often a running step checks for cancellation / timeout.
POLL_INTERVAL = 0.1
# Time between SIGTERM and SIGKILL when stopping a step.
KILL_GRACE_SECONDS = 5.0

_POSIX = os.name == "posix"


# ----------------------------------------------------------------------
# Workflow loading (local file)
# ----------------------------------------------------------------------

def load_workflow(path: str | Path) -> Pipeline:
    """
    Load a pipeline from a python file path.

    The file must define either:
      - workflow() -> Pipeline
      - PIPELINE = pipeline(...)

    Raises:
      ConfigError: missing file, wrong file type, or no Pipeline defined.
        Validation errors raised while the file builds its jobs propagate
        unchanged.
    """
    wf_path = Path(path).expanduser().resolve()
    if not wf_path.exists():
        raise ConfigError(f"Workflow file not found: {wf_path}")
    if wf_path.suffix != ".py":
        raise ConfigError(f"Workflow must be a .py file, got: {wf_path.name}")

    module_name = f"tinyci_workflow_{wf_path.stem}"
    globals_dict = runpy.run_path(str(wf_path), run_name=module_name)

    defined = None
    if "workflow" in globals_dict and callable(globals_dict["workflow"]):
        defined = globals_dict["workflow"]()
    elif "PIPELINE" in globals_dict:
        defined = globals_dict["PIPELINE"]

    if not isinstance(defined, Pipeline):
        raise ConfigError(
            "Workflow must return/define a Pipeline. "
            "Define workflow() -> Pipeline or PIPELINE = pipeline(...).",
            details={"file": str(wf_path)},
        )

    return defined


# ----------------------------------------------------------------------
# Step runner
# ----------------------------------------------------------------------

def _program(step: Step) -> str:
    try:
        parts = shlex.split(step.run)
    except ValueError:
        parts = step.run.split()
    return parts[0] if parts else step.run


def _leading_program(run: str) -> Optional[str]:
    """
    First word of a shell command when it names a program, else None
    (builtins, keywords, variable assignments, expansions).
    """
    lex = shlex.shlex(run, posix=True, punctuation_chars=True)
    lex.whitespace_split = True
    try:
        first = lex.get_token()
    except ValueError:
        return None
    if not first or first in _SHELL_WORDS or "=" in first:
        return None
    if _SHELL_SYNTAX & set(first):
        return None
    return first


def _check_program(program: str, cwd: Path, env: Mapping[str, str]) -> Optional[str]:
    """Return a diagnostic when `program` cannot be run, None when it can."""
    if "/" in program:
        path = cwd / program
        if not path.is_file():
            return f"command not found: {program}"
        if not os.access(path, os.X_OK):
            return f"command not executable: {program}"
        return None
    if shutil.which(program, path=env.get("PATH", os.defpath)) is None:
        return _with_hint(f"command not found: {program}", program)
    return None


def _with_hint(message: str, program: str) -> str:
    hint = TOOL_HINTS.get(os.path.basename(program))
    return f"{message}. Hint: {hint}" if hint else message


def _invocation_failure(step: Step, started: float, diagnostic: str, output: str = "") -> StepResult:
    return StepResult(
        step=step.name,
        command=step.run,
        exit_code=INVOCATION_FAILED,
        duration=time.monotonic() - started,
        output=output,
        diagnostic=diagnostic,
    )


def _signal(proc: subprocess.Popen, kill: bool) -> None:
    try:
        if _POSIX:
            # the step runs in its own session; stop the whole group
            os.killpg(proc.pid, signal.SIGKILL if kill else signal.SIGTERM)
        elif kill:
            proc.kill()
        else:
            proc.terminate()
    except ProcessLookupError:
        pass


def _terminate(proc: subprocess.Popen, grace: float) -> None:
    _signal(proc, kill=False)
    try:
        proc.wait(timeout=grace)
    except subprocess.TimeoutExpired:
        _signal(proc, kill=True)
        proc.wait()


def run_step(
    step: Step,
    *,
    repo_root: str | Path = ".",
    env: Optional[Mapping[str, str]] = None,
    cancel: Optional[threading.Event] = None,
    grace: float = KILL_GRACE_SECONDS,
) -> StepResult:
    """
    Run one step and capture its combined stdout/stderr.

    Never raises for a failing command. A command that cannot be started
    (missing working directory, or a program that is not on PATH or not
    executable) comes back with exit_code == INVOCATION_FAILED and a
    diagnostic. Once the process has started its exit code is kept as is.
    """
    started = time.monotonic()

    cwd = (Path(repo_root) / (step.cwd or ".")).resolve()
    if not cwd.is_dir():
        return _invocation_failure(step, started, f"working directory not found: {cwd}")

    full_env = os.environ.copy()
    full_env.update(env or {})

    if step.shell:
        args: str | List[str] = step.run
        leading = _leading_program(step.run)
        if leading is not None:
            problem = _check_program(leading, cwd, full_env)
            if problem:
                return _invocation_failure(step, started, problem)
    else:
        try:
            args = shlex.split(step.run)
        except ValueError as e:
            return _invocation_failure(step, started, f"cannot parse command: {e}")
        if not args:
            return _invocation_failure(step, started, "empty command")

    program = _program(step)
    try:
        proc = subprocess.Popen(
            args,
            shell=step.shell,
            cwd=str(cwd),
            env=full_env,
            stdin=subprocess.DEVNULL,
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
            text=True,
            errors="replace",
            start_new_session=_POSIX,
        )
    except FileNotFoundError:
        return _invocation_failure(step, started, _with_hint(f"command not found: {program}", program))
    except PermissionError:
        return _invocation_failure(step, started, f"permission denied: {program}")
    except OSError as e:
        return _invocation_failure(step, started, f"cannot start {program}: {e}")

    deadline = started + step.timeout if step.timeout is not None else None
    timed_out = False
    cancelled = False

    while True:
        try:
            output, _ = proc.communicate(timeout=POLL_INTERVAL)
            break
        except subprocess.TimeoutExpired:
            if cancel is not None and cancel.is_set():
                cancelled = True
            elif deadline is not None and time.monotonic() >= deadline:
                timed_out = True
            else:
                continue
            _terminate(proc, grace)
            output, _ = proc.communicate()
            break

    duration = time.monotonic() - started
    output = output or ""
    code = proc.returncode

    if cancelled:
        return StepResult(step.name, step.run, code, duration, output,
                          diagnostic="cancelled while running", cancelled=True)
    if timed_out:
        return StepResult(step.name, step.run, code, duration, output,
                          diagnostic=f"timed out after {step.timeout:g}s", timed_out=True)

    return StepResult(step.name, step.run, code, duration, output)


# ----------------------------------------------------------------------
# Job executor
# ----------------------------------------------------------------------

def run_job(
    job: Job,
    *,
    repo_root: str | Path = ".",
    env: Optional[Mapping[str, str]] = None,
    cancel: Optional[threading.Event] = None,
    console: Optional[Console] = None,
) -> JobResult:
    """
    Run the job's steps in order, stopping at the first one that fails.

    Steps after the failing one are never started and never recorded.
    """
    console = console or get_console()

    step_env: Dict[str, str] = dict(env or {})
    step_env.update(job.env)

    result = JobResult(job=job.name)
    console.print_job_start(job.name)

    for step in job.steps:
        if cancel is not None and cancel.is_set():
            result.finish(JobStatus.CANCELLED)
            break

        console.print_step(job.name, step.name)
        sr = run_step(step, repo_root=repo_root, env=step_env, cancel=cancel)
        result.record(sr)
        console.print_step_result(job.name, sr)

        if sr.cancelled:
            result.finish(JobStatus.CANCELLED)
            break
        if not sr.succeeded:
            result.finish(JobStatus.FAILED)
            break
    else:
        result.finish(JobStatus.SUCCESS)

    console.print_job_finished(result)
    return result


# ----------------------------------------------------------------------
# Pipeline coordinator
# ----------------------------------------------------------------------

def _select_jobs(pipeline: Pipeline, only: Optional[Iterable[str]]) -> List[Job]:
    if not only:
        return list(pipeline.jobs)
    wanted = {pipeline.job(name).name for name in only}
    return [j for j in pipeline.jobs if j.name in wanted]


def run_pipeline(
    pipeline: Pipeline,
    event: Event,
    *,
    repo_root: str | Path = ".",
    max_workers: int | None = None,
    timeout: float | None = None,
    cancel: Optional[threading.Event] = None,
    only: Optional[Iterable[str]] = None,
    console: Optional[Console] = None,
) -> Optional[PipelineResult]:
    """
    Run every job of `pipeline` for `event`.

    Returns None when the trigger does not accept the event. Otherwise all
    jobs run independently (one thread each by default) and the call returns
    only once every job has reached a terminal status, even after a timeout
    or cancellation.
    """
    console = console or get_console()

    if not should_run(event, pipeline):
        console.print_trigger_skipped(event, pipeline)
        return None

    selected = _select_jobs(pipeline, only)
    cancel = cancel if cancel is not None else threading.Event()
    repo_root_p = Path(repo_root).resolve()

    if max_workers is None:
        max_workers = max(1, len(selected))

    started = time.monotonic()
    results: Dict[str, JobResult] = {}
    timed_out = False

    with ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="tinyci-job") as pool:
        futures = {
            pool.submit(
                run_job,
                j,
                repo_root=repo_root_p,
                env=pipeline.env,
                cancel=cancel,
                console=console,
            ): j.name
            for j in selected
        }

        try:
            _done, pending = wait(futures, timeout=timeout)
            if pending:
                timed_out = True
                console.print_info(f"Pipeline timeout ({timeout:g}s) reached, cancelling running jobs")
                cancel.set()
                wait(pending)
        except KeyboardInterrupt:
            console.print_info("\nInterrupted, cancelling running jobs")
            cancel.set()
            wait(futures)

        for fut, name in futures.items():
            try:
                results[name] = fut.result()
            except Exception as e:
                jr = JobResult(job=name)
                jr.finish(JobStatus.FAILED, error=f"{type(e).__name__}: {e}")
                console.print_exception(e)
                results[name] = jr

    jobs: Dict[str, JobResult] = {}
    for j in pipeline.jobs:
        if j.name in results:
            jobs[j.name] = results[j.name]
        else:
            skipped = JobResult(job=j.name)
            skipped.finish(JobStatus.SKIPPED)
            jobs[j.name] = skipped

    return PipelineResult(
        pipeline=pipeline.name,
        event=event,
        jobs=jobs,
        status=aggregate_status(jobs.values()),
        duration=time.monotonic() - started,
        cancelled=any(r.status is JobStatus.CANCELLED for r in jobs.values()),
        timed_out=timed_out,
    )
