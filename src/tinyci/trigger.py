# trigger.py
from __future__ import annotations

from .model import SUPPORTED_EVENTS, Event, Pipeline

_BRANCH_REF_PREFIX = "refs/heads/"


def should_run(event: Event, pipeline: Pipeline) -> bool:
    """
    Decide whether `event` starts a run of `pipeline`.

    A mismatch is a normal "no run" outcome, never an error.
    """
    if event.kind not in SUPPORTED_EVENTS:
        return False
    if event.kind not in pipeline.trigger.kinds:
        return False
    return event.branch in pipeline.trigger.branches


def event_from_ref(kind: str, ref: str) -> Event:
    """
    Build an Event from a git ref, e.g. ("push", "refs/heads/master").

    Plain branch names are accepted as-is.
    """
    branch = ref[len(_BRANCH_REF_PREFIX):] if ref.startswith(_BRANCH_REF_PREFIX) else ref
    return Event(kind=kind, branch=branch)
