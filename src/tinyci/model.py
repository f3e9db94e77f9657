# model.py
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Dict, Iterable, List, Mapping, Optional, Tuple

from .errors import ConfigError


# Exit code reserved for steps whose command could not be started at all.
# Real processes exit with 0..255 (or a negative signal number).
INVOCATION_FAILED = 256


class EventKind(str, Enum):
    PUSH = "push"
    PULL_REQUEST = "pull_request"


SUPPORTED_EVENTS: Tuple[str, ...] = tuple(k.value for k in EventKind)


class JobStatus(str, Enum):
    RUNNING = "running"
    SUCCESS = "success"
    FAILED = "failed"
    SKIPPED = "skipped"
    CANCELLED = "cancelled"

    @property
    def terminal(self) -> bool:
        return self is not JobStatus.RUNNING

    @property
    def failed(self) -> bool:
        return self in (JobStatus.FAILED, JobStatus.CANCELLED)


# ---------------------------------------------------------------------
# Configuration (immutable)
# ---------------------------------------------------------------------

@dataclass(frozen=True)
class Event:
    """A repository event delivered by the trigger source."""
    kind: str
    branch: str

    def __post_init__(self) -> None:
        if not self.branch:
            raise ValueError("Event branch must be a non-empty string")
        if isinstance(self.kind, EventKind):
            object.__setattr__(self, "kind", self.kind.value)


@dataclass(frozen=True)
class Step:
    """A single command (step) inside a CI job."""
    name: str
    run: str
    cwd: str | None = None
    shell: bool = True
    timeout: float | None = None

    def __post_init__(self) -> None:
        if self.timeout is not None and self.timeout <= 0:
            raise ConfigError(f"step timeout must be positive, got {self.timeout!r}", step=self.name)


@dataclass(frozen=True)
class Job:
    """An ordered sequence of steps. Jobs never depend on each other."""
    name: str
    steps: Tuple[Step, ...]
    env: Mapping[str, str] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "steps", tuple(self.steps))
        object.__setattr__(self, "env", MappingProxyType(dict(self.env)))

        if not self.name:
            raise ConfigError("job name must not be empty")
        if not self.steps:
            raise ConfigError(f"job {self.name!r} must have at least one step", job=self.name)

        seen: set[str] = set()
        for s in self.steps:
            if s.name in seen:
                raise ConfigError(f"duplicate step name {s.name!r}", job=self.name, step=s.name)
            seen.add(s.name)

    def __hash__(self) -> int:
        return hash((self.name, self.steps))


@dataclass(frozen=True)
class Trigger:
    """Event kinds and branches that start a pipeline run."""
    kinds: Tuple[str, ...]
    branches: Tuple[str, ...]

    def __post_init__(self) -> None:
        kinds = tuple(k.value if isinstance(k, EventKind) else k for k in self.kinds)
        unknown = [k for k in kinds if k not in SUPPORTED_EVENTS]
        if unknown:
            raise ConfigError(
                f"unsupported trigger event(s) {unknown}; expected one of {list(SUPPORTED_EVENTS)}"
            )
        if not kinds:
            raise ConfigError("trigger needs at least one event kind")
        if not self.branches or not all(self.branches):
            raise ConfigError("trigger needs at least one non-empty branch name")
        object.__setattr__(self, "kinds", kinds)
        object.__setattr__(self, "branches", tuple(self.branches))


@dataclass(frozen=True)
class Pipeline:
    """Top-level configuration: jobs plus the trigger that starts them."""
    name: str
    jobs: Tuple[Job, ...]
    trigger: Trigger
    env: Mapping[str, str] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "jobs", tuple(self.jobs))
        object.__setattr__(self, "env", MappingProxyType(dict(self.env)))

        if not self.jobs:
            raise ConfigError(f"pipeline {self.name!r} has no jobs")

        names = [j.name for j in self.jobs]
        if len(set(names)) != len(names):
            dupes = sorted({n for n in names if names.count(n) > 1})
            raise ConfigError(f"duplicate job names: {dupes}", details={"jobs": dupes})

    def __hash__(self) -> int:
        return hash((self.name, self.jobs, self.trigger))

    def job(self, name: str) -> Job:
        for j in self.jobs:
            if j.name == name:
                return j
        raise ConfigError(f"unknown job {name!r}; known jobs: {[j.name for j in self.jobs]}", job=name)


# ---------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------

@dataclass(frozen=True)
class StepResult:
    step: str
    command: str
    exit_code: int
    duration: float
    output: str = ""
    diagnostic: str | None = None
    timed_out: bool = False
    cancelled: bool = False

    @property
    def succeeded(self) -> bool:
        return self.exit_code == 0

    @property
    def invocation_failed(self) -> bool:
        return self.exit_code == INVOCATION_FAILED

    def to_dict(self) -> Dict[str, object]:
        return {
            "step": self.step,
            "command": self.command,
            "exit_code": self.exit_code,
            "duration": round(self.duration, 3),
            "output": self.output,
            "diagnostic": self.diagnostic,
            "invocation_failed": self.invocation_failed,
            "timed_out": self.timed_out,
            "cancelled": self.cancelled,
        }


@dataclass
class JobResult:
    """
    Result of one job. Built incrementally while the job runs:

      RUNNING --record()--> RUNNING --finish()--> SUCCESS | FAILED | CANCELLED | SKIPPED

    Once finished it is never changed again.
    """
    job: str
    steps: List[StepResult] = field(default_factory=list)
    status: JobStatus = JobStatus.RUNNING
    error: str | None = None

    def record(self, result: StepResult) -> None:
        if self.status.terminal:
            raise RuntimeError(f"job {self.job!r} already finished ({self.status.value})")
        self.steps.append(result)

    def finish(self, status: JobStatus, error: str | None = None) -> None:
        if not status.terminal:
            raise ValueError("finish() needs a terminal status")
        if self.status.terminal:
            raise RuntimeError(f"job {self.job!r} already finished ({self.status.value})")
        self.status = status
        if error is not None:
            self.error = error

    @property
    def failed_step(self) -> Optional[StepResult]:
        for s in self.steps:
            if not s.succeeded:
                return s
        return None

    @property
    def duration(self) -> float:
        return sum(s.duration for s in self.steps)

    def skipped_steps(self, job: Job) -> List[str]:
        """Names of declared steps that never ran."""
        ran = {s.step for s in self.steps}
        return [s.name for s in job.steps if s.name not in ran]

    def to_dict(self) -> Dict[str, object]:
        return {
            "job": self.job,
            "status": self.status.value,
            "error": self.error,
            "steps": [s.to_dict() for s in self.steps],
        }


def aggregate_status(results: Iterable[JobResult]) -> JobStatus:
    """FAILED if any job failed or was cancelled, SUCCESS otherwise."""
    for r in results:
        if r.status.failed:
            return JobStatus.FAILED
    return JobStatus.SUCCESS


@dataclass(frozen=True)
class PipelineResult:
    pipeline: str
    event: Event
    jobs: Mapping[str, JobResult]
    status: JobStatus
    duration: float
    cancelled: bool = False
    timed_out: bool = False

    @property
    def succeeded(self) -> bool:
        return self.status is JobStatus.SUCCESS

    @property
    def exit_code(self) -> int:
        if self.succeeded:
            return 0
        if self.cancelled and not self.timed_out:
            return 130
        return 1

    def to_dict(self) -> Dict[str, object]:
        return {
            "pipeline": self.pipeline,
            "event": {"kind": self.event.kind, "branch": self.event.branch},
            "status": self.status.value,
            "cancelled": self.cancelled,
            "timed_out": self.timed_out,
            "exit_code": self.exit_code,
            "duration": round(self.duration, 3),
            "jobs": {name: r.to_dict() for name, r in self.jobs.items()},
        }
