from .dsl import cmd, job, on, pipeline, sh
from .errors import CIError, ConfigError
from .model import Event, EventKind, Job, JobResult, JobStatus, Pipeline, PipelineResult, Step, StepResult
from .runner import load_workflow, run_job, run_pipeline, run_step
from .trigger import should_run

__all__ = [
    "cmd", "job", "on", "pipeline", "sh",
    "CIError", "ConfigError",
    "Event", "EventKind", "Job", "JobResult", "JobStatus", "Pipeline", "PipelineResult", "Step", "StepResult",
    "load_workflow", "run_job", "run_pipeline", "run_step",
    "should_run",
]
