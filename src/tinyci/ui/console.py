"""Console output formatting utilities for tinyci."""

from __future__ import annotations

import sys
import threading
from typing import Optional

from ..model import Event, JobResult, JobStatus, Pipeline, PipelineResult, StepResult

# How much captured output is shown for a failing step.
OUTPUT_TAIL = 4000


def _tail(text: str, limit: int = OUTPUT_TAIL) -> str:
    if len(text) <= limit:
        return text
    return "...\n" + text[-limit:]


class Console:
    """Centralized console output formatting."""

    def __init__(self, debug: bool = False):
        """
        Initialize console formatter.

        Args:
            debug: If True, show detailed output including stack traces
                   and the captured output of every step
        """
        self.debug = debug
        # jobs report from worker threads
        self._lock = threading.Lock()

    def _emit(self, *lines: str, err: bool = False) -> None:
        stream = sys.stderr if err else sys.stdout
        with self._lock:
            for line in lines:
                print(line, file=stream)

    def print_run_started(
        self,
        pipeline: str,
        workflow: str,
        event: Event,
        job_count: int,
    ) -> None:
        """Print run start information."""
        self._emit(
            "\nRUN STARTED",
            f"Pipeline: {pipeline}",
            f"Workflow: {workflow}",
            f"Event: {event.kind} -> {event.branch}",
            f"Jobs: {job_count}",
            "",
        )

    def print_trigger_skipped(self, event: Event, pipeline: Pipeline) -> None:
        """Print the no-run notice for an event the trigger does not accept."""
        t = pipeline.trigger
        self._emit(
            f"\nNO RUN: {event.kind} -> {event.branch} does not match trigger "
            f"(events: {', '.join(t.kinds)}; branches: {', '.join(t.branches)})"
        )

    def print_job_start(self, name: str) -> None:
        """Print job start message."""
        self._emit(f"[{name}] JOB STARTED")

    def print_step(self, job: str, step: str) -> None:
        """Print step start message."""
        self._emit(f"[{job}] ▶ {step}")

    def print_step_result(self, job: str, result: StepResult) -> None:
        """Print one finished step; failures include their output tail."""
        if result.succeeded:
            lines = [f"[{job}] ✓ {result.step} ({result.duration:.1f}s)"]
            if self.debug and result.output:
                lines.append(result.output.rstrip("\n"))
            self._emit(*lines)
            return

        lines = [f"[{job}] ✗ {result.step} {self._describe_exit(result)} ({result.duration:.1f}s)"]
        if result.diagnostic:
            lines.append(f"[{job}]   {result.diagnostic}")
        if result.output:
            out = result.output if self.debug else _tail(result.output)
            lines.append(out.rstrip("\n"))
        self._emit(*lines)

    def print_job_finished(self, result: JobResult) -> None:
        """Print job completion message."""
        self._emit(f"[{result.job}] JOB {result.status.value.upper()}")

    @staticmethod
    def _describe_exit(result: StepResult) -> str:
        if result.invocation_failed:
            return "(could not start)"
        if result.cancelled:
            return "(cancelled)"
        if result.timed_out:
            return "(timed out)"
        return f"(exit={result.exit_code})"

    def print_report(self, result: PipelineResult, pipeline: Pipeline) -> None:
        """
        Print the final report: every job, every step that ran, and the
        steps that were skipped after a failure.
        """
        lines = ["", "=" * 40, "RESULTS", "=" * 40]
        for j in pipeline.jobs:
            jr = result.jobs.get(j.name)
            if jr is None:
                continue
            lines.append(f"  {j.name}: {jr.status.value.upper()}")
            if jr.error:
                lines.append(f"    error: {jr.error}")
            for s in jr.steps:
                mark = "✓" if s.succeeded else "✗"
                lines.append(f"    {mark} {s.step} {self._describe_exit(s)} {s.duration:.1f}s")
            if jr.status is not JobStatus.SKIPPED:
                for name in jr.skipped_steps(j):
                    lines.append(f"    - {name} (skipped)")

        failed = [jr for jr in result.jobs.values() if jr.failed_step is not None]
        for jr in failed:
            s = jr.failed_step
            lines.append("")
            lines.append(f"FAILED: {jr.job} / {s.step}")
            lines.append(f"Command: {s.command}")
            if s.diagnostic:
                lines.append(f"Diagnostic: {s.diagnostic}")
            if s.output:
                lines.append(_tail(s.output).rstrip("\n"))

        lines.append("")
        lines.append(f"PIPELINE: {result.status.value.upper()} ({result.duration:.1f}s)")
        if result.cancelled:
            lines.append("Run was cancelled")
        self._emit(*lines)

    def print_plan(self, pipeline: Pipeline, event: Event, would_run: bool) -> None:
        """Print the configured trigger, jobs and steps without running anything."""
        t = pipeline.trigger
        lines = [
            f"\nPIPELINE: {pipeline.name}",
            f"Trigger: {', '.join(t.kinds)} on {', '.join(t.branches)}",
        ]
        if pipeline.env:
            lines.append("Env: " + ", ".join(f"{k}={v}" for k, v in pipeline.env.items()))
        for j in pipeline.jobs:
            lines.append(f"  {j.name}")
            for s in j.steps:
                where = f" (in {s.cwd})" if s.cwd else ""
                lines.append(f"    {s.name}: {s.run}{where}")
        verdict = "would run" if would_run else "would NOT run"
        lines.append(f"\n{event.kind} -> {event.branch}: {verdict}")
        self._emit(*lines)

    def print_error(
        self,
        title: str,
        message: str,
        details: Optional[list[str]] = None,
        suggestion: Optional[str] = None,
    ) -> None:
        """
        Print structured error message.

        Args:
            title: Error title
            message: Main error message
            details: Optional list of detail lines
            suggestion: Optional suggestion for user
        """
        lines = [f"\nERROR: {title}", message]
        if details:
            lines.extend(f"  {d}" for d in details)
        if suggestion:
            lines.append(f"\n{suggestion}")
        self._emit(*lines, err=True)

    def print_exception(self, exc: Exception) -> None:
        """Print exception, with full traceback only in debug mode."""
        if self.debug:
            import traceback
            with self._lock:
                traceback.print_exception(type(exc), exc, exc.__traceback__)
        else:
            self._emit(f"Error: {exc}", err=True)

    def print_info(self, message: str) -> None:
        """Print informational message."""
        self._emit(message)

    def print_debug(self, message: str) -> None:
        """Print debug message (only if debug mode enabled)."""
        if self.debug:
            self._emit(f"[DEBUG] {message}", err=True)


# Global console instance (will be initialized by CLI)
_console: Optional[Console] = None


def get_console() -> Console:
    """Get the global console instance."""
    global _console
    if _console is None:
        _console = Console()
    return _console


def set_console(console: Console) -> None:
    """Set the global console instance."""
    global _console
    _console = console
