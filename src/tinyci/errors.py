# errors.py
from __future__ import annotations

from dataclasses import dataclass, field


@dataclass
class CIError(Exception):
    """
    Structured CI error with enough context for:
      - clean CLI output
      - debugging without full tracebacks
    """
    kind: str
    message: str
    job: str | None = None
    step: str | None = None
    details: dict = field(default_factory=dict)

    def __str__(self) -> str:
        lines = [f"{self.kind}: {self.message}"]
        if self.job:
            lines.append(f"job={self.job}")
        if self.step:
            lines.append(f"step={self.step}")
        for k, v in self.details.items():
            lines.append(f"{k}={v}")
        return "\n".join(lines)


class ConfigError(CIError):
    """Malformed pipeline configuration. Raised at load time, before any run."""

    def __init__(
        self,
        message: str,
        *,
        job: str | None = None,
        step: str | None = None,
        details: dict | None = None,
    ) -> None:
        super().__init__(
            kind="config_error",
            message=message,
            job=job,
            step=step,
            details=details or {},
        )
