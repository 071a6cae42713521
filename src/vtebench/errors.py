"""Fatal error types raised while running an A/B benchmark.

Every one of these aborts the whole invocation; the CLI reports the
message and exits non-zero after cleanup has run.
"""

from __future__ import annotations

from pathlib import Path


class BenchError(RuntimeError):
    """Base class for fatal benchmark errors."""


class PreconditionError(BenchError):
    """A required tool is missing or the working tree is dirty."""


class ProvisionError(BenchError):
    """Checking out, configuring or building one side failed."""

    def __init__(self, side: str, ref: str, step: str, detail: str = "") -> None:
        self.side = side
        self.ref = ref
        self.step = step
        self.detail = detail
        message = f"{side} ({ref}): {step} failed"
        if detail:
            message += f": {detail}"
        super().__init__(message)


class MeasurementError(BenchError):
    """A run finished without yielding a valid elapsed time."""

    def __init__(
        self,
        label: str,
        run: int,
        reason: str,
        *,
        log_path: Path | None = None,
    ) -> None:
        self.label = label
        self.run = run
        self.reason = reason
        self.log_path = log_path
        message = f"{reason} (label={label} run={run})"
        if log_path is not None:
            message += f"; see frame log: {log_path}"
        super().__init__(message)
