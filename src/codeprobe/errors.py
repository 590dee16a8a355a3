"""Error taxonomy for the analysis orchestration engine.

Two families live here:

- ``AnalysisError`` and its subclasses are domain errors. They travel inside
  :class:`~codeprobe.models.Outcome` values and carry a ``kind``,
  a human readable message and a ``retryable`` flag.
- ``OrchestrationError`` subclasses (``CacheError``, ``TrackerError``) are
  internal faults. The orchestrator logs them and falls back to treating the
  key as absent; they never reach callers as a domain error.

``StepExecutionError`` and ``StepTimeoutError`` are raised at the step
boundary and are wrapped into their final ``Analysis*`` form once the retry
budget is spent.
"""

from __future__ import annotations

from typing import Any


class CodeprobeError(Exception):
    """Base class for every error raised by codeprobe."""


class AnalysisError(CodeprobeError):
    """Structured, caller-facing analysis failure."""

    kind: str = "analysis_error"
    retryable: bool = False

    def __init__(
        self,
        message: str,
        *,
        analysis_type: str | None = None,
        key: str | None = None,
        attempt_count: int = 0,
        cause: BaseException | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.analysis_type = analysis_type
        self.key = key
        self.attempt_count = attempt_count
        self.cause = cause
        if cause is not None:
            self.__cause__ = cause

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "kind": self.kind,
            "message": self.message,
            "retryable": self.retryable,
            "analysis_type": self.analysis_type,
            "key": self.key,
            "attempt_count": self.attempt_count,
        }
        if self.cause is not None:
            payload["cause"] = f"{type(self.cause).__name__}: {self.cause}"
        return payload


class StepNotFound(AnalysisError):
    """No step is registered for the requested analysis type."""

    kind = "step_not_found"


class DuplicateRegistration(AnalysisError):
    """A step is already bound to the analysis type."""

    kind = "duplicate_registration"


class NotFoundError(AnalysisError):
    """The analysis key is unknown to the orchestrator."""

    kind = "not_found"


class InvalidOptionsError(AnalysisError, ValueError):
    """Per-call options could not be parsed or are out of range."""

    kind = "invalid_options"


class AnalysisExecutionError(AnalysisError):
    """A step kept failing until the retry budget ran out."""

    kind = "execution_failed"


class AnalysisTimeoutError(AnalysisError):
    """A step kept exceeding its time allotment until the retry budget ran out."""

    kind = "timeout"


class StepExecutionError(CodeprobeError):
    """Raised by steps for domain failures. Retryable."""

    retryable = True


class StepTimeoutError(CodeprobeError):
    """Raised by the orchestrator when a step attempt exceeds its timeout."""

    retryable = True

    def __init__(self, message: str, *, timeout_ms: int | None = None) -> None:
        super().__init__(message)
        self.timeout_ms = timeout_ms


class OrchestrationError(CodeprobeError):
    """Internal orchestration fault; logged, never surfaced to callers."""


class CacheError(OrchestrationError):
    """The result cache failed to read or write an entry."""


class TrackerError(OrchestrationError):
    """The active execution tracker detected an inconsistent transition."""


__all__ = [
    "AnalysisError",
    "AnalysisExecutionError",
    "AnalysisTimeoutError",
    "CacheError",
    "CodeprobeError",
    "DuplicateRegistration",
    "InvalidOptionsError",
    "NotFoundError",
    "OrchestrationError",
    "StepExecutionError",
    "StepNotFound",
    "StepTimeoutError",
    "TrackerError",
]
