"""Registry mapping analysis types to step implementations."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import Iterable

from ..config import ScanSettings
from ..errors import DuplicateRegistration, StepNotFound
from ..models import AnalysisType
from ..steps import AnalysisStep, StepMetadata, default_steps, step_metadata

_LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class StepStats:
    executions: int = 0
    failures: int = 0
    total_duration_ms: float = 0.0

    @property
    def average_duration_ms(self) -> float:
        if not self.executions:
            return 0.0
        return self.total_duration_ms / self.executions

    def as_dict(self) -> dict[str, float | int]:
        return {
            "executions": self.executions,
            "failures": self.failures,
            "total_duration_ms": round(self.total_duration_ms, 3),
            "average_duration_ms": round(self.average_duration_ms, 3),
        }


class StepRegistry:
    """Maintain the binding between analysis types and steps.

    Each orchestrator owns its registry; there is no module-level instance.
    """

    def __init__(self, steps: Iterable[AnalysisStep] | None = None) -> None:
        self._lock = threading.RLock()
        self._steps: dict[AnalysisType, AnalysisStep] = {}
        self._stats: dict[AnalysisType, StepStats] = {}
        for step in steps or ():
            self.register(step.analysis_type, step)

    def register(self, analysis_type: AnalysisType | str, step: AnalysisStep) -> None:
        atype = AnalysisType.parse(analysis_type)
        with self._lock:
            if atype in self._steps:
                raise DuplicateRegistration(
                    f"A step is already registered for {atype.value}",
                    analysis_type=atype.value,
                )
            self._steps[atype] = step
            self._stats[atype] = StepStats()
        _LOGGER.debug("Registered step %s for %s", getattr(step, "name", step), atype.value)

    def unregister(self, analysis_type: AnalysisType | str) -> AnalysisStep:
        atype = AnalysisType.parse(analysis_type)
        with self._lock:
            step = self._steps.pop(atype, None)
            self._stats.pop(atype, None)
        if step is None:
            raise StepNotFound(f"No step registered for {atype.value}", analysis_type=atype.value)
        return step

    def resolve(self, analysis_type: AnalysisType | str) -> AnalysisStep:
        try:
            atype = AnalysisType.parse(analysis_type)
        except ValueError as exc:
            raise StepNotFound(str(exc), analysis_type=str(analysis_type), cause=exc) from exc
        with self._lock:
            step = self._steps.get(atype)
        if step is None:
            raise StepNotFound(f"No step registered for {atype.value}", analysis_type=atype.value)
        return step

    def has(self, analysis_type: AnalysisType | str) -> bool:
        try:
            self.resolve(analysis_type)
        except StepNotFound:
            return False
        return True

    def list(self) -> list[AnalysisType]:
        with self._lock:
            registered = set(self._steps)
        return [atype for atype in AnalysisType if atype in registered]

    def metadata(self) -> dict[AnalysisType, StepMetadata]:
        with self._lock:
            items = list(self._steps.items())
        return {atype: step_metadata(step) for atype, step in items}

    def record_execution(self, analysis_type: AnalysisType, duration_ms: float, *, failed: bool) -> None:
        with self._lock:
            stats = self._stats.get(analysis_type)
            if stats is None:
                return
            stats.executions += 1
            stats.total_duration_ms += duration_ms
            if failed:
                stats.failures += 1

    def stats(self) -> dict[str, dict[str, float | int]]:
        with self._lock:
            return {atype.value: stats.as_dict() for atype, stats in self._stats.items()}

    def __len__(self) -> int:
        with self._lock:
            return len(self._steps)

    def __contains__(self, analysis_type: object) -> bool:
        if not isinstance(analysis_type, (AnalysisType, str)):
            return False
        return self.has(analysis_type)


def build_default_registry(scan: ScanSettings | None = None) -> StepRegistry:
    """Return a registry bound to the six reference steps."""

    return StepRegistry(default_steps(scan))
