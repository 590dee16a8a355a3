"""Data model for analysis requests, records and results."""

from __future__ import annotations

import hashlib
import json
import os
import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Mapping

from .errors import AnalysisError, InvalidOptionsError


def _utcnow() -> datetime:
    """Return current UTC time as timezone-aware datetime."""
    return datetime.now(timezone.utc)


class AnalysisType(str, Enum):
    """Supported analysis domains."""

    PROJECT = "project"
    CODE_QUALITY = "code_quality"
    SECURITY = "security"
    PERFORMANCE = "performance"
    ARCHITECTURE = "architecture"
    TECH_STACK = "tech_stack"

    @classmethod
    def parse(cls, value: "AnalysisType | str") -> "AnalysisType":
        """Accept enum members, canonical values and legacy spellings.

        ``code-quality``, ``codeQuality``, ``techstack`` and ``techStack`` all
        resolve to their canonical member.
        """
        if isinstance(value, cls):
            return value
        text = str(value).strip()
        normalized = "".join(ch for ch in text.lower() if ch.isalnum())
        for member in cls:
            if member.value.replace("_", "") == normalized:
                return member
        raise ValueError(f"Unknown analysis type: {value!r}")


COMPREHENSIVE_TYPES: tuple[AnalysisType, ...] = (
    AnalysisType.PROJECT,
    AnalysisType.CODE_QUALITY,
    AnalysisType.SECURITY,
    AnalysisType.PERFORMANCE,
    AnalysisType.ARCHITECTURE,
    AnalysisType.TECH_STACK,
)


class AnalysisStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


_CONTROL_OPTIONS = frozenset({"timeout_ms", "ttl_ms", "max_attempts", "bypass_cache"})


@dataclass(frozen=True, slots=True)
class AnalysisOptions:
    """Per-call options.

    The four execution-control fields tune how the orchestrator runs the
    step. ``extra`` is opaque to the orchestrator and handed to the step.
    """

    timeout_ms: int | None = None
    ttl_ms: int | None = None
    max_attempts: int | None = None
    bypass_cache: bool = False
    extra: Mapping[str, Any] = field(default_factory=dict)

    @classmethod
    def from_mapping(cls, options: "AnalysisOptions | Mapping[str, Any] | None") -> "AnalysisOptions":
        if options is None:
            return cls()
        if isinstance(options, AnalysisOptions):
            return options
        data = dict(options)
        extra = dict(data.pop("extra", None) or {})
        control: dict[str, Any] = {}
        for name in _CONTROL_OPTIONS:
            camel = _camel(name)
            if name in data:
                control[name] = data.pop(name)
            elif camel in data:
                control[name] = data.pop(camel)
        extra.update(data)
        return cls(
            timeout_ms=_optional_int("timeout_ms", control.get("timeout_ms")),
            ttl_ms=_optional_int("ttl_ms", control.get("ttl_ms")),
            max_attempts=_optional_int("max_attempts", control.get("max_attempts")),
            bypass_cache=bool(control.get("bypass_cache", False)),
            extra=extra,
        )

    def with_bypass(self) -> "AnalysisOptions":
        return replace(self, bypass_cache=True)

    def normalized(self) -> str:
        """Canonical JSON of the options that contribute to identity."""
        return json.dumps(_normalize(dict(self.extra)), sort_keys=True, separators=(",", ":"))


def _camel(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(part.title() for part in rest)


def _optional_int(name: str, value: Any) -> int | None:
    if value is None:
        return None
    if isinstance(value, bool):
        raise InvalidOptionsError(f"{name} must be an integer, got {value!r}")
    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        raise InvalidOptionsError(f"{name} must be an integer, got {value!r}", cause=exc) from exc


def _normalize(value: Any) -> Any:
    if isinstance(value, Mapping):
        return {str(k): _normalize(v) for k, v in sorted(value.items(), key=lambda item: str(item[0]))}
    if isinstance(value, (list, tuple)):
        return [_normalize(v) for v in value]
    if isinstance(value, (set, frozenset)):
        return sorted((_normalize(v) for v in value), key=repr)
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, Path):
        return str(value)
    if isinstance(value, (str, int, float, bool)) or value is None:
        return value
    return repr(value)


@dataclass(frozen=True, slots=True)
class AnalysisKey:
    """Deterministic identity of (project, analysis type, options)."""

    analysis_type: AnalysisType
    digest: str

    @classmethod
    def compute(
        cls,
        project_path: Path | str,
        analysis_type: AnalysisType | str,
        options: AnalysisOptions | None = None,
    ) -> "AnalysisKey":
        atype = AnalysisType.parse(analysis_type)
        options = options or AnalysisOptions()
        resolved = os.path.abspath(os.path.expanduser(project_path))
        hasher = hashlib.sha256()
        for part in (resolved, atype.value, options.normalized()):
            hasher.update(part.encode("utf-8"))
            hasher.update(b"\x00")
        return cls(analysis_type=atype, digest=hasher.hexdigest())

    @classmethod
    def parse(cls, text: "AnalysisKey | str") -> "AnalysisKey":
        if isinstance(text, AnalysisKey):
            return text
        type_part, sep, digest = str(text).partition(":")
        if not sep or not digest:
            raise ValueError(f"Malformed analysis key: {text!r}")
        return cls(analysis_type=AnalysisType.parse(type_part), digest=digest)

    @property
    def short(self) -> str:
        return self.digest[:16]

    def __str__(self) -> str:
        return f"{self.analysis_type.value}:{self.digest}"


@dataclass(frozen=True, slots=True)
class AnalysisRequest:
    project_path: Path
    analysis_type: AnalysisType
    options: AnalysisOptions = field(default_factory=AnalysisOptions)
    request_id: str = field(default_factory=lambda: uuid.uuid4().hex)

    @property
    def key(self) -> AnalysisKey:
        return AnalysisKey.compute(self.project_path, self.analysis_type, self.options)


@dataclass(frozen=True, slots=True)
class AnalysisResult:
    """Read-only output of one successful step execution."""

    analysis_type: AnalysisType
    project_path: Path
    payload: Mapping[str, Any]
    computed_at: datetime = field(default_factory=_utcnow)
    duration_ms: float = 0.0
    attempt_count: int = 1
    step_name: str | None = None
    metadata: Mapping[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "analysis_type": self.analysis_type.value,
            "project_path": str(self.project_path),
            "payload": dict(self.payload),
            "computed_at": self.computed_at.isoformat(),
            "duration_ms": self.duration_ms,
            "attempt_count": self.attempt_count,
            "step_name": self.step_name,
            "metadata": dict(self.metadata),
        }


@dataclass(frozen=True, slots=True)
class Outcome:
    """Discriminated result: exactly one of ``result`` or ``error`` is set."""

    result: AnalysisResult | None = None
    error: AnalysisError | None = None
    cached: bool = False

    def __post_init__(self) -> None:
        if (self.result is None) == (self.error is None):
            raise ValueError("Outcome requires exactly one of result or error")

    @classmethod
    def success(cls, result: AnalysisResult, *, cached: bool = False) -> "Outcome":
        return cls(result=result, cached=cached)

    @classmethod
    def failure(cls, error: AnalysisError) -> "Outcome":
        return cls(error=error)

    @property
    def ok(self) -> bool:
        return self.error is None

    def unwrap(self) -> AnalysisResult:
        if self.error is not None:
            raise self.error
        assert self.result is not None
        return self.result

    def to_dict(self) -> dict[str, Any]:
        if self.result is not None:
            return {"ok": True, "cached": self.cached, "result": self.result.to_dict()}
        assert self.error is not None
        return {"ok": False, "error": self.error.to_dict()}


@dataclass(slots=True)
class AnalysisRecord:
    """Lifecycle record of one key. Callers only ever see snapshots."""

    key: AnalysisKey
    request: AnalysisRequest
    status: AnalysisStatus = AnalysisStatus.PENDING
    started_at: datetime | None = None
    completed_at: datetime | None = None
    attempt_count: int = 0
    result: AnalysisResult | None = None
    error: AnalysisError | None = None
    subscribers: int = 0

    @property
    def analysis_type(self) -> AnalysisType:
        return self.key.analysis_type

    def snapshot(self) -> "AnalysisRecord":
        return replace(self)

    def summary(self) -> dict[str, Any]:
        """Fields a caller may forward to a notification publisher."""
        return {
            "key": str(self.key),
            "analysis_type": self.analysis_type.value,
            "project_path": str(self.request.project_path),
            "status": self.status.value,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "attempt_count": self.attempt_count,
            "error": self.error.to_dict() if self.error else None,
        }


@dataclass(slots=True)
class ComprehensiveResult:
    project_path: Path
    per_type: dict[AnalysisType, Outcome] = field(default_factory=dict)
    started_at: datetime = field(default_factory=_utcnow)
    completed_at: datetime | None = None

    @property
    def summary(self) -> dict[str, int]:
        successful = sum(1 for outcome in self.per_type.values() if outcome.ok)
        return {
            "total": len(self.per_type),
            "successful": successful,
            "failed": len(self.per_type) - successful,
        }

    def successes(self) -> dict[AnalysisType, AnalysisResult]:
        return {t: o.result for t, o in self.per_type.items() if o.result is not None}

    def failures(self) -> dict[AnalysisType, AnalysisError]:
        return {t: o.error for t, o in self.per_type.items() if o.error is not None}

    def to_dict(self) -> dict[str, Any]:
        return {
            "project_path": str(self.project_path),
            "started_at": self.started_at.isoformat(),
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "summary": self.summary,
            "analyses": {t.value: o.to_dict() for t, o in self.per_type.items()},
        }
