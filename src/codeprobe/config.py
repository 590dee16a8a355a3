"""Configuration loading and modelling."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from dotenv import load_dotenv
from pydantic import BaseModel, Field, field_validator

from .errors import InvalidOptionsError
from .models import AnalysisOptions, AnalysisType

DEFAULT_CONFIG_PATH = Path(__file__).resolve().parent.parent.parent / "config" / "default_config.toml"
USER_CONFIG_PATH = Path("~/.config/codeprobe/config.toml").expanduser()

_DEFAULT_TTL_MS: dict[str, int] = {
    AnalysisType.TECH_STACK.value: 10 * 60 * 1000,
    AnalysisType.PROJECT.value: 15 * 60 * 1000,
    AnalysisType.CODE_QUALITY.value: 30 * 60 * 1000,
    AnalysisType.SECURITY.value: 30 * 60 * 1000,
    AnalysisType.PERFORMANCE.value: 30 * 60 * 1000,
    AnalysisType.ARCHITECTURE.value: 30 * 60 * 1000,
}


class EngineSettings(BaseModel):
    default_timeout_ms: int = Field(default=5 * 60 * 1000, gt=0)
    comprehensive_timeout_ms: int = Field(default=15 * 60 * 1000, gt=0)
    max_attempts: int = Field(default=2, ge=1)
    backoff_base_ms: int = Field(default=500, ge=0)
    backoff_factor: float = Field(default=2.0, ge=1.0)
    backoff_cap_ms: int = Field(default=5000, ge=0)
    status_history: int = Field(default=256, ge=0)


class CacheSettings(BaseModel):
    enabled: bool = True
    max_entries: int = Field(default=512, ge=1)
    default_ttl_ms: int = Field(default=30 * 60 * 1000, gt=0)
    ttl_ms: dict[str, int] = Field(default_factory=lambda: dict(_DEFAULT_TTL_MS))

    @field_validator("ttl_ms")
    @classmethod
    def _canonical_types(cls, value: dict[str, int]) -> dict[str, int]:
        return {AnalysisType.parse(name).value: int(ttl) for name, ttl in value.items()}


class TypeOverrides(BaseModel):
    timeout_ms: int | None = Field(default=None, gt=0)
    ttl_ms: int | None = Field(default=None, gt=0)
    max_attempts: int | None = Field(default=None, ge=1)


class ScanSettings(BaseModel):
    ignore_dirs: list[str] = Field(
        default_factory=lambda: [
            ".git",
            ".hg",
            ".venv",
            "venv",
            "node_modules",
            "__pycache__",
            "dist",
            "build",
            ".mypy_cache",
            ".pytest_cache",
        ]
    )
    max_files: int = Field(default=5000, ge=1)
    max_file_bytes: int = Field(default=1_000_000, ge=1)


class AnalysisSettings(BaseModel):
    overrides: dict[str, TypeOverrides] = Field(default_factory=dict)
    scan: ScanSettings = Field(default_factory=ScanSettings)

    @field_validator("overrides")
    @classmethod
    def _canonical_types(cls, value: dict[str, TypeOverrides]) -> dict[str, TypeOverrides]:
        return {AnalysisType.parse(name).value: item for name, item in value.items()}


class OutputSettings(BaseModel):
    format: str = "terminal"
    verbosity: str = "normal"


@dataclass(frozen=True, slots=True)
class ExecutionPolicy:
    """Effective settings for one execution after all overrides."""

    timeout_ms: int
    ttl_ms: int
    max_attempts: int
    backoff_base_ms: int
    backoff_factor: float
    backoff_cap_ms: int
    use_cache: bool = True

    def backoff_ms(self, attempt: int) -> int:
        """Delay before the attempt following ``attempt`` (1-based)."""
        delay = self.backoff_base_ms * (self.backoff_factor ** (attempt - 1))
        return int(min(delay, self.backoff_cap_ms))


class AppConfig(BaseModel):
    engine: EngineSettings = Field(default_factory=EngineSettings)
    cache: CacheSettings = Field(default_factory=CacheSettings)
    analysis: AnalysisSettings = Field(default_factory=AnalysisSettings)
    output: OutputSettings = Field(default_factory=OutputSettings)
    raw: dict[str, Any] = Field(default_factory=dict)

    @property
    def verbosity(self) -> str:
        return self.output.verbosity

    def ttl_for(self, analysis_type: AnalysisType | str) -> int:
        name = AnalysisType.parse(analysis_type).value
        override = self.analysis.overrides.get(name)
        if override and override.ttl_ms is not None:
            return override.ttl_ms
        return self.cache.ttl_ms.get(name, self.cache.default_ttl_ms)

    def policy_for(
        self,
        analysis_type: AnalysisType | str,
        options: AnalysisOptions | None = None,
    ) -> ExecutionPolicy:
        """Merge per-call options over per-type overrides over engine defaults."""

        options = options or AnalysisOptions()
        name = AnalysisType.parse(analysis_type).value
        override = self.analysis.overrides.get(name) or TypeOverrides()

        timeout_ms = _first_set(options.timeout_ms, override.timeout_ms, self.engine.default_timeout_ms)
        ttl_ms = _first_set(options.ttl_ms, self.ttl_for(name))
        max_attempts = _first_set(options.max_attempts, override.max_attempts, self.engine.max_attempts)
        if timeout_ms <= 0:
            raise InvalidOptionsError(f"timeout_ms must be positive, got {timeout_ms}")
        if ttl_ms <= 0:
            raise InvalidOptionsError(f"ttl_ms must be positive, got {ttl_ms}")
        if max_attempts < 1:
            raise InvalidOptionsError(f"max_attempts must be at least 1, got {max_attempts}")

        return ExecutionPolicy(
            timeout_ms=timeout_ms,
            ttl_ms=ttl_ms,
            max_attempts=max_attempts,
            backoff_base_ms=self.engine.backoff_base_ms,
            backoff_factor=self.engine.backoff_factor,
            backoff_cap_ms=self.engine.backoff_cap_ms,
            use_cache=self.cache.enabled and not options.bypass_cache,
        )


def _first_set(*values: int | None) -> int:
    for value in values:
        if value is not None:
            return value
    raise ValueError("no value set")


def _load_toml(path: Path) -> dict[str, Any]:
    import tomllib

    with path.open("rb") as fh:
        return tomllib.load(fh)


def _merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    result = dict(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(result.get(key), dict):
            result[key] = _merge(result[key], value)
        else:
            result[key] = value
    return result


def load_config(config_path: Path | None = None) -> AppConfig:
    """Load configuration from defaults and optional user overrides."""

    load_dotenv()

    data: dict[str, Any] = {}
    if DEFAULT_CONFIG_PATH.exists():
        data = _merge(data, _load_toml(DEFAULT_CONFIG_PATH))

    resolved_path = config_path
    if resolved_path is None and USER_CONFIG_PATH.exists():
        resolved_path = USER_CONFIG_PATH

    if resolved_path and resolved_path.exists():
        data = _merge(data, _load_toml(resolved_path))

    config = AppConfig(raw=data)

    # Re-bind nested models from merged dict to capture overrides.
    if "engine" in data:
        config.engine = EngineSettings.model_validate(data["engine"])
    if "cache" in data:
        config.cache = CacheSettings.model_validate(data["cache"])
    if "analysis" in data:
        config.analysis = AnalysisSettings.model_validate(data["analysis"])
    if "output" in data:
        config.output = OutputSettings.model_validate(data["output"])

    env_attempts = os.getenv("CODEPROBE_MAX_ATTEMPTS")
    if env_attempts:
        config.engine.max_attempts = max(1, int(env_attempts))

    env_verbosity = os.getenv("CODEPROBE_LOG_LEVEL")
    if env_verbosity:
        config.output.verbosity = env_verbosity.lower()

    return config
