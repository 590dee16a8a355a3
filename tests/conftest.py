"""Shared pytest fixtures for codeprobe tests."""

from __future__ import annotations

import json
import threading
import time
from pathlib import Path
from typing import Any, Callable, Generator, Iterable, Mapping

import pytest

from codeprobe.analysis import (
    ActiveExecutionTracker,
    AnalysisOrchestrator,
    ResultCache,
    StepRegistry,
)
from codeprobe.config import AppConfig, CacheSettings, EngineSettings
from codeprobe.errors import StepExecutionError
from codeprobe.models import AnalysisType


# ============================================================================
# Fake steps
# ============================================================================

class FakeStep:
    """Configurable step recording every invocation.

    ``failures`` is the number of leading attempts that raise
    ``StepExecutionError``; ``gate`` blocks execution until set.
    """

    def __init__(
        self,
        analysis_type: AnalysisType,
        payload: Mapping[str, Any] | None = None,
        *,
        failures: int = 0,
        always_fail: bool = False,
        delay: float = 0.0,
        gate: threading.Event | None = None,
    ) -> None:
        self.analysis_type = analysis_type
        self.name = f"fake_{analysis_type.value}"
        self.payload = dict(payload or {"type": analysis_type.value})
        self.failures = failures
        self.always_fail = always_fail
        self.delay = delay
        self.gate = gate
        self.calls = 0
        self.started = threading.Event()
        self._lock = threading.Lock()

    def execute(self, project_path: Path, options: Mapping[str, Any]) -> Mapping[str, Any]:
        with self._lock:
            self.calls += 1
            attempt = self.calls
        self.started.set()
        if self.gate is not None:
            self.gate.wait(timeout=10)
        if self.delay:
            time.sleep(self.delay)
        if self.always_fail or attempt <= self.failures:
            raise StepExecutionError(f"{self.name} failed on attempt {attempt}")
        return {**self.payload, "attempt": attempt}


class FakeClock:
    """Monotonic clock under test control."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def wait_until(predicate: Callable[[], bool], timeout: float = 5.0) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.005)
    return predicate()


# ============================================================================
# Configuration Fixtures
# ============================================================================

@pytest.fixture
def fast_config() -> AppConfig:
    """Return a configuration with no backoff delay and short timeouts."""
    config = AppConfig()
    config.engine = EngineSettings(
        default_timeout_ms=5000,
        comprehensive_timeout_ms=10000,
        max_attempts=2,
        backoff_base_ms=0,
        backoff_cap_ms=0,
    )
    config.cache = CacheSettings(max_entries=64)
    return config


@pytest.fixture
def fake_clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def make_orchestrator(
    fast_config: AppConfig,
    fake_clock: FakeClock,
) -> Generator[Callable[..., AnalysisOrchestrator], None, None]:
    """Factory building orchestrators over the given steps; closes them on teardown."""

    created: list[AnalysisOrchestrator] = []

    def _make(
        steps: Iterable[Any],
        *,
        config: AppConfig | None = None,
        cache: ResultCache | None = None,
        progress_callback: Callable[[str, dict[str, Any]], None] | None = None,
        sleep: Callable[[float], None] | None = None,
    ) -> AnalysisOrchestrator:
        cfg = config or fast_config
        orchestrator = AnalysisOrchestrator(
            cfg,
            registry=StepRegistry(steps),
            cache=cache if cache is not None else ResultCache(max_entries=cfg.cache.max_entries, clock=fake_clock),
            tracker=ActiveExecutionTracker(history_size=cfg.engine.status_history),
            progress_callback=progress_callback,
            sleep=sleep or (lambda _seconds: None),
        )
        created.append(orchestrator)
        return orchestrator

    yield _make

    for orchestrator in created:
        orchestrator.close()


# ============================================================================
# Project Fixtures
# ============================================================================

@pytest.fixture
def sample_project(tmp_path: Path) -> Path:
    """Create a small layered JavaScript/Python project."""
    root = tmp_path / "sample_project"
    (root / "src" / "domain").mkdir(parents=True)
    (root / "src" / "application").mkdir(parents=True)
    (root / "src" / "infrastructure").mkdir(parents=True)
    (root / "node_modules" / "left-pad").mkdir(parents=True)

    (root / "package.json").write_text(
        json.dumps(
            {
                "name": "sample",
                "dependencies": {"react": "^18.2.0", "express": "^4.18.0"},
                "devDependencies": {"jest": "^29.0.0", "vite": "^5.0.0"},
            }
        )
    )
    (root / "requirements.txt").write_text("fastapi==0.110.0\nuvicorn\n")
    (root / "src" / "domain" / "user.js").write_text("export class User {}\n// TODO: validation\n")
    (root / "src" / "application" / "service.py").write_text(
        'API_KEY = "abcdef123456"\n' + "x = 1\n" * 3 + "y = '" + "a" * 150 + "'\n"
    )
    (root / "src" / "infrastructure" / "db.ts").write_text("export const db = {};\n")
    (root / ".env").write_text("SECRET=shh\n")
    (root / "node_modules" / "left-pad" / "index.js").write_text("module.exports = () => {};\n")
    return root
