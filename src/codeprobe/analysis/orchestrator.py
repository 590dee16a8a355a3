"""Analysis orchestration: caching, single-flight, retries and fan-out."""

from __future__ import annotations

import logging
import threading
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Iterable, Mapping

from ..config import AppConfig, ExecutionPolicy
from ..errors import (
    AnalysisError,
    AnalysisExecutionError,
    AnalysisTimeoutError,
    CacheError,
    InvalidOptionsError,
    NotFoundError,
    StepExecutionError,
    StepNotFound,
    StepTimeoutError,
    TrackerError,
)
from ..models import (
    COMPREHENSIVE_TYPES,
    AnalysisKey,
    AnalysisOptions,
    AnalysisRecord,
    AnalysisRequest,
    AnalysisResult,
    AnalysisStatus,
    AnalysisType,
    ComprehensiveResult,
    Outcome,
)
from ..steps import AnalysisStep, step_metadata
from .cache import ResultCache
from .registry import StepRegistry, build_default_registry
from .tracker import ActiveExecutionTracker, Role, Subscription

_LOGGER = logging.getLogger(__name__)

ProgressCallback = Callable[[str, dict[str, Any]], None]
OptionsLike = AnalysisOptions | Mapping[str, Any] | None


class _Attempt:
    """One step invocation, captured for the flight thread that joins it."""

    def __init__(self, step: AnalysisStep, project_path: Path, options: dict[str, Any]) -> None:
        self._step = step
        self._project_path = project_path
        self._options = options
        self.payload: Any = None
        self.error: Exception | None = None
        self.finished = False

    def run(self) -> None:
        try:
            self.payload = self._step.execute(self._project_path, self._options)
        except Exception as exc:  # handed back to the flight thread
            self.error = exc
        self.finished = True


class AnalysisHandle:
    """Caller-side handle on a submitted analysis.

    Handles for cache hits and immediate failures are already resolved.
    Cancelling a pending handle withdraws only this caller; the execution
    keeps running for other subscribers and still caches its result.
    """

    def __init__(
        self,
        *,
        key: AnalysisKey | None,
        role: Role | None = None,
        subscription: Subscription | None = None,
        outcome: Outcome | None = None,
    ) -> None:
        self.key = key
        self.role = role
        self._subscription = subscription
        self._outcome = outcome

    @classmethod
    def resolved(cls, key: AnalysisKey | None, outcome: Outcome) -> "AnalysisHandle":
        return cls(key=key, outcome=outcome)

    @property
    def done(self) -> bool:
        if self._outcome is not None:
            return True
        return self._subscription is not None and self._subscription.done

    def wait(self, timeout: float | None = None) -> Outcome:
        if self._outcome is not None:
            return self._outcome
        if self._subscription is None:
            raise TrackerError(f"Handle for {self.key} has neither an outcome nor a subscription")
        return self._subscription.wait(timeout)

    def cancel(self) -> bool:
        if self._subscription is None or self._subscription.done:
            return False
        return self._subscription.cancel()


class AnalysisOrchestrator:
    """Coordinate analysis steps with caching, deduplication and retries."""

    def __init__(
        self,
        config: AppConfig | None = None,
        *,
        registry: StepRegistry | None = None,
        cache: ResultCache | None = None,
        tracker: ActiveExecutionTracker | None = None,
        progress_callback: ProgressCallback | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._config = config or AppConfig()
        self._registry = registry if registry is not None else build_default_registry(self._config.analysis.scan)
        self._cache = cache if cache is not None else ResultCache(max_entries=self._config.cache.max_entries)
        self._tracker = tracker if tracker is not None else ActiveExecutionTracker(
            history_size=self._config.engine.status_history
        )
        self._progress_callback = progress_callback
        self._sleep = sleep

        # One thread per flight and per step attempt; none are shared across keys.
        self._flights: set[threading.Thread] = set()
        self._flights_lock = threading.Lock()
        self._closed = False

    @property
    def config(self) -> AppConfig:
        return self._config

    @property
    def registry(self) -> StepRegistry:
        return self._registry

    @property
    def cache(self) -> ResultCache:
        return self._cache

    @property
    def tracker(self) -> ActiveExecutionTracker:
        return self._tracker

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------

    def submit_analysis(
        self,
        project_path: Path | str,
        analysis_type: AnalysisType | str,
        options: OptionsLike = None,
    ) -> AnalysisHandle:
        """Start (or join) an analysis without waiting for it."""

        try:
            step = self._registry.resolve(analysis_type)
        except StepNotFound as exc:
            _LOGGER.warning("No step for analysis type %s", analysis_type)
            return AnalysisHandle.resolved(None, Outcome.failure(exc))

        atype = AnalysisType.parse(analysis_type)
        try:
            opts = AnalysisOptions.from_mapping(options)
            policy = self._config.policy_for(atype, opts)
        except InvalidOptionsError as exc:
            exc.analysis_type = atype.value
            _LOGGER.warning("Rejected options for %s analysis: %s", atype.value, exc.message)
            return AnalysisHandle.resolved(None, Outcome.failure(exc))

        request = AnalysisRequest(project_path=Path(project_path), analysis_type=atype, options=opts)
        key = request.key

        if policy.use_cache:
            cached = self._cache_get(key)
            if cached is not None:
                _LOGGER.debug("Cache hit for %s", key)
                self._emit_progress("cache_hit", {"key": str(key), "analysis_type": atype.value})
                return AnalysisHandle.resolved(key, Outcome.success(cached, cached=True))

        membership = self._tracker.begin_or_join(key, request)
        if membership.is_leader:
            self._start_flight(key, request, step, policy)
        else:
            _LOGGER.debug("Joined in-flight analysis %s", key)
        return AnalysisHandle(key=key, role=membership.role, subscription=membership.subscription)

    def execute_analysis(
        self,
        project_path: Path | str,
        analysis_type: AnalysisType | str,
        options: OptionsLike = None,
    ) -> Outcome:
        """Run one analysis type, returning a cached, joined or fresh outcome."""

        return self.submit_analysis(project_path, analysis_type, options).wait()

    def execute_multiple_analyses(
        self,
        project_path: Path | str,
        analysis_types: Iterable[AnalysisType | str],
        options: OptionsLike = None,
        *,
        timeout_ms: int | None = None,
    ) -> dict[AnalysisType | str, Outcome]:
        """Run several analysis types concurrently with per-type isolation.

        Every type is submitted before any is awaited, so they proceed in
        parallel. A failing type only affects its own entry. When
        ``timeout_ms`` is given, types still pending at the deadline are
        reported as timeouts and their handles are cancelled; the underlying
        executions continue and cache their results.
        """

        handles: dict[AnalysisType | str, AnalysisHandle] = {}
        for raw_type in analysis_types:
            try:
                label: AnalysisType | str = AnalysisType.parse(raw_type)
            except ValueError:
                label = str(raw_type)
            if label in handles:
                continue
            handles[label] = self.submit_analysis(project_path, label, options)

        deadline = None if timeout_ms is None else time.monotonic() + timeout_ms / 1000.0
        outcomes: dict[AnalysisType | str, Outcome] = {}
        for label, handle in handles.items():
            remaining = None if deadline is None else max(0.0, deadline - time.monotonic())
            try:
                outcomes[label] = handle.wait(remaining)
            except TimeoutError as exc:
                handle.cancel()
                name = label.value if isinstance(label, AnalysisType) else label
                _LOGGER.warning("Analysis %s did not finish within %sms", name, timeout_ms)
                outcomes[label] = Outcome.failure(
                    AnalysisTimeoutError(
                        f"{name} analysis did not finish within {timeout_ms}ms",
                        analysis_type=name,
                        key=str(handle.key) if handle.key else None,
                        cause=exc,
                    )
                )
        return outcomes

    def perform_comprehensive_analysis(
        self,
        project_path: Path | str,
        options: OptionsLike = None,
    ) -> ComprehensiveResult:
        """Fan out over every supported analysis type for one project."""

        _LOGGER.info("Starting comprehensive analysis: %s", project_path)
        result = ComprehensiveResult(project_path=Path(project_path))
        outcomes = self.execute_multiple_analyses(
            project_path,
            COMPREHENSIVE_TYPES,
            options,
            timeout_ms=self._config.engine.comprehensive_timeout_ms,
        )
        result.per_type = {AnalysisType.parse(label): outcome for label, outcome in outcomes.items()}
        result.completed_at = datetime.now(timezone.utc)
        _LOGGER.info(
            "Comprehensive analysis finished for %s: %s",
            project_path,
            result.summary,
        )
        return result

    def get_status(self, key: AnalysisKey | str) -> AnalysisRecord:
        try:
            parsed = AnalysisKey.parse(key)
        except ValueError as exc:
            raise NotFoundError(f"Analysis {key} not found", key=str(key), cause=exc) from exc
        record = self._tracker.snapshot(parsed)
        if record is None:
            raise NotFoundError(
                f"Analysis {key} not found",
                key=str(key),
                analysis_type=parsed.analysis_type.value,
            )
        return record

    def retry_analysis(self, key: AnalysisKey | str) -> Outcome:
        """Drop any cached result for ``key`` and execute it again.

        While the key is still in flight the caller joins that execution,
        since a second concurrent run for the same key is never started.
        """

        record = self.get_status(key)
        parsed = record.key
        if record.status in (AnalysisStatus.PENDING, AnalysisStatus.RUNNING):
            _LOGGER.info("Retry requested for in-flight analysis %s; joining", parsed)
        else:
            _LOGGER.info("Retrying analysis %s (previous status %s)", parsed, record.status.value)
            self._cache.invalidate(parsed)
        request = record.request
        return self.execute_analysis(
            request.project_path,
            request.analysis_type,
            request.options.with_bypass(),
        )

    def clear_cache(self, key: AnalysisKey | str | None = None) -> int:
        if key is None:
            count = self._cache.invalidate_all()
        else:
            count = int(self._cache.invalidate(AnalysisKey.parse(key)))
        _LOGGER.info("Cache cleared%s", f" for {key}" if key is not None else "")
        return count

    def get_stats(self) -> dict[str, Any]:
        records = self._tracker.records()
        counts = {status.value: 0 for status in AnalysisStatus}
        for record in records:
            counts[record.status.value] += 1
        return {
            "active": counts[AnalysisStatus.PENDING.value] + counts[AnalysisStatus.RUNNING.value],
            "completed": counts[AnalysisStatus.COMPLETED.value],
            "failed": counts[AnalysisStatus.FAILED.value],
            "total": len(records),
            "cache": self._cache.stats(),
            "steps": self._registry.stats(),
        }

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        with self._flights_lock:
            flights = list(self._flights)
        # Abandoned step attempts are daemon threads and are not joined.
        for thread in flights:
            thread.join()

    def __enter__(self) -> "AnalysisOrchestrator":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    # ------------------------------------------------------------------
    # Flight execution
    # ------------------------------------------------------------------

    def _start_flight(
        self,
        key: AnalysisKey,
        request: AnalysisRequest,
        step: AnalysisStep,
        policy: ExecutionPolicy,
    ) -> None:
        """Run the leader's retry loop on a dedicated thread.

        The thread outlives the leader's handle, so a caller that stops
        waiting never stops the execution.
        """

        with self._flights_lock:
            if self._closed:
                error = AnalysisExecutionError(
                    "Orchestrator is closed",
                    analysis_type=request.analysis_type.value,
                    key=str(key),
                )
                thread = None
            else:
                thread = threading.Thread(
                    target=self._run_flight,
                    args=(key, request, step, policy),
                    name=f"codeprobe-flight-{key.analysis_type.value}-{key.short}",
                    daemon=True,
                )
                self._flights.add(thread)
        if thread is None:
            self._publish(key, Outcome.failure(error))
            return
        thread.start()

    def _run_flight(
        self,
        key: AnalysisKey,
        request: AnalysisRequest,
        step: AnalysisStep,
        policy: ExecutionPolicy,
    ) -> None:
        try:
            try:
                outcome = self._execute_with_retries(key, request, step, policy)
            except Exception as exc:  # pragma: no cover - orchestration bug guard
                _LOGGER.exception("Flight %s crashed", key)
                outcome = Outcome.failure(
                    AnalysisExecutionError(
                        f"Internal orchestration failure: {exc}",
                        analysis_type=request.analysis_type.value,
                        key=str(key),
                        cause=exc,
                    )
                )
            self._publish(key, outcome)
        finally:
            with self._flights_lock:
                self._flights.discard(threading.current_thread())

    def _execute_with_retries(
        self,
        key: AnalysisKey,
        request: AnalysisRequest,
        step: AnalysisStep,
        policy: ExecutionPolicy,
    ) -> Outcome:
        atype = request.analysis_type
        self._tracker_call(self._tracker.mark_running, key)
        # A flight that finished between the caller's cache check and its
        # begin_or_join has already cached the result.
        if policy.use_cache:
            cached = self._cache_get(key)
            if cached is not None:
                return Outcome.success(cached, cached=True)

        self._emit_progress(
            "analysis_started",
            {"key": str(key), "analysis_type": atype.value, "project_path": str(request.project_path)},
        )
        _LOGGER.info("Starting %s analysis: %s", atype.value, request.project_path)

        last_error: StepExecutionError | StepTimeoutError | None = None
        for attempt in range(1, policy.max_attempts + 1):
            self._tracker_call(self._tracker.record_attempt, key)
            started = time.perf_counter()
            try:
                payload = self._run_attempt(step, request, policy)
            except (StepExecutionError, StepTimeoutError) as exc:
                last_error = exc
            else:
                duration_ms = (time.perf_counter() - started) * 1000.0
                self._registry.record_execution(atype, duration_ms, failed=False)
                result = AnalysisResult(
                    analysis_type=atype,
                    project_path=request.project_path,
                    payload=payload,
                    duration_ms=round(duration_ms, 3),
                    attempt_count=attempt,
                    step_name=step_metadata(step).name,
                    metadata={"request_id": request.request_id, "key": str(key)},
                )
                self._cache_put(key, result, policy.ttl_ms)
                _LOGGER.info("%s analysis completed in %.1fms", atype.value, duration_ms)
                self._emit_progress(
                    "analysis_completed",
                    {"key": str(key), "analysis_type": atype.value, "attempts": attempt},
                )
                return Outcome.success(result)

            duration_ms = (time.perf_counter() - started) * 1000.0
            self._registry.record_execution(atype, duration_ms, failed=True)
            _LOGGER.warning(
                "%s analysis attempt %s/%s failed: %s",
                atype.value,
                attempt,
                policy.max_attempts,
                last_error,
            )
            self._emit_progress(
                "attempt_failed",
                {
                    "key": str(key),
                    "analysis_type": atype.value,
                    "attempt": attempt,
                    "error": str(last_error),
                },
            )
            if attempt < policy.max_attempts:
                self._sleep(policy.backoff_ms(attempt) / 1000.0)

        error = self._final_error(key, atype, policy.max_attempts, last_error)
        _LOGGER.error("%s analysis failed for %s: %s", atype.value, request.project_path, error.message)
        self._emit_progress("analysis_failed", {"key": str(key), **error.to_dict()})
        return Outcome.failure(error)

    def _run_attempt(
        self,
        step: AnalysisStep,
        request: AnalysisRequest,
        policy: ExecutionPolicy,
    ) -> Mapping[str, Any]:
        attempt = _Attempt(step, request.project_path, dict(request.options.extra))
        worker = threading.Thread(
            target=attempt.run,
            name=f"codeprobe-step-{request.analysis_type.value}",
            daemon=True,
        )
        worker.start()
        worker.join(policy.timeout_ms / 1000.0)
        if worker.is_alive():
            # Threads cannot be interrupted; the attempt is abandoned.
            raise StepTimeoutError(
                f"{request.analysis_type.value} step exceeded {policy.timeout_ms}ms",
                timeout_ms=policy.timeout_ms,
            )

        if attempt.error is not None:
            if isinstance(attempt.error, StepExecutionError):
                raise attempt.error
            raise StepExecutionError(f"{type(attempt.error).__name__}: {attempt.error}") from attempt.error
        if not attempt.finished:
            raise StepExecutionError(f"{request.analysis_type.value} step exited without a result")
        payload = attempt.payload
        if not isinstance(payload, Mapping):
            raise StepExecutionError(
                f"{request.analysis_type.value} step returned {type(payload).__name__}, expected a mapping"
            )
        return payload

    def _final_error(
        self,
        key: AnalysisKey,
        atype: AnalysisType,
        attempts: int,
        last_error: StepExecutionError | StepTimeoutError | None,
    ) -> AnalysisError:
        error_cls: type[AnalysisError] = (
            AnalysisTimeoutError if isinstance(last_error, StepTimeoutError) else AnalysisExecutionError
        )
        return error_cls(
            f"{atype.value} analysis failed after {attempts} attempt(s): {last_error}",
            analysis_type=atype.value,
            key=str(key),
            attempt_count=attempts,
            cause=last_error,
        )

    # ------------------------------------------------------------------
    # Fault isolation for cache and tracker
    # ------------------------------------------------------------------

    def _cache_get(self, key: AnalysisKey) -> AnalysisResult | None:
        try:
            return self._cache.get(key)
        except CacheError:
            _LOGGER.exception("Cache read failed for %s; treating as absent", key)
            return None

    def _cache_put(self, key: AnalysisKey, result: AnalysisResult, ttl_ms: int) -> None:
        if not self._config.cache.enabled:
            return
        try:
            self._cache.put(key, result, ttl_ms)
        except CacheError:
            _LOGGER.exception("Cache write failed for %s; result not cached", key)

    def _tracker_call(self, method: Callable[[AnalysisKey], Any], key: AnalysisKey) -> None:
        try:
            method(key)
        except TrackerError:
            _LOGGER.exception("Tracker fault for %s", key)

    def _publish(self, key: AnalysisKey, outcome: Outcome) -> None:
        try:
            self._tracker.publish(key, outcome)
        except TrackerError:
            _LOGGER.exception("Failed to publish outcome for %s", key)

    def _emit_progress(self, event: str, payload: dict[str, Any] | None = None) -> None:
        callback = self._progress_callback
        if not callback:
            return
        try:
            callback(event, payload or {})
        except Exception:  # pragma: no cover - defensive hook
            _LOGGER.exception("Progress callback failed for event %s", event)


def build_orchestrator(
    config: AppConfig | None = None,
    *,
    steps: Iterable[AnalysisStep] | None = None,
    progress_callback: ProgressCallback | None = None,
) -> AnalysisOrchestrator:
    """Wire an orchestrator with its own registry, cache and tracker."""

    config = config or AppConfig()
    registry = StepRegistry(steps) if steps is not None else build_default_registry(config.analysis.scan)
    return AnalysisOrchestrator(
        config,
        registry=registry,
        cache=ResultCache(max_entries=config.cache.max_entries),
        tracker=ActiveExecutionTracker(history_size=config.engine.status_history),
        progress_callback=progress_callback,
    )
