"""Unit tests for the result cache."""

from pathlib import Path

import pytest

from codeprobe.analysis import ResultCache
from codeprobe.errors import CacheError
from codeprobe.models import AnalysisKey, AnalysisResult, AnalysisType

from conftest import FakeClock


def _key(name: str, atype: str = "tech_stack") -> AnalysisKey:
    return AnalysisKey.compute(Path("/projects") / name, atype)


def _result(atype: AnalysisType = AnalysisType.TECH_STACK) -> AnalysisResult:
    return AnalysisResult(analysis_type=atype, project_path=Path("/projects/x"), payload={"ok": True})


class TestResultCache:
    """Tests for ResultCache."""

    def test_get_missing_returns_none(self):
        cache = ResultCache()
        assert cache.get(_key("a")) is None
        assert cache.stats()["misses"] == 1

    def test_put_then_get_within_ttl(self):
        clock = FakeClock()
        cache = ResultCache(clock=clock)
        result = _result()
        cache.put(_key("a"), result, ttl_ms=1000)

        clock.advance(0.999)
        assert cache.get(_key("a")) is result

    def test_expired_entry_is_absent_and_dropped(self):
        clock = FakeClock()
        cache = ResultCache(clock=clock)
        cache.put(_key("a"), _result(), ttl_ms=1000)

        clock.advance(1.0)

        assert cache.get(_key("a")) is None
        assert len(cache) == 0
        assert cache.stats()["expirations"] == 1

    def test_put_overwrites_and_resets_expiry(self):
        clock = FakeClock()
        cache = ResultCache(clock=clock)
        first, second = _result(), _result()
        cache.put(_key("a"), first, ttl_ms=1000)
        clock.advance(0.8)
        cache.put(_key("a"), second, ttl_ms=1000)
        clock.advance(0.8)

        assert cache.get(_key("a")) is second

    def test_per_entry_ttl(self):
        clock = FakeClock()
        cache = ResultCache(clock=clock)
        cache.put(_key("cheap"), _result(), ttl_ms=600_000)
        cache.put(_key("costly", "security"), _result(AnalysisType.SECURITY), ttl_ms=1_800_000)

        clock.advance(601)

        assert cache.get(_key("cheap")) is None
        assert cache.get(_key("costly", "security")) is not None

    def test_invalidate_and_invalidate_all(self):
        cache = ResultCache()
        cache.put(_key("a"), _result(), ttl_ms=1000)
        cache.put(_key("b"), _result(), ttl_ms=1000)

        assert cache.invalidate(_key("a")) is True
        assert cache.invalidate(_key("a")) is False
        assert cache.invalidate_all() == 1
        assert len(cache) == 0

    def test_lru_eviction_at_capacity(self):
        cache = ResultCache(max_entries=2)
        cache.put(_key("a"), _result(), ttl_ms=1000)
        cache.put(_key("b"), _result(), ttl_ms=1000)
        cache.get(_key("a"))
        cache.put(_key("c"), _result(), ttl_ms=1000)

        assert _key("a") in cache
        assert _key("b") not in cache
        assert cache.stats()["evictions"] == 1

    def test_purge_expired(self):
        clock = FakeClock()
        cache = ResultCache(clock=clock)
        cache.put(_key("a"), _result(), ttl_ms=1000)
        cache.put(_key("b"), _result(), ttl_ms=5000)
        clock.advance(2)

        assert cache.purge_expired() == 1
        assert len(cache) == 1

    def test_hit_rate(self):
        cache = ResultCache()
        cache.put(_key("a"), _result(), ttl_ms=1000)
        cache.get(_key("a"))
        cache.get(_key("b"))

        assert cache.stats()["hit_rate"] == 0.5

    def test_non_positive_ttl_is_cache_error(self):
        with pytest.raises(CacheError):
            ResultCache().put(_key("a"), _result(), ttl_ms=0)

    def test_failing_clock_is_cache_error(self):
        def broken() -> float:
            raise OSError("clock gone")

        with pytest.raises(CacheError):
            ResultCache(clock=broken).get(_key("a"))

    def test_invalid_capacity(self):
        with pytest.raises(ValueError):
            ResultCache(max_entries=0)
