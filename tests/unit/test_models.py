"""Unit tests for the analysis data model."""

from pathlib import Path
from unittest.mock import patch

import pytest

from codeprobe.errors import AnalysisExecutionError, InvalidOptionsError
from codeprobe.models import (
    AnalysisKey,
    AnalysisOptions,
    AnalysisResult,
    AnalysisType,
    ComprehensiveResult,
    Outcome,
)


class TestAnalysisType:
    """Tests for AnalysisType parsing."""

    @pytest.mark.parametrize(
        "raw, expected",
        [
            ("tech_stack", AnalysisType.TECH_STACK),
            ("techStack", AnalysisType.TECH_STACK),
            ("techstack", AnalysisType.TECH_STACK),
            ("code-quality", AnalysisType.CODE_QUALITY),
            ("codeQuality", AnalysisType.CODE_QUALITY),
            ("SECURITY", AnalysisType.SECURITY),
            (AnalysisType.PROJECT, AnalysisType.PROJECT),
        ],
    )
    def test_parse_accepts_legacy_spellings(self, raw, expected):
        assert AnalysisType.parse(raw) is expected

    def test_parse_rejects_unknown(self):
        with pytest.raises(ValueError):
            AnalysisType.parse("dependency")


class TestAnalysisOptions:
    """Tests for AnalysisOptions normalization."""

    def test_from_mapping_splits_control_and_extra(self):
        opts = AnalysisOptions.from_mapping(
            {"timeoutMs": 100, "max_attempts": 3, "bypassCache": True, "depth": 2}
        )

        assert opts.timeout_ms == 100
        assert opts.max_attempts == 3
        assert opts.bypass_cache is True
        assert dict(opts.extra) == {"depth": 2}

    def test_from_mapping_rejects_non_integer_controls(self):
        with pytest.raises(InvalidOptionsError):
            AnalysisOptions.from_mapping({"timeoutMs": "abc"})
        with pytest.raises(InvalidOptionsError):
            AnalysisOptions.from_mapping({"max_attempts": True})

    def test_from_mapping_none_gives_defaults(self):
        opts = AnalysisOptions.from_mapping(None)
        assert opts.timeout_ms is None
        assert opts.bypass_cache is False

    def test_normalized_is_order_independent(self):
        a = AnalysisOptions(extra={"b": [1, 2], "a": {"y": 1, "x": 2}})
        b = AnalysisOptions(extra={"a": {"x": 2, "y": 1}, "b": [1, 2]})
        assert a.normalized() == b.normalized()


class TestAnalysisKey:
    """Tests for AnalysisKey identity."""

    def test_same_inputs_give_same_key(self, tmp_path: Path):
        first = AnalysisKey.compute(tmp_path, "security", AnalysisOptions(extra={"x": 1}))
        second = AnalysisKey.compute(str(tmp_path), AnalysisType.SECURITY, AnalysisOptions(extra={"x": 1}))
        assert first == second

    def test_control_options_do_not_split_identity(self, tmp_path: Path):
        plain = AnalysisKey.compute(tmp_path, "security")
        tuned = AnalysisKey.compute(
            tmp_path,
            "security",
            AnalysisOptions(timeout_ms=5, ttl_ms=5, max_attempts=4, bypass_cache=True),
        )
        assert plain == tuned

    def test_type_and_options_split_identity(self, tmp_path: Path):
        base = AnalysisKey.compute(tmp_path, "security")
        assert base != AnalysisKey.compute(tmp_path, "performance")
        assert base != AnalysisKey.compute(tmp_path, "security", AnalysisOptions(extra={"deep": True}))
        assert base != AnalysisKey.compute(tmp_path / "other", "security")

    def test_path_is_normalized_without_filesystem_access(self, tmp_path: Path):
        with patch("pathlib.Path.resolve", side_effect=AssertionError("filesystem access")):
            dotted = AnalysisKey.compute(tmp_path / "a" / ".." / "missing", "security")
            direct = AnalysisKey.compute(str(tmp_path / "missing"), "security")

        assert dotted == direct

    def test_string_round_trip(self, tmp_path: Path):
        key = AnalysisKey.compute(tmp_path, "tech_stack")
        assert str(key).startswith("tech_stack:")
        assert AnalysisKey.parse(str(key)) == key

    def test_parse_rejects_malformed(self):
        with pytest.raises(ValueError):
            AnalysisKey.parse("nodigest")


class TestOutcome:
    """Tests for the discriminated Outcome."""

    def _result(self) -> AnalysisResult:
        return AnalysisResult(
            analysis_type=AnalysisType.PROJECT,
            project_path=Path("/tmp/p"),
            payload={"files": 1},
        )

    def test_requires_exactly_one_side(self):
        with pytest.raises(ValueError):
            Outcome()
        with pytest.raises(ValueError):
            Outcome(result=self._result(), error=AnalysisExecutionError("x"))

    def test_unwrap_raises_error(self):
        error = AnalysisExecutionError("boom", attempt_count=2)
        outcome = Outcome.failure(error)

        assert not outcome.ok
        with pytest.raises(AnalysisExecutionError):
            outcome.unwrap()
        assert outcome.to_dict()["error"]["kind"] == "execution_failed"
        assert outcome.to_dict()["error"]["retryable"] is False

    def test_success_to_dict(self):
        outcome = Outcome.success(self._result(), cached=True)
        data = outcome.to_dict()

        assert data["ok"] is True
        assert data["cached"] is True
        assert data["result"]["analysis_type"] == "project"


def test_comprehensive_summary_counts_outcomes():
    ok = Outcome.success(
        AnalysisResult(analysis_type=AnalysisType.PROJECT, project_path=Path("/p"), payload={})
    )
    bad = Outcome.failure(AnalysisExecutionError("nope"))
    result = ComprehensiveResult(
        project_path=Path("/p"),
        per_type={AnalysisType.PROJECT: ok, AnalysisType.SECURITY: bad},
    )

    assert result.summary == {"total": 2, "successful": 1, "failed": 1}
    assert set(result.successes()) == {AnalysisType.PROJECT}
    assert set(result.failures()) == {AnalysisType.SECURITY}
