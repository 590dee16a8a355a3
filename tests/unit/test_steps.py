"""Unit tests for the reference analysis steps."""

from pathlib import Path

import pytest

from codeprobe.config import ScanSettings
from codeprobe.errors import StepExecutionError
from codeprobe.models import AnalysisType
from codeprobe.steps import (
    AnalysisStep,
    ArchitectureStep,
    CodeQualityStep,
    PerformanceStep,
    ProjectScanner,
    ProjectStructureStep,
    SecurityStep,
    TechStackStep,
    default_steps,
)


class TestProjectScanner:
    """Tests for the shared project walker."""

    def test_skips_ignored_directories(self, sample_project: Path):
        files = [source.relative for source in ProjectScanner().iter_files(sample_project)]

        assert "package.json" in files
        assert not any(name.startswith("node_modules/") for name in files)

    def test_respects_file_cap(self, sample_project: Path):
        scanner = ProjectScanner(ScanSettings(max_files=2))
        assert len(list(scanner.iter_files(sample_project))) == 2

    def test_missing_project_raises(self, tmp_path: Path):
        with pytest.raises(StepExecutionError):
            list(ProjectScanner().iter_files(tmp_path / "missing"))

    def test_file_is_not_a_project(self, tmp_path: Path):
        target = tmp_path / "file.txt"
        target.write_text("x")
        with pytest.raises(StepExecutionError):
            ProjectScanner().ensure_project(target)


def test_default_steps_satisfy_protocol():
    steps = default_steps()

    assert [step.analysis_type for step in steps] == list(AnalysisType)
    assert all(isinstance(step, AnalysisStep) for step in steps)
    assert all(step.metadata.description for step in steps)


def test_project_structure(sample_project: Path):
    payload = ProjectStructureStep().execute(sample_project, {})

    assert payload["name"] == "sample_project"
    assert set(payload["project_types"]) == {"nodejs", "python"}
    assert payload["structure"]["files"] == 6
    assert "package.json" in payload["manifests"]
    assert payload["file_types"][".json"] == 1


def test_code_quality_reports_long_lines_and_markers(sample_project: Path):
    payload = CodeQualityStep().execute(sample_project, {"max_line_length": 100})

    rules = {issue["rule"] for issue in payload["issues"]}
    assert "long_line" in rules
    assert payload["metrics"]["markers"]["TODO"] == 1
    assert payload["source_files"] == 3


def test_security_flags_env_file_and_hardcoded_key(sample_project: Path):
    payload = SecurityStep().execute(sample_project, {})

    rules = {finding["rule"] for finding in payload["vulnerabilities"]}
    assert rules == {"sensitive_file", "hardcoded_secret"}
    assert payload["risk_level"] == "high"
    assert len(payload["recommendations"]) == 2


def test_security_clean_project(tmp_path: Path):
    (tmp_path / "main.py").write_text("print('hello')\n")
    payload = SecurityStep().execute(tmp_path, {})

    assert payload["risk_level"] == "low"
    assert payload["vulnerabilities"] == []


def test_performance_flags_large_files(sample_project: Path):
    (sample_project / "bundle.js").write_text("x" * 2048)
    payload = PerformanceStep().execute(sample_project, {"large_file_bytes": 1024})

    assert payload["metrics"]["large_file_count"] == 1
    assert payload["large_files"][0]["file"] == "bundle.js"
    assert payload["metrics"]["bundle_bytes"] >= 2048


def test_architecture_detects_layers(sample_project: Path):
    payload = ArchitectureStep().execute(sample_project, {})

    assert {"domain", "application", "infrastructure"} <= set(payload["layers"])
    assert "layered" in payload["patterns"]
    assert payload["modules"]["src"] == 3


def test_tech_stack_detects_frameworks(sample_project: Path):
    payload = TechStackStep().execute(sample_project, {})

    assert "react" in payload["frameworks"]
    assert "express" in payload["frameworks"]
    assert "fastapi" in payload["frameworks"]
    assert {"jest", "vite"} <= set(payload["tools"])
    assert set(payload["languages"]) == {"javascript", "python", "typescript"}


def test_tech_stack_invalid_manifest(tmp_path: Path):
    (tmp_path / "package.json").write_text("{not json")

    with pytest.raises(StepExecutionError):
        TechStackStep().execute(tmp_path, {})
