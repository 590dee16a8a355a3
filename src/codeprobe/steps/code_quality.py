"""Code quality step."""

from __future__ import annotations

from pathlib import Path
from typing import Any, Mapping

from ..models import AnalysisType
from .base import BaseStep

SOURCE_SUFFIXES = frozenset({".py", ".js", ".jsx", ".ts", ".tsx", ".go", ".rs", ".java", ".rb", ".php", ".c", ".h", ".cpp"})
MARKERS = ("TODO", "FIXME", "XXX", "HACK")


class CodeQualityStep(BaseStep):
    name = "code_quality"
    analysis_type = AnalysisType.CODE_QUALITY
    description = "Collect line-level hygiene observations for source files"

    def analyze(self, project: Path, options: Mapping[str, Any]) -> dict[str, Any]:
        max_line_length = int(options.get("max_line_length", 120))
        max_file_lines = int(options.get("max_file_lines", 1000))

        issues: list[dict[str, Any]] = []
        total_lines = 0
        source_files = 0
        markers = {marker: 0 for marker in MARKERS}
        largest: list[tuple[int, str]] = []

        for source in self._scanner.iter_files(project):
            if source.suffix not in SOURCE_SUFFIXES:
                continue
            text = self._scanner.read_small(source)
            if text is None:
                continue
            source_files += 1
            lines = text.splitlines()
            total_lines += len(lines)
            largest.append((len(lines), source.relative))

            for lineno, line in enumerate(lines, start=1):
                if len(line) > max_line_length:
                    issues.append({"file": source.relative, "line": lineno, "rule": "long_line", "length": len(line)})
                for marker in MARKERS:
                    if marker in line:
                        markers[marker] += 1
            if len(lines) > max_file_lines:
                issues.append({"file": source.relative, "rule": "large_file", "lines": len(lines)})

        largest.sort(reverse=True)
        return {
            "source_files": source_files,
            "metrics": {
                "total_lines": total_lines,
                "average_file_lines": round(total_lines / source_files, 1) if source_files else 0.0,
                "markers": markers,
            },
            "largest_files": [{"file": name, "lines": count} for count, name in largest[:10]],
            "issues": issues[:500],
            "issue_count": len(issues),
        }
