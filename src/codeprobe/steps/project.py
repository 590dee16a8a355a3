"""Project structure step."""

from __future__ import annotations

from collections import Counter
from pathlib import Path
from typing import Any, Mapping

from ..models import AnalysisType
from .base import BaseStep

MANIFESTS: dict[str, str] = {
    "package.json": "nodejs",
    "pyproject.toml": "python",
    "setup.py": "python",
    "requirements.txt": "python",
    "go.mod": "go",
    "Cargo.toml": "rust",
    "pom.xml": "java",
    "build.gradle": "java",
    "Gemfile": "ruby",
    "composer.json": "php",
}


class ProjectStructureStep(BaseStep):
    name = "project_structure"
    analysis_type = AnalysisType.PROJECT
    description = "Summarize the project tree: size, file types and manifests"

    def analyze(self, project: Path, options: Mapping[str, Any]) -> dict[str, Any]:
        max_listed = int(options.get("max_listed_files", 200))
        extensions: Counter[str] = Counter()
        directories: set[str] = set()
        manifests: list[str] = []
        files: list[str] = []
        total_bytes = 0

        for source in self._scanner.iter_files(project):
            total_bytes += source.size
            extensions[source.suffix or "<none>"] += 1
            parent = Path(source.relative).parent.as_posix()
            if parent != ".":
                directories.add(parent)
            if source.path.name in MANIFESTS:
                manifests.append(source.relative)
            if len(files) < max_listed:
                files.append(source.relative)

        file_count = sum(extensions.values())
        project_types = sorted({MANIFESTS[Path(m).name] for m in manifests if "/" not in m})
        return {
            "name": project.name,
            "project_types": project_types or ["unknown"],
            "structure": {
                "files": file_count,
                "directories": len(directories),
                "total_bytes": total_bytes,
                "top_level": sorted(p.name for p in project.iterdir()),
            },
            "file_types": dict(extensions.most_common()),
            "manifests": sorted(manifests),
            "files": files,
            "files_truncated": file_count > len(files),
        }
