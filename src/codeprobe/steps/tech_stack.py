"""Tech stack detection step."""

from __future__ import annotations

import json
import re
from collections import Counter
from pathlib import Path
from typing import Any, Mapping

from ..errors import StepExecutionError
from ..models import AnalysisType
from .base import BaseStep

LANGUAGES: dict[str, str] = {
    ".py": "python",
    ".js": "javascript",
    ".jsx": "javascript",
    ".ts": "typescript",
    ".tsx": "typescript",
    ".go": "go",
    ".rs": "rust",
    ".java": "java",
    ".rb": "ruby",
    ".php": "php",
}
NODE_FRAMEWORKS: dict[str, str] = {
    "react": "react",
    "vue": "vue",
    "@angular/core": "angular",
    "svelte": "svelte",
    "next": "next",
    "express": "express",
    "@nestjs/core": "nestjs",
    "koa": "koa",
}
NODE_TOOLS = ("webpack", "vite", "jest", "eslint", "typescript", "babel", "playwright")
PYTHON_FRAMEWORKS = ("django", "flask", "fastapi", "starlette", "pydantic", "typer")
_REQUIREMENT_NAME = re.compile(r"^\s*([A-Za-z0-9_.\-]+)")


class TechStackStep(BaseStep):
    name = "tech_stack"
    analysis_type = AnalysisType.TECH_STACK
    description = "Detect languages, frameworks and tooling from manifests"

    def analyze(self, project: Path, options: Mapping[str, Any]) -> dict[str, Any]:
        languages: Counter[str] = Counter()
        frameworks: set[str] = set()
        tools: set[str] = set()

        for source in self._scanner.iter_files(project):
            language = LANGUAGES.get(source.suffix)
            if language:
                languages[language] += 1
            if source.path.name == "package.json":
                deps = self._node_dependencies(source.path)
                frameworks.update(label for name, label in NODE_FRAMEWORKS.items() if name in deps)
                tools.update(name for name in NODE_TOOLS if name in deps)
            elif source.path.name in {"requirements.txt", "pyproject.toml"}:
                text = self._scanner.read_small(source) or ""
                names = {m.group(1).lower() for m in map(_REQUIREMENT_NAME.match, text.splitlines()) if m}
                lowered = text.lower()
                frameworks.update(name for name in PYTHON_FRAMEWORKS if name in names or f'"{name}' in lowered)
            elif source.path.name == "Dockerfile":
                tools.add("docker")

        return {
            "languages": [name for name, _ in languages.most_common()],
            "frameworks": sorted(frameworks),
            "tools": sorted(tools),
        }

    def _node_dependencies(self, manifest: Path) -> set[str]:
        try:
            data = json.loads(manifest.read_text(encoding="utf-8"))
        except json.JSONDecodeError as exc:
            raise StepExecutionError(f"Invalid package.json at {manifest}: {exc}") from exc
        deps: set[str] = set()
        for section in ("dependencies", "devDependencies", "peerDependencies"):
            value = data.get(section)
            if isinstance(value, dict):
                deps.update(value)
        return deps

