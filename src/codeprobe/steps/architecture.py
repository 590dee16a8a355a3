"""Architecture layout step."""

from __future__ import annotations

from collections import Counter
from pathlib import Path
from typing import Any, Mapping

from ..models import AnalysisType
from .base import BaseStep

LAYER_NAMES: dict[str, str] = {
    "domain": "domain",
    "application": "application",
    "infrastructure": "infrastructure",
    "presentation": "presentation",
    "api": "presentation",
    "controllers": "presentation",
    "views": "presentation",
    "routes": "presentation",
    "services": "application",
    "models": "domain",
    "entities": "domain",
    "repositories": "infrastructure",
    "adapters": "infrastructure",
}


class ArchitectureStep(BaseStep):
    name = "architecture"
    analysis_type = AnalysisType.ARCHITECTURE
    description = "Infer layers and structural patterns from directory names"

    def analyze(self, project: Path, options: Mapping[str, Any]) -> dict[str, Any]:
        layers: Counter[str] = Counter()
        modules: Counter[str] = Counter()
        dir_names: set[str] = set()
        for source in self._scanner.iter_files(project):
            parts = Path(source.relative).parts[:-1]
            if parts:
                modules[parts[0]] += 1
            dir_names.update(part.lower() for part in parts)
            for part in parts:
                layer = LAYER_NAMES.get(part.lower())
                if layer:
                    layers[layer] += 1

        patterns: list[str] = []
        if {"domain", "application", "infrastructure"} <= set(layers):
            patterns.append("layered")
        if {"controllers", "models", "views"} <= dir_names:
            patterns.append("mvc")
        return {
            "layers": dict(sorted(layers.items())),
            "patterns": patterns,
            "modules": dict(modules.most_common(20)),
            "recommendations": [] if patterns else ["No conventional layering detected."],
        }
