"""Performance footprint step."""

from __future__ import annotations

from pathlib import Path
from typing import Any, Mapping

from ..models import AnalysisType
from .base import BaseStep

BUNDLE_SUFFIXES = frozenset({".js", ".mjs", ".css"})
ASSET_SUFFIXES = frozenset({".png", ".jpg", ".jpeg", ".gif", ".svg", ".webp", ".mp4", ".woff", ".woff2"})


class PerformanceStep(BaseStep):
    name = "performance"
    analysis_type = AnalysisType.PERFORMANCE
    description = "Estimate shipped asset weight and flag oversized files"

    def analyze(self, project: Path, options: Mapping[str, Any]) -> dict[str, Any]:
        large_threshold = int(options.get("large_file_bytes", 500_000))

        bundle_bytes = 0
        asset_bytes = 0
        large_files: list[dict[str, Any]] = []
        for source in self._scanner.iter_files(project):
            if source.suffix in BUNDLE_SUFFIXES:
                bundle_bytes += source.size
            elif source.suffix in ASSET_SUFFIXES:
                asset_bytes += source.size
            if source.size >= large_threshold:
                large_files.append({"file": source.relative, "bytes": source.size})

        large_files.sort(key=lambda item: item["bytes"], reverse=True)
        optimizations: list[str] = []
        if asset_bytes > 5 * large_threshold:
            optimizations.append("Compress or lazy-load static assets.")
        if large_files:
            optimizations.append("Review oversized files for splitting or exclusion from builds.")
        return {
            "metrics": {
                "bundle_bytes": bundle_bytes,
                "asset_bytes": asset_bytes,
                "large_file_count": len(large_files),
            },
            "large_files": large_files[:25],
            "optimizations": optimizations,
        }
