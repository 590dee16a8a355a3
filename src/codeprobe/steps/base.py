"""Step interface and shared helpers for analysis steps."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Iterator, Mapping, Protocol, runtime_checkable

from ..config import ScanSettings
from ..errors import StepExecutionError
from ..models import AnalysisType

_LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class StepMetadata:
    name: str
    analysis_type: AnalysisType
    description: str = ""
    version: str = "1.0.0"
    category: str = "analysis"


@runtime_checkable
class AnalysisStep(Protocol):
    """Pluggable unit of analysis work.

    Implementations must be idempotent and only read from the project. The
    returned mapping becomes the ``payload`` of the analysis result. Domain
    failures are reported by raising :class:`StepExecutionError`.
    """

    name: str
    analysis_type: AnalysisType

    def execute(self, project_path: Path, options: Mapping[str, Any]) -> Mapping[str, Any]:
        ...


def step_metadata(step: AnalysisStep) -> StepMetadata:
    """Return declared metadata, or a minimal record built from the step's fields."""

    declared = getattr(step, "metadata", None)
    if isinstance(declared, StepMetadata):
        return declared
    return StepMetadata(name=step.name, analysis_type=step.analysis_type)


@dataclass(frozen=True, slots=True)
class SourceFile:
    path: Path
    relative: str
    size: int

    @property
    def suffix(self) -> str:
        return self.path.suffix.lower()

    def read_text(self) -> str:
        return self.path.read_text(encoding="utf-8", errors="replace")


@dataclass(slots=True)
class ProjectScanner:
    """Read-only walk over a project tree shared by the reference steps."""

    settings: ScanSettings = field(default_factory=ScanSettings)

    def ensure_project(self, project_path: Path) -> Path:
        project = Path(project_path).expanduser()
        if not project.exists():
            raise StepExecutionError(f"Project path does not exist: {project}")
        if not project.is_dir():
            raise StepExecutionError(f"Project path is not a directory: {project}")
        return project.resolve()

    def iter_files(self, project_path: Path) -> Iterator[SourceFile]:
        root = self.ensure_project(project_path)
        ignored = set(self.settings.ignore_dirs)
        seen = 0
        for dirpath, dirnames, filenames in os.walk(root):
            dirnames[:] = sorted(d for d in dirnames if d not in ignored)
            for filename in sorted(filenames):
                path = Path(dirpath) / filename
                try:
                    size = path.stat().st_size
                except OSError:
                    _LOGGER.debug("Skipping unreadable file %s", path)
                    continue
                yield SourceFile(path=path, relative=path.relative_to(root).as_posix(), size=size)
                seen += 1
                if seen >= self.settings.max_files:
                    _LOGGER.info("File cap of %s reached while scanning %s", self.settings.max_files, root)
                    return

    def read_small(self, source: SourceFile) -> str | None:
        if source.size > self.settings.max_file_bytes:
            return None
        try:
            return source.read_text()
        except OSError as exc:
            _LOGGER.debug("Unable to read %s: %s", source.path, exc)
            return None


class BaseStep:
    """Convenience base carrying metadata and a scanner."""

    name: str = "step"
    analysis_type: AnalysisType
    description: str = ""

    def __init__(self, scanner: ProjectScanner | None = None) -> None:
        self._scanner = scanner or ProjectScanner()

    @property
    def metadata(self) -> StepMetadata:
        return StepMetadata(
            name=self.name,
            analysis_type=self.analysis_type,
            description=self.description,
        )

    def execute(self, project_path: Path, options: Mapping[str, Any]) -> dict[str, Any]:
        project = self._scanner.ensure_project(project_path)
        _LOGGER.debug("Running %s on %s", self.name, project)
        try:
            return self.analyze(project, options)
        except StepExecutionError:
            raise
        except OSError as exc:
            raise StepExecutionError(f"{self.name} failed reading {project}: {exc}") from exc

    def analyze(self, project: Path, options: Mapping[str, Any]) -> dict[str, Any]:
        raise NotImplementedError
