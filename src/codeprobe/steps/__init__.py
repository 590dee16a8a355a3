"""Reference analysis step implementations."""

from ..config import ScanSettings
from .architecture import ArchitectureStep
from .base import AnalysisStep, BaseStep, ProjectScanner, StepMetadata, step_metadata
from .code_quality import CodeQualityStep
from .performance import PerformanceStep
from .project import ProjectStructureStep
from .security import SecurityStep
from .tech_stack import TechStackStep


def default_steps(scan: ScanSettings | None = None) -> list[AnalysisStep]:
    """Instantiate the six reference steps sharing one scanner."""

    scanner = ProjectScanner(scan or ScanSettings())
    return [
        ProjectStructureStep(scanner),
        CodeQualityStep(scanner),
        SecurityStep(scanner),
        PerformanceStep(scanner),
        ArchitectureStep(scanner),
        TechStackStep(scanner),
    ]


__all__ = [
    "AnalysisStep",
    "ArchitectureStep",
    "BaseStep",
    "CodeQualityStep",
    "PerformanceStep",
    "ProjectScanner",
    "ProjectStructureStep",
    "SecurityStep",
    "StepMetadata",
    "TechStackStep",
    "default_steps",
    "step_metadata",
]
