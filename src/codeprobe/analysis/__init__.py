"""Core analysis orchestration package."""

from .cache import ResultCache
from .orchestrator import AnalysisHandle, AnalysisOrchestrator, build_orchestrator
from .registry import StepRegistry, build_default_registry
from .tracker import ActiveExecutionTracker, Membership, Role, Subscription

__all__ = [
    "ActiveExecutionTracker",
    "AnalysisHandle",
    "AnalysisOrchestrator",
    "Membership",
    "ResultCache",
    "Role",
    "StepRegistry",
    "Subscription",
    "build_default_registry",
    "build_orchestrator",
]
