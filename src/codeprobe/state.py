"""Shared application state helpers for the command line and embedding callers."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from .analysis import AnalysisOrchestrator, build_orchestrator
from .analysis.orchestrator import ProgressCallback
from .config import AppConfig, load_config
from .logging import configure_logging


@dataclass(slots=True)
class AppState:
    config: AppConfig
    orchestrator: AnalysisOrchestrator


def build_state(
    config_path: Optional[Path],
    *,
    progress_callback: ProgressCallback | None = None,
) -> AppState:
    """Construct an application state bundle.

    Loads configuration, configures logging and wires an orchestrator with
    the reference steps so callers can run analyses with a single call.
    """

    config = load_config(config_path)
    configure_logging(config.verbosity)

    orchestrator = build_orchestrator(config, progress_callback=progress_callback)
    return AppState(config=config, orchestrator=orchestrator)
