"""Typer-based developer CLI for codeprobe."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.json import JSON
from rich.table import Table

from .models import COMPREHENSIVE_TYPES, AnalysisType, ComprehensiveResult
from .state import build_state
from .utils import progress_bar, to_json

app = typer.Typer(add_completion=False)
console = Console()


@app.command()
def analyze(
    project: Path = typer.Argument(..., help="Path to the project directory"),
    config_path: Optional[Path] = typer.Option(None, "--config", help="Path to config TOML"),
    types: Optional[list[str]] = typer.Option(None, "--type", "-t", help="Analysis type (repeatable); default all"),
    bypass_cache: bool = typer.Option(False, "--no-cache", help="Ignore cached results"),
    json_output: bool = typer.Option(False, "--json", help="Emit JSON instead of table"),
) -> None:
    """Run one, several or all analyses against a project."""

    if not project.is_dir():
        raise typer.BadParameter(f"Project path is not a directory: {project}")

    try:
        selected = [AnalysisType.parse(name) for name in types] if types else list(COMPREHENSIVE_TYPES)
    except ValueError as exc:
        raise typer.BadParameter(str(exc)) from exc

    options = {"bypass_cache": bypass_cache}
    with progress_bar("Analyzing", total=len(selected)) as on_event:
        state = build_state(config_path, progress_callback=on_event)
        with state.orchestrator as orchestrator:
            if types:
                outcomes = orchestrator.execute_multiple_analyses(project, selected, options)
                result = ComprehensiveResult(project_path=project)
                result.per_type = {AnalysisType.parse(label): outcome for label, outcome in outcomes.items()}
            else:
                result = orchestrator.perform_comprehensive_analysis(project, options)

    if json_output:
        console.print(JSON.from_data(json.loads(to_json(result))))
    else:
        _render_result(result)

    if result.summary["failed"]:
        raise typer.Exit(code=1)


@app.command()
def steps(
    config_path: Optional[Path] = typer.Option(None, "--config", help="Path to config TOML"),
) -> None:
    """List registered analysis steps and their effective policy."""

    state = build_state(config_path)
    table = Table(title="Registered Steps")
    table.add_column("Type")
    table.add_column("Step")
    table.add_column("Timeout")
    table.add_column("TTL")
    table.add_column("Attempts")
    table.add_column("Description")

    with state.orchestrator as orchestrator:
        for atype, meta in orchestrator.registry.metadata().items():
            policy = state.config.policy_for(atype)
            table.add_row(
                atype.value,
                meta.name,
                f"{policy.timeout_ms / 1000:.0f}s",
                f"{policy.ttl_ms / 1000:.0f}s",
                str(policy.max_attempts),
                meta.description,
            )
    console.print(table)


def _render_result(result: ComprehensiveResult) -> None:
    console.rule(f"Analysis: {result.project_path}")
    table = Table()
    table.add_column("Type")
    table.add_column("Status")
    table.add_column("Attempts")
    table.add_column("Duration")
    table.add_column("Details")

    for atype, outcome in result.per_type.items():
        if outcome.result is not None:
            status = "[green]cached" if outcome.cached else "[green]ok"
            table.add_row(
                atype.value,
                status,
                str(outcome.result.attempt_count),
                f"{outcome.result.duration_ms:.1f}ms",
                ", ".join(sorted(outcome.result.payload))[:60],
            )
        else:
            assert outcome.error is not None
            table.add_row(
                atype.value,
                f"[red]{outcome.error.kind}",
                str(outcome.error.attempt_count),
                "-",
                outcome.error.message[:60],
            )
    console.print(table)

    summary = result.summary
    console.print(
        f"[cyan]{summary['successful']}/{summary['total']} succeeded, {summary['failed']} failed"
    )


def run() -> None:
    app()
