"""Progress rendering utilities."""

from __future__ import annotations

from contextlib import contextmanager
from typing import Any, Callable, Iterator

from rich.progress import Progress, TaskID


@contextmanager
def progress_bar(description: str, total: int | None = None) -> Iterator[Callable[[str, dict[str, Any]], None]]:
    """Yield an orchestrator progress callback that advances a rich bar."""

    with Progress() as progress:
        task: TaskID = progress.add_task(description, total=total)

        def _on_event(event: str, payload: dict[str, Any]) -> None:
            if event in {"analysis_completed", "analysis_failed", "cache_hit"}:
                progress.advance(task)
            elif event == "attempt_failed":
                progress.console.log(f"retrying {payload.get('analysis_type')}: {payload.get('error')}")

        try:
            yield _on_event
        finally:
            progress.update(task, completed=total or 0)
