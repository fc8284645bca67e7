"""Console rendering and progress helpers for the blob-up CLI."""
from __future__ import annotations

from typing import Any, Dict, Iterable, Optional

from rich.console import Console
from rich.panel import Panel
from rich.progress import (
    BarColumn,
    DownloadColumn,
    Progress,
    SpinnerColumn,
    TaskID,
    TextColumn,
    TransferSpeedColumn,
)
from rich.table import Table

from .models import SessionStatus, UploadedObject, UploadSession

console = Console()


def _human_size(value: int) -> str:
    size = float(max(value, 0))
    units = ["B", "KB", "MB", "GB", "TB"]
    unit_idx = 0
    while size >= 1024.0 and unit_idx < len(units) - 1:
        size /= 1024.0
        unit_idx += 1
    if unit_idx == 0:
        return f"{int(size)} {units[unit_idx]}"
    return f"{size:.2f} {units[unit_idx]}"


def render_configuration_summary(config: Dict[str, Any], out: Optional[Console] = None) -> None:
    """Render startup configuration summary."""
    out = out or console
    table = Table.grid(padding=(0, 2))
    table.add_column(style="bold cyan", justify="right")
    table.add_column(style="white")

    for key, value in config.items():
        rendered = "-" if value is None else str(value)
        table.add_row(key, rendered)

    panel = Panel(
        table,
        title="[bold green]blob-up[/bold green]",
        subtitle="[dim]blob uploader CLI[/dim]",
        border_style="blue",
    )
    out.print(panel)


def render_uploaded_table(objects: Iterable[UploadedObject], out: Optional[Console] = None) -> None:
    """Render previously uploaded objects with their View links."""
    out = out or console
    objects = list(objects)
    if not objects:
        out.print("[dim]No uploaded files yet.[/dim]")
        return

    table = Table(title=f"Uploaded files ({len(objects)})", title_justify="left")
    table.add_column("#", justify="right", style="dim")
    table.add_column("Name", style="bold")
    table.add_column("View", overflow="fold")
    for index, obj in enumerate(objects, 1):
        table.add_row(str(index), obj.name, f"[link={obj.resolved_url}]{obj.resolved_url}[/link]")
    out.print(table)


class UploadProgressDisplay:
    """
    Live per-file progress bars driven by orchestrator session updates.

    Usage:
        display = UploadProgressDisplay()
        orchestrator.on_session_update(display.on_session_update)
        with display:
            orchestrator.submit(files)
            await orchestrator.wait()
    """

    def __init__(self, out: Optional[Console] = None):
        self._console = out or console
        self._progress = Progress(
            SpinnerColumn(),
            TextColumn("[bold cyan]{task.fields[filename]}", justify="left"),
            BarColumn(bar_width=36),
            TextColumn("[progress.percentage]{task.percentage:>5.1f}%"),
            DownloadColumn(),
            TransferSpeedColumn(),
            TextColumn("[dim]{task.fields[status]}"),
            console=self._console,
            expand=False,
        )
        self._tasks: Dict[str, TaskID] = {}
        self._finished = {"succeeded": 0, "failed": 0}

    def __enter__(self):
        self._progress.start()
        return self

    def __exit__(self, *args):
        self._progress.stop()

    @property
    def finished(self) -> Dict[str, int]:
        return dict(self._finished)

    def on_session_update(self, session: UploadSession) -> None:
        task_id = self._tasks.get(session.id)
        if task_id is None:
            task_id = self._progress.add_task(
                "upload",
                filename=session.source_name[:60],
                total=session.total_bytes,
                status=session.status.value,
            )
            self._tasks[session.id] = task_id

        self._progress.update(
            task_id,
            completed=session.bytes_transferred,
            total=session.total_bytes,
            status=session.status.value,
        )

        if session.status == SessionStatus.SUCCEEDED:
            self._finished["succeeded"] += 1
            self._progress.update(task_id, status="[green]done[/green]")
        elif session.status == SessionStatus.FAILED:
            self._finished["failed"] += 1
            self._progress.update(task_id, status="[red]failed[/red]")
            self._console.print(f"[red]Failed:[/red] {session.source_name} - {session.error}")
