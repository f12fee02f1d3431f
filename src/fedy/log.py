"""Console output for the scheduler and CLI, colored via Rich.

Task statuses are always rendered through :func:`status` so the ``list``
table and the transition lines in verbose mode use the same colors.
"""

from __future__ import annotations

from rich.console import Console

console = Console(highlight=False)
_err_console = Console(highlight=False, stderr=True)

_verbose = False

# Keyed by TaskStatus value; unknown statuses render unstyled.
STATUS_STYLE: dict[str, str] = {
    "pending": "dim",
    "planning": "cyan",
    "ready": "blue",
    "in_progress": "yellow",
    "completed": "green",
}


def set_verbose(enabled: bool) -> None:
    global _verbose
    _verbose = enabled


def status(value: object) -> str:
    """Rich markup for a task status (a ``TaskStatus`` or its string value)."""
    name = str(getattr(value, "value", value))
    style = STATUS_STYLE.get(name)
    if not style:
        return name
    return f"[{style}]{name}[/{style}]"


def info(msg: str) -> None:
    console.print(f"[blue]\\[INFO][/blue] {msg}")


def success(msg: str) -> None:
    console.print(f"[green]\\[OK][/green] {msg}")


def warn(msg: str) -> None:
    console.print(f"[yellow]\\[WARN][/yellow] {msg}")


def error(msg: str) -> None:
    _err_console.print(f"[red]\\[ERROR][/red] {msg}")


def debug(msg: str) -> None:
    if _verbose:
        console.print(f"[dim]\\[DEBUG] {msg}[/dim]")


def transition(task_id: int, old: object, new: object) -> None:
    """Verbose-only line recording a status change of one task."""
    if _verbose:
        console.print(f"[dim]\\[DEBUG][/dim] Task {task_id}: {status(old)} -> {status(new)}")
