"""
CLI view formatters using Rich for pretty console output.

Handles table formatting for progression state, history, job status and
progression summaries.
"""

from typing import Any

from rich.console import Console
from rich.table import Table

from ..core.models import HistoryEntry, Job, ProgressionState, ProgressionSummary

console = Console()

_ACTION_STYLE = {
    "increase_weight": "green",
    "maintain": "yellow",
    "deload": "red",
}

_STATUS_STYLE = {
    "pending": "yellow",
    "processing": "cyan",
    "done": "green",
    "failed": "red",
}


def _fmt_weight(kg: float) -> str:
    return f"{kg:g} kg"


def _fmt_sets(entry: HistoryEntry) -> str:
    return ", ".join(f"{s.reps}@{s.weight:g}" for s in entry.sets) or "-"


def format_state_table(states: list[ProgressionState]) -> Table:
    """
    Create a Rich table of per-exercise progression state.

    Args:
        states: States to display

    Returns:
        Rich Table object
    """
    table = Table(title="Progression State")

    table.add_column("Exercise", style="cyan")
    table.add_column("Weight", justify="right", style="bold")
    table.add_column("Status", style="magenta")
    table.add_column("Stalls", justify="right")
    table.add_column("Deloads", justify="right")
    table.add_column("Last progress", style="dim")

    for state in states:
        table.add_row(
            state.exercise_id,
            _fmt_weight(state.current_weight),
            state.status,
            str(state.stall_count),
            str(state.deload_count),
            state.last_progress_date or "-",
        )

    return table


def format_history_table(exercise_id: str, entries: list[HistoryEntry]) -> Table:
    table = Table(title=f"History: {exercise_id}")

    table.add_column("#", justify="right", style="dim", width=3)
    table.add_column("Date", style="cyan")
    table.add_column("Session", style="magenta")
    table.add_column("Sets (reps@kg)")

    for i, entry in enumerate(entries, 1):
        table.add_row(str(i), entry.workout_date, entry.session_id, _fmt_sets(entry))

    return table


def format_summary_table(summary: ProgressionSummary, title: str = "Progression Result") -> Table:
    """Per-exercise recommendations from a processed (or previewed) session."""
    table = Table(title=title)

    table.add_column("Exercise", style="cyan")
    table.add_column("Action")
    table.add_column("Next weight", justify="right", style="bold")
    table.add_column("Reason", style="dim")
    table.add_column("Rotate?", justify="center")

    for rec in summary.details:
        action = rec.get("action", "")
        style = _ACTION_STYLE.get(action, "white")
        rotate = "yes" if rec.get("exercise_id") in summary.rotation_suggestions else ""
        table.add_row(
            str(rec.get("exercise_id")),
            f"[{style}]{action}[/{style}]",
            _fmt_weight(float(rec.get("new_weight", 0.0))),
            str(rec.get("reason", "")),
            rotate,
        )

    return table


def print_states(states: list[ProgressionState]) -> None:
    if not states:
        console.print("[yellow]No progression state recorded yet.[/yellow]")
        return
    console.print(format_state_table(states))


def print_history(exercise_id: str, entries: list[HistoryEntry]) -> None:
    if not entries:
        console.print("[yellow]No sessions recorded yet.[/yellow]")
        return
    console.print(format_history_table(exercise_id, entries))


def print_summary(summary: ProgressionSummary, title: str = "Progression Result") -> None:
    """
    Print a progression summary: per-exercise table plus counts.

    Args:
        summary: Summary to display
        title: Table title
    """
    if summary.details:
        console.print(format_summary_table(summary, title))
    console.print(
        f"progressed [green]{summary.progressed_count}[/green]  "
        f"maintained [yellow]{summary.maintained_count}[/yellow]  "
        f"deloaded [red]{summary.deload_count}[/red]  "
        f"skipped [dim]{summary.skipped_count}[/dim]"
    )
    if summary.rotation_suggestions:
        print_warning("Consider rotating: " + ", ".join(summary.rotation_suggestions))


def print_job(job: Job) -> None:
    style = _STATUS_STYLE.get(job.status, "white")
    console.print(f"Job [bold]{job.id}[/bold]  session {job.session_id}  user {job.user_id}")
    console.print(f"  status   [{style}]{job.status}[/{style}]  attempts {job.attempts}")
    if job.status == "pending":
        console.print(f"  next run {job.next_run_at}")


def print_job_status(job_id: str, status: dict[str, Any]) -> None:
    style = _STATUS_STYLE.get(status["status"], "white")
    console.print(f"Job [bold]{job_id}[/bold]: [{style}]{status['status']}[/{style}] (attempts: {status['attempts']})")
    if status.get("last_error"):
        console.print(f"  last error: [red]{status['last_error']}[/red]")
    result = status.get("result")
    if result:
        print_summary(summary_from_dict(result))


def summary_from_dict(data: dict[str, Any]) -> ProgressionSummary:
    return ProgressionSummary(
        total_exercises=int(data.get("total_exercises", 0)),
        progressed_count=int(data.get("progressed_count", 0)),
        maintained_count=int(data.get("maintained_count", 0)),
        deload_count=int(data.get("deload_count", 0)),
        skipped_count=int(data.get("skipped_count", 0)),
        rotation_suggestions=list(data.get("rotation_suggestions", [])),
        details=list(data.get("details", [])),
    )


def print_success(message: str) -> None:
    """Print a success message."""
    console.print(f"[green]{message}[/green]")


def print_error(message: str) -> None:
    """Print an error message."""
    console.print(f"[red]Error: {message}[/red]")


def print_warning(message: str) -> None:
    """Print a warning message."""
    console.print(f"[yellow]Warning: {message}[/yellow]")


def print_info(message: str) -> None:
    """Print an info message."""
    console.print(f"[blue]{message}[/blue]")
