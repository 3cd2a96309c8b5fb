"""Session commands: record-session, enqueue, preview."""

import json
from datetime import datetime
from pathlib import Path
from typing import Annotated, Optional

import typer

from ...core.errors import ProgressionError
from ...io.serializers import EngineInputInvalid, job_to_dict, parse_session_payload, summary_to_dict
from .. import views
from ..app import DbPathOption, JsonOption, app, get_services
from .profile import load_json_file

DateOption = Annotated[
    Optional[str],
    typer.Option("--date", "-d", help="Workout date (YYYY-MM-DD, default: today)"),
]

StoredDateOption = Annotated[
    Optional[str],
    typer.Option("--date", "-d", help="Workout date (YYYY-MM-DD, default: the stored session's date)"),
]

PlanOption = Annotated[
    Optional[str],
    typer.Option("--plan-id", help="Planned workout this session was performed against"),
]


def _today() -> str:
    return datetime.now().strftime("%Y-%m-%d")


@app.command("record-session")
def record_session(
    user_id: Annotated[str, typer.Argument(help="User ID")],
    session_id: Annotated[str, typer.Argument(help="Session ID (unique per completed workout)")],
    payload_file: Annotated[
        Path,
        typer.Argument(help="JSON file with the completed session payload"),
    ],
    date: DateOption = None,
    plan_id: PlanOption = None,
    json_out: JsonOption = False,
    db_path: DbPathOption = None,
) -> None:
    """
    Store a completed session and queue it for progression.

    The payload is validated before anything is written. Recording the same
    session again updates the stored payload and the job's date and plan.
    A job that is already done or failed is not run again.
    """
    payload = load_json_file(payload_file)
    try:
        parse_session_payload(payload)
    except EngineInputInvalid as e:
        views.print_error(f"Invalid session payload: {e}")
        raise typer.Exit(1)

    workout_date = date or _today()
    services = get_services(db_path)
    try:
        services.context.save_session(user_id, session_id, workout_date, payload, planned_workout_id=plan_id)
        job = services.queue.enqueue(user_id, session_id, workout_date, planned_workout_id=plan_id)
    except ProgressionError as e:
        views.print_error(str(e))
        raise typer.Exit(1)

    if json_out:
        print(json.dumps(job_to_dict(job), indent=2))
        return

    views.print_success(f"Session {session_id} recorded for {user_id} on {workout_date}")
    if job.status in ("done", "failed"):
        views.print_warning(f"Job {job.id} is already {job.status}; the updated payload will not be processed")
    views.print_job(job)


@app.command()
def enqueue(
    user_id: Annotated[str, typer.Argument(help="User ID")],
    session_id: Annotated[str, typer.Argument(help="Session ID")],
    date: StoredDateOption = None,
    plan_id: PlanOption = None,
    json_out: JsonOption = False,
    db_path: DbPathOption = None,
) -> None:
    """
    Queue (or re-queue metadata for) an already stored session.

    Options left out keep the values the job or session already has.
    """
    services = get_services(db_path)
    try:
        job = services.queue.enqueue(user_id, session_id, date, planned_workout_id=plan_id)
    except ProgressionError as e:
        views.print_error(str(e))
        raise typer.Exit(1)

    if json_out:
        print(json.dumps(job_to_dict(job), indent=2))
        return
    views.print_job(job)


@app.command()
def preview(
    user_id: Annotated[str, typer.Argument(help="User ID")],
    session_id: Annotated[str, typer.Argument(help="Session ID")],
    date: StoredDateOption = None,
    plan_id: PlanOption = None,
    json_out: JsonOption = False,
    db_path: DbPathOption = None,
) -> None:
    """
    Show what processing a stored session would recommend, without saving.
    """
    services = get_services(db_path)
    try:
        summary = services.processor.preview(user_id, session_id, workout_date=date, planned_workout_id=plan_id)
    except ProgressionError as e:
        views.print_error(f"{type(e).__name__}: {e}")
        raise typer.Exit(1)

    if json_out:
        print(json.dumps(summary_to_dict(summary), indent=2))
        return
    views.print_summary(summary, title=f"Preview: {session_id}")
