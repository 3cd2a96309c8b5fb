"""Collaborator data commands: init-db, set-profile, set-checkin, set-plan."""

import json
from datetime import datetime
from pathlib import Path
from typing import Annotated, Optional

import typer

from ...core.config import GOAL_RULES
from ...core.errors import ValidationError
from ...io.context_source import EXPERIENCE_LEVELS
from .. import views
from ..app import DbPathOption, app, get_services


def load_json_file(path: Path) -> dict:
    """Read a JSON object from disk or exit with an error."""
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except FileNotFoundError:
        views.print_error(f"File not found: {path}")
        raise typer.Exit(1)
    except json.JSONDecodeError as e:
        views.print_error(f"{path} is not valid JSON: {e}")
        raise typer.Exit(1)
    if not isinstance(data, dict):
        views.print_error(f"{path} must contain a JSON object")
        raise typer.Exit(1)
    return data


@app.command("init-db")
def init_db(db_path: DbPathOption = None) -> None:
    """
    Create the database and its tables (safe to re-run).
    """
    services = get_services(db_path)
    views.print_success(f"Database ready at {services.db.path}")


@app.command("set-profile")
def set_profile(
    user_id: Annotated[str, typer.Argument(help="User ID")],
    goal: Annotated[
        str,
        typer.Option("--goal", "-g", help="build_muscle | athletic_body | lose_weight | health_wellness"),
    ] = "build_muscle",
    experience: Annotated[
        str,
        typer.Option("--experience", "-x", help="beginner | intermediate | advanced"),
    ] = "intermediate",
    db_path: DbPathOption = None,
) -> None:
    """
    Create or update a user's training profile.

    The goal picks the stall threshold and deload size used by the engine.
    """
    if goal not in GOAL_RULES:
        views.print_warning(f"Unknown goal '{goal}'; build_muscle rules will apply")
    if experience not in EXPERIENCE_LEVELS:
        views.print_error(f"Experience must be one of: {', '.join(EXPERIENCE_LEVELS)}")
        raise typer.Exit(1)

    services = get_services(db_path)
    services.context.save_user(user_id, goal=goal, experience=experience)
    views.print_success(f"Profile saved for {user_id}: goal={goal}, experience={experience}")


@app.command("set-checkin")
def set_checkin(
    user_id: Annotated[str, typer.Argument(help="User ID")],
    date: Annotated[
        Optional[str],
        typer.Option("--date", "-d", help="Check-in date (YYYY-MM-DD, default: today)"),
    ] = None,
    pain: Annotated[
        Optional[list[int]],
        typer.Option("--pain", help="Pain level 1-10 (repeat for several locations)"),
    ] = None,
    sleep: Annotated[
        Optional[str],
        typer.Option("--sleep", help="poor | fair | ok | good | excellent"),
    ] = None,
    stress: Annotated[
        Optional[str],
        typer.Option("--stress", help="low | medium | high | very_high"),
    ] = None,
    energy: Annotated[
        Optional[str],
        typer.Option("--energy", help="low | medium | high"),
    ] = None,
    db_path: DbPathOption = None,
) -> None:
    """
    Record a same-day readiness check-in.
    """
    checkin_date = date or datetime.now().strftime("%Y-%m-%d")
    data = {
        "pain": [{"location": f"site_{i}", "level": level} for i, level in enumerate(pain or [], 1)],
        "sleep": sleep,
        "stress": stress,
        "energy": energy,
    }
    services = get_services(db_path)
    try:
        services.context.save_checkin(user_id, checkin_date, data)
    except ValidationError as e:
        views.print_error(str(e))
        raise typer.Exit(1)
    views.print_success(f"Check-in saved for {user_id} on {checkin_date}")


@app.command("set-plan")
def set_plan(
    user_id: Annotated[str, typer.Argument(help="User ID")],
    plan_id: Annotated[str, typer.Argument(help="Planned workout ID")],
    plan_file: Annotated[
        Path,
        typer.Argument(help='JSON file: {"intent": "normal", "plannedSets": {...}, "durationMin": 60}'),
    ],
    db_path: DbPathOption = None,
) -> None:
    """
    Store a planned workout that sessions can reference.
    """
    data = load_json_file(plan_file)
    services = get_services(db_path)
    try:
        services.context.save_planned_workout(user_id, plan_id, data)
    except (ValidationError, ValueError, TypeError, AttributeError) as e:
        views.print_error(f"Invalid planned workout: {e}")
        raise typer.Exit(1)
    views.print_success(f"Planned workout {plan_id} saved for {user_id}")
