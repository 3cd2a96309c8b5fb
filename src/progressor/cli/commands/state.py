"""State inspection commands: show-state, show-history."""

import json
from typing import Annotated, Optional

import typer

from ...io.serializers import history_entry_to_dict, progression_state_to_dict
from .. import views
from ..app import DbPathOption, JsonOption, app, get_services


@app.command("show-state")
def show_state(
    user_id: Annotated[str, typer.Argument(help="User ID")],
    exercise_id: Annotated[
        Optional[str],
        typer.Option("--exercise", "-e", help="Only this exercise"),
    ] = None,
    json_out: JsonOption = False,
    db_path: DbPathOption = None,
) -> None:
    """
    Show current weight, status and stall/deload counters per exercise.
    """
    services = get_services(db_path)
    if exercise_id is not None:
        state = services.store.get_state(user_id, exercise_id)
        states = [state] if state is not None else []
    else:
        states = services.store.list_states(user_id)

    if json_out:
        print(json.dumps([progression_state_to_dict(s) for s in states], indent=2))
        return
    views.print_states(states)


@app.command("show-history")
def show_history(
    user_id: Annotated[str, typer.Argument(help="User ID")],
    exercise_id: Annotated[str, typer.Argument(help="Exercise ID")],
    limit: Annotated[
        Optional[int],
        typer.Option("--limit", "-l", help="Limit number of sessions to show"),
    ] = None,
    json_out: JsonOption = False,
    db_path: DbPathOption = None,
) -> None:
    """
    Display the logged sets of one exercise, oldest first.
    """
    services = get_services(db_path)
    entries = services.store.get_history(user_id, exercise_id)
    if limit is not None:
        entries = entries[-limit:] if limit > 0 else []

    if json_out:
        print(json.dumps([history_entry_to_dict(e) for e in entries], indent=2))
        return
    views.print_history(exercise_id, entries)
