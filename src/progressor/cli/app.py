"""Shared Typer app object, shared option types, logging setup and service wiring."""

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Annotated, Optional

import typer

from ..core.clock import SystemClock
from ..core.engine import load_engine_rules
from ..io.context_source import SqliteContextSource
from ..io.database import Database, get_default_db_path
from ..io.job_queue import JobQueue
from ..io.locks import KeyedLocks
from ..io.progression_store import ProgressionStore
from ..jobs.processor import JobProcessor
from ..jobs.settings import RuntimeSettings, load_runtime_settings

LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"

# Shared --db-path option type used across all commands
DbPathOption = Annotated[
    Optional[Path],
    typer.Option(
        "--db-path",
        "-p",
        envvar="PROGRESSOR_DB_PATH",
        help="Path to the SQLite database (default: ~/.progressor/progressor.db)",
    ),
]

JsonOption = Annotated[
    bool,
    typer.Option("--json", "-j", help="Output as JSON for machine processing"),
]

app = typer.Typer(
    name="progressor",
    help="Weight progression engine: turns logged sessions into next-session loads.",
    no_args_is_help=True,
)


def configure_logging(verbose: bool = False) -> None:
    logging.basicConfig(level=logging.DEBUG if verbose else logging.INFO, format=LOG_FORMAT)


@app.callback()
def main_callback(
    verbose: Annotated[
        bool,
        typer.Option("--verbose", "-v", help="Log debug output (SQL locks, claims, commits)"),
    ] = False,
) -> None:
    """
    Progression engine with a durable job queue. Every command takes --db-path.
    """
    configure_logging(verbose)


@dataclass
class Services:
    """Everything a command needs, wired against one database file."""

    db: Database
    settings: RuntimeSettings
    store: ProgressionStore
    queue: JobQueue
    context: SqliteContextSource
    processor: JobProcessor


def get_services(db_path: Path | None) -> Services:
    """Open (and initialize if needed) the database and build the services on it."""
    db = Database(db_path or get_default_db_path())
    db.init()
    settings = load_runtime_settings()
    clock = SystemClock()
    store = ProgressionStore(
        db,
        locks=KeyedLocks(timeout=settings.lock_timeout_seconds),
        clock=clock,
        history_window=settings.history_window,
    )
    queue = JobQueue(db, clock=clock, max_attempts=settings.max_attempts, stale_seconds=settings.stale_seconds)
    context = SqliteContextSource(db)
    processor = JobProcessor(db, queue, store, context, rules=load_engine_rules())
    return Services(db, settings, store, queue, context, processor)
