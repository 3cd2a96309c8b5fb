"""Job commands: job-status, list-jobs, process-job, worker."""

import json
from typing import Annotated, Optional

import typer

from ...core.errors import JobNotFound, ProgressionError
from ...core.models import JOB_STATUSES
from ...io.serializers import job_to_dict
from ...jobs.worker import ProgressionWorker
from .. import views
from ..app import DbPathOption, JsonOption, app, get_services


@app.command("job-status")
def job_status(
    job_id: Annotated[str, typer.Argument(help="Job ID")],
    json_out: JsonOption = False,
    db_path: DbPathOption = None,
) -> None:
    """
    Show a job's status, attempts, last error and result.
    """
    services = get_services(db_path)
    try:
        status = services.queue.get_status(job_id)
    except JobNotFound as e:
        views.print_error(str(e))
        raise typer.Exit(1)

    if json_out:
        print(json.dumps(status, indent=2))
        return
    views.print_job_status(job_id, status)


@app.command("list-jobs")
def list_jobs(
    status: Annotated[
        Optional[str],
        typer.Option("--status", "-s", help="pending | processing | done | failed"),
    ] = None,
    limit: Annotated[
        int,
        typer.Option("--limit", "-l", help="Maximum number of jobs to show"),
    ] = 20,
    json_out: JsonOption = False,
    db_path: DbPathOption = None,
) -> None:
    """
    List recent jobs, newest first.
    """
    if status is not None and status not in JOB_STATUSES:
        views.print_error(f"Status must be one of: {', '.join(JOB_STATUSES)}")
        raise typer.Exit(1)

    services = get_services(db_path)
    jobs = services.queue.list_jobs(status=status, limit=limit)

    if json_out:
        print(json.dumps([job_to_dict(j) for j in jobs], indent=2))
        return
    if not jobs:
        views.print_info("No jobs.")
        return
    for job in jobs:
        views.print_job(job)


@app.command("process-job")
def process_job(
    job_id: Annotated[str, typer.Argument(help="Job ID")],
    force: Annotated[
        bool,
        typer.Option("--force/--no-force", help="Run even if the job is backed off"),
    ] = True,
    json_out: JsonOption = False,
    db_path: DbPathOption = None,
) -> None:
    """
    Process one job right now, bypassing the worker.

    Errors are recorded on the job and reported here.
    """
    services = get_services(db_path)
    try:
        status = services.processor.process_now(job_id, force=force)
    except ProgressionError as e:
        views.print_error(f"{type(e).__name__}: {e}")
        raise typer.Exit(1)

    if json_out:
        print(json.dumps(status, indent=2))
        return
    views.print_job_status(job_id, status)


@app.command()
def worker(
    once: Annotated[
        bool,
        typer.Option("--once", help="Run a single tick and exit"),
    ] = False,
    interval: Annotated[
        Optional[float],
        typer.Option("--interval", help="Seconds between ticks (overrides config)"),
    ] = None,
    max_per_tick: Annotated[
        Optional[int],
        typer.Option("--max-per-tick", help="Jobs claimed per tick (overrides config)"),
    ] = None,
    db_path: DbPathOption = None,
) -> None:
    """
    Run the background worker that drains the job queue.
    """
    services = get_services(db_path)
    settings = services.settings
    progression_worker = ProgressionWorker(
        services.queue,
        services.processor,
        interval_seconds=interval if interval is not None else settings.interval_seconds,
        max_per_tick=max_per_tick if max_per_tick is not None else settings.max_per_tick,
        jitter_pct=settings.jitter_pct,
    )

    if once:
        claimed = progression_worker.tick()
        views.print_info(f"Processed {claimed} job(s)")
        return

    views.print_info("Worker running; press Ctrl+C to stop.")
    progression_worker.run_forever()
