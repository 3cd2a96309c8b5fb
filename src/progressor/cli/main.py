"""
CLI entry point using Typer.

Provides commands for the progression pipeline:
- init-db / set-profile / set-checkin / set-plan: collaborator data
- record-session / enqueue: store a session and queue its job
- preview / process-job: synchronous diagnostics
- worker: drain the queue in the background
- job-status / list-jobs / show-state / show-history: inspection
"""

from .app import app
from .commands import jobs, profile, sessions, state  # noqa: F401  (registers commands)


def main() -> None:
    app()


if __name__ == "__main__":
    main()
