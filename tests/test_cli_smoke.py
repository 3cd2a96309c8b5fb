"""
Minimal smoke tests for the progressor CLI.

Tests basic functionality:
- App runs and shows help
- Database initializes
- A recorded session is processed (sync and via worker tick)
- State/history/job inspection commands render
"""

import json

import pytest
from typer.testing import CliRunner

from progressor.cli.main import app

runner = CliRunner()


@pytest.fixture
def db_path(tmp_path):
    return tmp_path / "progressor.db"


@pytest.fixture
def session_file(tmp_path):
    path = tmp_path / "session.json"
    path.write_text(json.dumps({
        "title": "Push A",
        "durationMin": 55,
        "exercises": [
            {
                "id": "bench_press",
                "targetRepRange": "8-12",
                "effort": "working",
                "sets": [
                    {"reps": 10, "weight": 40},
                    {"reps": 12, "weight": 60},
                    {"reps": 12, "weight": 60},
                    {"reps": 12, "weight": 60},
                ],
            }
        ],
        "feedback": {"sessionRpe": 7},
    }))
    return path


def _setup(db_path, session_file) -> str:
    """Create a profile, record a session and return its job id."""
    result = runner.invoke(app, ["set-profile", "u1", "--goal", "build_muscle", "--db-path", str(db_path)])
    assert result.exit_code == 0, result.output
    result = runner.invoke(app, [
        "record-session", "u1", "s1", str(session_file),
        "--date", "2026-02-16", "--json", "--db-path", str(db_path),
    ])
    assert result.exit_code == 0, result.output
    return json.loads(result.stdout)["id"]


class TestCLISmoke:
    """Basic smoke tests for CLI commands."""

    def test_app_help(self):
        result = runner.invoke(app, ["--help"])
        assert result.exit_code == 0
        assert "record-session" in result.output

    def test_init_db_creates_file(self, db_path):
        result = runner.invoke(app, ["init-db", "--db-path", str(db_path)])
        assert result.exit_code == 0
        assert db_path.exists()

    def test_db_path_from_env(self, db_path):
        result = runner.invoke(app, ["init-db"], env={"PROGRESSOR_DB_PATH": str(db_path)})
        assert result.exit_code == 0
        assert db_path.exists()

    def test_record_and_process_job(self, db_path, session_file):
        job_id = _setup(db_path, session_file)

        result = runner.invoke(app, ["process-job", job_id, "--json", "--db-path", str(db_path)])
        assert result.exit_code == 0, result.output
        status = json.loads(result.stdout)
        assert status["status"] == "done"
        assert status["result"]["details"][0]["new_weight"] == 62.5

        result = runner.invoke(app, ["show-state", "u1", "--json", "--db-path", str(db_path)])
        assert result.exit_code == 0
        states = json.loads(result.stdout)
        assert states[0]["current_weight"] == 62.5
        assert states[0]["status"] == "progressing"

    def test_worker_once(self, db_path, session_file):
        job_id = _setup(db_path, session_file)

        result = runner.invoke(app, ["worker", "--once", "--db-path", str(db_path)])
        assert result.exit_code == 0, result.output

        result = runner.invoke(app, ["job-status", job_id, "--json", "--db-path", str(db_path)])
        assert json.loads(result.stdout)["status"] == "done"

    def test_preview_does_not_commit(self, db_path, session_file):
        _setup(db_path, session_file)

        result = runner.invoke(app, ["preview", "u1", "s1", "--json", "--db-path", str(db_path)])
        assert result.exit_code == 0, result.output
        assert json.loads(result.stdout)["progressed_count"] == 1

        result = runner.invoke(app, ["show-state", "u1", "--json", "--db-path", str(db_path)])
        assert json.loads(result.stdout) == []

    def test_show_history_after_processing(self, db_path, session_file):
        job_id = _setup(db_path, session_file)
        runner.invoke(app, ["process-job", job_id, "--db-path", str(db_path)])

        result = runner.invoke(app, ["show-history", "u1", "bench_press", "--json", "--db-path", str(db_path)])
        assert result.exit_code == 0
        history = json.loads(result.stdout)
        assert len(history) == 1
        assert len(history[0]["sets"]) == 4

        result = runner.invoke(app, ["show-history", "u1", "bench_press", "--db-path", str(db_path)])
        assert result.exit_code == 0

    def test_table_output_renders(self, db_path, session_file):
        job_id = _setup(db_path, session_file)
        runner.invoke(app, ["process-job", job_id, "--db-path", str(db_path)])

        for args in (["show-state", "u1"], ["job-status", job_id], ["list-jobs"]):
            result = runner.invoke(app, [*args, "--db-path", str(db_path)])
            assert result.exit_code == 0, result.output

    def test_invalid_payload_rejected(self, db_path, tmp_path):
        bad = tmp_path / "bad.json"
        bad.write_text(json.dumps({"exercises": [{"id": "squat", "sets": [{"reps": -1}]}]}))
        result = runner.invoke(app, ["record-session", "u1", "s1", str(bad), "--db-path", str(db_path)])
        assert result.exit_code == 1

    def test_unknown_job(self, db_path):
        result = runner.invoke(app, ["job-status", "nope", "--db-path", str(db_path)])
        assert result.exit_code == 1

    def test_enqueue_is_idempotent(self, db_path):
        ids = set()
        for _ in range(2):
            result = runner.invoke(app, ["enqueue", "u1", "s9", "--date", "2026-02-16", "--json", "--db-path", str(db_path)])
            assert result.exit_code == 0, result.output
            ids.add(json.loads(result.stdout)["id"])
        assert len(ids) == 1

    def test_enqueue_without_date_keeps_session_date(self, db_path, session_file):
        result = runner.invoke(app, [
            "record-session", "u1", "s1", str(session_file),
            "--date", "2025-03-01", "--db-path", str(db_path),
        ])
        assert result.exit_code == 0, result.output

        result = runner.invoke(app, ["enqueue", "u1", "s1", "--json", "--db-path", str(db_path)])
        assert result.exit_code == 0, result.output
        assert json.loads(result.stdout)["workout_date"] == "2025-03-01"

    def test_rerecording_processed_session_warns(self, db_path, session_file):
        job_id = _setup(db_path, session_file)
        runner.invoke(app, ["process-job", job_id, "--db-path", str(db_path)])

        result = runner.invoke(app, [
            "record-session", "u1", "s1", str(session_file),
            "--date", "2026-02-16", "--db-path", str(db_path),
        ])
        assert result.exit_code == 0, result.output
        assert "already done" in result.output
