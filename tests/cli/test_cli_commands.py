"""End-to-end tests for the camp-spine CLI against a file database."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import pytest
from typer.testing import CliRunner

from camp_spine.cli.app import app
from camp_spine.core.models import ExtractedSession
from camp_spine.core.repositories import FamilyRepository
from camp_spine.core.schema import CORE_TABLES
from camp_spine.core.timestamps import to_iso8601, utc_now
from camp_spine.ops.sqlite_conn import SqliteConnection

pytestmark = pytest.mark.integration

runner = CliRunner()


class CannedExtractor:
    """Loaded by ``--extractor test_cli_commands:CannedExtractor``."""

    def extract(self, source: dict[str, Any]) -> list[ExtractedSession]:
        return [
            ExtractedSession(
                name="Robotics Week",
                start_date="2026-07-06",
                end_date="2026-07-10",
                enrolled_count=5,
                capacity=20,
            ),
        ]


@pytest.fixture()
def db(tmp_path: Path) -> str:
    path = str(tmp_path / "camp.db")
    result = invoke("db", "init", "--database", path)
    assert result.exit_code == 0, result.output
    return path


def invoke(*args: str):
    return runner.invoke(app, ["--log-level", "ERROR", *args])


def invoke_json(*args: str) -> Any:
    result = invoke(*args, "--json")
    assert result.exit_code == 0, result.output
    return json.loads(result.stdout)


class TestRoot:
    def test_version(self):
        result = runner.invoke(app, ["--version"])
        assert result.exit_code == 0
        assert result.output.startswith("camp-spine ")

    def test_help_lists_groups(self):
        result = runner.invoke(app, ["--help"])
        assert result.exit_code == 0
        for group in ("db", "requests", "jobs", "alerts", "report", "sequences"):
            assert group in result.output


class TestDb:
    def test_init_creates_every_table(self, tmp_path):
        data = invoke_json("db", "init", "--database", str(tmp_path / "x.db"))
        assert set(data["tables_created"]) == set(CORE_TABLES.values())

    def test_init_dry_run(self, tmp_path):
        data = invoke_json("db", "init", "--database", str(tmp_path / "x.db"), "--dry-run")
        assert data["dry_run"] is True


class TestRequestsAndJobs:
    def test_submit_and_process(self, db):
        data = invoke_json(
            "requests", "submit", "portland", "Sunny Camp",
            "--url", "https://www.sunnycamp.org/summer", "--process", "--database", db,
        )

        assert data["status"] == "completed"
        assert data["scrape_source_id"]

        jobs = invoke_json("jobs", "list", "--database", db)
        assert jobs["total"] == 1
        assert jobs["items"][0]["status"] == "queued"
        assert jobs["items"][0]["triggered_by"].startswith("request:")

    def test_process_unknown_request_fails(self, db):
        result = invoke("requests", "process", "req_missing", "--database", db)
        assert result.exit_code == 1

    def test_list_requests_by_status(self, db):
        invoke("requests", "submit", "portland", "Sunny Camp", "--database", db)
        pending = invoke_json("requests", "list", "--status", "pending", "--database", db)
        assert pending["total"] == 1

    def test_run_job_with_extractor(self, db):
        invoke("requests", "submit", "portland", "Sunny Camp", "--url", "https://sunnycamp.org",
               "--process", "--database", db)
        job_id = invoke_json("jobs", "list", "--database", db)["items"][0]["id"]

        data = invoke_json(
            "jobs", "run", job_id, "--extractor", "test_cli_commands:CannedExtractor",
            "--no-notify", "--database", db,
        )

        assert data["status"] == "completed"
        assert data["sessions_found"] == 1
        assert data["sessions_created"] == 1

        report = invoke_json("report", "show", "--database", db)
        assert report["jobs_completed"] == 1
        assert report["sessions_found"] == 1

    def test_run_due_runs_job_queued_by_intake(self, db):
        invoke("requests", "submit", "portland", "Sunny Camp", "--url", "https://sunnycamp.org",
               "--process", "--database", db)

        result = invoke("jobs", "run-due", "--extractor", "test_cli_commands:CannedExtractor", "--database", db)

        assert result.exit_code == 0, result.output
        jobs = invoke_json("jobs", "list", "--database", db)
        assert jobs["total"] == 1
        assert jobs["items"][0]["status"] == "completed"
        assert jobs["items"][0]["sessions_found"] == 1

    def test_bad_extractor_path(self, db):
        result = invoke("jobs", "run", "job_x", "--extractor", "not-a-path", "--database", db)
        assert result.exit_code == 1

    def test_cleanup_dry_run(self, db):
        invoke("requests", "submit", "portland", "Sunny Camp", "--url", "https://sunnycamp.org",
               "--process", "--database", db)
        data = invoke_json("jobs", "cleanup", "--dry-run", "--database", db)
        assert data["dry_run"] is True
        assert len(data["failed_job_ids"]) == 1


class TestAlerts:
    def test_raise_ack_and_filter(self, db):
        raised = invoke_json("alerts", "raise", "Scraper down", "--severity", "error", "--database", db)

        acked = invoke_json("alerts", "ack", raised["id"], "--by", "ops", "--database", db)
        assert acked["acknowledged_by"] == "ops"

        unacked = invoke_json("alerts", "list", "--unacked", "--database", db)
        assert unacked["total"] == 0

    def test_invalid_severity(self, db):
        result = invoke("alerts", "raise", "Scraper down", "--severity", "loud", "--database", db)
        assert result.exit_code == 1


class TestSequences:
    def test_tick_with_nothing_due(self, db):
        data = invoke_json("sequences", "tick", "--database", db)
        assert data == {"advanced": [], "errors": {}}

    def test_start_sends_first_email(self, db):
        conn = SqliteConnection(db)
        now = to_iso8601(utc_now())
        FamilyRepository(conn).create({
            "id": "fam_1",
            "email": "parent@example.com",
            "display_name": "The Parkers",
            "city_id": "city_portland",
            "plan": "free",
            "alerts_enabled": 1,
            "created_at": now,
            "updated_at": now,
        })
        conn.commit()
        conn.close()

        result = invoke("sequences", "start", "fam_1", "--database", db)
        assert result.exit_code == 0, result.output
        assert "To: parent@example.com  [winback_1]" in result.stdout

        runs = invoke_json("sequences", "list", "--subject", "fam_1", "--database", db)
        assert runs["items"][0]["status"] == "active"
        assert runs["items"][0]["last_completed_step"] == 1

    def test_start_unknown_sequence(self, db):
        result = invoke("sequences", "start", "fam_1", "--sequence", "nope", "--database", db)
        assert result.exit_code == 1
