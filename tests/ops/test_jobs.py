"""Tests for camp_spine.ops.jobs — lifecycle, execution and source health."""

from dataclasses import replace
from datetime import timedelta

import pytest

from camp_spine.core.models import ExtractedSession
from camp_spine.core.repositories import (
    AlertRepository,
    JobRepository,
    SessionRepository,
    SnapshotRepository,
    SourceRepository,
)
from camp_spine.core.timestamps import to_iso8601
from camp_spine.ops.jobs import (
    CLEANUP_MESSAGE,
    backoff_hours,
    cancel_job,
    cleanup_stuck_jobs,
    complete_job,
    fail_job,
    get_job,
    is_rate_limited,
    list_jobs,
    queue_due_jobs,
    queue_job,
    run_job,
    start_job,
)
from camp_spine.ops.requests import ListJobsRequest
from camp_spine.ops.snapshots import append_snapshot

ROBOTICS = ExtractedSession(
    name="Robotics Week",
    start_date="2026-07-06",
    end_date="2026-07-10",
    price_text="$350",
    enrolled_count=12,
    capacity=20,
    registration_status="active",
)
ART = ExtractedSession(name="Art Camp", start_date="2026-07-13", end_date="2026-07-17")


def _alerts(ctx, source_id):
    rows, _ = AlertRepository(ctx.conn).list_alerts(source_id=source_id)
    return rows


def _alert_types(ctx, source_id):
    return sorted(a["alert_type"] for a in _alerts(ctx, source_id))


class TestHelpers:
    @pytest.mark.parametrize(
        "message",
        ["HTTP 429 Too Many Requests", "Rate limit exceeded", "ratelimit hit", "RATE-LIMITED"],
    )
    def test_rate_limit_detection(self, message):
        assert is_rate_limited(message)

    @pytest.mark.parametrize("message", [None, "", "timeout", "HTTP 500"])
    def test_not_rate_limited(self, message):
        assert not is_rate_limited(message)

    def test_backoff_is_capped(self):
        assert backoff_hours(24, 1, 168) == 48
        assert backoff_hours(24, 2, 168) == 96
        assert backoff_hours(24, 3, 168) == 168
        assert backoff_hours(6, 3, 168) == 48


class TestQueue:
    def test_queue_job(self, ctx, seed):
        source = seed.source()
        result = queue_job(ctx, source["id"], triggered_by="manual")
        assert result.success
        assert result.data.status == "queued"
        assert result.data.triggered_by == "manual"

    def test_open_job_conflicts(self, ctx, seed):
        source = seed.source()
        first = queue_job(ctx, source["id"]).data
        second = queue_job(ctx, source["id"])
        assert second.error.code == "CONFLICT"
        assert second.error.details["job_id"] == first.id

    def test_can_queue_after_terminal(self, ctx, seed):
        source = seed.source()
        seed.job(source["id"], status="completed")
        assert queue_job(ctx, source["id"]).success

    def test_unknown_source(self, ctx):
        assert queue_job(ctx, "src_missing").error.code == "NOT_FOUND"

    def test_dry_run(self, dry_ctx, seed):
        source = seed.source()
        assert queue_job(dry_ctx, source["id"]).success
        assert JobRepository(dry_ctx.conn).get_open_for_source(source["id"]) is None

    def test_queue_due_jobs(self, ctx, seed, clock):
        due = seed.source("due.org")
        seed.source("later.org", next_scheduled_at=to_iso8601(clock() + timedelta(hours=3)))
        busy = seed.source("busy.org")
        seed.job(busy["id"], status="running")
        seed.source("off.org", is_active=0)

        result = queue_due_jobs(ctx)

        assert result.success
        assert result.data.skipped == [busy["id"]]
        assert len(result.data.queued) == 1
        job = JobRepository(ctx.conn).get(result.data.queued[0])
        assert job["source_id"] == due["id"]
        assert job["triggered_by"] == "scheduler"

    def test_queue_due_jobs_reports_earlier_queued_jobs_as_runnable(self, ctx, seed, clock):
        waiting = seed.source("waiting.org")
        earlier = queue_job(ctx, waiting["id"], triggered_by="request:req_1").data
        clock.advance(minutes=1)
        due = seed.source("due.org")
        running = seed.source("running.org")
        seed.job(running["id"], status="running")

        result = queue_due_jobs(ctx).data

        assert sorted(result.skipped) == sorted([waiting["id"], running["id"]])
        assert result.runnable == [earlier.id, *result.queued]
        assert JobRepository(ctx.conn).get(result.queued[0])["source_id"] == due["id"]


class TestTransitions:
    def test_lifecycle_timestamps(self, ctx, seed, clock):
        job = seed.job(seed.source()["id"])

        started = start_job(ctx, job["id"]).data
        assert started.status == "running"
        assert started.started_at == to_iso8601(clock())
        assert started.completed_at is None

        clock.advance(minutes=5)
        done = complete_job(ctx, job["id"], sessions_found=3, sessions_created=2, sessions_updated=1).data
        assert done.status == "completed"
        assert done.completed_at == to_iso8601(clock())
        assert (done.sessions_found, done.sessions_created, done.sessions_updated) == (3, 2, 1)

    def test_terminal_is_final(self, ctx, seed):
        job = seed.job(seed.source()["id"], status="completed")
        result = start_job(ctx, job["id"])
        assert result.error.code == "INVALID_TRANSITION"
        assert get_job(ctx, job["id"]).data.status == "completed"

    def test_queued_cannot_complete(self, ctx, seed):
        job = seed.job(seed.source()["id"])
        assert complete_job(ctx, job["id"]).error.code == "INVALID_TRANSITION"

    def test_cancel_queued(self, ctx, seed):
        job = seed.job(seed.source()["id"])
        cancelled = cancel_job(ctx, job["id"]).data
        assert cancelled.status == "cancelled"
        assert cancelled.completed_at is not None

    def test_fail_preserves_message(self, ctx, seed):
        job = seed.job(seed.source()["id"], status="running")
        failed = fail_job(ctx, job["id"], "Timeout after 30s: <html>").data
        assert failed.error_message == "Timeout after 30s: <html>"

    def test_missing_job(self, ctx):
        assert start_job(ctx, "job_missing").error.code == "NOT_FOUND"

    def test_list_jobs(self, ctx, seed):
        source = seed.source()
        seed.job(source["id"], status="completed")
        seed.job(source["id"], status="failed")
        seed.job(seed.source("other.org")["id"])

        assert list_jobs(ctx, ListJobsRequest(source_id=source["id"])).total == 2
        assert list_jobs(ctx, ListJobsRequest(status="queued")).total == 1


class TestRunJob:
    def test_ingests_sessions_and_snapshots(self, ctx, seed, make_extractor):
        source = seed.source()
        job = seed.job(source["id"])
        extractor = make_extractor([ROBOTICS, ART])

        result = run_job(ctx, job["id"], extractor)

        assert result.success
        summary = result.data
        assert summary.status == "completed"
        assert (summary.sessions_found, summary.sessions_created, summary.sessions_updated) == (2, 2, 0)
        assert summary.snapshots_recorded == 1
        assert extractor.calls[0]["domain"] == "sunnycamp.org"

        sessions = SessionRepository(ctx.conn).list_for_source(source["id"])
        assert {s["name"] for s in sessions} == {"Robotics Week", "Art Camp"}
        robotics = SessionRepository(ctx.conn).get_by_key(source["id"], ROBOTICS.external_key)
        snap = SnapshotRepository(ctx.conn).get_latest(robotics["id"])
        assert (snap["enrolled_count"], snap["capacity"], snap["spots_remaining"]) == (12, 20, 8)
        assert snap["job_id"] == job["id"]

        health = SourceRepository(ctx.conn).get(source["id"])
        assert health["successful_runs"] == 1
        assert health["consecutive_failures"] == 0

    def test_second_run_updates_in_place(self, ctx, seed, clock, make_extractor):
        source = seed.source()
        run_job(ctx, seed.job(source["id"])["id"], make_extractor([ROBOTICS, ART]))
        clock.advance(days=1)

        changed = replace(ROBOTICS, price_text="$375", enrolled_count=15)
        summary = run_job(ctx, seed.job(source["id"])["id"], make_extractor([changed, ART])).data

        assert (summary.sessions_created, summary.sessions_updated) == (0, 1)
        robotics = SessionRepository(ctx.conn).get_by_key(source["id"], ROBOTICS.external_key)
        assert robotics["price_text"] == "$375"
        history = SnapshotRepository(ctx.conn).list_for_session(robotics["id"])
        assert [h["enrolled_count"] for h in history] == [12, 15]

    def test_snapshot_status_defaults_to_draft(self, ctx, seed, make_extractor):
        source = seed.source()
        unknown = replace(ROBOTICS, registration_status=None)
        run_job(ctx, seed.job(source["id"])["id"], make_extractor([unknown]))
        robotics = SessionRepository(ctx.conn).get_by_key(source["id"], ROBOTICS.external_key)
        assert SnapshotRepository(ctx.conn).get_latest(robotics["id"])["registration_status"] == "draft"

    def test_negative_counts_are_ignored(self, ctx, seed, make_extractor):
        source = seed.source()
        broken = replace(ROBOTICS, enrolled_count=-1)

        result = run_job(ctx, seed.job(source["id"])["id"], make_extractor([broken]))

        assert result.data.status == "completed"
        assert result.data.snapshots_recorded == 0
        assert result.warnings and "Ignored negative counts" in result.warnings[0]
        robotics = SessionRepository(ctx.conn).get_by_key(source["id"], ROBOTICS.external_key)
        assert robotics is not None
        assert SnapshotRepository(ctx.conn).get_latest(robotics["id"]) is None

    def test_over_enrolment_reads_as_sold_out(self, ctx, seed, make_extractor):
        source = seed.source()
        run_job(ctx, seed.job(source["id"])["id"], make_extractor([replace(ROBOTICS, enrolled_count=21)]))
        robotics = SessionRepository(ctx.conn).get_by_key(source["id"], ROBOTICS.external_key)
        assert SnapshotRepository(ctx.conn).get_latest(robotics["id"])["spots_remaining"] == 0

    def test_extractor_failure_fails_job(self, ctx, seed, clock, make_extractor):
        source = seed.source()
        job = seed.job(source["id"])

        result = run_job(ctx, job["id"], make_extractor(error=RuntimeError("Timeout after 30s")))

        assert result.success
        assert result.data.status == "failed"
        assert result.warnings == ["Timeout after 30s"]
        assert get_job(ctx, job["id"]).data.error_message == "Timeout after 30s"
        health = SourceRepository(ctx.conn).get(source["id"])
        assert health["consecutive_failures"] == 1
        assert health["next_scheduled_at"] == to_iso8601(clock() + timedelta(hours=48))

    def test_cancel_during_extraction_discards(self, ctx, seed, make_extractor):
        source = seed.source()
        job = seed.job(source["id"])
        extractor = make_extractor([ROBOTICS])
        extractor.on_extract = lambda _source: cancel_job(ctx, job["id"])

        result = run_job(ctx, job["id"], extractor)

        assert result.data.discarded
        assert result.data.status == "cancelled"
        assert SessionRepository(ctx.conn).list_for_source(source["id"]) == []
        assert SourceRepository(ctx.conn).get(source["id"])["total_runs"] == 0

    def test_run_requires_queued(self, ctx, seed, make_extractor):
        job = seed.job(seed.source()["id"], status="completed")
        result = run_job(ctx, job["id"], make_extractor([ROBOTICS]))
        assert result.error.code == "INVALID_TRANSITION"

    def test_low_availability_reaches_each_subscriber_once(self, ctx, seed, clock, dispatcher, make_extractor):
        source = seed.source()
        session = seed.session(source["id"], registration_status="active", enrolled_count=18, capacity=20)
        append_snapshot(ctx, session["id"], 18, 20, "active")
        ctx.conn.commit()
        seed.family("fam_1", "one@example.com")
        seed.family("fam_2", "two@example.com")
        seed.family("fam_3", "three@example.com", alerts_enabled=False)
        for family_id in ("fam_1", "fam_2", "fam_3"):
            seed.subscription(family_id, session["id"])
        clock.advance(hours=6)

        nineteen = replace(ROBOTICS, enrolled_count=19, capacity=20)
        summary = run_job(ctx, seed.job(source["id"])["id"], make_extractor([nineteen]), dispatcher).data

        assert summary.notifications_sent == 2
        assert sorted(m.recipient for m in dispatcher.sent) == ["one@example.com", "two@example.com"]
        assert {m.template_id for m in dispatcher.sent} == {"low_availability"}
        assert dispatcher.sent[0].payload["spots_remaining"] == 1


class TestSourceHealth:
    def _fail(self, ctx, seed, source_id, message="HTTP 500"):
        job = seed.job(source_id, status="running")
        return fail_job(ctx, job["id"], message)

    def test_backoff_and_escalation(self, ctx, seed, clock):
        source = seed.source()
        expected_delay = [48, 96, 168, 168, 168]

        for attempt, delay in enumerate(expected_delay, start=1):
            self._fail(ctx, seed, source["id"])
            health = SourceRepository(ctx.conn).get(source["id"])
            assert health["consecutive_failures"] == attempt
            assert health["next_scheduled_at"] == to_iso8601(clock() + timedelta(hours=delay))
            assert health["last_error"] == "HTTP 500"

        alerts = _alerts(ctx, source["id"])
        by_type = {a["alert_type"]: a for a in alerts}
        assert by_type["scraper_degraded"]["severity"] == "warning"
        assert by_type["scraper_needs_regeneration"]["severity"] == "error"
        assert _alert_types(ctx, source["id"]) == ["scraper_degraded", "scraper_needs_regeneration"]

    def test_rate_limit_does_not_count(self, ctx, seed, clock):
        source = seed.source(consecutive_failures=2)

        self._fail(ctx, seed, source["id"], "HTTP 429 Too Many Requests")

        health = SourceRepository(ctx.conn).get(source["id"])
        assert health["consecutive_failures"] == 2
        assert health["total_runs"] == 1
        assert health["next_scheduled_at"] == to_iso8601(clock() + timedelta(hours=6))
        alerts = _alerts(ctx, source["id"])
        assert [(a["alert_type"], a["severity"]) for a in alerts] == [("rate_limited", "info")]

    def test_recovery_alert(self, ctx, seed, clock):
        source = seed.source(consecutive_failures=4)
        job = seed.job(source["id"], status="running")

        complete_job(ctx, job["id"], sessions_found=6, sessions_created=1)

        health = SourceRepository(ctx.conn).get(source["id"])
        assert health["consecutive_failures"] == 0
        assert health["last_error"] is None
        assert health["next_scheduled_at"] == to_iso8601(clock() + timedelta(hours=24))
        assert _alert_types(ctx, source["id"]) == ["source_recovered"]

    def test_zero_results_alert(self, ctx, seed):
        source = seed.source()
        job = seed.job(source["id"], status="running")
        complete_job(ctx, job["id"], sessions_found=0)
        assert _alert_types(ctx, source["id"]) == ["zero_results"]

    def test_cancel_leaves_health_alone(self, ctx, seed):
        source = seed.source(consecutive_failures=1)
        job = seed.job(source["id"], status="running")
        cancel_job(ctx, job["id"])
        health = SourceRepository(ctx.conn).get(source["id"])
        assert (health["consecutive_failures"], health["total_runs"]) == (1, 0)


class TestCleanup:
    def test_fails_open_jobs_without_touching_health(self, ctx, seed, clock):
        source = seed.source()
        old = seed.job(source["id"], status="running")
        clock.advance(hours=3)
        recent = seed.job(source["id"])
        finished = seed.job(source["id"], status="completed")

        result = cleanup_stuck_jobs(ctx, older_than=timedelta(hours=1))

        assert result.data.failed_job_ids == [old["id"]]
        assert get_job(ctx, old["id"]).data.error_message == CLEANUP_MESSAGE
        assert get_job(ctx, recent["id"]).data.status == "queued"
        assert get_job(ctx, finished["id"]).data.status == "completed"
        health = SourceRepository(ctx.conn).get(source["id"])
        assert (health["consecutive_failures"], health["total_runs"]) == (0, 0)
        assert _alerts(ctx, source["id"]) == []

    def test_scoped_to_source(self, ctx, seed):
        mine = seed.job(seed.source()["id"])
        other = seed.job(seed.source("other.org")["id"])
        result = cleanup_stuck_jobs(ctx, source_id=mine["source_id"])
        assert result.data.failed_job_ids == [mine["id"]]
        assert get_job(ctx, other["id"]).data.status == "queued"

    def test_dry_run_lists_only(self, ctx, dry_ctx, seed):
        job = seed.job(seed.source()["id"])
        result = cleanup_stuck_jobs(dry_ctx)
        assert result.data.dry_run
        assert result.data.failed_job_ids == [job["id"]]
        assert get_job(ctx, job["id"]).data.status == "queued"
