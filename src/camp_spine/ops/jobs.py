"""
Scrape job lifecycle.

Job state machine (see :data:`camp_spine.core.models.JOB_VALID_TRANSITIONS`)::

    queued ──► running ──► completed
      │           │
      ├───────────┴──────► failed
      └───────────┴──────► cancelled

Every status change validates the transition and then applies a guarded
``UPDATE ... WHERE status = <expected>``, so a writer holding a stale view
of the job cannot overwrite a terminal row.  ``started_at`` is stamped on
entering ``running``; ``completed_at`` exactly once on entering any
terminal state.

Completing or failing a job also updates the source's health record:

- success resets the failure streak and schedules the next run one
  frequency period out
- a rate-limited failure schedules a short retry and does not count
  toward the streak
- any other failure backs off exponentially, capped by
  ``settings.max_backoff_hours``

Health transitions raise alerts (degraded at 3 consecutive failures,
needs-regeneration from 5, recovered, zero results, rate limited).
"""

from __future__ import annotations

import re
from datetime import datetime, timedelta
from typing import Any

from camp_spine.core.errors import InvalidTransitionError, InvariantViolation
from camp_spine.core.logging import get_logger
from camp_spine.core.models import (
    JOB_TERMINAL_STATUSES,
    AlertSeverity,
    AlertType,
    ExtractedSession,
    JobStatus,
    RegistrationStatus,
    validate_job_transition,
)
from camp_spine.core.protocols import Dispatcher, Extractor
from camp_spine.core.repositories import JobRepository, SessionRepository, SourceRepository
from camp_spine.core.timestamps import new_id, to_iso8601
from camp_spine.ops.alerts import insert_alert
from camp_spine.ops.context import OperationContext
from camp_spine.ops.notifications import evaluate_snapshot
from camp_spine.ops.requests import ListJobsRequest
from camp_spine.ops.responses import CleanupResult, JobDetail, JobRunSummary, QueueDueResult
from camp_spine.ops.result import OperationResult, PagedResult, start_timer
from camp_spine.ops.snapshots import append_snapshot

logger = get_logger(__name__)

CLEANUP_MESSAGE = "Manually marked as failed (cleanup)"
DEGRADED_AFTER_FAILURES = 3
REGENERATE_AFTER_FAILURES = 5

_RATE_LIMIT = re.compile(r"429|rate.?limit", re.IGNORECASE)


def _job_repo(ctx: OperationContext) -> JobRepository:
    return JobRepository(ctx.conn)


def is_rate_limited(error_message: str | None) -> bool:
    return bool(error_message and _RATE_LIMIT.search(error_message))


def backoff_hours(frequency_hours: int, consecutive_failures: int, max_hours: int) -> int:
    """``min(frequency * 2**failures, max_hours)``."""
    return min(frequency_hours * (2 ** consecutive_failures), max_hours)


# ------------------------------------------------------------------ #
# Queueing
# ------------------------------------------------------------------ #


def queue_job(
    ctx: OperationContext,
    source_id: str,
    triggered_by: str | None = None,
) -> OperationResult[JobDetail]:
    """Queue a scrape job for a source.

    Fails with ``CONFLICT`` while the source already has a queued or
    running job.
    """
    timer = start_timer()

    try:
        if not SourceRepository(ctx.conn).get(source_id):
            return OperationResult.fail(
                "NOT_FOUND", f"Source '{source_id}' not found", elapsed_ms=timer.elapsed_ms,
            )
        repo = _job_repo(ctx)
        open_job = repo.get_open_for_source(source_id)
        if open_job:
            return OperationResult.fail(
                "CONFLICT",
                f"Source '{source_id}' already has an open job ({open_job['id']}, {open_job['status']})",
                details={"job_id": open_job["id"], "status": open_job["status"]},
                elapsed_ms=timer.elapsed_ms,
            )

        row = {
            "id": new_id("job"),
            "source_id": source_id,
            "status": JobStatus.QUEUED.value,
            "triggered_by": triggered_by or ctx.caller,
            "created_at": ctx.now_iso(),
        }
        if ctx.dry_run:
            return OperationResult.ok(_row_to_detail(row), elapsed_ms=timer.elapsed_ms)

        repo.create(row)
        ctx.conn.commit()
        logger.info("job_queued", job_id=row["id"], source_id=source_id, triggered_by=row["triggered_by"])
        return OperationResult.ok(_row_to_detail(row), elapsed_ms=timer.elapsed_ms)
    except Exception as exc:
        ctx.conn.rollback()
        logger.exception("op_failed", error=str(exc))
        return OperationResult.fail(
            "INTERNAL", f"Failed to queue job: {exc}", elapsed_ms=timer.elapsed_ms,
        )


def queue_due_jobs(ctx: OperationContext) -> OperationResult[QueueDueResult]:
    """Queue a job for every active source that is due and idle.

    ``runnable`` lists every job left in ``queued``, oldest first, including
    ones queued earlier by intake or by hand for a source reported in
    ``skipped``.
    """
    timer = start_timer()
    queued: list[str] = []
    skipped: list[str] = []

    try:
        repo = _job_repo(ctx)
        for source in SourceRepository(ctx.conn).list_due(ctx.now_iso()):
            if repo.get_open_for_source(source["id"]):
                skipped.append(source["id"])
                continue
            if ctx.dry_run:
                queued.append(source["id"])
                continue
            job_id = new_id("job")
            repo.create({
                "id": job_id,
                "source_id": source["id"],
                "status": JobStatus.QUEUED.value,
                "triggered_by": "scheduler",
                "created_at": ctx.now_iso(),
            })
            queued.append(job_id)
        runnable = [job["id"] for job in repo.list_open() if job["status"] == JobStatus.QUEUED.value]
        ctx.conn.commit()
        logger.info("due_jobs_queued", queued=len(queued), skipped=len(skipped))
        return OperationResult.ok(
            QueueDueResult(queued=queued, skipped=skipped, runnable=runnable), elapsed_ms=timer.elapsed_ms,
        )
    except Exception as exc:
        ctx.conn.rollback()
        logger.exception("op_failed", error=str(exc))
        return OperationResult.fail(
            "INTERNAL", f"Failed to queue due jobs: {exc}", elapsed_ms=timer.elapsed_ms,
        )


# ------------------------------------------------------------------ #
# Transitions
# ------------------------------------------------------------------ #


def start_job(ctx: OperationContext, job_id: str) -> OperationResult[JobDetail]:
    return _transition_op(ctx, job_id, JobStatus.RUNNING)


def complete_job(
    ctx: OperationContext,
    job_id: str,
    sessions_found: int = 0,
    sessions_created: int = 0,
    sessions_updated: int = 0,
) -> OperationResult[JobDetail]:
    """Mark a running job completed with its counts and record source success."""
    return _transition_op(
        ctx, job_id, JobStatus.COMPLETED,
        {
            "sessions_found": sessions_found,
            "sessions_created": sessions_created,
            "sessions_updated": sessions_updated,
        },
    )


def fail_job(ctx: OperationContext, job_id: str, error_message: str) -> OperationResult[JobDetail]:
    """Mark a job failed, preserving *error_message*, and record source failure."""
    return _transition_op(ctx, job_id, JobStatus.FAILED, {"error_message": error_message})


def cancel_job(ctx: OperationContext, job_id: str) -> OperationResult[JobDetail]:
    return _transition_op(ctx, job_id, JobStatus.CANCELLED)


def _transition_op(
    ctx: OperationContext,
    job_id: str,
    target: JobStatus,
    updates: dict[str, Any] | None = None,
) -> OperationResult[JobDetail]:
    timer = start_timer()

    try:
        repo = _job_repo(ctx)
        row = repo.get(job_id)
        if not row:
            return OperationResult.fail(
                "NOT_FOUND", f"Job '{job_id}' not found", elapsed_ms=timer.elapsed_ms,
            )
        if ctx.dry_run:
            validate_job_transition(JobStatus(row["status"]), target)
            return OperationResult.ok(
                _row_to_detail({**row, **(updates or {}), "status": target.value}),
                elapsed_ms=timer.elapsed_ms,
            )

        updated = _apply_transition(ctx, row, target, updates or {})
        _record_health(ctx, updated)
        ctx.conn.commit()
        return OperationResult.ok(_row_to_detail(updated), elapsed_ms=timer.elapsed_ms)
    except InvariantViolation as exc:
        ctx.conn.rollback()
        logger.error("invariant_violation", job_id=job_id, **exc.to_dict())
        return OperationResult.from_error(exc, elapsed_ms=timer.elapsed_ms)
    except Exception as exc:
        ctx.conn.rollback()
        logger.exception("op_failed", error=str(exc))
        return OperationResult.fail(
            "INTERNAL", f"Failed to update job: {exc}", elapsed_ms=timer.elapsed_ms,
        )


def _apply_transition(
    ctx: OperationContext,
    row: dict[str, Any],
    target: JobStatus,
    updates: dict[str, Any],
) -> dict[str, Any]:
    """Validate and apply one guarded transition; no commit.

    Raises:
        InvalidTransitionError: The move is illegal, or the row changed
            status underneath us.
    """
    current = JobStatus(row["status"])
    validate_job_transition(current, target)

    changes = {**updates, "status": target.value}
    now = ctx.now_iso()
    if target == JobStatus.RUNNING:
        changes["started_at"] = now
    if target in JOB_TERMINAL_STATUSES:
        changes["completed_at"] = now

    repo = _job_repo(ctx)
    if not repo.transition(row["id"], current.value, changes):
        actual = repo.get(row["id"]) or {}
        raise InvalidTransitionError(actual.get("status", "missing"), target.value, "JobStatus")

    logger.info(
        "job_transitioned",
        job_id=row["id"],
        source_id=row["source_id"],
        from_status=current.value,
        to_status=target.value,
    )
    return {**row, **changes}


# ------------------------------------------------------------------ #
# Execution
# ------------------------------------------------------------------ #


def run_job(
    ctx: OperationContext,
    job_id: str,
    extractor: Extractor,
    dispatcher: Dispatcher | None = None,
) -> OperationResult[JobRunSummary]:
    """Execute a queued job end to end.

    Starts the job, runs extraction, upserts sessions, appends snapshots
    for sessions with known capacity, completes the job, then evaluates
    each new snapshot for notifications (when *dispatcher* is given).

    An extractor exception fails the job with the error text verbatim; the
    result is still ``success`` with ``status="failed"`` because the job
    engine handled it.  If the job was cancelled while extraction ran, the
    extracted data is discarded.
    """
    timer = start_timer()
    log = logger.bind(job_id=job_id)

    try:
        repo = _job_repo(ctx)
        row = repo.get(job_id)
        if not row:
            return OperationResult.fail(
                "NOT_FOUND", f"Job '{job_id}' not found", elapsed_ms=timer.elapsed_ms,
            )
        source = SourceRepository(ctx.conn).get(row["source_id"])
        if not source:
            return OperationResult.fail(
                "NOT_FOUND", f"Source '{row['source_id']}' not found", elapsed_ms=timer.elapsed_ms,
            )

        if ctx.dry_run:
            validate_job_transition(JobStatus(row["status"]), JobStatus.RUNNING)
            return OperationResult.ok(
                JobRunSummary(job_id=job_id, status=row["status"]), elapsed_ms=timer.elapsed_ms,
            )

        row = _apply_transition(ctx, row, JobStatus.RUNNING, {})
        ctx.conn.commit()
        log = log.bind(source_id=source["id"], domain=source["domain"])

        try:
            extracted = list(extractor.extract(source))
        except Exception as exc:
            error_message = str(exc)
            log.warning("extraction_failed", error=error_message)
            current = repo.get(job_id)
            if current["status"] != JobStatus.RUNNING.value:
                return OperationResult.ok(
                    JobRunSummary(job_id=job_id, status=current["status"], discarded=True),
                    elapsed_ms=timer.elapsed_ms,
                )
            failed = _apply_transition(ctx, current, JobStatus.FAILED, {"error_message": error_message})
            _record_health(ctx, failed)
            ctx.conn.commit()
            return OperationResult.ok(
                JobRunSummary(job_id=job_id, status=JobStatus.FAILED.value, error_message=error_message),
                warnings=[error_message],
                elapsed_ms=timer.elapsed_ms,
            )

        current = repo.get(job_id)
        if current["status"] != JobStatus.RUNNING.value:
            log.info("job_result_discarded", status=current["status"], sessions=len(extracted))
            return OperationResult.ok(
                JobRunSummary(job_id=job_id, status=current["status"], discarded=True),
                elapsed_ms=timer.elapsed_ms,
            )

        counts, new_snapshots, warnings = _ingest(ctx, source["id"], job_id, extracted)
        try:
            completed = _apply_transition(ctx, current, JobStatus.COMPLETED, counts)
        except InvalidTransitionError:
            ctx.conn.rollback()
            log.info("job_result_discarded", sessions=len(extracted))
            latest = repo.get(job_id) or current
            return OperationResult.ok(
                JobRunSummary(job_id=job_id, status=latest["status"], discarded=True),
                elapsed_ms=timer.elapsed_ms,
            )
        _record_health(ctx, completed)
        ctx.conn.commit()

        notifications_sent = 0
        if dispatcher is not None:
            for snapshot_id, newly_discovered in new_snapshots:
                result = evaluate_snapshot(ctx, snapshot_id, dispatcher, newly_discovered)
                if result.success:
                    notifications_sent += result.data.sent
                else:
                    warnings.append(result.error.message)

        log.info("job_run_finished", **counts, snapshots=len(new_snapshots), notified=notifications_sent)
        return OperationResult.ok(
            JobRunSummary(
                job_id=job_id,
                status=JobStatus.COMPLETED.value,
                snapshots_recorded=len(new_snapshots),
                notifications_sent=notifications_sent,
                **counts,
            ),
            warnings=warnings,
            elapsed_ms=timer.elapsed_ms,
        )
    except InvariantViolation as exc:
        ctx.conn.rollback()
        logger.error("invariant_violation", job_id=job_id, **exc.to_dict())
        return OperationResult.from_error(exc, elapsed_ms=timer.elapsed_ms)
    except Exception as exc:
        ctx.conn.rollback()
        logger.exception("op_failed", error=str(exc))
        return OperationResult.fail(
            "INTERNAL", f"Failed to run job: {exc}", elapsed_ms=timer.elapsed_ms,
        )


def _ingest(
    ctx: OperationContext,
    source_id: str,
    job_id: str,
    extracted: list[ExtractedSession],
) -> tuple[dict[str, int], list[tuple[str, bool]], list[str]]:
    """Upsert sessions and append snapshots; no commit.

    Returns the job counts, ``(snapshot_id, newly_discovered)`` pairs and
    warnings for sessions whose negative counts were ignored.
    """
    sessions = SessionRepository(ctx.conn)
    now = ctx.now_iso()
    created = updated = 0
    snapshots: list[tuple[str, bool]] = []
    warnings: list[str] = []

    for item in extracted:
        has_availability = item.has_availability
        if has_availability and (item.enrolled_count < 0 or item.capacity < 0):
            warnings.append(
                f"Ignored negative counts for {item.name!r} "
                f"(enrolled={item.enrolled_count}, capacity={item.capacity})",
            )
            has_availability = False
        fields = {
            "name": item.name,
            "start_date": item.start_date,
            "end_date": item.end_date,
            "time_text": item.time_text,
            "price_text": item.price_text,
            "age_grade_text": item.age_grade_text,
        }
        if item.registration_status is not None:
            fields["registration_status"] = item.registration_status
        if has_availability:
            fields["enrolled_count"] = item.enrolled_count
            fields["capacity"] = item.capacity

        existing = sessions.get_by_key(source_id, item.external_key)
        if existing is None:
            session_id = new_id("sess")
            sessions.create({
                "id": session_id,
                "source_id": source_id,
                "external_key": item.external_key,
                **fields,
                "created_at": now,
                "updated_at": now,
            })
            created += 1
            newly_discovered = True
            known_status = item.registration_status
        else:
            session_id = existing["id"]
            changed = {k: v for k, v in fields.items() if existing.get(k) != v}
            if changed:
                sessions.update_fields(session_id, {**changed, "updated_at": now})
                updated += 1
            newly_discovered = False
            known_status = item.registration_status or existing.get("registration_status")

        if has_availability:
            snap = append_snapshot(
                ctx,
                session_id,
                item.enrolled_count,
                item.capacity,
                known_status or RegistrationStatus.DRAFT.value,
                job_id,
            )
            snapshots.append((snap["id"], newly_discovered))

    counts = {
        "sessions_found": len(extracted),
        "sessions_created": created,
        "sessions_updated": updated,
    }
    return counts, snapshots, warnings


# ------------------------------------------------------------------ #
# Source health
# ------------------------------------------------------------------ #


def _record_health(ctx: OperationContext, job: dict[str, Any]) -> None:
    """Fold a terminal job outcome into its source's health record; no commit."""
    if job["status"] == JobStatus.COMPLETED.value:
        _record_success(ctx, job)
    elif job["status"] == JobStatus.FAILED.value:
        _record_failure(ctx, job)


def _record_success(ctx: OperationContext, job: dict[str, Any]) -> None:
    sources = SourceRepository(ctx.conn)
    source = sources.get(job["source_id"])
    if source is None:
        return
    now = ctx.now()
    previous_failures = source.get("consecutive_failures") or 0
    frequency = source.get("scrape_frequency_hours") or ctx.settings.default_scrape_frequency_hours

    sources.update_fields(source["id"], {
        "consecutive_failures": 0,
        "total_runs": (source.get("total_runs") or 0) + 1,
        "successful_runs": (source.get("successful_runs") or 0) + 1,
        "last_scraped_at": to_iso8601(now),
        "last_success_at": to_iso8601(now),
        "last_error": None,
        "next_scheduled_at": to_iso8601(now + timedelta(hours=frequency)),
        "updated_at": to_iso8601(now),
    })

    if previous_failures >= DEGRADED_AFTER_FAILURES:
        insert_alert(
            ctx,
            f"Source {source['domain']} recovered after {previous_failures} consecutive failures",
            AlertSeverity.INFO,
            AlertType.SOURCE_RECOVERED,
            source["id"],
        )
    if not job.get("sessions_found"):
        insert_alert(
            ctx,
            f"Scrape of {source['domain']} returned zero sessions",
            AlertSeverity.WARNING,
            AlertType.ZERO_RESULTS,
            source["id"],
        )


def _record_failure(ctx: OperationContext, job: dict[str, Any]) -> None:
    sources = SourceRepository(ctx.conn)
    source = sources.get(job["source_id"])
    if source is None:
        return
    now = ctx.now()
    error = job.get("error_message") or ""
    frequency = source.get("scrape_frequency_hours") or ctx.settings.default_scrape_frequency_hours
    updates: dict[str, Any] = {
        "total_runs": (source.get("total_runs") or 0) + 1,
        "last_scraped_at": to_iso8601(now),
        "last_failure_at": to_iso8601(now),
        "last_error": error,
        "updated_at": to_iso8601(now),
    }

    if is_rate_limited(error):
        retry_at: datetime = now + timedelta(hours=ctx.settings.rate_limit_retry_hours)
        updates["next_scheduled_at"] = to_iso8601(retry_at)
        sources.update_fields(source["id"], updates)
        insert_alert(
            ctx,
            f"Source {source['domain']} is rate limited; retrying at {updates['next_scheduled_at']}",
            AlertSeverity.INFO,
            AlertType.RATE_LIMITED,
            source["id"],
        )
        return

    failures = (source.get("consecutive_failures") or 0) + 1
    delay = backoff_hours(frequency, failures, ctx.settings.max_backoff_hours)
    updates["consecutive_failures"] = failures
    updates["next_scheduled_at"] = to_iso8601(now + timedelta(hours=delay))
    sources.update_fields(source["id"], updates)
    logger.info("source_backoff", source_id=source["id"], failures=failures, delay_hours=delay)

    if failures == DEGRADED_AFTER_FAILURES:
        insert_alert(
            ctx,
            f"Source {source['domain']} has failed {failures} times in a row: {error}",
            AlertSeverity.WARNING,
            AlertType.SCRAPER_DEGRADED,
            source["id"],
        )
    elif failures >= REGENERATE_AFTER_FAILURES:
        insert_alert(
            ctx,
            f"Source {source['domain']} needs a new scraper after {failures} consecutive failures",
            AlertSeverity.ERROR,
            AlertType.SCRAPER_NEEDS_REGENERATION,
            source["id"],
        )


# ------------------------------------------------------------------ #
# Maintenance & reads
# ------------------------------------------------------------------ #


def cleanup_stuck_jobs(
    ctx: OperationContext,
    source_id: str | None = None,
    older_than: timedelta | None = None,
) -> OperationResult[CleanupResult]:
    """Fail open jobs, optionally only those created more than *older_than* ago.

    Source health is left untouched: a stuck job says nothing about the
    provider's site.
    """
    timer = start_timer()

    try:
        repo = _job_repo(ctx)
        created_before = to_iso8601(ctx.now() - older_than) if older_than else None
        stuck = repo.list_open(source_id=source_id, created_before=created_before)
        ids = [row["id"] for row in stuck]
        if ctx.dry_run:
            return OperationResult.ok(CleanupResult(failed_job_ids=ids, dry_run=True), elapsed_ms=timer.elapsed_ms)

        failed: list[str] = []
        for row in stuck:
            try:
                _apply_transition(ctx, row, JobStatus.FAILED, {"error_message": CLEANUP_MESSAGE})
                failed.append(row["id"])
            except InvalidTransitionError as exc:
                # Finished between the listing and the update.
                logger.info("cleanup_skipped", job_id=row["id"], reason=exc.message)
        ctx.conn.commit()
        logger.info("stuck_jobs_cleaned", count=len(failed), source_id=source_id)
        return OperationResult.ok(CleanupResult(failed_job_ids=failed), elapsed_ms=timer.elapsed_ms)
    except Exception as exc:
        ctx.conn.rollback()
        logger.exception("op_failed", error=str(exc))
        return OperationResult.fail(
            "INTERNAL", f"Failed to clean up jobs: {exc}", elapsed_ms=timer.elapsed_ms,
        )


def get_job(ctx: OperationContext, job_id: str) -> OperationResult[JobDetail]:
    timer = start_timer()
    try:
        row = _job_repo(ctx).get(job_id)
        if not row:
            return OperationResult.fail(
                "NOT_FOUND", f"Job '{job_id}' not found", elapsed_ms=timer.elapsed_ms,
            )
        return OperationResult.ok(_row_to_detail(row), elapsed_ms=timer.elapsed_ms)
    except Exception as exc:
        logger.exception("op_failed", error=str(exc))
        return OperationResult.fail(
            "INTERNAL", f"Failed to get job: {exc}", elapsed_ms=timer.elapsed_ms,
        )


def list_jobs(ctx: OperationContext, request: ListJobsRequest) -> PagedResult[JobDetail]:
    """List jobs newest first."""
    timer = start_timer()
    try:
        rows, total = _job_repo(ctx).list_jobs(
            source_id=request.source_id,
            status=request.status,
            limit=request.limit,
            offset=request.offset,
        )
        return PagedResult.from_items(
            [_row_to_detail(r) for r in rows],
            total=total,
            limit=request.limit,
            offset=request.offset,
            elapsed_ms=timer.elapsed_ms,
        )
    except Exception as exc:
        logger.exception("op_failed", error=str(exc))
        return PagedResult.fail(
            "INTERNAL", f"Failed to list jobs: {exc}", elapsed_ms=timer.elapsed_ms,
        )


def _row_to_detail(row: dict[str, Any]) -> JobDetail:
    return JobDetail(
        id=row["id"],
        source_id=row["source_id"],
        status=row["status"],
        triggered_by=row.get("triggered_by"),
        sessions_found=row.get("sessions_found"),
        sessions_created=row.get("sessions_created"),
        sessions_updated=row.get("sessions_updated"),
        error_message=row.get("error_message"),
        created_at=row.get("created_at"),
        started_at=row.get("started_at"),
        completed_at=row.get("completed_at"),
    )
