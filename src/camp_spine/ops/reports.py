"""
Daily scraper report.

:func:`compute_daily_report` is read-only: the same data and the same
``now`` always produce the same report.  :func:`send_daily_report` mails
it to every configured admin; one recipient failing does not stop the
others.
"""

from __future__ import annotations

from dataclasses import asdict
from datetime import datetime, timedelta

from camp_spine.core.logging import get_logger
from camp_spine.core.models import JobStatus
from camp_spine.core.protocols import Dispatcher
from camp_spine.core.repositories import AlertRepository, JobRepository
from camp_spine.core.timestamps import to_iso8601
from camp_spine.ops.alerts import to_alert_summary
from camp_spine.ops.context import OperationContext
from camp_spine.ops.responses import DailyReport, ReportDelivery
from camp_spine.ops.result import OperationResult, start_timer

logger = get_logger(__name__)

REPORT_TEMPLATE = "daily_report"


def compute_daily_report(ctx: OperationContext, now: datetime | None = None) -> OperationResult[DailyReport]:
    """Aggregate jobs that finished in ``[now - window, now]``.

    Session counts are summed over completed jobs only.
    """
    timer = start_timer()
    end = now or ctx.now()
    start = end - timedelta(hours=ctx.settings.report_window_hours)
    start_iso, end_iso = to_iso8601(start), to_iso8601(end)

    try:
        jobs = JobRepository(ctx.conn).list_completed_between(start_iso, end_iso)
        by_status = {status: 0 for status in (JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELLED)}
        found = created = updated = 0
        for job in jobs:
            status = JobStatus(job["status"])
            if status in by_status:
                by_status[status] += 1
            if status == JobStatus.COMPLETED:
                found += job.get("sessions_found") or 0
                created += job.get("sessions_created") or 0
                updated += job.get("sessions_updated") or 0

        alerts = AlertRepository(ctx.conn).list_unacknowledged(start_iso, end_iso)
        report = DailyReport(
            window_start=start_iso,
            window_end=end_iso,
            total_jobs=sum(by_status.values()),
            jobs_completed=by_status[JobStatus.COMPLETED],
            jobs_failed=by_status[JobStatus.FAILED],
            jobs_cancelled=by_status[JobStatus.CANCELLED],
            sessions_found=found,
            sessions_created=created,
            sessions_updated=updated,
            unacknowledged_alerts=[to_alert_summary(a) for a in alerts],
        )
        return OperationResult.ok(report, elapsed_ms=timer.elapsed_ms)
    except Exception as exc:
        logger.exception("op_failed", error=str(exc))
        return OperationResult.fail(
            "INTERNAL", f"Failed to compute report: {exc}", elapsed_ms=timer.elapsed_ms,
        )


def report_subject(report: DailyReport) -> str:
    return f"Scraper Report: {report.total_jobs} jobs, {report.sessions_found} sessions found"


def send_daily_report(
    ctx: OperationContext,
    dispatcher: Dispatcher,
    now: datetime | None = None,
) -> OperationResult[ReportDelivery]:
    """Compute the report and send it to ``settings.admin_emails``."""
    timer = start_timer()

    if not ctx.settings.feature_flags.daily_report:
        logger.info("daily_report_disabled")
        return OperationResult.ok(ReportDelivery(subject="", skipped=True), elapsed_ms=timer.elapsed_ms)

    computed = compute_daily_report(ctx, now)
    if not computed.success:
        return OperationResult.fail(
            computed.error.code, computed.error.message, elapsed_ms=timer.elapsed_ms,
        )
    report = computed.data
    subject = report_subject(report)
    recipients = ctx.settings.admin_emails

    if not recipients:
        logger.warning("daily_report_no_recipients")
        return OperationResult.ok(
            ReportDelivery(subject=subject, skipped=True),
            warnings=["No admin emails configured"],
            elapsed_ms=timer.elapsed_ms,
        )
    if ctx.dry_run:
        return OperationResult.ok(ReportDelivery(subject=subject), elapsed_ms=timer.elapsed_ms)

    payload = {"subject": subject, "from_email": ctx.settings.report_from_email, **asdict(report)}
    sent: list[str] = []
    failed: list[str] = []
    dispatch_ids: list[str] = []
    for email in recipients:
        try:
            dispatch_ids.append(dispatcher.send(email, REPORT_TEMPLATE, payload))
            sent.append(email)
        except Exception as exc:
            logger.warning("daily_report_send_failed", recipient=email, error=str(exc))
            failed.append(email)

    logger.info("daily_report_sent", subject=subject, sent=len(sent), failed=len(failed))
    return OperationResult.ok(
        ReportDelivery(subject=subject, sent=sent, failed=failed, dispatch_ids=dispatch_ids),
        warnings=[f"Failed to send report to {email}" for email in failed],
        elapsed_ms=timer.elapsed_ms,
    )
