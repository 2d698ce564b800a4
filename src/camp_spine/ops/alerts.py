"""
Alert triage operations.

Alerts are raised by the job engine (source health) and by operators.
They are never deleted; acknowledgement is set once and later
acknowledgements are no-ops that report the original timestamp.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from camp_spine.core.logging import get_logger
from camp_spine.core.models import SEVERITY_RANK, AlertSeverity
from camp_spine.core.repositories import AlertRepository
from camp_spine.core.timestamps import new_id, to_iso8601
from camp_spine.ops.context import OperationContext
from camp_spine.ops.requests import ListAlertsRequest
from camp_spine.ops.responses import AlertSummary
from camp_spine.ops.result import OperationResult, PagedResult, start_timer

logger = get_logger(__name__)

__all__ = [
    "SEVERITY_RANK",
    "acknowledge_alert",
    "insert_alert",
    "list_alerts",
    "list_unacknowledged",
    "raise_alert",
    "to_alert_summary",
]


def _alert_repo(ctx: OperationContext) -> AlertRepository:
    return AlertRepository(ctx.conn)


def raise_alert(
    ctx: OperationContext,
    message: str,
    severity: str,
    alert_type: str,
    source_id: str | None = None,
) -> OperationResult[dict]:
    """Record a new alert and return its id."""
    timer = start_timer()

    if severity not in SEVERITY_RANK:
        return OperationResult.fail(
            "VALIDATION_FAILED",
            f"Invalid severity '{severity}'; expected one of {', '.join(SEVERITY_RANK)}",
            elapsed_ms=timer.elapsed_ms,
        )
    if not (message or "").strip():
        return OperationResult.fail(
            "VALIDATION_FAILED", "message is required", elapsed_ms=timer.elapsed_ms,
        )

    if ctx.dry_run:
        return OperationResult.ok(
            {"dry_run": True, "would_raise": alert_type}, elapsed_ms=timer.elapsed_ms,
        )

    try:
        alert_id = insert_alert(ctx, message, severity, alert_type, source_id)
        ctx.conn.commit()
        return OperationResult.ok({"id": alert_id}, elapsed_ms=timer.elapsed_ms)
    except Exception as exc:
        ctx.conn.rollback()
        logger.exception("op_failed", error=str(exc))
        return OperationResult.fail(
            "INTERNAL", f"Failed to raise alert: {exc}", elapsed_ms=timer.elapsed_ms,
        )


def insert_alert(
    ctx: OperationContext,
    message: str,
    severity: AlertSeverity | str,
    alert_type: Any,
    source_id: str | None = None,
) -> str:
    """Insert an alert row inside the caller's transaction (no commit)."""
    alert_id = new_id("alrt")
    severity_value = getattr(severity, "value", severity)
    type_value = getattr(alert_type, "value", alert_type)
    _alert_repo(ctx).create({
        "id": alert_id,
        "message": message,
        "severity": severity_value,
        "alert_type": type_value,
        "source_id": source_id,
        "created_at": ctx.now_iso(),
    })
    logger.info(
        "alert_raised",
        alert_id=alert_id,
        severity=severity_value,
        alert_type=type_value,
        source_id=source_id,
    )
    return alert_id


def acknowledge_alert(
    ctx: OperationContext,
    alert_id: str,
    acknowledged_by: str | None = None,
) -> OperationResult[AlertSummary]:
    """Acknowledge an alert.  Idempotent: the first timestamp sticks."""
    timer = start_timer()

    try:
        repo = _alert_repo(ctx)
        row = repo.get(alert_id)
        if not row:
            return OperationResult.fail(
                "NOT_FOUND", f"Alert '{alert_id}' not found", elapsed_ms=timer.elapsed_ms,
            )
        if row.get("acknowledged_at") or ctx.dry_run:
            return OperationResult.ok(to_alert_summary(row), elapsed_ms=timer.elapsed_ms)

        if repo.acknowledge(alert_id, ctx.now_iso(), acknowledged_by or ctx.user):
            logger.info("alert_acknowledged", alert_id=alert_id, by=acknowledged_by or ctx.user)
        ctx.conn.commit()
        return OperationResult.ok(to_alert_summary(repo.get(alert_id)), elapsed_ms=timer.elapsed_ms)
    except Exception as exc:
        ctx.conn.rollback()
        logger.exception("op_failed", error=str(exc))
        return OperationResult.fail(
            "INTERNAL", f"Failed to acknowledge alert: {exc}", elapsed_ms=timer.elapsed_ms,
        )


def list_unacknowledged(
    ctx: OperationContext,
    since: datetime | str,
    until: datetime | str | None = None,
) -> OperationResult[list[AlertSummary]]:
    """Unacknowledged alerts created at or after *since*.

    Ordered by severity (critical first), then newest first, then id.
    """
    timer = start_timer()
    try:
        rows = _alert_repo(ctx).list_unacknowledged(_as_iso(since), _as_iso(until))
        return OperationResult.ok([to_alert_summary(r) for r in rows], elapsed_ms=timer.elapsed_ms)
    except Exception as exc:
        logger.exception("op_failed", error=str(exc))
        return OperationResult.fail(
            "INTERNAL", f"Failed to list alerts: {exc}", elapsed_ms=timer.elapsed_ms,
        )


def list_alerts(ctx: OperationContext, request: ListAlertsRequest) -> PagedResult[AlertSummary]:
    timer = start_timer()
    try:
        rows, total = _alert_repo(ctx).list_alerts(
            severity=request.severity,
            alert_type=request.alert_type,
            source_id=request.source_id,
            acknowledged=request.acknowledged,
            limit=request.limit,
            offset=request.offset,
        )
        return PagedResult.from_items(
            [to_alert_summary(r) for r in rows],
            total=total,
            limit=request.limit,
            offset=request.offset,
            elapsed_ms=timer.elapsed_ms,
        )
    except Exception as exc:
        logger.exception("op_failed", error=str(exc))
        return PagedResult.fail(
            "INTERNAL", f"Failed to list alerts: {exc}", elapsed_ms=timer.elapsed_ms,
        )


def _as_iso(value: datetime | str | None) -> str | None:
    if value is None or isinstance(value, str):
        return value
    return to_iso8601(value)


def to_alert_summary(row: dict[str, Any]) -> AlertSummary:
    return AlertSummary(
        id=row["id"],
        message=row["message"],
        severity=row["severity"],
        alert_type=row["alert_type"],
        created_at=row["created_at"],
        source_id=row.get("source_id"),
        acknowledged_at=row.get("acknowledged_at"),
        acknowledged_by=row.get("acknowledged_by"),
    )
