"""
Availability snapshot operations.

Snapshots are append-only.  The job engine appends one per session per
run when the extractor reported both enrolment and capacity; operators can
also record one by hand (e.g. after a phone call with a provider).
"""

from __future__ import annotations

from typing import Any

from camp_spine.core.logging import get_logger
from camp_spine.core.models import RegistrationStatus
from camp_spine.core.repositories import SessionRepository, SnapshotRepository
from camp_spine.core.timestamps import new_id
from camp_spine.ops.context import OperationContext
from camp_spine.ops.responses import SnapshotDetail
from camp_spine.ops.result import OperationResult, start_timer

logger = get_logger(__name__)

_STATUSES = frozenset(s.value for s in RegistrationStatus)


def append_snapshot(
    ctx: OperationContext,
    session_id: str,
    enrolled_count: int,
    capacity: int,
    registration_status: str,
    job_id: str | None = None,
) -> dict[str, Any]:
    """Insert a snapshot row inside the caller's transaction and return it."""
    row = {
        "id": new_id("snap"),
        "session_id": session_id,
        "job_id": job_id,
        "enrolled_count": enrolled_count,
        "capacity": capacity,
        "spots_remaining": max(capacity - enrolled_count, 0),
        "registration_status": registration_status,
        "recorded_at": ctx.now_iso(),
    }
    SnapshotRepository(ctx.conn).append(row)
    return row


def record_snapshot(
    ctx: OperationContext,
    session_id: str,
    enrolled_count: int,
    capacity: int,
    registration_status: str,
    job_id: str | None = None,
) -> OperationResult[SnapshotDetail]:
    """Append one availability observation for a session.

    Change detection is not run here; call
    :func:`camp_spine.ops.notifications.evaluate_snapshot` with the
    returned id.
    """
    timer = start_timer()

    if enrolled_count < 0 or capacity < 0:
        return OperationResult.fail(
            "VALIDATION_FAILED",
            "enrolled_count and capacity must be non-negative",
            elapsed_ms=timer.elapsed_ms,
        )
    if registration_status not in _STATUSES:
        return OperationResult.fail(
            "VALIDATION_FAILED",
            f"Invalid registration_status '{registration_status}'",
            elapsed_ms=timer.elapsed_ms,
        )

    try:
        if not SessionRepository(ctx.conn).get(session_id):
            return OperationResult.fail(
                "NOT_FOUND", f"Session '{session_id}' not found", elapsed_ms=timer.elapsed_ms,
            )
        if ctx.dry_run:
            return OperationResult.ok(
                SnapshotDetail(
                    id="",
                    session_id=session_id,
                    enrolled_count=enrolled_count,
                    capacity=capacity,
                    spots_remaining=max(capacity - enrolled_count, 0),
                    registration_status=registration_status,
                    recorded_at=ctx.now_iso(),
                    job_id=job_id,
                ),
                elapsed_ms=timer.elapsed_ms,
            )

        row = append_snapshot(ctx, session_id, enrolled_count, capacity, registration_status, job_id)
        ctx.conn.commit()
        logger.debug("snapshot_recorded", snapshot_id=row["id"], session_id=session_id)
        return OperationResult.ok(_row_to_detail(row), elapsed_ms=timer.elapsed_ms)
    except Exception as exc:
        ctx.conn.rollback()
        logger.exception("op_failed", error=str(exc))
        return OperationResult.fail(
            "INTERNAL", f"Failed to record snapshot: {exc}", elapsed_ms=timer.elapsed_ms,
        )


def list_snapshots(
    ctx: OperationContext,
    session_id: str,
    limit: int = 100,
) -> OperationResult[list[SnapshotDetail]]:
    """Snapshots for a session, oldest first."""
    timer = start_timer()
    try:
        rows = SnapshotRepository(ctx.conn).list_for_session(session_id, limit=limit)
        return OperationResult.ok([_row_to_detail(r) for r in rows], elapsed_ms=timer.elapsed_ms)
    except Exception as exc:
        logger.exception("op_failed", error=str(exc))
        return OperationResult.fail(
            "INTERNAL", f"Failed to list snapshots: {exc}", elapsed_ms=timer.elapsed_ms,
        )


def _row_to_detail(row: dict[str, Any]) -> SnapshotDetail:
    return SnapshotDetail(
        id=row["id"],
        session_id=row["session_id"],
        enrolled_count=row["enrolled_count"],
        capacity=row["capacity"],
        spots_remaining=row["spots_remaining"],
        registration_status=row["registration_status"],
        recorded_at=row["recorded_at"],
        job_id=row.get("job_id"),
    )
