"""
Change detection and family notifications.

:func:`detect_changes` compares a snapshot with the one immediately before
it and yields the transitions families care about.  Each event is sent to
every subscribed family with alerts enabled.

Delivery is at-most-once per ``(family, session, change type, transition)``:
the :class:`NotificationRecord` is written *before* the send, and the
UNIQUE constraint on that key turns any repeat (a re-evaluated snapshot, a
second worker) into a skip.  A send that fails after the record exists is
logged and not retried.
"""

from __future__ import annotations

from typing import Any

from camp_spine.core.logging import get_logger
from camp_spine.core.models import ChangeEvent, ChangeType, FamilyPlan, Snapshot
from camp_spine.core.overlay import CityDirectory
from camp_spine.core.protocols import Dispatcher
from camp_spine.core.repositories import (
    FamilyRepository,
    NotificationRepository,
    SessionRepository,
    SnapshotRepository,
)
from camp_spine.core.timestamps import new_id
from camp_spine.ops.context import OperationContext
from camp_spine.ops.requests import ListNotificationsRequest, UpsertFamilyRequest
from camp_spine.ops.responses import (
    DispatchOutcome,
    EvaluationResult,
    FamilyDetail,
    NotificationSummary,
    SubscriptionDetail,
)
from camp_spine.ops.result import OperationResult, PagedResult, start_timer

logger = get_logger(__name__)

_PLANS = frozenset(p.value for p in FamilyPlan)


# ------------------------------------------------------------------ #
# Detection
# ------------------------------------------------------------------ #


def detect_changes(
    previous: Snapshot | None,
    current: Snapshot,
    threshold: int,
    newly_discovered: bool = False,
) -> list[ChangeEvent]:
    """Return the change events *current* represents relative to *previous*.

    ``registration_opened`` fires when the session moves into ``active``
    from any other status, or when a newly discovered session is already
    open.  ``low_availability`` fires on a downward crossing of
    *threshold*: the previous snapshot had at least *threshold* spots (or
    there was none) and the current one is open with between 1 and
    threshold - 1 spots.  A sold-out or non-open session never fires it.
    """
    events: list[ChangeEvent] = []

    if current.is_open:
        if previous is not None:
            opened = not previous.is_open
        else:
            opened = newly_discovered
        if opened:
            events.append(_event(ChangeType.REGISTRATION_OPENED, current))

    spots = current.spots_remaining
    if current.is_open and 0 < spots < threshold:
        if previous is None or previous.spots_remaining >= threshold:
            events.append(_event(ChangeType.LOW_AVAILABILITY, current))

    return events


def _event(change_type: ChangeType, snap: Snapshot) -> ChangeEvent:
    return ChangeEvent(
        change_type=change_type,
        session_id=snap.session_id,
        transition_id=snap.id,
        spots_remaining=snap.spots_remaining,
        registration_status=snap.registration_status,
    )


# ------------------------------------------------------------------ #
# Evaluation & dispatch
# ------------------------------------------------------------------ #


def evaluate_snapshot(
    ctx: OperationContext,
    snapshot_id: str,
    dispatcher: Dispatcher,
    newly_discovered: bool = False,
) -> OperationResult[EvaluationResult]:
    """Detect changes for one snapshot and notify interested families."""
    timer = start_timer()

    try:
        snapshots = SnapshotRepository(ctx.conn)
        row = snapshots.get(snapshot_id)
        if not row:
            return OperationResult.fail(
                "NOT_FOUND", f"Snapshot '{snapshot_id}' not found", elapsed_ms=timer.elapsed_ms,
            )

        current = Snapshot.from_row(row)
        prev_row = snapshots.get_previous(current.session_id, current.recorded_at, current.id)
        previous = Snapshot.from_row(prev_row) if prev_row else None

        events = detect_changes(
            previous, current, ctx.settings.low_availability_threshold, newly_discovered,
        )
        event_names = [e.change_type.value for e in events]
        enabled = ctx.settings.feature_flags.availability_alerts

        if not events or not enabled or ctx.dry_run:
            if events and not enabled:
                logger.info("notifications_disabled", snapshot_id=snapshot_id, events=event_names)
            return OperationResult.ok(
                EvaluationResult(
                    snapshot_id=snapshot_id, events=event_names, dispatch_enabled=enabled,
                ),
                elapsed_ms=timer.elapsed_ms,
            )

        subscribers = FamilyRepository(ctx.conn).list_subscribers(current.session_id)
        sent = skipped = failed = 0
        for event in events:
            for subscriber in subscribers:
                outcome = _dispatch(ctx, event, subscriber, dispatcher)
                if outcome.status == "sent":
                    sent += 1
                elif outcome.status == "skipped_duplicate":
                    skipped += 1
                else:
                    failed += 1

        logger.info(
            "snapshot_evaluated",
            snapshot_id=snapshot_id,
            events=event_names,
            subscribers=len(subscribers),
            sent=sent,
            skipped=skipped,
            failed=failed,
        )
        return OperationResult.ok(
            EvaluationResult(
                snapshot_id=snapshot_id,
                events=event_names,
                sent=sent,
                skipped=skipped,
                failed=failed,
            ),
            elapsed_ms=timer.elapsed_ms,
        )
    except Exception as exc:
        ctx.conn.rollback()
        logger.exception("op_failed", error=str(exc))
        return OperationResult.fail(
            "INTERNAL", f"Failed to evaluate snapshot: {exc}", elapsed_ms=timer.elapsed_ms,
        )


def dispatch_notification(
    ctx: OperationContext,
    event: ChangeEvent,
    subscriber: dict[str, Any],
    dispatcher: Dispatcher,
) -> OperationResult[DispatchOutcome]:
    """Record-then-send one notification.

    *subscriber* needs ``family_id`` and ``email``; ``child_name`` and
    ``city_id`` are used for the message when present.
    """
    timer = start_timer()
    try:
        outcome = _dispatch(ctx, event, subscriber, dispatcher)
        return OperationResult.ok(outcome, elapsed_ms=timer.elapsed_ms)
    except Exception as exc:
        ctx.conn.rollback()
        logger.exception("op_failed", error=str(exc))
        return OperationResult.fail(
            "INTERNAL", f"Failed to dispatch notification: {exc}", elapsed_ms=timer.elapsed_ms,
        )


def _dispatch(
    ctx: OperationContext,
    event: ChangeEvent,
    subscriber: dict[str, Any],
    dispatcher: Dispatcher,
) -> DispatchOutcome:
    family_id = subscriber["family_id"]
    change_type = event.change_type.value
    log = logger.bind(
        family_id=family_id,
        session_id=event.session_id,
        change_type=change_type,
        transition_id=event.transition_id,
    )

    records = NotificationRepository(ctx.conn)
    notification_id = new_id("ntf")
    try:
        records.record({
            "id": notification_id,
            "family_id": family_id,
            "session_id": event.session_id,
            "change_type": change_type,
            "transition_id": event.transition_id,
            "notified_at": ctx.now_iso(),
        })
        ctx.conn.commit()
    except Exception as exc:
        ctx.conn.rollback()
        if not records.is_unique_violation(exc):
            raise
        log.info("notification_skipped_duplicate")
        return DispatchOutcome(status="skipped_duplicate", family_id=family_id, change_type=change_type)

    try:
        message_id = dispatcher.send(
            subscriber["email"], change_type, _build_payload(ctx, event, subscriber),
        )
    except Exception as exc:
        log.warning("notification_send_failed", notification_id=notification_id, error=str(exc))
        return DispatchOutcome(
            status="send_failed",
            family_id=family_id,
            change_type=change_type,
            notification_id=notification_id,
            error=str(exc),
        )

    if message_id:
        records.set_provider_message_id(notification_id, str(message_id))
        ctx.conn.commit()
    log.info("notification_sent", notification_id=notification_id, provider_message_id=message_id)
    return DispatchOutcome(
        status="sent",
        family_id=family_id,
        change_type=change_type,
        notification_id=notification_id,
        provider_message_id=str(message_id) if message_id else None,
    )


def _build_payload(ctx: OperationContext, event: ChangeEvent, subscriber: dict[str, Any]) -> dict[str, Any]:
    session = SessionRepository(ctx.conn).get(event.session_id) or {}
    city = CityDirectory(ctx.conn).get(subscriber.get("city_id"))
    return {
        "family_name": subscriber.get("display_name"),
        "child_name": subscriber.get("child_name"),
        "session_id": event.session_id,
        "session_name": session.get("name"),
        "start_date": session.get("start_date"),
        "end_date": session.get("end_date"),
        "spots_remaining": event.spots_remaining,
        "registration_status": event.registration_status,
        "brand_name": city.brand_name if city else None,
        "from_email": city.from_email if city else None,
    }


def list_notifications(
    ctx: OperationContext,
    request: ListNotificationsRequest,
) -> PagedResult[NotificationSummary]:
    timer = start_timer()
    try:
        rows, total = NotificationRepository(ctx.conn).list_notifications(
            family_id=request.family_id,
            session_id=request.session_id,
            change_type=request.change_type,
            limit=request.limit,
            offset=request.offset,
        )
        items = [
            NotificationSummary(
                id=r["id"],
                family_id=r["family_id"],
                session_id=r["session_id"],
                change_type=r["change_type"],
                transition_id=r["transition_id"],
                notified_at=r["notified_at"],
                provider_message_id=r.get("provider_message_id"),
            )
            for r in rows
        ]
        return PagedResult.from_items(
            items, total=total, limit=request.limit, offset=request.offset,
            elapsed_ms=timer.elapsed_ms,
        )
    except Exception as exc:
        logger.exception("op_failed", error=str(exc))
        return PagedResult.fail(
            "INTERNAL", f"Failed to list notifications: {exc}", elapsed_ms=timer.elapsed_ms,
        )


# ------------------------------------------------------------------ #
# Families & subscriptions
# ------------------------------------------------------------------ #


def upsert_family(ctx: OperationContext, request: UpsertFamilyRequest) -> OperationResult[FamilyDetail]:
    """Create or update the local projection of a family account."""
    timer = start_timer()

    email = (request.email or "").strip().lower()
    if "@" not in email:
        return OperationResult.fail(
            "VALIDATION_FAILED", f"Invalid email '{request.email}'", elapsed_ms=timer.elapsed_ms,
        )
    if request.plan not in _PLANS:
        return OperationResult.fail(
            "VALIDATION_FAILED", f"Invalid plan '{request.plan}'", elapsed_ms=timer.elapsed_ms,
        )

    data = {
        "email": email,
        "display_name": request.display_name.strip() or email,
        "city_id": request.city_id,
        "plan": request.plan,
        "alerts_enabled": 1 if request.alerts_enabled else 0,
    }
    if ctx.dry_run:
        return OperationResult.ok(_family_detail({"id": request.family_id, **data}), elapsed_ms=timer.elapsed_ms)

    try:
        repo = FamilyRepository(ctx.conn)
        now = ctx.now_iso()
        if repo.get(request.family_id):
            repo.update_fields(request.family_id, {**data, "updated_at": now})
        else:
            repo.create({"id": request.family_id, **data, "created_at": now, "updated_at": now})
        ctx.conn.commit()
        return OperationResult.ok(_family_detail(repo.get(request.family_id)), elapsed_ms=timer.elapsed_ms)
    except Exception as exc:
        ctx.conn.rollback()
        logger.exception("op_failed", error=str(exc))
        return OperationResult.fail(
            "INTERNAL", f"Failed to save family: {exc}", elapsed_ms=timer.elapsed_ms,
        )


def subscribe(
    ctx: OperationContext,
    family_id: str,
    session_id: str,
    child_name: str | None = None,
) -> OperationResult[SubscriptionDetail]:
    """Mark a family as interested in a session.  Repeats are no-ops."""
    timer = start_timer()

    try:
        families = FamilyRepository(ctx.conn)
        if not families.get(family_id):
            return OperationResult.fail(
                "NOT_FOUND", f"Family '{family_id}' not found", elapsed_ms=timer.elapsed_ms,
            )
        if not SessionRepository(ctx.conn).get(session_id):
            return OperationResult.fail(
                "NOT_FOUND", f"Session '{session_id}' not found", elapsed_ms=timer.elapsed_ms,
            )

        existing = families.get_subscription(family_id, session_id)
        if existing:
            return OperationResult.ok(_subscription_detail(existing, created=False), elapsed_ms=timer.elapsed_ms)

        row = {
            "family_id": family_id,
            "session_id": session_id,
            "child_name": child_name,
            "created_at": ctx.now_iso(),
        }
        if ctx.dry_run:
            return OperationResult.ok(_subscription_detail(row), elapsed_ms=timer.elapsed_ms)
        try:
            families.add_subscription(row)
            ctx.conn.commit()
        except Exception as exc:
            ctx.conn.rollback()
            if not families.is_unique_violation(exc):
                raise
            return OperationResult.ok(
                _subscription_detail(families.get_subscription(family_id, session_id), created=False),
                elapsed_ms=timer.elapsed_ms,
            )
        logger.info("family_subscribed", family_id=family_id, session_id=session_id)
        return OperationResult.ok(_subscription_detail(row), elapsed_ms=timer.elapsed_ms)
    except Exception as exc:
        ctx.conn.rollback()
        logger.exception("op_failed", error=str(exc))
        return OperationResult.fail(
            "INTERNAL", f"Failed to subscribe: {exc}", elapsed_ms=timer.elapsed_ms,
        )


def set_alert_preference(ctx: OperationContext, family_id: str, enabled: bool) -> OperationResult[FamilyDetail]:
    timer = start_timer()
    try:
        repo = FamilyRepository(ctx.conn)
        row = repo.get(family_id)
        if not row:
            return OperationResult.fail(
                "NOT_FOUND", f"Family '{family_id}' not found", elapsed_ms=timer.elapsed_ms,
            )
        if ctx.dry_run:
            return OperationResult.ok(
                _family_detail({**row, "alerts_enabled": 1 if enabled else 0}), elapsed_ms=timer.elapsed_ms,
            )
        repo.update_fields(family_id, {"alerts_enabled": 1 if enabled else 0, "updated_at": ctx.now_iso()})
        ctx.conn.commit()
        logger.info("alert_preference_set", family_id=family_id, enabled=enabled)
        return OperationResult.ok(_family_detail(repo.get(family_id)), elapsed_ms=timer.elapsed_ms)
    except Exception as exc:
        ctx.conn.rollback()
        logger.exception("op_failed", error=str(exc))
        return OperationResult.fail(
            "INTERNAL", f"Failed to update preference: {exc}", elapsed_ms=timer.elapsed_ms,
        )


def _family_detail(row: dict[str, Any]) -> FamilyDetail:
    return FamilyDetail(
        id=row["id"],
        email=row["email"],
        display_name=row["display_name"],
        city_id=row.get("city_id"),
        plan=row.get("plan") or FamilyPlan.FREE.value,
        alerts_enabled=bool(row.get("alerts_enabled", 1)),
    )


def _subscription_detail(row: dict[str, Any], created: bool = True) -> SubscriptionDetail:
    return SubscriptionDetail(
        family_id=row["family_id"],
        session_id=row["session_id"],
        child_name=row.get("child_name"),
        created_at=row.get("created_at"),
        created=created,
    )
