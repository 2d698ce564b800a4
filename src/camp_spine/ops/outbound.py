"""
Guarded outbound sends.

Sequence steps are at-least-once: a worker that crashes after sending but
before recording the step will run the step again.  :func:`guarded_send`
makes the *send* at-most-once by claiming ``outbound_messages.dedup_key``
before calling the dispatcher.  A send that raises releases its claim so
the next attempt can try again; a claim that already carries a dispatch id
(or is held by a concurrent sender) short-circuits.
"""

from __future__ import annotations

from typing import Any

from camp_spine.core.logging import get_logger
from camp_spine.core.protocols import Dispatcher
from camp_spine.core.repositories import SequenceRepository
from camp_spine.ops.context import OperationContext
from camp_spine.ops.responses import GuardedSendResult
from camp_spine.ops.result import OperationResult, start_timer

logger = get_logger(__name__)


def guarded_send(
    ctx: OperationContext,
    dedup_key: str,
    dispatcher: Dispatcher,
    recipient: str,
    template_id: str,
    payload: dict[str, Any],
) -> OperationResult[GuardedSendResult]:
    """Send once per *dedup_key*.

    ``sent`` is ``False`` when an earlier call already claimed the key.
    """
    timer = start_timer()
    repo = SequenceRepository(ctx.conn)
    log = logger.bind(dedup_key=dedup_key, template_id=template_id)

    try:
        existing = repo.get_outbound(dedup_key)
        if existing:
            log.info("outbound_already_sent", dispatch_id=existing.get("dispatch_id"))
            return OperationResult.ok(
                GuardedSendResult(dedup_key=dedup_key, sent=False, dispatch_id=existing.get("dispatch_id")),
                elapsed_ms=timer.elapsed_ms,
            )
        if ctx.dry_run:
            return OperationResult.ok(GuardedSendResult(dedup_key=dedup_key, sent=False), elapsed_ms=timer.elapsed_ms)

        try:
            repo.claim_outbound({
                "dedup_key": dedup_key,
                "recipient": recipient,
                "template_id": template_id,
                "created_at": ctx.now_iso(),
            })
            ctx.conn.commit()
        except Exception as exc:
            ctx.conn.rollback()
            if not repo.is_unique_violation(exc):
                raise
            log.info("outbound_claimed_elsewhere")
            return OperationResult.ok(GuardedSendResult(dedup_key=dedup_key, sent=False), elapsed_ms=timer.elapsed_ms)

        try:
            dispatch_id = dispatcher.send(recipient, template_id, payload)
        except Exception as exc:
            repo.release_outbound(dedup_key)
            ctx.conn.commit()
            log.warning("outbound_send_failed", error=str(exc))
            return OperationResult.fail(
                "DEPENDENCY_FAILED",
                f"Send failed for {dedup_key}: {exc}",
                retryable=True,
                elapsed_ms=timer.elapsed_ms,
            )

        if dispatch_id:
            repo.set_dispatch_id(dedup_key, str(dispatch_id))
            ctx.conn.commit()
        log.info("outbound_sent", dispatch_id=dispatch_id)
        return OperationResult.ok(
            GuardedSendResult(
                dedup_key=dedup_key, sent=True, dispatch_id=str(dispatch_id) if dispatch_id else None,
            ),
            elapsed_ms=timer.elapsed_ms,
        )
    except Exception as exc:
        ctx.conn.rollback()
        logger.exception("op_failed", error=str(exc))
        return OperationResult.fail(
            "INTERNAL", f"Failed to send {dedup_key}: {exc}", elapsed_ms=timer.elapsed_ms,
        )
