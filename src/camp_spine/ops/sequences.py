"""
Durable delayed sequence runner.

A run is a row in ``sequence_runs``; each finished step is a row in
``sequence_step_records`` keyed by ``(run_id, step_index)``.  Nothing
waits in memory: :func:`advance_sequence` runs every step that is due,
persists ``next_due_at`` for the first one that is not, and returns.  The
scheduler calls :func:`run_due_sequences` to pick runs back up, possibly in
a different process days later.

Progress always comes from the step records.  ``last_completed_step`` on
the run is a cache, repaired whenever it disagrees (e.g. a crash between
recording a step and updating the run).

Step semantics are at-least-once: an action that succeeded but whose
completion row was never written runs again on the next tick.  Actions
with outside effects use :func:`camp_spine.ops.outbound.guarded_send`.
"""

from __future__ import annotations

from dataclasses import replace
from datetime import datetime
from typing import Any

from camp_spine.core.errors import CampSpineError, InvariantViolation
from camp_spine.core.logging import get_logger
from camp_spine.core.models import (
    SequenceAnchor,
    SequenceStatus,
    validate_sequence_transition,
)
from camp_spine.core.protocols import Dispatcher
from camp_spine.core.repositories import SequenceRepository
from camp_spine.core.timestamps import from_iso8601, new_id, to_iso8601
from camp_spine.ops.context import OperationContext
from camp_spine.ops.outbound import guarded_send
from camp_spine.ops.requests import ListSequenceRunsRequest
from camp_spine.ops.responses import SequenceRunDetail, SequenceTickResult, StartSequenceResult
from camp_spine.ops.result import OperationResult, PagedResult, start_timer
from camp_spine.orchestration.sequence import SequenceDefinition, StepContext, get_sequence

logger = get_logger(__name__)

__all__ = [
    "advance_sequence",
    "cancel_sequence",
    "get_sequence_run",
    "guarded_send",
    "list_sequence_runs",
    "run_due_sequences",
    "start_sequence",
]


def _seq_repo(ctx: OperationContext) -> SequenceRepository:
    return SequenceRepository(ctx.conn)


# ------------------------------------------------------------------ #
# Start / cancel
# ------------------------------------------------------------------ #


def start_sequence(
    ctx: OperationContext,
    subject_id: str,
    sequence_name: str,
    dispatcher: Dispatcher | None = None,
) -> OperationResult[StartSequenceResult]:
    """Start *sequence_name* for *subject_id* and run step 1 now.

    A subject has at most one active run.  Starting again while one is
    active returns that run with ``created=False``.
    """
    timer = start_timer()

    try:
        definition = get_sequence(sequence_name)
    except CampSpineError as exc:
        return OperationResult.fail(
            "VALIDATION_FAILED", exc.message, category=exc.category, elapsed_ms=timer.elapsed_ms,
        )
    if definition.feature_flag and not getattr(ctx.settings.feature_flags, definition.feature_flag, True):
        return OperationResult.fail(
            "VALIDATION_FAILED",
            f"Sequence '{sequence_name}' is disabled by feature flag '{definition.feature_flag}'",
            elapsed_ms=timer.elapsed_ms,
        )

    try:
        repo = _seq_repo(ctx)
        active = repo.get_active_for_subject(subject_id)
        if active:
            logger.info("sequence_already_active", run_id=active["id"], subject_id=subject_id)
            return OperationResult.ok(
                StartSequenceResult(run=_row_to_detail(active), created=False),
                elapsed_ms=timer.elapsed_ms,
            )

        now = ctx.now_iso()
        row = {
            "id": new_id("seq"),
            "subject_id": subject_id,
            "sequence_name": definition.name,
            "total_steps": definition.total_steps,
            "last_completed_step": 0,
            "status": SequenceStatus.ACTIVE.value,
            "anchor": definition.anchor.value,
            "started_at": now,
            "next_due_at": now,
        }
        if ctx.dry_run:
            return OperationResult.ok(
                StartSequenceResult(run=_row_to_detail(row), created=True), elapsed_ms=timer.elapsed_ms,
            )

        try:
            repo.create_run(row)
            ctx.conn.commit()
        except Exception as exc:
            ctx.conn.rollback()
            if not repo.is_unique_violation(exc):
                raise
            winner = repo.get_active_for_subject(subject_id)
            if winner is None:
                raise
            logger.info("sequence_start_conflict_resolved", run_id=winner["id"], subject_id=subject_id)
            return OperationResult.ok(
                StartSequenceResult(run=_row_to_detail(winner), created=False),
                elapsed_ms=timer.elapsed_ms,
            )

        logger.info("sequence_started", run_id=row["id"], subject_id=subject_id, sequence=definition.name)
        advanced = advance_sequence(ctx, row["id"], dispatcher)
        run = advanced.data if advanced.success else _row_to_detail(repo.get_run(row["id"]))
        warnings = [] if advanced.success else [advanced.error.message]
        return OperationResult.ok(
            StartSequenceResult(run=run, created=True), warnings=warnings, elapsed_ms=timer.elapsed_ms,
        )
    except Exception as exc:
        ctx.conn.rollback()
        logger.exception("op_failed", error=str(exc))
        return OperationResult.fail(
            "INTERNAL", f"Failed to start sequence: {exc}", elapsed_ms=timer.elapsed_ms,
        )


def cancel_sequence(ctx: OperationContext, run_id: str) -> OperationResult[SequenceRunDetail]:
    timer = start_timer()
    try:
        repo = _seq_repo(ctx)
        run = repo.get_run(run_id)
        if not run:
            return OperationResult.fail(
                "NOT_FOUND", f"Sequence run '{run_id}' not found", elapsed_ms=timer.elapsed_ms,
            )
        validate_sequence_transition(SequenceStatus(run["status"]), SequenceStatus.CANCELLED)
        if ctx.dry_run:
            return OperationResult.ok(
                _row_to_detail({**run, "status": SequenceStatus.CANCELLED.value}), elapsed_ms=timer.elapsed_ms,
            )
        _finish(ctx, run, SequenceStatus.CANCELLED)
        return OperationResult.ok(_row_to_detail(repo.get_run(run_id)), elapsed_ms=timer.elapsed_ms)
    except InvariantViolation as exc:
        ctx.conn.rollback()
        logger.error("invariant_violation", run_id=run_id, **exc.to_dict())
        return OperationResult.from_error(exc, elapsed_ms=timer.elapsed_ms)
    except Exception as exc:
        ctx.conn.rollback()
        logger.exception("op_failed", error=str(exc))
        return OperationResult.fail(
            "INTERNAL", f"Failed to cancel sequence: {exc}", elapsed_ms=timer.elapsed_ms,
        )


def _finish(ctx: OperationContext, run: dict[str, Any], target: SequenceStatus) -> bool:
    """Move an active run to a terminal status; ``False`` if it already moved on."""
    validate_sequence_transition(SequenceStatus(run["status"]), target)
    moved = _seq_repo(ctx).update_run(
        run["id"],
        {"status": target.value, "finished_at": ctx.now_iso(), "next_due_at": None},
        expected_status=SequenceStatus.ACTIVE.value,
    )
    ctx.conn.commit()
    if moved:
        logger.info("sequence_finished", run_id=run["id"], status=target.value)
    return moved


# ------------------------------------------------------------------ #
# Runner
# ------------------------------------------------------------------ #


def advance_sequence(
    ctx: OperationContext,
    run_id: str,
    dispatcher: Dispatcher | None = None,
) -> OperationResult[SequenceRunDetail]:
    """Run every due step of *run_id*, then persist when the next one is due.

    Safe to call at any time and from any process: a run that is not
    active, or whose next step is not yet due, is returned unchanged apart
    from cache repair.  A failing action leaves its step incomplete and
    returns ``DEPENDENCY_FAILED``; the next tick retries it.
    """
    timer = start_timer()
    repo = _seq_repo(ctx)
    log = logger.bind(run_id=run_id)

    try:
        run = repo.get_run(run_id)
        if not run:
            return OperationResult.fail(
                "NOT_FOUND", f"Sequence run '{run_id}' not found", elapsed_ms=timer.elapsed_ms,
            )
        definition = get_sequence(run["sequence_name"])

        # Each pass either finishes the run, stops on a not-yet-due step, or
        # completes one step, so total_steps + 1 passes always suffice.
        for _ in range(definition.total_steps + 1):
            run = repo.get_run(run_id)
            if run["status"] != SequenceStatus.ACTIVE.value:
                break

            completed = _completed_steps(repo, run_id)
            done = len(completed)
            if run["last_completed_step"] != done:
                log.warning("sequence_cache_repaired", cached=run["last_completed_step"], actual=done)
                repo.update_run(run_id, {"last_completed_step": done})
                ctx.conn.commit()

            if done >= definition.total_steps:
                _finish(ctx, run, SequenceStatus.COMPLETED)
                break

            if definition.should_abandon and definition.should_abandon(ctx, run["subject_id"]):
                log.info("sequence_abandoned", subject_id=run["subject_id"], before_step=done + 1)
                _finish(ctx, run, SequenceStatus.ABANDONED)
                break

            index = done + 1
            due_at = _due_at(definition, run, completed, index)
            if due_at > ctx.now():
                repo.update_run(run_id, {"next_due_at": to_iso8601(due_at)})
                ctx.conn.commit()
                break

            step = definition.step(index)
            if ctx.dry_run:
                log.info("sequence_step_would_run", step_index=index, step=step.name)
                break

            try:
                step.action(StepContext(
                    ctx=ctx,
                    run_id=run_id,
                    subject_id=run["subject_id"],
                    step_index=index,
                    step_name=step.name,
                    dispatcher=dispatcher,
                ))
            except Exception as exc:
                ctx.conn.rollback()
                log.warning("sequence_step_failed", step_index=index, step=step.name, error=str(exc))
                repo.update_run(run_id, {"last_error": f"{step.name}: {exc}", "next_due_at": to_iso8601(due_at)})
                ctx.conn.commit()
                return OperationResult.fail(
                    "DEPENDENCY_FAILED",
                    f"Step '{step.name}' of run '{run_id}' failed: {exc}",
                    retryable=True,
                    details={"run_id": run_id, "step_index": index},
                    elapsed_ms=timer.elapsed_ms,
                )

            completed_at = ctx.now()
            try:
                repo.record_step(run_id, index, step.name, to_iso8601(completed_at))
                ctx.conn.commit()
            except Exception as exc:
                ctx.conn.rollback()
                if not repo.is_unique_violation(exc):
                    raise
                log.info("sequence_step_already_recorded", step_index=index)
                continue

            completed[index] = completed_at
            next_due = None
            if index < definition.total_steps:
                next_due = to_iso8601(_due_at(definition, run, completed, index + 1))
            repo.update_run(
                run_id,
                {"last_completed_step": index, "next_due_at": next_due, "last_error": None},
                expected_status=SequenceStatus.ACTIVE.value,
            )
            ctx.conn.commit()
            log.info("sequence_step_completed", step_index=index, step=step.name)

        return OperationResult.ok(_row_to_detail(repo.get_run(run_id)), elapsed_ms=timer.elapsed_ms)
    except InvariantViolation as exc:
        ctx.conn.rollback()
        log.error("invariant_violation", **exc.to_dict())
        return OperationResult.from_error(exc, elapsed_ms=timer.elapsed_ms)
    except CampSpineError as exc:
        ctx.conn.rollback()
        log.error("sequence_advance_failed", **exc.to_dict())
        return OperationResult.from_error(exc, elapsed_ms=timer.elapsed_ms)
    except Exception as exc:
        ctx.conn.rollback()
        logger.exception("op_failed", error=str(exc), run_id=run_id)
        return OperationResult.fail(
            "INTERNAL", f"Failed to advance sequence: {exc}", elapsed_ms=timer.elapsed_ms,
        )


def _completed_steps(repo: SequenceRepository, run_id: str) -> dict[int, datetime]:
    """Contiguous completed prefix ``{1: t1, 2: t2, ...}`` from the step records."""
    completed: dict[int, datetime] = {}
    for record in repo.list_steps(run_id):
        if record["step_index"] != len(completed) + 1:
            break
        completed[record["step_index"]] = from_iso8601(record["completed_at"])
    return completed


def _due_at(
    definition: SequenceDefinition,
    run: dict[str, Any],
    completed: dict[int, datetime],
    index: int,
) -> datetime:
    """When step *index* becomes due, given the completed prefix."""
    if index == 1:
        return from_iso8601(run["started_at"])
    if run["anchor"] == SequenceAnchor.FIRST.value:
        return completed[1] + definition.offset_from_first(index)
    return completed[index - 1] + definition.step(index - 1).delay_before_next


def run_due_sequences(
    ctx: OperationContext,
    dispatcher: Dispatcher | None = None,
    now: datetime | None = None,
) -> OperationResult[SequenceTickResult]:
    """Advance every active run whose ``next_due_at`` has passed.

    A failing run is reported in ``errors`` and does not stop the others.
    """
    timer = start_timer()
    if now is not None:
        ctx = replace(ctx, clock=lambda: now)

    try:
        due = _seq_repo(ctx).list_due(ctx.now_iso())
    except Exception as exc:
        logger.exception("op_failed", error=str(exc))
        return OperationResult.fail(
            "INTERNAL", f"Failed to list due sequences: {exc}", elapsed_ms=timer.elapsed_ms,
        )

    advanced: list[str] = []
    errors: dict[str, str] = {}
    for run in due:
        result = advance_sequence(ctx, run["id"], dispatcher)
        if result.success:
            advanced.append(run["id"])
        else:
            errors[run["id"]] = result.error.message

    logger.info("sequence_tick", due=len(due), advanced=len(advanced), errors=len(errors))
    return OperationResult.ok(
        SequenceTickResult(advanced=advanced, errors=errors), elapsed_ms=timer.elapsed_ms,
    )


# ------------------------------------------------------------------ #
# Reads
# ------------------------------------------------------------------ #


def get_sequence_run(ctx: OperationContext, run_id: str) -> OperationResult[SequenceRunDetail]:
    timer = start_timer()
    try:
        row = _seq_repo(ctx).get_run(run_id)
        if not row:
            return OperationResult.fail(
                "NOT_FOUND", f"Sequence run '{run_id}' not found", elapsed_ms=timer.elapsed_ms,
            )
        return OperationResult.ok(_row_to_detail(row), elapsed_ms=timer.elapsed_ms)
    except Exception as exc:
        logger.exception("op_failed", error=str(exc))
        return OperationResult.fail(
            "INTERNAL", f"Failed to get sequence run: {exc}", elapsed_ms=timer.elapsed_ms,
        )


def list_sequence_runs(
    ctx: OperationContext,
    request: ListSequenceRunsRequest,
) -> PagedResult[SequenceRunDetail]:
    timer = start_timer()
    try:
        rows, total = _seq_repo(ctx).list_runs(
            subject_id=request.subject_id,
            sequence_name=request.sequence_name,
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
            "INTERNAL", f"Failed to list sequence runs: {exc}", elapsed_ms=timer.elapsed_ms,
        )


def _row_to_detail(row: dict[str, Any]) -> SequenceRunDetail:
    return SequenceRunDetail(
        id=row["id"],
        subject_id=row["subject_id"],
        sequence_name=row["sequence_name"],
        status=row["status"],
        total_steps=row["total_steps"],
        last_completed_step=row.get("last_completed_step") or 0,
        anchor=row.get("anchor") or SequenceAnchor.PREVIOUS.value,
        started_at=row["started_at"],
        next_due_at=row.get("next_due_at"),
        finished_at=row.get("finished_at"),
        last_error=row.get("last_error"),
    )
