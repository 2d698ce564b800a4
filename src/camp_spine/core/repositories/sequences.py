"""Sequence runner state: runs, step completion records, outbound guard."""

from __future__ import annotations

from typing import Any

from camp_spine.core.repository import BaseRepository

from ._helpers import _build_where, _paged


class SequenceRepository(BaseRepository):
    """Persistence for the durable delayed sequence runner.

    ``sequence_step_records`` is authoritative for progress;
    ``sequence_runs.last_completed_step`` is a cache that the runner
    repairs whenever it disagrees with the records.
    """

    RUNS_TABLE = "sequence_runs"
    STEPS_TABLE = "sequence_step_records"
    OUTBOUND_TABLE = "outbound_messages"

    # -- runs ------------------------------------------------------------------

    def create_run(self, data: dict[str, Any]) -> None:
        self.insert(self.RUNS_TABLE, data)

    def get_run(self, run_id: str) -> dict[str, Any] | None:
        return self.query_one(
            f"SELECT * FROM {self.RUNS_TABLE} WHERE id = {self.ph(1)}", (run_id,),
        )

    def get_active_for_subject(self, subject_id: str) -> dict[str, Any] | None:
        return self.query_one(
            f"SELECT * FROM {self.RUNS_TABLE} WHERE subject_id = {self.ph(1)} "
            f"AND status = 'active'",
            (subject_id,),
        )

    def update_run(self, run_id: str, updates: dict[str, Any], *, expected_status: str | None = None) -> bool:
        guard = {"status": expected_status} if expected_status else None
        return self.update(self.RUNS_TABLE, {"id": run_id}, updates, guard=guard) == 1

    def list_due(self, now_iso: str) -> list[dict[str, Any]]:
        return self.query(
            f"SELECT * FROM {self.RUNS_TABLE} WHERE status = 'active' "
            f"AND (next_due_at IS NULL OR next_due_at <= {self.ph(1)}) "
            f"ORDER BY next_due_at ASC, id ASC",
            (now_iso,),
        )

    def list_runs(
        self,
        *,
        subject_id: str | None = None,
        sequence_name: str | None = None,
        status: str | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> tuple[list[dict[str, Any]], int]:
        where, params = _build_where(
            {"subject_id": subject_id, "sequence_name": sequence_name, "status": status},
            self.ph,
        )
        return _paged(self, self.RUNS_TABLE, where, params, "started_at DESC, id ASC", limit, offset)

    # -- step records ----------------------------------------------------------

    def record_step(self, run_id: str, step_index: int, step_name: str, completed_at: str) -> None:
        """Insert the completion row; a duplicate key propagates to the caller."""
        self.insert(self.STEPS_TABLE, {
            "run_id": run_id,
            "step_index": step_index,
            "step_name": step_name,
            "completed_at": completed_at,
        })

    def list_steps(self, run_id: str) -> list[dict[str, Any]]:
        return self.query(
            f"SELECT * FROM {self.STEPS_TABLE} WHERE run_id = {self.ph(1)} "
            f"ORDER BY step_index ASC",
            (run_id,),
        )

    # -- outbound guard --------------------------------------------------------

    def get_outbound(self, dedup_key: str) -> dict[str, Any] | None:
        return self.query_one(
            f"SELECT * FROM {self.OUTBOUND_TABLE} WHERE dedup_key = {self.ph(1)}", (dedup_key,),
        )

    def claim_outbound(self, data: dict[str, Any]) -> None:
        """Insert the guard row; a duplicate key means already claimed."""
        self.insert(self.OUTBOUND_TABLE, data)

    def set_dispatch_id(self, dedup_key: str, dispatch_id: str) -> None:
        self.update(self.OUTBOUND_TABLE, {"dedup_key": dedup_key}, {"dispatch_id": dispatch_id})

    def release_outbound(self, dedup_key: str) -> None:
        """Drop an unsent claim so a later attempt can send."""
        self.execute(
            f"DELETE FROM {self.OUTBOUND_TABLE} WHERE dedup_key = {self.ph(1)} AND dispatch_id IS NULL",
            (dedup_key,),
        )
