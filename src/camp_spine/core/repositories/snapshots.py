"""Availability snapshot store (append-only)."""

from __future__ import annotations

from typing import Any

from camp_spine.core.repository import BaseRepository


class SnapshotRepository(BaseRepository):
    """Append and read ``availability_snapshots``.

    Rows are never updated or deleted.  Per-session order is
    ``(recorded_at, id)`` ascending; the id tiebreak keeps order total
    when two snapshots share a timestamp.
    """

    TABLE = "availability_snapshots"

    def append(self, data: dict[str, Any]) -> None:
        self.insert(self.TABLE, data)

    def get(self, snapshot_id: str) -> dict[str, Any] | None:
        return self.query_one(
            f"SELECT * FROM {self.TABLE} WHERE id = {self.ph(1)}", (snapshot_id,),
        )

    def get_previous(self, session_id: str, recorded_at: str, snapshot_id: str) -> dict[str, Any] | None:
        """The snapshot immediately preceding ``(recorded_at, snapshot_id)``."""
        return self.query_one(
            f"SELECT * FROM {self.TABLE} WHERE session_id = {self.ph(1)} "
            f"AND (recorded_at < {self.ph(1)} "
            f"OR (recorded_at = {self.ph(1)} AND id < {self.ph(1)})) "
            f"ORDER BY recorded_at DESC, id DESC LIMIT 1",
            (session_id, recorded_at, recorded_at, snapshot_id),
        )

    def get_latest(self, session_id: str) -> dict[str, Any] | None:
        return self.query_one(
            f"SELECT * FROM {self.TABLE} WHERE session_id = {self.ph(1)} "
            f"ORDER BY recorded_at DESC, id DESC LIMIT 1",
            (session_id,),
        )

    def list_for_session(self, session_id: str, *, limit: int = 100) -> list[dict[str, Any]]:
        return self.query(
            f"SELECT * FROM {self.TABLE} WHERE session_id = {self.ph(1)} "
            f"ORDER BY recorded_at ASC, id ASC LIMIT {self.ph(1)}",
            (session_id, limit),
        )
