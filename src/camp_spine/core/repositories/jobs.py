"""Scrape job and camp session repositories."""

from __future__ import annotations

from typing import Any

from camp_spine.core.repository import BaseRepository

from ._helpers import _build_where, _paged


class JobRepository(BaseRepository):
    """CRUD for ``scrape_jobs``.

    Status changes go through :meth:`transition`, which is guarded by the
    expected current status so a stale writer cannot clobber a terminal row.
    """

    TABLE = "scrape_jobs"

    def get(self, job_id: str) -> dict[str, Any] | None:
        return self.query_one(
            f"SELECT * FROM {self.TABLE} WHERE id = {self.ph(1)}", (job_id,),
        )

    def create(self, data: dict[str, Any]) -> None:
        self.insert(self.TABLE, data)

    def transition(self, job_id: str, expected: str, updates: dict[str, Any]) -> bool:
        """Apply *updates* only if the job is still in *expected* status."""
        return self.update(self.TABLE, {"id": job_id}, updates, guard={"status": expected}) == 1

    def get_open_for_source(self, source_id: str) -> dict[str, Any] | None:
        return self.query_one(
            f"SELECT * FROM {self.TABLE} WHERE source_id = {self.ph(1)} "
            f"AND status IN ('queued', 'running') ORDER BY created_at ASC LIMIT 1",
            (source_id,),
        )

    def list_jobs(
        self,
        *,
        source_id: str | None = None,
        status: str | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> tuple[list[dict[str, Any]], int]:
        """List jobs newest first.  Returns ``(rows, total)``."""
        where, params = _build_where({"source_id": source_id, "status": status}, self.ph)
        return _paged(self, self.TABLE, where, params, "created_at DESC, id DESC", limit, offset)

    def list_open(
        self,
        *,
        source_id: str | None = None,
        created_before: str | None = None,
    ) -> list[dict[str, Any]]:
        where, params = _build_where(
            {"source_id": source_id}, self.ph,
            extra_clauses=["status IN ('queued', 'running')"],
        )
        if created_before:
            where = f"{where} AND created_at < {self.ph(1)}"
            params = (*params, created_before)
        return self.query(
            f"SELECT * FROM {self.TABLE} WHERE {where} ORDER BY created_at ASC", params,
        )

    def list_completed_between(self, start_iso: str, end_iso: str) -> list[dict[str, Any]]:
        """Jobs whose ``completed_at`` falls in ``[start, end]``."""
        return self.query(
            f"SELECT * FROM {self.TABLE} WHERE completed_at IS NOT NULL "
            f"AND completed_at >= {self.ph(1)} AND completed_at <= {self.ph(1)} "
            f"ORDER BY completed_at ASC, id ASC",
            (start_iso, end_iso),
        )


class SessionRepository(BaseRepository):
    """CRUD for ``camp_sessions`` keyed by ``(source_id, external_key)``."""

    TABLE = "camp_sessions"

    def get(self, session_id: str) -> dict[str, Any] | None:
        return self.query_one(
            f"SELECT * FROM {self.TABLE} WHERE id = {self.ph(1)}", (session_id,),
        )

    def get_by_key(self, source_id: str, external_key: str) -> dict[str, Any] | None:
        return self.query_one(
            f"SELECT * FROM {self.TABLE} WHERE source_id = {self.ph(1)} "
            f"AND external_key = {self.ph(1)}",
            (source_id, external_key),
        )

    def create(self, data: dict[str, Any]) -> None:
        self.insert(self.TABLE, data)

    def update_fields(self, session_id: str, updates: dict[str, Any]) -> int:
        return self.update(self.TABLE, {"id": session_id}, updates)

    def list_for_source(self, source_id: str) -> list[dict[str, Any]]:
        return self.query(
            f"SELECT * FROM {self.TABLE} WHERE source_id = {self.ph(1)} "
            f"ORDER BY start_date ASC, name ASC",
            (source_id,),
        )
