"""Source registry and organization repositories."""

from __future__ import annotations

from typing import Any

from camp_spine.core.repository import BaseRepository

from ._helpers import _build_where, _paged


class OrganizationRepository(BaseRepository):
    """CRUD for the ``organizations`` table."""

    TABLE = "organizations"

    def get(self, organization_id: str) -> dict[str, Any] | None:
        return self.query_one(
            f"SELECT * FROM {self.TABLE} WHERE id = {self.ph(1)}", (organization_id,),
        )

    def get_by_slug(self, slug: str) -> dict[str, Any] | None:
        return self.query_one(
            f"SELECT * FROM {self.TABLE} WHERE slug = {self.ph(1)}", (slug,),
        )

    def create(self, data: dict[str, Any]) -> None:
        self.insert(self.TABLE, data)


class SourceRepository(BaseRepository):
    """CRUD and health bookkeeping for ``scrape_sources``.

    ``domain`` carries a UNIQUE constraint; :meth:`create` lets the
    resulting ``IntegrityError`` propagate so callers can resolve the
    conflict to the winning row.
    """

    TABLE = "scrape_sources"

    def get(self, source_id: str) -> dict[str, Any] | None:
        return self.query_one(
            f"SELECT * FROM {self.TABLE} WHERE id = {self.ph(1)}", (source_id,),
        )

    def get_by_domain(self, domain: str) -> dict[str, Any] | None:
        return self.query_one(
            f"SELECT * FROM {self.TABLE} WHERE domain = {self.ph(1)}", (domain,),
        )

    def create(self, data: dict[str, Any]) -> None:
        self.insert(self.TABLE, data)

    def update_fields(self, source_id: str, updates: dict[str, Any]) -> int:
        return self.update(self.TABLE, {"id": source_id}, updates)

    def list_sources(
        self,
        *,
        city_id: str | None = None,
        is_active: bool | None = None,
        organization_id: str | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> tuple[list[dict[str, Any]], int]:
        """List sources.  Returns ``(rows, total)``."""
        conds: dict[str, Any] = {"city_id": city_id, "organization_id": organization_id}
        if is_active is not None:
            conds["is_active"] = 1 if is_active else 0
        where, params = _build_where(conds, self.ph)
        return _paged(self, self.TABLE, where, params, "domain ASC", limit, offset)

    def list_due(self, now_iso: str) -> list[dict[str, Any]]:
        """Active sources whose next run is due (never-scheduled counts as due)."""
        return self.query(
            f"SELECT * FROM {self.TABLE} WHERE is_active = 1 "
            f"AND (next_scheduled_at IS NULL OR next_scheduled_at <= {self.ph(1)}) "
            f"ORDER BY next_scheduled_at ASC, id ASC",
            (now_iso,),
        )
