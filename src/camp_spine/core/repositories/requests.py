"""Camp request repository."""

from __future__ import annotations

from typing import Any

from camp_spine.core.repository import BaseRepository

from ._helpers import _build_where, _paged


class CampRequestRepository(BaseRepository):
    """CRUD for ``camp_requests``."""

    TABLE = "camp_requests"

    def get(self, request_id: str) -> dict[str, Any] | None:
        return self.query_one(
            f"SELECT * FROM {self.TABLE} WHERE id = {self.ph(1)}", (request_id,),
        )

    def create(self, data: dict[str, Any]) -> None:
        self.insert(self.TABLE, data)

    def transition(self, request_id: str, expected: str, updates: dict[str, Any]) -> bool:
        """Apply *updates* only if the request is still in *expected* status."""
        return self.update(
            self.TABLE, {"id": request_id}, updates, guard={"status": expected},
        ) == 1

    def list_requests(
        self,
        *,
        status: str | None = None,
        city_id: str | None = None,
        family_id: str | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> tuple[list[dict[str, Any]], int]:
        """List requests newest first.  Returns ``(rows, total)``."""
        where, params = _build_where(
            {"status": status, "city_id": city_id, "family_id": family_id}, self.ph,
        )
        return _paged(self, self.TABLE, where, params, "created_at DESC, id DESC", limit, offset)
