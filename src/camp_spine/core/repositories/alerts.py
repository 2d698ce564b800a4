"""Alert repository."""

from __future__ import annotations

from typing import Any

from camp_spine.core.repository import BaseRepository

from ._helpers import _build_where, _paged

# Severity rank as SQL so ordering happens in one query.
_SEVERITY_ORDER = (
    "CASE severity WHEN 'critical' THEN 0 WHEN 'error' THEN 1 "
    "WHEN 'warning' THEN 2 WHEN 'info' THEN 3 ELSE 4 END"
)


class AlertRepository(BaseRepository):
    """CRUD for ``alerts``.

    Alerts are never deleted; the only mutation is the set-once
    acknowledgement.
    """

    TABLE = "alerts"

    def create(self, data: dict[str, Any]) -> None:
        self.insert(self.TABLE, data)

    def get(self, alert_id: str) -> dict[str, Any] | None:
        return self.query_one(
            f"SELECT * FROM {self.TABLE} WHERE id = {self.ph(1)}", (alert_id,),
        )

    def acknowledge(self, alert_id: str, acknowledged_at: str, acknowledged_by: str | None) -> bool:
        """Set ``acknowledged_at`` only if unset.  Returns ``True`` if this call set it."""
        cursor = self.execute(
            f"UPDATE {self.TABLE} SET acknowledged_at = {self.ph(1)}, "
            f"acknowledged_by = {self.ph(1)} "
            f"WHERE id = {self.ph(1)} AND acknowledged_at IS NULL",
            (acknowledged_at, acknowledged_by, alert_id),
        )
        return getattr(cursor, "rowcount", 0) == 1

    def list_unacknowledged(self, since_iso: str, until_iso: str | None = None) -> list[dict[str, Any]]:
        """Unacknowledged alerts since *since_iso*, severity first, newest first."""
        sql = (
            f"SELECT * FROM {self.TABLE} WHERE acknowledged_at IS NULL "
            f"AND created_at >= {self.ph(1)}"
        )
        params: tuple = (since_iso,)
        if until_iso is not None:
            sql += f" AND created_at <= {self.ph(1)}"
            params = (*params, until_iso)
        sql += f" ORDER BY {_SEVERITY_ORDER} ASC, created_at DESC, id ASC"
        return self.query(sql, params)

    def list_alerts(
        self,
        *,
        severity: str | None = None,
        alert_type: str | None = None,
        source_id: str | None = None,
        acknowledged: bool | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> tuple[list[dict[str, Any]], int]:
        """List alerts newest first.  Returns ``(rows, total)``."""
        extra: list[str] = []
        if acknowledged is True:
            extra.append("acknowledged_at IS NOT NULL")
        elif acknowledged is False:
            extra.append("acknowledged_at IS NULL")
        where, params = _build_where(
            {"severity": severity, "alert_type": alert_type, "source_id": source_id},
            self.ph,
            extra_clauses=extra,
        )
        return _paged(self, self.TABLE, where, params, "created_at DESC, id ASC", limit, offset)
