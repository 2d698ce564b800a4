"""Family, subscription, and notification-record repositories."""

from __future__ import annotations

from typing import Any

from camp_spine.core.repository import BaseRepository

from ._helpers import _build_where, _paged


class FamilyRepository(BaseRepository):
    """CRUD for ``families`` and ``session_subscriptions``."""

    TABLE = "families"
    SUBSCRIPTIONS_TABLE = "session_subscriptions"

    def get(self, family_id: str) -> dict[str, Any] | None:
        return self.query_one(
            f"SELECT * FROM {self.TABLE} WHERE id = {self.ph(1)}", (family_id,),
        )

    def create(self, data: dict[str, Any]) -> None:
        self.insert(self.TABLE, data)

    def update_fields(self, family_id: str, updates: dict[str, Any]) -> int:
        return self.update(self.TABLE, {"id": family_id}, updates)

    def add_subscription(self, data: dict[str, Any]) -> None:
        self.insert(self.SUBSCRIPTIONS_TABLE, data)

    def get_subscription(self, family_id: str, session_id: str) -> dict[str, Any] | None:
        return self.query_one(
            f"SELECT * FROM {self.SUBSCRIPTIONS_TABLE} "
            f"WHERE family_id = {self.ph(1)} AND session_id = {self.ph(1)}",
            (family_id, session_id),
        )

    def count_subscriptions(self, family_id: str) -> int:
        return self.scalar(
            f"SELECT COUNT(*) AS cnt FROM {self.SUBSCRIPTIONS_TABLE} WHERE family_id = {self.ph(1)}",
            (family_id,),
        ) or 0

    def list_subscribers(self, session_id: str) -> list[dict[str, Any]]:
        """Families subscribed to *session_id* with availability alerts on."""
        return self.query(
            f"SELECT f.id AS family_id, f.email, f.display_name, f.city_id, "
            f"s.child_name "
            f"FROM {self.SUBSCRIPTIONS_TABLE} s "
            f"JOIN {self.TABLE} f ON f.id = s.family_id "
            f"WHERE s.session_id = {self.ph(1)} AND f.alerts_enabled = 1 "
            f"ORDER BY f.id ASC",
            (session_id,),
        )


class NotificationRepository(BaseRepository):
    """The ``notification_records`` dedup ledger.

    :meth:`record` lets a UNIQUE violation propagate; the dispatch path
    treats it as "already sent, skip".
    """

    TABLE = "notification_records"

    def record(self, data: dict[str, Any]) -> None:
        self.insert(self.TABLE, data)

    def set_provider_message_id(self, notification_id: str, message_id: str) -> None:
        """Back-fill the provider id; a record is never otherwise changed."""
        self.execute(
            f"UPDATE {self.TABLE} SET provider_message_id = {self.ph(1)} "
            f"WHERE id = {self.ph(1)} AND provider_message_id IS NULL",
            (message_id, notification_id),
        )

    def list_notifications(
        self,
        *,
        family_id: str | None = None,
        session_id: str | None = None,
        change_type: str | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> tuple[list[dict[str, Any]], int]:
        where, params = _build_where(
            {"family_id": family_id, "session_id": session_id, "change_type": change_type},
            self.ph,
        )
        return _paged(self, self.TABLE, where, params, "notified_at ASC, id ASC", limit, offset)
