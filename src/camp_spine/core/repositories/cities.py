"""City override repository (persisted patches for the city overlay)."""

from __future__ import annotations

from typing import Any

from camp_spine.core.repository import BaseRepository


class CityOverrideRepository(BaseRepository):
    TABLE = "city_overrides"

    def get(self, city_id: str) -> dict[str, Any] | None:
        return self.query_one(
            f"SELECT * FROM {self.TABLE} WHERE city_id = {self.ph(1)}", (city_id,),
        )

    def upsert(self, city_id: str, patch_json: str, updated_at: str) -> None:
        self.execute(
            f"INSERT INTO {self.TABLE} (city_id, patch_json, updated_at) "
            f"VALUES ({self.ph(3)}) "
            f"ON CONFLICT(city_id) DO UPDATE SET "
            f"patch_json = excluded.patch_json, updated_at = excluded.updated_at",
            (city_id, patch_json, updated_at),
        )

    def delete(self, city_id: str) -> None:
        self.execute(f"DELETE FROM {self.TABLE} WHERE city_id = {self.ph(1)}", (city_id,))
