"""
City directory as a typed overlay.

The canonical city records (name, state, timezone, brand) ship as a static
table in code.  Operators can adjust a city at runtime by storing a JSON
patch in ``city_overrides``; the patch is merged over the static record at
read time, patch fields winning.  The static table itself is never mutated.

Examples:
    >>> directory = CityDirectory(conn)
    >>> directory.get("portland").brand_name
    'PDX Camps'
    >>> directory.set_override("portland", {"brand_name": "Portland Camps"}, updated_at)
    >>> directory.get("city_portland").brand_name
    'Portland Camps'
    >>> CITY_DIRECTORY["city_portland"].brand_name
    'PDX Camps'
"""

from __future__ import annotations

import json
from dataclasses import dataclass, fields, replace
from types import MappingProxyType
from typing import Any

from camp_spine.core.errors import ValidationError
from camp_spine.core.logging import get_logger
from camp_spine.core.protocols import Connection
from camp_spine.core.repositories.cities import CityOverrideRepository

logger = get_logger(__name__)


@dataclass(frozen=True, slots=True)
class CityRecord:
    id: str
    slug: str
    name: str
    state: str
    timezone: str
    brand_name: str
    domain: str
    from_email: str
    is_active: bool = True

    def to_dict(self) -> dict[str, Any]:
        return {f.name: getattr(self, f.name) for f in fields(self)}


_STATIC_CITIES = (
    CityRecord(
        id="city_portland",
        slug="portland",
        name="Portland",
        state="OR",
        timezone="America/Los_Angeles",
        brand_name="PDX Camps",
        domain="pdxcamps.com",
        from_email="hello@pdxcamps.com",
    ),
    CityRecord(
        id="city_boston",
        slug="boston",
        name="Boston",
        state="MA",
        timezone="America/New_York",
        brand_name="BOS Camps",
        domain="boscamps.com",
        from_email="hello@boscamps.com",
    ),
    CityRecord(
        id="city_seattle",
        slug="seattle",
        name="Seattle",
        state="WA",
        timezone="America/Los_Angeles",
        brand_name="SEA Camps",
        domain="seacamps.com",
        from_email="hello@seacamps.com",
        is_active=False,
    ),
)

CITY_DIRECTORY: MappingProxyType[str, CityRecord] = MappingProxyType(
    {city.id: city for city in _STATIC_CITIES}
)

# Fields an override may change; ``id`` is the join key and stays fixed.
_PATCHABLE = frozenset(f.name for f in fields(CityRecord)) - {"id"}


def merge_city(base: CityRecord, patch: dict[str, Any]) -> CityRecord:
    """Return *base* with *patch* applied.  Unknown keys are ignored."""
    changes = {k: v for k, v in patch.items() if k in _PATCHABLE}
    return replace(base, **changes)


class CityDirectory:
    """Read-time merge of :data:`CITY_DIRECTORY` and ``city_overrides``."""

    def __init__(self, conn: Connection, static: MappingProxyType[str, CityRecord] | None = None) -> None:
        self._repo = CityOverrideRepository(conn)
        self._static = static if static is not None else CITY_DIRECTORY

    def _resolve_id(self, city_ref: str) -> str | None:
        if city_ref in self._static:
            return city_ref
        for city in self._static.values():
            if city.slug == city_ref:
                return city.id
        return None

    def get(self, city_ref: str | None) -> CityRecord | None:
        """Look up a city by id or slug; ``None`` if unknown."""
        if not city_ref:
            return None
        city_id = self._resolve_id(city_ref.strip())
        if city_id is None:
            return None
        base = self._static[city_id]
        row = self._repo.get(city_id)
        if row is None:
            return base
        return merge_city(base, json.loads(row["patch_json"]))

    def list(self) -> list[CityRecord]:
        cities = []
        for city_id in self._static:
            city = self.get(city_id)
            if city is not None:
                cities.append(city)
        return cities

    def set_override(self, city_ref: str, patch: dict[str, Any], updated_at: str) -> CityRecord:
        """Persist *patch* for a known city and return the merged record."""
        city_id = self._resolve_id(city_ref)
        if city_id is None:
            raise ValidationError(f"Unknown city: {city_ref}", field="city_id", value=city_ref)
        unknown = set(patch) - _PATCHABLE
        if unknown:
            raise ValidationError(
                f"Unsupported override fields: {', '.join(sorted(unknown))}", field="patch",
            )
        self._repo.upsert(city_id, json.dumps(patch, sort_keys=True), updated_at)
        logger.info("city_override_set", city_id=city_id, fields=sorted(patch))
        return merge_city(self._static[city_id], patch)

    def clear_override(self, city_ref: str) -> None:
        city_id = self._resolve_id(city_ref)
        if city_id is not None:
            self._repo.delete(city_id)
