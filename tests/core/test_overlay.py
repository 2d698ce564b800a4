"""Tests for camp_spine.core.overlay — static cities plus persisted patches."""

import pytest

from camp_spine.core.errors import ValidationError
from camp_spine.core.overlay import CITY_DIRECTORY, CityDirectory, merge_city


class TestLookup:
    def test_by_id_and_slug(self, conn):
        directory = CityDirectory(conn)
        assert directory.get("city_portland").brand_name == "PDX Camps"
        assert directory.get("portland").id == "city_portland"

    def test_unknown_and_blank(self, conn):
        directory = CityDirectory(conn)
        assert directory.get("atlantis") is None
        assert directory.get("") is None
        assert directory.get(None) is None

    def test_list_includes_inactive(self, conn):
        slugs = {c.slug for c in CityDirectory(conn).list()}
        assert {"portland", "boston", "seattle"} <= slugs


class TestOverrides:
    def test_patch_wins_and_static_untouched(self, conn):
        directory = CityDirectory(conn)
        merged = directory.set_override("portland", {"brand_name": "Portland Camps"}, "2026-06-01T00:00:00")
        conn.commit()

        assert merged.brand_name == "Portland Camps"
        assert directory.get("city_portland").brand_name == "Portland Camps"
        assert directory.get("city_portland").from_email == "hello@pdxcamps.com"
        assert CITY_DIRECTORY["city_portland"].brand_name == "PDX Camps"

    def test_override_replaced(self, conn):
        directory = CityDirectory(conn)
        directory.set_override("boston", {"is_active": False}, "t1")
        directory.set_override("boston", {"brand_name": "Beantown Camps"}, "t2")
        city = directory.get("boston")
        assert city.brand_name == "Beantown Camps"
        assert city.is_active is True

    def test_clear_override(self, conn):
        directory = CityDirectory(conn)
        directory.set_override("portland", {"brand_name": "X"}, "t")
        directory.clear_override("portland")
        assert directory.get("portland").brand_name == "PDX Camps"

    def test_unknown_city_rejected(self, conn):
        with pytest.raises(ValidationError):
            CityDirectory(conn).set_override("atlantis", {"brand_name": "X"}, "t")

    def test_id_not_patchable(self, conn):
        with pytest.raises(ValidationError) as info:
            CityDirectory(conn).set_override("portland", {"id": "city_x"}, "t")
        assert "id" in info.value.message

    def test_merge_ignores_unknown_keys(self):
        base = CITY_DIRECTORY["city_seattle"]
        merged = merge_city(base, {"is_active": True, "population": 1})
        assert merged.is_active is True
        assert merged.id == base.id
