"""Tests for camp_spine.cli.utils helpers."""

from dataclasses import dataclass
from datetime import UTC, datetime

import pytest
import typer
from pydantic import BaseModel

from camp_spine.cli.utils import _to_dict, load_extractor, make_context, parse_when
from camp_spine.core.errors import ConfigError
from camp_spine.core.timestamps import FixedClock


class StubExtractor:
    def extract(self, source):
        return []


STUB_INSTANCE = StubExtractor()
NOT_AN_EXTRACTOR = object


@dataclass
class _Point:
    x: int
    y: int


class _Model(BaseModel):
    name: str


class TestToDict:
    def test_dataclass(self):
        assert _to_dict(_Point(1, 2)) == {"x": 1, "y": 2}

    def test_pydantic(self):
        assert _to_dict(_Model(name="a")) == {"name": "a"}

    def test_dict_passthrough(self):
        assert _to_dict({"a": 1}) == {"a": 1}

    def test_scalar(self):
        assert _to_dict(3) == {"value": "3"}


class TestLoadExtractor:
    def test_class_is_instantiated(self):
        assert isinstance(load_extractor("test_cli_utils:StubExtractor"), StubExtractor)

    def test_instance_is_used_as_is(self):
        assert load_extractor("test_cli_utils:STUB_INSTANCE") is STUB_INSTANCE

    def test_missing_colon(self):
        with pytest.raises(ConfigError, match="package.module:name"):
            load_extractor("test_cli_utils.StubExtractor")

    def test_target_without_extract(self):
        with pytest.raises(ConfigError, match="extract"):
            load_extractor("test_cli_utils:NOT_AN_EXTRACTOR")


class TestMakeContext:
    def test_pinned_clock(self, tmp_path):
        ctx, conn = make_context(str(tmp_path / "x.db"), dry_run=True, user="ops", now="2026-06-01T09:00:00Z")
        try:
            assert isinstance(ctx.clock, FixedClock)
            assert ctx.clock() == datetime(2026, 6, 1, 9, 0, tzinfo=UTC)
            assert ctx.dry_run
            assert ctx.user == "ops"
            assert ctx.caller == "cli"
        finally:
            conn.close()

    def test_bad_timestamp_exits(self):
        with pytest.raises(typer.Exit):
            parse_when("next tuesday")
