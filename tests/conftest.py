"""
Shared pytest fixtures for camp-spine tests.

This module provides:
- An in-memory SQLite connection with the pipeline schema applied
- A manually advanced clock and an ``OperationContext`` wired to both
- Test doubles for the two collaborators (dispatcher, extractor)
- A ``seed`` helper that inserts parent rows in foreign-key order

Usage:
    def test_something(ctx, seed, dispatcher):
        source = seed.source("sunnycamp.org")
        ...
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

import pytest
import structlog

from camp_spine.core.logging import clear_context
from camp_spine.core.models import ExtractedSession
from camp_spine.core.repositories import (
    FamilyRepository,
    JobRepository,
    SessionRepository,
    SourceRepository,
)
from camp_spine.core.schema import create_core_tables
from camp_spine.core.settings import CampSpineSettings, FeatureFlags, clear_settings_cache
from camp_spine.core.timestamps import FixedClock, new_id
from camp_spine.ops.context import OperationContext
from camp_spine.ops.sqlite_conn import SqliteConnection
from camp_spine.orchestration import clear_sequence_registry

START = datetime(2026, 6, 1, 9, 0, tzinfo=UTC)


# =============================================================================
# Markers
# =============================================================================


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    """Mark tests without an explicit marker as unit tests."""
    for item in items:
        markers = {mark.name for mark in item.iter_markers()}
        if not markers.intersection({"unit", "integration", "slow"}):
            item.add_marker(pytest.mark.unit)


# =============================================================================
# Registry / cache cleanup
# =============================================================================


@pytest.fixture(autouse=True)
def _clean_registries() -> Iterator[None]:
    clear_sequence_registry()
    clear_settings_cache()
    yield
    clear_sequence_registry()
    clear_settings_cache()
    # configure_logging binds the current stderr, which capture closes after the test
    clear_context()
    structlog.reset_defaults()


# =============================================================================
# Test doubles
# =============================================================================


@dataclass
class SentMessage:
    recipient: str
    template_id: str
    payload: dict[str, Any]


@dataclass
class RecordingDispatcher:
    """Dispatcher double that records every send.

    Recipients in ``failing`` raise on send; set ``fail_all`` to make every
    send raise.
    """

    sent: list[SentMessage] = field(default_factory=list)
    failing: set[str] = field(default_factory=set)
    fail_all: bool = False
    attempts: int = 0

    def send(self, recipient: str, template_id: str, payload: dict[str, Any]) -> str:
        self.attempts += 1
        if self.fail_all or recipient in self.failing:
            raise RuntimeError(f"provider rejected {recipient}")
        self.sent.append(SentMessage(recipient, template_id, dict(payload)))
        return f"msg_{len(self.sent)}"

    def to(self, recipient: str) -> list[SentMessage]:
        return [m for m in self.sent if m.recipient == recipient]


class FakeExtractor:
    """Extractor double returning canned sessions, or raising ``error``."""

    def __init__(self, sessions: Iterable[ExtractedSession] = (), error: Exception | None = None) -> None:
        self.sessions = list(sessions)
        self.error = error
        self.calls: list[dict[str, Any]] = []
        self.on_extract: Any = None

    def extract(self, source: dict[str, Any]) -> list[ExtractedSession]:
        self.calls.append(source)
        if self.on_extract is not None:
            self.on_extract(source)
        if self.error is not None:
            raise self.error
        return list(self.sessions)


# =============================================================================
# Seeding
# =============================================================================


class Seeder:
    """Insert fixture rows directly through the repositories."""

    def __init__(self, ctx: OperationContext) -> None:
        self.ctx = ctx

    def source(self, domain: str = "sunnycamp.org", **overrides: Any) -> dict[str, Any]:
        now = self.ctx.now_iso()
        row = {
            "id": new_id("src"),
            "domain": domain,
            "name": domain.split(".")[0].title(),
            "url": f"https://{domain}",
            "city_id": "city_portland",
            "is_active": 1,
            "scrape_frequency_hours": 24,
            "created_at": now,
            "updated_at": now,
            **overrides,
        }
        SourceRepository(self.ctx.conn).create(row)
        self.ctx.conn.commit()
        return row

    def job(self, source_id: str, status: str = "queued", **overrides: Any) -> dict[str, Any]:
        row = {
            "id": new_id("job"),
            "source_id": source_id,
            "status": status,
            "triggered_by": "test",
            "created_at": self.ctx.now_iso(),
            **overrides,
        }
        JobRepository(self.ctx.conn).create(row)
        self.ctx.conn.commit()
        return row

    def session(self, source_id: str, name: str = "Robotics Week", **overrides: Any) -> dict[str, Any]:
        now = self.ctx.now_iso()
        row = {
            "id": new_id("sess"),
            "source_id": source_id,
            "external_key": f"{name.lower().replace(' ', '-')}|2026-07-06|2026-07-10",
            "name": name,
            "start_date": "2026-07-06",
            "end_date": "2026-07-10",
            "created_at": now,
            "updated_at": now,
            **overrides,
        }
        SessionRepository(self.ctx.conn).create(row)
        self.ctx.conn.commit()
        return row

    def family(
        self,
        family_id: str = "fam_1",
        email: str = "parent@example.com",
        plan: str = "free",
        alerts_enabled: bool = True,
        city_id: str | None = "city_portland",
    ) -> dict[str, Any]:
        now = self.ctx.now_iso()
        row = {
            "id": family_id,
            "email": email,
            "display_name": family_id.replace("_", " ").title(),
            "city_id": city_id,
            "plan": plan,
            "alerts_enabled": 1 if alerts_enabled else 0,
            "created_at": now,
            "updated_at": now,
        }
        FamilyRepository(self.ctx.conn).create(row)
        self.ctx.conn.commit()
        return row

    def subscription(self, family_id: str, session_id: str, child_name: str | None = None) -> None:
        FamilyRepository(self.ctx.conn).add_subscription({
            "family_id": family_id,
            "session_id": session_id,
            "child_name": child_name,
            "created_at": self.ctx.now_iso(),
        })
        self.ctx.conn.commit()


# =============================================================================
# Core fixtures
# =============================================================================


@pytest.fixture()
def conn() -> Iterator[SqliteConnection]:
    """In-memory SQLite connection with all pipeline tables created."""
    connection = SqliteConnection(":memory:")
    create_core_tables(connection)
    yield connection
    connection.close()


@pytest.fixture()
def clock() -> FixedClock:
    return FixedClock(START)


@pytest.fixture()
def settings(tmp_path: Path) -> CampSpineSettings:
    return CampSpineSettings(
        database_path=tmp_path / "camp.db",
        low_availability_threshold=2,
        admin_emails=["ops@example.com", "lead@example.com"],
        feature_flags=FeatureFlags(),
    )


@pytest.fixture()
def ctx(conn: SqliteConnection, settings: CampSpineSettings, clock: FixedClock) -> OperationContext:
    return OperationContext(conn=conn, caller="test", settings=settings, clock=clock)


@pytest.fixture()
def dry_ctx(conn: SqliteConnection, settings: CampSpineSettings, clock: FixedClock) -> OperationContext:
    return OperationContext(conn=conn, caller="test", settings=settings, clock=clock, dry_run=True)


@pytest.fixture()
def seed(ctx: OperationContext) -> Seeder:
    return Seeder(ctx)


@pytest.fixture()
def dispatcher() -> RecordingDispatcher:
    return RecordingDispatcher()


@pytest.fixture()
def make_extractor() -> type[FakeExtractor]:
    """The :class:`FakeExtractor` class, for tests that need several."""
    return FakeExtractor


@pytest.fixture()
def make_dispatcher() -> type[RecordingDispatcher]:
    return RecordingDispatcher
