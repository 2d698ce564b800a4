"""Tests for camp_spine.ops.snapshots."""

import pytest

from camp_spine.core.repositories import SnapshotRepository
from camp_spine.ops.snapshots import list_snapshots, record_snapshot


def test_record_and_list_in_order(ctx, seed, clock):
    session = seed.session(seed.source()["id"])
    record_snapshot(ctx, session["id"], 10, 20, "active")
    clock.advance(hours=2)
    latest = record_snapshot(ctx, session["id"], 14, 20, "active").data

    assert latest.spots_remaining == 6
    history = list_snapshots(ctx, session["id"]).data
    assert [h.enrolled_count for h in history] == [10, 14]


def test_same_timestamp_orders_by_id(ctx, seed):
    session = seed.session(seed.source()["id"])
    first = record_snapshot(ctx, session["id"], 1, 20, "active").data
    second = record_snapshot(ctx, session["id"], 2, 20, "active").data

    repo = SnapshotRepository(ctx.conn)
    assert repo.get_previous(session["id"], second.recorded_at, second.id)["id"] == first.id
    assert repo.get_previous(session["id"], first.recorded_at, first.id) is None
    assert repo.get_latest(session["id"])["id"] == second.id


@pytest.mark.parametrize(
    ("enrolled", "capacity", "status"),
    [(-1, 20, "active"), (1, -20, "active"), (1, 20, "open")],
)
def test_validation(ctx, seed, enrolled, capacity, status):
    session = seed.session(seed.source()["id"])
    result = record_snapshot(ctx, session["id"], enrolled, capacity, status)
    assert result.error.code == "VALIDATION_FAILED"


def test_unknown_session(ctx):
    assert record_snapshot(ctx, "sess_missing", 1, 2, "active").error.code == "NOT_FOUND"


def test_dry_run(ctx, dry_ctx, seed):
    session = seed.session(seed.source()["id"])
    preview = record_snapshot(dry_ctx, session["id"], 3, 10, "draft")
    assert preview.data.spots_remaining == 7
    assert list_snapshots(ctx, session["id"]).data == []
