"""Tests for camp_spine.core.models — state machines and value objects."""

import pytest

from camp_spine.core.errors import InvalidTransitionError
from camp_spine.core.models import (
    ExtractedSession,
    JobStatus,
    RequestStatus,
    SequenceStatus,
    Snapshot,
    validate_job_transition,
    validate_request_transition,
    validate_sequence_transition,
)


class TestJobTransitions:
    @pytest.mark.parametrize(
        ("current", "target"),
        [
            (JobStatus.QUEUED, JobStatus.RUNNING),
            (JobStatus.QUEUED, JobStatus.CANCELLED),
            (JobStatus.QUEUED, JobStatus.FAILED),
            (JobStatus.RUNNING, JobStatus.COMPLETED),
            (JobStatus.RUNNING, JobStatus.FAILED),
        ],
    )
    def test_allowed(self, current, target):
        validate_job_transition(current, target)

    @pytest.mark.parametrize("terminal", [JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELLED])
    def test_terminal_is_final(self, terminal):
        with pytest.raises(InvalidTransitionError):
            validate_job_transition(terminal, JobStatus.RUNNING)

    def test_queued_cannot_complete(self):
        with pytest.raises(InvalidTransitionError) as info:
            validate_job_transition(JobStatus.QUEUED, JobStatus.COMPLETED)
        assert "queued" in info.value.message
        assert "completed" in info.value.message


class TestRequestTransitions:
    def test_pending_to_duplicate_requires_scraping(self):
        with pytest.raises(InvalidTransitionError):
            validate_request_transition(RequestStatus.PENDING, RequestStatus.DUPLICATE)
        validate_request_transition(RequestStatus.SCRAPING, RequestStatus.DUPLICATE)

    def test_completed_is_terminal(self):
        with pytest.raises(InvalidTransitionError):
            validate_request_transition(RequestStatus.COMPLETED, RequestStatus.FAILED)


class TestSequenceTransitions:
    def test_active_can_end(self):
        for target in (SequenceStatus.COMPLETED, SequenceStatus.ABANDONED, SequenceStatus.CANCELLED):
            validate_sequence_transition(SequenceStatus.ACTIVE, target)

    def test_cannot_reactivate(self):
        with pytest.raises(InvalidTransitionError):
            validate_sequence_transition(SequenceStatus.CANCELLED, SequenceStatus.ACTIVE)


class TestExtractedSession:
    def test_external_key_normalizes_name(self):
        a = ExtractedSession(name="  Robotics Week! ", start_date="2026-07-06", end_date="2026-07-10")
        b = ExtractedSession(name="robotics week", start_date="2026-07-06", end_date="2026-07-10")
        assert a.external_key == b.external_key == "robotics-week|2026-07-06|2026-07-10"

    def test_has_availability_needs_both_counts(self):
        assert not ExtractedSession(name="x", start_date="d", end_date="d", capacity=20).has_availability
        assert ExtractedSession(
            name="x", start_date="d", end_date="d", enrolled_count=0, capacity=20,
        ).has_availability


class TestSnapshot:
    def test_derived_fields(self):
        snap = Snapshot(
            id="snap_1",
            session_id="sess_1",
            enrolled_count=19,
            capacity=20,
            registration_status="active",
            recorded_at="2026-06-01T09:00:00.000000+00:00",
        )
        assert snap.spots_remaining == 1
        assert snap.is_open

    def test_from_row(self):
        row = {
            "id": "snap_1",
            "session_id": "sess_1",
            "enrolled_count": 5,
            "capacity": 5,
            "registration_status": "sold_out",
            "recorded_at": "t",
            "job_id": None,
        }
        snap = Snapshot.from_row(row)
        assert snap.spots_remaining == 0
        assert not snap.is_open
