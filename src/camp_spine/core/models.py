"""
Domain enums, state machines, and value objects.

Status enums are string enums so they compare equal to the raw values
stored in SQLite.  State transitions are enforced through explicit
``*_VALID_TRANSITIONS`` tables: if a legitimate transition is blocked,
add it to the table, never remove the guard.

Job lifecycle::

    QUEUED  → RUNNING | FAILED | CANCELLED
    RUNNING → COMPLETED | FAILED | CANCELLED
    COMPLETED, FAILED, CANCELLED → (terminal)

Camp request lifecycle::

    PENDING  → SCRAPING | FAILED
    SCRAPING → COMPLETED | DUPLICATE | FAILED
    COMPLETED, DUPLICATE, FAILED → (terminal)

Sequence run lifecycle::

    ACTIVE → COMPLETED | ABANDONED | CANCELLED
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum
from typing import Any

from camp_spine.core.errors import InvalidTransitionError

# ------------------------------------------------------------------ #
# Scrape jobs
# ------------------------------------------------------------------ #


class JobStatus(str, Enum):
    """Status of one ingestion attempt against a source."""

    QUEUED = "queued"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


JOB_VALID_TRANSITIONS: dict[JobStatus, frozenset[JobStatus]] = {
    JobStatus.QUEUED: frozenset({
        JobStatus.RUNNING,
        JobStatus.FAILED,
        JobStatus.CANCELLED,
    }),
    JobStatus.RUNNING: frozenset({
        JobStatus.COMPLETED,
        JobStatus.FAILED,
        JobStatus.CANCELLED,
    }),
    JobStatus.COMPLETED: frozenset(),
    JobStatus.FAILED: frozenset(),
    JobStatus.CANCELLED: frozenset(),
}

JOB_OPEN_STATUSES = frozenset({JobStatus.QUEUED, JobStatus.RUNNING})
JOB_TERMINAL_STATUSES = frozenset({JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELLED})


def validate_job_transition(current: JobStatus, target: JobStatus) -> None:
    """Raise :class:`InvalidTransitionError` if *current → target* is illegal.

    Example:
        >>> validate_job_transition(JobStatus.RUNNING, JobStatus.COMPLETED)
        >>> validate_job_transition(JobStatus.COMPLETED, JobStatus.RUNNING)
        InvalidTransitionError: Invalid JobStatus transition: completed → running
    """
    allowed = JOB_VALID_TRANSITIONS.get(current, frozenset())
    if target not in allowed:
        raise InvalidTransitionError(current.value, target.value, "JobStatus")


# ------------------------------------------------------------------ #
# Camp requests
# ------------------------------------------------------------------ #


class RequestStatus(str, Enum):
    PENDING = "pending"
    SCRAPING = "scraping"
    COMPLETED = "completed"
    DUPLICATE = "duplicate"
    FAILED = "failed"


REQUEST_VALID_TRANSITIONS: dict[RequestStatus, frozenset[RequestStatus]] = {
    RequestStatus.PENDING: frozenset({RequestStatus.SCRAPING, RequestStatus.FAILED}),
    RequestStatus.SCRAPING: frozenset({
        RequestStatus.COMPLETED,
        RequestStatus.DUPLICATE,
        RequestStatus.FAILED,
    }),
    RequestStatus.COMPLETED: frozenset(),
    RequestStatus.DUPLICATE: frozenset(),
    RequestStatus.FAILED: frozenset(),
}

REQUEST_TERMINAL_STATUSES = frozenset({
    RequestStatus.COMPLETED,
    RequestStatus.DUPLICATE,
    RequestStatus.FAILED,
})


def validate_request_transition(current: RequestStatus, target: RequestStatus) -> None:
    """Raise :class:`InvalidTransitionError` if *current → target* is illegal."""
    allowed = REQUEST_VALID_TRANSITIONS.get(current, frozenset())
    if target not in allowed:
        raise InvalidTransitionError(current.value, target.value, "RequestStatus")


# ------------------------------------------------------------------ #
# Sessions, snapshots, change events
# ------------------------------------------------------------------ #


class RegistrationStatus(str, Enum):
    """Registration state of a camp session; ``ACTIVE`` means open."""

    DRAFT = "draft"
    ACTIVE = "active"
    SOLD_OUT = "sold_out"
    CLOSED = "closed"


class ChangeType(str, Enum):
    REGISTRATION_OPENED = "registration_opened"
    LOW_AVAILABILITY = "low_availability"


_KEY_CLEAN = re.compile(r"[^a-z0-9]+")


@dataclass(frozen=True, slots=True)
class ExtractedSession:
    """One session as returned by the extraction engine.

    ``enrolled_count`` and ``capacity`` are optional; a snapshot is only
    recorded when both are known.
    """

    name: str
    start_date: str
    end_date: str
    time_text: str | None = None
    price_text: str | None = None
    age_grade_text: str | None = None
    enrolled_count: int | None = None
    capacity: int | None = None
    registration_status: str | None = None

    @property
    def external_key(self) -> str:
        """Stable per-source identity: normalized name plus date range."""
        name = _KEY_CLEAN.sub("-", self.name.strip().lower()).strip("-")
        return f"{name}|{self.start_date}|{self.end_date}"

    @property
    def has_availability(self) -> bool:
        return self.enrolled_count is not None and self.capacity is not None


@dataclass(frozen=True, slots=True)
class Snapshot:
    """Read model of one ``availability_snapshots`` row."""

    id: str
    session_id: str
    enrolled_count: int
    capacity: int
    registration_status: str
    recorded_at: str
    job_id: str | None = None

    @property
    def spots_remaining(self) -> int:
        return max(self.capacity - self.enrolled_count, 0)

    @property
    def is_open(self) -> bool:
        return self.registration_status == RegistrationStatus.ACTIVE.value

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> Snapshot:
        return cls(
            id=row["id"],
            session_id=row["session_id"],
            enrolled_count=row["enrolled_count"],
            capacity=row["capacity"],
            registration_status=row["registration_status"],
            recorded_at=row["recorded_at"],
            job_id=row.get("job_id"),
        )


@dataclass(frozen=True, slots=True)
class ChangeEvent:
    """A detected transition worth notifying about.

    ``transition_id`` is the id of the snapshot that produced the
    transition; it is part of the notification dedup key so that a
    close-then-reopen is a new event while a re-check of the same
    snapshot is not.
    """

    change_type: ChangeType
    session_id: str
    transition_id: str
    spots_remaining: int
    registration_status: str


# ------------------------------------------------------------------ #
# Alerts
# ------------------------------------------------------------------ #


class AlertSeverity(str, Enum):
    CRITICAL = "critical"
    ERROR = "error"
    WARNING = "warning"
    INFO = "info"


SEVERITY_RANK: dict[str, int] = {
    AlertSeverity.CRITICAL.value: 0,
    AlertSeverity.ERROR.value: 1,
    AlertSeverity.WARNING.value: 2,
    AlertSeverity.INFO.value: 3,
}


class AlertType(str, Enum):
    SCRAPER_DEGRADED = "scraper_degraded"
    SCRAPER_NEEDS_REGENERATION = "scraper_needs_regeneration"
    RATE_LIMITED = "rate_limited"
    SOURCE_RECOVERED = "source_recovered"
    ZERO_RESULTS = "zero_results"
    HIGH_FAILURE_RATE = "high_failure_rate"
    NEW_SOURCES_PENDING = "new_sources_pending"
    CIRCUIT_BREAKER = "circuit_breaker"


# ------------------------------------------------------------------ #
# Sequences
# ------------------------------------------------------------------ #


class SequenceStatus(str, Enum):
    ACTIVE = "active"
    COMPLETED = "completed"
    ABANDONED = "abandoned"
    CANCELLED = "cancelled"


SEQUENCE_VALID_TRANSITIONS: dict[SequenceStatus, frozenset[SequenceStatus]] = {
    SequenceStatus.ACTIVE: frozenset({
        SequenceStatus.COMPLETED,
        SequenceStatus.ABANDONED,
        SequenceStatus.CANCELLED,
    }),
    SequenceStatus.COMPLETED: frozenset(),
    SequenceStatus.ABANDONED: frozenset(),
    SequenceStatus.CANCELLED: frozenset(),
}


def validate_sequence_transition(current: SequenceStatus, target: SequenceStatus) -> None:
    """Raise :class:`InvalidTransitionError` if *current → target* is illegal."""
    allowed = SEQUENCE_VALID_TRANSITIONS.get(current, frozenset())
    if target not in allowed:
        raise InvalidTransitionError(current.value, target.value, "SequenceStatus")


class SequenceAnchor(str, Enum):
    """How step delays are measured.

    ``PREVIOUS``: from completion of the prior step.
    ``FIRST``: cumulative delays measured from step 1's completion.
    """

    PREVIOUS = "previous"
    FIRST = "first"


class FamilyPlan(str, Enum):
    FREE = "free"
    PREMIUM = "premium"
    CANCELLED = "cancelled"
