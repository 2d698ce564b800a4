"""
Typed response objects for operations.

Each dataclass is the *payload* of an :class:`OperationResult`.  Responses
carry only domain data (no CLI formatting).
"""

from __future__ import annotations

from dataclasses import dataclass, field

# ------------------------------------------------------------------ #
# Database
# ------------------------------------------------------------------ #


@dataclass(frozen=True, slots=True)
class DatabaseInitResult:
    tables_created: list[str]
    dry_run: bool = False


# ------------------------------------------------------------------ #
# Intake & sources
# ------------------------------------------------------------------ #


@dataclass(frozen=True, slots=True)
class CampRequestDetail:
    """A camp request and its processing outcome.

    ``error_message`` is written for direct display to the requesting
    family.
    """

    id: str
    city_id: str
    status: str
    family_id: str | None = None
    website_url: str | None = None
    organization_name: str | None = None
    camp_name: str | None = None
    notes: str | None = None
    scrape_source_id: str | None = None
    organization_id: str | None = None
    error_message: str | None = None
    created_at: str | None = None
    processed_at: str | None = None


@dataclass(frozen=True, slots=True)
class SourceSummary:
    id: str
    domain: str
    name: str
    city_id: str
    organization_id: str | None = None
    is_active: bool = True
    consecutive_failures: int = 0
    next_scheduled_at: str | None = None


@dataclass(frozen=True, slots=True)
class SourceDetail:
    id: str
    domain: str
    name: str
    url: str
    city_id: str
    organization_id: str | None = None
    requested_by: str | None = None
    notes: str | None = None
    is_active: bool = True
    scrape_frequency_hours: int = 24
    consecutive_failures: int = 0
    total_runs: int = 0
    successful_runs: int = 0
    last_scraped_at: str | None = None
    last_success_at: str | None = None
    last_failure_at: str | None = None
    last_error: str | None = None
    next_scheduled_at: str | None = None
    created_at: str | None = None


# ------------------------------------------------------------------ #
# Jobs
# ------------------------------------------------------------------ #


@dataclass(frozen=True, slots=True)
class JobDetail:
    id: str
    source_id: str
    status: str
    triggered_by: str | None = None
    sessions_found: int | None = None
    sessions_created: int | None = None
    sessions_updated: int | None = None
    error_message: str | None = None
    created_at: str | None = None
    started_at: str | None = None
    completed_at: str | None = None


@dataclass(frozen=True, slots=True)
class JobRunSummary:
    """Outcome of :func:`camp_spine.ops.jobs.run_job`."""

    job_id: str
    status: str
    sessions_found: int = 0
    sessions_created: int = 0
    sessions_updated: int = 0
    snapshots_recorded: int = 0
    notifications_sent: int = 0
    error_message: str | None = None
    discarded: bool = False


@dataclass(frozen=True, slots=True)
class QueueDueResult:
    queued: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)
    runnable: list[str] = field(default_factory=list)


@dataclass(frozen=True, slots=True)
class CleanupResult:
    failed_job_ids: list[str] = field(default_factory=list)
    dry_run: bool = False


# ------------------------------------------------------------------ #
# Snapshots & notifications
# ------------------------------------------------------------------ #


@dataclass(frozen=True, slots=True)
class SnapshotDetail:
    id: str
    session_id: str
    enrolled_count: int
    capacity: int
    spots_remaining: int
    registration_status: str
    recorded_at: str
    job_id: str | None = None


@dataclass(frozen=True, slots=True)
class DispatchOutcome:
    """What happened to one (event, subscriber) pair.

    ``status`` is ``sent``, ``skipped_duplicate`` or ``send_failed``.
    """

    status: str
    family_id: str
    change_type: str
    notification_id: str | None = None
    provider_message_id: str | None = None
    error: str | None = None


@dataclass(frozen=True, slots=True)
class EvaluationResult:
    snapshot_id: str
    events: list[str] = field(default_factory=list)
    sent: int = 0
    skipped: int = 0
    failed: int = 0
    dispatch_enabled: bool = True


@dataclass(frozen=True, slots=True)
class NotificationSummary:
    id: str
    family_id: str
    session_id: str
    change_type: str
    transition_id: str
    notified_at: str
    provider_message_id: str | None = None


@dataclass(frozen=True, slots=True)
class FamilyDetail:
    id: str
    email: str
    display_name: str
    city_id: str | None = None
    plan: str = "free"
    alerts_enabled: bool = True


@dataclass(frozen=True, slots=True)
class SubscriptionDetail:
    family_id: str
    session_id: str
    child_name: str | None = None
    created_at: str | None = None
    created: bool = True


# ------------------------------------------------------------------ #
# Alerts & reports
# ------------------------------------------------------------------ #


@dataclass(frozen=True, slots=True)
class AlertSummary:
    id: str
    message: str
    severity: str
    alert_type: str
    created_at: str
    source_id: str | None = None
    acknowledged_at: str | None = None
    acknowledged_by: str | None = None


@dataclass(frozen=True, slots=True)
class DailyReport:
    """Aggregate view of the last reporting window.

    Session sums count completed jobs only; a failed job with partial
    counts contributes nothing.
    """

    window_start: str
    window_end: str
    total_jobs: int
    jobs_completed: int
    jobs_failed: int
    jobs_cancelled: int
    sessions_found: int
    sessions_created: int
    sessions_updated: int
    unacknowledged_alerts: list[AlertSummary] = field(default_factory=list)


@dataclass(frozen=True, slots=True)
class ReportDelivery:
    subject: str
    sent: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)
    dispatch_ids: list[str] = field(default_factory=list)
    skipped: bool = False


# ------------------------------------------------------------------ #
# Sequences
# ------------------------------------------------------------------ #


@dataclass(frozen=True, slots=True)
class SequenceRunDetail:
    id: str
    subject_id: str
    sequence_name: str
    status: str
    total_steps: int
    last_completed_step: int
    anchor: str
    started_at: str
    next_due_at: str | None = None
    finished_at: str | None = None
    last_error: str | None = None


@dataclass(frozen=True, slots=True)
class StartSequenceResult:
    run: SequenceRunDetail
    created: bool


@dataclass(frozen=True, slots=True)
class SequenceTickResult:
    advanced: list[str] = field(default_factory=list)
    errors: dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class GuardedSendResult:
    dedup_key: str
    sent: bool
    dispatch_id: str | None = None
