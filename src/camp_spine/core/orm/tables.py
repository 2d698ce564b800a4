"""SQLAlchemy 2.0 ORM table definitions.

Every ``CREATE TABLE`` in :data:`camp_spine.core.schema.CORE_DDL` has a
corresponding ``Mapped`` class here so the ORM and raw-SQL layers share
one schema.  Constraints that carry concurrency guarantees (domain
uniqueness, notification dedup key, one active run per subject) are
declared here too, so ``CampSpineBase.metadata.create_all`` produces an
equivalent database.

Usage::

    from camp_spine.core.orm import CampSpineBase, create_camp_engine

    engine = create_camp_engine("sqlite:///camp.db")
    CampSpineBase.metadata.create_all(engine)
"""

from __future__ import annotations

from sqlalchemy import ForeignKey, Index, Integer, PrimaryKeyConstraint, Text, UniqueConstraint, text
from sqlalchemy.orm import Mapped, mapped_column

from camp_spine.core.orm.base import CampSpineBase


class OrganizationTable(CampSpineBase):
    __tablename__ = "organizations"

    id: Mapped[str] = mapped_column(Text, primary_key=True)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    slug: Mapped[str] = mapped_column(Text, unique=True, nullable=False)
    website: Mapped[str | None] = mapped_column(Text)
    city_id: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[str] = mapped_column(Text, nullable=False)


class ScrapeSourceTable(CampSpineBase):
    __tablename__ = "scrape_sources"

    id: Mapped[str] = mapped_column(Text, primary_key=True)
    domain: Mapped[str] = mapped_column(Text, unique=True, nullable=False)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    url: Mapped[str] = mapped_column(Text, nullable=False)
    city_id: Mapped[str] = mapped_column(Text, nullable=False)
    organization_id: Mapped[str | None] = mapped_column(Text, ForeignKey("organizations.id"))
    requested_by: Mapped[str | None] = mapped_column(Text)
    notes: Mapped[str | None] = mapped_column(Text)
    is_active: Mapped[bool] = mapped_column(Integer, server_default=text("1"), nullable=False)
    scrape_frequency_hours: Mapped[int] = mapped_column(Integer, server_default=text("24"), nullable=False)
    consecutive_failures: Mapped[int] = mapped_column(Integer, server_default=text("0"), nullable=False)
    total_runs: Mapped[int] = mapped_column(Integer, server_default=text("0"), nullable=False)
    successful_runs: Mapped[int] = mapped_column(Integer, server_default=text("0"), nullable=False)
    last_scraped_at: Mapped[str | None] = mapped_column(Text)
    last_success_at: Mapped[str | None] = mapped_column(Text)
    last_failure_at: Mapped[str | None] = mapped_column(Text)
    last_error: Mapped[str | None] = mapped_column(Text)
    next_scheduled_at: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[str] = mapped_column(Text, nullable=False)
    updated_at: Mapped[str] = mapped_column(Text, nullable=False)


class CampSessionTable(CampSpineBase):
    __tablename__ = "camp_sessions"
    __table_args__ = (UniqueConstraint("source_id", "external_key"),)

    id: Mapped[str] = mapped_column(Text, primary_key=True)
    source_id: Mapped[str] = mapped_column(Text, ForeignKey("scrape_sources.id"), nullable=False)
    external_key: Mapped[str] = mapped_column(Text, nullable=False)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    start_date: Mapped[str] = mapped_column(Text, nullable=False)
    end_date: Mapped[str] = mapped_column(Text, nullable=False)
    time_text: Mapped[str | None] = mapped_column(Text)
    price_text: Mapped[str | None] = mapped_column(Text)
    age_grade_text: Mapped[str | None] = mapped_column(Text)
    registration_status: Mapped[str | None] = mapped_column(Text)
    enrolled_count: Mapped[int | None] = mapped_column(Integer)
    capacity: Mapped[int | None] = mapped_column(Integer)
    created_at: Mapped[str] = mapped_column(Text, nullable=False)
    updated_at: Mapped[str] = mapped_column(Text, nullable=False)


class ScrapeJobTable(CampSpineBase):
    __tablename__ = "scrape_jobs"
    __table_args__ = (
        Index("idx_jobs_source_status", "source_id", "status"),
        Index("idx_jobs_completed_at", "completed_at"),
    )

    id: Mapped[str] = mapped_column(Text, primary_key=True)
    source_id: Mapped[str] = mapped_column(Text, ForeignKey("scrape_sources.id"), nullable=False)
    status: Mapped[str] = mapped_column(Text, server_default=text("'queued'"), nullable=False)
    triggered_by: Mapped[str | None] = mapped_column(Text)
    sessions_found: Mapped[int | None] = mapped_column(Integer)
    sessions_created: Mapped[int | None] = mapped_column(Integer)
    sessions_updated: Mapped[int | None] = mapped_column(Integer)
    error_message: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[str] = mapped_column(Text, nullable=False)
    started_at: Mapped[str | None] = mapped_column(Text)
    completed_at: Mapped[str | None] = mapped_column(Text)


class CampRequestTable(CampSpineBase):
    __tablename__ = "camp_requests"

    id: Mapped[str] = mapped_column(Text, primary_key=True)
    family_id: Mapped[str | None] = mapped_column(Text)
    city_id: Mapped[str] = mapped_column(Text, nullable=False)
    website_url: Mapped[str | None] = mapped_column(Text)
    organization_name: Mapped[str | None] = mapped_column(Text)
    camp_name: Mapped[str | None] = mapped_column(Text)
    notes: Mapped[str | None] = mapped_column(Text)
    status: Mapped[str] = mapped_column(Text, server_default=text("'pending'"), nullable=False)
    scrape_source_id: Mapped[str | None] = mapped_column(Text)
    organization_id: Mapped[str | None] = mapped_column(Text)
    error_message: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[str] = mapped_column(Text, nullable=False)
    processed_at: Mapped[str | None] = mapped_column(Text)


class AvailabilitySnapshotTable(CampSpineBase):
    __tablename__ = "availability_snapshots"
    __table_args__ = (
        Index("idx_snapshots_session_recorded", "session_id", "recorded_at", "id"),
    )

    id: Mapped[str] = mapped_column(Text, primary_key=True)
    session_id: Mapped[str] = mapped_column(Text, ForeignKey("camp_sessions.id"), nullable=False)
    job_id: Mapped[str | None] = mapped_column(Text)
    enrolled_count: Mapped[int] = mapped_column(Integer, nullable=False)
    capacity: Mapped[int] = mapped_column(Integer, nullable=False)
    spots_remaining: Mapped[int] = mapped_column(Integer, nullable=False)
    registration_status: Mapped[str] = mapped_column(Text, nullable=False)
    recorded_at: Mapped[str] = mapped_column(Text, nullable=False)


class FamilyTable(CampSpineBase):
    __tablename__ = "families"

    id: Mapped[str] = mapped_column(Text, primary_key=True)
    email: Mapped[str] = mapped_column(Text, nullable=False)
    display_name: Mapped[str] = mapped_column(Text, nullable=False)
    city_id: Mapped[str | None] = mapped_column(Text)
    plan: Mapped[str] = mapped_column(Text, server_default=text("'free'"), nullable=False)
    alerts_enabled: Mapped[bool] = mapped_column(Integer, server_default=text("1"), nullable=False)
    created_at: Mapped[str] = mapped_column(Text, nullable=False)
    updated_at: Mapped[str] = mapped_column(Text, nullable=False)


class SessionSubscriptionTable(CampSpineBase):
    __tablename__ = "session_subscriptions"
    __table_args__ = (PrimaryKeyConstraint("family_id", "session_id"),)

    family_id: Mapped[str] = mapped_column(Text, ForeignKey("families.id"), nullable=False)
    session_id: Mapped[str] = mapped_column(Text, ForeignKey("camp_sessions.id"), nullable=False)
    child_name: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[str] = mapped_column(Text, nullable=False)


class NotificationRecordTable(CampSpineBase):
    __tablename__ = "notification_records"
    __table_args__ = (
        UniqueConstraint("family_id", "session_id", "change_type", "transition_id"),
    )

    id: Mapped[str] = mapped_column(Text, primary_key=True)
    family_id: Mapped[str] = mapped_column(Text, nullable=False)
    session_id: Mapped[str] = mapped_column(Text, nullable=False)
    change_type: Mapped[str] = mapped_column(Text, nullable=False)
    transition_id: Mapped[str] = mapped_column(Text, nullable=False)
    notified_at: Mapped[str] = mapped_column(Text, nullable=False)
    provider_message_id: Mapped[str | None] = mapped_column(Text)


class AlertTable(CampSpineBase):
    __tablename__ = "alerts"
    __table_args__ = (Index("idx_alerts_unacked", "acknowledged_at", "created_at"),)

    id: Mapped[str] = mapped_column(Text, primary_key=True)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    severity: Mapped[str] = mapped_column(Text, nullable=False)
    alert_type: Mapped[str] = mapped_column(Text, nullable=False)
    source_id: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[str] = mapped_column(Text, nullable=False)
    acknowledged_at: Mapped[str | None] = mapped_column(Text)
    acknowledged_by: Mapped[str | None] = mapped_column(Text)


class SequenceRunTable(CampSpineBase):
    __tablename__ = "sequence_runs"
    __table_args__ = (
        Index(
            "uq_sequence_runs_active_subject",
            "subject_id",
            unique=True,
            sqlite_where=text("status = 'active'"),
            postgresql_where=text("status = 'active'"),
        ),
        Index("idx_sequence_runs_due", "status", "next_due_at"),
    )

    id: Mapped[str] = mapped_column(Text, primary_key=True)
    subject_id: Mapped[str] = mapped_column(Text, nullable=False)
    sequence_name: Mapped[str] = mapped_column(Text, nullable=False)
    total_steps: Mapped[int] = mapped_column(Integer, nullable=False)
    last_completed_step: Mapped[int] = mapped_column(Integer, server_default=text("0"), nullable=False)
    status: Mapped[str] = mapped_column(Text, server_default=text("'active'"), nullable=False)
    anchor: Mapped[str] = mapped_column(Text, server_default=text("'previous'"), nullable=False)
    started_at: Mapped[str] = mapped_column(Text, nullable=False)
    next_due_at: Mapped[str | None] = mapped_column(Text)
    finished_at: Mapped[str | None] = mapped_column(Text)
    last_error: Mapped[str | None] = mapped_column(Text)


class SequenceStepRecordTable(CampSpineBase):
    __tablename__ = "sequence_step_records"
    __table_args__ = (PrimaryKeyConstraint("run_id", "step_index"),)

    run_id: Mapped[str] = mapped_column(Text, ForeignKey("sequence_runs.id"), nullable=False)
    step_index: Mapped[int] = mapped_column(Integer, nullable=False)
    step_name: Mapped[str] = mapped_column(Text, nullable=False)
    completed_at: Mapped[str] = mapped_column(Text, nullable=False)


class OutboundMessageTable(CampSpineBase):
    __tablename__ = "outbound_messages"

    dedup_key: Mapped[str] = mapped_column(Text, primary_key=True)
    recipient: Mapped[str] = mapped_column(Text, nullable=False)
    template_id: Mapped[str] = mapped_column(Text, nullable=False)
    dispatch_id: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[str] = mapped_column(Text, nullable=False)


class CityOverrideTable(CampSpineBase):
    __tablename__ = "city_overrides"

    city_id: Mapped[str] = mapped_column(Text, primary_key=True)
    patch_json: Mapped[str] = mapped_column(Text, nullable=False)
    updated_at: Mapped[str] = mapped_column(Text, nullable=False)


__all__ = [
    "AlertTable",
    "AvailabilitySnapshotTable",
    "CampRequestTable",
    "CampSessionTable",
    "CityOverrideTable",
    "FamilyTable",
    "NotificationRecordTable",
    "OrganizationTable",
    "OutboundMessageTable",
    "ScrapeJobTable",
    "ScrapeSourceTable",
    "SequenceRunTable",
    "SequenceStepRecordTable",
    "SessionSubscriptionTable",
]
