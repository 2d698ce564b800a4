"""
Typed request objects for operations.

Each dataclass is the *input* contract for one operation function.
Requests carry only transport-agnostic data (no CLI params, no HTTP bodies).
"""

from __future__ import annotations

from dataclasses import dataclass

# ------------------------------------------------------------------ #
# Intake & sources
# ------------------------------------------------------------------ #


@dataclass(frozen=True, slots=True)
class SubmitCampRequest:
    """Request for :func:`camp_spine.ops.intake.submit_request`.

    The requesting family comes from ``ctx.user``, not from this object.

    Attributes:
        city_id: City id or slug the camp belongs to.
        website_url: Camp website; required for processing to succeed.
        organization_name: Optional hint for the organization name.
        camp_name: Name of the camp as the family knows it.
        notes: Free text from the family.
    """

    city_id: str
    camp_name: str
    website_url: str | None = None
    organization_name: str | None = None
    notes: str | None = None


@dataclass(frozen=True, slots=True)
class ListCampRequestsRequest:
    status: str | None = None
    city_id: str | None = None
    family_id: str | None = None
    limit: int = 50
    offset: int = 0


@dataclass(frozen=True, slots=True)
class ListSourcesRequest:
    city_id: str | None = None
    is_active: bool | None = None
    organization_id: str | None = None
    limit: int = 50
    offset: int = 0


# ------------------------------------------------------------------ #
# Jobs
# ------------------------------------------------------------------ #


@dataclass(frozen=True, slots=True)
class ListJobsRequest:
    source_id: str | None = None
    status: str | None = None
    limit: int = 50
    offset: int = 0


# ------------------------------------------------------------------ #
# Families & notifications
# ------------------------------------------------------------------ #


@dataclass(frozen=True, slots=True)
class UpsertFamilyRequest:
    """Request for :func:`camp_spine.ops.notifications.upsert_family`."""

    family_id: str
    email: str
    display_name: str
    city_id: str | None = None
    plan: str = "free"
    alerts_enabled: bool = True


@dataclass(frozen=True, slots=True)
class ListNotificationsRequest:
    family_id: str | None = None
    session_id: str | None = None
    change_type: str | None = None
    limit: int = 50
    offset: int = 0


# ------------------------------------------------------------------ #
# Alerts
# ------------------------------------------------------------------ #


@dataclass(frozen=True, slots=True)
class ListAlertsRequest:
    severity: str | None = None
    alert_type: str | None = None
    source_id: str | None = None
    acknowledged: bool | None = None
    limit: int = 50
    offset: int = 0


# ------------------------------------------------------------------ #
# Sequences
# ------------------------------------------------------------------ #


@dataclass(frozen=True, slots=True)
class ListSequenceRunsRequest:
    subject_id: str | None = None
    sequence_name: str | None = None
    status: str | None = None
    limit: int = 50
    offset: int = 0
