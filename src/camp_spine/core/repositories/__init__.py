"""Repositories for camp-spine tables.

Each repository extends :class:`BaseRepository` and owns the SQL for one
aggregate.  Operations in ``camp_spine.ops`` use these repositories
instead of inline raw SQL.

Architecture::

    ┌────────────────────────────────────────────────────────────────┐
    │  ops/intake.py, ops/jobs.py, ops/notifications.py  ...         │
    │  (operation functions: business orchestration)                 │
    └────────────────────────────┬───────────────────────────────────┘
                                 │ uses
                                 ▼
    ┌────────────────────────────────────────────────────────────────┐
    │  camp_spine.core.repositories  (this package)                  │
    │                                                                │
    │  sources.py       — SourceRepository, OrganizationRepository   │
    │  jobs.py          — JobRepository, SessionRepository           │
    │  requests.py      — CampRequestRepository                      │
    │  snapshots.py     — SnapshotRepository                         │
    │  notifications.py — FamilyRepository, NotificationRepository   │
    │  alerts.py        — AlertRepository                            │
    │  sequences.py     — SequenceRepository                         │
    │  cities.py        — CityOverrideRepository                     │
    │  _helpers.py      — _build_where, _paged                       │
    └────────────────────────────────────────────────────────────────┘
"""

from camp_spine.core.repositories._helpers import _build_where
from camp_spine.core.repositories.alerts import AlertRepository
from camp_spine.core.repositories.cities import CityOverrideRepository
from camp_spine.core.repositories.jobs import JobRepository, SessionRepository
from camp_spine.core.repositories.notifications import FamilyRepository, NotificationRepository
from camp_spine.core.repositories.requests import CampRequestRepository
from camp_spine.core.repositories.sequences import SequenceRepository
from camp_spine.core.repositories.snapshots import SnapshotRepository
from camp_spine.core.repositories.sources import OrganizationRepository, SourceRepository

__all__ = [
    "AlertRepository",
    "CampRequestRepository",
    "CityOverrideRepository",
    "FamilyRepository",
    "JobRepository",
    "NotificationRepository",
    "OrganizationRepository",
    "SequenceRepository",
    "SessionRepository",
    "SnapshotRepository",
    "SourceRepository",
    "_build_where",
]
