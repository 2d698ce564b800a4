"""SQLAlchemy 2.0 ORM layer for camp-spine.

Mirrors every table in :mod:`camp_spine.core.schema` as a declarative
model, and provides a bridge so repositories can run over an ORM session.

Modules
-------
base        CampSpineBase (declarative base)
session     Engine factory, session factory, SAConnectionBridge
tables      Mapped table classes
"""

from __future__ import annotations

from camp_spine.core.orm.base import CampSpineBase
from camp_spine.core.orm.session import (
    SAConnectionBridge,
    camp_session_factory,
    create_camp_engine,
)
from camp_spine.core.orm.tables import *  # noqa: F401,F403
