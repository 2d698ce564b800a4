"""Declarative base and type-map for the camp-spine ORM models.

Uses SQLAlchemy 2.0 ``DeclarativeBase`` with a ``type_annotation_map``
that maps Python built-in types to portable SA column types.  Timestamps
are ISO-8601 strings in the raw-SQL layer, so they map to ``Text`` here
as well.
"""

from __future__ import annotations

from sqlalchemy import Integer, Text
from sqlalchemy.orm import DeclarativeBase


class CampSpineBase(DeclarativeBase):
    """Shared declarative base for every camp-spine table.

    * ``str``  → ``Text``
    * ``int``  → ``Integer``
    * ``bool`` → ``Integer``  (SQLite has no native BOOLEAN)
    """

    type_annotation_map = {
        str: Text,
        int: Integer,
        bool: Integer,
    }
