"""SQL dialect abstraction.

Repositories build SQL through a :class:`Dialect` rather than hard-coding
placeholder style, so the same repository code runs over a raw sqlite3
connection and over a SQLAlchemy session bridge (which rewrites ``?`` to
named parameters).
"""

from __future__ import annotations

from typing import Protocol, runtime_checkable


@runtime_checkable
class Dialect(Protocol):
    @property
    def name(self) -> str: ...

    def placeholder(self, index: int) -> str: ...

    def placeholders(self, count: int) -> str: ...

    def is_unique_violation(self, exc: BaseException) -> bool: ...


class SQLiteDialect:
    """SQLite dialect: ``?`` placeholders."""

    @property
    def name(self) -> str:
        return "sqlite"

    def placeholder(self, index: int) -> str:  # noqa: ARG002
        return "?"

    def placeholders(self, count: int) -> str:
        return ", ".join("?" for _ in range(count))

    def is_unique_violation(self, exc: BaseException) -> bool:
        """True when *exc* is a UNIQUE / PRIMARY KEY constraint failure.

        Matches both ``sqlite3.IntegrityError`` and SQLAlchemy's wrapped
        ``IntegrityError`` by class name so the check works on either
        connection type.
        """
        if type(exc).__name__ != "IntegrityError":
            return False
        text = str(exc).upper()
        return "UNIQUE" in text or "PRIMARY KEY" in text


__all__ = ["Dialect", "SQLiteDialect"]
