"""Base repository with dialect-aware database access.

Provides :class:`BaseRepository`, which pairs a
:class:`~camp_spine.core.protocols.Connection` with a
:class:`~camp_spine.core.dialect.Dialect` so that the pipeline
repositories write portable SQL without referencing a driver.

Architecture::

    ┌────────────────────────────────────────────────────────────────────┐
    │                       BaseRepository                               │
    │                                                                    │
    │   conn: Connection        ← camp_spine.core.protocols              │
    │   dialect: Dialect        ← camp_spine.core.dialect                │
    │                                                                    │
    │   execute(sql, params)     → cursor                                │
    │   query(sql, params)       → list[dict]                            │
    │   query_one(sql, params)   → dict | None                           │
    │   insert(table, data)      → cursor                                │
    │   update(table, key, data) → int (rows changed)                    │
    │   is_unique_violation(exc) → bool                                  │
    └────────────────────────────────────────────────────────────────────┘

Usage:
    >>> class SourceRepository(BaseRepository):
    ...     def get(self, source_id: str):
    ...         return self.query_one(
    ...             f"SELECT * FROM scrape_sources WHERE id = {self.ph(1)}",
    ...             (source_id,),
    ...         )

Tags:
    repository, database, abstraction, portability
"""

from __future__ import annotations

from typing import Any

from camp_spine.core.dialect import Dialect, SQLiteDialect
from camp_spine.core.protocols import Connection


class BaseRepository:
    """Dialect-aware base class for data-access repositories.

    Parameters:
        conn: Any object satisfying the :class:`Connection` protocol.
        dialect: SQL dialect to use.  Defaults to :class:`SQLiteDialect`.
    """

    def __init__(self, conn: Connection, dialect: Dialect | None = None) -> None:
        self.conn = conn
        self.dialect: Dialect = dialect or SQLiteDialect()

    @classmethod
    def from_session(
        cls,
        session: Any,
        dialect: Dialect | None = None,
        **kwargs: Any,
    ) -> BaseRepository:
        """Create a repository backed by a SQLAlchemy ORM session.

        Wraps *session* in :class:`~camp_spine.core.orm.session.SAConnectionBridge`
        so the same ``Connection``-based helpers work over an ORM session.
        """
        from camp_spine.core.orm.session import SAConnectionBridge

        bridge = SAConnectionBridge(session)
        return cls(conn=bridge, dialect=dialect, **kwargs)  # type: ignore[arg-type]

    # -- Convenience shortcuts ---------------------------------------------

    def ph(self, count: int) -> str:
        """Shortcut for ``self.dialect.placeholders(count)``."""
        return self.dialect.placeholders(count)

    def is_unique_violation(self, exc: BaseException) -> bool:
        return self.dialect.is_unique_violation(exc)

    # -- Query helpers -----------------------------------------------------

    def execute(self, sql: str, params: tuple = ()) -> Any:
        """Execute a statement and return the raw cursor/result."""
        return self.conn.execute(sql, params)

    def query(self, sql: str, params: tuple = ()) -> list[dict[str, Any]]:
        """Execute a SELECT and return rows as dicts.

        Rows from ``sqlite3.Row`` and from the SQLAlchemy bridge both
        convert with ``dict(row)``; otherwise ``cursor.description``
        supplies column names.
        """
        cursor = self.conn.execute(sql, params)
        rows = cursor.fetchall()
        if not rows:
            return []

        if hasattr(rows[0], "keys"):
            return [dict(row) for row in rows]

        columns = [desc[0] for desc in cursor.description]
        return [dict(zip(columns, row, strict=False)) for row in rows]

    def query_one(self, sql: str, params: tuple = ()) -> dict[str, Any] | None:
        """Execute a SELECT and return the first row as a dict (or None)."""
        results = self.query(sql, params)
        return results[0] if results else None

    def scalar(self, sql: str, params: tuple = ()) -> Any:
        """Return the first column of the first row, or ``None``."""
        row = self.query_one(sql, params)
        if row is None:
            return None
        return next(iter(row.values()))

    # -- Write helpers -----------------------------------------------------

    def insert(self, table: str, data: dict[str, Any]) -> Any:
        """Insert a single row from a dict."""
        columns = list(data.keys())
        values = list(data.values())
        sql = f"INSERT INTO {table} ({', '.join(columns)}) VALUES ({self.ph(len(values))})"
        return self.conn.execute(sql, tuple(values))

    def update(
        self,
        table: str,
        key: dict[str, Any],
        data: dict[str, Any],
        *,
        guard: dict[str, Any] | None = None,
    ) -> int:
        """``UPDATE table SET data WHERE key (AND guard)``.

        *guard* adds extra equality conditions (e.g. ``{"status": "running"}``)
        so a stale writer cannot overwrite a row that moved on.  Returns
        the number of rows changed.
        """
        if not data:
            return 0
        sets = ", ".join(f"{col} = {self.dialect.placeholder(0)}" for col in data)
        conds = {**key, **(guard or {})}
        where = " AND ".join(f"{col} = {self.dialect.placeholder(0)}" for col in conds)
        cursor = self.conn.execute(
            f"UPDATE {table} SET {sets} WHERE {where}",
            (*data.values(), *conds.values()),
        )
        return _rowcount(cursor)

    def commit(self) -> None:
        """Commit the current transaction."""
        self.conn.commit()

    def rollback(self) -> None:
        self.conn.rollback()


def _rowcount(cursor: Any) -> int:
    count = getattr(cursor, "rowcount", None)
    return int(count) if count is not None and count >= 0 else 0


__all__ = [
    "BaseRepository",
]
