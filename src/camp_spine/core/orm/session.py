"""SQLAlchemy engine factory, session factory, and Connection bridge.

Manifesto:
    ORM and raw-SQL code must share a single abstraction so ops modules
    work identically whether the caller holds a sqlite3 connection or a
    ``Session``.  ``SAConnectionBridge`` wraps a SA Session to satisfy the
    ``camp_spine.core.protocols.Connection`` protocol.

This module provides:

* ``create_camp_engine``   -- Create a SA engine from a URL.
* ``camp_session_factory`` -- ``sessionmaker`` with ``expire_on_commit=False``.
* ``SAConnectionBridge``   -- ``Connection`` protocol over a SA ``Session``.
"""

from __future__ import annotations

import re
from collections.abc import Sequence
from typing import Any

from sqlalchemy import create_engine as _sa_create_engine
from sqlalchemy import event, text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

_QMARK = re.compile(r"\?")


def create_camp_engine(url: str = "sqlite:///camp_spine.db", *, echo: bool = False, **kwargs: Any) -> Engine:
    """Create a SQLAlchemy engine with sane defaults.

    SQLite engines get ``check_same_thread=False``, foreign keys on, and a
    busy timeout so concurrent writers wait instead of failing.
    """
    if url.startswith("sqlite"):
        kwargs.setdefault("connect_args", {"check_same_thread": False, "timeout": 30})
        engine = _sa_create_engine(url, echo=echo, **kwargs)

        @event.listens_for(engine, "connect")
        def _set_sqlite_pragma(dbapi_connection: Any, _rec: Any) -> None:
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

        return engine

    return _sa_create_engine(url, echo=echo, **kwargs)


def camp_session_factory(engine: Engine) -> sessionmaker[Session]:
    """Return a ``sessionmaker`` bound to *engine*."""
    return sessionmaker(bind=engine, expire_on_commit=False)


class SAConnectionBridge:
    """Adapter that makes a SQLAlchemy ``Session`` look like a ``Connection``.

    Positional ``?`` placeholders are rewritten to ``:p0, :p1 ...`` for
    ``text()``.  Rows are returned as dicts so repositories can consume
    them exactly like ``sqlite3.Row``.
    """

    def __init__(self, session: Session) -> None:
        self._session = session
        self._last_result: Any = None

    def execute(self, sql: str, params: Sequence[Any] = ()) -> SAConnectionBridge:
        if params:
            counter = iter(range(len(params)))
            rewritten = _QMARK.sub(lambda _m: f":p{next(counter)}", sql)
            mapping = {f"p{i}": v for i, v in enumerate(params)}
            self._last_result = self._session.execute(text(rewritten), mapping)
        else:
            self._last_result = self._session.execute(text(sql))
        return self

    def executemany(self, sql: str, params: Sequence[Sequence[Any]]) -> None:
        for row in params:
            self.execute(sql, row)

    def fetchone(self) -> dict[str, Any] | None:
        if self._last_result is None or not self._last_result.returns_rows:
            return None
        row = self._last_result.fetchone()
        return dict(row._mapping) if row is not None else None

    def fetchall(self) -> list[dict[str, Any]]:
        if self._last_result is None or not self._last_result.returns_rows:
            return []
        return [dict(r._mapping) for r in self._last_result.fetchall()]

    def commit(self) -> None:
        self._session.commit()

    def rollback(self) -> None:
        self._session.rollback()

    @property
    def rowcount(self) -> int:
        if self._last_result is None:
            return -1
        return self._last_result.rowcount

    @property
    def description(self) -> list[tuple[str, ...]] | None:
        if self._last_result is None or not self._last_result.returns_rows:
            return None
        return [(k, None, None, None, None, None, None) for k in self._last_result.keys()]

    @property
    def session(self) -> Session:
        """Access the underlying SA session (e.g., for ORM queries)."""
        return self._session
