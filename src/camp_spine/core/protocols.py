"""
Canonical protocol definitions for camp-spine.

The pipeline consumes three external collaborators only through narrow
structural contracts, so any object with the right shape works: a real
scraping engine, an email service, or a test double.

Architecture:
    ::

        protocols.py
        ├── Connection   — sync DB protocol (sqlite3 adapter, SA bridge)
        ├── Extractor    — extraction engine: source → sessions
        └── Dispatcher   — outbound send: recipient/template/payload → id

Guardrails:
    ❌ DON'T: Import a concrete scraper or mail client in ops code
    ✅ DO: Accept an ``Extractor`` / ``Dispatcher`` parameter

    ❌ DON'T: Add implementation logic to protocol classes
    ✅ DO: Keep implementations in ``camp_spine.framework.dispatch`` or tests

Tags:
    protocol, connection, extractor, dispatcher, contracts, camp-spine
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

if TYPE_CHECKING:
    from camp_spine.core.models import ExtractedSession


@runtime_checkable
class Connection(Protocol):
    """
    Minimal SYNCHRONOUS connection interface for database operations.

    Implementations:
        - :class:`camp_spine.ops.sqlite_conn.SqliteConnection`
        - :class:`camp_spine.core.orm.session.SAConnectionBridge`

    Examples:
        >>> conn.execute("SELECT * FROM scrape_sources WHERE domain = ?", ("sunnycamp.org",))
        >>> row = conn.fetchone()
    """

    def execute(self, sql: str, params: tuple = ()) -> Any:
        """Execute SQL statement with optional parameters."""
        ...

    def executemany(self, sql: str, params: list[tuple]) -> Any:
        """Execute SQL statement for multiple parameter sets."""
        ...

    def fetchone(self) -> Any:
        """Fetch one row from last query."""
        ...

    def fetchall(self) -> list:
        """Fetch all rows from last query."""
        ...

    def commit(self) -> None:
        """Commit current transaction."""
        ...

    def rollback(self) -> None:
        """Rollback current transaction."""
        ...


@runtime_checkable
class Extractor(Protocol):
    """Extraction engine contract.

    ``extract`` receives the source row (a dict with at least ``id``,
    ``url`` and ``domain``) and returns the sessions it found.  Any
    exception is treated as a failed job with ``str(exc)`` preserved
    verbatim as the job's error message.
    """

    def extract(self, source: dict[str, Any]) -> list[ExtractedSession]:
        ...


@runtime_checkable
class Dispatcher(Protocol):
    """Notification dispatch service contract.

    ``send`` returns a provider dispatch id, or raises on failure.  Callers
    treat a failure as "not sent".
    """

    def send(self, recipient: str, template_id: str, payload: dict[str, Any]) -> str:
        ...


__all__ = ["Connection", "Dispatcher", "Extractor"]
