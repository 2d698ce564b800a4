"""
Request-scoped context for operations.

Every operation function receives an :class:`OperationContext` as its first
argument.  The context carries the database connection, caller identity,
configuration, and the clock.  Nothing in ``camp_spine.ops`` reads the
environment or the wall clock directly: admin recipients, feature flags and
thresholds come from ``ctx.settings``; "now" comes from ``ctx.now()``.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from camp_spine.core.protocols import Connection
from camp_spine.core.settings import CampSpineSettings
from camp_spine.core.timestamps import Clock, to_iso8601, utc_now


@dataclass
class OperationContext:
    """Context passed to every operation function.

    Attributes:
        conn: Database connection satisfying :class:`camp_spine.core.protocols.Connection`.
        request_id: Unique ID for this operation invocation (auto-generated).
        caller: Origin of the request: ``"cli"``, ``"scheduler"``, ``"sdk"``, ``"test"``.
        user: Authenticated family id from the identity context, if any.
        dry_run: When ``True``, mutating operations return a preview.
        settings: Injected configuration (thresholds, admin list, flags).
        clock: Callable returning the current UTC ``datetime``.
        metadata: Arbitrary key/value pairs forwarded to logging.
    """

    conn: Connection
    request_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    caller: str = "sdk"
    user: str | None = None
    dry_run: bool = False
    settings: CampSpineSettings = field(default_factory=CampSpineSettings)
    clock: Clock = utc_now
    metadata: dict[str, Any] = field(default_factory=dict)

    def now(self) -> datetime:
        return self.clock()

    def now_iso(self) -> str:
        return to_iso8601(self.clock())  # type: ignore[return-value]
