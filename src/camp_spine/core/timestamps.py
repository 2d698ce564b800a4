"""
ULID generation and timestamp utilities (stdlib-only).

Every camp-spine row uses a prefixed, time-sortable id (``src_``, ``job_``,
``snap_`` ...) and ISO-8601 UTC timestamp strings.  Because snapshot order
and report windows are decided by string comparison on stored timestamps,
every writer must go through :func:`to_iso8601` so the format is uniform.

Features:
    - **generate_ulid():** Time-sortable, 26-char, Crockford base32
    - **new_id(prefix):** ``f"{prefix}_{ulid}"`` for table primary keys
    - **utc_now() / to_iso8601() / from_iso8601():** UTC round-trip
    - **Clock / FixedClock:** injectable time source for operations and tests

Tags:
    timestamps, ulid, utc, datetime, clock, camp-spine, stdlib-only
"""

from __future__ import annotations

import random
import threading
import time
from collections.abc import Callable
from datetime import UTC, datetime, timedelta

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    """Get current UTC datetime."""
    return datetime.now(UTC)


def generate_ulid() -> str:
    """
    Generate a ULID-like identifier.

    Format: 26 characters, base32 encoded, time-sortable.  Ids generated
    in the same millisecond increment the random part, so ids from one
    process sort in creation order.
    """
    global _last_ms, _last_random
    timestamp_ms = int(time.time() * 1000)
    with _ulid_lock:
        if timestamp_ms <= _last_ms:
            timestamp_ms = _last_ms
            _last_random = (_last_random + 1) & _RANDOM_MASK
        else:
            _last_ms = timestamp_ms
            _last_random = random.getrandbits(79)
        random_value = _last_random
    return _encode_base32(timestamp_ms, 10) + _encode_base32(random_value, 16)


def new_id(prefix: str) -> str:
    """Return a prefixed ULID, e.g. ``new_id("job") -> "job_01J..."``."""
    return f"{prefix}_{generate_ulid()}"


def to_iso8601(dt: datetime | None) -> str | None:
    """Convert datetime to an ISO 8601 UTC string (microsecond precision)."""
    if dt is None:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=UTC)
    return dt.astimezone(UTC).isoformat(timespec="microseconds")


def from_iso8601(s: str | None) -> datetime | None:
    """Parse ISO 8601 string to a timezone-aware datetime."""
    if s is None:
        return None
    dt = datetime.fromisoformat(s)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=UTC)
    return dt


class FixedClock:
    """Manually advanced clock.

    Used by the scheduler CLI's ``--now`` option and by tests that need to
    cross multi-day sequence delays without sleeping.
    """

    def __init__(self, start: datetime | None = None) -> None:
        self._now = start or utc_now()

    def __call__(self) -> datetime:
        return self._now

    def advance(self, **kwargs: float) -> datetime:
        """Move the clock forward by ``timedelta(**kwargs)``."""
        self._now = self._now + timedelta(**kwargs)
        return self._now

    def set(self, when: datetime) -> None:
        self._now = when


# ULID base32 alphabet (Crockford's)
_ENCODING = "0123456789ABCDEFGHJKMNPQRSTVWXYZ"
_ENCODING_LEN = len(_ENCODING)


def _encode_base32(value: int, length: int) -> str:
    """Encode integer to base32 string of fixed length."""
    result = []
    for _ in range(length):
        result.append(_ENCODING[value % _ENCODING_LEN])
        value //= _ENCODING_LEN
    return "".join(reversed(result))


_RANDOM_MASK = (1 << 80) - 1
_ulid_lock = threading.Lock()
_last_ms = 0
_last_random = 0
