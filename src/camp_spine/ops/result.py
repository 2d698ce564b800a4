"""
Operation result envelope.

Every operation returns an :class:`OperationResult` (or, for listings, a
:class:`PagedResult`).  Expected failures are values, not exceptions:
callers branch on ``result.success`` and ``result.error.code``.

Error codes::

    VALIDATION_FAILED   malformed or missing input; never retried
    NOT_FOUND           unknown id
    CONFLICT            a competing open entity exists (e.g. open job)
    INVALID_TRANSITION  invariant violation (state machine guard fired)
    DEPENDENCY_FAILED   extractor / dispatcher failure
    INTERNAL            anything unexpected
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Any, Generic, TypeVar

from camp_spine.core.errors import (
    CampSpineError,
    DependencyError,
    ErrorCategory,
    InvariantViolation,
    ValidationError,
)

T = TypeVar("T")


class ErrorCode:
    VALIDATION_FAILED = "VALIDATION_FAILED"
    NOT_FOUND = "NOT_FOUND"
    CONFLICT = "CONFLICT"
    INVALID_TRANSITION = "INVALID_TRANSITION"
    DEPENDENCY_FAILED = "DEPENDENCY_FAILED"
    INTERNAL = "INTERNAL"


@dataclass(frozen=True, slots=True)
class OperationError:
    """Structured error detail for failed operations.

    Attributes:
        code: One of the :class:`ErrorCode` values.
        message: Human-readable description, safe to display.
        category: Optional :class:`ErrorCategory` for routing.
        details: Extra key/value context (field names, ids, etc.).
        retryable: Whether re-queueing the work could help.
    """

    code: str
    message: str
    category: ErrorCategory | None = None
    details: dict[str, Any] = field(default_factory=dict)
    retryable: bool = False


@dataclass
class OperationResult(Generic[T]):
    """Envelope returned by every operation function.

    Use :meth:`ok`, :meth:`fail` or :meth:`from_error` rather than the
    constructor.
    """

    success: bool
    data: T | None = None
    error: OperationError | None = None
    warnings: list[str] = field(default_factory=list)
    elapsed_ms: float = 0.0
    metadata: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def ok(
        cls,
        data: T,
        *,
        warnings: list[str] | None = None,
        elapsed_ms: float = 0.0,
        metadata: dict[str, Any] | None = None,
    ) -> OperationResult[T]:
        return cls(
            success=True,
            data=data,
            warnings=warnings or [],
            elapsed_ms=elapsed_ms,
            metadata=metadata or {},
        )

    @classmethod
    def fail(
        cls,
        code: str,
        message: str,
        *,
        category: ErrorCategory | None = None,
        details: dict[str, Any] | None = None,
        retryable: bool = False,
        elapsed_ms: float = 0.0,
    ) -> OperationResult[T]:
        return cls(
            success=False,
            error=OperationError(
                code=code,
                message=message,
                category=category,
                details=details or {},
                retryable=retryable,
            ),
            elapsed_ms=elapsed_ms,
        )

    @classmethod
    def from_error(cls, exc: CampSpineError, *, elapsed_ms: float = 0.0) -> OperationResult[T]:
        """Map a :class:`CampSpineError` onto the matching error code."""
        if isinstance(exc, ValidationError):
            code = ErrorCode.VALIDATION_FAILED
        elif isinstance(exc, InvariantViolation):
            code = ErrorCode.INVALID_TRANSITION
        elif isinstance(exc, DependencyError):
            code = ErrorCode.DEPENDENCY_FAILED
        else:
            code = ErrorCode.INTERNAL
        return cls.fail(
            code,
            exc.message,
            category=exc.category,
            details=exc.context.to_dict(),
            retryable=exc.retryable,
            elapsed_ms=elapsed_ms,
        )

    def to_dict(self) -> dict[str, Any]:
        """Serialise to a plain dict (for JSON output)."""
        d: dict[str, Any] = {"success": self.success}
        if self.data is not None:
            d["data"] = self.data
        if self.error is not None:
            d["error"] = {
                "code": self.error.code,
                "message": self.error.message,
                "retryable": self.error.retryable,
            }
            if self.error.details:
                d["error"]["details"] = self.error.details
        if self.warnings:
            d["warnings"] = self.warnings
        if self.elapsed_ms:
            d["elapsed_ms"] = round(self.elapsed_ms, 2)
        return d


@dataclass
class PagedResult(OperationResult[list[T]]):
    """Paginated result for list operations; ``has_more`` is derived."""

    total: int = 0
    limit: int = 50
    offset: int = 0
    has_more: bool = False

    @classmethod
    def from_items(
        cls,
        items: list[T],
        total: int,
        *,
        limit: int = 50,
        offset: int = 0,
        elapsed_ms: float = 0.0,
    ) -> PagedResult[T]:
        return cls(
            success=True,
            data=items,
            total=total,
            limit=limit,
            offset=offset,
            has_more=(offset + limit) < total,
            elapsed_ms=elapsed_ms,
        )

    def to_dict(self) -> dict[str, Any]:
        d = super().to_dict()
        d.update(total=self.total, limit=self.limit, offset=self.offset, has_more=self.has_more)
        return d


class _Timer:
    """Minimal stopwatch for timing operations."""

    __slots__ = ("_start",)

    def __init__(self) -> None:
        self._start = time.perf_counter()

    @property
    def elapsed_ms(self) -> float:
        return (time.perf_counter() - self._start) * 1000


def start_timer() -> _Timer:
    """Return a lightweight timer.  Use ``timer.elapsed_ms`` when done."""
    return _Timer()
