"""
Structured error types for camp-spine.

Every failure the pipeline can raise internally is a :class:`CampSpineError`
carrying a category, a retry hint, and structured context for logging.
Operations never let these escape to callers: the ops layer converts them
into :class:`~camp_spine.ops.result.OperationResult` failures with a stable
error code.

Manifesto:
    - **Typed taxonomy:** validation, dependency, invariant, config, database
    - **Explicit retry semantics:** each error knows if a re-queue can help
    - **Rich context:** errors carry source/job/request ids for operators
    - **Error chaining:** the collaborator's exception is kept as ``cause``

Architecture:
    ::

        ┌──────────────────────────────────────────────────────────────┐
        │                      CampSpineError                          │
        │  (category, retryable, retry_after, context, cause)          │
        ├──────────────────────────────────────────────────────────────┤
        │                                                              │
        │  ValidationError      DependencyError      InvariantViolation│
        │  (VALIDATION)         (DEPENDENCY)         (INVARIANT)       │
        │                          │                       │           │
        │                  ExtractionError        InvalidTransitionError│
        │                  DispatchError                               │
        │                                                              │
        │  ConfigError          DatabaseError                          │
        │  (CONFIG)             (DATABASE)                             │
        └──────────────────────────────────────────────────────────────┘

    Conflicts (duplicate domain, duplicate notification key) are *not*
    errors. They resolve to the canonical entity and never reach this
    module.

Tags:
    errors, exceptions, retry, taxonomy, camp-spine

Doc-Types:
    - API Reference
    - Error Handling Guide
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class ErrorCategory(str, Enum):
    """Error categories used for routing and for ops error codes."""

    VALIDATION = "VALIDATION"
    DEPENDENCY = "DEPENDENCY"
    INVARIANT = "INVARIANT"
    CONFIG = "CONFIG"
    DATABASE = "DATABASE"
    INTERNAL = "INTERNAL"


@dataclass
class ErrorContext:
    """Structured metadata attached to an error.

    Attributes:
        source_id: Scrape source the failure relates to.
        job_id: Scrape job being executed.
        request_id: Camp request being processed.
        run_id: Sequence run being advanced.
        url: URL that was being accessed.
        metadata: Additional key-value pairs.
    """

    source_id: str | None = None
    job_id: str | None = None
    request_id: str | None = None
    run_id: str | None = None
    url: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for logging."""
        result = {}
        for key in ["source_id", "job_id", "request_id", "run_id", "url"]:
            value = getattr(self, key)
            if value is not None:
                result[key] = value
        if self.metadata:
            result.update(self.metadata)
        return result


class CampSpineError(Exception):
    """
    Base exception for all camp-spine errors.

    Subclasses set ``default_category`` and ``default_retryable`` so that a
    bare ``raise ExtractionError("timeout")`` carries the right semantics.

    Examples:
        >>> error = CampSpineError("Something went wrong")
        >>> error.category
        <ErrorCategory.INTERNAL: 'INTERNAL'>

        >>> error = ExtractionError("HTTP 429").with_context(source_id="src_1")
        >>> error.context.source_id
        'src_1'
    """

    default_category: ErrorCategory = ErrorCategory.INTERNAL
    default_retryable: bool = False

    def __init__(
        self,
        message: str,
        *,
        category: ErrorCategory | None = None,
        retryable: bool | None = None,
        retry_after: int | None = None,
        context: ErrorContext | None = None,
        cause: Exception | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.category = category or self.default_category
        self.retryable = retryable if retryable is not None else self.default_retryable
        self.retry_after = retry_after
        self.context = context or ErrorContext()
        self.cause = cause

        if cause is not None:
            self.__cause__ = cause

    def with_context(self, **kwargs: Any) -> CampSpineError:
        """Add context to this error (fluent API)."""
        for key, value in kwargs.items():
            if hasattr(self.context, key) and key != "metadata":
                setattr(self.context, key, value)
            else:
                self.context.metadata[key] = value
        return self

    def to_dict(self) -> dict[str, Any]:
        """Convert error to dictionary for logging/serialization."""
        result: dict[str, Any] = {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "category": self.category.value,
            "retryable": self.retryable,
        }
        if self.retry_after is not None:
            result["retry_after"] = self.retry_after
        context_dict = self.context.to_dict()
        if context_dict:
            result["context"] = context_dict
        if self.cause is not None:
            result["cause"] = str(self.cause)
        return result

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.message!r}, category={self.category.value})"


# =============================================================================
# VALIDATION
# =============================================================================


class ValidationError(CampSpineError):
    """
    Malformed or missing required input.

    Surfaced immediately to the caller, never retried.
    """

    default_category = ErrorCategory.VALIDATION
    default_retryable = False

    def __init__(self, message: str, *, field: str | None = None, value: Any = None, **kwargs: Any):
        super().__init__(message, **kwargs)
        self.field = field
        self.value = value

    def to_dict(self) -> dict[str, Any]:
        result = super().to_dict()
        if self.field:
            result["field"] = self.field
        if self.value is not None:
            result["value"] = repr(self.value)
        return result


# =============================================================================
# DEPENDENCY (external collaborators)
# =============================================================================


class DependencyError(CampSpineError):
    """A collaborator (extraction engine, dispatch service) failed.

    Recorded on the owning entity; retried only by an external re-queue.
    """

    default_category = ErrorCategory.DEPENDENCY
    default_retryable = True


class ExtractionError(DependencyError):
    """The extraction engine could not produce sessions for a source."""


class DispatchError(DependencyError):
    """The notification dispatch service refused or failed a send."""


# =============================================================================
# INVARIANTS
# =============================================================================


class InvariantViolation(CampSpineError):
    """A programming-level fault. Logged loudly, never swallowed."""

    default_category = ErrorCategory.INVARIANT
    default_retryable = False


class InvalidTransitionError(InvariantViolation):
    """Raised when an illegal state transition is attempted.

    State machines enforce which transitions are valid.  This fires when
    code tries to move out of a terminal state (e.g. ``completed → running``).
    """

    def __init__(self, current: str, target: str, enum_name: str = "Status") -> None:
        self.current = current
        self.target = target
        super().__init__(f"Invalid {enum_name} transition: {current} → {target}")


# =============================================================================
# CONFIG / DATABASE
# =============================================================================


class ConfigError(CampSpineError):
    """Configuration error. Never retryable."""

    default_category = ErrorCategory.CONFIG
    default_retryable = False


class DatabaseError(CampSpineError):
    """Database operation error."""

    default_category = ErrorCategory.DATABASE
    default_retryable = False


def is_retryable(error: Exception) -> bool:
    """Return ``True`` if *error* is a retryable :class:`CampSpineError`."""
    if isinstance(error, CampSpineError):
        return error.retryable
    return False


__all__ = [
    "CampSpineError",
    "ConfigError",
    "DatabaseError",
    "DependencyError",
    "DispatchError",
    "ErrorCategory",
    "ErrorContext",
    "ExtractionError",
    "InvalidTransitionError",
    "InvariantViolation",
    "ValidationError",
    "is_retryable",
]
