"""
Operations layer — pipeline logic for camp-spine.

The ops package provides typed request/response functions over the
repositories and collaborator protocols, with consistent patterns:

- All functions accept ``OperationContext`` as first argument
- All functions return ``OperationResult[T]`` (never raise for expected failures)
- All functions are transport-agnostic (no HTTP, no CLI knowledge)
- Mutating functions support ``dry_run`` mode for safe previews

Usage::

    from camp_spine.ops import OperationContext, SqliteConnection
    from camp_spine.ops.database import initialize_database
    from camp_spine.ops.intake import process_request

    ctx = OperationContext(conn=SqliteConnection("camp.db"))
    result = initialize_database(ctx)
    assert result.success
"""

from camp_spine.ops.context import OperationContext
from camp_spine.ops.result import OperationError, OperationResult, PagedResult
from camp_spine.ops.sqlite_conn import SqliteConnection

__all__ = [
    "OperationContext",
    "OperationError",
    "OperationResult",
    "PagedResult",
    "SqliteConnection",
]
