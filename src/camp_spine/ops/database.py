"""
Database operations.

Thin wrapper around :mod:`camp_spine.core.schema` for table creation.
"""

from __future__ import annotations

from camp_spine.core.logging import get_logger
from camp_spine.core.schema import CORE_TABLES, create_core_tables
from camp_spine.ops.context import OperationContext
from camp_spine.ops.responses import DatabaseInitResult
from camp_spine.ops.result import OperationResult, start_timer

logger = get_logger(__name__)


def initialize_database(ctx: OperationContext) -> OperationResult[DatabaseInitResult]:
    """Create all pipeline tables and indexes (idempotent)."""
    timer = start_timer()

    if ctx.dry_run:
        return OperationResult.ok(
            DatabaseInitResult(tables_created=list(CORE_TABLES.values()), dry_run=True),
            elapsed_ms=timer.elapsed_ms,
        )

    try:
        tables = create_core_tables(ctx.conn)
        logger.info("database_initialized", tables=len(tables))
        return OperationResult.ok(
            DatabaseInitResult(tables_created=tables),
            elapsed_ms=timer.elapsed_ms,
        )
    except Exception as exc:
        logger.exception("op_failed", error=str(exc))
        return OperationResult.fail(
            "INTERNAL",
            f"Failed to create tables: {exc}",
            elapsed_ms=timer.elapsed_ms,
        )
