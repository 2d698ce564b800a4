"""Shared helpers for repository classes."""

from __future__ import annotations

from typing import Any


def _build_where(
    conditions: dict[str, Any],
    dialect_ph: Any,
    *,
    extra_clauses: list[str] | None = None,
) -> tuple[str, tuple]:
    """Build a WHERE clause from a conditions dict.

    Returns ``(where_fragment, params_tuple)``.  Skips ``None`` values.
    ``extra_clauses`` are appended literally (no params).
    """
    parts: list[str] = []
    params: list[Any] = []
    for col, val in conditions.items():
        if val is None:
            continue
        parts.append(f"{col} = {dialect_ph(1)}")
        params.append(val)
    if extra_clauses:
        parts.extend(extra_clauses)
    where = " AND ".join(parts) if parts else "1=1"
    return where, tuple(params)


def _paged(repo: Any, table: str, where: str, params: tuple, order_by: str,
           limit: int, offset: int) -> tuple[list[dict[str, Any]], int]:
    """Run the ``COUNT(*)`` + page query pair every list method needs."""
    count_row = repo.query_one(
        f"SELECT COUNT(*) AS cnt FROM {table} WHERE {where}", params,
    )
    total = (count_row or {}).get("cnt", 0)
    rows = repo.query(
        f"SELECT * FROM {table} WHERE {where} "
        f"ORDER BY {order_by} LIMIT {repo.ph(1)} OFFSET {repo.ph(1)}",
        (*params, limit, offset),
    )
    return rows, total
