"""
Source registry operations.

A scrape source is one monitored provider domain.  The normalized hostname
is the dedup key and carries a UNIQUE constraint in storage; see
:func:`camp_spine.ops.intake.process_request` for how creation races
resolve.
"""

from __future__ import annotations

from typing import Any
from urllib.parse import urlsplit

from camp_spine.core.errors import ValidationError
from camp_spine.core.logging import get_logger
from camp_spine.core.repositories import OrganizationRepository, SourceRepository
from camp_spine.ops.context import OperationContext
from camp_spine.ops.requests import ListSourcesRequest
from camp_spine.ops.responses import SourceDetail, SourceSummary
from camp_spine.ops.result import OperationResult, PagedResult, start_timer

logger = get_logger(__name__)


def _source_repo(ctx: OperationContext) -> SourceRepository:
    return SourceRepository(ctx.conn)


def normalize_domain(url: str) -> str:
    """Return the dedup key for *url*: lowercase hostname, one leading ``www.`` stripped.

    A bare domain (``sunnycamp.org/register``) is accepted as if it had an
    ``https://`` scheme.

    >>> normalize_domain("https://WWW.SunnyCamp.org/register")
    'sunnycamp.org'

    Raises:
        ValidationError: The URL has no parseable hostname.
    """
    candidate = (url or "").strip()
    if not candidate:
        raise ValidationError("Invalid URL: empty", field="website_url", value=url)
    if "://" not in candidate:
        candidate = f"https://{candidate}"
    try:
        hostname = urlsplit(candidate).hostname
    except ValueError as exc:
        raise ValidationError(f"Invalid URL: {url}", field="website_url", value=url, cause=exc) from exc
    if not hostname or "." not in hostname or " " in hostname:
        raise ValidationError(f"Invalid URL: {url}", field="website_url", value=url)
    hostname = hostname.lower().rstrip(".")
    if hostname.startswith("www."):
        hostname = hostname[len("www."):]
    return hostname


def get_source(ctx: OperationContext, source_id: str) -> OperationResult[SourceDetail]:
    """Get a single source by ID."""
    timer = start_timer()
    try:
        row = _source_repo(ctx).get(source_id)
        if not row:
            return OperationResult.fail(
                "NOT_FOUND", f"Source '{source_id}' not found", elapsed_ms=timer.elapsed_ms,
            )
        return OperationResult.ok(_row_to_detail(row), elapsed_ms=timer.elapsed_ms)
    except Exception as exc:
        logger.exception("op_failed", error=str(exc))
        return OperationResult.fail(
            "INTERNAL", f"Failed to get source: {exc}", elapsed_ms=timer.elapsed_ms,
        )


def find_source_by_domain(ctx: OperationContext, domain_or_url: str) -> OperationResult[SourceDetail]:
    """Look a source up by domain or by any URL on that domain."""
    timer = start_timer()
    try:
        domain = normalize_domain(domain_or_url)
    except ValidationError as exc:
        return OperationResult.from_error(exc, elapsed_ms=timer.elapsed_ms)

    try:
        row = _source_repo(ctx).get_by_domain(domain)
        if not row:
            return OperationResult.fail(
                "NOT_FOUND", f"No source for domain '{domain}'", elapsed_ms=timer.elapsed_ms,
            )
        return OperationResult.ok(_row_to_detail(row), elapsed_ms=timer.elapsed_ms)
    except Exception as exc:
        logger.exception("op_failed", error=str(exc))
        return OperationResult.fail(
            "INTERNAL", f"Failed to find source: {exc}", elapsed_ms=timer.elapsed_ms,
        )


def list_sources(ctx: OperationContext, request: ListSourcesRequest) -> PagedResult[SourceSummary]:
    """List sources with optional filtering."""
    timer = start_timer()
    try:
        rows, total = _source_repo(ctx).list_sources(
            city_id=request.city_id,
            is_active=request.is_active,
            organization_id=request.organization_id,
            limit=request.limit,
            offset=request.offset,
        )
        return PagedResult.from_items(
            [_row_to_summary(r) for r in rows],
            total=total,
            limit=request.limit,
            offset=request.offset,
            elapsed_ms=timer.elapsed_ms,
        )
    except Exception as exc:
        logger.exception("op_failed", error=str(exc))
        return PagedResult.fail(
            "INTERNAL", f"Failed to list sources: {exc}", elapsed_ms=timer.elapsed_ms,
        )


def link_organization(
    ctx: OperationContext,
    source_id: str,
    organization_id: str,
) -> OperationResult[SourceDetail]:
    """Attach or replace the organization a source belongs to."""
    timer = start_timer()

    try:
        repo = _source_repo(ctx)
        row = repo.get(source_id)
        if not row:
            return OperationResult.fail(
                "NOT_FOUND", f"Source '{source_id}' not found", elapsed_ms=timer.elapsed_ms,
            )
        if not OrganizationRepository(ctx.conn).get(organization_id):
            return OperationResult.fail(
                "NOT_FOUND",
                f"Organization '{organization_id}' not found",
                elapsed_ms=timer.elapsed_ms,
            )
        if ctx.dry_run:
            return OperationResult.ok(
                _row_to_detail({**row, "organization_id": organization_id}),
                elapsed_ms=timer.elapsed_ms,
            )

        repo.update_fields(source_id, {"organization_id": organization_id, "updated_at": ctx.now_iso()})
        ctx.conn.commit()
        logger.info(
            "source_organization_linked",
            source_id=source_id,
            organization_id=organization_id,
            previous=row.get("organization_id"),
        )
        return OperationResult.ok(_row_to_detail(repo.get(source_id)), elapsed_ms=timer.elapsed_ms)
    except Exception as exc:
        ctx.conn.rollback()
        logger.exception("op_failed", error=str(exc))
        return OperationResult.fail(
            "INTERNAL", f"Failed to link organization: {exc}", elapsed_ms=timer.elapsed_ms,
        )


# ------------------------------------------------------------------ #
# Row mappers
# ------------------------------------------------------------------ #


def _row_to_summary(row: dict[str, Any]) -> SourceSummary:
    return SourceSummary(
        id=row["id"],
        domain=row["domain"],
        name=row["name"],
        city_id=row["city_id"],
        organization_id=row.get("organization_id"),
        is_active=bool(row.get("is_active", 1)),
        consecutive_failures=row.get("consecutive_failures") or 0,
        next_scheduled_at=row.get("next_scheduled_at"),
    )


def _row_to_detail(row: dict[str, Any]) -> SourceDetail:
    return SourceDetail(
        id=row["id"],
        domain=row["domain"],
        name=row["name"],
        url=row["url"],
        city_id=row["city_id"],
        organization_id=row.get("organization_id"),
        requested_by=row.get("requested_by"),
        notes=row.get("notes"),
        is_active=bool(row.get("is_active", 1)),
        scrape_frequency_hours=row.get("scrape_frequency_hours") or 24,
        consecutive_failures=row.get("consecutive_failures") or 0,
        total_runs=row.get("total_runs") or 0,
        successful_runs=row.get("successful_runs") or 0,
        last_scraped_at=row.get("last_scraped_at"),
        last_success_at=row.get("last_success_at"),
        last_failure_at=row.get("last_failure_at"),
        last_error=row.get("last_error"),
        next_scheduled_at=row.get("next_scheduled_at"),
        created_at=row.get("created_at"),
    )
