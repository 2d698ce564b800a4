"""
Camp request intake.

A family submits a camp it wants tracked; :func:`process_request` turns the
request into a scrape source (plus organization and a first queued job) or
resolves it to the source that already covers the same domain.

Request lifecycle::

    pending ──► scraping ──► completed   (new source created)
       │            ├──────► duplicate   (domain already registered)
       └────────────┴──────► failed      (city / URL / storage problem)

Two requests for the same domain processed at the same time race on the
UNIQUE constraint of ``scrape_sources.domain``.  The loser rolls back and
links the winner's source, ending as ``duplicate``.
"""

from __future__ import annotations

from typing import Any

from camp_spine.core.errors import InvariantViolation, ValidationError
from camp_spine.core.logging import get_logger
from camp_spine.core.models import (
    REQUEST_TERMINAL_STATUSES,
    JobStatus,
    RequestStatus,
    validate_request_transition,
)
from camp_spine.core.overlay import CityDirectory
from camp_spine.core.repositories import (
    CampRequestRepository,
    JobRepository,
    OrganizationRepository,
    SourceRepository,
)
from camp_spine.core.timestamps import new_id
from camp_spine.ops.context import OperationContext
from camp_spine.ops.requests import ListCampRequestsRequest, SubmitCampRequest
from camp_spine.ops.responses import CampRequestDetail
from camp_spine.ops.result import OperationResult, PagedResult, start_timer
from camp_spine.ops.sources import normalize_domain

logger = get_logger(__name__)

CITY_NOT_FOUND = "City not found"
MISSING_WEBSITE = "Please provide the camp's website URL so we can add it."


def _request_repo(ctx: OperationContext) -> CampRequestRepository:
    return CampRequestRepository(ctx.conn)


def submit_request(ctx: OperationContext, request: SubmitCampRequest) -> OperationResult[dict]:
    """Store a new camp request as ``pending``.

    The requesting family is ``ctx.user``.  Blank camp name or city fails
    validation before anything is written.
    """
    timer = start_timer()

    if not (request.camp_name or "").strip():
        return OperationResult.fail(
            "VALIDATION_FAILED", "camp_name is required", elapsed_ms=timer.elapsed_ms,
        )
    if not (request.city_id or "").strip():
        return OperationResult.fail(
            "VALIDATION_FAILED", "city_id is required", elapsed_ms=timer.elapsed_ms,
        )

    if ctx.dry_run:
        return OperationResult.ok(
            {"dry_run": True, "would_submit": request.camp_name.strip()},
            elapsed_ms=timer.elapsed_ms,
        )

    try:
        request_id = new_id("req")
        _request_repo(ctx).create({
            "id": request_id,
            "family_id": ctx.user,
            "city_id": request.city_id.strip(),
            "website_url": _blank_to_none(request.website_url),
            "organization_name": _blank_to_none(request.organization_name),
            "camp_name": request.camp_name.strip(),
            "notes": _blank_to_none(request.notes),
            "status": RequestStatus.PENDING.value,
            "created_at": ctx.now_iso(),
        })
        ctx.conn.commit()
        logger.info("camp_request_submitted", request_id=request_id, family_id=ctx.user)
        return OperationResult.ok(
            {"id": request_id, "status": RequestStatus.PENDING.value},
            elapsed_ms=timer.elapsed_ms,
        )
    except Exception as exc:
        ctx.conn.rollback()
        logger.exception("op_failed", error=str(exc))
        return OperationResult.fail(
            "INTERNAL", f"Failed to submit request: {exc}", elapsed_ms=timer.elapsed_ms,
        )


def process_request(ctx: OperationContext, request_id: str) -> OperationResult[CampRequestDetail]:
    """Resolve a pending request to a new or existing scrape source.

    Terminal requests are returned unchanged.  Every outcome the family
    can act on (unknown city, missing URL, bad URL, storage failure) ends
    in a terminal request state with a displayable ``error_message``; the
    operation itself only fails for unknown ids and invariant faults.
    """
    timer = start_timer()
    repo = _request_repo(ctx)

    try:
        row = repo.get(request_id)
        if not row:
            return OperationResult.fail(
                "NOT_FOUND", f"Camp request '{request_id}' not found", elapsed_ms=timer.elapsed_ms,
            )

        status = RequestStatus(row["status"])
        if status in REQUEST_TERMINAL_STATUSES:
            return OperationResult.ok(_row_to_detail(row), elapsed_ms=timer.elapsed_ms)

        log = logger.bind(request_id=request_id)

        city = CityDirectory(ctx.conn).get(row["city_id"])
        if city is None:
            log.info("camp_request_rejected", reason="city_not_found", city_id=row["city_id"])
            detail = _finish(ctx, row, RequestStatus.FAILED, error_message=CITY_NOT_FOUND)
            return OperationResult.ok(detail, elapsed_ms=timer.elapsed_ms)

        website_url = row.get("website_url")
        if not website_url:
            log.info("camp_request_rejected", reason="missing_website")
            detail = _finish(ctx, row, RequestStatus.FAILED, error_message=MISSING_WEBSITE)
            return OperationResult.ok(detail, elapsed_ms=timer.elapsed_ms)

        if status == RequestStatus.PENDING:
            validate_request_transition(status, RequestStatus.SCRAPING)
            if not repo.transition(request_id, status.value, {"status": RequestStatus.SCRAPING.value}):
                ctx.conn.rollback()
                return OperationResult.ok(_row_to_detail(repo.get(request_id)), elapsed_ms=timer.elapsed_ms)
            ctx.conn.commit()
            row = {**row, "status": RequestStatus.SCRAPING.value}

        try:
            domain = normalize_domain(website_url)
        except ValidationError as exc:
            log.info("camp_request_rejected", reason="invalid_url", url=website_url)
            detail = _finish(ctx, row, RequestStatus.FAILED, error_message=exc.message)
            return OperationResult.ok(detail, elapsed_ms=timer.elapsed_ms)

        sources = SourceRepository(ctx.conn)
        existing = sources.get_by_domain(domain)
        if existing:
            log.info("camp_request_duplicate", domain=domain, source_id=existing["id"])
            detail = _finish(
                ctx, row, RequestStatus.DUPLICATE,
                scrape_source_id=existing["id"],
                organization_id=existing.get("organization_id"),
            )
            return OperationResult.ok(detail, elapsed_ms=timer.elapsed_ms)

        try:
            created = _create_source(ctx, row, domain, city.id)
            ctx.conn.commit()
        except Exception as exc:
            ctx.conn.rollback()
            if sources.is_unique_violation(exc):
                winner = sources.get_by_domain(domain)
                if winner:
                    log.info("camp_request_conflict_resolved", domain=domain, source_id=winner["id"])
                    detail = _finish(
                        ctx, row, RequestStatus.DUPLICATE,
                        scrape_source_id=winner["id"],
                        organization_id=winner.get("organization_id"),
                    )
                    return OperationResult.ok(detail, elapsed_ms=timer.elapsed_ms)
            log.warning("source_create_failed", domain=domain, error=str(exc))
            detail = _finish(
                ctx, row, RequestStatus.FAILED, error_message=f"Failed to create source: {exc}",
            )
            return OperationResult.ok(detail, elapsed_ms=timer.elapsed_ms)

        log.info("source_created", domain=domain, **created)
        detail = _finish(
            ctx, row, RequestStatus.COMPLETED,
            scrape_source_id=created["source_id"],
            organization_id=created["organization_id"],
        )
        return OperationResult.ok(
            detail, elapsed_ms=timer.elapsed_ms, metadata={"job_id": created["job_id"]},
        )
    except InvariantViolation as exc:
        ctx.conn.rollback()
        logger.error("invariant_violation", request_id=request_id, **exc.to_dict())
        return OperationResult.from_error(exc, elapsed_ms=timer.elapsed_ms)
    except Exception as exc:
        ctx.conn.rollback()
        logger.exception("op_failed", error=str(exc), request_id=request_id)
        return OperationResult.fail(
            "INTERNAL", f"Failed to process request: {exc}", elapsed_ms=timer.elapsed_ms,
        )


def get_request(ctx: OperationContext, request_id: str) -> OperationResult[CampRequestDetail]:
    timer = start_timer()
    try:
        row = _request_repo(ctx).get(request_id)
        if not row:
            return OperationResult.fail(
                "NOT_FOUND", f"Camp request '{request_id}' not found", elapsed_ms=timer.elapsed_ms,
            )
        return OperationResult.ok(_row_to_detail(row), elapsed_ms=timer.elapsed_ms)
    except Exception as exc:
        logger.exception("op_failed", error=str(exc))
        return OperationResult.fail(
            "INTERNAL", f"Failed to get request: {exc}", elapsed_ms=timer.elapsed_ms,
        )


def list_requests(
    ctx: OperationContext,
    request: ListCampRequestsRequest,
) -> PagedResult[CampRequestDetail]:
    """List camp requests, newest first."""
    timer = start_timer()
    try:
        rows, total = _request_repo(ctx).list_requests(
            status=request.status,
            city_id=request.city_id,
            family_id=request.family_id,
            limit=request.limit,
            offset=request.offset,
        )
        return PagedResult.from_items(
            [_row_to_detail(r) for r in rows],
            total=total,
            limit=request.limit,
            offset=request.offset,
            elapsed_ms=timer.elapsed_ms,
        )
    except Exception as exc:
        logger.exception("op_failed", error=str(exc))
        return PagedResult.fail(
            "INTERNAL", f"Failed to list requests: {exc}", elapsed_ms=timer.elapsed_ms,
        )


# ------------------------------------------------------------------ #
# Internals
# ------------------------------------------------------------------ #


def _create_source(ctx: OperationContext, row: dict[str, Any], domain: str, city_id: str) -> dict[str, str]:
    """Insert organization (reused only for the same domain), source and first job.

    Runs inside the caller's transaction; the caller commits or rolls back.
    """
    now = ctx.now_iso()
    orgs = OrganizationRepository(ctx.conn)
    slug, org = _organization_slot(orgs, domain)
    if org:
        organization_id = org["id"]
    else:
        organization_id = new_id("org")
        orgs.create({
            "id": organization_id,
            "name": row.get("organization_name") or row.get("camp_name") or domain,
            "slug": slug,
            "website": _with_scheme(row["website_url"]),
            "city_id": city_id,
            "created_at": now,
        })

    source_id = new_id("src")
    SourceRepository(ctx.conn).create({
        "id": source_id,
        "domain": domain,
        "name": row.get("camp_name") or row.get("organization_name") or domain,
        "url": _with_scheme(row["website_url"]),
        "city_id": city_id,
        "organization_id": organization_id,
        "requested_by": row.get("family_id"),
        "notes": row.get("notes"),
        "is_active": 1,
        "scrape_frequency_hours": ctx.settings.default_scrape_frequency_hours,
        "created_at": now,
        "updated_at": now,
    })

    job_id = new_id("job")
    JobRepository(ctx.conn).create({
        "id": job_id,
        "source_id": source_id,
        "status": JobStatus.QUEUED.value,
        "triggered_by": f"request:{row['id']}",
        "created_at": now,
    })
    return {"source_id": source_id, "organization_id": organization_id, "job_id": job_id}


def _organization_slot(orgs: OrganizationRepository, domain: str) -> tuple[str, dict[str, Any] | None]:
    """Slug for *domain*'s organization and the existing row to reuse, if any.

    ``a-b.org`` and ``a.b.org`` share the base slug ``a-b-org``; an
    organization is reused only when its website is on the same domain,
    otherwise the next free ``-2``, ``-3`` ... suffix is taken.
    """
    base = domain.replace(".", "-")
    suffix = 1
    while True:
        slug = base if suffix == 1 else f"{base}-{suffix}"
        org = orgs.get_by_slug(slug)
        if org is None:
            return slug, None
        if _website_domain(org.get("website")) == domain:
            return slug, org
        suffix += 1


def _website_domain(website: str | None) -> str | None:
    try:
        return normalize_domain(website or "")
    except ValidationError:
        return None


def _finish(
    ctx: OperationContext,
    row: dict[str, Any],
    target: RequestStatus,
    **fields: Any,
) -> CampRequestDetail:
    """Move the request to a terminal *target* and stamp ``processed_at``.

    If another worker already moved the row on, its state is returned
    untouched.
    """
    current = RequestStatus(row["status"])
    validate_request_transition(current, target)
    repo = _request_repo(ctx)
    updates = {"status": target.value, "processed_at": ctx.now_iso(), **fields}
    if repo.transition(row["id"], current.value, updates):
        ctx.conn.commit()
        logger.info("camp_request_processed", request_id=row["id"], status=target.value)
    else:
        ctx.conn.rollback()
    return _row_to_detail(repo.get(row["id"]))


def _with_scheme(url: str) -> str:
    url = url.strip()
    return url if "://" in url else f"https://{url}"


def _blank_to_none(value: str | None) -> str | None:
    if value is None:
        return None
    value = value.strip()
    return value or None


def _row_to_detail(row: dict[str, Any]) -> CampRequestDetail:
    return CampRequestDetail(
        id=row["id"],
        city_id=row["city_id"],
        status=row["status"],
        family_id=row.get("family_id"),
        website_url=row.get("website_url"),
        organization_name=row.get("organization_name"),
        camp_name=row.get("camp_name"),
        notes=row.get("notes"),
        scrape_source_id=row.get("scrape_source_id"),
        organization_id=row.get("organization_id"),
        error_message=row.get("error_message"),
        created_at=row.get("created_at"),
        processed_at=row.get("processed_at"),
    )
