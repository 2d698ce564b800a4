"""
CLI: ``camp-spine requests`` — submit and process family camp requests.
"""

from __future__ import annotations

import typer

from camp_spine.cli.utils import make_context, output_paged, output_result

app = typer.Typer(no_args_is_help=True)


@app.command("submit")
def submit(
    city: str = typer.Argument(..., help="City id or slug"),
    camp_name: str = typer.Argument(..., help="Camp name"),
    url: str | None = typer.Option(None, "--url", "-u", help="Camp website"),
    organization: str | None = typer.Option(None, "--organization", "-o"),
    notes: str | None = typer.Option(None, "--notes"),
    family: str | None = typer.Option(None, "--family", "-f", help="Requesting family id"),
    process: bool = typer.Option(False, "--process", help="Process immediately after submitting"),
    database: str | None = typer.Option(None, "--database", "-d"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Submit a camp request on behalf of a family."""
    from camp_spine.ops.intake import process_request, submit_request
    from camp_spine.ops.requests import SubmitCampRequest

    ctx, _ = make_context(database, user=family)
    request = SubmitCampRequest(
        city_id=city,
        camp_name=camp_name,
        website_url=url,
        organization_name=organization,
        notes=notes,
    )
    result = submit_request(ctx, request)
    if process and result.success:
        output_result(process_request(ctx, result.data["id"]), as_json=json_out, title="Processed Request")
        return
    output_result(result, as_json=json_out, title="Submitted Request")


@app.command("process")
def process(
    request_id: str = typer.Argument(..., help="Camp request ID"),
    database: str | None = typer.Option(None, "--database", "-d"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Process a pending camp request into a scrape source."""
    from camp_spine.ops.intake import process_request

    ctx, _ = make_context(database)
    result = process_request(ctx, request_id)
    output_result(result, as_json=json_out, title=f"Request: {request_id}")


@app.command("list")
def list_requests(
    status: str | None = typer.Option(None, "--status", "-s"),
    city: str | None = typer.Option(None, "--city"),
    family: str | None = typer.Option(None, "--family", "-f"),
    limit: int = typer.Option(50, "--limit", "-n"),
    offset: int = typer.Option(0, "--offset"),
    database: str | None = typer.Option(None, "--database", "-d"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """List camp requests, newest first."""
    from camp_spine.ops.intake import list_requests as _list
    from camp_spine.ops.requests import ListCampRequestsRequest

    ctx, _ = make_context(database)
    request = ListCampRequestsRequest(
        status=status, city_id=city, family_id=family, limit=limit, offset=offset,
    )
    output_paged(_list(ctx, request), as_json=json_out, title="Camp Requests")
