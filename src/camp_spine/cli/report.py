"""
CLI: ``camp-spine report`` — daily pipeline report.
"""

from __future__ import annotations

import typer

from camp_spine.cli.utils import console, make_context, output_result

app = typer.Typer(no_args_is_help=True)


@app.command("show")
def show(
    now: str | None = typer.Option(None, "--now", help="Window end as ISO-8601 (default: now)"),
    database: str | None = typer.Option(None, "--database", "-d"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Compute the report for the trailing window without sending it."""
    from camp_spine.ops.reports import compute_daily_report, report_subject

    ctx, _ = make_context(database, now=now)
    result = compute_daily_report(ctx)
    if not json_out and result.success:
        console.print(f"[bold]{report_subject(result.data)}[/bold]")
    output_result(result, as_json=json_out, title="Daily Report")


@app.command("send")
def send(
    now: str | None = typer.Option(None, "--now", help="Window end as ISO-8601 (default: now)"),
    database: str | None = typer.Option(None, "--database", "-d"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Compute the report and mail it to the configured admins."""
    from camp_spine.framework.dispatch import build_dispatcher
    from camp_spine.ops.reports import send_daily_report

    ctx, _ = make_context(database, now=now)
    result = send_daily_report(ctx, build_dispatcher(ctx.settings))
    output_result(result, as_json=json_out, title="Report Delivery")
