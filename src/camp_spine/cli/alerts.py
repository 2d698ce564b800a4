"""
CLI: ``camp-spine alerts`` — operational alert triage.
"""

from __future__ import annotations

import typer

from camp_spine.cli.utils import make_context, output_paged, output_result

app = typer.Typer(no_args_is_help=True)


@app.command("list")
def list_alerts(
    severity: str | None = typer.Option(None, "--severity", "-s"),
    alert_type: str | None = typer.Option(None, "--type", "-t"),
    source_id: str | None = typer.Option(None, "--source"),
    acknowledged: bool | None = typer.Option(None, "--acked/--unacked"),
    limit: int = typer.Option(50, "--limit", "-n"),
    offset: int = typer.Option(0, "--offset"),
    database: str | None = typer.Option(None, "--database", "-d"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """List alerts, newest first."""
    from camp_spine.ops.alerts import list_alerts as _list
    from camp_spine.ops.requests import ListAlertsRequest

    ctx, _ = make_context(database)
    request = ListAlertsRequest(
        severity=severity,
        alert_type=alert_type,
        source_id=source_id,
        acknowledged=acknowledged,
        limit=limit,
        offset=offset,
    )
    output_paged(_list(ctx, request), as_json=json_out, title="Alerts")


@app.command("raise")
def raise_(
    message: str = typer.Argument(..., help="Alert message"),
    severity: str = typer.Option("warning", "--severity", "-s", help="critical, error, warning or info"),
    alert_type: str = typer.Option("manual", "--type", "-t"),
    source_id: str | None = typer.Option(None, "--source"),
    database: str | None = typer.Option(None, "--database", "-d"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Raise an alert by hand."""
    from camp_spine.ops.alerts import raise_alert

    ctx, _ = make_context(database)
    result = raise_alert(ctx, message, severity, alert_type, source_id=source_id)
    output_result(result, as_json=json_out, title="Alert Raised")


@app.command("ack")
def ack(
    alert_id: str = typer.Argument(..., help="Alert ID"),
    by: str | None = typer.Option(None, "--by", help="Who is acknowledging"),
    database: str | None = typer.Option(None, "--database", "-d"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Acknowledge an alert (idempotent)."""
    from camp_spine.ops.alerts import acknowledge_alert

    ctx, _ = make_context(database, user=by)
    output_result(acknowledge_alert(ctx, alert_id, by), as_json=json_out, title=f"Alert: {alert_id}")
