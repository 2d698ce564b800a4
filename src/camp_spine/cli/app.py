"""
Root Typer application for the camp-spine CLI.

Sub-command modules import their operations lazily inside each command so
``camp-spine --help`` stays fast.
"""

from __future__ import annotations

import typer
from typer import Typer

from camp_spine import __version__
from camp_spine.core.logging import configure_logging
from camp_spine.core.settings import get_settings

app = Typer(
    name="camp-spine",
    help="camp-spine — camp session ingestion, change notification and outreach pipeline.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)


# ── Version callback ─────────────────────────────────────────────────────


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(f"camp-spine {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool | None = typer.Option(  # noqa: UP007
        None,
        "--version",
        "-V",
        help="Show version and exit.",
        callback=_version_callback,
        is_eager=True,
    ),
    log_level: str | None = typer.Option(None, "--log-level", help="Override CAMP_SPINE_LOG_LEVEL."),
) -> None:
    """camp-spine CLI — manage camp requests, scrape jobs, alerts, reports and sequences."""
    settings = get_settings()
    configure_logging(level=log_level or settings.log_level, json_format=settings.json_logs)


# ── Sub-command registration ─────────────────────────────────────────────

from camp_spine.cli.alerts import app as alerts_app  # noqa: E402
from camp_spine.cli.db import app as db_app  # noqa: E402
from camp_spine.cli.jobs import app as jobs_app  # noqa: E402
from camp_spine.cli.report import app as report_app  # noqa: E402
from camp_spine.cli.requests import app as requests_app  # noqa: E402
from camp_spine.cli.sequences import app as sequences_app  # noqa: E402

app.add_typer(db_app, name="db", help="Database operations.")
app.add_typer(requests_app, name="requests", help="Family camp requests.")
app.add_typer(jobs_app, name="jobs", help="Scrape job scheduling and supervision.")
app.add_typer(alerts_app, name="alerts", help="Operational alerts.")
app.add_typer(report_app, name="report", help="Daily pipeline report.")
app.add_typer(sequences_app, name="sequences", help="Durable outbound sequences.")
