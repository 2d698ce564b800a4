"""
CLI: ``camp-spine jobs`` — scrape job scheduling and supervision.
"""

from __future__ import annotations

from datetime import timedelta

import typer

from camp_spine.cli.utils import (
    console,
    err_console,
    load_extractor,
    make_context,
    output_paged,
    output_result,
)
from camp_spine.core.errors import ConfigError
from camp_spine.core.protocols import Extractor

app = typer.Typer(no_args_is_help=True)


def _extractor_or_exit(path: str) -> Extractor:
    try:
        return load_extractor(path)
    except (ConfigError, ImportError, AttributeError) as exc:
        err_console.print(f"[bold red]Cannot load extractor:[/bold red] {exc}")
        raise typer.Exit(code=1) from exc


@app.command("queue")
def queue(
    source_id: str = typer.Argument(..., help="Scrape source ID"),
    database: str | None = typer.Option(None, "--database", "-d"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Queue a scrape job for one source."""
    from camp_spine.ops.jobs import queue_job

    ctx, _ = make_context(database)
    output_result(queue_job(ctx, source_id), as_json=json_out, title="Queued Job")


@app.command("run")
def run(
    job_id: str = typer.Argument(..., help="Queued job ID"),
    extractor: str = typer.Option(..., "--extractor", "-e", help="Extractor as package.module:name"),
    notify: bool = typer.Option(True, "--notify/--no-notify", help="Evaluate snapshots for notifications"),
    database: str | None = typer.Option(None, "--database", "-d"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Run a queued job with the given extractor."""
    from camp_spine.framework.dispatch import build_dispatcher
    from camp_spine.ops.jobs import run_job

    engine = _extractor_or_exit(extractor)
    ctx, _ = make_context(database)
    dispatcher = build_dispatcher(ctx.settings) if notify else None
    output_result(run_job(ctx, job_id, engine, dispatcher), as_json=json_out, title=f"Job: {job_id}")


@app.command("run-due")
def run_due(
    extractor: str | None = typer.Option(
        None, "--extractor", "-e", help="Also run every queued job with this extractor",
    ),
    now: str | None = typer.Option(None, "--now", help="Pretend the current time is this ISO-8601 instant"),
    database: str | None = typer.Option(None, "--database", "-d"),
    dry_run: bool = typer.Option(False, "--dry-run"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Queue a job for every active source whose next scrape is due."""
    from camp_spine.framework.dispatch import build_dispatcher
    from camp_spine.ops.jobs import queue_due_jobs, run_job

    engine = _extractor_or_exit(extractor) if extractor else None
    ctx, _ = make_context(database, dry_run=dry_run, now=now)
    result = queue_due_jobs(ctx)
    output_result(result, as_json=json_out, title="Due Jobs")

    if engine is None or dry_run:
        return
    dispatcher = build_dispatcher(ctx.settings)
    for job_id in result.data.runnable:
        outcome = run_job(ctx, job_id, engine, dispatcher)
        if outcome.success:
            console.print(f"  {job_id}: {outcome.data.status} ({outcome.data.sessions_found} sessions)")
        else:
            err_console.print(f"  {job_id}: [red]{outcome.error.message}[/red]")


@app.command("cancel")
def cancel(
    job_id: str = typer.Argument(..., help="Job ID"),
    database: str | None = typer.Option(None, "--database", "-d"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Cancel a queued or running job."""
    from camp_spine.ops.jobs import cancel_job

    ctx, _ = make_context(database)
    output_result(cancel_job(ctx, job_id), as_json=json_out, title=f"Job: {job_id}")


@app.command("list")
def list_jobs(
    source_id: str | None = typer.Option(None, "--source", "-s"),
    status: str | None = typer.Option(None, "--status"),
    limit: int = typer.Option(50, "--limit", "-n"),
    offset: int = typer.Option(0, "--offset"),
    database: str | None = typer.Option(None, "--database", "-d"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """List scrape jobs, newest first."""
    from camp_spine.ops.jobs import list_jobs as _list
    from camp_spine.ops.requests import ListJobsRequest

    ctx, _ = make_context(database)
    request = ListJobsRequest(source_id=source_id, status=status, limit=limit, offset=offset)
    output_paged(_list(ctx, request), as_json=json_out, title="Scrape Jobs")


@app.command("cleanup")
def cleanup(
    source_id: str | None = typer.Option(None, "--source", "-s", help="Only this source"),
    older_than_hours: float | None = typer.Option(
        None, "--older-than-hours", help="Only jobs created more than N hours ago",
    ),
    database: str | None = typer.Option(None, "--database", "-d"),
    dry_run: bool = typer.Option(False, "--dry-run"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Fail stuck queued/running jobs."""
    from camp_spine.ops.jobs import cleanup_stuck_jobs

    ctx, _ = make_context(database, dry_run=dry_run)
    older_than = timedelta(hours=older_than_hours) if older_than_hours is not None else None
    result = cleanup_stuck_jobs(ctx, source_id=source_id, older_than=older_than)
    output_result(result, as_json=json_out, title="Cleanup")
