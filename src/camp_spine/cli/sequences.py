"""
CLI: ``camp-spine sequences`` — start, advance and inspect durable sequences.

``tick`` is meant to be run from cron; every invocation picks up whatever
steps have become due since the last one.
"""

from __future__ import annotations

import typer

from camp_spine.cli.utils import make_context, output_paged, output_result

app = typer.Typer(no_args_is_help=True)


@app.command("start")
def start(
    subject_id: str = typer.Argument(..., help="Subject (e.g. family) ID"),
    sequence: str = typer.Option("winback", "--sequence", "-s", help="Registered sequence name"),
    database: str | None = typer.Option(None, "--database", "-d"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Start a sequence for a subject and run its first step."""
    from camp_spine.framework.dispatch import build_dispatcher
    from camp_spine.ops.sequences import start_sequence

    ctx, _ = make_context(database)
    result = start_sequence(ctx, subject_id, sequence, build_dispatcher(ctx.settings))
    output_result(result, as_json=json_out, title="Sequence Run")


@app.command("tick")
def tick(
    now: str | None = typer.Option(None, "--now", help="Pretend the current time is this ISO-8601 instant"),
    database: str | None = typer.Option(None, "--database", "-d"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Advance every active run whose next step is due."""
    from camp_spine.framework.dispatch import build_dispatcher
    from camp_spine.ops.sequences import run_due_sequences

    ctx, _ = make_context(database, now=now)
    result = run_due_sequences(ctx, build_dispatcher(ctx.settings))
    output_result(result, as_json=json_out, title="Sequence Tick")


@app.command("list")
def list_runs(
    subject_id: str | None = typer.Option(None, "--subject"),
    sequence: str | None = typer.Option(None, "--sequence", "-s"),
    status: str | None = typer.Option(None, "--status"),
    limit: int = typer.Option(50, "--limit", "-n"),
    offset: int = typer.Option(0, "--offset"),
    database: str | None = typer.Option(None, "--database", "-d"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """List sequence runs."""
    from camp_spine.ops.requests import ListSequenceRunsRequest
    from camp_spine.ops.sequences import list_sequence_runs

    ctx, _ = make_context(database)
    request = ListSequenceRunsRequest(
        subject_id=subject_id, sequence_name=sequence, status=status, limit=limit, offset=offset,
    )
    output_paged(list_sequence_runs(ctx, request), as_json=json_out, title="Sequence Runs")


@app.command("cancel")
def cancel(
    run_id: str = typer.Argument(..., help="Sequence run ID"),
    database: str | None = typer.Option(None, "--database", "-d"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Cancel an active sequence run."""
    from camp_spine.ops.sequences import cancel_sequence

    ctx, _ = make_context(database)
    output_result(cancel_sequence(ctx, run_id), as_json=json_out, title=f"Sequence Run: {run_id}")
