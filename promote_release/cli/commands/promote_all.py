"""``promote-release promote-all``: promote every configured channel concurrently."""

from __future__ import annotations

import json

import typer
from rich.console import Console

from promote_release.cli.commands.promote import run_payload
from promote_release.cli.runtime import build_orchestrator
from promote_release.monitor.renderer import PromotionRenderer

console = Console()


def promote_all_cmd(
    dry_run: bool = typer.Option(False, "--dry-run", help="Do not write anything."),
    as_json: bool = typer.Option(False, "--json", help="Print the outcomes as JSON."),
) -> None:
    """Promote all configured channels.  Exits with the highest failing code."""
    orchestrator = build_orchestrator()
    runs = orchestrator.promote_many(dry_run=dry_run)

    if as_json:
        typer.echo(
            json.dumps({channel: run_payload(run) for channel, run in runs.items()}, sort_keys=True)
        )
    else:
        PromotionRenderer(console=console).print_runs(runs)

    raise typer.Exit(code=max((run.exit_code for run in runs.values()), default=0))
