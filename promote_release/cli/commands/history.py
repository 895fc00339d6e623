"""``promote-release history CHANNEL``: live pointer, published releases, recent runs.

Read-only.  Everything shown comes from the production pointer and the
run ledger.
"""

from __future__ import annotations

import json

import typer
from rich.console import Console

from promote_release.cli.runtime import build_orchestrator
from promote_release.errors import PromotionError
from promote_release.monitor.projection import RunProjection
from promote_release.monitor.renderer import PromotionRenderer

console = Console()


def history_cmd(
    channel: str = typer.Argument(..., help="Channel to show."),
    limit: int = typer.Option(20, "--limit", "-n", help="Number of recent runs to list."),
    as_json: bool = typer.Option(False, "--json", help="Print the history as JSON."),
) -> None:
    """Show the promotion history of CHANNEL."""
    orchestrator = build_orchestrator()
    try:
        history = orchestrator.history(channel)
    except PromotionError as exc:
        console.print(f"[bold red]{exc.classification}:[/bold red] {exc}")
        raise typer.Exit(code=exc.exit_code) from exc

    runs = RunProjection(orchestrator.ledger).runs_for_channel(channel, limit=limit)

    if as_json:
        payload = history.model_dump(mode="json")
        payload["runs"] = [summary.model_dump(mode="json") for summary in runs]
        typer.echo(json.dumps(payload, sort_keys=True))
        return

    PromotionRenderer(console=console).print_history(history, runs)
