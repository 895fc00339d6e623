"""``promote-release promote CHANNEL``: promote one channel.

Exit code 0 on success, including the no-op when the channel already
points at the release.  Otherwise the exit code of the error class that
ended the run.
"""

from __future__ import annotations

import json
from typing import Any, Optional

import typer
from rich.console import Console

from promote_release.cli.runtime import build_orchestrator
from promote_release.models.release import PromotionRun
from promote_release.monitor.renderer import PromotionRenderer

console = Console()


def run_payload(run: PromotionRun) -> dict[str, Any]:
    """Machine-readable summary printed by ``--json``."""
    failure = run.failure
    return {
        "run_id": run.run_id,
        "channel": run.channel,
        "release": run.release,
        "state": run.state.value,
        "attempt": run.attempt,
        "dry_run": run.dry_run,
        "no_op": run.no_op,
        "writes": run.writes,
        "skipped": run.skipped,
        "manifest_key": run.manifest_key,
        "manifest_sha256": run.manifest_sha256,
        "classification": failure.classification if failure else None,
        "message": failure.message if failure else None,
        "failed_in": failure.failed_in.value if failure else None,
        "exit_code": run.exit_code,
    }


def promote_cmd(
    channel: str = typer.Argument(..., help="Channel to promote (stable, beta, nightly, ...)."),
    release: Optional[str] = typer.Option(
        None,
        "--release",
        "-r",
        help="Release id to promote.  Defaults to the override, then the newest staged release.",
    ),
    dry_run: bool = typer.Option(
        False,
        "--dry-run",
        help="Locate, verify, sign and build the manifest without writing anything.",
    ),
    as_json: bool = typer.Option(False, "--json", help="Print the outcome as JSON."),
) -> None:
    """Promote the staged release of CHANNEL to production."""
    orchestrator = build_orchestrator()
    run = orchestrator.promote(channel, release, dry_run=dry_run)

    if as_json:
        typer.echo(json.dumps(run_payload(run), sort_keys=True))
    else:
        PromotionRenderer(console=console).print_run(run)

    raise typer.Exit(code=run.exit_code)
