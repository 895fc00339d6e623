"""``promote-release verify CHANNEL``: post-deploy smoke test.

Fetches the channel pointer, the manifest and its signature, and every
artifact the manifest lists, and checks every checksum and signature.
Exit 0 when everything checks out, 4 (integrity violation) otherwise.
"""

from __future__ import annotations

import json

import typer
from rich.console import Console

from promote_release.cli.runtime import build_orchestrator
from promote_release.errors import IntegrityViolation, PromotionError
from promote_release.monitor.renderer import PromotionRenderer

console = Console()


def verify_cmd(
    channel: str = typer.Argument(..., help="Channel to verify."),
    as_json: bool = typer.Option(False, "--json", help="Print the report as JSON."),
) -> None:
    """Check everything the live CHANNEL pointer references."""
    orchestrator = build_orchestrator()
    try:
        report = orchestrator.verify_channel(channel)
    except PromotionError as exc:
        if as_json:
            typer.echo(
                json.dumps(
                    {
                        "channel": channel,
                        "passed": False,
                        "classification": exc.classification,
                        "message": str(exc),
                        "exit_code": exc.exit_code,
                    },
                    sort_keys=True,
                )
            )
        else:
            console.print(f"[bold red]{exc.classification}:[/bold red] {exc}")
        raise typer.Exit(code=exc.exit_code) from exc

    if as_json:
        payload = report.model_dump(mode="json")
        payload["passed"] = report.passed
        typer.echo(json.dumps(payload, sort_keys=True))
    else:
        PromotionRenderer(console=console).print_verification(report)

    raise typer.Exit(code=0 if report.passed else IntegrityViolation.exit_code)
