"""Process setup shared by the CLI commands: logging and orchestrator wiring."""

from __future__ import annotations

import logging

import typer
from rich.console import Console
from rich.logging import RichHandler

from promote_release.config import PromoteConfig
from promote_release.core.orchestrator import PromotionOrchestrator
from promote_release.errors import PromotionError

err_console = Console(stderr=True)


def configure_logging(level: str) -> None:
    """Send log records to stderr through Rich, leaving stdout for results."""
    logging.basicConfig(
        level=level.upper(),
        format="%(message)s",
        datefmt="[%X]",
        handlers=[
            RichHandler(console=err_console, rich_tracebacks=True, show_path=False)
        ],
        force=True,
    )
    # botocore is chatty at DEBUG; keep it at WARNING unless asked otherwise
    if level.upper() != "DEBUG":
        logging.getLogger("botocore").setLevel(logging.WARNING)


def build_orchestrator(cfg: PromoteConfig | None = None) -> PromotionOrchestrator:
    """Construct the orchestrator, exiting with the error's code if it cannot start."""
    try:
        return PromotionOrchestrator(cfg or PromoteConfig())
    except PromotionError as exc:
        err_console.print(f"[bold red]Cannot start:[/bold red] {exc}")
        raise typer.Exit(code=exc.exit_code) from exc
