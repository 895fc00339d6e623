"""Main Typer application: imports and registers all CLI commands.

Entry point: ``promote-release`` (configured via pyproject.toml scripts).
"""

from __future__ import annotations

from typing import Optional

import typer

from promote_release.cli.commands.history import history_cmd
from promote_release.cli.commands.keygen import keygen_cmd
from promote_release.cli.commands.promote import promote_cmd
from promote_release.cli.commands.promote_all import promote_all_cmd
from promote_release.cli.commands.verify import verify_cmd
from promote_release.cli.runtime import configure_logging
from promote_release.config import config

app = typer.Typer(
    name="promote-release",
    help="Promote toolchain releases from staging to the production distribution store.",
    no_args_is_help=True,
    rich_markup_mode="rich",
    add_completion=False,
)

# Register subcommands
app.command(name="promote", help="Promote one channel.")(promote_cmd)
app.command(name="promote-all", help="Promote every configured channel concurrently.")(
    promote_all_cmd
)
app.command(name="verify", help="Check a live channel's manifest, artifacts and signatures.")(
    verify_cmd
)
app.command(name="history", help="Show a channel's promotion history.")(history_cmd)
app.command(name="keygen", help="Generate an Ed25519 signing keypair.")(keygen_cmd)


@app.callback()
def main_callback(
    log_level: Optional[str] = typer.Option(
        None,
        "--log-level",
        help="Logging level (DEBUG, INFO, WARNING, ERROR).  Defaults to PROMOTE_RELEASE_LOG_LEVEL.",
    ),
) -> None:
    """promote-release: staging to production promotion with signed manifests."""
    configure_logging(log_level or config.log_level)


def main() -> None:
    """CLI entry point."""
    app()


if __name__ == "__main__":
    main()
