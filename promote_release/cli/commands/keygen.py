"""``promote-release keygen``: generate an Ed25519 release signing keypair."""

from __future__ import annotations

from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.panel import Panel

from promote_release.signing.crypto import generate_keypair, key_fingerprint

console = Console()


def keygen_cmd(
    out: Optional[Path] = typer.Option(
        None,
        "--out",
        "-o",
        help="Write the private key to this file (mode 0600) instead of printing it.",
    ),
    force: bool = typer.Option(False, "--force", help="Overwrite an existing key file."),
) -> None:
    """Generate an Ed25519 keypair for signing releases."""
    private_key, public_key = generate_keypair()

    lines = [
        f"[bold]Public key:[/bold]  {public_key}",
        f"[bold]Key id:[/bold]      {key_fingerprint(public_key)}",
    ]
    if out is not None:
        if out.exists() and not force:
            console.print(f"[bold red]Refusing to overwrite {out}[/bold red] (use --force)")
            raise typer.Exit(code=1)
        out.parent.mkdir(parents=True, exist_ok=True)
        out.write_text(private_key + "\n", encoding="utf-8")
        out.chmod(0o600)
        lines.append(f"[bold]Private key:[/bold] written to {out}")
    else:
        lines.append(f"[bold]Private key:[/bold] {private_key}")

    lines += [
        "",
        "[dim]Set PROMOTE_RELEASE_SIGNING_PUBLIC_KEY to the public key so a",
        "swapped key file is rejected instead of signing releases.[/dim]",
    ]
    console.print(
        Panel("\n".join(lines), title="[bold]Ed25519 signing key[/bold]", border_style="cyan")
    )
