"""Local smoke test: seed staging, promote a channel, verify it.

Usage:
    python demo_local.py                 # directory-backed buckets under .promote-release/
    python demo_local.py --s3            # against MinIO from docker-compose.yml
    python demo_local.py --channel beta
"""

from __future__ import annotations

import hashlib
import io
import tarfile
from datetime import date
from typing import Optional

import typer

from promote_release.config import PromoteConfig
from promote_release.core.orchestrator import PromotionOrchestrator
from promote_release.signing.crypto import generate_keypair
from promote_release.storage import S3ObjectStore, build_layout, build_stores

SAMPLE_COMPONENTS = [
    ("rustc", "x86_64-unknown-linux-gnu"),
    ("cargo", "x86_64-unknown-linux-gnu"),
    ("rust-std", "aarch64-unknown-linux-gnu"),
]

app = typer.Typer(add_completion=False, help="Seed a sample release and promote it.")


def _archive(component: str, target: str, release: str) -> bytes:
    buf = io.BytesIO()
    with tarfile.open(fileobj=buf, mode="w:gz") as tar:
        payload = f"{component} for {target}, release {release}\n".encode("utf-8")
        info = tarfile.TarInfo(name=f"{component}-{target}/README")
        info.size = len(payload)
        tar.addfile(info, io.BytesIO(payload))
    return buf.getvalue()


@app.command()
def main(
    channel: str = typer.Option("nightly", "--channel", help="Channel to promote."),
    release: Optional[str] = typer.Option(
        None, "--release", help="Release id to stage.  Defaults to today's date."
    ),
    s3: bool = typer.Option(False, "--s3", help="Use the S3 backend (MinIO)."),
) -> None:
    """Seed a sample release and promote it."""
    release = release or date.today().isoformat()
    env = PromoteConfig()
    private_key, public_key = generate_keypair()
    cfg = PromoteConfig(
        store_backend="s3" if s3 else "filesystem",
        signing_key=env.signing_key or private_key,
        signing_public_key=env.signing_public_key or ("" if env.signing_key else public_key),
    )
    typer.echo(f"promote-release local demo ({cfg.store_backend} backend)")
    typer.echo(f"Environment: {cfg.environment} | Ledger: {cfg.ledger_path}")
    typer.echo()

    staging, production = build_stores(cfg)
    for store in (staging, production):
        if isinstance(store, S3ObjectStore):
            store.ensure_bucket()

    layout = build_layout(cfg)
    prefix = layout.staging_release_prefix(channel, release)
    for component, target in SAMPLE_COMPONENTS:
        file_name = f"{component}-{target}.tar.gz"
        data = _archive(component, target, release)
        staging.put(prefix + file_name, data)
        staging.put(
            prefix + file_name + ".sha256",
            f"{hashlib.sha256(data).hexdigest()}  {file_name}\n".encode("utf-8"),
        )
        typer.echo(f"  staged {prefix}{file_name} ({len(data)} bytes)")
    typer.echo()

    orch = PromotionOrchestrator(cfg, staging=staging, production=production)
    for attempt in (1, 2):
        run = orch.promote(channel, release)
        status = "no-op" if run.no_op else run.state.value
        typer.echo(f"Run {attempt}: {status}, {run.writes} write(s), exit {run.exit_code}")
        if run.failure:
            typer.echo(f"  {run.failure.classification}: {run.failure.message}")
            raise typer.Exit(run.exit_code)

    report = orch.verify_channel(channel)
    for check in report.artifacts:
        typer.echo(f"  [{'OK' if check.ok else '!!'}] {check.path}")
    typer.echo()
    typer.echo(f"Channel {channel} verification: {'PASS' if report.passed else 'FAIL'}")
    raise typer.Exit(0 if report.passed else 4)


if __name__ == "__main__":
    app()
