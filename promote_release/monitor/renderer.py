"""Rich terminal rendering for promotion runs, history and verification.

Color scheme
------------
- green     : complete / ok
- red       : failed / mismatch
- yellow    : no-op, dry run, not found
- dim       : not reached
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from rich.console import Console, Group
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from promote_release.models.stages import PIPELINE_ORDER, RunState

if TYPE_CHECKING:
    from promote_release.models.channels import Channel
    from promote_release.models.release import PromotionRun
    from promote_release.models.reports import ChannelVerificationReport
    from promote_release.monitor.projection import RunSummary


# ---------------------------------------------------------------------------
# State -> Rich markup
# ---------------------------------------------------------------------------

_STATE_ICONS: dict[RunState, str] = {
    RunState.DISCOVERING: "[cyan]DISCOVERING[/cyan]",
    RunState.VERIFYING: "[cyan]VERIFYING[/cyan]",
    RunState.SIGNING: "[cyan]SIGNING[/cyan]",
    RunState.MANIFEST_BUILDING: "[cyan]MANIFEST[/cyan]",
    RunState.PUBLISHING: "[cyan]PUBLISHING[/cyan]",
    RunState.CUTOVER: "[cyan]CUTOVER[/cyan]",
    RunState.COMPLETE: "[green]COMPLETE[/green]",
    RunState.FAILED: "[bold red]FAILED[/bold red]",
}


def _ok(flag: bool) -> str:
    return "[green]ok[/green]" if flag else "[bold red]FAIL[/bold red]"


def _short(value: str | None, width: int = 12) -> str:
    if not value:
        return "[dim]-[/dim]"
    return value if len(value) <= width else value[:width] + "..."


def run_outcome(run: PromotionRun) -> str:
    if run.failure is not None:
        return f"[bold red]{run.failure.classification}[/bold red]"
    if run.no_op:
        return "[yellow]no-op (already live)[/yellow]"
    if run.dry_run:
        return "[yellow]dry run ok[/yellow]"
    return "[bold green]published[/bold green]"


class PromotionRenderer:
    """Renders promotion results as Rich terminal output.

    Parameters
    ----------
    console:
        Rich Console instance.  A new one is created if not provided.
    """

    def __init__(self, console: Console | None = None) -> None:
        self.console = console or Console()

    # ------------------------------------------------------------------
    # Single run
    # ------------------------------------------------------------------

    def render_run(self, run: PromotionRun) -> Panel:
        """A panel with the run's progress through the pipeline."""
        progress = Table(show_header=False, box=None, pad_edge=False)
        progress.add_column("State", min_width=14)
        progress.add_column("Status")

        reached = PIPELINE_ORDER.index(run.state) if run.state in PIPELINE_ORDER else -1
        failed_in = run.failure.failed_in if run.failure else None
        for index, state in enumerate(PIPELINE_ORDER):
            if state == failed_in:
                status = "[bold red]failed here[/bold red]"
            elif run.no_op and state not in (RunState.DISCOVERING, RunState.COMPLETE):
                status = "[dim]skipped[/dim]"
            elif index <= reached or (failed_in and index < PIPELINE_ORDER.index(failed_in)):
                status = "[green]done[/green]"
            else:
                status = "[dim]-[/dim]"
            progress.add_row(_STATE_ICONS[state], status)

        lines = [
            f"[bold]Channel:[/bold]  {run.channel}",
            f"[bold]Release:[/bold]  {run.release or '-'}",
            f"[bold]Run:[/bold]      {run.run_id}  (attempt {run.attempt})",
            f"[bold]Outcome:[/bold]  {run_outcome(run)}",
            f"[bold]Writes:[/bold]   {run.writes}  [dim](skipped {run.skipped})[/dim]",
        ]
        if run.manifest_key:
            lines.append(f"[bold]Manifest:[/bold] {run.manifest_key}")
        if run.failure is not None:
            lines.append(f"[bold red]Error:[/bold red]    {run.failure.message}")

        border = "green" if run.succeeded else "red"
        return Panel(
            Group(Text.from_markup("\n".join(lines)), Text(""), progress),
            title=f"[bold]promote {run.channel}[/bold]",
            border_style=border,
            padding=(1, 2),
        )

    def print_run(self, run: PromotionRun) -> None:
        self.console.print(self.render_run(run))

    # ------------------------------------------------------------------
    # Several runs
    # ------------------------------------------------------------------

    def render_runs(self, runs: dict[str, PromotionRun]) -> Table:
        table = Table(title="Promotion results", header_style="bold cyan", expand=True)
        table.add_column("Channel", style="cyan")
        table.add_column("Release")
        table.add_column("State", justify="center")
        table.add_column("Outcome")
        table.add_column("Writes", justify="right")
        table.add_column("Exit", justify="right")
        for channel, run in runs.items():
            table.add_row(
                channel,
                run.release or "[dim]-[/dim]",
                _STATE_ICONS.get(run.state, run.state.value),
                run_outcome(run),
                str(run.writes),
                str(run.exit_code),
            )
        return table

    def print_runs(self, runs: dict[str, PromotionRun]) -> None:
        self.console.print(self.render_runs(runs))

    # ------------------------------------------------------------------
    # History
    # ------------------------------------------------------------------

    def render_history(self, channel: Channel, runs: list[RunSummary]) -> Group:
        if channel.current is not None:
            current = channel.current
            header = Panel(
                "\n".join(
                    [
                        f"[bold]Release:[/bold]   {current.release} ({current.version})",
                        f"[bold]Manifest:[/bold]  {current.manifest_key}",
                        f"[bold]sha256:[/bold]    {current.manifest_sha256}",
                        f"[bold]Previous:[/bold]  {current.previous_release or '-'}",
                        f"[bold]Published:[/bold] "
                        f"{current.published_at.strftime('%Y-%m-%d %H:%M:%S UTC')}",
                    ]
                ),
                title=f"[bold]{channel.name}[/bold] (live)",
                border_style="green",
            )
        else:
            header = Panel(
                "[yellow]This channel has never been published.[/yellow]",
                title=f"[bold]{channel.name}[/bold]",
                border_style="yellow",
            )

        published = Table(title="Published releases", header_style="bold cyan", expand=True)
        published.add_column("Release")
        published.add_column("Version")
        published.add_column("Artifacts", justify="right")
        published.add_column("Manifest sha256")
        published.add_column("Published")
        for release in reversed(channel.history):
            published.add_row(
                release.release,
                release.version,
                str(release.artifact_count),
                _short(release.manifest_sha256, 16),
                release.published_at.strftime("%Y-%m-%d %H:%M:%S")
                if release.published_at
                else "-",
            )

        recent = Table(title="Recent runs", header_style="bold cyan", expand=True)
        recent.add_column("Run", style="dim")
        recent.add_column("Release")
        recent.add_column("State", justify="center")
        recent.add_column("Outcome")
        recent.add_column("Chain", justify="center")
        recent.add_column("Started")
        for summary in runs:
            recent.add_row(
                _short(summary.run_id),
                summary.release or "[dim]-[/dim]",
                _STATE_ICONS.get(summary.state, summary.state.value),
                summary.outcome,
                _ok(summary.chain_valid),
                summary.started_at.strftime("%Y-%m-%d %H:%M:%S")
                if summary.started_at
                else "-",
            )

        return Group(header, published, recent)

    def print_history(self, channel: Channel, runs: list[RunSummary]) -> None:
        self.console.print(self.render_history(channel, runs))

    # ------------------------------------------------------------------
    # Verification
    # ------------------------------------------------------------------

    def render_verification(self, report: ChannelVerificationReport) -> Panel:
        table = Table(header_style="bold cyan", expand=True)
        table.add_column("Component")
        table.add_column("Target")
        table.add_column("Checksum", justify="center")
        table.add_column("Signature", justify="center")
        table.add_column("Problems")
        for check in report.artifacts:
            table.add_row(
                check.name,
                check.target,
                _ok(check.checksum_ok),
                _ok(check.signature_ok),
                "; ".join(check.problems) or "[dim]-[/dim]",
            )

        summary = [
            f"[bold]Release:[/bold]   {report.release} ({report.version})",
            f"[bold]Manifest:[/bold]  {_ok(report.manifest_ok)}  "
            f"[bold]Signature:[/bold] {_ok(report.manifest_signature_ok)}",
        ]
        summary.extend(f"[red]- {problem}[/red]" for problem in report.problems)

        verdict = "[bold green]PASS[/bold green]" if report.passed else "[bold red]FAIL[/bold red]"
        return Panel(
            Group(Text.from_markup("\n".join(summary)), Text(""), table),
            title=f"[bold]verify {report.channel}[/bold]: {verdict}",
            border_style="green" if report.passed else "red",
            padding=(1, 2),
        )

    def print_verification(self, report: ChannelVerificationReport) -> None:
        self.console.print(self.render_verification(report))
