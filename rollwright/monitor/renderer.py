"""Rich terminal renderer for rollout history.

Color scheme
------------
- green     : SUCCEEDED
- yellow    : ROLLED_BACK
- bold red  : FAILED
- cyan      : PENDING
"""

from __future__ import annotations

from collections.abc import Iterable

from rich.console import Console, Group
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from rollwright.models.rollout import RolloutOutcome, RolloutRecord

_OUTCOME_STYLES: dict[RolloutOutcome, str] = {
    RolloutOutcome.SUCCEEDED: "bold green",
    RolloutOutcome.ROLLED_BACK: "bold yellow",
    RolloutOutcome.FAILED: "bold red",
    RolloutOutcome.PENDING: "cyan",
}

_OUTCOME_LABELS: dict[RolloutOutcome, str] = {
    RolloutOutcome.SUCCEEDED: "[green]SUCCEEDED[/green]",
    RolloutOutcome.ROLLED_BACK: "[yellow]ROLLED BACK[/yellow]",
    RolloutOutcome.FAILED: "[bold red]FAILED[/bold red]",
    RolloutOutcome.PENDING: "[cyan]PENDING[/cyan]",
}


def _duration(record: RolloutRecord) -> str:
    if record.finished_at is None:
        return "[dim]-[/dim]"
    seconds = (record.finished_at - record.started_at).total_seconds()
    return f"{seconds:.1f}s"


class HistoryRenderer:
    """Renders rollout records as Rich terminal output.

    Parameters
    ----------
    console:
        Rich Console instance.  A new one is created if not provided.
    """

    def __init__(self, console: Console | None = None) -> None:
        self.console = console or Console()

    def render_history(self, service_id: str, records: Iterable[RolloutRecord]) -> Panel:
        """Render a service's records, newest first, as a Panel around a Table."""
        table = Table(
            show_header=True,
            header_style="bold cyan",
            expand=True,
            show_lines=False,
            pad_edge=True,
        )
        table.add_column("Rollout", style="dim", no_wrap=True)
        table.add_column("Target", min_width=20)
        table.add_column("Outcome", justify="center", min_width=12)
        table.add_column("Attempts", justify="right", width=8)
        table.add_column("Finished", no_wrap=True)
        table.add_column("Duration", justify="right", width=9)
        table.add_column("Detail")

        rows = 0
        for record in records:
            rows += 1
            finished = (
                record.finished_at.strftime("%Y-%m-%d %H:%M:%S")
                if record.finished_at
                else "[dim]-[/dim]"
            )
            table.add_row(
                record.id,
                str(record.target),
                _OUTCOME_LABELS.get(record.outcome, record.outcome.value),
                str(record.attempts),
                finished,
                _duration(record),
                record.detail or "[dim]-[/dim]",
            )

        summary = Text.from_markup(
            f"[bold]Service:[/bold] {service_id}  |  [bold]Rollouts:[/bold] {rows}"
        )
        return Panel(
            Group(table, Text(""), summary),
            title="[bold]Rollout History[/bold]",
            border_style="blue",
            padding=(1, 2),
        )

    def render_record(self, record: RolloutRecord) -> Panel:
        """Render a single record as a key/value Panel."""
        style = _OUTCOME_STYLES.get(record.outcome, "")
        lines = [
            f"[bold]Rollout:[/bold]    {record.id}",
            f"[bold]Service:[/bold]    {record.service_id}",
            f"[bold]Target:[/bold]     {record.target}",
            f"[bold]Previous:[/bold]   {record.previous_artifact or '-'}",
            f"[bold]Outcome:[/bold]    {_OUTCOME_LABELS.get(record.outcome, record.outcome.value)}",
            f"[bold]Attempts:[/bold]   {record.attempts}",
            f"[bold]Started:[/bold]    {record.started_at.strftime('%Y-%m-%d %H:%M:%S UTC')}",
            f"[bold]Duration:[/bold]   {_duration(record)}",
        ]
        if record.detail:
            lines.append(f"[bold]Detail:[/bold]     {record.detail}")
        if record.record_hash:
            lines.append(f"[dim]hash {record.record_hash[:16]}...[/dim]")
        return Panel(
            "\n".join(lines),
            title="[bold]Rollout[/bold]",
            border_style=style.replace("bold ", "") or "blue",
            padding=(1, 2),
        )

    def print_history(self, service_id: str, records: Iterable[RolloutRecord]) -> None:
        self.console.print(self.render_history(service_id, records))

    def print_record(self, record: RolloutRecord) -> None:
        self.console.print(self.render_record(record))

    def print_chain_verification(self, service_id: str, valid: bool) -> None:
        """Print a chain verification result."""
        if valid:
            self.console.print(f"[green]History chain for {service_id} is valid.[/green]")
        else:
            self.console.print(f"[bold red]History chain for {service_id} is BROKEN![/bold red]")
