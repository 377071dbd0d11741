"""``rollwright history`` and ``rollwright show`` — read-only views of past rollouts."""

from __future__ import annotations

import itertools
import json
from pathlib import Path

import typer
from rich.console import Console

from rollwright.config import settings
from rollwright.core.history import HistoryIntegrityError, RecordNotFoundError, RolloutHistory
from rollwright.monitor.renderer import HistoryRenderer

console = Console()


def _open_history(history_db: Path | None) -> RolloutHistory:
    db_path = history_db or settings.history_path
    if not Path(db_path).exists():
        console.print(f"[bold red]History not found:[/bold red] {db_path}")
        console.print("[dim]Run a rollout first with: rollwright deploy[/dim]")
        raise typer.Exit(code=1)
    return RolloutHistory(db_path)


def history_cmd(
    service: str = typer.Argument(..., help="Service whose rollouts to list."),
    limit: int = typer.Option(20, "--limit", "-n", help="Show at most this many rollouts."),
    as_json: bool = typer.Option(False, "--json", help="Print records as a JSON array."),
    verify: bool = typer.Option(
        False, "--verify", "-V", help="Verify the history hash chain before displaying."
    ),
    history_db: Path = typer.Option(
        None, "--history", "-H", help="Path to the rollout history database."
    ),
) -> None:
    """List a service's rollouts, most recently finished first."""
    history = _open_history(history_db)
    renderer = HistoryRenderer(console=console)

    if verify:
        try:
            valid = history.verify_chain(service)
        except HistoryIntegrityError as exc:
            console.print(f"[bold red]Chain verification failed:[/bold red] {exc}")
            renderer.print_chain_verification(service, False)
            raise typer.Exit(code=1)
        renderer.print_chain_verification(service, valid)

    records = list(itertools.islice(history.list_by_service(service), limit))
    if as_json:
        typer.echo(json.dumps([r.model_dump(mode="json") for r in records], indent=2))
        return
    if not records:
        console.print(f"[dim]No rollouts recorded for {service}.[/dim]")
        known = history.service_ids()
        if known:
            console.print("\n[bold]Services with history:[/bold]")
            for sid in known[:10]:
                console.print(f"  [cyan]{sid}[/cyan]")
        return
    renderer.print_history(service, records)


def show_cmd(
    record_id: str = typer.Argument(..., help="Rollout record id."),
    as_json: bool = typer.Option(False, "--json", help="Print the record as JSON."),
    history_db: Path = typer.Option(
        None, "--history", "-H", help="Path to the rollout history database."
    ),
) -> None:
    """Show a single rollout record."""
    history = _open_history(history_db)
    try:
        record = history.get(record_id)
    except RecordNotFoundError as exc:
        console.print(f"[bold red]{exc}[/bold red]")
        raise typer.Exit(code=1)

    if as_json:
        typer.echo(record.model_dump_json(indent=2))
    else:
        HistoryRenderer(console=console).print_record(record)
