"""``rollwright deploy SERVICE IMAGE_URI`` — roll an ECS service out to a new image.

Meant to be called by CI right after the image has been pushed.  Blocks until
the rollout reaches a terminal outcome and exits non-zero unless it
succeeded.
"""

from __future__ import annotations

from pathlib import Path

import typer
from rich.console import Console

from rollwright.config import settings
from rollwright.core.controller import RolloutController, RolloutInProgressError
from rollwright.core.history import RolloutHistory
from rollwright.models.artifacts import ArtifactRef
from rollwright.models.rollout import RolloutOutcome
from rollwright.monitor.renderer import HistoryRenderer
from rollwright.platform import ServiceNotFoundError
from rollwright.platform.ecs import EcsPlatformClient

console = Console()


def deploy_cmd(
    service: str = typer.Argument(..., help="ECS service name."),
    image_uri: str = typer.Argument(
        ..., help="Image to deploy, e.g. 123456789012.dkr.ecr.us-east-1.amazonaws.com/app:v2"
    ),
    cluster: str = typer.Option(None, "--cluster", "-c", help="ECS cluster name."),
    region: str = typer.Option(None, "--region", help="AWS region."),
    container: str = typer.Option(
        None, "--container", help="Container to update (default: first container)."
    ),
    health_timeout: float = typer.Option(
        None, "--health-timeout", help="Seconds to wait for healthy convergence."
    ),
    poll_interval: float = typer.Option(None, "--poll-interval", help="Seconds between health polls."),
    max_retries: int = typer.Option(
        None, "--max-retries", help="Retries for transiently failing update calls."
    ),
    rollback: bool = typer.Option(
        None, "--rollback/--no-rollback", help="Roll back to the last stable image on timeout."
    ),
    history_db: Path = typer.Option(
        None, "--history", "-H", help="Path to the rollout history database."
    ),
    as_json: bool = typer.Option(False, "--json", help="Print the record as JSON."),
) -> None:
    """Roll SERVICE out to IMAGE_URI and wait for the outcome."""
    try:
        target = ArtifactRef.parse(image_uri)
    except ValueError as exc:
        console.print(f"[bold red]Invalid image reference:[/bold red] {exc}")
        raise typer.Exit(code=2)

    try:
        platform = EcsPlatformClient.from_settings(
            settings, cluster=cluster, region=region, container_name=container
        )
    except ValueError as exc:
        console.print(f"[bold red]{exc}[/bold red] (use --cluster or ROLLWRIGHT_ECS_CLUSTER)")
        raise typer.Exit(code=2)

    options = settings.rollout_options(
        health_timeout=health_timeout,
        poll_interval=poll_interval,
        max_retries=max_retries,
        auto_rollback=rollback,
    )
    history = RolloutHistory(history_db or settings.history_path)

    with RolloutController(platform, history, settings=settings) as controller:
        try:
            record = controller.start(service, target, options)
        except (ServiceNotFoundError, RolloutInProgressError) as exc:
            console.print(f"[bold red]Rollout refused:[/bold red] {exc}")
            raise typer.Exit(code=2)

    if as_json:
        typer.echo(record.model_dump_json(indent=2))
    else:
        HistoryRenderer(console=console).print_record(record)

    if record.outcome != RolloutOutcome.SUCCEEDED:
        raise typer.Exit(code=1)
