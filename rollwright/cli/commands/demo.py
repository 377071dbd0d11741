"""``rollwright demo`` — run scripted rollouts against the in-memory platform.

Shows the three terminal outcomes without touching a real cluster: a clean
rollout, one whose tasks never become healthy and is rolled back, and one the
platform rejects outright.
"""

from __future__ import annotations

from pathlib import Path

import typer
from rich.console import Console
from rich.panel import Panel

from rollwright.config import settings
from rollwright.core.controller import RolloutController
from rollwright.core.history import RolloutHistory
from rollwright.models.artifacts import ArtifactRef
from rollwright.models.rollout import RolloutOptions
from rollwright.monitor.renderer import HistoryRenderer
from rollwright.platform.memory import InMemoryPlatform

console = Console()


def demo_cmd(
    poll_interval: float = typer.Option(
        0.05, "--poll-interval", help="Seconds between simulated health polls."
    ),
    health_timeout: float = typer.Option(
        0.25, "--health-timeout", help="Seconds before a simulated rollout times out."
    ),
    history_db: Path = typer.Option(
        Path(".rollwright/demo-history.db"),
        "--history",
        "-H",
        help="Path to the history database (uses demo-specific default).",
    ),
) -> None:
    """Run scripted rollouts of a demo service and show its history."""
    platform = InMemoryPlatform(default_converge_after=2)
    history = RolloutHistory(history_db)
    renderer = HistoryRenderer(console=console)

    registry = "registry.example.com"
    v1 = ArtifactRef(registry=registry, repository="demo/web", tag="v1")
    v2 = v1.model_copy(update={"tag": "v2"})
    v3 = v1.model_copy(update={"tag": "v3-broken"})
    v4 = v1.model_copy(update={"tag": "v4-missing"})

    platform.register_service("demo-web", v1)
    platform.never_converge("demo-web", v3)
    platform.reject(v4)

    options = RolloutOptions(
        health_timeout=health_timeout,
        poll_interval=poll_interval,
        initial_backoff=poll_interval,
    )

    console.print()
    console.print(
        Panel(
            "[bold]Rollwright Demo[/bold]\n\n"
            f"demo-web runs {v1}.\n"
            f"Rolling out {v2.tag} (healthy), {v3.tag} (never healthy), "
            f"{v4.tag} (rejected).",
            border_style="cyan",
            padding=(1, 2),
        )
    )

    with RolloutController(platform, history, settings=settings) as controller:
        for target in (v2, v3, v4):
            console.print(f"[bold]Rolling out[/bold] {target} ...")
            record = controller.start("demo-web", target, options)
            renderer.print_record(record)

    renderer.print_history("demo-web", history.list_by_service("demo-web"))
    console.print(f"[dim]History written to {history.path}[/dim]")
