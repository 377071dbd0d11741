"""Main Typer application — imports and registers all CLI commands.

Entry point: ``rollwright`` (configured via pyproject.toml scripts).
"""

from __future__ import annotations

import logging

import typer
from rich.logging import RichHandler

from rollwright.cli.commands.demo import demo_cmd
from rollwright.cli.commands.deploy import deploy_cmd
from rollwright.cli.commands.history_cmd import history_cmd, show_cmd
from rollwright.config import settings

app = typer.Typer(
    name="rollwright",
    help="Rollwright: health-checked container rollouts with automatic rollback.",
    no_args_is_help=True,
    rich_markup_mode="rich",
    add_completion=False,
)

# Register subcommands
app.command(name="deploy", help="Roll an ECS service out to a new image.")(deploy_cmd)
app.command(name="history", help="List a service's past rollouts.")(history_cmd)
app.command(name="show", help="Show a single rollout record.")(show_cmd)
app.command(name="demo", help="Run scripted rollouts against an in-memory platform.")(demo_cmd)


@app.callback()
def main_callback(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging."),
) -> None:
    """Configure logging for every command."""
    level = logging.DEBUG if verbose or settings.debug else settings.log_level.upper()
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(rich_tracebacks=True, show_path=False)],
        force=True,
    )


def main() -> None:
    """CLI entry point."""
    app()


if __name__ == "__main__":
    main()
