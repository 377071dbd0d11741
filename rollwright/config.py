"""Runtime configuration — env-driven.

Centralized settings using pydantic-settings.  Reads from a .env file and
ROLLWRIGHT_* environment variables.
"""

from __future__ import annotations

from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict

from rollwright.models.rollout import RolloutOptions


class RolloutSettings(BaseSettings):
    """Process-wide configuration with environment variable overrides.

    Examples
    --------
    Override via environment::

        export ROLLWRIGHT_ENVIRONMENT=production
        export ROLLWRIGHT_ECS_CLUSTER=app-cluster
        export ROLLWRIGHT_HEALTH_TIMEOUT=600

    Or via .env file::

        ROLLWRIGHT_AWS_REGION=eu-west-1
        ROLLWRIGHT_LOG_LEVEL=DEBUG
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="ROLLWRIGHT_",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Runtime environment
    environment: str = "development"
    log_level: str = "INFO"
    debug: bool = False

    # Storage
    history_path: Path = Path(".rollwright/history.db")

    # Rollout defaults (seconds)
    health_timeout: float = 300.0
    poll_interval: float = 5.0
    max_retries: int = 3
    initial_backoff: float = 1.0
    backoff_multiplier: float = 2.0
    auto_rollback: bool = True
    rollback_timeout: float | None = None

    # Concurrency
    max_concurrent_rollouts: int = 8

    # ECS platform binding
    aws_region: str = "us-east-1"
    aws_endpoint_url: str | None = None
    ecs_cluster: str = ""
    ecs_container_name: str | None = None  # defaults to the first container
    platform_connect_timeout: float = 5.0
    platform_read_timeout: float = 15.0

    @property
    def is_production(self) -> bool:
        """Whether running in production mode."""
        return self.environment == "production"

    def rollout_options(self, **overrides: object) -> RolloutOptions:
        """Build ``RolloutOptions`` from the configured defaults.

        Keyword arguments whose value is ``None`` are ignored, so CLI flags
        that were not given fall back to the configured default.
        """
        values: dict[str, object] = {
            "health_timeout": self.health_timeout,
            "poll_interval": self.poll_interval,
            "max_retries": self.max_retries,
            "initial_backoff": self.initial_backoff,
            "backoff_multiplier": self.backoff_multiplier,
            "auto_rollback": self.auto_rollback,
            "rollback_timeout": self.rollback_timeout,
        }
        values.update({k: v for k, v in overrides.items() if v is not None})
        return RolloutOptions(**values)


# Module-level singleton — import as `from rollwright.config import settings`
settings = RolloutSettings()
