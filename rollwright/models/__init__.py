"""Rollwright data models — all Pydantic v2, all frozen (immutable)."""

from rollwright.models.artifacts import ArtifactRef
from rollwright.models.rollout import (
    TERMINAL_OUTCOMES,
    VALID_TRANSITIONS,
    InvalidOutcomeTransitionError,
    RolloutOptions,
    RolloutOutcome,
    RolloutRecord,
)
from rollwright.models.service import HealthReport, ServiceState

__all__ = [
    # artifacts
    "ArtifactRef",
    # service
    "ServiceState",
    "HealthReport",
    # rollout
    "RolloutOutcome",
    "RolloutOptions",
    "RolloutRecord",
    "VALID_TRANSITIONS",
    "TERMINAL_OUTCOMES",
    "InvalidOutcomeTransitionError",
]
