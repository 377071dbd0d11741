"""Rollwright: health-checked container rollouts with automatic rollback.

Takes a freshly published image reference and moves a running service onto
it as an auditable state machine:
  - Idempotent, one rollout per service at a time
  - Bounded retries with exponential backoff for transient platform errors
  - Health polling with automatic rollback to the last stable image
  - Append-only, hash-chained rollout history (SQLite)
  - Amazon ECS binding plus an in-memory platform for tests and demos
"""

__version__ = "0.1.0"
__description__ = "Health-checked container rollouts with automatic rollback"

from rollwright.core.controller import RolloutController
from rollwright.core.history import RolloutHistory
from rollwright.models.artifacts import ArtifactRef
from rollwright.models.rollout import RolloutOptions, RolloutOutcome, RolloutRecord

__all__ = [
    "RolloutController",
    "RolloutHistory",
    "ArtifactRef",
    "RolloutOptions",
    "RolloutOutcome",
    "RolloutRecord",
    "__version__",
]
