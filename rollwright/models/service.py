"""Platform-reported service snapshots."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field

from rollwright.models.artifacts import ArtifactRef


class ServiceState(BaseModel):
    """Point-in-time state of a managed service.

    Returned by ``PlatformClient.get_service_state``.  Callers never mutate
    the platform's state directly; it only changes through the controller's
    ``update_desired_image`` calls.
    """

    model_config = ConfigDict(frozen=True)

    service_id: str
    desired_artifact: ArtifactRef | None = None
    running_task_count: int = Field(default=0, ge=0)
    healthy_task_count: int = Field(default=0, ge=0)
    last_stable_artifact: ArtifactRef | None = None  # None until first convergence


class HealthReport(BaseModel):
    """Result of a single ``poll_health`` read."""

    model_config = ConfigDict(frozen=True)

    healthy_count: int = Field(ge=0)
    desired_count: int = Field(ge=0)
    current_artifact: ArtifactRef | None = None

    def converged_on(self, target: ArtifactRef) -> bool:
        """True when every desired task is healthy and running *target*."""
        return (
            self.healthy_count == self.desired_count
            and self.current_artifact == target
        )
