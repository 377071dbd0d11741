"""Platform protocol and error taxonomy for container-platform bindings.

Every binding implements the ``PlatformClient`` protocol.  The controller
only ever talks to a platform through these three calls, so swapping ECS
for another orchestrator never touches ``RolloutController``.
"""

from __future__ import annotations

from typing import Protocol, runtime_checkable

from rollwright.models.artifacts import ArtifactRef
from rollwright.models.service import HealthReport, ServiceState


class PlatformError(RuntimeError):
    """Base class for errors raised by a platform binding."""


class ServiceNotFoundError(PlatformError, LookupError):
    """The service does not exist on the platform."""


class InvalidArtifactError(PlatformError, ValueError):
    """The platform rejected the artifact reference.  Never retried."""


class TransientUnavailableError(PlatformError):
    """The platform API is temporarily unreachable.  Safe to retry."""


@runtime_checkable
class PlatformClient(Protocol):
    """Protocol that every container-platform binding must implement.

    Implementations must bound every call with their own timeout so that no
    call blocks indefinitely, and must raise ``TransientUnavailableError``
    when that timeout fires.
    """

    def get_service_state(self, service_id: str) -> ServiceState:
        """Return the current state of *service_id*.

        Raises
        ------
        ServiceNotFoundError
            If the service does not exist.
        TransientUnavailableError
            If the platform API is temporarily unreachable.
        """
        ...

    def update_desired_image(self, service_id: str, artifact: ArtifactRef) -> None:
        """Ask the platform to move *service_id* toward running *artifact*.

        Asynchronous: returning does not mean the platform has converged.

        Raises
        ------
        InvalidArtifactError
            If the platform rejects the reference.
        TransientUnavailableError
            If the platform API is temporarily unreachable.
        """
        ...

    def poll_health(self, service_id: str) -> HealthReport:
        """Cheap, side-effect-free health read.  Safe to call repeatedly."""
        ...


__all__ = [
    "PlatformClient",
    "PlatformError",
    "ServiceNotFoundError",
    "InvalidArtifactError",
    "TransientUnavailableError",
]
