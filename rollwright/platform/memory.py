"""In-process container platform.

``InMemoryPlatform`` simulates a managed container service closely enough to
drive the controller end to end: an update switches the service to the new
image immediately with zero healthy tasks, and the platform converges after a
scripted number of health polls.  Used as the test double and by
``rollwright demo``.
"""

from __future__ import annotations

import logging
import threading

from rollwright.models.artifacts import ArtifactRef
from rollwright.models.service import HealthReport, ServiceState
from rollwright.platform import (
    InvalidArtifactError,
    ServiceNotFoundError,
    TransientUnavailableError,
)

logger = logging.getLogger(__name__)

_NEVER = -1


class _SimulatedService:
    def __init__(self, artifact: ArtifactRef, desired_count: int, converge_after: int) -> None:
        self.current = artifact
        self.stable: ArtifactRef | None = artifact
        self.desired_count = desired_count
        self.healthy_count = desired_count
        self.converge_after = converge_after
        self.polls_remaining = 0
        self.failing_updates = 0
        self.failing_polls = 0
        self.failing_reads = 0


class InMemoryPlatform:
    """Thread-safe simulated platform implementing ``PlatformClient``.

    Unlike a real platform, each ``poll_health`` call also advances the
    simulation: it counts down towards convergence and, on convergence,
    records the current artifact as the last stable one.

    Parameters
    ----------
    default_converge_after:
        Health poll on which a service converges after an update (1 means
        the first poll already reports convergence), for artifacts with no
        explicit script.
    """

    def __init__(self, default_converge_after: int = 1) -> None:
        self._lock = threading.Lock()
        self._services: dict[str, _SimulatedService] = {}
        self._scripts: dict[tuple[str, ArtifactRef], int] = {}
        self._rejected: set[ArtifactRef] = set()
        self._default_converge_after = default_converge_after
        self.update_calls: list[tuple[str, ArtifactRef]] = []
        self.poll_count = 0

    # ------------------------------------------------------------------
    # Scripting
    # ------------------------------------------------------------------

    def register_service(
        self,
        service_id: str,
        artifact: ArtifactRef,
        *,
        desired_count: int = 2,
        converge_after: int | None = None,
    ) -> None:
        """Add a service that is already running *artifact* healthily."""
        if converge_after is None:
            converge_after = self._default_converge_after
        with self._lock:
            self._services[service_id] = _SimulatedService(
                artifact, desired_count, converge_after
            )

    def converge_after(self, service_id: str, artifact: ArtifactRef, polls: int) -> None:
        """Converge on *artifact* on the *polls*-th health read after its update."""
        with self._lock:
            self._scripts[(service_id, artifact)] = polls

    def never_converge(self, service_id: str, artifact: ArtifactRef) -> None:
        """Tasks running *artifact* never become healthy."""
        with self._lock:
            self._scripts[(service_id, artifact)] = _NEVER

    def reject(self, artifact: ArtifactRef) -> None:
        """Make ``update_desired_image`` raise ``InvalidArtifactError`` for *artifact*."""
        with self._lock:
            self._rejected.add(artifact)

    def fail_updates(self, service_id: str, times: int) -> None:
        """The next *times* update calls raise ``TransientUnavailableError``."""
        with self._lock:
            self._get(service_id).failing_updates = times

    def fail_polls(self, service_id: str, times: int) -> None:
        """The next *times* health polls raise ``TransientUnavailableError``."""
        with self._lock:
            self._get(service_id).failing_polls = times

    def fail_reads(self, service_id: str, times: int) -> None:
        """The next *times* state reads raise ``TransientUnavailableError``."""
        with self._lock:
            self._get(service_id).failing_reads = times

    # ------------------------------------------------------------------
    # PlatformClient
    # ------------------------------------------------------------------

    def get_service_state(self, service_id: str) -> ServiceState:
        with self._lock:
            svc = self._get(service_id)
            if svc.failing_reads > 0:
                svc.failing_reads -= 1
                raise TransientUnavailableError(f"{service_id}: state read unavailable")
            return ServiceState(
                service_id=service_id,
                desired_artifact=svc.current,
                running_task_count=svc.desired_count,
                healthy_task_count=svc.healthy_count,
                last_stable_artifact=svc.stable,
            )

    def update_desired_image(self, service_id: str, artifact: ArtifactRef) -> None:
        with self._lock:
            svc = self._get(service_id)
            self.update_calls.append((service_id, artifact))
            if svc.failing_updates > 0:
                svc.failing_updates -= 1
                raise TransientUnavailableError(f"{service_id}: update endpoint unavailable")
            if artifact in self._rejected:
                raise InvalidArtifactError(f"{artifact} cannot be pulled")

            svc.current = artifact
            svc.healthy_count = 0
            svc.polls_remaining = self._scripts.get(
                (service_id, artifact), svc.converge_after
            )
            logger.debug("%s now targeting %s", service_id, artifact)

    def poll_health(self, service_id: str) -> HealthReport:
        with self._lock:
            svc = self._get(service_id)
            self.poll_count += 1
            if svc.failing_polls > 0:
                svc.failing_polls -= 1
                raise TransientUnavailableError(f"{service_id}: health endpoint unavailable")

            if svc.polls_remaining > 0:
                svc.polls_remaining -= 1
            if svc.polls_remaining == 0 and svc.healthy_count != svc.desired_count:
                svc.healthy_count = svc.desired_count
                svc.stable = svc.current

            return HealthReport(
                healthy_count=svc.healthy_count,
                desired_count=svc.desired_count,
                current_artifact=svc.current,
            )

    # ------------------------------------------------------------------

    def _get(self, service_id: str) -> _SimulatedService:
        try:
            return self._services[service_id]
        except KeyError:
            raise ServiceNotFoundError(f"service {service_id!r} does not exist") from None
