"""Amazon ECS binding for the ``PlatformClient`` protocol.

A service's desired image lives in its task definition, so an image update
registers a new task definition revision with the target image swapped into
the service's container and points the service at it with a forced new
deployment.  Health is read from the PRIMARY deployment.

Every call is bounded by botocore connect/read timeouts with botocore's own
retries disabled; retry policy belongs to the controller.
"""

from __future__ import annotations

import copy
import logging
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

import boto3
from botocore.config import Config
from botocore.exceptions import (
    ClientError,
    ConnectionClosedError,
    ConnectTimeoutError,
    EndpointConnectionError,
    ReadTimeoutError,
)

from rollwright.config import RolloutSettings
from rollwright.models.artifacts import ArtifactRef
from rollwright.models.service import HealthReport, ServiceState
from rollwright.platform import (
    InvalidArtifactError,
    PlatformError,
    ServiceNotFoundError,
    TransientUnavailableError,
)

logger = logging.getLogger(__name__)

_NOT_FOUND_CODES = frozenset({"ServiceNotFoundException", "ServiceNotActiveException"})
_TRANSIENT_CODES = frozenset({
    "ThrottlingException",
    "Throttling",
    "TooManyRequestsException",
    "RequestLimitExceeded",
    "ServerException",
    "ServiceUnavailable",
    "ServiceUnavailableException",
    "InternalFailure",
})
_REJECTED_CODES = frozenset({"ClientException", "InvalidParameterException"})

# register_task_definition accepts only these keys from a described revision.
_REGISTER_KEYS = (
    "family",
    "taskRoleArn",
    "executionRoleArn",
    "networkMode",
    "volumes",
    "placementConstraints",
    "requiresCompatibilities",
    "cpu",
    "memory",
    "pidMode",
    "ipcMode",
    "proxyConfiguration",
    "inferenceAccelerators",
    "ephemeralStorage",
    "runtimePlatform",
)


class EcsPlatformClient:
    """``PlatformClient`` backed by the ECS API.

    Parameters
    ----------
    cluster:
        Short name or ARN of the ECS cluster holding the services.
    container_name:
        Container whose image is rolled out.  Defaults to the first
        container of the task definition.
    client:
        A pre-built ``boto3`` ECS client (tests pass a stubbed one).
    """

    def __init__(
        self,
        cluster: str,
        *,
        region: str | None = None,
        container_name: str | None = None,
        endpoint_url: str | None = None,
        connect_timeout: float = 5.0,
        read_timeout: float = 15.0,
        client: Any = None,
    ) -> None:
        if not cluster:
            raise ValueError("an ECS cluster name is required")
        self.cluster = cluster
        self.container_name = container_name

        if client is None:
            client = boto3.client(
                "ecs",
                region_name=region,
                endpoint_url=endpoint_url,
                config=Config(
                    connect_timeout=connect_timeout,
                    read_timeout=read_timeout,
                    retries={"total_max_attempts": 1},
                ),
            )
        self._client = client

        # Task definition revisions are immutable, so image lookups are cached.
        self._image_cache: dict[str, ArtifactRef | None] = {}
        self._cache_lock = threading.Lock()

    @classmethod
    def from_settings(cls, settings: RolloutSettings, **overrides: Any) -> EcsPlatformClient:
        kwargs: dict[str, Any] = {
            "cluster": settings.ecs_cluster,
            "region": settings.aws_region,
            "container_name": settings.ecs_container_name,
            "endpoint_url": settings.aws_endpoint_url,
            "connect_timeout": settings.platform_connect_timeout,
            "read_timeout": settings.platform_read_timeout,
        }
        kwargs.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**kwargs)

    # ------------------------------------------------------------------
    # PlatformClient
    # ------------------------------------------------------------------

    def get_service_state(self, service_id: str) -> ServiceState:
        service = self._describe_service(service_id)
        deployments = service.get("deployments", [])
        primary = _primary(deployments)

        stable = None
        for deployment in sorted(
            deployments,
            key=lambda d: d["createdAt"].timestamp() if d.get("createdAt") else 0.0,
            reverse=True,
        ):
            if _is_stable(deployment, deployments):
                stable = self._artifact_for(deployment["taskDefinition"], service_id)
                break

        return ServiceState(
            service_id=service_id,
            desired_artifact=self._artifact_for(service["taskDefinition"], service_id),
            running_task_count=service.get("runningCount", 0),
            healthy_task_count=_healthy_count(primary, deployments),
            last_stable_artifact=stable,
        )

    def update_desired_image(self, service_id: str, artifact: ArtifactRef) -> None:
        service = self._describe_service(service_id)
        with self._translate_errors(service_id):
            task_def = self._client.describe_task_definition(
                taskDefinition=service["taskDefinition"]
            )["taskDefinition"]

        containers = copy.deepcopy(task_def["containerDefinitions"])
        container = self._select_container(containers, service_id)
        container["image"] = artifact.image_uri

        request = {k: task_def[k] for k in _REGISTER_KEYS if k in task_def}
        request["containerDefinitions"] = containers

        with self._translate_errors(service_id, rejecting=True):
            registered = self._client.register_task_definition(**request)
            new_arn = registered["taskDefinition"]["taskDefinitionArn"]
            self._client.update_service(
                cluster=self.cluster,
                service=service_id,
                taskDefinition=new_arn,
                forceNewDeployment=True,
            )

        with self._cache_lock:
            self._image_cache[new_arn] = artifact
        logger.info("%s/%s: deploying %s as %s.", self.cluster, service_id, artifact, new_arn)

    def poll_health(self, service_id: str) -> HealthReport:
        service = self._describe_service(service_id)
        deployments = service.get("deployments", [])
        primary = _primary(deployments)
        current = (
            self._artifact_for(primary["taskDefinition"], service_id)
            if primary is not None
            else None
        )
        return HealthReport(
            healthy_count=_healthy_count(primary, deployments),
            desired_count=service.get("desiredCount", 0),
            current_artifact=current,
        )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _describe_service(self, service_id: str) -> dict[str, Any]:
        with self._translate_errors(service_id):
            response = self._client.describe_services(
                cluster=self.cluster, services=[service_id]
            )
        for service in response.get("services", []):
            if service.get("status") == "ACTIVE":
                return service
        raise ServiceNotFoundError(
            f"service {service_id!r} is not active in cluster {self.cluster!r}"
        )

    def _artifact_for(self, task_definition_arn: str, service_id: str) -> ArtifactRef | None:
        with self._cache_lock:
            if task_definition_arn in self._image_cache:
                return self._image_cache[task_definition_arn]

        with self._translate_errors(service_id):
            task_def = self._client.describe_task_definition(
                taskDefinition=task_definition_arn
            )["taskDefinition"]
        image = self._select_container(task_def["containerDefinitions"], service_id)["image"]
        try:
            artifact: ArtifactRef | None = ArtifactRef.parse(image)
        except ValueError:
            logger.debug("Image %r of %s is not a registry reference.", image, task_definition_arn)
            artifact = None

        with self._cache_lock:
            self._image_cache[task_definition_arn] = artifact
        return artifact

    def _select_container(
        self, containers: list[dict[str, Any]], service_id: str
    ) -> dict[str, Any]:
        if not containers:
            raise InvalidArtifactError(f"task definition of {service_id} has no containers")
        if self.container_name is None:
            return containers[0]
        for container in containers:
            if container.get("name") == self.container_name:
                return container
        raise InvalidArtifactError(
            f"task definition of {service_id} has no container named {self.container_name!r}"
        )

    @contextmanager
    def _translate_errors(self, service_id: str, *, rejecting: bool = False) -> Iterator[None]:
        """Map botocore failures onto the platform error taxonomy."""
        try:
            yield
        except ClientError as exc:
            error = exc.response.get("Error", {})
            code = error.get("Code", "")
            status = exc.response.get("ResponseMetadata", {}).get("HTTPStatusCode", 0)
            message = f"{service_id}: {code}: {error.get('Message', '')}"
            if code in _NOT_FOUND_CODES:
                raise ServiceNotFoundError(message) from exc
            if code in _TRANSIENT_CODES or status >= 500:
                raise TransientUnavailableError(message) from exc
            if rejecting and code in _REJECTED_CODES:
                raise InvalidArtifactError(message) from exc
            raise PlatformError(message) from exc
        except (
            EndpointConnectionError,
            ConnectTimeoutError,
            ReadTimeoutError,
            ConnectionClosedError,
        ) as exc:
            raise TransientUnavailableError(f"{service_id}: {exc}") from exc


def _primary(deployments: list[dict[str, Any]]) -> dict[str, Any] | None:
    return next((d for d in deployments if d.get("status") == "PRIMARY"), None)


def _healthy_count(primary: dict[str, Any] | None, deployments: list[dict[str, Any]]) -> int:
    """Tasks of the PRIMARY deployment that count as healthy.

    RUNNING tasks of an IN_PROGRESS deployment may still be failing load
    balancer checks, so only a COMPLETED rollout reports its tasks.  Without
    rolloutState, tasks count only once older deployments have drained.
    """
    if primary is None:
        return 0
    state = primary.get("rolloutState")
    if state is not None:
        return primary.get("runningCount", 0) if state == "COMPLETED" else 0
    return primary.get("runningCount", 0) if len(deployments) == 1 else 0


def _is_stable(deployment: dict[str, Any], deployments: list[dict[str, Any]]) -> bool:
    state = deployment.get("rolloutState")
    if state is not None:
        return state == "COMPLETED"
    # Without deployment circuit breaker data, a lone fully-running deployment is stable.
    return (
        len(deployments) == 1
        and deployment.get("runningCount", 0) == deployment.get("desiredCount", 0)
    )
