"""Resolution of the identity this process reports its telemetry under.

Identity is resolved once per process, on first use. The only supported
environment today is ECS on Fargate, detected through ``AWS_EXECUTION_ENV``;
anywhere else, or when the metadata endpoint cannot be read, the identity is
``unknown`` and telemetry is still delivered.
"""

from __future__ import annotations

import logging
import threading
from enum import Enum
from typing import TYPE_CHECKING, Protocol

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from tracesensor.settings import get_settings
from tracesensor.shared.exceptions import ResolutionFailedError, SensorException
from tracesensor.shared.hints import log_hints
from tracesensor.shared.requests import create_sync_client, make_request_sync

from .metadata import ContainerLimits, ContainerMetadata, TaskMetadata

if TYPE_CHECKING:
    import httpx

    from tracesensor.settings import Settings

logger = logging.getLogger(__name__)

FARGATE_EXECUTION_ENV = "AWS_ECS_FARGATE"
RUNTIME_NAME = "python"


class EntityKind(str, Enum):
    STANDALONE = "standalone"
    CONTAINER = "container"
    SERVERLESS_TASK = "serverless-task"
    UNKNOWN = "unknown"


class ResolutionState(str, Enum):
    UNRESOLVED = "unresolved"
    RESOLVING = "resolving"
    RESOLVED = "resolved"
    UNKNOWN = "unknown"


class TaskIdentity(BaseModel):
    model_config = ConfigDict(frozen=True)

    entity_id: str
    cluster: str
    family: str
    revision: str
    availability_zone: str | None = None
    desired_status: str | None = None
    known_status: str | None = None
    pull_started_at: str | None = None
    pull_stopped_at: str | None = None
    limits: ContainerLimits = Field(default_factory=ContainerLimits)


class ContainerIdentity(BaseModel):
    model_config = ConfigDict(frozen=True)

    entity_id: str
    task_arn: str
    container_name: str
    docker_id: str
    docker_name: str | None = None
    image: str | None = None
    image_id: str | None = None
    instrumented: bool = False
    runtime: str | None = None
    labels: dict[str, str] = Field(default_factory=dict)
    desired_status: str | None = None
    known_status: str | None = None
    created_at: str | None = None
    started_at: str | None = None
    limits: ContainerLimits = Field(default_factory=ContainerLimits)


class HostIdentity(BaseModel):
    """Who produced a piece of telemetry."""

    model_config = ConfigDict(frozen=True)

    kind: EntityKind
    entity_id: str = ""
    attributes: dict[str, str] = Field(default_factory=dict)
    cloud_provider: str | None = None
    task: TaskIdentity | None = None
    containers: list[ContainerIdentity] = Field(default_factory=list)
    runtime_ids: dict[str, str] = Field(default_factory=dict)

    @classmethod
    def unknown(cls) -> HostIdentity:
        return cls(kind=EntityKind.UNKNOWN)

    @property
    def is_known(self) -> bool:
        return self.kind is not EntityKind.UNKNOWN

    @property
    def is_serverless(self) -> bool:
        return self.kind is EntityKind.SERVERLESS_TASK

    def instrumented_container(self) -> ContainerIdentity | None:
        for container in self.containers:
            if container.instrumented:
                return container
        return None


class IdentityStrategy(Protocol):
    name: str

    def resolve(self) -> HostIdentity:
        """Resolve the identity, raising ``ResolutionFailedError`` on any failure."""
        ...


def container_entity_id(task_arn: str, container_name: str) -> str:
    return f"{task_arn}::{container_name}"


def build_ecs_identity(task: TaskMetadata, own: ContainerMetadata) -> HostIdentity:
    """Derive task, container and process identities from ECS metadata documents."""
    task_identity = TaskIdentity(
        entity_id=task.task_arn,
        cluster=task.cluster,
        family=task.family,
        revision=task.revision,
        availability_zone=task.availability_zone,
        desired_status=task.desired_status,
        known_status=task.known_status,
        pull_started_at=task.pull_started_at,
        pull_stopped_at=task.pull_stopped_at,
        limits=task.limits,
    )

    containers = []
    for container in task.containers:
        instrumented = container.docker_id == own.docker_id
        containers.append(
            ContainerIdentity(
                entity_id=container_entity_id(task.task_arn, container.name),
                task_arn=task.task_arn,
                container_name=container.name,
                docker_id=container.docker_id,
                docker_name=container.docker_name,
                image=container.image,
                image_id=container.image_id,
                instrumented=instrumented,
                runtime=RUNTIME_NAME if instrumented else None,
                labels=container.labels,
                desired_status=container.desired_status,
                known_status=container.known_status,
                created_at=container.created_at,
                started_at=container.started_at,
                limits=container.limits,
            )
        )

    attributes = {
        "cluster": task.cluster,
        "taskDefinition": task.family,
        "taskDefinitionVersion": task.revision,
        "containerName": own.name,
        "dockerId": own.docker_id,
    }
    if task.availability_zone:
        attributes["availabilityZone"] = task.availability_zone

    return HostIdentity(
        kind=EntityKind.SERVERLESS_TASK,
        entity_id=container_entity_id(task.task_arn, own.name),
        attributes=attributes,
        cloud_provider="aws",
        task=task_identity,
        containers=containers,
        runtime_ids={container.name: container.docker_id for container in task.containers},
    )


class EcsMetadataStrategy:
    """Reads the ECS container and task metadata documents."""

    name = "ecs-metadata"

    def __init__(
        self, metadata_uri: str, *, timeout: float = 2.0, client: httpx.Client | None = None
    ) -> None:
        self.metadata_uri = metadata_uri.rstrip("/")
        self.timeout = timeout
        self.client = client

    def _fetch(self, client: httpx.Client) -> tuple[TaskMetadata, ContainerMetadata]:
        own_doc = make_request_sync("GET", self.metadata_uri, client=client)
        task_doc = make_request_sync("GET", f"{self.metadata_uri}/task", client=client)
        return TaskMetadata.model_validate(task_doc), ContainerMetadata.model_validate(own_doc)

    def resolve(self) -> HostIdentity:
        try:
            if self.client is not None:
                task, own = self._fetch(self.client)
            else:
                with create_sync_client(timeout=self.timeout) as client:
                    task, own = self._fetch(client)
        except SensorException as e:
            raise ResolutionFailedError(f"ECS metadata endpoint unavailable: {e}") from e
        except ValidationError as e:
            raise ResolutionFailedError(
                f"Malformed ECS metadata document: {e.error_count()} errors"
            ) from e

        return build_ecs_identity(task, own)


class HostIdentityResolver:
    """Resolves and caches the host identity for the lifetime of the process.

    ``resolve()`` is the only call that may block, and only the first time:
    concurrent callers wait for the one resolution in progress. Failures are
    logged and leave the identity ``unknown``; they are never retried.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        *,
        client: httpx.Client | None = None,
        strategy: IdentityStrategy | None = None,
    ) -> None:
        self.settings = settings or get_settings()
        self._client = client
        self._strategy = strategy
        self._state = ResolutionState.UNRESOLVED
        self._identity: HostIdentity | None = None
        self._lock = threading.Lock()

    @property
    def state(self) -> ResolutionState:
        return self._state

    @property
    def identity(self) -> HostIdentity | None:
        """The cached identity, ``None`` until resolution has finished."""
        return self._identity

    def select_strategy(self) -> IdentityStrategy | None:
        if self._strategy is not None:
            return self._strategy

        if self.settings.aws_execution_env == FARGATE_EXECUTION_ENV:
            if not self.settings.ecs_metadata_uri:
                logger.warning(
                    "Running on %s but ECS_CONTAINER_METADATA_URI is not set",
                    FARGATE_EXECUTION_ENV,
                )
                return None
            return EcsMetadataStrategy(
                self.settings.ecs_metadata_uri,
                timeout=self.settings.metadata_timeout,
                client=self._client,
            )

        return None

    def resolve(self) -> HostIdentity:
        if self._identity is not None:
            return self._identity

        with self._lock:
            if self._identity is not None:
                return self._identity

            self._state = ResolutionState.RESOLVING
            strategy = self.select_strategy()
            if strategy is None:
                logger.debug("No identity strategy for this environment, identity is unknown")
                return self._finish(HostIdentity.unknown(), ResolutionState.UNKNOWN)

            try:
                identity = strategy.resolve()
            except ResolutionFailedError as e:
                logger.warning("Host identity resolution failed (%s): %s", strategy.name, e)
                log_hints(e.hints)
                return self._finish(HostIdentity.unknown(), ResolutionState.UNKNOWN)
            except Exception:
                logger.exception("Unexpected error resolving host identity (%s)", strategy.name)
                return self._finish(HostIdentity.unknown(), ResolutionState.UNKNOWN)

            logger.debug("Resolved host identity %s via %s", identity.entity_id, strategy.name)
            return self._finish(identity, ResolutionState.RESOLVED)

    def _finish(self, identity: HostIdentity, state: ResolutionState) -> HostIdentity:
        self._identity = identity
        self._state = state
        return identity
