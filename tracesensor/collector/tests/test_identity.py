from __future__ import annotations

import logging
import threading
import time
from unittest.mock import Mock

import httpx
import pytest

from tracesensor.collector.identity import (
    EcsMetadataStrategy,
    EntityKind,
    HostIdentity,
    HostIdentityResolver,
    ResolutionState,
    build_ecs_identity,
    container_entity_id,
)
from tracesensor.collector.metadata import ContainerMetadata, TaskMetadata
from tracesensor.shared.exceptions import ResolutionFailedError

from .ecs_fixtures import (
    METADATA_URI,
    OWN_CONTAINER,
    OWN_DOCKER_ID,
    PAUSE_DOCKER_ID,
    TASK_ARN,
    TASK_DOCUMENT,
    fargate_settings,
    make_settings,
    metadata_handler,
)

OWN_ID = f"{TASK_ARN}::nginx-curl"
PAUSE_ID = f"{TASK_ARN}::~internal~ecs~pause"


def _client(handler) -> httpx.Client:
    return httpx.Client(transport=httpx.MockTransport(handler))


class TestMetadataModels:
    def test_container_document(self):
        container = ContainerMetadata.model_validate(OWN_CONTAINER)
        assert container.docker_id == OWN_DOCKER_ID
        assert container.name == "nginx-curl"
        assert container.limits.cpu == 512
        assert container.labels["com.amazonaws.ecs.cluster"] == "default"

    def test_task_document(self):
        task = TaskMetadata.model_validate(TASK_DOCUMENT)
        assert task.task_arn == TASK_ARN
        assert task.family == "nginx"
        assert task.revision == "5"
        assert [c.name for c in task.containers] == ["~internal~ecs~pause", "nginx-curl"]


class TestBuildEcsIdentity:
    @pytest.fixture
    def identity(self) -> HostIdentity:
        return build_ecs_identity(
            TaskMetadata.model_validate(TASK_DOCUMENT),
            ContainerMetadata.model_validate(OWN_CONTAINER),
        )

    def test_process_identity(self, identity):
        assert identity.kind is EntityKind.SERVERLESS_TASK
        assert identity.entity_id == OWN_ID
        assert identity.cloud_provider == "aws"
        assert identity.is_serverless
        assert identity.attributes["cluster"] == "default"
        assert identity.attributes["taskDefinition"] == "nginx"
        assert identity.attributes["taskDefinitionVersion"] == "5"
        assert identity.attributes["availabilityZone"] == "us-east-2b"

    def test_task_identity(self, identity):
        assert identity.task is not None
        assert identity.task.entity_id == TASK_ARN
        assert identity.task.cluster == "default"
        assert identity.task.family == "nginx"

    def test_container_identities(self, identity):
        containers = {c.entity_id: c for c in identity.containers}
        assert set(containers) == {OWN_ID, PAUSE_ID}

        own = containers[OWN_ID]
        assert own.instrumented is True
        assert own.runtime == "python"
        assert own.docker_id == OWN_DOCKER_ID

        pause = containers[PAUSE_ID]
        assert pause.instrumented is False
        assert pause.runtime is None
        assert pause.docker_id == PAUSE_DOCKER_ID

        for container in identity.containers:
            assert container.entity_id == f"{container.task_arn}::{container.container_name}"
            assert container.task_arn == identity.task.entity_id

    def test_runtime_ids(self, identity):
        assert identity.runtime_ids == {
            "~internal~ecs~pause": PAUSE_DOCKER_ID,
            "nginx-curl": OWN_DOCKER_ID,
        }

    def test_instrumented_container(self, identity):
        own = identity.instrumented_container()
        assert own is not None
        assert own.entity_id == identity.entity_id

    def test_container_entity_id(self):
        assert container_entity_id("arn:task/1", "web") == "arn:task/1::web"


class TestEcsMetadataStrategy:
    def test_reads_both_documents(self):
        calls: list[httpx.Request] = []
        with _client(metadata_handler(calls=calls)) as client:
            identity = EcsMetadataStrategy(METADATA_URI + "/", client=client).resolve()

        assert identity.entity_id == OWN_ID
        assert [str(request.url) for request in calls] == [METADATA_URI, METADATA_URI + "/task"]

    def test_http_error_raises_resolution_failed(self):
        with _client(metadata_handler(status=500)) as client:
            with pytest.raises(ResolutionFailedError):
                EcsMetadataStrategy(METADATA_URI, client=client).resolve()

    def test_network_error_raises_resolution_failed(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        with _client(handler) as client:
            with pytest.raises(ResolutionFailedError) as excinfo:
                EcsMetadataStrategy(METADATA_URI, client=client).resolve()

        assert "unavailable" in str(excinfo.value)

    def test_invalid_document_raises_resolution_failed(self):
        with _client(metadata_handler(container={"Name": "no docker id"})) as client:
            with pytest.raises(ResolutionFailedError) as excinfo:
                EcsMetadataStrategy(METADATA_URI, client=client).resolve()

        assert "Malformed" in str(excinfo.value)


class TestHostIdentityResolver:
    def test_fargate_resolution(self, metadata_client):
        resolver = HostIdentityResolver(fargate_settings(), client=metadata_client)
        assert resolver.state is ResolutionState.UNRESOLVED
        assert resolver.identity is None

        identity = resolver.resolve()

        assert resolver.state is ResolutionState.RESOLVED
        assert identity.entity_id == OWN_ID
        assert resolver.identity is identity

    def test_resolves_only_once(self):
        calls: list[httpx.Request] = []
        with _client(metadata_handler(calls=calls)) as client:
            resolver = HostIdentityResolver(fargate_settings(), client=client)
            first = resolver.resolve()
            second = resolver.resolve()

        assert first is second
        assert len(calls) == 2

    def test_no_marker_is_unknown(self, metadata_client):
        resolver = HostIdentityResolver(
            make_settings(ecs_metadata_uri=METADATA_URI), client=metadata_client
        )

        identity = resolver.resolve()

        assert identity.kind is EntityKind.UNKNOWN
        assert not identity.is_known
        assert resolver.state is ResolutionState.UNKNOWN

    def test_marker_without_uri_is_unknown(self, caplog):
        resolver = HostIdentityResolver(make_settings(aws_execution_env="AWS_ECS_FARGATE"))

        with caplog.at_level(logging.WARNING, logger="tracesensor.collector.identity"):
            identity = resolver.resolve()

        assert identity.kind is EntityKind.UNKNOWN
        assert "ECS_CONTAINER_METADATA_URI" in caplog.text

    def test_endpoint_failure_is_unknown_and_logged(self, caplog):
        with _client(metadata_handler(status=503)) as client:
            resolver = HostIdentityResolver(fargate_settings(), client=client)
            with caplog.at_level(logging.WARNING):
                identity = resolver.resolve()

        assert identity.kind is EntityKind.UNKNOWN
        assert resolver.state is ResolutionState.UNKNOWN
        assert "resolution failed" in caplog.text

    def test_failure_is_not_retried(self):
        calls: list[httpx.Request] = []
        with _client(metadata_handler(status=500, calls=calls)) as client:
            resolver = HostIdentityResolver(fargate_settings(), client=client)
            resolver.resolve()
            resolver.resolve()

        assert len(calls) == 1

    def test_unexpected_strategy_error_is_unknown(self):
        strategy = Mock()
        strategy.name = "broken"
        strategy.resolve.side_effect = RuntimeError("bug")

        identity = HostIdentityResolver(make_settings(), strategy=strategy).resolve()

        assert identity.kind is EntityKind.UNKNOWN

    def test_concurrent_callers_share_one_resolution(self):
        started = threading.Event()
        strategy = Mock()
        strategy.name = "slow"

        def slow_resolve() -> HostIdentity:
            started.set()
            time.sleep(0.05)
            return HostIdentity(kind=EntityKind.STANDALONE, entity_id="host-1")

        strategy.resolve.side_effect = slow_resolve
        resolver = HostIdentityResolver(make_settings(), strategy=strategy)
        results: list[HostIdentity] = []

        def call() -> None:
            results.append(resolver.resolve())

        threads = [threading.Thread(target=call) for _ in range(5)]
        for thread in threads:
            thread.start()
        started.wait(1.0)
        for thread in threads:
            thread.join()

        assert strategy.resolve.call_count == 1
        assert len(results) == 5
        assert all(result is results[0] for result in results)
