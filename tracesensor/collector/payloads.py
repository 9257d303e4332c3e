"""Wire representations of spans and metric snapshots sent to the collector."""

from __future__ import annotations

import gc
import getpass
import os
import platform
import socket
import sys
import threading
import time
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, ConfigDict, Field

from tracesensor.tracing.ids import format_id

if TYPE_CHECKING:
    from tracesensor.tracing.span import Span

    from .identity import ContainerIdentity, HostIdentity, TaskIdentity

TASK_PLUGIN = "aws.ecs.task"
CONTAINER_PLUGIN = "aws.ecs.container"
DOCKER_PLUGIN = "docker"
PROCESS_PLUGIN = "process"
PYTHON_PLUGIN = "python"

_PROCESS_START = time.time()


class FromField(BaseModel):
    """Origin of a span record."""

    hl: bool = False
    cp: str = ""
    e: str


class SpanRecord(BaseModel):
    """One finished span as posted to ``/traces``.

    ``f`` stays empty until the record is sent, when the host identity is known.
    """

    t: str
    s: str
    p: str | None = None
    n: str
    ts: int
    d: int
    k: int
    ec: int = 0
    f: FromField | None = None
    data: dict[str, Any] = Field(default_factory=dict)

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(mode="json", exclude_none=True)


class PluginPayload(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    name: str
    entity_id: str = Field(alias="entityId")
    data: dict[str, Any] = Field(default_factory=dict)


class MetricsPayload(BaseModel):
    """One snapshot as posted to ``/metrics``."""

    plugins: list[PluginPayload] = Field(default_factory=list)

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)

    def by_name(self, name: str) -> list[PluginPayload]:
        return [plugin for plugin in self.plugins if plugin.name == name]


def _wire_value(value: Any) -> Any:
    if value is None or isinstance(value, (str, int, float, bool)):
        return value
    return str(value)


def span_record(span: Span) -> SpanRecord:
    """Convert a finished span into its wire record (without the origin field)."""
    context = span.context
    data: dict[str, Any] = {
        "service": span.service or "",
        "tags": {key: _wire_value(value) for key, value in span.tags.items()},
    }
    if context.baggage:
        data["baggage"] = dict(context.baggage)

    return SpanRecord(
        t=format_id(context.trace_id),
        s=format_id(context.span_id),
        p=format_id(context.parent_id) if context.parent_id else None,
        n=span.operation,
        ts=int(span.start_time * 1000),
        d=int((span.duration or 0.0) * 1000),
        k=int(span.kind),
        ec=span.error_count,
        data=data,
    )


def from_field(identity: HostIdentity) -> FromField:
    if identity.is_known:
        return FromField(
            hl=identity.is_serverless, cp=identity.cloud_provider or "", e=identity.entity_id
        )
    return FromField(e=str(os.getpid()))


def host_header(identity: HostIdentity) -> str:
    """Value of the host header: the entity id, or the hostname when the identity is unknown."""
    if identity.is_known and identity.entity_id:
        return identity.entity_id
    return socket.gethostname()


def _task_plugin(task: TaskIdentity) -> PluginPayload:
    return PluginPayload(
        name=TASK_PLUGIN,
        entity_id=task.entity_id,
        data={
            "taskArn": task.entity_id,
            "clusterArn": task.cluster,
            "taskDefinition": task.family,
            "taskDefinitionVersion": task.revision,
            "availabilityZone": task.availability_zone,
            "desiredStatus": task.desired_status,
            "knownStatus": task.known_status,
            "pullStartedAt": task.pull_started_at,
            "pullStoppedAt": task.pull_stopped_at,
            "limits": {"cpu": task.limits.cpu, "memory": task.limits.memory},
        },
    )


def _container_plugin(container: ContainerIdentity, task: TaskIdentity) -> PluginPayload:
    data: dict[str, Any] = {
        "taskArn": container.task_arn,
        "containerName": container.container_name,
        "dockerId": container.docker_id,
        "dockerName": container.docker_name,
        "image": container.image,
        "imageId": container.image_id,
        "clusterArn": task.cluster,
        "taskDefinition": task.family,
        "taskDefinitionVersion": task.revision,
        "desiredStatus": container.desired_status,
        "knownStatus": container.known_status,
        "createdAt": container.created_at,
        "startedAt": container.started_at,
        "limits": {"cpu": container.limits.cpu, "memory": container.limits.memory},
    }
    if container.instrumented:
        data["instrumented"] = True
        data["runtime"] = container.runtime
    return PluginPayload(name=CONTAINER_PLUGIN, entity_id=container.entity_id, data=data)


def _docker_plugin(container: ContainerIdentity) -> PluginPayload:
    return PluginPayload(
        name=DOCKER_PLUGIN,
        entity_id=container.entity_id,
        data={
            "Id": container.docker_id,
            "Names": [container.docker_name] if container.docker_name else [],
            "Image": container.image,
            "Labels": dict(container.labels),
            "Created": container.created_at,
            "Started": container.started_at,
        },
    )


def _current_user() -> str | None:
    try:
        return getpass.getuser()
    except (KeyError, OSError):
        # no passwd entry and no login env vars, common in minimal containers
        return None


def _process_plugin(identity: HostIdentity, own: ContainerIdentity | None) -> PluginPayload:
    data: dict[str, Any] = {
        "pid": os.getpid(),
        "exec": sys.executable,
        "args": list(sys.argv[1:]),
        "user": _current_user(),
        "start": int(_PROCESS_START * 1000),
    }
    if own is not None:
        data["containerType"] = "docker"
        data["container"] = own.docker_id
    if identity.task is not None:
        data["hostName"] = identity.task.entity_id
    else:
        data["hostName"] = socket.gethostname()
    return PluginPayload(name=PROCESS_PLUGIN, entity_id=str(os.getpid()), data=data)


def runtime_metrics() -> dict[str, Any]:
    """Interpreter metrics: thread count, gc generation counts and collections, max RSS."""
    gc_stats = gc.get_stats()
    metrics: dict[str, Any] = {
        "threads": threading.active_count(),
        "gc": {
            "count": list(gc.get_count()),
            "collections": [generation["collections"] for generation in gc_stats],
            "collected": [generation["collected"] for generation in gc_stats],
            "uncollectable": [generation["uncollectable"] for generation in gc_stats],
        },
    }
    if sys.platform != "win32":
        import resource

        max_rss = resource.getrusage(resource.RUSAGE_SELF).ru_maxrss
        # bytes on macOS, kilobytes elsewhere
        metrics["max_rss_kb"] = max_rss // 1024 if sys.platform == "darwin" else max_rss
    return metrics


def _python_plugin(service_name: str | None) -> PluginPayload:
    return PluginPayload(
        name=PYTHON_PLUGIN,
        entity_id=str(os.getpid()),
        data={
            "pid": os.getpid(),
            "name": service_name or os.path.basename(sys.argv[0] or sys.executable),
            "version": platform.python_version(),
            "implementation": platform.python_implementation(),
            "metrics": runtime_metrics(),
        },
    )


def build_metrics_payload(
    identity: HostIdentity, *, service_name: str | None = None
) -> MetricsPayload:
    """Build one metrics snapshot for ``identity``.

    ECS plugins are only present when the identity carries task metadata.
    """
    plugins: list[PluginPayload] = []
    own = identity.instrumented_container()

    if identity.task is not None:
        plugins.append(_task_plugin(identity.task))
        plugins.extend(_container_plugin(c, identity.task) for c in identity.containers)
    if own is not None:
        plugins.append(_docker_plugin(own))

    plugins.append(_process_plugin(identity, own))
    plugins.append(_python_plugin(service_name))
    return MetricsPayload(plugins=plugins)
