"""Host identity resolution and telemetry delivery to the collector."""

from __future__ import annotations

from .client import (
    AgentEndpoint,
    CollectorClient,
    CollectorStats,
    EndpointState,
    TelemetryKind,
)
from .identity import (
    ContainerIdentity,
    EcsMetadataStrategy,
    EntityKind,
    HostIdentity,
    HostIdentityResolver,
    ResolutionState,
    TaskIdentity,
)
from .payloads import MetricsPayload, SpanRecord, build_metrics_payload, span_record
from .queue import BoundedQueue

__all__ = [
    "AgentEndpoint",
    "BoundedQueue",
    "CollectorClient",
    "CollectorStats",
    "ContainerIdentity",
    "EcsMetadataStrategy",
    "EndpointState",
    "EntityKind",
    "HostIdentity",
    "HostIdentityResolver",
    "MetricsPayload",
    "ResolutionState",
    "SpanRecord",
    "TaskIdentity",
    "TelemetryKind",
    "build_metrics_payload",
    "span_record",
]
