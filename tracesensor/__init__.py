"""tracesensor.

In-process tracing sensor: trace context propagation, host identity resolution
and delivery of spans and metrics to a collector.
"""

from __future__ import annotations

from .collector import CollectorClient, HostIdentity, HostIdentityResolver
from .sensor import Sensor, get_sensor, init_sensor
from .settings import settings
from .tracing import (
    ExtractError,
    HTTPHeadersCarrier,
    Propagator,
    RPCMetadataCarrier,
    Span,
    SpanContext,
    Tracer,
    derive_context,
    new_root_context,
)

__all__ = [
    "CollectorClient",
    "ExtractError",
    "HTTPHeadersCarrier",
    "HostIdentity",
    "HostIdentityResolver",
    "Propagator",
    "RPCMetadataCarrier",
    "Sensor",
    "Span",
    "SpanContext",
    "Tracer",
    "derive_context",
    "get_sensor",
    "init_sensor",
    "new_root_context",
    "settings",
]

try:
    from .version import __version__
except ImportError:
    __version__ = "unknown"
