"""Trace context model, span lifecycle and context propagation."""

from __future__ import annotations

from .context import SpanContext, derive_context, new_root_context
from .ids import IDGenerator, format_id, generate_id, parse_id
from .propagation import (
    CarrierFormat,
    Extractable,
    ExtractError,
    ExtractResult,
    HTTPHeadersCarrier,
    Injectable,
    Propagator,
    RPCMetadataCarrier,
)
from .recorder import InMemoryRecorder, NoopRecorder
from .span import Span, SpanKind, SpanRecorder
from .tracer import Tracer

__all__ = [
    "CarrierFormat",
    "ExtractError",
    "ExtractResult",
    "Extractable",
    "HTTPHeadersCarrier",
    "IDGenerator",
    "InMemoryRecorder",
    "Injectable",
    "NoopRecorder",
    "Propagator",
    "RPCMetadataCarrier",
    "Span",
    "SpanContext",
    "SpanKind",
    "SpanRecorder",
    "Tracer",
    "derive_context",
    "format_id",
    "generate_id",
    "new_root_context",
    "parse_id",
]
