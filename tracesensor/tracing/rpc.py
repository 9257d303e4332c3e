"""RPC span helpers shared by gRPC-style instrumentation adapters.

Adapters hand in the call metadata as a list of ``(key, value)`` pairs; no
RPC library is imported here.
"""

from __future__ import annotations

import functools
import inspect
import logging
from typing import TYPE_CHECKING, Any

from .propagation import RPCMetadataCarrier
from .span import Span, SpanKind

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable

    from .context import SpanContext
    from .tracer import Tracer

logger = logging.getLogger(__name__)

AUTHORITY_KEY = ":authority"

SERVER_SPAN_NAME = "rpc-server"
CLIENT_SPAN_NAME = "rpc-client"


def split_host_port(address: str) -> tuple[str, str]:
    """Split ``host:port``, ``[v6]:port``, ``[v6]`` or a bare host.

    When the address cannot be split, the whole value is taken as the host.
    """
    address = address.strip()
    if address.startswith("["):
        host, sep, rest = address[1:].partition("]")
        if not sep:
            return address, ""
        if rest.startswith(":") and rest[1:].isdigit():
            return host, rest[1:]
        return host, ""

    host, sep, port = address.rpartition(":")
    if not sep:
        return address, ""
    if ":" in host:
        # unbracketed IPv6 literal, no port can be told apart
        return address, ""
    if not port.isdigit() or not host:
        return address, ""
    return host, port


def extract_server_addr(metadata: Iterable[tuple[str, Any]] | None) -> tuple[str, str]:
    """Host and port the client addressed, taken from the ``:authority`` entry."""
    if not metadata:
        return "", ""

    for key, value in metadata:
        if key.lower() == AUTHORITY_KEY and isinstance(value, str) and value:
            return split_host_port(value)
    return "", ""


def start_server_span(
    tracer: Tracer,
    method: str,
    call_type: str = "unary",
    metadata: Iterable[tuple[str, Any]] | None = None,
) -> Span:
    """Start the entry span of an incoming call, continuing the caller's trace if any."""
    tags: dict[str, Any] = {
        "rpc.flavor": "grpc",
        "rpc.call": method,
        "rpc.call_type": call_type,
    }

    if metadata is None:
        logger.debug("No request metadata for %s, starting a new trace", method)
        return tracer.start_span(SERVER_SPAN_NAME, kind=SpanKind.ENTRY, tags=tags)

    pairs = list(metadata)
    host, port = extract_server_addr(pairs)
    if host:
        tags["rpc.host"] = host
        tags["rpc.port"] = port

    parent = tracer.remote_context(RPCMetadataCarrier(pairs))
    return tracer.start_span(SERVER_SPAN_NAME, child_of=parent, kind=SpanKind.ENTRY, tags=tags)


def start_client_span(
    tracer: Tracer,
    parent: SpanContext | Span | None,
    method: str,
    metadata: list[tuple[str, Any]],
    *,
    target: str | None = None,
    call_type: str = "unary",
) -> Span:
    """Start the exit span of an outgoing call and inject it into ``metadata``."""
    tags: dict[str, Any] = {
        "rpc.flavor": "grpc",
        "rpc.call": method,
        "rpc.call_type": call_type,
    }
    if target:
        host, port = split_host_port(target)
        tags["rpc.host"] = host
        tags["rpc.port"] = port

    span = tracer.start_span(CLIENT_SPAN_NAME, child_of=parent, kind=SpanKind.EXIT, tags=tags)
    tracer.inject(span, RPCMetadataCarrier(metadata))
    return span


def _invocation_metadata(context: Any) -> list[tuple[str, Any]] | None:
    getter = getattr(context, "invocation_metadata", None)
    if getter is None:
        return None
    try:
        return [(item[0], item[1]) for item in getter() or ()]
    except Exception as e:
        logger.debug("Failed to read invocation metadata: %s", e)
        return None


def traced_handler(
    tracer: Tracer, method: str, call_type: str = "unary"
) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
    """Wrap an RPC handler so every call runs inside a server span.

    The wrapped function is called as ``fn(*args, request, context, span)``:
    the adapter-facing wrapper keeps the ``(..., request, context)`` signature
    and appends the server span, so the handler can start child spans from it.
    ``context`` is expected to expose ``invocation_metadata()`` like a gRPC
    servicer context; without it the call starts a new trace.

    Errors raised by the handler are recorded on the span and re-raised.
    Generator handlers (response streaming) keep the span open until the
    stream is exhausted.
    """

    def decorator(fn: Callable[..., Any]) -> Callable[..., Any]:
        if inspect.isgeneratorfunction(fn):

            @functools.wraps(fn)
            def stream_wrapper(*args: Any, **kwargs: Any) -> Any:
                *head, request, context = args
                with start_server_span(
                    tracer, method, call_type, _invocation_metadata(context)
                ) as span:
                    yield from fn(*head, request, context, span, **kwargs)

            return stream_wrapper

        if inspect.iscoroutinefunction(fn):

            @functools.wraps(fn)
            async def async_wrapper(*args: Any, **kwargs: Any) -> Any:
                *head, request, context = args
                with start_server_span(
                    tracer, method, call_type, _invocation_metadata(context)
                ) as span:
                    return await fn(*head, request, context, span, **kwargs)

            return async_wrapper

        @functools.wraps(fn)
        def sync_wrapper(*args: Any, **kwargs: Any) -> Any:
            *head, request, context = args
            metadata = _invocation_metadata(context)
            with start_server_span(tracer, method, call_type, metadata) as span:
                return fn(*head, request, context, span, **kwargs)

        return sync_wrapper

    return decorator
