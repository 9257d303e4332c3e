"""Wire codec moving span contexts across HTTP and RPC boundaries.

Carrier keys are matched case-insensitively and written in lower case:

- ``trace-id``: trace id, hex
- ``span-id``: id of the sending span, hex
- ``level``: sampling flag, ``0`` or ``1``
- ``baggage-<name>``: one entry per baggage item, value percent-encoded

Extraction never raises. A missing or broken context is reported through
``ExtractResult.error`` so that the caller can start a new trace and carry on
with the request.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, MutableMapping
from enum import Enum
from typing import Any, ClassVar, NamedTuple, Protocol, runtime_checkable
from urllib.parse import quote, unquote

from tracesensor.shared.exceptions import UnsupportedCarrierError

from .context import SpanContext
from .ids import format_id, parse_id

logger = logging.getLogger(__name__)

TRACE_ID_KEY = "trace-id"
SPAN_ID_KEY = "span-id"
LEVEL_KEY = "level"
BAGGAGE_PREFIX = "baggage-"

_CONTEXT_KEYS = frozenset({TRACE_ID_KEY, SPAN_ID_KEY, LEVEL_KEY})


class CarrierFormat(str, Enum):
    HTTP_HEADERS = "http_headers"
    RPC_METADATA = "rpc_metadata"


class ExtractError(str, Enum):
    """Why a carrier did not yield a context."""

    NOT_FOUND = "not_found"
    MALFORMED = "malformed"
    UNSUPPORTED_CARRIER = "unsupported_carrier"


class ExtractResult(NamedTuple):
    context: SpanContext | None
    error: ExtractError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


@runtime_checkable
class Injectable(Protocol):
    """A carrier that can receive context entries."""

    format: ClassVar[CarrierFormat]

    def set(self, key: str, value: str) -> None: ...

    def remove(self, key: str) -> None: ...

    def keys(self) -> list[str]: ...


@runtime_checkable
class Extractable(Protocol):
    """A carrier that context entries can be read from."""

    format: ClassVar[CarrierFormat]

    def items(self) -> Iterable[tuple[str, str]]: ...


class HTTPHeadersCarrier:
    """Wraps a header mapping (a plain dict, ``httpx.Headers``, WSGI-style dicts...)."""

    format: ClassVar[CarrierFormat] = CarrierFormat.HTTP_HEADERS

    def __init__(self, headers: MutableMapping[str, str] | None = None) -> None:
        self.headers: MutableMapping[str, str] = headers if headers is not None else {}

    def items(self) -> list[tuple[str, str]]:
        return list(self.headers.items())

    def keys(self) -> list[str]:
        return list(self.headers.keys())

    def remove(self, key: str) -> None:
        key = key.lower()
        for existing in [k for k in self.headers if k.lower() == key]:
            del self.headers[existing]

    def set(self, key: str, value: str) -> None:
        self.remove(key)
        self.headers[key] = value


class RPCMetadataCarrier:
    """Wraps RPC call metadata given as a list of ``(key, value)`` pairs.

    This is the shape gRPC uses for both ``invocation_metadata()`` and the
    ``metadata`` argument of outgoing calls. The list is modified in place.
    """

    format: ClassVar[CarrierFormat] = CarrierFormat.RPC_METADATA

    def __init__(self, metadata: list[tuple[str, Any]] | None = None) -> None:
        self.metadata: list[tuple[str, Any]] = metadata if metadata is not None else []

    def items(self) -> list[tuple[str, str]]:
        pairs = []
        for key, value in self.metadata:
            # binary ("-bin") entries never hold context keys
            if isinstance(value, bytes):
                continue
            pairs.append((key, value))
        return pairs

    def keys(self) -> list[str]:
        return [key for key, _ in self.metadata]

    def get(self, key: str) -> str | None:
        """First value stored under ``key`` (case-insensitive), if any."""
        key = key.lower()
        for existing, value in self.items():
            if existing.lower() == key:
                return value
        return None

    def remove(self, key: str) -> None:
        key = key.lower()
        self.metadata[:] = [(k, v) for k, v in self.metadata if k.lower() != key]

    def set(self, key: str, value: str) -> None:
        self.remove(key)
        self.metadata.append((key, value))


_SUPPORTED_FORMATS = frozenset(CarrierFormat)


def _carrier_format(carrier: Any) -> CarrierFormat | None:
    fmt = getattr(carrier, "format", None)
    if fmt in _SUPPORTED_FORMATS:
        return fmt
    return None


class Propagator:
    """Injects span contexts into carriers and extracts them back."""

    def inject(self, context: SpanContext, carrier: Injectable) -> None:
        """Write ``context`` into ``carrier``, replacing entries from earlier injects.

        Raises:
            UnsupportedCarrierError: if ``carrier`` is not one of the known carrier types.
        """
        if _carrier_format(carrier) is None:
            raise UnsupportedCarrierError(
                f"cannot inject into {type(carrier).__name__}, "
                "wrap it in HTTPHeadersCarrier or RPCMetadataCarrier"
            )

        for key in carrier.keys():
            if key.lower().startswith(BAGGAGE_PREFIX):
                carrier.remove(key)

        carrier.set(TRACE_ID_KEY, format_id(context.trace_id))
        carrier.set(SPAN_ID_KEY, format_id(context.span_id))
        carrier.set(LEVEL_KEY, "1" if context.sampled else "0")
        for name, value in context.baggage.items():
            carrier.set(BAGGAGE_PREFIX + name.lower(), quote(value, safe=""))

    def extract(self, carrier: Extractable) -> ExtractResult:
        """Read a span context from ``carrier``.

        The returned context describes the remote span: derive from it to
        create the local span.
        """
        if _carrier_format(carrier) is None:
            return ExtractResult(None, ExtractError.UNSUPPORTED_CARRIER)

        found: dict[str, str] = {}
        baggage: dict[str, str] = {}
        for key, value in carrier.items():
            name = key.lower()
            if name in _CONTEXT_KEYS:
                found[name] = value
            elif name.startswith(BAGGAGE_PREFIX) and len(name) > len(BAGGAGE_PREFIX):
                baggage[name[len(BAGGAGE_PREFIX) :]] = unquote(value)

        if TRACE_ID_KEY not in found and SPAN_ID_KEY not in found:
            return ExtractResult(None, ExtractError.NOT_FOUND)

        try:
            trace_id = parse_id(found[TRACE_ID_KEY])
            span_id = parse_id(found[SPAN_ID_KEY])
        except (KeyError, ValueError) as e:
            logger.debug("Malformed trace context in %s carrier: %s", carrier.format.value, e)
            return ExtractResult(None, ExtractError.MALFORMED)

        level = found.get(LEVEL_KEY, "0").strip()
        if level not in ("0", "1"):
            logger.debug("Malformed sampling level %r in %s carrier", level, carrier.format.value)
            return ExtractResult(None, ExtractError.MALFORMED)

        return ExtractResult(
            SpanContext(
                trace_id=trace_id,
                span_id=span_id,
                sampled=level == "1",
                baggage=baggage,
            )
        )
