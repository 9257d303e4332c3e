"""Span lifecycle API used by instrumentation adapters.

A ``Tracer`` is an explicit object: adapters receive it (usually through a
``Sensor``) and parents are passed explicitly as ``child_of``. There is no
ambient "current span".
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from tracesensor.shared.exceptions import UnsupportedCarrierError

from .context import SpanContext, derive_context, new_root_context
from .propagation import ExtractError, ExtractResult, Propagator
from .span import Span, SpanKind

if TYPE_CHECKING:
    from .ids import IDGenerator
    from .propagation import Extractable, Injectable
    from .span import SpanRecorder

logger = logging.getLogger(__name__)

__all__ = ["Tracer"]


class Tracer:
    """Starts spans and moves their contexts across process boundaries."""

    def __init__(
        self,
        recorder: SpanRecorder,
        *,
        service_name: str | None = None,
        id_generator: IDGenerator | None = None,
        propagator: Propagator | None = None,
    ) -> None:
        self.recorder = recorder
        self.service_name = service_name
        self.id_generator = id_generator
        self.propagator = propagator or Propagator()

    def start_span(
        self,
        operation: str,
        *,
        child_of: SpanContext | Span | None = None,
        kind: SpanKind = SpanKind.INTERMEDIATE,
        tags: dict[str, Any] | None = None,
        start_time: float | None = None,
    ) -> Span:
        """Start a span, as a child of ``child_of`` or as the root of a new trace."""
        if isinstance(child_of, Span):
            child_of = child_of.context

        if child_of is None:
            context = new_root_context(self.id_generator)
        else:
            context = derive_context(child_of, self.id_generator)

        return Span(
            self.recorder,
            operation,
            context,
            kind=kind,
            tags=tags,
            start_time=start_time,
            service=self.service_name,
        )

    def inject(self, context: SpanContext | Span, carrier: Injectable) -> None:
        if isinstance(context, Span):
            context = context.context
        self.propagator.inject(context, carrier)

    def extract(self, carrier: Extractable) -> ExtractResult:
        return self.propagator.extract(carrier)

    def start_span_from_carrier(
        self,
        operation: str,
        carrier: Extractable,
        *,
        kind: SpanKind = SpanKind.ENTRY,
        tags: dict[str, Any] | None = None,
    ) -> Span:
        """Continue the trace found in ``carrier``, or start a new one.

        A missing or malformed context is not an error here: the request is
        simply traced from a fresh root.

        Raises:
            UnsupportedCarrierError: if ``carrier`` is not a known carrier type.
        """
        return self.start_span(
            operation, child_of=self.remote_context(carrier), kind=kind, tags=tags
        )

    def remote_context(self, carrier: Extractable) -> SpanContext | None:
        """Extract the remote parent from ``carrier``, ``None`` when there is none to use.

        Raises:
            UnsupportedCarrierError: if ``carrier`` is not a known carrier type.
        """
        context, error = self.extract(carrier)
        if error is None:
            return context
        if error is ExtractError.UNSUPPORTED_CARRIER:
            raise UnsupportedCarrierError(
                f"cannot extract from {type(carrier).__name__}, "
                "wrap it in HTTPHeadersCarrier or RPCMetadataCarrier"
            )
        if error is ExtractError.MALFORMED:
            logger.debug("Ignoring malformed upstream trace context, starting a new trace")
        return None
