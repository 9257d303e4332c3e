"""Span context value object and its derivation rules."""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass, field

from .ids import IDGenerator, format_id, generate_id

__all__ = ["SpanContext", "derive_context", "new_root_context"]


@dataclass(frozen=True)
class SpanContext:
    """Identifies a span within a trace and carries its baggage.

    Instances are never modified after construction. ``with_baggage_item``
    and ``clone`` return new contexts backed by their own baggage dict, so a
    descendant can never change what its ancestor sees.
    """

    trace_id: int
    span_id: int
    parent_id: int = 0
    sampled: bool = False
    # compared but not hashed, dicts are unhashable
    baggage: dict[str, str] = field(default_factory=dict, hash=False)

    @property
    def is_root(self) -> bool:
        return self.parent_id == 0

    def with_baggage_item(self, key: str, value: str) -> SpanContext:
        """Return a copy of this context with ``key`` set to ``value`` in its baggage."""
        baggage = dict(self.baggage)
        baggage[key] = value
        return dataclasses.replace(self, baggage=baggage)

    def clone(self) -> SpanContext:
        return dataclasses.replace(self, baggage=dict(self.baggage))

    def __repr__(self) -> str:
        return (
            f"SpanContext(trace_id={format_id(self.trace_id)!r}, "
            f"span_id={format_id(self.span_id)!r}, parent_id={format_id(self.parent_id)!r}, "
            f"sampled={self.sampled!r}, baggage={self.baggage!r})"
        )


def new_root_context(generator: IDGenerator | None = None) -> SpanContext:
    """Start a new trace. The root span shares its id with the trace."""
    trace_id = generator.new_id() if generator is not None else generate_id()
    return SpanContext(trace_id=trace_id, span_id=trace_id)


def derive_context(parent: SpanContext, generator: IDGenerator | None = None) -> SpanContext:
    """Create the context of a child span of ``parent``."""
    new_id = generator.new_id if generator is not None else generate_id
    span_id = new_id()
    while span_id in (parent.span_id, parent.trace_id):
        span_id = new_id()

    return SpanContext(
        trace_id=parent.trace_id,
        span_id=span_id,
        parent_id=parent.span_id,
        sampled=parent.sampled,
        baggage=dict(parent.baggage),
    )
