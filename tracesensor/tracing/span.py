from __future__ import annotations

import logging
import threading
import time
from enum import IntEnum
from typing import TYPE_CHECKING, Any, Protocol

if TYPE_CHECKING:
    from types import TracebackType

    from .context import SpanContext

logger = logging.getLogger(__name__)

__all__ = ["Span", "SpanKind", "SpanRecorder"]


class SpanKind(IntEnum):
    """Direction of a span relative to this process, as encoded on the wire."""

    ENTRY = 1
    EXIT = 2
    INTERMEDIATE = 3


class SpanRecorder(Protocol):
    """Receives spans once they are finished."""

    def record(self, span: Span) -> None: ...


class Span:
    """One unit of work within a trace.

    Use it as a context manager to have it finished automatically. An
    exception raised inside the block is attached to the span and then
    propagates unchanged.
    """

    def __init__(
        self,
        on_finish: SpanRecorder,
        operation: str,
        context: SpanContext,
        *,
        kind: SpanKind = SpanKind.INTERMEDIATE,
        tags: dict[str, Any] | None = None,
        start_time: float | None = None,
        service: str | None = None,
    ) -> None:
        self.operation = operation
        self.kind = kind
        self.service = service
        self.tags: dict[str, Any] = dict(tags or {})
        self.start_time = start_time if start_time is not None else time.time()
        self.duration: float | None = None
        self.error_count = 0
        self._context = context
        self._on_finish = on_finish
        self._lock = threading.Lock()

    @property
    def context(self) -> SpanContext:
        return self._context

    @property
    def finished(self) -> bool:
        return self.duration is not None

    def set_tag(self, key: str, value: Any) -> Span:
        self.tags[key] = value
        return self

    def set_baggage_item(self, key: str, value: str) -> Span:
        """Add a baggage item to this span and every span derived from it afterwards."""
        self._context = self._context.with_baggage_item(key, value)
        return self

    def baggage_item(self, key: str) -> str | None:
        return self._context.baggage.get(key)

    def log_error(self, error: BaseException) -> None:
        """Mark the span as failed and describe ``error`` in its tags."""
        self.error_count += 1
        self.tags["error"] = True
        self.tags["error.kind"] = type(error).__name__
        self.tags["error.message"] = str(error)

    def finish(self, finish_time: float | None = None) -> None:
        """Close the span and hand it to the recorder. Subsequent calls do nothing."""
        with self._lock:
            if self.duration is not None:
                return
            end = finish_time if finish_time is not None else time.time()
            self.duration = max(end - self.start_time, 0.0)

        try:
            self._on_finish.record(self)
        except Exception as e:
            # Recording must never break the instrumented code path
            logger.debug("Failed to record span %s: %s", self.operation, e)

    def __enter__(self) -> Span:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        # GeneratorExit and friends are not failures of the traced work
        if isinstance(exc_val, Exception):
            self.log_error(exc_val)
        self.finish()

    def __repr__(self) -> str:
        return (
            f"Span(operation={self.operation!r}, kind={self.kind.name}, context={self._context!r})"
        )
