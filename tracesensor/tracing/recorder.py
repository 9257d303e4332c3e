"""Span recorders that keep finished spans in process."""

from __future__ import annotations

import logging
import threading
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .span import Span

logger = logging.getLogger(__name__)


class InMemoryRecorder:
    """Collects finished spans in memory, for tests and local debugging."""

    def __init__(self) -> None:
        self._spans: list[Span] = []
        self._lock = threading.Lock()

    def record(self, span: Span) -> None:
        """Thread-safe span addition."""
        with self._lock:
            self._spans.append(span)

    @property
    def spans(self) -> list[Span]:
        with self._lock:
            return list(self._spans)

    def clear(self) -> None:
        with self._lock:
            self._spans.clear()


class NoopRecorder:
    """Discards every span. Used when telemetry is disabled."""

    def record(self, span: Span) -> None:
        logger.debug("Telemetry disabled, dropping span %s", span.operation)
