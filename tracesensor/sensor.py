"""The sensor wires a tracer to the collector client and host identity resolver.

Instrumentation adapters should be handed a ``Sensor`` (or its ``tracer``)
explicitly. ``init_sensor()``/``get_sensor()`` keep one process-wide default
for applications that want it.
"""

from __future__ import annotations

import atexit
import logging
import threading
from typing import TYPE_CHECKING, Any

from tracesensor.collector.client import CollectorClient
from tracesensor.collector.identity import HostIdentityResolver
from tracesensor.settings import get_settings
from tracesensor.shared.hints import AGENT_KEY_MISSING, log_hints
from tracesensor.tracing.recorder import NoopRecorder
from tracesensor.tracing.tracer import Tracer

if TYPE_CHECKING:
    from types import TracebackType

    import httpx

    from tracesensor.settings import Settings
    from tracesensor.tracing.span import SpanRecorder

logger = logging.getLogger(__name__)


class Sensor:
    """One tracer plus the delivery pipeline behind it."""

    def __init__(
        self,
        service_name: str | None = None,
        *,
        settings: Settings | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        metadata_client: httpx.Client | None = None,
        recorder: SpanRecorder | None = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.service_name = service_name or self.settings.service_name
        self.resolver = HostIdentityResolver(self.settings, client=metadata_client)
        self.collector = CollectorClient(
            self.settings,
            resolver=self.resolver,
            transport=transport,
            service_name=self.service_name,
        )

        if recorder is None:
            recorder = self.collector if self.settings.telemetry_enabled else NoopRecorder()
        self.tracer = Tracer(recorder, service_name=self.service_name)

        if self.settings.endpoint_url and not self.settings.agent_key:
            logger.warning(
                "Endpoint URL %s configured without an agent key", self.settings.endpoint_url
            )
            log_hints([AGENT_KEY_MISSING])

    def start(self) -> Sensor:
        if self.settings.telemetry_enabled:
            self.collector.start()
        else:
            logger.debug("Telemetry disabled, collector worker not started")
        return self

    def flush(self, timeout: float = 5.0) -> None:
        self.collector.flush(timeout)

    def shutdown(self, timeout: float = 10.0) -> None:
        self.collector.shutdown(timeout)

    def __enter__(self) -> Sensor:
        return self.start()

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        self.shutdown()


_default_sensor: Sensor | None = None
_default_lock = threading.Lock()


def init_sensor(service_name: str | None = None, **kwargs: Any) -> Sensor:
    """Create and start the process-wide sensor. Later calls return the existing one."""
    global _default_sensor
    with _default_lock:
        if _default_sensor is None:
            _default_sensor = Sensor(service_name, **kwargs).start()
            atexit.register(_default_sensor.shutdown)
        elif service_name and service_name != _default_sensor.service_name:
            logger.warning(
                "Sensor already initialized for %s, ignoring %s",
                _default_sensor.service_name,
                service_name,
            )
        return _default_sensor


def get_sensor() -> Sensor | None:
    """The process-wide sensor, or None if ``init_sensor()`` was never called."""
    return _default_sensor


def _reset_default_sensor() -> None:
    global _default_sensor
    with _default_lock:
        sensor, _default_sensor = _default_sensor, None
    if sensor is not None:
        atexit.unregister(sensor.shutdown)
        sensor.shutdown()
