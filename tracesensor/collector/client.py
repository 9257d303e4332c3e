"""Delivery of spans and metric snapshots to the collector.

Producers (finishing spans, the metrics timer) only ever touch the bounded
queue. A daemon worker thread runs its own asyncio loop, drains the queue
every ``flush_interval`` seconds and posts the records in batches. Nothing in
this module raises into the instrumented application: failed batches are
counted, logged and dropped.
"""

from __future__ import annotations

import asyncio
import concurrent.futures
import dataclasses
import logging
import threading
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any

import httpx

from tracesensor.settings import get_settings
from tracesensor.shared.exceptions import (
    DeliveryFailedError,
    SensorConfigError,
    SensorException,
    SensorNetworkError,
    SensorTimeoutError,
)
from tracesensor.shared.requests import create_async_client, make_request

from .identity import HostIdentity, HostIdentityResolver
from .payloads import (
    MetricsPayload,
    SpanRecord,
    build_metrics_payload,
    from_field,
    host_header,
    span_record,
)
from .queue import BoundedQueue

if TYPE_CHECKING:
    from tracesensor.settings import Settings
    from tracesensor.tracing.span import Span

logger = logging.getLogger("tracesensor.collector")

KEY_HEADER = "X-Sensor-Key"
HOST_HEADER = "X-Sensor-Host"
TIME_HEADER = "X-Sensor-Time"

_PROBE_TIMEOUT = 1.0


class TelemetryKind(str, Enum):
    """Kind of record; the value is the collector path it is posted to."""

    SPANS = "traces"
    METRICS = "metrics"


class EndpointState(str, Enum):
    UNRESOLVED = "unresolved"
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"


@dataclass(frozen=True)
class AgentEndpoint:
    base_url: str
    source: str

    def url_for(self, kind: TelemetryKind) -> str:
        return f"{self.base_url.rstrip('/')}/{kind.value}"


@dataclass
class CollectorStats:
    sent_batches: int = 0
    sent_records: int = 0
    failed_batches: int = 0
    dropped_records: int = 0


@dataclass
class _QueuedRecord:
    kind: TelemetryKind
    payload: SpanRecord | MetricsPayload
    enqueued_at: float = field(default_factory=time.time)


class CollectorClient:
    """Buffers telemetry and delivers it to the discovered collector endpoint.

    Also acts as the tracer's span recorder: ``record(span)`` converts and
    enqueues the span.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        *,
        resolver: HostIdentityResolver | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        service_name: str | None = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.resolver = resolver or HostIdentityResolver(self.settings)
        self.service_name = service_name or self.settings.service_name
        if self.settings.queue_size < 1 or self.settings.max_batch_size < 1:
            raise SensorConfigError(
                "TRACESENSOR_QUEUE_SIZE and TRACESENSOR_MAX_BATCH_SIZE must be at least 1"
            )
        self._transport = transport
        self._queue: BoundedQueue[_QueuedRecord] = BoundedQueue(self.settings.queue_size)

        self._state_lock = threading.Lock()
        self._endpoint: AgentEndpoint | None = None
        self._endpoint_state = EndpointState.UNRESOLVED
        self._stats = CollectorStats()

        # Worker thread and loop
        self._worker_lock = threading.Lock()
        self._worker_thread: threading.Thread | None = None
        self._worker_loop: asyncio.AbstractEventLoop | None = None
        self._worker_ready = threading.Event()
        self._wakeup: asyncio.Event | None = None
        self._stopping = False

    # --- state ---

    @property
    def endpoint(self) -> AgentEndpoint | None:
        return self._endpoint

    @property
    def endpoint_state(self) -> EndpointState:
        return self._endpoint_state

    @property
    def stats(self) -> CollectorStats:
        with self._state_lock:
            return dataclasses.replace(self._stats)

    @property
    def pending(self) -> int:
        return len(self._queue)

    def refresh_endpoint(self) -> None:
        """Forget the current endpoint; the next drain runs discovery again."""
        with self._state_lock:
            self._endpoint = None
            self._endpoint_state = EndpointState.UNRESOLVED

    # --- producers ---

    def _enqueue(self, kind: TelemetryKind, payload: SpanRecord | MetricsPayload) -> bool:
        if not self.settings.telemetry_enabled:
            return False
        if self._queue.put(_QueuedRecord(kind, payload)):
            return True
        with self._state_lock:
            self._stats.dropped_records += 1
        logger.debug("Delivery queue full, dropped the oldest record")
        return False

    def enqueue_span(self, record: SpanRecord) -> bool:
        """Queue a span record. Returns False if it was not queued or evicted an older record."""
        return self._enqueue(TelemetryKind.SPANS, record)

    def enqueue_metrics(self, payload: MetricsPayload) -> bool:
        return self._enqueue(TelemetryKind.METRICS, payload)

    def record(self, span: Span) -> None:
        self.enqueue_span(span_record(span))

    def collect_metrics(self) -> MetricsPayload:
        """Build a metrics snapshot, resolving the host identity first if needed."""
        return build_metrics_payload(self.resolver.resolve(), service_name=self.service_name)

    # --- delivery ---

    def _headers(self, identity: HostIdentity) -> dict[str, str]:
        headers = {
            HOST_HEADER: host_header(identity),
            TIME_HEADER: str(int(time.time() * 1000)),
        }
        if self.settings.agent_key:
            headers[KEY_HEADER] = self.settings.agent_key
        return headers

    def _candidates(self) -> list[AgentEndpoint]:
        candidates = []
        if self.settings.endpoint_url:
            candidates.append(AgentEndpoint(self.settings.endpoint_url, source="override"))
        candidates.append(
            AgentEndpoint(
                f"http://{self.settings.agent_host}:{self.settings.agent_port}", source="agent"
            )
        )
        return candidates

    async def _probe(self, client: httpx.AsyncClient, endpoint: AgentEndpoint) -> bool:
        try:
            await client.get(endpoint.base_url, timeout=_PROBE_TIMEOUT)
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            logger.debug("Collector candidate %s unreachable: %s", endpoint.base_url, e)
            return False
        return True

    async def discover_endpoint(
        self, client: httpx.AsyncClient | None = None
    ) -> AgentEndpoint | None:
        """Pick the first reachable candidate: the configured endpoint URL, then the local agent.

        Any HTTP response counts as reachable. When none is, the client moves
        to ``DISCONNECTED`` and ``None`` is returned.
        """
        if client is None:
            async with create_async_client(transport=self._transport) as own_client:
                return await self.discover_endpoint(own_client)

        for candidate in self._candidates():
            if await self._probe(client, candidate):
                with self._state_lock:
                    self._endpoint = candidate
                    self._endpoint_state = EndpointState.CONNECTED
                logger.info(
                    "Connected to collector at %s (%s)", candidate.base_url, candidate.source
                )
                return candidate

        with self._state_lock:
            was_disconnected = self._endpoint_state is EndpointState.DISCONNECTED
            self._endpoint = None
            self._endpoint_state = EndpointState.DISCONNECTED
        if not was_disconnected:
            logger.warning(
                "No collector endpoint reachable, buffering up to %d records",
                self._queue.capacity,
            )
        return None

    async def _ensure_endpoint(self, client: httpx.AsyncClient) -> AgentEndpoint | None:
        endpoint = self._endpoint
        if endpoint is not None and self._endpoint_state is EndpointState.CONNECTED:
            return endpoint
        return await self.discover_endpoint(client)

    def _mark_disconnected(self, endpoint: AgentEndpoint) -> None:
        with self._state_lock:
            if self._endpoint == endpoint:
                self._endpoint_state = EndpointState.DISCONNECTED

    def _body(self, kind: TelemetryKind, batch: list[Any]) -> Any:
        if kind is TelemetryKind.METRICS:
            return {
                "plugins": [
                    plugin.model_dump(mode="json", by_alias=True)
                    for payload in batch
                    for plugin in payload.plugins
                ]
            }

        origin = from_field(self.resolver.resolve())
        return [record.model_copy(update={"f": origin}).to_wire() for record in batch]

    async def _deliver(
        self, url: str, body: Any, headers: dict[str, str], client: httpx.AsyncClient
    ) -> None:
        attempts = max(self.settings.max_attempts, 1)
        try:
            await make_request(
                "POST",
                url,
                json=body,
                headers=headers,
                max_retries=attempts - 1,
                retry_delay=self.settings.retry_delay,
                max_retry_delay=self.settings.max_retry_delay,
                retry_status_codes=None,
                parse_json=False,
                client=client,
            )
        except SensorException as e:
            raise DeliveryFailedError(
                f"Delivery to {url} failed: {e}", e.attempts or attempts
            ) from e

    async def send(
        self,
        kind: TelemetryKind,
        batch: list[Any],
        *,
        client: httpx.AsyncClient | None = None,
    ) -> bool:
        """Post one batch. Returns True on a 2xx response, False once it has been dropped.

        Never raises.
        """
        if not batch:
            return True

        if client is None:
            async with create_async_client(transport=self._transport) as own_client:
                return await self.send(kind, batch, client=own_client)

        try:
            endpoint = await self._ensure_endpoint(client)
        except Exception:
            logger.exception("Collector endpoint discovery failed")
            endpoint = None
        if endpoint is None:
            self._count_failure(kind, len(batch), "no reachable collector endpoint")
            return False

        try:
            identity = self.resolver.resolve()
            body = self._body(kind, batch)
            await self._deliver(endpoint.url_for(kind), body, self._headers(identity), client)
        except DeliveryFailedError as e:
            if isinstance(e.__cause__, (SensorNetworkError, SensorTimeoutError)):
                self._mark_disconnected(endpoint)
            self._count_failure(kind, len(batch), str(e))
            return False
        except Exception:
            logger.exception("Unexpected error sending %s batch", kind.value)
            self._count_failure(kind, len(batch), "unexpected error")
            return False

        with self._state_lock:
            self._stats.sent_batches += 1
            self._stats.sent_records += len(batch)
        logger.debug("Delivered %d %s records to %s", len(batch), kind.value, endpoint.base_url)
        return True

    def _count_failure(self, kind: TelemetryKind, size: int, reason: str) -> None:
        with self._state_lock:
            self._stats.failed_batches += 1
        logger.warning("Dropping batch of %d %s records: %s", size, kind.value, reason)

    async def _send_with_timeout(
        self, kind: TelemetryKind, batch: list[Any], client: httpx.AsyncClient
    ) -> bool:
        try:
            return await asyncio.wait_for(
                self.send(kind, batch, client=client), timeout=self.settings.batch_timeout
            )
        except TimeoutError:
            self._count_failure(
                kind, len(batch), f"timed out after {self.settings.batch_timeout:.1f}s"
            )
            return False

    def _take_batches(self) -> list[tuple[TelemetryKind, list[Any]]]:
        spans: list[SpanRecord] = []
        batches: list[tuple[TelemetryKind, list[Any]]] = []
        for item in self._queue.drain():
            if item.kind is TelemetryKind.METRICS:
                batches.append((TelemetryKind.METRICS, [item.payload]))
            else:
                spans.append(item.payload)

        size = self.settings.max_batch_size
        for start in range(0, len(spans), size):
            batches.append((TelemetryKind.SPANS, spans[start : start + size]))
        return batches

    async def drain(self) -> None:
        """Run one delivery cycle over everything queued so far.

        While no endpoint is reachable, records stay queued for the next cycle.
        """
        if not len(self._queue):
            return

        await asyncio.to_thread(self.resolver.resolve)

        async with create_async_client(transport=self._transport) as client:
            if await self._ensure_endpoint(client) is None:
                return

            batches = self._take_batches()
            if not batches:
                return
            await asyncio.gather(
                *(self._send_with_timeout(kind, batch, client) for kind, batch in batches)
            )

    # --- worker ---

    @property
    def running(self) -> bool:
        return self._worker_thread is not None and self._worker_thread.is_alive()

    def start(self) -> None:
        """Start the background worker if it is not running yet."""
        with self._worker_lock:
            if self.running:
                return

            self._stopping = False
            self._worker_ready.clear()
            self._worker_thread = threading.Thread(
                target=self._run_worker_loop, daemon=True, name="TraceSensorWorker"
            )
            self._worker_thread.start()

            if not self._worker_ready.wait(timeout=5.0):
                logger.error("Collector worker failed to signal readiness within timeout")

    def _run_worker_loop(self) -> None:
        logger.debug("Collector worker thread: starting event loop")
        loop = asyncio.new_event_loop()
        asyncio.set_event_loop(loop)
        self._worker_loop = loop
        self._wakeup = asyncio.Event()
        self._worker_ready.set()

        try:
            loop.run_until_complete(self._worker_main())
        except Exception as e:
            logger.exception("Collector worker loop encountered an unhandled exception: %s", e)
        finally:
            self._worker_loop = None
            loop.close()
            logger.debug("Collector worker thread: event loop closed")

    async def _worker_main(self) -> None:
        assert self._wakeup is not None
        next_metrics = time.monotonic()

        while not self._stopping:
            if time.monotonic() >= next_metrics:
                next_metrics = time.monotonic() + self.settings.metrics_interval
                try:
                    self.enqueue_metrics(await asyncio.to_thread(self.collect_metrics))
                except Exception as e:
                    logger.warning("Failed to collect metrics snapshot: %s", e)

            try:
                await self.drain()
            except Exception as e:
                logger.exception("Error in collector drain cycle: %s", e)

            try:
                await asyncio.wait_for(self._wakeup.wait(), timeout=self.settings.flush_interval)
            except TimeoutError:
                pass
            self._wakeup.clear()

        # final drain so records finished before shutdown still go out
        try:
            await self.drain()
        except Exception as e:
            logger.exception("Error in final collector drain: %s", e)

    def flush(self, timeout: float = 5.0) -> None:
        """Deliver everything queued so far, waiting up to ``timeout`` seconds."""
        loop = self._worker_loop
        if loop is not None and loop.is_running():
            future = asyncio.run_coroutine_threadsafe(self.drain(), loop)
            try:
                future.result(timeout)
            except concurrent.futures.TimeoutError:
                logger.warning("Timed out flushing telemetry after %.1fs", timeout)
            except Exception as e:
                logger.warning("Error flushing telemetry: %s", e)
            return

        try:
            asyncio.get_running_loop()
        except RuntimeError:
            try:
                asyncio.run(self.drain())
            except Exception as e:
                logger.warning("Error flushing telemetry: %s", e)
            return
        logger.warning("flush() called from a running event loop without a worker, use drain()")

    def shutdown(self, timeout: float = 10.0) -> None:
        """Stop the worker after a final drain."""
        thread = self._worker_thread
        if thread is None:
            return

        self._stopping = True
        loop, wakeup = self._worker_loop, self._wakeup
        if loop is not None and wakeup is not None and loop.is_running():
            try:
                loop.call_soon_threadsafe(wakeup.set)
            except RuntimeError:
                logger.debug("Worker loop closed before wakeup could be delivered")

        thread.join(timeout)
        if thread.is_alive():
            logger.warning("Collector worker did not shut down cleanly after %.1fs", timeout)
        else:
            logger.debug("Collector worker stopped")
        self._worker_thread = None
