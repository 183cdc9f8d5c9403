"""Conversion event emission and delivery transports."""

import asyncio
import hashlib
import hmac
import logging
import threading
from collections import OrderedDict
from collections.abc import AsyncIterator, Awaitable, Callable, Sequence
from contextlib import asynccontextmanager
from typing import Any

import httpx
from tunelink import (
    DeveloperApp,
    InvariantError,
    MatchResult,
    Platform,
    PlaylistConversion,
    PlaylistMetadata,
)
from tunelink.models.enums import ErrorKind, EventType

from tunelink_api.schemas.events import (
    ConversionEvent,
    ConversionSummary,
    DoneEvent,
    ErrorEvent,
    MetadataEvent,
    TrackEvent,
    make_event_id,
)
from tunelink_api.services.protocols import Delivery

logger = logging.getLogger(__name__)

SIGNATURE_HEADER = "X-Tunelink-Signature"


class EventEmitter:
    """Turns conversion progress into ordered typed events.

    Per task, events follow metadata -> track* -> done, or error at any
    point (an error may precede metadata when the source playlist cannot
    be enumerated). Violations raise InvariantError and nothing is
    delivered. Call start() when a task run begins; a finished task must
    be started again before it emits anything.

    Events are handed to every delivery in call order and never buffered.
    Per-task bookkeeping is dropped once the terminal event is emitted.
    All methods are called from the event loop thread.
    """

    # Finished task IDs remembered to reject late events
    FINISHED_HISTORY = 1024

    def __init__(self, deliveries: Sequence[Delivery] = ()) -> None:
        self._deliveries = list(deliveries)
        # task_id -> metadata sent
        self._active: dict[str, bool] = {}
        # task_id -> extra deliveries for that run (e.g. the app's webhook)
        self._task_deliveries: dict[str, list[Delivery]] = {}
        self._finished: OrderedDict[str, None] = OrderedDict()

    def start(self, task_id: str, deliveries: Sequence[Delivery] = ()) -> None:
        """Begin a run of a task.

        Args:
            task_id: The task identifier.
            deliveries: Extra deliveries that receive this run's events only.
        """
        self._finished.pop(task_id, None)
        self._active[task_id] = False
        self._task_deliveries[task_id] = list(deliveries)

    def is_active(self, task_id: str) -> bool:
        return task_id in self._active

    # -------------------------------------------------------------------------
    # Public API: Emission
    # -------------------------------------------------------------------------

    def emit_metadata(
        self, task_id: str, platform: Platform, meta: PlaylistMetadata
    ) -> None:
        """Emit the source playlist metadata. Must come first and only once."""
        self._check_open(task_id, EventType.METADATA)
        if self._active[task_id]:
            raise InvariantError(f"Task {task_id[:8]} already emitted metadata")
        self._active[task_id] = True
        self._publish(
            task_id,
            MetadataEvent(
                event_id=make_event_id(task_id, EventType.METADATA, platform),
                task_id=task_id,
                platform=platform,
                meta=meta,
            ),
        )

    def emit_track(
        self, task_id: str, platform: Platform, index: int, result: MatchResult
    ) -> None:
        """Emit the outcome of one source track on one target platform.

        Args:
            task_id: The task identifier.
            platform: Target platform.
            index: 1-based position of the track in the source playlist.
            result: Match outcome; an omitted result carries an Omitted entry.
        """
        self._require_metadata(task_id, EventType.TRACK)
        self._publish(
            task_id,
            TrackEvent(
                event_id=make_event_id(
                    task_id, EventType.TRACK, platform, result.source.id, index
                ),
                task_id=task_id,
                platform=platform,
                index=index,
                source_track_id=result.source.id,
                track=result.chosen,
                score=result.score,
                omitted=result.to_omitted(index) if result.omitted else None,
            ),
        )

    def emit_done(self, task_id: str, conversion: PlaylistConversion) -> None:
        """Emit the terminal done event with the final result."""
        self._require_metadata(task_id, EventType.DONE)
        summary = ConversionSummary(
            status=conversion.status,
            total_tracks=conversion.meta.track_count,
            matched={p: r.matched_count for p, r in conversion.platforms.items()},
            omitted_count=len(conversion.omitted_tracks),
        )
        self._publish(
            task_id,
            DoneEvent(
                event_id=make_event_id(task_id, EventType.DONE),
                task_id=task_id,
                summary=summary,
                result=conversion,
            ),
        )
        self._finish(task_id)

    def emit_error(self, task_id: str, kind: ErrorKind, message: str) -> None:
        """Emit the terminal error event. Allowed before metadata."""
        self._check_open(task_id, EventType.ERROR)
        self._publish(
            task_id,
            ErrorEvent(
                event_id=make_event_id(task_id, EventType.ERROR),
                task_id=task_id,
                error_kind=kind,
                message=message,
            ),
        )
        self._finish(task_id)

    # -------------------------------------------------------------------------
    # Private: Ordering checks
    # -------------------------------------------------------------------------

    def _check_open(self, task_id: str, event_type: EventType) -> None:
        if task_id in self._finished:
            raise InvariantError(
                f"Task {task_id[:8]} emitted {event_type} after its terminal event"
            )
        if task_id not in self._active:
            raise InvariantError(
                f"Task {task_id[:8]} emitted {event_type} before the run started"
            )

    def _require_metadata(self, task_id: str, event_type: EventType) -> None:
        self._check_open(task_id, event_type)
        if not self._active[task_id]:
            raise InvariantError(
                f"Task {task_id[:8]} emitted {event_type} before metadata"
            )

    def _finish(self, task_id: str) -> None:
        self._active.pop(task_id, None)
        self._task_deliveries.pop(task_id, None)
        self._finished[task_id] = None
        if len(self._finished) > self.FINISHED_HISTORY:
            self._finished.popitem(last=False)

    def _publish(self, task_id: str, event: ConversionEvent) -> None:
        for delivery in [*self._deliveries, *self._task_deliveries.get(task_id, [])]:
            try:
                delivery.deliver(event)
            except Exception:
                logger.exception(
                    "Delivery %s failed for %s", type(delivery).__name__, event.event_id
                )


class EventStream:
    """In-process pub/sub of conversion events for SSE subscribers.

    Subscribers may filter on a task ID. Backpressure is handled by
    drop-oldest: if a subscriber's queue is full, the oldest event is
    dropped to make room for the new one.
    """

    SUBSCRIBER_QUEUE_SIZE = 100

    def __init__(self) -> None:
        self._subscribers: list[tuple[str | None, asyncio.Queue[ConversionEvent]]] = []
        self._lock = threading.Lock()

    @asynccontextmanager
    async def subscribe(
        self, task_id: str | None = None
    ) -> AsyncIterator[asyncio.Queue[ConversionEvent]]:
        """Subscribe to events via context manager.

        Args:
            task_id: Only receive events of this task. None receives all.
        """
        queue: asyncio.Queue[ConversionEvent] = asyncio.Queue(
            maxsize=self.SUBSCRIBER_QUEUE_SIZE
        )
        entry = (task_id, queue)
        with self._lock:
            self._subscribers.append(entry)
        try:
            yield queue
        finally:
            with self._lock:
                self._subscribers.remove(entry)

    @property
    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._subscribers)

    def deliver(self, event: ConversionEvent) -> None:
        with self._lock:
            for task_id, queue in list(self._subscribers):
                if task_id is None or task_id == event.task_id:
                    self._safe_put(queue, event)

    def _safe_put(
        self, queue: asyncio.Queue[ConversionEvent], event: ConversionEvent
    ) -> None:
        """Put event with drop-oldest backpressure."""
        try:
            queue.put_nowait(event)
        except asyncio.QueueFull:
            try:
                queue.get_nowait()  # Drop oldest
                queue.put_nowait(event)
            except asyncio.QueueEmpty:
                pass  # Race condition


def sign_payload(secret: str, body: bytes) -> str:
    """HMAC-SHA256 signature of a webhook body, as sent in SIGNATURE_HEADER."""
    digest = hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()
    return f"sha256={digest}"


class WebhookDelivery:
    """POSTs events to a webhook URL with at-least-once semantics.

    Events are queued FIFO and sent by a single asyncio worker, so the
    receiver sees them in emission order. Failed posts are retried with
    exponential backoff; after max_attempts the event is logged and dropped.
    """

    def __init__(
        self,
        url: str,
        secret: str | None = None,
        *,
        client: httpx.AsyncClient | None = None,
        max_attempts: int = 5,
        backoff_seconds: float = 1.0,
        timeout_seconds: float = 10.0,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self._url = url
        self._secret = secret
        self._client = client or httpx.AsyncClient(timeout=timeout_seconds)
        self._max_attempts = max_attempts
        self._backoff_seconds = backoff_seconds
        self._sleep = sleep
        self._queue: asyncio.Queue[ConversionEvent] = asyncio.Queue()
        self._worker: asyncio.Task[None] | None = None

    @property
    def url(self) -> str:
        return self._url

    def deliver(self, event: ConversionEvent) -> None:
        self._queue.put_nowait(event)
        if self._worker is None or self._worker.done():
            self._worker = asyncio.create_task(
                self._drain(), name=f"webhook-{self._url[:32]}"
            )

    async def join(self) -> None:
        """Wait until every queued event was sent or dropped."""
        await self._queue.join()

    async def aclose(self) -> None:
        if self._worker is not None:
            self._worker.cancel()
            try:
                await self._worker
            except asyncio.CancelledError:
                pass
        await self._client.aclose()

    async def _drain(self) -> None:
        while True:
            event = await self._queue.get()
            try:
                await self._post(event)
            finally:
                self._queue.task_done()

    async def _post(self, event: ConversionEvent) -> None:
        body = event.model_dump_json().encode("utf-8")
        headers = {
            "Content-Type": "application/json",
            "X-Tunelink-Event": str(event.event_type),
            "X-Tunelink-Event-Id": event.event_id,
        }
        if self._secret:
            headers[SIGNATURE_HEADER] = sign_payload(self._secret, body)

        for attempt in range(1, self._max_attempts + 1):
            try:
                response = await self._client.post(
                    self._url, content=body, headers=headers
                )
                if response.is_success:
                    return
                reason = f"HTTP {response.status_code}"
            except httpx.HTTPError as e:
                reason = str(e) or type(e).__name__

            if attempt == self._max_attempts:
                break
            delay = self._backoff_seconds * 2 ** (attempt - 1)
            logger.info(
                "Webhook %s failed for %s (%s), retry %d/%d in %.1fs",
                self._url,
                event.event_id,
                reason,
                attempt,
                self._max_attempts - 1,
                delay,
            )
            await self._sleep(delay)

        logger.error(
            "Dropping event %s after %d webhook attempts", event.event_id, attempt
        )


class WebhookRegistry:
    """One WebhookDelivery per app webhook URL."""

    def __init__(
        self, factory: Callable[[str, str | None], WebhookDelivery] = WebhookDelivery
    ) -> None:
        self._factory = factory
        self._deliveries: dict[tuple[str, str | None], WebhookDelivery] = {}

    def for_app(self, app: DeveloperApp) -> WebhookDelivery | None:
        if not app.webhook_url:
            return None
        key = (app.webhook_url, app.webhook_secret)
        if key not in self._deliveries:
            self._deliveries[key] = self._factory(app.webhook_url, app.webhook_secret)
        return self._deliveries[key]

    async def aclose(self) -> None:
        for delivery in self._deliveries.values():
            await delivery.aclose()
        self._deliveries.clear()
