"""Incremental delivery: stream sessions that broadcast job events to listeners."""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, AsyncIterator, Callable, Protocol, Sequence

from .config import ServiceSettings
from .jobs import JobManager
from .models.events import StreamEvent, StreamEventType
from .models.jobs import DeliveryMode, GenerationJob
from .models.story import OutlineEntry, StorySpec
from .registry import Registry, StreamNotFoundError

LOGGER = logging.getLogger(__name__)


class ListenerError(RuntimeError):
    """Raised by a listener that can no longer accept events."""


class StreamClosedError(RuntimeError):
    """Raised when attaching to a session whose delivery already ended."""


class StreamListener(Protocol):
    """Write-capable sink attached to a stream session."""

    def send(self, event: StreamEvent) -> None:
        ...

    def close(self) -> None:
        ...


_CLOSED = object()


class QueueListener:
    """Buffer events for one subscriber and expose them as an async iterator.

    ``send`` raises :class:`ListenerError` once the buffer is full, so a
    subscriber that stopped reading is detached instead of growing memory.
    """

    def __init__(self, *, maxsize: int = 256) -> None:
        self._queue: asyncio.Queue[Any] = asyncio.Queue(maxsize=maxsize)
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def send(self, event: StreamEvent) -> None:
        if self._closed:
            raise ListenerError("listener is closed")
        try:
            self._queue.put_nowait(event)
        except asyncio.QueueFull:
            raise ListenerError("listener buffer is full") from None

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        if self._queue.full():
            self._queue.get_nowait()
        self._queue.put_nowait(_CLOSED)

    async def __aiter__(self) -> AsyncIterator[StreamEvent]:
        while True:
            item = await self._queue.get()
            if item is _CLOSED:
                return
            yield item
            if item.type.is_terminal:
                return

    async def iter_sse(self) -> AsyncIterator[str]:
        async for event in self:
            yield event.to_sse()


DeliveryFailureCallback = Callable[[str], None]


class StreamSession:
    """Push-delivery path for one job.

    Implements the event channel the pipeline publishes through. Broadcast
    iterates over a snapshot of the listeners, so a listener detached while a
    broadcast is running is never written to again and never breaks the loop.
    """

    def __init__(
        self,
        stream_id: str,
        job: GenerationJob,
        *,
        heartbeat_interval: float = 10.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.stream_id = stream_id
        self.job = job
        self._heartbeat_interval = heartbeat_interval
        self._clock = clock
        self._listeners: list[StreamListener] = []
        self._failure_callbacks: list[DeliveryFailureCallback] = []
        self._heartbeat_task: asyncio.Task[None] | None = None
        self._closed = False
        self.failed_over = False
        self.closed_at: float | None = None
        self.last_delivered_at = clock()

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def finished_at(self) -> float | None:
        return self.closed_at

    @property
    def listeners(self) -> Sequence[StreamListener]:
        return tuple(self._listeners)

    def on_delivery_failure(self, callback: DeliveryFailureCallback) -> None:
        self._failure_callbacks.append(callback)

    def attach(self, listener: StreamListener) -> StreamListener:
        """Attach ``listener``; it receives a handshake and only later events."""

        if self._closed:
            raise StreamClosedError(f"Stream '{self.stream_id}' is closed.")
        self._listeners.append(listener)
        handshake = self._event(
            StreamEventType.CONNECTED,
            {
                "stream_id": self.stream_id,
                "status": self.job.status.value,
                "progress": self.job.progress,
                "chapters_completed": len(self.job.chapters),
                "total_chapters": self.job.total_chapters,
            },
        )
        self._deliver(listener, handshake)
        LOGGER.info(
            "stream.listener_attached",
            extra={"extra_payload": {"stream_id": self.stream_id, "listeners": len(self._listeners)}},
        )
        return listener

    def detach(self, listener: StreamListener, *, reason: str | None = None) -> None:
        """Remove ``listener``; a ``reason`` marks the detach as a delivery failure."""

        if listener not in self._listeners:
            return
        self._listeners.remove(listener)
        listener.close()
        if reason is None:
            return
        LOGGER.warning(
            "stream.listener_detached",
            extra={
                "extra_payload": {
                    "stream_id": self.stream_id,
                    "reason": reason,
                    "listeners": len(self._listeners),
                }
            },
        )
        if not self._listeners and not self._closed:
            for callback in list(self._failure_callbacks):
                callback(reason)

    def publish(self, event_type: StreamEventType, data: dict[str, Any]) -> None:
        if self._closed:
            return
        self.broadcast(self._event(event_type, data))

    def broadcast(self, event: StreamEvent) -> int:
        """Send ``event`` to every attached listener; returns how many received it."""

        delivered = 0
        for listener in tuple(self._listeners):
            if self._deliver(listener, event):
                delivered += 1
        return delivered

    def _deliver(self, listener: StreamListener, event: StreamEvent) -> bool:
        if listener not in self._listeners:
            return False
        try:
            listener.send(event)
        except Exception as exc:  # noqa: BLE001 - any write failure detaches the listener
            self.detach(listener, reason=f"write failed: {exc}")
            return False
        self.last_delivered_at = self._clock()
        return True

    def _event(self, event_type: StreamEventType, data: dict[str, Any]) -> StreamEvent:
        return StreamEvent(type=event_type, stream_id=self.stream_id, job_id=self.job.job_id, data=data)

    def start_heartbeat(self) -> None:
        if self._heartbeat_task is None and not self._closed:
            self._heartbeat_task = asyncio.get_running_loop().create_task(
                self._heartbeat_loop(), name=f"novelsmith-heartbeat-{self.stream_id}"
            )

    async def _heartbeat_loop(self) -> None:
        while not self._closed:
            await asyncio.sleep(self._heartbeat_interval)
            self.publish(
                StreamEventType.HEARTBEAT,
                {
                    "status": self.job.status.value,
                    "progress": self.job.progress,
                    "chapters_completed": len(self.job.chapters),
                },
            )

    def close(self) -> None:
        """Stop the heartbeat and close every listener; idempotent."""

        if self._closed:
            return
        self._closed = True
        self.closed_at = self._clock()
        if self._heartbeat_task is not None:
            self._heartbeat_task.cancel()
            self._heartbeat_task = None
        listeners, self._listeners = self._listeners, []
        for listener in listeners:
            listener.close()
        LOGGER.info("stream.closed", extra={"extra_payload": {"stream_id": self.stream_id}})


class StreamRegistry(Registry[StreamSession]):
    prefix = "stream"
    not_found = StreamNotFoundError


SessionObserver = Callable[[StreamSession], None]


class StreamBroker:
    """Start streaming generations and hand out listeners for them."""

    def __init__(
        self,
        registry: StreamRegistry,
        manager: JobManager,
        *,
        settings: ServiceSettings | None = None,
    ) -> None:
        self._registry = registry
        self._manager = manager
        self._settings = settings or ServiceSettings()
        self._observers: list[SessionObserver] = []

    @property
    def registry(self) -> StreamRegistry:
        return self._registry

    def add_session_observer(self, observer: SessionObserver) -> None:
        self._observers.append(observer)

    def start(self, spec: StorySpec, outline: Sequence[OutlineEntry] | None = None) -> StreamSession:
        """Create a job and a session wrapping it, then start drafting."""

        job = self._manager.create(spec, outline, delivery=DeliveryMode.STREAM)
        session = self._registry.create(
            lambda stream_id: StreamSession(
                stream_id,
                job,
                heartbeat_interval=self._settings.heartbeat_interval_seconds,
            )
        )
        for observer in self._observers:
            observer(session)
        session.start_heartbeat()
        self._manager.launch(job, session)
        LOGGER.info(
            "stream.started",
            extra={"extra_payload": {"stream_id": session.stream_id, "job_id": job.job_id}},
        )
        return session

    def get(self, stream_id: str) -> StreamSession:
        return self._registry.get(stream_id)

    def subscribe(self, stream_id: str) -> tuple[StreamSession, QueueListener]:
        session = self._registry.get(stream_id)
        listener = QueueListener(maxsize=self._settings.stream_queue_size)
        session.attach(listener)
        return session, listener

    def shutdown(self) -> None:
        for session in self._registry.values():
            session.close()


__all__ = [
    "ListenerError",
    "QueueListener",
    "StreamBroker",
    "StreamClosedError",
    "StreamListener",
    "StreamRegistry",
    "StreamSession",
]
