"""Fan-out of execution events to live subscribers.

``EventBroadcaster.publish`` is the single publish entry point. It hands the
same event to two front-ends without awaiting any consumer:

- ``StreamRegistry``: raw byte sinks (e.g. an HTTP streaming response) that
  receive server-sent-event frames. Each sink gets a bounded frame buffer
  drained by its own task. A sink whose write fails, or whose buffer
  overflows, is dropped.
- ``ExecutionEmitter``: typed subscriptions consumed with ``async for``.
  Each subscription owns a bounded queue; when it is full the event is
  dropped for that subscriber instead of blocking the engine. Terminal
  events evict the oldest queued event so the subscription always closes.

Events for one execution reach every sink in publish order. Delivery is
best-effort and at-most-once per sink. Having no subscriber is not an error.
"""

import asyncio
import logging
from collections import defaultdict
from typing import AsyncIterator, Callable, Dict, List, Optional, Protocol, Set, Union
from uuid import UUID

from .events import ExecutionEvent

logger = logging.getLogger(__name__)

DEFAULT_QUEUE_SIZE = 100
DEFAULT_STREAM_BUFFER = 100

ExecutionKey = Union[str, UUID]
EventListener = Callable[[ExecutionEvent], None]


def _key(execution_id: ExecutionKey) -> str:
    return str(execution_id)


class StreamSink(Protocol):
    """Anything that accepts encoded event frames."""

    async def write(self, data: bytes) -> None:
        ...


class SinkClosedError(ConnectionError):
    """Raised when writing to a sink whose consumer has gone away."""


class QueueSink:
    """Stream sink backed by an asyncio queue.

    The consumer iterates the sink to receive frames; ``close`` ends the
    iteration and makes further writes fail. ``write_nowait`` lets the
    registry deliver without a drain task.
    """

    _CLOSED = object()

    def __init__(self, max_size: int = 0):
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=max_size)
        self.closed = False

    def write_nowait(self, data: bytes) -> None:
        if self.closed:
            raise SinkClosedError("Stream sink is closed")
        self._queue.put_nowait(data)

    async def write(self, data: bytes) -> None:
        self.write_nowait(data)

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        try:
            self._queue.put_nowait(self._CLOSED)
        except asyncio.QueueFull:
            pass

    def __aiter__(self) -> AsyncIterator[bytes]:
        return self

    async def __anext__(self) -> bytes:
        if self.closed and self._queue.empty():
            raise StopAsyncIteration
        item = await self._queue.get()
        if item is self._CLOSED:
            raise StopAsyncIteration
        return item


class SinkChannel:
    """Bounded frame buffer in front of one sink.

    Sinks with ``write_nowait`` are written immediately. Other sinks are fed
    by a drain task started on the first frame, so ``offer`` never waits on
    the consumer.
    """

    def __init__(
        self,
        sink: StreamSink,
        max_pending: int,
        on_failure: Callable[["SinkChannel", Exception], None],
    ):
        self.sink = sink
        self._frames: asyncio.Queue = asyncio.Queue(maxsize=max_pending)
        self._on_failure = on_failure
        self._task: Optional[asyncio.Task] = None
        self.closed = False

    def offer(self, frame: bytes) -> bool:
        """Queue a frame. Returns False if the buffer is full."""
        write_nowait = getattr(self.sink, "write_nowait", None)
        if write_nowait is not None:
            write_nowait(frame)
            return True

        try:
            self._frames.put_nowait(frame)
        except asyncio.QueueFull:
            return False
        if self._task is None:
            self._task = asyncio.get_running_loop().create_task(self._drain())
        return True

    async def _drain(self) -> None:
        while True:
            frame = await self._frames.get()
            try:
                await self.sink.write(frame)
            except Exception as e:
                self._task = None
                self._on_failure(self, e)
                return
            finally:
                self._frames.task_done()

    async def join(self) -> None:
        """Wait until every buffered frame has been written or discarded."""
        await self._frames.join()

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        if self._task is not None and not self._task.done():
            self._task.cancel()
        self._task = None
        while not self._frames.empty():
            self._frames.get_nowait()
            self._frames.task_done()


class StreamRegistry:
    """Raw byte-stream sinks keyed by execution id."""

    def __init__(self, max_pending: int = DEFAULT_STREAM_BUFFER):
        self.max_pending = max_pending
        self._sinks: Dict[str, List[SinkChannel]] = {}

    def subscribe(self, execution_id: ExecutionKey, sink: StreamSink) -> None:
        key = _key(execution_id)

        def on_failure(channel: SinkChannel, error: Exception) -> None:
            logger.debug(f"Removing stream sink for {key}: {error}")
            self.unsubscribe(key, channel.sink)

        channel = SinkChannel(sink, self.max_pending, on_failure)
        self._sinks.setdefault(key, []).append(channel)

    def unsubscribe(self, execution_id: ExecutionKey, sink: StreamSink) -> None:
        key = _key(execution_id)
        channels = self._sinks.get(key)
        if not channels:
            return
        for channel in list(channels):
            if channel.sink is sink:
                channels.remove(channel)
                channel.close()
        if not channels:
            del self._sinks[key]

    def has_subscribers(self, execution_id: ExecutionKey) -> bool:
        return bool(self._sinks.get(_key(execution_id)))

    def subscriber_count(self, execution_id: ExecutionKey) -> int:
        return len(self._sinks.get(_key(execution_id), []))

    def publish(self, execution_id: ExecutionKey, event: ExecutionEvent) -> None:
        """Hand the event to every sink, dropping sinks that fail or fall behind."""
        channels = self._sinks.get(_key(execution_id))
        if not channels:
            return

        frame = event.to_sse()
        for channel in list(channels):
            if getattr(channel.sink, "closed", False):
                logger.debug(f"Removing closed stream sink for {execution_id}")
                self.unsubscribe(execution_id, channel.sink)
                continue
            try:
                accepted = channel.offer(frame)
            except Exception as e:
                logger.debug(f"Removing stream sink for {execution_id}: {e}")
                self.unsubscribe(execution_id, channel.sink)
                continue
            if not accepted:
                logger.warning(f"Stream sink for {execution_id} fell behind, removing it")
                self.unsubscribe(execution_id, channel.sink)

    async def flush(self, execution_id: Optional[ExecutionKey] = None) -> None:
        """Wait for buffered frames of one execution, or of all, to be written."""
        if execution_id is None:
            channels = [channel for group in self._sinks.values() for channel in group]
        else:
            channels = list(self._sinks.get(_key(execution_id), []))
        await asyncio.gather(*(channel.join() for channel in channels))


class Subscription:
    """Cancelable async iterator over one execution's events."""

    _CLOSED = object()

    def __init__(
        self,
        emitter: "ExecutionEmitter",
        execution_id: str,
        max_queue_size: int = DEFAULT_QUEUE_SIZE,
        close_on_terminal: bool = True,
    ):
        self._emitter = emitter
        self.execution_id = execution_id
        self.close_on_terminal = close_on_terminal
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=max_queue_size)
        self.closed = False
        self.dropped = 0

    def offer(self, event: ExecutionEvent) -> bool:
        """Queue an event without blocking. Returns False if it was dropped."""
        if self.closed:
            return False
        if event.is_terminal and self._queue.full():
            evicted = self._queue.get_nowait()
            self.dropped += 1
            logger.debug(
                f"Subscriber queue full for {self.execution_id}, "
                f"evicting {evicted.type.value} for {event.type.value}"
            )
        try:
            self._queue.put_nowait(event)
        except asyncio.QueueFull:
            self.dropped += 1
            logger.debug(
                f"Subscriber queue full for {self.execution_id}, dropping {event.type.value}"
            )
            return False
        if self.close_on_terminal and event.is_terminal:
            self.cancel()
        return True

    def cancel(self) -> None:
        if self.closed:
            return
        self.closed = True
        self._emitter.remove(self)
        try:
            self._queue.put_nowait(self._CLOSED)
        except asyncio.QueueFull:
            pass

    async def get(self, timeout: Optional[float] = None) -> Optional[ExecutionEvent]:
        """Next event, or None once the subscription is exhausted."""
        try:
            return await asyncio.wait_for(self.__anext__(), timeout=timeout)
        except StopAsyncIteration:
            return None

    def __aiter__(self) -> AsyncIterator[ExecutionEvent]:
        return self

    async def __anext__(self) -> ExecutionEvent:
        if self.closed and self._queue.empty():
            raise StopAsyncIteration
        item = await self._queue.get()
        if item is self._CLOSED:
            raise StopAsyncIteration
        return item

    async def __aenter__(self) -> "Subscription":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        self.cancel()


class ExecutionEmitter:
    """Typed publish/subscribe keyed by execution id."""

    def __init__(self, max_queue_size: int = DEFAULT_QUEUE_SIZE):
        self.max_queue_size = max_queue_size
        self._subscriptions: Dict[str, Set[Subscription]] = defaultdict(set)

    def subscribe(
        self,
        execution_id: ExecutionKey,
        max_queue_size: Optional[int] = None,
        close_on_terminal: bool = True,
    ) -> Subscription:
        subscription = Subscription(
            self,
            _key(execution_id),
            max_queue_size or self.max_queue_size,
            close_on_terminal,
        )
        self._subscriptions[subscription.execution_id].add(subscription)
        return subscription

    def remove(self, subscription: Subscription) -> None:
        subscriptions = self._subscriptions.get(subscription.execution_id)
        if subscriptions is None:
            return
        subscriptions.discard(subscription)
        if not subscriptions:
            del self._subscriptions[subscription.execution_id]

    def has_subscribers(self, execution_id: ExecutionKey) -> bool:
        return bool(self._subscriptions.get(_key(execution_id)))

    def publish(self, execution_id: ExecutionKey, event: ExecutionEvent) -> int:
        """Offer the event to every subscription. Returns the delivery count."""
        subscriptions = self._subscriptions.get(_key(execution_id))
        if not subscriptions:
            return 0
        return sum(1 for subscription in list(subscriptions) if subscription.offer(event))


class EventBroadcaster:
    """Single publish entry point for execution events."""

    def __init__(
        self,
        streams: Optional[StreamRegistry] = None,
        emitter: Optional[ExecutionEmitter] = None,
        subscriber_queue_size: int = DEFAULT_QUEUE_SIZE,
        stream_buffer_size: int = DEFAULT_STREAM_BUFFER,
    ):
        self.streams = streams or StreamRegistry(stream_buffer_size)
        self.emitter = emitter or ExecutionEmitter(subscriber_queue_size)
        self._listeners: List[EventListener] = []

    def add_listener(self, listener: EventListener) -> None:
        """Register a synchronous callable invoked for every event."""
        self._listeners.append(listener)

    def remove_listener(self, listener: EventListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def subscribe(self, execution_id: ExecutionKey, **kwargs) -> Subscription:
        return self.emitter.subscribe(execution_id, **kwargs)

    def open_stream(self, execution_id: ExecutionKey, max_size: int = 0) -> QueueSink:
        sink = QueueSink(max_size)
        self.streams.subscribe(execution_id, sink)
        return sink

    def close_stream(self, execution_id: ExecutionKey, sink: QueueSink) -> None:
        self.streams.unsubscribe(execution_id, sink)
        sink.close()

    def has_subscribers(self, execution_id: ExecutionKey) -> bool:
        return self.streams.has_subscribers(execution_id) or self.emitter.has_subscribers(
            execution_id
        )

    def publish(self, execution_id: ExecutionKey, event: ExecutionEvent) -> None:
        """Deliver an event to listeners, stream sinks and subscriptions.

        Returns without waiting on any consumer and never raises on a
        subscriber failure. Must be called from a running event loop.
        """
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception as e:
                logger.error(f"Error in event listener: {e}", exc_info=True)

        self.streams.publish(execution_id, event)
        self.emitter.publish(execution_id, event)

    async def broadcast(self, execution_id: ExecutionKey, event: ExecutionEvent) -> None:
        """Coroutine form of ``publish``."""
        self.publish(execution_id, event)

    async def flush(self, execution_id: Optional[ExecutionKey] = None) -> None:
        """Wait for stream sinks to catch up with published events."""
        await self.streams.flush(execution_id)
