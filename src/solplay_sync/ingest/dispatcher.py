"""
Named-channel event dispatcher.

Ingestion emits facts ("a settlement was recorded") on named channels;
logging, metrics and orchestration subscribe without reaching into the
ingestion internals.

Rules the dispatcher keeps:

1. ``emit`` is synchronous. When it returns, the event has a sequence number,
   sits in the bounded event log, every sync handler has run, and every
   async handler has been scheduled.
2. Handler failures are logged and never reach the emitter. A broken
   subscriber must not stall ingestion.
3. Events are immutable once emitted.

There is no module-level instance. The runtime builds one dispatcher and
hands it to the ingestion loop, the reconciler and the HTTP layer:

    dispatcher = EventDispatcher()
    unsubscribe = dispatcher.on(Events.SESSION_CREATED, lambda e: print(e.detail))
    dispatcher.emit(Events.SESSION_CREATED, {"session_address": "..."})
    unsubscribe()
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections import deque
from collections.abc import Callable, Coroutine
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

logger = logging.getLogger(__name__)

SyncHandler = Callable[["SyncEvent"], None]
AsyncHandler = Callable[["SyncEvent"], Coroutine[Any, Any, None]]
EventHandler = SyncHandler | AsyncHandler
Unsubscribe = Callable[[], None]

DEFAULT_LOG_SIZE = 1000


@dataclass(frozen=True)
class SyncEvent:
    """
    One emitted event.

    Attributes:
        channel: Channel name, one of :class:`~solplay_sync.ingest.events.Events`.
        detail: Payload; shape documented per channel.
        sequence: Per-dispatcher monotonically increasing number. The only
            reliable ordering key; timestamps can collide.
        timestamp: Unix epoch milliseconds (UTC) at emission.
        source: Component that emitted it ("listener", "reconciler", ...).
    """

    channel: str
    detail: dict = field(default_factory=dict)
    sequence: int = 0
    timestamp: int = 0
    source: str = "listener"

    def __str__(self) -> str:
        return f"SyncEvent(channel='{self.channel}', source='{self.source}', seq={self.sequence})"


class EventDispatcher:
    """
    Publish/subscribe over named channels with a bounded in-memory log.

    Not thread-safe: emit and subscribe from the event loop thread.
    """

    def __init__(self, log_size: int = DEFAULT_LOG_SIZE) -> None:
        # Lists, not sets, so handlers run in registration order.
        self._handlers: dict[str, list[EventHandler]] = {}
        self._event_log: deque[SyncEvent] = deque(maxlen=log_size)
        self._sequence = 0
        self._waiters: dict[str, list[asyncio.Future[SyncEvent]]] = {}
        self._pending_tasks: set[asyncio.Task[None]] = set()

    # =========================================================================
    # EMIT
    # =========================================================================

    def emit(
        self, channel: str, detail: dict[str, Any] | None = None, source: str = "listener"
    ) -> SyncEvent:
        """
        Emit an event on ``channel`` and return it once committed.

        Args:
            channel: Channel name.
            detail: Payload. Defaults to an empty dict.
            source: Emitting component, for debugging.

        Returns:
            The committed, immutable event.
        """
        self._sequence += 1
        event = SyncEvent(
            channel=channel,
            detail=detail if detail is not None else {},
            sequence=self._sequence,
            timestamp=int(datetime.now(UTC).timestamp() * 1000),
            source=source,
        )
        self._event_log.append(event)
        logger.debug("EMIT [%d]: %s from %s", event.sequence, channel, source)

        self._notify_handlers(event)
        self._resolve_waiters(event)
        return event

    def _notify_handlers(self, event: SyncEvent) -> None:
        for handler in list(self._handlers.get(event.channel, ())):
            try:
                if inspect.iscoroutinefunction(handler):
                    self._schedule_async_handler(handler, event)
                else:
                    handler(event)
            except Exception as exc:
                logger.error("Handler error for '%s': %s", event.channel, exc, exc_info=True)

    def _schedule_async_handler(self, handler: AsyncHandler, event: SyncEvent) -> None:
        """Run an async handler as a background task, or inline with no loop running."""
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            asyncio.run(self._run_async_handler(handler, event))
            return
        # Keep a reference so the task is not garbage collected mid-flight.
        task = loop.create_task(self._run_async_handler(handler, event))
        self._pending_tasks.add(task)
        task.add_done_callback(self._pending_tasks.discard)

    @staticmethod
    async def _run_async_handler(handler: AsyncHandler, event: SyncEvent) -> None:
        try:
            await handler(event)
        except Exception as exc:
            logger.error("Async handler error for '%s': %s", event.channel, exc, exc_info=True)

    def _resolve_waiters(self, event: SyncEvent) -> None:
        waiters = self._waiters.pop(event.channel, [])
        for future in waiters:
            if not future.done():
                future.set_result(event)

    # =========================================================================
    # SUBSCRIBE
    # =========================================================================

    def on(self, channel: str, handler: EventHandler) -> Unsubscribe:
        """
        Subscribe ``handler`` (sync or async) to ``channel``.

        Returns:
            A function that removes the subscription. Calling it twice is
            harmless.
        """
        self._handlers.setdefault(channel, []).append(handler)

        def unsubscribe() -> None:
            handlers = self._handlers.get(channel, [])
            if handler in handlers:
                handlers.remove(handler)

        return unsubscribe

    def once(self, channel: str, handler: EventHandler) -> Unsubscribe:
        """Subscribe for the next event on ``channel`` only."""
        unsub: Unsubscribe | None = None

        def one_time_wrapper(event: SyncEvent) -> None:
            try:
                if inspect.iscoroutinefunction(handler):
                    self._schedule_async_handler(handler, event)
                else:
                    handler(event)
            finally:
                if unsub is not None:
                    unsub()

        unsub = self.on(channel, one_time_wrapper)
        return unsub

    async def wait_for(self, channel: str, timeout: float | None = None) -> SyncEvent:
        """
        Wait for the next event on ``channel``.

        Raises:
            TimeoutError: If ``timeout`` seconds pass first.
        """
        future: asyncio.Future[SyncEvent] = asyncio.get_running_loop().create_future()
        self._waiters.setdefault(channel, []).append(future)
        if timeout is None:
            return await future
        return await asyncio.wait_for(future, timeout=timeout)

    # =========================================================================
    # INSPECTION
    # =========================================================================

    def get_event_log(self, limit: int | None = None, channel: str | None = None) -> list[SyncEvent]:
        """Logged events, oldest first, optionally filtered and truncated to the last ``limit``."""
        events = [e for e in self._event_log if channel is None or e.channel == channel]
        if limit is not None:
            return events[-limit:]
        return events

    def get_sequence(self) -> int:
        return self._sequence

    def get_handler_count(self, channel: str) -> int:
        return len(self._handlers.get(channel, ()))

    def clear_event_log(self) -> None:
        self._event_log.clear()
