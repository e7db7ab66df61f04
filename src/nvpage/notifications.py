"""Notification routing from the host to the foreground flow

The host-side glue emits two notifications, both carrying the session id
of the invocation they are meant for as their first argument:

- ``request-chunk(session_id[, count])``
- ``buffer-closed(session_id)``

Notifications for other sessions, unknown names and malformed payloads are
dropped with a warning. Recognized ones become events on a bounded queue.
"""

import asyncio
import logging
import uuid
from dataclasses import dataclass
from typing import Any, List, Optional, Union

logger = logging.getLogger(__name__)


REQUEST_CHUNK = "request-chunk"
BUFFER_CLOSED = "buffer-closed"

# Minimum queue capacity between the dispatch task and the foreground
DEFAULT_CAPACITY = 16


@dataclass(frozen=True)
class RequestDefaultChunk:
    """Host asks for another chunk of the default size"""
    pass


@dataclass(frozen=True)
class RequestChunk:
    """Host asks for another chunk of ``count`` lines"""
    count: int


@dataclass(frozen=True)
class BufferClosed:
    """Output buffer was deleted on the host"""
    pass


Event = Union[RequestDefaultChunk, RequestChunk, BufferClosed]


def new_session_id() -> str:
    """Generate the per-invocation correlation token"""
    return uuid.uuid4().hex


def route(session_id: str, name: str, args: List[Any]) -> Optional[Event]:
    """Map a host notification onto an event for this session

    Args:
        session_id: Correlation token of this invocation
        name: Notification method name
        args: Notification arguments

    Returns:
        Event, or None if the notification is not for us or not recognized
    """
    if not isinstance(args, list):
        logger.warning("Malformed notification %s: %r", name, args)
        return None

    target = args[0] if args else None
    if target != session_id:
        logger.warning("Notification %s for another session: %r", name, target)
        return None

    if name == REQUEST_CHUNK:
        count = args[1] if len(args) > 1 else None
        if isinstance(count, int) and not isinstance(count, bool) and count >= 0:
            return RequestChunk(count)
        return RequestDefaultChunk()

    if name == BUFFER_CLOSED:
        return BufferClosed()

    logger.warning("Unhandled notification: %s", name)
    return None


class NotificationRouter:
    """Filters host notifications and queues events for the foreground

    The dispatch task calls dispatch(); the foreground awaits next_event()
    or wait_event(). None from either means the channel is closed.
    """

    def __init__(self, session_id: str, capacity: int = DEFAULT_CAPACITY):
        self.session_id = session_id
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=max(capacity, DEFAULT_CAPACITY))
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    async def dispatch(self, name: str, args: List[Any]) -> None:
        """Route a notification, blocking while the queue is full"""
        logger.debug("Notification %s: %r", name, args)
        event = route(self.session_id, name, args)
        if event is None or self._closed:
            return
        await self._queue.put(event)

    async def __call__(self, name: str, args: List[Any]) -> None:
        await self.dispatch(name, args)

    def close(self) -> None:
        """Mark the channel closed; pending events are still delivered first"""
        if self._closed:
            return
        self._closed = True
        try:
            self._queue.put_nowait(None)
        except asyncio.QueueFull:
            # Consumers see closure through the flag once the queue drains
            pass

    async def next_event(self) -> Optional[Event]:
        """Wait for the next event, None once the channel is closed"""
        if self._closed and self._queue.empty():
            return None
        event = await self._queue.get()
        if event is None:
            # Keep reporting closure to later callers
            self._queue.put_nowait(None)
        return event

    async def wait_event(self, timeout: float) -> Optional[Event]:
        """Like next_event() but bounded

        Raises:
            asyncio.TimeoutError: If nothing arrives within timeout seconds
        """
        return await asyncio.wait_for(self.next_event(), timeout)
