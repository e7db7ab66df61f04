"""RPC Session - msgpack-rpc client runtime for talking to the host

The RpcSession is the engine-side runtime that manages all communication with
the host over one Transport. It handles:

- Request/response calls keyed by auto-incrementing msgids
- Fire-and-forget notifications to the host
- A background dispatch task that decodes inbound messages
- Forwarding of host notifications to a sink (the NotificationRouter)
- Answering stray host requests (this engine serves none)
- Failing in-flight calls when the connection drops or the session closes

Usage:
```python
import asyncio
from nvpage.transport import connect
from nvpage.rpc_session import RpcSession

async def main():
    transport = await connect("/tmp/nvim.sock")
    session = RpcSession.open(transport, router)
    await session.handshake()

    buf = await session.call("nvim_get_current_buf")
    await session.close()
```
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional

from nvpage.rpc_io import (
    AsyncMessageReader,
    AsyncMessageWriter,
    InvalidMessageError,
    RpcIoError,
)
from nvpage.rpc_message import Notification, Request, Response
from nvpage.transport import Transport

logger = logging.getLogger(__name__)


NotificationSink = Callable[[str, List[Any]], Awaitable[None]]


class RpcError(Exception):
    """Base error for the RPC session"""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class HostError(RpcError):
    """Host answered a call with an error payload"""

    def __init__(self, method: str, error_type: Optional[int], error_message: str):
        super().__init__(f"{method}: {error_message}")
        self.method = method
        self.error_type = error_type
        self.error_message = error_message

    @classmethod
    def from_payload(cls, method: str, payload: Any) -> "HostError":
        """Build from the host's error value, usually ``[type, message]``"""
        if isinstance(payload, (list, tuple)) and len(payload) == 2:
            error_type, message = payload
            return cls(method, error_type if isinstance(error_type, int) else None, str(message))
        return cls(method, None, str(payload))

    def is_key_not_found(self) -> bool:
        """True for the host's missing-variable error"""
        return self.error_message.startswith("Key not found")


class Closed(RpcError):
    """Session is closed"""

    def __init__(self):
        super().__init__("Session is closed")


class ConnectionLost(RpcError):
    """Transport failed or reached EOF while calls were in flight"""

    def __init__(self, reason: str = "connection closed by host"):
        super().__init__(f"Connection lost: {reason}")
        self.reason = reason


class SessionState:
    """Internal state shared between the foreground and the dispatch task"""

    def __init__(self):
        self.pending: Dict[int, asyncio.Future] = {}
        self.pending_methods: Dict[int, str] = {}
        self.next_msgid: int = 0
        self.closed: bool = False
        self.failure: Optional[RpcError] = None


class RpcSession:
    """Async client session for a host reachable over a Transport"""

    def __init__(
        self,
        transport: Transport,
        writer: AsyncMessageWriter,
        state: SessionState,
        sink: Optional[NotificationSink],
    ):
        """Internal constructor - use open() instead"""
        self.transport = transport
        self._writer = writer
        self._state = state
        self._sink = sink
        self._write_lock = asyncio.Lock()
        self.dispatch_task: Optional[asyncio.Task] = None
        self.channel_id: Optional[int] = None
        self.api_metadata: Dict[str, Any] = {}

    @classmethod
    def open(cls, transport: Transport, sink: Optional[NotificationSink] = None) -> "RpcSession":
        """Create a session over an established transport and start dispatching

        Args:
            transport: Connected transport, owned by the session from now on
            sink: Async callable receiving ``(method, args)`` of host
                notifications; may expose ``close()`` to learn about
                channel closure

        Returns:
            RpcSession with its dispatch task running
        """
        state = SessionState()
        session = cls(transport, AsyncMessageWriter(transport), state, sink)
        session.dispatch_task = asyncio.create_task(
            session._dispatch_loop(AsyncMessageReader(transport))
        )
        return session

    @property
    def closed(self) -> bool:
        return self._state.closed

    async def handshake(self) -> int:
        """Fetch api info from the host and remember our channel id

        Returns:
            Channel id assigned to this connection by the host
        """
        info = await self.call("nvim_get_api_info")
        if not isinstance(info, (list, tuple)) or len(info) < 2:
            raise RpcError(f"Unexpected api info: {info!r}")

        self.channel_id = info[0]
        if isinstance(info[1], dict):
            self.api_metadata = info[1]
        logger.debug("Connected on channel %s", self.channel_id)
        return self.channel_id

    async def _dispatch_loop(self, reader: AsyncMessageReader):
        """Dispatch loop - reads messages and routes them"""
        reason = "connection closed by host"
        try:
            while True:
                try:
                    message = await reader.read()
                except InvalidMessageError as e:
                    # The stream stays in sync, only this message is lost
                    logger.warning("Dropping invalid message: %s", e)
                    continue
                except RpcIoError as e:
                    reason = str(e)
                    break
                except (ConnectionError, OSError) as e:
                    reason = str(e) or type(e).__name__
                    break

                if message is None:
                    break

                if isinstance(message, Response):
                    self._resolve(message)
                elif isinstance(message, Notification):
                    if self._sink is not None:
                        await self._sink(message.method, message.args)
                elif isinstance(message, Request):
                    await self._answer_unhandled(message)
        finally:
            self._fail_pending(Closed() if self._state.closed else ConnectionLost(reason))
            self._close_sink()

    def _resolve(self, response: Response):
        future = self._state.pending.pop(response.msgid, None)
        method = self._state.pending_methods.pop(response.msgid, "?")
        if future is None:
            logger.warning("Response for unknown request %s", response.msgid)
            return
        if future.done():
            return

        if response.is_error():
            future.set_exception(HostError.from_payload(method, response.error))
        else:
            future.set_result(response.result)

    async def _answer_unhandled(self, request: Request):
        logger.warning("Unhandled request %s: %r", request.method, request.args)
        try:
            await self._send(Response(request.msgid, None, 0))
        except (RpcError, ConnectionError, OSError) as e:
            logger.warning("Cannot answer request %s: %s", request.method, e)

    def _fail_pending(self, error: RpcError):
        if self._state.failure is None:
            self._state.failure = error
        pending = list(self._state.pending.values())
        self._state.pending.clear()
        self._state.pending_methods.clear()
        for future in pending:
            if not future.done():
                future.set_exception(error)

    def _close_sink(self):
        close = getattr(self._sink, "close", None)
        if close is not None:
            close()

    async def _send(self, message) -> None:
        async with self._write_lock:
            await self._writer.write(message)

    def _check_open(self):
        if self._state.closed:
            raise Closed()
        if self._state.failure is not None:
            raise self._state.failure

    async def call(self, method: str, *args: Any) -> Any:
        """Send a request and wait for its response

        Args:
            method: Host API method name
            *args: Positional method arguments

        Returns:
            Result value from the host

        Raises:
            HostError: If the host returned an error payload
            Closed: If the session is closed
            ConnectionLost: If the connection dropped before the response
            EncodeError: If the arguments cannot be encoded
        """
        self._check_open()

        msgid = self._state.next_msgid
        self._state.next_msgid += 1

        future = asyncio.get_running_loop().create_future()
        self._state.pending[msgid] = future
        self._state.pending_methods[msgid] = method

        try:
            await self._send(Request(msgid, method, list(args)))
        except BaseException as e:
            self._state.pending.pop(msgid, None)
            self._state.pending_methods.pop(msgid, None)
            if isinstance(e, (ConnectionError, OSError)):
                raise ConnectionLost(str(e) or type(e).__name__)
            raise

        return await future

    async def notify(self, method: str, *args: Any) -> None:
        """Send a notification to the host

        Raises:
            Closed: If the session is closed
            ConnectionLost: If the write fails
        """
        self._check_open()
        try:
            await self._send(Notification(method, list(args)))
        except (ConnectionError, OSError) as e:
            raise ConnectionLost(str(e) or type(e).__name__)

    async def close(self):
        """Stop dispatching, fail in-flight calls and release the transport"""
        if self._state.closed:
            return
        self._state.closed = True

        if self.dispatch_task is not None and not self.dispatch_task.done():
            self.dispatch_task.cancel()
            await asyncio.gather(self.dispatch_task, return_exceptions=True)

        self._fail_pending(Closed())
        self._close_sink()
        await self.transport.close()
