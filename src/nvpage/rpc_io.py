"""RPC I/O - Reading and Writing msgpack-rpc Messages

This module provides streaming msgpack message encoding/decoding over a
duplex byte stream. Unlike length-prefixed framing, msgpack-rpc messages are
self-delimiting: bytes are fed into an incremental unpacker and messages are
taken out as soon as they are complete.

## Wire Format

```
┌─────────────────────────────────────────────────────────┐
│  msgpack array: [type, ...fields]                       │
├─────────────────────────────────────────────────────────┤
│  msgpack array: [type, ...fields]                       │
└─────────────────────────────────────────────────────────┘
```

See rpc_message.py for the per-type field layout.
"""

from typing import Any, Optional

import msgpack

from nvpage.rpc_message import (
    ExtHandle,
    Message,
    MessageType,
    Notification,
    Request,
    Response,
)


# Bytes requested from the stream per read
READ_SIZE = 64 * 1024

# Marker for "no complete message buffered yet"
_PENDING = object()


class RpcIoError(Exception):
    """Base RPC I/O error"""
    pass


class EncodeError(RpcIoError):
    """msgpack encoding error"""
    pass


class DecodeError(RpcIoError):
    """msgpack decoding error"""
    pass


class InvalidMessageError(RpcIoError):
    """Decoded value is not a valid RPC message"""
    pass


class UnexpectedEofError(RpcIoError):
    """Stream ended in the middle of a message"""

    def __init__(self, message: str = "Unexpected end of stream"):
        super().__init__(message)


def _pack_default(obj: Any) -> Any:
    if isinstance(obj, ExtHandle):
        return msgpack.ExtType(obj.code, obj.data)
    raise TypeError(f"Cannot serialize {type(obj).__name__}")


def _ext_hook(code: int, data: bytes) -> ExtHandle:
    return ExtHandle(code, data)


def new_unpacker() -> msgpack.Unpacker:
    """Create an incremental unpacker that understands host handles"""
    return msgpack.Unpacker(
        raw=False,
        ext_hook=_ext_hook,
        strict_map_key=False,
        unicode_errors="surrogateescape",
    )


def encode_message(message: Message) -> bytes:
    """Encode a message to msgpack bytes

    Args:
        message: Request, Response or Notification

    Returns:
        msgpack-encoded bytes

    Raises:
        EncodeError: If encoding fails
    """
    if isinstance(message, Request):
        obj = [int(MessageType.REQUEST), message.msgid, message.method, list(message.args)]
    elif isinstance(message, Response):
        obj = [int(MessageType.RESPONSE), message.msgid, message.error, message.result]
    elif isinstance(message, Notification):
        obj = [int(MessageType.NOTIFICATION), message.method, list(message.args)]
    else:
        raise EncodeError(f"Not an RPC message: {message!r}")

    try:
        return msgpack.packb(obj, default=_pack_default, use_bin_type=True)
    except (TypeError, ValueError, OverflowError) as e:
        raise EncodeError(f"msgpack encoding failed: {e}")


def decode_message(obj: Any) -> Message:
    """Turn a decoded msgpack value into a message

    Args:
        obj: Value produced by the unpacker

    Returns:
        Decoded message

    Raises:
        InvalidMessageError: If the value has the wrong shape
    """
    if not isinstance(obj, (list, tuple)) or not obj:
        raise InvalidMessageError(f"expected non-empty array, got {type(obj).__name__}")

    message_type = MessageType.from_int(obj[0])
    if message_type is None:
        raise InvalidMessageError(f"invalid message type: {obj[0]!r}")

    if message_type == MessageType.REQUEST:
        if len(obj) != 4:
            raise InvalidMessageError(f"request must have 4 fields, got {len(obj)}")
        _, msgid, method, args = obj
        if not isinstance(msgid, int) or not isinstance(method, str):
            raise InvalidMessageError("request msgid/method have wrong types")
        return Request(msgid, method, _as_args(args))

    if message_type == MessageType.RESPONSE:
        if len(obj) != 4:
            raise InvalidMessageError(f"response must have 4 fields, got {len(obj)}")
        _, msgid, error, result = obj
        if not isinstance(msgid, int):
            raise InvalidMessageError("response msgid is not an integer")
        return Response(msgid, error, result)

    if len(obj) != 3:
        raise InvalidMessageError(f"notification must have 3 fields, got {len(obj)}")
    _, method, args = obj
    if not isinstance(method, str):
        raise InvalidMessageError("notification method is not a string")
    return Notification(method, _as_args(args))


def _as_args(args: Any) -> list:
    if isinstance(args, (list, tuple)):
        return list(args)
    # Keep malformed params for the receiver to reject
    return [args]


# =============================================================================
# Async I/O - for RpcSession
# =============================================================================


class AsyncMessageReader:
    """Async message reader over a byte stream with an async read(n)"""

    def __init__(self, stream, read_size: int = READ_SIZE):
        """Create async message reader

        Args:
            stream: Object with ``async read(n) -> bytes`` (Transport or
                asyncio.StreamReader)
            read_size: Bytes requested per read
        """
        self.stream = stream
        self.read_size = read_size
        self._unpacker = new_unpacker()
        self._fed = 0

    async def read(self) -> Optional[Message]:
        """Read one message from the stream

        Returns:
            Message if read successfully, None on clean EOF

        Raises:
            UnexpectedEofError: If the stream ends mid-message
            DecodeError: If the bytes are not valid msgpack
            InvalidMessageError: If the value is not an RPC message
        """
        while True:
            try:
                obj = next(self._unpacker, _PENDING)
            except (msgpack.UnpackException, ValueError) as e:
                raise DecodeError(f"msgpack decoding failed: {e}")

            if obj is not _PENDING:
                return decode_message(obj)

            data = await self.stream.read(self.read_size)
            if not data:
                if self._unpacker.tell() < self._fed:
                    raise UnexpectedEofError("Incomplete message data")
                return None

            self._fed += len(data)
            self._unpacker.feed(data)


class AsyncMessageWriter:
    """Async message writer over a byte stream with an async write(data)"""

    def __init__(self, stream):
        """Create async message writer

        Args:
            stream: Object with ``async write(data)`` that flushes (Transport)
        """
        self.stream = stream

    async def write(self, message: Message):
        """Write one message to the stream

        Raises:
            EncodeError: If encoding fails
        """
        await self.stream.write(encode_message(message))

