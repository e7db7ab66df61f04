"""RPC Message Types for Host Communication

This module defines the msgpack-rpc message shapes exchanged with the host.
Every message is a msgpack array whose first element is the message type.

## Message Format

```
REQUEST       [0, msgid, method, params]
RESPONSE      [1, msgid, error, result]
NOTIFICATION  [2, method, params]
```

Host objects (buffers, windows, tabpages) travel as msgpack ext types whose
payload is itself a msgpack-encoded integer handle.
"""

from dataclasses import dataclass, field
from enum import IntEnum
from typing import Any, List, Optional, Union

import msgpack


# Ext type codes announced by the host in its api metadata
EXT_BUFFER = 0
EXT_WINDOW = 1
EXT_TABPAGE = 2


class MessageType(IntEnum):
    """Message type discriminator"""
    REQUEST = 0
    RESPONSE = 1
    NOTIFICATION = 2

    @classmethod
    def from_int(cls, v: Any) -> Optional["MessageType"]:
        """Convert int to MessageType, returns None if invalid"""
        try:
            return cls(v)
        except (ValueError, TypeError):
            return None


@dataclass(frozen=True)
class ExtHandle:
    """Opaque reference to a host object (buffer, window or tabpage)"""
    code: int
    data: bytes

    @classmethod
    def from_number(cls, code: int, number: int) -> "ExtHandle":
        """Build a handle from its ext code and integer id"""
        return cls(code, msgpack.packb(number))

    @property
    def number(self) -> int:
        """Integer handle id as assigned by the host"""
        return msgpack.unpackb(self.data)

    def kind(self) -> str:
        if self.code == EXT_BUFFER:
            return "buffer"
        if self.code == EXT_WINDOW:
            return "window"
        if self.code == EXT_TABPAGE:
            return "tabpage"
        return f"ext{self.code}"

    def __repr__(self) -> str:
        return f"<{self.kind()} {self.number}>"


@dataclass
class Request:
    """Request expecting a response with the same msgid"""
    msgid: int
    method: str
    args: List[Any] = field(default_factory=list)

    @property
    def message_type(self) -> MessageType:
        return MessageType.REQUEST


@dataclass
class Response:
    """Response to a previously sent request"""
    msgid: int
    error: Any = None
    result: Any = None

    @property
    def message_type(self) -> MessageType:
        return MessageType.RESPONSE

    def is_error(self) -> bool:
        return self.error is not None


@dataclass
class Notification:
    """One-way message, no response expected"""
    method: str
    args: List[Any] = field(default_factory=list)

    @property
    def message_type(self) -> MessageType:
        return MessageType.NOTIFICATION


Message = Union[Request, Response, Notification]
