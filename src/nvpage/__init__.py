"""nvpage - pager engine for neovim terminal buffers

Connects to a running (or freshly spawned) neovim host, opens a terminal
buffer there and streams input into the PTY behind it. Named instance
buffers can be found and reused across invocations.
"""

from nvpage.rpc_message import (
    MessageType,
    ExtHandle,
    Request,
    Response,
    Notification,
    EXT_BUFFER,
    EXT_WINDOW,
    EXT_TABPAGE,
)

from nvpage.rpc_io import (
    RpcIoError,
    EncodeError,
    DecodeError,
    InvalidMessageError,
    UnexpectedEofError,
    AsyncMessageReader,
    AsyncMessageWriter,
    encode_message,
    decode_message,
)

from nvpage.transport import (
    Transport,
    TransportKind,
    TransportError,
    AddressNotFound,
    connect,
    parse_socket_address,
)

from nvpage.rpc_session import (
    RpcSession,
    RpcError,
    HostError,
    Closed,
    ConnectionLost,
)

from nvpage.notifications import (
    NotificationRouter,
    RequestDefaultChunk,
    RequestChunk,
    BufferClosed,
    new_session_id,
    route,
)

from nvpage.supervisor import (
    SpawnSpec,
    SupervisorError,
    ConnectRetryExhausted,
    ChildExited,
    connect_with_retry,
    spawn_and_connect,
    restore_terminal,
)

from nvpage.host import HostApi, OutputBuffer, BufferCreationError
from nvpage.instances import InstanceRegistry

from nvpage.streamer import (
    OutputStreamer,
    OutputClosed,
    QueryState,
    PtySink,
    LineSource,
    read_line,
)

from nvpage.config import ConnectionRequest, InstanceMode, SplitOptions

__all__ = [
    # Messages
    "MessageType",
    "ExtHandle",
    "Request",
    "Response",
    "Notification",
    "EXT_BUFFER",
    "EXT_WINDOW",
    "EXT_TABPAGE",
    # Codec
    "RpcIoError",
    "EncodeError",
    "DecodeError",
    "InvalidMessageError",
    "UnexpectedEofError",
    "AsyncMessageReader",
    "AsyncMessageWriter",
    "encode_message",
    "decode_message",
    # Transport
    "Transport",
    "TransportKind",
    "TransportError",
    "AddressNotFound",
    "connect",
    "parse_socket_address",
    # Session
    "RpcSession",
    "RpcError",
    "HostError",
    "Closed",
    "ConnectionLost",
    # Notifications
    "NotificationRouter",
    "RequestDefaultChunk",
    "RequestChunk",
    "BufferClosed",
    "new_session_id",
    "route",
    # Supervisor
    "SpawnSpec",
    "SupervisorError",
    "ConnectRetryExhausted",
    "ChildExited",
    "connect_with_retry",
    "spawn_and_connect",
    "restore_terminal",
    # Host and instances
    "HostApi",
    "OutputBuffer",
    "BufferCreationError",
    "InstanceRegistry",
    # Streaming
    "OutputStreamer",
    "OutputClosed",
    "QueryState",
    "PtySink",
    "LineSource",
    "read_line",
    # Configuration
    "ConnectionRequest",
    "InstanceMode",
    "SplitOptions",
]
