"""Transport - one duplex byte stream over a local socket or TCP

The host listens either on a filesystem path (Unix domain socket / named
pipe) or on an IP socket address. Both are exposed as the same Transport
value; the kind is a tag, not a subclass.

Usage:
```python
transport = await connect("/run/user/1000/nvim.1234.0")
await transport.write(b"...")
data = await transport.read(4096)
await transport.close()
```
"""

import asyncio
import ipaddress
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Tuple

logger = logging.getLogger(__name__)


class TransportKind(Enum):
    """Transport variant tag"""
    LOCAL = "local"  # Unix domain socket or named pipe
    NETWORK = "network"  # TCP/IP


class TransportError(Exception):
    """Base transport error"""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class AddressNotFound(TransportError):
    """Local address does not exist (yet)"""

    def __init__(self, address: str):
        super().__init__(f"Address not found: {address}")
        self.address = address


def parse_socket_address(address: str) -> Optional[Tuple[str, int]]:
    """Parse an IP socket address such as ``127.0.0.1:6666`` or ``[::1]:6666``

    Host names are not resolved: only IP literals make a socket address,
    everything else is treated as a local path by connect().

    Returns:
        (host, port) or None if the string is not a socket address
    """
    host, sep, port_str = address.rpartition(":")
    if not sep or not host or not port_str.isdigit():
        return None

    port = int(port_str)
    if port > 65535:
        return None

    if host.startswith("[") and host.endswith("]"):
        host = host[1:-1]
        try:
            ipaddress.IPv6Address(host)
        except ValueError:
            return None
        return host, port

    try:
        ipaddress.IPv4Address(host)
    except ValueError:
        return None
    return host, port


@dataclass
class Transport:
    """Duplex byte stream to the host

    Owns both halves; close() releases them together and is idempotent.
    """
    kind: TransportKind
    address: str
    reader: asyncio.StreamReader
    writer: asyncio.StreamWriter
    _closed: bool = field(default=False, repr=False)

    @property
    def closed(self) -> bool:
        return self._closed

    async def read(self, n: int) -> bytes:
        """Read up to n bytes, b"" on EOF"""
        return await self.reader.read(n)

    async def write(self, data: bytes) -> None:
        """Write all bytes and wait until they are flushed"""
        self.writer.write(data)
        await self.writer.drain()

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self.writer.close()
        try:
            await self.writer.wait_closed()
        except (ConnectionError, OSError) as e:
            logger.debug("Transport %s closed with error: %s", self.address, e)


async def connect(address: str) -> Transport:
    """Connect to the host listening at address

    An address that parses as an IP socket address uses TCP; anything else
    is treated as a local socket path.

    Raises:
        AddressNotFound: If the local path does not exist
        TransportError: For any other connect failure
    """
    socket_address = parse_socket_address(address)

    if socket_address is not None:
        host, port = socket_address
        try:
            reader, writer = await asyncio.open_connection(host, port)
        except OSError as e:
            raise TransportError(f"Cannot connect to {address}: {e}")
        logger.debug("Connected to TCP address %s", address)
        return Transport(TransportKind.NETWORK, address, reader, writer)

    try:
        reader, writer = await asyncio.open_unix_connection(address)
    except FileNotFoundError:
        raise AddressNotFound(address)
    except OSError as e:
        raise TransportError(f"Cannot connect to {address}: {e}")
    logger.debug("Connected to local address %s", address)
    return Transport(TransportKind.LOCAL, address, reader, writer)
