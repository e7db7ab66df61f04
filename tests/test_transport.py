"""Tests for transport module

Tests socket address parsing and connecting over local and TCP sockets.
"""

import asyncio
import os
import tempfile

import pytest

from nvpage.transport import (
    AddressNotFound,
    TransportError,
    TransportKind,
    connect,
    parse_socket_address,
)


async def _echo(reader: asyncio.StreamReader, writer: asyncio.StreamWriter):
    data = await reader.read(1024)
    writer.write(data)
    await writer.drain()
    writer.close()


# Test IP literal socket addresses are recognized
def test_parse_socket_address_ip_literals():
    assert parse_socket_address("127.0.0.1:6666") == ("127.0.0.1", 6666)
    assert parse_socket_address("[::1]:7777") == ("::1", 7777)
    assert parse_socket_address("0.0.0.0:0") == ("0.0.0.0", 0)


# Test paths, host names and malformed ports are not socket addresses
def test_parse_socket_address_rejects_others():
    assert parse_socket_address("/run/user/1000/nvim.1.0") is None
    assert parse_socket_address("localhost:6666") is None
    assert parse_socket_address("127.0.0.1") is None
    assert parse_socket_address("127.0.0.1:port") is None
    assert parse_socket_address("127.0.0.1:70000") is None
    assert parse_socket_address("::1:6666") is None
    assert parse_socket_address("[nothost]:1") is None


# Test a missing local path is reported as AddressNotFound
@pytest.mark.asyncio
async def test_connect_missing_path():
    with tempfile.TemporaryDirectory() as d:
        with pytest.raises(AddressNotFound) as excinfo:
            await connect(os.path.join(d, "socket-missing"))
    assert isinstance(excinfo.value, TransportError)


# Test a path that is not a socket is a terminal TransportError
@pytest.mark.asyncio
async def test_connect_non_socket_path():
    with tempfile.NamedTemporaryFile() as f:
        with pytest.raises(TransportError) as excinfo:
            await connect(f.name)
    assert not isinstance(excinfo.value, AddressNotFound)


# Test local transport writes, reads and closes idempotently
@pytest.mark.asyncio
async def test_connect_local_socket():
    with tempfile.TemporaryDirectory() as d:
        path = os.path.join(d, "s")
        server = await asyncio.start_unix_server(_echo, path)
        try:
            transport = await connect(path)
            assert transport.kind == TransportKind.LOCAL

            await transport.write(b"ping")
            assert await transport.read(4) == b"ping"

            await transport.close()
            await transport.close()
            assert transport.closed
        finally:
            server.close()
            await server.wait_closed()


# Test an IP socket address uses the network kind
@pytest.mark.asyncio
async def test_connect_tcp_socket():
    server = await asyncio.start_server(_echo, "127.0.0.1", 0)
    port = server.sockets[0].getsockname()[1]
    try:
        transport = await connect(f"127.0.0.1:{port}")
        assert transport.kind == TransportKind.NETWORK

        await transport.write(b"pong")
        assert await transport.read(4) == b"pong"
        await transport.close()
    finally:
        server.close()
        await server.wait_closed()
