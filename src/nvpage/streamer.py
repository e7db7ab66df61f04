"""Output streamer - line transfer from the input into the buffer PTY

Two streaming modes:

- Unbounded: every input line is written as soon as it is read.
- Query-gated: lines are sent in parts. After each part the host is told
  how many lines were sent and the streamer waits until the host asks for
  more (``request-chunk``) or closes the buffer.

A failed PTY write does not end the invocation right away. The buffer may
have been closed on purpose, in which case ``buffer-closed`` arrives shortly
after and the run ends cleanly with OutputClosed. Without that signal the
original OSError is raised.
"""

import asyncio
import logging
from collections import deque
from dataclasses import dataclass
from typing import BinaryIO, Iterable, List, Optional, Tuple

from nvpage.notifications import BufferClosed, NotificationRouter, RequestChunk, RequestDefaultChunk

logger = logging.getLogger(__name__)


CLEAR_SCREEN = b"\x1b[3J\x1b[H\x1b[2J"

# How long a failed write waits for buffer-closed
CLOSED_TIMEOUT = 1.0  # seconds


class OutputClosed(Exception):
    """Output buffer or host was closed on purpose; exit status 0"""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


@dataclass
class QueryState:
    """Progress through the current part of a query-gated stream"""
    expected: int = 0
    remaining: int = 0

    def next_part(self, lines: int) -> None:
        self.expected = lines
        self.remaining = lines

    def line_sent(self) -> None:
        self.remaining -= 1

    def is_part_sent(self) -> bool:
        return self.remaining == 0

    def sent(self) -> int:
        return self.expected - self.remaining


class PtySink:
    """Append-only handle to the PTY, opened on first write"""

    def __init__(self, path: str):
        self.path = path
        self._file: Optional[BinaryIO] = None

    @property
    def opened(self) -> bool:
        return self._file is not None

    def _handle(self) -> BinaryIO:
        if self._file is None:
            logger.debug("Open PTY %s", self.path)
            self._file = open(self.path, "ab", buffering=0)
        return self._file

    def write(self, data: bytes) -> None:
        """Write all of data

        Raises:
            OSError: If the PTY cannot be opened or written
        """
        f = self._handle()
        view = memoryview(data)
        while view:
            n = f.write(view)
            if n is None:
                n = 0
            view = view[n:]

    def clear_screen(self) -> None:
        self.write(CLEAR_SCREEN)

    def close(self) -> None:
        if self._file is not None:
            try:
                self._file.close()
            except OSError as e:
                logger.debug("Closing PTY %s: %s", self.path, e)
            self._file = None


def read_line(stream: BinaryIO, width: Optional[int] = None) -> bytes:
    """Read one line, b"" at end of input

    A line ends after a newline byte or, with width, once width bytes were
    read. No terminator is added in the latter case.
    """
    if width:
        return stream.readline(width)
    return stream.readline()


def prefetch(stream: BinaryIO, count: int, width: Optional[int] = None) -> Tuple[List[bytes], bool]:
    """Read up to count + 1 lines ahead of connecting

    Returns:
        (lines, exhausted) where exhausted means input ended within the
        budget, so everything fits on one screen
    """
    lines: List[bytes] = []
    while len(lines) < count + 1:
        line = read_line(stream, width)
        if not line:
            return lines, True
        lines.append(line)
    return lines, False


class LineSource:
    """Prefetched lines first, then lines read from stream"""

    def __init__(self, prefetched: Iterable[bytes] = (), stream: Optional[BinaryIO] = None):
        self._prefetched = deque(prefetched)
        self.stream = stream

    async def next_line(self) -> Optional[bytes]:
        """Next line, None at end of input"""
        if self._prefetched:
            return self._prefetched.popleft()
        if self.stream is None:
            return None

        try:
            line = await asyncio.to_thread(read_line, self.stream)
        except OSError as e:
            logger.warning("Error reading line from input: %s", e)
            return None
        return line or None


class OutputStreamer:
    """Writes lines into the output buffer PTY and follows the query protocol"""

    def __init__(
        self,
        host,
        router: NotificationRouter,
        sink: PtySink,
        child_spawned: bool = False,
        closed_timeout: float = CLOSED_TIMEOUT,
    ):
        """Create an output streamer

        Args:
            host: HostApi (only the notify_* status calls are used)
            router: Source of host events for this session
            sink: PTY of the output buffer
            child_spawned: Host is a child of this process; its channel
                closing then counts as an intentional close
            closed_timeout: Seconds to wait for buffer-closed after a
                failed write
        """
        self.host = host
        self.router = router
        self.sink = sink
        self.child_spawned = child_spawned
        self.closed_timeout = closed_timeout
        self.lines_written = 0

    async def write(self, data: bytes) -> None:
        """Write raw bytes, classifying a failure

        Raises:
            OutputClosed: If the buffer or the spawned host was closed
            OSError: If the write failed for any other reason
        """
        try:
            await asyncio.to_thread(self.sink.write, data)
        except OSError as e:
            logger.info("PTY write failed: %s", e)
            await self._raise_write_failure(e)

    async def write_line(self, line: bytes) -> None:
        await self.write(line)
        self.lines_written += 1

    async def clear_screen(self) -> None:
        await self.write(CLEAR_SCREEN)

    async def _raise_write_failure(self, error: OSError):
        try:
            event = await self.router.wait_event(self.closed_timeout)
        except asyncio.TimeoutError:
            event = False

        if isinstance(event, BufferClosed):
            raise OutputClosed("Buffer was closed, not all input is shown")
        if event is None and self.child_spawned:
            raise OutputClosed("Host was closed, not all input is shown")

        logger.debug("No close signal after failed write (got %r)", event)
        raise error

    async def stream_all(self, source: LineSource) -> int:
        """Copy every line from source

        Returns:
            Number of lines written
        """
        while True:
            line = await source.next_line()
            if line is None:
                return self.lines_written
            await self.write_line(line)

    async def stream_query(self, source: LineSource, chunk_size: int) -> int:
        """Copy lines from source in parts requested by the host

        Args:
            source: Lines to send
            chunk_size: Size of the first part and of default-sized parts

        Returns:
            Number of lines written

        Raises:
            OutputClosed: When the host closes the buffer or the channel
                while waiting for the next request
        """
        state = QueryState()
        state.next_part(chunk_size)

        while True:
            await self._wait_for_request(state, chunk_size)
            line = await source.next_line()
            if line is None:
                await self.host.notify_query_finished(state.sent())
                break
            await self.write_line(line)
            state.line_sent()

        await self.host.notify_end_of_input()
        return self.lines_written

    async def _wait_for_request(self, state: QueryState, chunk_size: int):
        if not state.is_part_sent():
            return

        await self.host.notify_query_finished(state.sent())
        event = await self.router.next_event()

        if isinstance(event, RequestChunk):
            logger.debug("Host requested %d lines", event.count)
            state.next_part(event.count)
        elif isinstance(event, RequestDefaultChunk):
            logger.debug("Host requested a default part")
            state.next_part(chunk_size)
        elif isinstance(event, BufferClosed):
            raise OutputClosed("Buffer closed")
        else:
            raise OutputClosed("Host closed")
