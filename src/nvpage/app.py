"""Invocation control flow

One run of the engine, from reading ahead on the input to releasing the
host connection:

1. Prefetch input; if it all fits, print it and finish without a host
2. Connect to the given address, or spawn a child host and connect to it
3. Handshake and remember the initial window and buffer
4. Close an instance, open files
5. Resolve the output buffer (instance or one-off)
6. Title, focus, user commands, mode, focus restoration
7. Stream input into the PTY, or print the PTY path
8. Disconnect hooks, wait for a spawned child, close the session

Returns the process exit status: 0 on success and when the output was closed
on purpose, 1 on fatal errors.
"""

import asyncio
import logging
import os
import sys
from dataclasses import dataclass, field
from typing import BinaryIO, List, Optional, TextIO

from nvpage import templates
from nvpage import transport as transport_mod
from nvpage.config import ConnectionRequest, OutputUsage, RestoreFocus
from nvpage.host import BufferCreationError, HostApi, OutputBuffer
from nvpage.instances import InstanceRegistry
from nvpage.notifications import NotificationRouter, new_session_id
from nvpage.rpc_io import RpcIoError
from nvpage.rpc_message import ExtHandle
from nvpage.rpc_session import HostError, RpcError, RpcSession
from nvpage.streamer import LineSource, OutputClosed, OutputStreamer, PtySink, prefetch
from nvpage.supervisor import SpawnSpec, SupervisorError, restore_terminal, spawn_and_connect, tmp_dir
from nvpage.transport import TransportError

logger = logging.getLogger(__name__)


EXIT_OK = 0
EXIT_FAILURE = 1


@dataclass
class RunContext:
    """State shared by the steps of one invocation"""
    request: ConnectionRequest
    input_from_pipe: bool
    session_id: str
    router: NotificationRouter
    prefetched: List[bytes] = field(default_factory=list)
    session: Optional[RpcSession] = None
    child: Optional[asyncio.subprocess.Process] = None
    host: Optional[HostApi] = None
    initial_win: Optional[ExtHandle] = None
    initial_buf: Optional[ExtHandle] = None
    initial_buf_nr: int = 0
    sink: Optional[PtySink] = None

    @property
    def child_spawned(self) -> bool:
        return self.child is not None


async def run(
    request: ConnectionRequest,
    stdin: Optional[BinaryIO] = None,
    stdout: Optional[TextIO] = None,
    input_from_pipe: Optional[bool] = None,
    term_width: Optional[int] = None,
) -> int:
    """Run one invocation

    Args:
        request: Resolved options
        stdin: Binary input stream (default: sys.stdin.buffer)
        stdout: Text output for the PTY path and dumped input
            (default: sys.stdout)
        input_from_pipe: Whether stdin is not a terminal (detected when None)
        term_width: Line width budget for prefetching

    Returns:
        Exit status
    """
    stdin = sys.stdin.buffer if stdin is None else stdin
    stdout = sys.stdout if stdout is None else stdout
    if input_from_pipe is None:
        input_from_pipe = not os.isatty(stdin.fileno())

    for option in request.ignored_without_address():
        logger.warning("%s is ignored if address (-a or $NVIM) isn't set", option)

    session_id = new_session_id()
    ctx = RunContext(request, input_from_pipe, session_id, NotificationRouter(session_id))

    if request.is_prefetch_allowed(input_from_pipe):
        lines, exhausted = prefetch(stdin, request.prefetch_lines, term_width)
        if exhausted:
            logger.info("Input fits in %d lines, no host needed", len(lines))
            dump(lines, stdout)
            return EXIT_OK
        ctx.prefetched = lines

    try:
        await connect(ctx)
        await manage_state(ctx, stdin, stdout)
        if ctx.child is not None and ctx.child.returncode is None:
            await ctx.child.wait()
        return EXIT_OK
    except OutputClosed as e:
        logger.info("%s", e.message)
        if ctx.child is not None and ctx.child.returncode is None:
            await ctx.child.wait()
        return EXIT_OK
    except (TransportError, SupervisorError, RpcError, RpcIoError, BufferCreationError, OSError) as e:
        logger.error("%s", e)
        if ctx.child is not None:
            # The child host may have left the terminal in its UI state
            await restore_terminal(ctx.child)
        return EXIT_FAILURE
    finally:
        if ctx.sink is not None:
            ctx.sink.close()
        if ctx.session is not None:
            await ctx.session.close()


def dump(lines: List[bytes], stdout: TextIO) -> None:
    """Write prefetched input to stdout unchanged"""
    out = getattr(stdout, "buffer", None)
    if out is not None:
        for line in lines:
            out.write(line)
        out.flush()
    else:
        for line in lines:
            stdout.write(line.decode(errors="replace"))
        stdout.flush()


async def connect(ctx: RunContext) -> None:
    request = ctx.request
    if request.address is not None:
        transport = await transport_mod.connect(request.address)
        ctx.session = RpcSession.open(transport, ctx.router)
    else:
        spec = SpawnSpec(
            tmp_dir=tmp_dir(),
            config_path=request.config_path,
            extra_args=request.extra_args,
            print_protection=request.redirect_protection_enabled(ctx.input_from_pipe),
        )
        ctx.session, ctx.child = await spawn_and_connect(spec, ctx.session_id, ctx.router)

    await ctx.session.handshake()
    ctx.host = HostApi(ctx.session)
    ctx.initial_win = await ctx.host.current_window()
    ctx.initial_buf = await ctx.host.current_buffer()
    ctx.initial_buf_nr = await ctx.host.buffer_number(ctx.initial_buf)


async def manage_state(ctx: RunContext, stdin: BinaryIO, stdout: TextIO) -> None:
    request, host = ctx.request, ctx.host
    registry = InstanceRegistry(host)

    if request.instance_close is not None:
        await registry.close(request.instance_close)

    await display_files(ctx)

    usage = request.output_usage(ctx.input_from_pipe, ctx.child_spawned)
    if usage == OutputUsage.DISABLED:
        return

    new_instance = False
    if request.instance is not None:
        output = await registry.find(request.instance)
        if output is None:
            output = await registry.create_and_tag(request.instance, window_opener(ctx, usage))
            await prepare_output(ctx)
            new_instance = True
    else:
        output = await create_oneoff_buffer(ctx, usage)

    ctx.sink = PtySink(output.pty_path)
    streamer = OutputStreamer(host, ctx.router, ctx.sink, child_spawned=ctx.child_spawned)

    focused = True
    if request.instance is not None:
        await update_instance_title(ctx, output, request.instance)
        focused = new_instance or request.should_focus_instance()
        if focused:
            await registry.focus_buffer(output.buf)
            if request.replaces_instance_content():
                await streamer.clear_screen()
    else:
        await update_title(ctx, output)

    if request.command_auto:
        await host.exec_autocmd("PageConnect")
    if request.command_post is not None:
        await host.command_post(request.command_post)
    if request.lua_post is not None:
        await host.lua_post(request.lua_post)

    if focused:
        await focus_initial_buffer(ctx)

    await handle_output(ctx, streamer, stdin, stdout, output)
    await disconnect_commands(ctx, output)


async def display_files(ctx: RunContext) -> None:
    """Open each file in its own buffer"""
    request, host = ctx.request, ctx.host
    for path in request.files:
        try:
            await host.open_file(path)
        except HostError as e:
            logger.warning("Error opening %r: %s", path, e)
            continue

        cmds = templates.file_commands(request.command, request.lua, request.writable)
        await host.prepare_output_buffer(ctx.initial_buf_nr, cmds)
        if request.follow_all:
            await host.set_follow_mode()
        else:
            await host.set_scroll_mode()

    # A split output buffer should show next to the shell it came from
    if request.files and request.is_split_implied():
        await host.switch_to_window_and_buffer(ctx.initial_win, ctx.initial_buf)


def window_opener(ctx: RunContext, usage: OutputUsage) -> str:
    """Lua snippet placing the new output buffer"""
    if ctx.child_spawned and not ctx.request.files:
        return templates.REPLACE_CURRENT
    if usage == OutputUsage.CREATE_SPLIT:
        return templates.split(ctx.request.split)
    return templates.SWITCH_NEW


async def create_oneoff_buffer(ctx: RunContext, usage: OutputUsage) -> OutputBuffer:
    output = await ctx.host.create_output_buffer(window_opener(ctx, usage))
    await prepare_output(ctx)
    return output


async def prepare_output(ctx: RunContext) -> None:
    """Set up the current (freshly created) output buffer"""
    request, host = ctx.request, ctx.host
    cmds = templates.output_commands(
        ctx.session_id,
        host.channel_id,
        request.query_lines,
        request.filetype,
        command=request.command,
        lua=request.lua,
        writable=request.writable,
        pwd=os.environ.get("PWD", os.getcwd()) if request.pwd else None,
    )
    await host.prepare_output_buffer(ctx.initial_buf_nr, cmds)


async def update_title(ctx: RunContext, output: OutputBuffer) -> None:
    if ctx.input_from_pipe:
        key, default = "page_icon_pipe", " |"
    else:
        key, default = "page_icon_redirect", " >"
    title = await ctx.host.get_var_or(key, default)
    if ctx.request.name:
        title = ctx.request.name + title
    await ctx.host.set_buffer_title(output.buf, title)


async def update_instance_title(ctx: RunContext, output: OutputBuffer, name: str) -> None:
    title = name + await ctx.host.get_var_or("page_icon_instance", "@ ")
    if ctx.request.name and ctx.request.name != name:
        title += ctx.request.name
    await ctx.host.set_buffer_title(output.buf, title)


async def focus_initial_buffer(ctx: RunContext) -> None:
    request, host = ctx.request, ctx.host

    if request.follow:
        await host.set_follow_mode()
    else:
        await host.set_scroll_mode()

    restore = request.restore_focus(ctx.child_spawned)
    if restore == RestoreFocus.DISABLED:
        return
    await host.switch_to_window_and_buffer(ctx.initial_win, ctx.initial_buf)
    if restore == RestoreFocus.INSERT:
        await host.set_insert_mode()


async def handle_output(
    ctx: RunContext,
    streamer: OutputStreamer,
    stdin: BinaryIO,
    stdout: TextIO,
    output: OutputBuffer,
) -> None:
    if ctx.input_from_pipe:
        source = LineSource(ctx.prefetched, stdin)
        if ctx.request.query_lines:
            written = await streamer.stream_query(source, ctx.request.query_lines)
        else:
            written = await streamer.stream_all(source)
        logger.info("%d lines written", written)

    if ctx.request.should_print_pty_path(ctx.input_from_pipe, ctx.child_spawned):
        print(output.pty_path, file=stdout, flush=True)


async def disconnect_commands(ctx: RunContext, output: OutputBuffer) -> None:
    """Run PageDisconnect on the output buffer, refocusing it if needed"""
    host = ctx.host
    if not ctx.request.command_auto:
        return

    active = await host.current_buffer()
    switched = active != output.buf
    if switched:
        await host.set_current_buffer(output.buf)

    await host.exec_autocmd("PageDisconnect")

    if not switched:
        return
    # The autocommand may have closed the buffer we came from
    if not await host.buffer_is_loaded(active):
        return
    await host.set_current_buffer(active)
    if active == ctx.initial_buf and ctx.request.restore_focus(ctx.child_spawned) == RestoreFocus.INSERT:
        await host.set_insert_mode()
