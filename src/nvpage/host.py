"""Host API facade

Wraps the raw RPC calls the engine makes into named operations. Two kinds
of operations live here:

- Lifecycle calls (buffer creation, variable lookups used to find
  instances) propagate failures; the invocation cannot continue without
  them.
- Best-effort calls (title, autocommands, mode switches, user commands)
  log a host error and carry on.

Usage:
```python
host = HostApi(session)
output = await host.create_output_buffer(templates.SWITCH_NEW)
await host.set_buffer_title(output.buf, "make |")
```
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, List, Optional, Sequence

from nvpage import templates
from nvpage.rpc_message import EXT_BUFFER, ExtHandle
from nvpage.rpc_session import HostError, RpcSession

logger = logging.getLogger(__name__)


# PTY path polling after the terminal buffer is opened
PTY_POLL_ATTEMPTS = 64
PTY_POLL_INTERVAL = 0.008  # seconds

# Title retries as "name(1)" .. "name(98)" when the name is taken
TITLE_RETRIES = 98
RENAME_FAILED = "Failed to rename buffer"

# Leave terminal mode first, then feed the mode keys
INSERT_MODE_KEYS = r'call feedkeys("\<C-\>\<C-n>A", "n")'
FOLLOW_MODE_KEYS = r'call feedkeys("\<C-\>\<C-n>G", "n")'
SCROLL_MODE_KEYS = r'call feedkeys("\<C-\>\<C-n>ggM", "n")'


class BufferCreationError(Exception):
    """Output buffer could not be created or has no PTY"""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


@dataclass
class OutputBuffer:
    """Terminal buffer on the host together with the path of its PTY"""
    buf: ExtHandle
    pty_path: str


def _ext_code(metadata: dict, name: str, default: int) -> int:
    types = metadata.get("types") if isinstance(metadata, dict) else None
    if isinstance(types, dict) and isinstance(types.get(name), dict):
        code = types[name].get("id")
        if isinstance(code, int):
            return code
    return default


class HostApi:
    """Named host operations over an RpcSession"""

    def __init__(self, session: RpcSession):
        self.session = session
        self.buffer_code = _ext_code(session.api_metadata, "Buffer", EXT_BUFFER)

    @property
    def channel_id(self) -> Optional[int]:
        return self.session.channel_id

    def as_buffer(self, value: Any) -> ExtHandle:
        """Normalize a buffer reference (ext handle or plain number)"""
        if isinstance(value, ExtHandle):
            return value
        if isinstance(value, int) and not isinstance(value, bool):
            return ExtHandle.from_number(self.buffer_code, value)
        raise TypeError(f"Not a buffer reference: {value!r}")

    # =========================================================================
    # Raw calls
    # =========================================================================

    async def api_info(self) -> List[Any]:
        return await self.session.call("nvim_get_api_info")

    async def current_window(self) -> ExtHandle:
        return await self.session.call("nvim_get_current_win")

    async def current_buffer(self) -> ExtHandle:
        return self.as_buffer(await self.session.call("nvim_get_current_buf"))

    async def buffer_number(self, buf: ExtHandle) -> int:
        return await self.session.call("nvim_buf_get_number", buf)

    async def buffer_is_loaded(self, buf: ExtHandle) -> bool:
        return bool(await self.session.call("nvim_buf_is_loaded", buf))

    async def list_buffers(self) -> List[ExtHandle]:
        return [self.as_buffer(b) for b in await self.session.call("nvim_list_bufs")]

    async def list_windows(self) -> List[ExtHandle]:
        return list(await self.session.call("nvim_list_wins"))

    async def window_buffer(self, win: ExtHandle) -> ExtHandle:
        return self.as_buffer(await self.session.call("nvim_win_get_buf", win))

    async def set_current_window(self, win: ExtHandle) -> None:
        await self.session.call("nvim_set_current_win", win)

    async def set_current_buffer(self, buf: ExtHandle) -> None:
        await self.session.call("nvim_set_current_buf", buf)

    async def get_buffer_var(self, buf: ExtHandle, key: str) -> Any:
        return await self.session.call("nvim_buf_get_var", buf, key)

    async def set_buffer_var(self, buf: ExtHandle, key: str, value: Any) -> None:
        await self.session.call("nvim_buf_set_var", buf, key, value)

    async def delete_buffer(self, buf: ExtHandle, force: bool = True) -> None:
        await self.session.call("nvim_buf_delete", buf, {"force": force})

    async def exec_lua(self, code: str, args: Sequence[Any] = ()) -> Any:
        return await self.session.call("nvim_exec_lua", code, list(args))

    async def command(self, cmd: str) -> None:
        await self.session.call("nvim_command", cmd)

    async def channel_pty(self, chan: int) -> Optional[str]:
        info = await self.session.call("nvim_get_chan_info", chan)
        if isinstance(info, dict):
            pty = info.get("pty")
            if isinstance(pty, str) and pty:
                return pty
        return None

    # =========================================================================
    # Buffer lifecycle (failures propagate)
    # =========================================================================

    async def create_output_buffer(self, window_open: str) -> OutputBuffer:
        """Open a terminal buffer and resolve its PTY path

        Args:
            window_open: Lua snippet that defines ``buf`` and makes it current
                (templates.REPLACE_CURRENT, templates.SWITCH_NEW or
                templates.split())

        Raises:
            BufferCreationError: If the host refuses or no PTY shows up
        """
        code = templates.create_buffer(window_open)
        logger.debug("Create buffer:\n%s", code)

        try:
            value = await self.exec_lua(code)
        except HostError as e:
            raise BufferCreationError(f"Cannot create output buffer: {e.error_message}")

        if not isinstance(value, list) or len(value) != 2:
            raise BufferCreationError(f"Unexpected buffer creation result: {value!r}")
        buf, chan = value
        try:
            buf = self.as_buffer(buf)
        except TypeError as e:
            raise BufferCreationError(str(e))

        # The PTY is not guaranteed to exist the instant the job starts
        for attempt in range(PTY_POLL_ATTEMPTS):
            try:
                pty = await self.channel_pty(chan)
            except HostError as e:
                raise BufferCreationError(f"Cannot get channel {chan} info: {e.error_message}")
            if pty:
                logger.debug("Output buffer %r on %s after %d polls", buf, pty, attempt + 1)
                return OutputBuffer(buf, pty)
            await asyncio.sleep(PTY_POLL_INTERVAL)

        raise BufferCreationError(f"No PTY on channel {chan}")

    async def open_file(self, path: str) -> None:
        """Open path (or URI) in the current window

        Raises:
            HostError: If the host cannot open it
        """
        logger.debug("Open file %s", path)
        await self.exec_lua("vim.cmd('edit ' .. vim.fn.fnameescape(...))", [path])

    # =========================================================================
    # Best-effort calls (log and continue)
    # =========================================================================

    async def set_buffer_title(self, buf: ExtHandle, title: str) -> bool:
        """Rename buffer, adding a "(n)" suffix while the name is taken"""
        candidates = [title] + [f"{title}({n})" for n in range(1, TITLE_RETRIES + 1)]

        for name in candidates:
            try:
                await self.session.call("nvim_buf_set_name", buf, name)
            except HostError as e:
                if e.error_message == RENAME_FAILED:
                    logger.debug("Title %r is taken", name)
                    continue
                logger.error("Cannot update title: %s", e)
                return False

            # Refresh the statusline
            await self.best_effort("redraw", self.command("redraw!"))
            return True

        logger.error("Cannot update title: all names for %r are taken", title)
        return False

    async def prepare_output_buffer(self, initial_buf_nr: int, cmds: templates.OutputCommands) -> None:
        code = cmds.render(initial_buf_nr)
        logger.debug("Prepare output:\n%s", code)
        await self.best_effort(
            "prepare output (text might be displayed improperly)",
            self.exec_lua(code),
        )

    async def exec_autocmd(self, name: str) -> None:
        await self.best_effort(f"autocmd {name}", self.command(f"silent doautocmd User {name}"))

    async def command_post(self, cmd: str) -> None:
        await self.best_effort(f"post command {cmd!r}", self.command(cmd))

    async def lua_post(self, code: str) -> None:
        await self.best_effort("post lua", self.exec_lua(code))

    async def switch_to_window_and_buffer(self, win: ExtHandle, buf: ExtHandle) -> None:
        await self.best_effort("switch to window", self.set_current_window(win))
        await self.best_effort("switch to buffer", self.set_current_buffer(buf))

    async def set_insert_mode(self) -> None:
        await self.best_effort("set INSERT mode", self.command(INSERT_MODE_KEYS))

    async def set_follow_mode(self) -> None:
        await self.best_effort("set FOLLOW mode", self.command(FOLLOW_MODE_KEYS))

    async def set_scroll_mode(self) -> None:
        await self.best_effort("set SCROLL mode", self.command(SCROLL_MODE_KEYS))

    async def get_var_or(self, key: str, default: str) -> str:
        """Global variable as a string, default when unset or on error"""
        try:
            value = await self.session.call("nvim_get_var", key)
        except HostError as e:
            if not e.is_key_not_found():
                logger.error("Error getting var %s: %s", key, e)
            return default
        return value if isinstance(value, str) else str(value)

    async def best_effort(self, what: str, call) -> bool:
        """Await call, logging a host error instead of raising it"""
        try:
            await call
        except HostError as e:
            logger.error("Cannot %s: %s", what, e)
            return False
        return True

    # =========================================================================
    # Status messages
    # =========================================================================

    async def notify_query_finished(self, lines_sent: int) -> None:
        logger.debug("Query finished, %d lines sent", lines_sent)
        await self.exec_lua(templates.query_finished(lines_sent))

    async def notify_end_of_input(self) -> None:
        logger.debug("End of input")
        await self.exec_lua(templates.END_OF_INPUT)
