"""Instance registry - named output buffers reused across invocations

An instance is an output buffer tagged with the buffer variable
``page_instance = [name, pty_path]``. Lookup scans host buffers in the
host's enumeration order and stops at the first match.

Two invocations creating the same name at the same time can both succeed
and leave duplicate tags; lookup then returns the lower-numbered buffer.
"""

import logging
from typing import Optional

from nvpage.host import HostApi, OutputBuffer
from nvpage.rpc_message import ExtHandle
from nvpage.rpc_session import HostError
from nvpage.templates import INSTANCE_VAR

logger = logging.getLogger(__name__)


class InstanceRegistry:
    """find / create_and_tag / close / focus keyed by instance name"""

    def __init__(self, host: HostApi):
        self.host = host

    async def find(self, name: str) -> Optional[OutputBuffer]:
        """Return the first buffer tagged with name

        Raises:
            HostError: For any host error other than a missing tag
        """
        for buf in await self.host.list_buffers():
            try:
                tag = await self.host.get_buffer_var(buf, INSTANCE_VAR)
            except HostError as e:
                if e.is_key_not_found():
                    continue
                raise

            if not isinstance(tag, list) or len(tag) != 2:
                logger.warning("Malformed instance tag on %r: %r", buf, tag)
                continue

            tag_name, pty_path = tag
            if tag_name == name and isinstance(pty_path, str):
                logger.debug("Instance %s is %r on %s", name, buf, pty_path)
                return OutputBuffer(buf, pty_path)

        return None

    async def tag(self, output: OutputBuffer, name: str) -> None:
        await self.host.set_buffer_var(output.buf, INSTANCE_VAR, [name, output.pty_path])

    async def create_and_tag(self, name: str, window_open: str) -> OutputBuffer:
        """Create an output buffer and mark it as instance name

        Raises:
            BufferCreationError: If the buffer cannot be created
            HostError: If the tag cannot be set
        """
        output = await self.host.create_output_buffer(window_open)
        await self.tag(output, name)
        logger.debug("New instance %s on %s", name, output.pty_path)
        return output

    async def close(self, name: str) -> bool:
        """Force-delete the instance buffer; False if there is none"""
        output = await self.find(name)
        if output is None:
            logger.debug("No instance %s to close", name)
            return False
        await self.host.delete_buffer(output.buf, force=True)
        return True

    async def focus(self, name: str) -> bool:
        """Bring the instance buffer to front; False if there is none"""
        output = await self.find(name)
        if output is None:
            return False
        await self.focus_buffer(output.buf)
        return True

    async def focus_buffer(self, buf: ExtHandle) -> None:
        if await self.host.current_buffer() == buf:
            return

        for win in await self.host.list_windows():
            if await self.host.window_buffer(win) == buf:
                await self.host.set_current_window(win)
                return

        await self.host.set_current_buffer(buf)
