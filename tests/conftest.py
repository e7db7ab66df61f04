"""Shared fixtures

FakeNvim stands in for an RpcSession: it answers the host API calls the
engine makes from an in-memory model of buffers, windows and variables.
"""

import pytest

from nvpage.rpc_message import EXT_BUFFER, EXT_WINDOW, ExtHandle
from nvpage.rpc_session import HostError


def buf(n: int) -> ExtHandle:
    return ExtHandle.from_number(EXT_BUFFER, n)


def win(n: int) -> ExtHandle:
    return ExtHandle.from_number(EXT_WINDOW, n)


class FakeNvim:
    """In-memory host answering session.call()"""

    def __init__(self, pty_dir="/dev/pts"):
        self.pty_dir = pty_dir
        self.channel_id = 3
        self.api_metadata = {}
        self.buffers = [1]
        self.buffer_vars = {1: {}}
        self.buffer_names = {}
        self.windows = {1000: 1}
        self.current_win = 1000
        self.global_vars = {}
        self.chan_bufs = {}
        self.calls = []
        # Polls of nvim_get_chan_info that report no PTY yet
        self.pty_delay = 0
        # Buffer number -> error message raised by nvim_buf_get_var
        self.var_errors = {}
        # Names that nvim_buf_set_name refuses
        self.taken_names = set()
        self.fail_methods = {}
        self.closed = False

    @property
    def current_buf(self) -> int:
        return self.windows[self.current_win]

    def methods(self):
        return [c[0] for c in self.calls]

    async def call(self, method, *args):
        self.calls.append((method, args))
        if method in self.fail_methods:
            raise HostError(method, 0, self.fail_methods[method])
        return getattr(self, method)(*args)

    async def close(self):
        self.closed = True

    def add_buffer(self, tag=None) -> int:
        n = max(self.buffers) + 1
        self.buffers.append(n)
        self.buffer_vars[n] = {}
        if tag is not None:
            self.buffer_vars[n]["page_instance"] = tag
        return n

    # Host API

    def nvim_get_api_info(self):
        return [self.channel_id, self.api_metadata]

    def nvim_get_current_win(self):
        return win(self.current_win)

    def nvim_get_current_buf(self):
        return buf(self.current_buf)

    def nvim_buf_get_number(self, b):
        return b.number

    def nvim_buf_is_loaded(self, b):
        return b.number in self.buffers

    def nvim_list_bufs(self):
        return [buf(n) for n in self.buffers]

    def nvim_list_wins(self):
        return [win(n) for n in self.windows]

    def nvim_win_get_buf(self, w):
        return buf(self.windows[w.number])

    def nvim_set_current_win(self, w):
        self.current_win = w.number

    def nvim_set_current_buf(self, b):
        self.windows[self.current_win] = b.number

    def nvim_buf_get_var(self, b, key):
        n = b.number
        if n in self.var_errors:
            raise HostError("nvim_buf_get_var", 0, self.var_errors[n])
        try:
            return self.buffer_vars[n][key]
        except KeyError:
            raise HostError("nvim_buf_get_var", 0, f"Key not found: {key}")

    def nvim_buf_set_var(self, b, key, value):
        self.buffer_vars[b.number][key] = value

    def nvim_buf_delete(self, b, opts):
        n = b.number
        self.buffers.remove(n)
        del self.buffer_vars[n]
        for w, shown in self.windows.items():
            if shown == n:
                self.windows[w] = self.buffers[0]

    def nvim_buf_set_name(self, b, name):
        if name in self.taken_names:
            raise HostError("nvim_buf_set_name", 0, "Failed to rename buffer")
        self.buffer_names[b.number] = name

    def nvim_get_var(self, key):
        try:
            return self.global_vars[key]
        except KeyError:
            raise HostError("nvim_get_var", 0, f"Key not found: {key}")

    def nvim_command(self, cmd):
        return None

    def nvim_exec_lua(self, code, args):
        if "termopen" in code:
            if "nvim_create_buf" in code:
                n = self.add_buffer()
                self.windows[self.current_win] = n
            else:
                n = self.current_buf
            chan = 100 + n
            self.chan_bufs[chan] = n
            return [n, chan]
        return None

    def nvim_get_chan_info(self, chan):
        if self.pty_delay > 0:
            self.pty_delay -= 1
            return {"id": chan}
        return {"id": chan, "pty": f"{self.pty_dir}/{self.chan_bufs[chan]}"}


@pytest.fixture
def nvim():
    return FakeNvim()
