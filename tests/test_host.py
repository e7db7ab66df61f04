"""Tests for host module

Tests buffer creation with PTY polling, title retries and the best-effort
calls against the in-memory FakeNvim host.
"""

import logging

import pytest

from nvpage import host as host_mod
from nvpage import templates
from nvpage.host import BufferCreationError, HostApi
from nvpage.rpc_message import EXT_BUFFER, ExtHandle
from nvpage.rpc_session import HostError


# Test a new buffer is created and its PTY resolved once it shows up
@pytest.mark.asyncio
async def test_create_output_buffer_polls_pty(nvim, monkeypatch):
    monkeypatch.setattr(host_mod, "PTY_POLL_INTERVAL", 0)
    nvim.pty_delay = 3
    host = HostApi(nvim)

    output = await host.create_output_buffer(templates.SWITCH_NEW)

    assert output.buf == ExtHandle.from_number(EXT_BUFFER, 2)
    assert output.pty_path == "/dev/pts/2"
    assert nvim.methods().count("nvim_get_chan_info") == 4
    assert nvim.current_buf == 2


# Test creation fails when the PTY never appears
@pytest.mark.asyncio
async def test_create_output_buffer_without_pty(nvim, monkeypatch):
    monkeypatch.setattr(host_mod, "PTY_POLL_INTERVAL", 0)
    nvim.pty_delay = 10 ** 6

    with pytest.raises(BufferCreationError):
        await HostApi(nvim).create_output_buffer(templates.SWITCH_NEW)
    assert nvim.methods().count("nvim_get_chan_info") == host_mod.PTY_POLL_ATTEMPTS


# Test a host error while creating the buffer is fatal
@pytest.mark.asyncio
async def test_create_output_buffer_host_error(nvim):
    nvim.fail_methods["nvim_exec_lua"] = "E492: Not an editor command"

    with pytest.raises(BufferCreationError):
        await HostApi(nvim).create_output_buffer(templates.SWITCH_NEW)


# Test the replacing opener turns the current buffer into the output buffer
@pytest.mark.asyncio
async def test_create_output_buffer_replacing(nvim):
    output = await HostApi(nvim).create_output_buffer(templates.REPLACE_CURRENT)

    assert output.buf == ExtHandle.from_number(EXT_BUFFER, 1)
    assert nvim.buffers == [1]


# Test the title gets a numbered suffix while the name is taken
@pytest.mark.asyncio
async def test_set_buffer_title_retries(nvim):
    nvim.taken_names = {"make |", "make |(1)"}
    b = ExtHandle.from_number(EXT_BUFFER, 1)

    assert await HostApi(nvim).set_buffer_title(b, "make |") is True
    assert nvim.buffer_names[1] == "make |(2)"
    assert ("nvim_command", ("redraw!",)) in nvim.calls


# Test the title gives up after the last numbered name
@pytest.mark.asyncio
async def test_set_buffer_title_all_taken(nvim):
    nvim.taken_names = {"t"} | {f"t({n})" for n in range(1, 99)}
    b = ExtHandle.from_number(EXT_BUFFER, 1)

    assert await HostApi(nvim).set_buffer_title(b, "t") is False
    assert nvim.methods().count("nvim_buf_set_name") == 99


# Test other rename errors are logged, not raised
@pytest.mark.asyncio
async def test_set_buffer_title_other_error(nvim, caplog):
    nvim.fail_methods["nvim_buf_set_name"] = "Invalid buffer id: 9"
    b = ExtHandle.from_number(EXT_BUFFER, 9)

    with caplog.at_level(logging.ERROR):
        assert await HostApi(nvim).set_buffer_title(b, "t") is False
    assert "Cannot update title" in caplog.text
    assert nvim.methods().count("nvim_buf_set_name") == 1


# Test variable lookup falls back to the default
@pytest.mark.asyncio
async def test_get_var_or(nvim, caplog):
    host = HostApi(nvim)
    nvim.global_vars["page_icon_pipe"] = " >>"

    assert await host.get_var_or("page_icon_pipe", " |") == " >>"
    with caplog.at_level(logging.ERROR):
        assert await host.get_var_or("page_icon_instance", "@ ") == "@ "
    assert caplog.text == ""


# Test best-effort calls log host errors and continue
@pytest.mark.asyncio
async def test_best_effort_calls(nvim, caplog):
    nvim.fail_methods["nvim_command"] = "E216: No such group or event: User PageConnect"
    host = HostApi(nvim)

    with caplog.at_level(logging.ERROR):
        await host.exec_autocmd("PageConnect")
        await host.set_follow_mode()
        await host.command_post("echo 1")
    assert "PageConnect" in caplog.text
    assert nvim.methods().count("nvim_command") == 3


# Test lifecycle calls propagate host errors
@pytest.mark.asyncio
async def test_open_file_propagates(nvim):
    nvim.fail_methods["nvim_exec_lua"] = "E37: No write since last change"

    with pytest.raises(HostError):
        await HostApi(nvim).open_file("/etc/hosts")


# Test status messages are sent as lua with the sent count
@pytest.mark.asyncio
async def test_notify_query_finished(nvim):
    await HostApi(nvim).notify_query_finished(3)

    method, (code, args) = nvim.calls[-1]
    assert method == "nvim_exec_lua"
    assert "3 lines read; has more" in code
    assert args == []


# Test plain numbers are accepted as buffer references
def test_as_buffer(nvim):
    host = HostApi(nvim)
    b = ExtHandle.from_number(EXT_BUFFER, 4)

    assert host.as_buffer(4) == b
    assert host.as_buffer(b) is b
    with pytest.raises(TypeError):
        host.as_buffer("4")


# Test ext codes announced in the api metadata are honored
def test_buffer_code_from_metadata(nvim):
    nvim.api_metadata = {"types": {"Buffer": {"id": 7, "prefix": "nvim_buf_"}}}

    assert HostApi(nvim).as_buffer(1) == ExtHandle.from_number(7, 1)
