"""Tests for config module

Tests the policies derived from a ConnectionRequest.
"""

from nvpage.config import (
    ConnectionRequest,
    InstanceMode,
    OutputUsage,
    RestoreFocus,
    SplitOptions,
)


# Test the output usage for piped input, splits and plain file opening
def test_output_usage():
    assert ConnectionRequest().output_usage(input_from_pipe=True) == OutputUsage.CREATE_SUBSTITUTING
    assert ConnectionRequest().output_usage(input_from_pipe=False) == OutputUsage.CREATE_SUBSTITUTING

    split = ConnectionRequest(split=SplitOptions(right=1))
    assert split.output_usage(False) == OutputUsage.CREATE_SPLIT
    assert split.output_usage(False, child_spawned=True) == OutputUsage.CREATE_SUBSTITUTING

    files_only = ConnectionRequest(files=["a.txt"])
    assert files_only.output_usage(False) == OutputUsage.DISABLED
    assert files_only.output_usage(False, child_spawned=True) == OutputUsage.DISABLED
    assert files_only.output_usage(True) == OutputUsage.CREATE_SUBSTITUTING

    close_only = ConnectionRequest(instance_close="old")
    assert close_only.output_usage(False) == OutputUsage.DISABLED


# Test options that imply an output buffer
def test_output_implied():
    assert not ConnectionRequest().is_output_implied()
    assert ConnectionRequest(filetype="log").is_output_implied()
    assert ConnectionRequest(instance="x").is_output_implied()
    assert ConnectionRequest(files=["a"], follow=True).output_usage(False) == OutputUsage.CREATE_SUBSTITUTING


# Test prefetch needs piped input and nothing that forces a buffer
def test_prefetch_allowed():
    request = ConnectionRequest(prefetch_lines=10)
    assert request.is_prefetch_allowed(True)
    assert not request.is_prefetch_allowed(False)
    assert not ConnectionRequest(prefetch_lines=0).is_prefetch_allowed(True)
    assert not ConnectionRequest(prefetch_lines=10, output_open=True).is_prefetch_allowed(True)
    assert not ConnectionRequest(prefetch_lines=10, instance_close="x").is_prefetch_allowed(True)


# Test redirection protection honors the flag, piped input and environment
def test_redirect_protection():
    request = ConnectionRequest()
    assert request.redirect_protection_enabled(False, env={})
    assert request.redirect_protection_enabled(False, env={"PAGE_REDIRECTION_PROTECT": "1"})
    assert not request.redirect_protection_enabled(False, env={"PAGE_REDIRECTION_PROTECT": "0"})
    assert not request.redirect_protection_enabled(False, env={"PAGE_REDIRECTION_PROTECT": ""})
    assert not request.redirect_protection_enabled(True, env={})
    assert not ConnectionRequest(no_protect=True).redirect_protection_enabled(False, env={})


# Test instance focus in replace and append modes
def test_should_focus_instance():
    assert ConnectionRequest(instance_mode=InstanceMode.REPLACE, back=True).should_focus_instance()

    append = InstanceMode.APPEND
    assert ConnectionRequest(instance_mode=append).should_focus_instance()
    assert not ConnectionRequest(instance_mode=append, back=True).should_focus_instance()
    assert not ConnectionRequest(instance_mode=append, back_restore=True).should_focus_instance()
    assert ConnectionRequest(instance_mode=append, back=True, follow=True).should_focus_instance()
    assert ConnectionRequest(instance_mode=append, back=True, command_post="echo").should_focus_instance()


# Test focus restoration is disabled for a spawned host
def test_restore_focus():
    assert ConnectionRequest(back=True).restore_focus(False) == RestoreFocus.NORMAL
    assert ConnectionRequest(back_restore=True).restore_focus(False) == RestoreFocus.INSERT
    assert ConnectionRequest().restore_focus(False) == RestoreFocus.DISABLED
    assert ConnectionRequest(back=True).restore_focus(True) == RestoreFocus.DISABLED


# Test the PTY path is printed when asked or when the input is a terminal
def test_should_print_pty_path():
    assert ConnectionRequest(print_pty_path=True).should_print_pty_path(True, True)
    assert ConnectionRequest().should_print_pty_path(False, False)
    assert not ConnectionRequest().should_print_pty_path(True, False)
    assert not ConnectionRequest().should_print_pty_path(False, True)


# Test options that need a running host are reported without an address
def test_ignored_without_address():
    request = ConnectionRequest(instance_close="x", back=True, split=SplitOptions(left_cols=30))
    assert request.ignored_without_address() == [
        "Instance close (-x)",
        "Split (-r -l -u -d -R -L -U -D)",
        "Switch back (-b -B)",
    ]

    request.address = "/tmp/nvim.sock"
    assert request.ignored_without_address() == []
