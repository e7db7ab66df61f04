"""Configuration - the resolved connection request and its policies

The command line front end produces one ConnectionRequest per invocation.
Everything the engine later decides (spawn or connect, which buffer to use,
whether to focus, whether to print the PTY path) is derived from it by the
helpers below.

Environment variables:
    NVIM                      Address of a running host
    NVIM_PAGE_ARGS            Extra arguments for a spawned child host
    PAGE_BUFFER_NAME          Output buffer title
    PAGE_REDIRECTION_PROTECT  ``0`` or empty disables redirection protection
    PAGE_LOG                  Log level (see log.py)
"""

import os
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Mapping, Optional


ADDRESS_ENV = "NVIM"
EXTRA_ARGS_ENV = "NVIM_PAGE_ARGS"
BUFFER_NAME_ENV = "PAGE_BUFFER_NAME"
PROTECT_ENV = "PAGE_REDIRECTION_PROTECT"
LOG_ENV = "PAGE_LOG"

DEFAULT_FILETYPE = "pager"


class InstanceMode(Enum):
    """How a found instance buffer is reused"""
    REPLACE = "replace"  # clear the screen, always focus
    APPEND = "append"  # keep content, focus only when implied


class OutputUsage(Enum):
    """Whether and how an output buffer is created"""
    CREATE_SUBSTITUTING = "substituting"
    CREATE_SPLIT = "split"
    DISABLED = "disabled"


class RestoreFocus(Enum):
    """What happens to the initial window once output is set up"""
    DISABLED = "disabled"
    NORMAL = "normal"
    INSERT = "insert"


@dataclass
class SplitOptions:
    """Window layout for the output buffer

    Ratio splits take ``size * 3 / (n + 1)`` of the current window, fixed
    splits take an absolute number of columns or rows. At most one is set.
    """
    left: int = 0
    right: int = 0
    above: int = 0
    below: int = 0
    left_cols: Optional[int] = None
    right_cols: Optional[int] = None
    above_rows: Optional[int] = None
    below_rows: Optional[int] = None
    popup: bool = False

    def is_enabled(self) -> bool:
        return bool(
            self.left or self.right or self.above or self.below
            or self.left_cols is not None
            or self.right_cols is not None
            or self.above_rows is not None
            or self.below_rows is not None
        )


@dataclass
class ConnectionRequest:
    """Fully resolved invocation options"""
    address: Optional[str] = None
    config_path: Optional[str] = None
    extra_args: Optional[str] = None

    instance: Optional[str] = None
    instance_mode: InstanceMode = InstanceMode.REPLACE
    instance_close: Optional[str] = None

    query_lines: int = 0
    prefetch_lines: int = 0

    name: Optional[str] = None
    filetype: str = DEFAULT_FILETYPE
    files: List[str] = field(default_factory=list)
    split: SplitOptions = field(default_factory=SplitOptions)
    writable: bool = False

    follow: bool = False
    follow_all: bool = False
    back: bool = False
    back_restore: bool = False

    command_auto: bool = False
    command_post: Optional[str] = None
    lua_post: Optional[str] = None
    command: Optional[str] = None
    lua: Optional[str] = None
    pwd: bool = False

    print_pty_path: bool = False
    output_open: bool = False
    no_protect: bool = False

    def __post_init__(self):
        # Empty address means "not given"
        if not self.address:
            self.address = None

    def is_split_implied(self) -> bool:
        return self.split.is_enabled()

    def is_output_implied(self) -> bool:
        """Any option that only makes sense with an output buffer"""
        return (
            self.back
            or self.back_restore
            or self.follow
            or self.follow_all
            or self.output_open
            or self.print_pty_path
            or self.instance is not None
            or self.command_post is not None
            or self.lua_post is not None
            or self.command is not None
            or self.lua is not None
            or self.pwd
            or self.filetype != DEFAULT_FILETYPE
        )

    def is_prefetch_allowed(self, input_from_pipe: bool) -> bool:
        """Prefetch only for piped input with nothing forcing an output buffer"""
        return (
            input_from_pipe
            and self.prefetch_lines > 0
            and not self.output_open
            and not self.print_pty_path
            and self.instance_close is None
        )

    def output_usage(self, input_from_pipe: bool, child_spawned: bool = False) -> OutputUsage:
        if self.is_split_implied():
            usage = OutputUsage.CREATE_SPLIT
        elif (
            input_from_pipe
            or self.is_output_implied()
            or (self.instance_close is None and not self.files)
        ):
            usage = OutputUsage.CREATE_SUBSTITUTING
        else:
            usage = OutputUsage.DISABLED

        # A fresh child host has nothing worth keeping on screen
        if child_spawned and usage != OutputUsage.DISABLED:
            usage = OutputUsage.CREATE_SUBSTITUTING
        return usage

    def redirect_protection_enabled(
        self, input_from_pipe: bool, env: Optional[Mapping[str, str]] = None
    ) -> bool:
        env = os.environ if env is None else env
        if input_from_pipe or self.no_protect:
            return False
        value = env.get(PROTECT_ENV)
        return value is None or value not in ("", "0")

    def should_focus_instance(self) -> bool:
        """Whether an existing instance buffer gets focus

        Replace mode always focuses. Append mode focuses when something has
        to run on the focused buffer, or when nothing asks to go back.
        """
        if self.instance_mode == InstanceMode.REPLACE:
            return True
        return (
            self.follow
            or self.command_auto
            or self.command_post is not None
            or self.lua_post is not None
            or not (self.back or self.back_restore)
        )

    def replaces_instance_content(self) -> bool:
        return self.instance_mode == InstanceMode.REPLACE

    def restore_focus(self, child_spawned: bool) -> RestoreFocus:
        if child_spawned:
            return RestoreFocus.DISABLED
        if self.back:
            return RestoreFocus.NORMAL
        if self.back_restore:
            return RestoreFocus.INSERT
        return RestoreFocus.DISABLED

    def should_print_pty_path(self, input_from_pipe: bool, child_spawned: bool) -> bool:
        return self.print_pty_path or (not child_spawned and not input_from_pipe)

    def ignored_without_address(self) -> List[str]:
        """Options that have no effect when a child host is spawned"""
        if self.address is not None:
            return []
        ignored = []
        if self.instance_close is not None:
            ignored.append("Instance close (-x)")
        if self.is_split_implied():
            ignored.append("Split (-r -l -u -d -R -L -U -D)")
        if self.back or self.back_restore:
            ignored.append("Switch back (-b -B)")
        return ignored
