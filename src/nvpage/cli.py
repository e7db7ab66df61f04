"""Command line front end

Parses arguments and environment into a ConnectionRequest and runs it.
"""

import argparse
import asyncio
import os
import shutil
import sys
from typing import List, Mapping, Optional, Tuple

from nvpage import app
from nvpage.config import (
    ADDRESS_ENV,
    BUFFER_NAME_ENV,
    DEFAULT_FILETYPE,
    EXTRA_ARGS_ENV,
    ConnectionRequest,
    InstanceMode,
    SplitOptions,
)
from nvpage.log import init_logging

# Marker for -O / -q given without a value
EMPTY = "empty"

# Rows left for the prompt (-O) and for tab and status lines (-q)
PREFETCH_RESERVED_ROWS = 3
QUERY_RESERVED_ROWS = 2


def build_parser(env: Optional[Mapping[str, str]] = None) -> argparse.ArgumentParser:
    env = os.environ if env is None else env

    parser = argparse.ArgumentParser(
        prog="nvpage",
        description="Pager that streams its input into a terminal buffer of a neovim host",
        allow_abbrev=False,
    )

    parser.add_argument(
        "files", nargs="*", metavar="FILE",
        help="Open provided file in a separate buffer",
    )

    output = parser.add_argument_group("output buffer")
    output.add_argument("-o", dest="output_open", action="store_true",
                        help="Create and use output buffer")
    output.add_argument("-O", dest="prefetch", nargs="?", const=EMPTY, type=_count,
                        metavar="NOOPEN_LINES",
                        help="Print input to stdout and exit if it fits into NOOPEN_LINES "
                             "[empty: term height - 3; negative: term height - N]")
    output.add_argument("-p", dest="print_pty_path", action="store_true",
                        help="Print path of the PTY device of the output buffer")
    output.add_argument("-P", dest="pwd", action="store_true",
                        help="Set $PWD as working directory of the output buffer")
    output.add_argument("-q", dest="query", nargs="?", const=EMPTY, type=_count,
                        metavar="QUERY_LINES",
                        help="Read no more than QUERY_LINES until more are requested with "
                             ":Page or r/R [empty: term height - 2; negative: term height - N]")
    output.add_argument("-t", dest="filetype", default=DEFAULT_FILETYPE,
                        help="Set filetype of the output buffer")
    output.add_argument("-n", dest="name", default=env.get(BUFFER_NAME_ENV) or None,
                        help=f"Set title of the output buffer [env: {BUFFER_NAME_ENV}]")
    output.add_argument("-w", dest="writable", action="store_true",
                        help="Do not remap i, I, a, A, u, d, x, q (and r, R with -q) keys")
    output.add_argument("-e", dest="command",
                        help="Run command on the output buffer after it was created")
    output.add_argument("--e", dest="lua",
                        help="Run lua on the output buffer after it was created")

    following = output.add_mutually_exclusive_group()
    following.add_argument("-f", dest="follow", action="store_true",
                           help="Cursor follows content of the output buffer")
    following.add_argument("-F", dest="follow_all", action="store_true",
                           help="Cursor follows content of output and FILE buffers")

    back = output.add_mutually_exclusive_group()
    back.add_argument("-b", dest="back", action="store_true",
                      help="Return back to the current buffer")
    back.add_argument("-B", dest="back_restore", action="store_true",
                      help="Return back to the current buffer in INSERT mode")

    host = parser.add_argument_group("host")
    host.add_argument("-a", dest="address", default=env.get(ADDRESS_ENV),
                      help=f"Socket address or pipe path of a running host [env: {ADDRESS_ENV}]")
    host.add_argument("-A", dest="extra_args", default=env.get(EXTRA_ARGS_ENV),
                      help=f"Arguments for a spawned child host [env: {EXTRA_ARGS_ENV}]")
    host.add_argument("-c", dest="config_path",
                      help="Config for a spawned child host "
                           "[default: $XDG_CONFIG_HOME/nvpage/init.lua]")
    host.add_argument("-C", dest="command_auto", action="store_true",
                      help="Enable PageConnect and PageDisconnect autocommands")
    host.add_argument("-E", dest="command_post",
                      help="Run command on the output buffer after it was created or connected")
    host.add_argument("--E", dest="lua_post",
                      help="Run lua on the output buffer after it was created or connected")
    host.add_argument("-W", dest="no_protect", action="store_true",
                      help="Do not print the redirection protection path "
                           "[env: PAGE_REDIRECTION_PROTECT, 0 to disable]")

    instances = parser.add_argument_group("instances")
    use = instances.add_mutually_exclusive_group()
    use.add_argument("-i", dest="instance",
                     help="Use buffer tagged INSTANCE, replacing its content")
    use.add_argument("-I", dest="instance_append",
                     help="Use buffer tagged INSTANCE_APPEND, appending to its content")
    instances.add_argument("-x", dest="instance_close",
                           help="Close buffer tagged INSTANCE_CLOSE if it exists")

    splits = parser.add_argument_group("splits")
    split = splits.add_mutually_exclusive_group()
    split.add_argument("-l", dest="split_left", action="count", default=0,
                       help="Split left with ratio: width * 3 / (count + 1)")
    split.add_argument("-r", dest="split_right", action="count", default=0,
                       help="Split right with ratio: width * 3 / (count + 1)")
    split.add_argument("-u", dest="split_above", action="count", default=0,
                       help="Split above with ratio: height * 3 / (count + 1)")
    split.add_argument("-d", dest="split_below", action="count", default=0,
                       help="Split below with ratio: height * 3 / (count + 1)")
    split.add_argument("-L", dest="split_left_cols", type=int, metavar="COLS",
                       help="Split left and resize to COLS columns")
    split.add_argument("-R", dest="split_right_cols", type=int, metavar="COLS",
                       help="Split right and resize to COLS columns")
    split.add_argument("-U", dest="split_above_rows", type=int, metavar="ROWS",
                       help="Split above and resize to ROWS rows")
    split.add_argument("-D", dest="split_below_rows", type=int, metavar="ROWS",
                       help="Split below and resize to ROWS rows")
    splits.add_argument("-+", dest="popup", action="store_true",
                        help="Open a floating window instead of a split")

    return parser


def _count(value: str) -> int:
    try:
        return int(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid line count: {value!r}")


def resolve_lines(value, term_height: int, reserved: int) -> int:
    """Line count from -O / -q

    Absent means disabled, empty means the terminal height minus the
    reserved rows, negative means the terminal height minus that many rows.
    """
    if value is None:
        return 0
    if value == EMPTY:
        return max(term_height - reserved, 0)
    if value < 0:
        return max(term_height - abs(value), 0)
    return value


def parse_args(
    argv: Optional[List[str]] = None,
    env: Optional[Mapping[str, str]] = None,
    term_size: Optional[Tuple[int, int]] = None,
) -> ConnectionRequest:
    """Build a ConnectionRequest from arguments and environment

    Args:
        argv: Arguments without the program name (default: sys.argv[1:])
        env: Environment (default: os.environ)
        term_size: (columns, lines) of the terminal (detected when None)
    """
    env = os.environ if env is None else env
    args = build_parser(env).parse_args(argv)

    if term_size is None:
        term_size = tuple(shutil.get_terminal_size())
    _, term_height = term_size

    if args.instance is not None:
        instance, mode = args.instance, InstanceMode.REPLACE
    elif args.instance_append is not None:
        instance, mode = args.instance_append, InstanceMode.APPEND
    else:
        instance, mode = None, InstanceMode.REPLACE

    return ConnectionRequest(
        address=args.address,
        config_path=args.config_path,
        extra_args=args.extra_args,
        instance=instance,
        instance_mode=mode,
        instance_close=args.instance_close,
        query_lines=resolve_lines(args.query, term_height, QUERY_RESERVED_ROWS),
        prefetch_lines=resolve_lines(args.prefetch, term_height, PREFETCH_RESERVED_ROWS),
        name=args.name,
        filetype=args.filetype,
        files=list(args.files),
        split=SplitOptions(
            left=args.split_left,
            right=args.split_right,
            above=args.split_above,
            below=args.split_below,
            left_cols=args.split_left_cols,
            right_cols=args.split_right_cols,
            above_rows=args.split_above_rows,
            below_rows=args.split_below_rows,
            popup=args.popup,
        ),
        writable=args.writable,
        follow=args.follow,
        follow_all=args.follow_all,
        back=args.back,
        back_restore=args.back_restore,
        command_auto=args.command_auto,
        command_post=args.command_post,
        lua_post=args.lua_post,
        command=args.command,
        lua=args.lua,
        pwd=args.pwd,
        print_pty_path=args.print_pty_path,
        output_open=args.output_open,
        no_protect=args.no_protect,
    )


def main(argv: Optional[List[str]] = None) -> int:
    init_logging()
    term_size = tuple(shutil.get_terminal_size())
    request = parse_args(argv, term_size=term_size)
    return asyncio.run(app.run(request, term_width=term_size[0]))


if __name__ == "__main__":
    sys.exit(main())
