"""Process supervisor - spawn a child host and connect to it

When no host address is given, a child neovim process is started on top of
the invoking terminal, listening on a fresh socket under a per-user
temporary directory. Its stdin is bound to the terminal device, since the
engine's own stdin carries the data to be streamed.

The child needs a moment to create its socket, so connecting is a plain
bounded loop: "address not found yet" is retried at a fixed spacing, any
other failure ends the loop at once.
"""

import asyncio
import logging
import os
import shlex
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Tuple

from nvpage import transport as transport_mod
from nvpage.config import LOG_ENV
from nvpage.rpc_session import NotificationSink, RpcSession
from nvpage.transport import AddressNotFound, Transport, TransportError

logger = logging.getLogger(__name__)


# Connect budget for a freshly spawned child
CONNECT_ATTEMPTS = 256
CONNECT_INTERVAL = 0.008  # seconds between attempts
SETTLE_DELAY = 0.128  # seconds before the first attempt

TERMINAL_DEVICE = "/dev/tty"
RESET_PROGRAM = "reset"
CHILD_PROGRAM = "nvim"
APP_DIR_NAME = "nvpage"
PROTECTION_DIR_NAME = "DO-NOT-REDIRECT-OUTSIDE-OF-NVIM-TERM(--help[-W])"


class SupervisorError(Exception):
    """Base error for spawning and connecting to a child host"""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ConnectRetryExhausted(SupervisorError):
    """Child address never became connectable within the attempt budget"""

    def __init__(self, address: str, attempts: int):
        super().__init__(f"Cannot connect to {address} after {attempts} attempts")
        self.address = address
        self.attempts = attempts


class ChildExited(SupervisorError):
    """Child process exited before it could be connected to"""

    def __init__(self, returncode: Optional[int]):
        super().__init__(f"Child host process exited with status {returncode}")
        self.returncode = returncode


@dataclass
class SpawnSpec:
    """How to start a child host process"""
    tmp_dir: Path
    config_path: Optional[str] = None
    extra_args: Optional[str] = None
    print_protection: bool = False
    program: str = CHILD_PROGRAM


def tmp_dir() -> Path:
    """Per-user temporary directory, created on demand"""
    try:
        user = str(os.getuid())
    except AttributeError:
        user = os.environ.get("USERNAME", "user")
    d = Path(tempfile.gettempdir()) / f"{APP_DIR_NAME}-{user}"
    d.mkdir(mode=0o700, parents=True, exist_ok=True)
    return d


def child_address(directory: Path, session_id: str) -> Path:
    return directory / f"socket-{session_id}"


def default_config_path(env=None) -> Optional[str]:
    """Config picked up by a spawned child when none is given explicitly

    Looks for init.lua, then init.vim, under $XDG_CONFIG_HOME/nvpage or
    ~/.config/nvpage.
    """
    env = os.environ if env is None else env

    if env.get("XDG_CONFIG_HOME"):
        home = Path(env["XDG_CONFIG_HOME"]) / APP_DIR_NAME
    elif env.get("HOME"):
        home = Path(env["HOME"]) / ".config" / APP_DIR_NAME
    else:
        return None
    logger.debug("Config directory is %s", home)

    for name in ("init.lua", "init.vim"):
        candidate = home / name
        if candidate.exists():
            logger.debug("Use %s", candidate)
            return str(candidate)
    return None


def build_child_args(
    address: Path,
    config_path: Optional[str] = None,
    extra_args: Optional[str] = None,
    env=None,
) -> List[str]:
    """Command line arguments for the child host (program name excluded)

    Raises:
        ValueError: If extra_args cannot be split into shell words
    """
    args = ["--cmd", "set shortmess+=I", "--listen", str(address)]

    config = config_path or default_config_path(env)
    if config:
        args += ["-u", config]

    if extra_args:
        args += shlex.split(extra_args)

    return args


def child_env(env=None) -> dict:
    """Environment for the child without the engine's log configuration"""
    env = dict(os.environ if env is None else env)
    env.pop(LOG_ENV, None)
    return env


def print_redirect_protection(directory: Path) -> Path:
    """Create the protection directory and print its path first

    A command like ``ls > $(page -E q)`` would otherwise let the child's UI
    output become a list of redirection targets. Printing an existing
    directory first makes the first target invalid and stops the
    redirection early.
    """
    d = directory / PROTECTION_DIR_NAME
    d.mkdir(parents=True, exist_ok=True)
    print(str(d), flush=True)
    return d


async def spawn_child(spec: SpawnSpec, address: Path) -> asyncio.subprocess.Process:
    """Launch the child host with stdin bound to the terminal device

    Raises:
        SupervisorError: If the extra arguments are not valid shell words
        OSError: If the terminal device or the program cannot be opened
    """
    try:
        args = build_child_args(address, spec.config_path, spec.extra_args)
    except ValueError as e:
        raise SupervisorError(f"Cannot split child arguments: {e}")
    logger.debug("New child process: %s %s", spec.program, args)

    with open(TERMINAL_DEVICE, "rb") as term:
        return await asyncio.create_subprocess_exec(
            spec.program,
            *args,
            stdin=term,
            env=child_env(),
        )


async def connect_with_retry(
    address: str,
    attempts: int = CONNECT_ATTEMPTS,
    interval: float = CONNECT_INTERVAL,
    child: Optional[asyncio.subprocess.Process] = None,
) -> Transport:
    """Connect to address, retrying while it does not exist yet

    Args:
        address: Local socket path the child listens on
        attempts: Exact number of connect attempts before giving up
        interval: Fixed sleep between attempts in seconds
        child: Spawned process; stop early if it has exited

    Raises:
        ConnectRetryExhausted: After ``attempts`` failed attempts
        ChildExited: If the child exited while waiting
        TransportError: On any connect error other than address-not-found
    """
    for attempt in range(1, attempts + 1):
        try:
            transport = await transport_mod.connect(address)
        except AddressNotFound:
            if child is not None and child.returncode is not None:
                logger.error("Child host finished before connecting: %s", child.returncode)
                raise ChildExited(child.returncode)
            if attempt < attempts:
                await asyncio.sleep(interval)
            continue

        logger.debug("Child host connected after %d attempts", attempt)
        return transport

    raise ConnectRetryExhausted(address, attempts)


async def spawn_and_connect(
    spec: SpawnSpec,
    session_id: str,
    sink: Optional[NotificationSink] = None,
) -> Tuple[RpcSession, asyncio.subprocess.Process]:
    """Spawn a child host and open an RPC session to it

    Returns:
        (session, child process)
    """
    if spec.print_protection:
        print_redirect_protection(spec.tmp_dir)

    address = child_address(spec.tmp_dir, session_id)
    child = await spawn_child(spec, address)

    await asyncio.sleep(SETTLE_DELAY)

    try:
        transport = await connect_with_retry(str(address), child=child)
    except (SupervisorError, TransportError):
        if child.returncode is None:
            child.kill()
            await child.wait()
        raise

    return RpcSession.open(transport, sink), child


async def restore_terminal(
    child: Optional[asyncio.subprocess.Process],
    program: str = RESET_PROGRAM,
) -> bool:
    """Stop a still running child host and reset the terminal it drew on

    Used on fatal errors only. Failures are logged, not raised.

    Returns:
        True if the reset program exited successfully
    """
    if child is not None and child.returncode is None:
        logger.debug("Kill child host before terminal reset")
        try:
            child.kill()
        except ProcessLookupError:
            logger.debug("Child host already gone")
        await child.wait()

    try:
        proc = await asyncio.create_subprocess_exec(program)
        returncode = await proc.wait()
    except OSError as e:
        logger.error("`%s` failed: %s", program, e)
        return False

    if returncode != 0:
        logger.error("`%s` exited with status: %s", program, returncode)
        return False
    return True
