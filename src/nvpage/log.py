"""Logging setup

Diagnostics go to stderr, since stdout may carry the PTY path or the
prefetched input. The level comes from $PAGE_LOG (default: warning).
"""

import logging
import os
import sys
from typing import Mapping, Optional

from nvpage.config import LOG_ENV

DEFAULT_LEVEL = "WARNING"

# Accept the lowercase names commonly used in log environment variables
_ALIASES = {
    "trace": "DEBUG",
    "warn": "WARNING",
    "off": "CRITICAL",
}


class ElapsedFormatter(logging.Formatter):
    """``[ elapsed-us | LEVEL | logger ]`` header line, then the message"""

    def format(self, record: logging.LogRecord) -> str:
        record.elapsed_us = int(record.relativeCreated * 1000)
        return super().format(record)


def parse_level(value: Optional[str]) -> Optional[int]:
    """Map a level name to a logging level, None if not recognized"""
    if not value:
        return logging.getLevelName(DEFAULT_LEVEL)
    name = _ALIASES.get(value.lower(), value.upper())
    level = logging.getLevelName(name)
    return level if isinstance(level, int) else None


def init_logging(env: Optional[Mapping[str, str]] = None) -> int:
    """Configure the root logger once per process

    Returns:
        The effective level
    """
    env = os.environ if env is None else env
    raw = env.get(LOG_ENV)
    level = parse_level(raw)
    invalid = level is None
    if invalid:
        level = logging.WARNING

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(ElapsedFormatter(
        "[ %(elapsed_us)010d | %(levelname)-5s | %(name)s ]\n%(message)s"
    ))

    root = logging.getLogger()
    for existing in list(root.handlers):
        root.removeHandler(existing)
    root.addHandler(handler)
    root.setLevel(level)

    if invalid:
        logging.getLogger(__name__).warning("Unknown %s value %r, using %s", LOG_ENV, raw, DEFAULT_LEVEL)
    return level
