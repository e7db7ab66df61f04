"""Tests for log module"""

import logging

import pytest

from nvpage.log import ElapsedFormatter, init_logging, parse_level


@pytest.fixture
def root_logger():
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield root
    for handler in list(root.handlers):
        root.removeHandler(handler)
    for handler in handlers:
        root.addHandler(handler)
    root.setLevel(level)


# Test level names, aliases and the default
def test_parse_level():
    assert parse_level(None) == logging.WARNING
    assert parse_level("") == logging.WARNING
    assert parse_level("debug") == logging.DEBUG
    assert parse_level("INFO") == logging.INFO
    assert parse_level("trace") == logging.DEBUG
    assert parse_level("warn") == logging.WARNING
    assert parse_level("off") == logging.CRITICAL
    assert parse_level("loud") is None


# Test init_logging installs a single stderr handler at the requested level
def test_init_logging(root_logger):
    assert init_logging({"PAGE_LOG": "debug"}) == logging.DEBUG
    init_logging({"PAGE_LOG": "info"})

    assert root_logger.level == logging.INFO
    assert len(root_logger.handlers) == 1
    assert isinstance(root_logger.handlers[0].formatter, ElapsedFormatter)


# Test an unknown level falls back to warning
def test_init_logging_invalid(root_logger):
    assert init_logging({"PAGE_LOG": "loud"}) == logging.WARNING
    assert root_logger.level == logging.WARNING


# Test the header line carries the elapsed time, level and logger name
def test_elapsed_format():
    formatter = ElapsedFormatter("[ %(elapsed_us)010d | %(levelname)-5s | %(name)s ]\n%(message)s")
    record = logging.LogRecord("nvpage.app", logging.INFO, __file__, 1, "connected", None, None)
    record.relativeCreated = 1.5

    assert formatter.format(record) == "[ 0000001500 | INFO  | nvpage.app ]\nconnected"
