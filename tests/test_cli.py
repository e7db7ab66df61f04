"""Tests for cli module

Tests argument and environment parsing into a ConnectionRequest.
"""

import pytest

from nvpage.cli import EMPTY, parse_args, resolve_lines
from nvpage.config import DEFAULT_FILETYPE, InstanceMode

TERM = (80, 40)


def parse(*argv, env=None):
    return parse_args(list(argv), env={} if env is None else env, term_size=TERM)


# Test defaults with no arguments and an empty environment
def test_defaults():
    request = parse()
    assert request.address is None
    assert request.query_lines == 0
    assert request.prefetch_lines == 0
    assert request.filetype == DEFAULT_FILETYPE
    assert request.instance is None
    assert request.files == []
    assert not request.split.is_enabled()


# Test query and prefetch line counts relative to the terminal height
def test_line_counts():
    assert parse("-q").query_lines == 38
    assert parse("-q", "-5").query_lines == 35
    assert parse("-q", "12").query_lines == 12
    assert parse("-O").prefetch_lines == 37
    assert parse("-O", "-30").prefetch_lines == 10


# Test resolve_lines never goes below zero
def test_resolve_lines_clamped():
    assert resolve_lines(None, 40, 2) == 0
    assert resolve_lines(EMPTY, 1, 3) == 0
    assert resolve_lines(-50, 40, 2) == 0


# Test a non-numeric line count is an argument error
def test_bad_line_count():
    with pytest.raises(SystemExit):
        parse("-q", "many")


# Test instance options select the instance mode
def test_instance_modes():
    request = parse("-i", "logs")
    assert request.instance == "logs"
    assert request.instance_mode == InstanceMode.REPLACE

    request = parse("-I", "logs")
    assert request.instance == "logs"
    assert request.instance_mode == InstanceMode.APPEND

    assert parse("-x", "old").instance_close == "old"


# Test replace and append instance options exclude each other
def test_instance_options_exclusive():
    with pytest.raises(SystemExit):
        parse("-i", "a", "-I", "b")


# Test environment defaults and their overrides
def test_environment():
    env = {"NVIM": "/tmp/nvim.sock", "NVIM_PAGE_ARGS": "--clean", "PAGE_BUFFER_NAME": "build"}
    request = parse(env=env)
    assert request.address == "/tmp/nvim.sock"
    assert request.extra_args == "--clean"
    assert request.name == "build"

    request = parse("-a", "127.0.0.1:6666", "-n", "other", env=env)
    assert request.address == "127.0.0.1:6666"
    assert request.name == "other"


# Test an empty address counts as not given
def test_empty_address():
    assert parse(env={"NVIM": ""}).address is None
    assert parse(env={"PAGE_BUFFER_NAME": ""}).name is None


# Test split options are counted and fixed sizes parsed
def test_splits():
    split = parse("-rr").split
    assert split.right == 2
    assert split.is_enabled()

    split = parse("-D", "10", "-+").split
    assert split.below_rows == 10
    assert split.popup

    with pytest.raises(SystemExit):
        parse("-l", "-R", "20")


# Test follow and back flags exclude their counterparts
def test_exclusive_flags():
    with pytest.raises(SystemExit):
        parse("-f", "-F")
    with pytest.raises(SystemExit):
        parse("-b", "-B")


# Test positional files and output flags are collected
def test_files_and_flags():
    request = parse("-o", "-p", "-t", "log", "-e", "set nu", "--E", "print(1)", "a.txt", "b.txt")
    assert request.files == ["a.txt", "b.txt"]
    assert request.output_open
    assert request.print_pty_path
    assert request.filetype == "log"
    assert request.command == "set nu"
    assert request.lua_post == "print(1)"
