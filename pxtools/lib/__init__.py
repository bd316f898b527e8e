"""Shared utility library for pxtools."""

from pxtools.lib.filesystem import FileError, read_file, write_file
from pxtools.lib.process import CommandError, check_tool, run_command, succeeds

__all__ = [
    "CommandError",
    "FileError",
    "check_tool",
    "read_file",
    "run_command",
    "succeeds",
    "write_file",
]
