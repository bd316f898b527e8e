"""Filesystem utilities for recovery steps."""

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from pxtools.core.context import Context


class FileError(Exception):
    """Error accessing a file."""

    pass


def read_file(
    path: str,
    context: "Context | None" = None,
    default: str | None = None,
) -> str:
    """
    Read file contents.

    Args:
        path: Path to file
        context: Execution context (for testing)
        default: Default value if file doesn't exist

    Returns:
        File contents

    Raises:
        FileError: If file doesn't exist and no default provided, or can't be read
    """
    if context is None:
        from pxtools.core.context import Context
        context = Context()

    try:
        return context.read_file(path)
    except FileNotFoundError:
        if default is not None:
            return default
        raise FileError(f"File not found: {path}")
    except OSError as e:
        raise FileError(f"Cannot read {path}: {e}")


def write_file(
    path: str,
    content: str,
    context: "Context | None" = None,
) -> None:
    """
    Replace file contents.

    Raises:
        FileError: If the file can't be written
    """
    if context is None:
        from pxtools.core.context import Context
        context = Context()

    try:
        context.write_file(path, content)
    except OSError as e:
        raise FileError(f"Cannot write {path}: {e}")
