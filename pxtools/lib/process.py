"""Process utilities for recovery steps."""

import subprocess
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from pxtools.core.context import Context


class CommandError(Exception):
    """Error running a command."""

    def __init__(
        self,
        cmd: list[str],
        returncode: int | None = None,
        stderr: str = "",
        timed_out: bool = False,
    ):
        self.cmd = cmd
        self.returncode = returncode
        self.stderr = stderr.strip()
        self.timed_out = timed_out

        command = " ".join(cmd)
        if timed_out:
            message = f"Command timed out: {command}"
        elif returncode is None:
            message = f"Command failed: {command}"
        else:
            message = f"Command failed with exit code {returncode}: {command}"
        if self.stderr:
            message = f"{message}: {self.stderr}"
        super().__init__(message)


def run_command(
    cmd: list[str],
    context: "Context | None" = None,
    check: bool = True,
    timeout: int | None = 60,
    input: str | None = None,
) -> subprocess.CompletedProcess:
    """
    Run a command and return its result.

    A timeout always raises, whatever check says: a call that hangs has not
    succeeded.

    Args:
        cmd: Command and arguments
        context: Execution context (for testing)
        check: Raise on non-zero exit
        timeout: Timeout in seconds, None to wait indefinitely
        input: Text fed to the command's stdin

    Returns:
        CompletedProcess with stdout, stderr, returncode

    Raises:
        CommandError: On timeout, launch failure, or non-zero exit when check=True
    """
    if context is None:
        from pxtools.core.context import Context
        context = Context()

    kwargs = {}
    if input is not None:
        kwargs["input"] = input

    try:
        result = context.run(cmd, check=False, timeout=timeout, **kwargs)
    except subprocess.TimeoutExpired as e:
        raise CommandError(cmd, timed_out=True) from e
    except OSError as e:
        raise CommandError(cmd, stderr=str(e)) from e

    if check and result.returncode != 0:
        raise CommandError(cmd, returncode=result.returncode, stderr=result.stderr or "")

    return result


def succeeds(
    cmd: list[str],
    context: "Context | None" = None,
    timeout: int | None = 60,
    input: str | None = None,
) -> bool:
    """Run a command and report whether it exited 0 within the timeout."""
    try:
        run_command(cmd, context=context, check=True, timeout=timeout, input=input)
    except CommandError:
        return False
    return True


def check_tool(
    name: str,
    context: "Context | None" = None,
    required: bool = False,
) -> bool:
    """
    Check if a tool exists in PATH.

    Args:
        name: Tool name to check
        context: Execution context (for testing)
        required: Raise if tool is missing

    Returns:
        True if tool exists

    Raises:
        CommandError: If required=True and tool is missing
    """
    if context is None:
        from pxtools.core.context import Context
        context = Context()

    exists = context.check_tool(name)

    if required and not exists:
        raise CommandError([name], stderr=f"Required tool not found: {name}")

    return exists
