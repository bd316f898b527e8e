"""Execution context for testability."""

import os
import shutil
import signal
import subprocess
import time
from pathlib import Path
from typing import Callable


class Context:
    """
    Wraps external calls for testability.

    In production: executes real commands and touches the real filesystem
    In tests: can be replaced with MockContext
    """

    def check_tool(self, name: str) -> bool:
        """Check if a tool exists in PATH."""
        return shutil.which(name) is not None

    def run(
        self,
        cmd: list[str],
        check: bool = False,
        timeout: int | None = 60,
        **kwargs,
    ) -> subprocess.CompletedProcess:
        """
        Run a command and return result.

        Args:
            cmd: Command and arguments as list
            check: Raise on non-zero exit code
            timeout: Timeout in seconds, None for no limit
            **kwargs: Additional subprocess.run arguments

        Returns:
            CompletedProcess with stdout, stderr, returncode
        """
        return subprocess.run(
            cmd,
            capture_output=True,
            text=True,
            check=check,
            timeout=timeout,
            **kwargs,
        )

    def first_line(self, cmd: list[str]) -> str:
        """
        Run a command and return only the first line of its stdout.

        The process is killed once the line is read, so tools that stream
        very large dumps are never fully buffered.
        """
        proc = subprocess.Popen(
            cmd,
            stdout=subprocess.PIPE,
            stderr=subprocess.DEVNULL,
            text=True,
        )
        try:
            line = proc.stdout.readline() if proc.stdout else ""
        finally:
            proc.kill()
            proc.wait()
        return line

    def read_file(self, path: str) -> str:
        """Read file contents."""
        return Path(path).read_text()

    def write_file(self, path: str, content: str) -> None:
        """Replace file contents atomically."""
        target = Path(path)
        tmp = target.with_name(f".{target.name}.tmp")
        with open(tmp, "w") as f:
            f.write(content)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp, target)

    def file_exists(self, path: str) -> bool:
        """Check if file exists."""
        return Path(path).exists()

    def is_executable(self, path: str) -> bool:
        """Check if path is an executable file."""
        return os.path.isfile(path) and os.access(path, os.X_OK)

    def file_size(self, path: str) -> int:
        """Get file size in bytes."""
        return Path(path).stat().st_size

    def allocate_file(self, path: str, size: int) -> None:
        """Create a sparse file of exactly size bytes."""
        with open(path, "wb") as f:
            f.truncate(size)

    def copy_file(self, src: str, dst: str) -> None:
        """Copy a file, preserving metadata."""
        shutil.copy2(src, dst)

    def remove_file(self, path: str) -> None:
        """Remove a file if it exists."""
        Path(path).unlink(missing_ok=True)

    def makedirs(self, path: str) -> None:
        """Create a directory and its parents."""
        Path(path).mkdir(parents=True, exist_ok=True)

    def remove_tree(self, path: str) -> None:
        """Remove a directory tree."""
        shutil.rmtree(path)

    def get_env(self, key: str, default: str | None = None) -> str | None:
        """Get environment variable."""
        return os.environ.get(key, default)

    def pid(self) -> int:
        """Get our own process id."""
        return os.getpid()

    def parent_pid(self) -> int:
        """Get the parent process id."""
        return os.getppid()

    def kill(self, pid: int, sig: int = signal.SIGKILL) -> None:
        """Send a signal to a process."""
        os.kill(pid, sig)

    def sleep(self, seconds: float) -> None:
        """Pause execution."""
        time.sleep(seconds)

    def set_signal_handler(self, signum: int, handler: Callable) -> Callable | int | None:
        """Install a signal handler, returning the previous one."""
        return signal.signal(signum, handler)
