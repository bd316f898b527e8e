"""JSONL run logging and operator console output."""

import json
import os
import sys
from datetime import date, datetime, timezone
from pathlib import Path
from typing import Any, TextIO


def get_log_path(script_name: str, base_path: Path | None = None) -> Path:
    """
    Get the log file path for a tool run.

    Args:
        script_name: Name of the tool being logged
        base_path: Base directory for logs (default: ~/var/log/pxtools)

    Returns:
        Path to the log file: {base}/{date}/{script}.jsonl
    """
    if base_path is None:
        home = Path(os.environ.get("HOME", "/tmp"))
        base_path = home / "var" / "log" / "pxtools"

    today = date.today().isoformat()
    return base_path / today / f"{script_name}.jsonl"


class ScriptLogger:
    """
    JSONL logger for a tool run.

    Writes structured log entries to a JSONL file. The file is opened lazily
    on the first entry.
    """

    def __init__(self, script_name: str, log_path: Path | None = None):
        """
        Initialize logger.

        Args:
            script_name: Name of the tool being logged
            log_path: Path to log file (default: auto-generated)
        """
        self.script_name = script_name
        self.log_path = log_path or get_log_path(script_name)
        self._file = None

    def _ensure_file(self) -> None:
        """Ensure log file is open."""
        if self._file is None:
            self.log_path.parent.mkdir(parents=True, exist_ok=True)
            self._file = open(self.log_path, "a")

    def _log(self, level: str, message: str, **extra: Any) -> None:
        """Write a log entry."""
        self._ensure_file()
        entry = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": level,
            "script": self.script_name,
            "message": message,
            **extra,
        }
        self._file.write(json.dumps(entry) + "\n")
        self._file.flush()

    def debug(self, message: str, **extra: Any) -> None:
        """Log debug message."""
        self._log("debug", message, **extra)

    def info(self, message: str, **extra: Any) -> None:
        """Log info message."""
        self._log("info", message, **extra)

    def warning(self, message: str, **extra: Any) -> None:
        """Log warning message."""
        self._log("warning", message, **extra)

    def error(self, message: str, **extra: Any) -> None:
        """Log error message."""
        self._log("error", message, **extra)

    def close(self) -> None:
        """Close the log file."""
        if self._file is not None:
            self._file.close()
            self._file = None

    def __enter__(self) -> "ScriptLogger":
        """Context manager entry."""
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        """Context manager exit."""
        self.close()


class Colors:
    """ANSI color codes for terminal output."""

    RED = "\033[0;31m"
    GREEN = "\033[0;32m"
    YELLOW = "\033[1;33m"
    BLUE = "\033[0;34m"
    END = "\033[0m"


class Console:
    """
    Operator-facing messages.

    Every message is printed with a colored level tag and, when a
    ScriptLogger is attached, mirrored to the JSONL run log.
    """

    def __init__(
        self,
        logger: ScriptLogger | None = None,
        stream: TextIO | None = None,
        err_stream: TextIO | None = None,
    ):
        self.logger = logger
        self._stream = stream
        self._err_stream = err_stream

    @property
    def stream(self) -> TextIO:
        return self._stream or sys.stdout

    @property
    def err_stream(self) -> TextIO:
        return self._err_stream or sys.stderr

    def info(self, message: str, **extra: Any) -> None:
        print(f"{Colors.GREEN}[INFO]{Colors.END} {message}", file=self.stream)
        if self.logger:
            self.logger.info(message, **extra)

    def warn(self, message: str, **extra: Any) -> None:
        print(f"{Colors.YELLOW}[WARN]{Colors.END} {message}", file=self.stream)
        if self.logger:
            self.logger.warning(message, **extra)

    def error(self, message: str, **extra: Any) -> None:
        print(f"{Colors.RED}[ERROR]{Colors.END} {message}", file=self.err_stream)
        if self.logger:
            self.logger.error(message, **extra)

    def step(self, number: int, title: str) -> None:
        """Announce a numbered runbook step."""
        print(f"\n{Colors.BLUE}[STEP {number}]{Colors.END} {title}", file=self.stream)
        if self.logger:
            self.logger.info(title, step=number)

    def plain(self, text: str = "") -> None:
        """Print untagged text such as tool output or a diff."""
        print(text, file=self.stream)
        if self.logger and text:
            self.logger.debug(text)

    def prompt(self, text: str) -> None:
        """Print a prompt without a trailing newline."""
        print(f"{Colors.YELLOW}{text}{Colors.END}", end="", file=self.stream, flush=True)
