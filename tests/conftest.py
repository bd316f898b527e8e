"""Shared test fixtures."""

import subprocess
import sys
from pathlib import Path
from typing import Any, Callable

import pytest

# Add project root to path for package imports
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from pxtools.core.config import RecoveryConfig  # noqa: E402
from pxtools.core.logging import Console  # noqa: E402
from pxtools.core.prompt import Prompter  # noqa: E402
from pxtools.recovery.session import RecoverySession  # noqa: E402


def completed(returncode: int = 0, stdout: str = "", stderr: str = "") -> subprocess.CompletedProcess:
    """Build a CompletedProcess for mocked command outputs."""
    return subprocess.CompletedProcess([], returncode=returncode, stdout=stdout, stderr=stderr)


class MockContext:
    """Mock Context for testing without real system access."""

    def __init__(
        self,
        tools_available: list[str] | None = None,
        command_outputs: dict[tuple, Any] | None = None,
        file_contents: dict[str, str] | None = None,
        env: dict[str, str] | None = None,
        dirs: list[str] | None = None,
        executables: list[str] | None = None,
        default_output: str | None = None,
        parent_pid: int = 4241,
    ):
        self.tools_available = set(tools_available or [])
        self.command_outputs = dict(command_outputs or {})
        self.file_contents = dict(file_contents or {})
        self.file_sizes: dict[str, int] = {}
        self.env = env or {}
        self.dirs = set(dirs or [])
        self.executables = set(executables or [])
        self.default_output = default_output
        self._parent_pid = parent_pid
        self.commands_run: list[list[str]] = []
        self.command_kwargs: list[dict[str, Any]] = []
        self.killed: list[tuple[int, int]] = []
        self.slept: list[float] = []
        self.signal_handlers: dict[int, Callable] = {}

    def check_tool(self, name: str) -> bool:
        """Check if tool is in mocked available list."""
        return name in self.tools_available

    def _output_for(self, cmd: list[str]) -> Any:
        key = tuple(cmd)
        if key not in self.command_outputs:
            if self.default_output is not None:
                return self.default_output
            raise KeyError(f"No mock output for command: {cmd}")

        output = self.command_outputs[key]
        # Sequences give successive results; the last one repeats
        if isinstance(output, list):
            output = output.pop(0) if len(output) > 1 else output[0]
        return output

    def run(
        self,
        cmd: list[str],
        check: bool = False,
        **kwargs,
    ) -> subprocess.CompletedProcess:
        """Return mocked command output."""
        self.commands_run.append(cmd)
        self.command_kwargs.append(kwargs)

        output = self._output_for(cmd)
        if callable(output) and not isinstance(output, subprocess.CompletedProcess):
            output = output(cmd)
        if isinstance(output, BaseException):
            raise output

        # Allow passing CompletedProcess directly for more control (e.g., non-zero returncode)
        if isinstance(output, subprocess.CompletedProcess):
            result = subprocess.CompletedProcess(cmd, output.returncode, output.stdout, output.stderr)
        else:
            result = subprocess.CompletedProcess(cmd, returncode=0, stdout=output or "", stderr="")

        if check and result.returncode != 0:
            raise subprocess.CalledProcessError(result.returncode, cmd, result.stdout, result.stderr)
        return result

    def first_line(self, cmd: list[str]) -> str:
        """Return the first line of the mocked output."""
        stdout = self.run(cmd).stdout
        return stdout.splitlines(keepends=True)[0] if stdout else ""

    def read_file(self, path: str) -> str:
        """Return mocked file content."""
        if path not in self.file_contents:
            raise FileNotFoundError(f"No mock content for: {path}")
        return self.file_contents[path]

    def write_file(self, path: str, content: str) -> None:
        self.file_contents[path] = content
        self.file_sizes.pop(path, None)

    def file_exists(self, path: str) -> bool:
        """Check if path is in mocked files or directories."""
        return path in self.file_contents or path in self.dirs

    def is_executable(self, path: str) -> bool:
        return path in self.executables

    def file_size(self, path: str) -> int:
        if path not in self.file_contents:
            raise FileNotFoundError(path)
        return self.file_sizes.get(path, len(self.file_contents[path]))

    def set_file(self, path: str, content: str = "", size: int | None = None) -> None:
        """Create a mocked file, optionally with a nominal size."""
        self.file_contents[path] = content
        if size is not None:
            self.file_sizes[path] = size

    def allocate_file(self, path: str, size: int) -> None:
        self.set_file(path, "", size)

    def copy_file(self, src: str, dst: str) -> None:
        if src not in self.file_contents:
            raise FileNotFoundError(src)
        self.file_contents[dst] = self.file_contents[src]
        if src in self.file_sizes:
            self.file_sizes[dst] = self.file_sizes[src]

    def remove_file(self, path: str) -> None:
        self.file_contents.pop(path, None)
        self.file_sizes.pop(path, None)

    def makedirs(self, path: str) -> None:
        parts = Path(path).parts
        for i in range(1, len(parts) + 1):
            self.dirs.add(str(Path(*parts[:i])))

    def remove_tree(self, path: str) -> None:
        prefix = path.rstrip("/") + "/"
        for name in [p for p in self.file_contents if p.startswith(prefix)]:
            self.remove_file(name)
        self.dirs = {d for d in self.dirs if d != path and not d.startswith(prefix)}

    def get_env(self, key: str, default: str | None = None) -> str | None:
        """Return mocked environment variable."""
        return self.env.get(key, default)

    def pid(self) -> int:
        return 4242

    def parent_pid(self) -> int:
        return self._parent_pid

    def kill(self, pid: int, sig: int) -> None:
        self.killed.append((pid, sig))

    def sleep(self, seconds: float) -> None:
        self.slept.append(seconds)

    def set_signal_handler(self, signum: int, handler: Callable) -> Callable | None:
        previous = self.signal_handlers.get(signum)
        self.signal_handlers[signum] = handler
        return previous

    def ran(self, *prefix: str) -> bool:
        """True if any command starting with prefix was run."""
        return any(tuple(cmd[: len(prefix)]) == prefix for cmd in self.commands_run)


class ScriptedPrompter(Prompter):
    """Answers prompts from a table of message fragments."""

    def __init__(self, answers: dict[str, bool] | None = None, default: bool = True):
        self.answers = answers or {}
        self.default = default
        self.asked: list[str] = []

    def confirm(self, message: str, default: bool = False) -> bool:
        self.asked.append(message)
        for fragment, answer in self.answers.items():
            if fragment in message:
                return answer
        return self.default


@pytest.fixture
def mock_context():
    """Factory fixture for creating MockContext instances."""
    def _create(**kwargs) -> MockContext:
        return MockContext(**kwargs)
    return _create


@pytest.fixture
def make_session(tmp_path):
    """Factory fixture for a RecoverySession over a MockContext."""
    def _create(
        context: MockContext,
        vg_name: str = "pwx2",
        prompter: Prompter | None = None,
        **config: Any,
    ) -> RecoverySession:
        config.setdefault("log_dir", str(tmp_path / "logs"))
        return RecoverySession(
            vg_name=vg_name,
            config=RecoveryConfig(**config),
            context=context,
            console=Console(),
            prompter=prompter or ScriptedPrompter(),
        )
    return _create


VG = "pwx2"
META_SIZE = 2 * 1024 ** 3
SCRATCH = "/dev/shm/thinmeta_recovery"
STATE_FILE = f"/var/cores/recovery_{VG}_state"
LVM_RECORD = f"/etc/lvm/backup/{VG}"
TMETA_DEVICE = f"/dev/mapper/{VG}-pxpool_tmeta"
RECOVERY_DEVICE = f"/dev/mapper/{VG}_tmeta_recovery"
TMETA_TABLE = "0 8192 linear 8:16 2048"

LVM_TOOLS = [
    "thin_check", "thin_repair", "thin_dump", "dmsetup", "lvs", "vgs", "lvchange",
    "vgchange", "lvcreate", "lvremove", "vgcfgbackup", "vgcfgrestore", "lvmconfig", "dd",
    "sync", "ps",
]


def lvm_record(transaction_id: int = 7, vg: str = VG) -> str:
    """An LVM metadata backup record with a thin volume ahead of the pool."""
    return f"""\
# Generated by LVM2 version 2.03.11(2) (2021-01-08)
{vg} {{
	id = "Zr3kCt-0uSm-bm1A-Hq0f-jqKq-7pTm-QxZ7rQ"
	seqno = 42
	format = "lvm2"
	logical_volumes {{

		vol1 {{
			id = "b8h3cK-Rtbm-5o2L-LeVg-0lqN-cd1a-2nSdpX"
			segment_count = 1

			segment1 {{
				start_extent = 0
				extent_count = 2560
				type = "thin"
				thin_pool = "pxpool"
				transaction_id = 3
				device_id = 1
			}}
		}}

		pxpool {{
			id = "1sN0Rq-Wd2G-zQ8m-fl2e-0QyS-QbHi-1zE7Yd"
			segment_count = 1

			segment1 {{
				start_extent = 0
				extent_count = 250000
				type = "thin-pool"
				metadata = "pxpool_tmeta"
				pool = "pxpool_tdata"
				transaction_id = {transaction_id}
				chunk_size = 128
				discards = "passdown"
				zero_new_blocks = 1
			}}
		}}
	}}
}}
"""


def superblock(transaction_id: int) -> str:
    """First line of a thin_dump."""
    return (
        f'<superblock uuid="" time="0" transaction="{transaction_id}" flags="0" '
        f'version="2" data_block_size="128" nr_data_blocks="2048000">\n'
    )


def lvm_world(repaired_txn: int = 7, record_txn: int = 7) -> MockContext:
    """
    A PX node whose pool needs recovery.

    The first bounded activation fails; later ones succeed. Commands not
    listed here succeed with no output.
    """
    ctx = MockContext(
        tools_available=LVM_TOOLS,
        env={"STY": "1234.recovery"},
        executables=["/opt/pwx/bin/pxctl"],
        default_output="",
        file_contents={
            "/proc/1/comm": "supervisord\n",
            "/proc/meminfo": "MemTotal:       32768000 kB\nMemAvailable:   16777216 kB\n",
            LVM_RECORD: lvm_record(record_txn),
            TMETA_DEVICE: "",
        },
    )
    ctx.command_outputs.update({
        ("/opt/pwx/bin/pxctl", "status"): "Status: PX is in maintenance mode\nLicense: PX-Enterprise\n",
        ("lvmconfig", "--type", "current", "backup/backup_dir"): 'backup_dir="/etc/lvm/backup"\n',
        ("vgs", VG): "  VG   #PV #LV #SN Attr   VSize VFree\n  pwx2   1   3   0 wz--n- 1.00t    0\n",
        ("lvs", "--noheadings", "-o", "lv_size", "--units", "b", f"{VG}/pxpool_tmeta"): f"  {META_SIZE}B\n",
        ("vgchange", "-ay", VG): [
            completed(5, stderr="Check of pool pwx2/pxpool failed (status:1). Manual repair required!"),
            completed(0),
        ],
        ("lvs", "--noheadings", "-o", "lv_attr", f"{VG}/pxpool"): "  twi-aotz--\n",
        ("ps", "-eo", "pid,comm,args", "--no-headers"): (
            "    1 supervisord /usr/bin/python3 /usr/bin/supervisord -n\n"
            " 4242 python3 python3 -m pxtools pwx2\n"
        ),
        ("lvs", f"{VG}/pxreserve"): [completed(5), completed(5), completed(0)],
        ("vgs", "--noheadings", "-o", "vg_free", "--units", "g", VG): "  12.00g\n",
        ("dmsetup", "ls"): [
            f"{VG}-pxpool_tmeta\t(253:3)\n{VG}-pxpool_tdata\t(253:4)\nother-data\t(253:9)\n",
            "No devices found\n",
        ],
        ("dd", f"if={TMETA_DEVICE}", f"of={SCRATCH}/meta_original", "bs=4M"):
            lambda cmd: ctx.set_file(f"{SCRATCH}/meta_original", "", META_SIZE),
        ("thin_dump", f"{SCRATCH}/meta_repaired"): superblock(repaired_txn),
        ("dmsetup", "table", f"{VG}-pxpool_tmeta"): TMETA_TABLE + "\n",
        ("dmsetup", "create", f"{VG}_tmeta_recovery", "--table", TMETA_TABLE):
            lambda cmd: ctx.set_file(RECOVERY_DEVICE),
        ("dmsetup", "remove", f"{VG}_tmeta_recovery"):
            lambda cmd: ctx.remove_file(RECOVERY_DEVICE),
    })
    return ctx
