"""Pre-flight checks before any destructive recovery step."""

from datetime import datetime
from pathlib import Path

from pxtools.lib.filesystem import read_file
from pxtools.lib.process import CommandError, check_tool, succeeds
from pxtools.recovery.errors import RecoveryError
from pxtools.recovery.lvm import parse_lvmconfig_value, parse_mem_available, parse_size_bytes
from pxtools.recovery.session import RecoverySession

REQUIRED_TOOLS = [
    "thin_check",
    "thin_repair",
    "thin_dump",
    "dmsetup",
    "lvs",
    "vgs",
    "lvchange",
    "vgchange",
    "lvcreate",
    "lvremove",
    "vgcfgbackup",
    "vgcfgrestore",
    "lvmconfig",
    "dd",
    "sync",
    "ps",
]

CONTAINER_INIT = "supervisord"


class EnvironmentValidator:
    """Gatekeeper for a recovery session."""

    def __init__(self, session: RecoverySession):
        self.session = session
        self.console = session.console
        self.context = session.context

    def validate(self) -> None:
        """
        Run every pre-flight check.

        Raises:
            RecoveryError: On a hard failure, or when the operator declines
                a soft one
        """
        self.console.step(1, "Checking prerequisites")
        self.check_detached_session()
        self.check_container()
        self.check_maintenance_mode()
        self.check_tools()
        self.read_lvm_backup_dir()
        self.check_vg_exists()
        self.check_memory()
        self.console.info("Prerequisites check passed")

    def check_detached_session(self) -> None:
        """Long repairs must survive a terminal disconnect."""
        if self.context.get_env("STY"):
            self.console.info(f"Running in screen session: {self.context.get_env('STY')}")
            return
        if self.context.get_env("TMUX"):
            self.console.info("Running in tmux session")
            return

        ppid = str(self.context.parent_pid())
        try:
            result = self.session.run(["ps", "-o", "comm=", "-p", ppid], check=False)
            parent = result.stdout.strip()
        except CommandError:
            parent = ""
        if parent == "nohup":
            self.console.info("Running under nohup")
            return

        vg = self.session.vg_name
        self.console.warn("Not running in screen/tmux/nohup!")
        self.console.warn("This recovery can take 1+ hours for large pools.")
        self.console.warn("If your terminal disconnects, recovery will fail mid-way!")
        self.console.warn("Recommended: Run with nohup or screen:")
        self.console.warn(f"  nohup px-thin-recover {vg} -y > /var/cores/recovery.log 2>&1 &")
        self.console.warn(f"  OR: screen -S recovery px-thin-recover {vg}")
        self.session.require(
            "Continue in current terminal anyway?",
            "Aborted - please run in screen/tmux/nohup",
        )

    def check_container(self) -> None:
        """PID 1 must be the PX container's supervisord."""
        init = read_file("/proc/1/comm", context=self.context, default="").strip()
        if init != CONTAINER_INIT:
            self.console.error("This tool must be run from inside the PX container!")
            self.console.error(f"PID 1 is '{init}', expected '{CONTAINER_INIT}'")
            self.console.info("To enter PX container:")
            self.console.info("  runc exec -t portworx bash")
            self.console.info("  OR: nsenter to portworx pod")
            raise RecoveryError("Not running inside PX container")
        self.console.info(f"Running inside PX container (PID 1 = {CONTAINER_INIT})")

    def pxctl(self) -> str:
        path = self.session.config.pxctl_path
        return path if self.context.is_executable(path) else "pxctl"

    def check_maintenance_mode(self) -> None:
        """PX should not be using the pool while it is repaired."""
        status_line = ""
        try:
            result = self.session.run([self.pxctl(), "status"], check=True)
            for line in result.stdout.splitlines():
                if line.lower().startswith("status:"):
                    status_line = line.strip()
                    break
            self.console.info(f"PX status: {status_line}")
        except CommandError as e:
            self.console.warn(f"pxctl status failed: {e}")

        if "maintenance" in status_line.lower():
            self.console.info("PX is in maintenance mode")
            return

        self.console.warn("PX is NOT in maintenance mode!")
        self.console.warn(f"Current status: {status_line or 'unknown'}")
        self.console.warn("PX should be in maintenance mode before running this tool.")
        self.console.warn("To enter maintenance mode: pxctl service maintenance --enter")
        self.session.require(
            "Continue anyway? (DANGEROUS if PX is actively using the pool)",
            "Aborted - please put PX in maintenance mode first",
        )
        self.console.warn("Continuing without maintenance mode...")

    def check_tools(self) -> None:
        for tool in REQUIRED_TOOLS:
            try:
                check_tool(tool, context=self.context, required=True)
            except CommandError:
                raise RecoveryError(f"Required tool '{tool}' not found")

    def read_lvm_backup_dir(self) -> None:
        """Use LVM's configured backup directory for records and our backups."""
        try:
            result = self.session.run(
                ["lvmconfig", "--type", "current", "backup/backup_dir"], check=False
            )
            value = parse_lvmconfig_value(result.stdout) if result.returncode == 0 else None
        except CommandError:
            value = None
        if value:
            self.session.lvm_backup_dir = value
        self.console.info(f"LVM backup directory: {self.session.lvm_backup_dir}")

    def check_vg_exists(self) -> None:
        vg = self.session.vg_name
        if not succeeds(["vgs", vg], context=self.context):
            raise RecoveryError(f"Volume group '{vg}' not found")

    def metadata_size(self) -> int | None:
        """Size of the thin pool metadata LV in bytes."""
        try:
            result = self.session.run(
                ["lvs", "--noheadings", "-o", "lv_size", "--units", "b", self.session.tmeta_lv],
                check=False,
            )
        except CommandError:
            return None
        if result.returncode != 0:
            return None
        return parse_size_bytes(result.stdout)

    def check_memory(self) -> None:
        """The scratch area is RAM-backed and holds two copies plus tool overhead."""
        meminfo = read_file("/proc/meminfo", context=self.context, default="")
        available = parse_mem_available(meminfo)
        meta_size = self.metadata_size()
        if available is None or meta_size is None:
            self.console.warn("Could not determine available memory or metadata size")
            return

        gib = 1024 ** 3
        factor = self.session.config.memory_factor
        self.console.info(f"Available memory: {available / gib:.1f}GB")
        self.console.info(f"Thin pool metadata size: {meta_size / gib:.1f}GB")
        if available < meta_size * factor:
            self.console.warn(
                f"Low memory! Need ~{factor}x metadata size "
                f"({meta_size * factor / gib:.1f}GB) for safe tmpfs recovery"
            )
            self.session.require("Continue anyway?", "Aborted - not enough free memory")

    def prepare_backup_dir(self) -> str:
        """Create this session's timestamped backup directory."""
        stamp = datetime.now().strftime("%Y%m%d_%H%M%S")
        path = str(Path(self.session.lvm_backup_dir) / f"recovery_{stamp}")
        self.context.makedirs(path)
        self.session.backup_dir = path
        self.console.info(f"Backup directory: {path}")
        return path

    def is_healthy(self) -> bool:
        """
        Check whether the pool already works.

        Activation is bounded because a corrupted pool is exactly the case
        where vgchange hangs.
        """
        self.console.step(0, "Checking if VG is already healthy")
        session = self.session
        if not succeeds(
            ["vgchange", "-ay", session.vg_name],
            context=self.context,
            timeout=session.config.lvm_timeout,
        ):
            self.console.info("VG activation failed or timed out")
            return False

        try:
            result = session.run(["lvs", "--noheadings", "-o", "lv_attr", session.pool_lv], check=False)
            attrs = result.stdout.strip() if result.returncode == 0 else ""
        except CommandError:
            attrs = ""
        if not attrs:
            self.console.info(f"Pool {session.pool_lv} not found")
            return False

        if not self.context.file_exists(session.tmeta_device):
            self.console.info("Cannot verify pool metadata")
            return False

        if succeeds(["thin_check", session.tmeta_device], context=self.context, timeout=None):
            self.console.info("Pool metadata passes thin_check")
            return True
        self.console.info("Pool metadata fails thin_check")
        return False
