"""Recovery session context shared by every step."""

import subprocess
from dataclasses import dataclass, field
from pathlib import Path

from pxtools.core.config import RecoveryConfig
from pxtools.core.context import Context
from pxtools.core.logging import Console
from pxtools.core.prompt import Prompter
from pxtools.lib.process import CommandError, run_command
from pxtools.recovery.errors import RecoveryError
from pxtools.recovery.lvm import dm_name, dm_path
from pxtools.recovery.state import StateTracker


@dataclass
class RecoverySession:
    """
    One recovery run against one volume group.

    Holds the configuration, the execution context, the console, the
    confirmation provider and the state tracker, so no step relies on
    process-wide globals.
    """

    vg_name: str
    config: RecoveryConfig
    context: Context
    console: Console
    prompter: Prompter
    state: StateTracker = field(init=False)
    lvm_backup_dir: str = field(init=False)
    backup_dir: str | None = field(default=None, init=False)

    def __post_init__(self) -> None:
        self.state = StateTracker(self.config.state_file(self.vg_name), self.context, self.console)
        self.lvm_backup_dir = self.config.lvm_backup_dir

    # Names and paths

    @property
    def pool_lv(self) -> str:
        return f"{self.vg_name}/{self.config.pool_name}"

    @property
    def tmeta_lv(self) -> str:
        return f"{self.vg_name}/{self.config.tmeta_name}"

    @property
    def reserve_lv(self) -> str:
        return f"{self.vg_name}/{self.config.reserve_name}"

    @property
    def tmeta_dm_name(self) -> str:
        return dm_name(self.vg_name, self.config.tmeta_name)

    @property
    def tmeta_device(self) -> str:
        return dm_path(self.tmeta_dm_name)

    @property
    def pool_dm_name(self) -> str:
        return dm_name(self.vg_name, self.config.pool_name)

    @property
    def recovery_dm_name(self) -> str:
        return f"{self.vg_name}_tmeta_recovery"

    @property
    def scratch_dir(self) -> str:
        return self.config.scratch_dir

    def scratch_path(self, name: str) -> str:
        return str(Path(self.scratch_dir) / name)

    @property
    def original_path(self) -> str:
        return self.scratch_path("meta_original")

    @property
    def repaired_path(self) -> str:
        return self.scratch_path("meta_repaired")

    @property
    def table_path(self) -> str:
        return self.scratch_path("tmeta_table")

    @property
    def transaction_path(self) -> str:
        return self.scratch_path("transaction_id")

    @property
    def lvm_record_path(self) -> str:
        """LVM's own metadata backup record for the vg."""
        return str(Path(self.lvm_backup_dir) / self.vg_name)

    def backup_path(self, name: str) -> str:
        if self.backup_dir is None:
            raise RecoveryError("Backup directory has not been prepared")
        return str(Path(self.backup_dir) / name)

    # Command helpers

    def run(
        self,
        cmd: list[str],
        check: bool = True,
        timeout: int | None = 60,
        input: str | None = None,
    ) -> subprocess.CompletedProcess:
        """Run a command through the session context."""
        return run_command(cmd, context=self.context, check=check, timeout=timeout, input=input)

    def confirm(self, message: str, default: bool = False) -> bool:
        return self.prompter.confirm(message, default=default)

    def require(self, message: str, abort_message: str) -> None:
        """Ask for confirmation and abort the run when declined."""
        if not self.confirm(message):
            raise RecoveryError(abort_message)

    def activate_lv(self, lv: str, purpose: str) -> None:
        """
        Activate an LV with the bounded LVM timeout.

        Raises:
            RecoveryError: On failure or timeout, which are the hang modes
                of a corrupted pool
        """
        self.console.info(f"Activating {lv}...")
        try:
            self.run(["lvchange", "-ay", lv], timeout=self.config.lvm_timeout, input="y\n")
        except CommandError as e:
            reason = "timed out" if e.timed_out else "error"
            raise RecoveryError(f"Failed to activate {lv} {purpose} ({reason}): {e}")

    def deactivate_lv(self, lv: str) -> None:
        """Deactivate an LV with the bounded LVM timeout; failure only warns."""
        try:
            self.run(["lvchange", "-an", lv], timeout=self.config.lvm_timeout)
        except CommandError as e:
            self.console.warn(f"Could not deactivate {lv}: {e}")
