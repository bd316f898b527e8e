"""Ordered, resumable thin pool recovery runbook."""

import signal
from dataclasses import dataclass
from datetime import datetime

from pxtools import __version__
from pxtools.lib.process import CommandError
from pxtools.recovery import state
from pxtools.recovery.errors import MetadataWriteError, RecoveryError, RecoveryInterrupted
from pxtools.recovery.lvm import devices_for_vg, dm_path, find_lvm_processes, parse_dmsetup_ls
from pxtools.recovery.remap import DeviceRemapper, DeviceSegmentMap
from pxtools.recovery.repair import MetadataBlob, MetadataRepairEngine
from pxtools.recovery.reserve import ReservationManager
from pxtools.recovery.session import RecoverySession
from pxtools.recovery.txn import TransactionReconciler
from pxtools.recovery.validator import EnvironmentValidator

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_INTERRUPTED = 130


@dataclass(frozen=True)
class Step:
    """A runbook step and the state recorded once it has finished."""

    method: str
    done_state: str | None


STEPS = (
    Step("stop_lvm_processes", state.LVM_STOPPED),
    Step("backup_lvm_config", state.BACKUP_DONE),
    Step("check_reservation", state.PXRESERVE_CHECKED),
    Step("deactivate_vg", state.VG_DEACTIVATED),
    Step("snapshot_to_scratch", state.METADATA_COPIED),
    Step("repair", state.REPAIR_COMPLETE),
    Step("capture_segment_map", state.TABLE_OBTAINED),
    # records writing_metadata and metadata_written itself
    Step("write_repaired", state.TXN_ID_FIXING),
    Step("reconcile", state.ACTIVATING),
    Step("activate_and_verify", state.RECREATING_PXRESERVE),
    Step("recreate_reservation", state.COMPLETE),
    Step("finish", None),
)

STEP_NAMES = [s.method for s in STEPS]


def resume_index(label: str) -> int:
    """
    Index of the first step to run after a previous run stopped at label.

    Pre-write labels restart from scratch since nothing on disk changed. An
    interrupted write is retried from the persisted table. Post-write labels
    pick up right after the recorded step.
    """
    band = state.classify(label)
    if band == state.PRE_WRITE:
        return 0
    write_step = STEP_NAMES.index("write_repaired")
    if band == state.DURING_WRITE:
        return write_step
    if label == state.METADATA_WRITTEN:
        return write_step + 1
    for i, step in enumerate(STEPS):
        if step.done_state == label:
            return i + 1
    return 0


class RecoveryOrchestrator:
    """Runs the recovery steps in their fixed order."""

    def __init__(self, session: RecoverySession):
        self.session = session
        self.console = session.console
        self.context = session.context
        self.validator = EnvironmentValidator(session)
        self.remapper = DeviceRemapper(session)
        self.engine = MetadataRepairEngine(session, self.remapper)
        self.reconciler = TransactionReconciler(session)
        self.reservation = ReservationManager(session)
        self.blob: MetadataBlob | None = None
        self.segment_map: DeviceSegmentMap | None = None
        self.interrupted = False

    def run(self) -> int:
        """
        Run a full session.

        Returns:
            0 on success or when nothing needs doing, 1 on failure,
            130 when interrupted
        """
        previous_handlers = {}
        for signum in (signal.SIGINT, signal.SIGTERM):
            previous_handlers[signum] = self.context.set_signal_handler(signum, self._on_signal)

        try:
            return self._run()
        except RecoveryInterrupted:
            self.report_interrupt()
            return EXIT_INTERRUPTED
        except MetadataWriteError as e:
            self.console.error(f"CRITICAL: {e}")
            name = self.session.recovery_dm_name
            if self.context.file_exists(dm_path(name)):
                self.console.error(f"Recovery device {name} is still mapped, remove it with: dmsetup remove {name}")
            else:
                self.console.error(f"Recovery device {name} was removed")
            self.console.error(f"State file left at '{state.WRITING_METADATA}': {self.session.state.path}")
            return EXIT_FAILED
        except RecoveryError as e:
            self.console.error(str(e))
            if self.session.state.current:
                self.console.error(f"Recovery stopped at state '{self.session.state.current}'")
                self.console.info(f"State file: {self.session.state.path}")
            return EXIT_FAILED
        finally:
            for signum, handler in previous_handlers.items():
                if handler is not None:
                    self.context.set_signal_handler(signum, handler)

    def _on_signal(self, signum, frame) -> None:
        # Later signals are ignored so cleanup such as removing the
        # recovery device runs to completion
        if self.interrupted:
            return
        self.interrupted = True
        raise RecoveryInterrupted(signum)

    def _run(self) -> int:
        session = self.session
        self.banner()

        self.validator.validate()

        if self.validator.is_healthy():
            self.console.info(f"VG {session.vg_name} is already activated and pool is healthy")
            self.console.info("No recovery needed")
            session.state.clear()
            return EXIT_OK

        self.console.warn("VG activation failed or pool is unhealthy - recovery needed")

        start = 0
        previous = session.state.read_previous_state()
        if previous:
            start = self.check_previous_recovery(previous)
        elif self.engine.has_repaired_copy():
            self.console.info(f"Found previous recovery data in {session.scratch_dir}")
            self.console.info("This will be overwritten if you continue.")

        self.console.warn("This will attempt to recover corrupted thin pool metadata.")
        self.console.warn("Make sure you have backups of important data!")
        if not session.confirm(f"Proceed with recovery of {session.vg_name}?"):
            self.console.info("Recovery not started, nothing was changed")
            return EXIT_OK

        self.validator.prepare_backup_dir()

        if start == 0:
            session.state.set_state(state.STARTING)
        elif start > STEP_NAMES.index("deactivate_vg") and start <= STEP_NAMES.index("activate_and_verify"):
            # the health check above may have partially activated the group
            self.deactivate_vg()

        for step in STEPS[start:]:
            getattr(self, step.method)()
            if step.done_state:
                session.state.set_state(step.done_state)

        session.state.clear()
        return EXIT_OK

    def banner(self) -> None:
        session = self.session
        self.console.plain("=========================================")
        self.console.plain(f"  Thin Pool Metadata Recovery v{__version__}")
        self.console.plain(f"  VG: {session.vg_name}")
        self.console.plain(f"  Pool: {session.pool_lv}")
        self.console.plain(f"  Metadata: {session.tmeta_lv}")
        self.console.plain(f"  {datetime.now().strftime('%a %b %d %H:%M:%S %Y')}")
        self.console.plain("=========================================")
        self.console.plain()

    def _report_band(self, band: str) -> None:
        for level, message in state.explain(band):
            getattr(self.console, level)(message)

    def check_previous_recovery(self, previous: str) -> int:
        """
        Explain an unfinished previous run and decide where to resume.

        Returns:
            Index of the first step to run

        Raises:
            RecoveryError: If the operator declines, or an interrupted write
                left nothing to write again
        """
        session = self.session
        band = state.classify(previous)
        self.console.warn("Previous incomplete recovery detected!")
        self.console.warn(f"State file: {session.state.path}")
        self.console.warn(f"Previous state: {previous}")
        self._report_band(band)

        if band == state.DURING_WRITE:
            have_copy = self.engine.has_repaired_copy()
            have_table = self.context.file_exists(session.table_path)
            if not (have_copy and have_table):
                self.console.error("Repaired metadata NOT found in tmpfs!")
                self.console.error("May need to recover from pmspare or backup")
                raise RecoveryError(
                    f"Cannot resume interrupted write. Remove {session.state.path} only once "
                    "the metadata has been recovered by other means."
                )
            self.console.info("Repaired metadata found in tmpfs - can attempt to continue")

        session.require(
            "Continue with recovery?",
            f"Aborted. Remove {session.state.path} to start fresh.",
        )

        start = resume_index(previous)
        if start:
            self.console.info(f"Resuming at step '{STEP_NAMES[start]}'")
        return start

    def report_interrupt(self) -> None:
        """Explain what an interruption left behind; nothing is rolled back."""
        session = self.session
        current = session.state.current or session.state.read_previous_state() or "not started"
        self.console.plain()
        self.console.error("INTERRUPTED! Recovery incomplete.")
        self.console.error(f"Current state: {current}")
        self.console.warn("The recovery was interrupted mid-way. Depending on the state:")
        self.console.warn(f"  - Before '{state.WRITING_METADATA}': Safe to restart, original data intact")
        self.console.warn(f"  - During '{state.WRITING_METADATA}': DANGEROUS - metadata may be corrupted")
        self.console.warn(f"  - After '{state.WRITING_METADATA}': Restart to complete remaining steps")
        if current in state.STATES:
            self._report_band(state.classify(current))
        name = session.recovery_dm_name
        if self.context.file_exists(dm_path(name)):
            self.console.warn(f"Recovery device {name} is still mapped, remove it with: dmsetup remove {name}")
        if self.context.file_exists(session.scratch_dir):
            self.console.info(f"Repaired metadata preserved in: {session.scratch_dir}")
            self.console.info(
                f"To manually restore: dd if={session.repaired_path} of={session.tmeta_device}"
            )
        self.console.info(f"State file: {session.state.path}")

    # Steps run directly by the orchestrator

    def stop_lvm_processes(self) -> None:
        """Kill hung LVM/thin tool processes holding the group."""
        session = self.session
        self.console.step(2, "Stopping stuck LVM processes")
        try:
            result = session.run(["ps", "-eo", "pid,comm,args", "--no-headers"])
        except CommandError as e:
            raise RecoveryError(f"Cannot list processes: {e}")

        found = find_lvm_processes(result.stdout, session.vg_name, self.context.pid())
        if not found:
            self.console.info("No stuck LVM processes found")
            return

        self.console.warn(f"Found LVM processes operating on {session.vg_name}:")
        for _, line in found:
            self.console.plain(f"  {line}")

        if not session.confirm("Kill these processes?"):
            return
        for pid, _ in found:
            self.console.info(f"Killing PID {pid}")
            try:
                self.context.kill(pid, signal.SIGKILL)
            except ProcessLookupError:
                pass
        self.context.sleep(2)

    def backup_lvm_config(self) -> None:
        """Snapshot LVM configuration into the session backup directory."""
        session = self.session
        self.console.step(3, "Backing up LVM configuration")
        vg = session.vg_name

        try:
            session.run(["vgcfgbackup", vg, "-f", session.backup_path(f"{vg}_vgcfgbackup.conf")])
        except CommandError as e:
            raise RecoveryError(f"vgcfgbackup failed: {e}")

        if self.context.file_exists(session.lvm_record_path):
            try:
                self.context.copy_file(session.lvm_record_path, session.backup_path(f"{vg}_backup.conf"))
            except OSError as e:
                raise RecoveryError(f"Cannot copy {session.lvm_record_path}: {e}")

        try:
            dump = session.run(["lvmconfig", "--type", "current"])
            self.context.write_file(session.backup_path("lvmconfig_dump.txt"), dump.stdout)
        except (CommandError, OSError) as e:
            self.console.warn(f"Could not save lvmconfig dump: {e}")

        self.console.info(f"LVM config backed up to {session.backup_dir}")

    def check_reservation(self) -> None:
        self.reservation.check_and_remove()

    def _vg_devices(self) -> list[str]:
        try:
            result = self.session.run(["dmsetup", "ls"], check=False)
        except CommandError:
            return []
        return devices_for_vg(parse_dmsetup_ls(result.stdout), self.session.vg_name)

    def deactivate_vg(self) -> None:
        """Take the whole group offline, forcing device removal if vgchange hangs."""
        session = self.session
        self.console.step(5, "Deactivating volume group")

        devices = self._vg_devices()
        self.console.info("Current active devices:")
        self.console.plain("\n".join(f"  {d}" for d in devices) or "  (none)")

        if not session.confirm(f"Deactivate VG {session.vg_name}?"):
            self.console.warn("VG left active - later steps may fail")
            return

        try:
            session.run(["vgchange", "-an", session.vg_name], timeout=session.config.lvm_timeout)
        except CommandError as e:
            self.console.warn(f"vgchange -an did not complete, forcing device removal: {e}")

        for device in self._vg_devices():
            try:
                session.run(["dmsetup", "remove", "-f", device], check=False)
            except CommandError as e:
                self.console.warn(f"Could not remove {device}: {e}")

        self.context.sleep(1)
        remaining = self._vg_devices()
        if remaining:
            self.console.warn(f"{len(remaining)} devices still active")
            self.console.plain("\n".join(f"  {d}" for d in remaining))
        else:
            self.console.info("VG deactivated successfully")

    def snapshot_to_scratch(self) -> None:
        self.blob = self.engine.snapshot_to_scratch()

    def repair(self) -> None:
        if self.blob is None:
            raise RecoveryError("No metadata copy to repair")
        self.engine.repair(self.blob)

    def capture_segment_map(self) -> None:
        self.segment_map = self.remapper.capture_segment_map()

    def write_repaired(self) -> None:
        segment_map = self.segment_map or self.remapper.load_segment_map()
        self.engine.write_repaired(segment_map)

    def reconcile(self) -> None:
        self.reconciler.reconcile(self.engine.saved_transaction_id())

    def activate_and_verify(self) -> None:
        """Bring the group back and report pool health."""
        session = self.session
        self.console.step(11, "Activating volume group and verifying")
        if not session.confirm(f"Activate VG {session.vg_name} now?"):
            self.console.warn(f"VG {session.vg_name} left inactive")
            return

        try:
            session.run(["vgchange", "-ay", session.vg_name], timeout=session.config.lvm_timeout)
        except CommandError as e:
            raise RecoveryError(f"Failed to activate VG {session.vg_name}: {e}")

        try:
            result = session.run(["lvs", "--noheadings", "-o", "lv_active", session.vg_name], check=False)
            active = sum(1 for line in result.stdout.splitlines() if line.strip() == "active")
        except CommandError:
            active = 0
        self.console.info(f"Activated LVs: {active}")

        try:
            status = session.run(["dmsetup", "status", session.pool_dm_name], check=False)
            if status.returncode == 0 and status.stdout.strip():
                self.console.info("Thin pool status:")
                self.console.plain(status.stdout.strip())
        except CommandError as e:
            self.console.warn(f"Could not read thin pool status: {e}")

        if self.engine.verify(session.tmeta_device, quiet=True):
            self.console.info("Thin pool metadata is healthy!")
        else:
            self.console.warn("Thin pool metadata check failed")

    def recreate_reservation(self) -> None:
        self.reservation.recreate()

    def finish(self) -> None:
        """Offer scratch cleanup and print follow-up steps."""
        session = self.session
        self.console.step(13, "Cleanup")
        self.console.info(f"Recovery files in: {session.scratch_dir}")
        self.console.info(f"Backup files in: {session.backup_dir}")

        if self.context.file_exists(session.scratch_dir) and session.confirm("Remove tmpfs recovery files?"):
            self.context.remove_tree(session.scratch_dir)
            self.console.info("Tmpfs files removed")

        self.console.plain()
        self.console.info("=========================================")
        self.console.info("Recovery complete!")
        self.console.info("=========================================")
        self.console.plain()
        self.console.info("Next steps:")
        self.console.plain("  1. Restart Portworx: supervisorctl restart pxcontroller_pxstorage")
        self.console.plain("  2. Monitor startup: journalctl -u portworx -f")
        self.console.plain("  3. Check pool health: pxctl status")
