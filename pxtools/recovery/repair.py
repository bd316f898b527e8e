"""Thin pool metadata copy, repair, verification and write-back."""

from dataclasses import dataclass

from pxtools.lib.filesystem import FileError, read_file, write_file
from pxtools.lib.process import CommandError, succeeds
from pxtools.recovery import state
from pxtools.recovery.errors import MetadataWriteError, RecoveryError
from pxtools.recovery.lvm import parse_transaction_attr
from pxtools.recovery.remap import DeviceRemapper, DeviceSegmentMap
from pxtools.recovery.session import RecoverySession


@dataclass
class MetadataBlob:
    """Scratch copies of the pool metadata."""

    original: str
    repaired: str
    size: int
    transaction_id: int | None = None


class MetadataRepairEngine:
    """Repairs a scratch copy of the metadata and writes it back."""

    def __init__(self, session: RecoverySession, remapper: DeviceRemapper | None = None):
        self.session = session
        self.console = session.console
        self.context = session.context
        self.remapper = remapper or DeviceRemapper(session)

    def snapshot_to_scratch(self) -> MetadataBlob:
        """
        Copy the metadata LV into scratch storage.

        Raises:
            RecoveryError: If the LV can't be activated or fully read; a
                partial copy must never reach thin_repair
        """
        session = self.session
        self.console.step(6, "Copying metadata to tmpfs for fast processing")
        self.context.makedirs(session.scratch_dir)

        session.activate_lv(session.tmeta_lv, "(metadata)")
        try:
            if not self.context.file_exists(session.tmeta_device):
                raise RecoveryError(f"Cannot activate metadata LV: {session.tmeta_device}")

            self.console.info("Copying metadata to tmpfs...")
            try:
                session.run(
                    ["dd", f"if={session.tmeta_device}", f"of={session.original_path}", "bs=4M"],
                    timeout=None,
                )
            except CommandError as e:
                raise RecoveryError(
                    f"Failed to read metadata from {session.tmeta_device} - "
                    f"aborting to prevent data corruption: {e}"
                )

            size = self.context.file_size(session.original_path)
            self.console.info(f"Metadata size: {size} bytes")
            # thin_repair writes into an existing file of the same size
            self.context.allocate_file(session.repaired_path, size)
        finally:
            session.deactivate_lv(session.tmeta_lv)

        self.console.info(f"Metadata copied to {session.scratch_dir}")
        return MetadataBlob(session.original_path, session.repaired_path, size)

    def repair(self, blob: MetadataBlob) -> MetadataBlob:
        """
        Run thin_repair on the scratch copy and check the result.

        thin_repair is never wrapped in a timeout: large pools take hours.

        Raises:
            RecoveryError: If thin_repair fails, the result fails thin_check,
                or the repaired copy differs in size from the original
        """
        self.console.step(7, "Running thin_repair in tmpfs")
        self.console.info("This may take a while depending on pool size (e.g., ~1 hour for 5TB pool)")

        try:
            self.session.run(
                ["thin_repair", "-i", blob.original, "-o", blob.repaired],
                timeout=None,
            )
        except CommandError as e:
            raise RecoveryError(f"thin_repair failed: {e}")

        self.console.info("Verifying repaired metadata...")
        if not self.verify(blob.repaired):
            raise RecoveryError("Repaired metadata still fails thin_check!")
        self.console.info("Repaired metadata passes thin_check!")

        repaired_size = self.context.file_size(blob.repaired)
        if repaired_size != blob.size:
            raise RecoveryError(
                f"Repaired metadata is {repaired_size} bytes, original is {blob.size} bytes"
            )

        blob.transaction_id = self.extract_transaction_id(blob.repaired)
        if blob.transaction_id is None:
            self.console.warn("Could not read transaction_id from repaired metadata")
            self.context.remove_file(self.session.transaction_path)
        else:
            self.console.info(f"Repaired metadata transaction_id: {blob.transaction_id}")
            try:
                write_file(self.session.transaction_path, f"{blob.transaction_id}\n", context=self.context)
            except FileError as e:
                raise RecoveryError(str(e))
        return blob

    def verify(self, path: str, quiet: bool = False) -> bool:
        """Run thin_check against a file or device."""
        cmd = ["thin_check", "-q", path] if quiet else ["thin_check", path]
        return succeeds(cmd, context=self.context, timeout=None)

    def extract_transaction_id(self, path: str) -> int | None:
        """Transaction id from the superblock line of a thin_dump of path."""
        try:
            line = self.context.first_line(["thin_dump", path])
        except OSError:
            return None
        return parse_transaction_attr(line)

    def saved_transaction_id(self) -> int | None:
        """Transaction id persisted by an earlier repair of this session's scratch copy."""
        text = read_file(self.session.transaction_path, context=self.context, default="").strip()
        return int(text) if text.isdigit() else None

    def has_repaired_copy(self) -> bool:
        return self.context.file_exists(self.session.repaired_path)

    def write_repaired(self, segment_map: DeviceSegmentMap) -> None:
        """
        Write the repaired metadata over the real metadata LV.

        This is the one step that can destroy the only usable copy, so it
        needs explicit confirmation and records ``writing_metadata`` first.

        Raises:
            RecoveryError: If the operator declines the write or a
                post-write verification failure
            MetadataWriteError: If dd or sync fail
        """
        session = self.session
        self.console.step(9, "Copying repaired metadata back to disk")

        with self.remapper.mapped_device(segment_map) as device:
            self.console.plain()
            self.console.warn("About to write repaired metadata to disk.")
            self.console.warn("DO NOT INTERRUPT - partial write will corrupt metadata!")
            self.console.plain()
            session.require("Write repaired metadata to disk now?", "Aborted before writing metadata")

            session.state.set_state(state.WRITING_METADATA)
            self.console.info("Copying repaired metadata...")
            try:
                session.run(
                    ["dd", f"if={session.repaired_path}", f"of={device}", "bs=1M"],
                    timeout=None,
                )
            except CommandError as e:
                self.console.error(f"dd failed to write metadata! {e}")
                self.console.error(f"State remains '{state.WRITING_METADATA}' - metadata may be corrupted")
                self.console.error(f"Repaired metadata still available at: {session.repaired_path}")
                self.console.error(f"Temporary device {session.recovery_dm_name} is being removed")
                raise MetadataWriteError("Failed to write metadata to disk")

            try:
                session.run(["sync"], timeout=None)
            except CommandError as e:
                self.console.error("sync failed after dd!")
                raise MetadataWriteError(f"Failed to sync metadata to disk: {e}")

            session.state.set_state(state.METADATA_WRITTEN)

            self.console.info("Verifying copied metadata...")
            if self.verify(device):
                self.console.info("Copied metadata passes thin_check!")
            else:
                self.console.error("Copied metadata fails thin_check!")
                session.require("Continue anyway?", "Aborting")

        self.console.info("Metadata copied successfully")
