"""Reconcile the pool transaction id between LVM and the repaired metadata."""

import difflib

from pxtools.lib.filesystem import FileError, read_file, write_file
from pxtools.lib.process import CommandError
from pxtools.recovery.errors import RecoveryError, TransactionMismatchError
from pxtools.recovery.lvm import find_pool_transaction_id, replace_pool_transaction_id
from pxtools.recovery.session import RecoverySession

SKIPPED = "skipped"
MATCHED = "matched"
UPDATED = "updated"


class TransactionReconciler:
    """Brings LVM's recorded transaction_id in line with the repaired metadata."""

    def __init__(self, session: RecoverySession):
        self.session = session
        self.console = session.console
        self.context = session.context

    def reconcile(self, repaired_txn: int | None) -> str:
        """
        Compare and, with confirmation, patch the pool's transaction_id.

        Args:
            repaired_txn: Transaction id from the repaired metadata, if known

        Returns:
            SKIPPED, MATCHED or UPDATED

        Raises:
            TransactionMismatchError: If the ids differ and the operator
                declines the fix; activation would fail anyway
            RecoveryError: If the record can't be backed up or restored
        """
        session = self.session
        pool = session.config.pool_name
        self.console.step(10, "Fixing transaction ID in LVM metadata")

        if repaired_txn is None:
            self.console.warn("Could not determine repaired transaction ID")
            return SKIPPED

        record_path = session.lvm_record_path
        try:
            record = read_file(record_path, context=self.context)
        except FileError:
            self.console.error(f"LVM backup file not found: {record_path}")
            return SKIPPED

        current_txn = find_pool_transaction_id(record, pool)
        if current_txn is None:
            self.console.warn(f"Could not find {pool} transaction_id in LVM backup")
            return SKIPPED

        self.console.info(f"Current {pool} transaction_id: {current_txn}")
        self.console.info(f"Repaired metadata transaction_id: {repaired_txn}")

        if current_txn == repaired_txn:
            self.console.info("Transaction IDs match, no update needed")
            return MATCHED

        self.console.warn("Transaction ID mismatch!")
        backup_file = session.backup_path("lvm_backup_before_txn_fix")
        try:
            self.context.copy_file(record_path, backup_file)
        except OSError as e:
            raise RecoveryError(f"Cannot back up {record_path}: {e}")
        self.console.info(f"Backup saved: {backup_file}")

        proposed = replace_pool_transaction_id(record, pool, repaired_txn)
        self.console.info("Proposed change:")
        self.console.plain("---")
        diff = difflib.unified_diff(
            record.splitlines(keepends=True),
            proposed.splitlines(keepends=True),
            fromfile=record_path,
            tofile=f"{record_path}.proposed",
        )
        self.console.plain("".join(diff).rstrip("\n"))
        self.console.plain("---")

        if not session.confirm(f"Apply this change to {record_path}?"):
            self.console.error("Transaction ID fix declined")
            self.console.error("VG activation will FAIL with mismatched transaction ID!")
            self.console.error(
                f"LVM expects transaction_id={current_txn} but metadata has transaction_id={repaired_txn}"
            )
            raise TransactionMismatchError("Aborting recovery - transaction ID mismatch must be fixed")

        try:
            write_file(record_path, proposed, context=self.context)
        except FileError as e:
            raise RecoveryError(str(e))
        self.console.info(f"Updated {pool} transaction_id in {record_path}")

        self.console.info("Restoring VG configuration...")
        try:
            session.run(["vgcfgrestore", session.vg_name, "--force"])
        except CommandError as e:
            raise RecoveryError(f"vgcfgrestore failed: {e}")
        return UPDATED
