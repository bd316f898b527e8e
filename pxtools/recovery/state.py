"""Persisted recovery state for crash detection and resume."""

import os

from pxtools.core.context import Context
from pxtools.core.logging import Console
from pxtools.lib.filesystem import read_file, write_file

STARTING = "starting"
LVM_STOPPED = "lvm_stopped"
BACKUP_DONE = "backup_done"
PXRESERVE_CHECKED = "pxreserve_checked"
VG_DEACTIVATED = "vg_deactivated"
METADATA_COPIED = "metadata_copied_to_tmpfs"
REPAIR_COMPLETE = "repair_complete"
TABLE_OBTAINED = "table_obtained"
WRITING_METADATA = "writing_metadata"
METADATA_WRITTEN = "metadata_written"
TXN_ID_FIXING = "txn_id_fixing"
ACTIVATING = "activating"
RECREATING_PXRESERVE = "recreating_pxreserve"
COMPLETE = "complete"

STATES = (
    STARTING,
    LVM_STOPPED,
    BACKUP_DONE,
    PXRESERVE_CHECKED,
    VG_DEACTIVATED,
    METADATA_COPIED,
    REPAIR_COMPLETE,
    TABLE_OBTAINED,
    WRITING_METADATA,
    METADATA_WRITTEN,
    TXN_ID_FIXING,
    ACTIVATING,
    RECREATING_PXRESERVE,
    COMPLETE,
)

# Resumption risk bands
PRE_WRITE = "pre-write"
DURING_WRITE = "during-write"
POST_WRITE = "post-write"


def classify(label: str) -> str:
    """
    Classify a persisted label by how risky it is to carry on.

    Unknown labels are treated as pre-write: nothing known has touched the
    on-disk metadata.
    """
    if label == WRITING_METADATA:
        return DURING_WRITE
    if label in STATES and STATES.index(label) > STATES.index(WRITING_METADATA):
        return POST_WRITE
    return PRE_WRITE


def explain(band: str) -> list[tuple[str, str]]:
    """Operator guidance for a band as (level, message) pairs."""
    if band == DURING_WRITE:
        return [
            ("error", "CRITICAL: Previous recovery was interrupted during metadata write!"),
            ("error", "Metadata on disk may be corrupted."),
            ("warn", "Check for a surviving repaired copy in scratch storage before doing anything else."),
        ]
    if band == POST_WRITE:
        return [
            ("info", "Previous recovery completed the dangerous phase."),
            ("info", "Safe to restart and complete remaining steps."),
        ]
    return [
        ("info", "Previous recovery stopped before writing to disk."),
        ("info", "Safe to restart - original data should be intact."),
    ]


class StateTracker:
    """Keeps the current step label in a per-vg state file."""

    def __init__(self, path: str, context: Context, console: Console):
        self.path = path
        self.context = context
        self.console = console
        self.current: str | None = None

    def set_state(self, label: str) -> None:
        """Persist label, replacing any previous one."""
        self.context.makedirs(os.path.dirname(self.path))
        write_file(self.path, label, context=self.context)
        self.current = label
        self.console.info(f"State: {label}", state=label)

    def read_previous_state(self) -> str | None:
        """Return the last persisted label, or None when there is none."""
        label = read_file(self.path, context=self.context, default="").strip()
        return label or None

    def clear(self) -> None:
        """Remove the state file; only done once nothing is left to resume."""
        self.context.remove_file(self.path)
