"""Tests for recovery state persistence and resume points."""

import pytest

from pxtools.core.logging import Console
from pxtools.recovery import state
from pxtools.recovery.orchestrator import STEP_NAMES, resume_index
from pxtools.recovery.state import StateTracker, classify

STATE_FILE = "/var/cores/recovery_pwx2_state"


class TestClassify:
    """Tests for classify."""

    @pytest.mark.parametrize("label", [
        "starting", "lvm_stopped", "backup_done", "pxreserve_checked", "vg_deactivated",
        "metadata_copied_to_tmpfs", "repair_complete", "table_obtained",
    ])
    def test_pre_write(self, label):
        assert classify(label) == state.PRE_WRITE

    def test_during_write(self):
        assert classify("writing_metadata") == state.DURING_WRITE

    @pytest.mark.parametrize("label", [
        "metadata_written", "txn_id_fixing", "activating", "recreating_pxreserve", "complete",
    ])
    def test_post_write(self, label):
        assert classify(label) == state.POST_WRITE

    def test_unknown_is_pre_write(self):
        """Labels from an unknown version never claim the write happened."""
        assert classify("something_else") == state.PRE_WRITE

    def test_during_write_guidance_is_critical(self):
        levels = [level for level, _ in state.explain(state.DURING_WRITE)]
        assert "error" in levels


class TestResumeIndex:
    """Tests for resume_index."""

    @pytest.mark.parametrize("label", ["starting", "vg_deactivated", "table_obtained"])
    def test_pre_write_restarts(self, label):
        assert resume_index(label) == 0

    def test_during_write_retries_write(self):
        assert STEP_NAMES[resume_index("writing_metadata")] == "write_repaired"

    @pytest.mark.parametrize("label,step", [
        ("metadata_written", "reconcile"),
        ("txn_id_fixing", "reconcile"),
        ("activating", "activate_and_verify"),
        ("recreating_pxreserve", "recreate_reservation"),
        ("complete", "finish"),
    ])
    def test_post_write_continues(self, label, step):
        assert STEP_NAMES[resume_index(label)] == step


class TestStateTracker:
    """Tests for StateTracker."""

    def test_set_state_writes_only_label(self, mock_context):
        """The state file holds exactly the label."""
        ctx = mock_context()
        tracker = StateTracker(STATE_FILE, ctx, Console())
        tracker.set_state("backup_done")

        assert ctx.file_contents[STATE_FILE] == "backup_done"
        assert tracker.current == "backup_done"
        assert "/var/cores" in ctx.dirs

    def test_set_state_replaces(self, mock_context):
        ctx = mock_context()
        tracker = StateTracker(STATE_FILE, ctx, Console())
        tracker.set_state("starting")
        tracker.set_state("lvm_stopped")
        assert tracker.read_previous_state() == "lvm_stopped"

    def test_read_missing_is_none(self, mock_context):
        assert StateTracker(STATE_FILE, mock_context(), Console()).read_previous_state() is None

    def test_read_strips_newline(self, mock_context):
        """Hand-edited files with a trailing newline still parse."""
        ctx = mock_context(file_contents={STATE_FILE: "writing_metadata\n"})
        assert StateTracker(STATE_FILE, ctx, Console()).read_previous_state() == "writing_metadata"

    def test_clear(self, mock_context):
        ctx = mock_context(file_contents={STATE_FILE: "complete"})
        StateTracker(STATE_FILE, ctx, Console()).clear()
        assert not ctx.file_exists(STATE_FILE)
