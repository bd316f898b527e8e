"""The pxreserve volume that keeps a group fully allocated."""

from pxtools.lib.process import CommandError, succeeds
from pxtools.recovery.errors import RecoveryError
from pxtools.recovery.lvm import has_free_space
from pxtools.recovery.session import RecoverySession


class ReservationManager:
    """Removes the reservation volume when space is needed and recreates it afterwards."""

    def __init__(self, session: RecoverySession):
        self.session = session
        self.console = session.console

    def exists(self) -> bool:
        return succeeds(["lvs", self.session.reserve_lv], context=self.session.context)

    def _query(self, cmd: list[str]) -> str:
        try:
            result = self.session.run(cmd, check=False)
        except CommandError:
            return ""
        return result.stdout.strip() if result.returncode == 0 else ""

    def reserve_size(self) -> str:
        return self._query(
            ["lvs", "--noheadings", "-o", "lv_size", "--units", "g", self.session.reserve_lv]
        )

    def vg_free(self) -> str:
        return self._query(
            ["vgs", "--noheadings", "-o", "vg_free", "--units", "g", self.session.vg_name]
        )

    def check_and_remove(self) -> bool:
        """
        Offer to remove the reservation when the group has no free space.

        Returns:
            True if the reservation was removed
        """
        session = self.session
        self.console.step(4, f"Checking {session.config.reserve_name} volume")

        if not self.exists():
            self.console.info(f"{session.config.reserve_name} volume does not exist")
            return False

        size = self.reserve_size()
        free = self.vg_free()
        self.console.info(f"Found {session.config.reserve_name}: {size}")
        self.console.info(f"VG free space: {free}")

        if has_free_space(free):
            return False

        self.console.warn(
            f"No free space in VG - {session.config.reserve_name} may need to be removed for recovery"
        )
        if not session.confirm(f"Remove {session.config.reserve_name} to free up space for recovery?"):
            self.console.warn(f"Continuing without removing {session.config.reserve_name}")
            return False

        self.console.info(f"Removing {session.config.reserve_name}...")
        try:
            session.run(["lvremove", "-f", session.reserve_lv])
        except CommandError as e:
            raise RecoveryError(f"Failed to remove {session.reserve_lv}: {e}")
        self.console.info(f"{session.config.reserve_name} removed")
        self.console.info(f"VG free space now: {self.vg_free()}")
        return True

    def recreate(self) -> bool:
        """
        Fill the group's remaining free space with the reservation volume.

        Returns:
            True if a reservation volume was created
        """
        session = self.session
        name = session.config.reserve_name
        self.console.step(12, f"Recreating {name} volume")

        free = self.vg_free()
        self.console.info(f"VG free space: {free}")
        if not has_free_space(free):
            self.console.info(f"No free space ({free or 'unknown'}) - skipping {name} creation")
            return False

        if self.exists():
            self.console.info(f"{name} already exists")
            return False

        self.console.info(f"Creating {name} with remaining space ({free}) to ensure VG is 100% used")
        if not session.confirm(f"Create {name} volume with {free}?"):
            self.console.info(f"Skipping {name} creation")
            return False

        try:
            # -ky: keep it out of autoactivation
            session.run(["lvcreate", "-n", name, "-l", "100%FREE", "-ky", session.vg_name])
        except CommandError as e:
            self.console.warn(f"Failed to create {name}: {e}")
            return False

        if not self.exists():
            self.console.warn(f"Failed to create {name}")
            return False
        self.console.info(f"{name} created: {self.reserve_size()}")
        self.console.info(f"VG free space now: {self.vg_free()}")
        return True
