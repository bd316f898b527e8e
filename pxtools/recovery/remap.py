"""Segment map capture and temporary device-mapper targets."""

from contextlib import contextmanager
from dataclasses import dataclass
from typing import Iterator

from pxtools.lib.filesystem import FileError, read_file, write_file
from pxtools.lib.process import CommandError
from pxtools.recovery.errors import RecoveryError, TableParseError
from pxtools.recovery.lvm import dm_path
from pxtools.recovery.session import RecoverySession


@dataclass(frozen=True)
class Segment:
    """One line of a device-mapper table."""

    start: int
    length: int
    target: str
    args: tuple[str, ...]

    @property
    def device(self) -> str | None:
        """Backing device of a linear segment."""
        if self.target == "linear" and len(self.args) >= 2:
            return self.args[0]
        return None

    @property
    def physical_offset(self) -> int | None:
        """Sector offset on the backing device of a linear segment."""
        if self.target == "linear" and len(self.args) >= 2:
            return int(self.args[1])
        return None

    def to_line(self) -> str:
        return " ".join([str(self.start), str(self.length), self.target, *self.args])


@dataclass(frozen=True)
class DeviceSegmentMap:
    """Ordered logical-to-physical mapping of an LV."""

    segments: tuple[Segment, ...]

    def __len__(self) -> int:
        return len(self.segments)

    @property
    def total_sectors(self) -> int:
        return sum(s.length for s in self.segments)

    def to_table(self) -> str:
        """Table text accepted by ``dmsetup create --table``."""
        return "\n".join(s.to_line() for s in self.segments)


def parse_table(text: str) -> DeviceSegmentMap:
    """
    Parse ``dmsetup table`` output.

    Raises:
        TableParseError: If the table is empty, malformed, or its segments
            are not contiguous from sector 0
    """
    segments = []
    expected_start = 0
    for number, line in enumerate(text.splitlines(), start=1):
        line = line.strip()
        if not line:
            continue
        parts = line.split()
        if len(parts) < 3 or not parts[0].isdigit() or not parts[1].isdigit():
            raise TableParseError(f"Malformed table line {number}: {line!r}")
        segment = Segment(int(parts[0]), int(parts[1]), parts[2], tuple(parts[3:]))
        if segment.start != expected_start:
            raise TableParseError(
                f"Segment at line {number} starts at {segment.start}, expected {expected_start}"
            )
        if segment.target == "linear":
            if len(segment.args) != 2 or not segment.args[1].isdigit():
                raise TableParseError(f"Malformed linear segment at line {number}: {line!r}")
        expected_start += segment.length
        segments.append(segment)

    if not segments:
        raise TableParseError("Device table is empty")
    return DeviceSegmentMap(tuple(segments))


class DeviceRemapper:
    """Places writes at the metadata LV's exact physical location."""

    def __init__(self, session: RecoverySession):
        self.session = session
        self.console = session.console

    def capture_segment_map(self) -> DeviceSegmentMap:
        """
        Read the live table of the metadata LV and persist it to scratch.

        The LV has to be active for device-mapper to report its table.

        Raises:
            RecoveryError: If the LV can't be activated or has no usable table
        """
        session = self.session
        self.console.step(8, "Getting correct segment offsets for metadata LV")
        session.activate_lv(session.tmeta_lv, "for table extraction")
        try:
            try:
                result = session.run(["dmsetup", "table", session.tmeta_dm_name])
            except CommandError as e:
                raise RecoveryError(f"Cannot get dmsetup table for {session.tmeta_dm_name}: {e}")
            if not result.stdout.strip():
                raise RecoveryError(f"Cannot get dmsetup table for {session.tmeta_dm_name}")

            segment_map = parse_table(result.stdout)
            try:
                write_file(session.table_path, segment_map.to_table() + "\n", context=session.context)
            except FileError as e:
                raise RecoveryError(str(e))
            self.console.info(f"Metadata LV table ({session.tmeta_dm_name}):")
            self.console.plain(segment_map.to_table())
            self.console.info(f"Found {len(segment_map)} segment(s)")
        finally:
            session.deactivate_lv(session.tmeta_lv)
        return segment_map

    def load_segment_map(self) -> DeviceSegmentMap:
        """Read back the table captured earlier in this or a previous run."""
        try:
            text = read_file(self.session.table_path, context=self.session.context)
        except FileError as e:
            raise RecoveryError(f"Captured segment table unavailable: {e}")
        return parse_table(text)

    @contextmanager
    def mapped_device(self, segment_map: DeviceSegmentMap) -> Iterator[str]:
        """
        Create a temporary device with segment_map and yield its path.

        The device is removed on every exit path so a later attempt never
        trips over a stale mapping.
        """
        session = self.session
        name = session.recovery_dm_name
        self.console.info("Creating temporary device with correct segment mapping...")
        try:
            session.run(["dmsetup", "create", name, "--table", segment_map.to_table()])
        except CommandError as e:
            self.remove_device(name)
            raise RecoveryError(f"Failed to create recovery device: {e}")

        try:
            path = dm_path(name)
            if not session.context.file_exists(path):
                raise RecoveryError("Failed to create recovery device")
            yield path
        finally:
            self.remove_device(name)

    def remove_device(self, name: str) -> None:
        try:
            self.session.run(["dmsetup", "remove", name])
        except CommandError as e:
            self.console.warn(f"Could not remove temporary device {name}: {e}")
