"""Parsing of LVM, device-mapper and thin tool output."""

import re

# Tools that hold the volume group busy when a previous attempt hung
LVM_PROCESS_PATTERN = re.compile(r"vgchange|pvscan|lvcreate|thin_check|thin_repair")

TRANSACTION_ATTR = re.compile(r'transaction="(\d+)"')
TRANSACTION_FIELD = re.compile(r"transaction_id\s*=\s*(\d+)")


def dm_name(vg_name: str, lv_name: str) -> str:
    """Device-mapper name of an LV; hyphens inside names are doubled."""
    return f"{vg_name.replace('-', '--')}-{lv_name.replace('-', '--')}"


def dm_path(name: str) -> str:
    return f"/dev/mapper/{name}"


def parse_size_bytes(value: str) -> int | None:
    """Parse an ``lvs --units b`` size such as ``2147483648B``."""
    value = value.strip().rstrip("Bb")
    if not value:
        return None
    try:
        return int(float(value))
    except ValueError:
        return None


def has_free_space(vg_free: str) -> bool:
    """
    Check a ``vgs -o vg_free --units g`` value for usable free space.

    LVM prints ``0``, ``0.00g`` or a ``<`` prefixed approximation when the
    group is (nearly) full.
    """
    value = vg_free.strip()
    if not value or value.startswith("<"):
        return False
    try:
        return float(value.rstrip("gGmMtTkKbB")) > 0
    except ValueError:
        return False


def parse_mem_available(meminfo: str) -> int | None:
    """Return MemAvailable from /proc/meminfo in bytes."""
    for line in meminfo.splitlines():
        if line.startswith("MemAvailable:"):
            parts = line.split()
            if len(parts) >= 2 and parts[1].isdigit():
                return int(parts[1]) * 1024
    return None


def parse_lvmconfig_value(output: str) -> str | None:
    """Parse ``key=value`` or ``key="value"`` from lvmconfig."""
    for line in output.splitlines():
        if "=" not in line:
            continue
        value = line.split("=", 1)[1].strip().strip('"').strip()
        if value:
            return value
    return None


def parse_dmsetup_ls(output: str) -> list[str]:
    """Device names from ``dmsetup ls``."""
    names = []
    for line in output.splitlines():
        line = line.strip()
        if not line or line.startswith("No devices found"):
            continue
        names.append(line.split()[0])
    return names


def devices_for_vg(names: list[str], vg_name: str) -> list[str]:
    """
    Filter device-mapper names that belong to vg_name exactly.

    A group named ``pwx2-a`` maps to ``pwx2--a-...``, which also starts with
    ``pwx2-``; LV names never start with a hyphen, so such names are skipped.
    """
    prefix = vg_name.replace("-", "--") + "-"
    return [n for n in names if n.startswith(prefix) and not n[len(prefix):].startswith("-")]


def find_lvm_processes(ps_output: str, vg_name: str, own_pid: int) -> list[tuple[int, str]]:
    """
    Find LVM/thin tool processes operating on vg_name.

    The vg name must appear as a whole argument, or as the start of a
    ``vg/lv`` path, so ``pwx2`` does not match ``pwx20``.

    Args:
        ps_output: Output of ``ps -eo pid,comm,args --no-headers``
        vg_name: Volume group name
        own_pid: Our own pid, never returned

    Returns:
        List of (pid, full line) tuples
    """
    vg_token = re.compile(rf"(^|\s){re.escape(vg_name)}(\s|/|$)")
    found = []
    for line in ps_output.splitlines():
        line = line.strip()
        if not line:
            continue
        parts = line.split(None, 2)
        if len(parts) < 3 or not parts[0].isdigit():
            continue
        pid = int(parts[0])
        if pid == own_pid:
            continue
        if not LVM_PROCESS_PATTERN.search(line):
            continue
        if not vg_token.search(parts[2]):
            continue
        found.append((pid, line))
    return found


def parse_transaction_attr(line: str) -> int | None:
    """Transaction id from the superblock line of ``thin_dump`` output."""
    match = TRANSACTION_ATTR.search(line)
    if match is None:
        return None
    return int(match.group(1))


def _pool_section_start(lines: list[str], pool_name: str) -> int | None:
    header = re.compile(rf"^\s*{re.escape(pool_name)}\s*\{{")
    for i, line in enumerate(lines):
        if header.match(line):
            return i
    return None


def _pool_transaction_line(lines: list[str], pool_name: str) -> int | None:
    start = _pool_section_start(lines, pool_name)
    if start is None:
        return None
    for i in range(start, len(lines)):
        if TRANSACTION_FIELD.search(lines[i]):
            return i
    return None


def find_pool_transaction_id(record: str, pool_name: str) -> int | None:
    """
    Transaction id of the thin pool in an LVM metadata backup record.

    The pool section nests its segment, which carries the first
    ``transaction_id`` after the ``<pool> {`` header; thin volume sections
    carry other ids that must not be picked up.
    """
    lines = record.splitlines()
    index = _pool_transaction_line(lines, pool_name)
    if index is None:
        return None
    return int(TRANSACTION_FIELD.search(lines[index]).group(1))


def replace_pool_transaction_id(record: str, pool_name: str, new_id: int) -> str:
    """Return record with only the pool's transaction_id changed to new_id."""
    lines = record.splitlines(keepends=True)
    index = _pool_transaction_line(lines, pool_name)
    if index is None:
        return record
    lines[index] = TRANSACTION_FIELD.sub(f"transaction_id = {new_id}", lines[index], count=1)
    return "".join(lines)
