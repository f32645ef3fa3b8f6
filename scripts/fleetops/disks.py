"""Block device discovery with ``lsblk`` and ``findmnt``."""

from __future__ import annotations

import posixpath

from .logger import logger
from .system import capture


def _disk_rows(columns: str) -> list[list[str]]:
    output = capture(["lsblk", "-dpno", columns])
    return [line.split() for line in output.splitlines() if line.strip()]


def detect_physical_disks() -> list[str]:
    """List whole disks that are not read-only.

    Returns:
        Device paths such as ``/dev/sda`` in lsblk order.
    """
    disks = []
    for row in _disk_rows("NAME,TYPE,RO"):
        if len(row) >= 3 and row[1] == "disk" and row[2] == "0":
            disks.append(row[0])
    return disks


def detect_root_disk() -> str | None:
    """Find the disk that holds the root filesystem.

    Returns:
        The parent disk name (e.g. ``sda`` or ``nvme0n1``), or None.
    """
    source = capture(["findmnt", "-nvo", "SOURCE", "/"])
    if source:
        parent = capture(["lsblk", "-no", "PKNAME", source]).splitlines()
        if parent and parent[0].strip():
            return parent[0].strip()

    # Root mounted directly on a whole disk
    for row in _disk_rows("NAME,MOUNTPOINT"):
        if len(row) >= 2 and row[1] == "/":
            return posixpath.basename(row[0])
    return None


def list_test_disks(exclude: str | None) -> list[str]:
    """List whole disks, leaving out ``exclude`` (a bare name like ``sda``).

    Returns:
        Device paths of the disks that are safe to stress.
    """
    disks = []
    for row in _disk_rows("NAME,TYPE"):
        if len(row) < 2 or row[1] != "disk":
            continue
        if exclude and posixpath.basename(row[0]) == exclude:
            logger.debug("Excluding system disk %s", row[0])
            continue
        disks.append(row[0])
    return disks
