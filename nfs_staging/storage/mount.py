"""Mount table parsing.

Reads /proc/mounts and answers which mount backs a given path. Later lines
in the table are stacked on top of earlier ones, so when two entries share a
mount point the last one wins.

Example:
    >>> entries = parse_mount_table("overlay / overlay rw 0 0\\n")
    >>> find_mount_entry("/srv/rootfs", entries).fstype
    'overlay'
"""

from __future__ import annotations

import os
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Optional, Union

PROC_MOUNTS = Path("/proc/mounts")

_OCTAL_ESCAPE = re.compile(r"\\([0-7]{3})")


@dataclass(frozen=True)
class MountEntry:
    source: str
    mountpoint: str
    fstype: str
    options: str = ""


def _unescape(field: str) -> str:
    # The kernel escapes space, tab, newline and backslash as \040 etc.
    return _OCTAL_ESCAPE.sub(lambda match: chr(int(match.group(1), 8)), field)


def parse_mount_table(text: str) -> list[MountEntry]:
    entries = []
    for line in text.splitlines():
        parts = line.split()
        if len(parts) < 3:
            continue
        entries.append(
            MountEntry(
                source=_unescape(parts[0]),
                mountpoint=_unescape(parts[1]),
                fstype=parts[2],
                options=parts[3] if len(parts) > 3 else "",
            )
        )
    return entries


def read_mount_table(mounts_file: Path = PROC_MOUNTS) -> list[MountEntry]:
    return parse_mount_table(Path(mounts_file).read_text(encoding="utf-8"))


def _contains(mountpoint: str, path: str) -> bool:
    if mountpoint == "/":
        return path.startswith("/")
    return path == mountpoint or path.startswith(mountpoint.rstrip("/") + "/")


def find_mount_entry(
    path: Union[str, Path], entries: Iterable[MountEntry]
) -> Optional[MountEntry]:
    """Return the mount entry whose mount point contains ``path``.

    The path is resolved first so symlinked directories are attributed to
    the filesystem they actually live on.
    """
    resolved = os.path.realpath(os.fspath(path))
    best: Optional[MountEntry] = None
    for entry in entries:
        if not _contains(entry.mountpoint, resolved):
            continue
        if best is None or len(entry.mountpoint) >= len(best.mountpoint):
            best = entry
    return best


def is_mountpoint(path: Union[str, Path], entries: Iterable[MountEntry]) -> bool:
    resolved = os.path.realpath(os.fspath(path))
    return any(entry.mountpoint == resolved for entry in entries)
