"""OS primitives used by the remediation pipeline.

The pipeline stages never shell out directly. They are handed an object
implementing :class:`SystemOps`, which keeps them testable against a fake
and keeps every external command in one place.

Operations:
    - filesystem_type(): Raw fstype of the mount containing a path
    - directory_size(): Bytes occupied by a tree (du)
    - free_space(): Bytes available to unprivileged writers (statvfs)
    - allocated_size(): Bytes a single file occupies on disk
    - allocate_file(): fallocate, falling back to a dd zero fill
    - format_image(): mkfs.<type> on a regular file
    - mount_image() / unmount() / is_mounted(): loop mounts
    - copy_tree(): cp -a, preserving modes, owners, links and times
    - rename(): os.rename
    - export_probe(): exportfs to 127.0.0.1 then revoke

Security Notes:
    - All commands are run with argument lists, never through a shell
    - allocate/format/mount/exportfs require root privileges
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Protocol

from nfs_staging.config.settings import DEFAULT_EXPORT_OPTIONS
from nfs_staging.logging import LoggerFactory
from nfs_staging.storage import mount
from nfs_staging.storage.commands import run_command
from nfs_staging.storage.exceptions import CommandFailedError


log = LoggerFactory.for_system()

PROBE_HOST = "127.0.0.1"

# mkfs flags that force formatting a regular file without prompting
_QUIET_FORCE_FLAGS = {
    "xfs": ["-f", "-q"],
}


class SystemOps(Protocol):
    def filesystem_type(self, path: Path) -> str: ...

    def directory_size(self, path: Path) -> int: ...

    def free_space(self, path: Path) -> int: ...

    def allocated_size(self, path: Path) -> int: ...

    def allocate_file(self, path: Path, size_bytes: int) -> None: ...

    def format_image(self, path: Path, filesystem_type: str = "ext4") -> None: ...

    def mount_image(self, image: Path, target: Path) -> None: ...

    def unmount(self, target: Path) -> None: ...

    def is_mounted(self, path: Path) -> bool: ...

    def copy_tree(self, source: Path, destination: Path) -> None: ...

    def rename(self, source: Path, destination: Path) -> None: ...

    def export_probe(self, path: Path, options: str = DEFAULT_EXPORT_OPTIONS) -> None: ...


class LinuxSystemOps:
    """SystemOps backed by coreutils, util-linux, e2fsprogs and nfs-kernel-server."""

    def __init__(self, mounts_file: Path = mount.PROC_MOUNTS):
        self.mounts_file = Path(mounts_file)

    def filesystem_type(self, path: Path) -> str:
        try:
            entries = mount.read_mount_table(self.mounts_file)
        except OSError as error:
            log.debug(f"Cannot read {self.mounts_file} ({error}), asking df instead")
            result = run_command(["df", "--output=fstype", str(path)])
            lines = result.stdout.strip().splitlines()
            return lines[-1].strip() if len(lines) > 1 else ""
        entry = mount.find_mount_entry(path, entries)
        return entry.fstype if entry else ""

    def directory_size(self, path: Path) -> int:
        result = run_command(["du", "-s", "-B1", str(path)], log_output=False)
        fields = result.stdout.split()
        if not fields or not fields[0].isdigit():
            raise CommandFailedError(
                ["du", "-s", "-B1", str(path)], result.returncode, "unparseable du output"
            )
        return int(fields[0])

    def free_space(self, path: Path) -> int:
        stats = os.statvfs(path)
        return stats.f_bavail * stats.f_frsize

    def allocated_size(self, path: Path) -> int:
        try:
            return Path(path).stat().st_blocks * 512
        except FileNotFoundError:
            return 0

    def allocate_file(self, path: Path, size_bytes: int) -> None:
        try:
            run_command(["fallocate", "-l", str(size_bytes), str(path)])
            return
        except CommandFailedError as error:
            log.warning(f"fallocate failed ({error}), falling back to zero fill")
        # fallocate may leave a short file behind
        Path(path).unlink(missing_ok=True)
        run_command(
            [
                "dd",
                "if=/dev/zero",
                f"of={path}",
                "bs=1M",
                f"count={size_bytes}",
                "iflag=count_bytes",
                "status=none",
            ]
        )

    def format_image(self, path: Path, filesystem_type: str = "ext4") -> None:
        flags = _QUIET_FORCE_FLAGS.get(filesystem_type, ["-F", "-q"])
        run_command([f"mkfs.{filesystem_type}", *flags, str(path)])

    def mount_image(self, image: Path, target: Path) -> None:
        run_command(["mount", "-o", "loop", str(image), str(target)])

    def unmount(self, target: Path) -> None:
        run_command(["umount", str(target)])

    def is_mounted(self, path: Path) -> bool:
        try:
            entries = mount.read_mount_table(self.mounts_file)
        except OSError:
            return os.path.ismount(path)
        return mount.is_mountpoint(path, entries)

    def copy_tree(self, source: Path, destination: Path) -> None:
        # "src/." copies the contents, including dotfiles, not the directory itself
        run_command(["cp", "-a", f"{source}/.", f"{destination}/"], log_output=False)

    def rename(self, source: Path, destination: Path) -> None:
        log.debug(f"Renaming {source} -> {destination}")
        os.rename(source, destination)

    def export_probe(self, path: Path, options: str = DEFAULT_EXPORT_OPTIONS) -> None:
        client = f"{PROBE_HOST}:{path}"
        run_command(["exportfs", "-o", options, client])
        result = run_command(["exportfs", "-u", client], check=False)
        if result.returncode != 0:
            log.warning(
                f"Probe export of {path} could not be revoked: "
                f"{(result.stderr or '').strip() or 'exportfs -u failed'}"
            )
