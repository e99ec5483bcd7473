"""Volume Inspector: does the filesystem under a path support NFS export?

Live USB sessions root their writable layer in overlayfs, which the kernel
NFS server refuses to export. Detecting that up front is much cheaper than
letting the flashing tool fail half way through its run.
"""

from __future__ import annotations

from pathlib import Path

from nfs_staging.domain.models import FilesystemKind, StagingVolume
from nfs_staging.logging import EventLogger, LoggerFactory
from nfs_staging.storage.system import SystemOps


log = LoggerFactory.for_remediation("inspect")


class VolumeInspector:
    def __init__(self, ops: SystemOps):
        self.ops = ops

    def inspect(self, path: Path) -> FilesystemKind:
        path = Path(path).expanduser().absolute()
        fstype = self.ops.filesystem_type(path)
        kind = FilesystemKind.from_fstype(fstype)
        EventLogger.log_inspection(log, str(path), fstype, kind.export_capable)
        return kind

    def describe(self, path: Path) -> StagingVolume:
        """Inspect ``path`` without measuring its size."""
        path = Path(path).expanduser().absolute()
        return StagingVolume(path=path, backing_filesystem_kind=self.inspect(path))

    def needs_remediation(self, path: Path) -> bool:
        return not self.inspect(path).export_capable
