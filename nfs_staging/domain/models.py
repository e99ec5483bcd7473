"""Domain model for staging-volume remediation.

These frozen dataclasses are passed between the pipeline stages. None of
them caches filesystem state beyond the moment it was measured.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING

from nfs_staging.config import settings

if TYPE_CHECKING:
    from nfs_staging.storage.exceptions import VerificationFailedError


# ==============================================================================
# Filesystem Classification
# ==============================================================================


class FilesystemKind(Enum):
    """Backing filesystem family of a directory."""

    EXT = "ext"
    XFS = "xfs"
    OVERLAY = "overlay"
    OTHER = "other"

    @classmethod
    def from_fstype(cls, fstype: str | None) -> FilesystemKind:
        """Map a mount-table filesystem name onto a kind."""
        name = (fstype or "").strip().lower()
        if name in ("ext2", "ext3", "ext4"):
            return cls.EXT
        if name == "xfs":
            return cls.XFS
        if name in ("overlay", "overlayfs", "aufs", "unionfs", "fuse.unionfs"):
            return cls.OVERLAY
        return cls.OTHER

    @property
    def export_capable(self) -> bool:
        """Whether the kernel NFS server can export this filesystem."""
        return self in (FilesystemKind.EXT, FilesystemKind.XFS)


@dataclass(frozen=True)
class StagingVolume:
    """A directory tree that must be NFS-exportable."""

    path: Path
    backing_filesystem_kind: FilesystemKind
    size_bytes: int | None = None  # None until measured

    @property
    def export_capable(self) -> bool:
        return self.backing_filesystem_kind.export_capable


# ==============================================================================
# Remediation Policy
# ==============================================================================


@dataclass(frozen=True)
class RemediationPolicy:
    """Tunable constants of the remediation pipeline."""

    headroom_ratio: float = settings.DEFAULT_HEADROOM_RATIO
    min_image_bytes: int = settings.DEFAULT_MIN_IMAGE_BYTES
    image_suffix: str = "_ext4.img"
    backup_suffix: str = "_original"
    scratch_suffix: str = "_ext4_mount"
    filesystem_type: str = "ext4"
    strict_image_reuse: bool = False
    export_options: str = settings.DEFAULT_EXPORT_OPTIONS

    def __post_init__(self) -> None:
        if self.headroom_ratio < 1:
            raise ValueError(f"headroom_ratio must be >= 1, got {self.headroom_ratio}")
        if self.min_image_bytes <= 0:
            raise ValueError(
                f"min_image_bytes must be positive, got {self.min_image_bytes}"
            )

    @classmethod
    def from_settings(cls) -> RemediationPolicy:
        """Build a policy from the settings store, falling back to defaults."""
        return cls(
            headroom_ratio=settings.get_float(
                "headroom_ratio", settings.DEFAULT_HEADROOM_RATIO
            ),
            min_image_bytes=settings.get_int(
                "min_image_bytes", settings.DEFAULT_MIN_IMAGE_BYTES
            ),
            image_suffix=settings.get_setting("image_suffix", "_ext4.img"),
            backup_suffix=settings.get_setting("backup_suffix", "_original"),
            scratch_suffix=settings.get_setting("scratch_suffix", "_ext4_mount"),
            filesystem_type=settings.get_setting("filesystem_type", "ext4"),
            strict_image_reuse=settings.get_bool("strict_image_reuse", False),
            export_options=settings.get_setting(
                "export_options", settings.DEFAULT_EXPORT_OPTIONS
            ),
        )

    def backup_path_for(self, path: Path) -> Path:
        """`<path>_original` next to the staging volume."""
        return path.with_name(f"{path.name}{self.backup_suffix}")

    def scratch_path_for(self, path: Path) -> Path:
        return path.with_name(f"{path.name}{self.scratch_suffix}")

    def image_name_for(self, path: Path) -> str:
        return f"{path.name}{self.image_suffix}"


# ==============================================================================
# Pipeline Artifacts
# ==============================================================================


@dataclass(frozen=True)
class RemediationPlan:
    """Sizing and placement of the replacement loopback image."""

    source_path: Path
    source_size_bytes: int
    image_size_bytes: int
    image_path: Path
    available_bytes_at_destination: int

    @property
    def satisfiable(self) -> bool:
        return self.available_bytes_at_destination >= self.image_size_bytes


@dataclass(frozen=True)
class LoopbackImage:
    """A formatted, file-backed filesystem image."""

    path: Path
    size_bytes: int
    reused: bool = False


@dataclass(frozen=True)
class Backup:
    """The original tree renamed aside; kept until the operator discards it."""

    path: Path

    def exists(self) -> bool:
        return self.path.is_dir()


@dataclass(frozen=True)
class MigrationResult:
    volume_path: Path
    backup: Backup
    image: LoopbackImage
    resumed: bool
    verification_error: VerificationFailedError | None = None

    @property
    def verified(self) -> bool:
        return self.verification_error is None


@dataclass(frozen=True)
class RemediationReport:
    """Outcome of a pipeline run.

    Whether remediation happened is derived from the presence of a
    provisioned image rather than tracked separately.
    """

    volume: StagingVolume
    plan: RemediationPlan | None = None
    image: LoopbackImage | None = None
    migration: MigrationResult | None = None

    @property
    def remediated(self) -> bool:
        return self.image is not None

    @property
    def verified(self) -> bool:
        return self.migration is not None and self.migration.verified
