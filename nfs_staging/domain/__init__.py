"""Domain models for staging-volume remediation."""

from .models import (
    Backup,
    FilesystemKind,
    LoopbackImage,
    MigrationResult,
    RemediationPlan,
    RemediationPolicy,
    RemediationReport,
    StagingVolume,
)

__all__ = [
    "Backup",
    "FilesystemKind",
    "LoopbackImage",
    "MigrationResult",
    "RemediationPlan",
    "RemediationPolicy",
    "RemediationReport",
    "StagingVolume",
]
