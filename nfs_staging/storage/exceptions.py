"""Custom exceptions for staging-volume remediation.

Exception Hierarchy:
    StorageError (base)
        ├── CommandFailedError
        ├── RemediationError
        │   ├── InsufficientSpaceError
        │   ├── ProvisionFailedError
        │   ├── MigrationInterruptedError
        │   └── VerificationFailedError
        └── L4TError
            └── L4TNotFoundError

Planning and provisioning errors abort a run with nothing touched.
MigrationInterruptedError means the Backup (if created) is intact and a
re-run resumes from it. VerificationFailedError is advisory: it is returned
to the caller after the mount swap has already been committed.

Usage:
    from nfs_staging.storage.exceptions import InsufficientSpaceError

    if available < required:
        raise InsufficientSpaceError(required, available, destination)
"""

from __future__ import annotations

from typing import Sequence


class StorageError(Exception):
    """Base exception for all storage operations."""


class CommandFailedError(StorageError):
    """An external command exited non-zero or could not be started."""

    def __init__(self, command: Sequence[str], returncode: int | None, stderr: str = ""):
        self.command = list(command)
        self.returncode = returncode
        self.stderr = stderr
        msg = f"Command failed ({' '.join(self.command)})"
        if returncode is not None:
            msg += f" with exit code {returncode}"
        if stderr:
            msg += f": {stderr}"
        super().__init__(msg)


class RemediationError(StorageError):
    """Base exception for remediation pipeline stages."""


class InsufficientSpaceError(RemediationError):
    """Destination cannot hold the planned loopback image."""

    def __init__(self, required_bytes: int, available_bytes: int, destination: str):
        self.required_bytes = required_bytes
        self.available_bytes = available_bytes
        self.destination = destination
        super().__init__(
            f"Not enough space at {destination}: need {required_bytes} bytes "
            f"but only {available_bytes} bytes available"
        )


class ProvisionFailedError(RemediationError):
    """Loopback image could not be allocated or formatted."""

    def __init__(self, message: str, image_path: str | None = None):
        self.image_path = image_path
        super().__init__(message)


class MigrationInterruptedError(RemediationError):
    """Copy, mount or unmount failed before the swap was committed."""

    def __init__(self, message: str, path: str, backup_path: str | None = None):
        self.path = path
        self.backup_path = backup_path
        if backup_path:
            message += f" (original data kept at {backup_path})"
        super().__init__(message)


class VerificationFailedError(RemediationError):
    """NFS export probe failed after the swap. Advisory only."""

    def __init__(self, path: str, reason: str):
        self.path = path
        self.reason = reason
        super().__init__(f"NFS export probe failed for {path}: {reason}")


class L4TError(StorageError):
    """Base exception for Linux_for_Tegra preparation."""


class L4TNotFoundError(L4TError):
    """No usable Linux_for_Tegra directory was found."""

    def __init__(self, searched: Sequence[str]):
        self.searched = list(searched)
        listing = ", ".join(self.searched) if self.searched else "(nothing)"
        super().__init__(f"Cannot find Linux_for_Tegra directory. Searched: {listing}")
