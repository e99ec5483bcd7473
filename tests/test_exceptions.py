"""Tests for storage exception classes."""

import pytest

from nfs_staging.storage.exceptions import (
    CommandFailedError,
    InsufficientSpaceError,
    L4TError,
    L4TNotFoundError,
    MigrationInterruptedError,
    ProvisionFailedError,
    RemediationError,
    StorageError,
    VerificationFailedError,
)


class TestExceptionHierarchy:
    @pytest.mark.parametrize(
        "error_class",
        [
            InsufficientSpaceError,
            ProvisionFailedError,
            MigrationInterruptedError,
            VerificationFailedError,
        ],
    )
    def test_remediation_errors_share_a_base(self, error_class):
        assert issubclass(error_class, RemediationError)
        assert issubclass(error_class, StorageError)

    def test_l4t_errors(self):
        assert issubclass(L4TNotFoundError, L4TError)
        assert issubclass(L4TError, StorageError)

    def test_command_failed_is_storage_error(self):
        assert issubclass(CommandFailedError, StorageError)


class TestRemediationExceptions:
    def test_insufficient_space_carries_both_quantities(self):
        error = InsufficientSpaceError(6442450944, 3221225472, "/media/live")
        assert error.required_bytes == 6442450944
        assert error.available_bytes == 3221225472
        assert error.destination == "/media/live"
        assert "6442450944" in str(error)
        assert "3221225472" in str(error)

    def test_provision_failed(self):
        error = ProvisionFailedError("mkfs failed", "/x/rootfs_ext4.img")
        assert error.image_path == "/x/rootfs_ext4.img"
        assert str(error) == "mkfs failed"

    def test_migration_interrupted_mentions_backup(self):
        error = MigrationInterruptedError("copy failed", "/x/rootfs", "/x/rootfs_original")
        assert error.path == "/x/rootfs"
        assert error.backup_path == "/x/rootfs_original"
        assert "/x/rootfs_original" in str(error)

    def test_migration_interrupted_without_backup(self):
        error = MigrationInterruptedError("mount failed", "/x/rootfs")
        assert error.backup_path is None
        assert str(error) == "mount failed"

    def test_verification_failed(self):
        error = VerificationFailedError("/x/rootfs", "exportfs: permission denied")
        assert error.path == "/x/rootfs"
        assert "exportfs: permission denied" in str(error)


class TestOtherExceptions:
    def test_command_failed(self):
        error = CommandFailedError(["umount", "/mnt"], 32, "target is busy")
        assert error.command == ["umount", "/mnt"]
        assert error.returncode == 32
        assert str(error) == "Command failed (umount /mnt) with exit code 32: target is busy"

    def test_command_not_started(self):
        error = CommandFailedError(["exportfs"], None, "No such file or directory")
        assert "exit code" not in str(error)

    def test_l4t_not_found_lists_searched_paths(self):
        error = L4TNotFoundError(["/a/Linux_for_Tegra", "/b/Linux_for_Tegra"])
        assert error.searched == ["/a/Linux_for_Tegra", "/b/Linux_for_Tegra"]
        assert "/b/Linux_for_Tegra" in str(error)
