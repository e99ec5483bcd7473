"""Migration Executor: move a directory tree onto its loopback image.

Steps:
    1. Loop-mount the image at a scratch mount point (``<name>_ext4_mount``)
    2. Rename the tree to its Backup (``<name>_original``) unless the Backup
       already exists from an interrupted run, then ``cp -a`` the Backup
       into the scratch mount
    3. Unmount and remove the scratch mount point
    4. Re-create the original path and loop-mount the image on it
    5. Probe NFS export of the path

A failure in steps 1-4 raises MigrationInterruptedError with the on-disk
state either untouched or "Backup present, swap not performed"; running
the pipeline again resumes from the Backup. A failed probe in step 5 does
not undo the swap, it is returned as a VerificationFailedError.

The Backup is never deleted here. Discarding it is left to the operator.
"""

from __future__ import annotations

from pathlib import Path
from typing import Optional

from nfs_staging.domain.models import (
    Backup,
    LoopbackImage,
    MigrationResult,
    RemediationPolicy,
)
from nfs_staging.logging import EventLogger, LoggerFactory
from nfs_staging.storage.exceptions import (
    CommandFailedError,
    MigrationInterruptedError,
    VerificationFailedError,
)
from nfs_staging.storage.system import SystemOps


log = LoggerFactory.for_remediation("migrate")


class MigrationExecutor:
    def __init__(self, ops: SystemOps, policy: Optional[RemediationPolicy] = None):
        self.ops = ops
        self.policy = policy or RemediationPolicy()

    def migrate(self, path: Path, image: LoopbackImage) -> MigrationResult:
        path = Path(path).expanduser().absolute()
        backup = Backup(self.policy.backup_path_for(path))
        scratch = self.policy.scratch_path_for(path)

        resumed = self._copy_into_image(path, image, backup, scratch)
        self._swap(path, image, backup)
        verification_error = self._verify(path)

        result = MigrationResult(
            volume_path=path,
            backup=backup,
            image=image,
            resumed=resumed,
            verification_error=verification_error,
        )
        EventLogger.log_migration_completed(
            log, str(path), str(backup.path), resumed, result.verified
        )
        return result

    def _copy_into_image(
        self, path: Path, image: LoopbackImage, backup: Backup, scratch: Path
    ) -> bool:
        try:
            scratch.mkdir(parents=True, exist_ok=True)
            if self.ops.is_mounted(scratch):
                log.warning(f"{scratch} is still mounted from an earlier run, unmounting")
                self.ops.unmount(scratch)
            self.ops.mount_image(image.path, scratch)
        except (CommandFailedError, OSError) as error:
            self._remove_scratch(scratch)
            raise MigrationInterruptedError(
                f"Cannot mount {image.path} at {scratch}: {error}",
                str(path),
                str(backup.path) if backup.exists() else None,
            ) from error

        resumed = backup.exists()
        try:
            if resumed:
                log.info(f"{backup.path} already exists (previous attempt), copying from it")
            else:
                log.info(f"Moving {path} aside to {backup.path}")
                self.ops.rename(path, backup.path)
            log.info(f"Copying {backup.path} into {scratch}. This will take several minutes...")
            self.ops.copy_tree(backup.path, scratch)
        except (CommandFailedError, OSError) as error:
            self._release_scratch(scratch)
            raise MigrationInterruptedError(
                f"Copy into {scratch} failed: {error}",
                str(path),
                str(backup.path) if backup.exists() else None,
            ) from error

        try:
            self.ops.unmount(scratch)
        except (CommandFailedError, OSError) as error:
            raise MigrationInterruptedError(
                f"Cannot unmount {scratch}: {error}", str(path), str(backup.path)
            ) from error
        self._remove_scratch(scratch)
        return resumed

    def _swap(self, path: Path, image: LoopbackImage, backup: Backup) -> None:
        created = not path.exists()
        if not created and any(path.iterdir()):
            log.warning(f"Stale contents in {path} will be hidden by the new mount")
        try:
            path.mkdir(parents=True, exist_ok=True)
            self.ops.mount_image(image.path, path)
        except (CommandFailedError, OSError) as error:
            if created:
                self._remove_dir(path)
            raise MigrationInterruptedError(
                f"Cannot mount {image.path} at {path}: {error}", str(path), str(backup.path)
            ) from error
        log.success(f"{path} is now on the {self.policy.filesystem_type} loopback filesystem")

    def _verify(self, path: Path) -> Optional[VerificationFailedError]:
        try:
            self.ops.export_probe(path, self.policy.export_options)
        except (CommandFailedError, OSError) as error:
            warning = VerificationFailedError(str(path), str(error))
            log.warning(f"{warning}. Proceeding anyway")
            return warning
        log.success(f"NFS export test passed for {path}")
        return None

    def _release_scratch(self, scratch: Path) -> None:
        try:
            self.ops.unmount(scratch)
        except (CommandFailedError, OSError) as error:
            log.error(f"Could not unmount {scratch}: {error}")
            return
        self._remove_scratch(scratch)

    def _remove_scratch(self, scratch: Path) -> None:
        if scratch.is_dir():
            self._remove_dir(scratch)

    @staticmethod
    def _remove_dir(directory: Path) -> None:
        try:
            directory.rmdir()
        except OSError as error:
            log.warning(f"Could not remove {directory}: {error}")
