"""Staging-volume remediation pipeline.

Runs Inspector -> Planner -> Provisioner -> Executor strictly in order.
A path already on an export-capable filesystem short-circuits before any
measuring or copying. When an earlier run left a Backup behind, sizing and
copying use the Backup, since the live path may be missing or partial.

Example:
    >>> from nfs_staging.remediation import RemediationPipeline
    >>> report = RemediationPipeline().run(Path("/srv/L4T/Linux_for_Tegra/rootfs"))
    >>> report.remediated, report.verified
    (True, True)
"""

from __future__ import annotations

from dataclasses import replace
from pathlib import Path
from typing import Optional

from nfs_staging.domain.models import RemediationPolicy, RemediationReport, StagingVolume
from nfs_staging.logging import operation_context
from nfs_staging.remediation.executor import MigrationExecutor
from nfs_staging.remediation.inspector import VolumeInspector
from nfs_staging.remediation.planner import CapacityPlanner
from nfs_staging.remediation.provisioner import VolumeProvisioner
from nfs_staging.storage.system import LinuxSystemOps, SystemOps


class RemediationPipeline:
    def __init__(
        self,
        ops: Optional[SystemOps] = None,
        policy: Optional[RemediationPolicy] = None,
    ):
        self.ops = ops or LinuxSystemOps()
        self.policy = policy or RemediationPolicy.from_settings()
        self.inspector = VolumeInspector(self.ops)
        self.planner = CapacityPlanner(self.ops, self.policy)
        self.provisioner = VolumeProvisioner(self.ops, self.policy)
        self.executor = MigrationExecutor(self.ops, self.policy)

    def run(
        self, path: Path, destination_parent: Optional[Path] = None
    ) -> RemediationReport:
        """Make ``path`` NFS-exportable, migrating it if necessary.

        Raises:
            FileNotFoundError: If neither ``path`` nor its Backup exists
            InsufficientSpaceError: Re-run with another ``destination_parent``
            ProvisionFailedError: Nothing was changed on disk
            MigrationInterruptedError: Re-run to resume from the Backup
        """
        path = Path(path).expanduser().absolute()
        backup_path = self.policy.backup_path_for(path)

        with operation_context("remediate", path=str(path)) as log:
            if path.exists():
                kind = self.inspector.inspect(path)
            elif backup_path.is_dir():
                log.info(f"{path} is missing but {backup_path} exists, resuming")
                kind = self.inspector.inspect(backup_path)
            else:
                raise FileNotFoundError(f"{path} does not exist")

            volume = StagingVolume(path=path, backing_filesystem_kind=kind)
            if kind.export_capable:
                log.info(f"{path} supports NFS export. No fix needed")
                return RemediationReport(volume=volume)

            log.info(
                f"{path} ({kind.value}) does not support NFS export, "
                f"moving it onto a {self.policy.filesystem_type} loopback image"
            )
            source = backup_path if backup_path.is_dir() else path
            plan = self.planner.plan(
                source,
                destination_parent or path.parent.parent,
                image_name=self.policy.image_name_for(path),
            )
            volume = replace(volume, size_bytes=plan.source_size_bytes)

            image = self.provisioner.provision(plan)
            migration = self.executor.migrate(path, image)
            return RemediationReport(
                volume=volume, plan=plan, image=image, migration=migration
            )
