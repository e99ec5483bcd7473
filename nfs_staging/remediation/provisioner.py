"""Volume Provisioner: allocate and format the loopback image.

An image file already present at the planned path is reused untouched so a
resumed run does not pay for allocation and mkfs again. Its size is checked
against the plan; a mismatch is a warning, or an error when the policy sets
``strict_image_reuse``. Its filesystem is not checked.

Provisioning never mounts; the Migration Executor owns the mounts.
"""

from __future__ import annotations

from typing import Optional

from nfs_staging.domain.models import LoopbackImage, RemediationPlan, RemediationPolicy
from nfs_staging.logging import EventLogger, LoggerFactory
from nfs_staging.storage.exceptions import CommandFailedError, ProvisionFailedError
from nfs_staging.storage.system import SystemOps


log = LoggerFactory.for_remediation("provision")


class VolumeProvisioner:
    def __init__(self, ops: SystemOps, policy: Optional[RemediationPolicy] = None):
        self.ops = ops
        self.policy = policy or RemediationPolicy()

    def provision(self, plan: RemediationPlan) -> LoopbackImage:
        image_path = plan.image_path

        if image_path.exists():
            return self._reuse(plan)

        log.info(
            f"Creating {self.policy.filesystem_type} image at {image_path} "
            f"({plan.image_size_bytes} bytes). This may take a few minutes..."
        )
        try:
            self.ops.allocate_file(image_path, plan.image_size_bytes)
            self.ops.format_image(image_path, self.policy.filesystem_type)
        except (CommandFailedError, OSError) as error:
            # Leave nothing behind that a later run would mistake for a good image
            try:
                image_path.unlink(missing_ok=True)
            except OSError as cleanup_error:
                log.error(f"Could not remove partial image {image_path}: {cleanup_error}")
            raise ProvisionFailedError(
                f"Failed to provision {image_path}: {error}", str(image_path)
            ) from error

        image = LoopbackImage(path=image_path, size_bytes=plan.image_size_bytes)
        EventLogger.log_image_provisioned(log, str(image_path), image.size_bytes, False)
        return image

    def _reuse(self, plan: RemediationPlan) -> LoopbackImage:
        image_path = plan.image_path
        if not image_path.is_file():
            raise ProvisionFailedError(
                f"{image_path} exists but is not a regular file", str(image_path)
            )
        actual_size = image_path.stat().st_size
        if actual_size != plan.image_size_bytes:
            message = (
                f"Reused image {image_path} is {actual_size} bytes, "
                f"plan asked for {plan.image_size_bytes}"
            )
            if self.policy.strict_image_reuse:
                raise ProvisionFailedError(message, str(image_path))
            log.warning(message)
        log.info(f"Image file already exists. Reusing {image_path}")
        image = LoopbackImage(path=image_path, size_bytes=actual_size, reused=True)
        EventLogger.log_image_provisioned(log, str(image_path), actual_size, True)
        return image
