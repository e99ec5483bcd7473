"""Capacity Planner: size and place the replacement loopback image.

Sizing:
    image_size = max(min_image_bytes, ceil(content_size * headroom_ratio))

The headroom absorbs ext4 metadata and files created while formatting and
copying; the floor covers small trees where metadata would exceed it. Both
come from :class:`RemediationPolicy` and default to 1.3 and 6 GiB.

Placement:
    The image goes next to the staging volume's parent directory, e.g.
    ``.../R36.4.3/rootfs_ext4.img`` for ``.../R36.4.3/Linux_for_Tegra/rootfs``.
    If that destination is too small the planner raises
    InsufficientSpaceError and the caller re-plans with another destination.
"""

from __future__ import annotations

import math
from fractions import Fraction
from pathlib import Path
from typing import Optional

from nfs_staging.domain.models import RemediationPlan, RemediationPolicy
from nfs_staging.logging import EventLogger, LoggerFactory
from nfs_staging.storage.exceptions import InsufficientSpaceError
from nfs_staging.storage.system import SystemOps


log = LoggerFactory.for_remediation("plan")


def compute_image_size(size_bytes: int, policy: RemediationPolicy) -> int:
    """Padded image size in bytes, computed without float rounding."""
    padded = math.ceil(Fraction(size_bytes) * Fraction(str(policy.headroom_ratio)))
    return max(policy.min_image_bytes, padded)


def default_destination(path: Path) -> Path:
    return Path(path).parent.parent


class CapacityPlanner:
    def __init__(self, ops: SystemOps, policy: Optional[RemediationPolicy] = None):
        self.ops = ops
        self.policy = policy or RemediationPolicy()

    def plan(
        self,
        path: Path,
        destination_parent: Optional[Path] = None,
        image_name: Optional[str] = None,
    ) -> RemediationPlan:
        """Measure ``path`` and check the destination can hold its image.

        Args:
            path: Directory whose contents will be migrated
            destination_parent: Directory to hold the image file
                (defaults to the parent of ``path``'s parent)
            image_name: Image file name (defaults to ``<path.name><image_suffix>``)

        Raises:
            InsufficientSpaceError: If the destination has less free space
                than the planned image size
        """
        path = Path(path).expanduser().absolute()
        destination = (
            Path(destination_parent).expanduser().absolute()
            if destination_parent
            else default_destination(path)
        )
        image_path = destination / (image_name or self.policy.image_name_for(path))

        source_size = self.ops.directory_size(path)
        image_size = compute_image_size(source_size, self.policy)

        # An image left by an earlier run will be reused, so its blocks count as available
        available = self.ops.free_space(destination) + self.ops.allocated_size(image_path)

        log.debug(
            f"{path}: {source_size} bytes, image {image_size} bytes, "
            f"{available} bytes available at {destination}"
        )
        if available < image_size:
            log.error(
                f"Not enough space for loopback image at {destination}: "
                f"need {image_size} bytes, have {available}"
            )
            raise InsufficientSpaceError(image_size, available, str(destination))

        plan = RemediationPlan(
            source_path=path,
            source_size_bytes=source_size,
            image_size_bytes=image_size,
            image_path=image_path,
            available_bytes_at_destination=available,
        )
        EventLogger.log_plan_computed(
            log, source_size, image_size, available, str(image_path)
        )
        return plan
