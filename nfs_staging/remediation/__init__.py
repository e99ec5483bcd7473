"""Staging-volume remediation: move an overlay-backed tree onto a loopback image.

Stages:
    - VolumeInspector: classify the backing filesystem
    - CapacityPlanner: size the image and check free space
    - VolumeProvisioner: allocate and format the image
    - MigrationExecutor: copy, swap mounts, probe NFS export
    - RemediationPipeline: run the four in order
"""

from .executor import MigrationExecutor
from .inspector import VolumeInspector
from .pipeline import RemediationPipeline
from .planner import CapacityPlanner, compute_image_size
from .provisioner import VolumeProvisioner

__all__ = [
    "CapacityPlanner",
    "MigrationExecutor",
    "RemediationPipeline",
    "VolumeInspector",
    "VolumeProvisioner",
    "compute_image_size",
]
