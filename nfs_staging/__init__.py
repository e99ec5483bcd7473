"""Loopback-volume remediation for NFS-exporting directories on overlay filesystems."""

from .__version__ import __version__

__all__ = ["__version__"]
