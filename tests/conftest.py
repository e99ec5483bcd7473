"""
Pytest configuration and shared fixtures for nfs-staging tests.

FakeSystemOps runs the remediation stages against real temporary
directories. Loop mounts are simulated: mounting an image moves the
target's current contents aside and fills the target from the image's
backing directory; unmounting writes the target back into the image and
restores what was hidden.
"""

import os
import shutil
from pathlib import Path
from typing import Dict, List, Optional

import pytest

from nfs_staging.domain.models import FilesystemKind, RemediationPolicy
from nfs_staging.storage.exceptions import CommandFailedError
from nfs_staging.storage.system import LinuxSystemOps

GIB = 1024**3


class FakeSystemOps:
    def __init__(self):
        self.fstypes: Dict[Path, str] = {}
        self.sizes: Dict[Path, int] = {}
        self.free: Dict[Path, int] = {}
        self.default_free = 100 * GIB
        self.default_fstype = "overlay"
        self.mounts: Dict[Path, Path] = {}
        self.image_fstypes: Dict[Path, str] = {}
        self.failures: Dict[str, Exception] = {}
        self.calls: List[tuple] = []

    # -- helpers ---------------------------------------------------------

    def fail(self, operation: str, error: Optional[Exception] = None) -> None:
        self.failures[operation] = error or CommandFailedError([operation], 1, "simulated")

    def called(self, operation: str) -> List[tuple]:
        return [call for call in self.calls if call[0] == operation]

    def _record(self, operation: str, *args) -> None:
        self.calls.append((operation, *args))
        error = self.failures.get(operation)
        if error is not None:
            raise error

    @staticmethod
    def _store(image: Path) -> Path:
        return image.with_name(f"{image.name}.contents")

    @staticmethod
    def _shadow(target: Path) -> Path:
        return target.with_name(f".{target.name}.shadowed")

    # -- SystemOps -------------------------------------------------------

    def filesystem_type(self, path: Path) -> str:
        self._record("filesystem_type", Path(path))
        path = Path(path)
        for target, image in self.mounts.items():
            if path == target or target in path.parents:
                return self.image_fstypes.get(image, "ext4")
        best = None
        for prefix in self.fstypes:
            if path == prefix or prefix in path.parents:
                if best is None or len(prefix.parts) > len(best.parts):
                    best = prefix
        return self.fstypes[best] if best is not None else self.default_fstype

    def directory_size(self, path: Path) -> int:
        self._record("directory_size", Path(path))
        if Path(path) in self.sizes:
            return self.sizes[Path(path)]
        total = 0
        for root, _dirs, files in os.walk(path):
            for name in files:
                total += os.lstat(os.path.join(root, name)).st_size
        return total

    def free_space(self, path: Path) -> int:
        self._record("free_space", Path(path))
        return self.free.get(Path(path), self.default_free)

    def allocated_size(self, path: Path) -> int:
        path = Path(path)
        return path.stat().st_blocks * 512 if path.exists() else 0

    def allocate_file(self, path: Path, size_bytes: int) -> None:
        self._record("allocate_file", Path(path), size_bytes)
        with open(path, "wb") as handle:
            handle.truncate(size_bytes)

    def format_image(self, path: Path, filesystem_type: str = "ext4") -> None:
        self._record("format_image", Path(path), filesystem_type)
        store = self._store(Path(path))
        if store.exists():
            shutil.rmtree(store)
        store.mkdir()
        self.image_fstypes[Path(path)] = filesystem_type

    def mount_image(self, image: Path, target: Path) -> None:
        image, target = Path(image), Path(target)
        self._record("mount_image", image, target)
        if target in self.mounts:
            raise CommandFailedError(["mount", str(image), str(target)], 32, "already mounted")
        store = self._store(image)
        store.mkdir(exist_ok=True)
        target.rename(self._shadow(target))
        target.mkdir()
        shutil.copytree(store, target, symlinks=True, dirs_exist_ok=True)
        self.mounts[target] = image

    def unmount(self, target: Path) -> None:
        target = Path(target)
        self._record("unmount", target)
        if target not in self.mounts:
            raise CommandFailedError(["umount", str(target)], 32, "not mounted")
        image = self.mounts.pop(target)
        store = self._store(image)
        shutil.rmtree(store)
        shutil.copytree(target, store, symlinks=True)
        shutil.rmtree(target)
        self._shadow(target).rename(target)

    def is_mounted(self, path: Path) -> bool:
        return Path(path) in self.mounts

    def copy_tree(self, source: Path, destination: Path) -> None:
        self._record("copy_tree", Path(source), Path(destination))
        LinuxSystemOps().copy_tree(source, destination)

    def rename(self, source: Path, destination: Path) -> None:
        self._record("rename", Path(source), Path(destination))
        os.rename(source, destination)

    def export_probe(self, path: Path, options: str = "") -> None:
        self._record("export_probe", Path(path))
        fstype = self.filesystem_type(path)
        if not FilesystemKind.from_fstype(fstype).export_capable:
            raise CommandFailedError(
                ["exportfs", f"127.0.0.1:{path}"], 1, f"{path} does not support NFS export"
            )


# ==============================================================================
# Fixtures
# ==============================================================================


@pytest.fixture
def fake_ops() -> FakeSystemOps:
    return FakeSystemOps()


@pytest.fixture
def policy() -> RemediationPolicy:
    """Defaults, independent of any settings file on the test machine."""
    return RemediationPolicy()


@pytest.fixture
def l4t_tree(tmp_path) -> Path:
    """A minimal Linux_for_Tegra directory with a populated rootfs."""
    l4t_dir = tmp_path / "R36.4.3" / "Linux_for_Tegra"
    rootfs = l4t_dir / "rootfs"
    (rootfs / "etc").mkdir(parents=True)
    (rootfs / "usr" / "bin").mkdir(parents=True)
    (rootfs / "etc" / "hostname").write_text("jetson\n")
    (rootfs / "usr" / "bin" / "tool").write_text("#!/bin/sh\necho tool\n")
    (rootfs / "usr" / "bin" / "tool").chmod(0o755)
    (l4t_dir / "flash.sh").write_text("#!/bin/bash\n")
    return l4t_dir


@pytest.fixture
def rootfs(l4t_tree) -> Path:
    return l4t_tree / "rootfs"
