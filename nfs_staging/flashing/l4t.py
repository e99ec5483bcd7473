"""Linux_for_Tegra preparation around the vendor flashing tool.

Before ``l4t_initrd_flash.sh`` can serve the rootfs over NFS, the host
needs a usable L4T directory, a Jetson in Force Recovery Mode, no stale
artifacts from a previous attempt and running NFS services. This module
handles those steps; the flashing itself stays with the vendor tool.

Operations:
    - find_l4t_dir() / resolve_l4t_dir(): locate Linux_for_Tegra
    - detect_recovery_device(): lsusb lines for an NVIDIA device
    - clean_flash_artifacts(): remove images and signed bootloader leftovers
    - restart_nfs_services(): rpcbind and nfs-kernel-server
    - disable_usb_autosuspend(): keep the USB link up during the flash
    - build_flash_command() / run_flash(): hand off to l4t_initrd_flash.sh
"""

from __future__ import annotations

import shutil
import subprocess
import time
from pathlib import Path
from typing import Iterable, List, Optional, Sequence

from nfs_staging.config import settings
from nfs_staging.logging import LoggerFactory
from nfs_staging.storage.commands import run_command
from nfs_staging.storage.exceptions import CommandFailedError, L4TNotFoundError


log = LoggerFactory.for_flash()

FLASH_ARTIFACTS = (
    "tools/kernel_flash/images",
    "bootloader/signed",
    "bootloader/flashcmd.txt",
    "tools/kernel_flash/initrdflashparam.txt",
)

USB_AUTOSUSPEND_PARAM = Path("/sys/module/usbcore/parameters/autosuspend")

FLASH_SCRIPT = "tools/kernel_flash/l4t_initrd_flash.sh"
NVME_LAYOUT = "tools/kernel_flash/flash_l4t_t234_nvme.xml"
QSPI_LAYOUT = "bootloader/generic/cfg/flash_t234_qspi.xml"


def is_l4t_dir(path: Path) -> bool:
    path = Path(path)
    return (path / "rootfs").is_dir() and (path / "flash.sh").is_file()


def search_paths_from_settings() -> List[Path]:
    raw = settings.get_setting("l4t_search_paths", settings.DEFAULT_L4T_SEARCH_PATHS)
    return [Path(entry).expanduser().absolute() for entry in raw]


def find_l4t_dir(search_paths: Iterable[Path]) -> Optional[Path]:
    for candidate in search_paths:
        if is_l4t_dir(candidate):
            return Path(candidate)
    return None


def resolve_l4t_dir(
    explicit: Optional[Path] = None, search_paths: Optional[Sequence[Path]] = None
) -> Path:
    """Return the L4T directory to work on.

    An explicit path only needs a ``rootfs`` directory; searched locations
    must also carry ``flash.sh``.

    Raises:
        L4TNotFoundError: If no candidate qualifies
    """
    if explicit is not None:
        explicit = Path(explicit).expanduser().absolute()
        if (explicit / "rootfs").is_dir():
            return explicit
        raise L4TNotFoundError([str(explicit)])

    candidates = list(search_paths) if search_paths is not None else search_paths_from_settings()
    found = find_l4t_dir(candidates)
    if found is None:
        raise L4TNotFoundError([str(candidate) for candidate in candidates])
    log.info(f"Found L4T at: {found}")
    return found


def detect_recovery_device() -> List[str]:
    """Return lsusb lines describing NVIDIA devices (empty if none or no lsusb)."""
    try:
        result = run_command(["lsusb"], log_output=False)
    except CommandFailedError as error:
        log.warning(f"Cannot list USB devices: {error}")
        return []
    return [line.strip() for line in result.stdout.splitlines() if "nvidia" in line.lower()]


def clean_flash_artifacts(l4t_dir: Path) -> List[Path]:
    """Remove leftovers of a previous flash attempt. Returns what was removed."""
    removed = []
    for relative in FLASH_ARTIFACTS:
        target = Path(l4t_dir) / relative
        if target.is_dir() and not target.is_symlink():
            shutil.rmtree(target)
        elif target.exists() or target.is_symlink():
            target.unlink()
        else:
            continue
        log.debug(f"Removed {target}")
        removed.append(target)
    log.info(f"Cleaned {len(removed)} previous flash artifact(s)")
    return removed


def restart_nfs_services(settle_seconds: float = 1.0) -> bool:
    """Restart rpcbind and the kernel NFS server.

    Every step is advisory: failures are logged and reported through the
    return value, the flash may still succeed with already-running services.
    """
    ok = True

    # rpcbind may simply not be running yet
    try:
        result = run_command(["killall", "rpcbind"], check=False)
    except CommandFailedError as error:
        log.debug(f"Cannot stop rpcbind: {error}")
    else:
        if result.returncode != 0:
            log.debug("rpcbind was not running")
    time.sleep(settle_seconds)

    try:
        run_command(["systemctl", "restart", "rpcbind"])
    except CommandFailedError as error:
        log.warning(f"systemctl restart rpcbind failed ({error}), starting rpcbind directly")
        try:
            run_command(["rpcbind"])
        except CommandFailedError as fallback_error:
            log.warning(f"Could not start rpcbind: {fallback_error}")
            ok = False

    try:
        run_command(["systemctl", "restart", "nfs-kernel-server"])
    except CommandFailedError as error:
        log.warning(f"Could not restart nfs-kernel-server: {error}")
        ok = False

    if ok:
        log.info("NFS services restarted")
    return ok


def disable_usb_autosuspend(param_path: Path = USB_AUTOSUSPEND_PARAM) -> bool:
    try:
        Path(param_path).write_text("-1\n", encoding="ascii")
    except OSError as error:
        log.warning(f"Could not disable USB autosuspend via {param_path}: {error}")
        return False
    log.debug("USB autosuspend disabled")
    return True


def build_flash_command(
    board: Optional[str] = None,
    target: Optional[str] = None,
    network: Optional[str] = None,
) -> List[str]:
    board = board or settings.get_setting("flash_board", "jetson-orin-nano-devkit")
    target = target or settings.get_setting("flash_target", "nvme0n1p1")
    network = network or settings.get_setting("flash_network", "usb0")
    return [
        f"./{FLASH_SCRIPT}",
        "--external-device",
        target,
        "-c",
        NVME_LAYOUT,
        "-p",
        f"-c {QSPI_LAYOUT}",
        "--showlogs",
        "--network",
        network,
        board,
        "internal",
    ]


def run_flash(l4t_dir: Path, command: Optional[Sequence[str]] = None) -> int:
    """Run the vendor flashing tool from ``l4t_dir`` and return its exit code.

    Output goes straight to the terminal; the run takes 20-30 minutes.
    """
    command = list(command) if command is not None else build_flash_command()
    log.info(f"Flashing started: {' '.join(command)}")
    try:
        completed = subprocess.run(command, cwd=str(l4t_dir), check=False)
    except OSError as error:
        raise CommandFailedError(command, None, str(error)) from error
    if completed.returncode == 0:
        log.success("Flash successful")
    else:
        log.error(f"Flash failed (exit code: {completed.returncode})")
    return completed.returncode
