"""Settings storage for remediation policy and L4T preparation."""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any


SETTINGS_PATH = Path(
    os.environ.get(
        "NFS_STAGING_SETTINGS_PATH",
        Path.home() / ".config" / "nfs-staging" / "settings.json",
    )
)

GIB = 1024**3

# Default values - use these constants instead of hardcoding values elsewhere
DEFAULT_HEADROOM_RATIO = 1.3
DEFAULT_MIN_IMAGE_BYTES = 6 * GIB
DEFAULT_EXPORT_OPTIONS = "rw,nohide,insecure,no_subtree_check,async,no_root_squash"
DEFAULT_L4T_SEARCH_PATHS = [
    "~/jetson-flash/jp6-flash-jetson-linux/R36.4.3/Linux_for_Tegra",
    "/home/ubuntu/jetson-flash/jp6-flash-jetson-linux/R36.4.3/Linux_for_Tegra",
    "./R36.4.3/Linux_for_Tegra",
    "./Linux_for_Tegra",
]

DEFAULT_SETTINGS: dict[str, Any] = {
    "headroom_ratio": DEFAULT_HEADROOM_RATIO,
    "min_image_bytes": DEFAULT_MIN_IMAGE_BYTES,
    "image_suffix": "_ext4.img",
    "backup_suffix": "_original",
    "scratch_suffix": "_ext4_mount",
    "filesystem_type": "ext4",
    "strict_image_reuse": False,
    "export_options": DEFAULT_EXPORT_OPTIONS,
    "l4t_search_paths": list(DEFAULT_L4T_SEARCH_PATHS),
    "flash_board": "jetson-orin-nano-devkit",
    "flash_target": "nvme0n1p1",
    "flash_network": "usb0",
}


@dataclass
class SettingsStore:
    values: dict[str, Any] = field(default_factory=dict)


settings_store = SettingsStore()


def load_settings() -> None:
    settings_store.values = dict(DEFAULT_SETTINGS)
    if not SETTINGS_PATH.exists():
        return
    try:
        data = json.loads(SETTINGS_PATH.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError):
        return
    if isinstance(data, dict):
        settings_store.values.update(data)


def save_settings() -> None:
    SETTINGS_PATH.parent.mkdir(parents=True, exist_ok=True)
    SETTINGS_PATH.write_text(
        json.dumps(settings_store.values, indent=2, sort_keys=True),
        encoding="utf-8",
    )


def get_setting(key: str, default: Any | None = None) -> Any:
    return settings_store.values.get(key, default)


def set_setting(key: str, value: Any) -> None:
    settings_store.values[key] = value
    save_settings()


def get_bool(key: str, default: bool = False) -> bool:
    return bool(get_setting(key, default))


def get_int(key: str, default: int = 0) -> int:
    value = get_setting(key, default)
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def get_float(key: str, default: float = 0.0) -> float:
    value = get_setting(key, default)
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


load_settings()
