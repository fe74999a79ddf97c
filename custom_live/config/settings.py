"""JSON settings file merged over built-in defaults."""

from __future__ import annotations

import json
import os
import platform
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any


SETTINGS_PATH = Path(
    os.environ.get(
        "CUSTOM_LIVE_SETTINGS_PATH",
        Path.home() / ".config" / "custom-live" / "settings.json",
    )
)

# Partition and archive defaults, shared with the layout code
DEFAULT_LIVE_RESERVE_GB = 4
DEFAULT_ESP_SIZE_MIB = 512
DEFAULT_LIVE_SIZE_MIB = 3072
DEFAULT_SQUASHFS_BLOCK_SIZE = "1M"

# mksquashfs -Xbcj filter names by machine architecture
BCJ_FILTERS = {
    "x86_64": "x86",
    "amd64": "x86",
    "i386": "x86",
    "i686": "x86",
    "aarch64": "arm64",
    "arm64": "arm64",
    "armv7l": "arm",
    "armv6l": "arm",
    "ppc64le": "powerpc",
    "ppc64": "powerpc",
    "sparc64": "sparc",
    "ia64": "ia64",
}

GRUB_EFI_TARGETS = {
    "x86_64": "x86_64-efi",
    "amd64": "x86_64-efi",
    "i386": "i386-efi",
    "i686": "i386-efi",
    "aarch64": "arm64-efi",
    "arm64": "arm64-efi",
    "armv7l": "arm-efi",
}

DEFAULT_SETTINGS: dict[str, Any] = {
    "variants_dir": None,
    "live_reserve_gb": DEFAULT_LIVE_RESERVE_GB,
    "esp_size_mib": DEFAULT_ESP_SIZE_MIB,
    "live_size_mib": DEFAULT_LIVE_SIZE_MIB,
    "efi_label": "UEFI",
    "live_label": "DEBIANLINUX",
    "persistence_label": "persistence",
    "boot_keyboard_layout": "de",
    "boot_locale": "de_DE.UTF-8",
    "grub_timeout": 5,
    "grub_target": None,
    "squashfs_compressor": "xz",
    "squashfs_bcj_filter": None,
    "squashfs_block_size": DEFAULT_SQUASHFS_BLOCK_SIZE,
    "host_resolv_conf": "/etc/resolv.conf",
    "chroot_shell": "/bin/bash",
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


def get_setting(key: str, default: Any | None = None) -> Any:
    return settings_store.values.get(key, default)


def get_int(key: str, default: int = 0) -> int:
    value = get_setting(key, default)
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def get_variants_dir() -> Path:
    """Directory holding one subdirectory per variant.

    Resolution order: CUSTOM_LIVE_VARIANTS_DIR, the ``variants_dir`` setting,
    then the current working directory.
    """
    env_value = os.environ.get("CUSTOM_LIVE_VARIANTS_DIR")
    if env_value:
        return Path(env_value)
    configured = get_setting("variants_dir")
    if configured:
        return Path(configured)
    return Path.cwd()


def get_bcj_filter(machine: str | None = None) -> str | None:
    configured = get_setting("squashfs_bcj_filter")
    if configured:
        return configured
    return BCJ_FILTERS.get(machine or platform.machine())


def get_grub_target(machine: str | None = None) -> str:
    configured = get_setting("grub_target")
    if configured:
        return configured
    return GRUB_EFI_TARGETS.get(machine or platform.machine(), "x86_64-efi")


load_settings()
