"""Target block device inspection using lsblk.

Operations:
    - is_block_device(): Check the node is really a block device
    - looks_like_system_disk(): Soft guard for common primary-disk names
    - get_device_size_bytes(): Device capacity via lsblk, blockdev fallback
    - partition_path(): Partition node for a disk and partition number
    - device_mountpoints(): Active mountpoints of a disk and its partitions
    - unmount_device_partitions(): Release every mountpoint of a disk
    - human_size(): Convert bytes to human-readable format (KB/MB/GB)

The system-disk check only knows two literal names (/dev/sda and
/dev/nvme0n1). It is a prompt, not a block: the tool exists to overwrite
removable media.
"""

from __future__ import annotations

import json
import os
import shutil
import stat

from custom_live.logging import LoggerFactory
from custom_live.storage.commands import run_command
from custom_live.storage.exceptions import CommandError, InvalidDeviceError
from custom_live.storage.mount import is_mountpoint, release_mount


log = LoggerFactory.for_media()

SYSTEM_DISK_NAMES = ("/dev/sda", "/dev/nvme0n1")
GIB = 1024**3


def human_size(size_bytes) -> str:
    if size_bytes is None:
        return "0B"
    size = float(size_bytes)
    for unit in ["B", "KB", "MB", "GB", "TB"]:
        if size < 1024.0:
            return f"{size:.1f}{unit}"
        size /= 1024.0
    return f"{size:.1f}PB"


def is_block_device(device: str) -> bool:
    try:
        return stat.S_ISBLK(os.stat(device).st_mode)
    except OSError:
        return False


def validate_block_device(device: str) -> None:
    if not device.startswith("/dev/"):
        raise InvalidDeviceError(device, "device path must start with /dev/")
    if not is_block_device(device):
        raise InvalidDeviceError(device, "not a valid block device")


def looks_like_system_disk(device: str) -> bool:
    return device in SYSTEM_DISK_NAMES


def _get_blockdev_size_bytes(device: str) -> int | None:
    blockdev = shutil.which("blockdev")
    if not blockdev:
        return None
    result = run_command([blockdev, "--getsize64", device], check=False)
    if result.returncode != 0:
        return None
    try:
        return int(result.stdout.strip())
    except ValueError:
        return None


def get_device_size_bytes(device: str) -> int:
    """Device capacity in bytes.

    Raises:
        InvalidDeviceError: if neither lsblk nor blockdev report a size
    """
    result = run_command(["lsblk", "-b", "-d", "-n", "-o", "SIZE", device], check=False)
    if result.returncode == 0:
        try:
            return int(result.stdout.strip().splitlines()[0])
        except (ValueError, IndexError):
            log.debug(f"Unparseable lsblk size output for {device}: {result.stdout!r}")
    size = _get_blockdev_size_bytes(device)
    if size is None:
        raise InvalidDeviceError(device, "cannot determine device size")
    return size


def partition_path(device: str, number: int) -> str:
    # nvme and mmcblk devices use a "p" separator
    if device[-1].isdigit():
        return f"{device}p{number}"
    return f"{device}{number}"


def _collect_mountpoints(node: dict) -> list[str]:
    mountpoints = []
    if node.get("mountpoint"):
        mountpoints.append(node["mountpoint"])
    for value in node.get("mountpoints") or []:
        if value and value not in mountpoints:
            mountpoints.append(value)
    for child in node.get("children", []) or []:
        mountpoints.extend(_collect_mountpoints(child))
    return mountpoints


def device_mountpoints(device: str) -> list[str]:
    try:
        result = run_command(["lsblk", "-J", "-o", "NAME,MOUNTPOINT", device], log_output=False)
        data = json.loads(result.stdout)
    except (CommandError, json.JSONDecodeError) as error:
        log.debug(f"lsblk failed for {device}: {error}")
        return []
    mountpoints: list[str] = []
    for node in data.get("blockdevices", []):
        mountpoints.extend(_collect_mountpoints(node))
    return mountpoints


def unmount_device_partitions(device: str) -> list[str]:
    """Unmount everything mounted from ``device``.

    Returns:
        The mountpoints that were released
    """
    released = []
    run_command(["sync"], check=False)
    for mountpoint in device_mountpoints(device):
        if is_mountpoint(mountpoint) and release_mount(mountpoint):
            log.info(f"Unmounted {mountpoint}")
            released.append(mountpoint)
    return released
