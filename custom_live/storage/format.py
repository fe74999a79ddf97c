"""Partitioning and formatting of the target USB device.

Layout (GPT):
    1  EFI          FAT32   1MiB .. 513MiB      ESP flag, label UEFI
    2  live system  ext4    513MiB .. 3585MiB   label DEBIANLINUX
    3  persistence  ext4    3585MiB .. +N GiB   label persistence

Operations:
    - wipe_device(): Remove signatures and zero the first 10 MiB
    - create_partitions(): GPT label plus the three partitions
    - settle_partitions(): Ask the kernel to re-read the table and wait for nodes
    - format_partitions(): mkfs.vfat / mkfs.ext4 with volume labels

Every step raises FormatOperationError on failure. Nothing is retried or
rolled back: a failed run leaves the device in an undefined state and the
whole write must be started again.
"""

from __future__ import annotations

import contextlib
import os
import shutil
import time
from dataclasses import dataclass

from custom_live.config import settings
from custom_live.domain.models import PartitionLayout
from custom_live.logging import LoggerFactory
from custom_live.storage.commands import run_command
from custom_live.storage.devices import partition_path
from custom_live.storage.exceptions import CommandError, FormatOperationError


log = LoggerFactory.for_media()

WIPE_MIB = 10


@dataclass(frozen=True)
class PartitionNodes:
    efi: str
    live: str
    persistence: str


def partition_nodes(device: str) -> PartitionNodes:
    return PartitionNodes(
        efi=partition_path(device, 1),
        live=partition_path(device, 2),
        persistence=partition_path(device, 3),
    )


def _run_step(command: list[str], device: str, description: str) -> None:
    try:
        run_command(command)
    except CommandError as error:
        raise FormatOperationError(f"{description} failed on {device}: {error}", device=device) from error


def wipe_device(device: str) -> None:
    log.info(f"Wiping partition table on {device}")
    _run_step(["wipefs", "-a", device], device, "wipefs")
    _run_step(
        ["dd", "if=/dev/zero", f"of={device}", "bs=1M", f"count={WIPE_MIB}", "status=none"],
        device,
        "Zeroing device start",
    )


def create_partitions(device: str, layout: PartitionLayout) -> PartitionNodes:
    log.info(f"Creating new GPT partition table on {device}")
    _run_step(["parted", "-s", device, "mklabel", "gpt"], device, "mklabel gpt")

    log.info(f"Creating EFI partition ({layout.esp_size_mib}MB)")
    _run_step(
        [
            "parted", "-s", device, "mkpart", "primary", "fat32",
            f"{layout.esp_start_mib}MiB", f"{layout.esp_end_mib}MiB",
        ],
        device,
        "EFI partition",
    )
    _run_step(["parted", "-s", device, "set", "1", "esp", "on"], device, "ESP flag")

    log.info(f"Creating Debian Live partition ({layout.live_size_mib // 1024}GB)")
    _run_step(
        [
            "parted", "-s", device, "mkpart", "primary", "ext4",
            f"{layout.esp_end_mib}MiB", f"{layout.live_end_mib}MiB",
        ],
        device,
        "Live partition",
    )

    log.info(f"Creating persistence partition ({layout.persistence_gb}GB)")
    _run_step(
        [
            "parted", "-s", device, "mkpart", "primary", "ext4",
            f"{layout.live_end_mib}MiB", f"{layout.persistence_end_mib}MiB",
        ],
        device,
        "Persistence partition",
    )
    return partition_nodes(device)


def settle_partitions(device: str, nodes: PartitionNodes, timeout: float = 10.0) -> None:
    """Notify the kernel of the new table and wait for partition nodes."""
    for cmd in (
        ["sync"],
        ["partprobe", device],
        ["udevadm", "settle", "--timeout=10"],
    ):
        if shutil.which(cmd[0]):
            with contextlib.suppress(CommandError, OSError):
                run_command(cmd)

    deadline = time.monotonic() + timeout
    expected = (nodes.efi, nodes.live, nodes.persistence)
    while True:
        missing = [node for node in expected if not os.path.exists(node)]
        if not missing:
            return
        if time.monotonic() >= deadline:
            raise FormatOperationError(
                f"Partition nodes did not appear: {', '.join(missing)}", device=device
            )
        time.sleep(0.5)


def format_partitions(device: str, nodes: PartitionNodes) -> None:
    log.info("Formatting partitions")
    _run_step(
        ["mkfs.vfat", "-F", "32", "-n", settings.get_setting("efi_label", "UEFI"), nodes.efi],
        device,
        "mkfs.vfat",
    )
    _run_step(
        ["mkfs.ext4", "-F", "-L", settings.get_setting("live_label", "DEBIANLINUX"), nodes.live],
        device,
        "mkfs.ext4 (live)",
    )
    _run_step(
        [
            "mkfs.ext4", "-F", "-L",
            settings.get_setting("persistence_label", "persistence"),
            nodes.persistence,
        ],
        device,
        "mkfs.ext4 (persistence)",
    )
