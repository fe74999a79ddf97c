"""Write a recompressed variant to a USB device.

Steps, each fatal on failure:
    1. Unmount the device's partitions, wipe signatures and the first 10 MiB
    2. GPT with EFI / live system / persistence partitions, then mkfs
    3. Mount the three partitions and the base ISO (read-only)
    4. rsync the ISO to the live partition without its filesystem.squashfs,
       then copy the custom archive next to the kernel
    5. grub-install and grub.cfg on the EFI partition
    6. persistence.conf and the history log on the persistence partition
    7. Sync and unmount; only then are the working tree and session removed
"""

from __future__ import annotations

import shutil
import tempfile
from contextlib import ExitStack
from dataclasses import dataclass
from pathlib import Path

from custom_live.config import settings
from custom_live.domain.lifecycle import LifecycleState
from custom_live.domain.models import (
    HISTORY_FILENAME,
    ROOTFS_ARCHIVE_NAME,
    PartitionLayout,
    SessionState,
    Variant,
)
from custom_live.logging import EventLogger, LoggerFactory, operation_context
from custom_live.services import bootloader, chroot
from custom_live.storage import devices, mount
from custom_live.storage import format as media_format
from custom_live.storage.commands import run_command, run_streaming
from custom_live.storage.exceptions import BaseImageError, SessionStateError
from custom_live.storage.variant_store import VariantStore


log = LoggerFactory.for_media()

PERSISTENCE_CONF = "/ union\n"


@dataclass(frozen=True)
class MediaSummary:
    device: str
    layout: PartitionLayout
    nodes: media_format.PartitionNodes
    archive: Path
    backup: Path
    variant_dir: Path


def default_persistence_gb(device_size_bytes: int) -> int:
    return PartitionLayout.default_persistence_gb(
        device_size_bytes,
        settings.get_int("live_reserve_gb", settings.DEFAULT_LIVE_RESERVE_GB),
    )


def plan_layout(
    device: str,
    persistence_gb: int | str | None = None,
    device_size_bytes: int | None = None,
) -> PartitionLayout:
    """Layout for ``device``; persistence defaults to its size minus the live reserve."""
    if device_size_bytes is None:
        device_size_bytes = devices.get_device_size_bytes(device)
    return PartitionLayout.for_device(
        device_size_bytes,
        persistence_gb,
        reserve_gb=settings.get_int("live_reserve_gb", settings.DEFAULT_LIVE_RESERVE_GB),
        esp_size_mib=settings.get_int("esp_size_mib", settings.DEFAULT_ESP_SIZE_MIB),
        live_size_mib=settings.get_int("live_size_mib", settings.DEFAULT_LIVE_SIZE_MIB),
    )


def _mount_dir(stack: ExitStack, prefix: str, base: Path | None) -> Path:
    path = Path(tempfile.mkdtemp(prefix=prefix, dir=str(base) if base else None))
    stack.callback(_remove_mount_dir, path)
    return path


def _remove_mount_dir(path: Path) -> None:
    mount.release_mount(path)
    if path.is_dir() and not any(path.iterdir()):
        path.rmdir()


def _mount_node(stack: ExitStack, node: str, prefix: str, base: Path | None) -> Path:
    path = _mount_dir(stack, prefix, base)
    mount.mount_partition(node, path)
    return path


def stage_live_files(iso_root: Path, live_root: Path, session: SessionState, archive: Path) -> Path:
    """Copy the ISO contents and the custom archive to the live partition."""
    log.info("Copying ISO contents to the live partition")
    run_streaming(
        [
            "rsync",
            "-a",
            "--info=progress2",
            f"--exclude=**/{ROOTFS_ARCHIVE_NAME}",
            f"{iso_root}/",
            f"{live_root}/",
        ]
    )
    target_dir = live_root / session.live_dir_rel if session.live_dir_rel else live_root
    target_dir.mkdir(parents=True, exist_ok=True)
    target = target_dir / ROOTFS_ARCHIVE_NAME
    log.info(f"Copying custom squashfs to {target.relative_to(live_root)}")
    shutil.copyfile(archive, target)
    return target


def stage_persistence(persistence_root: Path, history: Path) -> None:
    log.info("Configuring persistence")
    (persistence_root / "persistence.conf").write_text(PERSISTENCE_CONF, encoding="utf-8")
    if history.is_file():
        shutil.copy2(history, persistence_root / HISTORY_FILENAME)


def media_record(
    device: str,
    layout: PartitionLayout,
    nodes: media_format.PartitionNodes,
    archive: Path,
) -> list[str]:
    """History lines naming the partition nodes that were written."""
    return [
        f"Device: {device}",
        (
            f"Partitions: {nodes.efi} (EFI {layout.esp_size_mib}MB), "
            f"{nodes.live} (Live {layout.live_size_mib // 1024}GB), "
            f"{nodes.persistence} (Persistence {layout.persistence_gb}GB)"
        ),
        f"Squashfs: {archive.name} ({devices.human_size(archive.stat().st_size)})",
    ]


def write_media(
    device: str,
    session: SessionState,
    layout: PartitionLayout,
    store: VariantStore,
    variant: Variant,
    temp_dir: Path | None = None,
) -> MediaSummary:
    """Destroy ``device`` and write the variant's live system to it.

    Confirmation prompts happen before this is called. Nothing is rolled back
    on failure; the working state is only removed after everything succeeded.

    Raises:
        InvalidDeviceError: if ``device`` is not a block device
        SessionStateError: if the session has no ready archive
        StepFailure: if any step fails
    """
    devices.validate_block_device(device)
    if not session.is_ready():
        raise SessionStateError(str(variant.session_state_path), "custom squashfs is not ready")
    if not session.iso_file.is_file():
        raise BaseImageError(str(session.iso_file), "not found")
    archive = session.new_squashfs

    with operation_context("write", variant=variant.name, device=device):
        devices.unmount_device_partitions(device)
        media_format.wipe_device(device)
        nodes = media_format.create_partitions(device, layout)
        media_format.settle_partitions(device, nodes)
        media_format.format_partitions(device, nodes)

        with ExitStack() as stack:
            log.info("Mounting partitions")
            efi_root = _mount_node(stack, nodes.efi, "custom-live-efi-", temp_dir)
            live_root = _mount_node(stack, nodes.live, "custom-live-live-", temp_dir)
            persistence_root = _mount_node(stack, nodes.persistence, "custom-live-pers-", temp_dir)
            iso_root = stack.enter_context(
                mount.loop_mount(session.iso_file, _mount_dir(stack, "custom-live-iso-", temp_dir))
            )

            stage_live_files(iso_root, live_root, session, archive)
            bootloader.install_grub_efi(efi_root)
            bootloader.write_grub_config(efi_root, session.vmlinuz_rel, session.initrd_rel)
            stage_persistence(persistence_root, session.variant_info_file)
            log.info("Syncing filesystems")
            run_command(["sync"])
            log.info("Unmounting partitions")

    log.info("Cleaning up working directory")
    chroot.remove_work_location(session, temp_dir)
    store.delete_session(variant)
    store.append_history(variant, "USB Media Created", media_record(device, layout, nodes, archive))

    EventLogger.log_lifecycle_transition(
        log, variant.name, LifecycleState.RECOMPRESSED.value, LifecycleState.WRITTEN.value
    )
    EventLogger.log_media_written(log, variant.name, device, layout.persistence_gb)
    return MediaSummary(
        device=device,
        layout=layout,
        nodes=nodes,
        archive=archive,
        backup=session.backup_file,
        variant_dir=variant.path,
    )
