from __future__ import annotations

from pathlib import Path

from custom_live.domain.lifecycle import LifecycleState, check_transition
from custom_live.domain.models import PartitionLayout, Variant
from custom_live.logging import LoggerFactory
from custom_live.services import chroot, media_writer, recompress
from custom_live.services.media_writer import MediaSummary
from custom_live.storage import devices
from custom_live.storage.exceptions import BaseImageError
from custom_live.storage.variant_store import VariantStore
from custom_live.ui.prompts import ConsolePrompter


log = LoggerFactory.for_media()


def confirm_target(device: str, prompter: ConsolePrompter) -> None:
    devices.validate_block_device(device)
    if devices.looks_like_system_disk(device):
        prompter.show(f"WARNING: {device} is commonly a system disk!")
        prompter.confirm_typed(f"Are you absolutely sure you want to overwrite {device}?")


def choose_layout(device: str, prompter: ConsolePrompter) -> PartitionLayout:
    size = devices.get_device_size_bytes(device)
    default_gb = media_writer.default_persistence_gb(size)
    prompter.show(f"Device size: {devices.human_size(size)}")
    answer = prompter.ask_persistence_size(default_gb)
    return media_writer.plan_layout(device, answer, device_size_bytes=size)


def show_plan(variant: Variant, device: str, layout: PartitionLayout, prompter: ConsolePrompter) -> None:
    prompter.show("")
    prompter.show("Summary:")
    prompter.show(f"  Variant:     {variant.name}")
    prompter.show(f"  Device:      {device} ({layout.device_size_gb}GB)")
    prompter.show(f"  EFI:         {layout.esp_size_mib}MB")
    prompter.show(f"  Live system: {layout.live_size_mib // 1024}GB")
    prompter.show(f"  Persistence: {layout.persistence_gb}GB")
    prompter.show("")


def show_result(summary: MediaSummary, prompter: ConsolePrompter) -> None:
    prompter.show("")
    prompter.show("USB stick created successfully!")
    prompter.show(f"  Partition 1 (EFI):         {summary.nodes.efi}")
    prompter.show(f"  Partition 2 (Live):        {summary.nodes.live}")
    prompter.show(f"  Partition 3 (Persistence): {summary.nodes.persistence}")
    prompter.show(f"  Original backup: {summary.backup}")
    prompter.show(f"  Custom squashfs: {summary.archive}")
    prompter.show(f"  Variant directory: {summary.variant_dir}")


def finalize_to_media(
    name: str,
    device: str,
    store: VariantStore,
    prompter: ConsolePrompter,
    temp_dir: Path | None = None,
) -> MediaSummary:
    """Recompress an active variant and write it to ``device``.

    Raises:
        LifecycleTransitionError: if the variant has no active session
    """
    variant = store.resolve(name)
    current = store.lifecycle(variant)
    check_transition(variant.name, current, LifecycleState.RECOMPRESSED)
    session = store.load_session(variant)
    if not session.iso_file.is_file():
        raise BaseImageError(str(session.iso_file), "not found")
    if current is not LifecycleState.RECOMPRESSED:
        chroot.validate_working_tree(session.extract_dir)

    confirm_target(device, prompter)

    layout = choose_layout(device, prompter)
    show_plan(variant, device, layout, prompter)
    prompter.confirm_typed(f"This will DESTROY all data on {device}.")

    if temp_dir is not None:
        temp_dir = store.make_dir(Path(temp_dir).resolve())
    log.info(f"Finalizing variant {variant.name} to {device}")
    session = recompress.recompress(session, store, variant, prompter, temp_dir)
    check_transition(variant.name, store.lifecycle(variant), LifecycleState.WRITTEN)
    summary = media_writer.write_media(device, session, layout, store, variant, temp_dir)
    show_result(summary, prompter)
    return summary
