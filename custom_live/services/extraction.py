"""Extraction of a base ISO into a variant's working tree.

Flow:
    1. Validate the ISO and the branch decision
    2. Loop-mount the ISO read-only on a scratch mountpoint and locate
       filesystem.squashfs, vmlinuz* and initrd*
    3. Tear down any previous working tree (and reset on a fresh start)
    4. Back up the ISO's archive unless a matching backup already exists
    5. Unmount, then unsquashfs the source archive into the working tree
    6. Install the helper script and persist the session state

Nothing in the variant changes before step 3. A failure from step 5 on
removes the new working location again.
"""

from __future__ import annotations

import os
import shutil
import tempfile
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Iterator

from custom_live.domain.lifecycle import LifecycleState
from custom_live.domain.models import (
    EXTRACT_DIRNAME,
    ISO_MOUNT_DIRNAME,
    ROOTFS_ARCHIVE_NAME,
    BranchChoice,
    SessionState,
    Variant,
)
from custom_live.logging import EventLogger, LoggerFactory
from custom_live.services import chroot
from custom_live.storage import mount, squashfs
from custom_live.storage.exceptions import (
    BaseImageError,
    ExtractionError,
    InvalidChoiceError,
    MissingAssetError,
    SessionStateError,
    UserAbort,
)
from custom_live.storage.variant_store import VariantStore


log = LoggerFactory.for_extract()

KERNEL_PREFIX = "vmlinuz"
INITRD_PREFIX = "initrd"


@dataclass(frozen=True)
class BootAssets:
    """Files located inside a mounted ISO."""

    archive: Path
    vmlinuz_rel: str
    initrd_rel: str


def _first_match(root: Path, matches) -> Path | None:
    for dirpath, dirnames, filenames in os.walk(root):
        dirnames.sort()
        for filename in sorted(filenames):
            if matches(filename):
                return Path(dirpath) / filename
    return None


def find_boot_assets(mount_root: Path, image_name: str = "") -> BootAssets:
    """Locate the root archive, kernel and initrd below ``mount_root``.

    The first match in sorted walk order wins.

    Raises:
        MissingAssetError: if any of the three is missing
    """
    label = image_name or str(mount_root)
    archive = _first_match(mount_root, lambda name: name == ROOTFS_ARCHIVE_NAME)
    if archive is None:
        raise MissingAssetError(ROOTFS_ARCHIVE_NAME, label)
    vmlinuz = _first_match(mount_root, lambda name: name.startswith(KERNEL_PREFIX))
    if vmlinuz is None:
        raise MissingAssetError(f"{KERNEL_PREFIX}*", label)
    initrd = _first_match(mount_root, lambda name: name.startswith(INITRD_PREFIX))
    if initrd is None:
        raise MissingAssetError(f"{INITRD_PREFIX}*", label)
    return BootAssets(
        archive=archive,
        vmlinuz_rel=vmlinuz.relative_to(mount_root).as_posix(),
        initrd_rel=initrd.relative_to(mount_root).as_posix(),
    )


def validate_base_image(base_image: Path) -> Path:
    path = Path(base_image).resolve()
    if not path.exists():
        raise BaseImageError(str(base_image), "not found")
    if not path.is_file():
        raise BaseImageError(str(base_image), "not a regular file")
    if not os.access(path, os.R_OK):
        raise BaseImageError(str(base_image), "not readable")
    return path


def resolve_work_dir(store: VariantStore, variant: Variant, work_root: Path | None) -> Path:
    """Working location: a fresh temp dir under ``work_root``, else ``<variant>/work``."""
    if work_root is None:
        return store.make_dir(variant.default_work_dir)
    root = store.make_dir(Path(work_root).resolve())
    work_dir = Path(tempfile.mkdtemp(prefix="custom-live-", dir=str(root)))
    return store.make_dir(work_dir)


def _remove_if_empty(path: Path, keep: tuple[Path, ...]) -> None:
    if path in keep or not path.is_dir():
        return
    if not any(path.iterdir()):
        path.rmdir()


@contextmanager
def inspect_base_image(iso: Path) -> Iterator[tuple[Path, BootAssets]]:
    """Mount ``iso`` on a scratch mountpoint and locate its boot assets.

    The mountpoint is a temporary directory outside the variant.

    Raises:
        MissingAssetError: if the image lacks an archive, kernel or initrd
    """
    scratch = Path(tempfile.mkdtemp(prefix=f"custom-live-{ISO_MOUNT_DIRNAME}-"))
    try:
        with mount.loop_mount(iso, scratch) as iso_root:
            assets = find_boot_assets(iso_root, iso.name)
            log.info(f"Found squashfs: {assets.archive.relative_to(iso_root)}")
            log.info(f"Found kernel: {assets.vmlinuz_rel}")
            log.info(f"Found initrd: {assets.initrd_rel}")
            yield iso_root, assets
    finally:
        _remove_if_empty(scratch, keep=())


def abandon_work_dir(variant: Variant, work_dir: Path) -> None:
    """Remove a working location no session points at.

    Temporary locations go entirely; the variant's own ``work/`` is only
    removed once empty.
    """
    chroot.teardown_tree(work_dir / EXTRACT_DIRNAME)
    if work_dir in (variant.path, variant.default_work_dir):
        _remove_if_empty(work_dir, keep=(variant.path,))
    elif work_dir.is_dir():
        if mount.mountpoints_under(work_dir):
            log.warning(f"Leaving {work_dir} in place, something is still mounted below it")
            return
        log.info(f"Removing abandoned working location {work_dir}")
        shutil.rmtree(work_dir)


def discard_session(store: VariantStore, variant: Variant) -> None:
    """Tear down the working tree of an active session and forget it."""
    try:
        state = store.load_session(variant)
        tree, work_dir = state.extract_dir, state.work_dir
    except SessionStateError as error:
        log.warning(f"Discarding unreadable session: {error}")
        work_dir = variant.default_work_dir
        tree = work_dir / EXTRACT_DIRNAME
    chroot.teardown_tree(tree)
    _remove_if_empty(work_dir, keep=(variant.path,))
    store.delete_session(variant)


def current_lifecycle(store: VariantStore, variant: Variant) -> LifecycleState:
    try:
        return store.lifecycle(variant)
    except SessionStateError as error:
        log.warning(f"Session state unreadable, treating as extracted: {error}")
        return LifecycleState.EXTRACTED


def extract(
    base_image: Path,
    variant: Variant,
    choice: BranchChoice,
    store: VariantStore,
    work_root: Path | None = None,
) -> SessionState:
    """Extract ``base_image`` into a new working tree for ``variant``.

    Args:
        base_image: Path to the Debian Live ISO
        variant: Target variant (need not exist yet)
        choice: FRESH starts from the original archive, CONTINUE from the
            variant's custom archive
        store: Variant store
        work_root: Directory for a temporary working location; the variant
            directory is used when omitted

    Returns:
        The persisted session state

    Raises:
        UserAbort: for ABORT, before anything is changed
        InvalidChoiceError: for CONTINUE without a custom archive
        MissingAssetError: if the ISO lacks a boot asset, before anything is changed
        ExtractionError: if unsquashfs fails; the new working location is removed
    """
    iso = validate_base_image(base_image)
    if choice is BranchChoice.ABORT:
        raise UserAbort("Aborted. No changes made.", exit_code=0)
    if choice is BranchChoice.CONTINUE and not variant.has_custom_archive():
        raise InvalidChoiceError(choice.value, [BranchChoice.FRESH.value, BranchChoice.ABORT.value])

    previous = current_lifecycle(store, variant)

    with inspect_base_image(iso) as (iso_root, assets):
        if variant.has_session():
            log.info(f"Discarding previous session of {variant.name}")
            discard_session(store, variant)
        if choice is BranchChoice.FRESH and variant.path.is_dir():
            store.reset_for_fresh_start(variant)

        store.create(variant.name)
        store.ensure_history(variant, iso.name)
        backup = store.find_reusable_backup(variant, iso.name, assets.archive.stat().st_size)
        if backup is not None:
            log.info(f"Reusing existing original backup: {backup.name}")
        else:
            backup = store.create_original_backup(variant, assets.archive)

    source = backup if choice is BranchChoice.FRESH else variant.custom_archive_path
    work_dir = resolve_work_dir(store, variant, work_root)
    tree = work_dir / EXTRACT_DIRNAME
    log.info(f"Working location: {work_dir}")

    try:
        if tree.exists():
            chroot.teardown_tree(tree)
        squashfs.extract_archive(source, tree)
        if not tree.is_dir() or not any(tree.iterdir()):
            raise ExtractionError(f"Extraction of {source} produced no working tree at {tree}")
        chroot.install_helper_script(tree)

        state = SessionState(
            work_dir=work_dir,
            extract_dir=tree,
            backup_file=backup,
            source_squashfs=source,
            iso_file=iso,
            vmlinuz_rel=assets.vmlinuz_rel,
            initrd_rel=assets.initrd_rel,
            variant_info_file=variant.history_path,
            variant_name=variant.name,
            variant_dir=variant.path,
        )
        store.save_session(variant, state)
    except BaseException:
        log.error(f"Extraction of {variant.name} failed, removing {tree}")
        abandon_work_dir(variant, work_dir)
        raise

    EventLogger.log_lifecycle_transition(
        log, variant.name, previous.value, LifecycleState.EXTRACTED.value,
        source=str(source),
    )
    return state
