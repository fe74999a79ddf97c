"""Turn a working tree back into the variant's custom archive.

Recompression is skipped when the variant is already RECOMPRESSED, and an
archive left at the staging path by an interrupted run can be reused instead
of rebuilt. Before a rebuild the existing custom archive is
either kept as a versioned backup (when the session was extracted from it) or
removed (when the session started fresh).
"""

from __future__ import annotations

import shutil
from enum import Enum
from pathlib import Path

from custom_live.domain.lifecycle import LifecycleState, check_transition
from custom_live.domain.models import CUSTOM_ARCHIVE_NAME, SessionState, Variant
from custom_live.logging import LoggerFactory, operation_context
from custom_live.services import chroot
from custom_live.storage import squashfs
from custom_live.storage.commands import run_command
from custom_live.storage.devices import human_size
from custom_live.storage.exceptions import CompressionError, LiveBindsError
from custom_live.storage.variant_store import VariantStore


log = LoggerFactory.for_recompress()

SCRUB_FILES = ("etc/resolv.conf", chroot.HELPER_SCRIPT_REL)
SCRUB_DIRS = ("tmp", "var/tmp")


class RecompressAction(Enum):
    SKIP = "skip"
    ASK_REUSE = "ask-reuse"
    BUILD = "build"


def staging_path(variant: Variant, staging_dir: Path | None = None) -> Path:
    if staging_dir is None:
        return variant.custom_archive_path
    return Path(staging_dir) / CUSTOM_ARCHIVE_NAME


def plan_recompression(
    state: LifecycleState, session: SessionState, staged: Path
) -> RecompressAction:
    """Decide what to do with the tree from the derived lifecycle state."""
    if state is LifecycleState.RECOMPRESSED:
        return RecompressAction.SKIP
    if staged.is_file() and staged not in (session.source_squashfs, session.new_squashfs):
        return RecompressAction.ASK_REUSE
    return RecompressAction.BUILD


def _clear_directory(path: Path) -> None:
    if not path.is_dir() or path.is_symlink():
        return
    for entry in path.iterdir():
        if entry.is_dir() and not entry.is_symlink():
            shutil.rmtree(entry)
        else:
            entry.unlink()


def scrub_tree(tree: Path) -> None:
    """Remove host-specific and temporary files from the tree."""
    for rel in SCRUB_FILES:
        target = tree / rel
        if target.is_symlink() or target.exists():
            target.unlink()
    for rel in SCRUB_DIRS:
        _clear_directory(tree / rel)


def clean_package_cache(tree: Path) -> None:
    result = run_command(["chroot", str(tree), "apt-get", "clean"], check=False)
    if result.returncode != 0:
        log.warning(f"apt-get clean failed in {tree} (exit {result.returncode}), continuing")


def prepare_tree(tree: Path) -> None:
    """Clean the tree and release its binds.

    Raises:
        LiveBindsError: if anything is still mounted below the tree
    """
    clean_package_cache(tree)
    scrub_tree(tree)
    chroot.release_system_resources(tree)
    leftover = chroot.active_binds(tree)
    if leftover:
        raise LiveBindsError(str(tree), leftover)


def retire_current_archive(
    store: VariantStore, variant: Variant, session: SessionState
) -> Path | None:
    """Make room for a new build.

    Returns:
        The versioned backup, if one was taken
    """
    current = variant.custom_archive_path
    if not current.is_file():
        return None
    if session.continued_from_custom:
        return store.preserve_version(variant)
    log.info(f"Removing previous build {current.name} (session started fresh)")
    current.unlink()
    return None


def report_sizes(session: SessionState, archive: Path) -> None:
    if session.backup_file.is_file():
        log.info(f"Original squashfs: {human_size(session.backup_file.stat().st_size)}")
    log.info(f"Custom squashfs:   {human_size(archive.stat().st_size)}")


def recompress(
    session: SessionState,
    store: VariantStore,
    variant: Variant,
    prompter,
    staging_dir: Path | None = None,
) -> SessionState:
    """Produce the custom archive for ``session``, reusing prior work.

    Args:
        session: Current session state
        store: Variant store
        variant: The session's variant
        prompter: Asked whether to reuse an archive left by an interrupted run
        staging_dir: Directory to build in; the variant directory when omitted

    Returns:
        The session marked ready, as persisted

    Raises:
        LifecycleTransitionError: if the variant has no active session
    """
    state = store.lifecycle(variant)
    check_transition(variant.name, state, LifecycleState.RECOMPRESSED)
    staged = staging_path(variant, staging_dir)
    action = plan_recompression(state, session, staged)

    if action is RecompressAction.SKIP:
        log.info(f"Squashfs already recompressed, skipping: {session.new_squashfs}")
        return session

    if action is RecompressAction.ASK_REUSE:
        if prompter.ask_yes_no(
            f"Found existing {staged}. Use it instead of recompressing?", default=True
        ):
            archive = store.install_custom_archive(variant, staged)
            return store.save_session(variant, session.mark_ready(archive))
        log.info(f"Discarding {staged}")
        staged.unlink()

    tree = session.extract_dir
    chroot.validate_working_tree(tree)
    with operation_context("recompress", variant=variant.name):
        prepare_tree(tree)
        retire_current_archive(store, variant, session)
        staged.parent.mkdir(parents=True, exist_ok=True)
        squashfs.compress_tree(tree, staged)
        if not staged.is_file():
            raise CompressionError(f"mksquashfs did not create {staged}")
        archive = store.install_custom_archive(variant, staged)
        session = store.save_session(variant, session.mark_ready(archive))
    report_sizes(session, archive)
    return session
