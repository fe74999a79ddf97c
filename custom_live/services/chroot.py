"""Interactive chroot sessions around an extracted working tree.

Entering binds the host's /dev, /dev/pts, /proc and /sys into the tree
(skipping any that are already mounted), copies the host resolver config,
and hands the terminal to a shell rooted at the tree. Binds stay in place
after the shell exits so the session can be re-entered; they are released
before recompression or when the tree is torn down.
"""

from __future__ import annotations

import shutil
from pathlib import Path

from custom_live.config import settings
from custom_live.domain.lifecycle import LifecycleState
from custom_live.domain.models import SessionState
from custom_live.logging import LoggerFactory
from custom_live.storage import mount
from custom_live.storage.commands import run_interactive
from custom_live.storage.exceptions import WorkingTreeError


log = LoggerFactory.for_chroot()

# (host source, path inside the tree), in mount order
SYSTEM_BINDS: tuple[tuple[str, str], ...] = (
    ("/dev", "dev"),
    ("/dev/pts", "dev/pts"),
    ("/proc", "proc"),
    ("/sys", "sys"),
)

RESOLV_CONF_REL = "etc/resolv.conf"
HELPER_SCRIPT_REL = "root/configure_system.sh"
REQUIRED_TREE_ENTRIES = ("root",)

HELPER_SCRIPT = """#!/bin/bash
# Tips for configuring the Live system from inside the chroot

cat <<'EOF'
==========================================
Live System Configuration Helper
==========================================

You are in a chroot of the extracted Live system.

 1. Point APT at the network mirrors, for example:
      cat > /etc/apt/sources.list <<'SOURCES'
      deb http://deb.debian.org/debian trixie main contrib non-free non-free-firmware
      deb http://deb.debian.org/debian-security trixie-security main contrib non-free non-free-firmware
      deb http://deb.debian.org/debian trixie-updates main contrib non-free non-free-firmware
      SOURCES
 2. apt-get update
 3. Locales first, to avoid LC_CTYPE warnings:
      apt-get install -y locales && dpkg-reconfigure locales
 4. Keyboard and console:
      apt-get install -y console-setup console-data keyboard-configuration kbd
      dpkg-reconfigure keyboard-configuration
      dpkg-reconfigure console-setup
 5. Install whatever else the variant needs.
 6. Type 'exit' when done.

This script is removed before the system is recompressed.
==========================================
EOF
"""


def bind_targets(tree: Path) -> list[Path]:
    return [tree / rel for _, rel in SYSTEM_BINDS]


def bind_system_resources(tree: Path) -> list[Path]:
    """Bind host system directories into ``tree``.

    Already-mounted targets are left alone, so calling this again on a
    re-entered session is a no-op for binds that survived.

    Returns:
        Targets that were newly mounted
    """
    mounted = []
    for source, rel in SYSTEM_BINDS:
        target = tree / rel
        if mount.bind_mount(source, target):
            mounted.append(target)
    if mounted:
        log.debug(f"Bound {len(mounted)} system directories into {tree}")
    return mounted


def release_system_resources(tree: Path) -> None:
    """Release all binds in reverse order. Safe to call when none are mounted."""
    for target in reversed(bind_targets(tree)):
        mount.release_mount(target)


def active_binds(tree: Path) -> list[str]:
    return mount.mountpoints_under(tree)


def refresh_resolv_conf(tree: Path) -> None:
    source = Path(settings.get_setting("host_resolv_conf", "/etc/resolv.conf"))
    target = tree / RESOLV_CONF_REL
    if not source.is_file():
        log.warning(f"Host resolver config {source} not found; network may not work")
        return
    target.parent.mkdir(parents=True, exist_ok=True)
    # Live images often ship resolv.conf as a dangling symlink
    if target.is_symlink() or target.exists():
        target.unlink()
    shutil.copyfile(source, target)


def install_helper_script(tree: Path) -> Path:
    path = tree / HELPER_SCRIPT_REL
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(HELPER_SCRIPT, encoding="utf-8")
    path.chmod(0o755)
    return path


def validate_working_tree(tree: Path) -> None:
    """Raise WorkingTreeError unless ``tree`` looks like an extracted root."""
    if not tree.is_dir():
        raise WorkingTreeError(str(tree), "not found")
    for entry in REQUIRED_TREE_ENTRIES:
        if not (tree / entry).is_dir():
            raise WorkingTreeError(str(tree), f"is invalid (missing /{entry})")


def enter(tree: Path) -> int:
    """Run an interactive shell inside ``tree`` and wait for it to exit.

    Returns:
        The shell's exit status
    """
    validate_working_tree(tree)
    bind_system_resources(tree)
    refresh_resolv_conf(tree)
    shell = settings.get_setting("chroot_shell", "/bin/bash")
    log.info(f"Entering chroot {tree} (type 'exit' to leave)")
    returncode = run_interactive(["chroot", str(tree), shell])
    log.info("Exited from chroot")
    return returncode


def resume(
    session: SessionState, store, variant, state: LifecycleState
) -> tuple[SessionState, int]:
    """Re-enter an existing session without repeating extraction.

    A RECOMPRESSED variant drops back to EXTRACTED before the shell starts;
    the last built archive stays recorded so it is replaced rather than
    offered for reuse.

    Raises:
        WorkingTreeError: if the tree is gone or invalid
    """
    validate_working_tree(session.extract_dir)
    updated = session
    if state is LifecycleState.RECOMPRESSED:
        updated = store.save_session(variant, session.clear_ready())
    return updated, enter(session.extract_dir)


def teardown_tree(tree: Path) -> None:
    """Release binds and delete the working tree."""
    if not tree.exists():
        return
    release_system_resources(tree)
    leftover = active_binds(tree)
    for mountpoint in leftover:
        mount.release_mount(mountpoint)
    log.info(f"Removing working tree {tree}")
    shutil.rmtree(tree)


INITIAL_NOTES_TITLE = "Initial customization"
ADDITIONAL_NOTES_TITLE = "Additional changes"


def record_notes(store, variant, prompter, first: bool) -> list[str]:
    """Ask the operator what was changed and append it to the history log.

    The first session of a variant always asks; later sessions offer it
    with a y/N question. Input ends at the first empty line.

    Returns:
        The recorded lines (empty when nothing was recorded)
    """
    if first:
        title = INITIAL_NOTES_TITLE
        prompter.show("Describe the customizations you made (empty line to finish):")
    else:
        if not prompter.ask_yes_no("Document the changes made in this session?", default=False):
            return []
        title = ADDITIONAL_NOTES_TITLE
        prompter.show("Describe the additional changes (empty line to finish):")
    lines = prompter.read_multiline()
    if not lines:
        return []
    store.append_history(variant, title, [f"  - {line}" for line in lines])
    log.info(f"Recorded {len(lines)} note line(s) in {variant.history_path.name}")
    return lines


def remove_work_location(session: SessionState, temp_dir: Path | None = None) -> None:
    """Remove the working tree, and its parent unless that is the variant or temp dir."""
    teardown_tree(session.extract_dir)
    parent = session.extract_dir.parent
    keep = {session.variant_dir.resolve()}
    if temp_dir is not None:
        keep.add(Path(temp_dir).resolve())
    if parent.exists() and parent.resolve() not in keep:
        log.info(f"Removing work directory {parent}")
        shutil.rmtree(parent)
