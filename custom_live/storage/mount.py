"""Mount helpers: loop mounts, bind mounts and idempotent release.

All unmounting goes through :func:`release_mount`, which is a no-op when the
path is not mounted. Callers never suppress unmount failures themselves.

Functions:
    - is_mountpoint(): Check /proc/mounts for an active mountpoint
    - mountpoints_under(): List active mountpoints below a directory
    - mount_loop_image(): Mount a regular file read-only via a loop device
    - loop_mount(): Context manager around mount_loop_image/release_mount
    - mount_partition(): Mount a block device partition
    - bind_mount(): Bind-mount a host directory into a tree
    - release_mount(): Unmount if mounted, lazily as a last resort
"""

from __future__ import annotations

import os
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator

from custom_live.logging import LoggerFactory
from custom_live.storage.commands import run_command
from custom_live.storage.exceptions import CommandError, MountError


log = LoggerFactory.for_system()

PROC_MOUNTS = "/proc/mounts"


def _decode_mount_field(value: str) -> str:
    # /proc/mounts escapes whitespace as octal sequences
    return (
        value.replace("\\040", " ")
        .replace("\\011", "\t")
        .replace("\\012", "\n")
        .replace("\\134", "\\")
    )


def _active_mountpoints() -> list[str]:
    try:
        with open(PROC_MOUNTS, "r", encoding="utf-8") as mounts_file:
            mountpoints = []
            for line in mounts_file:
                parts = line.split()
                if len(parts) > 1:
                    mountpoints.append(_decode_mount_field(parts[1]))
            return mountpoints
    except FileNotFoundError:
        return []


def is_mountpoint(path: Path | str) -> bool:
    """Check if a path is currently an active mountpoint."""
    target = os.path.realpath(str(path))
    if target in _active_mountpoints():
        return True
    if not os.path.exists(PROC_MOUNTS):
        return os.path.ismount(target)
    return False


def mountpoints_under(root: Path | str) -> list[str]:
    """Return active mountpoints at or below ``root``, deepest first."""
    base = os.path.realpath(str(root))
    prefix = base.rstrip("/") + "/"
    found = [
        mp for mp in _active_mountpoints() if mp == base or mp.startswith(prefix)
    ]
    return sorted(set(found), key=len, reverse=True)


def mount_loop_image(image: Path, mountpoint: Path) -> None:
    mountpoint.mkdir(parents=True, exist_ok=True)
    try:
        run_command(["mount", "-o", "loop,ro", str(image), str(mountpoint)])
    except CommandError as error:
        raise MountError(f"Failed to mount {image} at {mountpoint}: {error.stderr.strip()}") from error
    log.debug(f"Mounted {image} at {mountpoint}")


@contextmanager
def loop_mount(image: Path, mountpoint: Path) -> Iterator[Path]:
    """Mount ``image`` read-only for the duration of the block.

    The mountpoint directory is removed again when it is empty afterwards.
    """
    mount_loop_image(image, mountpoint)
    try:
        yield mountpoint
    finally:
        release_mount(mountpoint)
        try:
            mountpoint.rmdir()
        except OSError:
            log.debug(f"Leaving mountpoint directory {mountpoint} in place")


def mount_partition(partition: str, mountpoint: Path) -> None:
    if not partition.startswith("/dev/"):
        raise ValueError(f"Invalid partition path: {partition}")
    mountpoint.mkdir(parents=True, exist_ok=True)
    try:
        run_command(["mount", partition, str(mountpoint)])
    except CommandError as error:
        raise MountError(
            f"Failed to mount {partition} at {mountpoint}: {error.stderr.strip()}"
        ) from error


def bind_mount(source: str, target: Path) -> bool:
    """Bind ``source`` onto ``target`` unless already mounted.

    Returns:
        True if a new mount was made, False if it was already active
    """
    if is_mountpoint(target):
        log.debug(f"{target} already mounted, skipping bind")
        return False
    target.mkdir(parents=True, exist_ok=True)
    try:
        run_command(["mount", "--bind", source, str(target)])
    except CommandError as error:
        raise MountError(f"Failed to bind {source} to {target}: {error.stderr.strip()}") from error
    return True


def release_mount(path: Path | str) -> bool:
    """Unmount ``path`` if it is mounted.

    Idempotent: an unmounted path is not an error. A busy mount is retried
    lazily; if it is still mounted afterwards a MountError is raised.

    Returns:
        True if something was unmounted
    """
    if not is_mountpoint(path):
        return False
    result = run_command(["umount", str(path)], check=False)
    if result.returncode == 0 and not is_mountpoint(path):
        log.debug(f"Unmounted {path}")
        return True
    log.warning(f"umount {path} failed, retrying lazily")
    run_command(["umount", "-l", str(path)], check=False)
    if is_mountpoint(path):
        raise MountError(f"Failed to unmount {path}")
    return True
