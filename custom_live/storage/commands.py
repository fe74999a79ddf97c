"""External command execution.

Every tool the build drives (mount, unsquashfs, mksquashfs, parted, mkfs,
grub-install, rsync) goes through :func:`run_command` so that command lines
are logged uniformly and failures surface as :class:`CommandError`.
"""

from __future__ import annotations

import os
import shutil
import subprocess
from typing import Iterable, Mapping, Sequence

from custom_live.logging import LoggerFactory
from custom_live.storage.exceptions import (
    CommandError,
    MissingPrivilegeError,
    MissingToolError,
)


log = LoggerFactory.for_system()
output_log = LoggerFactory.for_command()

INSTALL_HINTS: Mapping[str, str] = {
    "unsquashfs": "sudo apt install squashfs-tools",
    "mksquashfs": "sudo apt install squashfs-tools",
    "mkfs.vfat": "sudo apt install dosfstools",
    "mkfs.ext4": "sudo apt install e2fsprogs",
    "grub-install": "sudo apt install grub-efi-amd64-bin grub2-common",
    "rsync": "sudo apt install rsync",
    "parted": "sudo apt install parted",
    "wipefs": "sudo apt install util-linux",
    "lsblk": "sudo apt install util-linux",
}

EXTRACT_TOOLS = ("mount", "umount", "unsquashfs", "chroot")
WRITE_TOOLS = (
    "mount",
    "umount",
    "mksquashfs",
    "parted",
    "wipefs",
    "mkfs.vfat",
    "mkfs.ext4",
    "grub-install",
    "rsync",
    "lsblk",
)


def run_command(
    command: Sequence[str],
    check: bool = True,
    log_output: bool = True,
) -> subprocess.CompletedProcess:
    """Run a command, capturing output.

    With ``log_output`` off, captured output is only logged when the command
    fails.

    Raises:
        CommandError: if ``check`` is set and the command exits non-zero
    """
    argv = list(command)
    log.debug(f"Running command: {' '.join(argv)}")
    result = subprocess.run(argv, text=True, capture_output=True)
    if result.stdout and (log_output or result.returncode != 0):
        output_log.trace(f"stdout: {result.stdout.strip()}")
    if result.stderr and (log_output or result.returncode != 0):
        output_log.trace(f"stderr: {result.stderr.strip()}")
    if check and result.returncode != 0:
        raise CommandError(argv, result.returncode, result.stderr or result.stdout or "")
    return result


def run_streaming(command: Sequence[str], check: bool = True) -> int:
    """Run a long command with its output going straight to the terminal.

    Used for unsquashfs, mksquashfs and rsync, whose progress bars are the
    only feedback the operator gets during multi-minute steps.
    """
    argv = list(command)
    log.debug(f"Running command: {' '.join(argv)}")
    returncode = subprocess.call(argv)
    if check and returncode != 0:
        raise CommandError(argv, returncode)
    return returncode


def run_interactive(command: Sequence[str]) -> int:
    """Hand the terminal to an interactive program and wait for it to exit."""
    argv = list(command)
    log.debug(f"Starting interactive command: {' '.join(argv)}")
    returncode = subprocess.call(argv)
    log.debug(f"Interactive command exited with {returncode}")
    return returncode


def require_root() -> None:
    if os.geteuid() != 0:
        raise MissingPrivilegeError()


def require_tools(tools: Iterable[str]) -> None:
    for tool in tools:
        if shutil.which(tool) is None:
            raise MissingToolError(tool, INSTALL_HINTS.get(tool, ""))
