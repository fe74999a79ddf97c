"""squashfs-tools wrappers (unsquashfs / mksquashfs)."""

from __future__ import annotations

from pathlib import Path

from custom_live.config import settings
from custom_live.logging import LoggerFactory
from custom_live.storage.commands import run_streaming
from custom_live.storage.exceptions import CommandError, CompressionError, ExtractionError


log = LoggerFactory.for_system()


def build_unsquashfs_command(archive: Path, destination: Path) -> list[str]:
    return ["unsquashfs", "-d", str(destination), str(archive)]


def build_mksquashfs_command(source_tree: Path, archive: Path) -> list[str]:
    """Full rebuild with xz, an arch-tuned BCJ filter, 1 MiB blocks, no xattrs."""
    command = [
        "mksquashfs",
        str(source_tree),
        str(archive),
        "-comp",
        settings.get_setting("squashfs_compressor", "xz"),
    ]
    bcj = settings.get_bcj_filter()
    if bcj:
        command.extend(["-Xbcj", bcj])
    command.extend(
        [
            "-b",
            settings.get_setting("squashfs_block_size", settings.DEFAULT_SQUASHFS_BLOCK_SIZE),
            "-no-xattrs",
            "-noappend",
        ]
    )
    return command


def extract_archive(archive: Path, destination: Path) -> None:
    """Decompress ``archive`` into ``destination`` (which must not exist)."""
    log.info(f"Extracting squashfs (this may take several minutes): {archive}")
    try:
        run_streaming(build_unsquashfs_command(archive, destination))
    except CommandError as error:
        raise ExtractionError(f"unsquashfs failed for {archive}: {error}") from error


def compress_tree(source_tree: Path, archive: Path) -> None:
    log.info(f"Recompressing squashfs (this may take 5-10 minutes): {archive}")
    try:
        run_streaming(build_mksquashfs_command(source_tree, archive))
    except CommandError as error:
        raise CompressionError(f"mksquashfs failed for {source_tree}: {error}") from error
