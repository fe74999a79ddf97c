"""On-disk registry of variants.

Each variant is a directory below the variants root::

    <root>/<name>/
        VARIANT_INFO.txt                             history log (append-only)
        filesystem.squashfs.original-YYYYmmdd-HHMMSS backup of the ISO archive
        filesystem-custom.squashfs                   current custom archive
        filesystem-custom.squashfs.vYYYYmmdd-HHMMSS  versions (append-only)
        filesystem-custom.squashfs.fresh-...         archive set aside by "fresh"
        .custom_live_state                           only while active
        work/                                        default working location

Backups and versions are created with names that never collide and are never
deleted by this module. Only the current custom archive is replaced in place.
"""

from __future__ import annotations

import os
import shutil
from datetime import datetime
from pathlib import Path
from typing import Callable

from custom_live.domain.lifecycle import (
    LifecycleState,
    VariantSnapshot,
    derive_lifecycle,
)
from custom_live.domain.models import (
    FRESH_START_BACKUP_PREFIX,
    ORIGINAL_BACKUP_PREFIX,
    VERSIONED_BACKUP_PREFIX,
    ArtifactKind,
    HistoryHeader,
    SessionState,
    Variant,
    VariantStatus,
    is_valid_variant_name,
)
from custom_live.logging import EventLogger, LoggerFactory
from custom_live.storage import mount
from custom_live.storage.exceptions import (
    InvalidVariantNameError,
    VariantNotFoundError,
)
from custom_live.storage.ownership import InvokingUser, fix_ownership
from custom_live.storage.session_state import (
    delete_session_state,
    load_session_state,
    save_session_state,
)


log = LoggerFactory.for_store()

HISTORY_TITLE = "Custom Debian Live Variant Information"
HISTORY_LOG_TITLE = "Customizations Log:"
ENTRY_PREFIX = "["


class VariantStore:
    """Variant directories below ``root``, owned by ``user``."""

    def __init__(
        self,
        root: Path,
        user: InvokingUser,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.root = Path(root)
        self.user = user
        self.clock = clock

    # ------------------------------------------------------------------
    # Registry
    # ------------------------------------------------------------------

    def variant(self, name: str) -> Variant:
        if not is_valid_variant_name(name):
            raise InvalidVariantNameError(name)
        return Variant(name=name, path=self.root / name)

    def resolve(self, name: str, must_exist: bool = True) -> Variant:
        variant = self.variant(name)
        if must_exist and not variant.path.is_dir():
            raise VariantNotFoundError(name)
        return variant

    def list(self) -> list[tuple[Variant, VariantStatus]]:
        """Variant directories with their status; other directories are skipped."""
        if not self.root.is_dir():
            return []
        found = []
        for entry in sorted(self.root.iterdir()):
            if not entry.is_dir() or not is_valid_variant_name(entry.name):
                continue
            variant = Variant(name=entry.name, path=entry)
            status = variant.status()
            if status is not None:
                found.append((variant, status))
        return found

    def create(self, name: str) -> Variant:
        variant = self.variant(name)
        variant.path.mkdir(parents=True, exist_ok=True)
        fix_ownership(variant.path, self.user)
        log.info(f"Created variant directory: {variant.path}")
        return variant

    def make_dir(self, path: Path) -> Path:
        path.mkdir(parents=True, exist_ok=True)
        fix_ownership(path, self.user)
        return path

    # ------------------------------------------------------------------
    # Artifacts
    # ------------------------------------------------------------------

    def timestamp(self) -> str:
        return self.clock().strftime("%Y%m%d-%H%M%S")

    def _unique_path(self, variant: Variant, prefix: str) -> Path:
        base = variant.path / f"{prefix}{self.timestamp()}"
        candidate = base
        counter = 1
        while candidate.exists():
            candidate = base.with_name(f"{base.name}-{counter}")
            counter += 1
        return candidate

    def _record_artifact(self, variant: Variant, kind: ArtifactKind, path: Path) -> None:
        fix_ownership(path, self.user)
        EventLogger.log_artifact_created(
            log, variant.name, kind.value, str(path), path.stat().st_size
        )

    def find_reusable_backup(
        self, variant: Variant, base_image_name: str, archive_size: int
    ) -> Path | None:
        """Latest original backup taken from the same base image, if any.

        A backup matches when the history header (if present) names the same
        ISO and its size equals the archive inside the ISO.
        """
        header = self.read_history_header(variant)
        if header is not None and header.base_image != base_image_name:
            return None
        for backup in reversed(variant.original_backups()):
            if backup.stat().st_size == archive_size:
                return backup
        return None

    def new_original_backup_path(self, variant: Variant) -> Path:
        return self._unique_path(variant, ORIGINAL_BACKUP_PREFIX)

    def create_original_backup(self, variant: Variant, archive: Path) -> Path:
        target = self.new_original_backup_path(variant)
        log.info(f"Creating backup: {target}")
        shutil.copy2(archive, target)
        self._record_artifact(variant, ArtifactKind.ORIGINAL_BACKUP, target)
        return target

    def preserve_version(self, variant: Variant) -> Path:
        """Copy the current custom archive to a new versioned backup."""
        target = self._unique_path(variant, VERSIONED_BACKUP_PREFIX)
        log.info(f"Creating versioned backup of existing custom squashfs: {target}")
        shutil.copy2(variant.custom_archive_path, target)
        self._record_artifact(variant, ArtifactKind.VERSIONED_BACKUP, target)
        return target

    def preserve_fresh_start(self, variant: Variant) -> Path | None:
        """Move the custom archive aside before a fresh start.

        Returns:
            The fresh-start backup, or None if there was no custom archive
        """
        if not variant.has_custom_archive():
            return None
        target = self._unique_path(variant, FRESH_START_BACKUP_PREFIX)
        log.info(f"Setting existing custom squashfs aside: {target}")
        os.replace(variant.custom_archive_path, target)
        self._record_artifact(variant, ArtifactKind.FRESH_START_BACKUP, target)
        return target

    def reset_for_fresh_start(self, variant: Variant) -> Path | None:
        """Set the custom archive aside and forget the session.

        Original backups, versions and the history log are kept. The caller
        tears down the working tree before calling this.

        Returns:
            The fresh-start backup, or None if there was no custom archive
        """
        backup = self.preserve_fresh_start(variant)
        self.delete_session(variant)
        lines = [f"Previous custom archive kept as {backup.name}"] if backup else []
        if variant.history_path.exists():
            self.append_history(variant, "Fresh start", lines)
        return backup

    def install_custom_archive(self, variant: Variant, built: Path) -> Path:
        """Place a freshly built archive at the variant's current archive path."""
        target = variant.custom_archive_path
        if built != target:
            shutil.move(str(built), str(target))
        self._record_artifact(variant, ArtifactKind.CUSTOM_ARCHIVE, target)
        return target

    # ------------------------------------------------------------------
    # History log
    # ------------------------------------------------------------------

    def read_history_header(self, variant: Variant) -> HistoryHeader | None:
        path = variant.history_path
        if not path.is_file():
            return None
        fields: dict[str, str] = {}
        with path.open("r", encoding="utf-8", errors="replace") as handle:
            for line in handle:
                if line.startswith(HISTORY_LOG_TITLE):
                    break
                key, sep, value = line.partition(":")
                if sep:
                    fields[key.strip()] = value.strip()
        return HistoryHeader(
            name=fields.get("Variant Name", variant.name),
            created=fields.get("Created", ""),
            base_image=fields.get("Base ISO", ""),
        )

    def history_entry_count(self, variant: Variant) -> int:
        path = variant.history_path
        if not path.is_file():
            return 0
        in_log = False
        count = 0
        with path.open("r", encoding="utf-8", errors="replace") as handle:
            for line in handle:
                if line.startswith(HISTORY_LOG_TITLE):
                    in_log = True
                elif in_log and line.startswith(ENTRY_PREFIX) and "] " in line:
                    count += 1
        return count

    def _render_header(self, variant: Variant, base_image: str) -> str:
        return (
            f"{HISTORY_TITLE}\n"
            f"{'=' * (len(HISTORY_TITLE) + 1)}\n"
            "\n"
            f"Variant Name: {variant.name}\n"
            f"Created: {self.clock():%Y-%m-%d %H:%M:%S}\n"
            f"Base ISO: {base_image}\n"
            "\n"
            f"{HISTORY_LOG_TITLE}\n"
            f"{'-' * len(HISTORY_LOG_TITLE)}\n"
        )

    def ensure_history(self, variant: Variant, base_image: str) -> Path:
        """Create the history log with its header if it does not exist yet."""
        path = variant.history_path
        try:
            fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_EXCL, 0o644)
        except FileExistsError:
            return path
        try:
            os.write(fd, self._render_header(variant, base_image).encode("utf-8"))
            os.fsync(fd)
        finally:
            os.close(fd)
        fix_ownership(path, self.user)
        log.info(f"Created history log {path}")
        return path

    def append_history(
        self,
        variant: Variant,
        title: str,
        lines: list[str] | tuple[str, ...] = (),
        base_image: str | None = None,
    ) -> Path:
        """Append one timestamped block to the history log.

        The log is created with its header on first write. The block is
        written with a single append so existing content is never rewritten.
        """
        path = variant.history_path
        block = f"[{self.clock():%Y-%m-%d %H:%M}] {title}:\n"
        block += "".join(f"{line}\n" for line in lines)
        block += "\n"
        if not path.exists():
            block = self._render_header(variant, base_image or "unknown") + block
        fd = os.open(path, os.O_WRONLY | os.O_APPEND | os.O_CREAT, 0o644)
        try:
            os.write(fd, block.encode("utf-8"))
            os.fsync(fd)
        finally:
            os.close(fd)
        fix_ownership(path, self.user)
        log.debug(f"Appended '{title}' to {path}")
        return path

    # ------------------------------------------------------------------
    # Session state
    # ------------------------------------------------------------------

    def load_session(self, variant: Variant) -> SessionState:
        return load_session_state(variant.session_state_path)

    def save_session(self, variant: Variant, state: SessionState) -> SessionState:
        save_session_state(variant.session_state_path, state, self.user)
        return state

    def delete_session(self, variant: Variant) -> None:
        delete_session_state(variant.session_state_path)

    def snapshot(self, variant: Variant) -> VariantSnapshot:
        if not variant.has_session():
            return VariantSnapshot(
                has_session=False,
                has_archives=bool(variant.artifacts()),
            )
        state = self.load_session(variant)
        return VariantSnapshot(
            has_session=True,
            has_archives=bool(variant.artifacts()),
            binds_active=bool(mount.mountpoints_under(state.extract_dir)),
            ready=state.is_ready(),
        )

    def lifecycle(self, variant: Variant) -> LifecycleState:
        return derive_lifecycle(self.snapshot(variant))
