"""Domain model for variants, artifacts and session state.

These objects replace the loose path variables that flow between the
extract, session, recompress and write steps. SessionState is immutable:
every step that changes it returns a new snapshot.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, replace
from enum import Enum
from pathlib import Path
from typing import Mapping

from custom_live.storage.exceptions import InvalidPersistenceSizeError


VARIANT_NAME_PATTERN = re.compile(r"^[A-Za-z0-9_-]+$")

HISTORY_FILENAME = "VARIANT_INFO.txt"
SESSION_STATE_FILENAME = ".custom_live_state"
CUSTOM_ARCHIVE_NAME = "filesystem-custom.squashfs"
ROOTFS_ARCHIVE_NAME = "filesystem.squashfs"
ORIGINAL_BACKUP_PREFIX = "filesystem.squashfs.original-"
VERSIONED_BACKUP_PREFIX = "filesystem-custom.squashfs.v"
FRESH_START_BACKUP_PREFIX = "filesystem-custom.squashfs.fresh-"
WORK_DIRNAME = "work"
ISO_MOUNT_DIRNAME = "iso-mount"
EXTRACT_DIRNAME = "squashfs-root"

MIB = 1024**2
GIB = 1024**3


# ==============================================================================
# Variant Domain
# ==============================================================================


class VariantStatus(Enum):
    """Classification of a directory in the variants root."""

    ACTIVE = "active"  # session state present
    COMPLETED = "completed"  # archives present, no session


class BranchChoice(Enum):
    """Operator decision when extracting into an existing variant."""

    FRESH = "fresh"
    CONTINUE = "continue"
    ABORT = "abort"


class ArtifactKind(Enum):
    ORIGINAL_BACKUP = "original backup"
    CUSTOM_ARCHIVE = "custom archive"
    VERSIONED_BACKUP = "versioned backup"
    FRESH_START_BACKUP = "fresh-start backup"


def is_valid_variant_name(name: str) -> bool:
    return bool(name) and VARIANT_NAME_PATTERN.match(name) is not None


@dataclass(frozen=True)
class Artifact:
    kind: ArtifactKind
    path: Path

    @property
    def size_bytes(self) -> int:
        return self.path.stat().st_size


@dataclass(frozen=True)
class Variant:
    """A named customization project stored in its own directory."""

    name: str
    path: Path

    @property
    def history_path(self) -> Path:
        return self.path / HISTORY_FILENAME

    @property
    def session_state_path(self) -> Path:
        return self.path / SESSION_STATE_FILENAME

    @property
    def custom_archive_path(self) -> Path:
        return self.path / CUSTOM_ARCHIVE_NAME

    @property
    def default_work_dir(self) -> Path:
        return self.path / WORK_DIRNAME

    def has_session(self) -> bool:
        return self.session_state_path.is_file()

    def has_custom_archive(self) -> bool:
        return self.custom_archive_path.is_file()

    def original_backups(self) -> list[Path]:
        """Original ISO archive backups, oldest first."""
        if not self.path.is_dir():
            return []
        return sorted(
            p for p in self.path.glob(f"{ORIGINAL_BACKUP_PREFIX}*") if p.is_file()
        )

    def versioned_backups(self) -> list[Path]:
        if not self.path.is_dir():
            return []
        return sorted(
            p for p in self.path.glob(f"{VERSIONED_BACKUP_PREFIX}*") if p.is_file()
        )

    def fresh_start_backups(self) -> list[Path]:
        if not self.path.is_dir():
            return []
        return sorted(
            p for p in self.path.glob(f"{FRESH_START_BACKUP_PREFIX}*") if p.is_file()
        )

    def artifacts(self) -> list[Artifact]:
        found = [Artifact(ArtifactKind.ORIGINAL_BACKUP, p) for p in self.original_backups()]
        if self.has_custom_archive():
            found.append(Artifact(ArtifactKind.CUSTOM_ARCHIVE, self.custom_archive_path))
        found.extend(
            Artifact(ArtifactKind.VERSIONED_BACKUP, p) for p in self.versioned_backups()
        )
        found.extend(
            Artifact(ArtifactKind.FRESH_START_BACKUP, p)
            for p in self.fresh_start_backups()
        )
        return found

    def status(self) -> VariantStatus | None:
        if self.has_session():
            return VariantStatus.ACTIVE
        if self.has_custom_archive() or self.original_backups():
            return VariantStatus.COMPLETED
        return None


@dataclass(frozen=True)
class HistoryHeader:
    name: str
    created: str
    base_image: str


# ==============================================================================
# Session State Domain
# ==============================================================================

# Field name -> key in the state file
SESSION_STATE_KEYS: dict[str, str] = {
    "work_dir": "WORK_DIR",
    "extract_dir": "EXTRACT_DIR",
    "backup_file": "BACKUP_FILE",
    "source_squashfs": "SOURCE_SQUASHFS",
    "iso_file": "ISO_FILE",
    "vmlinuz_rel": "VMLINUZ_REL",
    "initrd_rel": "INITRD_REL",
    "variant_info_file": "VARIANT_INFO_FILE",
    "variant_name": "VARIANT_NAME",
    "variant_dir": "VARIANT_DIR",
}
READY_KEY = "SQUASHFS_READY"
NEW_SQUASHFS_KEY = "NEW_SQUASHFS"


@dataclass(frozen=True)
class SessionState:
    """Everything needed to resume an active variant after any interruption."""

    work_dir: Path
    extract_dir: Path
    backup_file: Path
    source_squashfs: Path
    iso_file: Path
    vmlinuz_rel: str
    initrd_rel: str
    variant_info_file: Path
    variant_name: str
    variant_dir: Path
    squashfs_ready: bool = False
    new_squashfs: Path | None = None

    @property
    def continued_from_custom(self) -> bool:
        return self.source_squashfs == self.variant_dir / CUSTOM_ARCHIVE_NAME

    @property
    def live_dir_rel(self) -> str:
        """Directory of the kernel inside the ISO, where the archive belongs."""
        parent = Path(self.vmlinuz_rel).parent.as_posix()
        return "" if parent == "." else parent

    def is_ready(self) -> bool:
        """Recompression completed and its artifact is still on disk."""
        return (
            self.squashfs_ready
            and self.new_squashfs is not None
            and self.new_squashfs.is_file()
        )

    def mark_ready(self, archive: Path) -> SessionState:
        return replace(self, squashfs_ready=True, new_squashfs=archive)

    def clear_ready(self) -> SessionState:
        """Forget readiness but remember which archive was last built."""
        return replace(self, squashfs_ready=False)

    def to_mapping(self) -> dict[str, str]:
        data = {key: str(getattr(self, field)) for field, key in SESSION_STATE_KEYS.items()}
        if self.squashfs_ready:
            data[READY_KEY] = "true"
        if self.new_squashfs is not None:
            data[NEW_SQUASHFS_KEY] = str(self.new_squashfs)
        return data

    @classmethod
    def from_mapping(cls, data: Mapping[str, str]) -> SessionState:
        """Build a SessionState from parsed KEY=VALUE pairs.

        Raises:
            KeyError: naming the first required key that is missing
        """
        missing = [key for key in SESSION_STATE_KEYS.values() if not data.get(key)]
        if missing:
            raise KeyError(missing[0])
        new_squashfs = data.get(NEW_SQUASHFS_KEY)
        return cls(
            work_dir=Path(data["WORK_DIR"]),
            extract_dir=Path(data["EXTRACT_DIR"]),
            backup_file=Path(data["BACKUP_FILE"]),
            source_squashfs=Path(data["SOURCE_SQUASHFS"]),
            iso_file=Path(data["ISO_FILE"]),
            vmlinuz_rel=data["VMLINUZ_REL"],
            initrd_rel=data["INITRD_REL"],
            variant_info_file=Path(data["VARIANT_INFO_FILE"]),
            variant_name=data["VARIANT_NAME"],
            variant_dir=Path(data["VARIANT_DIR"]),
            squashfs_ready=data.get(READY_KEY, "").lower() == "true",
            new_squashfs=Path(new_squashfs) if new_squashfs else None,
        )


# ==============================================================================
# Media Domain
# ==============================================================================


@dataclass(frozen=True)
class PartitionLayout:
    """GPT layout written to the target: EFI, live system, persistence.

    All offsets are in MiB from the start of the device.
    """

    device_size_bytes: int
    persistence_gb: int
    esp_start_mib: int = 1
    esp_size_mib: int = 512
    live_size_mib: int = 3072

    @property
    def device_size_gb(self) -> int:
        return self.device_size_bytes // GIB

    @property
    def esp_end_mib(self) -> int:
        return self.esp_start_mib + self.esp_size_mib

    @property
    def live_end_mib(self) -> int:
        return self.esp_end_mib + self.live_size_mib

    @property
    def persistence_end_mib(self) -> int:
        return self.live_end_mib + self.persistence_gb * 1024

    @staticmethod
    def default_persistence_gb(device_size_bytes: int, reserve_gb: int = 4) -> int:
        return device_size_bytes // GIB - reserve_gb

    @classmethod
    def for_device(
        cls,
        device_size_bytes: int,
        persistence_gb: int | str | None = None,
        *,
        reserve_gb: int = 4,
        esp_size_mib: int = 512,
        live_size_mib: int = 3072,
    ) -> PartitionLayout:
        """Compute the layout, using device GiB minus ``reserve_gb`` by default.

        Raises:
            InvalidPersistenceSizeError: if the size is not a positive integer
                or the partitions would not fit on the device
        """
        if persistence_gb is None or str(persistence_gb).strip() == "":
            size = cls.default_persistence_gb(device_size_bytes, reserve_gb)
            raw = str(size)
        else:
            raw = str(persistence_gb).strip()
            try:
                size = int(raw)
            except ValueError:
                raise InvalidPersistenceSizeError(raw, "not a whole number of GB") from None
        if size <= 0:
            raise InvalidPersistenceSizeError(raw, "must be at least 1 GB")
        layout = cls(
            device_size_bytes=device_size_bytes,
            persistence_gb=size,
            esp_size_mib=esp_size_mib,
            live_size_mib=live_size_mib,
        )
        if layout.persistence_end_mib * MIB > device_size_bytes:
            raise InvalidPersistenceSizeError(
                raw, f"does not fit on a {layout.device_size_gb}GB device"
            )
        return layout
