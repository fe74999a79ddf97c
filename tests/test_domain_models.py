"""Tests for domain models and the variant lifecycle."""

from pathlib import Path

import pytest

from custom_live.domain.lifecycle import (
    LifecycleState,
    VariantSnapshot,
    can_transition,
    check_transition,
    derive_lifecycle,
    next_step_hint,
)
from custom_live.domain.models import (
    GIB,
    PartitionLayout,
    SessionState,
    Variant,
    VariantStatus,
    is_valid_variant_name,
)
from custom_live.storage.exceptions import (
    InvalidPersistenceSizeError,
    LifecycleTransitionError,
)


def _session(tmp_path: Path, **overrides) -> SessionState:
    variant_dir = tmp_path / "ca-system"
    values = dict(
        work_dir=variant_dir / "work",
        extract_dir=variant_dir / "work" / "squashfs-root",
        backup_file=variant_dir / "filesystem.squashfs.original-20250115-103000",
        source_squashfs=variant_dir / "filesystem.squashfs.original-20250115-103000",
        iso_file=tmp_path / "debian.iso",
        vmlinuz_rel="live/vmlinuz",
        initrd_rel="live/initrd.img",
        variant_info_file=variant_dir / "VARIANT_INFO.txt",
        variant_name="ca-system",
        variant_dir=variant_dir,
    )
    values.update(overrides)
    return SessionState(**values)


class TestVariantName:
    """Tests for variant name validation."""

    @pytest.mark.parametrize("name", ["ca-system", "dev_tools", "Kiosk2"])
    def test_valid_names(self, name):
        assert is_valid_variant_name(name) is True

    @pytest.mark.parametrize("name", ["", "with space", "../etc", "a/b", "naïve"])
    def test_invalid_names(self, name):
        assert is_valid_variant_name(name) is False


class TestVariant:
    """Tests for Variant artifact discovery and status."""

    def test_status_none_for_empty_directory(self, tmp_path):
        variant = Variant("ca-system", tmp_path / "ca-system")
        variant.path.mkdir()

        assert variant.status() is None
        assert variant.artifacts() == []

    def test_completed_with_custom_archive(self, tmp_path):
        variant = Variant("ca-system", tmp_path)
        variant.custom_archive_path.write_bytes(b"x")

        assert variant.status() is VariantStatus.COMPLETED

    def test_active_when_session_file_present(self, tmp_path):
        variant = Variant("ca-system", tmp_path)
        variant.custom_archive_path.write_bytes(b"x")
        variant.session_state_path.write_text("")

        assert variant.status() is VariantStatus.ACTIVE

    def test_backups_sorted_by_timestamp(self, tmp_path):
        variant = Variant("ca-system", tmp_path)
        for name in (
            "filesystem-custom.squashfs.v20250116-090000",
            "filesystem-custom.squashfs.v20250115-090000",
            "filesystem.squashfs.original-20250115-080000",
        ):
            (tmp_path / name).write_bytes(b"x")

        assert [p.name for p in variant.versioned_backups()] == [
            "filesystem-custom.squashfs.v20250115-090000",
            "filesystem-custom.squashfs.v20250116-090000",
        ]
        assert len(variant.original_backups()) == 1


class TestSessionState:
    """Tests for the immutable session snapshot."""

    def test_mapping_round_trip_keeps_readiness(self, tmp_path):
        archive = tmp_path / "ca-system" / "filesystem-custom.squashfs"
        state = _session(tmp_path).mark_ready(archive)

        restored = SessionState.from_mapping(state.to_mapping())

        assert restored == state
        assert restored.to_mapping()["SQUASHFS_READY"] == "true"

    def test_from_mapping_names_missing_key(self, tmp_path):
        data = _session(tmp_path).to_mapping()
        del data["INITRD_REL"]

        with pytest.raises(KeyError) as excinfo:
            SessionState.from_mapping(data)
        assert excinfo.value.args[0] == "INITRD_REL"

    def test_is_ready_requires_existing_file(self, tmp_path):
        archive = tmp_path / "missing.squashfs"
        state = _session(tmp_path).mark_ready(archive)

        assert state.is_ready() is False
        archive.write_bytes(b"x")
        assert state.is_ready() is True

    def test_clear_ready_keeps_last_build(self, tmp_path):
        archive = tmp_path / "built.squashfs"
        state = _session(tmp_path).mark_ready(archive).clear_ready()

        assert state.squashfs_ready is False
        assert state.new_squashfs == archive

    def test_live_dir_from_kernel_path(self, tmp_path):
        assert _session(tmp_path).live_dir_rel == "live"
        assert _session(tmp_path, vmlinuz_rel="vmlinuz").live_dir_rel == ""

    def test_continued_from_custom(self, tmp_path):
        variant_dir = tmp_path / "ca-system"
        state = _session(
            tmp_path, source_squashfs=variant_dir / "filesystem-custom.squashfs"
        )

        assert state.continued_from_custom is True
        assert _session(tmp_path).continued_from_custom is False


class TestPartitionLayout:
    """Tests for the USB partition layout."""

    def test_32gib_device_default_layout(self):
        layout = PartitionLayout.for_device(32 * GIB)

        assert layout.persistence_gb == 28
        assert layout.esp_size_mib == 512
        assert layout.live_size_mib == 3072
        assert (layout.esp_start_mib, layout.esp_end_mib) == (1, 513)
        assert layout.live_end_mib == 3585
        assert layout.persistence_end_mib == 3585 + 28 * 1024

    def test_override_accepted_when_it_fits(self):
        layout = PartitionLayout.for_device(32 * GIB, "10")

        assert layout.persistence_gb == 10

    def test_empty_answer_uses_default(self):
        assert PartitionLayout.for_device(16 * GIB, "").persistence_gb == 12

    @pytest.mark.parametrize("value", ["abc", "0", "-3", "2.5"])
    def test_invalid_values_rejected(self, value):
        with pytest.raises(InvalidPersistenceSizeError):
            PartitionLayout.for_device(32 * GIB, value)

    def test_oversized_persistence_rejected(self):
        with pytest.raises(InvalidPersistenceSizeError) as excinfo:
            PartitionLayout.for_device(32 * GIB, 31)
        assert "does not fit" in str(excinfo.value)

    def test_tiny_device_has_no_default(self):
        with pytest.raises(InvalidPersistenceSizeError):
            PartitionLayout.for_device(4 * GIB)


class TestLifecycle:
    """Tests for lifecycle derivation and transitions."""

    @pytest.mark.parametrize(
        "snapshot,expected",
        [
            (VariantSnapshot(False, False), LifecycleState.NOT_STARTED),
            (VariantSnapshot(False, True), LifecycleState.WRITTEN),
            (VariantSnapshot(True, True), LifecycleState.EXTRACTED),
            (VariantSnapshot(True, True, binds_active=True), LifecycleState.IN_SESSION),
            (VariantSnapshot(True, True, binds_active=True, ready=True), LifecycleState.RECOMPRESSED),
        ],
    )
    def test_derive_lifecycle(self, snapshot, expected):
        assert derive_lifecycle(snapshot) is expected

    def test_written_only_allows_new_extraction(self):
        assert can_transition(LifecycleState.WRITTEN, LifecycleState.EXTRACTED)
        assert not can_transition(LifecycleState.WRITTEN, LifecycleState.RECOMPRESSED)

    def test_cannot_write_without_recompression(self):
        with pytest.raises(LifecycleTransitionError) as excinfo:
            check_transition("ca-system", LifecycleState.EXTRACTED, LifecycleState.WRITTEN)
        assert "ca-system" in str(excinfo.value)

    def test_every_state_has_a_hint(self):
        for state in LifecycleState:
            assert next_step_hint(state)
