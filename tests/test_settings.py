"""
Tests for custom_live.config.settings module.

This test suite covers:
- Settings loading
- Merging a partial file with defaults
- Tolerating corrupted settings files
- Variants directory resolution order
- Architecture-dependent squashfs and GRUB defaults
"""

import json

import pytest

from custom_live.config import settings


@pytest.fixture
def settings_file(tmp_path, monkeypatch):
    path = tmp_path / "config" / "settings.json"
    monkeypatch.setattr("custom_live.config.settings.SETTINGS_PATH", path)
    return path


class TestLoadSettings:
    """Tests for load_settings() function."""

    def test_defaults_when_no_file(self, settings_file):
        settings.settings_store.values = {}
        settings.load_settings()

        assert settings.get_setting("live_reserve_gb") == settings.DEFAULT_LIVE_RESERVE_GB
        assert settings.get_setting("live_label") == "DEBIANLINUX"

    def test_merges_with_defaults(self, settings_file):
        settings_file.parent.mkdir(parents=True)
        settings_file.write_text(json.dumps({"boot_locale": "en_GB.UTF-8"}))

        settings.load_settings()

        assert settings.get_setting("boot_locale") == "en_GB.UTF-8"
        assert settings.get_setting("boot_keyboard_layout") == "de"

    def test_corrupted_file_keeps_defaults(self, settings_file):
        settings_file.parent.mkdir(parents=True)
        settings_file.write_text("{not json")

        settings.load_settings()

        assert settings.get_setting("grub_timeout") == 5

    def test_non_dict_is_ignored(self, settings_file):
        settings_file.parent.mkdir(parents=True)
        settings_file.write_text(json.dumps(["live_reserve_gb", 8]))

        settings.load_settings()

        assert settings.get_setting("live_reserve_gb") == settings.DEFAULT_LIVE_RESERVE_GB


class TestGetInt:
    """Tests for get_int()."""

    def test_get_int_falls_back_on_garbage(self, default_settings):
        default_settings["grub_timeout"] = "soon"

        assert settings.get_int("grub_timeout", 5) == 5


class TestVariantsDir:
    """Tests for get_variants_dir()."""

    def test_environment_wins(self, tmp_path, monkeypatch, default_settings):
        monkeypatch.setenv("CUSTOM_LIVE_VARIANTS_DIR", str(tmp_path / "env"))
        default_settings["variants_dir"] = str(tmp_path / "configured")

        assert settings.get_variants_dir() == tmp_path / "env"

    def test_configured_directory(self, tmp_path, monkeypatch, default_settings):
        monkeypatch.delenv("CUSTOM_LIVE_VARIANTS_DIR", raising=False)
        default_settings["variants_dir"] = str(tmp_path / "configured")

        assert settings.get_variants_dir() == tmp_path / "configured"

    def test_current_directory(self, tmp_path, monkeypatch):
        monkeypatch.delenv("CUSTOM_LIVE_VARIANTS_DIR", raising=False)
        monkeypatch.chdir(tmp_path)

        assert settings.get_variants_dir() == tmp_path


class TestArchitectureDefaults:
    """Tests for get_bcj_filter() and get_grub_target()."""

    @pytest.mark.parametrize(
        "machine,bcj,target",
        [
            ("x86_64", "x86", "x86_64-efi"),
            ("aarch64", "arm64", "arm64-efi"),
            ("i686", "x86", "i386-efi"),
        ],
    )
    def test_by_machine(self, machine, bcj, target):
        assert settings.get_bcj_filter(machine) == bcj
        assert settings.get_grub_target(machine) == target

    def test_unknown_machine(self):
        assert settings.get_bcj_filter("riscv64") is None
        assert settings.get_grub_target("riscv64") == "x86_64-efi"

    def test_configured_values_win(self, default_settings):
        default_settings["squashfs_bcj_filter"] = "arm"
        default_settings["grub_target"] = "arm-efi"

        assert settings.get_bcj_filter("x86_64") == "arm"
        assert settings.get_grub_target("x86_64") == "arm-efi"
