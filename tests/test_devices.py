"""Tests for storage/devices.py - block device queries and validation."""

import json
import stat
from unittest.mock import Mock, patch

import pytest

from custom_live.storage import devices
from custom_live.storage.exceptions import InvalidDeviceError


class TestHumanSize:
    """Tests for human_size()."""

    def test_units(self):
        assert devices.human_size(None) == "0B"
        assert devices.human_size(512) == "512.0B"
        assert devices.human_size(1536) == "1.5KB"
        assert devices.human_size(32 * 1024**3) == "32.0GB"


class TestValidateBlockDevice:
    """Tests for validate_block_device()."""

    def test_requires_dev_prefix(self):
        with pytest.raises(InvalidDeviceError) as excinfo:
            devices.validate_block_device("sdb")
        assert "/dev/" in str(excinfo.value)

    @patch("custom_live.storage.devices.os.stat")
    def test_regular_file_rejected(self, mock_stat):
        mock_stat.return_value = Mock(st_mode=stat.S_IFREG | 0o644)

        with pytest.raises(InvalidDeviceError):
            devices.validate_block_device("/dev/sdb")

    @patch("custom_live.storage.devices.os.stat")
    def test_block_device_accepted(self, mock_stat):
        mock_stat.return_value = Mock(st_mode=stat.S_IFBLK | 0o660)

        devices.validate_block_device("/dev/sdb")

    def test_missing_device(self):
        assert devices.is_block_device("/dev/does-not-exist-xyz") is False


class TestSystemDiskGuard:
    """Tests for looks_like_system_disk()."""

    @pytest.mark.parametrize("device", ["/dev/sda", "/dev/nvme0n1"])
    def test_guarded_names(self, device):
        assert devices.looks_like_system_disk(device) is True

    @pytest.mark.parametrize("device", ["/dev/sdb", "/dev/nvme1n1", "/dev/sda1", "/dev/mmcblk0"])
    def test_other_names(self, device):
        assert devices.looks_like_system_disk(device) is False


class TestDeviceSize:
    """Tests for get_device_size_bytes()."""

    @patch("custom_live.storage.devices.run_command")
    def test_lsblk_size(self, mock_run):
        mock_run.return_value = Mock(returncode=0, stdout="32017047552\n")

        assert devices.get_device_size_bytes("/dev/sdb") == 32017047552
        mock_run.assert_called_once_with(
            ["lsblk", "-b", "-d", "-n", "-o", "SIZE", "/dev/sdb"], check=False
        )

    @patch("custom_live.storage.devices.shutil.which", return_value="/sbin/blockdev")
    @patch("custom_live.storage.devices.run_command")
    def test_blockdev_fallback(self, mock_run, mock_which):
        mock_run.side_effect = [
            Mock(returncode=1, stdout=""),
            Mock(returncode=0, stdout="16008609792\n"),
        ]

        assert devices.get_device_size_bytes("/dev/sdb") == 16008609792

    @patch("custom_live.storage.devices.shutil.which", return_value=None)
    @patch("custom_live.storage.devices.run_command")
    def test_unknown_size(self, mock_run, mock_which):
        mock_run.return_value = Mock(returncode=1, stdout="")

        with pytest.raises(InvalidDeviceError):
            devices.get_device_size_bytes("/dev/sdb")


class TestDeviceMountpoints:
    """Tests for device_mountpoints() and unmount_device_partitions()."""

    LSBLK = json.dumps(
        {
            "blockdevices": [
                {
                    "name": "sdb",
                    "mountpoint": None,
                    "children": [
                        {"name": "sdb1", "mountpoint": "/media/user/UEFI"},
                        {"name": "sdb2", "mountpoint": None},
                        {"name": "sdb3", "mountpoint": "/media/user/persistence"},
                    ],
                }
            ]
        }
    )

    @patch("custom_live.storage.devices.run_command")
    def test_collects_child_mountpoints(self, mock_run):
        mock_run.return_value = Mock(returncode=0, stdout=self.LSBLK)

        assert devices.device_mountpoints("/dev/sdb") == [
            "/media/user/UEFI",
            "/media/user/persistence",
        ]
        mock_run.assert_called_once_with(
            ["lsblk", "-J", "-o", "NAME,MOUNTPOINT", "/dev/sdb"], log_output=False
        )

    @patch("custom_live.storage.devices.run_command")
    def test_invalid_json(self, mock_run):
        mock_run.return_value = Mock(returncode=0, stdout="not json")

        assert devices.device_mountpoints("/dev/sdb") == []

    @patch("custom_live.storage.devices.release_mount", return_value=True)
    @patch("custom_live.storage.devices.is_mountpoint", return_value=True)
    @patch("custom_live.storage.devices.run_command")
    def test_unmounts_each_partition(self, mock_run, mock_is_mount, mock_release):
        mock_run.return_value = Mock(returncode=0, stdout=self.LSBLK)

        released = devices.unmount_device_partitions("/dev/sdb")

        assert released == ["/media/user/UEFI", "/media/user/persistence"]
        assert mock_release.call_count == 2
