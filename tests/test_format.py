"""Tests for storage/format.py - partitioning and formatting the USB device.

This test suite covers:
- Wiping signatures and the start of the device
- GPT layout commands (EFI, live system, persistence)
- Partition node naming for sd/nvme/mmcblk devices
- Waiting for partition nodes after re-reading the table
- Filesystem labels
- Error handling (every failing step raises FormatOperationError)
"""

from unittest.mock import Mock, patch

import pytest

from custom_live.domain.models import GIB, PartitionLayout
from custom_live.storage import format as format_module
from custom_live.storage.exceptions import CommandError, FormatOperationError


class TestPartitionNodes:
    """Tests for partition_nodes()."""

    def test_sd_device(self):
        nodes = format_module.partition_nodes("/dev/sdb")

        assert (nodes.efi, nodes.live, nodes.persistence) == ("/dev/sdb1", "/dev/sdb2", "/dev/sdb3")

    def test_nvme_and_mmc_devices(self):
        assert format_module.partition_nodes("/dev/nvme1n1").efi == "/dev/nvme1n1p1"
        assert format_module.partition_nodes("/dev/mmcblk0").persistence == "/dev/mmcblk0p3"


class TestWipeDevice:
    """Tests for wipe_device()."""

    @patch("custom_live.storage.format.run_command")
    def test_wipe_commands(self, mock_run):
        format_module.wipe_device("/dev/sdb")

        assert mock_run.call_args_list[0].args[0] == ["wipefs", "-a", "/dev/sdb"]
        assert mock_run.call_args_list[1].args[0] == [
            "dd", "if=/dev/zero", "of=/dev/sdb", "bs=1M", "count=10", "status=none",
        ]

    @patch("custom_live.storage.format.run_command")
    def test_wipe_failure(self, mock_run):
        mock_run.side_effect = CommandError(["wipefs"], 1, "Device busy")

        with pytest.raises(FormatOperationError) as excinfo:
            format_module.wipe_device("/dev/sdb")
        assert excinfo.value.device == "/dev/sdb"
        assert "Device busy" in str(excinfo.value)


class TestCreatePartitions:
    """Tests for create_partitions()."""

    @patch("custom_live.storage.format.run_command")
    def test_gpt_layout_for_32gib(self, mock_run):
        layout = PartitionLayout.for_device(32 * GIB)

        nodes = format_module.create_partitions("/dev/sdb", layout)

        assert [c.args[0] for c in mock_run.call_args_list] == [
            ["parted", "-s", "/dev/sdb", "mklabel", "gpt"],
            ["parted", "-s", "/dev/sdb", "mkpart", "primary", "fat32", "1MiB", "513MiB"],
            ["parted", "-s", "/dev/sdb", "set", "1", "esp", "on"],
            ["parted", "-s", "/dev/sdb", "mkpart", "primary", "ext4", "513MiB", "3585MiB"],
            ["parted", "-s", "/dev/sdb", "mkpart", "primary", "ext4", "3585MiB", "32257MiB"],
        ]
        assert nodes.persistence == "/dev/sdb3"

    @patch("custom_live.storage.format.run_command")
    def test_stops_at_first_failure(self, mock_run):
        mock_run.side_effect = [Mock(), CommandError(["parted"], 1, "unrecognised disk label")]

        with pytest.raises(FormatOperationError):
            format_module.create_partitions("/dev/sdb", PartitionLayout.for_device(32 * GIB))
        assert mock_run.call_count == 2


class TestSettlePartitions:
    """Tests for settle_partitions()."""

    @patch("custom_live.storage.format.os.path.exists", return_value=True)
    @patch("custom_live.storage.format.shutil.which", return_value="/usr/bin/tool")
    @patch("custom_live.storage.format.run_command")
    def test_rereads_table(self, mock_run, mock_which, mock_exists):
        format_module.settle_partitions("/dev/sdb", format_module.partition_nodes("/dev/sdb"))

        commands = [c.args[0] for c in mock_run.call_args_list]
        assert ["partprobe", "/dev/sdb"] in commands
        assert ["udevadm", "settle", "--timeout=10"] in commands

    @patch("custom_live.storage.format.time.sleep")
    @patch("custom_live.storage.format.os.path.exists", return_value=False)
    @patch("custom_live.storage.format.shutil.which", return_value=None)
    @patch("custom_live.storage.format.run_command")
    def test_missing_nodes_time_out(self, mock_run, mock_which, mock_exists, mock_sleep):
        with pytest.raises(FormatOperationError) as excinfo:
            format_module.settle_partitions(
                "/dev/sdb", format_module.partition_nodes("/dev/sdb"), timeout=0
            )
        assert "/dev/sdb3" in str(excinfo.value)
        mock_run.assert_not_called()


class TestFormatPartitions:
    """Tests for format_partitions()."""

    @patch("custom_live.storage.format.run_command")
    def test_labels(self, mock_run):
        format_module.format_partitions("/dev/sdb", format_module.partition_nodes("/dev/sdb"))

        assert [c.args[0] for c in mock_run.call_args_list] == [
            ["mkfs.vfat", "-F", "32", "-n", "UEFI", "/dev/sdb1"],
            ["mkfs.ext4", "-F", "-L", "DEBIANLINUX", "/dev/sdb2"],
            ["mkfs.ext4", "-F", "-L", "persistence", "/dev/sdb3"],
        ]

    @patch("custom_live.storage.format.run_command")
    def test_mkfs_failure(self, mock_run):
        mock_run.side_effect = CommandError(["mkfs.vfat"], 1)

        with pytest.raises(FormatOperationError) as excinfo:
            format_module.format_partitions("/dev/sdb", format_module.partition_nodes("/dev/sdb"))
        assert excinfo.value.step == "format"
