"""Tests for storage/exceptions.py - hierarchy and exit codes."""

import pytest

from custom_live.storage.exceptions import (
    BaseImageError,
    BootloaderError,
    CommandError,
    CustomLiveError,
    InvalidChoiceError,
    InvalidVariantNameError,
    LifecycleTransitionError,
    LiveBindsError,
    MissingToolError,
    PreconditionError,
    StateError,
    StepFailure,
    UserAbort,
    WorkingTreeError,
)


class TestExitCodes:
    """Each family maps onto one process exit status."""

    @pytest.mark.parametrize(
        "error",
        [
            InvalidVariantNameError("bad name"),
            BaseImageError("/isos/x.iso", "not found"),
            MissingToolError("rsync"),
            WorkingTreeError("/w/squashfs-root", "not found"),
            LiveBindsError("/w/squashfs-root", ["/w/squashfs-root/proc"]),
        ],
    )
    def test_precondition_and_state_errors_exit_1(self, error):
        assert isinstance(error, (PreconditionError, StateError))
        assert error.exit_code == 1

    @pytest.mark.parametrize(
        "error",
        [CommandError(["parted"], 1), BootloaderError("grub-install failed")],
    )
    def test_step_failures_exit_2(self, error):
        assert isinstance(error, StepFailure)
        assert error.exit_code == 2

    def test_user_abort_carries_exit_code(self):
        assert UserAbort().exit_code == 0
        assert UserAbort("Aborted.", exit_code=1).exit_code == 1

    def test_all_derive_from_base(self):
        assert issubclass(UserAbort, CustomLiveError)
        assert issubclass(StepFailure, CustomLiveError)


class TestMessages:
    """Messages carry the details an operator needs."""

    def test_command_error_names_program(self):
        error = CommandError(["mkfs.ext4", "-F", "/dev/sdb2"], 1, "  in use\n")

        assert error.step == "mkfs.ext4"
        assert str(error) == "Command failed (1): mkfs.ext4 -F /dev/sdb2: in use"

    def test_step_override(self):
        assert BootloaderError("x").step == "bootloader"
        assert BootloaderError("x", step="grub-config").step == "grub-config"

    def test_invalid_choice_lists_allowed(self):
        error = InvalidChoiceError("4", ["1", "2", "3"])

        assert "expected one of: 1, 2, 3" in str(error)

    def test_working_tree_error_suggests_restart(self):
        assert "start a new extraction" in str(WorkingTreeError("/w", "not found"))

    def test_transition_error(self):
        error = LifecycleTransitionError("ca-system", "NOT_EXISTS", "IN_SESSION")

        assert "NOT_EXISTS to IN_SESSION" in str(error)
