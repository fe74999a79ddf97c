"""Custom exceptions for custom-live operations.

This module defines a hierarchy of exceptions so that the command line entry
points can decide how to report each failure and which exit code to use.

Exception Hierarchy:
    CustomLiveError (base)
        ├── PreconditionError          nothing has been touched yet
        │   ├── MissingPrivilegeError
        │   ├── MissingToolError
        │   ├── InvalidDeviceError
        │   ├── InvalidVariantNameError
        │   ├── VariantNotFoundError
        │   ├── BaseImageError
        │   ├── MissingAssetError
        │   ├── InvalidChoiceError
        │   └── InvalidPersistenceSizeError
        ├── StateError                 session state cannot be trusted
        │   ├── SessionStateError
        │   ├── WorkingTreeError
        │   ├── LifecycleTransitionError
        │   └── LiveBindsError
        ├── StepFailure                an external step failed
        │   ├── CommandError
        │   ├── MountError
        │   ├── ExtractionError
        │   ├── CompressionError
        │   ├── FormatOperationError
        │   └── BootloaderError
        └── UserAbort                  operator cancelled at a prompt

Usage:
    from custom_live.storage.exceptions import MissingAssetError

    if vmlinuz is None:
        raise MissingAssetError("vmlinuz*", iso_path)
"""

from __future__ import annotations

from typing import Sequence


class CustomLiveError(Exception):
    """Base exception for all custom-live operations."""

    exit_code = 1


class PreconditionError(CustomLiveError):
    """A requirement was not met before any side effect happened."""


class MissingPrivilegeError(PreconditionError):
    """The process does not run with root privileges."""

    def __init__(self) -> None:
        super().__init__("This command must be run as root")


class MissingToolError(PreconditionError):
    """A required external command is not installed."""

    def __init__(self, tool: str, hint: str = ""):
        self.tool = tool
        self.hint = hint
        msg = f"Required command '{tool}' not found"
        if hint:
            msg += f". Install with: {hint}"
        super().__init__(msg)


class InvalidDeviceError(PreconditionError):
    """Target is not a usable block device."""

    def __init__(self, device: str, reason: str):
        self.device = device
        self.reason = reason
        super().__init__(f"Invalid target device {device}: {reason}")


class InvalidVariantNameError(PreconditionError):
    """Variant name contains characters outside the safe set."""

    def __init__(self, name: str):
        self.name = name
        super().__init__(
            f"Invalid variant name '{name}': only letters, numbers, "
            f"hyphens and underscores are allowed"
        )


class VariantNotFoundError(PreconditionError):
    """Variant directory does not exist."""

    def __init__(self, name: str):
        self.name = name
        super().__init__(f"Variant '{name}' not found")


class BaseImageError(PreconditionError):
    """Base ISO is missing or unreadable."""

    def __init__(self, path: str, reason: str):
        self.path = path
        self.reason = reason
        super().__init__(f"Base image {path}: {reason}")


class MissingAssetError(PreconditionError):
    """A required file was not found inside the base image."""

    def __init__(self, pattern: str, image: str):
        self.pattern = pattern
        self.image = image
        super().__init__(f"Could not find {pattern} in {image}")


class InvalidChoiceError(PreconditionError):
    """Operator answered a prompt with an unsupported value."""

    def __init__(self, answer: str, allowed: Sequence[str]):
        self.answer = answer
        self.allowed = list(allowed)
        super().__init__(
            f"Invalid choice '{answer}' (expected one of: {', '.join(self.allowed)})"
        )


class InvalidPersistenceSizeError(PreconditionError):
    """Requested persistence partition does not fit the device."""

    def __init__(self, value: str, reason: str):
        self.value = value
        self.reason = reason
        super().__init__(f"Invalid persistence size '{value}': {reason}")


class StateError(CustomLiveError):
    """Session state is missing, corrupt or inconsistent with disk."""


class SessionStateError(StateError):
    """Session state file is missing or cannot be parsed."""

    def __init__(self, path: str, reason: str):
        self.path = path
        self.reason = reason
        super().__init__(f"Session state {path}: {reason}")


class WorkingTreeError(StateError):
    """Extracted tree is missing or structurally invalid."""

    def __init__(self, path: str, reason: str):
        self.path = path
        self.reason = reason
        super().__init__(
            f"Working tree {path} {reason}. "
            f"Run the extract command with the ISO to start a new extraction."
        )


class LifecycleTransitionError(StateError):
    """Requested operation is not valid for the variant's current state."""

    def __init__(self, variant: str, current: str, target: str):
        self.variant = variant
        self.current = current
        self.target = target
        super().__init__(
            f"Variant '{variant}' cannot move from {current} to {target}"
        )


class LiveBindsError(StateError):
    """System bind mounts are still active inside the working tree."""

    def __init__(self, tree: str, mountpoints: list[str]):
        self.tree = tree
        self.mountpoints = mountpoints
        super().__init__(
            f"Refusing to compress {tree}: still mounted at {', '.join(mountpoints)}"
        )


class StepFailure(CustomLiveError):
    """An external step failed; the step name is reported to the operator."""

    exit_code = 2
    step = "step"

    def __init__(self, message: str, step: str | None = None):
        if step is not None:
            self.step = step
        super().__init__(message)


class CommandError(StepFailure):
    """External command returned a non-zero exit status."""

    step = "command"

    def __init__(self, argv: Sequence[str], returncode: int, stderr: str = ""):
        self.argv = list(argv)
        self.returncode = returncode
        self.stderr = stderr
        message = f"Command failed ({returncode}): {' '.join(self.argv)}"
        if stderr:
            message += f": {stderr.strip()}"
        super().__init__(message, step=self.argv[0] if self.argv else None)


class MountError(StepFailure):
    """Mounting or unmounting failed."""

    step = "mount"


class ExtractionError(StepFailure):
    """Squashfs extraction did not produce a working tree."""

    step = "extract"


class CompressionError(StepFailure):
    """Squashfs compression did not produce an archive."""

    step = "recompress"


class FormatOperationError(StepFailure):
    """Partitioning or formatting the target device failed."""

    step = "format"

    def __init__(self, message: str, device: str | None = None):
        self.device = device
        super().__init__(message)


class BootloaderError(StepFailure):
    """Bootloader installation failed."""

    step = "bootloader"


class UserAbort(CustomLiveError):
    """Operator cancelled at a confirmation prompt."""

    def __init__(self, message: str = "Aborted.", exit_code: int = 0):
        self.exit_code = exit_code
        super().__init__(message)
