"""
Pytest configuration and shared fixtures for custom-live tests.

No test touches real mounts, devices or chroots: external commands and
mount helpers are patched, and every variant lives below ``tmp_path``.
"""

import os
import sys
from contextlib import contextmanager
from datetime import datetime, timedelta
from pathlib import Path
from typing import List
from unittest.mock import Mock

import pytest
from loguru import logger

from custom_live.config import settings
from custom_live.domain.models import SessionState
from custom_live.storage import mount, squashfs
from custom_live.storage.ownership import InvokingUser
from custom_live.storage.variant_store import VariantStore
from custom_live.ui.prompts import ConsolePrompter


ORIGINAL_ARCHIVE_BYTES = b"hsqs original root filesystem"


# ==============================================================================
# Global Isolation
# ==============================================================================


@pytest.fixture(autouse=True)
def default_settings():
    """Reset the settings store to defaults for every test."""
    settings.settings_store.values = dict(settings.DEFAULT_SETTINGS)
    yield settings.settings_store.values
    settings.settings_store.values = dict(settings.DEFAULT_SETTINGS)


@pytest.fixture(autouse=True)
def quiet_logging():
    """Keep loguru output to warnings on stderr between tests."""
    logger.remove()
    logger.configure(extra={"job_id": "-", "tags": [], "source": "TEST"})
    logger.add(sys.stderr, level="WARNING")
    yield
    logger.remove()


# ==============================================================================
# Store Fixtures
# ==============================================================================


class TickingClock:
    """Clock that advances one second per call so timestamps never repeat."""

    def __init__(self, start: datetime):
        self.current = start

    def __call__(self) -> datetime:
        value = self.current
        self.current += timedelta(seconds=1)
        return value


@pytest.fixture
def invoking_user() -> InvokingUser:
    return InvokingUser(name="tester", uid=os.getuid(), gid=os.getgid())


@pytest.fixture
def clock() -> TickingClock:
    return TickingClock(datetime(2025, 1, 15, 10, 30, 0))


@pytest.fixture
def variants_root(tmp_path) -> Path:
    root = tmp_path / "variants"
    root.mkdir()
    return root


@pytest.fixture
def store(variants_root, invoking_user, clock) -> VariantStore:
    return VariantStore(variants_root, invoking_user, clock=clock)


# ==============================================================================
# Prompt Fixtures
# ==============================================================================


class ScriptedInput:
    """input() replacement that replays answers and then signals EOF."""

    def __init__(self, answers: List[str]):
        self.answers = list(answers)
        self.prompts: List[str] = []

    def __call__(self, prompt: str = "") -> str:
        self.prompts.append(prompt)
        if not self.answers:
            raise EOFError
        return self.answers.pop(0)


@pytest.fixture
def make_prompter():
    """
    Factory fixture building a ConsolePrompter that answers from a script.

    Returns:
        Callable taking the answers; the prompter exposes ``outputs`` and
        ``scripted`` for assertions.
    """

    def _make(*answers: str) -> ConsolePrompter:
        scripted = ScriptedInput(list(answers))
        outputs: List[str] = []
        prompter = ConsolePrompter(input_func=scripted, output_func=outputs.append)
        prompter.scripted = scripted
        prompter.outputs = outputs
        return prompter

    return _make


# ==============================================================================
# ISO and Extraction Fixtures
# ==============================================================================


@pytest.fixture
def base_iso(tmp_path) -> Path:
    iso = tmp_path / "debian-live-13.0.0-amd64-standard.iso"
    iso.write_bytes(b"\x00" * 2048)
    return iso


@pytest.fixture
def iso_root(tmp_path) -> Path:
    """Directory laid out like a mounted Debian Live ISO."""
    root = tmp_path / "iso-contents"
    (root / "live").mkdir(parents=True)
    (root / "isolinux").mkdir()
    (root / "isolinux" / "isolinux.cfg").write_text("default live\n")
    (root / "live" / "filesystem.squashfs").write_bytes(ORIGINAL_ARCHIVE_BYTES)
    (root / "live" / "vmlinuz").write_bytes(b"kernel")
    (root / "live" / "initrd.img").write_bytes(b"initrd")
    return root


@pytest.fixture
def fake_loop_mount(mocker, iso_root) -> Mock:
    """Patch loop mounting to expose ``iso_root`` without mounting anything."""

    @contextmanager
    def _loop_mount(image, mountpoint):
        yield iso_root

    return mocker.patch.object(mount, "loop_mount", side_effect=_loop_mount)


def _write_tree(destination: Path, source: Path) -> None:
    for rel in ("root", "etc", "tmp", "var/tmp", "usr/bin"):
        (destination / rel).mkdir(parents=True, exist_ok=True)
    (destination / "etc" / "extracted-from").write_text(source.name)


@pytest.fixture
def fake_unsquashfs(mocker) -> Mock:
    """Patch extraction to create a minimal root tree naming its source."""

    def _extract(archive, destination):
        _write_tree(Path(destination), Path(archive))

    return mocker.patch.object(squashfs, "extract_archive", side_effect=_extract)


@pytest.fixture
def fake_mksquashfs(mocker) -> Mock:
    """Patch compression to write an archive whose content counts builds."""
    calls = {"count": 0}

    def _compress(tree, archive):
        calls["count"] += 1
        Path(archive).write_bytes(f"hsqs build {calls['count']}".encode())

    return mocker.patch.object(squashfs, "compress_tree", side_effect=_compress)


@pytest.fixture
def extracted_session(store, base_iso, fake_loop_mount, fake_unsquashfs) -> SessionState:
    """A fresh ``ca-system`` session ready to be customized."""
    from custom_live.domain.models import BranchChoice
    from custom_live.services import extraction

    variant = store.variant("ca-system")
    return extraction.extract(base_iso, variant, BranchChoice.FRESH, store)
