"""GRUB EFI installation and boot menu for the written media."""

from __future__ import annotations

from pathlib import Path

from custom_live.config import settings
from custom_live.logging import LoggerFactory
from custom_live.storage.commands import run_command
from custom_live.storage.exceptions import BootloaderError, CommandError


log = LoggerFactory.for_media()


def build_grub_install_command(efi_mount: Path, target: str | None = None) -> list[str]:
    return [
        "grub-install",
        f"--target={target or settings.get_grub_target()}",
        f"--efi-directory={efi_mount}",
        f"--boot-directory={efi_mount / 'boot'}",
        "--removable",
        "--no-nvram",
    ]


def install_grub_efi(efi_mount: Path) -> None:
    """Install GRUB to the removable-media path of the EFI partition."""
    log.info("Installing GRUB bootloader")
    try:
        run_command(build_grub_install_command(efi_mount))
    except CommandError as error:
        raise BootloaderError(f"grub-install failed: {error}") from error


def _kernel_line(vmlinuz_rel: str, persistence: bool) -> str:
    options = ["boot=live", "components", "quiet", "splash"]
    if persistence:
        options.append("persistence")
    options.append(f"keyboard-layouts={settings.get_setting('boot_keyboard_layout', 'de')}")
    options.append(f"locales={settings.get_setting('boot_locale', 'de_DE.UTF-8')}")
    return f"    linux /{vmlinuz_rel} {' '.join(options)}"


def render_grub_config(vmlinuz_rel: str, initrd_rel: str) -> str:
    """Boot menu: persistent live system (default), plain live, reboot, shutdown."""
    label = settings.get_setting("live_label", "DEBIANLINUX")
    search = f"    search --no-floppy --set=root --label {label}"
    lines = [
        f"set timeout={settings.get_int('grub_timeout', 5)}",
        "set default=0",
        "",
    ]
    for title, persistence in (
        ("Debian Live (Persistence)", True),
        ("Debian Live (No Persistence)", False),
    ):
        lines.extend(
            [
                f'menuentry "{title}" {{',
                search,
                _kernel_line(vmlinuz_rel, persistence),
                f"    initrd /{initrd_rel}",
                "}",
                "",
            ]
        )
    lines.extend(
        [
            'menuentry "Reboot" {',
            "    reboot",
            "}",
            "",
            'menuentry "Shutdown" {',
            "    halt",
            "}",
        ]
    )
    return "\n".join(lines) + "\n"


def write_grub_config(efi_mount: Path, vmlinuz_rel: str, initrd_rel: str) -> Path:
    path = efi_mount / "boot" / "grub" / "grub.cfg"
    log.info("Creating GRUB configuration")
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(render_grub_config(vmlinuz_rel, initrd_rel), encoding="utf-8")
    return path
