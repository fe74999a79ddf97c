"""Ownership of user-facing artifacts.

The tool runs as root, but variant directories, archives and logs belong to
the operator who invoked it through sudo.
"""

from __future__ import annotations

import os
import stat
from dataclasses import dataclass
from pathlib import Path

from custom_live.logging import LoggerFactory


log = LoggerFactory.for_store()


@dataclass(frozen=True)
class InvokingUser:
    name: str
    uid: int
    gid: int

    @classmethod
    def from_environment(cls, environ=None) -> InvokingUser:
        """Resolve the non-privileged user behind sudo, or the current user."""
        env = os.environ if environ is None else environ
        sudo_uid = env.get("SUDO_UID")
        sudo_gid = env.get("SUDO_GID")
        if sudo_uid and sudo_gid:
            try:
                return cls(
                    name=env.get("SUDO_USER", ""),
                    uid=int(sudo_uid),
                    gid=int(sudo_gid),
                )
            except ValueError:
                log.warning("Ignoring malformed SUDO_UID/SUDO_GID")
        return cls(name=env.get("USER", ""), uid=os.getuid(), gid=os.getgid())


def fix_ownership(path: Path, user: InvokingUser) -> None:
    """Give ``path`` to the invoking user with owner read/write (and x for dirs)."""
    if not path.exists():
        return
    if (path.stat().st_uid, path.stat().st_gid) != (user.uid, user.gid):
        os.chown(path, user.uid, user.gid)
    mode = path.stat().st_mode
    wanted = stat.S_IRUSR | stat.S_IWUSR
    if path.is_dir():
        wanted |= stat.S_IXUSR
    if mode & wanted != wanted:
        os.chmod(path, stat.S_IMODE(mode) | wanted)
