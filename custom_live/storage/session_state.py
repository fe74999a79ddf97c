"""Session state file: KEY=VALUE text in the variant directory.

The file is rewritten atomically (temporary file + rename) so an
interruption never leaves a half-written state behind. When a key appears
more than once the last value wins, which keeps files that were extended by
appending lines readable.
"""

from __future__ import annotations

import os
import tempfile
from pathlib import Path
from typing import Mapping

from custom_live.domain.models import SessionState
from custom_live.storage.exceptions import SessionStateError
from custom_live.storage.ownership import InvokingUser, fix_ownership


def _unquote(value: str) -> str:
    if len(value) >= 2 and value[0] == value[-1] and value[0] in ("'", '"'):
        return value[1:-1]
    return value


def parse_state_text(text: str) -> dict[str, str]:
    data: dict[str, str] = {}
    for raw_line in text.splitlines():
        line = raw_line.strip()
        if not line or line.startswith("#"):
            continue
        key, sep, value = line.partition("=")
        if not sep:
            raise ValueError(f"Malformed line: {raw_line!r}")
        data[key.strip()] = _unquote(value.strip())
    return data


def render_state_text(data: Mapping[str, str]) -> str:
    return "".join(f"{key}={value}\n" for key, value in data.items())


def load_session_state(path: Path) -> SessionState:
    if not path.is_file():
        raise SessionStateError(str(path), "not found")
    try:
        data = parse_state_text(path.read_text(encoding="utf-8"))
    except (OSError, UnicodeDecodeError, ValueError) as error:
        raise SessionStateError(str(path), f"unreadable ({error})") from error
    try:
        return SessionState.from_mapping(data)
    except KeyError as error:
        raise SessionStateError(str(path), f"missing {error.args[0]}") from error


def save_session_state(path: Path, state: SessionState, user: InvokingUser) -> None:
    text = render_state_text(state.to_mapping())
    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", dir=str(path.parent))
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            handle.write(text)
            handle.flush()
            os.fsync(handle.fileno())
        os.replace(tmp_name, path)
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise
    fix_ownership(path, user)


def delete_session_state(path: Path) -> None:
    path.unlink(missing_ok=True)
