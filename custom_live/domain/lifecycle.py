"""Variant lifecycle as an explicit finite-state machine.

The state is never stored. It is derived from what exists on disk (session
state file, working tree, bind mounts, readiness flag, archives), so that
resuming after a crash is a pure function of the snapshot.

    NOT_STARTED --extract--> EXTRACTED --enter--> IN_SESSION
         ^                      |  ^                 |
         |                      |  +----re-extract---+
         |                      v                    v
         |                  RECOMPRESSED <--recompress
         |                      |   |
         |                      |   +--re-enter--> IN_SESSION
         |                      v
    (new session) <-------- WRITTEN
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from custom_live.storage.exceptions import LifecycleTransitionError


class LifecycleState(Enum):
    NOT_STARTED = "not started"
    EXTRACTED = "extracted"
    IN_SESSION = "in session"
    RECOMPRESSED = "recompressed"
    WRITTEN = "written"


@dataclass(frozen=True)
class VariantSnapshot:
    """Facts about a variant directory at one point in time."""

    has_session: bool
    has_archives: bool
    binds_active: bool = False
    ready: bool = False


def derive_lifecycle(snapshot: VariantSnapshot) -> LifecycleState:
    if not snapshot.has_session:
        if snapshot.has_archives:
            return LifecycleState.WRITTEN
        return LifecycleState.NOT_STARTED
    if snapshot.ready:
        return LifecycleState.RECOMPRESSED
    if snapshot.binds_active:
        return LifecycleState.IN_SESSION
    return LifecycleState.EXTRACTED


ALLOWED_TRANSITIONS: dict[LifecycleState, frozenset[LifecycleState]] = {
    LifecycleState.NOT_STARTED: frozenset({LifecycleState.EXTRACTED}),
    LifecycleState.EXTRACTED: frozenset(
        {
            LifecycleState.EXTRACTED,
            LifecycleState.IN_SESSION,
            LifecycleState.RECOMPRESSED,
        }
    ),
    LifecycleState.IN_SESSION: frozenset(
        {
            LifecycleState.EXTRACTED,
            LifecycleState.IN_SESSION,
            LifecycleState.RECOMPRESSED,
        }
    ),
    LifecycleState.RECOMPRESSED: frozenset(
        {
            LifecycleState.EXTRACTED,
            LifecycleState.IN_SESSION,
            LifecycleState.RECOMPRESSED,
            LifecycleState.WRITTEN,
        }
    ),
    LifecycleState.WRITTEN: frozenset({LifecycleState.EXTRACTED}),
}


def can_transition(current: LifecycleState, target: LifecycleState) -> bool:
    return target in ALLOWED_TRANSITIONS[current]


def check_transition(
    variant: str, current: LifecycleState, target: LifecycleState
) -> None:
    """Raise LifecycleTransitionError unless ``current -> target`` is allowed."""
    if not can_transition(current, target):
        raise LifecycleTransitionError(variant, current.value, target.value)


NEXT_STEP_HINTS: dict[LifecycleState, str] = {
    LifecycleState.NOT_STARTED: "extract from an ISO to create it",
    LifecycleState.EXTRACTED: "re-enter the chroot or write it to a USB device",
    LifecycleState.IN_SESSION: "re-enter the chroot or write it to a USB device",
    LifecycleState.RECOMPRESSED: "retry writing to a USB device (archive is ready)",
    LifecycleState.WRITTEN: "extract from the base ISO and choose CONTINUE to modify it",
}


def next_step_hint(state: LifecycleState) -> str:
    return NEXT_STEP_HINTS[state]
