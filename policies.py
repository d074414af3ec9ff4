"""Shift status transition hooks.

A store accepts an optional ``status_policy(previous, new)`` callable. It is
called when a shift is created (``previous`` is None) and whenever an update
changes the status; it raises ``InvalidStatusTransition`` to veto the change.
Without a policy every status may be set.
"""
from typing import Callable, Optional

from errors import InvalidStatusTransition

StatusPolicy = Callable[[Optional[str], str], None]

PROGRESSION = ("draft", "preview", "confirmed", "locked")


def allow_any(previous: Optional[str], new: str) -> None:
    return None


def forward_only(previous: Optional[str], new: str) -> None:
    """draft -> preview -> confirmed -> locked; skipping ahead is fine, going back is not."""
    if previous is None or previous == new:
        return
    if previous == "locked":
        raise InvalidStatusTransition(previous, new)
    if PROGRESSION.index(new) < PROGRESSION.index(previous):
        raise InvalidStatusTransition(previous, new)
