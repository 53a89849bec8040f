# =============================================================================
# KVM Client -- Key Mapping
# =============================================================================
#
# Platform key identifiers (DOM KeyboardEvent.key values) -> HID key tokens.
# =============================================================================

from __future__ import annotations

import re
from dataclasses import dataclass

from .constants import ABSOLUTE_MAX
from .types import Modifier

NAMED_KEYS: dict[str, str] = {
    "Enter": "enter",
    "Escape": "escape",
    "Backspace": "backspace",
    "Tab": "tab",
    "Delete": "delete",
    "ArrowUp": "up",
    "ArrowDown": "down",
    "ArrowLeft": "left",
    "ArrowRight": "right",
    "Home": "home",
    "End": "end",
    "PageUp": "pageup",
    "PageDown": "pagedown",
    "Insert": "insert",
    "CapsLock": "caps-lock",
    "NumLock": "num-lock",
    " ": "space",
}

_FUNCTION_KEY = re.compile(r"^F([1-9]|1[0-2])$")


@dataclass(frozen=True, slots=True)
class KeyEvent:
    """A key-down as reported by the input surface."""

    key: str
    ctrl: bool = False
    shift: bool = False
    alt: bool = False
    meta: bool = False


def to_hid_key(key: str) -> str | None:
    """Translate a platform key name, or return None if it has no mapping."""
    if _FUNCTION_KEY.match(key):
        return key.lower()
    named = NAMED_KEYS.get(key)
    if named is not None:
        return named
    if len(key) == 1:
        return key
    return None


def modifiers_of(event: KeyEvent) -> tuple[str, ...]:
    mods = []
    if event.ctrl:
        mods.append(Modifier.CTRL.value)
    if event.shift:
        mods.append(Modifier.SHIFT.value)
    if event.alt:
        mods.append(Modifier.ALT.value)
    if event.meta:
        mods.append(Modifier.META.value)
    return tuple(mods)


def scale_absolute(
    x: float, y: float, width: float | None = None, height: float | None = None
) -> tuple[int, int]:
    """Map a surface position onto the ``[0, ABSOLUTE_MAX]`` grid.

    With no surface size the coordinates are taken as already scaled and
    only clamped.
    """
    if width is not None and height is not None:
        if width <= 0 or height <= 0:
            raise ValueError("Surface size must be positive")
        x = x / width * ABSOLUTE_MAX
        y = y / height * ABSOLUTE_MAX
    return _clamp(round(x)), _clamp(round(y))


def _clamp(value: int) -> int:
    return max(0, min(ABSOLUTE_MAX, value))
