# =============================================================================
# KVM Client -- On-screen Keyboard Layout
# =============================================================================
#
# Key labels of the touch keyboard and how they resolve to HID tokens.
# Modifier keys latch instead of being held; see InputTracker.virtual_key.
# =============================================================================

from __future__ import annotations

from .types import Modifier

LAYOUT: tuple[tuple[str, ...], ...] = (
    ("esc", "1", "2", "3", "4", "5", "6", "7", "8", "9", "0", "-", "=", "backspace"),
    ("tab", "q", "w", "e", "r", "t", "y", "u", "i", "o", "p", "[", "]", "\\"),
    ("caps", "a", "s", "d", "f", "g", "h", "j", "k", "l", ";", "'", "enter"),
    ("shift", "z", "x", "c", "v", "b", "n", "m", ",", ".", "/", "up", "num"),
    ("ctrl", "win", "alt", "space", "menu", "left", "down", "right"),
)

LATCHING_KEYS: dict[str, Modifier] = {
    "ctrl": Modifier.CTRL,
    "shift": Modifier.SHIFT,
    "alt": Modifier.ALT,
    "win": Modifier.META,
}

_RENAMED = {
    "menu": "contextmenu",
    "esc": "escape",
    "caps": "caps-lock",
    "num": "num-lock",
}

_PASSTHROUGH = frozenset(
    {"space", "tab", "enter", "backspace", "left", "right", "up", "down"}
)

SHIFT_MAP: dict[str, str] = {
    "1": "!",
    "2": "@",
    "3": "#",
    "4": "$",
    "5": "%",
    "6": "^",
    "7": "&",
    "8": "*",
    "9": "(",
    "0": ")",
    "-": "_",
    "=": "+",
    "[": "{",
    "]": "}",
    "\\": "|",
    ";": ":",
    "'": '"',
    ",": "<",
    ".": ">",
    "/": "?",
}


def resolve(label: str, *, shift: bool = False, caps: bool = False) -> str:
    """HID token for a non-latching key label under the current latches."""
    lower = label.lower()
    if lower in _RENAMED:
        return _RENAMED[lower]
    if lower in _PASSTHROUGH:
        return lower

    if len(label) == 1 and label.isalpha():
        # caps and shift cancel out for letters
        return label.upper() if shift != caps else label.lower()
    if shift:
        return SHIFT_MAP.get(label, label)
    return label
