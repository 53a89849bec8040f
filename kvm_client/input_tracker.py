# =============================================================================
# KVM Client -- Input State Tracker
# =============================================================================
#
# Turns local input actions into protocol messages and remembers which
# pointer buttons are held on the remote side, so that losing the capture
# surface (pointer lock, focus, escape, channel) never leaves one stuck.
# =============================================================================

from __future__ import annotations

from typing import Iterable, Protocol

from . import virtual_keyboard
from ._logging import logger
from .keymap import KeyEvent, modifiers_of, scale_absolute, to_hid_key
from .types import (
    InputMessage,
    KeyCombination,
    KeyPress,
    Modifier,
    MouseAbsolute,
    MouseButton,
    MouseClick,
    MouseMove,
    MousePress,
    MouseRelease,
    MouseWheel,
    SessionState,
    Text,
)

_BUTTON_ORDER = (MouseButton.LEFT, MouseButton.MIDDLE, MouseButton.RIGHT)
_MODIFIER_ORDER = (Modifier.CTRL, Modifier.SHIFT, Modifier.ALT, Modifier.META)


class InputSink(Protocol):
    def send(self, message: InputMessage) -> None: ...


class InputTracker:
    """Pressed-input state plus the message for every local input action.

    Args:
        sink: Where messages go, normally the :class:`SessionManager`.
    """

    def __init__(self, sink: InputSink) -> None:
        self._sink = sink
        self._buttons: set[MouseButton] = set()
        self._modifiers: set[Modifier] = set()
        self._caps_lock = False
        self._num_lock = False

    # -- State ----------------------------------------------------------------

    @property
    def buttons(self) -> frozenset[MouseButton]:
        return frozenset(self._buttons)

    @property
    def modifiers(self) -> frozenset[Modifier]:
        """Modifiers latched on the on-screen keyboard."""
        return frozenset(self._modifiers)

    @property
    def caps_lock(self) -> bool:
        return self._caps_lock

    @property
    def num_lock(self) -> bool:
        return self._num_lock

    # -- Pointer --------------------------------------------------------------

    def press(self, button: MouseButton | str) -> None:
        button = MouseButton(button)
        self._buttons.add(button)
        self._sink.send(MousePress(button))

    def release(self, button: MouseButton | str) -> None:
        """Release *button*; the message goes out even if it was not held."""
        button = MouseButton(button)
        message = MouseRelease(button)
        self._buttons.discard(button)
        self._sink.send(message)

    def click(self, button: MouseButton | str) -> None:
        self._sink.send(MouseClick(MouseButton(button)))

    def single_move(self, dx: int, dy: int) -> None:
        self._sink.send(MouseMove(int(dx), int(dy), self._held_buttons()))

    def absolute_move(
        self,
        x: float,
        y: float,
        *,
        width: float | None = None,
        height: float | None = None,
    ) -> None:
        """Move to a surface position, scaled when the surface size is given."""
        ax, ay = scale_absolute(x, y, width, height)
        self._sink.send(MouseAbsolute(ax, ay, self._held_buttons()))

    def wheel(self, delta: int) -> None:
        self._sink.send(MouseWheel(int(delta)))

    def scroll(self, delta_y: float) -> None:
        """Wheel one notch from a platform scroll delta (down is negative)."""
        if delta_y == 0:
            return
        self.wheel(-1 if delta_y > 0 else 1)

    # -- Keyboard -------------------------------------------------------------

    def key_press(self, key: str) -> None:
        self._sink.send(KeyPress(key))

    def key_combination(self, modifiers: Iterable[str], keys: Iterable[str]) -> None:
        self._sink.send(KeyCombination(tuple(modifiers), tuple(keys)))

    def key_event(self, event: KeyEvent) -> bool:
        """Forward a physical key-down. Returns False if the key has no mapping."""
        hid_key = to_hid_key(event.key)
        if hid_key is None:
            logger.debug("No HID mapping for key %r", event.key)
            return False
        self.key_combination(modifiers_of(event), [hid_key])
        return True

    def text(self, text: str) -> None:
        if not text:
            return
        self._sink.send(Text(text))

    def virtual_key(self, label: str) -> None:
        """Handle a tap on the on-screen keyboard.

        Modifier keys toggle a latch and are sent as themselves; everything
        else is sent as a combination with the latched modifiers, or as a
        plain key press when none are latched.
        """
        latch = virtual_keyboard.LATCHING_KEYS.get(label.lower())
        if latch is not None:
            if latch in self._modifiers:
                self._modifiers.discard(latch)
            else:
                self._modifiers.add(latch)
            token = latch.value
        else:
            token = virtual_keyboard.resolve(
                label,
                shift=Modifier.SHIFT in self._modifiers,
                caps=self._caps_lock,
            )
            if token == "caps-lock":
                self._caps_lock = not self._caps_lock
            elif token == "num-lock":
                self._num_lock = not self._num_lock

        modifiers = tuple(m.value for m in _MODIFIER_ORDER if m in self._modifiers)
        if modifiers:
            self._sink.send(KeyCombination(modifiers, (token,)))
        else:
            self._sink.send(KeyPress(token))

    # -- Reconciliation -------------------------------------------------------

    def release_all(self) -> int:
        """Release every held button and drop the modifier latches.

        Returns the number of release messages emitted.
        """
        held = self._held_buttons()
        for button in held:
            self._sink.send(MouseRelease(button))
        self._buttons.clear()
        self._modifiers.clear()
        if held:
            logger.debug("Released %d held button(s)", len(held))
        return len(held)

    def capture_lost(self) -> int:
        return self.release_all()

    def focus_lost(self) -> int:
        return self.release_all()

    def escape(self) -> int:
        return self.release_all()

    def on_session_state(self, state: SessionState) -> None:
        """Session state listener: channel loss releases everything.

        The releases are queued and reach the device on reconnect.
        """
        if state is SessionState.RECONNECTING:
            self.release_all()

    def _held_buttons(self) -> tuple[MouseButton, ...]:
        return tuple(b for b in _BUTTON_ORDER if b in self._buttons)
