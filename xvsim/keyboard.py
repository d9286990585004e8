"""PC keyboard scan-code decoding."""

from __future__ import annotations

from collections.abc import Iterable

NO = 0

SHIFT = 1 << 0
CTL = 1 << 1
ALT = 1 << 2
CAPSLOCK = 1 << 3
NUMLOCK = 1 << 4
SCROLLLOCK = 1 << 5
E0ESC = 1 << 6

KEY_HOME = 0xE0
KEY_END = 0xE1
KEY_UP = 0xE2
KEY_DN = 0xE3
KEY_LF = 0xE4
KEY_RT = 0xE5
KEY_PGUP = 0xE6
KEY_PGDN = 0xE7
KEY_INS = 0xE8
KEY_DEL = 0xE9


def _ctl(ch: str) -> int:
    return (ord(ch) - ord("@")) & 0xFF


_SHIFTCODE = {0x1D: CTL, 0x2A: SHIFT, 0x36: SHIFT, 0x38: ALT, 0x9D: CTL, 0xB8: ALT}
_TOGGLECODE = {0x3A: CAPSLOCK, 0x45: NUMLOCK, 0x46: SCROLLLOCK}

_EXTENDED = {
    0xC8: KEY_UP,
    0xD0: KEY_DN,
    0xC9: KEY_PGUP,
    0xD1: KEY_PGDN,
    0xCB: KEY_LF,
    0xCD: KEY_RT,
    0x97: KEY_HOME,
    0xCF: KEY_END,
    0xD2: KEY_INS,
    0xD3: KEY_DEL,
}

_KEYPAD = "\0" * 13 + "789-456+1230."

_NORMAL_BASE = "\0\x1b1234567890-=\b\tqwertyuiop[]\n\0asdfghjkl;'`\0\\zxcvbnm,./\0*\0 " + _KEYPAD
_SHIFT_BASE = "\0\x1b!@#$%^&*()_+\b\tQWERTYUIOP{}\n\0ASDFGHJKL:\"~\0|ZXCVBNM<>?\0*\0 " + _KEYPAD


def _table(base: Iterable[int], kp_enter: int, kp_div: int) -> tuple[int, ...]:
    table = [NO] * 256
    for i, code in enumerate(base):
        table[i] = code
    table[0x9C] = kp_enter
    table[0xB5] = kp_div
    for code, key in _EXTENDED.items():
        table[code] = key
    return tuple(table)


def _ctl_base() -> list[int]:
    base = [_ctl(ch.upper()) if ch.isalpha() else NO for ch in _NORMAL_BASE[:0x38]]
    base[0x1C] = ord("\r")
    base[0x2B] = _ctl("\\")
    base[0x35] = _ctl("/")
    return base


NORMALMAP = _table(map(ord, _NORMAL_BASE), ord("\n"), ord("/"))
SHIFTMAP = _table(map(ord, _SHIFT_BASE), ord("\n"), ord("/"))
CTLMAP = _table(_ctl_base(), ord("\r"), _ctl("/"))

_CHARCODE = (NORMALMAP, SHIFTMAP, CTLMAP, CTLMAP)


class Keyboard:
    """Tracks modifier state and turns scan codes into character codes."""

    def __init__(self) -> None:
        self.shift = 0

    def feed(self, scancode: int) -> int:
        """Process one scan code; return the character, or 0 if there is none."""
        if not 0 <= scancode <= 0xFF:
            raise ValueError(f"scan code out of range: {scancode}")
        data = scancode
        if data == 0xE0:
            self.shift |= E0ESC
            return 0
        if data & 0x80:
            # Key released.
            data = data if self.shift & E0ESC else data & 0x7F
            self.shift &= ~(_SHIFTCODE.get(data, 0) | E0ESC)
            return 0
        if self.shift & E0ESC:
            # Previous code was an E0 escape.
            data |= 0x80
            self.shift &= ~E0ESC

        self.shift |= _SHIFTCODE.get(data, 0)
        self.shift ^= _TOGGLECODE.get(data, 0)
        c = _CHARCODE[self.shift & (CTL | SHIFT)][data]
        if self.shift & CAPSLOCK:
            if ord("a") <= c <= ord("z"):
                c += ord("A") - ord("a")
            elif ord("A") <= c <= ord("Z"):
                c += ord("a") - ord("A")
        return c


def decode(scancodes: Iterable[int]) -> list[int]:
    """Decode a sequence of scan codes into the characters they produce."""
    kb = Keyboard()
    return [c for code in scancodes if (c := kb.feed(code))]