"""Console: line-edited keyboard input and output to serial and CGA screen."""

from __future__ import annotations

import threading
from collections.abc import Callable, Iterable

from .layout import Panic

CONSOLE = 1  # device major number
BACKSPACE = 0x100
INPUT_BUF = 128
COLS = 80
ROWS = 25
_TEXT_ROWS = 24
_ATTR = 0x0700  # black on white


def _ctrl(ch: str) -> int:
    return ord(ch) - ord("@")


class CgaScreen:
    """A text-mode screen of 80x25 character cells with a cursor."""

    def __init__(self) -> None:
        self.cells = [0] * (COLS * ROWS)
        self.pos = 0

    def putc(self, c: int) -> None:
        pos = self.pos
        if c == ord("\n"):
            pos += COLS - pos % COLS
        elif c == BACKSPACE:
            if pos > 0:
                pos -= 1
        else:
            self.cells[pos] = (c & 0xFF) | _ATTR
            pos += 1

        if pos < 0 or pos > ROWS * COLS:
            raise Panic("pos under/overflow")

        if pos // COLS >= _TEXT_ROWS:  # scroll up
            self.cells[: (_TEXT_ROWS - 1) * COLS] = self.cells[COLS : _TEXT_ROWS * COLS]
            pos -= COLS
            self.cells[pos : _TEXT_ROWS * COLS] = [0] * (_TEXT_ROWS * COLS - pos)

        self.pos = pos
        self.cells[pos] = ord(" ") | _ATTR

    def lines(self) -> list[str]:
        """The 24 text rows, trailing blanks removed."""
        rows = []
        for row in range(_TEXT_ROWS):
            cells = self.cells[row * COLS : (row + 1) * COLS]
            rows.append("".join(chr(c & 0xFF) if c & 0xFF else " " for c in cells).rstrip())
        return rows


class Console:
    """Console device: echoes and edits input lines, writes output everywhere."""

    def __init__(self, procdump: Callable[[], None] | None = None) -> None:
        self.screen = CgaScreen()
        self.serial = bytearray()
        self._procdump = procdump
        self._cond = threading.Condition()
        self._buf = [0] * INPUT_BUF
        self._r = 0  # read index
        self._w = 0  # write index
        self._e = 0  # edit index

    def putc(self, c: int) -> None:
        if c == BACKSPACE:
            self.serial += b"\b \b"
        else:
            self.serial.append(c & 0xFF)
        self.screen.putc(c)

    def interrupt(self, chars: str | Iterable[int]) -> None:
        """Handle typed characters; a negative code ends the batch early."""
        codes = [ord(ch) for ch in chars] if isinstance(chars, str) else list(chars)
        dump = False
        with self._cond:
            for c in codes:
                if c < 0:
                    break
                if c == _ctrl("P"):
                    dump = True
                elif c == _ctrl("U"):  # kill line
                    while self._e != self._w and self._buf[(self._e - 1) % INPUT_BUF] != ord("\n"):
                        self._e -= 1
                        self.putc(BACKSPACE)
                elif c in (_ctrl("H"), 0x7F):
                    if self._e != self._w:
                        self._e -= 1
                        self.putc(BACKSPACE)
                elif c != 0 and self._e - self._r < INPUT_BUF:
                    if c == ord("\r"):
                        c = ord("\n")
                    self._buf[self._e % INPUT_BUF] = c & 0xFF
                    self._e += 1
                    self.putc(c)
                    if c in (ord("\n"), _ctrl("D")) or self._e == self._r + INPUT_BUF:
                        self._w = self._e
                        self._cond.notify_all()
        if dump and self._procdump is not None:
            self._procdump()

    def read(self, n: int) -> bytes:
        """Read up to ``n`` bytes, stopping after a newline; waits for a full line."""
        target = n
        out = bytearray()
        with self._cond:
            while n > 0:
                while self._r == self._w:
                    self._cond.wait()
                c = self._buf[self._r % INPUT_BUF]
                self._r += 1
                if c == _ctrl("D"):  # end of file
                    if n < target:
                        # Keep ^D so the next read returns nothing.
                        self._r -= 1
                    break
                out.append(c)
                n -= 1
                if c == ord("\n"):
                    break
        return bytes(out)

    def write(self, data: bytes) -> int:
        payload = bytes(data)
        with self._cond:
            for b in payload:
                self.putc(b)
        return len(payload)