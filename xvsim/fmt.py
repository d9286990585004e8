"""Formatted output with the small set of conversions the system supports.

The user-level formatter knows ``%d``, ``%x``, ``%p``, ``%s``, ``%c`` and
``%%`` and prints hexadecimal in upper case. The kernel formatter knows the
same set without ``%c`` and prints hexadecimal in lower case. Integers are
treated as 32-bit machine words. An unknown conversion is printed as is, to
draw attention.
"""

from __future__ import annotations

from collections.abc import Iterable
from typing import Any, TextIO

_UPPER_DIGITS = "0123456789ABCDEF"
_LOWER_DIGITS = "0123456789abcdef"
_WORD = 0xFFFFFFFF


def _to_int32(value: Any) -> int:
    word = int(value) & _WORD
    return word - (1 << 32) if word & 0x80000000 else word


def _printint(value: Any, base: int, signed: bool, digits: str) -> str:
    xx = _to_int32(value)
    negative = signed and xx < 0
    x = -xx if negative else xx & _WORD
    out = []
    while True:
        out.append(digits[x % base])
        x //= base
        if x == 0:
            break
    if negative:
        out.append("-")
    return "".join(reversed(out))


def _string(value: Any) -> str:
    if value is None:
        return "(null)"
    if isinstance(value, (bytes, bytearray)):
        return bytes(value).decode("latin-1")
    return str(value)


def _char(value: Any) -> str:
    if isinstance(value, str):
        return value[:1]
    return chr(int(value) & 0xFF)


def _format(fmt: str, args: Iterable[Any], digits: str, with_char: bool) -> str:
    pending = iter(args)

    def next_arg() -> Any:
        try:
            return next(pending)
        except StopIteration:
            raise TypeError(f"not enough arguments for format {fmt!r}") from None

    out: list[str] = []
    chars = iter(fmt)
    for c in chars:
        if c != "%":
            out.append(c)
            continue
        spec = next(chars, None)
        if spec is None:
            break
        if spec == "d":
            out.append(_printint(next_arg(), 10, True, digits))
        elif spec in ("x", "p"):
            out.append(_printint(next_arg(), 16, False, digits))
        elif spec == "s":
            out.append(_string(next_arg()))
        elif spec == "c" and with_char:
            out.append(_char(next_arg()))
        elif spec == "%":
            out.append("%")
        else:
            out.append("%" + spec)
    return "".join(out)


def sprintf(fmt: str, *args: Any) -> str:
    """Format like the user-level printf and return the text."""
    return _format(fmt, args, _UPPER_DIGITS, with_char=True)


def kernel_sprintf(fmt: str, *args: Any) -> str:
    """Format like the kernel's console printf and return the text."""
    return _format(fmt, args, _LOWER_DIGITS, with_char=False)


def printf(stream: TextIO, fmt: str, *args: Any) -> None:
    """Write the user-level formatting of ``fmt`` and ``args`` to ``stream``."""
    stream.write(sprintf(fmt, *args))