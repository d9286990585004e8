"""Count lines, words and bytes."""

from __future__ import annotations

import sys
from collections.abc import Sequence
from dataclasses import dataclass
from typing import IO

_BUFSIZE = 512
# The terminating NUL of the separator string also counts as a separator.
_SEPARATORS = frozenset(b" \r\t\n\v\0")


@dataclass(frozen=True)
class Counts:
    """Line, word and byte counts of one input."""

    lines: int
    words: int
    chars: int


def wc(stream: IO) -> Counts:
    """Count the lines, words and bytes that ``stream`` yields."""
    lines = words = chars = 0
    inword = False
    while chunk := stream.read(_BUFSIZE):
        if isinstance(chunk, str):
            chunk = chunk.encode("utf-8", "surrogateescape")
        chars += len(chunk)
        lines += chunk.count(b"\n")
        for b in chunk:
            if b in _SEPARATORS:
                inword = False
            elif not inword:
                words += 1
                inword = True
    return Counts(lines, words, chars)


def _report(counts: Counts, name: str) -> None:
    print(f"{counts.lines} {counts.words} {counts.chars} {name}")


def main(argv: Sequence[str] | None = None) -> int:
    args = sys.argv[1:] if argv is None else list(argv)
    if not args:
        _report(wc(sys.stdin.buffer), "")
        return 0
    for name in args:
        try:
            f = open(name, "rb")
        except OSError:
            print(f"wc: cannot open {name}")
            return 1
        with f:
            _report(wc(f), name)
    return 0