"""A simple grep supporting only the ^ . * $ operators."""

from __future__ import annotations

import sys
from collections.abc import Iterator, Sequence
from typing import TextIO


def match(re: str, text: str) -> bool:
    """Search for ``re`` anywhere in ``text``."""
    if re.startswith("^"):
        return matchhere(re[1:], text)
    # The empty string at the end must be tried as well.
    return any(matchhere(re, text[i:]) for i in range(len(text) + 1))


def matchhere(re: str, text: str) -> bool:
    """Search for ``re`` at the beginning of ``text``."""
    while True:
        if not re:
            return True
        if len(re) >= 2 and re[1] == "*":
            return matchstar(re[0], re[2:], text)
        if re == "$":
            return text == ""
        if text and re[0] in (".", text[0]):
            re, text = re[1:], text[1:]
            continue
        return False


def matchstar(c: str, re: str, text: str) -> bool:
    """Search for ``c*re`` at the beginning of ``text``."""
    i = 0
    while True:
        if matchhere(re, text[i:]):
            return True
        if i < len(text) and (text[i] == c or c == "."):
            i += 1
        else:
            return False


def grep(pattern: str, stream: TextIO) -> Iterator[str]:
    """Yield the newline-terminated lines of ``stream`` that match ``pattern``.

    A final line without a newline is never reported.
    """
    for line in stream:
        if line.endswith("\n") and match(pattern, line[:-1]):
            yield line


def main(argv: Sequence[str] | None = None) -> int:
    args = sys.argv[1:] if argv is None else list(argv)
    if not args:
        print("usage: grep pattern [file ...]", file=sys.stderr)
        return 1
    pattern, files = args[0], args[1:]
    if not files:
        sys.stdout.writelines(grep(pattern, sys.stdin))
        return 0
    for name in files:
        try:
            f = open(name, encoding="utf-8", errors="surrogateescape", newline="")
        except OSError:
            print(f"grep: cannot open {name}")
            return 1
        with f:
            sys.stdout.writelines(grep(pattern, f))
    return 0