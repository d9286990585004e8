"""Small file utilities: cat, echo and the name column of ls."""

from __future__ import annotations

import sys
from collections.abc import Sequence
from typing import BinaryIO

from .layout import DIRSIZ

_BUFSIZE = 512


def cat(stream: BinaryIO, out: BinaryIO) -> None:
    """Copy everything from ``stream`` to ``out``."""
    while chunk := stream.read(_BUFSIZE):
        written = out.write(chunk)
        if written is not None and written != len(chunk):
            raise OSError("cat: write error")


def echo(args: Sequence[str]) -> str:
    """The line echo prints for ``args``; nothing at all when there are none."""
    if not args:
        return ""
    return " ".join(args) + "\n"


def fmtname(path: str) -> str:
    """The last element of ``path``, blank-padded to DIRSIZ characters."""
    name = path.rsplit("/", 1)[-1]
    if len(name) >= DIRSIZ:
        return name
    return name.ljust(DIRSIZ)


def cat_main(argv: Sequence[str] | None = None) -> int:
    args = sys.argv[1:] if argv is None else list(argv)
    sys.stdout.flush()
    out = sys.stdout.buffer
    try:
        if not args:
            cat(sys.stdin.buffer, out)
            return 0
        for name in args:
            try:
                f = open(name, "rb")
            except OSError:
                out.flush()
                print(f"cat: cannot open {name}")
                return 1
            with f:
                cat(f, out)
        return 0
    finally:
        out.flush()


def echo_main(argv: Sequence[str] | None = None) -> int:
    args = sys.argv[1:] if argv is None else list(argv)
    sys.stdout.write(echo(args))
    return 0