"""Simulated file system, log, buffer cache, console, keyboard and page tables of a small Unix-like kernel, with its user tools."""

__version__ = "0.1.0"

__all__ = [
    "layout",
    "disk",
    "journal",
    "mkfs",
    "fs",
    "file",
    "console",
    "keyboard",
    "vm",
    "fmt",
    "grep",
    "wc",
    "tools",
]