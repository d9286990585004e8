"""Open files: a table of file descriptions over inodes and pipes."""

from __future__ import annotations

import errno
import threading
from dataclasses import dataclass
from enum import Enum

from .fs import FileSystem, Inode, Stat
from .layout import BSIZE, MAXOPBLOCKS, Panic

NFILE = 100
PIPESIZE = 512

# Largest write done in one log transaction: leaves room for the inode,
# an indirect block, allocation blocks and two blocks of slop.
_MAX_WRITE_CHUNK = ((MAXOPBLOCKS - 1 - 1 - 2) // 2) * BSIZE


class FileKind(Enum):
    """What an open file refers to."""

    NONE = 0
    PIPE = 1
    INODE = 2


class Pipe:
    """A bounded byte channel with one reading and one writing end.

    Writers block while the buffer is full and readers block while it is
    empty and a writer remains.
    """

    def __init__(self) -> None:
        self._cond = threading.Condition()
        self._buf = bytearray()
        self.readopen = True
        self.writeopen = True

    def write(self, data: bytes) -> int:
        """Write all of ``data``; raise BrokenPipeError if the reader is gone."""
        payload = bytes(data)
        view = memoryview(payload)
        with self._cond:
            while view:
                while len(self._buf) == PIPESIZE:
                    if not self.readopen:
                        raise BrokenPipeError("pipe has no reader")
                    self._cond.notify_all()
                    self._cond.wait()
                room = PIPESIZE - len(self._buf)
                self._buf += view[:room]
                view = view[room:]
            self._cond.notify_all()
        return len(payload)

    def read(self, n: int) -> bytes:
        """Read up to ``n`` bytes; an empty result means the writer closed."""
        if n < 0:
            raise ValueError("read count must not be negative")
        with self._cond:
            while not self._buf and self.writeopen:
                self._cond.wait()
            out = bytes(self._buf[:n])
            del self._buf[:n]
            self._cond.notify_all()
        return out

    def close(self, writable: bool) -> None:
        """Close the writing end if ``writable``, else the reading end."""
        with self._cond:
            if writable:
                self.writeopen = False
            else:
                self.readopen = False
            self._cond.notify_all()


@dataclass(eq=False)
class OpenFile:
    """One open file description, shared by every descriptor that refers to it."""

    kind: FileKind = FileKind.NONE
    ref: int = 0
    readable: bool = False
    writable: bool = False
    pipe: Pipe | None = None
    ip: Inode | None = None
    off: int = 0


class FileTable:
    """A fixed pool of open file descriptions."""

    def __init__(self, fs: FileSystem, nfile: int = NFILE) -> None:
        self.fs = fs
        self._lock = threading.Lock()
        self._files = [OpenFile() for _ in range(nfile)]

    def alloc(self) -> OpenFile:
        """Take a free slot, returned with one reference."""
        with self._lock:
            for f in self._files:
                if f.ref == 0:
                    f.kind = FileKind.NONE
                    f.readable = False
                    f.writable = False
                    f.pipe = None
                    f.ip = None
                    f.off = 0
                    f.ref = 1
                    return f
        raise OSError(errno.ENFILE, "file table full")

    def dup(self, f: OpenFile) -> OpenFile:
        with self._lock:
            if f.ref < 1:
                raise Panic("filedup")
            f.ref += 1
        return f

    def close(self, f: OpenFile) -> None:
        """Drop a reference; release the pipe end or inode on the last one."""
        with self._lock:
            if f.ref < 1:
                raise Panic("fileclose")
            f.ref -= 1
            if f.ref > 0:
                return
            kind, pipe, ip, writable = f.kind, f.pipe, f.ip, f.writable
            f.kind = FileKind.NONE
            f.pipe = None
            f.ip = None
        if kind is FileKind.PIPE and pipe is not None:
            pipe.close(writable)
        elif kind is FileKind.INODE and ip is not None:
            with self.fs.log.transaction():
                self.fs.iput(ip)

    def open_inode(self, ip: Inode, readable: bool, writable: bool) -> OpenFile:
        """Open ``ip``; the file takes over the caller's reference to it."""
        f = self.alloc()
        f.kind = FileKind.INODE
        f.ip = ip
        f.readable = bool(readable)
        f.writable = bool(writable)
        return f

    def open_pipe(self) -> tuple[OpenFile, OpenFile]:
        """Create a pipe; return its reading and writing ends."""
        rf = self.alloc()
        try:
            wf = self.alloc()
        except OSError:
            self.close(rf)
            raise
        pipe = Pipe()
        rf.kind = FileKind.PIPE
        rf.readable, rf.writable = True, False
        rf.pipe = pipe
        wf.kind = FileKind.PIPE
        wf.readable, wf.writable = False, True
        wf.pipe = pipe
        return rf, wf

    def stat(self, f: OpenFile) -> Stat:
        if f.kind is not FileKind.INODE or f.ip is None:
            raise OSError(errno.EINVAL, "not an inode file")
        self.fs.ilock(f.ip)
        try:
            return self.fs.stati(f.ip)
        finally:
            self.fs.iunlock(f.ip)

    def read(self, f: OpenFile, n: int) -> bytes:
        if not f.readable:
            raise OSError(errno.EBADF, "file not open for reading")
        if f.kind is FileKind.PIPE and f.pipe is not None:
            return f.pipe.read(n)
        if f.kind is FileKind.INODE and f.ip is not None:
            self.fs.ilock(f.ip)
            try:
                data = self.fs.readi(f.ip, f.off, n)
                f.off += len(data)
            finally:
                self.fs.iunlock(f.ip)
            return data
        raise Panic("fileread")

    def write(self, f: OpenFile, data: bytes) -> int:
        if not f.writable:
            raise OSError(errno.EBADF, "file not open for writing")
        if f.kind is FileKind.PIPE and f.pipe is not None:
            return f.pipe.write(data)
        if f.kind is FileKind.INODE and f.ip is not None:
            payload = bytes(data)
            done = 0
            while done < len(payload):
                chunk = payload[done : done + _MAX_WRITE_CHUNK]
                with self.fs.log.transaction():
                    self.fs.ilock(f.ip)
                    try:
                        written = self.fs.writei(f.ip, chunk, f.off)
                        if written > 0:
                            f.off += written
                    except ValueError as exc:
                        raise OSError(errno.EFBIG, str(exc)) from exc
                    finally:
                        self.fs.iunlock(f.ip)
                if written != len(chunk):
                    raise Panic("short filewrite")
                done += written
            return len(payload)
        raise Panic("filewrite")