"""An in-memory disk and the buffer cache that sits on top of it."""

from __future__ import annotations

from dataclasses import dataclass, field

from .layout import BSIZE, FSSIZE, NBUF, Panic


class MemDisk:
    """A disk whose blocks live in a byte array."""

    def __init__(self, image: bytes | bytearray | None = None, nblocks: int = FSSIZE) -> None:
        if image is None:
            self._data = bytearray(nblocks * BSIZE)
        else:
            self._data = bytearray(image)
        self.nblocks = len(self._data) // BSIZE

    @property
    def image(self) -> bytes:
        return bytes(self._data)

    def _offset(self, blockno: int) -> int:
        if not 0 <= blockno < self.nblocks:
            raise Panic("iderw: block out of range")
        return blockno * BSIZE

    def read_block(self, blockno: int) -> bytes:
        off = self._offset(blockno)
        return bytes(self._data[off : off + BSIZE])

    def write_block(self, blockno: int, data: bytes) -> None:
        off = self._offset(blockno)
        if len(data) != BSIZE:
            raise ValueError(f"block data must be {BSIZE} bytes")
        self._data[off : off + BSIZE] = data


@dataclass(eq=False)
class Buf:
    """A cached copy of one disk block."""

    blockno: int | None = None
    data: bytearray = field(default_factory=lambda: bytearray(BSIZE))
    valid: bool = False
    dirty: bool = False
    locked: bool = False
    refcnt: int = 0


class BufferCache:
    """A fixed pool of block buffers kept in most-recently-used order."""

    def __init__(self, disk: MemDisk, nbuf: int = NBUF) -> None:
        self.disk = disk
        self._bufs = [Buf() for _ in range(nbuf)]  # most recently used first

    def _bget(self, blockno: int) -> Buf:
        for b in self._bufs:
            if b.blockno == blockno:
                if b.locked:
                    raise Panic(f"bget: block {blockno} already locked")
                b.refcnt += 1
                b.locked = True
                return b
        # A dirty buffer is still owned by the log even when unreferenced.
        for b in reversed(self._bufs):
            if b.refcnt == 0 and not b.dirty:
                b.blockno = blockno
                b.valid = False
                b.dirty = False
                b.refcnt = 1
                b.locked = True
                return b
        raise Panic("bget: no buffers")

    def bread(self, blockno: int) -> Buf:
        """Return a locked buffer holding the contents of ``blockno``."""
        b = self._bget(blockno)
        if not b.valid:
            b.data[:] = self.disk.read_block(blockno)
            b.valid = True
        return b

    def bwrite(self, buf: Buf) -> None:
        """Write a locked buffer's contents to disk."""
        if not buf.locked:
            raise Panic("bwrite")
        self.disk.write_block(buf.blockno, bytes(buf.data))
        buf.dirty = False
        buf.valid = True

    def brelse(self, buf: Buf) -> None:
        """Release a locked buffer, making it the most recently used."""
        if not buf.locked:
            raise Panic("brelse")
        buf.locked = False
        buf.refcnt -= 1
        if buf.refcnt == 0:
            self._bufs.remove(buf)
            self._bufs.insert(0, buf)