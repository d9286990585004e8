"""A physical redo log that makes groups of block writes atomic."""

from __future__ import annotations

import struct
from collections.abc import Iterator
from contextlib import contextmanager

from .disk import Buf, BufferCache
from .layout import BSIZE, LOGSIZE, MAXOPBLOCKS, Panic, SuperBlock

_COUNT = struct.Struct("<i")


class Log:
    """Write-ahead log over a buffer cache.

    Callers bracket each file system operation with ``begin_op``/``end_op``
    (or ``transaction``) and call ``log_write`` instead of writing blocks.
    The log commits when no operation is outstanding.
    """

    def __init__(
        self,
        cache: BufferCache,
        sb: SuperBlock | None = None,
        *,
        logsize: int = LOGSIZE,
        maxopblocks: int = MAXOPBLOCKS,
    ) -> None:
        if _COUNT.size * (1 + logsize) >= BSIZE:
            raise Panic("initlog: too big logheader")
        if sb is None:
            buf = cache.bread(1)
            sb = SuperBlock.unpack(bytes(buf.data))
            cache.brelse(buf)
        self.cache = cache
        self.start = sb.logstart
        self.size = sb.nlog
        self.logsize = logsize
        self.maxopblocks = maxopblocks
        self.outstanding = 0
        self.committing = False
        self.blocks: list[int] = []
        self.recover()

    def _read_head(self) -> None:
        buf = self.cache.bread(self.start)
        try:
            (n,) = _COUNT.unpack_from(buf.data, 0)
            if not 0 <= n <= self.logsize:
                raise Panic("read_head: corrupt log header")
            self.blocks = list(struct.unpack_from(f"<{n}i", buf.data, _COUNT.size))
        finally:
            self.cache.brelse(buf)

    def _write_head(self) -> None:
        buf = self.cache.bread(self.start)
        header = struct.pack(f"<i{len(self.blocks)}i", len(self.blocks), *self.blocks)
        buf.data[: len(header)] = header
        self.cache.bwrite(buf)
        self.cache.brelse(buf)

    def _install_trans(self) -> None:
        for tail, blockno in enumerate(self.blocks):
            lbuf = self.cache.bread(self.start + tail + 1)
            dbuf = self.cache.bread(blockno)
            dbuf.data[:] = lbuf.data
            self.cache.bwrite(dbuf)
            self.cache.brelse(lbuf)
            self.cache.brelse(dbuf)

    def _write_log(self) -> None:
        for tail, blockno in enumerate(self.blocks):
            to = self.cache.bread(self.start + tail + 1)
            src = self.cache.bread(blockno)
            to.data[:] = src.data
            self.cache.bwrite(to)
            self.cache.brelse(src)
            self.cache.brelse(to)

    def _commit(self) -> None:
        if self.blocks:
            self._write_log()
            self._write_head()  # the real commit point
            self._install_trans()
            self.blocks = []
            self._write_head()

    def recover(self) -> None:
        """Install any committed transaction found on disk, then clear the log."""
        self._read_head()
        self._install_trans()
        self.blocks = []
        self._write_head()

    def begin_op(self) -> None:
        if self.committing:
            raise Panic("begin_op: log is committing")
        if len(self.blocks) + (self.outstanding + 1) * self.maxopblocks > self.logsize:
            raise Panic("begin_op: log space exhausted")
        self.outstanding += 1

    def end_op(self) -> None:
        if self.outstanding < 1:
            raise Panic("end_op outside of trans")
        self.outstanding -= 1
        if self.committing:
            raise Panic("log.committing")
        if self.outstanding == 0:
            self.committing = True
            try:
                self._commit()
            finally:
                self.committing = False

    @contextmanager
    def transaction(self) -> Iterator[Log]:
        """Run the enclosed block as one file system operation."""
        self.begin_op()
        try:
            yield self
        finally:
            self.end_op()

    def log_write(self, buf: Buf) -> None:
        """Record a modified buffer in the current transaction and pin it."""
        if len(self.blocks) >= self.logsize or len(self.blocks) >= self.size - 1:
            raise Panic("too big a transaction")
        if self.outstanding < 1:
            raise Panic("log_write outside of trans")
        if buf.blockno not in self.blocks:
            self.blocks.append(buf.blockno)
        buf.dirty = True