"""Build a file system image holding a root directory and a set of files."""

from __future__ import annotations

import struct
import sys
from collections.abc import Iterable, Mapping
from pathlib import Path

from .layout import (
    BPB,
    BSIZE,
    DINODE_SIZE,
    FSSIZE,
    IPB,
    LOGSIZE,
    MAXFILE,
    NDIRECT,
    NINDIRECT,
    ROOTINO,
    DirEntry,
    DiskInode,
    InodeType,
    SuperBlock,
    iblock,
)

NINODES = 200

_INDIRECT = struct.Struct(f"<{NINDIRECT}I")


class ImageBuilder:
    """Lays out an empty file system and appends files to its root directory.

    Disk layout:
    [ boot block | sb block | log | inode blocks | free bit map | data blocks ]
    """

    def __init__(self, fssize: int = FSSIZE, ninodes: int = NINODES, nlog: int = LOGSIZE) -> None:
        self.fssize = fssize
        self.ninodes = ninodes
        self.nlog = nlog
        self.nbitmap = fssize // BPB + 1
        self.ninodeblocks = ninodes // IPB + 1
        self.nmeta = 2 + nlog + self.ninodeblocks + self.nbitmap
        self.nblocks = fssize - self.nmeta
        if self.nblocks <= 0:
            raise ValueError("file system too small for its metadata")
        self.sb = SuperBlock(
            size=fssize,
            nblocks=self.nblocks,
            ninodes=ninodes,
            nlog=nlog,
            logstart=2,
            inodestart=2 + nlog,
            bmapstart=2 + nlog + self.ninodeblocks,
        )
        self._image = bytearray(fssize * BSIZE)
        self._finished: bytes | None = None
        self.freeinode = 1
        self.freeblock = self.nmeta

        self._wsect(1, self.sb.pack().ljust(BSIZE, b"\0"))

        self.rootino = self.ialloc(InodeType.DIR)
        if self.rootino != ROOTINO:
            raise ValueError("root inode not allocated first")
        self.iappend(self.rootino, DirEntry(self.rootino, ".").pack())
        self.iappend(self.rootino, DirEntry(self.rootino, "..").pack())

    def _check_sector(self, sec: int) -> int:
        if not 0 <= sec < self.fssize:
            raise ValueError(f"sector {sec} outside image")
        return sec * BSIZE

    def _rsect(self, sec: int) -> bytearray:
        off = self._check_sector(sec)
        return bytearray(self._image[off : off + BSIZE])

    def _wsect(self, sec: int, data: bytes) -> None:
        off = self._check_sector(sec)
        if len(data) != BSIZE:
            raise ValueError(f"sector data must be {BSIZE} bytes")
        self._image[off : off + BSIZE] = data

    def _next_block(self) -> int:
        if self.freeblock >= self.fssize:
            raise ValueError("out of data blocks")
        blockno = self.freeblock
        self.freeblock += 1
        return blockno

    def winode(self, inum: int, dinode: DiskInode) -> None:
        bn = iblock(inum, self.sb)
        buf = self._rsect(bn)
        off = (inum % IPB) * DINODE_SIZE
        buf[off : off + DINODE_SIZE] = dinode.pack()
        self._wsect(bn, bytes(buf))

    def rinode(self, inum: int) -> DiskInode:
        buf = self._rsect(iblock(inum, self.sb))
        off = (inum % IPB) * DINODE_SIZE
        return DiskInode.unpack(bytes(buf[off : off + DINODE_SIZE]))

    def ialloc(self, type: int) -> int:
        """Allocate the next inode with one link and no data."""
        inum = self.freeinode
        if inum >= self.ninodes:
            raise ValueError("out of inodes")
        self.freeinode += 1
        self.winode(inum, DiskInode(type=int(type), nlink=1, size=0))
        return inum

    def iappend(self, inum: int, data: bytes) -> None:
        """Append ``data`` to the end of inode ``inum``."""
        din = self.rinode(inum)
        off = din.size
        view = memoryview(bytes(data))
        while view:
            fbn = off // BSIZE
            if fbn >= MAXFILE:
                raise ValueError("file too large")
            if fbn < NDIRECT:
                if din.addrs[fbn] == 0:
                    din.addrs[fbn] = self._next_block()
                x = din.addrs[fbn]
            else:
                if din.addrs[NDIRECT] == 0:
                    din.addrs[NDIRECT] = self._next_block()
                indirect = list(_INDIRECT.unpack(self._rsect(din.addrs[NDIRECT])))
                if indirect[fbn - NDIRECT] == 0:
                    indirect[fbn - NDIRECT] = self._next_block()
                    self._wsect(din.addrs[NDIRECT], _INDIRECT.pack(*indirect))
                x = indirect[fbn - NDIRECT]
            n1 = min(len(view), (fbn + 1) * BSIZE - off)
            buf = self._rsect(x)
            start = off - fbn * BSIZE
            buf[start : start + n1] = view[:n1]
            self._wsect(x, bytes(buf))
            view = view[n1:]
            off += n1
        din.size = off
        self.winode(inum, din)

    def add_file(self, name: str, data: bytes) -> int:
        """Add a file to the root directory; a leading ``_`` is dropped from the name."""
        if self._finished is not None:
            raise RuntimeError("image already finished")
        if "/" in name:
            raise ValueError(f"file name may not contain '/': {name}")
        if name.startswith("_"):
            name = name[1:]
        inum = self.ialloc(InodeType.FILE)
        self.iappend(self.rootino, DirEntry(inum, name).pack())
        self.iappend(inum, data)
        return inum

    def _balloc(self, used: int) -> None:
        if used >= BPB:
            raise ValueError("too many blocks for one bitmap block")
        buf = bytearray(BSIZE)
        for i in range(used):
            buf[i // 8] |= 1 << (i % 8)
        self._wsect(self.sb.bmapstart, bytes(buf))

    def finish(self) -> bytes:
        """Fix the root directory size, write the bitmap and return the image."""
        if self._finished is None:
            din = self.rinode(self.rootino)
            din.size = (din.size // BSIZE + 1) * BSIZE
            self.winode(self.rootino, din)
            self._balloc(self.freeblock)
            self._finished = bytes(self._image)
        return self._finished


def build_image(files: Mapping[str, bytes] | Iterable[tuple[str, bytes]]) -> bytes:
    """Return an image whose root directory holds ``files``."""
    builder = ImageBuilder()
    items = files.items() if isinstance(files, Mapping) else files
    for name, data in items:
        builder.add_file(name, data)
    return builder.finish()


def main(argv: list[str] | None = None) -> int:
    args = list(sys.argv[1:] if argv is None else argv)
    if not args:
        print("Usage: mkfs fs.img files...", file=sys.stderr)
        return 1

    builder = ImageBuilder()
    print(
        f"nmeta {builder.nmeta} (boot, super, log blocks {builder.nlog} "
        f"inode blocks {builder.ninodeblocks}, bitmap blocks {builder.nbitmap}) "
        f"blocks {builder.nblocks} total {builder.fssize}"
    )
    try:
        for path in args[1:]:
            try:
                data = Path(path).read_bytes()
            except OSError as exc:
                print(f"{path}: {exc.strerror}", file=sys.stderr)
                return 1
            builder.add_file(path, data)
        print(f"balloc: first {builder.freeblock} blocks have been allocated")
        print(f"balloc: write bitmap block at sector {builder.sb.bmapstart}")
        image = builder.finish()
    except ValueError as exc:
        print(f"mkfs: {exc}", file=sys.stderr)
        return 1

    try:
        Path(args[0]).write_bytes(image)
    except OSError as exc:
        print(f"{args[0]}: {exc.strerror}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())