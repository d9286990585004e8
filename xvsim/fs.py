"""Inodes, directories and path names on top of the logged buffer cache.

Five layers make up the file system: blocks, the log, inodes, directories
and path names. The log and the block cache live in their own modules;
this one allocates blocks and inodes, reads and writes inode contents, and
resolves paths.
"""

from __future__ import annotations

import struct
from collections.abc import Callable
from dataclasses import dataclass, field

from .disk import BufferCache, MemDisk
from .journal import Log
from .layout import (
    BPB,
    BSIZE,
    DINODE_SIZE,
    DIRENT_SIZE,
    DIRSIZ,
    IPB,
    MAXFILE,
    NBUF,
    NDEV,
    NDIRECT,
    NINDIRECT,
    NINODE,
    ROOTDEV,
    ROOTINO,
    DirEntry,
    DiskInode,
    InodeType,
    Panic,
    SuperBlock,
    bblock,
    iblock,
)

_ADDR = struct.Struct("<I")


def skipelem(path: str) -> tuple[str, str] | None:
    """Split off the first element of ``path``.

    Returns ``(name, rest)`` where ``rest`` has no leading slashes, or None
    when there is no element left. Names longer than DIRSIZ are truncated.
    """
    path = path.lstrip("/")
    if not path:
        return None
    elem, _, rest = path.partition("/")
    return elem[:DIRSIZ], rest.lstrip("/")


def namecmp(s: str, t: str) -> int:
    """Compare two directory entry names over at most DIRSIZ bytes."""
    a = s.encode("utf-8", "surrogateescape")[:DIRSIZ]
    b = t.encode("utf-8", "surrogateescape")[:DIRSIZ]
    return (a > b) - (a < b)


@dataclass(frozen=True)
class Stat:
    """Metadata about an inode."""

    dev: int
    ino: int
    type: int
    nlink: int
    size: int


@dataclass(eq=False)
class Inode:
    """In-memory copy of an inode, with cache bookkeeping."""

    dev: int = 0
    inum: int = 0
    ref: int = 0
    locked: bool = False
    valid: bool = False
    type: int = 0
    major: int = 0
    minor: int = 0
    nlink: int = 0
    size: int = 0
    addrs: list[int] = field(default_factory=lambda: [0] * (NDIRECT + 1))


DeviceRead = Callable[[Inode, int], bytes]
DeviceWrite = Callable[[Inode, bytes], int]


class FileSystem:
    """A mounted file system on one disk.

    Operations that modify the disk must run inside ``self.log.transaction()``.
    """

    def __init__(
        self,
        disk: MemDisk,
        *,
        dev: int = ROOTDEV,
        nbuf: int = NBUF,
        ninode: int = NINODE,
    ) -> None:
        self.dev = dev
        self.cache = BufferCache(disk, nbuf)
        buf = self.cache.bread(1)
        self.sb = SuperBlock.unpack(bytes(buf.data))
        self.cache.brelse(buf)
        self.log = Log(self.cache, self.sb)
        self._icache = [Inode() for _ in range(ninode)]
        self._devsw: dict[int, tuple[DeviceRead | None, DeviceWrite | None]] = {}

    # Devices

    def register_device(
        self, major: int, read: DeviceRead | None, write: DeviceWrite | None
    ) -> None:
        """Install the read and write handlers for device ``major``."""
        if not 0 <= major < NDEV:
            raise ValueError(f"device major {major} out of range")
        self._devsw[major] = (read, write)

    def _driver(self, ip: Inode, which: int) -> Callable:
        drivers = self._devsw.get(ip.major) if 0 <= ip.major < NDEV else None
        if drivers is None or drivers[which] is None:
            raise ValueError(f"no driver for device {ip.major}")
        return drivers[which]

    # Blocks

    def _bzero(self, bno: int) -> None:
        bp = self.cache.bread(bno)
        bp.data[:] = bytes(BSIZE)
        self.log.log_write(bp)
        self.cache.brelse(bp)

    def _balloc(self) -> int:
        for b in range(0, self.sb.size, BPB):
            bp = self.cache.bread(bblock(b, self.sb))
            for bi in range(min(BPB, self.sb.size - b)):
                m = 1 << (bi % 8)
                if not bp.data[bi // 8] & m:
                    bp.data[bi // 8] |= m
                    self.log.log_write(bp)
                    self.cache.brelse(bp)
                    self._bzero(b + bi)
                    return b + bi
            self.cache.brelse(bp)
        raise Panic("balloc: out of blocks")

    def _bfree(self, b: int) -> None:
        bp = self.cache.bread(bblock(b, self.sb))
        bi = b % BPB
        m = 1 << (bi % 8)
        if not bp.data[bi // 8] & m:
            self.cache.brelse(bp)
            raise Panic("freeing free block")
        bp.data[bi // 8] &= ~m & 0xFF
        self.log.log_write(bp)
        self.cache.brelse(bp)

    # Inodes

    @staticmethod
    def _dinode_offset(inum: int) -> int:
        return (inum % IPB) * DINODE_SIZE

    def ialloc(self, type: int) -> Inode:
        """Allocate an on-disk inode of ``type``; return it referenced but unlocked."""
        for inum in range(1, self.sb.ninodes):
            bp = self.cache.bread(iblock(inum, self.sb))
            off = self._dinode_offset(inum)
            dip = DiskInode.unpack(bytes(bp.data[off : off + DINODE_SIZE]))
            if dip.type == InodeType.FREE:
                bp.data[off : off + DINODE_SIZE] = DiskInode(type=int(type)).pack()
                self.log.log_write(bp)
                self.cache.brelse(bp)
                return self.iget(inum)
            self.cache.brelse(bp)
        raise Panic("ialloc: no inodes")

    def iupdate(self, ip: Inode) -> None:
        """Copy a modified in-memory inode to disk."""
        bp = self.cache.bread(iblock(ip.inum, self.sb))
        off = self._dinode_offset(ip.inum)
        dip = DiskInode(
            type=int(ip.type),
            major=ip.major,
            minor=ip.minor,
            nlink=ip.nlink,
            size=ip.size,
            addrs=list(ip.addrs),
        )
        bp.data[off : off + DINODE_SIZE] = dip.pack()
        self.log.log_write(bp)
        self.cache.brelse(bp)

    def iget(self, inum: int) -> Inode:
        """Return the cached inode ``inum``, neither locked nor read from disk."""
        empty: Inode | None = None
        for ip in self._icache:
            if ip.ref > 0 and ip.dev == self.dev and ip.inum == inum:
                ip.ref += 1
                return ip
            if empty is None and ip.ref == 0:
                empty = ip
        if empty is None:
            raise Panic("iget: no inodes")
        empty.dev = self.dev
        empty.inum = inum
        empty.ref = 1
        empty.valid = False
        return empty

    def idup(self, ip: Inode) -> Inode:
        ip.ref += 1
        return ip

    def ilock(self, ip: Inode) -> None:
        """Lock ``ip``, reading it from disk if needed."""
        if ip is None or ip.ref < 1:
            raise Panic("ilock")
        if ip.locked:
            raise Panic("ilock: inode already locked")
        ip.locked = True
        if not ip.valid:
            bp = self.cache.bread(iblock(ip.inum, self.sb))
            off = self._dinode_offset(ip.inum)
            dip = DiskInode.unpack(bytes(bp.data[off : off + DINODE_SIZE]))
            self.cache.brelse(bp)
            ip.type = dip.type
            ip.major = dip.major
            ip.minor = dip.minor
            ip.nlink = dip.nlink
            ip.size = dip.size
            ip.addrs = list(dip.addrs)
            ip.valid = True
            if ip.type == InodeType.FREE:
                raise Panic("ilock: no type")

    def iunlock(self, ip: Inode) -> None:
        if ip is None or not ip.locked or ip.ref < 1:
            raise Panic("iunlock")
        ip.locked = False

    def iput(self, ip: Inode) -> None:
        """Drop a reference; free the inode when no links or references remain."""
        if ip.ref < 1:
            raise Panic("iput")
        if ip.locked:
            raise Panic("iput: inode is locked")
        ip.locked = True
        try:
            if ip.valid and ip.nlink == 0 and ip.ref == 1:
                self._itrunc(ip)
                ip.type = InodeType.FREE
                self.iupdate(ip)
                ip.valid = False
        finally:
            ip.locked = False
        ip.ref -= 1

    def _iunlockput(self, ip: Inode) -> None:
        self.iunlock(ip)
        self.iput(ip)

    # Inode content

    def _bmap(self, ip: Inode, bn: int) -> int:
        if bn < NDIRECT:
            if ip.addrs[bn] == 0:
                ip.addrs[bn] = self._balloc()
            return ip.addrs[bn]
        bn -= NDIRECT
        if bn < NINDIRECT:
            if ip.addrs[NDIRECT] == 0:
                ip.addrs[NDIRECT] = self._balloc()
            bp = self.cache.bread(ip.addrs[NDIRECT])
            try:
                (addr,) = _ADDR.unpack_from(bp.data, bn * _ADDR.size)
                if addr == 0:
                    addr = self._balloc()
                    _ADDR.pack_into(bp.data, bn * _ADDR.size, addr)
                    self.log.log_write(bp)
            finally:
                self.cache.brelse(bp)
            return addr
        raise Panic("bmap: out of range")

    def _itrunc(self, ip: Inode) -> None:
        for i in range(NDIRECT):
            if ip.addrs[i]:
                self._bfree(ip.addrs[i])
                ip.addrs[i] = 0
        if ip.addrs[NDIRECT]:
            bp = self.cache.bread(ip.addrs[NDIRECT])
            indirect = struct.unpack_from(f"<{NINDIRECT}I", bp.data)
            self.cache.brelse(bp)
            for addr in indirect:
                if addr:
                    self._bfree(addr)
            self._bfree(ip.addrs[NDIRECT])
            ip.addrs[NDIRECT] = 0
        ip.size = 0
        self.iupdate(ip)

    def stati(self, ip: Inode) -> Stat:
        return Stat(dev=ip.dev, ino=ip.inum, type=ip.type, nlink=ip.nlink, size=ip.size)

    def readi(self, ip: Inode, off: int, n: int) -> bytes:
        """Read up to ``n`` bytes at ``off``; the result stops at end of file."""
        if ip.type == InodeType.DEV:
            return self._driver(ip, 0)(ip, n)
        if off < 0 or n < 0 or off > ip.size:
            raise ValueError(f"read at offset {off} beyond size {ip.size}")
        n = min(n, ip.size - off)
        out = bytearray()
        while len(out) < n:
            bp = self.cache.bread(self._bmap(ip, off // BSIZE))
            start = off % BSIZE
            m = min(n - len(out), BSIZE - start)
            out += bp.data[start : start + m]
            self.cache.brelse(bp)
            off += m
        return bytes(out)

    def writei(self, ip: Inode, data: bytes, off: int) -> int:
        """Write ``data`` at ``off``, growing the file; return the bytes written."""
        if ip.type == InodeType.DEV:
            return self._driver(ip, 1)(ip, bytes(data))
        n = len(data)
        if off < 0 or off > ip.size:
            raise ValueError(f"write at offset {off} beyond size {ip.size}")
        if off + n > MAXFILE * BSIZE:
            raise ValueError("write past maximum file size")
        view = memoryview(bytes(data))
        while view:
            bp = self.cache.bread(self._bmap(ip, off // BSIZE))
            start = off % BSIZE
            m = min(len(view), BSIZE - start)
            bp.data[start : start + m] = view[:m]
            self.log.log_write(bp)
            self.cache.brelse(bp)
            view = view[m:]
            off += m
        if n > 0 and off > ip.size:
            ip.size = off
            self.iupdate(ip)
        return n

    # Directories

    def dirlookup(self, dp: Inode, name: str) -> tuple[Inode, int] | None:
        """Find ``name`` in directory ``dp``; return its inode and entry offset."""
        if dp.type != InodeType.DIR:
            raise Panic("dirlookup not DIR")
        for off in range(0, dp.size, DIRENT_SIZE):
            raw = self.readi(dp, off, DIRENT_SIZE)
            if len(raw) != DIRENT_SIZE:
                raise Panic("dirlookup read")
            de = DirEntry.unpack(raw)
            if de.inum == 0:
                continue
            if namecmp(name, de.name) == 0:
                return self.iget(de.inum), off
        return None

    def dirlink(self, dp: Inode, name: str, inum: int) -> None:
        """Add the entry ``(name, inum)`` to directory ``dp``."""
        found = self.dirlookup(dp, name)
        if found is not None:
            self.iput(found[0])
            raise FileExistsError(f"{name}: entry exists")
        for off in range(0, dp.size, DIRENT_SIZE):
            raw = self.readi(dp, off, DIRENT_SIZE)
            if len(raw) != DIRENT_SIZE:
                raise Panic("dirlink read")
            if DirEntry.unpack(raw).inum == 0:
                break
        else:
            off = dp.size
        try:
            written = self.writei(dp, DirEntry(inum, name).pack(), off)
        except ValueError as exc:
            raise Panic("dirlink") from exc
        if written != DIRENT_SIZE:
            raise Panic("dirlink")

    # Paths

    def _namex(self, path: str, parent: bool, cwd: Inode | None) -> tuple[Inode, str]:
        if path.startswith("/") or cwd is None:
            ip = self.iget(ROOTINO)
        else:
            ip = self.idup(cwd)
        name = ""
        while (elem := skipelem(path)) is not None:
            name, path = elem
            self.ilock(ip)
            if ip.type != InodeType.DIR:
                self._iunlockput(ip)
                raise NotADirectoryError(f"{name}: not a directory on the path")
            if parent and path == "":
                self.iunlock(ip)
                return ip, name
            found = self.dirlookup(ip, name)
            if found is None:
                self._iunlockput(ip)
                raise FileNotFoundError(f"{name}: no such entry")
            self._iunlockput(ip)
            ip = found[0]
        if parent:
            self.iput(ip)
            raise FileNotFoundError("path has no final element")
        return ip, name

    def namei(self, path: str, cwd: Inode | None = None) -> Inode:
        """Return the referenced, unlocked inode for ``path``."""
        return self._namex(path, False, cwd)[0]

    def nameiparent(self, path: str, cwd: Inode | None = None) -> tuple[Inode, str]:
        """Return the parent directory of ``path`` and the final element's name."""
        return self._namex(path, True, cwd)