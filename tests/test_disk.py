import pytest

from xvsim.disk import BufferCache, MemDisk
from xvsim.layout import BSIZE, Panic


def test_memdisk_round_trip():
    disk = MemDisk(nblocks=4)
    disk.write_block(2, b"z" * BSIZE)
    assert disk.read_block(2) == b"z" * BSIZE
    assert disk.read_block(1) == bytes(BSIZE)


def test_memdisk_from_image():
    image = b"a" * BSIZE + b"b" * BSIZE
    disk = MemDisk(image)
    assert disk.nblocks == 2
    assert disk.read_block(1) == b"b" * BSIZE
    assert disk.image == image


def test_memdisk_out_of_range():
    disk = MemDisk(nblocks=2)
    with pytest.raises(Panic):
        disk.read_block(2)
    with pytest.raises(Panic):
        disk.write_block(-1, bytes(BSIZE))


def test_memdisk_rejects_short_block():
    disk = MemDisk(nblocks=2)
    with pytest.raises(ValueError):
        disk.write_block(0, b"short")


def test_bread_reads_disk():
    disk = MemDisk(nblocks=4)
    disk.write_block(3, b"q" * BSIZE)
    cache = BufferCache(disk)
    b = cache.bread(3)
    assert bytes(b.data) == b"q" * BSIZE
    assert b.valid and b.locked
    cache.brelse(b)
    assert not b.locked


def test_bwrite_updates_disk():
    disk = MemDisk(nblocks=4)
    cache = BufferCache(disk)
    b = cache.bread(1)
    b.data[:3] = b"abc"
    cache.bwrite(b)
    cache.brelse(b)
    assert disk.read_block(1)[:3] == b"abc"


def test_cached_block_is_not_reread():
    disk = MemDisk(nblocks=4)
    cache = BufferCache(disk)
    b = cache.bread(0)
    b.data[0] = 7
    cache.brelse(b)
    again = cache.bread(0)
    assert again is b
    assert again.data[0] == 7
    assert disk.read_block(0)[0] == 0


def test_double_lock_panics():
    cache = BufferCache(MemDisk(nblocks=4))
    cache.bread(0)
    with pytest.raises(Panic):
        cache.bread(0)


def test_release_unlocked_panics():
    cache = BufferCache(MemDisk(nblocks=4))
    b = cache.bread(0)
    cache.brelse(b)
    with pytest.raises(Panic):
        cache.brelse(b)
    with pytest.raises(Panic):
        cache.bwrite(b)


def test_recycles_buffers():
    disk = MemDisk(nblocks=8)
    for i in range(8):
        disk.write_block(i, bytes([i]) * BSIZE)
    cache = BufferCache(disk, nbuf=2)
    for i in range(8):
        b = cache.bread(i)
        assert b.data[0] == i
        cache.brelse(b)


def test_no_buffers_panics():
    cache = BufferCache(MemDisk(nblocks=8), nbuf=2)
    cache.bread(0)
    cache.bread(1)
    with pytest.raises(Panic):
        cache.bread(2)


def test_dirty_buffer_is_not_recycled():
    cache = BufferCache(MemDisk(nblocks=8), nbuf=1)
    b = cache.bread(0)
    b.dirty = True
    cache.brelse(b)
    with pytest.raises(Panic):
        cache.bread(1)