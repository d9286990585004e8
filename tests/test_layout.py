import pytest

from xvsim.layout import (
    BPB,
    BSIZE,
    DINODE_SIZE,
    DIRENT_SIZE,
    DIRSIZ,
    IPB,
    NDIRECT,
    DirEntry,
    DiskInode,
    InodeType,
    SuperBlock,
    bblock,
    iblock,
)


def test_superblock_round_trip():
    sb = SuperBlock(1000, 941, 200, 30, 2, 32, 58)
    assert SuperBlock.unpack(sb.pack()) == sb


def test_superblock_is_little_endian():
    assert SuperBlock(size=1).pack()[:4] == b"\x01\x00\x00\x00"


def test_superblock_unpack_ignores_trailing_bytes():
    sb = SuperBlock(7, 6, 5, 4, 3, 2, 1)
    assert SuperBlock.unpack(sb.pack() + bytes(BSIZE)) == sb


def test_dinode_round_trip():
    addrs = list(range(100, 100 + NDIRECT + 1))
    din = DiskInode(type=InodeType.DIR, major=-1, minor=3, nlink=2, size=4096, addrs=addrs)
    back = DiskInode.unpack(din.pack())
    assert back == din
    assert back.type == InodeType.DIR


def test_dinodes_tile_a_block():
    assert len(DiskInode().pack()) == DINODE_SIZE
    assert DINODE_SIZE * IPB == BSIZE


def test_dinode_rejects_wrong_address_count():
    with pytest.raises(ValueError):
        DiskInode(addrs=[0, 1]).pack()


def test_dirent_wire_bytes():
    assert DirEntry(1, ".").pack() == b"\x01\x00." + bytes(13)


def test_dirent_round_trip_and_size():
    entry = DirEntry(42, "README")
    packed = entry.pack()
    assert len(packed) == DIRENT_SIZE
    assert BSIZE % DIRENT_SIZE == 0
    assert DirEntry.unpack(packed) == entry


def test_dirent_truncates_long_name():
    name = "123456789012345"
    back = DirEntry.unpack(DirEntry(5, name).pack())
    assert back.name == name[:DIRSIZ]
    assert back.inum == 5


def test_iblock():
    sb = SuperBlock(inodestart=32)
    assert iblock(0, sb) == sb.inodestart
    assert iblock(IPB - 1, sb) == sb.inodestart
    assert iblock(IPB, sb) == sb.inodestart + 1


def test_bblock():
    sb = SuperBlock(bmapstart=58)
    assert bblock(0, sb) == sb.bmapstart
    assert bblock(BPB - 1, sb) == sb.bmapstart
    assert bblock(BPB, sb) == sb.bmapstart + 1