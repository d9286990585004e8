import threading

import pytest

from xvsim.console import CONSOLE, Console
from xvsim.disk import MemDisk
from xvsim.file import PIPESIZE, FileKind, FileTable, Pipe
from xvsim.fs import FileSystem
from xvsim.layout import BSIZE, MAXFILE, InodeType, Panic
from xvsim.mkfs import build_image


@pytest.fixture
def fs():
    return FileSystem(MemDisk(build_image({"hello": b"hi there"})))


def _new_inode(fs, kind=InodeType.FILE, major=0):
    with fs.log.transaction():
        ip = fs.ialloc(kind)
        fs.ilock(ip)
        ip.nlink = 1
        ip.major = major
        fs.iupdate(ip)
        fs.iunlock(ip)
    return ip


def test_pipe_roundtrip():
    p = Pipe()
    assert p.write(b"hello") == 5
    assert p.read(10) == b"hello"


def test_pipe_eof_after_writer_closes():
    p = Pipe()
    p.write(b"ab")
    p.close(True)
    assert p.read(1) == b"a"
    assert p.read(10) == b"b"
    assert p.read(10) == b""


def test_pipe_write_without_reader_breaks_when_full():
    p = Pipe()
    p.close(False)
    with pytest.raises(BrokenPipeError):
        p.write(bytes(PIPESIZE + 1))


def test_pipe_large_transfer_between_threads():
    p = Pipe()
    payload = bytes(i & 0xFF for i in range(5 * 1033))

    def writer():
        for n in range(5):
            p.write(payload[n * 1033 : (n + 1) * 1033])
        p.close(True)

    t = threading.Thread(target=writer)
    t.start()
    got = bytearray()
    cc = 1
    while chunk := p.read(cc):
        got += chunk
        cc = min(cc * 2, 8192)
    t.join(timeout=10)
    assert bytes(got) == payload


def test_read_file_and_eof(fs):
    ft = FileTable(fs)
    f = ft.open_inode(fs.namei("/hello"), True, False)
    assert ft.read(f, 100) == b"hi there"
    assert ft.read(f, 100) == b""
    assert ft.stat(f).size == len(b"hi there")


def test_write_to_readonly_file_fails(fs):
    ft = FileTable(fs)
    f = ft.open_inode(fs.namei("/hello"), True, False)
    with pytest.raises(OSError):
        ft.write(f, b"x")


def test_large_write_roundtrip(fs):
    ft = FileTable(fs)
    ip = _new_inode(fs)
    data = bytes((i * 7) & 0xFF for i in range(5000))
    f = ft.open_inode(fs.idup(ip), False, True)
    assert ft.write(f, data) == len(data)
    ft.close(f)
    g = ft.open_inode(ip, True, False)
    assert ft.read(g, 10000) == data
    assert ft.stat(g).size == len(data)


def test_write_past_max_file_size(fs):
    ft = FileTable(fs)
    f = ft.open_inode(_new_inode(fs), True, True)
    with pytest.raises(OSError):
        ft.write(f, bytes(MAXFILE * BSIZE + 1))


def test_close_drops_inode_reference(fs):
    ft = FileTable(fs)
    ip = fs.namei("/hello")
    f = ft.open_inode(ip, True, False)
    ft.close(f)
    assert ip.ref == 0
    assert f.kind is FileKind.NONE


def test_dup_and_double_close(fs):
    ft = FileTable(fs)
    r, w = ft.open_pipe()
    ft.dup(w)
    ft.close(w)
    assert ft.write(w, b"x") == 1
    assert ft.read(r, 1) == b"x"
    ft.close(w)
    with pytest.raises(Panic):
        ft.close(w)
    assert ft.read(r, 1) == b""


def test_pipe_end_directions(fs):
    ft = FileTable(fs)
    r, w = ft.open_pipe()
    with pytest.raises(OSError):
        ft.read(w, 1)
    with pytest.raises(OSError):
        ft.write(r, b"x")
    with pytest.raises(OSError):
        ft.stat(r)


def test_table_exhaustion(fs):
    ft = FileTable(fs, nfile=1)
    with pytest.raises(OSError):
        ft.open_pipe()
    f = ft.alloc()
    assert f.ref == 1
    with pytest.raises(OSError):
        ft.alloc()


def test_console_device(fs):
    console = Console()
    fs.register_device(CONSOLE, lambda ip, n: console.read(n), lambda ip, data: console.write(data))
    ft = FileTable(fs)
    f = ft.open_inode(_new_inode(fs, InodeType.DEV, CONSOLE), True, True)
    assert ft.write(f, b"hi") == 2
    assert bytes(console.serial) == b"hi"
    console.interrupt("ok\n")
    assert ft.read(f, 10) == b"ok\n"