import struct

import pytest

from xvsim.layout import Panic
from xvsim.vm import (
    EXTMEM,
    KERNBASE,
    PGSIZE,
    PTE_P,
    PTE_U,
    PTE_W,
    AddressSpace,
    PhysicalMemory,
)


@pytest.fixture
def mem():
    return PhysicalMemory()


@pytest.fixture
def space(mem):
    return AddressSpace(mem)


def _pte(space, va):
    addr = space.walk(va)
    return struct.unpack_from("<I", space.mem.page(addr), addr % PGSIZE)[0]


def test_kalloc_gives_aligned_page_in_range(mem):
    before = mem.free_pages
    pa = mem.kalloc()
    assert pa % PGSIZE == 0
    assert mem.end <= pa < mem.phystop
    assert mem.free_pages == before - 1
    mem.kfree(pa)
    assert mem.free_pages == before
    assert bytes(mem.page(pa)) == b"\x01" * PGSIZE


def test_kalloc_returns_last_freed_page(mem):
    pa = mem.kalloc()
    mem.kfree(pa)
    assert mem.kalloc() == pa


@pytest.mark.parametrize("offset", [1, -PGSIZE])
def test_kfree_rejects_bad_addresses(mem, offset):
    with pytest.raises(Panic):
        mem.kfree(mem.end + offset if offset > 0 else mem.end + offset)


def test_kfree_rejects_phystop(mem):
    with pytest.raises(Panic):
        mem.kfree(mem.phystop)


def test_kalloc_exhaustion(mem):
    initial = mem.free_pages
    taken = []
    with pytest.raises(MemoryError):
        while True:
            taken.append(mem.kalloc())
    assert len(taken) == initial
    assert len(set(taken)) == initial


def test_freevm_returns_all_pages(mem):
    before = mem.free_pages
    space = AddressSpace(mem)
    space.allocuvm(0, 5 * PGSIZE)
    assert mem.free_pages < before
    space.freevm()
    assert mem.free_pages == before
    with pytest.raises(Panic):
        space.freevm()


def test_kernel_mappings(space):
    io = _pte(space, KERNBASE)
    assert io & PTE_P and io & PTE_W
    assert not io & PTE_U
    assert io & ~0xFFF == 0
    text = _pte(space, KERNBASE + EXTMEM)
    assert text & PTE_P and not text & PTE_W
    assert space.uva2ka(KERNBASE) is None
    assert space.walk(KERNBASE + space.mem.phystop) is None


def test_allocuvm_maps_zeroed_user_pages(space):
    assert space.allocuvm(0, 3 * PGSIZE) == 3 * PGSIZE
    assert space.sz == 3 * PGSIZE
    for i in range(3):
        assert space.uva2ka(i * PGSIZE) is not None
    assert space.read(0, 3 * PGSIZE) == bytes(3 * PGSIZE)
    assert space.uva2ka(3 * PGSIZE) is None


def test_allocuvm_shrinking_request_keeps_old_size(space):
    space.allocuvm(0, 2 * PGSIZE)
    assert space.allocuvm(2 * PGSIZE, PGSIZE) == 2 * PGSIZE


def test_allocuvm_rejects_kernel_range(space):
    with pytest.raises(ValueError):
        space.allocuvm(0, KERNBASE)


def test_allocuvm_out_of_memory_cleans_up(mem):
    space = AddressSpace(mem)
    before = mem.free_pages
    with pytest.raises(MemoryError):
        space.allocuvm(0, (before + 10) * PGSIZE)
    assert space.uva2ka(0) is None
    # only the user page table itself stays allocated
    assert mem.free_pages == before - 1


def test_deallocuvm_frees_top_pages(space, mem):
    space.allocuvm(0, 3 * PGSIZE)
    before = mem.free_pages
    assert space.deallocuvm(3 * PGSIZE, PGSIZE) == PGSIZE
    assert space.uva2ka(0) is not None
    assert space.uva2ka(PGSIZE) is None
    assert space.uva2ka(2 * PGSIZE) is None
    assert mem.free_pages == before + 2


def test_deallocuvm_growing_request_is_noop(space):
    space.allocuvm(0, PGSIZE)
    assert space.deallocuvm(PGSIZE, 2 * PGSIZE) == PGSIZE
    assert space.uva2ka(0) is not None


def test_copyout_read_round_trip_across_pages(space):
    space.allocuvm(0, 2 * PGSIZE)
    space.copyout(PGSIZE - 3, b"hello world")
    assert space.read(PGSIZE - 3, 11) == b"hello world"


def test_copyout_unmapped_fails(space):
    space.allocuvm(0, PGSIZE)
    with pytest.raises(ValueError):
        space.copyout(PGSIZE - 2, b"abcd")
    with pytest.raises(ValueError):
        space.read(PGSIZE, 1)


def test_inituvm(space):
    init = b"\x90\x90code"
    space.inituvm(init)
    assert space.read(0, len(init)) == init
    assert space.read(len(init), 10) == bytes(10)
    assert space.sz == PGSIZE


def test_inituvm_too_large(space):
    with pytest.raises(Panic):
        space.inituvm(bytes(PGSIZE))


def test_mappages_remap_panics(space, mem):
    space.allocuvm(0, PGSIZE)
    with pytest.raises(Panic):
        space.mappages(0, PGSIZE, mem.kalloc(), PTE_W | PTE_U)


def test_clearpteu(space):
    space.allocuvm(0, 2 * PGSIZE)
    space.clearpteu(0)
    assert space.uva2ka(0) is None
    assert space.uva2ka(PGSIZE) is not None
    with pytest.raises(ValueError):
        space.copyout(0, b"x")
    with pytest.raises(Panic):
        space.clearpteu(0x40000000)


def test_copyuvm_makes_independent_copy(space):
    space.allocuvm(0, 2 * PGSIZE)
    space.copyout(100, b"parent data")
    child = space.copyuvm(2 * PGSIZE)
    assert child.sz == 2 * PGSIZE
    assert child.read(100, 11) == b"parent data"
    assert child.uva2ka(0) != space.uva2ka(0)
    child.copyout(100, b"child!")
    assert space.read(100, 11) == b"parent data"
    assert child.read(100, 11) == b"child! data"


def test_copyuvm_missing_page_panics(space, mem):
    space.allocuvm(0, PGSIZE)
    before = mem.free_pages
    with pytest.raises(Panic):
        space.copyuvm(2 * PGSIZE)
    assert mem.free_pages == before


def test_mencrypt_decrypt_round_trip(space):
    space.allocuvm(0, 2 * PGSIZE)
    space.copyout(0, b"abc")
    space.mencrypt(0, 1)
    pte = _pte(space, 0)
    assert not pte & PTE_P
    assert space.read(0, 3) == bytes(b ^ 0xFF for b in b"abc")
    space.decrypt(2)
    assert _pte(space, 0) & PTE_P
    assert space.read(0, 3) == b"abc"
    with pytest.raises(ValueError):
        space.decrypt(0)


def test_mencrypt_twice_encrypts_once(space):
    space.allocuvm(0, PGSIZE)
    space.copyout(0, b"data")
    space.mencrypt(0, 1)
    space.mencrypt(0, 1)
    space.decrypt(0)
    assert space.read(0, 4) == b"data"


def test_mencrypt_argument_checks(space):
    space.allocuvm(0, PGSIZE)
    space.copyout(0, b"keep")
    space.mencrypt(0, 0)
    assert space.read(0, 4) == b"keep"
    with pytest.raises(ValueError):
        space.mencrypt(0, -1)
    with pytest.raises(ValueError):
        space.mencrypt(0, 2)
    assert space.read(0, 4) == b"keep"
    assert _pte(space, 0) & PTE_P


def test_getpgtable_entries_match_mappings(space):
    space.allocuvm(0, 3 * PGSIZE)
    space.mencrypt(PGSIZE, 1)
    entries = space.getpgtable(10)
    assert 0 < len(entries) <= 3
    ptxs = [e.ptx for e in entries]
    assert ptxs == sorted(ptxs, reverse=True)
    for e in entries:
        va = (e.pdx << 22) | (e.ptx << 12)
        assert e.ppage << 12 == space.uva2ka(va)
        assert e.writable
        assert e.encrypted == (va == PGSIZE)
        assert e.present == (not e.encrypted)
    assert any(e.encrypted for e in entries)
    assert len(space.getpgtable(1)) == 1
    assert space.getpgtable(0) == []


def test_dump_rawphymem(space, mem):
    space.allocuvm(0, 2 * PGSIZE)
    pa = mem.kalloc()
    mem.page(pa)[:5] = b"hello"
    space.dump_rawphymem(pa + 7, PGSIZE)
    assert space.read(PGSIZE, PGSIZE) == bytes(mem.page(pa))
    assert space.read(PGSIZE, 5) == b"hello"
    with pytest.raises(ValueError):
        space.dump_rawphymem(pa, 0)


def test_physical_memory_rejects_bad_layout():
    with pytest.raises(ValueError):
        PhysicalMemory(phystop=0x100000, end=0x200000)