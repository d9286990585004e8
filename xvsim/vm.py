"""Physical page allocation and two-level x86 page tables for user processes.

Physical memory is simulated page by page. Page directories and page
tables live in that memory as arrays of 32-bit entries, exactly as the
hardware would read them. Addresses handed out by the allocator are
physical addresses.
"""

from __future__ import annotations

import struct
from dataclasses import dataclass

from .layout import Panic

PGSIZE = 4096
PTXSHIFT = 12
PDXSHIFT = 22
NPDENTRIES = 1024
NPTENTRIES = 1024

KERNBASE = 0x80000000  # first kernel virtual address
EXTMEM = 0x100000  # start of extended memory
DEVSPACE = 0xFE000000  # other devices are at high addresses

PTE_P = 0x001  # present
PTE_W = 0x002  # writeable
PTE_U = 0x004  # user
PTE_E = 0x100  # encrypted

_MASK32 = 0xFFFFFFFF
_ENTRY = struct.Struct("<I")


def _pdx(va: int) -> int:
    return (va >> PDXSHIFT) & 0x3FF


def _ptx(va: int) -> int:
    return (va >> PTXSHIFT) & 0x3FF


def _pgaddr(d: int, t: int, o: int) -> int:
    return ((d << PDXSHIFT) | (t << PTXSHIFT) | o) & _MASK32


def _pte_addr(pte: int) -> int:
    return pte & ~0xFFF & _MASK32


def _pte_flags(pte: int) -> int:
    return pte & 0xFFF


def _pgroundup(sz: int) -> int:
    return (sz + PGSIZE - 1) & ~(PGSIZE - 1) & _MASK32


def _pgrounddown(a: int) -> int:
    return a & ~(PGSIZE - 1) & _MASK32


@dataclass(frozen=True)
class PtEntry:
    """State of one mapped virtual page."""

    pdx: int
    ptx: int
    ppage: int
    present: bool
    writable: bool
    encrypted: bool


class PhysicalMemory:
    """Physical pages from ``end`` up to ``phystop`` kept on a free list.

    ``data`` is where the kernel's writable data starts; the kernel image
    occupies physical memory from EXTMEM to ``end``.
    """

    def __init__(
        self,
        phystop: int = 4 * 1024 * 1024,
        end: int = 0x200000,
        data: int = 0x180000,
    ) -> None:
        if phystop % PGSIZE:
            raise ValueError("phystop must be page aligned")
        if not EXTMEM < data <= end < phystop:
            raise ValueError("need EXTMEM < data <= end < phystop")
        self.phystop = phystop
        self.end = end
        self.data = data
        self._pages: dict[int, bytearray] = {}
        self._freelist: list[int] = []
        p = _pgroundup(end)
        while p + PGSIZE <= phystop:
            self.kfree(p)
            p += PGSIZE

    @property
    def free_pages(self) -> int:
        return len(self._freelist)

    def page(self, pa: int) -> bytearray:
        """The contents of the physical page containing ``pa``."""
        if not 0 <= pa < self.phystop:
            raise ValueError(f"physical address {pa:#x} out of range")
        base = _pgrounddown(pa)
        page = self._pages.get(base)
        if page is None:
            page = self._pages[base] = bytearray(PGSIZE)
        return page

    def kfree(self, pa: int) -> None:
        """Return a page to the free list, filling it with junk."""
        if pa % PGSIZE or pa < self.end or pa >= self.phystop:
            raise Panic("kfree")
        self.page(pa)[:] = b"\x01" * PGSIZE
        self._freelist.append(pa)

    def kalloc(self) -> int:
        """Take one page off the free list and return its physical address."""
        if not self._freelist:
            raise MemoryError("kalloc: out of physical memory")
        return self._freelist.pop()


class AddressSpace:
    """One page directory: the kernel mappings plus a process's user memory."""

    def __init__(self, mem: PhysicalMemory) -> None:
        self.mem = mem
        self.sz = 0
        if KERNBASE + mem.phystop > DEVSPACE:
            raise Panic("PHYSTOP too high")
        self.pgdir: int | None = mem.kalloc()
        mem.page(self.pgdir)[:] = bytes(PGSIZE)
        try:
            for virt, start, stop, perm in self._kmap():
                self.mappages(virt, (stop - start) & _MASK32, start, perm)
        except MemoryError:
            self.freevm()
            raise

    def _kmap(self) -> list[tuple[int, int, int, int]]:
        data = self.mem.data
        return [
            (KERNBASE, 0, EXTMEM, PTE_W),  # I/O space
            (KERNBASE + EXTMEM, EXTMEM, data, 0),  # kernel text and rodata
            (KERNBASE + data, data, self.mem.phystop, PTE_W),  # kernel data and memory
            (DEVSPACE, DEVSPACE, 0, PTE_W),  # more devices
        ]

    def _load(self, addr: int) -> int:
        return _ENTRY.unpack_from(self.mem.page(addr), addr % PGSIZE)[0]

    def _store(self, addr: int, value: int) -> None:
        _ENTRY.pack_into(self.mem.page(addr), addr % PGSIZE, value & _MASK32)

    def _directory(self) -> int:
        if self.pgdir is None:
            raise Panic("address space has been freed")
        return self.pgdir

    def walk(self, va: int, alloc: bool = False) -> int | None:
        """Physical address of the page table entry for ``va``.

        Returns None when the page table is missing and ``alloc`` is false.
        """
        va &= _MASK32
        pde_addr = self._directory() + _pdx(va) * 4
        pde = self._load(pde_addr)
        if pde & PTE_P:
            pgtab = _pte_addr(pde)
        else:
            if not alloc:
                return None
            pgtab = self.mem.kalloc()
            self.mem.page(pgtab)[:] = bytes(PGSIZE)
            self._store(pde_addr, pgtab | PTE_P | PTE_W | PTE_U)
        return pgtab + _ptx(va) * 4

    def mappages(self, va: int, size: int, pa: int, perm: int) -> None:
        """Map the pages covering ``[va, va+size)`` to physical pages from ``pa``."""
        a = _pgrounddown(va)
        last = _pgrounddown(va + size - 1)
        while True:
            pte_addr = self.walk(a, True)
            if self._load(pte_addr) & (PTE_P | PTE_E):
                raise Panic("remap")
            pte = pa | perm | PTE_P
            if pte & PTE_E:
                pte &= ~PTE_P
            self._store(pte_addr, pte)
            if a == last:
                break
            a = (a + PGSIZE) & _MASK32
            pa = (pa + PGSIZE) & _MASK32

    def inituvm(self, init: bytes) -> None:
        """Load a program smaller than a page at address 0."""
        if len(init) >= PGSIZE:
            raise Panic("inituvm: more than a page")
        pa = self.mem.kalloc()
        page = self.mem.page(pa)
        page[:] = bytes(PGSIZE)
        self.mappages(0, PGSIZE, pa, PTE_W | PTE_U)
        page[: len(init)] = init
        self.sz = PGSIZE

    def allocuvm(self, oldsz: int, newsz: int) -> int:
        """Grow user memory from ``oldsz`` to ``newsz``; return the new size."""
        if newsz >= KERNBASE:
            raise ValueError("user memory may not reach KERNBASE")
        if newsz < oldsz:
            return oldsz
        a = _pgroundup(oldsz)
        while a < newsz:
            try:
                pa = self.mem.kalloc()
            except MemoryError:
                self.deallocuvm(newsz, oldsz)
                raise
            self.mem.page(pa)[:] = bytes(PGSIZE)
            try:
                self.mappages(a, PGSIZE, pa, PTE_W | PTE_U)
            except MemoryError:
                self.deallocuvm(newsz, oldsz)
                self.mem.kfree(pa)
                raise
            a += PGSIZE
        self.sz = newsz
        return newsz

    def deallocuvm(self, oldsz: int, newsz: int) -> int:
        """Shrink user memory from ``oldsz`` to ``newsz``; return the new size."""
        if newsz >= oldsz:
            return oldsz
        a = _pgroundup(newsz)
        while a < oldsz:
            pte_addr = self.walk(a)
            if pte_addr is None:
                a = _pgaddr(_pdx(a) + 1, 0, 0) - PGSIZE
            else:
                pte = self._load(pte_addr)
                if pte & (PTE_P | PTE_E):
                    pa = _pte_addr(pte)
                    if pa == 0:
                        raise Panic("kfree")
                    self.mem.kfree(pa)
                    self._store(pte_addr, 0)
            a += PGSIZE
        self.sz = newsz
        return newsz

    def freevm(self) -> None:
        """Free all user pages, every page table and the directory itself."""
        if self.pgdir is None:
            raise Panic("freevm: no pgdir")
        self.deallocuvm(KERNBASE, 0)
        for i in range(NPDENTRIES):
            pde = self._load(self.pgdir + i * 4)
            if pde & PTE_P:
                self.mem.kfree(_pte_addr(pde))
        self.mem.kfree(self.pgdir)
        self.pgdir = None

    def clearpteu(self, uva: int) -> None:
        """Make the page at ``uva`` inaccessible to user code."""
        pte_addr = self.walk(uva)
        if pte_addr is None:
            raise Panic("clearpteu")
        self._store(pte_addr, self._load(pte_addr) & ~PTE_U)

    def copyuvm(self, sz: int) -> AddressSpace:
        """A new address space holding a copy of the first ``sz`` bytes of this one."""
        child = AddressSpace(self.mem)
        for i in range(0, sz, PGSIZE):
            pte_addr = self.walk(i)
            if pte_addr is None:
                child.freevm()
                raise Panic("copyuvm: pte should exist")
            pte = self._load(pte_addr)
            if not pte & (PTE_P | PTE_E):
                child.freevm()
                raise Panic("copyuvm: page not present")
            try:
                pa = self.mem.kalloc()
            except MemoryError:
                child.freevm()
                raise
            self.mem.page(pa)[:] = self.mem.page(_pte_addr(pte))
            try:
                child.mappages(i, PGSIZE, pa, _pte_flags(pte))
            except MemoryError:
                self.mem.kfree(pa)
                child.freevm()
                raise
        child.sz = sz
        return child

    def uva2ka(self, uva: int) -> int | None:
        """Physical address of the user page holding ``uva``, or None."""
        pte_addr = self.walk(uva)
        if pte_addr is None:
            return None
        pte = self._load(pte_addr)
        if not pte & (PTE_P | PTE_E):
            return None
        if not pte & PTE_U:
            return None
        return _pte_addr(pte)

    def copyout(self, va: int, data: bytes) -> None:
        """Copy ``data`` to user address ``va``."""
        view = memoryview(bytes(data))
        while view:
            va0 = _pgrounddown(va)
            pa0 = self.uva2ka(va0)
            if pa0 is None:
                raise ValueError(f"bad user address {va:#x}")
            n = min(PGSIZE - (va - va0), len(view))
            start = va - va0
            self.mem.page(pa0)[start : start + n] = view[:n]
            view = view[n:]
            va = va0 + PGSIZE

    def read(self, va: int, n: int) -> bytes:
        """Copy ``n`` bytes from user address ``va``."""
        out = bytearray()
        while len(out) < n:
            va0 = _pgrounddown(va)
            pa0 = self.uva2ka(va0)
            if pa0 is None:
                raise ValueError(f"bad user address {va:#x}")
            start = va - va0
            m = min(PGSIZE - start, n - len(out))
            out += self.mem.page(pa0)[start : start + m]
            va = va0 + PGSIZE
        return bytes(out)

    def _flip(self, pa: int) -> None:
        page = self.mem.page(pa)
        page[:] = bytes(b ^ 0xFF for b in page)

    def mencrypt(self, va: int, npages: int) -> None:
        """Encrypt ``npages`` user pages starting at the page holding ``va``.

        All pages are checked before any is changed; pages already
        encrypted are left alone.
        """
        if npages == 0:
            return
        if npages < 0:
            raise ValueError("page count must not be negative")
        base = _pgrounddown(va)
        for i in range(npages):
            if self.uva2ka(base + i * PGSIZE) is None:
                raise ValueError(f"bad user address {base + i * PGSIZE:#x}")
        for i in range(npages):
            aligned = base + i * PGSIZE
            pa = self.uva2ka(aligned)
            pte_addr = self.walk(aligned)
            pte = self._load(pte_addr)
            if pte & PTE_E:
                continue
            self._store(pte_addr, (pte & ~PTE_P) | PTE_E)
            self._flip(pa)

    def decrypt(self, uva: int) -> None:
        """Decrypt the encrypted user page holding ``uva``."""
        aligned = _pgrounddown(uva)
        pa = self.uva2ka(aligned)
        if pa is None:
            raise ValueError(f"bad user address {uva:#x}")
        pte_addr = self.walk(aligned)
        pte = self._load(pte_addr)
        if not (pte & PTE_E and not pte & PTE_P):
            raise ValueError(f"page at {aligned:#x} is not encrypted")
        self._store(pte_addr, (pte | PTE_P) & ~PTE_E)
        self._flip(pa)

    def getpgtable(self, num: int) -> list[PtEntry]:
        """Up to ``num`` valid user pages, scanning down from the page at the size.

        The scan starts at the page holding address ``sz`` and covers
        ``sz // PGSIZE`` pages.
        """
        entries: list[PtEntry] = []
        addr = _pgrounddown(self.sz)
        total = self.sz // PGSIZE
        searched = 0
        while len(entries) < num and searched < total:
            pte_addr = self.walk(addr)
            pte = self._load(pte_addr) if pte_addr is not None else 0
            if pte & (PTE_E | PTE_P):
                entries.append(
                    PtEntry(
                        pdx=_pdx(addr),
                        ptx=_ptx(addr),
                        ppage=pte >> PTXSHIFT,
                        present=bool(pte & PTE_P),
                        writable=bool(pte & PTE_W),
                        encrypted=bool(pte & PTE_E),
                    )
                )
            searched += 1
            addr -= PGSIZE
        return entries

    def dump_rawphymem(self, pa: int, va: int) -> None:
        """Copy the physical page holding ``pa`` to user address ``va``."""
        if va == 0:
            raise ValueError("null buffer")
        page = self.mem.page(_pgrounddown(pa))
        self.copyout(va, bytes(page))