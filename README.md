# xvsim

`xvsim` is a pure-Python model of the storage, memory and console layers of a
small Unix-like teaching kernel. It also ships a few user tools that go with
them. It needs no third-party libraries.

## What is inside

- **On-disk format** (`xvsim.layout`)
  - `SuperBlock`, `DiskInode` and `DirEntry` pack to and unpack from the
    little-endian layout of 512-byte blocks.
  - `iblock` gives the block that holds an inode.
  - `bblock` gives the bitmap block that holds a block's bit.
  - `InodeType` lists the inode kinds.
  - `Panic` is raised wherever the model meets a broken invariant.
- **Disk and buffer cache** (`xvsim.disk`)
  - `MemDisk` is a block device held in memory.
  - `BufferCache` hands out locked `Buf` objects through `bread`, `bwrite` and
    `brelse`.
  - To serve a new block, the cache takes the least recently used buffer that
    is neither referenced nor dirty.
- **Write-ahead log** (`xvsim.journal`)
  - `Log` groups block writes into transactions, marked with `begin_op`/`end_op`
    or the `transaction()` context manager.
  - Inside a transaction, call `log_write` in place of writing a block.
  - The log commits when the last outstanding operation ends.
  - `recover` installs any committed transaction it finds on disk and then
    clears the log.
- **Image builder** (`xvsim.mkfs`)
  - `ImageBuilder` lays out a fresh image: boot block, superblock, log, inode
    blocks, bitmap, then data blocks.
  - `add_file` puts a file in the root directory and drops one leading `_` from
    its name.
  - `finish` writes the bitmap and returns the image bytes.
  - `build_image` does all of this for a mapping of names to contents.
- **File system** (`xvsim.fs`)
  - `FileSystem` mounts a `MemDisk`.
  - Inodes: `ialloc`, `iget`, `idup`, `ilock`, `iunlock`, `iput`, `iupdate` and
    `stati`, which returns a `Stat`.
  - File contents: `readi` and `writei`.
  - Directories: `dirlookup` and `dirlink`.
  - Paths: `namei` and `nameiparent`.
  - Device inodes read and write through handlers installed with
    `register_device`.
- **Open files and pipes** (`xvsim.file`)
  - `FileTable` holds `OpenFile` descriptions over inodes or `Pipe`s.
  - Writes to an inode go through the log in bounded chunks, one transaction
    per chunk.
  - `Pipe` holds 512 bytes. A reader blocks while the pipe is empty and a
    writer is still open; a writer blocks while it is full.
- **Console** (`xvsim.console`)
  - `Console` edits typed lines: `^U` kills the line, `^H` and DEL erase a
    character, and `^D` marks end of file. `^P` calls an optional `procdump`
    callback.
  - Output goes to a byte buffer, `serial`, and to a `CgaScreen`, an 80×25 text
    screen that scrolls.
  - `Console.read` waits for a complete line.
- **Keyboard** (`xvsim.keyboard`)
  - `Keyboard.feed` turns PC scan codes into character codes. It tracks shift,
    control, caps lock and `E0` escapes, and returns 0 when a code produces no
    character.
  - `decode` runs `feed` over a whole sequence of codes.
- **Virtual memory** (`xvsim.vm`)
  - `PhysicalMemory` is a free-list page allocator over simulated pages.
  - `AddressSpace` is a two-level x86-style page table with the kernel
    mappings in place.
  - User memory: `allocuvm`, `deallocuvm`, `inituvm`, `copyuvm`, `copyout`,
    `read`, `clearpteu` and `freevm`.
  - Encryption: `mencrypt` XORs pages with 0xFF and marks them encrypted but
    not present; `decrypt` undoes it.
  - `getpgtable` lists mapped pages as `PtEntry` records.
  - `dump_rawphymem` copies a physical page into user memory.
- **Formatting** (`xvsim.fmt`)
  - `sprintf` and `printf` understand `%d`, `%x`, `%p`, `%s`, `%c` and `%%`,
    and print hexadecimal in upper case.
  - `kernel_sprintf` has the same set without `%c` and prints lower-case
    hexadecimal.
  - Integers are taken as 32-bit words.
  - An unknown sequence is printed as it stands.
- **Tools**
  - `xvsim.grep` matches patterns made of literals and `^ . * $`. Its `grep`
    yields only newline-terminated lines that match.
  - `xvsim.wc` counts lines, words and bytes and returns a `Counts`.
  - `xvsim.tools` provides `cat`, `echo`, and `fmtname`, which pads a path's
    last element to 14 characters.

## Installing

```
pip install .
```

To run the tests:

```
pip install ".[test]"
pytest
```

## Example

```python
from xvsim.disk import MemDisk
from xvsim.file import FileTable
from xvsim.fs import FileSystem
from xvsim.mkfs import build_image

fs = FileSystem(MemDisk(build_image({"hello.txt": b"hi there\n"})))
files = FileTable(fs)

f = files.open_inode(fs.namei("/hello.txt"), readable=True, writable=False)
print(files.read(f, 100))   # b'hi there\n'
print(files.stat(f).size)   # 9
files.close(f)
```

```python
from xvsim.vm import PGSIZE, AddressSpace, PhysicalMemory

space = AddressSpace(PhysicalMemory())
space.allocuvm(0, 2 * PGSIZE)
space.copyout(0, b"hello")
space.mencrypt(0, 1)     # page 0 is now encrypted and not present
space.decrypt(0)
print(space.read(0, 5))  # b'hello'
print(space.getpgtable(10))
```

## Command-line tools

Build an image from host files. Name each file without a directory part, so
run the command from the directory that holds them:

```
xvsim-mkfs fs.img README cat echo
```

Print the lines that match a pattern:

```
xvsim-grep '^ab*c$' notes.txt
```

Count lines, words and bytes:

```
xvsim-wc notes.txt
```

Copy files, or standard input when none are named, to standard output:

```
xvsim-cat notes.txt
```

Print the arguments separated by spaces:

```
xvsim-echo hello world
```

## Errors

- `xvsim.layout.Panic` is raised where the kernel model would halt. Examples:
  freeing a free block, running out of buffers or cached inodes, a transaction
  that is too large, or a remapped page.
- Path lookup raises `FileNotFoundError` or `NotADirectoryError`.
- `dirlink` raises `FileExistsError` for a name that is already present.
- The file table raises `OSError`: with `ENFILE` when it is full, `EBADF` for
  the wrong access mode, and `EFBIG` for a write past the largest file size.
- A pipe with no reader raises `BrokenPipeError`.
- Running out of physical pages raises `MemoryError`.
- A bad user address raises `ValueError`.

## What it does not do

- There are no processes, no scheduler and no system call layer.
- There is no shell.
- The file system has no higher-level operations to create, unlink or make
  directories. Those are built by the caller from `ialloc`, `dirlink`,
  `writei` and `iput`.
- There is no `ls` command; only its `fmtname` helper is provided.
- `Log.begin_op` never waits for space. When a commit is under way, or the log
  could overflow, it raises `Panic`.
- Nothing talks to real hardware: the disk, screen, keyboard and memory are
  all in-process objects.