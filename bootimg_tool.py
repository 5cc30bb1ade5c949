"""
bootimg_tool.py - Tool for reading, updating, creating and extracting Android boot images.

This tool provides a set of functionalities including:
- `info`: Prints the header fields and the page layout of a boot image.
- `dtbs`: Prints the device tree (DTB) table stored inside a boot image.
- `extract`: Extracts the config, kernel, ramdisk, second stage and device trees into files.
- `update`: Replaces objects of an existing boot image (file or block device) in place.
- `create`: Builds a new boot image from a kernel, a ramdisk and optional objects.

Image layout (every segment starts on a page boundary and is zero padded to the next one):

    [ header page ] 1 page
    [ kernel      ] n pages
    [ ramdisk     ] m pages
    [ second      ] o pages (optional)
    [ dtbs        ] p pages (optional, DTB table page followed by the blobs)
    [ signature   ] 1 page
"""

import argparse
import mmap
import os
import stat
import struct
import sys
from typing import BinaryIO, Dict, Iterable, List, Optional, Tuple, Union

# --- Configuration Constants ---
# Version number of the tool.
VERSION = "1.0.0"
# Magic value found at the start of every boot image.
BOOT_MAGIC = b"ANDROID!"
BOOT_MAGIC_SIZE = 8
BOOT_NAME_SIZE = 16
BOOT_ARGS_SIZE = 512
BOOT_ID_WORDS = 8
# Longest cmdline (in bytes) accepted by the config overlay.
CMDLINE_MAX_LEN = BOOT_ARGS_SIZE - 2
# Page size used when creating an image from scratch.
DEFAULT_PAGE_SIZE = 2048
# Signature page: a fixed marker padded with zeros to SIGNATURE_SIZE bytes.
SIGNATURE_SIZE = 255
SIGNATURE_MARKER = b"SEANDROIDENFORCE"
# DTB table magic ("DTBH") and version written by the vendor dtb tool.
DTBH_MAGIC = 0x48425444
DTBH_VERSION = 2
U32_MAX = 0xFFFFFFFF

# Default output names used by `extract`.
DEFAULT_CONFIG_FILE = "bootimg.cfg"
DEFAULT_KERNEL_FILE = "zImage"
DEFAULT_RAMDISK_FILE = "initrd.gz"
DEFAULT_SECOND_FILE = "stage2.img"
DEFAULT_DTBS_PREFIX = "platform"

# Segments in on-disk order, after the header page.
SEGMENT_NAMES = ("kernel", "ramdisk", "second", "dtbs", "signature")
# Header field holding the byte length of each sized segment.
SIZE_FIELDS = {
    "kernel": "kernel_size",
    "ramdisk": "ramdisk_size",
    "second": "second_size",
    "dtbs": "dtbs_size",
}

# Segment provenance markers.
ABSENT = "ABSENT"
FROM_FILE = "FILE"
ORIGINAL = "ORIGINAL"
SYNTHESIZED = "SYNTHESIZED"

# Pre-compiled struct formats
# Boot Header: Magic(8s), KernelSize(I), KernelAddr(I), RamdiskSize(I), RamdiskAddr(I),
# SecondSize(I), SecondAddr(I), TagsAddr(I), PageSize(I), DtbsSize(I), Unused(I),
# Name(16s), Cmdline(512s), Id(8I)
HEADER_STRUCT = struct.Struct('<8s10I16s512s8I')
HEADER_SIZE = HEADER_STRUCT.size
# DTB Table Header: Magic(I), Version(I), NumEntries(I)
DTBH_HEADER_STRUCT = struct.Struct('<III')
# DTB Entry: ChipId(I), PlatformId(I), SubtypeId(I), HwRev(I), HwRevEnd(I), Offset(I),
# DtbSize(I), Reserved(2s), then 2 alignment bytes (entries are 32 bytes apart on disk)
DT_ENTRY_STRUCT = struct.Struct('<7I2s2x')

# Config keys setting a header address field.
ADDRESS_KEYS = {
    "kerneladdr": "kernel_addr",
    "ramdiskaddr": "ramdisk_addr",
    "secondaddr": "second_addr",
    "tagsaddr": "tags_addr",
}


# --- Errors ---
class BootImageError(Exception):
    """
    Base class for every failure while handling a boot image. Each error is terminal
    for the current operation.

    Attributes:
        kind (str): Short name of the error kind.
        subject (Optional[str]): The offending identifier (file name or config directive).
    """
    kind: str = "BootImageError"

    def __init__(self, message: str, subject: Optional[str] = None):
        super().__init__(message)
        self.subject: Optional[str] = subject


class MalformedHeaderError(BootImageError):
    """Bad magic, null kernel/ramdisk/page size, or an unreadable header."""
    kind = "MalformedHeader"


class SizeMismatchError(BootImageError):
    """The computed layout does not fit the container, or a fixed size would change."""
    kind = "SizeMismatch"


class MissingInputError(BootImageError):
    """A mandatory input was not supplied."""
    kind = "MissingInput"


class MissingFileError(BootImageError):
    """A named file cannot be opened or reads short of its declared length."""
    kind = "MissingFile"


class BadConfigDirectiveError(BootImageError):
    """A `key = value` directive cannot be parsed or names an unknown key."""
    kind = "BadConfigDirective"


class TruncatedTableError(BootImageError):
    """A DTB table declares more entries or blob bytes than are available."""
    kind = "TruncatedTable"


class CliLogger:
    """
    Simple logger that keeps logging style consistent across commands and classes.
    """
    def __init__(self, debug: bool = False, quiet: bool = False):
        self._debug_enabled = debug
        self._quiet = quiet

    def info(self, message: str) -> None:
        if self._quiet:
            return
        add_prefix = self._debug_enabled and not message.startswith("[INFO]")
        prefix = "[INFO] " if add_prefix else ""
        print(f"{prefix}{message}")

    def warn(self, message: str) -> None:
        prefix = "[WARN]" if self._debug_enabled else "Warning:"
        print(f"{prefix} {message}")

    def debug(self, message: str) -> None:
        if self._debug_enabled:
            print(f"[DEBUG] {message}")

    def error(self, message: str) -> None:
        print(f"Error: {message}")


# --- Page arithmetic ---
def page_count(size: int, page_size: int) -> int:
    """Number of pages needed to hold `size` bytes."""
    return (size + page_size - 1) // page_size


def pad_length(size: int, page_size: int) -> int:
    """
    Returns the number of zero bytes that bring `size` up to the next page boundary.
    A size that is already an exact multiple of the page size needs no padding.
    """
    return -size % page_size


def pad_to_page(data: bytes, page_size: int) -> bytes:
    return bytes(data) + b"\x00" * pad_length(len(data), page_size)


def default_signature() -> bytes:
    return SIGNATURE_MARKER.ljust(SIGNATURE_SIZE, b"\x00")


def _cstring(raw: bytes) -> str:
    return raw.split(b"\x00", 1)[0].decode("utf-8", errors="replace")


class BootImageHeader:
    """
    In-memory form of the fixed-size boot image header.

    A new instance describes a fresh image: the magic is set, the page size is
    DEFAULT_PAGE_SIZE and every other field is zero. `name` and `cmdline` are kept
    as raw fixed-width byte arrays so that unpack/pack reproduces them exactly.
    """
    def __init__(self) -> None:
        self.magic: bytes = BOOT_MAGIC
        self.kernel_size: int = 0
        self.kernel_addr: int = 0
        self.ramdisk_size: int = 0
        self.ramdisk_addr: int = 0
        self.second_size: int = 0
        self.second_addr: int = 0
        self.tags_addr: int = 0
        self.page_size: int = DEFAULT_PAGE_SIZE
        self.dtbs_size: int = 0
        self.unused: int = 0
        self.name: bytes = b"\x00" * BOOT_NAME_SIZE
        self.cmdline: bytes = b"\x00" * BOOT_ARGS_SIZE
        self.id: List[int] = [0] * BOOT_ID_WORDS

    @classmethod
    def unpack(cls, data: bytes) -> "BootImageHeader":
        """
        Decodes a header from the first HEADER_SIZE bytes of `data`.

        Raises:
            MalformedHeaderError: If fewer than HEADER_SIZE bytes are available.
        """
        if len(data) < HEADER_SIZE:
            raise MalformedHeaderError(
                f"cannot read image header ({len(data)} of {HEADER_SIZE} bytes available)"
            )
        fields = HEADER_STRUCT.unpack_from(data, 0)
        header = cls()
        (header.magic, header.kernel_size, header.kernel_addr,
         header.ramdisk_size, header.ramdisk_addr, header.second_size,
         header.second_addr, header.tags_addr, header.page_size,
         header.dtbs_size, header.unused, header.name, header.cmdline) = fields[:13]
        header.id = list(fields[13:])
        return header

    def pack(self) -> bytes:
        # 8s/16s/512s always emit the full field width, NUL padded.
        return HEADER_STRUCT.pack(
            self.magic, self.kernel_size, self.kernel_addr,
            self.ramdisk_size, self.ramdisk_addr, self.second_size,
            self.second_addr, self.tags_addr, self.page_size,
            self.dtbs_size, self.unused, self.name, self.cmdline, *self.id
        )

    def copy(self) -> "BootImageHeader":
        header = BootImageHeader()
        header.__dict__.update(self.__dict__)
        header.id = list(self.id)
        return header

    @property
    def name_text(self) -> str:
        return _cstring(self.name)

    @property
    def cmdline_text(self) -> str:
        return _cstring(self.cmdline)

    def set_name(self, value: bytes) -> None:
        # The last byte stays NUL so the name is always terminated.
        self.name = value[:BOOT_NAME_SIZE - 1].ljust(BOOT_NAME_SIZE, b"\x00")

    def set_cmdline(self, value: bytes) -> None:
        self.cmdline = value[:BOOT_ARGS_SIZE].ljust(BOOT_ARGS_SIZE, b"\x00")

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__}({vars(self)})>"


class DtbEntry:
    """One entry of the DTB table: board identifiers plus the blob location."""
    def __init__(self, chip_id: int = 0, platform_id: int = 0, subtype_id: int = 0,
                 hw_rev: int = 0, hw_rev_end: int = 0, offset: int = 0, dtb_size: int = 0,
                 reserved: bytes = b"\x00\x00"):
        self.chip_id: int = chip_id
        self.platform_id: int = platform_id
        self.subtype_id: int = subtype_id
        self.hw_rev: int = hw_rev
        self.hw_rev_end: int = hw_rev_end
        self.offset: int = offset
        self.dtb_size: int = dtb_size
        self.reserved: bytes = reserved

    @classmethod
    def unpack(cls, data: bytes, offset: int) -> "DtbEntry":
        return cls(*DT_ENTRY_STRUCT.unpack_from(data, offset))

    def pack(self) -> bytes:
        return DT_ENTRY_STRUCT.pack(
            self.chip_id, self.platform_id, self.subtype_id, self.hw_rev,
            self.hw_rev_end, self.offset, self.dtb_size, self.reserved
        )

    def copy(self) -> "DtbEntry":
        return DtbEntry(self.chip_id, self.platform_id, self.subtype_id, self.hw_rev,
                        self.hw_rev_end, self.offset, self.dtb_size, self.reserved)

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__}({vars(self)})>"


def assign_dtb_offsets(entries: List[DtbEntry], blob_sizes: List[int], page_size: int) -> int:
    """
    Renumbers DTB entries for a freshly packed dtbs segment.

    The table occupies page 0 of the segment. Entry 0's blob starts one page later and
    every following blob starts on the page after the previous blob's last page. Offsets
    are relative to the start of the segment; dtb_size is the exact blob length.

    Returns:
        int: The number of pages used by the whole segment (table page included).
    """
    pages: int = 1
    for entry, size in zip(entries, blob_sizes):
        entry.offset = pages * page_size
        entry.dtb_size = size
        pages += page_count(size, page_size)
    return pages


class DtbTable:
    """
    The DTB table stored at the start of the dtbs segment, together with its blobs.

    Instances come from one of two constructors and never mix them:
    - `from_segment`: DECODED, offsets exactly as recorded on disk; the raw first
      page is kept so that a copied table is written back verbatim.
    - `synthesize`: SYNTHESIZED, offsets renumbered from the blob sizes.
    """
    DECODED = "DECODED"
    SYNTHESIZED = "SYNTHESIZED"

    def __init__(self, magic: int, version: int, entries: List[DtbEntry],
                 blobs: Optional[List[bytes]] = None, provenance: str = SYNTHESIZED,
                 raw_page: Optional[bytes] = None):
        self.magic: int = magic
        self.version: int = version
        self.entries: List[DtbEntry] = entries
        self.blobs: List[bytes] = blobs if blobs is not None else []
        self.provenance: str = provenance
        self.raw_page: Optional[bytes] = raw_page

    @property
    def num_entries(self) -> int:
        return len(self.entries)

    @property
    def header_size(self) -> int:
        """Byte length of the table header plus its entry array."""
        return DTBH_HEADER_STRUCT.size + self.num_entries * DT_ENTRY_STRUCT.size

    @classmethod
    def decode(cls, data: bytes) -> "DtbTable":
        """
        Decodes the table header and its entries (no blobs).

        Raises:
            TruncatedTableError: If `data` is shorter than the declared table.
        """
        if len(data) < DTBH_HEADER_STRUCT.size:
            raise TruncatedTableError(
                f"DTB table header needs {DTBH_HEADER_STRUCT.size} bytes, only {len(data)} available"
            )
        magic, version, num_entries = DTBH_HEADER_STRUCT.unpack_from(data, 0)
        needed: int = DTBH_HEADER_STRUCT.size + num_entries * DT_ENTRY_STRUCT.size
        if needed > len(data):
            raise TruncatedTableError(
                f"DTB table declares {num_entries} entries ({needed} bytes) "
                f"but only {len(data)} bytes are available"
            )
        entries: List[DtbEntry] = [
            DtbEntry.unpack(data, DTBH_HEADER_STRUCT.size + idx * DT_ENTRY_STRUCT.size)
            for idx in range(num_entries)
        ]
        return cls(magic, version, entries, [], cls.DECODED, raw_page=bytes(data[:needed]))

    @classmethod
    def from_segment(cls, segment: bytes, page_size: int) -> "DtbTable":
        """
        Decodes a whole dtbs segment, locating each blob through the offset recorded
        in its entry (no renumbering).
        """
        table = cls.decode(segment)
        blobs: List[bytes] = []
        for idx, entry in enumerate(table.entries):
            end: int = entry.offset + entry.dtb_size
            if end > len(segment):
                raise TruncatedTableError(
                    f"dt_entry[{idx:02d}] spans 0x{entry.offset:08x}-0x{end:08x}, "
                    f"past the end of the dtbs segment (0x{len(segment):08x} bytes)"
                )
            blobs.append(bytes(segment[entry.offset:end]))
        table.blobs = blobs
        table.raw_page = bytes(segment[:page_size])
        return table

    @classmethod
    def synthesize(cls, template: "DtbTable", blobs: List[bytes], page_size: int) -> "DtbTable":
        """
        Builds a new table from `template`'s board identifiers and the given blobs,
        with offsets and sizes recomputed by `assign_dtb_offsets`.
        """
        if template.num_entries != len(blobs):
            raise TruncatedTableError(
                f"DTB table declares {template.num_entries} entries but {len(blobs)} blobs were supplied"
            )
        entries: List[DtbEntry] = [entry.copy() for entry in template.entries]
        assign_dtb_offsets(entries, [len(blob) for blob in blobs], page_size)
        return cls(template.magic, template.version, entries, [bytes(blob) for blob in blobs], cls.SYNTHESIZED)

    def segment_size(self, page_size: int) -> int:
        pages: int = 1 + sum(page_count(len(blob), page_size) for blob in self.blobs)
        return pages * page_size

    def encode_header(self) -> bytes:
        parts: List[bytes] = [DTBH_HEADER_STRUCT.pack(self.magic, self.version, self.num_entries)]
        parts.extend(entry.pack() for entry in self.entries)
        return b"".join(parts)

    def table_bytes(self) -> bytes:
        """Table header plus entries, as stored in a `.dtbh` file."""
        if self.raw_page is not None:
            return self.raw_page[:self.header_size]
        return self.encode_header()

    def encode_page(self, page_size: int) -> bytes:
        """
        Returns page 0 of the dtbs segment: the table zero-padded to one page.

        Raises:
            SizeMismatchError: If a synthesized table does not fit in one page.
        """
        if self.provenance == self.DECODED and self.raw_page is not None:
            return pad_to_page(self.raw_page[:page_size], page_size)
        table: bytes = self.encode_header()
        if len(table) > page_size:
            raise SizeMismatchError(
                f"DTB table ({len(table)} bytes, {self.num_entries} entries) "
                f"does not fit in one page ({page_size} bytes)"
            )
        return pad_to_page(table, page_size)

    def __repr__(self) -> str:
        return (f"<{self.__class__.__name__}({self.provenance}, magic=0x{self.magic:08x}, "
                f"version={self.version}, entries={self.entries})>")


def compute_layout(header: BootImageHeader) -> Dict[str, int]:
    """
    Computes the page-aligned offset of every segment from the header sizes.

    Returns:
        Dict[str, int]: Offsets keyed by segment name plus "total", the image size
                        including the trailing signature page.

    Raises:
        MalformedHeaderError: If the page size is null.
    """
    page_size: int = header.page_size
    if not page_size:
        raise MalformedHeaderError("Image page size is null")
    n: int = page_count(header.kernel_size, page_size)
    m: int = page_count(header.ramdisk_size, page_size)
    o: int = page_count(header.second_size, page_size)
    p: int = page_count(header.dtbs_size, page_size)
    return {
        "kernel": page_size,
        "ramdisk": (1 + n) * page_size,
        "second": (1 + n + m) * page_size,
        "dtbs": (1 + n + m + o) * page_size,
        "signature": (1 + n + m + o + p) * page_size,
        "total": (1 + n + m + o + p + 1) * page_size,
    }


class Segment:
    """A placed region of the image: where it lives, how long it is and where its bytes come from."""
    def __init__(self, name: str, offset: int, size: int, provenance: str):
        self.name: str = name
        self.offset: int = offset
        self.size: int = size
        self.provenance: str = provenance

    def __repr__(self) -> str:
        return (f"<{self.__class__.__name__}({self.name} {self.size} bytes "
                f"at 0x{self.offset:08x}, {self.provenance})>")


SegmentData = Union[bytes, DtbTable]


class BootImage:
    """
    A boot image held in memory: the header, the bytes of each attached segment and
    the size of the container it lives in.

    A segment set to None is unattached: the writer leaves the container bytes at
    its offset untouched. `size` is 0 while the container size is unknown (fresh
    image); for block devices it is the device size and never changes.
    """
    def __init__(self, header: Optional[BootImageHeader] = None, size: int = 0,
                 is_blkdev: bool = False, name: str = "<memory>"):
        self.header: BootImageHeader = header if header is not None else BootImageHeader()
        self.size: int = size
        self.is_blkdev: bool = is_blkdev
        self.name: str = name
        self.kernel: Optional[bytes] = None
        self.ramdisk: Optional[bytes] = None
        self.second: Optional[bytes] = None
        self.dtbs: Optional[DtbTable] = None
        self.signature: Optional[bytes] = None
        self.provenance: Dict[str, str] = {segment: ABSENT for segment in SEGMENT_NAMES}
        # Offsets the ORIGINAL segments were read from.
        self.source_offsets: Dict[str, int] = {}

    def attach(self, segment: str, data: SegmentData, provenance: str,
               source_offset: Optional[int] = None) -> None:
        if segment not in SEGMENT_NAMES:
            raise ValueError(f"Unknown segment '{segment}'.")
        setattr(self, segment, data)
        self.provenance[segment] = provenance
        if source_offset is not None:
            self.source_offsets[segment] = source_offset

    def is_attached(self, segment: str) -> bool:
        return getattr(self, segment) is not None

    def layout(self) -> Dict[str, int]:
        return compute_layout(self.header)

    def segments(self) -> List[Segment]:
        """Lists all five segments with offsets freshly derived from the header."""
        layout: Dict[str, int] = self.layout()
        result: List[Segment] = []
        for name in SEGMENT_NAMES:
            size: int = getattr(self.header, SIZE_FIELDS[name]) if name in SIZE_FIELDS else SIGNATURE_SIZE
            result.append(Segment(name, layout[name], size, self.provenance[name]))
        return result

    def check(self) -> None:
        """
        Validates the header against the container: magic present, kernel, ramdisk and
        page sizes non-null, and every sized segment inside the container. The
        signature page is not required to fit.

        Raises:
            MalformedHeaderError: On a bad magic or a null size.
            SizeMismatchError: If the segments run past the container size.
        """
        header = self.header
        if header.magic != BOOT_MAGIC:
            raise MalformedHeaderError(f"{self.name}: no Android Magic Value", self.name)
        if not header.kernel_size:
            raise MalformedHeaderError(f"{self.name}: kernel size is null", self.name)
        if not header.ramdisk_size:
            raise MalformedHeaderError(f"{self.name}: ramdisk size is null", self.name)
        if not header.page_size:
            raise MalformedHeaderError(f"{self.name}: Image page size is null", self.name)
        total_size: int = compute_layout(header)["signature"]
        if total_size > self.size:
            raise SizeMismatchError(
                f"{self.name}: sizes mismatches, total_size {total_size} != img size {self.size}",
                self.name
            )


# --- Container I/O ---
class BootImageFile:
    """
    A boot image container backed by a regular file or a raw block device.

    Opened as a context manager; the handle stays open for the whole read/modify/write
    cycle and is closed once on exit. Read-only regular files are memory-mapped.
    """
    def __init__(self, path: str, mode: str = "rb"):
        if mode not in ("rb", "r+b", "wb"):
            raise ValueError(f"Unsupported container mode '{mode}'.")
        self.name: str = path
        self.mode: str = mode
        self.size: int = 0
        self.is_blkdev: bool = False
        self.mm: Optional[mmap.mmap] = None
        self._f: Optional[BinaryIO] = None

    def __enter__(self) -> "BootImageFile":
        try:
            self._f = open(self.name, self.mode)
        except OSError as e:
            raise MissingFileError(f"{self.name}: {e.strerror or e}", self.name) from e
        try:
            st = os.fstat(self._f.fileno())
            if stat.S_ISBLK(st.st_mode):
                self.is_blkdev = True
                self.size = self._f.seek(0, os.SEEK_END)
            else:
                self.size = st.st_size
                if self.mode == "rb" and self.size > 0:
                    self.mm = mmap.mmap(self._f.fileno(), 0, access=mmap.ACCESS_READ)
        except Exception:
            self._f.close()
            self._f = None
            raise
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        if self.mm is not None:
            self.mm.close()
        if self._f:
            self._f.close()
        self.mm = None
        self._f = None

    def read_at(self, offset: int, length: int) -> bytes:
        if self.mm is not None:
            data: bytes = self.mm[offset:offset + length]
        else:
            self._f.seek(offset)
            data = self._f.read(length)
        if len(data) != length:
            raise MissingFileError(
                f"{self.name}: cannot read {length} bytes at 0x{offset:08x}", self.name
            )
        return data

    def write_at(self, offset: int, data: bytes) -> None:
        self._f.seek(offset)
        self._f.write(data)


class MemoryContainer:
    """A container held in a bytearray; writes past the end grow it with zeros."""
    def __init__(self, data: bytes = b"", size: Optional[int] = None,
                 is_blkdev: bool = False, name: str = "<memory>"):
        self.buffer: bytearray = bytearray(data)
        self.size: int = len(self.buffer) if size is None else size
        self.is_blkdev: bool = is_blkdev
        self.name: str = name

    def read_at(self, offset: int, length: int) -> bytes:
        if offset + length > len(self.buffer):
            raise MissingFileError(
                f"{self.name}: cannot read {length} bytes at 0x{offset:08x}", self.name
            )
        return bytes(self.buffer[offset:offset + length])

    def write_at(self, offset: int, data: bytes) -> None:
        end: int = offset + len(data)
        if end > len(self.buffer):
            self.buffer.extend(b"\x00" * (end - len(self.buffer)))
        self.buffer[offset:end] = data

    def getvalue(self) -> bytes:
        return bytes(self.buffer)


Container = Union[BootImageFile, MemoryContainer]


def probe_container(path: str) -> Tuple[int, bool]:
    """
    Returns (size, is_blkdev) for a container about to be created. Only block devices
    have a known size; a regular or missing file reports 0.
    """
    try:
        st = os.stat(path)
    except FileNotFoundError:
        return 0, False
    if not stat.S_ISBLK(st.st_mode):
        return 0, False
    with open(path, "rb") as f:
        return f.seek(0, os.SEEK_END), True


# --- Config Overlay ---
def parse_number(text: str) -> int:
    """
    Parses a numeric config value with C prefix rules: `0x` is hexadecimal, a leading
    `0` is octal, anything else is decimal. The value must fit in 32 bits.
    """
    text = text.strip()
    if text[:2].lower() == "0x":
        base = 16
    elif len(text) > 1 and text.startswith("0"):
        base = 8
    else:
        base = 10
    value: int = int(text, base)
    if not 0 <= value <= U32_MAX:
        raise ValueError(f"{text} does not fit in 32 bits")
    return value


def parse_directive(directive: str) -> Tuple[str, str]:
    """
    Splits a `key = value` directive. Whitespace around the key and before the value
    is ignored; the value runs to the end of the line.

    Raises:
        BadConfigDirectiveError: If there is no `=` or the key is empty or contains blanks.
    """
    line: str = directive.split("\n", 1)[0].rstrip("\r")
    key, sep, value = line.partition("=")
    key = key.strip(" \t")
    if not sep or not key or " " in key or "\t" in key:
        raise BadConfigDirectiveError(f"{key or line.strip()}: bad config entry", directive)
    return key, value.lstrip(" \t")


def apply_directive(image: BootImage, directive: str) -> None:
    """
    Applies one directive to the image. The header is left untouched when the
    directive is rejected.
    """
    key, value = parse_directive(directive)
    header = image.header
    if key == "cmdline":
        encoded: bytes = value.encode("utf-8")
        if len(encoded) > CMDLINE_MAX_LEN:
            raise BadConfigDirectiveError(
                f"cmdline length ({len(encoded)}) is too long (max {CMDLINE_MAX_LEN})", directive
            )
        header.set_cmdline(encoded)
    elif key == "name":
        header.set_name(value.encode("utf-8"))
    elif key in ("bootsize", "pagesize") or key in ADDRESS_KEYS:
        try:
            number: int = parse_number(value)
        except ValueError as e:
            raise BadConfigDirectiveError(f"{key}: bad numeric value '{value.strip()}' ({e})", directive) from e
        if key == "bootsize":
            if image.is_blkdev and image.size != number:
                raise SizeMismatchError(
                    f"{image.name}: cannot change Boot Image size for a block device", directive
                )
            image.size = number
        elif key == "pagesize":
            header.page_size = number
        else:
            setattr(header, ADDRESS_KEYS[key], number)
    else:
        raise BadConfigDirectiveError(f"{key}: bad config entry", directive)


def apply_config(image: BootImage, directives: Iterable[str], logger: Optional[CliLogger] = None) -> None:
    """
    Applies directives left to right. Each one takes effect immediately: when a
    directive fails, the ones before it stay applied and the rest are not run.
    """
    for directive in directives:
        if logger:
            logger.debug(f"config: {directive.strip()}")
        apply_directive(image, directive)


def read_config_file(path: str) -> List[str]:
    """Reads a config file into directives, skipping blank lines and `#` comments."""
    try:
        with open(path, "r", encoding="utf-8") as f:
            lines: List[str] = f.read().splitlines()
    except OSError as e:
        raise MissingFileError(f"{path}: {e.strerror or e}", path) from e
    return [line for line in lines if line.strip() and not line.lstrip().startswith("#")]


def format_config(image: BootImage) -> str:
    header = image.header
    lines: List[str] = [
        f"bootsize = 0x{image.size:x}",
        f"pagesize = 0x{header.page_size:x}",
        f"kerneladdr = 0x{header.kernel_addr:x}",
        f"ramdiskaddr = 0x{header.ramdisk_addr:x}",
        f"secondaddr = 0x{header.second_addr:x}",
        f"tagsaddr = 0x{header.tags_addr:x}",
        f"name = {header.name_text}",
        f"cmdline = {header.cmdline_text}",
    ]
    return "\n".join(lines) + "\n"


# --- Layout Engine ---
class SegmentFiles:
    """
    External files feeding (or receiving) each segment. `dtbs` is a path prefix:
    the table lives in `<dtbs>.dtbh` and blob i in `<dtbs>.dtb_p<i>`.
    """
    def __init__(self, kernel: Optional[str] = None, ramdisk: Optional[str] = None,
                 second: Optional[str] = None, dtbs: Optional[str] = None):
        self.kernel: Optional[str] = kernel
        self.ramdisk: Optional[str] = ramdisk
        self.second: Optional[str] = second
        self.dtbs: Optional[str] = dtbs


class LayoutEngine:
    """
    Assembles the image to be written: decides, per segment, whether to load
    replacement bytes from a file or carry the original bytes along, then
    recomputes the image size.
    """
    def __init__(self, logger: Optional[CliLogger] = None):
        self.logger: CliLogger = logger or CliLogger()

    def _info(self, message: str) -> None:
        self.logger.info(message)

    def _debug(self, message: str) -> None:
        self.logger.debug(message)

    @staticmethod
    def check_create_inputs(files: SegmentFiles) -> None:
        if not files.kernel:
            raise MissingInputError("a kernel image is mandatory to create a boot image", "kernel")
        if not files.ramdisk:
            raise MissingInputError("a ramdisk image is mandatory to create a boot image", "ramdisk")

    def open_for_update(self, original: BootImage, files: SegmentFiles) -> BootImage:
        """
        Builds the updated image from a decoded one.

        Steps, each depending on the previous outcome:
            1. kernel: loaded from file when given.
            2. ramdisk: loaded from file when given, else copied from the original
               only if the kernel was replaced. With neither kernel nor ramdisk
               replaced it stays unattached, and so does the second stage.
            3. second: loaded from file when given, else copied from the original
               when the ramdisk is attached and second_size is non-zero.
            4. dtbs: synthesized from `<prefix>.dtbh` and its blobs when given, else
               the decoded table is copied whenever dtbs_size is non-zero.
            5. signature: always the fixed marker.
            6. size: recomputed and checked against the container.

        Args:
            original (BootImage): The image decoded from the container, already
                                  carrying any config overlay.
            files (SegmentFiles): Replacement files; None entries are not replaced.

        Returns:
            BootImage: A new image; `original` is not modified.
        """
        return self._assemble(original, files)

    def open_for_create(self, base: BootImage, files: SegmentFiles) -> BootImage:
        """
        Builds a new image from files. Kernel and ramdisk are both required and are
        checked before any file is read.
        """
        self.check_create_inputs(files)
        return self._assemble(base, files)

    def _load_file(self, path: str, what: str) -> bytes:
        self._info(f"reading {what} from {path}")
        try:
            with open(path, "rb") as f:
                expected: int = os.fstat(f.fileno()).st_size
                data: bytes = f.read()
        except OSError as e:
            raise MissingFileError(f"{path}: {e.strerror or e}", path) from e
        if len(data) < expected:
            raise MissingFileError(f"{path}: cannot read {what} ({len(data)} of {expected} bytes)", path)
        return data

    def _copy_original(self, original: BootImage, segment: str, what: str) -> SegmentData:
        data: Optional[SegmentData] = getattr(original, segment)
        if data is None:
            raise MissingFileError(f"{original.name}: cannot read {what}", original.name)
        size: int = getattr(original.header, SIZE_FIELDS[segment])
        offset: int = original.source_offsets.get(segment, 0)
        self._info(f" copy {what} {size} bytes from 0x{offset:08x}")
        return data

    def _load_dtbs(self, prefix: str, page_size: int) -> DtbTable:
        self._info("reading dtbs ...")
        table_path: str = f"{prefix}.dtbh"
        try:
            template: DtbTable = DtbTable.decode(self._load_file(table_path, "DTBH"))
        except TruncatedTableError as e:
            raise TruncatedTableError(f"{table_path}: {e}", table_path) from e
        if template.header_size > page_size:
            raise SizeMismatchError(
                f"{table_path}: DTB table ({template.header_size} bytes) does not fit in one page ({page_size} bytes)",
                table_path
            )

        blobs: List[bytes] = []
        for idx, entry in enumerate(template.entries):
            blob_path: str = f"{prefix}.dtb_p{idx}"
            self._debug(f" .. dtb {blob_path} offset 0x{entry.offset:08x}, size 0x{entry.dtb_size:08x}")
            blobs.append(self._load_file(blob_path, "DTB"))

        table = DtbTable.synthesize(template, blobs, page_size)
        for idx, entry in enumerate(table.entries):
            self._debug(f" .. dt_entry[{idx:02d}] new offset 0x{entry.offset:08x}, size 0x{entry.dtb_size:08x}")
        return table

    def _assemble(self, original: BootImage, files: SegmentFiles) -> BootImage:
        header: BootImageHeader = original.header.copy()
        if not header.page_size:
            raise MalformedHeaderError(f"{original.name}: Image page size is null", original.name)
        image = BootImage(header, original.size, original.is_blkdev, original.name)

        if files.kernel:
            kernel: bytes = self._load_file(files.kernel, "kernel")
            header.kernel_size = len(kernel)
            image.attach("kernel", kernel, FROM_FILE)

        if files.ramdisk:
            ramdisk: bytes = self._load_file(files.ramdisk, "ramdisk")
            header.ramdisk_size = len(ramdisk)
            image.attach("ramdisk", ramdisk, FROM_FILE)
        elif image.kernel is not None:
            image.attach("ramdisk", self._copy_original(original, "ramdisk", "ramdisk"), ORIGINAL,
                         original.source_offsets.get("ramdisk"))
        else:
            # Neither kernel nor ramdisk replaced: ramdisk and second stay unattached.
            self._debug("ramdisk not attached for this update")

        if files.second:
            second: bytes = self._load_file(files.second, "second stage")
            header.second_size = len(second)
            image.attach("second", second, FROM_FILE)
        elif image.ramdisk is not None and header.second_size:
            image.attach("second", self._copy_original(original, "second", "second"), ORIGINAL,
                         original.source_offsets.get("second"))

        if files.dtbs:
            table: DtbTable = self._load_dtbs(files.dtbs, header.page_size)
            header.dtbs_size = table.segment_size(header.page_size)
            image.attach("dtbs", table, SYNTHESIZED)
        elif header.dtbs_size:
            image.attach("dtbs", self._copy_original(original, "dtbs", "dtbs"), ORIGINAL,
                         original.source_offsets.get("dtbs"))

        image.attach("signature", default_signature(), SYNTHESIZED)
        self._finalize_size(image)
        return image

    def _finalize_size(self, image: BootImage) -> None:
        total_size: int = compute_layout(image.header)["total"]
        if not image.size:
            image.size = total_size
        elif total_size > image.size:
            raise SizeMismatchError(
                f"{image.name}: updated is too big for the Boot Image ({total_size} vs {image.size} bytes)",
                image.name
            )
        self._debug(f"Layout needs 0x{total_size:X} bytes, container holds 0x{image.size:X}")


# --- Reader / Writer ---
class BootImageReader:
    """
    Decodes a container into a BootImage: the header is validated first, then every
    segment it declares is read at its page-aligned offset.
    """
    def __init__(self, logger: Optional[CliLogger] = None):
        self.logger: CliLogger = logger or CliLogger()

    def read(self, container: Container) -> BootImage:
        if container.size < HEADER_SIZE:
            raise MalformedHeaderError(f"{container.name}: cannot read image header", container.name)
        header = BootImageHeader.unpack(container.read_at(0, HEADER_SIZE))
        image = BootImage(header, container.size, container.is_blkdev, container.name)
        image.check()

        layout: Dict[str, int] = compute_layout(header)
        image.attach("kernel", container.read_at(layout["kernel"], header.kernel_size),
                     ORIGINAL, layout["kernel"])
        image.attach("ramdisk", container.read_at(layout["ramdisk"], header.ramdisk_size),
                     ORIGINAL, layout["ramdisk"])
        if header.second_size:
            image.attach("second", container.read_at(layout["second"], header.second_size),
                         ORIGINAL, layout["second"])
        if header.dtbs_size:
            segment: bytes = container.read_at(layout["dtbs"], header.dtbs_size)
            try:
                table = DtbTable.from_segment(segment, header.page_size)
            except TruncatedTableError as e:
                raise TruncatedTableError(f"{container.name}: {e}", container.name) from e
            image.attach("dtbs", table, ORIGINAL, layout["dtbs"])
        if layout["signature"] + SIGNATURE_SIZE <= container.size:
            image.attach("signature", container.read_at(layout["signature"], SIGNATURE_SIZE),
                         ORIGINAL, layout["signature"])

        for segment_info in image.segments():
            self.logger.debug(f"Decoded {segment_info!r}")
        return image


class BootImageWriter:
    """
    Serializes a BootImage into a container. Offsets are recomputed from the header;
    each attached segment is followed by zero padding up to the next page boundary,
    and unattached segments are skipped.
    """
    def __init__(self, logger: Optional[CliLogger] = None):
        self.logger: CliLogger = logger or CliLogger()

    def _info(self, message: str) -> None:
        self.logger.info(message)

    def _debug(self, message: str) -> None:
        self.logger.debug(message)

    def _write_padded(self, container: Container, offset: int, data: bytes, page_size: int) -> int:
        padded: bytes = pad_to_page(data, page_size)
        container.write_at(offset, padded)
        return offset + len(padded)

    def write(self, image: BootImage, container: Container) -> int:
        """
        Writes the image.

        Returns:
            int: The offset just past the last byte written.

        Raises:
            MalformedHeaderError: If the page size is null or smaller than the header.
            SizeMismatchError: If a segment's bytes disagree with the header size, or a
                               synthesized DTB table overflows its page.
        """
        header = image.header
        page_size: int = header.page_size
        if not page_size:
            raise MalformedHeaderError(f"{image.name}: Image page size is null", image.name)
        if page_size < HEADER_SIZE:
            raise MalformedHeaderError(
                f"{image.name}: page size {page_size} is smaller than the {HEADER_SIZE}-byte header",
                image.name
            )
        for segment in ("kernel", "ramdisk", "second"):
            data: Optional[bytes] = getattr(image, segment)
            declared: int = getattr(header, SIZE_FIELDS[segment])
            if data is not None and len(data) != declared:
                raise SizeMismatchError(
                    f"{image.name}: {segment} holds {len(data)} bytes but the header declares {declared}",
                    image.name
                )
        layout: Dict[str, int] = compute_layout(header)

        self._info(f"Writing Boot Image {image.name}")
        self._debug(f"   header {HEADER_SIZE}")
        end: int = self._write_padded(container, 0, header.pack(), page_size)

        for segment in ("kernel", "ramdisk", "second"):
            data = getattr(image, segment)
            if data is None:
                self._debug(f"   {segment} not attached, container bytes left as they are")
                continue
            self._info(f"   {segment} {len(data)} at 0x{layout[segment]:08x}")
            end = self._write_padded(container, layout[segment], data, page_size)

        if image.dtbs is not None:
            end = self._write_dtbs(container, image.dtbs, layout["dtbs"], header.dtbs_size, page_size)

        if image.signature is not None:
            self._info(f"   signature {len(image.signature)} at 0x{layout['signature']:08x}")
            end = self._write_padded(container, layout["signature"], image.signature, page_size)
        return end

    def _write_dtbs(self, container: Container, table: DtbTable, offset: int,
                    dtbs_size: int, page_size: int) -> int:
        self._info(f"   dtbs {dtbs_size} at 0x{offset:08x}")
        table_page: bytes = table.encode_page(page_size)
        container.write_at(offset, table_page)
        cursor: int = offset + len(table_page)
        # Blobs follow the table in entry order, each padded on its own.
        for idx, blob in enumerate(table.blobs):
            padding: int = pad_length(len(blob), page_size)
            if padding:
                self._debug(f"   . dtb[{idx:02d}] padding for {len(blob)} is {padding}")
            container.write_at(cursor, blob + b"\x00" * padding)
            cursor += len(blob) + padding
        return cursor


def decode_image(data: bytes, container_size: Optional[int] = None, is_blkdev: bool = False,
                 logger: Optional[CliLogger] = None) -> BootImage:
    """Decodes a boot image held in memory. `container_size` defaults to len(data)."""
    container = MemoryContainer(data, container_size, is_blkdev)
    return BootImageReader(logger or CliLogger(quiet=True)).read(container)


def encode_image(image: BootImage, logger: Optional[CliLogger] = None) -> bytes:
    """Serializes a boot image into a fresh, zero-filled byte string."""
    container = MemoryContainer(name=image.name)
    BootImageWriter(logger or CliLogger(quiet=True)).write(image, container)
    return container.getvalue()


# --- Operations ---
def read_boot_image(path: str, logger: Optional[CliLogger] = None) -> BootImage:
    with BootImageFile(path, "rb") as container:
        return BootImageReader(logger).read(container)


def update_boot_image(path: str, files: SegmentFiles, directives: Iterable[str] = (),
                      logger: Optional[CliLogger] = None) -> BootImage:
    """
    Updates a boot image in place: decode, apply config directives, replace the given
    segments, then write back into the same file or block device.

    The container is read and written through one handle. A failure while writing
    leaves it partially rewritten; callers needing a safe copy must make one first.
    Unattached segments are not rewritten, so their bytes stay where they were.
    """
    logger = logger or CliLogger()
    with BootImageFile(path, "r+b") as container:
        original: BootImage = BootImageReader(logger).read(container)
        apply_config(original, directives, logger)
        image: BootImage = LayoutEngine(logger).open_for_update(original, files)
        BootImageWriter(logger).write(image, container)
    return image


def create_boot_image(path: str, files: SegmentFiles, directives: Iterable[str] = (),
                      logger: Optional[CliLogger] = None) -> BootImage:
    """
    Creates a boot image from files. Nothing is written until the image is fully
    assembled and has passed the header checks.

    Regular files are written to `<path>.tmp` first and renamed over the target;
    block devices are written in place and keep their size.
    """
    logger = logger or CliLogger()
    LayoutEngine.check_create_inputs(files)
    size, is_blkdev = probe_container(path)
    base = BootImage(size=size, is_blkdev=is_blkdev, name=path)
    apply_config(base, directives, logger)
    image: BootImage = LayoutEngine(logger).open_for_create(base, files)
    image.check()

    writer = BootImageWriter(logger)
    if is_blkdev:
        with BootImageFile(path, "r+b") as container:
            writer.write(image, container)
        return image

    temp_path: str = path + ".tmp"
    try:
        with BootImageFile(temp_path, "wb") as container:
            written: int = writer.write(image, container)
        os.replace(temp_path, path)
        logger.debug(f"Total bytes written: 0x{written:X}")
    except Exception:
        if os.path.exists(temp_path):
            try:
                os.remove(temp_path)
                logger.debug(f"Cleaned up temporary file {temp_path}")
            except OSError as cleanup_err:
                logger.warn(f"Failed to clean up partial file {temp_path}: {cleanup_err}")
        raise
    return image


def _write_output(path: str, data: bytes) -> None:
    output_dir: str = os.path.dirname(path)
    if output_dir and not os.path.exists(output_dir):
        os.makedirs(output_dir)
    with open(path, "wb") as f:
        f.write(data)


def extract_boot_image(path: str, config_file: Optional[str] = DEFAULT_CONFIG_FILE,
                       files: Optional[SegmentFiles] = None,
                       logger: Optional[CliLogger] = None) -> BootImage:
    """
    Extracts a boot image into separate files.

    Args:
        path (str): Boot image file or block device.
        config_file (Optional[str]): Destination of the `key = value` header config.
        files (Optional[SegmentFiles]): Destinations for kernel, ramdisk, second stage
                                        and the DTB prefix; defaults to zImage,
                                        initrd.gz, stage2.img and platform.

    Returns:
        BootImage: The decoded image.
    """
    logger = logger or CliLogger()
    if files is None:
        files = SegmentFiles(DEFAULT_KERNEL_FILE, DEFAULT_RAMDISK_FILE, DEFAULT_SECOND_FILE, DEFAULT_DTBS_PREFIX)
    image: BootImage = read_boot_image(path, logger)

    if config_file:
        logger.info(f"writing boot image config in {config_file}")
        _write_output(config_file, format_config(image).encode("utf-8"))
    if files.kernel and image.kernel is not None:
        logger.info(f"extracting kernel in {files.kernel}")
        _write_output(files.kernel, image.kernel)
    if files.ramdisk and image.ramdisk is not None:
        logger.info(f"extracting ramdisk in {files.ramdisk}")
        _write_output(files.ramdisk, image.ramdisk)
    if files.second and image.second is not None:
        logger.info(f"extracting second stage image in {files.second}")
        _write_output(files.second, image.second)
    if files.dtbs and image.dtbs is not None:
        table_path: str = f"{files.dtbs}.dtbh"
        logger.info(f"extracting DTBH {table_path}")
        _write_output(table_path, image.dtbs.table_bytes())
        for idx, (entry, blob) in enumerate(zip(image.dtbs.entries, image.dtbs.blobs)):
            blob_path: str = f"{files.dtbs}.dtb_p{idx}"
            logger.info(f" .. dtb {blob_path} offset 0x{entry.offset:08x}, size 0x{entry.dtb_size:08x}")
            _write_output(blob_path, blob)
    return image


def _mb(size: int) -> float:
    return size / 0x100000


def format_image_info(image: BootImage) -> List[str]:
    """Human-readable summary of the header fields and the page layout."""
    header = image.header
    page_size: int = header.page_size
    device: str = " [block device]" if image.is_blkdev else ""
    lines: List[str] = [
        "Android Boot Image Info:",
        "",
        f"* file name = {image.name}{device}",
        "",
        f"* image size = {image.size} bytes ({_mb(image.size):.2f} MB)",
        "",
        "<boot_img_hdr>",
    ]
    for label, size, addr in (("kernel", header.kernel_size, header.kernel_addr),
                              ("ramdisk", header.ramdisk_size, header.ramdisk_addr),
                              ("second", header.second_size, header.second_addr)):
        lines.append(f"   {label + '_size:':<14}{size} bytes ({_mb(size):.2f} MB), "
                     f"{page_count(size, page_size)} pages")
        lines.append(f"   {label + '_addr:':<14}0x{addr:08x}")
    lines.extend([
        f"   tags_addr:    0x{header.tags_addr:08x}",
        f"   page_size:    {page_size} bytes",
        f"   dtbs_size:    {header.dtbs_size} bytes ({_mb(header.dtbs_size):.2f} MB), "
        f"{page_count(header.dtbs_size, page_size)} pages",
        f"   unused[0]:    {header.unused}",
        f"   name:         {header.name_text}",
        "",
        f"   cmdline:      {header.cmdline_text}" if header.cmdline_text else "   cmdline       empty",
        "",
        "   id[8] 0x" + "".join(f"{word:04X}" for word in header.id),
        "",
        "<boot_img layout>",
    ])
    for segment in image.segments():
        lines.append(f"   {segment.name + ' offset:':<18} 0x{segment.offset:08x}")
    return lines


def format_dtb_info(image: BootImage) -> List[str]:
    table: Optional[DtbTable] = image.dtbs
    if table is None:
        return ["No device tree table in this image (dtbs_size is 0)."]
    lines: List[str] = [
        "<dtbh_header Info>",
        f"  magic:0x{table.magic:08x}, version:0x{table.version:08x}, num_entries:0x{table.num_entries:08x}",
    ]
    for idx, entry in enumerate(table.entries):
        lines.extend([
            "",
            f"dt_entry[{idx:02d}]",
            f"        chip_id: 0x{entry.chip_id:08x}",
            f"    platform_id: 0x{entry.platform_id:08x}",
            f"     subtype_id: 0x{entry.subtype_id:08x}",
            f"         hw_rev: 0x{entry.hw_rev:08x}",
            f"     hw_rev_end: 0x{entry.hw_rev_end:08x}",
            f"         offset: 0x{entry.offset:08x}",
            f"       dtb size: 0x{entry.dtb_size:08x}",
        ])
    return lines


# --- Helper functions for dispatching modes ---
def _collect_directives(args: argparse.Namespace, logger: CliLogger) -> List[str]:
    """
    Gathers config directives: the config file first, then each `-c` argument in order.
    """
    directives: List[str] = []
    if args.config:
        logger.info(f"reading config file {args.config}")
        directives.extend(read_config_file(args.config))
    if args.param:
        logger.info("reading config args")
        for param in args.param:
            directives.extend(line for line in param.splitlines() if line.strip())
    return directives


def _segment_files(args: argparse.Namespace) -> SegmentFiles:
    return SegmentFiles(args.kernel, args.ramdisk, args.second, args.dtbs)


def run_info_mode(args: argparse.Namespace) -> None:
    """
    Executes the 'info' mode, printing the header fields and layout of a boot image.
    """
    logger: CliLogger = CliLogger(args.debug)
    try:
        image: BootImage = read_boot_image(args.image, logger)
    except BootImageError as e:
        logger.error(f"{e}. Not a valid Android Boot Image.")
        sys.exit(1)
    except OSError as e:
        logger.error(f"Failed to read '{args.image}': {e}")
        sys.exit(1)
    for line in format_image_info(image):
        logger.info(line)


def run_dtbs_mode(args: argparse.Namespace) -> None:
    """
    Executes the 'dtbs' mode, printing the device tree table of a boot image.
    """
    logger: CliLogger = CliLogger(args.debug)
    try:
        image: BootImage = read_boot_image(args.image, logger)
    except BootImageError as e:
        logger.error(f"{e}")
        sys.exit(1)
    except OSError as e:
        logger.error(f"Failed to read '{args.image}': {e}")
        sys.exit(1)
    for line in format_dtb_info(image):
        logger.info(line)


def run_extract_mode(args: argparse.Namespace) -> None:
    """
    Executes the 'extract' mode, writing the config and every object of the image to files.
    """
    logger: CliLogger = CliLogger(args.debug)
    files = SegmentFiles(args.kernel_out, args.ramdisk_out, args.second_out, args.dtbs_out)
    try:
        extract_boot_image(args.image, args.config_out, files, logger)
    except BootImageError as e:
        logger.error(f"Extraction failed: {e}")
        sys.exit(1)
    except OSError as e:
        logger.error(f"Extraction failed: {e}. Please check permissions.")
        sys.exit(1)


def run_update_mode(args: argparse.Namespace) -> None:
    """
    Executes the 'update' mode, replacing objects of an existing boot image in place.
    """
    logger: CliLogger = CliLogger(args.debug)
    try:
        directives: List[str] = _collect_directives(args, logger)
        update_boot_image(args.image, _segment_files(args), directives, logger)
    except BootImageError as e:
        logger.error(f"Update failed: {e}")
        sys.exit(1)
    except OSError as e:
        logger.error(f"Update failed: {e}. '{args.image}' may be partially written.")
        sys.exit(1)


def run_create_mode(args: argparse.Namespace) -> None:
    """
    Executes the 'create' mode, building a new boot image. Kernel and ramdisk are mandatory.
    """
    logger: CliLogger = CliLogger(args.debug)
    try:
        files: SegmentFiles = _segment_files(args)
        LayoutEngine.check_create_inputs(files)
        directives: List[str] = _collect_directives(args, logger)
        create_boot_image(args.image, files, directives, logger)
    except BootImageError as e:
        logger.error(f"Creation failed: {e}")
        sys.exit(1)
    except OSError as e:
        logger.error(f"Creation failed: {e}")
        sys.exit(1)


def _add_segment_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("image", help="Boot image file or block device.")
    parser.add_argument("-c", dest="param", action="append", metavar="PARAM=VALUE",
                        help="Header config directive (may be repeated), e.g. \"cmdline=console=ttyS0\".")
    parser.add_argument("-f", dest="config", metavar="CONFIG",
                        help="Config file with one 'key = value' directive per line.")
    parser.add_argument("-k", dest="kernel", metavar="KERNEL", help="Kernel image.")
    parser.add_argument("-r", dest="ramdisk", metavar="RAMDISK", help="Ramdisk image.")
    parser.add_argument("-s", dest="second", metavar="SECOND", help="Second stage image.")
    parser.add_argument("-d", dest="dtbs", metavar="DTBS",
                        help="Device tree prefix: reads DTBS.dtbh and DTBS.dtb_p0, DTBS.dtb_p1, ...")
    parser.add_argument("--debug", action="store_true", help="Enable debug logging.")


def build_parser() -> argparse.ArgumentParser:
    main_parser = argparse.ArgumentParser(
        prog="bootimg-tool",
        description="Android Boot Image Reader/Updater/Creator Tool",
        formatter_class=argparse.RawTextHelpFormatter
    )
    main_parser.add_argument("-v", "--version", action="version", version=f"%(prog)s {VERSION}",
                             help="Show program's version number and exit.")
    subparsers = main_parser.add_subparsers(dest="mode", help="Operation mode. Use '<mode> -h' for mode-specific help.")

    info_parser = subparsers.add_parser("info", help="Print boot image information.")
    info_parser.add_argument("image", help="Boot image file or block device.")
    info_parser.add_argument("--debug", action="store_true", help="Enable debug logging.")
    info_parser.set_defaults(func=run_info_mode)

    dtbs_parser = subparsers.add_parser("dtbs", help="Print device tree table information.")
    dtbs_parser.add_argument("image", help="Boot image file or block device.")
    dtbs_parser.add_argument("--debug", action="store_true", help="Enable debug logging.")
    dtbs_parser.set_defaults(func=run_dtbs_mode)

    extract_parser = subparsers.add_parser("extract", help="Extract config, kernel, ramdisk, second stage and device trees.")
    extract_parser.add_argument("image", help="Boot image file or block device.")
    extract_parser.add_argument("config_out", nargs="?", default=DEFAULT_CONFIG_FILE,
                                help=f"Config file (default: {DEFAULT_CONFIG_FILE})")
    extract_parser.add_argument("kernel_out", nargs="?", default=DEFAULT_KERNEL_FILE,
                                help=f"Kernel image (default: {DEFAULT_KERNEL_FILE})")
    extract_parser.add_argument("ramdisk_out", nargs="?", default=DEFAULT_RAMDISK_FILE,
                                help=f"Ramdisk image (default: {DEFAULT_RAMDISK_FILE})")
    extract_parser.add_argument("second_out", nargs="?", default=DEFAULT_SECOND_FILE,
                                help=f"Second stage image (default: {DEFAULT_SECOND_FILE})")
    extract_parser.add_argument("dtbs_out", nargs="?", default=DEFAULT_DTBS_PREFIX,
                                help=f"Device tree prefix (default: {DEFAULT_DTBS_PREFIX}[.dtbh|.dtb_p#])")
    extract_parser.add_argument("--debug", action="store_true", help="Enable debug logging.")
    extract_parser.set_defaults(func=run_extract_mode)

    update_parser = subparsers.add_parser("update", help="Update an existing boot image in place.")
    _add_segment_arguments(update_parser)
    update_parser.set_defaults(func=run_update_mode)

    create_parser = subparsers.add_parser("create", help="Create a new boot image (-k and -r are mandatory).")
    _add_segment_arguments(create_parser)
    create_parser.set_defaults(func=run_create_mode)
    return main_parser


def main(argv: Optional[List[str]] = None) -> None:
    main_parser = build_parser()
    args = main_parser.parse_args(argv)

    # Dispatch logic
    if hasattr(args, 'func'):
        args.func(args)
    else:
        main_parser.print_help()


if __name__ == "__main__":
    main()
