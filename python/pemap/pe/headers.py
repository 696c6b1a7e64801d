"""
PE header structures and the header parsing stages.

Each structure is a frozen dataclass whose members are Field-wrapped, so
every value remembers the file offset (and RVA) it was decoded from. The
on-disk layout is declared once per class in LAYOUT; FieldStruct derives
the struct format, member offsets and total size from it.

The parse_* functions implement the fixed header pipeline:

    DOS header -> PE signature -> File header -> Optional header
    -> Data directories -> Section table

Every failure here is fatal for the whole parse.
"""

import logging
import struct
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import ClassVar

from ..errors import (
    CountMismatch,
    InvalidSignature,
    Truncated,
    UnsupportedOptionalHeaderMagic,
)
from ..field import Field
from ..options import ParseOptions
from ..reader import ByteReader
from .types import (
    DIRECTORY_NAMES,
    DOS_MAGIC,
    IMAGE_DLLCHARACTERISTICS_DYNAMIC_BASE,
    IMAGE_FILE_DLL,
    IMAGE_FILE_EXECUTABLE_IMAGE,
    IMAGE_NT_OPTIONAL_HDR32_MAGIC,
    IMAGE_NT_OPTIONAL_HDR64_MAGIC,
    IMAGE_NUMBEROF_DIRECTORY_ENTRIES,
    IMAGE_ORDINAL_FLAG32,
    IMAGE_ORDINAL_FLAG64,
    IMAGE_SCN_CNT_CODE,
    IMAGE_SCN_MEM_EXECUTE,
    PE_SIGNATURE,
    lookup_name,
)

logger = logging.getLogger(__name__)


# =============================================================================
# Field-wrapped structure support
# =============================================================================


class FieldStruct:
    """Mixin for dataclasses decoded member-by-member into Fields.

    Subclasses declare LAYOUT as (member name, struct code) pairs in on-disk
    order. All codes are little-endian with no padding.
    """

    LAYOUT: ClassVar[tuple[tuple[str, str], ...]] = ()
    SIZE: ClassVar[int] = 0
    _FMT: ClassVar[str] = "<"
    _OFFSETS: ClassVar[tuple[int, ...]] = ()

    def __init_subclass__(cls, **kwargs):
        super().__init_subclass__(**kwargs)
        if not cls.LAYOUT:
            return
        offsets = []
        fmt = "<"
        for _, code in cls.LAYOUT:
            offsets.append(struct.calcsize(fmt))
            fmt += code
        cls._FMT = fmt
        cls._OFFSETS = tuple(offsets)
        cls.SIZE = struct.calcsize(fmt)

    @classmethod
    def read(cls, reader: ByteReader, rva: int | None = None, **extra):
        """Decode one structure at the reader's position.

        Args:
            reader: Reader positioned at the first byte of the structure
            rva: RVA of the first byte, when the structure was reached
                through the section table. Defaults to the file offset.
            extra: Additional non-Field dataclass members

        Raises:
            Truncated: If the structure runs past EOF
        """
        start = reader.position
        delta = 0 if rva is None else rva - start
        values = reader.read_struct(cls._FMT)
        members = {
            name: Field(value, start + rel, start + rel + delta)
            for (name, _), rel, value in zip(cls.LAYOUT, cls._OFFSETS, values)
        }
        return cls(**members, **extra)

    @property
    def offset(self) -> int:
        """File offset of the first member."""
        return getattr(self, self.LAYOUT[0][0]).offset

    @property
    def rva(self) -> int:
        """RVA of the first member."""
        return getattr(self, self.LAYOUT[0][0]).rva

    def values(self) -> dict:
        """Plain member values keyed by member name."""
        return {name: getattr(self, name).value for name, _ in self.LAYOUT}


def timestamp_to_datetime(timestamp: int) -> datetime:
    """Convert a PE TimeDateStamp (seconds since the Unix epoch) to UTC."""
    return datetime.fromtimestamp(timestamp, tz=timezone.utc)


# =============================================================================
# Header structures
# =============================================================================


@dataclass(frozen=True)
class DosHeader(FieldStruct):
    """DOS MZ header (IMAGE_DOS_HEADER).

    Only e_magic and e_lfanew matter for PE parsing; the rest is kept for
    completeness.
    """

    e_magic: Field[int]
    e_cblp: Field[int]
    e_cp: Field[int]
    e_crlc: Field[int]
    e_cparhdr: Field[int]
    e_minalloc: Field[int]
    e_maxalloc: Field[int]
    e_ss: Field[int]
    e_sp: Field[int]
    e_csum: Field[int]
    e_ip: Field[int]
    e_cs: Field[int]
    e_lfarlc: Field[int]
    e_ovno: Field[int]
    e_res: Field[bytes]
    e_oemid: Field[int]
    e_oeminfo: Field[int]
    e_res2: Field[bytes]
    e_lfanew: Field[int]  # Offset to PE signature

    LAYOUT: ClassVar = (
        ("e_magic", "H"),
        ("e_cblp", "H"),
        ("e_cp", "H"),
        ("e_crlc", "H"),
        ("e_cparhdr", "H"),
        ("e_minalloc", "H"),
        ("e_maxalloc", "H"),
        ("e_ss", "H"),
        ("e_sp", "H"),
        ("e_csum", "H"),
        ("e_ip", "H"),
        ("e_cs", "H"),
        ("e_lfarlc", "H"),
        ("e_ovno", "H"),
        ("e_res", "8s"),
        ("e_oemid", "H"),
        ("e_oeminfo", "H"),
        ("e_res2", "20s"),
        ("e_lfanew", "I"),
    )


@dataclass(frozen=True)
class FileHeader(FieldStruct):
    """COFF file header (IMAGE_FILE_HEADER), right after the PE signature."""

    Machine: Field[int]
    NumberOfSections: Field[int]
    TimeDateStamp: Field[int]
    PointerToSymbolTable: Field[int]
    NumberOfSymbols: Field[int]
    SizeOfOptionalHeader: Field[int]
    Characteristics: Field[int]

    LAYOUT: ClassVar = (
        ("Machine", "H"),
        ("NumberOfSections", "H"),
        ("TimeDateStamp", "I"),
        ("PointerToSymbolTable", "I"),
        ("NumberOfSymbols", "I"),
        ("SizeOfOptionalHeader", "H"),
        ("Characteristics", "H"),
    )

    @property
    def is_dll(self) -> bool:
        return bool(self.Characteristics.value & IMAGE_FILE_DLL)

    @property
    def is_executable(self) -> bool:
        return bool(self.Characteristics.value & IMAGE_FILE_EXECUTABLE_IMAGE)

    @property
    def timestamp(self) -> datetime:
        return timestamp_to_datetime(self.TimeDateStamp.value)


class OptionalHeaderBase(FieldStruct):
    """Behavior shared by the PE32 and PE32+ optional header variants."""

    MAGIC: ClassVar[int] = 0
    NAME: ClassVar[str] = ""

    @property
    def is_64bit(self) -> bool:
        return self.MAGIC == IMAGE_NT_OPTIONAL_HDR64_MAGIC

    @property
    def thunk_size(self) -> int:
        """Width in bytes of import thunks for this image."""
        return 8 if self.is_64bit else 4

    @property
    def ordinal_flag(self) -> int:
        """Bit marking an import-by-ordinal thunk."""
        return IMAGE_ORDINAL_FLAG64 if self.is_64bit else IMAGE_ORDINAL_FLAG32

    @property
    def has_aslr(self) -> bool:
        flags = self.DllCharacteristics.value
        return bool(flags & IMAGE_DLLCHARACTERISTICS_DYNAMIC_BASE)


@dataclass(frozen=True)
class OptionalHeader32(OptionalHeaderBase):
    """PE32 optional header (IMAGE_OPTIONAL_HEADER32), fixed part only."""

    Magic: Field[int]  # 0x10B
    MajorLinkerVersion: Field[int]
    MinorLinkerVersion: Field[int]
    SizeOfCode: Field[int]
    SizeOfInitializedData: Field[int]
    SizeOfUninitializedData: Field[int]
    AddressOfEntryPoint: Field[int]
    BaseOfCode: Field[int]
    BaseOfData: Field[int]  # PE32 only
    ImageBase: Field[int]
    SectionAlignment: Field[int]
    FileAlignment: Field[int]
    MajorOperatingSystemVersion: Field[int]
    MinorOperatingSystemVersion: Field[int]
    MajorImageVersion: Field[int]
    MinorImageVersion: Field[int]
    MajorSubsystemVersion: Field[int]
    MinorSubsystemVersion: Field[int]
    Win32VersionValue: Field[int]
    SizeOfImage: Field[int]
    SizeOfHeaders: Field[int]
    CheckSum: Field[int]
    Subsystem: Field[int]
    DllCharacteristics: Field[int]
    SizeOfStackReserve: Field[int]
    SizeOfStackCommit: Field[int]
    SizeOfHeapReserve: Field[int]
    SizeOfHeapCommit: Field[int]
    LoaderFlags: Field[int]
    NumberOfRvaAndSizes: Field[int]

    MAGIC: ClassVar[int] = IMAGE_NT_OPTIONAL_HDR32_MAGIC
    NAME: ClassVar[str] = "PE32"
    LAYOUT: ClassVar = (
        ("Magic", "H"),
        ("MajorLinkerVersion", "B"),
        ("MinorLinkerVersion", "B"),
        ("SizeOfCode", "I"),
        ("SizeOfInitializedData", "I"),
        ("SizeOfUninitializedData", "I"),
        ("AddressOfEntryPoint", "I"),
        ("BaseOfCode", "I"),
        ("BaseOfData", "I"),
        ("ImageBase", "I"),
        ("SectionAlignment", "I"),
        ("FileAlignment", "I"),
        ("MajorOperatingSystemVersion", "H"),
        ("MinorOperatingSystemVersion", "H"),
        ("MajorImageVersion", "H"),
        ("MinorImageVersion", "H"),
        ("MajorSubsystemVersion", "H"),
        ("MinorSubsystemVersion", "H"),
        ("Win32VersionValue", "I"),
        ("SizeOfImage", "I"),
        ("SizeOfHeaders", "I"),
        ("CheckSum", "I"),
        ("Subsystem", "H"),
        ("DllCharacteristics", "H"),
        ("SizeOfStackReserve", "I"),
        ("SizeOfStackCommit", "I"),
        ("SizeOfHeapReserve", "I"),
        ("SizeOfHeapCommit", "I"),
        ("LoaderFlags", "I"),
        ("NumberOfRvaAndSizes", "I"),
    )


@dataclass(frozen=True)
class OptionalHeader64(OptionalHeaderBase):
    """PE32+ optional header (IMAGE_OPTIONAL_HEADER64), fixed part only.

    Differs from PE32 by dropping BaseOfData and widening ImageBase and the
    stack/heap sizes to 64 bits.
    """

    Magic: Field[int]  # 0x20B
    MajorLinkerVersion: Field[int]
    MinorLinkerVersion: Field[int]
    SizeOfCode: Field[int]
    SizeOfInitializedData: Field[int]
    SizeOfUninitializedData: Field[int]
    AddressOfEntryPoint: Field[int]
    BaseOfCode: Field[int]
    ImageBase: Field[int]  # 8 bytes for PE32+
    SectionAlignment: Field[int]
    FileAlignment: Field[int]
    MajorOperatingSystemVersion: Field[int]
    MinorOperatingSystemVersion: Field[int]
    MajorImageVersion: Field[int]
    MinorImageVersion: Field[int]
    MajorSubsystemVersion: Field[int]
    MinorSubsystemVersion: Field[int]
    Win32VersionValue: Field[int]
    SizeOfImage: Field[int]
    SizeOfHeaders: Field[int]
    CheckSum: Field[int]
    Subsystem: Field[int]
    DllCharacteristics: Field[int]
    SizeOfStackReserve: Field[int]  # 8 bytes for PE32+
    SizeOfStackCommit: Field[int]  # 8 bytes for PE32+
    SizeOfHeapReserve: Field[int]  # 8 bytes for PE32+
    SizeOfHeapCommit: Field[int]  # 8 bytes for PE32+
    LoaderFlags: Field[int]
    NumberOfRvaAndSizes: Field[int]

    MAGIC: ClassVar[int] = IMAGE_NT_OPTIONAL_HDR64_MAGIC
    NAME: ClassVar[str] = "PE32+"
    LAYOUT: ClassVar = (
        ("Magic", "H"),
        ("MajorLinkerVersion", "B"),
        ("MinorLinkerVersion", "B"),
        ("SizeOfCode", "I"),
        ("SizeOfInitializedData", "I"),
        ("SizeOfUninitializedData", "I"),
        ("AddressOfEntryPoint", "I"),
        ("BaseOfCode", "I"),
        ("ImageBase", "Q"),
        ("SectionAlignment", "I"),
        ("FileAlignment", "I"),
        ("MajorOperatingSystemVersion", "H"),
        ("MinorOperatingSystemVersion", "H"),
        ("MajorImageVersion", "H"),
        ("MinorImageVersion", "H"),
        ("MajorSubsystemVersion", "H"),
        ("MinorSubsystemVersion", "H"),
        ("Win32VersionValue", "I"),
        ("SizeOfImage", "I"),
        ("SizeOfHeaders", "I"),
        ("CheckSum", "I"),
        ("Subsystem", "H"),
        ("DllCharacteristics", "H"),
        ("SizeOfStackReserve", "Q"),
        ("SizeOfStackCommit", "Q"),
        ("SizeOfHeapReserve", "Q"),
        ("SizeOfHeapCommit", "Q"),
        ("LoaderFlags", "I"),
        ("NumberOfRvaAndSizes", "I"),
    )


OptionalHeader = OptionalHeader32 | OptionalHeader64

OPTIONAL_HEADER_VARIANTS: dict[int, type[OptionalHeaderBase]] = {
    IMAGE_NT_OPTIONAL_HDR32_MAGIC: OptionalHeader32,
    IMAGE_NT_OPTIONAL_HDR64_MAGIC: OptionalHeader64,
}


@dataclass(frozen=True)
class DataDirectory(FieldStruct):
    """Data directory entry (IMAGE_DATA_DIRECTORY) and its slot index."""

    VirtualAddress: Field[int]  # RVA of the data
    Size: Field[int]
    index: int = -1

    LAYOUT: ClassVar = (
        ("VirtualAddress", "I"),
        ("Size", "I"),
    )

    @property
    def is_present(self) -> bool:
        """A zero RVA and zero size mark an absent directory."""
        return self.VirtualAddress.value != 0 or self.Size.value != 0

    @property
    def name(self) -> str:
        return lookup_name(self.index, DIRECTORY_NAMES)

    def contains(self, rva: int) -> bool:
        """Check whether rva falls inside this directory's range."""
        start = self.VirtualAddress.value
        return start <= rva < start + self.Size.value


@dataclass(frozen=True)
class SectionHeader(FieldStruct):
    """Section table entry (IMAGE_SECTION_HEADER)."""

    Name: Field[bytes]  # 8 bytes, null-padded
    VirtualSize: Field[int]
    VirtualAddress: Field[int]
    SizeOfRawData: Field[int]
    PointerToRawData: Field[int]
    PointerToRelocations: Field[int]
    PointerToLinenumbers: Field[int]
    NumberOfRelocations: Field[int]
    NumberOfLinenumbers: Field[int]
    Characteristics: Field[int]
    index: int = -1

    LAYOUT: ClassVar = (
        ("Name", "8s"),
        ("VirtualSize", "I"),
        ("VirtualAddress", "I"),
        ("SizeOfRawData", "I"),
        ("PointerToRawData", "I"),
        ("PointerToRelocations", "I"),
        ("PointerToLinenumbers", "I"),
        ("NumberOfRelocations", "H"),
        ("NumberOfLinenumbers", "H"),
        ("Characteristics", "I"),
    )

    @property
    def name_str(self) -> str:
        """Section name as string (null-trimmed)."""
        return self.Name.value.rstrip(b"\x00").decode("ascii", errors="replace")

    @property
    def virtual_extent(self) -> int:
        """Size of the RVA range this section claims."""
        return max(self.VirtualSize.value, self.SizeOfRawData.value)

    def contains_rva(self, rva: int) -> bool:
        start = self.VirtualAddress.value
        return start <= rva < start + self.virtual_extent

    def contains_offset(self, offset: int) -> bool:
        start = self.PointerToRawData.value
        return start <= offset < start + self.SizeOfRawData.value

    @property
    def is_code(self) -> bool:
        return bool(self.Characteristics.value & IMAGE_SCN_CNT_CODE)

    @property
    def is_executable(self) -> bool:
        return bool(self.Characteristics.value & IMAGE_SCN_MEM_EXECUTE)


# =============================================================================
# Header parsing stages
# =============================================================================


def parse_dos_header(reader: ByteReader) -> DosHeader:
    """Parse the DOS header at offset 0.

    Raises:
        InvalidSignature: If the "MZ" magic is missing
        Truncated: If the file is shorter than a DOS header
    """
    reader.seek(0)
    magic = reader.peek_u16()
    if magic != DOS_MAGIC:
        raise InvalidSignature(f"Not a DOS/PE file (bad magic: 0x{magic:04X})")
    return DosHeader.read(reader)


def parse_pe_signature(reader: ByteReader, e_lfanew: int) -> Field[bytes]:
    """Check the "PE\\0\\0" signature at e_lfanew.

    Leaves the reader positioned at the File header.

    Raises:
        InvalidSignature: If the signature is absent or wrong
    """
    reader.seek(e_lfanew)
    try:
        signature = reader.read_exact(len(PE_SIGNATURE))
    except Truncated as exc:
        raise InvalidSignature(
            f"PE signature offset 0x{e_lfanew:x} lies beyond end of file"
        ) from exc
    if signature != PE_SIGNATURE:
        raise InvalidSignature(f"Invalid PE signature: {signature!r}")
    return Field.at(signature, e_lfanew)


def parse_file_header(reader: ByteReader) -> FileHeader:
    """Parse the 20-byte COFF file header at the reader's position."""
    return FileHeader.read(reader)


def parse_optional_header(reader: ByteReader) -> OptionalHeader:
    """Parse the optional header variant selected by its magic.

    Raises:
        UnsupportedOptionalHeaderMagic: For anything but PE32/PE32+
        Truncated: If the header runs past EOF
    """
    offset = reader.position
    magic = reader.peek_u16()
    variant = OPTIONAL_HEADER_VARIANTS.get(magic)
    if variant is None:
        raise UnsupportedOptionalHeaderMagic(magic, offset)
    header = variant.read(reader)
    logger.debug("Optional header at 0x%x: %s", offset, variant.NAME)
    return header


def parse_data_directories(
    reader: ByteReader, count: int, options: ParseOptions
) -> tuple[DataDirectory, ...]:
    """Parse count data directory entries at the reader's position.

    Raises:
        CountMismatch: If count exceeds options.max_data_directories
        Truncated: If the array runs past EOF
    """
    if count > options.max_data_directories:
        raise CountMismatch(
            f"NumberOfRvaAndSizes ({count}) exceeds maximum "
            f"({options.max_data_directories})"
        )
    if count > IMAGE_NUMBEROF_DIRECTORY_ENTRIES:
        logger.warning(
            "NumberOfRvaAndSizes is %d, only %d are defined",
            count,
            IMAGE_NUMBEROF_DIRECTORY_ENTRIES,
        )
    return tuple(DataDirectory.read(reader, index=i) for i in range(count))


def parse_section_table(
    reader: ByteReader, offset: int, count: int, options: ParseOptions
) -> tuple[SectionHeader, ...]:
    """Parse exactly count section headers starting at offset.

    Raises:
        CountMismatch: If count exceeds options.max_sections
        Truncated: If fewer than count records are present before EOF
    """
    if count > options.max_sections:
        raise CountMismatch(
            f"NumberOfSections ({count}) exceeds maximum ({options.max_sections})"
        )
    reader.seek(offset)
    sections = tuple(SectionHeader.read(reader, index=i) for i in range(count))
    for section in sections:
        logger.debug(
            "Section %d %r: rva=0x%x vsize=0x%x raw=0x%x+0x%x",
            section.index,
            section.name_str,
            section.VirtualAddress.value,
            section.VirtualSize.value,
            section.PointerToRawData.value,
            section.SizeOfRawData.value,
        )
    return sections
