"""
RVA to file offset resolution.

RvaResolver maps relative virtual addresses onto file offsets using the
section table. Sections are scanned in file order and the first one whose
virtual range contains the RVA wins; malformed images may have overlapping
or unsorted sections, and first-match keeps the result deterministic.

A section's virtual range is [VirtualAddress, VirtualAddress +
max(VirtualSize, SizeOfRawData)). Addresses past SizeOfRawData but inside
the range live in the zero-filled tail the loader materializes; there are
no file bytes behind them, so RvaReader refuses to read there.

RvaReader combines a resolver with a ByteReader and is what the directory
parsers use to follow RVAs.
"""

from dataclasses import dataclass
from typing import Sequence

from ..errors import InPadding, Truncated, Unmapped
from ..field import Field
from ..reader import ByteReader
from .headers import FieldStruct, SectionHeader


@dataclass(frozen=True)
class ResolvedRva:
    """Where an RVA lands in the file.

    Attributes:
        rva: The address that was resolved
        offset: File offset, clamped to the section's raw data end
        section: Containing section, or None for header space
        in_padding: True when the RVA has no backing file bytes
        available: File bytes from offset to the end of the section's raw
            data; None for header space, which is bounded by EOF only
    """

    rva: int
    offset: int
    section: SectionHeader | None
    in_padding: bool
    available: int | None


class RvaResolver:
    """Maps RVAs to file offsets through the section table.

    Usage:
        resolver = RvaResolver(sections)
        offset = resolver.resolve(0x1050)
    """

    def __init__(
        self,
        sections: Sequence[SectionHeader],
        header_space_fallback: bool = True,
    ):
        """Initialize with a parsed section table.

        Args:
            sections: Section headers in file order
            header_space_fallback: Map RVAs below the lowest section
                directly onto the same file offset
        """
        self._sections = tuple(sections)
        self._header_space_fallback = header_space_fallback
        self._lowest_va = min(
            (s.VirtualAddress.value for s in self._sections), default=None
        )

    @property
    def sections(self) -> tuple[SectionHeader, ...]:
        return self._sections

    def section_for(self, rva: int) -> SectionHeader | None:
        """First section (in file order) whose virtual range contains rva."""
        for section in self._sections:
            if section.contains_rva(rva):
                return section
        return None

    def locate(self, rva: int) -> ResolvedRva:
        """Resolve rva with full detail.

        Raises:
            Unmapped: If no section contains rva and it is not in header space
        """
        section = self.section_for(rva)
        if section is not None:
            delta = rva - section.VirtualAddress.value
            raw_size = section.SizeOfRawData.value
            start = section.PointerToRawData.value
            return ResolvedRva(
                rva=rva,
                offset=start + min(delta, raw_size),
                section=section,
                in_padding=delta >= raw_size,
                available=max(0, raw_size - delta),
            )

        if self._header_space_fallback and (
            self._lowest_va is None or rva < self._lowest_va
        ):
            return ResolvedRva(
                rva=rva, offset=rva, section=None, in_padding=False, available=None
            )

        raise Unmapped(rva)

    def resolve(self, rva: int) -> int:
        """Resolve rva to a file offset.

        Raises:
            Unmapped: If no section contains rva and it is not in header space
        """
        return self.locate(rva).offset

    def offset_to_rva(self, offset: int) -> int | None:
        """Reverse mapping from a file offset to an RVA.

        Returns None when the offset is not inside any section's raw data
        and is not in the header region.
        """
        for section in self._sections:
            if section.contains_offset(offset):
                return section.VirtualAddress.value + (
                    offset - section.PointerToRawData.value
                )
        if self._header_space_fallback and (
            self._lowest_va is None or offset < self._lowest_va
        ):
            return offset
        return None


class RvaReader:
    """Reads structures and strings at RVAs.

    Every read resolves its RVA first and refuses to cross into a section's
    padded tail, raising InPadding instead of returning bytes that belong to
    whatever follows in the file.
    """

    def __init__(
        self, reader: ByteReader, resolver: RvaResolver, max_string_length: int = 512
    ):
        self._reader = reader
        self._resolver = resolver
        self._max_string_length = max_string_length

    @property
    def resolver(self) -> RvaResolver:
        return self._resolver

    def seek(self, rva: int, size: int) -> int:
        """Position the underlying reader at rva for a size-byte read.

        Returns:
            The file offset

        Raises:
            Unmapped: If rva cannot be resolved
            InPadding: If any of the size bytes has no file backing
        """
        location = self._resolver.locate(rva)
        if location.section is not None and (
            location.in_padding or size > location.available
        ):
            raise InPadding(rva, location.section.name_str)
        return self._reader.seek(location.offset)

    def read_struct(self, cls: type[FieldStruct], rva: int, **extra):
        """Decode a FieldStruct whose first byte is at rva."""
        self.seek(rva, cls.SIZE)
        return cls.read(self._reader, rva=rva, **extra)

    def read_int(self, rva: int, size: int) -> Field[int]:
        """Read an unsigned little-endian integer of 1, 2, 4 or 8 bytes."""
        offset = self.seek(rva, size)
        readers = {
            1: self._reader.read_u8,
            2: self._reader.read_u16,
            4: self._reader.read_u32,
            8: self._reader.read_u64,
        }
        return Field(readers[size](), offset, rva)

    def read_u16(self, rva: int) -> Field[int]:
        return self.read_int(rva, 2)

    def read_u32(self, rva: int) -> Field[int]:
        return self.read_int(rva, 4)

    def read_bytes(self, rva: int, size: int) -> Field[bytes]:
        """Read size raw bytes starting at rva.

        Raises:
            Unmapped: If rva cannot be resolved
            InPadding: If the range runs into a section's padded tail
            Truncated: If a header-space range runs past EOF
        """
        offset = self.seek(rva, size)
        return Field(self._reader.read_exact(size), offset, rva)

    def read_cstring(self, rva: int) -> Field[str]:
        """Read a NUL-terminated ASCII string.

        Raises:
            InPadding: If the string runs into the section's padded tail
            Truncated: If no terminator appears within the length limit
        """
        location = self._resolver.locate(rva)
        if location.in_padding:
            raise InPadding(rva, location.section.name_str)
        limit = self._max_string_length
        if location.available is not None and location.available < limit:
            limit = location.available
        self._reader.seek(location.offset)
        try:
            raw = self._reader.read_cstring(limit)
        except Truncated:
            # Ran out of raw data before EOF: the rest is loader padding
            bounded_by_section = (
                location.section is not None and limit == location.available
            )
            if bounded_by_section and location.offset + limit <= self._reader.size:
                raise InPadding(rva, location.section.name_str) from None
            raise
        return Field(raw.decode("ascii", errors="replace"), location.offset, rva)

    def read_utf16_string(self, rva: int) -> Field[str]:
        """Read a u16 length-prefixed UTF-16LE string (resource names)."""
        length = self.read_u16(rva)
        self.seek(rva + 2, length.value * 2)
        text = self._reader.read_utf16(length.value)
        return Field(text, length.offset, rva)
