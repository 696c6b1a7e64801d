"""Tests for RVA resolution and RVA-addressed reads."""

import struct

import pytest

from pemap import ByteReader, InPadding, Truncated, Unmapped
from pemap.pe import RvaReader, RvaResolver

from pe_test_utils import make_section


@pytest.fixture
def sections():
    """.text [0x1000, 0x1200) raw at 0x400; .data [0x2000, 0x3000) with
    only 0x200 raw bytes at 0x600."""
    return [
        make_section(".text", 0x1000, 0x200, 0x400, 0x200, index=0),
        make_section(".data", 0x2000, 0x1000, 0x600, 0x200, index=1),
    ]


class TestRvaResolver:
    """Tests for RVA to offset mapping."""

    def test_resolve_inside_section(self, sections):
        resolver = RvaResolver(sections)
        assert resolver.resolve(0x1050) == 0x450
        assert resolver.section_for(0x1050).name_str == ".text"

    def test_rva_between_sections_is_unmapped(self, sections):
        resolver = RvaResolver(sections)
        with pytest.raises(Unmapped, match="0x1300") as exc_info:
            resolver.resolve(0x1300)
        assert exc_info.value.rva == 0x1300

    def test_rva_past_last_section_is_unmapped(self, sections):
        with pytest.raises(Unmapped):
            RvaResolver(sections).resolve(0x3000)

    def test_header_space_fallback(self, sections):
        """Test RVAs below the first section map to the same offset."""
        location = RvaResolver(sections).locate(0xFFF)
        assert location.offset == 0xFFF
        assert location.section is None
        assert location.available is None
        assert not location.in_padding

    def test_header_space_fallback_disabled(self, sections):
        resolver = RvaResolver(sections, header_space_fallback=False)
        with pytest.raises(Unmapped):
            resolver.resolve(0xFFF)

    def test_padding_tail(self, sections):
        """Test RVAs past SizeOfRawData clamp to the raw data end."""
        location = RvaResolver(sections).locate(0x2300)
        assert location.section.name_str == ".data"
        assert location.in_padding
        assert location.offset == 0x800
        assert location.available == 0

    def test_available_bytes(self, sections):
        location = RvaResolver(sections).locate(0x21F0)
        assert not location.in_padding
        assert location.offset == 0x7F0
        assert location.available == 0x10

    def test_first_match_wins_on_overlap(self):
        """Test that overlapping sections resolve to the earlier header."""
        resolver = RvaResolver(
            [
                make_section("first", 0x1000, 0x1000, 0x400, 0x200, index=0),
                make_section("second", 0x1800, 0x1000, 0xA00, 0x200, index=1),
            ]
        )
        assert resolver.section_for(0x1900).name_str == "first"

    def test_offset_to_rva(self, sections):
        resolver = RvaResolver(sections)
        assert resolver.offset_to_rva(0x450) == 0x1050
        assert resolver.offset_to_rva(0x7FF) == 0x21FF
        assert resolver.offset_to_rva(0x100) == 0x100
        assert resolver.offset_to_rva(0x5000) is None

    def test_no_sections(self):
        """Test an image without sections maps everything as header space."""
        resolver = RvaResolver([])
        assert resolver.resolve(0x40) == 0x40
        with pytest.raises(Unmapped):
            RvaResolver([], header_space_fallback=False).resolve(0x40)


class TestRvaReader:
    """Tests for reads through the resolver."""

    @pytest.fixture
    def reader(self, sections) -> RvaReader:
        data = bytearray(0x800)
        data[0x400:0x600] = bytes(range(256)) * 2
        struct.pack_into("<I", data, 0x600, 0xDEADBEEF)
        data[0x610:0x616] = b"hello\x00"
        data[0x7FC:0x800] = b"tail"
        data[0x80:0x84] = b"HDR\x00"
        return RvaReader(ByteReader(data), RvaResolver(sections))

    def test_read_int_keeps_offset_and_rva(self, reader):
        value = reader.read_u32(0x2000)
        assert value.value == 0xDEADBEEF
        assert value.offset == 0x600
        assert value.rva == 0x2000

    def test_read_cstring(self, reader):
        name = reader.read_cstring(0x2010)
        assert name.value == "hello"
        assert name.offset == 0x610

    def test_read_in_padding_raises(self, reader):
        with pytest.raises(InPadding, match=".data") as exc_info:
            reader.read_u32(0x2300)
        assert exc_info.value.rva == 0x2300
        assert exc_info.value.section == ".data"

    def test_read_straddling_raw_end_raises(self, reader):
        """Test a read that starts in raw data but ends in padding."""
        with pytest.raises(InPadding):
            reader.read_u32(0x21FE)

    def test_cstring_running_into_padding(self, reader):
        """Test a string whose terminator would lie in the padded tail."""
        with pytest.raises(InPadding):
            reader.read_cstring(0x21FC)

    def test_read_bytes(self, reader):
        blob = reader.read_bytes(0x2010, 6)
        assert blob.value == b"hello\x00"
        assert blob.offset == 0x610
        assert blob.rva == 0x2010

    def test_read_bytes_into_padding_raises(self, reader):
        with pytest.raises(InPadding):
            reader.read_bytes(0x21F0, 0x20)

    def test_read_bytes_up_to_raw_end(self, reader):
        assert reader.read_bytes(0x21FC, 4).value == b"tail"

    def test_header_space_read(self, reader):
        assert reader.read_cstring(0x80).value == "HDR"

    def test_header_space_read_past_eof(self, reader):
        with pytest.raises(Truncated):
            reader.read_u32(0xFFE)

    def test_unmapped_read(self, reader):
        with pytest.raises(Unmapped):
            reader.read_u16(0x1400)

    def test_read_utf16_string(self, sections):
        data = bytearray(0x800)
        data[0x600:0x60A] = struct.pack("<H", 4) + "ICON".encode("utf-16-le")
        reader = RvaReader(ByteReader(data), RvaResolver(sections))

        name = reader.read_utf16_string(0x2000)
        assert name.value == "ICON"
        assert name.rva == 0x2000
        assert name.offset == 0x600
