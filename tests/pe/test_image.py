"""Tests for the parse() pipeline and PeImage."""

import io
import logging

import pytest

from pemap import (
    CountMismatch,
    InvalidSignature,
    ParseOptions,
    Truncated,
    UnsupportedOptionalHeaderMagic,
    Unmapped,
    parse,
    parse_file,
)
from pemap.pe import OptionalHeader32, OptionalHeader64, PeImage
from pemap.pe.types import (
    IMAGE_DIRECTORY_ENTRY_EXPORT,
    IMAGE_DIRECTORY_ENTRY_IMPORT,
    IMAGE_FILE_MACHINE_AMD64,
    IMAGE_FILE_MACHINE_I386,
)

from pe_test_utils import PeBuilder, patch_u16, patch_u32


class TestParse:
    """Tests for parsing well-formed images."""

    def test_pe32(self, sample_pe32):
        image = parse(sample_pe32)

        assert isinstance(image, PeImage)
        assert isinstance(image.optional_header, OptionalHeader32)
        assert image.optional_header.Magic.value == 0x10B
        assert image.file_header.Machine.value == IMAGE_FILE_MACHINE_I386
        assert not image.is_64bit
        assert image.is_dll
        assert image.image_base == 0x400000
        assert image.entry_point == 0x1000
        assert image.size == len(sample_pe32)
        assert image.signature.offset == 0x80
        assert not image.has_errors

    def test_pe32_plus(self, sample_pe64):
        image = parse(sample_pe64)

        assert isinstance(image.optional_header, OptionalHeader64)
        assert image.optional_header.Magic.value == 0x20B
        assert image.file_header.Machine.value == IMAGE_FILE_MACHINE_AMD64
        assert image.is_64bit
        assert image.image_base == 0x140000000
        assert not image.has_errors

    def test_sections(self, sample_pe32):
        image = parse(sample_pe32)

        assert [s.name_str for s in image.sections] == [
            ".text",
            ".idata",
            ".edata",
            ".reloc",
            ".rsrc",
        ]
        assert [s.index for s in image.sections] == [0, 1, 2, 3, 4]
        assert image.find_section(".rsrc").VirtualAddress.value == 0x5000
        assert image.find_section(".bss") is None

    def test_section_table_follows_optional_header_size(self, sample_pe32):
        image = parse(sample_pe32)
        optional_offset = image.optional_header.offset
        assert image.sections[0].offset == (
            optional_offset + image.file_header.SizeOfOptionalHeader.value
        )

    def test_rva_mapping(self, sample_pe32):
        image = parse(sample_pe32)

        assert image.rva_to_offset(0x1050) == 0x450
        assert sample_pe32[0x450] == 0x50
        assert image.offset_to_rva(0x450) == 0x1050
        assert image.rva_to_offset(0x80) == 0x80
        with pytest.raises(Unmapped):
            image.rva_to_offset(0x1300)

    def test_data_directories(self, sample_pe32):
        image = parse(sample_pe32)

        assert len(image.data_directories) == 16
        assert [d.name for d in image.present_data_directories()] == [
            "EXPORT",
            "IMPORT",
            "RESOURCE",
            "BASERELOC",
        ]
        assert image.get_data_directory(IMAGE_DIRECTORY_ENTRY_IMPORT).is_present
        assert image.get_data_directory(16) is None

    def test_sources_are_equivalent(self, sample_pe32, sample_pe32_path):
        from_bytes = parse(sample_pe32)
        from_path = parse_file(sample_pe32_path)
        from_str = parse(str(sample_pe32_path))
        from_file = parse(io.BytesIO(sample_pe32))
        from_bytearray = parse(bytearray(sample_pe32))

        for other in (from_path, from_str, from_file, from_bytearray):
            assert other == from_bytes

    def test_debug_logging(self, sample_pe32, caplog):
        with caplog.at_level(logging.DEBUG, logger="pemap"):
            parse(sample_pe32)
        assert "Parsed PE32 image: 5 sections, 16 data directories" in caplog.text


class TestDirectoryDispatch:
    """Tests for which directories get parsed."""

    def test_absent_directories_are_not_parsed(self, minimal_pe):
        image = parse(minimal_pe)

        assert image.imports is None
        assert image.exports is None
        assert image.relocations is None
        assert image.resources is None
        assert image.errors == {}

    def test_zero_directory_is_skipped(self, sample_builder):
        """Test an all-zero directory entry is never dispatched."""
        sample_builder.set_directory(IMAGE_DIRECTORY_ENTRY_EXPORT, 0, 0)
        image = parse(sample_builder.build())

        assert image.exports is None
        assert "exports" not in image.errors
        assert image.imports is not None

    def test_excluded_directories(self, sample_pe32):
        options = ParseOptions().excluding("imports", "resources")
        image = parse(sample_pe32, options)

        assert image.imports is None
        assert image.resources is None
        assert image.exports is not None
        assert image.relocations is not None
        assert image.errors == {}

    def test_fewer_directories_than_indices(self, sample_builder):
        """Test NumberOfRvaAndSizes smaller than the EXPORT/IMPORT slots."""
        sample_builder.number_of_rva_and_sizes = 1
        image = parse(sample_builder.build())

        assert len(image.data_directories) == 1
        assert image.exports is not None
        assert image.imports is None

    def test_errors_collected(self, sample_builder):
        sample_builder.set_directory(IMAGE_DIRECTORY_ENTRY_EXPORT, 0x9000, 40)
        image = parse(sample_builder.build())

        errors = list(image.iter_errors())
        assert [where for where, _ in errors] == ["exports"]
        assert image.has_errors


class TestFatalErrors:
    """Tests for header failures that abort the parse."""

    def test_not_mz(self):
        with pytest.raises(InvalidSignature, match="Not a DOS/PE file"):
            parse(b"\x7fELF" + bytes(200))

    def test_bad_pe_signature(self, minimal_pe):
        with pytest.raises(InvalidSignature, match="Invalid PE signature"):
            parse(patch_u32(minimal_pe, 0x80, 0x00004550 ^ 0xFF))

    def test_e_lfanew_beyond_eof(self, minimal_pe):
        with pytest.raises(InvalidSignature):
            parse(patch_u32(minimal_pe, 0x3C, 0x100000))

    def test_rom_magic_unsupported(self, minimal_pe):
        builder = PeBuilder()
        with pytest.raises(UnsupportedOptionalHeaderMagic, match="0x0107"):
            parse(patch_u16(minimal_pe, builder.optional_header_offset, 0x107))

    def test_truncated_optional_header(self, minimal_pe):
        builder = PeBuilder()
        with pytest.raises(Truncated):
            parse(minimal_pe[: builder.optional_header_offset + 50])

    def test_fewer_sections_than_declared(self):
        """Test five declared sections with only three records present."""
        builder = PeBuilder()
        for i in range(3):
            builder.add_section(f".s{i}", 0x1000 * (i + 1), raw_size=0)
        builder.number_of_sections = 5
        data = builder.build()[: builder.section_table_offset + 3 * 40]

        with pytest.raises(Truncated):
            parse(data)

    def test_section_count_limit(self, sample_pe32):
        with pytest.raises(CountMismatch, match="NumberOfSections"):
            parse(sample_pe32, ParseOptions(max_sections=2))

    def test_directory_count_limit(self, sample_builder):
        sample_builder.number_of_rva_and_sizes = 65
        with pytest.raises(CountMismatch, match="NumberOfRvaAndSizes"):
            parse(sample_builder.build())

    def test_errors_are_value_errors(self):
        with pytest.raises(ValueError):
            parse(b"")
