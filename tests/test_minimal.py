"""Tests for the minimal value-only projection and its encoders."""

import json

import msgpack
import pytest

from pemap import MinimalImage, ParseOptions, parse, unpack_msgpack


@pytest.fixture(scope="module")
def minimal32(sample_pe32) -> MinimalImage:
    return MinimalImage.from_image(parse(sample_pe32))


class TestHeaders:
    """Tests for the projected headers."""

    def test_dos_header(self, minimal32):
        assert minimal32.dos_header.magic == 0x5A4D
        assert minimal32.dos_header.e_lfanew == 0x80

    def test_file_header(self, minimal32):
        header = minimal32.file_header
        assert header.machine == "I386"
        assert header.number_of_sections == 5
        assert header.timestamp == "2020-09-13T12:26:40+00:00"
        assert header.characteristics == ["EXECUTABLE_IMAGE", "32BIT_MACHINE", "DLL"]

    def test_optional_header(self, minimal32):
        header = minimal32.optional_header
        assert header.magic == "PE32"
        assert header.linker_version == "14.0"
        assert header.base_of_data == 0x2000
        assert header.image_base == 0x400000
        assert header.subsystem == "WINDOWS_CUI"
        assert header.dll_characteristics == ["DYNAMIC_BASE", "NX_COMPAT"]
        assert header.size_of_headers == 0x400

    def test_pe32_plus_has_no_base_of_data(self, sample_pe64):
        header = MinimalImage.from_image(parse(sample_pe64)).optional_header
        assert header.magic == "PE32+"
        assert header.base_of_data is None
        assert header.image_base == 0x140000000

    def test_only_present_directories(self, minimal32):
        assert [d.type for d in minimal32.data_directories] == [
            "EXPORT",
            "IMPORT",
            "RESOURCE",
            "BASERELOC",
        ]
        assert minimal32.data_directories[1].rva == 0x2000
        assert minimal32.data_directories[1].size == 60

    def test_sections(self, minimal32):
        text = minimal32.sections[0]
        assert text.name == ".text"
        assert text.virtual_address == 0x1000
        assert text.pointer_to_raw_data == 0x400
        assert text.characteristics == ["CNT_CODE", "MEM_EXECUTE", "MEM_READ"]


class TestDirectories:
    """Tests for the projected directories."""

    def test_imports(self, minimal32):
        assert [(i.dll_name, i.functions) for i in minimal32.imports] == [
            ("KERNEL32.dll", ["GetProcAddress", "LoadLibraryA"]),
            ("USER32.dll", ["MessageBoxA", 17]),
        ]

    def test_exports(self, minimal32):
        exports = minimal32.exports
        assert exports.name == "sample.dll"
        assert [(e.name, e.ordinal) for e in exports.exports] == [
            ("Alpha", 1),
            ("Beta", 2),
            (None, 4),
            ("Gamma", 5),
        ]
        assert exports.exports[3].forwarder == "KERNEL32.Sleep"
        assert exports.exports[0].forwarder is None

    def test_relocations(self, minimal32):
        first = minimal32.relocations[0]
        assert first.page_rva == 0x1000
        assert first.block_size == 16
        assert [(r.type, r.offset) for r in first.relocations] == [
            ("HIGHLOW", 0x10),
            ("HIGHLOW", 0x20),
            ("HIGHLOW", 0x30),
            ("ABSOLUTE", 0),
        ]

    def test_resources(self, minimal32):
        root = minimal32.resources
        assert [(e.id, e.name, e.type) for e in root.entries] == [
            (None, "CUSTOM", None),
            (16, None, "VERSION"),
            (24, None, "MANIFEST"),
        ]
        language = root.entries[1].directory.entries[0].directory.entries[0]
        assert language.id == 0x409
        assert language.type is None
        assert language.directory is None
        assert language.data.size == len(b"version-data")

    def test_excluded_directories_are_none(self, sample_pe32):
        image = parse(sample_pe32, ParseOptions().excluding("exports", "relocs"))
        minimal = MinimalImage.from_image(image)
        assert minimal.exports is None
        assert minimal.relocations is None
        assert minimal.imports is not None


class TestEncoding:
    """Tests for dict, JSON and msgpack output."""

    def test_to_dict_is_plain(self, minimal32):
        data = minimal32.to_dict()
        assert data["file_header"]["machine"] == "I386"
        assert data["imports"][1]["functions"] == ["MessageBoxA", 17]
        assert data["resources"]["entries"][0]["name"] == "CUSTOM"

    def test_json(self, minimal32):
        assert json.loads(minimal32.to_json()) == minimal32.to_dict()

    def test_msgpack(self, minimal32):
        blob = minimal32.to_msgpack()
        assert isinstance(blob, bytes)
        assert unpack_msgpack(blob) == minimal32.to_dict()

    def test_msgpack_pe32_plus(self, sample_pe64):
        minimal = MinimalImage.from_image(parse(sample_pe64))
        assert unpack_msgpack(minimal.to_msgpack()) == minimal.to_dict()

    def test_unpack_rejects_garbage(self):
        with pytest.raises(ValueError, match="Failed to unpack"):
            unpack_msgpack(b"\xc1")

    def test_unpack_rejects_truncated(self, minimal32):
        with pytest.raises(ValueError, match="Failed to unpack"):
            unpack_msgpack(minimal32.to_msgpack()[:-3])

    def test_unpack_rejects_non_map(self):
        with pytest.raises(ValueError, match="expected map, got list"):
            unpack_msgpack(msgpack.packb([1, 2, 3]))
