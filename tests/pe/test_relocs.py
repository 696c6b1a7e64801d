"""Tests for base relocation parsing."""

import pytest

from pemap import CorruptRelocationBlock, CountMismatch, parse
from pemap.pe import Relocation
from pemap.pe.types import (
    IMAGE_DIRECTORY_ENTRY_BASERELOC,
    IMAGE_REL_BASED_DIR64,
    IMAGE_REL_BASED_HIGHLOW,
)

from pe_test_utils import patch_u32


class TestRelocation:
    """Tests for the packed TypeOffset entry."""

    def test_unpack(self):
        entry = Relocation((IMAGE_REL_BASED_DIR64 << 12) | 0x123)
        assert entry.reloc_type == IMAGE_REL_BASED_DIR64
        assert entry.offset == 0x123
        assert entry.type_name == "DIR64"
        assert entry.is_dir64
        assert not entry.is_absolute

    def test_absolute_padding(self):
        entry = Relocation(0)
        assert entry.is_absolute
        assert entry.type_name == "ABSOLUTE"

    def test_unknown_type(self):
        assert Relocation(0xF000).type_name == "UNKNOWN(15)"


class TestRelocationTable:
    """Tests for walking the relocation directory."""

    def test_blocks(self, sample_pe32):
        relocations = parse(sample_pe32).relocations

        assert relocations.error is None
        assert [b.PageRVA.value for b in relocations] == [0x1000, 0x2000]
        assert [b.BlockSize.value for b in relocations] == [16, 12]

        first = relocations.blocks[0]
        assert first.num_entries == 4
        assert [e.value.reloc_type for e in first.entries] == [
            IMAGE_REL_BASED_HIGHLOW,
            IMAGE_REL_BASED_HIGHLOW,
            IMAGE_REL_BASED_HIGHLOW,
            0,
        ]
        assert first.entries[1].rva == 0x400A
        assert first.entries[1].offset == 0xA0A

    def test_target_rvas_skip_padding(self, sample_pe32):
        relocations = parse(sample_pe32).relocations
        assert list(relocations.iter_target_rvas()) == [
            0x1010,
            0x1020,
            0x1030,
            0x2008,
        ]

    def test_pe64_uses_dir64(self, sample_pe64):
        relocations = parse(sample_pe64).relocations
        assert all(e.value.is_dir64 for e in relocations.blocks[1].entries[:1])

    @pytest.mark.parametrize("block_size", [0, 4, 7])
    def test_block_smaller_than_header(self, sample_builder, block_size):
        """Test a BlockSize below 8 stops the walk and keeps earlier blocks."""
        data = sample_builder.build()
        offset = sample_builder.file_offset(0x4000 + 16 + 4)
        relocations = parse(patch_u32(data, offset, block_size)).relocations

        assert len(relocations) == 1
        assert isinstance(relocations.error, CorruptRelocationBlock)
        assert relocations.error.rva == 0x4010
        assert relocations.error.block_size == block_size

    def test_block_overruns_directory(self, sample_builder):
        data = sample_builder.build()
        offset = sample_builder.file_offset(0x4000 + 16 + 4)
        relocations = parse(patch_u32(data, offset, 0x100)).relocations

        assert len(relocations) == 1
        assert isinstance(relocations.error, CountMismatch)

    def test_directory_size_zero_with_rva(self, sample_builder):
        """Test a present directory with Size 0 yields no blocks."""
        sample_builder.set_directory(IMAGE_DIRECTORY_ENTRY_BASERELOC, 0x4000, 0)
        relocations = parse(sample_builder.build()).relocations

        assert relocations is not None
        assert len(relocations) == 0
        assert relocations.error is None
