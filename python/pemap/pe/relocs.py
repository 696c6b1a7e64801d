"""
Base relocation table parsing.

The table is a run of blocks, each covering one 4KB page:

    PageRVA: u32, BlockSize: u32, then (BlockSize - 8) / 2 TypeOffset entries

Each 16-bit entry packs the relocation type in its high 4 bits and the
offset within the page in its low 12 bits. The walk ends when the bytes
consumed equal the directory size.
"""

import logging
from dataclasses import dataclass
from typing import ClassVar, Iterator

from ..errors import CorruptRelocationBlock, CountMismatch, ParseError
from ..field import Field
from .headers import DataDirectory, FieldStruct
from .rva import RvaReader
from .types import (
    IMAGE_REL_BASED_ABSOLUTE,
    IMAGE_REL_BASED_DIR64,
    RELOCATION_TYPE_NAMES,
    lookup_name,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Relocation:
    """Single base relocation entry (2 bytes)."""

    raw: int  # 16-bit packed value

    @property
    def reloc_type(self) -> int:
        """Relocation type (high 4 bits)."""
        return self.raw >> 12

    @property
    def offset(self) -> int:
        """Offset within page (low 12 bits)."""
        return self.raw & 0xFFF

    @property
    def type_name(self) -> str:
        return lookup_name(self.reloc_type, RELOCATION_TYPE_NAMES)

    @property
    def is_absolute(self) -> bool:
        """Check if this is a padding/skip entry."""
        return self.reloc_type == IMAGE_REL_BASED_ABSOLUTE

    @property
    def is_dir64(self) -> bool:
        """Check if this is a 64-bit pointer relocation."""
        return self.reloc_type == IMAGE_REL_BASED_DIR64


@dataclass(frozen=True)
class RelocationBlock(FieldStruct):
    """Base relocation block header and its entries."""

    PageRVA: Field[int]  # Base RVA for this block (page-aligned)
    BlockSize: Field[int]  # Size including header and all entries
    entries: tuple[Field[Relocation], ...] = ()

    LAYOUT: ClassVar = (
        ("PageRVA", "I"),
        ("BlockSize", "I"),
    )

    @property
    def num_entries(self) -> int:
        """Number of TypeOffset entries declared by BlockSize."""
        return (self.BlockSize.value - self.SIZE) // 2

    def target_rvas(self) -> Iterator[int]:
        """RVAs patched by this block, skipping ABSOLUTE padding."""
        for entry in self.entries:
            if not entry.value.is_absolute:
                yield self.PageRVA.value + entry.value.offset


@dataclass(frozen=True)
class RelocationDirectory:
    """Relocation blocks in table order.

    error is set when the walk stopped on a malformed block; blocks before
    it are kept.
    """

    blocks: tuple[RelocationBlock, ...]
    error: ParseError | None = None

    def __iter__(self):
        return iter(self.blocks)

    def __len__(self) -> int:
        return len(self.blocks)

    def iter_target_rvas(self) -> Iterator[int]:
        for block in self.blocks:
            yield from block.target_rvas()


def iter_relocation_blocks(
    reader: RvaReader, directory: DataDirectory
) -> Iterator[RelocationBlock]:
    """Yield relocation blocks until the directory size is consumed.

    Raises:
        CorruptRelocationBlock: If a block declares BlockSize < 8
        CountMismatch: If a block runs past the end of the directory
        ParseError: If a block cannot be read
    """
    base = directory.VirtualAddress.value
    size = directory.Size.value
    consumed = 0

    while consumed < size:
        rva = base + consumed
        header = reader.read_struct(RelocationBlock, rva)
        block_size = header.BlockSize.value
        if block_size < RelocationBlock.SIZE:
            raise CorruptRelocationBlock(rva, block_size)
        if consumed + block_size > size:
            raise CountMismatch(
                f"Relocation block at RVA 0x{rva:x} (size {block_size}) runs past "
                f"the directory end (0x{base + size:x})"
            )

        entries = []
        for i in range(header.num_entries):
            raw = reader.read_u16(rva + RelocationBlock.SIZE + i * 2)
            entries.append(raw.map(Relocation))

        yield RelocationBlock(header.PageRVA, header.BlockSize, tuple(entries))
        consumed += block_size


def parse_relocations(
    reader: RvaReader, directory: DataDirectory
) -> RelocationDirectory:
    """Collect all relocation blocks, recording the failure that ends the walk."""
    blocks: list[RelocationBlock] = []
    try:
        for block in iter_relocation_blocks(reader, directory):
            blocks.append(block)
    except ParseError as exc:
        logger.debug("Relocation walk stopped after %d blocks: %s", len(blocks), exc)
        return RelocationDirectory(tuple(blocks), error=exc)

    logger.debug("Parsed %d relocation blocks", len(blocks))
    return RelocationDirectory(tuple(blocks))
