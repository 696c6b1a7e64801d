"""
Error taxonomy for PE parsing.

Every failure raised by the parser derives from ParseError, which is itself
a ValueError so callers that only care about "bad input" can catch that.

Failures in the mandatory headers propagate out of parse(). Failures inside
an optional directory are caught by the directory parser and recorded on
the partial result instead.
"""


class ParseError(ValueError):
    """Base class for all PE parsing failures."""

    pass


class InvalidSignature(ParseError):
    """DOS "MZ" magic or "PE\\0\\0" signature mismatch."""

    pass


class UnsupportedOptionalHeaderMagic(ParseError):
    """Optional header magic is neither PE32 nor PE32+."""

    def __init__(self, magic: int, offset: int):
        super().__init__(
            f"Unsupported optional header magic 0x{magic:04X} at offset 0x{offset:x}"
        )
        self.magic = magic
        self.offset = offset


class Truncated(ParseError):
    """A read would run past the end of the buffer."""

    def __init__(self, offset: int, size: int, available: int):
        super().__init__(
            f"Truncated read: need {size} bytes at offset 0x{offset:x}, "
            f"{available} available"
        )
        self.offset = offset
        self.size = size
        self.available = available


class Unmapped(ParseError):
    """An RVA is not backed by any section or the header region."""

    def __init__(self, rva: int):
        super().__init__(f"RVA 0x{rva:x} is not mapped by any section")
        self.rva = rva


class InPadding(ParseError):
    """An RVA falls in a section's virtual tail that has no file bytes."""

    def __init__(self, rva: int, section: str):
        super().__init__(
            f"RVA 0x{rva:x} lies in the uninitialized tail of section {section!r}"
        )
        self.rva = rva
        self.section = section


class CorruptRelocationBlock(ParseError):
    """A base relocation block declares a size smaller than its header."""

    def __init__(self, rva: int, block_size: int):
        super().__init__(
            f"Relocation block at RVA 0x{rva:x} has invalid size {block_size}"
        )
        self.rva = rva
        self.block_size = block_size


class ResourceTreeTooDeep(ParseError):
    """The resource tree is cyclic or nested beyond the configured depth."""

    def __init__(self, rva: int, depth: int):
        super().__init__(
            f"Resource directory at RVA 0x{rva:x} exceeds depth limit ({depth})"
        )
        self.rva = rva
        self.depth = depth


class CountMismatch(ParseError):
    """A declared count disagrees with the available data or a sanity limit."""

    pass
