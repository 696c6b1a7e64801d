"""
Cheap PE format sniffing.

These helpers look at a handful of bytes to decide whether a file is worth
a full parse, and which optional header variant it carries. They never
decode more than the signatures and the optional header magic.
"""

from pathlib import Path

from .errors import ParseError
from .pe.types import (
    DOS_HEADER_SIZE,
    FILE_HEADER_SIZE,
    OPTIONAL_MAGIC_NAMES,
    PE_SIGNATURE,
    PE_SIGNATURE_OFFSET_LOCATION,
)

DOS_MAGIC_BYTES = b"MZ"

# e_lfanew values beyond this are treated as bogus
MAX_PE_HEADER_OFFSET = 0x100000


class UnsupportedBinaryFormat(ParseError):
    """Raised when a file is not a PE image."""

    pass


def detect_pe_variant(path: Path) -> str:
    """Detect the optional header variant of a PE file.

    Args:
        path: Path to binary file

    Returns:
        "PE32", "PE32+" or "ROM"

    Raises:
        UnsupportedBinaryFormat: If the file is not a PE image
        FileNotFoundError: If the file doesn't exist
    """
    with open(path, "rb") as f:
        header = f.read(DOS_HEADER_SIZE)

        if len(header) < DOS_HEADER_SIZE or header[:2] != DOS_MAGIC_BYTES:
            raise UnsupportedBinaryFormat(f"Missing DOS header: {path}")

        pe_offset = int.from_bytes(
            header[PE_SIGNATURE_OFFSET_LOCATION:DOS_HEADER_SIZE], "little"
        )
        if pe_offset > MAX_PE_HEADER_OFFSET:
            raise UnsupportedBinaryFormat(
                f"Invalid PE header offset {pe_offset:#x}: {path}"
            )

        f.seek(pe_offset)
        nt = f.read(len(PE_SIGNATURE) + FILE_HEADER_SIZE + 2)

    if nt[: len(PE_SIGNATURE)] != PE_SIGNATURE:
        raise UnsupportedBinaryFormat(f"Missing PE signature: {path}")
    if len(nt) < len(PE_SIGNATURE) + FILE_HEADER_SIZE + 2:
        raise UnsupportedBinaryFormat(f"Truncated PE headers: {path}")

    magic = int.from_bytes(nt[-2:], "little")
    try:
        return OPTIONAL_MAGIC_NAMES[magic]
    except KeyError:
        raise UnsupportedBinaryFormat(
            f"Unknown optional header magic 0x{magic:04X}: {path}"
        ) from None


def is_pe_binary(path: Path) -> bool:
    """Check if a file looks like a PE image.

    Args:
        path: Path to binary file

    Returns:
        True if PE, False otherwise
    """
    try:
        detect_pe_variant(path)
    except (UnsupportedBinaryFormat, FileNotFoundError):
        return False
    return True
