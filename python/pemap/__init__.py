"""
pemap: Windows Portable Executable parsing.

This package parses PE images (PE32 and PE32+) into an immutable, navigable
structure in which every decoded value keeps its file offset and RVA, and
projects that structure into a minimal value-only form for serialization.

    from pemap import parse, MinimalImage

    image = parse(Path("foo.dll"))
    for descriptor in image.imports or ():
        print(descriptor.dll_name.value)

    print(MinimalImage.from_image(image).to_json())

Malformed directories never abort a parse; their failures are recorded on
the result and can be listed with PeImage.iter_errors().

For lower-level access, use the subpackage directly:

    from pemap.pe import RvaResolver, SectionHeader, ImageVerifier
"""

from .errors import (
    CorruptRelocationBlock,
    CountMismatch,
    InPadding,
    InvalidSignature,
    ParseError,
    ResourceTreeTooDeep,
    Truncated,
    Unmapped,
    UnsupportedOptionalHeaderMagic,
)
from .field import Field
from .format_detect import UnsupportedBinaryFormat, detect_pe_variant, is_pe_binary
from .minimal import MinimalImage, unpack_msgpack
from .options import ParseOptions
from .pe import ImageVerifier, PeImage, parse, parse_file
from .reader import ByteReader
from .verify import Finding, VerificationResult

__all__ = [
    # Parsing
    "parse",
    "parse_file",
    "PeImage",
    "ParseOptions",
    "ByteReader",
    "Field",
    # Projection
    "MinimalImage",
    "unpack_msgpack",
    # Format detection
    "detect_pe_variant",
    "is_pe_binary",
    "UnsupportedBinaryFormat",
    # Verification
    "ImageVerifier",
    "VerificationResult",
    "Finding",
    # Errors
    "ParseError",
    "InvalidSignature",
    "UnsupportedOptionalHeaderMagic",
    "Truncated",
    "Unmapped",
    "InPadding",
    "CorruptRelocationBlock",
    "ResourceTreeTooDeep",
    "CountMismatch",
]
