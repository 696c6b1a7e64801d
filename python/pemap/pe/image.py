"""
PE image parsing pipeline.

parse() runs the header stages in order, builds the RVA resolver from the
section table and then hands each present directory to its parser:

    DOS header -> PE signature -> File header -> Optional header
    -> Data directories -> Section table -> RvaResolver
    -> imports / exports / relocations / resources

Header failures propagate. Directory failures never abort the parse: a
directory that cannot be read at all is left as None with its error in
PeImage.errors, and partial failures stay attached to the directory or
entry they belong to. PeImage.iter_errors() walks all of them.
"""

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Iterator

from ..errors import ParseError
from ..field import Field
from ..options import DEFAULT_OPTIONS, ParseOptions
from ..reader import ByteReader, Source
from .exports import ExportDirectory, parse_exports
from .headers import (
    DataDirectory,
    DosHeader,
    FileHeader,
    OptionalHeader,
    SectionHeader,
    parse_data_directories,
    parse_dos_header,
    parse_file_header,
    parse_optional_header,
    parse_pe_signature,
    parse_section_table,
)
from .imports import ImportDirectory, parse_imports
from .relocs import RelocationDirectory, parse_relocations
from .resources import ResourceDirectory, parse_resources
from .rva import RvaReader, RvaResolver
from .types import (
    IMAGE_DIRECTORY_ENTRY_BASERELOC,
    IMAGE_DIRECTORY_ENTRY_EXPORT,
    IMAGE_DIRECTORY_ENTRY_IMPORT,
    IMAGE_DIRECTORY_ENTRY_RESOURCE,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PeImage:
    """A fully parsed PE image.

    Usage:
        image = parse(Path("foo.dll"))
        for descriptor in image.imports or ():
            print(descriptor.dll_name.value)
    """

    size: int  # Length of the parsed buffer
    dos_header: DosHeader
    signature: Field[bytes]
    file_header: FileHeader
    optional_header: OptionalHeader
    data_directories: tuple[DataDirectory, ...]
    sections: tuple[SectionHeader, ...]
    resolver: RvaResolver = field(repr=False, compare=False)
    imports: ImportDirectory | None = None
    exports: ExportDirectory | None = None
    relocations: RelocationDirectory | None = None
    resources: ResourceDirectory | None = None
    errors: dict[str, ParseError] = field(default_factory=dict)

    # =========================================================================
    # Properties
    # =========================================================================

    @property
    def is_64bit(self) -> bool:
        return self.optional_header.is_64bit

    @property
    def is_dll(self) -> bool:
        return self.file_header.is_dll

    @property
    def image_base(self) -> int:
        """Preferred load address."""
        return self.optional_header.ImageBase.value

    @property
    def entry_point(self) -> int:
        return self.optional_header.AddressOfEntryPoint.value

    @property
    def file_alignment(self) -> int:
        return self.optional_header.FileAlignment.value

    @property
    def section_alignment(self) -> int:
        return self.optional_header.SectionAlignment.value

    # =========================================================================
    # Queries
    # =========================================================================

    def get_data_directory(self, index: int) -> DataDirectory | None:
        """Data directory by IMAGE_DIRECTORY_ENTRY_* index, if declared."""
        if 0 <= index < len(self.data_directories):
            return self.data_directories[index]
        return None

    def present_data_directories(self) -> Iterator[DataDirectory]:
        for directory in self.data_directories:
            if directory.is_present:
                yield directory

    def find_section(self, name: str) -> SectionHeader | None:
        """Find a section by name (full or truncated 8-char version)."""
        search_name = name[:8]
        for section in self.sections:
            if section.name_str == search_name:
                return section
        return None

    def rva_to_offset(self, rva: int) -> int:
        """Resolve an RVA through the section table.

        Raises:
            Unmapped: If the RVA is not backed by the image
        """
        return self.resolver.resolve(rva)

    def offset_to_rva(self, offset: int) -> int | None:
        return self.resolver.offset_to_rva(offset)

    def iter_errors(self) -> Iterator[tuple[str, ParseError]]:
        """Yield (location, error) for every recovered directory failure."""
        yield from self.errors.items()

        if self.imports is not None:
            if self.imports.error is not None:
                yield "imports", self.imports.error
            for i, descriptor in enumerate(self.imports.descriptors):
                label = f"imports[{i}]"
                if descriptor.error is not None:
                    yield label, descriptor.error
                for j, function in enumerate(descriptor.functions):
                    if function.error is not None:
                        yield f"{label}.functions[{j}]", function.error

        if self.exports is not None:
            for exc in self.exports.errors:
                yield "exports", exc
            for export in self.exports.exports:
                if export.error is not None:
                    yield f"exports[ordinal {export.ordinal}]", export.error

        if self.relocations is not None and self.relocations.error is not None:
            yield "relocations", self.relocations.error

        if self.resources is not None:
            for where, exc in self.resources.iter_errors():
                yield f"resources{where}", exc

    @property
    def has_errors(self) -> bool:
        return next(self.iter_errors(), None) is not None


def _parse_directory(
    name: str,
    enabled: bool,
    directory: DataDirectory | None,
    parser: Callable[[DataDirectory], object],
    errors: dict[str, ParseError],
):
    """Run one directory parser, recording a failure instead of raising."""
    if not enabled or directory is None or not directory.is_present:
        return None
    try:
        return parser(directory)
    except ParseError as exc:
        logger.debug("Could not parse %s directory: %s", name, exc)
        errors[name] = exc
        return None


def parse(
    source: Source | ByteReader, options: ParseOptions | None = None
) -> PeImage:
    """Parse a PE image.

    Args:
        source: Bytes-like object, path, binary file object or ByteReader
        options: Limits and policies (defaults to ParseOptions())

    Returns:
        The parsed PeImage

    Raises:
        InvalidSignature: If the DOS or PE signature is wrong
        UnsupportedOptionalHeaderMagic: For non PE32/PE32+ images
        Truncated: If a mandatory header runs past EOF
        CountMismatch: If a header count exceeds its sanity limit
    """
    options = options or DEFAULT_OPTIONS
    reader = ByteReader.from_source(source)

    dos_header = parse_dos_header(reader)
    signature = parse_pe_signature(reader, dos_header.e_lfanew.value)
    file_header = parse_file_header(reader)
    optional_offset = reader.position
    optional_header = parse_optional_header(reader)
    data_directories = parse_data_directories(
        reader, optional_header.NumberOfRvaAndSizes.value, options
    )
    sections = parse_section_table(
        reader,
        optional_offset + file_header.SizeOfOptionalHeader.value,
        file_header.NumberOfSections.value,
        options,
    )

    resolver = RvaResolver(sections, options.header_space_fallback)
    rva_reader = RvaReader(reader, resolver, options.max_string_length)
    directory = {d.index: d for d in data_directories}.get
    errors: dict[str, ParseError] = {}

    imports = _parse_directory(
        "imports",
        options.parse_imports,
        directory(IMAGE_DIRECTORY_ENTRY_IMPORT),
        lambda d: parse_imports(
            rva_reader,
            d,
            optional_header.thunk_size,
            optional_header.ordinal_flag,
            options,
        ),
        errors,
    )
    exports = _parse_directory(
        "exports",
        options.parse_exports,
        directory(IMAGE_DIRECTORY_ENTRY_EXPORT),
        lambda d: parse_exports(rva_reader, d, options),
        errors,
    )
    relocations = _parse_directory(
        "relocations",
        options.parse_relocations,
        directory(IMAGE_DIRECTORY_ENTRY_BASERELOC),
        lambda d: parse_relocations(rva_reader, d),
        errors,
    )
    resources = _parse_directory(
        "resources",
        options.parse_resources,
        directory(IMAGE_DIRECTORY_ENTRY_RESOURCE),
        lambda d: parse_resources(rva_reader, d, options),
        errors,
    )

    logger.debug(
        "Parsed %s image: %d sections, %d data directories",
        optional_header.NAME,
        len(sections),
        len(data_directories),
    )
    return PeImage(
        size=reader.size,
        dos_header=dos_header,
        signature=signature,
        file_header=file_header,
        optional_header=optional_header,
        data_directories=data_directories,
        sections=sections,
        resolver=resolver,
        imports=imports,
        exports=exports,
        relocations=relocations,
        resources=resources,
        errors=errors,
    )


def parse_file(path: Path | str, options: ParseOptions | None = None) -> PeImage:
    """Parse a PE image from disk."""
    return parse(Path(path), options)
