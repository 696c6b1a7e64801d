"""
Minimal, value-only projection of a parsed image.

MinimalImage.from_image() strips every Field down to its value and keeps
the structural shape of the source: section order, import/export order,
relocation block order and the resource tree. Enumerated values become
their symbolic names, flag words become lists of flag names and timestamps
become ISO-8601 UTC strings, so the result is directly serializable.

Serialization:
    minimal = MinimalImage.from_image(image)
    text = minimal.to_json()
    blob = minimal.to_msgpack()
    data = unpack_msgpack(blob)  # == minimal.to_dict()
"""

import json
from dataclasses import asdict, dataclass
from typing import Any

import msgpack

from .pe.exports import ExportDirectory
from .pe.headers import FileHeader, OptionalHeader, timestamp_to_datetime
from .pe.image import PeImage
from .pe.imports import ImportDirectory, ImportedFunction
from .pe.relocs import RelocationBlock
from .pe.resources import (
    ResourceDataEntry,
    ResourceDirectory,
    resource_type_name,
)
from .pe.types import (
    DIRECTORY_NAMES,
    DLL_CHARACTERISTICS_NAMES,
    FILE_CHARACTERISTICS_NAMES,
    MACHINE_NAMES,
    OPTIONAL_MAGIC_NAMES,
    SUBSYSTEM_NAMES,
    flag_names,
    lookup_name,
    section_flag_names,
)


def _iso(timestamp: int) -> str:
    return timestamp_to_datetime(timestamp).isoformat()


# =============================================================================
# Headers
# =============================================================================


@dataclass(frozen=True)
class MinimalDosHeader:
    magic: int
    e_lfanew: int


@dataclass(frozen=True)
class MinimalFileHeader:
    machine: str
    number_of_sections: int
    timestamp: str
    pointer_to_symbol_table: int
    number_of_symbols: int
    size_of_optional_header: int
    characteristics: list[str]

    @classmethod
    def from_header(cls, header: FileHeader) -> "MinimalFileHeader":
        return cls(
            machine=lookup_name(header.Machine.value, MACHINE_NAMES),
            number_of_sections=header.NumberOfSections.value,
            timestamp=_iso(header.TimeDateStamp.value),
            pointer_to_symbol_table=header.PointerToSymbolTable.value,
            number_of_symbols=header.NumberOfSymbols.value,
            size_of_optional_header=header.SizeOfOptionalHeader.value,
            characteristics=flag_names(
                header.Characteristics.value, FILE_CHARACTERISTICS_NAMES
            ),
        )


@dataclass(frozen=True)
class MinimalOptionalHeader:
    magic: str
    linker_version: str
    size_of_code: int
    size_of_initialized_data: int
    size_of_uninitialized_data: int
    address_of_entry_point: int
    base_of_code: int
    base_of_data: int | None  # PE32 only
    image_base: int
    section_alignment: int
    file_alignment: int
    os_version: str
    image_version: str
    subsystem_version: str
    win32_version_value: int
    size_of_image: int
    size_of_headers: int
    checksum: int
    subsystem: str
    dll_characteristics: list[str]
    size_of_stack_reserve: int
    size_of_stack_commit: int
    size_of_heap_reserve: int
    size_of_heap_commit: int
    loader_flags: int
    number_of_rva_and_sizes: int

    @classmethod
    def from_header(cls, header: OptionalHeader) -> "MinimalOptionalHeader":
        v = header.values()
        return cls(
            magic=lookup_name(v["Magic"], OPTIONAL_MAGIC_NAMES),
            linker_version=f"{v['MajorLinkerVersion']}.{v['MinorLinkerVersion']}",
            size_of_code=v["SizeOfCode"],
            size_of_initialized_data=v["SizeOfInitializedData"],
            size_of_uninitialized_data=v["SizeOfUninitializedData"],
            address_of_entry_point=v["AddressOfEntryPoint"],
            base_of_code=v["BaseOfCode"],
            base_of_data=v.get("BaseOfData"),
            image_base=v["ImageBase"],
            section_alignment=v["SectionAlignment"],
            file_alignment=v["FileAlignment"],
            os_version=(
                f"{v['MajorOperatingSystemVersion']}."
                f"{v['MinorOperatingSystemVersion']}"
            ),
            image_version=f"{v['MajorImageVersion']}.{v['MinorImageVersion']}",
            subsystem_version=(
                f"{v['MajorSubsystemVersion']}.{v['MinorSubsystemVersion']}"
            ),
            win32_version_value=v["Win32VersionValue"],
            size_of_image=v["SizeOfImage"],
            size_of_headers=v["SizeOfHeaders"],
            checksum=v["CheckSum"],
            subsystem=lookup_name(v["Subsystem"], SUBSYSTEM_NAMES),
            dll_characteristics=flag_names(
                v["DllCharacteristics"], DLL_CHARACTERISTICS_NAMES
            ),
            size_of_stack_reserve=v["SizeOfStackReserve"],
            size_of_stack_commit=v["SizeOfStackCommit"],
            size_of_heap_reserve=v["SizeOfHeapReserve"],
            size_of_heap_commit=v["SizeOfHeapCommit"],
            loader_flags=v["LoaderFlags"],
            number_of_rva_and_sizes=v["NumberOfRvaAndSizes"],
        )


@dataclass(frozen=True)
class MinimalDataDirectory:
    type: str
    rva: int
    size: int


@dataclass(frozen=True)
class MinimalSection:
    name: str
    virtual_size: int
    virtual_address: int
    size_of_raw_data: int
    pointer_to_raw_data: int
    characteristics: list[str]


# =============================================================================
# Directories
# =============================================================================


@dataclass(frozen=True)
class MinimalImport:
    """One imported module; functions are names, or ordinals when imported
    by ordinal, or None when the hint/name entry was unreadable."""

    dll_name: str | None
    functions: list[str | int | None]


def _function_value(function: ImportedFunction) -> str | int | None:
    if function.ordinal is not None:
        return function.ordinal
    return function.name.value if function.name is not None else None


def _project_imports(imports: ImportDirectory) -> list[MinimalImport]:
    return [
        MinimalImport(
            dll_name=d.dll_name.value if d.dll_name is not None else None,
            functions=[_function_value(f) for f in d.functions],
        )
        for d in imports.descriptors
    ]


@dataclass(frozen=True)
class MinimalExport:
    name: str | None
    address: int
    ordinal: int
    forwarder: str | None


@dataclass(frozen=True)
class MinimalExports:
    name: str | None
    timestamp: str
    exports: list[MinimalExport]

    @classmethod
    def from_directory(cls, directory: ExportDirectory) -> "MinimalExports":
        return cls(
            name=directory.dll_name.value if directory.dll_name is not None else None,
            timestamp=_iso(directory.TimeDateStamp.value),
            exports=[
                MinimalExport(
                    name=e.name.value if e.name is not None else None,
                    address=e.address.value,
                    ordinal=e.ordinal,
                    forwarder=e.forwarder.value if e.forwarder is not None else None,
                )
                for e in directory.exports
            ],
        )


@dataclass(frozen=True)
class MinimalRelocation:
    type: str
    offset: int


@dataclass(frozen=True)
class MinimalRelocationBlock:
    page_rva: int
    block_size: int
    relocations: list[MinimalRelocation]

    @classmethod
    def from_block(cls, block: RelocationBlock) -> "MinimalRelocationBlock":
        return cls(
            page_rva=block.PageRVA.value,
            block_size=block.BlockSize.value,
            relocations=[
                MinimalRelocation(type=e.value.type_name, offset=e.value.offset)
                for e in block.entries
            ],
        )


@dataclass(frozen=True)
class MinimalResourceData:
    rva: int
    size: int
    code_page: int
    reserved: int


@dataclass(frozen=True)
class MinimalResourceEntry:
    """A resource tree entry; at most one of directory/data is set."""

    id: int | None
    name: str | None
    type: str | None  # Symbolic resource type, top level only
    directory: "MinimalResourceDirectory | None"
    data: MinimalResourceData | None


@dataclass(frozen=True)
class MinimalResourceDirectory:
    characteristics: int
    timestamp: int
    major_version: int
    minor_version: int
    entries: list[MinimalResourceEntry]

    @classmethod
    def from_directory(
        cls, directory: ResourceDirectory, depth: int = 0
    ) -> "MinimalResourceDirectory":
        entries = []
        for entry in directory.entries:
            subdir = None
            data = None
            if isinstance(entry.child, ResourceDirectory):
                subdir = cls.from_directory(entry.child, depth + 1)
            elif isinstance(entry.child, ResourceDataEntry):
                leaf = entry.child
                data = MinimalResourceData(
                    rva=leaf.OffsetToData.value,
                    size=leaf.Size.value,
                    code_page=leaf.CodePage.value,
                    reserved=leaf.Reserved.value,
                )
            type_name = None
            if depth == 0 and entry.id is not None:
                type_name = resource_type_name(entry.id)
            entries.append(
                MinimalResourceEntry(
                    id=entry.id,
                    name=entry.name.value if entry.name is not None else None,
                    type=type_name,
                    directory=subdir,
                    data=data,
                )
            )
        return cls(
            characteristics=directory.Characteristics.value,
            timestamp=directory.TimeDateStamp.value,
            major_version=directory.MajorVersion.value,
            minor_version=directory.MinorVersion.value,
            entries=entries,
        )


# =============================================================================
# Image
# =============================================================================


@dataclass(frozen=True)
class MinimalImage:
    """Value-only snapshot of a PeImage."""

    dos_header: MinimalDosHeader
    file_header: MinimalFileHeader
    optional_header: MinimalOptionalHeader
    data_directories: list[MinimalDataDirectory]
    sections: list[MinimalSection]
    imports: list[MinimalImport] | None = None
    exports: MinimalExports | None = None
    relocations: list[MinimalRelocationBlock] | None = None
    resources: MinimalResourceDirectory | None = None

    @classmethod
    def from_image(cls, image: PeImage) -> "MinimalImage":
        """Project a parsed image. Never fails for a parsed PeImage."""
        return cls(
            dos_header=MinimalDosHeader(
                magic=image.dos_header.e_magic.value,
                e_lfanew=image.dos_header.e_lfanew.value,
            ),
            file_header=MinimalFileHeader.from_header(image.file_header),
            optional_header=MinimalOptionalHeader.from_header(image.optional_header),
            data_directories=[
                MinimalDataDirectory(
                    type=lookup_name(d.index, DIRECTORY_NAMES),
                    rva=d.VirtualAddress.value,
                    size=d.Size.value,
                )
                for d in image.data_directories
                if d.Size.value > 0
            ],
            sections=[
                MinimalSection(
                    name=s.name_str,
                    virtual_size=s.VirtualSize.value,
                    virtual_address=s.VirtualAddress.value,
                    size_of_raw_data=s.SizeOfRawData.value,
                    pointer_to_raw_data=s.PointerToRawData.value,
                    characteristics=section_flag_names(s.Characteristics.value),
                )
                for s in image.sections
            ],
            imports=(
                _project_imports(image.imports) if image.imports is not None else None
            ),
            exports=(
                MinimalExports.from_directory(image.exports)
                if image.exports is not None
                else None
            ),
            relocations=(
                [MinimalRelocationBlock.from_block(b) for b in image.relocations]
                if image.relocations is not None
                else None
            ),
            resources=(
                MinimalResourceDirectory.from_directory(image.resources)
                if image.resources is not None
                else None
            ),
        )

    def to_dict(self) -> dict[str, Any]:
        """Nested plain dicts and lists."""
        return asdict(self)

    def to_json(self, indent: int | None = 2) -> str:
        return json.dumps(self.to_dict(), indent=indent)

    def to_msgpack(self) -> bytes:
        return msgpack.packb(self.to_dict(), use_bin_type=True)


def unpack_msgpack(content: bytes) -> dict[str, Any]:
    """Decode the output of MinimalImage.to_msgpack() back to a dict.

    Raises:
        ValueError: If content is not msgpack or does not hold a map
    """
    try:
        data = msgpack.unpackb(content, raw=False, strict_map_key=True)
    except (msgpack.exceptions.UnpackException, ValueError) as e:
        raise ValueError(f"Failed to unpack minimal image msgpack data: {e}") from e
    if not isinstance(data, dict):
        raise ValueError(
            "Invalid minimal image msgpack data: expected map, "
            f"got {type(data).__name__}"
        )
    return data
