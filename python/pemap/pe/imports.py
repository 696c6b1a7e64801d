"""
Import table parsing.

The import directory is an array of IMAGE_IMPORT_DESCRIPTOR records ending
with an all-zero sentinel. Each descriptor names a module and points at a
zero-terminated thunk array; a thunk either carries an ordinal (top bit
set) or the RVA of a {hint, name} record.

A descriptor that cannot be fully read is kept with its error attached and
the walk moves on to the next descriptor. Failing to read the descriptor
array itself ends the walk and is recorded on the directory.
"""

import logging
from dataclasses import dataclass, replace
from typing import ClassVar

from ..errors import CountMismatch, ParseError
from ..field import Field
from ..options import ParseOptions
from .headers import DataDirectory, FieldStruct
from .rva import RvaReader
from .types import IMAGE_HINT_NAME_RVA_MASK

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ImportedFunction:
    """One thunk of an import lookup table.

    Exactly one of ordinal or name is set unless the hint/name record could
    not be read, in which case error is set instead.
    """

    thunk: Field[int]
    ordinal: int | None = None
    hint: Field[int] | None = None
    name: Field[str] | None = None
    error: ParseError | None = None

    @property
    def is_ordinal(self) -> bool:
        return self.ordinal is not None


@dataclass(frozen=True)
class ImportDescriptor(FieldStruct):
    """IMAGE_IMPORT_DESCRIPTOR plus the module it names and its functions."""

    OriginalFirstThunk: Field[int]  # Import lookup table RVA
    TimeDateStamp: Field[int]
    ForwarderChain: Field[int]
    Name: Field[int]  # RVA of the module name
    FirstThunk: Field[int]  # Import address table RVA
    dll_name: Field[str] | None = None
    functions: tuple[ImportedFunction, ...] = ()
    error: ParseError | None = None

    LAYOUT: ClassVar = (
        ("OriginalFirstThunk", "I"),
        ("TimeDateStamp", "I"),
        ("ForwarderChain", "I"),
        ("Name", "I"),
        ("FirstThunk", "I"),
    )

    @property
    def is_sentinel(self) -> bool:
        return (
            self.OriginalFirstThunk.value == 0
            and self.Name.value == 0
            and self.FirstThunk.value == 0
        )

    @property
    def lookup_table_rva(self) -> int:
        """RVA of the thunk array to walk.

        Some linkers leave OriginalFirstThunk zero; the IAT then still holds
        the unbound thunks.
        """
        return self.OriginalFirstThunk.value or self.FirstThunk.value


@dataclass(frozen=True)
class ImportDirectory:
    """All descriptors read from the import directory.

    error is set when the walk stopped before reaching the sentinel.
    """

    descriptors: tuple[ImportDescriptor, ...]
    error: ParseError | None = None

    def __iter__(self):
        return iter(self.descriptors)

    def __len__(self) -> int:
        return len(self.descriptors)

    def find(self, dll_name: str) -> ImportDescriptor | None:
        """Find a descriptor by module name (case-insensitive)."""
        wanted = dll_name.lower()
        for descriptor in self.descriptors:
            if descriptor.dll_name and descriptor.dll_name.value.lower() == wanted:
                return descriptor
        return None


def _read_function(
    reader: RvaReader, thunk: Field[int], ordinal_flag: int
) -> ImportedFunction:
    if thunk.value & ordinal_flag:
        return ImportedFunction(thunk=thunk, ordinal=thunk.value & 0xFFFF)

    hint_rva = thunk.value & IMAGE_HINT_NAME_RVA_MASK
    try:
        hint = reader.read_u16(hint_rva)
        name = reader.read_cstring(hint_rva + 2)
    except ParseError as exc:
        logger.debug("Could not read hint/name at RVA 0x%x: %s", hint_rva, exc)
        return ImportedFunction(thunk=thunk, error=exc)
    return ImportedFunction(thunk=thunk, hint=hint, name=name)


def _read_functions(
    reader: RvaReader,
    table_rva: int,
    thunk_size: int,
    ordinal_flag: int,
    options: ParseOptions,
    functions: list[ImportedFunction],
) -> None:
    """Append the functions of one thunk array, raising on a table failure."""
    for index in range(options.max_import_functions + 1):
        thunk = reader.read_int(table_rva + index * thunk_size, thunk_size)
        if thunk.value == 0:
            return
        if index == options.max_import_functions:
            raise CountMismatch(
                f"Import lookup table at RVA 0x{table_rva:x} exceeds "
                f"{options.max_import_functions} entries"
            )
        functions.append(_read_function(reader, thunk, ordinal_flag))


def _complete_descriptor(
    reader: RvaReader,
    descriptor: ImportDescriptor,
    thunk_size: int,
    ordinal_flag: int,
    options: ParseOptions,
) -> ImportDescriptor:
    """Fill in the module name and functions of a raw descriptor."""
    dll_name = None
    functions: list[ImportedFunction] = []
    error = None
    try:
        dll_name = reader.read_cstring(descriptor.Name.value)
        _read_functions(
            reader,
            descriptor.lookup_table_rva,
            thunk_size,
            ordinal_flag,
            options,
            functions,
        )
    except ParseError as exc:
        logger.debug(
            "Import descriptor at RVA 0x%x is incomplete: %s", descriptor.rva, exc
        )
        error = exc
    return replace(
        descriptor,
        dll_name=dll_name,
        functions=tuple(functions),
        error=error,
    )


def parse_imports(
    reader: RvaReader,
    directory: DataDirectory,
    thunk_size: int,
    ordinal_flag: int,
    options: ParseOptions,
) -> ImportDirectory:
    """Walk the import descriptor array.

    Args:
        reader: RVA reader for the image
        directory: The present IMPORT data directory
        thunk_size: 4 for PE32, 8 for PE32+
        ordinal_flag: Top bit of a thunk of that width
        options: Parse limits

    Returns:
        ImportDirectory with one entry per descriptor read
    """
    descriptors: list[ImportDescriptor] = []
    base = directory.VirtualAddress.value

    for index in range(options.max_import_descriptors + 1):
        rva = base + index * ImportDescriptor.SIZE
        try:
            raw = reader.read_struct(ImportDescriptor, rva)
        except ParseError as exc:
            logger.debug(
                "Import descriptor %d at RVA 0x%x unreadable: %s", index, rva, exc
            )
            return ImportDirectory(tuple(descriptors), error=exc)

        if raw.is_sentinel:
            break
        if index == options.max_import_descriptors:
            exc = CountMismatch(
                f"Import directory exceeds {options.max_import_descriptors} descriptors"
            )
            return ImportDirectory(tuple(descriptors), error=exc)

        descriptors.append(
            _complete_descriptor(reader, raw, thunk_size, ordinal_flag, options)
        )

    logger.debug("Parsed %d import descriptors", len(descriptors))
    return ImportDirectory(tuple(descriptors))
