"""
Export table parsing.

The export directory header points at three parallel arrays:

- AddressOfFunctions: NumberOfFunctions function RVAs, indexed by
  (ordinal - Base)
- AddressOfNames: NumberOfNames name RVAs
- AddressOfNameOrdinals: NumberOfNames u16 indices into the address table

A function RVA that points back inside the export directory is a forwarder
("OTHER.Function") rather than code.
"""

import logging
from dataclasses import dataclass, replace
from datetime import datetime
from typing import ClassVar

from ..errors import CountMismatch, ParseError
from ..field import Field
from ..options import ParseOptions
from .headers import DataDirectory, FieldStruct, timestamp_to_datetime
from .rva import RvaReader

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ExportedFunction:
    """One export: its ordinal, target and optional name/forwarder.

    address is the raw address table slot. For forwarders it is the RVA of
    the forwarder string, which is decoded into forwarder.
    """

    ordinal: int
    address: Field[int]
    name: Field[str] | None = None
    forwarder: Field[str] | None = None
    error: ParseError | None = None

    @property
    def is_forwarded(self) -> bool:
        return self.forwarder is not None


@dataclass(frozen=True)
class ExportDirectory(FieldStruct):
    """IMAGE_EXPORT_DIRECTORY plus its decoded exports.

    errors collects failures that did not stop the walk (unreadable name
    entries, out-of-range ordinals, clamped counts).
    """

    Characteristics: Field[int]
    TimeDateStamp: Field[int]
    MajorVersion: Field[int]
    MinorVersion: Field[int]
    Name: Field[int]  # RVA of the module name
    Base: Field[int]  # Ordinal base
    NumberOfFunctions: Field[int]
    NumberOfNames: Field[int]
    AddressOfFunctions: Field[int]
    AddressOfNames: Field[int]
    AddressOfNameOrdinals: Field[int]
    dll_name: Field[str] | None = None
    exports: tuple[ExportedFunction, ...] = ()
    errors: tuple[ParseError, ...] = ()

    LAYOUT: ClassVar = (
        ("Characteristics", "I"),
        ("TimeDateStamp", "I"),
        ("MajorVersion", "H"),
        ("MinorVersion", "H"),
        ("Name", "I"),
        ("Base", "I"),
        ("NumberOfFunctions", "I"),
        ("NumberOfNames", "I"),
        ("AddressOfFunctions", "I"),
        ("AddressOfNames", "I"),
        ("AddressOfNameOrdinals", "I"),
    )

    @property
    def timestamp(self) -> datetime:
        return timestamp_to_datetime(self.TimeDateStamp.value)

    def by_name(self, name: str) -> ExportedFunction | None:
        for export in self.exports:
            if export.name is not None and export.name.value == name:
                return export
        return None

    def by_ordinal(self, ordinal: int) -> ExportedFunction | None:
        for export in self.exports:
            if export.ordinal == ordinal:
                return export
        return None


def _read_names(
    reader: RvaReader,
    header: ExportDirectory,
    function_count: int,
    errors: list[ParseError],
) -> dict[int, Field[str]]:
    """Map address table indices to names via the name/ordinal tables."""
    names: dict[int, Field[str]] = {}
    count = header.NumberOfNames.value
    if count > function_count:
        errors.append(
            CountMismatch(
                f"NumberOfNames ({count}) exceeds walked functions ({function_count})"
            )
        )
        count = function_count

    names_rva = header.AddressOfNames.value
    ordinals_rva = header.AddressOfNameOrdinals.value
    for i in range(count):
        try:
            name_rva = reader.read_u32(names_rva + i * 4).value
            index = reader.read_u16(ordinals_rva + i * 2).value
            name = reader.read_cstring(name_rva)
        except ParseError as exc:
            logger.debug("Export name %d unreadable: %s", i, exc)
            errors.append(exc)
            continue
        if index >= function_count:
            errors.append(
                CountMismatch(
                    f"Export name {name.value!r} refers to function index {index} "
                    f"beyond {function_count}"
                )
            )
            continue
        # First name wins when several point at the same slot
        names.setdefault(index, name)
    return names


def parse_exports(
    reader: RvaReader, directory: DataDirectory, options: ParseOptions
) -> ExportDirectory:
    """Parse the export directory.

    Args:
        reader: RVA reader for the image
        directory: The present EXPORT data directory
        options: Parse limits

    Returns:
        ExportDirectory with exports in address table order

    Raises:
        ParseError: If the 40-byte directory header itself is unreadable
    """
    header = reader.read_struct(ExportDirectory, directory.VirtualAddress.value)
    errors: list[ParseError] = []

    module_name = None
    try:
        module_name = reader.read_cstring(header.Name.value)
    except ParseError as exc:
        logger.debug("Export module name unreadable: %s", exc)
        errors.append(exc)

    function_count = header.NumberOfFunctions.value
    if function_count > options.max_export_functions:
        errors.append(
            CountMismatch(
                f"NumberOfFunctions ({function_count}) exceeds maximum "
                f"({options.max_export_functions})"
            )
        )
        function_count = options.max_export_functions

    addresses: list[Field[int]] = []
    table_rva = header.AddressOfFunctions.value
    for i in range(function_count):
        try:
            addresses.append(reader.read_u32(table_rva + i * 4))
        except ParseError as exc:
            logger.debug("Export address table ends early at index %d: %s", i, exc)
            errors.append(exc)
            break

    names = _read_names(reader, header, len(addresses), errors)

    exports = []
    base = header.Base.value
    for index, address in enumerate(addresses):
        name = names.get(index)
        if address.value == 0 and name is None:
            continue  # Unused ordinal slot
        forwarder = None
        error = None
        if directory.contains(address.value):
            try:
                forwarder = reader.read_cstring(address.value)
            except ParseError as exc:
                logger.debug(
                    "Forwarder for ordinal %d unreadable: %s", base + index, exc
                )
                error = exc
        exports.append(
            ExportedFunction(
                ordinal=base + index,
                address=address,
                name=name,
                forwarder=forwarder,
                error=error,
            )
        )

    logger.debug("Parsed %d exports (%d errors)", len(exports), len(errors))
    return replace(
        header,
        dll_name=module_name,
        exports=tuple(exports),
        errors=tuple(errors),
    )
