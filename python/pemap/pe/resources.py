"""
Resource tree parsing.

The resource section is a tree of IMAGE_RESOURCE_DIRECTORY nodes. Each node
has a 16-byte header followed by NumberOfNamedEntries + NumberOfIdEntries
8-byte entries. Every offset inside the tree is relative to the start of the
resource directory, not an RVA:

- Entry.Name with the high bit set points at a length-prefixed UTF-16LE
  name; otherwise it is an integer ID.
- Entry.OffsetToData with the high bit set points at a child directory;
  otherwise it points at a 16-byte IMAGE_RESOURCE_DATA_ENTRY leaf whose
  OffsetToData is a real RVA.

Well-formed trees are three levels deep (type, name, language), but leaves
are accepted at any depth. Descent is bounded by an explicit depth counter
so cyclic or hostile trees fail with ResourceTreeTooDeep.
"""

import logging
from dataclasses import dataclass, replace
from typing import ClassVar, Iterator

from ..errors import CountMismatch, ParseError, ResourceTreeTooDeep
from ..field import Field
from ..options import ParseOptions
from .headers import DataDirectory, FieldStruct
from .rva import RvaReader
from .types import (
    IMAGE_RESOURCE_DATA_IS_DIRECTORY,
    IMAGE_RESOURCE_NAME_IS_STRING,
    IMAGE_RESOURCE_OFFSET_MASK,
    RESOURCE_TYPE_NAMES,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ResourceDataEntry(FieldStruct):
    """Leaf of the resource tree (IMAGE_RESOURCE_DATA_ENTRY) and its bytes.

    data is None when the OffsetToData/Size range could not be read, in
    which case error is set.
    """

    OffsetToData: Field[int]  # RVA of the resource bytes
    Size: Field[int]
    CodePage: Field[int]
    Reserved: Field[int]
    data: Field[bytes] | None = None
    error: ParseError | None = None

    LAYOUT: ClassVar = (
        ("OffsetToData", "I"),
        ("Size", "I"),
        ("CodePage", "I"),
        ("Reserved", "I"),
    )


@dataclass(frozen=True)
class ResourceEntry(FieldStruct):
    """IMAGE_RESOURCE_DIRECTORY_ENTRY and what it points to.

    child is a ResourceDirectory or ResourceDataEntry, or None when the
    target could not be read. error holds the first failure for this entry:
    an unreadable string name (the child is still read) or an unreadable
    child.
    """

    Name: Field[int]
    OffsetToData: Field[int]
    name: Field[str] | None = None
    child: "ResourceDirectory | ResourceDataEntry | None" = None
    error: ParseError | None = None

    LAYOUT: ClassVar = (
        ("Name", "I"),
        ("OffsetToData", "I"),
    )

    @property
    def has_name(self) -> bool:
        return bool(self.Name.value & IMAGE_RESOURCE_NAME_IS_STRING)

    @property
    def id(self) -> int | None:
        """Integer ID, or None for string-named entries."""
        return None if self.has_name else self.Name.value

    @property
    def is_directory(self) -> bool:
        return bool(self.OffsetToData.value & IMAGE_RESOURCE_DATA_IS_DIRECTORY)

    @property
    def child_offset(self) -> int:
        """Offset of the child relative to the resource base."""
        return self.OffsetToData.value & IMAGE_RESOURCE_OFFSET_MASK

    @property
    def label(self) -> str:
        """Display label: the string name or the decimal ID."""
        if self.name is not None:
            return self.name.value
        if self.has_name:
            return f"<name @ 0x{self.Name.value & IMAGE_RESOURCE_OFFSET_MASK:x}>"
        return str(self.Name.value)


@dataclass(frozen=True)
class ResourceDirectory(FieldStruct):
    """IMAGE_RESOURCE_DIRECTORY node and its entries."""

    Characteristics: Field[int]
    TimeDateStamp: Field[int]
    MajorVersion: Field[int]
    MinorVersion: Field[int]
    NumberOfNamedEntries: Field[int]
    NumberOfIdEntries: Field[int]
    entries: tuple[ResourceEntry, ...] = ()

    LAYOUT: ClassVar = (
        ("Characteristics", "I"),
        ("TimeDateStamp", "I"),
        ("MajorVersion", "H"),
        ("MinorVersion", "H"),
        ("NumberOfNamedEntries", "H"),
        ("NumberOfIdEntries", "H"),
    )

    @property
    def entry_count(self) -> int:
        return self.NumberOfNamedEntries.value + self.NumberOfIdEntries.value

    def find(self, key: int | str) -> ResourceEntry | None:
        """Find a direct child entry by integer ID or string name."""
        for entry in self.entries:
            if isinstance(key, int) and entry.id == key:
                return entry
            if entry.name is not None and entry.name.value == key:
                return entry
        return None

    def iter_leaves(
        self, path: tuple[ResourceEntry, ...] = ()
    ) -> Iterator[tuple[tuple[ResourceEntry, ...], ResourceDataEntry]]:
        """Yield (entry path, leaf) pairs in tree order."""
        for entry in self.entries:
            if isinstance(entry.child, ResourceDirectory):
                yield from entry.child.iter_leaves(path + (entry,))
            elif isinstance(entry.child, ResourceDataEntry):
                yield path + (entry,), entry.child

    def iter_errors(self, path: str = "") -> Iterator[tuple[str, ParseError]]:
        """Yield (entry path, error) for every entry or leaf that failed."""
        for entry in self.entries:
            where = f"{path}/{entry.label}"
            if entry.error is not None:
                yield where, entry.error
            if isinstance(entry.child, ResourceDirectory):
                yield from entry.child.iter_errors(where)
            elif isinstance(entry.child, ResourceDataEntry):
                if entry.child.error is not None:
                    yield f"{where}:data", entry.child.error


def resource_type_name(type_id: int) -> str | None:
    """Symbolic name of a first-level resource type ID (e.g. "VERSION")."""
    return RESOURCE_TYPE_NAMES.get(type_id)


class _TreeWalker:
    """Depth-bounded resource tree reader for one parse."""

    def __init__(self, reader: RvaReader, base: int, options: ParseOptions):
        self._reader = reader
        self._base = base
        self._max_depth = options.max_resource_depth
        self._max_entries = options.max_resource_entries
        self._entries_seen = 0

    def read_directory(
        self, offset: int, depth: int, path: frozenset[int]
    ) -> ResourceDirectory:
        """Read the directory node at base + offset and everything below it.

        Raises:
            ResourceTreeTooDeep: On a cycle or when depth exceeds the limit
            CountMismatch: When the tree holds too many entries
            ParseError: If this node's own header is unreadable
        """
        rva = self._base + offset
        if depth > self._max_depth or offset in path:
            raise ResourceTreeTooDeep(rva, depth)
        path = path | {offset}

        node = self._reader.read_struct(ResourceDirectory, rva)
        self._entries_seen += node.entry_count
        if self._entries_seen > self._max_entries:
            raise CountMismatch(
                f"Resource tree exceeds {self._max_entries} entries "
                f"(directory at RVA 0x{rva:x})"
            )

        entries = []
        for i in range(node.entry_count):
            entry_rva = rva + ResourceDirectory.SIZE + i * ResourceEntry.SIZE
            entry = self._reader.read_struct(ResourceEntry, entry_rva)
            entries.append(self._complete_entry(entry, depth, path))
        return replace(node, entries=tuple(entries))

    def _complete_entry(
        self, entry: ResourceEntry, depth: int, path: frozenset[int]
    ) -> ResourceEntry:
        name = None
        name_error = None
        if entry.has_name:
            name_rva = self._base + (entry.Name.value & IMAGE_RESOURCE_OFFSET_MASK)
            try:
                name = self._reader.read_utf16_string(name_rva)
            except ParseError as exc:
                logger.debug(
                    "Resource name at RVA 0x%x unreadable: %s", name_rva, exc
                )
                name_error = exc

        try:
            if entry.is_directory:
                child = self.read_directory(entry.child_offset, depth + 1, path)
            else:
                child = self._read_leaf(self._base + entry.child_offset)
        except (ResourceTreeTooDeep, CountMismatch):
            raise
        except ParseError as exc:
            logger.debug("Resource entry %s child unreadable: %s", entry.label, exc)
            return replace(entry, name=name, error=name_error or exc)
        return replace(entry, name=name, child=child, error=name_error)

    def _read_leaf(self, rva: int) -> ResourceDataEntry:
        leaf = self._reader.read_struct(ResourceDataEntry, rva)
        try:
            data = self._reader.read_bytes(leaf.OffsetToData.value, leaf.Size.value)
        except ParseError as exc:
            logger.debug("Resource data at RVA 0x%x unreadable: %s", rva, exc)
            return replace(leaf, error=exc)
        return replace(leaf, data=data)


def parse_resources(
    reader: RvaReader, directory: DataDirectory, options: ParseOptions
) -> ResourceDirectory:
    """Parse the resource tree rooted at the RESOURCE data directory.

    Unreadable names, leaves and subdirectories are recorded on their entry
    and their siblings are still parsed. Leaf bytes are loaded into
    ResourceDataEntry.data.

    Raises:
        ResourceTreeTooDeep: If the tree is cyclic or too deep
        CountMismatch: If the tree holds more than max_resource_entries
        ParseError: If the root directory or an entry array is unreadable
    """
    walker = _TreeWalker(reader, directory.VirtualAddress.value, options)
    root = walker.read_directory(0, 0, frozenset())
    logger.debug("Parsed resource tree with %d top-level entries", len(root.entries))
    return root
