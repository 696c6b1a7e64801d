"""
Provenance wrapper for parsed values.

Every value pulled out of a PE image is wrapped in a Field that remembers
where it came from: the absolute file offset and the RVA it was read at.
For header structures the two are identical; for anything reached through
the section table they differ.
"""

from dataclasses import dataclass
from typing import Callable, Generic, TypeVar

T = TypeVar("T")
U = TypeVar("U")


@dataclass(frozen=True)
class Field(Generic[T]):
    """A decoded value plus its file offset and RVA."""

    value: T
    offset: int
    rva: int

    @classmethod
    def at(cls, value: T, offset: int, rva: int | None = None) -> "Field[T]":
        """Build a field whose RVA defaults to its file offset."""
        return cls(value, offset, offset if rva is None else rva)

    def map(self, func: Callable[[T], U]) -> "Field[U]":
        """Return a field with the same provenance and a transformed value."""
        return Field(func(self.value), self.offset, self.rva)

    def __repr__(self) -> str:
        value = f"0x{self.value:x}" if isinstance(self.value, int) else repr(self.value)
        return f"Field({value} @ 0x{self.offset:x}, rva=0x{self.rva:x})"
