"""
Bounds-checked byte cursor.

ByteReader wraps an immutable view of the whole input and tracks a current
absolute position. Reads never truncate: asking for bytes past the end
raises Truncated. Seeking past the end is allowed and only fails on the
next read, so a directory that points beyond EOF is reported at the point
of use.
"""

import os
import struct
from pathlib import Path
from typing import BinaryIO

from .errors import Truncated

Source = bytes | bytearray | memoryview | str | os.PathLike | BinaryIO


class ByteReader:
    """Sequential/random little-endian reader over an in-memory buffer.

    Usage:
        reader = ByteReader(data)
        reader.seek(0x3C)
        e_lfanew = reader.read_u32()
    """

    def __init__(self, data: bytes | bytearray | memoryview):
        # Snapshot mutable buffers so parsed results cannot drift
        self._data = memoryview(bytes(data))
        self._pos = 0

    @classmethod
    def from_source(cls, source: Source) -> "ByteReader":
        """Create a reader from a buffer, a path, or a binary file object.

        File objects are read from their current position to EOF.

        Raises:
            TypeError: If source is none of the supported kinds
        """
        if isinstance(source, ByteReader):
            return cls(source._data)
        if isinstance(source, (bytes, bytearray, memoryview)):
            return cls(source)
        if isinstance(source, (str, os.PathLike)):
            return cls(Path(source).read_bytes())
        if hasattr(source, "read"):
            return cls(source.read())
        raise TypeError(f"Unsupported PE source type: {type(source).__name__}")

    # =========================================================================
    # Position
    # =========================================================================

    @property
    def position(self) -> int:
        """Current absolute offset."""
        return self._pos

    @property
    def size(self) -> int:
        """Total buffer length."""
        return len(self._data)

    def __len__(self) -> int:
        return len(self._data)

    def seek(self, offset: int) -> int:
        """Move to an absolute offset. Positions past EOF are accepted."""
        if offset < 0:
            raise ValueError(f"Negative seek offset: {offset}")
        self._pos = offset
        return self._pos

    def skip(self, count: int) -> int:
        """Advance the position by count bytes."""
        return self.seek(self._pos + count)

    def remaining(self) -> int:
        """Bytes left between the position and EOF (0 if past EOF)."""
        return max(0, len(self._data) - self._pos)

    # =========================================================================
    # Reads
    # =========================================================================

    def _require(self, size: int) -> None:
        if size > self.remaining():
            raise Truncated(self._pos, size, self.remaining())

    def read_exact(self, size: int) -> bytes:
        """Read exactly size bytes.

        Raises:
            Truncated: If fewer than size bytes remain
        """
        self._require(size)
        start = self._pos
        self._pos += size
        return bytes(self._data[start : self._pos])

    def read_struct(self, fmt: str) -> tuple:
        """Unpack a struct format at the position and advance past it."""
        size = struct.calcsize(fmt)
        self._require(size)
        values = struct.unpack_from(fmt, self._data, self._pos)
        self._pos += size
        return values

    def read_u8(self) -> int:
        return self.read_struct("<B")[0]

    def read_u16(self) -> int:
        return self.read_struct("<H")[0]

    def read_u32(self) -> int:
        return self.read_struct("<I")[0]

    def read_u64(self) -> int:
        return self.read_struct("<Q")[0]

    def peek_u16(self) -> int:
        """Read a u16 without moving the position."""
        self._require(2)
        return struct.unpack_from("<H", self._data, self._pos)[0]

    def read_cstring(self, limit: int) -> bytes:
        """Read a NUL-terminated byte string of at most limit bytes.

        The terminator is consumed but not returned.

        Raises:
            Truncated: If no terminator is found within limit bytes or
                before EOF
        """
        window = min(limit, self.remaining())
        end = bytes(self._data[self._pos : self._pos + window]).find(b"\x00")
        if end < 0:
            raise Truncated(self._pos, window + 1, window)
        value = bytes(self._data[self._pos : self._pos + end])
        self._pos += end + 1
        return value

    def read_utf16(self, count: int) -> str:
        """Read count UTF-16LE code units and decode them."""
        raw = self.read_exact(count * 2)
        return raw.decode("utf-16-le", errors="replace")
