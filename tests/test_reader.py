"""Tests for the bounds-checked ByteReader."""

import io
import struct

import pytest

from pemap import ByteReader, Truncated


class TestReads:
    """Tests for fixed-width reads."""

    def test_little_endian_integers(self):
        """Test u8/u16/u32/u64 decode little-endian and advance."""
        data = struct.pack("<BHIQ", 0x12, 0x3456, 0x789ABCDE, 0x0102030405060708)
        reader = ByteReader(data)

        assert reader.read_u8() == 0x12
        assert reader.read_u16() == 0x3456
        assert reader.read_u32() == 0x789ABCDE
        assert reader.read_u64() == 0x0102030405060708
        assert reader.position == len(data)
        assert reader.remaining() == 0

    def test_read_past_end_raises_truncated(self):
        """Test that a short read reports offset, size and availability."""
        reader = ByteReader(b"\x01\x02\x03")
        reader.seek(1)

        with pytest.raises(Truncated) as exc_info:
            reader.read_u32()

        assert exc_info.value.offset == 1
        assert exc_info.value.size == 4
        assert exc_info.value.available == 2

    def test_failed_read_does_not_move(self):
        """Test that Truncated leaves the position untouched."""
        reader = ByteReader(b"\x01\x02")
        with pytest.raises(Truncated):
            reader.read_exact(3)
        assert reader.position == 0

    def test_peek_does_not_advance(self):
        """Test peek_u16 leaves the position unchanged."""
        reader = ByteReader(b"MZ\x90\x00")
        assert reader.peek_u16() == 0x5A4D
        assert reader.position == 0

    def test_read_struct(self):
        """Test multi-value struct reads."""
        reader = ByteReader(struct.pack("<HI", 7, 9))
        assert reader.read_struct("<HI") == (7, 9)


class TestSeek:
    """Tests for cursor movement."""

    def test_seek_past_end_is_allowed(self):
        """Test that seeking beyond EOF only fails on the next read."""
        reader = ByteReader(b"\x00" * 4)
        assert reader.seek(100) == 100
        assert reader.remaining() == 0

        with pytest.raises(Truncated, match="need 2 bytes at offset 0x64"):
            reader.read_u16()

    def test_negative_seek_raises(self):
        """Test negative offsets are rejected."""
        reader = ByteReader(b"\x00")
        with pytest.raises(ValueError, match="Negative seek"):
            reader.seek(-1)

    def test_skip(self):
        """Test skip is relative to the current position."""
        reader = ByteReader(b"\x00" * 8)
        reader.seek(2)
        assert reader.skip(3) == 5


class TestStrings:
    """Tests for string reads."""

    def test_cstring_consumes_terminator(self):
        """Test the NUL is consumed but not returned."""
        reader = ByteReader(b"abc\x00def\x00")
        assert reader.read_cstring(16) == b"abc"
        assert reader.position == 4
        assert reader.read_cstring(16) == b"def"

    def test_cstring_without_terminator_within_limit(self):
        """Test a string longer than the limit raises Truncated."""
        reader = ByteReader(b"abcdefgh\x00")
        with pytest.raises(Truncated):
            reader.read_cstring(4)

    def test_cstring_without_terminator_before_eof(self):
        """Test a string running into EOF raises Truncated."""
        reader = ByteReader(b"abc")
        with pytest.raises(Truncated):
            reader.read_cstring(512)

    def test_utf16(self):
        """Test UTF-16LE decoding by code unit count."""
        reader = ByteReader("ICON".encode("utf-16-le"))
        assert reader.read_utf16(4) == "ICON"


class TestFromSource:
    """Tests for the accepted input kinds."""

    def test_bytes_bytearray_memoryview(self):
        """Test all buffer types produce equal readers."""
        data = b"MZ\x00\x00"
        for source in (data, bytearray(data), memoryview(data)):
            assert ByteReader.from_source(source).read_exact(4) == data

    def test_path_and_file_object(self, tmp_path):
        """Test reading from a path and an open binary file."""
        path = tmp_path / "blob.bin"
        path.write_bytes(b"\x01\x02\x03")

        assert ByteReader.from_source(path).size == 3
        assert ByteReader.from_source(str(path)).size == 3
        with open(path, "rb") as f:
            assert ByteReader.from_source(f).size == 3
        assert ByteReader.from_source(io.BytesIO(b"\x09")).read_u8() == 9

    def test_unsupported_type_raises(self):
        """Test non-buffer, non-path inputs are rejected."""
        with pytest.raises(TypeError, match="Unsupported PE source type: int"):
            ByteReader.from_source(42)

    def test_mutating_source_after_construction(self):
        """Test the reader snapshots mutable buffers."""
        data = bytearray(b"\x01\x02")
        reader = ByteReader(data)
        data[0] = 0xFF
        assert reader.read_u8() == 0x01
