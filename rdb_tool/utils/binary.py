"""Binary reading and writing utilities for little-endian RDB data."""

import struct
from io import BytesIO
from typing import BinaryIO, Union


class BinaryReader:
    """Helper for reading little-endian binary data."""

    def __init__(self, data: Union[bytes, BinaryIO]):
        if isinstance(data, (bytes, bytearray)):
            self._stream = BytesIO(data)
        else:
            self._stream = data

    @property
    def stream(self) -> BinaryIO:
        return self._stream

    def tell(self) -> int:
        return self._stream.tell()

    def seek(self, offset: int, whence: int = 0) -> int:
        return self._stream.seek(offset, whence)

    def read_bytes(self, size: int) -> bytes:
        data = self._stream.read(size)
        if len(data) < size:
            raise EOFError(f"Expected {size} bytes, got {len(data)}")
        return data

    def read_u32(self) -> int:
        return struct.unpack("<I", self.read_bytes(4))[0]

    def read_u64(self) -> int:
        return struct.unpack("<Q", self.read_bytes(8))[0]

    def read_cstring(self) -> bytes:
        """Read a null-terminated byte string, consuming the terminator."""
        chars = []
        while True:
            byte = self._stream.read(1)
            if not byte:
                raise EOFError("Unterminated string")
            if byte == b"\x00":
                break
            chars.append(byte)
        return b"".join(chars)

    def skip(self, count: int) -> None:
        """Skip forward by count bytes."""
        self._stream.seek(count, 1)

    def align(self, alignment: int) -> None:
        """Align stream position to the given boundary."""
        pos = self.tell()
        remainder = pos % alignment
        if remainder:
            self.skip(alignment - remainder)

    def remaining(self) -> int:
        """Return number of bytes remaining in stream."""
        current = self.tell()
        self._stream.seek(0, 2)  # Seek to end
        end = self.tell()
        self._stream.seek(current)
        return max(0, end - current)


class BinaryWriter:
    """Helper for writing little-endian binary data."""

    def __init__(self, stream: BinaryIO = None):
        self._stream = stream if stream is not None else BytesIO()

    @property
    def stream(self) -> BinaryIO:
        return self._stream

    def tell(self) -> int:
        return self._stream.tell()

    def write_bytes(self, data: bytes) -> None:
        self._stream.write(data)

    def write_u32(self, value: int) -> None:
        self._stream.write(struct.pack("<I", value))

    def write_u64(self, value: int) -> None:
        self._stream.write(struct.pack("<Q", value))

    def write_cstring(self, data: bytes) -> None:
        self._stream.write(data + b"\x00")

    def pad_to(self, offset: int) -> None:
        """Zero-fill up to an absolute offset."""
        pos = self.tell()
        if offset > pos:
            self._stream.write(b"\x00" * (offset - pos))

    def align(self, alignment: int) -> None:
        """Zero-pad output to the given boundary."""
        remainder = self.tell() % alignment
        if remainder:
            self._stream.write(b"\x00" * (alignment - remainder))

    def getvalue(self) -> bytes:
        """Return everything written so far (in-memory streams only)."""
        return self._stream.getvalue()

