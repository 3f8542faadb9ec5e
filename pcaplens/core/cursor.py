"""
Bounds-checked binary access.

ByteCursor reads integers and byte runs from a fixed buffer with an explicit
byte order. ByteSource hides where the capture bytes live so readers can walk
an in-memory buffer or a seekable file through the same calls.
"""

from __future__ import annotations

import os
import struct
from abc import ABC, abstractmethod
from pathlib import Path
from typing import BinaryIO

from pcaplens.core.exceptions import CursorError


LITTLE_ENDIAN = '<'
BIG_ENDIAN = '>'

_STRUCTS = {
    order: {
        'u8': struct.Struct(order + 'B'),
        'u16': struct.Struct(order + 'H'),
        'u32': struct.Struct(order + 'I'),
        'i32': struct.Struct(order + 'i'),
        'u64': struct.Struct(order + 'Q'),
    }
    for order in (LITTLE_ENDIAN, BIG_ENDIAN)
}


class ByteCursor:
    """
    Sequential and random reader over an immutable buffer.

    Every read is checked against the buffer length and raises CursorError
    instead of returning short data. The byte order is fixed at construction;
    use ``with_byte_order`` to get a second view with the other order.

    Examples:
        >>> cur = ByteCursor(b'\\x01\\x00\\x02\\x00', LITTLE_ENDIAN)
        >>> cur.u16(), cur.u16()
        (1, 2)
        >>> cur.remaining
        0
    """

    __slots__ = ('_buf', '_len', '_order', '_structs', 'offset')

    def __init__(self, buf: bytes | bytearray | memoryview, byte_order: str = BIG_ENDIAN,
                 offset: int = 0):
        if byte_order not in _STRUCTS:
            raise ValueError(f"byte_order must be '<' or '>', got {byte_order!r}")
        self._buf = memoryview(buf).cast('B') if not isinstance(buf, bytes) else buf
        self._len = len(self._buf)
        self._order = byte_order
        self._structs = _STRUCTS[byte_order]
        self.offset = offset

    def __len__(self) -> int:
        return self._len

    @property
    def byte_order(self) -> str:
        return self._order

    @property
    def remaining(self) -> int:
        return max(self._len - self.offset, 0)

    def with_byte_order(self, byte_order: str) -> ByteCursor:
        """Return a cursor over the same buffer and position with another byte order."""
        return ByteCursor(self._buf, byte_order, self.offset)

    def _check(self, offset: int, size: int) -> None:
        if offset < 0 or size < 0 or offset + size > self._len:
            raise CursorError(offset, size, self._len)

    def has(self, size: int, offset: int | None = None) -> bool:
        """True if ``size`` bytes are available at ``offset`` (default: current position)."""
        start = self.offset if offset is None else offset
        return start >= 0 and size >= 0 and start + size <= self._len

    def seek(self, offset: int) -> None:
        if offset < 0 or offset > self._len:
            raise CursorError(offset, 0, self._len)
        self.offset = offset

    def skip(self, size: int) -> None:
        self._check(self.offset, size)
        self.offset += size

    # Random access

    def _unpack_at(self, kind: str, offset: int) -> int:
        st = self._structs[kind]
        self._check(offset, st.size)
        return st.unpack_from(self._buf, offset)[0]

    def u8_at(self, offset: int) -> int:
        return self._unpack_at('u8', offset)

    def u16_at(self, offset: int) -> int:
        return self._unpack_at('u16', offset)

    def u32_at(self, offset: int) -> int:
        return self._unpack_at('u32', offset)

    def i32_at(self, offset: int) -> int:
        return self._unpack_at('i32', offset)

    def u64_at(self, offset: int) -> int:
        return self._unpack_at('u64', offset)

    def bytes_at(self, offset: int, size: int) -> bytes:
        self._check(offset, size)
        return bytes(self._buf[offset:offset + size])

    # Sequential access

    def _next(self, kind: str) -> int:
        value = self._unpack_at(kind, self.offset)
        self.offset += self._structs[kind].size
        return value

    def u8(self) -> int:
        return self._next('u8')

    def u16(self) -> int:
        return self._next('u16')

    def u32(self) -> int:
        return self._next('u32')

    def i32(self) -> int:
        return self._next('i32')

    def u64(self) -> int:
        return self._next('u64')

    def read(self, size: int) -> bytes:
        data = self.bytes_at(self.offset, size)
        self.offset += size
        return data


class ByteSource(ABC):
    """Seekable, read-only origin of capture bytes."""

    @property
    @abstractmethod
    def size(self) -> int:
        """Total number of bytes available."""

    @abstractmethod
    def read(self, offset: int, length: int) -> bytes:
        """
        Read up to ``length`` bytes at ``offset``.

        Returns fewer bytes when the source ends first; never raises for
        reads past the end.
        """

    def close(self) -> None:
        pass

    def __enter__(self) -> ByteSource:
        return self

    def __exit__(self, *args) -> None:
        self.close()


class MemorySource(ByteSource):
    """ByteSource over a buffer that is already in memory."""

    def __init__(self, data: bytes | bytearray | memoryview):
        self._data = bytes(data)

    @property
    def size(self) -> int:
        return len(self._data)

    def read(self, offset: int, length: int) -> bytes:
        if offset < 0 or length <= 0:
            return b""
        return self._data[offset:offset + length]


class FileSource(ByteSource):
    """
    ByteSource that reads a seekable binary file on demand.

    Accepts a path (the file is opened and owned by the source) or an
    already-open binary file object (left open on ``close``).
    """

    def __init__(self, file: str | Path | BinaryIO):
        if isinstance(file, (str, Path)):
            path = Path(file)
            if not path.exists():
                raise FileNotFoundError(f"Capture file not found: {path}")
            self._file = open(path, 'rb')
            self._owned = True
        else:
            self._file = file
            self._owned = False
        self._size = self._detect_size()

    def _detect_size(self) -> int:
        try:
            return os.fstat(self._file.fileno()).st_size
        except (AttributeError, OSError, ValueError):
            pos = self._file.tell()
            self._file.seek(0, os.SEEK_END)
            size = self._file.tell()
            self._file.seek(pos)
            return size

    @property
    def size(self) -> int:
        return self._size

    def read(self, offset: int, length: int) -> bytes:
        if offset < 0 or length <= 0 or offset >= self._size:
            return b""
        self._file.seek(offset)
        return self._file.read(length)

    def close(self) -> None:
        if self._owned and self._file is not None:
            self._file.close()
            self._file = None


__all__ = [
    'LITTLE_ENDIAN',
    'BIG_ENDIAN',
    'ByteCursor',
    'ByteSource',
    'MemorySource',
    'FileSource',
]
