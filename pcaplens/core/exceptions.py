"""
Capture error taxonomy.

Only terminal problems are raised to the caller. Everything that goes wrong
inside a single record is absorbed by the readers and decoders and surfaces
as a degraded PacketRecord or an entry in ``CaptureResult.errors``.
"""

from __future__ import annotations


class CaptureError(ValueError):
    """Base class for errors that abort a capture analysis."""

    def __init__(self, reason: str):
        super().__init__(reason)
        self.reason = reason


class UnrecognizedContainer(CaptureError):
    """The leading magic value matches no supported container format."""

    def __init__(self, magic: int):
        super().__init__(
            f"Invalid capture file format: magic number 0x{magic:08x} "
            f"is neither PCAP nor PCAP-NG"
        )
        self.magic = magic


class TruncatedHeader(CaptureError):
    """The buffer is shorter than the container's minimum header."""

    def __init__(self, needed: int, available: int, what: str = "container header"):
        super().__init__(
            f"Capture too short for {what}: need {needed} bytes, got {available}"
        )
        self.needed = needed
        self.available = available


class AnalysisCancelled(CaptureError):
    """Cooperative cancellation was requested between two records."""

    def __init__(self, packets_seen: int = 0):
        super().__init__(f"Analysis cancelled after {packets_seen} packets")
        self.packets_seen = packets_seen


class CursorError(IndexError):
    """A ByteCursor read went past the end of its buffer."""

    def __init__(self, offset: int, size: int, length: int):
        super().__init__(
            f"Read of {size} bytes at offset {offset} exceeds buffer length {length}"
        )
        self.offset = offset
        self.size = size
        self.length = length


__all__ = [
    'CaptureError',
    'UnrecognizedContainer',
    'TruncatedHeader',
    'AnalysisCancelled',
    'CursorError',
]
