"""
Capture container readers.

Detects the container format from the leading magic value and walks either
the classic PCAP record stream or the PCAP-NG block stream. Readers never
raise for a bad record: each step yields an explicit outcome.

- ``Ok(record)``: a captured frame and its metadata.
- ``Skip(reason)``: the record was unusable, iteration moved past it.
- ``Abort(reason)``: iteration stopped early, everything before it is kept.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import BinaryIO, Iterator, Union

from pcaplens.core.cursor import (
    BIG_ENDIAN, LITTLE_ENDIAN, ByteCursor, ByteSource, FileSource, MemorySource,
)
from pcaplens.core.exceptions import CursorError, TruncatedHeader, UnrecognizedContainer

logger = logging.getLogger(__name__)


# DLT (Data Link Type) constants
DLT_NULL = 0           # BSD loopback
DLT_EN10MB = 1         # Ethernet
DLT_RAW_OPENBSD = 12   # Raw IP on OpenBSD
DLT_RAW = 101          # Raw IP
DLT_IEEE802_11 = 105   # 802.11 wireless
DLT_LOOP = 108         # OpenBSD loopback
DLT_LINUX_SLL = 113    # Linux cooked capture
DLT_IEEE802_11_RADIO = 127  # 802.11 plus radiotap header
DLT_IPV4 = 228         # Raw IPv4
DLT_IPV6 = 229         # Raw IPv6

RAW_IP_LINK_TYPES = frozenset({DLT_RAW, DLT_RAW_OPENBSD, DLT_IPV4, DLT_IPV6})

# Container magic values, read as a big-endian 32-bit integer
MAGIC_CLASSIC_BIG_ENDIAN = 0xA1B2C3D4
MAGIC_CLASSIC_LITTLE_ENDIAN = 0xD4C3B2A1
MAGIC_PCAPNG = 0x0A0D0D0A

# PCAP-NG block types
BLOCK_SECTION_HEADER = 0x0A0D0D0A
BLOCK_INTERFACE_DESCRIPTION = 0x00000001
BLOCK_OBSOLETE_PACKET = 0x00000002
BLOCK_SIMPLE_PACKET = 0x00000003
BLOCK_NAME_RESOLUTION = 0x00000004
BLOCK_INTERFACE_STATISTICS = 0x00000005
BLOCK_ENHANCED_PACKET = 0x00000006

BYTE_ORDER_MAGIC = 0x1A2B3C4D
BYTE_ORDER_MAGIC_SWAPPED = 0x4D3C2B1A

OPT_ENDOFOPT = 0
OPT_IF_NAME = 2
OPT_IF_TSRESOL = 9

DEFAULT_TS_RESOLUTION = 1e-6


class LinkLayerType:
    """Link layer type support."""
    ETHERNET = "ethernet"
    RAW_IP = "raw_ip"
    UNKNOWN = "unknown"


def get_link_layer_type(dlt: int | None) -> str:
    """Get link layer type name from DLT value."""
    if dlt == DLT_EN10MB:
        return LinkLayerType.ETHERNET
    if dlt in RAW_IP_LINK_TYPES:
        return LinkLayerType.RAW_IP
    return LinkLayerType.UNKNOWN


class ContainerFormat(Enum):
    """Outer capture file layout."""
    CLASSIC_LITTLE_ENDIAN = "pcap-le"
    CLASSIC_BIG_ENDIAN = "pcap-be"
    NEXT_GEN = "pcapng"

    @property
    def is_classic(self) -> bool:
        return self is not ContainerFormat.NEXT_GEN

    @property
    def byte_order(self) -> str:
        return BIG_ENDIAN if self is ContainerFormat.CLASSIC_BIG_ENDIAN else LITTLE_ENDIAN


def detect_container(data: bytes | ByteSource) -> ContainerFormat:
    """
    Identify the container format from the first four bytes.

    Raises:
        TruncatedHeader: fewer than four bytes are available
        UnrecognizedContainer: the magic value is not a PCAP or PCAP-NG magic
    """
    head = data.read(0, 4) if isinstance(data, ByteSource) else bytes(data[:4])
    if len(head) < 4:
        raise TruncatedHeader(4, len(head), "magic number")

    magic = ByteCursor(head, BIG_ENDIAN).u32()
    if magic == MAGIC_CLASSIC_LITTLE_ENDIAN:
        return ContainerFormat.CLASSIC_LITTLE_ENDIAN
    if magic == MAGIC_CLASSIC_BIG_ENDIAN:
        return ContainerFormat.CLASSIC_BIG_ENDIAN
    if magic == MAGIC_PCAPNG:
        return ContainerFormat.NEXT_GEN
    raise UnrecognizedContainer(magic)


@dataclass(frozen=True, slots=True)
class RawRecord:
    """One captured frame as found in the container, not yet decoded."""
    data: bytes
    captured_length: int
    original_length: int
    timestamp: float | None
    link_type: int | None
    offset: int
    interface_id: int | None = None


@dataclass(frozen=True, slots=True)
class Ok:
    record: RawRecord


@dataclass(frozen=True, slots=True)
class Skip:
    reason: str
    offset: int


@dataclass(frozen=True, slots=True)
class Abort:
    reason: str
    offset: int


ReadOutcome = Union[Ok, Skip, Abort]


@dataclass(frozen=True, slots=True)
class ClassicHeader:
    """Classic PCAP 24-byte global header."""
    version_major: int
    version_minor: int
    timezone: int
    sigfigs: int
    snaplen: int
    link_type: int
    byte_order: str

    @property
    def version(self) -> str:
        return f"{self.version_major}.{self.version_minor}"

    def to_dict(self) -> dict:
        return {
            'version': self.version,
            'timezone': self.timezone,
            'sigfigs': self.sigfigs,
            'snaplen': self.snaplen,
            'network': self.link_type,
            'is_little_endian': self.byte_order == LITTLE_ENDIAN,
        }


@dataclass(slots=True)
class InterfaceDescriptor:
    """PCAP-NG interface, referenced by index from packet blocks."""
    index: int
    link_type: int
    snapshot_length: int
    ts_resolution: float | None = None
    name: str | None = None

    def to_dict(self) -> dict:
        return {
            'index': self.index,
            'link_type': self.link_type,
            'snapshot_length': self.snapshot_length,
            'ts_resolution': self.ts_resolution,
            'name': self.name,
        }


@dataclass(frozen=True, slots=True)
class SectionInfo:
    """PCAP-NG section header fields."""
    byte_order: str
    version_major: int
    version_minor: int
    offset: int


class ClassicPcapReader:
    """
    Reader for the classic libpcap container.

    Layout:
    - 24-byte global header (magic, version, thiszone, sigfigs, snaplen, network)
    - repeated records: 16-byte header (ts_sec, ts_usec, incl_len, orig_len)
      followed by ``incl_len`` bytes of frame data
    """

    GLOBAL_HEADER_LEN = 24
    RECORD_HEADER_LEN = 16
    RECORD_ALIGNMENT = 16
    MAX_SNAPLEN = 262144

    def __init__(self, source: ByteSource, byte_order: str):
        self.source = source
        self.byte_order = byte_order
        self.header: ClassicHeader | None = None

    def read_header(self) -> ClassicHeader:
        """Parse and cache the global header."""
        raw = self.source.read(0, self.GLOBAL_HEADER_LEN)
        if len(raw) < self.GLOBAL_HEADER_LEN:
            raise TruncatedHeader(self.GLOBAL_HEADER_LEN, len(raw), "PCAP global header")

        cur = ByteCursor(raw, self.byte_order, offset=4)
        self.header = ClassicHeader(
            version_major=cur.u16(),
            version_minor=cur.u16(),
            timezone=cur.i32(),
            sigfigs=cur.u32(),
            snaplen=cur.u32(),
            link_type=cur.u32(),
            byte_order=self.byte_order,
        )
        logger.debug("PCAP version %s, link type %d, snaplen %d",
                     self.header.version, self.header.link_type, self.header.snaplen)
        return self.header

    def _realign(self, offset: int) -> int:
        """Next record-alignment boundary strictly after ``offset``."""
        return (offset // self.RECORD_ALIGNMENT + 1) * self.RECORD_ALIGNMENT

    def __iter__(self) -> Iterator[ReadOutcome]:
        header = self.header or self.read_header()
        size = self.source.size
        max_caplen = max(header.snaplen, self.MAX_SNAPLEN)
        offset = self.GLOBAL_HEADER_LEN

        while offset + self.RECORD_HEADER_LEN <= size:
            cur = ByteCursor(self.source.read(offset, self.RECORD_HEADER_LEN), self.byte_order)
            ts_sec = cur.u32()
            ts_usec = cur.u32()
            caplen = cur.u32()
            origlen = cur.u32()

            data_start = offset + self.RECORD_HEADER_LEN
            if data_start + caplen > size:
                yield Abort(
                    f"record at offset {offset} declares {caplen} bytes, "
                    f"only {size - data_start} remain",
                    offset,
                )
                return

            if caplen > max_caplen:
                yield Skip(
                    f"record at offset {offset} declares implausible length {caplen}",
                    offset,
                )
                offset = self._realign(offset)
                continue

            yield Ok(RawRecord(
                data=self.source.read(data_start, caplen),
                captured_length=caplen,
                original_length=origlen,
                timestamp=ts_sec + ts_usec / 1_000_000,
                link_type=header.link_type,
                offset=offset,
            ))
            offset = data_start + caplen

        if offset < size:
            yield Abort(f"{size - offset} trailing bytes at offset {offset}", offset)


class PcapNgReader:
    """
    Reader for the PCAP-NG block container.

    Every block starts with a 4-byte type and a 4-byte total length, both
    read little-endian. Block bodies use the byte order announced by the
    current Section Header Block.
    """

    BLOCK_HEADER_LEN = 8
    MIN_BLOCK_LEN = 12
    MIN_SECTION_HEADER_LEN = 28

    def __init__(self, source: ByteSource,
                 default_ts_resolution: float = DEFAULT_TS_RESOLUTION,
                 honor_if_tsresol: bool = True):
        if default_ts_resolution <= 0:
            raise ValueError(f"default_ts_resolution must be positive, got {default_ts_resolution}")
        self.source = source
        self.default_ts_resolution = default_ts_resolution
        self.honor_if_tsresol = honor_if_tsresol
        self.byte_order = LITTLE_ENDIAN
        self.interfaces: list[InterfaceDescriptor] = []
        self.sections: list[SectionInfo] = []
        self.skipped_blocks = 0

    def read_header(self) -> None:
        """Check that the buffer holds at least a minimal Section Header Block."""
        size = self.source.size
        if size < self.MIN_SECTION_HEADER_LEN:
            raise TruncatedHeader(self.MIN_SECTION_HEADER_LEN, size, "PCAP-NG section header")

    def resolution_for(self, interface: InterfaceDescriptor | None) -> float:
        """Timestamp unit in seconds for packets captured on ``interface``."""
        if (interface is not None and self.honor_if_tsresol
                and interface.ts_resolution is not None):
            return interface.ts_resolution
        return self.default_ts_resolution

    def __iter__(self) -> Iterator[ReadOutcome]:
        self.read_header()
        size = self.source.size
        offset = 0

        while offset + self.MIN_BLOCK_LEN <= size:
            head = ByteCursor(self.source.read(offset, self.BLOCK_HEADER_LEN), LITTLE_ENDIAN)
            block_type = head.u32()
            block_len = head.u32()

            if block_len < self.MIN_BLOCK_LEN or offset + block_len > size:
                yield Abort(
                    f"block at offset {offset} has invalid total length {block_len}",
                    offset,
                )
                return

            block = self.source.read(offset, block_len)
            try:
                outcome = self._decode_block(block_type, block, offset)
            except CursorError as e:
                outcome = Skip(f"malformed block type 0x{block_type:08x} at offset {offset}: {e}",
                               offset)

            if outcome is not None:
                yield outcome
            offset += block_len

        if offset < size:
            yield Abort(f"{size - offset} trailing bytes at offset {offset}", offset)

    def _decode_block(self, block_type: int, block: bytes, offset: int) -> ReadOutcome | None:
        if block_type == BLOCK_SECTION_HEADER:
            return self._section_header(block, offset)
        if block_type == BLOCK_INTERFACE_DESCRIPTION:
            self._interface_description(block)
            return None
        if block_type == BLOCK_ENHANCED_PACKET:
            return self._enhanced_packet(block, offset)
        if block_type == BLOCK_SIMPLE_PACKET:
            return self._simple_packet(block, offset)
        if block_type == BLOCK_OBSOLETE_PACKET:
            return self._obsolete_packet(block, offset)

        logger.debug("Skipping PCAP-NG block type 0x%08x at offset %d", block_type, offset)
        self.skipped_blocks += 1
        return None

    def _section_header(self, block: bytes, offset: int) -> ReadOutcome | None:
        magic = ByteCursor(block, LITTLE_ENDIAN).u32_at(8)
        outcome = None
        if magic == BYTE_ORDER_MAGIC:
            self.byte_order = LITTLE_ENDIAN
        elif magic == BYTE_ORDER_MAGIC_SWAPPED:
            self.byte_order = BIG_ENDIAN
        else:
            self.byte_order = LITTLE_ENDIAN
            outcome = Skip(f"section header at offset {offset} has bad byte-order magic "
                           f"0x{magic:08x}, assuming little-endian", offset)

        cur = ByteCursor(block, self.byte_order, offset=12)
        section = SectionInfo(
            byte_order=self.byte_order,
            version_major=cur.u16(),
            version_minor=cur.u16(),
            offset=offset,
        )
        self.sections.append(section)
        # Interface indices are scoped to their section
        self.interfaces = []
        logger.debug("PCAP-NG section %d.%d (%s) at offset %d", section.version_major,
                     section.version_minor, 'LE' if self.byte_order == LITTLE_ENDIAN else 'BE',
                     offset)
        return outcome

    def _interface_description(self, block: bytes) -> InterfaceDescriptor:
        cur = ByteCursor(block, self.byte_order, offset=8)
        link_type = cur.u16()
        cur.skip(2)  # reserved
        snaplen = cur.u32()

        iface = InterfaceDescriptor(
            index=len(self.interfaces),
            link_type=link_type,
            snapshot_length=snaplen,
        )
        for code, value in _iter_options(cur, 16, len(block) - 4):
            if code == OPT_IF_TSRESOL and value:
                iface.ts_resolution = _decode_tsresol(value[0])
            elif code == OPT_IF_NAME:
                iface.name = value.rstrip(b'\x00').decode('utf-8', errors='replace')

        self.interfaces.append(iface)
        return iface

    def _interface(self, interface_id: int) -> InterfaceDescriptor | None:
        if 0 <= interface_id < len(self.interfaces):
            return self.interfaces[interface_id]
        return None

    def _packet_record(self, block: bytes, offset: int, interface_id: int,
                       ts_high: int, ts_low: int, caplen: int, origlen: int,
                       data_start: int) -> ReadOutcome:
        body_end = len(block) - 4
        if data_start + caplen > body_end:
            return Skip(
                f"packet block at offset {offset} declares {caplen} captured bytes, "
                f"block holds {max(body_end - data_start, 0)}",
                offset,
            )

        iface = self._interface(interface_id)
        units = (ts_high << 32) | ts_low
        return Ok(RawRecord(
            data=block[data_start:data_start + caplen],
            captured_length=caplen,
            original_length=origlen,
            timestamp=units * self.resolution_for(iface),
            link_type=iface.link_type if iface is not None else None,
            offset=offset,
            interface_id=interface_id,
        ))

    def _enhanced_packet(self, block: bytes, offset: int) -> ReadOutcome:
        cur = ByteCursor(block, self.byte_order, offset=8)
        interface_id = cur.u32()
        ts_high = cur.u32()
        ts_low = cur.u32()
        caplen = cur.u32()
        origlen = cur.u32()
        return self._packet_record(block, offset, interface_id, ts_high, ts_low,
                                   caplen, origlen, cur.offset)

    def _obsolete_packet(self, block: bytes, offset: int) -> ReadOutcome:
        cur = ByteCursor(block, self.byte_order, offset=8)
        interface_id = cur.u16()
        cur.skip(2)  # drops count
        ts_high = cur.u32()
        ts_low = cur.u32()
        caplen = cur.u32()
        origlen = cur.u32()
        return self._packet_record(block, offset, interface_id, ts_high, ts_low,
                                   caplen, origlen, cur.offset)

    def _simple_packet(self, block: bytes, offset: int) -> ReadOutcome:
        cur = ByteCursor(block, self.byte_order, offset=8)
        origlen = cur.u32()
        available = len(block) - 16
        caplen = min(origlen, max(available, 0))

        iface = self._interface(0)
        if iface is not None and iface.snapshot_length:
            caplen = min(caplen, iface.snapshot_length)

        return Ok(RawRecord(
            data=block[12:12 + caplen],
            captured_length=caplen,
            original_length=origlen,
            timestamp=None,
            link_type=iface.link_type if iface is not None else None,
            offset=offset,
            interface_id=0,
        ))


def _iter_options(cur: ByteCursor, start: int, end: int) -> Iterator[tuple[int, bytes]]:
    """Walk a PCAP-NG option list (code, length, 32-bit padded value)."""
    pos = start
    while pos + 4 <= end:
        code = cur.u16_at(pos)
        length = cur.u16_at(pos + 2)
        if code == OPT_ENDOFOPT:
            return
        if pos + 4 + length > end:
            return
        yield code, cur.bytes_at(pos + 4, length)
        pos += 4 + ((length + 3) & ~3)


def _decode_tsresol(value: int) -> float:
    """if_tsresol: MSB clear means 10^-n seconds, MSB set means 2^-n seconds."""
    if value & 0x80:
        return 2.0 ** -(value & 0x7F)
    return 10.0 ** -value


def open_reader(source: ByteSource,
                default_ts_resolution: float = DEFAULT_TS_RESOLUTION,
                honor_if_tsresol: bool = True) -> tuple[ContainerFormat, ClassicPcapReader | PcapNgReader]:
    """
    Detect the container and return a reader positioned after its header checks.

    Raises:
        TruncatedHeader, UnrecognizedContainer
    """
    fmt = detect_container(source)
    if fmt is ContainerFormat.NEXT_GEN:
        reader = PcapNgReader(source, default_ts_resolution, honor_if_tsresol)
        reader.read_header()
    else:
        reader = ClassicPcapReader(source, fmt.byte_order)
        reader.read_header()
    logger.info("Detected %s container (%d bytes)", fmt.value, source.size)
    return fmt, reader


class PcapReader:
    """
    Capture reader with format auto-detection.

    Wraps ClassicPcapReader or PcapNgReader behind one interface and can be
    used as a context manager over a path, an open binary file or a bytes
    buffer.

    Examples:
        >>> with PcapReader('traffic.pcapng') as reader:
        ...     for ts, buf in reader:
        ...         print(ts, len(buf))
    """

    def __init__(self, capture: str | Path | BinaryIO | bytes | bytearray | memoryview | ByteSource,
                 default_ts_resolution: float = DEFAULT_TS_RESOLUTION,
                 honor_if_tsresol: bool = True):
        self._capture = capture
        self._source: ByteSource | None = None
        self._owns_source = False
        self._reader: ClassicPcapReader | PcapNgReader | None = None
        self._format: ContainerFormat | None = None
        self.default_ts_resolution = default_ts_resolution
        self.honor_if_tsresol = honor_if_tsresol

    def open(self) -> None:
        """Open the capture and validate its container header."""
        capture = self._capture
        if isinstance(capture, ByteSource):
            source = capture
        elif isinstance(capture, (bytes, bytearray, memoryview)):
            source = MemorySource(capture)
            self._owns_source = True
        else:
            source = FileSource(capture)
            self._owns_source = True

        try:
            self._format, self._reader = open_reader(
                source, self.default_ts_resolution, self.honor_if_tsresol)
        except Exception:
            if self._owns_source:
                source.close()
            raise
        self._source = source

    def close(self) -> None:
        """Release the underlying source."""
        if self._source is not None and self._owns_source:
            self._source.close()
        self._source = None
        self._reader = None

    def __enter__(self) -> PcapReader:
        self.open()
        return self

    def __exit__(self, *args) -> None:
        self.close()

    @property
    def format(self) -> ContainerFormat:
        if self._format is None:
            raise RuntimeError("Reader not opened")
        return self._format

    @property
    def reader(self) -> ClassicPcapReader | PcapNgReader:
        if self._reader is None:
            raise RuntimeError("Reader not opened. Call open() first.")
        return self._reader

    @property
    def link_layer_type(self) -> int | None:
        """DLT of a classic capture, or of the first PCAP-NG interface seen so far."""
        reader = self.reader
        if isinstance(reader, ClassicPcapReader):
            return reader.header.link_type
        return reader.interfaces[0].link_type if reader.interfaces else None

    def records(self) -> Iterator[ReadOutcome]:
        """Iterate over read outcomes, including skips and the final abort."""
        return iter(self.reader)

    def __iter__(self) -> Iterator[tuple[float | None, bytes]]:
        """Iterate over (timestamp, frame bytes) of readable records."""
        for outcome in self.records():
            if isinstance(outcome, Ok):
                yield outcome.record.timestamp, outcome.record.data

    @staticmethod
    def is_pcap_file(path: str | Path) -> bool:
        """Check if file starts with a PCAP or PCAP-NG magic number."""
        path = Path(path)
        if not path.exists() or not path.is_file():
            return False

        with open(path, 'rb') as f:
            magic = f.read(4)
        try:
            detect_container(magic)
        except (TruncatedHeader, UnrecognizedContainer):
            return False
        return True


__all__ = [
    'DLT_NULL', 'DLT_EN10MB', 'DLT_RAW', 'DLT_RAW_OPENBSD', 'DLT_IPV4', 'DLT_IPV6',
    'DLT_LINUX_SLL', 'DLT_IEEE802_11', 'DLT_IEEE802_11_RADIO', 'DLT_LOOP',
    'RAW_IP_LINK_TYPES',
    'LinkLayerType', 'get_link_layer_type',
    'ContainerFormat', 'detect_container',
    'RawRecord', 'Ok', 'Skip', 'Abort', 'ReadOutcome',
    'ClassicHeader', 'InterfaceDescriptor', 'SectionInfo',
    'ClassicPcapReader', 'PcapNgReader', 'PcapReader', 'open_reader',
]
