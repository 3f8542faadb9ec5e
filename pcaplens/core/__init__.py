"""Core pcaplens modules."""

from pcaplens.core.cursor import ByteCursor, ByteSource, FileSource, MemorySource
from pcaplens.core.exceptions import (
    AnalysisCancelled,
    CaptureError,
    CursorError,
    TruncatedHeader,
    UnrecognizedContainer,
)
from pcaplens.core.flow import ConversationKey, ConversationRecord, ConversationTable
from pcaplens.core.packet import (
    PacketRecord,
    EthernetInfo,
    ARPInfo,
    IPInfo,
    IP6Info,
    TCPInfo,
    UDPInfo,
    ICMPInfo,
    ICMP6Info,
    HTTPInfo,
    DNSInfo,
    TLSInfo,
    DHCPInfo,
    TextProtocolInfo,
    NTPInfo,
    SNMPInfo,
)
from pcaplens.core.reader import (
    PcapReader,
    ClassicPcapReader,
    PcapNgReader,
    ContainerFormat,
    InterfaceDescriptor,
    LinkLayerType,
    RawRecord,
    Ok,
    Skip,
    Abort,
    detect_container,
)

__all__ = [
    'ByteCursor',
    'ByteSource',
    'FileSource',
    'MemorySource',
    'AnalysisCancelled',
    'CaptureError',
    'CursorError',
    'TruncatedHeader',
    'UnrecognizedContainer',
    'ConversationKey',
    'ConversationRecord',
    'ConversationTable',
    'PacketRecord',
    'EthernetInfo',
    'ARPInfo',
    'IPInfo',
    'IP6Info',
    'TCPInfo',
    'UDPInfo',
    'ICMPInfo',
    'ICMP6Info',
    'HTTPInfo',
    'DNSInfo',
    'TLSInfo',
    'DHCPInfo',
    'TextProtocolInfo',
    'NTPInfo',
    'SNMPInfo',
    'PcapReader',
    'ClassicPcapReader',
    'PcapNgReader',
    'ContainerFormat',
    'InterfaceDescriptor',
    'LinkLayerType',
    'RawRecord',
    'Ok',
    'Skip',
    'Abort',
    'detect_container',
]
