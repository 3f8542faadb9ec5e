"""
pcaplens - PCAP/PCAP-NG capture ingestion and summary library

Reads classic PCAP and PCAP-NG captures, decodes every frame from the link
layer up to a best-effort application label using dpkt, and aggregates
protocol counts, conversations, size statistics and a time-series histogram.

Example usage:
    from pcaplens import CaptureEngine

    engine = CaptureEngine(max_retained_packets=500)
    result = engine.analyze_file('traffic.pcap')

    print(f"Packets: {result.summary.total_packets}")
    print(f"Duration: {result.summary.capture_duration_text}")
    for name, count in result.summary.protocol_distribution:
        print(f"  {name}: {count}")

    for conv in result.conversations:
        print(f"{conv.endpoint_a} <-> {conv.endpoint_b}: {conv.packet_count} packets")
"""

from pcaplens.core.analyzer import CaptureEngine, CaptureResult, EngineConfig
from pcaplens.core.cursor import ByteSource, FileSource, MemorySource
from pcaplens.core.exceptions import (
    AnalysisCancelled,
    CaptureError,
    TruncatedHeader,
    UnrecognizedContainer,
)
from pcaplens.core.flow import ConversationRecord
from pcaplens.core.layers import LayerMapDecoder
from pcaplens.core.packet import PacketRecord, ProtocolInfo
from pcaplens.core.reader import ContainerFormat, PcapReader, detect_container
from pcaplens.features.summary import CaptureSummary
from pcaplens.protocols.base import BaseProtocolHandler, ProtocolContext, ParseResult, Layer
from pcaplens.protocols.registry import register_protocol, get_global_registry
from pcaplens.exporters import (
    to_dataframe,
    to_dict,
    to_json,
    to_csv,
    CaptureExporter
)

__version__ = "0.1.0"

__all__ = [
    # Main class
    'CaptureEngine',
    'CaptureResult',
    'EngineConfig',

    # Core classes
    'CaptureSummary',
    'ConversationRecord',
    'PacketRecord',
    'ProtocolInfo',
    'PcapReader',
    'ContainerFormat',
    'detect_container',
    'LayerMapDecoder',
    'ByteSource',
    'FileSource',
    'MemorySource',

    # Errors
    'CaptureError',
    'UnrecognizedContainer',
    'TruncatedHeader',
    'AnalysisCancelled',

    # Protocol handlers
    'BaseProtocolHandler',
    'ProtocolContext',
    'ParseResult',
    'Layer',
    'register_protocol',
    'get_global_registry',

    # Export
    'to_dataframe',
    'to_dict',
    'to_json',
    'to_csv',
    'CaptureExporter',
]
