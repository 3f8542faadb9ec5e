"""
Capture-wide aggregation.

SummaryAccumulator is threaded through the parse loop and sees every scanned
packet, whether or not its PacketRecord is retained. ``build()`` turns the
running totals into an immutable CaptureSummary.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

import numpy as np

from pcaplens.core.flow import ConversationTable
from pcaplens.core.packet import UNKNOWN, ICMP6Info, ICMPInfo, TCPInfo, UDPInfo, strip_port

if TYPE_CHECKING:
    from pcaplens.core.packet import PacketRecord


MIN_TIME_BUCKETS = 10
MAX_TIME_BUCKETS = 20

# Floor for the packets-per-second divisor
MIN_RATE_DURATION = 0.001


def format_duration(seconds: float) -> str:
    """Format seconds as ``HH:MM:SS.mmm``."""
    if seconds is None or not math.isfinite(seconds) or seconds < 0:
        return "00:00:00.000"
    hrs = int(seconds // 3600)
    mins = int((seconds % 3600) // 60)
    secs = int(seconds % 60)
    ms = int((seconds % 1) * 1000)
    return f"{hrs:02d}:{mins:02d}:{secs:02d}.{ms:03d}"


def size_statistics(sizes) -> dict[str, float]:
    """
    Average, median, min and max of packet sizes.

    The median is the upper median (``sorted[n // 2]``). All values are 0
    for an empty input.
    """
    arr = np.asarray(sizes, dtype=np.int64)
    if arr.size == 0:
        return {'average': 0.0, 'median': 0, 'min': 0, 'max': 0}
    ordered = np.sort(arr)
    return {
        'average': float(np.mean(arr)),
        'median': int(ordered[arr.size // 2]),
        'min': int(ordered[0]),
        'max': int(ordered[-1]),
    }


def time_series_histogram(relative_times, duration: float, buckets: int = MAX_TIME_BUCKETS) -> list[int]:
    """
    Count packets per equal fraction of the capture duration.

    Bucket index is ``min(floor(t / duration * buckets), buckets - 1)``; with
    a zero duration every packet falls into the first bucket.
    """
    times = np.asarray(relative_times, dtype=np.float64)
    if times.size == 0:
        return [0] * buckets
    if duration > 0:
        idx = np.floor(times / duration * buckets).astype(np.int64)
        idx = np.clip(idx, 0, buckets - 1)
    else:
        idx = np.zeros(times.size, dtype=np.int64)
    return np.bincount(idx, minlength=buckets).tolist()


@dataclass(frozen=True)
class TimeBucket:
    index: int
    label: str
    count: int


@dataclass(frozen=True)
class CaptureSummary:
    """
    Aggregate counters for one capture.

    Invariant: ``sum(protocol_counts.values()) == total_packets``.
    """
    total_packets: int = 0
    unique_ip_count: int = 0
    protocol_counts: dict[str, int] = field(default_factory=dict)
    average_packet_size: float = 0.0
    median_packet_size: int = 0
    min_packet_size: int = 0
    max_packet_size: int = 0
    capture_duration: float = 0.0
    packets_per_second: float = 0.0
    protocol_distribution: list[tuple[str, int]] = field(default_factory=list)
    time_series: list[TimeBucket] = field(default_factory=list)
    tcp_packets: int = 0
    udp_packets: int = 0
    icmp_packets: int = 0
    other_packets: int = 0
    conversation_count: int = 0
    start_time: float | None = None
    end_time: float | None = None
    container_format: str | None = None
    pcap_info: dict[str, Any] | None = None
    interfaces: list[dict[str, Any]] = field(default_factory=list)
    skipped_records: int = 0
    ignored_blocks: int = 0

    @property
    def capture_duration_text(self) -> str:
        return format_duration(self.capture_duration)

    def to_dict(self) -> dict[str, Any]:
        return {
            'total_packets': self.total_packets,
            'ip_addresses': self.unique_ip_count,
            'conversation_count': self.conversation_count,
            'tcp_packets': self.tcp_packets,
            'udp_packets': self.udp_packets,
            'icmp_packets': self.icmp_packets,
            'other_packets': self.other_packets,
            'protocol_counts': dict(self.protocol_counts),
            'avg_packet_size': round(self.average_packet_size),
            'median_packet_size': self.median_packet_size,
            'min_packet_size': self.min_packet_size,
            'max_packet_size': self.max_packet_size,
            'capture_duration': self.capture_duration,
            'capture_duration_text': self.capture_duration_text,
            'packets_per_second': round(self.packets_per_second, 1),
            'start_time': self.start_time,
            'end_time': self.end_time,
            'protocol_distribution': [
                {'name': name, 'value': count} for name, count in self.protocol_distribution
            ],
            'time_series': [{'time': b.label, 'value': b.count} for b in self.time_series],
            'format': self.container_format,
            'pcap_info': self.pcap_info,
            'interfaces': list(self.interfaces),
            'skipped_records': self.skipped_records,
            'ignored_blocks': self.ignored_blocks,
        }


class SummaryAccumulator:
    """
    Running state of one parse pass.

    Args:
        time_buckets: Histogram bucket count (10..20)
    """

    def __init__(self, time_buckets: int = MAX_TIME_BUCKETS):
        if not MIN_TIME_BUCKETS <= time_buckets <= MAX_TIME_BUCKETS:
            raise ValueError(
                f"time_buckets must be between {MIN_TIME_BUCKETS} and {MAX_TIME_BUCKETS}, "
                f"got {time_buckets}"
            )
        self.time_buckets = time_buckets
        self.total_packets = 0
        self.protocol_counts: dict[str, int] = {}
        self.ip_addresses: dict[str, None] = {}
        self.conversations = ConversationTable()
        self.sizes: list[int] = []
        self.timestamps: list[float | None] = []
        self.tcp_packets = 0
        self.udp_packets = 0
        self.icmp_packets = 0
        self.min_timestamp: float | None = None
        self.max_timestamp: float | None = None

    def add(self, record: PacketRecord) -> None:
        """Account one scanned packet."""
        self.total_packets += 1
        label = record.protocol_label
        self.protocol_counts[label] = self.protocol_counts.get(label, 0) + 1
        self.sizes.append(record.captured_length)

        for endpoint in (record.source_endpoint, record.destination_endpoint):
            if endpoint != UNKNOWN:
                self.ip_addresses[strip_port(endpoint)] = None

        timestamp = record.capture_timestamp if record.timestamp_available else None
        self.timestamps.append(timestamp)
        if timestamp is not None:
            if self.min_timestamp is None or timestamp < self.min_timestamp:
                self.min_timestamp = timestamp
            if self.max_timestamp is None or timestamp > self.max_timestamp:
                self.max_timestamp = timestamp

        self.conversations.add(record.source_endpoint, record.destination_endpoint,
                               label, record.captured_length, timestamp)

        if record.get_layer(TCPInfo) is not None:
            self.tcp_packets += 1
        elif record.get_layer(UDPInfo) is not None:
            self.udp_packets += 1
        elif record.get_layer(ICMPInfo) is not None or record.get_layer(ICMP6Info) is not None:
            self.icmp_packets += 1

    @property
    def start_time(self) -> float:
        return self.min_timestamp if self.min_timestamp is not None else 0.0

    @property
    def duration(self) -> float:
        if self.min_timestamp is None:
            return 0.0
        return self.max_timestamp - self.min_timestamp

    def relative_time(self, timestamp: float | None) -> float:
        if timestamp is None or self.min_timestamp is None:
            return 0.0
        return timestamp - self.min_timestamp

    def build(self, container_format: str | None = None, pcap_info: dict | None = None,
              interfaces: list[dict] | None = None, skipped_records: int = 0,
              ignored_blocks: int = 0) -> CaptureSummary:
        stats = size_statistics(self.sizes)
        duration = self.duration

        relative = [self.relative_time(ts) for ts in self.timestamps]
        counts = time_series_histogram(relative, duration, self.time_buckets)
        buckets = [
            TimeBucket(i, f"{round(i / self.time_buckets * 100)}%", count)
            for i, count in enumerate(counts)
        ]

        distribution = sorted(self.protocol_counts.items(), key=lambda kv: kv[1], reverse=True)
        classified = self.tcp_packets + self.udp_packets + self.icmp_packets

        return CaptureSummary(
            total_packets=self.total_packets,
            unique_ip_count=len(self.ip_addresses),
            protocol_counts=dict(self.protocol_counts),
            average_packet_size=stats['average'],
            median_packet_size=stats['median'],
            min_packet_size=stats['min'],
            max_packet_size=stats['max'],
            capture_duration=duration,
            packets_per_second=self.total_packets / max(duration, MIN_RATE_DURATION),
            protocol_distribution=distribution,
            time_series=buckets,
            tcp_packets=self.tcp_packets,
            udp_packets=self.udp_packets,
            icmp_packets=self.icmp_packets,
            other_packets=self.total_packets - classified,
            conversation_count=len(self.conversations),
            start_time=self.min_timestamp,
            end_time=self.max_timestamp,
            container_format=container_format,
            pcap_info=pcap_info,
            interfaces=list(interfaces or []),
            skipped_records=skipped_records,
            ignored_blocks=ignored_blocks,
        )


__all__ = [
    'CaptureSummary',
    'SummaryAccumulator',
    'TimeBucket',
    'format_duration',
    'size_statistics',
    'time_series_histogram',
    'MIN_TIME_BUCKETS',
    'MAX_TIME_BUCKETS',
]
