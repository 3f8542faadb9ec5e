"""
Basic pcaplens usage example.

Demonstrates:
- Reading a pcap or pcapng file
- Printing the capture summary and protocol distribution
- Listing conversations as endpoint_a <-> endpoint_b
- Walking the retained packets and their decoded layers
"""

import threading

from pcaplens import CaptureEngine
from pcaplens.core.packet import DNSInfo, HTTPInfo, TLSInfo

# Create engine
engine = CaptureEngine(
    max_retained_packets=200,   # Keep the first 200 PacketRecords
    time_buckets=10,            # Ten-bucket time histogram
)

# Analyze a capture file, printing progress as a percentage
stop = threading.Event()
result = engine.analyze_file(
    'test/single.pcap',
    progress=lambda fraction: print(f"\r{fraction:6.1%}", end=""),
    cancel=stop,
)
print()

summary = result.summary
print(f"Format: {summary.container_format}")
print(f"Packets: {summary.total_packets} ({summary.skipped_records} records skipped)")
print(f"Duration: {summary.capture_duration_text} ({summary.packets_per_second:.1f} pkt/s)")
print(f"Sizes: avg {summary.average_packet_size:.1f}, median {summary.median_packet_size}, "
      f"min {summary.min_packet_size}, max {summary.max_packet_size}")
print(f"TCP/UDP/ICMP/other: {summary.tcp_packets}/{summary.udp_packets}/"
      f"{summary.icmp_packets}/{summary.other_packets}")
if result.abort_reason:
    print(f"Stopped early: {result.abort_reason}")
print()

print("Protocols:")
for name, count in summary.protocol_distribution:
    print(f"  {name}: {count}")
print()

print("Activity over time:")
for bucket in summary.time_series:
    print(f"  {bucket.label:>4} {'#' * bucket.count}")
print()

for conv in result.conversations:
    print(f"{conv.endpoint_a} <-> {conv.endpoint_b}, {conv.protocol_label}")
    print(f"  Packets: {conv.packet_count}")
    print(f"  Bytes: {conv.total_bytes}")
    print(f"  Duration: {conv.duration:.3f}s")
print()

for packet in result.packets[:20]:
    print(f"#{packet.sequence_number} {packet.relative_timestamp:.6f} "
          f"{packet.source_endpoint} -> {packet.destination_endpoint} "
          f"{packet.protocol_label} {packet.info_summary}")
    print(f"  Layers: {' / '.join(packet.layer_trace)}")

    # Access typed layers when present
    http = packet.get_layer(HTTPInfo)
    if http and http.host:
        print(f"  HTTP host: {http.host}")

    tls = packet.get_layer(TLSInfo)
    if tls:
        print(f"  TLS version: {tls.version_name}")

    dns = packet.get_layer(DNSInfo)
    if dns and dns.queries:
        print(f"  DNS queries: {dns.queries}")

if result.truncated:
    print(f"... {summary.total_packets - len(result.packets)} more packets not retained")
