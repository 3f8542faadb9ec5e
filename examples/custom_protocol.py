"""
Custom protocol handler example.

Shows how to plug an application protocol into the dissector:
1. Subclass BaseProtocolHandler and implement parse()
2. Register it with @register_protocol (carrier, ports, priority)
3. Analyze a capture; packets on the registered ports get the new label

Handlers are looked up when a CaptureEngine is created, so register them
before constructing the engine.
"""

from collections import Counter

from pcaplens import (
    BaseProtocolHandler, CaptureEngine, Layer, ParseResult, ProtocolContext, register_protocol,
)

RESP_TYPES = {
    ord('+'): "Simple String",
    ord('-'): "Error",
    ord(':'): "Integer",
    ord('$'): "Bulk String",
    ord('*'): "Array",
}


@register_protocol('redis', Layer.APPLICATION, label='Redis', encapsulates='tcp',
                   default_ports=[6379], priority=50)
class RedisHandler(BaseProtocolHandler):
    """Redis serialization protocol (RESP): label the first reply or command."""

    def can_parse(self, payload: bytes, context: ProtocolContext) -> bool:
        return super().can_parse(payload, context) and payload[0] in RESP_TYPES

    def parse(self, payload: bytes, context: ProtocolContext) -> ParseResult:
        kind = RESP_TYPES[payload[0]]
        first_line = payload.split(b"\r\n", 1)[0][1:].decode('ascii', errors='replace')

        context.protocol = self.label
        if payload[0] == ord('*'):
            # Commands are arrays of bulk strings: *2\r\n$3\r\nGET\r\n$3\r\nkey\r\n
            parts = payload.split(b"\r\n")
            command = parts[2].decode('ascii', errors='replace').upper() if len(parts) > 2 else "?"
            context.info = f"Command: {command}"
        else:
            context.info = f"{kind}: {first_line[:40]}"
        return ParseResult(success=True)


engine = CaptureEngine(max_retained_packets=10_000)
result = engine.analyze_file('test/redis.pcap')

redis_packets = [p for p in result.packets if p.protocol_label == 'Redis']
print(f"Redis packets: {len(redis_packets)} of {result.summary.total_packets}")

commands = Counter(p.info_summary for p in redis_packets if p.info_summary.startswith("Command:"))
for info, count in commands.most_common(10):
    print(f"  {info}: {count}")
