"""
Network layer protocol handlers (IPv4, IPv6).
"""

from __future__ import annotations

import dpkt

from pcaplens.core.packet import IP6Info, IPInfo
from pcaplens.protocols.base import BaseProtocolHandler, Layer, ParseResult, ProtocolContext
from pcaplens.protocols.registry import register_protocol


IP_PROTOCOL_NAMES = {
    1: 'ICMP',
    2: 'IGMP',
    6: 'TCP',
    17: 'UDP',
    41: 'IPv6',
    47: 'GRE',
    50: 'ESP',
    51: 'AH',
    58: 'ICMPv6',
    89: 'OSPF',
    103: 'PIM',
    132: 'SCTP',
}

_PROTO_NEXT = {
    1: 'icmp',
    6: 'tcp',
    17: 'udp',
    58: 'icmpv6',
}


def ip_protocol_name(proto: int) -> str:
    """Canonical name of an IP protocol number, ``Protocol-<n>`` when unknown."""
    return IP_PROTOCOL_NAMES.get(proto, f"Protocol-{proto}")


@register_protocol('ipv4', Layer.NETWORK, label='IPv4', priority=100)
class IPv4Handler(BaseProtocolHandler):
    """IPv4 network layer handler."""

    MIN_HDR_LEN = 20

    def parse(self, payload: bytes, context: ProtocolContext) -> ParseResult:
        if len(payload) < self.MIN_HDR_LEN:
            context.protocol = self.label
            context.info = f"Truncated IPv4 header ({len(payload)} bytes)"
            return ParseResult(success=False, error=context.info)

        version = payload[0] >> 4
        if version != 4:
            context.protocol = self.label
            context.info = f"Bogus IPv4 version ({version})"
            return ParseResult(success=False, error=context.info)

        ip = dpkt.ip.IP(payload)
        info = IPInfo.from_dpkt(ip)
        context.add_layer(info)
        context.set_addresses(info.src, info.dst)

        name = ip_protocol_name(info.proto)
        context.protocol = name
        context.info = f"Protocol {name} ({info.proto})"

        if info.offset != 0:
            # Only the first fragment carries the transport header
            context.info = f"Fragmented IP protocol (offset {info.fragment_offset_bytes})"
            return ParseResult(success=True, info=info)

        end = info.len if info.header_length <= info.len <= len(payload) else len(payload)
        next_proto = _PROTO_NEXT.get(info.proto)
        return ParseResult(
            success=True,
            data=payload[info.header_length:end],
            info=info,
            next_protocol=next_proto,
        )


@register_protocol('ipv6', Layer.NETWORK, label='IPv6', priority=100)
class IPv6Handler(BaseProtocolHandler):
    """IPv6 network layer handler; extension headers are walked by dpkt."""

    HDR_LEN = 40

    def parse(self, payload: bytes, context: ProtocolContext) -> ParseResult:
        if len(payload) < self.HDR_LEN:
            context.protocol = self.label
            context.info = f"Truncated IPv6 header ({len(payload)} bytes)"
            return ParseResult(success=False, error=context.info)

        ip6 = dpkt.ip6.IP6(payload)
        info = IP6Info.from_dpkt(ip6)
        context.add_layer(info)
        context.set_addresses(info.src, info.dst)

        # Upper layer protocol and offset after any extension headers
        upper = ip6.nxt
        offset = self.HDR_LEN
        frag_offset = 0
        for ext in getattr(ip6, 'all_extension_headers', None) or []:
            offset += ext.length
            upper = getattr(ext, 'nxt', upper)
            if isinstance(ext, dpkt.ip6.IP6FragmentHeader):
                frag_offset = ext.frag_off

        name = ip_protocol_name(upper)
        context.protocol = name
        context.info = f"Protocol {name} ({upper})"

        if frag_offset:
            context.info = f"Fragmented IP protocol (offset {frag_offset * 8})"
            return ParseResult(success=True, info=info)

        end = self.HDR_LEN + info.len if 0 < info.len <= len(payload) - self.HDR_LEN else len(payload)
        return ParseResult(
            success=True,
            data=payload[offset:end],
            info=info,
            next_protocol=_PROTO_NEXT.get(upper),
        )
