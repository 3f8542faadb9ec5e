"""
Transport layer protocol handlers (TCP, UDP, ICMP, ICMPv6).
"""

from __future__ import annotations

import dpkt

from pcaplens.core.packet import ICMP6Info, ICMPInfo, TCPInfo, UDPInfo
from pcaplens.protocols.base import BaseProtocolHandler, Layer, ParseResult, ProtocolContext
from pcaplens.protocols.registry import register_protocol


# Port relabels applied by the transport decoder itself, before any payload
# inspection: (transport, port) -> (protocol label, implied layer)
WELL_KNOWN_PORT_LABELS = {
    ('tcp', 80): ('HTTP', 'HTTP'),
    ('tcp', 443): ('HTTPS', 'TLS'),
    ('udp', 53): ('DNS', 'DNS'),
}


def describe_tcp(info: TCPInfo) -> str:
    return (f"{info.sport} → {info.dport} [{info.flags_text}] "
            f"Seq={info.seq} Ack={info.ack_num} Win={info.win}")


def describe_udp(info: UDPInfo) -> str:
    return f"{info.sport} → {info.dport} Len={info.len}"


def apply_port_label(context: ProtocolContext) -> None:
    for port in context.ports:
        label = WELL_KNOWN_PORT_LABELS.get((context.transport, port))
        if label is not None:
            context.protocol, context.implied_layer = label
            return


ICMP_DESCRIPTIONS = {
    0: 'Echo Reply',
    4: 'Source Quench',
    8: 'Echo Request',
    9: 'Router Advertisement',
    10: 'Router Solicitation',
    12: 'Parameter Problem',
    13: 'Timestamp Request',
    14: 'Timestamp Reply',
}

ICMP_UNREACHABLE = {
    0: 'Destination Network Unreachable',
    1: 'Destination Host Unreachable',
    2: 'Destination Protocol Unreachable',
    3: 'Destination Port Unreachable',
    4: 'Fragmentation Needed',
    5: 'Source Route Failed',
    13: 'Communication Administratively Prohibited',
}

ICMP_REDIRECT = {
    0: 'Redirect for Network',
    1: 'Redirect for Host',
    2: 'Redirect for TOS and Network',
    3: 'Redirect for TOS and Host',
}

ICMP_TIME_EXCEEDED = {
    0: 'Time Exceeded (TTL expired in transit)',
    1: 'Time Exceeded (fragment reassembly)',
}


def icmp_description(icmp_type: int, code: int) -> str:
    if icmp_type == 3:
        return ICMP_UNREACHABLE.get(code, f"Destination Unreachable (code {code})")
    if icmp_type == 5:
        return ICMP_REDIRECT.get(code, f"Redirect (code {code})")
    if icmp_type == 11:
        return ICMP_TIME_EXCEEDED.get(code, f"Time Exceeded (code {code})")
    name = ICMP_DESCRIPTIONS.get(icmp_type)
    if name is None:
        return f"ICMP Type {icmp_type}, Code {code}"
    return name


ICMP6_DESCRIPTIONS = {
    2: 'Packet Too Big',
    4: 'Parameter Problem',
    128: 'Echo Request',
    129: 'Echo Reply',
    130: 'Multicast Listener Query',
    131: 'Multicast Listener Report',
    132: 'Multicast Listener Done',
    133: 'Router Solicitation',
    134: 'Router Advertisement',
    135: 'Neighbor Solicitation',
    136: 'Neighbor Advertisement',
    137: 'Redirect',
    143: 'Multicast Listener Report v2',
}

ICMP6_UNREACHABLE = {
    0: 'Destination Unreachable (no route to destination)',
    1: 'Destination Unreachable (administratively prohibited)',
    3: 'Destination Unreachable (address unreachable)',
    4: 'Destination Unreachable (port unreachable)',
}

ICMP6_TIME_EXCEEDED = {
    0: 'Time Exceeded (hop limit exceeded in transit)',
    1: 'Time Exceeded (fragment reassembly)',
}


def icmp6_description(icmp_type: int, code: int) -> str:
    if icmp_type == 1:
        return ICMP6_UNREACHABLE.get(code, f"Destination Unreachable (code {code})")
    if icmp_type == 3:
        return ICMP6_TIME_EXCEEDED.get(code, f"Time Exceeded (code {code})")
    name = ICMP6_DESCRIPTIONS.get(icmp_type)
    if name is None:
        return f"ICMPv6 Type {icmp_type}, Code {code}"
    return name


@register_protocol('tcp', Layer.TRANSPORT, label='TCP', priority=100)
class TCPHandler(BaseProtocolHandler):
    """TCP transport layer handler."""

    MIN_HDR_LEN = 20

    def parse(self, payload: bytes, context: ProtocolContext) -> ParseResult:
        if len(payload) < self.MIN_HDR_LEN:
            context.info = f"Truncated TCP header ({len(payload)} bytes)"
            return ParseResult(success=False, error=context.info)

        tcp = dpkt.tcp.TCP(payload)
        info = TCPInfo.from_dpkt(tcp)
        context.add_layer(info)
        context.attach_ports('tcp', info.sport, info.dport)

        context.protocol = self.label
        context.info = describe_tcp(info)
        apply_port_label(context)

        return ParseResult(
            success=True,
            data=payload[info.header_length:],
            info=info,
            next_protocol='application',
        )


@register_protocol('udp', Layer.TRANSPORT, label='UDP', priority=100)
class UDPHandler(BaseProtocolHandler):
    """UDP transport layer handler."""

    HDR_LEN = 8

    def parse(self, payload: bytes, context: ProtocolContext) -> ParseResult:
        if len(payload) < self.HDR_LEN:
            context.info = f"Truncated UDP header ({len(payload)} bytes)"
            return ParseResult(success=False, error=context.info)

        info = UDPInfo.from_dpkt(dpkt.udp.UDP(payload))
        context.add_layer(info)
        context.attach_ports('udp', info.sport, info.dport)

        context.protocol = self.label
        context.info = describe_udp(info)
        apply_port_label(context)

        end = info.len if self.HDR_LEN <= info.len <= len(payload) else len(payload)
        return ParseResult(
            success=True,
            data=payload[self.HDR_LEN:end],
            info=info,
            next_protocol='application',
        )


@register_protocol('icmp', Layer.TRANSPORT, label='ICMP', priority=50)
class ICMPHandler(BaseProtocolHandler):
    """ICMP handler."""

    def parse(self, payload: bytes, context: ProtocolContext) -> ParseResult:
        context.protocol = self.label
        if len(payload) < 4:
            context.info = "Incomplete ICMP packet"
            return ParseResult(success=False, error=context.info)

        icmp = dpkt.icmp.ICMP(payload)
        info = ICMPInfo(type=icmp.type, code=icmp.code,
                        description=icmp_description(icmp.type, icmp.code))
        context.add_layer(info)
        context.info = info.description
        return ParseResult(success=True, info=info)


@register_protocol('icmpv6', Layer.TRANSPORT, label='ICMPv6', priority=50)
class ICMPv6Handler(BaseProtocolHandler):
    """ICMPv6 handler."""

    def parse(self, payload: bytes, context: ProtocolContext) -> ParseResult:
        context.protocol = self.label
        if len(payload) < 4:
            context.info = "Incomplete ICMPv6 packet"
            return ParseResult(success=False, error=context.info)

        icmp6 = dpkt.icmp6.ICMP6(payload)
        info = ICMP6Info(type=icmp6.type, code=icmp6.code, checksum=icmp6.sum,
                         description=icmp6_description(icmp6.type, icmp6.code))
        context.add_layer(info)
        context.info = info.description
        return ParseResult(success=True, info=info)
