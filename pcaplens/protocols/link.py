"""
Link layer protocol handlers (Ethernet, raw IP, ARP).
"""

from __future__ import annotations

import logging

import dpkt

from pcaplens.core.packet import ARPInfo, EthernetInfo
from pcaplens.core.reader import DLT_EN10MB, DLT_IPV4, DLT_IPV6, DLT_RAW, DLT_RAW_OPENBSD
from pcaplens.protocols.base import BaseProtocolHandler, Layer, ParseResult, ProtocolContext
from pcaplens.protocols.registry import register_protocol

logger = logging.getLogger(__name__)


ETHERTYPE_IP = 0x0800
ETHERTYPE_ARP = 0x0806
ETHERTYPE_IP6 = 0x86DD

_ETHERTYPE_NEXT = {
    ETHERTYPE_IP: 'ipv4',
    ETHERTYPE_IP6: 'ipv6',
    ETHERTYPE_ARP: 'arp',
}

ETH_HDR_LEN = 14
VLAN_TAG_LEN = 4
VLAN_TPIDS = frozenset((0x8100, 0x88A8, 0x9100))


def unwrap_vlan_tags(frame: bytes) -> tuple[int, int | None, int]:
    """
    Walk stacked 802.1Q/802.1ad tags.

    Returns ``(ethertype, outer_vlan_id, header_length)`` where ``ethertype``
    is the type field after the last tag. A tag cut short by the end of the
    frame stops the walk with the TPID as the EtherType.
    """
    ethertype = int.from_bytes(frame[12:14], 'big')
    hdr_len = ETH_HDR_LEN
    vlan = None
    while ethertype in VLAN_TPIDS and len(frame) >= hdr_len + VLAN_TAG_LEN:
        tci = int.from_bytes(frame[hdr_len:hdr_len + 2], 'big')
        if vlan is None:
            vlan = tci & 0x0FFF
        ethertype = int.from_bytes(frame[hdr_len + 2:hdr_len + 4], 'big')
        hdr_len += VLAN_TAG_LEN
    return ethertype, vlan, hdr_len


@register_protocol('ethernet', Layer.DATA_LINK, label='Ethernet',
                   link_types=[DLT_EN10MB], priority=100)
class EthernetHandler(BaseProtocolHandler):
    """Ethernet II handler; 802.1Q/802.1ad tags are skipped before dispatch."""

    def parse(self, payload: bytes, context: ProtocolContext) -> ParseResult:
        if len(payload) < ETH_HDR_LEN:
            context.info = f"Truncated Ethernet frame ({len(payload)} bytes)"
            return ParseResult(success=False, error=context.info)

        ethertype, vlan, hdr_len = unwrap_vlan_tags(payload)
        eth = dpkt.ethernet.Ethernet(payload)
        info = EthernetInfo.from_dpkt(eth, ethertype=ethertype, vlan=vlan)
        context.add_layer(info)

        if ethertype <= 1500:
            context.protocol = "LLC"
            context.info = f"IEEE 802.3 frame {info.src} → {info.dst}, length {ethertype}"
            return ParseResult(success=True, info=info)
        next_proto = _ETHERTYPE_NEXT.get(ethertype)
        if next_proto is None:
            context.protocol = f"EtherType 0x{ethertype:04x}"
            context.info = f"Ethernet frame {info.src} → {info.dst}, EtherType 0x{ethertype:04x}"
            return ParseResult(success=True, info=info)

        return ParseResult(
            success=True,
            data=payload[hdr_len:],
            info=info,
            next_protocol=next_proto,
        )


@register_protocol('raw_ip', Layer.DATA_LINK, label='Raw IP',
                   link_types=[DLT_RAW, DLT_RAW_OPENBSD, DLT_IPV4, DLT_IPV6], priority=50)
class RawIPHandler(BaseProtocolHandler):
    """Raw IP link types: the frame starts directly with the IP header."""

    def parse(self, payload: bytes, context: ProtocolContext) -> ParseResult:
        if context.link_type == DLT_IPV4:
            return ParseResult(success=True, data=payload, next_protocol='ipv4')
        if context.link_type == DLT_IPV6:
            return ParseResult(success=True, data=payload, next_protocol='ipv6')

        if not payload:
            context.info = "Empty raw IP frame"
            return ParseResult(success=False, error=context.info)

        version = payload[0] >> 4
        if version == 4:
            return ParseResult(success=True, data=payload, next_protocol='ipv4')
        if version == 6:
            return ParseResult(success=True, data=payload, next_protocol='ipv6')

        context.info = f"Raw frame with IP version {version}"
        return ParseResult(success=False, error=context.info)


@register_protocol('arp', Layer.DATA_LINK, label='ARP', priority=50)
class ARPHandler(BaseProtocolHandler):
    """ARP handler producing "Who has"/"is at" summaries."""

    ARP_LEN = 28

    def parse(self, payload: bytes, context: ProtocolContext) -> ParseResult:
        context.protocol = self.label
        if len(payload) < self.ARP_LEN:
            context.info = f"Truncated ARP packet ({len(payload)} bytes)"
            return ParseResult(success=False, error=context.info)

        info = ARPInfo.from_dpkt(dpkt.arp.ARP(payload))
        context.add_layer(info)
        context.set_addresses(info.sender_ip, info.target_ip)

        context.info = describe_arp(info)
        return ParseResult(success=True, info=info)


def describe_arp(info: ARPInfo) -> str:
    if info.opcode == 1:
        return f"Who has {info.target_ip}? Tell {info.sender_ip}"
    if info.opcode == 2:
        return f"{info.sender_ip} is at {info.sender_mac}"
    return f"ARP opcode {info.opcode}"
