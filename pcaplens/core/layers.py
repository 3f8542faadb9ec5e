"""
Pre-decoded layer maps.

Packets exported by ``tshark -T json`` (optionally with ``-x``) carry their
decoded fields as nested dicts of strings under ``_source.layers``::

    {"_source": {"layers": {
        "frame": {"frame.time_epoch": "1700000000.5", "frame.len": "60",
                  "frame.protocols": "eth:ethertype:ip:tcp"},
        "eth": {...}, "ip": {"ip.src": "10.0.0.1", ...}, "tcp": {...}}}}

LayerMapDecoder converts such a packet once into the same typed layers the
byte decoders produce, so everything downstream of decoding (labels, info
text, aggregation) goes through one code path.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable, Mapping

from pcaplens.core.packet import (
    UNKNOWN,
    ARPInfo, DHCPInfo, DNSInfo, EthernetInfo, HTTPInfo, ICMP6Info, ICMPInfo, IP6Info, IPInfo,
    NTPInfo, SNMPInfo, TCPInfo, TextProtocolInfo, TLSInfo, UDPInfo,
)
from pcaplens.protocols.application import (
    describe_dhcp, describe_dns, describe_http, describe_ntp, describe_snmp, describe_text,
    describe_tls, dns_type_name,
)
from pcaplens.protocols.base import APP_LAYER_MODES, ProtocolContext
from pcaplens.protocols.link import describe_arp
from pcaplens.protocols.network import ip_protocol_name
from pcaplens.protocols.transport import (
    apply_port_label, describe_tcp, describe_udp, icmp6_description, icmp_description,
)

logger = logging.getLogger(__name__)


def _find(node: Any, key: str) -> Any:
    """Depth-first lookup of ``key`` in nested dicts and lists; first value wins."""
    if isinstance(node, Mapping):
        if key in node:
            value = node[key]
            if isinstance(value, list):
                return value[0] if value else None
            return value
        children = node.values()
    elif isinstance(node, list):
        children = node
    else:
        return None
    for child in children:
        if isinstance(child, (Mapping, list)):
            found = _find(child, key)
            if found is not None:
                return found
    return None


def _int(value: Any, default: int | None = None) -> int | None:
    """tshark renders numbers as decimal or ``0x`` hex strings."""
    if value is None:
        return default
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, int):
        return value
    text = str(value).strip()
    try:
        if text.lower().startswith('0x'):
            return int(text, 16)
        return int(text)
    except ValueError:
        try:
            return int(float(text))
        except ValueError:
            return default


def _float(value: Any) -> float | None:
    if value is None:
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def extract_layers(packet: Mapping) -> Mapping | None:
    """The layer dict of a tshark packet, or None for a flat packet dict."""
    source = packet.get('_source')
    if isinstance(source, Mapping) and isinstance(source.get('layers'), Mapping):
        return source['layers']
    if isinstance(packet.get('layers'), Mapping):
        return packet['layers']
    if isinstance(packet.get('frame'), Mapping):
        return packet
    return None


@dataclass
class LayerMapFrame:
    """One packet converted from a layer map."""
    context: ProtocolContext
    timestamp: float | None
    captured_length: int
    original_length: int
    data: bytes = b""


# Application layers: (layer keys, decoder); the first present layer wins

def _http(layer: Mapping) -> tuple[Any, str, str | None]:
    info = HTTPInfo(
        method=_find(layer, 'http.request.method'),
        path=_find(layer, 'http.request.uri'),
        version=_find(layer, 'http.request.version') or _find(layer, 'http.response.version'),
        status_code=_int(_find(layer, 'http.response.code')),
        status_reason=_find(layer, 'http.response.phrase'),
        host=_find(layer, 'http.host'),
        user_agent=_find(layer, 'http.user_agent'),
        content_type=_find(layer, 'http.content_type'),
        content_length=_int(_find(layer, 'http.content_length')),
    )
    return info, describe_http(info), None


def _tls(layer: Mapping) -> tuple[Any, str, str | None]:
    info = TLSInfo(
        version=_int(_find(layer, 'tls.record.version') or _find(layer, 'ssl.record.version'), 0),
        content_type=_int(_find(layer, 'tls.record.content_type')
                          or _find(layer, 'ssl.record.content_type'), 0),
        record_length=_int(_find(layer, 'tls.record.length') or _find(layer, 'ssl.record.length'), 0),
    )
    return info, describe_tls(info), info.version_name


def _dns(layer: Mapping) -> tuple[Any, str, str | None]:
    flags = _int(_find(layer, 'dns.flags'), 0)
    if _find(layer, 'dns.flags.response') == '1':
        flags |= 0x8000
    rcode = _int(_find(layer, 'dns.flags.rcode'))
    if rcode is None:
        rcode = _int(_find(layer, 'dns.resp.code'))
    name = _find(layer, 'dns.qry.name')
    if name is None and rcode is not None:
        flags |= 0x8000

    qtype = _find(layer, 'dns.qry.type')
    if qtype is not None and _int(qtype) is not None:
        qtype = dns_type_name(_int(qtype))

    info = DNSInfo(
        id=_int(_find(layer, 'dns.id'), 0),
        flags=flags,
        queries=[name] if name else [],
        query_types=[qtype] if qtype else [],
        response_code=rcode or 0,
        question_count=_int(_find(layer, 'dns.count.queries'), 1 if name else 0),
        answer_count=_int(_find(layer, 'dns.count.answers'), 0),
    )
    return info, describe_dns(info), None


def _dhcp(layer: Mapping) -> tuple[Any, str, str | None]:
    message_type = None
    for prefix in ('dhcp', 'bootp'):
        for key in (f'{prefix}.option.dhcp', f'{prefix}.option.dhcp_message_type'):
            message_type = _int(_find(layer, key))
            if message_type is not None:
                break
        if message_type is not None:
            break
    info = DHCPInfo(
        op=_int(_find(layer, 'dhcp.type') or _find(layer, 'bootp.type'), 0),
        xid=_int(_find(layer, 'dhcp.id') or _find(layer, 'bootp.id'), 0),
        client_mac=_find(layer, 'dhcp.hw.mac_addr') or _find(layer, 'bootp.hw.mac_addr') or '',
        message_type=message_type,
    )
    return info, describe_dhcp(info), None


def _ssh(layer: Mapping) -> tuple[Any, str, str | None]:
    banner = _find(layer, 'ssh.protocol') or _find(layer, 'ssh.version')
    if banner:
        info = TextProtocolInfo(protocol='SSH', kind='banner', text=str(banner))
    else:
        info = TextProtocolInfo(protocol='SSH')
    return info, describe_text(info), None


def _text(protocol: str, command_key: str, response_key: str) -> Callable:
    def decode(layer: Mapping) -> tuple[Any, str, str | None]:
        command = _find(layer, command_key)
        response = _find(layer, response_key)
        if command:
            info = TextProtocolInfo(protocol=protocol, kind='command', command=str(command),
                                    argument=_find(layer, command_key.replace('command', 'arg')))
        elif response:
            info = TextProtocolInfo(protocol=protocol, kind='response', code=str(response))
        else:
            info = TextProtocolInfo(protocol=protocol)
        return info, describe_text(info), None
    return decode


def _ntp(layer: Mapping) -> tuple[Any, str, str | None]:
    info = NTPInfo(
        version=_int(_find(layer, 'ntp.flags.vn'), 0),
        mode=_int(_find(layer, 'ntp.flags.mode') or _find(layer, 'ntp.mode'), 0),
        stratum=_int(_find(layer, 'ntp.stratum'), 0),
    )
    return info, describe_ntp(info), None


def _snmp(layer: Mapping) -> tuple[Any, str, str | None]:
    info = SNMPInfo(
        version=_int(_find(layer, 'snmp.version'), 0),
        community=_find(layer, 'snmp.community'),
    )
    return info, describe_snmp(info), None


APPLICATION_LAYERS: tuple[tuple[tuple[str, ...], Callable], ...] = (
    (('http',), _http),
    (('tls', 'ssl'), _tls),
    (('dns', 'mdns'), _dns),
    (('dhcp', 'bootp'), _dhcp),
    (('ssh',), _ssh),
    (('ftp',), _text('FTP', 'ftp.request.command', 'ftp.response.code')),
    (('smtp',), _text('SMTP', 'smtp.req.command', 'smtp.response.code')),
    (('pop',), _text('POP3', 'pop.request.command', 'pop.response.indicator')),
    (('imap',), _text('IMAP', 'imap.request.command', 'imap.response.status')),
    (('ntp',), _ntp),
    (('snmp',), _snmp),
)


class LayerMapDecoder:
    """
    Converts tshark-style packet dicts into a ProtocolContext.

    Args:
        app_layer_parsing: ``"none"`` ignores application layers present in
            the map; the other modes honour them, since they are already
            decoded.
    """

    def __init__(self, app_layer_parsing: str = 'full'):
        if app_layer_parsing not in APP_LAYER_MODES:
            raise ValueError(
                f"app_layer_parsing must be one of {APP_LAYER_MODES}, got '{app_layer_parsing}'"
            )
        self.app_layer_parsing = app_layer_parsing

    def decode(self, packet: Mapping) -> LayerMapFrame:
        layers = extract_layers(packet)
        if layers is None:
            return self._decode_flat(packet)

        context = ProtocolContext(link_type=None, app_layer_parsing=self.app_layer_parsing)
        frame = layers.get('frame') or {}

        self._link(layers, context)
        self._network(layers, context)
        self._transport(layers, context)
        if self.app_layer_parsing != 'none':
            self._application(layers, context)

        if context.protocol == UNKNOWN:
            chain = _find(frame, 'frame.protocols')
            if chain:
                context.protocol = str(chain).split(':')[-1].upper() or UNKNOWN
        if not context.info:
            context.info = f"{context.protocol} Packet"

        original = _int(_find(frame, 'frame.len'))
        captured = _int(_find(frame, 'frame.cap_len'), original)
        data = self._raw_bytes(layers)
        if original is None:
            original = captured = len(data)

        timestamp = _float(_find(frame, 'frame.time_epoch'))
        if timestamp is None:
            timestamp = _float(_find(frame, 'frame.time_relative'))

        return LayerMapFrame(context, timestamp, captured, original, data)

    def _decode_flat(self, packet: Mapping) -> LayerMapFrame:
        """Packet dicts that carry display fields directly instead of layers."""
        context = ProtocolContext(link_type=None, app_layer_parsing=self.app_layer_parsing)
        src = packet.get('source') or packet.get('src') or packet.get('ip.src')
        dst = packet.get('destination') or packet.get('dst') or packet.get('ip.dst')
        context.set_addresses(str(src) if src else UNKNOWN, str(dst) if dst else UNKNOWN)
        context.protocol = str(packet.get('protocol') or packet.get('type') or UNKNOWN)
        context.info = str(packet.get('info') or packet.get('summary')
                           or f"{context.protocol} Packet")
        length = _int(packet.get('length') or packet.get('len'), 0)
        timestamp = _float(packet.get('timestamp') or packet.get('time'))
        return LayerMapFrame(context, timestamp, length, length)

    @staticmethod
    def _raw_bytes(layers: Mapping) -> bytes:
        raw = layers.get('frame_raw')
        if isinstance(raw, list):
            raw = raw[0] if raw else None
        if not isinstance(raw, str):
            return b""
        try:
            return bytes.fromhex(raw)
        except ValueError:
            logger.debug("Ignoring malformed frame_raw field")
            return b""

    def _link(self, layers: Mapping, context: ProtocolContext) -> None:
        eth = layers.get('eth')
        if isinstance(eth, Mapping):
            vlan = layers.get('vlan')
            if not isinstance(vlan, Mapping):
                vlan = None
            # Tagged frames carry the inner EtherType in the vlan layer
            ethertype = _find(vlan, 'vlan.etype') if vlan is not None else None
            context.add_layer(EthernetInfo(
                src=_find(eth, 'eth.src') or '',
                dst=_find(eth, 'eth.dst') or '',
                type=_int(ethertype or _find(eth, 'eth.type'), 0),
                vlan=_int(_find(vlan, 'vlan.id')) if vlan is not None else None,
            ))

        arp = layers.get('arp')
        if isinstance(arp, Mapping):
            info = ARPInfo(
                hw_type=_int(_find(arp, 'arp.hw.type'), 0),
                proto_type=_int(_find(arp, 'arp.proto.type'), 0),
                hw_size=_int(_find(arp, 'arp.hw.size'), 0),
                proto_size=_int(_find(arp, 'arp.proto.size'), 0),
                opcode=_int(_find(arp, 'arp.opcode'), 0),
                sender_mac=_find(arp, 'arp.src.hw_mac') or '',
                sender_ip=_find(arp, 'arp.src.proto_ipv4') or '',
                target_mac=_find(arp, 'arp.dst.hw_mac') or '',
                target_ip=_find(arp, 'arp.dst.proto_ipv4') or '',
            )
            context.add_layer(info)
            if info.sender_ip and info.target_ip:
                context.set_addresses(info.sender_ip, info.target_ip)
            context.protocol = 'ARP'
            context.info = describe_arp(info)

    def _network(self, layers: Mapping, context: ProtocolContext) -> None:
        ip = layers.get('ip')
        if isinstance(ip, Mapping):
            flags = _int(_find(ip, 'ip.flags'), 0)
            if flags > 0x7:
                # Newer tshark reports the flags in place within the 16-bit field
                flags >>= 13
            info = IPInfo(
                version=_int(_find(ip, 'ip.version'), 4),
                header_length=_int(_find(ip, 'ip.hdr_len'), 20),
                src=_find(ip, 'ip.src') or '',
                dst=_find(ip, 'ip.dst') or '',
                proto=_int(_find(ip, 'ip.proto'), 0),
                ttl=_int(_find(ip, 'ip.ttl'), 0),
                len=_int(_find(ip, 'ip.len'), 0),
                id=_int(_find(ip, 'ip.id'), 0),
                flags=flags,
                # Reported in bytes
                offset=_int(_find(ip, 'ip.frag_offset'), 0) // 8,
            )
            context.add_layer(info)
            self._addresses(context, info.src, info.dst)
            context.protocol = ip_protocol_name(info.proto)
            context.info = f"Protocol {context.protocol} ({info.proto})"
            return

        ipv6 = layers.get('ipv6')
        if isinstance(ipv6, Mapping):
            info = IP6Info(
                src=_find(ipv6, 'ipv6.src') or '',
                dst=_find(ipv6, 'ipv6.dst') or '',
                next_header=_int(_find(ipv6, 'ipv6.nxt'), 0),
                hop_limit=_int(_find(ipv6, 'ipv6.hlim'), 0),
                flow_label=_int(_find(ipv6, 'ipv6.flow'), 0),
                len=_int(_find(ipv6, 'ipv6.plen'), 0),
            )
            context.add_layer(info)
            self._addresses(context, info.src, info.dst)
            context.protocol = ip_protocol_name(info.next_header)
            context.info = f"Protocol {context.protocol} ({info.next_header})"

    @staticmethod
    def _addresses(context: ProtocolContext, src: str, dst: str) -> None:
        context.set_addresses(src or UNKNOWN, dst or UNKNOWN)

    def _transport(self, layers: Mapping, context: ProtocolContext) -> None:
        tcp = layers.get('tcp')
        udp = layers.get('udp')
        icmp = layers.get('icmp')
        icmpv6 = layers.get('icmpv6')

        if isinstance(tcp, Mapping):
            flags = _int(_find(tcp, 'tcp.flags'))
            if flags is None:
                flags = 0
                for mask, name in ((0x01, 'fin'), (0x02, 'syn'), (0x04, 'reset'), (0x08, 'push'),
                                   (0x10, 'ack'), (0x20, 'urg'), (0x40, 'ece'), (0x80, 'cwr')):
                    if _find(tcp, f'tcp.flags.{name}') in ('1', 1, True):
                        flags |= mask
            info = TCPInfo(
                sport=_int(_find(tcp, 'tcp.srcport'), 0),
                dport=_int(_find(tcp, 'tcp.dstport'), 0),
                seq=_int(_find(tcp, 'tcp.seq'), 0),
                ack_num=_int(_find(tcp, 'tcp.ack'), 0),
                header_length=_int(_find(tcp, 'tcp.hdr_len'), 20),
                flags=flags & 0xFF,
                win=_int(_find(tcp, 'tcp.window_size'), 0),
                urgent=_int(_find(tcp, 'tcp.urgent_pointer'), 0),
            )
            context.add_layer(info)
            context.attach_ports('tcp', info.sport, info.dport)
            context.protocol = 'TCP'
            context.info = describe_tcp(info)
            apply_port_label(context)
        elif isinstance(udp, Mapping):
            info = UDPInfo(
                sport=_int(_find(udp, 'udp.srcport'), 0),
                dport=_int(_find(udp, 'udp.dstport'), 0),
                len=_int(_find(udp, 'udp.length'), 0),
            )
            context.add_layer(info)
            context.attach_ports('udp', info.sport, info.dport)
            context.protocol = 'UDP'
            context.info = describe_udp(info)
            apply_port_label(context)
        elif isinstance(icmp, Mapping):
            icmp_type = _int(_find(icmp, 'icmp.type'), 0)
            code = _int(_find(icmp, 'icmp.code'), 0)
            info = ICMPInfo(type=icmp_type, code=code,
                            description=icmp_description(icmp_type, code))
            context.add_layer(info)
            context.protocol = 'ICMP'
            context.info = info.description
        elif isinstance(icmpv6, Mapping):
            icmp_type = _int(_find(icmpv6, 'icmpv6.type'), 0)
            code = _int(_find(icmpv6, 'icmpv6.code'), 0)
            info = ICMP6Info(type=icmp_type, code=code,
                             checksum=_int(_find(icmpv6, 'icmpv6.checksum'), 0),
                             description=icmp6_description(icmp_type, code))
            context.add_layer(info)
            context.protocol = 'ICMPv6'
            context.info = info.description

    def _application(self, layers: Mapping, context: ProtocolContext) -> None:
        for names, decode in APPLICATION_LAYERS:
            layer = next((layers[n] for n in names if isinstance(layers.get(n), (Mapping, list))),
                         None)
            if layer is None:
                continue
            info, text, label = decode(layer)
            context.add_layer(info)
            context.protocol = label or info.layer_name
            context.info = text
            context.implied_layer = None
            return


__all__ = [
    'LayerMapDecoder',
    'LayerMapFrame',
    'APPLICATION_LAYERS',
    'extract_layers',
]
