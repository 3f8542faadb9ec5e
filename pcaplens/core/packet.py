"""
Decoded protocol layers and the packet record.

Each decoded layer is a typed Info object with named fields (one class per
protocol). A PacketRecord holds the ordered tuple of those layers together
with the display fields (endpoints, protocol label, info text) derived from
them. Records are immutable once produced.
"""

from __future__ import annotations

import socket
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import TYPE_CHECKING, Any, Mapping

if TYPE_CHECKING:
    import dpkt


UNKNOWN = "Unknown"


def format_mac(raw: bytes) -> str:
    return ":".join(f"{b:02x}" for b in raw)


def format_ip(raw: bytes) -> str:
    """Dotted-decimal for 4 bytes, compressed colon-hex for 16 bytes."""
    if len(raw) == 4:
        return socket.inet_ntop(socket.AF_INET, raw)
    if len(raw) == 16:
        return socket.inet_ntop(socket.AF_INET6, raw)
    return raw.hex()


def format_endpoint(address: str, port: int | None = None) -> str:
    """``ip:port``; IPv6 addresses are bracketed when a port is attached."""
    if port is None:
        return address
    if ':' in address:
        return f"[{address}]:{port}"
    return f"{address}:{port}"


def strip_port(endpoint: str) -> str:
    """Inverse of format_endpoint: drop the port, keep the address."""
    if endpoint.startswith('['):
        end = endpoint.find(']')
        return endpoint[1:end] if end > 0 else endpoint
    if endpoint.count(':') == 1:
        return endpoint.rsplit(':', 1)[0]
    return endpoint


def hex_preview(data: bytes, limit: int = 48) -> str:
    """
    Classic hexdump of the first ``limit`` bytes.

    Each row holds 16 bytes: ``"0010: 45 00 00 54 ...  E..T"``.
    """
    chunk = data[:limit]
    rows = []
    for i in range(0, len(chunk), 16):
        row = chunk[i:i + 16]
        hexpart = " ".join(f"{b:02x}" for b in row)
        text = "".join(chr(b) if 32 <= b <= 126 else "." for b in row)
        rows.append(f"{i:04x}: {hexpart:<47}  {text}")
    return "\n".join(rows)


class _ProtocolInfoBase:
    """Abstract base for all protocol info objects. No slots defined here."""
    __slots__ = ()


class _SlottedInfoBase(_ProtocolInfoBase):
    """Base for __slots__-based Info classes.

    Subclasses define _SLOT_NAMES and _SLOT_DEFAULTS (same order). Fields can
    be given as keyword arguments or as a ``fields`` dict, the form used when
    converting pre-decoded layer maps. List and dict defaults are copied per
    instance.
    """
    __slots__ = ()
    _SLOT_NAMES: tuple[str, ...] = ()
    _SLOT_DEFAULTS: tuple = ()
    LAYER_NAME = ""

    def __init__(self, fields: dict | None = None, **kwargs):
        source = fields if fields is not None else kwargs
        for name, default in zip(self._SLOT_NAMES, self._SLOT_DEFAULTS):
            value = source.get(name, default)
            if value is default and isinstance(default, (list, dict)):
                value = type(default)()
            setattr(self, name, value)

    @property
    def layer_name(self) -> str:
        return self.LAYER_NAME

    def get(self, key: str, default=None):
        try:
            return getattr(self, key)
        except AttributeError:
            return default

    @property
    def _fields(self) -> dict:
        return {k: getattr(self, k) for k in self._SLOT_NAMES}

    def to_dict(self) -> dict[str, Any]:
        """Public fields, used for ``PacketRecord.layer_details``."""
        return {k: v for k, v in self._fields.items() if not k.startswith('_')}

    def __eq__(self, other) -> bool:
        if type(other) is not type(self):
            return NotImplemented
        return self._fields == other._fields

    __hash__ = None

    def __repr__(self) -> str:
        args = ", ".join(f"{k}={v!r}" for k, v in self.to_dict().items())
        return f"{type(self).__name__}({args})"


class EthernetInfo(_SlottedInfoBase):
    """Ethernet II header, with the 802.1Q tag when one was unwrapped."""
    __slots__ = ('src', 'dst', 'type', 'vlan')
    _SLOT_NAMES = ('src', 'dst', 'type', 'vlan')
    _SLOT_DEFAULTS = ('', '', 0, None)
    LAYER_NAME = "Ethernet"

    @classmethod
    def from_dpkt(cls, eth: dpkt.ethernet.Ethernet, ethertype: int | None = None,
                  vlan: int | None = None) -> EthernetInfo:
        """
        Build from a dpkt frame.

        dpkt keeps the outer TPID in ``eth.type`` for tagged frames, so the
        caller passes the EtherType found after the last tag, and the
        outermost VLAN id.
        """
        return cls(
            src=format_mac(eth.src),
            dst=format_mac(eth.dst),
            type=eth.type if ethertype is None else ethertype,
            vlan=vlan,
        )


class ARPInfo(_SlottedInfoBase):
    """ARP message."""
    __slots__ = ('hw_type', 'proto_type', 'hw_size', 'proto_size', 'opcode',
                 'sender_mac', 'sender_ip', 'target_mac', 'target_ip')
    _SLOT_NAMES = ('hw_type', 'proto_type', 'hw_size', 'proto_size', 'opcode',
                   'sender_mac', 'sender_ip', 'target_mac', 'target_ip')
    _SLOT_DEFAULTS = (0, 0, 0, 0, 0, '', '', '', '')
    LAYER_NAME = "ARP"

    @property
    def operation(self) -> str:
        if self.opcode == 1:
            return "Request"
        if self.opcode == 2:
            return "Reply"
        return f"Opcode {self.opcode}"

    @classmethod
    def from_dpkt(cls, arp: dpkt.arp.ARP) -> ARPInfo:
        return cls(
            hw_type=arp.hrd,
            proto_type=arp.pro,
            hw_size=arp.hln,
            proto_size=arp.pln,
            opcode=arp.op,
            sender_mac=format_mac(arp.sha),
            sender_ip=format_ip(arp.spa),
            target_mac=format_mac(arp.tha),
            target_ip=format_ip(arp.tpa),
        )


class IPInfo(_SlottedInfoBase):
    """IPv4 header."""
    __slots__ = ('version', 'header_length', 'src', 'dst', 'proto', 'ttl', 'len',
                 'id', 'flags', 'offset')
    _SLOT_NAMES = ('version', 'header_length', 'src', 'dst', 'proto', 'ttl', 'len',
                   'id', 'flags', 'offset')
    _SLOT_DEFAULTS = (4, 20, '', '', 0, 0, 0, 0, 0, 0)
    LAYER_NAME = "IPv4"

    @property
    def dont_fragment(self) -> bool:
        return bool(self.flags & 0x2)

    @property
    def more_fragments(self) -> bool:
        return bool(self.flags & 0x1)

    @property
    def is_fragment(self) -> bool:
        return self.more_fragments or self.offset != 0

    @property
    def fragment_offset_bytes(self) -> int:
        return self.offset * 8

    @classmethod
    def from_dpkt(cls, ip: dpkt.ip.IP) -> IPInfo:
        return cls(
            version=ip.v,
            header_length=ip.hl * 4,
            src=format_ip(ip.src),
            dst=format_ip(ip.dst),
            proto=ip.p,
            ttl=ip.ttl,
            len=ip.len,
            id=ip.id,
            flags=(ip.rf << 2) | (ip.df << 1) | ip.mf,
            offset=ip.offset,
        )


class IP6Info(_SlottedInfoBase):
    """IPv6 fixed header."""
    __slots__ = ('version', 'src', 'dst', 'next_header', 'hop_limit', 'flow_label', 'len')
    _SLOT_NAMES = ('version', 'src', 'dst', 'next_header', 'hop_limit', 'flow_label', 'len')
    _SLOT_DEFAULTS = (6, '', '', 0, 0, 0, 0)
    LAYER_NAME = "IPv6"

    @classmethod
    def from_dpkt(cls, ip6: dpkt.ip6.IP6) -> IP6Info:
        return cls(
            version=ip6.v,
            src=format_ip(ip6.src),
            dst=format_ip(ip6.dst),
            next_header=ip6.nxt,
            hop_limit=ip6.hlim,
            flow_label=ip6.flow,
            len=ip6.plen,
        )


TCP_FLAG_NAMES = (
    (0x01, 'FIN'), (0x02, 'SYN'), (0x04, 'RST'), (0x08, 'PSH'),
    (0x10, 'ACK'), (0x20, 'URG'), (0x40, 'ECE'), (0x80, 'CWR'),
)


class TCPInfo(_SlottedInfoBase):
    """TCP segment header."""
    __slots__ = ('sport', 'dport', 'seq', 'ack_num', 'header_length', 'flags', 'win', 'urgent')
    _SLOT_NAMES = ('sport', 'dport', 'seq', 'ack_num', 'header_length', 'flags', 'win', 'urgent')
    _SLOT_DEFAULTS = (0, 0, 0, 0, 20, 0, 0, 0)
    LAYER_NAME = "TCP"

    @property
    def syn(self) -> bool: return bool(self.flags & 0x02)
    @property
    def fin(self) -> bool: return bool(self.flags & 0x01)
    @property
    def rst(self) -> bool: return bool(self.flags & 0x04)
    @property
    def psh(self) -> bool: return bool(self.flags & 0x08)
    @property
    def ack(self) -> bool: return bool(self.flags & 0x10)
    @property
    def urg(self) -> bool: return bool(self.flags & 0x20)
    @property
    def ece(self) -> bool: return bool(self.flags & 0x40)
    @property
    def cwr(self) -> bool: return bool(self.flags & 0x80)

    @property
    def flag_names(self) -> list[str]:
        return [name for mask, name in TCP_FLAG_NAMES if self.flags & mask]

    @property
    def flags_text(self) -> str:
        """Comma separated flag names, ``None`` when no flag is set."""
        return ", ".join(self.flag_names) or "None"

    @classmethod
    def from_dpkt(cls, tcp: dpkt.tcp.TCP) -> TCPInfo:
        return cls(
            sport=tcp.sport,
            dport=tcp.dport,
            seq=tcp.seq,
            ack_num=tcp.ack,
            header_length=tcp.off * 4,
            flags=tcp.flags & 0xFF,
            win=tcp.win,
            urgent=tcp.urp,
        )


class UDPInfo(_SlottedInfoBase):
    """UDP datagram header."""
    __slots__ = ('sport', 'dport', 'len')
    _SLOT_NAMES = ('sport', 'dport', 'len')
    _SLOT_DEFAULTS = (0, 0, 0)
    LAYER_NAME = "UDP"

    @classmethod
    def from_dpkt(cls, udp: dpkt.udp.UDP) -> UDPInfo:
        return cls(sport=udp.sport, dport=udp.dport, len=udp.ulen)


class ICMPInfo(_SlottedInfoBase):
    """ICMP message type and code."""
    __slots__ = ('type', 'code', 'description')
    _SLOT_NAMES = ('type', 'code', 'description')
    _SLOT_DEFAULTS = (0, 0, '')
    LAYER_NAME = "ICMP"


class ICMP6Info(_SlottedInfoBase):
    """ICMPv6 message type and code."""
    __slots__ = ('type', 'code', 'checksum', 'description')
    _SLOT_NAMES = ('type', 'code', 'checksum', 'description')
    _SLOT_DEFAULTS = (0, 0, 0, '')
    LAYER_NAME = "ICMPv6"


class HTTPInfo(_SlottedInfoBase):
    """HTTP request or response start line and selected headers."""
    __slots__ = ('method', 'path', 'version', 'status_code', 'status_reason',
                 'host', 'user_agent', 'content_type', 'content_length', 'headers')
    _SLOT_NAMES = ('method', 'path', 'version', 'status_code', 'status_reason',
                   'host', 'user_agent', 'content_type', 'content_length', 'headers')
    _SLOT_DEFAULTS = (None, None, None, None, None, None, None, None, None, {})
    LAYER_NAME = "HTTP"

    @property
    def is_request(self) -> bool: return self.method is not None
    @property
    def is_response(self) -> bool: return self.status_code is not None


class DNSInfo(_SlottedInfoBase):
    """DNS header and question section."""
    __slots__ = ('id', 'flags', 'queries', 'query_types', 'response_code',
                 'question_count', 'answer_count')
    _SLOT_NAMES = ('id', 'flags', 'queries', 'query_types', 'response_code',
                   'question_count', 'answer_count')
    _SLOT_DEFAULTS = (0, 0, [], [], 0, 0, 0)
    LAYER_NAME = "DNS"

    @property
    def is_query(self) -> bool: return not bool(self.flags & 0x8000)
    @property
    def is_response(self) -> bool: return bool(self.flags & 0x8000)


class TLSInfo(_SlottedInfoBase):
    """First TLS record header found in the segment."""
    __slots__ = ('version', 'content_type', 'record_length')
    _SLOT_NAMES = ('version', 'content_type', 'record_length')
    _SLOT_DEFAULTS = (0, 0, 0)
    LAYER_NAME = "TLS"

    @property
    def content_type_name(self) -> str | None:
        names = {20: "Change Cipher Spec", 21: "Alert", 22: "Handshake",
                 23: "Application Data", 24: "Heartbeat"}
        return names.get(self.content_type)

    @property
    def version_name(self) -> str:
        names = {0x0300: "SSLv3", 0x0301: "TLSv1", 0x0302: "TLSv1.1",
                 0x0303: "TLSv1.2", 0x0304: "TLSv1.3"}
        return names.get(self.version, "TLS")


DHCP_MESSAGE_TYPES = {
    1: "Discover", 2: "Offer", 3: "Request", 4: "Decline",
    5: "ACK", 6: "NAK", 7: "Release", 8: "Inform",
}


class DHCPInfo(_SlottedInfoBase):
    """DHCP/BOOTP message."""
    __slots__ = ('op', 'xid', 'client_mac', 'message_type')
    _SLOT_NAMES = ('op', 'xid', 'client_mac', 'message_type')
    _SLOT_DEFAULTS = (0, 0, '', None)
    LAYER_NAME = "DHCP"

    @property
    def message_type_name(self) -> str:
        if self.message_type is None:
            return "BOOTP"
        return DHCP_MESSAGE_TYPES.get(self.message_type, f"Type {self.message_type}")


class TextProtocolInfo(_SlottedInfoBase):
    """Line-oriented protocols (SSH banner, FTP, SMTP, POP3, IMAP)."""
    __slots__ = ('protocol', 'kind', 'command', 'argument', 'code', 'text')
    _SLOT_NAMES = ('protocol', 'kind', 'command', 'argument', 'code', 'text')
    _SLOT_DEFAULTS = ('', '', None, None, None, '')

    @property
    def layer_name(self) -> str:
        return self.protocol


class NTPInfo(_SlottedInfoBase):
    __slots__ = ('version', 'mode', 'stratum')
    _SLOT_NAMES = ('version', 'mode', 'stratum')
    _SLOT_DEFAULTS = (0, 0, 0)
    LAYER_NAME = "NTP"


class SNMPInfo(_SlottedInfoBase):
    __slots__ = ('version', 'community')
    _SLOT_NAMES = ('version', 'community')
    _SLOT_DEFAULTS = (0, None)
    LAYER_NAME = "SNMP"

    @property
    def version_name(self) -> str:
        return {0: "v1", 1: "v2c", 3: "v3"}.get(self.version, f"v{self.version}")


ProtocolInfo = _SlottedInfoBase


@dataclass(frozen=True, slots=True)
class PacketRecord:
    """
    One decoded frame.

    ``layers`` holds the typed decoded layers in wire order; ``layer_trace``
    and ``layer_details`` are derived views of it. Records are immutable; the
    analyzer creates a copy with ``dataclasses.replace`` to fill in
    ``relative_timestamp`` once the capture start time is known.
    """
    sequence_number: int
    capture_timestamp: float
    captured_length: int
    original_length: int
    source_endpoint: str = UNKNOWN
    destination_endpoint: str = UNKNOWN
    protocol_label: str = UNKNOWN
    info_summary: str = ""
    layers: tuple[ProtocolInfo, ...] = ()
    hex_preview: str = ""
    relative_timestamp: float = 0.0
    timestamp_available: bool = True
    extra_trace: tuple[str, ...] = field(default=(), repr=False)

    def __hash__(self) -> int:
        # Layer objects are mutable and unhashable; records that compare
        # equal always agree on these fields.
        return hash((self.sequence_number, self.capture_timestamp, self.captured_length,
                     self.original_length, self.protocol_label, self.layer_trace))

    @property
    def layer_trace(self) -> tuple[str, ...]:
        """Layer names in decode order, e.g. ``('Ethernet', 'IPv4', 'TCP', 'HTTP')``."""
        return tuple(layer.layer_name for layer in self.layers) + self.extra_trace

    @property
    def layer_details(self) -> Mapping[str, Mapping[str, Any]]:
        return MappingProxyType({
            layer.layer_name: MappingProxyType(layer.to_dict()) for layer in self.layers
        })

    def get_layer(self, kind: type | str):
        """First layer that is an instance of ``kind`` or carries that layer name."""
        for layer in self.layers:
            if isinstance(kind, str):
                if layer.layer_name == kind:
                    return layer
            elif isinstance(layer, kind):
                return layer
        return None

    @property
    def length(self) -> int:
        return self.captured_length

    def to_dict(self) -> dict:
        return {
            'number': self.sequence_number,
            'timestamp': self.capture_timestamp,
            'relative_time': self.relative_timestamp,
            'captured_length': self.captured_length,
            'original_length': self.original_length,
            'source': self.source_endpoint,
            'destination': self.destination_endpoint,
            'protocol': self.protocol_label,
            'info': self.info_summary,
            'layers': list(self.layer_trace),
            'details': {name: dict(fields) for name, fields in self.layer_details.items()},
            'hex': self.hex_preview,
        }


__all__ = [
    'UNKNOWN',
    'format_mac', 'format_ip', 'format_endpoint', 'strip_port', 'hex_preview',
    'ProtocolInfo',
    'EthernetInfo', 'ARPInfo', 'IPInfo', 'IP6Info', 'TCPInfo', 'UDPInfo',
    'ICMPInfo', 'ICMP6Info', 'HTTPInfo', 'DNSInfo', 'TLSInfo', 'DHCPInfo',
    'TextProtocolInfo', 'NTPInfo', 'SNMPInfo', 'DHCP_MESSAGE_TYPES', 'TCP_FLAG_NAMES',
    'PacketRecord',
]
