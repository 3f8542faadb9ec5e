"""
Application layer classification.

ApplicationLayerClassifier picks candidate handlers for a TCP or UDP payload
from the registry (by port, plus handlers with ``force_parse`` set) and lets
the first one that recognises the payload set the protocol label and info
text. When nothing recognises the payload, the well-known port alone decides
the label.

Handlers only ever change ``protocol``, ``info`` and the layer list of the
context; addresses and ports are left as the transport layer set them.
"""

from __future__ import annotations

import logging
import struct

import dpkt

from pcaplens.core.cursor import ByteCursor
from pcaplens.core.packet import (
    DNSInfo, DHCPInfo, HTTPInfo, NTPInfo, SNMPInfo, TLSInfo, TextProtocolInfo, format_mac,
)
from pcaplens.protocols.base import (
    APP_LAYER_MODES, BaseProtocolHandler, Layer, ParseResult, ProtocolContext,
)
from pcaplens.protocols.registry import ProtocolHandlerRegistry, get_global_registry, register_protocol

logger = logging.getLogger(__name__)


HTTP_METHODS = frozenset({
    'GET', 'POST', 'PUT', 'DELETE', 'HEAD', 'OPTIONS', 'PATCH', 'CONNECT', 'TRACE',
})

DNS_TYPES = {
    1: 'A', 2: 'NS', 5: 'CNAME', 6: 'SOA', 12: 'PTR', 15: 'MX', 16: 'TXT',
    28: 'AAAA', 33: 'SRV', 35: 'NAPTR', 41: 'OPT', 43: 'DS', 46: 'RRSIG',
    48: 'DNSKEY', 64: 'SVCB', 65: 'HTTPS', 255: 'ANY',
}

DNS_RCODES = {
    0: 'No Error',
    1: 'Format Error',
    2: 'Server Failure',
    3: 'Name Error',
    4: 'Not Implemented',
    5: 'Refused',
}

NTP_MODES = {
    0: 'reserved', 1: 'symmetric active', 2: 'symmetric passive', 3: 'client',
    4: 'server', 5: 'broadcast', 6: 'control', 7: 'private',
}

DHCP_MAGIC = 0x63825363
DHCP_OPT_MESSAGE_TYPE = 53

TLS_CONTENT_TYPES = range(20, 25)


def dns_type_name(qtype: int) -> str:
    return DNS_TYPES.get(qtype, f"TYPE{qtype}")


def dns_rcode_name(rcode: int) -> str:
    return DNS_RCODES.get(rcode, f"Response Code {rcode}")


# Summaries shared by the byte decoders and the layer-map adapter

def describe_http(info: HTTPInfo) -> str:
    if info.is_request:
        return f"{info.method} {info.path or '/'}"
    if info.is_response:
        return f"HTTP {info.status_code} {info.status_reason or ''}".rstrip()
    return "HTTP Request/Response"


def describe_dns(info: DNSInfo) -> str:
    if info.is_response:
        return f"Response: {dns_rcode_name(info.response_code)}"
    if info.queries:
        qtype = info.query_types[0] if info.query_types else 'A'
        return f"Query {qtype}: {info.queries[0]}"
    return "DNS Query/Response"


def describe_tls(info: TLSInfo, content_names: list[str] | None = None) -> str:
    if content_names:
        return ", ".join(content_names)
    return info.content_type_name or "TLS Record"


def describe_dhcp(info: DHCPInfo) -> str:
    if info.message_type is None:
        text = "BOOTP Request" if info.op == 1 else "BOOTP Reply"
    else:
        text = f"DHCP {info.message_type_name}"
    if info.xid:
        text += f" - Transaction ID 0x{info.xid:08x}"
    return text


def describe_text(info: TextProtocolInfo) -> str:
    if info.kind == 'banner':
        return f"{info.protocol} {info.text}"
    if info.kind == 'command' and info.command:
        return f"Command: {info.command}"
    if info.kind == 'response' and info.code:
        return f"Response: {info.code}"
    return f"{info.protocol} Protocol"


def describe_ntp(info: NTPInfo) -> str:
    return f"NTP Version {info.version}, {NTP_MODES.get(info.mode, f'Mode {info.mode}')}"


def describe_snmp(info: SNMPInfo) -> str:
    return f"SNMP {info.version_name}"


class _ApplicationHandler(BaseProtocolHandler):
    """Commit helper for handlers that recognised their payload."""

    def accept(self, context: ProtocolContext, info, text: str, label: str | None = None) -> ParseResult:
        context.add_layer(info)
        context.protocol = label or self.label
        context.info = text
        return ParseResult(success=True, info=info)


@register_protocol('http', Layer.APPLICATION, label='HTTP', encapsulates='tcp',
                   default_ports=[80, 8000, 8008, 8080, 3128], priority=100, force_parse=True)
class HTTPHandler(_ApplicationHandler):
    """HTTP/1.x start line and headers."""

    def parse(self, payload: bytes, context: ProtocolContext) -> ParseResult:
        head, _, _ = payload.partition(b'\r\n\r\n')
        lines = head.split(b'\r\n')
        try:
            first = lines[0].decode('ascii')
        except UnicodeDecodeError:
            return ParseResult(success=False)

        info = HTTPInfo()
        if first.startswith('HTTP/'):
            parts = first.split(' ', 2)
            if len(parts) < 2 or not parts[1].isdigit():
                return ParseResult(success=False)
            info.version = parts[0]
            info.status_code = int(parts[1])
            info.status_reason = parts[2] if len(parts) > 2 else ''
        else:
            parts = first.split(' ')
            if len(parts) < 2 or parts[0] not in HTTP_METHODS:
                return ParseResult(success=False)
            if len(parts) > 2 and not parts[-1].startswith('HTTP/'):
                return ParseResult(success=False)
            info.method = parts[0]
            info.path = parts[1]
            info.version = parts[2] if len(parts) > 2 else None

        for line in lines[1:]:
            name, sep, value = line.decode('latin-1').partition(':')
            if not sep:
                continue
            info.headers[name.strip().lower()] = value.strip()

        info.host = info.headers.get('host')
        info.user_agent = info.headers.get('user-agent')
        info.content_type = info.headers.get('content-type')
        length = info.headers.get('content-length')
        if length and length.isdigit():
            info.content_length = int(length)

        return self.accept(context, info, describe_http(info))


@register_protocol('tls', Layer.PRESENTATION, label='TLS', encapsulates='tcp',
                   default_ports=[443, 465, 636, 853, 989, 990, 992, 993, 994, 995, 5061, 8443],
                   priority=90, force_parse=True)
class TLSHandler(_ApplicationHandler):
    """TLS record layer: content type and version of each whole record in the segment."""

    RECORD_HDR_LEN = 5

    @staticmethod
    def _is_record_header(payload: bytes, offset: int) -> bool:
        return (payload[offset] in TLS_CONTENT_TYPES
                and payload[offset + 1] == 3
                and payload[offset + 2] <= 4)

    def parse(self, payload: bytes, context: ProtocolContext) -> ParseResult:
        if len(payload) < self.RECORD_HDR_LEN or not self._is_record_header(payload, 0):
            return ParseResult(success=False)

        cur = ByteCursor(payload)
        info = TLSInfo(
            content_type=payload[0],
            version=cur.u16_at(1),
            record_length=cur.u16_at(3),
        )

        names = []
        offset = 0
        while offset + self.RECORD_HDR_LEN <= len(payload) and self._is_record_header(payload, offset):
            name = TLSInfo(content_type=payload[offset]).content_type_name
            if name not in names:
                names.append(name)
            offset += self.RECORD_HDR_LEN + cur.u16_at(offset + 3)

        return self.accept(context, info, describe_tls(info, names), label=info.version_name)


@register_protocol('dns', Layer.APPLICATION, label='DNS', encapsulates='udp',
                   default_ports=[53, 5353], priority=100)
class DNSHandler(_ApplicationHandler):
    """DNS header and question section via dpkt."""

    def _decode(self, payload: bytes) -> DNSInfo | None:
        try:
            dns = dpkt.dns.DNS(payload)
        except Exception:
            return None
        return DNSInfo(
            id=dns.id,
            flags=dns.op,
            queries=[q.name for q in dns.qd],
            query_types=[dns_type_name(q.type) for q in dns.qd],
            response_code=dns.rcode,
            question_count=len(dns.qd),
            answer_count=len(dns.an),
        )

    def parse(self, payload: bytes, context: ProtocolContext) -> ParseResult:
        info = self._decode(payload)
        if info is None:
            return ParseResult(success=False)
        return self.accept(context, info, describe_dns(info))


@register_protocol('dns_tcp', Layer.APPLICATION, label='DNS', encapsulates='tcp',
                   default_ports=[53], priority=100)
class DNSTCPHandler(DNSHandler):
    """DNS over TCP, each message prefixed with a 2-byte length."""

    def parse(self, payload: bytes, context: ProtocolContext) -> ParseResult:
        if len(payload) < 14:
            return ParseResult(success=False)
        return super().parse(payload[2:], context)


@register_protocol('dhcp', Layer.APPLICATION, label='DHCP', encapsulates='udp',
                   default_ports=[67, 68], priority=100)
class DHCPHandler(_ApplicationHandler):
    """BOOTP/DHCP message; the type comes from option 53."""

    def parse(self, payload: bytes, context: ProtocolContext) -> ParseResult:
        try:
            dhcp = dpkt.dhcp.DHCP(payload)
        except Exception:
            return ParseResult(success=False)
        if dhcp.op not in (1, 2):
            return ParseResult(success=False)

        message_type = None
        if dhcp.magic == DHCP_MAGIC:
            for code, value in dhcp.opts:
                if code == DHCP_OPT_MESSAGE_TYPE and value:
                    message_type = value[0]
                    break

        info = DHCPInfo(
            op=dhcp.op,
            xid=dhcp.xid,
            client_mac=format_mac(dhcp.chaddr[:6]),
            message_type=message_type,
        )
        return self.accept(context, info, describe_dhcp(info))


class _LineProtocolHandler(_ApplicationHandler):
    """Base for text protocols whose first line identifies the message."""

    MAX_LINE = 512

    @classmethod
    def first_line(cls, payload: bytes) -> str | None:
        line = payload[:cls.MAX_LINE].split(b'\n', 1)[0].rstrip(b'\r')
        try:
            text = line.decode('ascii')
        except UnicodeDecodeError:
            return None
        if not text or not text.isprintable():
            return None
        return text

    def classify_line(self, line: str) -> TextProtocolInfo | None:
        raise NotImplementedError

    def parse(self, payload: bytes, context: ProtocolContext) -> ParseResult:
        line = self.first_line(payload)
        if line is None:
            return ParseResult(success=False)
        info = self.classify_line(line)
        if info is None:
            return ParseResult(success=False)
        return self.accept(context, info, describe_text(info))

    def _command(self, line: str, commands: frozenset[str] | None = None) -> TextProtocolInfo | None:
        verb, _, argument = line.partition(' ')
        verb = verb.upper()
        if not verb.isalpha() or len(verb) > 8:
            return None
        if commands is not None and verb not in commands:
            return None
        return TextProtocolInfo(protocol=self.label, kind='command', command=verb,
                                argument=argument or None, text=line)


class _ReplyCodeProtocolHandler(_LineProtocolHandler):
    """FTP and SMTP: three-digit reply codes, alphabetic commands."""

    def classify_line(self, line: str) -> TextProtocolInfo | None:
        code = line[:3]
        if code.isdigit() and (len(line) == 3 or line[3] in ' -'):
            return TextProtocolInfo(protocol=self.label, kind='response', code=code,
                                    text=line[4:])
        return self._command(line)


@register_protocol('ssh', Layer.APPLICATION, label='SSH', encapsulates='tcp',
                   default_ports=[22], priority=80, force_parse=True)
class SSHHandler(_LineProtocolHandler):
    """SSH identification banner."""

    def can_parse(self, payload: bytes, context: ProtocolContext) -> bool:
        return payload.startswith(b'SSH-')

    def classify_line(self, line: str) -> TextProtocolInfo | None:
        parts = line.split('-', 2)
        if len(parts) < 3 or parts[0] != 'SSH':
            return None
        return TextProtocolInfo(protocol=self.label, kind='banner', command=parts[1],
                                argument=parts[2], text=line)


@register_protocol('ftp', Layer.APPLICATION, label='FTP', encapsulates='tcp',
                   default_ports=[21], priority=50)
class FTPHandler(_ReplyCodeProtocolHandler):
    pass


@register_protocol('smtp', Layer.APPLICATION, label='SMTP', encapsulates='tcp',
                   default_ports=[25, 587], priority=50)
class SMTPHandler(_ReplyCodeProtocolHandler):
    pass


@register_protocol('pop3', Layer.APPLICATION, label='POP3', encapsulates='tcp',
                   default_ports=[110], priority=50)
class POP3Handler(_LineProtocolHandler):
    """POP3: ``+OK``/``-ERR`` status lines and a small command set."""

    COMMANDS = frozenset({
        'USER', 'PASS', 'APOP', 'STAT', 'LIST', 'RETR', 'DELE', 'NOOP', 'RSET',
        'QUIT', 'TOP', 'UIDL', 'CAPA', 'STLS', 'AUTH',
    })

    def classify_line(self, line: str) -> TextProtocolInfo | None:
        status, _, text = line.partition(' ')
        if status in ('+OK', '-ERR'):
            return TextProtocolInfo(protocol=self.label, kind='response', code=status, text=text)
        return self._command(line, self.COMMANDS)


@register_protocol('imap', Layer.APPLICATION, label='IMAP', encapsulates='tcp',
                   default_ports=[143], priority=50)
class IMAPHandler(_LineProtocolHandler):
    """IMAP: tagged or untagged lines, ``<tag> <command>`` from the client."""

    STATUS = frozenset({'OK', 'NO', 'BAD', 'PREAUTH', 'BYE'})

    def classify_line(self, line: str) -> TextProtocolInfo | None:
        parts = line.split(' ', 2)
        if len(parts) < 2:
            return None
        tag, word = parts[0], parts[1].upper()
        text = parts[2] if len(parts) > 2 else ''
        if tag == '*' or word in self.STATUS:
            code = word if word in self.STATUS else None
            return TextProtocolInfo(protocol=self.label, kind='response', code=code or word,
                                    text=text)
        if tag.isalnum() and word.isalpha():
            return TextProtocolInfo(protocol=self.label, kind='command', command=word,
                                    argument=text or None, text=line)
        return None


@register_protocol('ntp', Layer.APPLICATION, label='NTP', encapsulates='udp',
                   default_ports=[123], priority=50)
class NTPHandler(_ApplicationHandler):
    """NTP header: version, mode and stratum."""

    MIN_LEN = 48

    def parse(self, payload: bytes, context: ProtocolContext) -> ParseResult:
        if len(payload) < self.MIN_LEN:
            return ParseResult(success=False)
        version = (payload[0] >> 3) & 0x7
        if not 1 <= version <= 4:
            return ParseResult(success=False)
        info = NTPInfo(version=version, mode=payload[0] & 0x7, stratum=payload[1])
        return self.accept(context, info, describe_ntp(info))


def _ber_length(cur: ByteCursor) -> int:
    first = cur.u8()
    if first < 0x80:
        return first
    count = first & 0x7F
    if count == 0 or count > 4:
        raise ValueError(f"unsupported BER length form 0x{first:02x}")
    return int.from_bytes(cur.read(count), 'big')


@register_protocol('snmp', Layer.APPLICATION, label='SNMP', encapsulates='udp',
                   default_ports=[161, 162], priority=50)
class SNMPHandler(_ApplicationHandler):
    """SNMP message header (BER): version and, for v1/v2c, the community."""

    def parse(self, payload: bytes, context: ProtocolContext) -> ParseResult:
        try:
            info = self._decode(payload)
        except (IndexError, ValueError, struct.error):
            return ParseResult(success=False)
        if info is None:
            return ParseResult(success=False)
        return self.accept(context, info, describe_snmp(info))

    @staticmethod
    def _decode(payload: bytes) -> SNMPInfo | None:
        cur = ByteCursor(payload)
        if cur.u8() != 0x30:
            return None
        _ber_length(cur)
        if cur.u8() != 0x02:
            return None
        version = int.from_bytes(cur.read(_ber_length(cur)), 'big')
        if version not in (0, 1, 3):
            return None

        community = None
        if version in (0, 1) and cur.u8() == 0x04:
            community = cur.read(_ber_length(cur)).decode('latin-1')
        return SNMPInfo(version=version, community=community)


class ApplicationLayerClassifier:
    """
    Labels TCP/UDP payloads by content and well-known port.

    Args:
        mode: ``"full"`` inspects payloads, ``"port_only"`` labels by port
            without looking at the bytes, ``"none"`` leaves the transport label.
        registry: Handler registry to draw application handlers from.
    """

    TRANSPORTS = ('tcp', 'udp')

    def __init__(self, mode: str = 'full', registry: ProtocolHandlerRegistry | None = None):
        if mode not in APP_LAYER_MODES:
            raise ValueError(
                f"app_layer_parsing must be one of {APP_LAYER_MODES}, got '{mode}'"
            )
        self.mode = mode
        registry = registry or get_global_registry()
        self._handlers = {
            transport: [cls() for cls in registry.get_by_encapsulation(transport)]
            for transport in self.TRANSPORTS
        }

    def classify(self, payload: bytes, context: ProtocolContext) -> None:
        if self.mode == 'none' or not payload:
            return

        handlers = self._handlers.get(context.transport, [])
        if self.mode == 'full':
            for handler in handlers:
                if not handler.can_parse(payload, context):
                    continue
                try:
                    result = handler.parse(payload, context)
                except Exception as e:
                    context.errors.append(f"{handler.name}: {e}")
                    logger.debug("%s handler failed: %s", handler.name, e)
                    continue
                if result.success:
                    context.implied_layer = None
                    return

        # Nothing recognised the payload: the port decides, unless the
        # transport layer already relabelled the packet
        if context.protocol != context.transport.upper():
            return
        for handler in handlers:
            if handler.matches_port(context):
                context.protocol = handler.label
                context.implied_layer = handler.label
                return
