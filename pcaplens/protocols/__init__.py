"""Protocol handler modules."""

from pcaplens.protocols.base import (
    BaseProtocolHandler,
    ProtocolContext,
    ParseResult,
    Layer,
    APP_LAYER_MODES,
)
from pcaplens.protocols.registry import (
    register_protocol,
    unregister_protocol,
    get_protocol_handlers,
    get_global_registry as get_protocol_registry,
    ProtocolHandlerRegistry,
)

# Importing the handler modules registers their handlers
from pcaplens.protocols.link import EthernetHandler, RawIPHandler, ARPHandler
from pcaplens.protocols.network import IPv4Handler, IPv6Handler, ip_protocol_name
from pcaplens.protocols.transport import TCPHandler, UDPHandler, ICMPHandler, ICMPv6Handler
from pcaplens.protocols.application import (
    ApplicationLayerClassifier,
    HTTPHandler,
    TLSHandler,
    DNSHandler,
    DNSTCPHandler,
    DHCPHandler,
    SSHHandler,
    FTPHandler,
    SMTPHandler,
    POP3Handler,
    IMAPHandler,
    NTPHandler,
    SNMPHandler,
)
from pcaplens.protocols.dissector import FrameDissector


__all__ = [
    'BaseProtocolHandler',
    'ProtocolContext',
    'ParseResult',
    'Layer',
    'APP_LAYER_MODES',
    'register_protocol',
    'unregister_protocol',
    'get_protocol_handlers',
    'get_protocol_registry',
    'ProtocolHandlerRegistry',
    'EthernetHandler',
    'RawIPHandler',
    'ARPHandler',
    'IPv4Handler',
    'IPv6Handler',
    'ip_protocol_name',
    'TCPHandler',
    'UDPHandler',
    'ICMPHandler',
    'ICMPv6Handler',
    'ApplicationLayerClassifier',
    'HTTPHandler',
    'TLSHandler',
    'DNSHandler',
    'DNSTCPHandler',
    'DHCPHandler',
    'SSHHandler',
    'FTPHandler',
    'SMTPHandler',
    'POP3Handler',
    'IMAPHandler',
    'NTPHandler',
    'SNMPHandler',
    'FrameDissector',
]
