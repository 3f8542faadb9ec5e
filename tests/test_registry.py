"""Test the protocol handler registry and custom handler registration."""

import pytest

from pcaplens import CaptureEngine
from pcaplens.protocols import (
    BaseProtocolHandler, Layer, ParseResult, ProtocolHandlerRegistry, get_protocol_handlers,
    register_protocol, unregister_protocol,
)
from pcaplens.protocols.registry import get_global_registry

from conftest import build_pcap, eth_ipv4_tcp


class TestRegistry:

    def test_register_and_lookup(self):
        registry = ProtocolHandlerRegistry()

        @register_protocol('demo', Layer.APPLICATION, encapsulates='tcp',
                           default_ports=[7000, 7001], priority=10, registry=registry)
        class DemoHandler(BaseProtocolHandler):
            def parse(self, payload, context):
                return ParseResult(success=True)

        assert DemoHandler.label == "DEMO"
        assert registry.get('demo') is DemoHandler
        assert registry.get('application.demo') is DemoHandler
        assert registry.get_by_port(7001) == [DemoHandler]
        assert registry.get_by_encapsulation('tcp') == [DemoHandler]
        assert registry.list_handlers() == ['application.demo']

    def test_priority_order(self):
        registry = ProtocolHandlerRegistry()

        @register_protocol('low', Layer.APPLICATION, encapsulates='udp', priority=1,
                           registry=registry)
        class Low(BaseProtocolHandler):
            def parse(self, payload, context):
                return ParseResult(success=False)

        @register_protocol('high', Layer.APPLICATION, encapsulates='udp', priority=99,
                           registry=registry)
        class High(BaseProtocolHandler):
            def parse(self, payload, context):
                return ParseResult(success=False)

        assert registry.get_by_encapsulation('udp') == [High, Low]
        assert get_protocol_handlers(encapsulates='udp', registry=registry) == [High, Low]

    def test_duplicate_rejected(self):
        registry = ProtocolHandlerRegistry()

        @register_protocol('dup', Layer.APPLICATION, registry=registry)
        class First(BaseProtocolHandler):
            def parse(self, payload, context):
                return ParseResult(success=False)

        with pytest.raises(ValueError):
            @register_protocol('dup', Layer.APPLICATION, registry=registry)
            class Second(BaseProtocolHandler):
                def parse(self, payload, context):
                    return ParseResult(success=False)

    def test_unregister(self):
        registry = ProtocolHandlerRegistry()

        @register_protocol('gone', Layer.APPLICATION, default_ports=[9], registry=registry)
        class Gone(BaseProtocolHandler):
            def parse(self, payload, context):
                return ParseResult(success=False)

        assert unregister_protocol('gone', registry=registry)
        assert registry.get('gone') is None
        assert registry.get_by_port(9) == []
        assert not unregister_protocol('gone', registry=registry)

    def test_builtin_handlers_registered(self):
        registry = get_global_registry()
        for name in ('ethernet', 'raw_ip', 'arp', 'ipv4', 'ipv6', 'tcp', 'udp', 'icmp',
                     'icmpv6', 'http', 'tls', 'dns', 'dhcp', 'ssh', 'ftp', 'smtp', 'pop3',
                     'imap', 'ntp', 'snmp'):
            assert registry.get(name) is not None, name
        assert registry.get_by_link_type(1)[0].name == 'ethernet'


@pytest.fixture
def echo_handler():
    """A custom application handler registered globally for the duration of a test."""

    @register_protocol('echo', Layer.APPLICATION, encapsulates='tcp', default_ports=[7])
    class EchoHandler(BaseProtocolHandler):
        def parse(self, payload, context):
            context.protocol = "ECHO"
            context.info = f"Echo {len(payload)} bytes"
            return ParseResult(success=True)

    yield EchoHandler
    unregister_protocol('echo')


def test_custom_handler_used_by_engine(echo_handler):
    """Engines created after registration pick the handler up."""
    data = build_pcap([eth_ipv4_tcp(40000, 7, payload=b'ping')])
    result = CaptureEngine().analyze_bytes(data)
    packet = result.packets[0]
    assert packet.protocol_label == "ECHO"
    assert packet.info_summary == "Echo 4 bytes"
    assert result.summary.protocol_counts == {"ECHO": 1}
