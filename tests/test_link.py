"""Test link layer decoding: Ethernet, 802.1Q, raw IP link types and ARP."""

import struct

import pytest

from pcaplens.core.packet import ARPInfo, EthernetInfo, IPInfo, IP6Info
from pcaplens.protocols import FrameDissector
from pcaplens.protocols.link import describe_arp

from conftest import (
    build_arp, build_eth, build_ipv4, build_ipv6, build_icmp, eth_arp_request, eth_ipv4_icmp,
)


@pytest.fixture
def dissector():
    return FrameDissector()


class TestEthernet:

    def test_ethernet_layer(self, dissector):
        ctx = dissector.dissect(eth_ipv4_icmp(8), 1)
        eth = ctx.find(EthernetInfo)
        assert eth.src == "aa:bb:cc:00:00:01"
        assert eth.dst == "aa:bb:cc:00:00:02"
        assert eth.type == 0x0800
        assert eth.vlan is None
        assert ctx.trace[:2] == ('Ethernet', 'IPv4')

    def test_vlan_tag_unwrapped(self, dissector):
        frame = build_eth(build_ipv4(build_icmp(8), proto=1), ethertype=0x0800, vlan=100)
        ctx = dissector.dissect(frame, 1)
        eth = ctx.find(EthernetInfo)
        assert eth.vlan == 100
        assert eth.type == 0x0800
        assert ctx.protocol == "ICMP"
        assert ctx.source == "10.0.0.1"

    def test_stacked_vlan_tags(self, dissector):
        """802.1ad outer tag over 802.1Q: the outer id is kept, dispatch uses the inner type."""
        frame = build_eth(build_ipv4(build_icmp(8), proto=1), ethertype=0x0800, vlan=100)
        frame = frame[:12] + struct.pack('>HH', 0x88A8, 200) + frame[12:]
        ctx = dissector.dissect(frame, 1)
        eth = ctx.find(EthernetInfo)
        assert eth.vlan == 200
        assert eth.type == 0x0800
        assert ctx.protocol == "ICMP"

    def test_vlan_tagged_arp(self, dissector):
        frame = eth_arp_request()
        frame = frame[:12] + struct.pack('>HH', 0x8100, 7) + frame[12:]
        ctx = dissector.dissect(frame, 1)
        assert ctx.find(EthernetInfo).vlan == 7
        assert ctx.protocol == "ARP"

    def test_unknown_ethertype(self, dissector):
        ctx = dissector.dissect(build_eth(b'\x00' * 20, ethertype=0x88cc), 1)
        assert ctx.protocol == "EtherType 0x88cc"
        assert "EtherType 0x88cc" in ctx.info
        assert ctx.source == "Unknown"
        assert ctx.destination == "Unknown"

    def test_truncated_frame(self, dissector):
        ctx = dissector.dissect(b'\x00' * 10, 1)
        assert ctx.info == "Truncated Ethernet frame (10 bytes)"
        assert ctx.errors
        assert ctx.layers == []


class TestRawIP:

    def test_dlt_raw_ipv4(self, dissector):
        ctx = dissector.dissect(build_ipv4(build_icmp(8), proto=1), 101)
        assert isinstance(ctx.layers[0], IPInfo)
        assert ctx.protocol == "ICMP"

    def test_dlt_raw_ipv6(self, dissector):
        ctx = dissector.dissect(build_ipv6(b'', next_header=59), 101)
        assert isinstance(ctx.layers[0], IP6Info)

    def test_dlt_ipv4(self, dissector):
        ctx = dissector.dissect(build_ipv4(build_icmp(0), proto=1), 228)
        assert ctx.info == "Echo Reply"

    def test_bad_version(self, dissector):
        ctx = dissector.dissect(b'\x70' + b'\x00' * 30, 101)
        assert ctx.info == "Raw frame with IP version 7"

    def test_unsupported_link_type(self, dissector):
        ctx = dissector.dissect(b'\x00' * 40, 105)
        assert ctx.protocol == "Link-type 105"
        assert ctx.info == "Unsupported link-layer type 105; frame not decoded"

    def test_undefined_interface(self, dissector):
        ctx = dissector.dissect(b'\x00' * 40, None)
        assert ctx.protocol == "Unknown"
        assert "undefined capture interface" in ctx.info


class TestARP:

    def test_request(self, dissector):
        ctx = dissector.dissect(eth_arp_request("192.168.1.1", "192.168.1.2"), 1)
        assert ctx.protocol == "ARP"
        assert ctx.info == "Who has 192.168.1.2? Tell 192.168.1.1"
        assert ctx.source == "192.168.1.1"
        assert ctx.destination == "192.168.1.2"
        arp = ctx.find(ARPInfo)
        assert arp.operation == "Request"
        assert arp.sender_mac == "aa:bb:cc:00:00:01"

    def test_reply(self, dissector):
        frame = build_eth(build_arp(2, sender_mac="aa:bb:cc:dd:ee:ff", sender_ip="192.168.1.2",
                                    target_ip="192.168.1.1"), ethertype=0x0806)
        ctx = dissector.dissect(frame, 1)
        assert ctx.info == "192.168.1.2 is at aa:bb:cc:dd:ee:ff"

    def test_truncated(self, dissector):
        ctx = dissector.dissect(build_eth(build_arp()[:20], ethertype=0x0806), 1)
        assert ctx.protocol == "ARP"
        assert ctx.info == "Truncated ARP packet (20 bytes)"

    def test_unknown_opcode(self):
        assert describe_arp(ARPInfo(opcode=9)) == "ARP opcode 9"
