"""Test classification of pre-decoded (tshark JSON) layer maps."""

import pytest

from pcaplens import CaptureEngine
from pcaplens.core.layers import LayerMapDecoder, extract_layers
from pcaplens.core.packet import (
    ARPInfo, DNSInfo, EthernetInfo, HTTPInfo, IPInfo, TCPInfo, TLSInfo,
)

from conftest import eth_ipv4_icmp


def tshark_packet(**layers):
    overrides = layers.pop('frame', {})
    frame = {
        "frame.time_epoch": "1700000000.250000000",
        "frame.len": "74",
        "frame.cap_len": "74",
        "frame.protocols": ":".join(["eth", "ethertype"] + list(layers)),
    }
    frame.update(overrides)
    return {"_index": "packets", "_source": {"layers": {"frame": frame, **layers}}}


ETH = {"eth.src": "aa:bb:cc:00:00:01", "eth.dst": "aa:bb:cc:00:00:02", "eth.type": "0x0800"}
IP = {"ip.version": "4", "ip.hdr_len": "20", "ip.len": "60", "ip.id": "0x1c46",
      "ip.flags": "0x4000", "ip.frag_offset": "0", "ip.ttl": "64", "ip.proto": "6",
      "ip.src": "192.168.1.10", "ip.dst": "93.184.216.34"}
TCP = {"tcp.srcport": "51000", "tcp.dstport": "80", "tcp.seq": "1", "tcp.ack": "1",
       "tcp.hdr_len": "20", "tcp.flags": "0x0018", "tcp.window_size": "502"}


@pytest.fixture
def decoder():
    return LayerMapDecoder()


class TestLayerMapDecoder:

    def test_http_request(self, decoder):
        pkt = tshark_packet(eth=ETH, ip=IP, tcp=TCP, http={
            "GET / HTTP/1.1\\r\\n": {"http.request.method": "GET", "http.request.uri": "/",
                                     "http.request.version": "HTTP/1.1"},
            "http.host": "example.com",
        })
        frame = decoder.decode(pkt)
        ctx = frame.context
        assert ctx.protocol == "HTTP"
        assert ctx.info == "GET /"
        assert ctx.source == "192.168.1.10:51000"
        assert ctx.destination == "93.184.216.34:80"
        assert frame.timestamp == pytest.approx(1700000000.25)
        assert frame.captured_length == 74
        http = ctx.find(HTTPInfo)
        assert http.host == "example.com"
        assert ctx.trace == ('Ethernet', 'IPv4', 'TCP', 'HTTP')

    def test_ip_fields_normalised(self, decoder):
        ctx = decoder.decode(tshark_packet(eth=ETH, ip=IP, tcp=TCP)).context
        ip = ctx.find(IPInfo)
        assert ip.flags == 0x2
        assert ip.id == 0x1c46
        tcp = ctx.find(TCPInfo)
        assert tcp.flag_names == ['PSH', 'ACK']
        # Port 80 relabel applies to layer maps too
        assert ctx.protocol == "HTTP"

    def test_fragment_offset_in_bytes(self, decoder):
        ip = dict(IP, **{"ip.frag_offset": "1480"})
        ctx = decoder.decode(tshark_packet(ip=ip)).context
        assert ctx.find(IPInfo).offset == 185

    def test_ipv6_label_names_next_header(self, decoder):
        eth = dict(ETH, **{"eth.type": "0x86dd"})
        ipv6 = {"ipv6.src": "2001:db8::1", "ipv6.dst": "2001:db8::2", "ipv6.nxt": "47",
                "ipv6.hlim": "64", "ipv6.plen": "24"}
        ctx = decoder.decode(tshark_packet(eth=eth, ipv6=ipv6)).context
        assert ctx.protocol == "GRE"
        assert ctx.info == "Protocol GRE (47)"
        assert ctx.source == "2001:db8::1"

    def test_vlan_layer_supplies_inner_ethertype(self, decoder):
        eth = dict(ETH, **{"eth.type": "0x8100"})
        vlan = {"vlan.id": "100", "vlan.etype": "0x0800"}
        ctx = decoder.decode(tshark_packet(eth=eth, vlan=vlan, ip=IP, tcp=TCP)).context
        link = ctx.find(EthernetInfo)
        assert link.type == 0x0800
        assert link.vlan == 100
        assert ctx.protocol == "HTTP"

    def test_tls(self, decoder):
        tcp = dict(TCP, **{"tcp.dstport": "443"})
        pkt = tshark_packet(eth=ETH, ip=IP, tcp=tcp, tls={
            "tls.record": {"tls.record.content_type": "22", "tls.record.version": "0x0303",
                           "tls.record.length": "512"},
        })
        ctx = decoder.decode(pkt).context
        assert ctx.protocol == "TLSv1.2"
        assert ctx.info == "Handshake"
        assert ctx.find(TLSInfo).record_length == 512

    def test_dns_query(self, decoder):
        udp = {"udp.srcport": "40000", "udp.dstport": "53", "udp.length": "40"}
        ip = dict(IP, **{"ip.proto": "17"})
        pkt = tshark_packet(eth=ETH, ip=ip, udp=udp, dns={
            "dns.id": "0x1a2b",
            "Queries": {"example.com: type A, class IN": {
                "dns.qry.name": "example.com", "dns.qry.type": "1"}},
        })
        ctx = decoder.decode(pkt).context
        assert ctx.protocol == "DNS"
        assert ctx.info == "Query A: example.com"
        assert ctx.find(DNSInfo).id == 0x1a2b

    def test_dns_response(self, decoder):
        pkt = tshark_packet(dns={"dns.flags": "0x8183", "dns.flags.response": "1",
                                 "dns.flags.rcode": "3"})
        ctx = decoder.decode(pkt).context
        assert ctx.info == "Response: Name Error"

    def test_arp(self, decoder):
        pkt = tshark_packet(eth=ETH, arp={
            "arp.opcode": "1", "arp.src.hw_mac": "aa:bb:cc:00:00:01",
            "arp.src.proto_ipv4": "192.168.1.1", "arp.dst.hw_mac": "00:00:00:00:00:00",
            "arp.dst.proto_ipv4": "192.168.1.2",
        })
        ctx = decoder.decode(pkt).context
        assert ctx.protocol == "ARP"
        assert ctx.info == "Who has 192.168.1.2? Tell 192.168.1.1"
        assert ctx.find(ARPInfo).sender_mac == "aa:bb:cc:00:00:01"

    def test_dhcp_message_type(self, decoder):
        pkt = tshark_packet(dhcp={"dhcp.type": "1", "dhcp.id": "0x12345678",
                                  "dhcp.option.type_tree": {"dhcp.option.dhcp": "3"}})
        ctx = decoder.decode(pkt).context
        assert ctx.protocol == "DHCP"
        assert ctx.info == "DHCP Request - Transaction ID 0x12345678"

    @pytest.mark.parametrize("layer,fields,label,info", [
        ("ssh", {"ssh.protocol": "SSH-2.0-OpenSSH_9.0"}, "SSH", "SSH SSH-2.0-OpenSSH_9.0"),
        ("ftp", {"ftp.request.command": "RETR"}, "FTP", "Command: RETR"),
        ("smtp", {"smtp.response.code": "250"}, "SMTP", "Response: 250"),
        ("pop", {"pop.response.indicator": "+OK"}, "POP3", "Response: +OK"),
        ("imap", {"imap.request.command": "LOGIN"}, "IMAP", "Command: LOGIN"),
        ("ntp", {"ntp.flags": {"ntp.flags.vn": "4", "ntp.flags.mode": "4"}}, "NTP",
         "NTP Version 4, server"),
        ("snmp", {"snmp.version": "0", "snmp.community": "public"}, "SNMP", "SNMP v1"),
    ])
    def test_text_and_udp_services(self, decoder, layer, fields, label, info):
        ctx = decoder.decode(tshark_packet(**{layer: fields})).context
        assert ctx.protocol == label
        assert ctx.info == info

    def test_application_layer_precedence(self, decoder):
        pkt = tshark_packet(http={"http.request.method": "GET", "http.request.uri": "/a"},
                            tls={"tls.record.version": "0x0303"})
        assert decoder.decode(pkt).context.protocol == "HTTP"

    def test_none_mode_ignores_application_layers(self):
        tcp = dict(TCP, **{"tcp.dstport": "8080"})
        pkt = tshark_packet(eth=ETH, ip=IP, tcp=tcp, http={"http.request.method": "GET"})
        ctx = LayerMapDecoder('none').decode(pkt).context
        assert ctx.protocol == "TCP"

    def test_protocol_chain_fallback(self, decoder):
        pkt = {"_source": {"layers": {"frame": {"frame.protocols": "eth:ethertype:lldp"}}}}
        frame = decoder.decode(pkt)
        assert frame.context.protocol == "LLDP"
        assert frame.context.info == "LLDP Packet"
        assert frame.timestamp is None

    def test_unknown_without_chain(self, decoder):
        frame = decoder.decode({"_source": {"layers": {"frame": {}}}})
        assert frame.context.protocol == "Unknown"

    def test_raw_bytes(self, decoder):
        raw = eth_ipv4_icmp(8)
        pkt = {"_source": {"layers": {"frame_raw": [raw.hex(), 0, len(raw), 0, 1],
                                      "frame": {"frame.time_epoch": "1.5"}}}}
        frame = decoder.decode(pkt)
        assert frame.data == raw
        assert frame.captured_length == len(raw)

    def test_flat_packet(self, decoder):
        frame = decoder.decode({"source": "10.0.0.1", "destination": "10.0.0.2",
                                "protocol": "QUIC", "length": 1200, "info": "Initial",
                                "timestamp": 3.0})
        assert frame.context.protocol == "QUIC"
        assert frame.context.info == "Initial"
        assert frame.context.source == "10.0.0.1"
        assert frame.captured_length == 1200
        assert frame.timestamp == 3.0

    def test_extract_layers(self):
        assert extract_layers({"_source": {"layers": {"ip": {}}}}) == {"ip": {}}
        assert extract_layers({"layers": {"tcp": {}}}) == {"tcp": {}}
        assert extract_layers({"frame": {}, "ip": {}}) == {"frame": {}, "ip": {}}
        assert extract_layers({"source": "x"}) is None

    def test_invalid_mode(self):
        with pytest.raises(ValueError):
            LayerMapDecoder('bogus')


class TestAnalyzeLayerMaps:

    def test_result(self):
        packets = [
            tshark_packet(eth=ETH, ip=IP, tcp=TCP, frame={"frame.time_epoch": "100.0"}),
            tshark_packet(eth=ETH, ip=IP, tcp=TCP, frame={"frame.time_epoch": "102.0"}),
        ]
        result = CaptureEngine().analyze_layer_maps(packets)
        assert result.summary.total_packets == 2
        assert result.summary.capture_duration == pytest.approx(2.0)
        assert result.summary.conversation_count == 1
        assert result.summary.tcp_packets == 2
        assert result.format is None
        assert [p.relative_timestamp for p in result.packets] == [0.0, 2.0]

    def test_missing_packet_keeps_numbering(self):
        packets = [tshark_packet(eth=ETH, ip=IP, tcp=TCP), None, tshark_packet(eth=ETH, ip=IP, tcp=TCP)]
        result = CaptureEngine().analyze_layer_maps(packets)
        assert [p.sequence_number for p in result.packets] == [1, 2, 3]
        missing = result.packets[1]
        assert missing.info_summary.startswith("Missing Packet Data")
        assert not missing.timestamp_available
        assert "packet 2: missing packet data" in result.errors
        assert result.summary.protocol_counts["Unknown"] == 1

    def test_decode_error_degrades_record(self, monkeypatch):
        def broken(self, packet):
            raise KeyError("ip.src")

        monkeypatch.setattr(LayerMapDecoder, 'decode', broken)
        result = CaptureEngine().analyze_layer_maps([{"frame": {}}])
        assert result.summary.total_packets == 1
        assert result.packets[0].info_summary.startswith("Malformed layer map")
        assert result.errors

    def test_progress_and_limits(self):
        packets = [tshark_packet(eth=ETH, ip=IP, tcp=TCP) for _ in range(4)]
        seen = []
        result = CaptureEngine(max_packets=3, progress_interval=1).analyze_layer_maps(
            packets, progress=seen.append)
        assert result.summary.total_packets == 3
        assert result.packet_limit_reached
        assert seen[0] == 0.0
        assert seen[-1] == 1.0
        assert seen == sorted(seen)
