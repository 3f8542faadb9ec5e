"""Configuration, fixtures and packet/capture builders for pytest tests."""

from __future__ import annotations

import os
import socket
import struct
import sys

import pytest

# Add parent directory to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))


# ── Helpers: raw packet builders ──

def mac_bytes(mac: str) -> bytes:
    return bytes(int(x, 16) for x in mac.split(':'))


def ip4_bytes(ip: str) -> bytes:
    return socket.inet_pton(socket.AF_INET, ip)


def ip6_bytes(ip: str) -> bytes:
    return socket.inet_pton(socket.AF_INET6, ip)


def build_eth(payload: bytes = b'', ethertype: int = 0x0800,
              src: str = "aa:bb:cc:00:00:01", dst: str = "aa:bb:cc:00:00:02",
              vlan: int | None = None) -> bytes:
    head = mac_bytes(dst) + mac_bytes(src)
    if vlan is not None:
        head += struct.pack('>HH', 0x8100, vlan & 0x0FFF)
    return head + struct.pack('>H', ethertype) + payload


def build_ipv4(payload: bytes = b'', src: str = "10.0.0.1", dst: str = "10.0.0.2",
               proto: int = 6, ttl: int = 64, ident: int = 0x1234,
               flags_offset: int = 0x4000) -> bytes:
    return struct.pack('>BBHHHBBH4s4s',
                       0x45, 0, 20 + len(payload), ident, flags_offset,
                       ttl, proto, 0,
                       ip4_bytes(src), ip4_bytes(dst)) + payload


def build_ipv6(payload: bytes = b'', src: str = "2001:db8::1", dst: str = "2001:db8::2",
               next_header: int = 6, hop_limit: int = 64, flow_label: int = 0) -> bytes:
    return struct.pack('>IHBB16s16s',
                       0x60000000 | flow_label, len(payload), next_header, hop_limit,
                       ip6_bytes(src), ip6_bytes(dst)) + payload


def build_tcp(sport: int = 40000, dport: int = 80, flags: int = 0x18, seq: int = 1,
              ack: int = 0, win: int = 8192, payload: bytes = b'') -> bytes:
    return struct.pack('>HHIIBBHHH',
                       sport, dport, seq, ack,
                       0x50, flags, win, 0, 0) + payload


def build_udp(sport: int = 40000, dport: int = 53, payload: bytes = b'') -> bytes:
    return struct.pack('>HHHH', sport, dport, 8 + len(payload), 0) + payload


def build_icmp(icmp_type: int = 8, code: int = 0, ident: int = 0x1234, seq: int = 1,
               payload: bytes = b'') -> bytes:
    return struct.pack('>BBHHH', icmp_type, code, 0, ident, seq) + payload


def build_icmp6(icmp_type: int = 128, code: int = 0, body: bytes = b'\x00' * 4) -> bytes:
    return struct.pack('>BBH', icmp_type, code, 0) + body


def build_arp(opcode: int = 1, sender_mac: str = "aa:bb:cc:00:00:01",
              sender_ip: str = "192.168.1.1", target_mac: str = "00:00:00:00:00:00",
              target_ip: str = "192.168.1.2") -> bytes:
    arp = struct.pack('>HHBBH', 1, 0x0800, 6, 4, opcode)
    arp += mac_bytes(sender_mac) + ip4_bytes(sender_ip)
    arp += mac_bytes(target_mac) + ip4_bytes(target_ip)
    return arp


def eth_arp_request(sender_ip: str = "192.168.1.1", target_ip: str = "192.168.1.2") -> bytes:
    return build_eth(build_arp(1, sender_ip=sender_ip, target_ip=target_ip),
                     ethertype=0x0806, dst="ff:ff:ff:ff:ff:ff")


def eth_ipv4_tcp(sport: int = 40000, dport: int = 80, flags: int = 0x18, payload: bytes = b'',
                 src: str = "10.0.0.1", dst: str = "10.0.0.2") -> bytes:
    return build_eth(build_ipv4(build_tcp(sport, dport, flags, payload=payload),
                                src=src, dst=dst, proto=6))


def eth_ipv4_udp(sport: int = 40000, dport: int = 53, payload: bytes = b'',
                 src: str = "10.0.0.1", dst: str = "10.0.0.2") -> bytes:
    return build_eth(build_ipv4(build_udp(sport, dport, payload), src=src, dst=dst, proto=17))


def eth_ipv4_icmp(icmp_type: int = 8, src: str = "10.0.0.1", dst: str = "10.0.0.2") -> bytes:
    """42-byte frame: Ethernet (14) + IPv4 (20) + ICMP echo (8)."""
    return build_eth(build_ipv4(build_icmp(icmp_type), src=src, dst=dst, proto=1))


def build_dns_query(name: str = "example.com", qtype: int = 1, ident: int = 0x1a2b) -> bytes:
    labels = b''.join(bytes([len(part)]) + part.encode() for part in name.split('.')) + b'\x00'
    return struct.pack('>HHHHHH', ident, 0x0100, 1, 0, 0, 0) + labels + struct.pack('>HH', qtype, 1)


# ── Helpers: container builders ──

def build_pcap(frames, endian: str = '<', link_type: int = 1, snaplen: int = 65535,
               start: float = 1_700_000_000.0, step: float = 0.5) -> bytes:
    """
    Classic PCAP buffer.

    ``frames`` holds frame bytes or ``(timestamp, frame)`` tuples; bare frames
    are spaced ``step`` seconds apart from ``start``.
    """
    out = struct.pack(endian + 'IHHiIII', 0xA1B2C3D4, 2, 4, 0, 0, snaplen, link_type)
    for i, item in enumerate(frames):
        if isinstance(item, tuple):
            ts, frame = item
        else:
            ts, frame = start + i * step, item
        sec = int(ts)
        usec = int(round((ts - sec) * 1_000_000))
        out += struct.pack(endian + 'IIII', sec, usec, len(frame), len(frame)) + frame
    return out


def pcap_record(frame: bytes, ts_sec: int = 1_700_000_000, ts_usec: int = 0,
                caplen: int | None = None, origlen: int | None = None, endian: str = '<') -> bytes:
    caplen = len(frame) if caplen is None else caplen
    origlen = len(frame) if origlen is None else origlen
    return struct.pack(endian + 'IIII', ts_sec, ts_usec, caplen, origlen) + frame


def _pad4(data: bytes) -> bytes:
    return data + b'\x00' * (-len(data) % 4)


def ng_block(block_type: int, body: bytes, endian: str = '<') -> bytes:
    """PCAP-NG block; type and length are always little-endian, ``endian`` is unused here."""
    body = _pad4(body)
    total = 12 + len(body)
    return struct.pack('<II', block_type, total) + body + struct.pack('<I', total)


def ng_option(code: int, value: bytes, endian: str = '<') -> bytes:
    return struct.pack(endian + 'HH', code, len(value)) + _pad4(value)


def ng_shb(endian: str = '<', magic: int | None = None) -> bytes:
    magic = 0x1A2B3C4D if magic is None else magic
    body = struct.pack(endian + 'IHHq', magic, 1, 0, -1)
    return ng_block(0x0A0D0D0A, body, endian)


def ng_idb(link_type: int = 1, snaplen: int = 65535, tsresol: int | None = None,
           name: str | None = None, endian: str = '<') -> bytes:
    body = struct.pack(endian + 'HHI', link_type, 0, snaplen)
    options = b''
    if name is not None:
        options += ng_option(2, name.encode(), endian)
    if tsresol is not None:
        options += ng_option(9, bytes([tsresol]), endian)
    if options:
        options += struct.pack(endian + 'HH', 0, 0)
    return ng_block(0x00000001, body + options, endian)


def ng_epb(data: bytes, interface_id: int = 0, units: int = 1_700_000_000_000_000,
           caplen: int | None = None, origlen: int | None = None, endian: str = '<') -> bytes:
    caplen = len(data) if caplen is None else caplen
    origlen = len(data) if origlen is None else origlen
    body = struct.pack(endian + 'IIIII', interface_id, units >> 32, units & 0xFFFFFFFF,
                       caplen, origlen) + data
    return ng_block(0x00000006, body, endian)


def ng_opb(data: bytes, interface_id: int = 0, units: int = 1_700_000_000_000_000,
           endian: str = '<') -> bytes:
    body = struct.pack(endian + 'HHIIII', interface_id, 0, units >> 32, units & 0xFFFFFFFF,
                       len(data), len(data)) + data
    return ng_block(0x00000002, body, endian)


def ng_spb(data: bytes, endian: str = '<') -> bytes:
    return ng_block(0x00000003, struct.pack(endian + 'I', len(data)) + data, endian)


def build_pcapng(*frames: bytes, link_type: int = 1, endian: str = '<',
                 start_us: int = 1_700_000_000_000_000, step_us: int = 1000) -> bytes:
    """SHB + one IDB + one EPB per frame, microsecond timestamps."""
    out = ng_shb(endian) + ng_idb(link_type, endian=endian)
    for i, frame in enumerate(frames):
        out += ng_epb(frame, units=start_us + i * step_us, endian=endian)
    return out


# ── Fixtures ──

@pytest.fixture
def engine():
    from pcaplens import CaptureEngine
    return CaptureEngine()


@pytest.fixture
def icmp_echo_pcap():
    """Little-endian classic capture with an ICMP echo request/reply pair."""
    return build_pcap([
        eth_ipv4_icmp(8, src="10.0.0.1", dst="10.0.0.2"),
        eth_ipv4_icmp(0, src="10.0.0.2", dst="10.0.0.1"),
    ])


@pytest.fixture
def tcp_pcap():
    """Five Ethernet/IPv4/TCP records on a non well-known port pair."""
    return build_pcap([eth_ipv4_tcp(40000 + i, 9000, flags=0x10) for i in range(5)])


@pytest.fixture
def arp_pcapng():
    return build_pcapng(eth_arp_request("192.168.1.1", "192.168.1.2"))


@pytest.fixture
def pcap_file(tmp_path, icmp_echo_pcap):
    path = tmp_path / "icmp.pcap"
    path.write_bytes(icmp_echo_pcap)
    return path
