"""Test exporter functionality."""

import json

import pytest

from pcaplens import CaptureEngine
from pcaplens.exporters import (
    CaptureExporter, packet_row, table_rows, to_csv, to_dataframe, to_dict, to_json,
)

from conftest import build_pcap, eth_arp_request, eth_ipv4_tcp, ng_idb, ng_shb, ng_spb


@pytest.fixture
def result(icmp_echo_pcap):
    return CaptureEngine().analyze_bytes(icmp_echo_pcap)


def test_to_dict(result):
    """Test to_dict exporter."""
    data = to_dict(result)
    assert set(data) == {'format', 'summary', 'protocols', 'ip_addresses', 'conversations',
                         'truncated', 'packet_limit_reached', 'errors', 'error_count',
                         'packets'}
    assert data['format'] == 'pcap-le'
    assert data['summary']['total_packets'] == 2
    assert data['protocols'] == ['ICMP']
    assert data['ip_addresses'] == ['10.0.0.1', '10.0.0.2']
    assert data['conversations'][0]['packets'] == 2
    assert len(data['packets']) == 2
    assert 'details' not in data['packets'][0]


def test_to_dict_options(result):
    """Test packet inclusion and per-layer details."""
    assert 'packets' not in to_dict(result, include_packets=False)
    detailed = to_dict(result, include_details=True)
    assert detailed['packets'][0]['details']['IPv4']['src'] == '10.0.0.1'
    assert detailed['packets'][0]['hex']


def test_to_json(result, tmp_path):
    """Test to_json returns and writes the same document."""
    text = to_json(result)
    assert json.loads(text)['summary']['total_packets'] == 2

    path = tmp_path / 'capture.json'
    written = to_json(result, path, include_packets=False)
    loaded = json.loads(path.read_text(encoding='utf-8'))
    assert loaded == json.loads(written)
    assert 'packets' not in loaded


def test_packet_row(result):
    row = packet_row(result.packets[0])
    assert row['number'] == 1
    assert row['protocol'] == 'ICMP'
    assert row['layers'] == 'Ethernet:IPv4:ICMP'
    assert row['length'] == 42
    assert row['relative_time'] == 0.0


def test_table_rows(result):
    assert len(table_rows(result, 'packets')) == 2
    conversations = table_rows(result, 'conversations')
    assert conversations[0]['endpoint_a'] == '10.0.0.1'
    assert table_rows(result, 'protocols') == [{'protocol': 'ICMP', 'count': 2}]
    with pytest.raises(ValueError):
        table_rows(result, 'flows')


def test_missing_timestamp_exports_none():
    data = ng_shb() + ng_idb() + ng_spb(eth_arp_request())
    result = CaptureEngine().analyze_bytes(data)
    assert packet_row(result.packets[0])['timestamp'] is None
    assert json.loads(to_json(result))['summary']['start_time'] is None


class TestCaptureExporter:

    def test_invalid_table(self):
        with pytest.raises(ValueError):
            CaptureExporter(table='flows')

    def test_save_json(self, result, tmp_path):
        path = tmp_path / 'out.json'
        CaptureExporter(include_packets=False).save(result, path)
        assert json.loads(path.read_text(encoding='utf-8'))['summary']['total_packets'] == 2

    def test_save_unknown_extension(self, result, tmp_path):
        with pytest.raises(ValueError):
            CaptureExporter().save(result, tmp_path / 'out.txt')

    def test_to_dict(self, result):
        assert 'packets' not in CaptureExporter(include_packets=False).to_dict(result)


class TestPandasExport:

    @pytest.fixture(autouse=True)
    def pandas(self):
        return pytest.importorskip("pandas")

    def test_to_dataframe(self, result):
        df = to_dataframe(result)
        assert len(df) == 2
        assert list(df['protocol']) == ['ICMP', 'ICMP']
        assert 'layers' in df.columns

    def test_conversation_dataframe(self):
        frames = [eth_ipv4_tcp(40000, 9000), eth_ipv4_tcp(40001, 9000)]
        result = CaptureEngine().analyze_bytes(build_pcap(frames))
        df = to_dataframe(result, 'conversations')
        assert len(df) == 2
        assert set(df['packets']) == {1}

    def test_to_csv(self, result, tmp_path, pandas):
        path = tmp_path / 'packets.csv'
        to_csv(result, path)
        df = pandas.read_csv(path)
        assert len(df) == 2
        assert list(df['number']) == [1, 2]

    def test_save_csv(self, result, tmp_path, pandas):
        path = tmp_path / 'protocols.csv'
        CaptureExporter(table='protocols').save(result, path)
        df = pandas.read_csv(path)
        assert df.loc[0, 'protocol'] == 'ICMP'
        assert df.loc[0, 'count'] == 2
