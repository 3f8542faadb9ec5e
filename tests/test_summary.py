"""Test capture-wide aggregation: size statistics, histogram and counters."""

import pytest

from pcaplens.core.packet import ICMPInfo, IPInfo, PacketRecord, TCPInfo, UDPInfo
from pcaplens.features import (
    SummaryAccumulator, format_duration, size_statistics, time_series_histogram,
)


def make_record(seq, ts, length=60, src='10.0.0.1:1000', dst='10.0.0.2:80',
                label='TCP', layers=(TCPInfo(),), timestamp_available=True):
    return PacketRecord(
        sequence_number=seq,
        capture_timestamp=ts,
        captured_length=length,
        original_length=length,
        source_endpoint=src,
        destination_endpoint=dst,
        protocol_label=label,
        layers=(IPInfo(),) + tuple(layers),
        timestamp_available=timestamp_available,
    )


class TestHelpers:

    def test_format_duration(self):
        assert format_duration(0) == "00:00:00.000"
        assert format_duration(3723.5) == "01:02:03.500"
        assert format_duration(7200) == "02:00:00.000"
        assert format_duration(-1) == "00:00:00.000"

    def test_size_statistics_upper_median(self):
        stats = size_statistics([60, 100, 40, 80])
        assert stats['average'] == pytest.approx(70.0)
        assert stats['median'] == 80
        assert stats['min'] == 40
        assert stats['max'] == 100

    def test_size_statistics_odd(self):
        assert size_statistics([5, 1, 3])['median'] == 3

    def test_size_statistics_empty(self):
        assert size_statistics([]) == {'average': 0.0, 'median': 0, 'min': 0, 'max': 0}

    def test_histogram(self):
        counts = time_series_histogram([0.0, 0.5, 1.0, 1.5, 2.0], 2.0, 20)
        assert len(counts) == 20
        assert sum(counts) == 5
        assert counts[0] == 1
        assert counts[5] == 1
        assert counts[10] == 1
        assert counts[15] == 1
        # The last packet lands in the last bucket, not past it
        assert counts[19] == 1

    def test_histogram_zero_duration(self):
        assert time_series_histogram([0.0, 0.0, 0.0], 0.0, 10) == [3] + [0] * 9

    def test_histogram_empty(self):
        assert time_series_histogram([], 5.0, 10) == [0] * 10


class TestSummaryAccumulator:

    def test_bucket_range_checked(self):
        with pytest.raises(ValueError):
            SummaryAccumulator(9)
        with pytest.raises(ValueError):
            SummaryAccumulator(21)

    def test_counts_and_invariant(self):
        acc = SummaryAccumulator()
        acc.add(make_record(1, 10.0, 60))
        acc.add(make_record(2, 11.0, 100, src='10.0.0.2:80', dst='10.0.0.1:1000', label='HTTP'))
        acc.add(make_record(3, 12.0, 80, src='10.0.0.3:53', dst='10.0.0.1:40000',
                            label='DNS', layers=(UDPInfo(),)))
        acc.add(make_record(4, 14.0, 42, src='10.0.0.1', dst='10.0.0.3',
                            label='ICMP', layers=(ICMPInfo(),)))
        summary = acc.build(container_format='pcap-le')

        assert summary.total_packets == 4
        assert sum(summary.protocol_counts.values()) == summary.total_packets
        assert summary.protocol_counts == {'TCP': 1, 'HTTP': 1, 'DNS': 1, 'ICMP': 1}
        assert summary.unique_ip_count == 3
        assert summary.conversation_count == 3
        assert summary.tcp_packets == 2
        assert summary.udp_packets == 1
        assert summary.icmp_packets == 1
        assert summary.other_packets == 0
        assert summary.capture_duration == pytest.approx(4.0)
        assert summary.packets_per_second == pytest.approx(1.0)
        assert summary.start_time == 10.0
        assert summary.end_time == 14.0
        assert summary.median_packet_size == 80
        assert summary.min_packet_size == 42
        assert summary.max_packet_size == 100
        assert summary.container_format == 'pcap-le'

    def test_transport_counted_by_layer_not_label(self):
        acc = SummaryAccumulator()
        acc.add(make_record(1, 1.0, label='HTTPS'))
        acc.add(make_record(2, 1.0, label='DNS', layers=(UDPInfo(),)))
        acc.add(make_record(3, 1.0, label='ARP', layers=()))
        summary = acc.build()
        assert summary.tcp_packets == 1
        assert summary.udp_packets == 1
        assert summary.other_packets == 1

    def test_distribution_sorted_by_count(self):
        acc = SummaryAccumulator()
        for i, label in enumerate(['UDP', 'TCP', 'TCP', 'DNS', 'TCP', 'DNS']):
            acc.add(make_record(i + 1, float(i), label=label))
        summary = acc.build()
        assert summary.protocol_distribution == [('TCP', 3), ('DNS', 2), ('UDP', 1)]

    def test_zero_duration_rate(self):
        acc = SummaryAccumulator(10)
        acc.add(make_record(1, 5.0))
        acc.add(make_record(2, 5.0))
        summary = acc.build()
        assert summary.capture_duration == 0.0
        assert summary.packets_per_second == pytest.approx(2000.0)
        assert [b.count for b in summary.time_series] == [2] + [0] * 9

    def test_bucket_labels(self):
        acc = SummaryAccumulator(20)
        acc.add(make_record(1, 0.0))
        summary = acc.build()
        labels = [b.label for b in summary.time_series]
        assert labels[0] == "0%"
        assert labels[1] == "5%"
        assert labels[19] == "95%"
        assert [b.index for b in summary.time_series] == list(range(20))

    def test_missing_timestamps(self):
        acc = SummaryAccumulator(10)
        acc.add(make_record(1, 0.0, timestamp_available=False))
        acc.add(make_record(2, 10.0))
        acc.add(make_record(3, 20.0))
        summary = acc.build()
        assert summary.start_time == 10.0
        assert summary.capture_duration == pytest.approx(10.0)
        counts = [b.count for b in summary.time_series]
        # Packet without a timestamp counts at relative time 0
        assert counts[0] == 2
        assert counts[9] == 1
        assert acc.relative_time(None) == 0.0
        assert acc.relative_time(15.0) == pytest.approx(5.0)

    def test_unknown_endpoints_not_counted(self):
        acc = SummaryAccumulator()
        acc.add(make_record(1, 1.0, src='Unknown', dst='Unknown', label='LLC', layers=()))
        summary = acc.build()
        assert summary.unique_ip_count == 0
        assert summary.conversation_count == 0

    def test_empty(self):
        summary = SummaryAccumulator().build()
        assert summary.total_packets == 0
        assert summary.capture_duration == 0.0
        assert summary.packets_per_second == 0.0
        assert summary.start_time is None
        assert len(summary.time_series) == 20
        assert summary.capture_duration_text == "00:00:00.000"

    def test_to_dict(self):
        acc = SummaryAccumulator(10)
        acc.add(make_record(1, 1.0, 61))
        acc.add(make_record(2, 2.0, 60, label='HTTP'))
        data = acc.build(container_format='pcapng', interfaces=[{'index': 0}],
                         ignored_blocks=2).to_dict()
        assert data['total_packets'] == 2
        assert data['ip_addresses'] == 2
        assert data['avg_packet_size'] == 60
        assert data['format'] == 'pcapng'
        assert data['interfaces'] == [{'index': 0}]
        assert data['ignored_blocks'] == 2
        assert data['protocol_distribution'] == [{'name': 'TCP', 'value': 1},
                                                 {'name': 'HTTP', 'value': 1}]
        assert data['time_series'][0] == {'time': '0%', 'value': 1}
        assert data['capture_duration_text'] == "00:00:01.000"
