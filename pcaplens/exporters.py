"""
Export functionality for capture results.

Provides methods to export a CaptureResult to dict, JSON, CSV and pandas
DataFrame. DataFrame and CSV export need the optional ``pandas`` dependency
(``pip install pcaplens[export]``).

Examples:
    Export packets to a DataFrame:
        >>> from pcaplens import CaptureEngine, to_dataframe
        >>> result = CaptureEngine().analyze_file('traffic.pcap')
        >>> df = to_dataframe(result)
        >>> print(df[['source', 'destination', 'protocol']])

    Export the conversation table to CSV:
        >>> from pcaplens import to_csv
        >>> to_csv(result, 'conversations.csv', table='conversations')

    Export everything to JSON:
        >>> from pcaplens import to_json
        >>> to_json(result, 'capture.json')
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from pcaplens.core.analyzer import CaptureResult
    from pcaplens.core.packet import PacketRecord

TABLES = ('packets', 'conversations', 'protocols')


def packet_row(packet: PacketRecord) -> dict[str, Any]:
    """Flat row for one packet; the layer trace is joined with ``:``."""
    return {
        'number': packet.sequence_number,
        'timestamp': packet.capture_timestamp if packet.timestamp_available else None,
        'relative_time': packet.relative_timestamp,
        'source': packet.source_endpoint,
        'destination': packet.destination_endpoint,
        'protocol': packet.protocol_label,
        'length': packet.captured_length,
        'original_length': packet.original_length,
        'info': packet.info_summary,
        'layers': ":".join(packet.layer_trace),
    }


def table_rows(result: CaptureResult, table: str = 'packets') -> list[dict[str, Any]]:
    """
    Rows of one result table.

    Args:
        result: Analysis result
        table: ``"packets"``, ``"conversations"`` or ``"protocols"``

    Raises:
        ValueError: On an unknown table name
    """
    if table == 'packets':
        return [packet_row(p) for p in result.packets]
    if table == 'conversations':
        return [c.to_dict() for c in result.conversations]
    if table == 'protocols':
        return [{'protocol': name, 'count': count}
                for name, count in result.summary.protocol_distribution]
    raise ValueError(f"Unknown table {table!r}, must be one of: {', '.join(TABLES)}")


def to_dict(result: CaptureResult, include_packets: bool = True,
            include_details: bool = False) -> dict[str, Any]:
    """
    Convert a result to a JSON-compatible dictionary.

    Args:
        result: Analysis result
        include_packets: Include the retained packet list (default: True)
        include_details: Include per-layer details and hex preview of each
            packet (default: False)

    Examples:
        >>> data = to_dict(result, include_packets=False)
        >>> data['summary']['total_packets']
        42
    """
    data = {
        'format': result.format.value if result.format is not None else None,
        'summary': result.summary.to_dict(),
        'protocols': sorted(result.protocols),
        'ip_addresses': sorted(result.ip_addresses),
        'conversations': [c.to_dict() for c in result.conversations],
        'truncated': result.truncated,
        'packet_limit_reached': result.packet_limit_reached,
        'errors': list(result.errors),
        'error_count': result.error_count,
    }
    if include_packets:
        if include_details:
            data['packets'] = [p.to_dict() for p in result.packets]
        else:
            data['packets'] = [packet_row(p) for p in result.packets]
    return data


def to_json(result: CaptureResult, path: str | Path | None = None,
            include_packets: bool = True, include_details: bool = False,
            indent: int = 2) -> str:
    """
    Serialize a result to JSON.

    Args:
        result: Analysis result
        path: Output file; when None only the string is returned
        include_packets: Include the retained packet list (default: True)
        include_details: Include per-layer details (default: False)
        indent: JSON indentation level (default: 2)

    Returns:
        The JSON document
    """
    text = json.dumps(to_dict(result, include_packets, include_details),
                      indent=indent, default=str)
    if path is not None:
        with open(Path(path), 'w', encoding='utf-8') as f:
            f.write(text)
    return text


def to_dataframe(result: CaptureResult, table: str = 'packets') -> object:
    """
    Convert one result table to a pandas DataFrame.

    Raises:
        ImportError: If pandas is not installed
    """
    try:
        import pandas as pd
    except ImportError:
        raise ImportError("pandas is required for DataFrame export. Install with: pip install pandas")

    return pd.DataFrame(table_rows(result, table))


def to_csv(result: CaptureResult, path: str | Path, table: str = 'packets') -> None:
    """
    Export one result table to a CSV file.

    Raises:
        ImportError: If pandas is not installed
    """
    df = to_dataframe(result, table)
    df.to_csv(Path(path), index=False)


class CaptureExporter:
    """
    Helper class for exporting results with fixed settings.

    Examples:
        >>> exporter = CaptureExporter(include_details=True)
        >>> exporter.save(result, 'capture.json')
        >>> exporter.save(result, 'packets.csv')
    """

    def __init__(self, include_packets: bool = True, include_details: bool = False,
                 table: str = 'packets'):
        if table not in TABLES:
            raise ValueError(f"Unknown table {table!r}, must be one of: {', '.join(TABLES)}")
        self.include_packets = include_packets
        self.include_details = include_details
        self.table = table

    def to_dict(self, result: CaptureResult) -> dict[str, Any]:
        return to_dict(result, self.include_packets, self.include_details)

    def to_json(self, result: CaptureResult, path: str | Path, indent: int = 2) -> None:
        to_json(result, path, self.include_packets, self.include_details, indent)

    def to_dataframe(self, result: CaptureResult) -> object:
        return to_dataframe(result, self.table)

    def to_csv(self, result: CaptureResult, path: str | Path) -> None:
        to_csv(result, path, self.table)

    def save(self, result: CaptureResult, path: str | Path) -> None:
        """
        Save to a file, choosing the format from its extension.

        Raises:
            ValueError: If the extension is neither ``.json`` nor ``.csv``
        """
        path = Path(path)
        suffix = path.suffix.lower()

        if suffix == '.json':
            self.to_json(result, path)
        elif suffix == '.csv':
            self.to_csv(result, path)
        else:
            raise ValueError(f"Unsupported export format: {suffix or path.name}")


__all__ = [
    'to_dict',
    'to_json',
    'to_dataframe',
    'to_csv',
    'table_rows',
    'packet_row',
    'CaptureExporter',
]
