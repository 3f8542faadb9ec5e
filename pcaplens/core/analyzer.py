"""
CaptureEngine - entry point for capture analysis.

Runs the single parse pass: container detection, record iteration, frame
dissection and aggregation, and returns a CaptureResult.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Callable, Iterable, Mapping

from pcaplens.core.cursor import ByteSource, FileSource, MemorySource
from pcaplens.core.exceptions import AnalysisCancelled
from pcaplens.core.flow import ConversationRecord
from pcaplens.core.layers import LayerMapDecoder
from pcaplens.core.packet import PacketRecord, hex_preview
from pcaplens.core.reader import (
    DEFAULT_TS_RESOLUTION, Abort, ClassicPcapReader, ContainerFormat, PcapReader, RawRecord, Skip,
    open_reader,
)
from pcaplens.features.summary import (
    MAX_TIME_BUCKETS, MIN_TIME_BUCKETS, CaptureSummary, SummaryAccumulator,
)
from pcaplens.protocols import APP_LAYER_MODES, FrameDissector, ProtocolContext

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[float], Any]

# Progress reported once the container is recognised; the record loop
# fills the range up to DETECTED + SCAN_SPAN.
PROGRESS_DETECTED = 0.05
PROGRESS_SCAN_SPAN = 0.9

NO_TIMESTAMP_NOTE = " (no timestamp available)"


@dataclass(frozen=True)
class EngineConfig:
    """
    Validated CaptureEngine settings.

    Args:
        max_retained_packets: PacketRecords kept in the result; statistics
            still cover every scanned record (default: 1000)
        max_packets: Stop scanning after this many packets (default: None,
            scan everything)
        time_buckets: Time-series histogram buckets, 10..20 (default: 20)
        hex_preview_bytes: Bytes rendered into each hex preview (default: 48)
        default_ts_resolution: PCAP-NG timestamp unit in seconds for
            interfaces without an if_tsresol option (default: 1e-6)
        honor_if_tsresol: Use the interface's if_tsresol when present. When
            False every interface uses default_ts_resolution (default: True)
        progress_interval: Records between intermediate progress callbacks
            (default: 1000)
        app_layer_parsing: "full", "port_only" or "none" (default: "full")
        max_errors: Error messages kept in the result; ``error_count`` still
            counts every one (default: 1000)
    """
    max_retained_packets: int = 1000
    max_packets: int | None = None
    time_buckets: int = MAX_TIME_BUCKETS
    hex_preview_bytes: int = 48
    default_ts_resolution: float = DEFAULT_TS_RESOLUTION
    honor_if_tsresol: bool = True
    progress_interval: int = 1000
    app_layer_parsing: str = 'full'
    max_errors: int = 1000

    def __post_init__(self):
        if self.max_retained_packets < 0:
            raise ValueError(f"max_retained_packets must be >= 0, got {self.max_retained_packets}")
        if self.max_packets is not None and self.max_packets < 0:
            raise ValueError(f"max_packets must be >= 0 or None, got {self.max_packets}")
        if not MIN_TIME_BUCKETS <= self.time_buckets <= MAX_TIME_BUCKETS:
            raise ValueError(
                f"time_buckets must be between {MIN_TIME_BUCKETS} and {MAX_TIME_BUCKETS}, "
                f"got {self.time_buckets}"
            )
        if self.hex_preview_bytes < 0:
            raise ValueError(f"hex_preview_bytes must be >= 0, got {self.hex_preview_bytes}")
        if not self.default_ts_resolution > 0:
            raise ValueError(
                f"default_ts_resolution must be positive, got {self.default_ts_resolution}"
            )
        if self.progress_interval < 1:
            raise ValueError(f"progress_interval must be >= 1, got {self.progress_interval}")
        if self.app_layer_parsing not in APP_LAYER_MODES:
            raise ValueError(
                f"Invalid app_layer_parsing={self.app_layer_parsing!r}, "
                f"must be one of: {', '.join(APP_LAYER_MODES)}"
            )
        if self.max_errors < 0:
            raise ValueError(f"max_errors must be >= 0, got {self.max_errors}")


@dataclass
class CaptureResult:
    """
    Outcome of one analysis.

    ``packets`` holds at most ``max_retained_packets`` records; ``truncated``
    tells whether more were scanned. ``summary``, ``protocols``,
    ``conversations`` and ``ip_addresses`` always reflect every scanned
    packet. ``errors`` keeps at most ``max_errors`` messages (plus the abort
    reason, which is always kept) while ``error_count`` counts all of them.
    """
    summary: CaptureSummary
    packets: list[PacketRecord] = field(default_factory=list)
    protocols: frozenset[str] = frozenset()
    conversations: list[ConversationRecord] = field(default_factory=list)
    ip_addresses: frozenset[str] = frozenset()
    truncated: bool = False
    packet_limit_reached: bool = False
    errors: list[str] = field(default_factory=list)
    error_count: int = 0
    format: ContainerFormat | None = None
    abort_reason: str | None = None

    @property
    def is_empty(self) -> bool:
        """True when no usable packet could be extracted."""
        return self.summary.total_packets == 0

    def __len__(self) -> int:
        return len(self.packets)


def _is_cancelled(cancel) -> bool:
    if cancel is None:
        return False
    is_set = getattr(cancel, 'is_set', None)
    if is_set is not None:
        return bool(is_set())
    return bool(cancel())


class _Pass:
    """State of one analysis run."""

    def __init__(self, config: EngineConfig, progress: ProgressCallback | None, cancel):
        self.config = config
        self.progress = progress
        self.cancel = cancel
        self.summary = SummaryAccumulator(config.time_buckets)
        self.packets: list[PacketRecord] = []
        self.errors: list[str] = []
        self.error_count = 0
        self.skipped = 0
        self.truncated = False
        self.limit_reached = False
        self.abort_reason: str | None = None

    def report(self, fraction: float) -> None:
        if self.progress is not None:
            self.progress(min(max(fraction, 0.0), 1.0))

    def check_cancel(self) -> None:
        if _is_cancelled(self.cancel):
            logger.info("Analysis cancelled after %d packets", self.summary.total_packets)
            raise AnalysisCancelled(self.summary.total_packets)

    def at_limit(self) -> bool:
        limit = self.config.max_packets
        if limit is not None and self.summary.total_packets >= limit:
            self.limit_reached = True
            return True
        return False

    def note_error(self, message: str, keep: bool = False) -> None:
        self.error_count += 1
        if keep or len(self.errors) < self.config.max_errors:
            self.errors.append(message)

    def add(self, record: PacketRecord) -> None:
        self.summary.add(record)
        if len(self.packets) < self.config.max_retained_packets:
            self.packets.append(record)
        else:
            self.truncated = True

    def finish(self, fmt: ContainerFormat | None = None, pcap_info: dict | None = None,
               interfaces: list[dict] | None = None, ignored_blocks: int = 0) -> CaptureResult:
        acc = self.summary
        packets = [
            replace(p, relative_timestamp=acc.relative_time(
                p.capture_timestamp if p.timestamp_available else None))
            for p in self.packets
        ]
        summary = acc.build(
            container_format=fmt.value if fmt is not None else None,
            pcap_info=pcap_info,
            interfaces=interfaces,
            skipped_records=self.skipped,
            ignored_blocks=ignored_blocks,
        )
        self.report(1.0)
        return CaptureResult(
            summary=summary,
            packets=packets,
            protocols=frozenset(acc.protocol_counts),
            conversations=acc.conversations.records(),
            ip_addresses=frozenset(acc.ip_addresses),
            truncated=self.truncated,
            packet_limit_reached=self.limit_reached,
            errors=self.errors,
            error_count=self.error_count,
            format=fmt,
            abort_reason=self.abort_reason,
        )


class CaptureEngine:
    """
    Main entry point for capture analysis.

    The engine holds configuration only; every call runs an independent
    pass, so one engine can analyze any number of captures.

    Examples:
        Basic usage:
            >>> from pcaplens import CaptureEngine
            >>> engine = CaptureEngine()
            >>> result = engine.analyze_file('traffic.pcap')
            >>> print(result.summary.total_packets, result.summary.protocol_counts)

        Keep every packet and report progress:
            >>> engine = CaptureEngine(max_retained_packets=10**6)
            >>> result = engine.analyze_file('traffic.pcapng', progress=print)

        Cancel from another thread:
            >>> stop = threading.Event()
            >>> result = engine.analyze_file('big.pcap', cancel=stop)

    Args:
        config: Ready-made EngineConfig; keyword arguments are used when omitted
        **kwargs: EngineConfig fields (max_retained_packets, max_packets,
            time_buckets, hex_preview_bytes, default_ts_resolution,
            honor_if_tsresol, progress_interval, app_layer_parsing,
            max_errors)

    Raises:
        ValueError: On invalid settings
    """

    def __init__(self, config: EngineConfig | None = None, **kwargs):
        if config is not None and kwargs:
            raise TypeError("Pass either an EngineConfig or keyword settings, not both")
        self.config = config or EngineConfig(**kwargs)
        self._dissector = FrameDissector(self.config.app_layer_parsing)
        self._stats = {
            'files_processed': 0,
            'packets_processed': 0,
            'records_skipped': 0,
            'errors': []
        }

    def analyze(self, capture, progress: ProgressCallback | None = None,
                cancel=None) -> CaptureResult:
        """Analyze a path, an open binary file, a bytes buffer or a ByteSource."""
        if isinstance(capture, ByteSource):
            return self.analyze_source(capture, progress, cancel)
        if isinstance(capture, (bytes, bytearray, memoryview)):
            return self.analyze_bytes(capture, progress, cancel)
        if isinstance(capture, (str, Path)):
            return self.analyze_file(capture, progress, cancel)
        with FileSource(capture) as source:
            return self.analyze_source(source, progress, cancel)

    def analyze_bytes(self, data: bytes | bytearray | memoryview,
                      progress: ProgressCallback | None = None, cancel=None) -> CaptureResult:
        """
        Analyze an in-memory capture.

        Raises:
            UnrecognizedContainer: Leading magic matches no container format
            TruncatedHeader: Buffer shorter than the container's header
            AnalysisCancelled: ``cancel`` was set during the pass
        """
        return self.analyze_source(MemorySource(data), progress, cancel)

    def analyze_file(self, pcap_path: str | Path, progress: ProgressCallback | None = None,
                     cancel=None) -> CaptureResult:
        """
        Analyze a capture file without loading it into memory whole.

        Raises:
            FileNotFoundError: ``pcap_path`` does not exist
        """
        pcap_path = Path(pcap_path)
        if not pcap_path.exists():
            raise FileNotFoundError(f"PCAP file not found: {pcap_path}")

        with FileSource(pcap_path) as source:
            return self.analyze_source(source, progress, cancel)

    def analyze_directory(self, directory: str | Path,
                          pattern: str = "*.pcap*") -> dict[str, CaptureResult]:
        """
        Analyze all capture files in a directory.

        Files that fail with a terminal error are left out of the result and
        noted in ``stats['errors']``.
        """
        directory = Path(directory)
        results = {}

        for pcap_file in sorted(directory.glob(pattern)):
            if not PcapReader.is_pcap_file(pcap_file):
                continue
            try:
                results[pcap_file.name] = self.analyze_file(pcap_file)
            except (ValueError, OSError) as e:
                logger.warning("Skipping %s: %s", pcap_file, e)
                self._stats['errors'].append(f"{pcap_file}: {e}")

        return results

    def analyze_source(self, source: ByteSource, progress: ProgressCallback | None = None,
                       cancel=None) -> CaptureResult:
        """Analyze any ByteSource; the readers only use ``size`` and ``read``."""
        cfg = self.config
        run = _Pass(cfg, progress, cancel)
        run.report(0.0)
        run.check_cancel()

        fmt, reader = open_reader(source, cfg.default_ts_resolution, cfg.honor_if_tsresol)
        run.report(PROGRESS_DETECTED)
        size = max(source.size, 1)

        for outcome in reader:
            run.check_cancel()
            if run.at_limit():
                logger.info("Packet limit of %d reached", cfg.max_packets)
                break

            if isinstance(outcome, Skip):
                run.skipped += 1
                run.note_error(outcome.reason)
                logger.debug("Skipped record: %s", outcome.reason)
                continue
            if isinstance(outcome, Abort):
                run.abort_reason = outcome.reason
                run.note_error(outcome.reason, keep=True)
                logger.warning("Stopped reading at offset %d: %s", outcome.offset, outcome.reason)
                break

            record = self._decode_record(outcome.record, run.summary.total_packets + 1, run)
            run.add(record)

            if run.summary.total_packets % cfg.progress_interval == 0:
                run.report(PROGRESS_DETECTED + PROGRESS_SCAN_SPAN * outcome.record.offset / size)

        if isinstance(reader, ClassicPcapReader):
            pcap_info = reader.header.to_dict()
            interfaces = []
            ignored = 0
        else:
            pcap_info = None
            interfaces = [iface.to_dict() for iface in reader.interfaces]
            ignored = reader.skipped_blocks

        result = run.finish(fmt, pcap_info, interfaces, ignored)
        self._account(result, run)
        logger.info("Parsed %d packets (%d retained, %d skipped) from %s capture",
                    result.summary.total_packets, len(result.packets), run.skipped, fmt.value)
        return result

    def analyze_layer_maps(self, packets: Iterable[Mapping | None],
                           progress: ProgressCallback | None = None,
                           cancel=None) -> CaptureResult:
        """
        Build a result from pre-decoded packets (``tshark -T json`` output).

        Each item is a packet dict with ``_source.layers``, or a flat dict with
        ``source``/``destination``/``protocol``/``length``/``info`` keys. A
        missing (None) item yields a placeholder record so numbering stays
        aligned with the input.
        """
        cfg = self.config
        run = _Pass(cfg, progress, cancel)
        decoder = LayerMapDecoder(cfg.app_layer_parsing)
        total = len(packets) if hasattr(packets, '__len__') else None
        run.report(0.0)

        for index, packet in enumerate(packets):
            run.check_cancel()
            if run.at_limit():
                break
            seq = run.summary.total_packets + 1

            if not isinstance(packet, Mapping):
                context = ProtocolContext(link_type=None)
                context.info = "Missing Packet Data"
                record = self._make_record(seq, context, None, 0, 0, b"")
                run.note_error(f"packet {seq}: missing packet data")
            else:
                try:
                    frame = decoder.decode(packet)
                except Exception as e:
                    logger.debug("Layer map %d not decodable: %s", seq, e)
                    run.note_error(f"packet {seq}: {e}")
                    context = ProtocolContext(link_type=None)
                    context.info = f"Malformed layer map: {e}"
                    record = self._make_record(seq, context, None, 0, 0, b"")
                else:
                    record = self._make_record(seq, frame.context, frame.timestamp,
                                               frame.captured_length, frame.original_length,
                                               frame.data)
                    for err in frame.context.errors:
                        run.note_error(f"packet {seq}: {err}")
            run.add(record)

            if total and run.summary.total_packets % cfg.progress_interval == 0:
                run.report((index + 1) / total)

        result = run.finish()
        self._account(result, run)
        logger.info("Classified %d pre-decoded packets", result.summary.total_packets)
        return result

    def _decode_record(self, raw: RawRecord, seq: int, run: _Pass) -> PacketRecord:
        context = self._dissector.dissect(raw.data, raw.link_type)
        for err in context.errors:
            run.note_error(f"packet {seq}: {err}")
            logger.debug("Packet %d decoded partially: %s", seq, err)
        return self._make_record(seq, context, raw.timestamp, raw.captured_length,
                                 raw.original_length, raw.data)

    def _make_record(self, seq: int, context: ProtocolContext, timestamp: float | None,
                     captured_length: int, original_length: int, data: bytes) -> PacketRecord:
        info = context.info or f"{context.protocol} Packet"
        if timestamp is None:
            info += NO_TIMESTAMP_NOTE

        layer_names = tuple(layer.layer_name for layer in context.layers)
        return PacketRecord(
            sequence_number=seq,
            capture_timestamp=timestamp if timestamp is not None else 0.0,
            captured_length=captured_length,
            original_length=original_length,
            source_endpoint=context.source,
            destination_endpoint=context.destination,
            protocol_label=context.protocol,
            info_summary=info,
            layers=tuple(context.layers),
            hex_preview=hex_preview(data, self.config.hex_preview_bytes),
            timestamp_available=timestamp is not None,
            extra_trace=context.trace[len(layer_names):],
        )

    def _account(self, result: CaptureResult, run: _Pass) -> None:
        self._stats['files_processed'] += 1
        self._stats['packets_processed'] += result.summary.total_packets
        self._stats['records_skipped'] += run.skipped

    @property
    def stats(self) -> dict[str, Any]:
        """Running totals over every analysis made with this engine."""
        return self._stats.copy()

    def reset_stats(self) -> None:
        """Reset statistics."""
        self._stats = {
            'files_processed': 0,
            'packets_processed': 0,
            'records_skipped': 0,
            'errors': []
        }


__all__ = ['CaptureEngine', 'CaptureResult', 'EngineConfig']
