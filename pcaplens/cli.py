"""
pcaplens command line interface.

    pcaplens summary capture.pcap
    pcaplens packets capture.pcapng --limit 20
    pcaplens conversations capture.pcap --format json
"""

from __future__ import annotations

import logging

import click

from pcaplens.core.analyzer import CaptureEngine, CaptureResult
from pcaplens.core.exceptions import CaptureError
from pcaplens.exporters import packet_row, to_json
from pcaplens.protocols.base import APP_LAYER_MODES


def _analyze(ctx: click.Context, filepath: str, **settings) -> CaptureResult:
    options = dict(ctx.obj or {})
    options.update({k: v for k, v in settings.items() if v is not None})
    try:
        engine = CaptureEngine(**options)
        return engine.analyze_file(filepath)
    except CaptureError as e:
        raise click.ClickException(e.reason)
    except ValueError as e:
        raise click.BadParameter(str(e))


@click.group()
@click.option("-v", "--verbose", count=True, help="Log progress (-v) or per-record detail (-vv)")
@click.option("--app-layer", "app_layer_parsing", type=click.Choice(APP_LAYER_MODES),
              default="full", show_default=True, help="Application layer inspection depth")
@click.option("--max-packets", type=int, default=None, help="Stop after this many packets")
@click.pass_context
def cli(ctx: click.Context, verbose: int, app_layer_parsing: str, max_packets: int | None):
    """pcaplens - PCAP/PCAP-NG capture summaries."""
    level = logging.WARNING
    if verbose == 1:
        level = logging.INFO
    elif verbose > 1:
        level = logging.DEBUG
    logging.basicConfig(level=level, format="%(levelname)s %(name)s: %(message)s")

    ctx.obj = {'app_layer_parsing': app_layer_parsing}
    if max_packets is not None:
        ctx.obj['max_packets'] = max_packets


@cli.command()
@click.argument("filepath", type=click.Path(exists=True, dir_okay=False))
@click.option("--format", "format", type=click.Choice(["text", "json"]),
              default="text", show_default=True, help="Output format")
@click.pass_context
def summary(ctx: click.Context, filepath: str, format: str):
    """
    Print capture-wide statistics.

    Example:
      pcaplens summary capture.pcap
    """
    result = _analyze(ctx, filepath, max_retained_packets=0)
    if format == "json":
        click.echo(to_json(result, include_packets=False))
        return

    s = result.summary
    click.echo(f"File:            {filepath}")
    click.echo(f"Format:          {s.container_format}")
    click.echo(f"Packets:         {s.total_packets}")
    click.echo(f"IP addresses:    {s.unique_ip_count}")
    click.echo(f"Conversations:   {s.conversation_count}")
    click.echo(f"Duration:        {s.capture_duration_text}")
    click.echo(f"Packets/s:       {s.packets_per_second:.1f}")
    click.echo(f"Size avg/median: {s.average_packet_size:.0f} / {s.median_packet_size} bytes")
    click.echo(f"Size min/max:    {s.min_packet_size} / {s.max_packet_size} bytes")
    if s.skipped_records:
        click.echo(f"Skipped records: {s.skipped_records}")
    if result.abort_reason:
        click.echo(f"Stopped early:   {result.abort_reason}")
    click.echo("")
    click.echo("Protocol         Packets")
    click.echo("-" * 25)
    for name, count in s.protocol_distribution:
        click.echo(f"{name:<16} {count:>8}")


@cli.command()
@click.argument("filepath", type=click.Path(exists=True, dir_okay=False))
@click.option("--limit", "limit", type=int, default=50, show_default=True,
              help="Packets to list (0 = all retained)")
@click.option("--format", "format", type=click.Choice(["table", "jsonl"]),
              default="table", show_default=True, help="Output format")
@click.option("--hex", "show_hex", is_flag=True, help="Show a hex preview under each packet")
@click.pass_context
def packets(ctx: click.Context, filepath: str, limit: int, format: str, show_hex: bool):
    """
    List decoded packets.

    Example:
      pcaplens packets capture.pcapng --limit 20
    """
    import json

    retained = limit if limit > 0 else None
    result = _analyze(ctx, filepath, max_retained_packets=retained)

    if format == "table":
        click.echo(f"{'No.':<6} {'Time':<12} {'Source':<24} {'Destination':<24} "
                   f"{'Protocol':<10} {'Len':>6}  Info")
        click.echo("-" * 110)

    for packet in result.packets:
        if format == "jsonl":
            click.echo(json.dumps(packet_row(packet), separators=(",", ":"), ensure_ascii=True))
            continue
        click.echo(
            f"{packet.sequence_number:<6} {packet.relative_timestamp:<12.6f} "
            f"{packet.source_endpoint:<24} {packet.destination_endpoint:<24} "
            f"{packet.protocol_label:<10} {packet.captured_length:>6}  {packet.info_summary}"
        )
        if show_hex and packet.hex_preview:
            click.echo(packet.hex_preview)

    if result.truncated and format == "table":
        click.echo(f"... {result.summary.total_packets - len(result.packets)} more packets")


@cli.command()
@click.argument("filepath", type=click.Path(exists=True, dir_okay=False))
@click.option("--format", "format", type=click.Choice(["table", "json"]),
              default="table", show_default=True, help="Output format")
@click.pass_context
def conversations(ctx: click.Context, filepath: str, format: str):
    """
    List conversations between endpoint pairs.

    Example:
      pcaplens conversations capture.pcap --format json
    """
    import json

    result = _analyze(ctx, filepath, max_retained_packets=0)
    if format == "json":
        click.echo(json.dumps([c.to_dict() for c in result.conversations], indent=2))
        return

    click.echo(f"{'Endpoint A':<28} {'Endpoint B':<28} {'Protocol':<10} "
               f"{'Packets':>8} {'Bytes':>10} {'Duration':>10}")
    click.echo("-" * 100)
    for conv in result.conversations:
        click.echo(
            f"{conv.endpoint_a:<28} {conv.endpoint_b:<28} {conv.protocol_label:<10} "
            f"{conv.packet_count:>8} {conv.total_bytes:>10} {conv.duration:>9.3f}s"
        )


def main():
    cli()


if __name__ == "__main__":
    main()
