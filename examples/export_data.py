"""
Export example.

Demonstrates exporting capture results to different formats:
- DataFrame (pandas)
- CSV
- JSON
"""

from pathlib import Path

from pcaplens import CaptureEngine, CaptureExporter, to_dataframe, to_csv, to_json

# Create engine and analyze
engine = CaptureEngine(max_retained_packets=100_000)

result = engine.analyze_file('test/multi.pcap')

print(f"Total packets: {result.summary.total_packets}")
print(f"Conversations: {len(result.conversations)}")
print()

Path('output').mkdir(exist_ok=True)

# === Export to DataFrame ===
df = to_dataframe(result)
print("DataFrame export:")
print(df.head())
print()

# Show DataFrame columns
print("DataFrame columns:")
print(df.columns.tolist())
print()

print("Protocols:")
print(df['protocol'].value_counts())
print()

# === Export to CSV ===
to_csv(result, 'output/packets.csv')
to_csv(result, 'output/conversations.csv', table='conversations')
print("Exported to CSV: output/packets.csv, output/conversations.csv")
print()

# === Export to JSON ===
to_json(result, 'output/capture.json', include_details=True)
print("Exported to JSON: output/capture.json")
print()

# Fixed settings, format chosen by extension
CaptureExporter(table='protocols').save(result, 'output/protocols.csv')
CaptureExporter(include_packets=False).save(result, 'output/summary.json')

# === Example: Filter DataFrame ===
# Packets carrying an HTTP layer
http_df = df[df['layers'].str.contains('HTTP')]
print(f"HTTP packets: {len(http_df)}")
if len(http_df) > 0:
    print(http_df[['number', 'source', 'destination', 'info']].head())
print()

# === Example: Aggregate statistics ===
conv_df = to_dataframe(result, table='conversations')
busiest = conv_df.sort_values('bytes', ascending=False)
print("Busiest conversations:")
print(busiest[['endpoint_a', 'endpoint_b', 'protocol', 'packets', 'bytes']].head())
print()

# Protocol breakdown over the retained packets
proto_stats = df.groupby('protocol').agg({
    'number': 'count',
    'length': 'sum',
})
proto_stats.columns = ['packets', 'bytes']
print("Protocol statistics:")
print(proto_stats)
