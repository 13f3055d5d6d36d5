"""
CSV Import Script for Events

Usage:
    python scripts/import_events.py <path-to-csv>

CSV Format:
    event_id,timestamp,user_id,event_type,properties_json
    (optional columns: conversation_id, journey_id, turn_sequence)

timestamp is epoch milliseconds or an ISO-8601 string.
"""

import sys
import csv
import json
from pathlib import Path
from datetime import datetime

# Add parent directory to path to import trust_analytics modules
sys.path.insert(0, str(Path(__file__).parent.parent))

from trust_analytics.core.database import SessionLocal, init_db
from trust_analytics.services.cache import result_cache
from trust_analytics.services.event_store import EventStore

REQUIRED_HEADERS = {'event_id', 'timestamp', 'user_id', 'event_type', 'properties_json'}
OPTIONAL_COLUMNS = ('conversation_id', 'journey_id', 'turn_sequence')


def parse_timestamp(value: str) -> int:
    """Epoch milliseconds from a digit string or an ISO-8601 timestamp"""
    value = value.strip()
    if value.isdigit():
        return int(value)
    moment = datetime.fromisoformat(value.replace('Z', '+00:00'))
    return int(moment.timestamp() * 1000)


def row_to_event(row: dict) -> dict:
    properties = {}
    if row['properties_json'] and row['properties_json'].strip():
        properties = json.loads(row['properties_json'])

    event = {
        "event_id": row['event_id'],
        "timestamp": parse_timestamp(row['timestamp']),
        "user_id": row['user_id'],
        "event_type": row['event_type'],
        "properties": properties
    }
    for column in OPTIONAL_COLUMNS:
        if row.get(column):
            event[column] = row[column]
    return event


def import_csv(file_path: str, store: EventStore, batch_size: int = 1000) -> dict:
    """
    Import events from CSV file

    Args:
        file_path: Path to CSV file
        store: Event store receiving the batches
        batch_size: Number of events to process per batch

    Returns:
        Totals for processed, skipped and failed rows
    """
    file_path = Path(file_path)

    if not file_path.exists():
        raise FileNotFoundError(f"File not found: {file_path}")

    print(f"Starting import from: {file_path}")

    totals = {"rows": 0, "processed": 0, "skipped": 0, "errors": 0}

    def flush(batch):
        result = store.insert_batch(batch)
        totals["processed"] += result.processed
        totals["skipped"] += result.skipped
        totals["errors"] += result.errors
        for failure in result.failures:
            print(f"Rejected event {failure.event_id}: {failure.error}")

        print(f"Imported {totals['rows']} rows | "
              f"Processed: {totals['processed']} | "
              f"Skipped: {totals['skipped']} | "
              f"Errors: {totals['errors']}")

    with open(file_path, 'r', encoding='utf-8', newline='') as f:
        reader = csv.DictReader(f)

        # Validate headers
        if not REQUIRED_HEADERS.issubset(reader.fieldnames or []):
            raise ValueError(
                f"CSV must have headers: {sorted(REQUIRED_HEADERS)}, found: {reader.fieldnames}"
            )

        batch = []

        for i, row in enumerate(reader, 1):
            totals["rows"] += 1
            try:
                batch.append(row_to_event(row))
            except (ValueError, KeyError, AttributeError) as e:
                totals["errors"] += 1
                print(f"Error on row {i}: {e}")
                continue

            if len(batch) >= batch_size:
                flush(batch)
                batch = []

        # Process remaining events
        if batch:
            flush(batch)

    print("\n" + "=" * 50)
    print("Import completed!")
    print(f"Total rows:      {totals['rows']}")
    print(f"Total processed: {totals['processed']}")
    print(f"Total skipped:   {totals['skipped']}")
    print(f"Total errors:    {totals['errors']}")
    print("=" * 50)

    return totals


def main():
    if len(sys.argv) != 2:
        print("Usage: python scripts/import_events.py <path-to-csv>")
        sys.exit(1)

    init_db()
    with SessionLocal() as session:
        try:
            import_csv(sys.argv[1], EventStore(session, cache=result_cache))
        except (FileNotFoundError, ValueError) as e:
            print(f"Error: {e}")
            sys.exit(1)


if __name__ == "__main__":
    main()
