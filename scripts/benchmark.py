#!/usr/bin/env python3
"""
Benchmark Script for Trust Analytics API

Ingests a synthetic conversation workload, then measures dashboard and
analytics latency (cold cache, then warm cache).

Usage:
    python scripts/benchmark.py [base_url] [total_events]
"""

import sys
import time
import requests
from uuid import uuid4
import statistics

HOUR_MS = 60 * 60 * 1000


def generate_events(count: int, start_ms: int, offset: int = 0):
    """Conversations of started / turns / votes / ended, with a journey step per conversation"""
    events = []
    i = offset

    while len(events) < count:
        user_id = f"user_{i % 1000}"
        conversation_id = f"conv_{i}"
        base = start_ms + i * 60_000
        turn_id = str(uuid4())

        events.extend([
            {"event_id": str(uuid4()), "user_id": user_id, "event_type": "conversation_started",
             "timestamp": base, "conversation_id": conversation_id, "properties": {}},
            {"event_id": str(uuid4()), "user_id": user_id, "event_type": "turn_completed",
             "timestamp": base + 1_000, "conversation_id": conversation_id, "turn_sequence": 1,
             "properties": {"turn_id": turn_id, "responseTime": 800 + i % 400}},
            {"event_id": str(uuid4()), "user_id": user_id, "event_type": "vote_cast",
             "timestamp": base + 2_000,
             "properties": {"turn_id": turn_id, "value": 1 if i % 3 else -1, "comment": f"benchmark {i}"}},
            {"event_id": str(uuid4()), "user_id": user_id, "event_type": "journey_step",
             "timestamp": base + 3_000,
             "properties": {"journeyName": f"journey_{i % 7}", "completed": i % 2 == 0}},
            {"event_id": str(uuid4()), "user_id": user_id, "event_type": "conversation_ended",
             "timestamp": base + 4_000, "conversation_id": conversation_id,
             "properties": {"messageCount": 2 + i % 5}},
        ])
        i += 1

    return events[:count], i


def benchmark_ingestion(base_url: str, total_events: int = 100000, batch_size: int = 1000):
    """Benchmark event ingestion"""
    print(f"\n{'=' * 60}")
    print(f"BENCHMARK: Ingesting {total_events:,} events")
    print(f"{'=' * 60}")

    start_ms = int(time.time() * 1000) - 29 * 24 * HOUR_MS

    totals = {"processed": 0, "skipped": 0, "errors": 0}
    batch_times = []
    cursor = 0

    start_time = time.time()

    for i in range(0, total_events, batch_size):
        batch_start = time.time()

        events, cursor = generate_events(min(batch_size, total_events - i), start_ms, cursor)

        try:
            response = requests.post(f"{base_url}/api/events", json={"events": events}, timeout=30)

            if response.status_code == 201:
                data = response.json()
                for key in totals:
                    totals[key] += data.get(key, 0)
            else:
                print(f"Error in batch {i // batch_size}: Status {response.status_code}")

        except requests.RequestException as e:
            print(f"Error in batch {i // batch_size}: {e}")

        batch_time = time.time() - batch_start
        batch_times.append(batch_time)

        if (i // batch_size) % 10 == 0:
            print(f"Progress: {i + len(events):,} / {total_events:,} events | "
                  f"Batch time: {batch_time:.2f}s")

    total_time = time.time() - start_time

    print(f"\n{'=' * 60}")
    print("INGESTION RESULTS")
    print(f"{'=' * 60}")
    print(f"Total events:        {total_events:,}")
    print(f"Processed:           {totals['processed']:,}")
    print(f"Skipped:             {totals['skipped']:,}")
    print(f"Errors:              {totals['errors']:,}")
    print(f"Total time:          {total_time:.2f}s")
    print(f"Events/sec:          {total_events / total_time:,.0f}")
    print(f"Avg batch time:      {statistics.mean(batch_times):.2f}s")
    print(f"Min batch time:      {min(batch_times):.2f}s")
    print(f"Max batch time:      {max(batch_times):.2f}s")
    print(f"{'=' * 60}\n")

    return total_time


def benchmark_queries(base_url: str, runs: int = 5):
    """First run of each query is computed, later runs are cache hits"""
    print(f"\n{'=' * 60}")
    print("BENCHMARK: Query Performance")
    print(f"{'=' * 60}")

    queries = [
        ("Dashboard (7d)", f"{base_url}/api/dashboard?timeRange=7d"),
        ("Dashboard (30d)", f"{base_url}/api/dashboard?timeRange=30d"),
        ("Votes (30d)", f"{base_url}/api/analytics/votes?timeRange=30d"),
        ("Turns (30d)", f"{base_url}/api/analytics/turns?timeRange=30d"),
        ("Journeys (30d)", f"{base_url}/api/analytics/journeys?timeRange=30d"),
        ("Overview (ALL)", f"{base_url}/api/analytics/overview?timeRange=ALL"),
    ]

    results = []

    for name, url in queries:
        times = []

        for _ in range(runs):
            start = time.time()
            try:
                response = requests.get(url, timeout=60)
                elapsed = (time.time() - start) * 1000  # Convert to ms

                if response.status_code == 200:
                    times.append(elapsed)
                else:
                    print(f"Error in {name}: Status {response.status_code}")
            except requests.RequestException as e:
                print(f"Error in {name}: {e}")

        if times:
            warm = times[1:] or times
            results.append({
                "name": name,
                "cold": times[0],
                "warm_p50": statistics.median(warm),
                "warm_max": max(warm)
            })

    print(f"\n{'Query':<25} {'Cold':>10} {'Warm P50':>10} {'Warm Max':>10}")
    print(f"{'-' * 60}")
    for r in results:
        print(f"{r['name']:<25} {r['cold']:>8.0f}ms {r['warm_p50']:>8.0f}ms {r['warm_max']:>8.0f}ms")

    print(f"{'=' * 60}\n")

    return results


def main():
    base_url = sys.argv[1] if len(sys.argv) > 1 else "http://localhost:8000"
    total_events = int(sys.argv[2]) if len(sys.argv) > 2 else 100000

    print("\n" + "=" * 60)
    print("TRUST ANALYTICS API - BENCHMARK")
    print("=" * 60)
    print(f"Target: {base_url}")
    print("=" * 60)

    # Test connection
    try:
        response = requests.get(f"{base_url}/health", timeout=5)
        if response.status_code != 200:
            print("Error: API is not healthy")
            sys.exit(1)
    except requests.RequestException as e:
        print(f"Error: Cannot connect to API: {e}")
        sys.exit(1)

    benchmark_ingestion(base_url, total_events=total_events, batch_size=1000)
    benchmark_queries(base_url)

    print("\n" + "=" * 60)
    print("BENCHMARK COMPLETE")
    print("=" * 60)


if __name__ == "__main__":
    main()
