#!/usr/bin/env python3
"""
Queue Logs: summarize the queue<N>.log files written by the dispatcher.

Reads every flushed queue log in the queue directory and counts the
recorded items per status and per type.

Usage:
    python scripts/queue_logs.py                    # Summary of all logs
    python scripts/queue_logs.py --dir /srv/queue   # Another queue directory
    python scripts/queue_logs.py --status error     # List failed items
    python scripts/queue_logs.py --json             # Machine readable summary
"""
import argparse
import json
import os
import sys
from collections import Counter

# Ensure app root is on path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from job_queue.storage import QueueStorage  # noqa: E402


def read_entries(storage: QueueStorage) -> list[dict]:
    entries = []
    for path in storage.log_files():
        try:
            with open(path, encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            print(f"  ! skipping {path.name}: {e}", file=sys.stderr)
            continue
        for entry in data if isinstance(data, list) else []:
            entry["file"] = path.name
            entries.append(entry)
    return entries


def summarize(entries: list[dict]) -> dict:
    return {
        "files": len({e["file"] for e in entries}),
        "total": len(entries),
        "by_status": dict(Counter(e.get("status", "?") for e in entries)),
        "by_type": dict(Counter(e.get("type", "?") for e in entries)),
    }


def print_summary(queue_dir: str, summary: dict):
    print(f"\nQueue logs in {queue_dir}: {summary['files']} file(s), {summary['total']} item(s)")
    print("  By status:")
    for status, count in sorted(summary["by_status"].items()):
        print(f"    {status:<12} {count:>6}")
    print("  By type:")
    for type_, count in sorted(summary["by_type"].items()):
        print(f"    {type_:<12} {count:>6}")


def print_entries(entries: list[dict]):
    for e in entries:
        result = e.get("result", "")
        if not isinstance(result, str):
            result = json.dumps(result, ensure_ascii=False)
        print(f"  {e['file']:<12} {e.get('time', '-'):<27} {e.get('name', e['id'])}")
        if result:
            print(f"      {result[:200]}")


def main():
    parser = argparse.ArgumentParser(description="Queue log summary")
    parser.add_argument("--dir", default=None, help="Queue directory (default: from settings)")
    parser.add_argument("--status", default=None, help="List items with this status")
    parser.add_argument("--json", action="store_true", help="Print the summary as JSON")
    args = parser.parse_args()

    queue_dir = args.dir
    if queue_dir is None:
        from config.settings import load_settings
        queue_dir = load_settings().queue.queue_dir

    entries = read_entries(QueueStorage(queue_dir))
    summary = summarize(entries)

    if args.json:
        print(json.dumps(summary, indent=2))
        return

    print_summary(queue_dir, summary)
    if args.status:
        matching = [e for e in entries if e.get("status") == args.status]
        print(f"\nItems with status {args.status!r}: {len(matching)}")
        print_entries(matching)


if __name__ == "__main__":
    main()
