#!/usr/bin/env python3
"""
Suggestion telemetry status.

Summarizes the user-modification events recorded in the telemetry log:
how many suggestions were evaluated and how heavily they were edited,
broken down by language, user group and trigger type.

Usage:
    suggestion-telemetry-status [--log-path PATH] [--days N] [--json]
"""

import argparse
import json
import sys
from pathlib import Path
from typing import Optional

from metrics.calculator import MetricsCalculator
from metrics.config import config
from metrics.jsonl_utils import JSONLReader

from .schema import USER_MODIFICATION_EVENT


def summarize(log_path: Path, days: Optional[int] = None) -> dict:
    """
    Build a summary of user-modification events.

    Args:
        log_path: Telemetry event log
        days: Only include events from the last N days

    Returns:
        Summary dictionary
    """
    events = JSONLReader.read_log(
        log_path,
        days=days,
        filter_fn=lambda e: e.get("event_type") == USER_MODIFICATION_EVENT
    )

    percentages = [
        e["modification_percentage"] for e in events
        if isinstance(e.get("modification_percentage"), (int, float))
    ]

    return {
        "log_path": str(log_path),
        "telemetry_enabled": config.is_enabled('telemetry'),
        "events": len(events),
        "modification": MetricsCalculator.score_stats(percentages),
        "unmodified": sum(1 for p in percentages if p == 0.0),
        "by_language": MetricsCalculator.count_by_field(events, "language"),
        "by_user_group": MetricsCalculator.count_by_field(events, "user_group"),
        "by_trigger_type": MetricsCalculator.count_by_field(events, "trigger_type"),
        "avg_by_language": MetricsCalculator.average_by_group(
            events, "language", "modification_percentage"
        ),
    }


def display_summary(summary: dict):
    """Print summary to console."""
    print("=" * 60)
    print("Suggestion Modification Telemetry")
    print("=" * 60 + "\n")

    print(f"Log:       {summary['log_path']}")
    print(f"Telemetry: {'enabled' if summary['telemetry_enabled'] else 'disabled'}")
    print(f"Events:    {summary['events']}")

    if not summary["events"]:
        print("\nNo suggestion modification events recorded.")
        return

    stats = summary["modification"]
    print(f"Unchanged: {summary['unmodified']}")
    print("\nModification percentage:")
    print(f"  avg {stats['avg']:.2f}  median {stats['median']:.2f}  "
          f"p95 {stats['p95']:.2f}  max {stats['max']:.2f}")

    sections = (
        ("By language", "by_language"),
        ("By user group", "by_user_group"),
        ("By trigger type", "by_trigger_type"),
    )
    for title, key in sections:
        print(f"\n{title}:")
        for name, count in sorted(summary[key].items(), key=lambda x: -x[1]):
            avg = summary["avg_by_language"].get(name) if key == "by_language" else None
            suffix = f"  (avg {avg:.2f})" if avg is not None else ""
            print(f"  {name:<16} {count:>6}{suffix}")


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Suggestion modification telemetry status")
    parser.add_argument("--log-path", type=Path, default=None,
                        help="Telemetry event log (default: telemetry.log_path)")
    parser.add_argument("--days", type=int, default=None,
                        help="Only include events from the last N days")
    parser.add_argument("--json", action="store_true", help="Output JSON")
    args = parser.parse_args(argv)

    log_path = args.log_path or config.get_path('telemetry.log_path')
    summary = summarize(log_path, days=args.days)

    if args.json:
        print(json.dumps(summary, indent=2))
    else:
        display_summary(summary)

    return 0


if __name__ == "__main__":
    sys.exit(main())
