from __future__ import annotations

import argparse
import os

from .artifacts import parse_timestamp, read_json, restrict_to_window, snapshot_from_dict, utc_now, write_json
from .report import build_report
from .timeframe import parse_timeframe


def main() -> None:
    parser = argparse.ArgumentParser(description="Build a performance report from an exported snapshot.")
    parser.add_argument("--snapshot", required=True, help="Path to snapshot JSON (agents, metrics, tasks, logs)")
    parser.add_argument("--out", required=True, help="Path to output report JSON")
    parser.add_argument("--timeframe", default="24h", help="Window such as 6h, 7d or 2w")
    parser.add_argument("--now", default="", help="ISO timestamp the window ends at (default: current time)")
    parser.add_argument("--detailed", action="store_true", help="Include detailed metric, task and log sections")
    args = parser.parse_args()

    os.makedirs(os.path.dirname(args.out) or ".", exist_ok=True)

    now = parse_timestamp(args.now) or utc_now()
    snapshot = snapshot_from_dict(read_json(args.snapshot))
    snapshot = restrict_to_window(snapshot, now - parse_timeframe(args.timeframe))
    report = build_report(snapshot, timeframe=args.timeframe, now=now, detailed=args.detailed)

    write_json(args.out, report)
    print(f"Wrote performance report: {args.out}")
    print(f"Summary: {report['summary']}")


if __name__ == "__main__":
    main()
