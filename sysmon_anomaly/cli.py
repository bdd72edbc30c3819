"""
Command-line entry point.

    sysmon-anomaly parse data/sysmon.evtx --detect --output out/anomalies.csv
    sysmon-anomaly watch exports/sysmon.jsonl --detect --event-id 1,3
"""
from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from typing import List, Optional

from .anomalies import Anomaly
from .config import DetectionConfig
from .detector import AnomalyDetector
from .filters import EventFilter
from .live import JsonlFollowSource, LiveMonitor
from .loaders import load_events
from .report import anomalies_to_frame, compact_line, events_to_frame

logger = logging.getLogger("sysmon_anomaly")

EVENTS_DISPLAYED = 100


def _event_ids(text: str) -> List[int]:
    try:
        return [int(x) for x in text.split(",") if x.strip()]
    except ValueError:
        raise argparse.ArgumentTypeError(f"expected comma-separated event ids, got {text!r}")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="sysmon-anomaly",
        description="Sysmon log analysis and anomaly detection",
    )
    parser.add_argument("--config", default=None, help="Path to detection config JSON (optional)")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("parse", help="Analyze a collected log (.evtx, .csv, .jsonl)")
    p.add_argument("file", help="Path to the log file")
    p.add_argument("--event-id", type=_event_ids, default=None,
                   help="Only events whose id is in this list (e.g. 1,3,11)")
    p.add_argument("--search", default=None, help="Substring to search for in key fields")
    p.add_argument("--after", default=None, help="Only events at or after this timestamp")
    p.add_argument("--before", default=None, help="Only events at or before this timestamp")
    p.add_argument("-d", "--detect", action="store_true", help="Enable anomaly detection")
    p.add_argument("--output", default=None, help="Write the anomaly table to this CSV")

    w = sub.add_parser("watch", help="Follow a growing JSON lines export")
    w.add_argument("file", help="Path to the JSON lines file")
    w.add_argument("--event-id", type=_event_ids, default=None)
    w.add_argument("--search", default=None)
    w.add_argument("--from-start", action="store_true", help="Replay existing lines first")
    w.add_argument("-d", "--detect", action="store_true", help="Enable anomaly detection")
    return parser


def _print_anomalies(anomalies: List[Anomaly]) -> None:
    for a in anomalies:
        print(f"[{a.severity.label.upper()}] {a.description}")


def run_parse(args: argparse.Namespace, cfg: DetectionConfig) -> int:
    events = load_events(args.file, cfg)
    flt = EventFilter(event_ids=args.event_id, after=args.after, before=args.before, search=args.search)
    events = flt.apply(events)

    if not events:
        print("No events found")
        return 0

    print(events_to_frame(events, limit=EVENTS_DISPLAYED).to_string(index=False))
    if len(events) > EVENTS_DISPLAYED:
        print(f"\nShowing first {EVENTS_DISPLAYED} events out of {len(events)}")

    if args.detect:
        anomalies = AnomalyDetector(cfg).analyze_batch(events)
        triage = anomalies_to_frame(anomalies)
        print("\nDetected Anomalies:")
        if triage.empty:
            print("None")
        else:
            print(triage.drop(columns=["command_line"]).to_string(index=False))
        print(f"\nTotal anomalies found: {len(anomalies)}")
        if args.output:
            out_path = Path(args.output)
            out_path.parent.mkdir(parents=True, exist_ok=True)
            triage.to_csv(out_path, index=False)
            logger.info("Anomalies written to %s", out_path)
    return 0


def run_watch(args: argparse.Namespace, cfg: DetectionConfig) -> int:
    source = JsonlFollowSource(args.file, cfg, from_start=args.from_start)
    monitor = LiveMonitor(
        source,
        cfg,
        event_filter=EventFilter(event_ids=args.event_id, search=args.search),
        detect=args.detect,
        on_event=lambda e, n: print(compact_line(e, n)),
        on_anomalies=_print_anomalies,
    )
    monitor.install_signal_handler()
    print("Monitoring Sysmon events... press Ctrl+C to exit\n")
    monitor.run()
    print(f"\nProcessed {monitor.event_count} events")
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
        stream=sys.stderr,
    )
    cfg = DetectionConfig.from_json(args.config) if args.config else DetectionConfig()

    if args.command == "parse":
        return run_parse(args, cfg)
    return run_watch(args, cfg)


if __name__ == "__main__":
    sys.exit(main())
