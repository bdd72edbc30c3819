"""
Event storm detection.
=======================
Two separate algorithms:

Batch (detect_storms_batch)
  Per event id, take the ordered parsed timestamps of the whole run. With
  fewer than `storm_min_events` timestamps the id is skipped. Otherwise a
  window of `storm_window_events` consecutive timestamps (a count, not a
  duration) slides across the sequence; the first window whose span is at
  most `storm_window_seconds` produces one EventStorm and scanning stops for
  that id. The reported count is `storm_min_events`, the reported window is
  the span in whole seconds.

Live (check_event_storm_live)
  From the new event's timestamp, look back `storm_window_seconds` through
  the context buffer, newest first, counting parseable timestamps and
  stopping at the first older one. Unparseable timestamps are skipped
  without stopping the walk. All buffered events count, whatever their id.
"""
from __future__ import annotations

import logging
from typing import Dict, List, Optional, Reversible, Sequence

import numpy as np
import pandas as pd

from .anomalies import EventStorm
from .config import ThresholdConfig
from .events import SysmonEvent, parse_timestamp

logger = logging.getLogger("sysmon_anomaly.storm")

_NS_PER_SECOND = 1_000_000_000


class TimestampTable:
    """Ordered parsed timestamps per event id, filled during a batch run."""

    def __init__(self):
        self._table: Dict[int, List[pd.Timestamp]] = {}

    def record(self, event_id: int, ts: pd.Timestamp) -> None:
        self._table.setdefault(event_id, []).append(ts)

    def event_ids(self) -> List[int]:
        return sorted(self._table)

    def timestamps(self, event_id: int) -> List[pd.Timestamp]:
        return list(self._table.get(event_id, ()))

    def __len__(self) -> int:
        return sum(len(v) for v in self._table.values())


def _to_ns(timestamps: Sequence[pd.Timestamp]) -> np.ndarray:
    return np.array([t.value for t in timestamps], dtype=np.int64)


def first_storm_window(
    timestamps: Sequence[pd.Timestamp],
    thresholds: Optional[ThresholdConfig] = None,
) -> Optional[int]:
    """
    Span in whole seconds of the first qualifying window, or None.

    Spans are truncated toward zero, so 10.9s counts as 10s.
    """
    thresholds = thresholds or ThresholdConfig()
    if len(timestamps) < thresholds.storm_min_events:
        return None
    size = thresholds.storm_window_events
    if size < 1 or len(timestamps) < size:
        return None

    ns = _to_ns(timestamps)
    spans_ns = ns[size - 1:] - ns[: len(ns) - size + 1]
    spans_s = np.trunc(spans_ns / _NS_PER_SECOND).astype(np.int64)
    hits = np.flatnonzero(spans_s <= thresholds.storm_window_seconds)
    if hits.size == 0:
        return None
    return int(spans_s[hits[0]])


def detect_storms_batch(
    table: TimestampTable,
    thresholds: Optional[ThresholdConfig] = None,
) -> List[EventStorm]:
    """At most one EventStorm per event id, ids scanned in ascending order."""
    thresholds = thresholds or ThresholdConfig()
    storms: List[EventStorm] = []
    for event_id in table.event_ids():
        span = first_storm_window(table.timestamps(event_id), thresholds)
        if span is None:
            continue
        logger.info("Event storm for event id %d (window span %ds)", event_id, span)
        storms.append(EventStorm(
            event_id=event_id,
            count=thresholds.storm_min_events,
            window_seconds=span,
        ))
    return storms


# ---------------------------------------------------------------------------
# Live mode
# ---------------------------------------------------------------------------

def count_recent(
    end: pd.Timestamp,
    context: Reversible[SysmonEvent],
    window_seconds: int,
) -> int:
    """Buffered events newer than `end - window_seconds`, newest first."""
    start = end - pd.Timedelta(seconds=window_seconds)
    count = 0
    for e in reversed(context):
        ts = parse_timestamp(e.system.timestamp)
        if ts is None:
            continue
        if ts < start:
            break
        count += 1
    return count


def check_event_storm_live(
    event: SysmonEvent,
    context: Reversible[SysmonEvent],
    thresholds: Optional[ThresholdConfig] = None,
) -> Optional[EventStorm]:
    thresholds = thresholds or ThresholdConfig()
    end = parse_timestamp(event.system.timestamp)
    if end is None:
        return None
    count = count_recent(end, context, thresholds.storm_window_seconds)
    if count >= thresholds.storm_min_events:
        return EventStorm(
            event_id=event.system.event_id,
            count=count,
            window_seconds=thresholds.storm_window_seconds,
        )
    return None
