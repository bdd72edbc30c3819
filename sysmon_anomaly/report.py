"""
Tabular views of events and anomalies.
=======================================
The console layer stays thin: everything here returns DataFrames or plain
strings, and the CLI decides how to print or persist them.

anomalies_to_frame() is the ranked triage table: most severe first, ties
kept in discovery order.
"""
from __future__ import annotations

from typing import List, Optional, Sequence

import pandas as pd

from .anomalies import Anomaly
from .events import FileCreateEvent, NetworkEvent, ProcessCreateEvent, SysmonEvent

ANOMALY_COLUMNS = [
    "rank", "severity", "anomaly", "description",
    "timestamp", "event_id", "host", "process", "command_line", "parent_image",
]
EVENT_COLUMNS = ["timestamp", "event_id", "event_type", "host", "process", "details"]


def truncate(s: str, max_len: int) -> str:
    if len(s) <= max_len:
        return s
    return s[: max(0, max_len - 3)] + "..."


def format_event_details(event: SysmonEvent) -> str:
    if isinstance(event, ProcessCreateEvent):
        return event.command_line
    if isinstance(event, NetworkEvent):
        return f"{event.protocol} -> {event.destination_ip}:{event.destination_port}"
    if isinstance(event, FileCreateEvent):
        return f"File: {event.target_filename}"
    return ""


def compact_line(event: SysmonEvent, count: int, width: int = 80) -> str:
    """One-line rendering for the live feed."""
    return (
        f"[{event.system.timestamp}] #{count} ID:{event.system.event_id} "
        f"{event.process_name} -> {truncate(format_event_details(event), width)}"
    )


def events_to_frame(events: Sequence[SysmonEvent], limit: Optional[int] = None) -> pd.DataFrame:
    rows = [
        {
            "timestamp":  e.system.timestamp,
            "event_id":   e.system.event_id,
            "event_type": e.name,
            "host":       e.system.host,
            "process":    e.process_name,
            "details":    format_event_details(e),
        }
        for e in (events if limit is None else events[:limit])
    ]
    return pd.DataFrame(rows, columns=EVENT_COLUMNS)


def _anomaly_row(order: int, anomaly: Anomaly) -> dict:
    event = anomaly.event
    row = {
        "order":        order,
        "severity":     anomaly.severity.label,
        "_sev":         int(anomaly.severity),
        "anomaly":      anomaly.kind,
        "description":  anomaly.description,
        "timestamp":    None,
        "event_id":     getattr(anomaly, "event_id", None),
        "host":         None,
        "process":      None,
        "command_line": None,
        "parent_image": None,
    }
    if event is not None:
        row.update({
            "timestamp": event.system.timestamp,
            "event_id":  event.system.event_id,
            "host":      event.system.host,
            "process":   event.process_name,
        })
        if isinstance(event, ProcessCreateEvent):
            row["command_line"] = event.command_line
            row["parent_image"] = event.parent_image
    return row


def anomalies_to_frame(anomalies: Sequence[Anomaly]) -> pd.DataFrame:
    """Ranked triage table, one row per anomaly."""
    if not anomalies:
        return pd.DataFrame(columns=ANOMALY_COLUMNS)

    df = pd.DataFrame([_anomaly_row(i, a) for i, a in enumerate(anomalies)])
    df = df.sort_values(["_sev", "order"], ascending=[False, True]).reset_index(drop=True)
    df["rank"] = range(1, len(df) + 1)
    df["event_id"] = df["event_id"].astype("Int64")
    return df[ANOMALY_COLUMNS]


def severity_counts(anomalies: Sequence[Anomaly]) -> pd.Series:
    """Number of anomalies per severity label, most severe first."""
    if not anomalies:
        return pd.Series(dtype="int64", name="count")
    ordered: List[Anomaly] = sorted(anomalies, key=lambda a: a.severity, reverse=True)
    labels = [a.severity.label for a in ordered]
    return pd.Series(labels).value_counts(sort=False).rename("count")
