"""
Event loaders.
===============
Read collected Sysmon telemetry from disk and hand back typed events ready
for AnomalyDetector.analyze_batch().

Supported sources
-----------------
1. Windows event log files (.evtx), e.g. a saved
   Microsoft-Windows-Sysmon/Operational log. Decoded with python-evtx.
2. CSV exports (Sysmon, Splunk, Elastic, ...). Columns auto-detected via
   IOConfig candidates.
3. JSON lines (.jsonl / .ndjson), one flat record per line.

Usage
-----
    from sysmon_anomaly.loaders import load_events

    events = load_events("data/sysmon.evtx")
    events = load_events("data/sysmon_export.csv")
"""
from __future__ import annotations

import logging
from pathlib import Path
from typing import List, Optional

import pandas as pd
from Evtx.Evtx import Evtx

from .config import DetectionConfig
from .errors import SchemaError
from .events import SysmonEvent
from .schema import event_from_xml, events_from_frame

logger = logging.getLogger("sysmon_anomaly.loaders")


# ---------------------------------------------------------------------------
# EVTX
# ---------------------------------------------------------------------------

def load_events_evtx(
    path: str | Path,
    cfg: Optional[DetectionConfig] = None,
    max_records: Optional[int] = None,
) -> List[SysmonEvent]:
    """
    Decode every record of an .evtx file; records that are not supported
    Sysmon events are skipped (logged at DEBUG); records the reader cannot
    decode are skipped with a warning.
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"EVTX file not found: {path}")

    events: List[SysmonEvent] = []
    skipped = 0
    with Evtx(str(path)) as log:
        for record in log.records():
            try:
                xml = record.xml()
            except Exception as e:
                # python-evtx raises assorted errors on corrupt records
                logger.warning("Error reading EVTX record: %s", e)
                skipped += 1
                continue
            try:
                event = event_from_xml(xml, cfg)
            except SchemaError as e:
                logger.debug("Failed to parse record as Sysmon event: %s", e)
                skipped += 1
                continue
            if event is None:
                skipped += 1
                continue
            events.append(event)
            if max_records and len(events) >= max_records:
                break

    if not events:
        logger.warning("No Sysmon events found in file: %s", path)
    else:
        logger.info("Parsed %d Sysmon events from %s (%d skipped)", len(events), path.name, skipped)
    return events


# ---------------------------------------------------------------------------
# Tabular exports
# ---------------------------------------------------------------------------

def _finalize(df: pd.DataFrame, path: Path, cfg: Optional[DetectionConfig]) -> List[SysmonEvent]:
    logger.info("Loaded %d rows, %d columns from %s", len(df), len(df.columns), path.name)
    events, rejected = events_from_frame(df, cfg)
    if rejected:
        logger.warning("%d rows in %s could not be normalized", rejected, path.name)
    logger.info("Normalized %d supported events from %s", len(events), path.name)
    return events


def load_events_csv(
    path: str | Path,
    cfg: Optional[DetectionConfig] = None,
    max_rows: Optional[int] = None,
) -> List[SysmonEvent]:
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Sysmon CSV not found: {path}")

    kwargs = {"low_memory": False, "dtype": str, "keep_default_na": False}
    if max_rows:
        kwargs["nrows"] = max_rows
    df = pd.read_csv(path, **kwargs)
    return _finalize(df, path, cfg)


def load_events_jsonl(
    path: str | Path,
    cfg: Optional[DetectionConfig] = None,
    max_rows: Optional[int] = None,
) -> List[SysmonEvent]:
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Sysmon JSONL not found: {path}")

    df = pd.read_json(path, lines=True, dtype=False, convert_dates=False)
    if max_rows:
        df = df.head(max_rows)
    return _finalize(df, path, cfg)


def load_events(
    path: str | Path,
    cfg: Optional[DetectionConfig] = None,
) -> List[SysmonEvent]:
    """Dispatch on file suffix."""
    path = Path(path)
    suffix = path.suffix.lower()
    if suffix == ".evtx":
        return load_events_evtx(path, cfg)
    if suffix == ".csv":
        return load_events_csv(path, cfg)
    if suffix in (".jsonl", ".ndjson"):
        return load_events_jsonl(path, cfg)
    raise ValueError(f"Unsupported input type: {suffix}. Use .evtx, .csv or .jsonl")
