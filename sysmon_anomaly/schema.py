"""
Record normalization.
======================
Turns flat raw records (CSV rows, JSON lines, flattened Sysmon XML) into
typed events. Column names differ between exporters, so every field is
looked up through an ordered list of candidates from IOConfig; the first
one present wins.

Required per record: event id, timestamp, host.
Supported event ids: 1 (process create), 3 (network connect), 11 (file
create). Other ids normalize to None and are dropped by the loaders.
"""
from __future__ import annotations

import xml.etree.ElementTree as ET
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

import pandas as pd

from .config import DetectionConfig, IOConfig
from .errors import SchemaError
from .events import (
    FileCreateEvent, InboundNetworkEvent, OutboundNetworkEvent, ProcessCreateEvent,
    SysmonEvent, System,
)


@dataclass(frozen=True)
class SchemaSpec:
    required: Tuple[str, ...]
    optional: Tuple[str, ...] = ()


SUPPORTED_EVENT_IDS = (1, 3, 11)

SPECS: Dict[int, SchemaSpec] = {
    1: SchemaSpec(
        required=("pid", "parent_pid", "image"),
        optional=("parent_image", "cmdline", "user", "hashes", "signature"),
    ),
    3: SchemaSpec(
        required=("image", "dest_port"),
        optional=("dest_ip", "protocol", "initiated", "user"),
    ),
    11: SchemaSpec(
        required=("image", "target"),
    ),
}


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _is_missing(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return value == ""
    try:
        return bool(pd.isna(value))
    except (TypeError, ValueError):
        return False


def _first_present(record: Mapping[str, Any], candidates: Iterable[str]) -> Optional[str]:
    """Return the first candidate key with a usable value in record."""
    for c in candidates:
        if c in record and not _is_missing(record[c]):
            return c
    return None


def _pull(record: Mapping[str, Any], candidates: Iterable[str], default: Any = None) -> Any:
    key = _first_present(record, candidates)
    return record[key] if key is not None else default


def _as_int(value: Any, field_name: str) -> int:
    try:
        if isinstance(value, str):
            value = value.strip()
            return int(value, 16) if value.lower().startswith("0x") else int(value)
        return int(value)
    except (TypeError, ValueError) as e:
        raise SchemaError(f"Field '{field_name}' is not an integer: {value!r}") from e


def _as_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ("true", "1", "yes")
    return bool(value)


def _as_str(value: Any) -> str:
    return "" if _is_missing(value) else str(value)


def _timestamp_text(value: Any) -> str:
    if isinstance(value, pd.Timestamp):
        return value.isoformat()
    return _as_str(value)


# ---------------------------------------------------------------------------
# Main normalization entry point
# ---------------------------------------------------------------------------

def event_from_record(
    record: Mapping[str, Any],
    cfg: Optional[DetectionConfig] = None,
) -> Optional[SysmonEvent]:
    """
    Build a typed event from one flat record.

    Returns None for event ids this engine does not model. Raises SchemaError
    when a required field is missing or malformed.
    """
    if not isinstance(record, Mapping):
        raise SchemaError(f"Expected a flat record, got {type(record).__name__}")
    io: IOConfig = (cfg or DetectionConfig()).io

    eid_raw = _pull(record, io.event_id_cols)
    if eid_raw is None:
        raise SchemaError(f"No event id found. Tried: {io.event_id_cols}")
    event_id = _as_int(eid_raw, "event_id")
    if event_id not in SUPPORTED_EVENT_IDS:
        return None

    ts_raw = _pull(record, io.timestamp_cols)
    if ts_raw is None:
        raise SchemaError(f"No timestamp found. Tried: {io.timestamp_cols}")
    host = _pull(record, io.host_cols)
    if host is None:
        raise SchemaError(f"No host found. Tried: {io.host_cols}")

    system = System(event_id=event_id, timestamp=_timestamp_text(ts_raw), host=str(host))

    fields = {
        "pid":        _pull(record, io.pid_cols),
        "parent_pid": _pull(record, io.parent_pid_cols),
        "image":      _pull(record, io.image_cols),
        "parent_image": _pull(record, io.parent_image_cols),
        "cmdline":    _pull(record, io.cmdline_cols),
        "user":       _pull(record, io.user_cols),
        "hashes":     _pull(record, io.hashes_cols),
        "signature":  _pull(record, io.signature_cols),
        "dest_ip":    _pull(record, io.dest_ip_cols),
        "dest_port":  _pull(record, io.dest_port_cols),
        "protocol":   _pull(record, io.protocol_cols),
        "initiated":  _pull(record, io.initiated_cols),
        "target":     _pull(record, io.target_cols),
    }
    missing = [f for f in SPECS[event_id].required if fields[f] is None]
    if missing:
        raise SchemaError(f"Event {event_id} record is missing required fields: {missing}")

    if event_id == 1:
        return ProcessCreateEvent(
            system=system,
            pid=_as_int(fields["pid"], "pid"),
            parent_pid=_as_int(fields["parent_pid"], "parent_pid"),
            image=_as_str(fields["image"]),
            parent_image=_as_str(fields["parent_image"]),
            command_line=_as_str(fields["cmdline"]),
            user=_as_str(fields["user"]),
            hashes=_as_str(fields["hashes"]),
            signature_status=None if fields["signature"] is None else str(fields["signature"]),
        )

    if event_id == 3:
        initiated = _as_bool(fields["initiated"]) if fields["initiated"] is not None else False
        cls = OutboundNetworkEvent if initiated else InboundNetworkEvent
        return cls(
            system=system,
            image=_as_str(fields["image"]),
            destination_ip=_as_str(fields["dest_ip"]),
            destination_port=_as_int(fields["dest_port"], "dest_port"),
            protocol=_as_str(fields["protocol"]),
            initiated=initiated,
            user=None if fields["user"] is None else str(fields["user"]),
        )

    return FileCreateEvent(
        system=system,
        image=_as_str(fields["image"]),
        target_filename=_as_str(fields["target"]),
    )


def events_from_frame(
    df: pd.DataFrame,
    cfg: Optional[DetectionConfig] = None,
) -> Tuple[List[SysmonEvent], int]:
    """
    Normalize every row of a raw export.

    Returns (events, n_rejected); unsupported event ids are dropped silently,
    malformed rows are counted as rejected.
    """
    events: List[SysmonEvent] = []
    rejected = 0
    for record in df.to_dict(orient="records"):
        try:
            event = event_from_record(record, cfg)
        except SchemaError:
            rejected += 1
            continue
        if event is not None:
            events.append(event)
    return events, rejected


# ---------------------------------------------------------------------------
# Sysmon XML
# ---------------------------------------------------------------------------

def _local(tag: str) -> str:
    return tag.rsplit("}", 1)[-1]


def flatten_event_xml(xml: str) -> Dict[str, str]:
    """
    Flatten one <Event> document into a record: System children by tag name
    (TimeCreated contributes SystemTime), EventData by each Data's Name.
    """
    try:
        root = ET.fromstring(xml.strip())
    except ET.ParseError as e:
        raise SchemaError(f"Failed to parse event XML: {e}") from e

    record: Dict[str, str] = {}
    for node in root.iter():
        tag = _local(node.tag)
        if tag == "TimeCreated" and "SystemTime" in node.attrib:
            record["SystemTime"] = node.attrib["SystemTime"]
        elif tag in ("EventID", "Computer"):
            record[tag] = (node.text or "").strip()
        elif tag == "Data" and "Name" in node.attrib:
            record[node.attrib["Name"]] = "".join(node.itertext()).strip()
    if "EventID" not in record:
        raise SchemaError("Event XML has no System/EventID")
    return record


def event_from_xml(xml: str, cfg: Optional[DetectionConfig] = None) -> Optional[SysmonEvent]:
    return event_from_record(flatten_event_xml(xml), cfg)
