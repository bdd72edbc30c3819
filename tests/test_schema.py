"""Tests for raw record and Sysmon XML normalization."""
from __future__ import annotations

import pandas as pd
import pytest

from sysmon_anomaly.config import DetectionConfig, IOConfig
from sysmon_anomaly.errors import SchemaError
from sysmon_anomaly.events import (
    FileCreateEvent, InboundNetworkEvent, OutboundNetworkEvent, ProcessCreateEvent,
)
from sysmon_anomaly.schema import (
    event_from_record, event_from_xml, events_from_frame, flatten_event_xml,
)

PROCESS_XML = """
<Event xmlns="http://schemas.microsoft.com/win/2004/08/events/event">
  <System>
    <Provider Name="Microsoft-Windows-Sysmon" Guid="{5770385f-c22a-43e0-bf4c-06f5698ffbd9}"/>
    <EventID>1</EventID>
    <TimeCreated SystemTime="2025-03-04 10:15:30.123456+00:00"/>
    <Computer>WS01.corp.local</Computer>
  </System>
  <EventData>
    <Data Name="UtcTime">2025-03-04 10:15:30.120</Data>
    <Data Name="ProcessId">4120</Data>
    <Data Name="Image">C:\\Windows\\System32\\cmd.exe</Data>
    <Data Name="CommandLine">cmd.exe /c whoami</Data>
    <Data Name="User">CORP\\alice</Data>
    <Data Name="Hashes">SHA1=AA,SHA256=BB</Data>
    <Data Name="ParentProcessId">0x1f4</Data>
    <Data Name="ParentImage">C:\\Program Files\\Microsoft Office\\root\\Office16\\WINWORD.EXE</Data>
  </EventData>
</Event>
"""


def process_record(**overrides):
    record = {
        "EventID": "1",
        "UtcTime": "2025-03-04 10:15:30.120",
        "Computer": "WS01",
        "ProcessId": "4120",
        "ParentProcessId": "500",
        "Image": r"C:\Windows\System32\cmd.exe",
        "ParentImage": r"C:\Windows\explorer.exe",
        "CommandLine": "cmd.exe /c dir",
        "User": r"CORP\alice",
    }
    record.update(overrides)
    return record


# ---------------------------------------------------------------------------
# Flat records
# ---------------------------------------------------------------------------

def test_process_create_record():
    e = event_from_record(process_record())
    assert isinstance(e, ProcessCreateEvent)
    assert e.system.event_id == 1
    assert e.system.host == "WS01"
    assert e.system.timestamp == "2025-03-04 10:15:30.120"
    assert (e.pid, e.parent_pid) == (4120, 500)
    assert e.command_line == "cmd.exe /c dir"
    assert e.signature_status is None


def test_alternate_column_names():
    record = {
        "winlog.event_id": 1, "timestamp": "2025-03-04T10:15:30Z", "host.fqdn": "ws02",
        "pid": 10, "ppid": 9, "process_image": r"C:\a\b.exe",
    }
    e = event_from_record(record)
    assert e.pid == 10
    assert e.parent_pid == 9
    assert e.system.host == "ws02"
    assert e.parent_image == ""


def test_network_direction_from_initiated():
    base = {"EventID": 3, "UtcTime": "2025-03-04 10:15:31", "Computer": "WS01",
            "Image": r"C:\x\beacon.exe", "DestinationIp": "203.0.113.9",
            "DestinationPort": "50123", "Protocol": "tcp"}
    out = event_from_record({**base, "Initiated": "true"})
    assert isinstance(out, OutboundNetworkEvent)
    assert out.initiated is True
    assert out.destination_port == 50123

    inbound = event_from_record({**base, "Initiated": "false"})
    assert isinstance(inbound, InboundNetworkEvent)
    assert inbound.initiated is False

    assert isinstance(event_from_record(base), InboundNetworkEvent)


def test_file_create_record():
    e = event_from_record({"EventID": "11", "UtcTime": "2025-03-04 10:15:32", "Computer": "WS01",
                           "Image": r"C:\x\a.exe", "TargetFilename": r"C:\Users\bob\evil.ps1"})
    assert isinstance(e, FileCreateEvent)
    assert e.target_filename.endswith("evil.ps1")


def test_unsupported_event_id_is_none():
    assert event_from_record({"EventID": "22", "UtcTime": "x", "Computer": "WS01"}) is None


@pytest.mark.parametrize("drop", ["ProcessId", "ParentProcessId", "Image", "Computer", "UtcTime"])
def test_missing_required_field_raises(drop):
    record = process_record()
    del record[drop]
    with pytest.raises(SchemaError):
        event_from_record(record)


def test_missing_event_id_raises():
    with pytest.raises(SchemaError):
        event_from_record({"UtcTime": "2025-03-04", "Computer": "WS01"})


def test_malformed_integer_raises():
    with pytest.raises(SchemaError, match="pid"):
        event_from_record(process_record(ProcessId="four"))


def test_schema_error_is_value_error():
    with pytest.raises(ValueError):
        event_from_record(process_record(ParentProcessId="??"))


def test_custom_column_candidates():
    cfg = DetectionConfig(io=IOConfig(host_cols=("Machine",)))
    record = process_record()
    record["Machine"] = record.pop("Computer")
    assert event_from_record(record, cfg).system.host == "WS01"


def test_events_from_frame_counts_rejects():
    df = pd.DataFrame([
        process_record(),
        process_record(ProcessId=""),
        {"EventID": "22", "UtcTime": "2025-03-04", "Computer": "WS01"},
        process_record(ProcessId="4121"),
    ])
    events, rejected = events_from_frame(df)
    assert [e.pid for e in events] == [4120, 4121]
    assert rejected == 1


# ---------------------------------------------------------------------------
# XML
# ---------------------------------------------------------------------------

def test_flatten_event_xml():
    record = flatten_event_xml(PROCESS_XML)
    assert record["EventID"] == "1"
    assert record["Computer"] == "WS01.corp.local"
    assert record["SystemTime"].startswith("2025-03-04 10:15:30")
    assert record["ParentProcessId"] == "0x1f4"


def test_event_from_xml_prefers_system_time():
    e = event_from_xml(PROCESS_XML)
    assert isinstance(e, ProcessCreateEvent)
    assert e.system.timestamp == "2025-03-04 10:15:30.123456+00:00"
    assert e.parent_pid == 500
    assert e.sha256 == "BB"
    assert e.parent_image.endswith("WINWORD.EXE")


def test_xml_without_namespace():
    xml = PROCESS_XML.replace(' xmlns="http://schemas.microsoft.com/win/2004/08/events/event"', "")
    assert event_from_xml(xml).pid == 4120


def test_bad_xml_raises():
    with pytest.raises(SchemaError):
        flatten_event_xml("<Event><System>")


def test_xml_without_event_id_raises():
    with pytest.raises(SchemaError):
        flatten_event_xml("<Event><System><Computer>x</Computer></System></Event>")


@pytest.mark.parametrize("value", [42, None, True, [1, 2], "EventID=1"])
def test_non_mapping_record_raises(value):
    with pytest.raises(SchemaError, match="flat record"):
        event_from_record(value)
