"""Tests for the triage tables and the command-line entry point."""
from __future__ import annotations

import json

import pandas as pd

import sysmon_anomaly.cli as cli_mod
from sysmon_anomaly.anomalies import DeepProcessTree, EventStorm, SuspiciousParentChild, UnusualPort
from sysmon_anomaly.cli import build_parser, main
from sysmon_anomaly.events import (
    FileCreateEvent, OutboundNetworkEvent, ProcessCreateEvent, System,
)
from sysmon_anomaly.live import LiveMonitor
from sysmon_anomaly.report import (
    ANOMALY_COLUMNS, anomalies_to_frame, compact_line, events_to_frame, severity_counts,
    truncate,
)


def make_process(pid=100, image=r"C:\Windows\System32\cmd.exe"):
    return ProcessCreateEvent(
        system=System(1, "2026-01-01T00:00:00.000Z", "WS01"),
        pid=pid,
        parent_pid=4,
        image=image,
        parent_image=r"C:\Program Files\Microsoft Office\root\Office16\WINWORD.EXE",
        command_line="cmd.exe /c whoami",
    )


def make_net(port=50000):
    return OutboundNetworkEvent(
        system=System(3, "2026-01-01T00:00:01.000Z", "WS01"),
        image=r"C:\x\beacon.exe",
        destination_ip="203.0.113.7",
        destination_port=port,
        protocol="tcp",
        initiated=True,
    )


def test_truncate():
    assert truncate("short", 10) == "short"
    assert truncate("a" * 20, 10) == "aaaaaaa..."


def test_events_frame_and_compact_line():
    events = [
        make_process(),
        make_net(),
        FileCreateEvent(system=System(11, "2026-01-01T00:00:02Z", "WS01"),
                        image=r"C:\x\a.exe", target_filename=r"C:\drop.ps1"),
    ]
    df = events_to_frame(events)
    assert list(df["event_type"]) == ["ProcessCreate", "NetworkConnect", "FileCreate"]
    assert df.loc[1, "details"] == "tcp -> 203.0.113.7:50000"
    assert df.loc[2, "details"] == r"File: C:\drop.ps1"
    assert len(events_to_frame(events, limit=2)) == 2

    line = compact_line(events[0], 7)
    assert line.startswith("[2026-01-01T00:00:00.000Z] #7 ID:1 cmd.exe -> ")


def test_anomalies_ranked_by_severity_then_order():
    e = make_process()
    anomalies = [
        DeepProcessTree(e, 6),
        UnusualPort(make_net(), 50000, "beacon.exe"),
        SuspiciousParentChild(e, "WINWORD.EXE", "cmd.exe", "Office application spawned a shell"),
        EventStorm(event_id=3, count=50, window_seconds=4),
    ]
    df = anomalies_to_frame(anomalies)
    assert list(df.columns) == ANOMALY_COLUMNS
    assert list(df["anomaly"]) == [
        "SuspiciousParentChild", "EventStorm", "DeepProcessTree", "UnusualPort",
    ]
    assert list(df["rank"]) == [1, 2, 3, 4]
    assert list(df["severity"]) == ["High", "High", "Medium", "Medium"]

    storm = df.iloc[1]
    assert storm["event_id"] == 3
    assert pd.isna(storm["host"])
    assert df.iloc[0]["parent_image"].endswith("WINWORD.EXE")


def test_empty_anomaly_frame():
    df = anomalies_to_frame([])
    assert df.empty
    assert list(df.columns) == ANOMALY_COLUMNS


def test_severity_counts():
    e = make_process()
    counts = severity_counts([DeepProcessTree(e, 6), DeepProcessTree(e, 9), DeepProcessTree(e, 7)])
    assert counts.to_dict() == {"High": 1, "Medium": 2}
    assert severity_counts([]).empty


# ---------------------------------------------------------------------------
# CLI
# ---------------------------------------------------------------------------

def write_jsonl(path, rows):
    with open(path, "w") as f:
        for row in rows:
            f.write(json.dumps(row) + "\n")


def sample_rows():
    rows = [
        {"EventID": 1, "UtcTime": f"2025-03-04 10:00:0{i}.000", "Computer": "WS01",
         "ProcessId": 100 + i, "ParentProcessId": 99 + i,
         "Image": r"C:\Windows\System32\cmd.exe", "ParentImage": r"C:\Windows\System32\cmd.exe"}
        for i in range(7)
    ]
    rows.append({"EventID": 1, "UtcTime": "2025-03-04 10:00:08.000", "Computer": "WS01",
                 "ProcessId": 500, "ParentProcessId": 4,
                 "Image": r"C:\Windows\System32\svchost.exe", "ParentImage": r"C:\Windows\explorer.exe"})
    return rows


def test_parser_event_ids():
    args = build_parser().parse_args(["parse", "x.csv", "--event-id", "1,3", "-d"])
    assert args.event_id == [1, 3]
    assert args.detect is True


def test_parse_with_detection_writes_table(tmp_path, capsys):
    src = tmp_path / "sysmon.jsonl"
    out = tmp_path / "out" / "anomalies.csv"
    write_jsonl(src, sample_rows())

    assert main(["parse", str(src), "--detect", "--output", str(out)]) == 0

    printed = capsys.readouterr().out
    assert "Total anomalies found: 3" in printed
    table = pd.read_csv(out)
    assert list(table["anomaly"]) == ["SuspiciousParentChild", "DeepProcessTree", "DeepProcessTree"]


def test_parse_filters_and_empty_result(tmp_path, capsys):
    src = tmp_path / "sysmon.jsonl"
    write_jsonl(src, sample_rows())
    assert main(["parse", str(src), "--event-id", "11"]) == 0
    assert "No events found" in capsys.readouterr().out


def test_parse_uses_config_file(tmp_path, capsys):
    src = tmp_path / "sysmon.jsonl"
    write_jsonl(src, sample_rows())
    cfg_path = tmp_path / "detect.json"
    cfg_path.write_text(json.dumps({"thresholds": {"deep_nesting_depth": 10}}))

    assert main(["--config", str(cfg_path), "parse", str(src), "-d"]) == 0
    assert "Total anomalies found: 1" in capsys.readouterr().out


class OnePollMonitor(LiveMonitor):
    """Stops after a single poll and leaves the SIGINT handler alone."""

    def install_signal_handler(self):
        pass

    def run(self, max_polls=None):
        return super().run(max_polls=1)


def test_watch_replays_file_and_reports(tmp_path, capsys, monkeypatch):
    src = tmp_path / "sysmon.jsonl"
    write_jsonl(src, sample_rows())
    monkeypatch.setattr(cli_mod, "LiveMonitor", OnePollMonitor)

    assert main(["watch", str(src), "--from-start", "--detect"]) == 0

    printed = capsys.readouterr().out
    assert "#8 ID:1 svchost.exe" in printed
    assert "[HIGH] Suspicious Process Chain: explorer.exe -> svchost.exe" in printed
    assert "[MEDIUM] Deep Process Nesting: 7 levels" in printed
    assert "Processed 8 events" in printed


def test_watch_filters_events(tmp_path, capsys, monkeypatch):
    src = tmp_path / "sysmon.jsonl"
    write_jsonl(src, sample_rows())
    monkeypatch.setattr(cli_mod, "LiveMonitor", OnePollMonitor)

    assert main(["watch", str(src), "--from-start", "--search", "svchost"]) == 0
    printed = capsys.readouterr().out
    assert "Processed 1 events" in printed
    assert "Suspicious Process Chain" not in printed
