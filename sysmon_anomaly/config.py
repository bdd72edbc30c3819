"""
Detection Configuration
=======================
Rule tables, thresholds and live-loop settings for the anomaly engine.

Nothing in the classifiers or trackers reads a module-level constant; every
table and threshold arrives through a DetectionConfig so rules can be tested
and swapped without patching.

Sub-configs:
  - RuleTables:       parent/child rule rows (office apps, shells, service host)
  - ThresholdConfig:  nesting depth, port floor, storm counts and windows
  - TrustPolicy:      untrusted-executable policy
  - LiveConfig:       context buffer capacity and poll cadence
  - IOConfig:         flexible column detection for raw records
"""
from __future__ import annotations

import dataclasses
import json
from dataclasses import dataclass, field
from typing import Any, Dict, FrozenSet, Tuple


# ---------------------------------------------------------------------------
# Sub-configs
# ---------------------------------------------------------------------------

@dataclass
class RuleTables:
    """Static parent/child rule rows. Extend by adding names, not code."""
    office_apps: FrozenSet[str] = frozenset({"winword.exe", "excel.exe", "powerpnt.exe"})
    shell_processes: FrozenSet[str] = frozenset({
        "powershell.exe", "cmd.exe", "wscript.exe", "cscript.exe",
    })
    service_host: str = "svchost.exe"
    service_parent: str = "services.exe"


@dataclass
class ThresholdConfig:
    # Depth strictly above this raises DeepProcessTree
    deep_nesting_depth: int = 5
    # Depth strictly above this bumps DeepProcessTree to High
    high_depth_severity: int = 7

    # First port of the IANA ephemeral range
    unusual_port_min: int = 49152

    # Storm: events needed per event id, and the time window in seconds
    storm_min_events: int = 50
    storm_window_seconds: int = 10
    # Batch storm scans windows of this many consecutive timestamps
    storm_window_events: int = 10


@dataclass
class TrustPolicy:
    """Signals for the untrusted-executable rule.

    Reasons for hash and signature failures start with "Invalid"; severity
    grading depends on that prefix.
    """
    untrusted_dirs: Tuple[str, ...] = (
        "\\appdata\\",
        "\\temp\\",
        "\\downloads\\",
        "\\users\\public\\",
        "\\programdata\\",
        "\\$recycle.bin\\",
    )
    blocked_sha256: FrozenSet[str] = frozenset()
    check_signatures: bool = True


@dataclass
class LiveConfig:
    buffer_size: int = 1000
    poll_timeout_seconds: float = 1.0
    # Max records pulled from the source per poll
    batch_size: int = 16


@dataclass
class IOConfig:
    """Column candidates for raw records (first found wins)."""
    timestamp_cols: Tuple[str, ...] = ("SystemTime", "TimeCreated", "UtcTime", "_timestamp", "timestamp", "ts")
    host_cols: Tuple[str, ...] = ("Computer", "host.fqdn", "Hostname", "Host", "host")
    event_id_cols: Tuple[str, ...] = ("EventID", "winlog.event_id", "EventId", "event_id")
    pid_cols: Tuple[str, ...] = ("ProcessId", "process_id", "pid")
    parent_pid_cols: Tuple[str, ...] = ("ParentProcessId", "parent_process_id", "ppid", "parent_pid")
    image_cols: Tuple[str, ...] = ("Image", "ProcessImage", "process_image", "image")
    parent_image_cols: Tuple[str, ...] = ("ParentImage", "ParentProcessName", "parent_image")
    cmdline_cols: Tuple[str, ...] = ("CommandLine", "CmdLine", "cmdline", "command_line")
    user_cols: Tuple[str, ...] = ("User", "UserName", "user")
    hashes_cols: Tuple[str, ...] = ("Hashes", "hashes")
    signature_cols: Tuple[str, ...] = ("SignatureStatus", "signature_status")
    dest_ip_cols: Tuple[str, ...] = ("DestinationIp", "dest_ip", "destination_ip")
    dest_port_cols: Tuple[str, ...] = ("DestinationPort", "dest_port", "destination_port")
    protocol_cols: Tuple[str, ...] = ("Protocol", "protocol")
    initiated_cols: Tuple[str, ...] = ("Initiated", "initiated")
    target_cols: Tuple[str, ...] = ("TargetFilename", "target_filename")


# ---------------------------------------------------------------------------
# Top-level config
# ---------------------------------------------------------------------------

@dataclass
class DetectionConfig:
    """
    Master config for the anomaly engine.

    Usage:
        cfg = DetectionConfig()                          # defaults
        cfg.thresholds.deep_nesting_depth = 4
        cfg = DetectionConfig.from_json("detect.json")
    """
    rules: RuleTables = field(default_factory=RuleTables)
    thresholds: ThresholdConfig = field(default_factory=ThresholdConfig)
    trust: TrustPolicy = field(default_factory=TrustPolicy)
    live: LiveConfig = field(default_factory=LiveConfig)
    io: IOConfig = field(default_factory=IOConfig)

    # Event ids that run the live storm check
    live_storm_event_ids: Tuple[int, ...] = (1,)

    def as_dict(self) -> Dict[str, Any]:
        return dataclasses.asdict(self)

    def to_json(self, path: str) -> None:
        with open(path, "w") as f:
            json.dump(self.as_dict(), f, indent=2, default=_json_default)

    @classmethod
    def from_json(cls, path: str) -> "DetectionConfig":
        with open(path) as f:
            d = json.load(f)
        return cls.from_dict(d)

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "DetectionConfig":
        rules = dict(d.get("rules", {}))
        for key in ("office_apps", "shell_processes"):
            if key in rules:
                rules[key] = frozenset(s.lower() for s in rules[key])
        for key in ("service_host", "service_parent"):
            if key in rules:
                rules[key] = rules[key].lower()
        trust = dict(d.get("trust", {}))
        if "untrusted_dirs" in trust:
            trust["untrusted_dirs"] = tuple(s.lower() for s in trust["untrusted_dirs"])
        if "blocked_sha256" in trust:
            trust["blocked_sha256"] = frozenset(s.upper() for s in trust["blocked_sha256"])
        io = {k: tuple(v) for k, v in d.get("io", {}).items()}
        return cls(
            rules=RuleTables(**rules),
            thresholds=ThresholdConfig(**d.get("thresholds", {})),
            trust=TrustPolicy(**trust),
            live=LiveConfig(**d.get("live", {})),
            io=IOConfig(**io),
            live_storm_event_ids=tuple(d.get("live_storm_event_ids", (1,))),
        )


def _json_default(obj: Any) -> Any:
    if isinstance(obj, (set, frozenset)):
        return sorted(obj)
    return str(obj)
