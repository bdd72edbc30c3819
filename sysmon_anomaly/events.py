"""
Typed Sysmon event model.
==========================
Four observable variants share a System header:

  ProcessCreateEvent    (event id 1)
  InboundNetworkEvent   (event id 3, initiated by the remote side)
  OutboundNetworkEvent  (event id 3, initiated by the local process)
  FileCreateEvent       (event id 11)

Events are frozen once built. Structural validation happens in schema.py;
this module only describes shape and a few read-only helpers.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Optional

import pandas as pd


EVENT_NAMES: Dict[int, str] = {
    1:   "ProcessCreate",
    2:   "FileCreateTime",
    3:   "NetworkConnect",
    4:   "ServiceStateChange",
    5:   "ProcessTerminate",
    6:   "DriverLoad",
    7:   "ImageLoad",
    8:   "CreateRemoteThread",
    9:   "RawAccessRead",
    10:  "ProcessAccess",
    11:  "FileCreate",
    12:  "RegistryEvent",
    13:  "RegistryEventSetValue",
    14:  "RegistryEventRename",
    15:  "FileCreateStreamHash",
    16:  "ServiceConfigurationChange",
    17:  "PipeEventCreated",
    18:  "PipeEventConnected",
    19:  "WmiEventFilter",
    20:  "WmiEventConsumer",
    21:  "WmiEventConsumerToFilter",
    22:  "DNSEvent",
    23:  "FileDelete",
    24:  "ClipboardChange",
    25:  "ProcessTampering",
    26:  "FileDeleteDetected",
    27:  "FileBlockExecutable",
    28:  "FileBlockShredding",
    29:  "FileExecutableDetected",
    255: "Error",
}


def event_name(event_id: int) -> str:
    return EVENT_NAMES.get(event_id, "Unknown")


def basename(path: Optional[str]) -> str:
    """Substring after the last path separator. Case is preserved."""
    if not path:
        return ""
    return str(path).replace("/", "\\").rsplit("\\", 1)[-1]


def parse_timestamp(text: Optional[str]) -> Optional[pd.Timestamp]:
    """Parse an ISO-8601-like timestamp to UTC; None when it does not parse."""
    if text is None or text == "":
        return None
    ts = pd.to_datetime(text, utc=True, errors="coerce", format="ISO8601")
    if pd.isna(ts):
        return None
    return ts


# ---------------------------------------------------------------------------
# Header
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class System:
    event_id: int
    timestamp: str
    host: str


# ---------------------------------------------------------------------------
# Variants
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class SysmonEvent:
    system: System

    @property
    def header(self) -> System:
        return self.system

    @property
    def name(self) -> str:
        return event_name(self.system.event_id)

    @property
    def event_id(self) -> int:
        return self.system.event_id

    @property
    def timestamp(self) -> str:
        return self.system.timestamp

    @property
    def host(self) -> str:
        return self.system.host

    @property
    def image(self) -> str:
        return ""

    @property
    def process_name(self) -> str:
        return basename(self.image)


@dataclass(frozen=True)
class ProcessCreateEvent(SysmonEvent):
    pid: int = 0
    parent_pid: int = 0
    image: str = ""
    parent_image: str = ""
    command_line: str = ""
    user: str = ""
    # Sysmon "Hashes" field, e.g. "SHA1=...,SHA256=..."
    hashes: str = ""
    signature_status: Optional[str] = None

    @property
    def sha256(self) -> Optional[str]:
        for part in self.hashes.split(","):
            algo, _, value = part.partition("=")
            if algo.strip().upper() == "SHA256" and value.strip():
                return value.strip().upper()
        return None


@dataclass(frozen=True)
class NetworkEvent(SysmonEvent):
    image: str = ""
    destination_ip: str = ""
    destination_port: int = 0
    protocol: str = ""
    initiated: bool = False
    user: Optional[str] = None


@dataclass(frozen=True)
class InboundNetworkEvent(NetworkEvent):
    pass


@dataclass(frozen=True)
class OutboundNetworkEvent(NetworkEvent):
    pass


@dataclass(frozen=True)
class FileCreateEvent(SysmonEvent):
    image: str = ""
    target_filename: str = ""
