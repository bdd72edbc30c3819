"""
Rule-based anomaly detection for Sysmon process, network and file events.

Batch analysis over a collected log, or live analysis of one event at a time
against a bounded window of recent events.
"""
from .anomalies import (
    Anomaly, DeepProcessTree, EventStorm, Severity, SuspiciousParentChild,
    UnusualPort, UntrustedExecutable,
)
from .config import DetectionConfig
from .detector import AnomalyDetector, BatchArtifacts, detect_anomalies, detect_anomalies_live
from .events import (
    FileCreateEvent, InboundNetworkEvent, NetworkEvent, OutboundNetworkEvent,
    ProcessCreateEvent, SysmonEvent, System,
)

__all__ = [
    "Anomaly",
    "AnomalyDetector",
    "BatchArtifacts",
    "DeepProcessTree",
    "DetectionConfig",
    "EventStorm",
    "FileCreateEvent",
    "InboundNetworkEvent",
    "NetworkEvent",
    "OutboundNetworkEvent",
    "ProcessCreateEvent",
    "Severity",
    "SuspiciousParentChild",
    "SysmonEvent",
    "System",
    "UnusualPort",
    "UntrustedExecutable",
    "detect_anomalies",
    "detect_anomalies_live",
]
