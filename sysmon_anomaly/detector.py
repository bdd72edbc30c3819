"""
Anomaly detection orchestrator.
================================
Two entry points over one rule set:

  analyze_batch(events)          whole collection; sorts by timestamp, runs
                                 the per-event rules and the stateful process
                                 tree tracker, then storm detection once.
  analyze_live(event, context)   one new event against a bounded buffer of
                                 recent events; no state kept between calls.

Typical usage:
    detector = AnomalyDetector(DetectionConfig())
    anomalies = detector.analyze_batch(events)
    for a in anomalies:
        print(a.severity, a.description)

A malformed timestamp never aborts a run: the event is left out of storm
accounting and still goes through every rule.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import List, Optional, Reversible, Sequence

import pandas as pd

from .anomalies import Anomaly
from .config import DetectionConfig
from .events import NetworkEvent, OutboundNetworkEvent, ProcessCreateEvent, SysmonEvent
from .process_tree import ProcessTreeTracker, check_process_depth_live
from .rules import check_unusual_port, classify_process_create
from .storm import TimestampTable, check_event_storm_live, detect_storms_batch

logger = logging.getLogger("sysmon_anomaly.detector")


# ---------------------------------------------------------------------------
# Artifacts dataclass
# ---------------------------------------------------------------------------

@dataclass
class BatchArtifacts:
    """Everything a batch run produced. Discarded with the run."""
    anomalies: List[Anomaly] = field(default_factory=list)
    events: List[SysmonEvent] = field(default_factory=list)
    tree: Optional[ProcessTreeTracker] = None
    timestamps: Optional[TimestampTable] = None
    unparsed_timestamps: int = 0


# ---------------------------------------------------------------------------
# Main detector class
# ---------------------------------------------------------------------------

class AnomalyDetector:

    def __init__(self, cfg: Optional[DetectionConfig] = None):
        self.cfg = cfg or DetectionConfig()

    # ------------------------------------------------------------------
    # Batch
    # ------------------------------------------------------------------

    def run(self, events: Sequence[SysmonEvent]) -> BatchArtifacts:
        """Batch analysis with the intermediate state kept for inspection."""
        cfg = self.cfg
        logger.info("Starting batch anomaly detection on %d events", len(events))

        ordered = sorted(events, key=lambda e: e.system.timestamp)
        parsed = pd.to_datetime(
            pd.Series([e.system.timestamp for e in ordered], dtype="object"),
            utc=True, errors="coerce", format="ISO8601",
        )

        art = BatchArtifacts(
            events=ordered,
            tree=ProcessTreeTracker(cfg.thresholds),
            timestamps=TimestampTable(),
        )

        for event, ts in zip(ordered, parsed):
            if pd.isna(ts):
                art.unparsed_timestamps += 1
                logger.info(
                    "Failed to parse timestamp for event %d: '%s'",
                    event.system.event_id, event.system.timestamp,
                )
            else:
                art.timestamps.record(event.system.event_id, ts)

            if isinstance(event, ProcessCreateEvent):
                art.anomalies.extend(classify_process_create(event, cfg))
                deep = art.tree.observe(event)
                if deep is not None:
                    art.anomalies.append(deep)
            elif isinstance(event, OutboundNetworkEvent):
                port = check_unusual_port(event, cfg.thresholds)
                if port is not None:
                    art.anomalies.append(port)

        art.anomalies.extend(detect_storms_batch(art.timestamps, cfg.thresholds))

        logger.info(
            "Finished batch anomaly detection on %d events: %d anomalies",
            len(events), len(art.anomalies),
        )
        return art

    def analyze_batch(self, events: Sequence[SysmonEvent]) -> List[Anomaly]:
        return self.run(events).anomalies

    # ------------------------------------------------------------------
    # Live
    # ------------------------------------------------------------------

    def analyze_live(
        self,
        event: SysmonEvent,
        context: Reversible[SysmonEvent],
    ) -> List[Anomaly]:
        """
        Anomalies for one new event. `context` holds the events seen before
        it, oldest first; it is read, never modified.
        """
        cfg = self.cfg
        anomalies: List[Anomaly] = []

        if isinstance(event, ProcessCreateEvent):
            anomalies.extend(classify_process_create(event, cfg))
            deep = check_process_depth_live(event, context, cfg.thresholds)
            if deep is not None:
                anomalies.append(deep)
        elif isinstance(event, NetworkEvent):
            port = check_unusual_port(event, cfg.thresholds)
            if port is not None:
                anomalies.append(port)

        if event.system.event_id in cfg.live_storm_event_ids:
            storm = check_event_storm_live(event, context, cfg.thresholds)
            if storm is not None:
                anomalies.append(storm)

        if anomalies:
            logger.debug(
                "%d anomalies for event %d at %s",
                len(anomalies), event.system.event_id, event.system.timestamp,
            )
        return anomalies


# ---------------------------------------------------------------------------
# Convenience wrappers
# ---------------------------------------------------------------------------

def detect_anomalies(
    events: Sequence[SysmonEvent],
    cfg: Optional[DetectionConfig] = None,
) -> List[Anomaly]:
    return AnomalyDetector(cfg).analyze_batch(events)


def detect_anomalies_live(
    event: SysmonEvent,
    context: Reversible[SysmonEvent],
    cfg: Optional[DetectionConfig] = None,
) -> List[Anomaly]:
    return AnomalyDetector(cfg).analyze_live(event, context)
