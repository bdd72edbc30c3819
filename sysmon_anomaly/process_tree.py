"""
Process lineage tracking.
==========================
Two ways of answering "how many process-creation hops lead to this pid":

  ProcessTreeTracker   batch mode. Events arrive in timestamp order and the
                       tracker keeps pid -> depth plus parent -> children,
                       so each event costs O(1).
  live_process_depth   live mode. No state between calls; walks the bounded
                       context buffer backwards, most recent record first.

The live walk can only undercount: when an ancestor has already been evicted
from the buffer the walk stops there and uses the depth reached so far.
"""
from __future__ import annotations

import logging
from collections import defaultdict
from typing import Dict, Iterable, List, Optional, Reversible, Set

import networkx as nx

from .anomalies import DeepProcessTree
from .config import ThresholdConfig
from .events import ProcessCreateEvent, SysmonEvent

logger = logging.getLogger("sysmon_anomaly.process_tree")


class ProcessTreeTracker:
    """
    Stateful depth tracker for one batch run.

    Create one per run; pids are only meaningful within a single collection.
    """

    def __init__(self, thresholds: Optional[ThresholdConfig] = None):
        self.thresholds = thresholds or ThresholdConfig()
        self.depth: Dict[int, int] = {}
        self.children: Dict[int, List[int]] = defaultdict(list)
        self.parent_of: Dict[int, int] = {}

    def observe(self, event: ProcessCreateEvent) -> Optional[DeepProcessTree]:
        """Record one process creation; return an anomaly when nesting is too deep."""
        pid, parent_pid = event.pid, event.parent_pid
        current = self.depth.get(parent_pid, 0) + 1
        self.depth[pid] = current
        self.children[parent_pid].append(pid)
        self.parent_of[pid] = parent_pid

        if current > self.thresholds.deep_nesting_depth:
            logger.debug("pid %d reached depth %d", pid, current)
            return DeepProcessTree(
                event=event,
                depth=current,
                high_depth=self.thresholds.high_depth_severity,
            )
        return None

    # ------------------------------------------------------------------
    # Lineage queries
    # ------------------------------------------------------------------

    def children_of(self, pid: int) -> List[int]:
        return list(self.children.get(pid, ()))

    def ancestors(self, pid: int) -> List[int]:
        """Parent chain from nearest to farthest; stops on a pid reuse cycle."""
        chain: List[int] = []
        seen: Set[int] = {pid}
        current = self.parent_of.get(pid)
        while current is not None and current not in seen:
            chain.append(current)
            seen.add(current)
            current = self.parent_of.get(current)
        return chain

    def to_graph(self) -> nx.DiGraph:
        """Directed parent -> child graph; node attribute `depth` where known."""
        G = nx.DiGraph()
        for parent, kids in self.children.items():
            for child in kids:
                G.add_edge(parent, child)
        for pid, d in self.depth.items():
            if pid in G:
                G.nodes[pid]["depth"] = d
        return G

    def descendants(self, pid: int) -> Set[int]:
        G = self.to_graph()
        if pid not in G:
            return set()
        return nx.descendants(G, pid)


# ---------------------------------------------------------------------------
# Live mode
# ---------------------------------------------------------------------------

def _find_process(context: Reversible[SysmonEvent], pid: int) -> Optional[ProcessCreateEvent]:
    for e in reversed(context):
        if isinstance(e, ProcessCreateEvent) and e.pid == pid:
            return e
    return None


def live_process_depth(event: ProcessCreateEvent, context: Reversible[SysmonEvent]) -> int:
    """
    Count ancestor hops for `event` using only the context buffer.

    Stops at pid 0, at an ancestor missing from the buffer, or at a pid
    already visited (seeded with the event's own pid).
    """
    depth = 1
    current = event.parent_pid
    visited: Set[int] = {event.pid}
    while current != 0 and current not in visited:
        visited.add(current)
        parent_event = _find_process(context, current)
        if parent_event is None:
            break
        current = parent_event.parent_pid
        depth += 1
    return depth


def check_process_depth_live(
    event: ProcessCreateEvent,
    context: Reversible[SysmonEvent],
    thresholds: Optional[ThresholdConfig] = None,
) -> Optional[DeepProcessTree]:
    thresholds = thresholds or ThresholdConfig()
    depth = live_process_depth(event, context)
    if depth > thresholds.deep_nesting_depth:
        return DeepProcessTree(
            event=event,
            depth=depth,
            high_depth=thresholds.high_depth_severity,
        )
    return None


def batch_depths(events: Iterable[ProcessCreateEvent]) -> Dict[int, int]:
    """Final pid -> depth map for process events already in timestamp order."""
    tracker = ProcessTreeTracker()
    for e in events:
        tracker.observe(e)
    return dict(tracker.depth)
