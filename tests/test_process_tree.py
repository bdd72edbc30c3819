"""Tests for batch and live process depth tracking."""
from __future__ import annotations

from collections import deque
from datetime import datetime, timedelta, timezone

from sysmon_anomaly.config import ThresholdConfig
from sysmon_anomaly.events import ProcessCreateEvent, System
from sysmon_anomaly.process_tree import (
    ProcessTreeTracker, batch_depths, check_process_depth_live, live_process_depth,
)

BASE = datetime(2026, 1, 1, tzinfo=timezone.utc)


def iso(seconds: float) -> str:
    return (BASE + timedelta(seconds=seconds)).strftime("%Y-%m-%dT%H:%M:%S.%f")[:-3] + "Z"


def proc(pid, parent_pid, t=0.0):
    return ProcessCreateEvent(
        system=System(1, iso(t), "WS01"),
        pid=pid,
        parent_pid=parent_pid,
        image=r"C:\Windows\System32\cmd.exe",
        parent_image=r"C:\Windows\System32\cmd.exe",
    )


def make_chain(n):
    """pid 1 is the root (parent 0); pid k has parent k-1."""
    return [proc(pid, pid - 1, t=pid) for pid in range(1, n + 1)]


# ---------------------------------------------------------------------------
# Batch
# ---------------------------------------------------------------------------

def test_batch_chain_flags_only_beyond_threshold():
    tracker = ProcessTreeTracker()
    flagged = [a for a in (tracker.observe(e) for e in make_chain(7)) if a is not None]
    assert [a.depth for a in flagged] == [6, 7]
    assert [a.event.pid for a in flagged] == [6, 7]


def test_batch_unknown_parent_starts_at_one():
    tracker = ProcessTreeTracker()
    assert tracker.observe(proc(500, 9999)) is None
    assert tracker.depth[500] == 1


def test_batch_records_children_and_lineage():
    tracker = ProcessTreeTracker()
    for e in make_chain(4) + [proc(10, 2, t=10)]:
        tracker.observe(e)
    assert tracker.children_of(2) == [3, 10]
    assert tracker.ancestors(4) == [3, 2, 1, 0]
    assert tracker.descendants(2) == {3, 4, 10}
    G = tracker.to_graph()
    assert G.nodes[4]["depth"] == 4
    assert G.has_edge(2, 10)


def test_batch_ancestors_stop_on_pid_reuse_cycle():
    tracker = ProcessTreeTracker()
    tracker.observe(proc(20, 21))
    tracker.observe(proc(21, 20))
    assert tracker.ancestors(20) == [21]


def test_batch_threshold_configurable():
    tracker = ProcessTreeTracker(ThresholdConfig(deep_nesting_depth=2))
    flagged = [a for a in (tracker.observe(e) for e in make_chain(4)) if a is not None]
    assert [a.depth for a in flagged] == [3, 4]


def test_batch_depths_helper():
    assert batch_depths(make_chain(3)) == {1: 1, 2: 2, 3: 3}


# ---------------------------------------------------------------------------
# Live
# ---------------------------------------------------------------------------

def test_live_depth_matches_batch_with_full_context():
    chain = make_chain(7)
    depths = batch_depths(chain)
    for i, e in enumerate(chain):
        assert live_process_depth(e, deque(chain[:i])) == depths[e.pid]


def test_live_flags_deep_chain():
    chain = make_chain(7)
    a = check_process_depth_live(chain[-1], chain[:-1])
    assert a is not None
    assert a.depth == 7
    assert check_process_depth_live(chain[4], chain[:4]) is None


def test_live_missing_ancestor_undercounts():
    chain = make_chain(8)
    # pid 3 has been evicted
    context = [e for e in chain[:-1] if e.pid != 3]
    depth = live_process_depth(chain[-1], context)
    assert depth == 5
    assert depth <= batch_depths(chain)[8]


def test_live_never_overcounts_with_any_eviction():
    chain = make_chain(9)
    true_depth = batch_depths(chain)[9]
    for evicted in range(1, 9):
        context = [e for e in chain[:-1] if e.pid != evicted]
        assert live_process_depth(chain[-1], context) <= true_depth


def test_live_prefers_most_recent_record_for_reused_pid():
    # pid 5 first appears as a root, later reused under a deeper parent
    context = [proc(5, 0, t=0), proc(30, 0, t=1), proc(31, 30, t=2), proc(5, 31, t=3)]
    assert live_process_depth(proc(6, 5, t=4), context) == 4


def test_live_cycle_terminates():
    context = [proc(10, 11), proc(11, 10)]
    assert live_process_depth(proc(12, 10), context) == 3


def test_live_self_parent_terminates():
    assert live_process_depth(proc(5, 5), [proc(5, 5)]) == 1


def test_live_empty_context():
    assert live_process_depth(proc(5, 4), []) == 1
