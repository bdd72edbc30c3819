"""
Live monitoring loop.
======================
One ingestion loop, one cooperative stop flag, one bounded buffer:

  LiveMonitor.run()   polls an EventSource with a bounded timeout, and for
                      each event runs AnomalyDetector.analyze_live() against
                      the buffer before appending the event to it.
  ContextBuffer       fixed-capacity FIFO of recent events guarded by a lock;
                      the oldest entry is evicted when a new one arrives.
  stop()              only clears the running flag. The SIGINT handler calls
                      it; the loop notices between polls, so shutdown takes
                      at most one poll interval.

Each event is analyzed and appended under the same lock, so no check ever
sees a half-updated buffer.
"""
from __future__ import annotations

import abc
import json
import logging
import queue
import signal
import threading
import time
from collections import deque
from pathlib import Path
from typing import Callable, Deque, List, Optional

from .anomalies import Anomaly
from .config import DetectionConfig
from .detector import AnomalyDetector
from .errors import SchemaError, SourceError
from .events import SysmonEvent
from .filters import EventFilter
from .schema import event_from_record

logger = logging.getLogger("sysmon_anomaly.live")


# ---------------------------------------------------------------------------
# Context buffer
# ---------------------------------------------------------------------------

class ContextBuffer:
    """Bounded, insertion-ordered history of recent events."""

    def __init__(self, capacity: int = 1000):
        if capacity < 1:
            raise ValueError("capacity must be at least 1")
        self.capacity = capacity
        self._events: Deque[SysmonEvent] = deque(maxlen=capacity)
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._events)

    def append(self, event: SysmonEvent) -> None:
        with self._lock:
            self._events.append(event)

    def analyze_then_append(
        self,
        event: SysmonEvent,
        analyze: Callable[[SysmonEvent, Deque[SysmonEvent]], List[Anomaly]],
    ) -> List[Anomaly]:
        """Run `analyze` against the current contents, then admit the event."""
        with self._lock:
            found = analyze(event, self._events)
            self._events.append(event)
        return found

    def snapshot(self) -> List[SysmonEvent]:
        with self._lock:
            return list(self._events)


# ---------------------------------------------------------------------------
# Event sources
# ---------------------------------------------------------------------------

class EventSource(abc.ABC):
    """Something the loop can poll; `poll` must return within `timeout` seconds."""

    @abc.abstractmethod
    def poll(self, timeout: float) -> List[SysmonEvent]:
        ...

    def close(self) -> None:
        pass


class QueueEventSource(EventSource):
    """In-process source fed by another thread through a queue."""

    def __init__(self, q: Optional[queue.Queue] = None, batch_size: int = 16):
        self.queue = q if q is not None else queue.Queue()
        self.batch_size = batch_size

    def put(self, event: SysmonEvent) -> None:
        self.queue.put(event)

    def poll(self, timeout: float) -> List[SysmonEvent]:
        try:
            first = self.queue.get(timeout=timeout)
        except queue.Empty:
            return []
        batch = [first]
        while len(batch) < self.batch_size:
            try:
                batch.append(self.queue.get_nowait())
            except queue.Empty:
                break
        return batch


class JsonlFollowSource(EventSource):
    """
    Follow a JSON lines file as it grows (like `tail -f`), one flat Sysmon
    record per line. Lines that fail to decode are logged and skipped.
    """

    def __init__(
        self,
        path: str | Path,
        cfg: Optional[DetectionConfig] = None,
        from_start: bool = False,
    ):
        self.path = Path(path)
        self.cfg = cfg or DetectionConfig()
        try:
            self._fh = open(self.path, "r", encoding="utf-8", errors="replace")
        except OSError as e:
            raise SourceError(f"Cannot open {self.path}: {e}") from e
        if not from_start:
            self._fh.seek(0, 2)
        self._partial = ""

    def _decode(self, line: str) -> Optional[SysmonEvent]:
        try:
            return event_from_record(json.loads(line), self.cfg)
        except (json.JSONDecodeError, SchemaError) as e:
            logger.warning("Failed to parse event: %s", e)
            return None

    def poll(self, timeout: float) -> List[SysmonEvent]:
        deadline = time.monotonic() + timeout
        batch: List[SysmonEvent] = []
        while len(batch) < self.cfg.live.batch_size:
            chunk = self._fh.readline()
            if not chunk:
                if batch or time.monotonic() >= deadline:
                    break
                time.sleep(min(0.1, max(0.0, deadline - time.monotonic())))
                continue
            line = self._partial + chunk
            if not line.endswith("\n"):
                self._partial = line
                continue
            self._partial = ""
            line = line.strip()
            if not line:
                continue
            event = self._decode(line)
            if event is not None:
                batch.append(event)
        return batch

    def close(self) -> None:
        self._fh.close()


# ---------------------------------------------------------------------------
# Monitor
# ---------------------------------------------------------------------------

class LiveMonitor:
    """
    Typical usage:
        monitor = LiveMonitor(JsonlFollowSource("sysmon.jsonl"), detect=True,
                              on_anomalies=print_anomalies)
        monitor.install_signal_handler()
        monitor.run()
    """

    def __init__(
        self,
        source: EventSource,
        cfg: Optional[DetectionConfig] = None,
        event_filter: Optional[EventFilter] = None,
        detect: bool = True,
        on_event: Optional[Callable[[SysmonEvent, int], None]] = None,
        on_anomalies: Optional[Callable[[List[Anomaly]], None]] = None,
    ):
        self.cfg = cfg or DetectionConfig()
        self.source = source
        self.event_filter = event_filter or EventFilter()
        self.detect = detect
        self.on_event = on_event
        self.on_anomalies = on_anomalies
        self.detector = AnomalyDetector(self.cfg)
        self.buffer = ContextBuffer(self.cfg.live.buffer_size)
        self.event_count = 0
        self.anomaly_count = 0
        self._running = threading.Event()
        self._running.set()

    @property
    def running(self) -> bool:
        return self._running.is_set()

    def stop(self) -> None:
        self._running.clear()

    def install_signal_handler(self) -> None:
        """Route Ctrl+C to stop(). Must be called from the main thread."""
        def _handler(signum, frame):
            logger.info("Received stop signal... shutting down.")
            self.stop()
        signal.signal(signal.SIGINT, _handler)

    def ingest(self, event: SysmonEvent) -> List[Anomaly]:
        """Process one decoded event; returns its anomalies."""
        if not self.event_filter.matches(event):
            return []
        self.event_count += 1
        if self.on_event is not None:
            self.on_event(event, self.event_count)

        if self.detect:
            anomalies = self.buffer.analyze_then_append(event, self.detector.analyze_live)
        else:
            self.buffer.append(event)
            anomalies = []

        if anomalies:
            self.anomaly_count += len(anomalies)
            if self.on_anomalies is not None:
                self.on_anomalies(anomalies)
        return anomalies

    def run(self, max_polls: Optional[int] = None) -> List[SysmonEvent]:
        """Poll until stopped; returns the buffered events at exit."""
        logger.info("Starting live monitoring")
        polls = 0
        try:
            while self._running.is_set():
                for event in self.source.poll(self.cfg.live.poll_timeout_seconds):
                    self.ingest(event)
                polls += 1
                if max_polls is not None and polls >= max_polls:
                    break
        finally:
            self.source.close()
        logger.info(
            "Monitoring stopped. Processed %d events, %d anomalies",
            self.event_count, self.anomaly_count,
        )
        return self.buffer.snapshot()
