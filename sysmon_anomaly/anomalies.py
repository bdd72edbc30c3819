"""
Anomaly variants, severity grading and descriptions.
=====================================================
Every variant except EventStorm points at the event that triggered it.
EventStorm is an aggregate over many events, so `Anomaly.event` is optional
and returns None there; callers check before using it.

Severity is a pure function of the anomaly's content:
  UntrustedExecutable    High when the reason contains "Invalid", else Medium
  SuspiciousParentChild  High
  DeepProcessTree        High above the high-depth threshold, else Medium
  UnusualPort            Medium
  EventStorm             High
"""
from __future__ import annotations

import abc
import enum
from dataclasses import dataclass
from typing import Optional

from .events import SysmonEvent


class Severity(enum.IntEnum):
    LOW = 1
    MEDIUM = 2
    HIGH = 3
    CRITICAL = 4

    @property
    def label(self) -> str:
        return self.name.capitalize()

    def __str__(self) -> str:
        return self.label


@dataclass(frozen=True)
class Anomaly(abc.ABC):
    # Subclasses provide `event`: a field, or a property answering None.

    @property
    def kind(self) -> str:
        return type(self).__name__

    @property
    @abc.abstractmethod
    def severity(self) -> Severity:
        ...

    @property
    @abc.abstractmethod
    def description(self) -> str:
        ...


@dataclass(frozen=True)
class UntrustedExecutable(Anomaly):
    event: SysmonEvent
    reason: str

    @property
    def severity(self) -> Severity:
        return Severity.HIGH if "Invalid" in self.reason else Severity.MEDIUM

    @property
    def description(self) -> str:
        return f"Untrusted Executable: {self.reason}"


@dataclass(frozen=True)
class SuspiciousParentChild(Anomaly):
    event: SysmonEvent
    parent: str
    child: str
    reason: str

    @property
    def severity(self) -> Severity:
        return Severity.HIGH

    @property
    def description(self) -> str:
        return f"Suspicious Process Chain: {self.parent} -> {self.child} ({self.reason})"


@dataclass(frozen=True)
class DeepProcessTree(Anomaly):
    event: SysmonEvent
    depth: int
    # Depth above which the anomaly grades High
    high_depth: int = 7

    @property
    def severity(self) -> Severity:
        return Severity.HIGH if self.depth > self.high_depth else Severity.MEDIUM

    @property
    def description(self) -> str:
        return f"Deep Process Nesting: {self.depth} levels"


@dataclass(frozen=True)
class UnusualPort(Anomaly):
    event: SysmonEvent
    port: int
    process: str

    @property
    def severity(self) -> Severity:
        return Severity.MEDIUM

    @property
    def description(self) -> str:
        return f"Unusual Network Port: {self.port} used by {self.process}"


@dataclass(frozen=True)
class EventStorm(Anomaly):
    event_id: int
    count: int
    window_seconds: int

    @property
    def event(self) -> Optional[SysmonEvent]:
        return None

    @property
    def severity(self) -> Severity:
        return Severity.HIGH

    @property
    def description(self) -> str:
        return f"Event Storm: ID {self.event_id} ({self.count} events in {self.window_seconds}s)"
