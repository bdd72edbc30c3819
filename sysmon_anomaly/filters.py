"""
Event selection for display and live ingestion.

Filters compare timestamps as strings, the same total order the batch
detector sorts by; well-formed ISO-8601 strings compare chronologically.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, List, Optional, Sequence

from .events import FileCreateEvent, NetworkEvent, ProcessCreateEvent, SysmonEvent


@dataclass(frozen=True)
class EventFilter:
    event_ids: Optional[Sequence[int]] = None
    after: Optional[str] = None
    before: Optional[str] = None
    search: Optional[str] = None

    def __post_init__(self):
        if self.search is not None:
            object.__setattr__(self, "search", self.search.lower())

    def matches(self, event: SysmonEvent) -> bool:
        if self.event_ids is not None and event.system.event_id not in self.event_ids:
            return False
        if self.after is not None and event.system.timestamp < self.after:
            return False
        if self.before is not None and event.system.timestamp > self.before:
            return False
        if self.search and not search_matches(event, self.search):
            return False
        return True

    def apply(self, events: Iterable[SysmonEvent]) -> List[SysmonEvent]:
        return [e for e in events if self.matches(e)]


def search_matches(event: SysmonEvent, term: str) -> bool:
    """Case-insensitive substring match over the fields an analyst searches."""
    term = term.lower()
    fields = [event.system.host]
    if isinstance(event, ProcessCreateEvent):
        fields += [event.image, event.command_line, event.user, event.parent_image]
    elif isinstance(event, NetworkEvent):
        fields += [event.image, event.destination_ip, event.user or ""]
    elif isinstance(event, FileCreateEvent):
        fields += [event.image, event.target_filename]
    return any(term in (f or "").lower() for f in fields)
