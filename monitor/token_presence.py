"""
Token Presence Tracker
======================
Remembers which tokens recent scans have shown, so one empty or partial
scan doesn't make everything disappear.

Each entry carries the last item seen for a key (mint), when it was
first and last seen, and how many scans contained it. The tracker is a
value: merged() and evicted() return a new tracker and leave the old one
untouched.

- merged(results, now): keys in `results` get last_seen_at = now and
  scan_count + 1; keys not in `results` are carried over unchanged
- evicted(now, grace): drops keys not seen for `grace` seconds or longer
"""

import time
from dataclasses import dataclass, field, replace
from types import MappingProxyType
from typing import Any, Mapping


@dataclass(frozen=True)
class PresenceEntry:
    item: Any
    first_seen_at: float
    last_seen_at: float
    scan_count: int


@dataclass(frozen=True)
class TokenPresenceTracker:
    entries: Mapping[str, PresenceEntry] = field(default_factory=dict)

    def __post_init__(self):
        object.__setattr__(self, "entries", MappingProxyType(dict(self.entries)))

    def __len__(self) -> int:
        return len(self.entries)

    def __contains__(self, key: str) -> bool:
        return key in self.entries

    def merged(self, results: Mapping[str, Any], now: float | None = None) -> "TokenPresenceTracker":
        now = time.time() if now is None else now
        entries = dict(self.entries)
        for key, item in results.items():
            previous = entries.get(key)
            if previous is None:
                entries[key] = PresenceEntry(item, now, now, 1)
            else:
                entries[key] = replace(
                    previous, item=item, last_seen_at=now, scan_count=previous.scan_count + 1
                )
        return TokenPresenceTracker(entries)

    def evicted(self, now: float | None = None, grace_seconds: float = 300.0) -> "TokenPresenceTracker":
        now = time.time() if now is None else now
        return TokenPresenceTracker({
            key: entry for key, entry in self.entries.items() if now - entry.last_seen_at < grace_seconds
        })

    def visible(self) -> list[Any]:
        """Items still tracked, most recently seen first."""
        ordered = sorted(self.entries.values(), key=lambda e: e.last_seen_at, reverse=True)
        return [entry.item for entry in ordered]
