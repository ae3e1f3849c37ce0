"""Per-interval deltas between two snapshots, ordered busiest first."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum

from mgotop.sampler import EVENTS, Snapshot


class Mode(StrEnum):
    """Which half of a counter the deltas are computed from."""

    COUNT = "count"
    TIME = "time"

    @property
    def unit(self) -> str:
        return "time(ms)" if self is Mode.TIME else "event count"


# Accepted spellings for -k. Anything else falls back to a four-letter
# prefix match against the event names (so "QUER", "Totals", "getm" work).
ALIASES: dict[str, str] = {
    "total": "total",
    "totals": "total",
    "readlock": "readLock",
    "rlock": "readLock",
    "writelock": "writeLock",
    "wlock": "writeLock",
    "queries": "queries",
    "query": "queries",
    "getmore": "getmore",
    "insert": "insert",
    "update": "update",
    "remove": "remove",
    "commands": "commands",
    "command": "commands",
}


def resolve_event(sort_by: str) -> str | None:
    """Map a user supplied sort key to an event name, or None if unknown."""
    key = sort_by.strip().lower()
    if key in ALIASES:
        return ALIASES[key]
    prefix = key[:4]
    for event in EVENTS:
        if event.lower()[:4] == prefix:
            return event
    return None


@dataclass
class Delta:
    namespace: str
    values: dict[str, int] = field(default_factory=lambda: dict[str, int]())
    sort_key: int = 0

    @property
    def anomalous(self) -> bool:
        """True when a counter went backwards (server restart between ticks)."""
        return any(v < 0 for v in self.values.values())


def _ms(micros: int) -> int:
    # Truncate toward zero so negative deltas round like positive ones.
    q = abs(micros) // 1000
    return -q if micros < 0 else q


def diff(
    prior: Snapshot,
    current: Snapshot,
    sort_by: str,
    mode: Mode = Mode.COUNT,
    clamp: bool = False,
) -> list[Delta]:
    """Compute deltas for namespaces present in both snapshots.

    Args:
        prior: Snapshot from the previous tick.
        current: Snapshot from this tick.
        sort_by: Sort key as typed by the user (see :func:`resolve_event`).
        mode: Difference counts, or cumulative time in milliseconds.
        clamp: Replace negative deltas by 0.

    Returns:
        Deltas sorted by sort key descending, then namespace ascending.
        An unknown sort key gives every delta a sort key of 0.
    """
    event = resolve_event(sort_by)
    deltas: list[Delta] = []

    for ns, cur in current.totals.items():
        last = prior.totals.get(ns)
        if last is None:
            continue  # new namespace, no baseline yet

        values: dict[str, int] = {}
        for e in EVENTS:
            if mode is Mode.TIME:
                v = _ms(cur[e].time - last[e].time)
            else:
                v = cur[e].count - last[e].count
            values[e] = max(v, 0) if clamp else v

        deltas.append(Delta(
            namespace=ns,
            values=values,
            sort_key=values[event] if event is not None else 0,
        ))

    deltas.sort(key=lambda d: (-d.sort_key, d.namespace))
    return deltas
