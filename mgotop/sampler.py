"""Acquisition of per-namespace operation counters via the ``top`` admin command.

The server reply looks like::

    {"totals": {"note": "...", "db.coll": {"total": {"time": 10, "count": 2}, ...}}, "ok": 1}

Only the nine event kinds in :data:`EVENTS` are kept; everything else is
ignored. A reply with ``ok != 1``, a transport failure or a malformed
document is a :class:`SamplingError`.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, NamedTuple

from pymongo import MongoClient
from pymongo.errors import PyMongoError

# Column/iteration order is fixed; the renderer relies on it.
EVENTS: tuple[str, ...] = (
    "total",
    "readLock",
    "writeLock",
    "queries",
    "getmore",
    "insert",
    "update",
    "remove",
    "commands",
)


class ConnectError(Exception):
    """The server could not be reached when the session was opened."""


class SamplingError(Exception):
    """A ``top`` request failed, was rejected, or could not be decoded."""


class Counter(NamedTuple):
    time: int  # cumulative microseconds
    count: int


ZERO = Counter(0, 0)

NamespaceStats = Mapping[str, Counter]


@dataclass(frozen=True)
class Snapshot:
    """Counters of every namespace at one instant. Never mutated."""

    totals: Mapping[str, NamespaceStats] = field(
        default_factory=lambda: MappingProxyType({})
    )
    ok: int = 1

    def namespaces(self) -> set[str]:
        return set(self.totals)

    def __contains__(self, ns: object) -> bool:
        return ns in self.totals


def _decode_counter(raw: Any) -> Counter:
    if not isinstance(raw, Mapping):
        raise TypeError(f"expected a document, got {type(raw).__name__}")
    return Counter(int(raw.get("time", 0)), int(raw.get("count", 0)))


def _decode_namespace(raw: Mapping[str, Any]) -> NamespaceStats:
    return MappingProxyType(
        {event: _decode_counter(raw[event]) if event in raw else ZERO for event in EVENTS}
    )


def decode_top(reply: Mapping[str, Any]) -> Snapshot:
    """Turn a raw ``top`` reply into a :class:`Snapshot`.

    Non-document entries under ``totals`` (the server adds a ``note``
    string) are skipped.

    Raises:
        SamplingError: ``ok`` is not 1 or the document is malformed.
    """
    try:
        ok = int(reply.get("ok", 0))
        if ok != 1:
            raise SamplingError(f"top command rejected: {dict(reply)!r}")
        totals = reply["totals"]
        decoded = {
            ns: _decode_namespace(stats)
            for ns, stats in totals.items()
            if isinstance(stats, Mapping)
        }
    except (KeyError, TypeError, ValueError, AttributeError) as e:
        raise SamplingError(f"malformed top reply: {e}") from e
    return Snapshot(totals=MappingProxyType(decoded), ok=ok)


class Sampler:
    """Owns the server session and issues ``top`` against ``admin``.

    There is no reconnect logic: any session error surfaces as an
    exception and the driver terminates.
    """

    def __init__(self, client: MongoClient):
        self._client = client

    @classmethod
    def connect(cls, host: str, port: int, timeout_ms: int = 5000) -> Sampler:
        """Open a session and verify the server answers.

        Raises:
            ConnectError: The server is unreachable or refused authentication.
        """
        try:
            client: MongoClient = MongoClient(
                host=host,
                port=port,
                serverSelectionTimeoutMS=timeout_ms,
                connectTimeoutMS=timeout_ms,
            )
            client.admin.command("ping")
        except PyMongoError as e:
            raise ConnectError(f"cannot connect to {host}:{port}: {e}") from e
        return cls(client)

    def sample(self) -> Snapshot:
        try:
            reply = self._client.admin.command("top")
        except PyMongoError as e:
            raise SamplingError(f"top command failed: {e}") from e
        return decode_top(reply)

    def close(self) -> None:
        self._client.close()
