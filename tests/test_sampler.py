"""Tests for mgotop.sampler."""

from __future__ import annotations

from typing import Any
from unittest.mock import MagicMock, patch

import pytest
from pymongo.errors import AutoReconnect, OperationFailure, ServerSelectionTimeoutError

from mgotop.sampler import (
    EVENTS,
    ZERO,
    ConnectError,
    Counter,
    Sampler,
    SamplingError,
    Snapshot,
    decode_top,
)


def _reply(**totals: Any) -> dict[str, Any]:
    return {"totals": {"note": "all times in microseconds", **totals}, "ok": 1.0}


# ── decode_top ────────────────────────────────────────────────────────────


class TestDecodeTop:
    def test_full_namespace(self) -> None:
        doc = {e: {"time": i * 10, "count": i} for i, e in enumerate(EVENTS)}
        snap = decode_top(_reply(**{"db.c": doc}))
        assert snap.ok == 1
        assert list(snap.totals["db.c"]) == list(EVENTS)
        assert snap.totals["db.c"]["insert"] == Counter(time=50, count=5)

    def test_missing_events_default_to_zero(self) -> None:
        snap = decode_top(_reply(**{"db.c": {"total": {"time": 7, "count": 3}}}))
        stats = snap.totals["db.c"]
        assert stats["total"] == Counter(7, 3)
        assert all(stats[e] == ZERO for e in EVENTS if e != "total")

    def test_unknown_fields_ignored(self) -> None:
        reply = _reply(**{"db.c": {
            "total": {"time": 1, "count": 1},
            "someFutureField": {"time": 9, "count": 9},
        }})
        reply["operationTime"] = 12345
        snap = decode_top(reply)
        assert set(snap.totals["db.c"]) == set(EVENTS)

    def test_note_is_not_a_namespace(self) -> None:
        snap = decode_top(_reply())
        assert snap.namespaces() == set()

    def test_partial_counter(self) -> None:
        snap = decode_top(_reply(**{"db.c": {"queries": {"count": 4}}}))
        assert snap.totals["db.c"]["queries"] == Counter(0, 4)

    def test_ok_zero_is_error(self) -> None:
        with pytest.raises(SamplingError):
            decode_top({"ok": 0, "errmsg": "unauthorized"})

    def test_missing_totals_is_error(self) -> None:
        with pytest.raises(SamplingError):
            decode_top({"ok": 1})

    def test_malformed_counter_is_error(self) -> None:
        with pytest.raises(SamplingError):
            decode_top(_reply(**{"db.c": {"total": 5}}))

    def test_snapshot_is_read_only(self) -> None:
        snap = decode_top(_reply(**{"db.c": {}}))
        with pytest.raises(TypeError):
            snap.totals["db.d"] = {}  # type: ignore[index]
        with pytest.raises(TypeError):
            snap.totals["db.c"]["total"] = Counter(1, 1)  # type: ignore[index]

    def test_contains(self) -> None:
        snap = decode_top(_reply(**{"db.c": {}}))
        assert "db.c" in snap
        assert "db.d" not in snap


def test_snapshot_defaults() -> None:
    snap = Snapshot()
    assert snap.ok == 1
    assert snap.namespaces() == set()


# ── Sampler (mocked client) ───────────────────────────────────────────────


class TestSampler:
    def test_sample_issues_top_on_admin(self) -> None:
        client = MagicMock()
        client.admin.command.return_value = _reply(**{"db.c": {}})
        snap = Sampler(client).sample()
        client.admin.command.assert_called_once_with("top")
        assert "db.c" in snap

    def test_transport_failure(self) -> None:
        client = MagicMock()
        client.admin.command.side_effect = AutoReconnect("connection reset")
        with pytest.raises(SamplingError) as exc_info:
            Sampler(client).sample()
        assert isinstance(exc_info.value.__cause__, AutoReconnect)

    def test_command_rejected(self) -> None:
        client = MagicMock()
        client.admin.command.side_effect = OperationFailure("not authorized", code=13)
        with pytest.raises(SamplingError):
            Sampler(client).sample()

    def test_ok_zero_reply(self) -> None:
        client = MagicMock()
        client.admin.command.return_value = {"ok": 0}
        with pytest.raises(SamplingError):
            Sampler(client).sample()

    def test_close(self) -> None:
        client = MagicMock()
        Sampler(client).close()
        client.close.assert_called_once()


class TestConnect:
    @patch("mgotop.sampler.MongoClient")
    def test_connect_pings(self, mock_client_cls: MagicMock) -> None:
        sampler = Sampler.connect("db1", 27018, timeout_ms=100)
        mock_client_cls.assert_called_once_with(
            host="db1",
            port=27018,
            serverSelectionTimeoutMS=100,
            connectTimeoutMS=100,
        )
        mock_client_cls.return_value.admin.command.assert_called_once_with("ping")
        assert isinstance(sampler, Sampler)

    @patch("mgotop.sampler.MongoClient")
    def test_connect_failure(self, mock_client_cls: MagicMock) -> None:
        mock_client_cls.return_value.admin.command.side_effect = (
            ServerSelectionTimeoutError("no servers")
        )
        with pytest.raises(ConnectError) as exc_info:
            Sampler.connect("db1", 27017)
        assert "db1:27017" in str(exc_info.value)
