from __future__ import annotations

import asyncio

import pytest

from opengather import realtime


class BrokenHandshake:
    """WebSocket stand-in whose accept() fails."""

    def __init__(self, token: str):
        self.query_params = {"token": token}
        self.closed_with = None

    async def accept(self):
        raise RuntimeError("handshake failed")

    async def close(self, code: int = 1000, reason: str | None = None):
        self.closed_with = code


def test_failed_accept_does_not_leave_connection_registered(monkeypatch):
    monkeypatch.setattr(realtime, "_is_admin_token", lambda token: True)
    websocket = BrokenHandshake("admin-token")

    with pytest.raises(RuntimeError):
        asyncio.run(realtime.admin_feed(websocket))

    assert realtime.manager.stats() == {"connections": 0}


def test_non_admin_token_is_closed_before_registering(monkeypatch):
    monkeypatch.setattr(realtime, "_is_admin_token", lambda token: False)
    websocket = BrokenHandshake("member-token")

    asyncio.run(realtime.admin_feed(websocket))

    assert websocket.closed_with == 4003
    assert realtime.manager.stats() == {"connections": 0}


def test_publish_after_commit_waits_for_commit(db, monkeypatch):
    sent = []
    monkeypatch.setattr(
        realtime.manager, "publish", lambda kind, data: sent.append(kind)
    )

    realtime.publish_after_commit(db, "venue_submitted", {"id": "v1"})
    assert sent == []
    db.commit()
    db.commit()

    assert sent == ["venue_submitted"]


def test_publish_skips_connections_with_closed_loops():
    loop = asyncio.new_event_loop()
    loop.close()
    conn = realtime.AdminConnection(websocket=object(), loop=loop)
    manager = realtime.ConnectionManager()
    manager._connections[1] = conn

    assert manager.publish("venue_submitted", {}) == 0
