"""Admin notification feed over WebSockets.

Server -> client messages are JSON objects::

    {"type": "venue_submitted", "data": {...}, "ts": 1717430400.0}

Publishing is synchronous and thread-safe so request handlers running in the
threadpool can call ``manager.publish`` directly. Notifications about rows
written in a transaction go through ``publish_after_commit``.
"""

from __future__ import annotations

import asyncio
import logging
import threading
import time
from dataclasses import dataclass, field

from fastapi import APIRouter, WebSocket, WebSocketDisconnect
from fastapi.concurrency import run_in_threadpool
from sqlalchemy import event as sa_event
from sqlalchemy.orm import Session as DbSession

from .database import get_session
from .sessions import resolve_session

logger = logging.getLogger("uvicorn.error")

router = APIRouter()


@dataclass
class AdminConnection:
    websocket: WebSocket
    loop: asyncio.AbstractEventLoop
    queue: asyncio.Queue = field(default_factory=asyncio.Queue)
    connected_at: float = field(default_factory=time.time)


class ConnectionManager:
    def __init__(self):
        self._connections: dict[int, AdminConnection] = {}
        self._lock = threading.Lock()

    def register(self, websocket: WebSocket) -> AdminConnection:
        conn = AdminConnection(websocket=websocket, loop=asyncio.get_running_loop())
        with self._lock:
            self._connections[id(websocket)] = conn
        logger.info("Admin feed connected: conn=%d", id(websocket))
        return conn

    def unregister(self, websocket: WebSocket) -> None:
        with self._lock:
            conn = self._connections.pop(id(websocket), None)
        if conn is not None:
            logger.info("Admin feed disconnected: conn=%d", id(websocket))

    def publish(self, event_type: str, data: dict) -> int:
        """Queue a message for every connected admin; returns the fan-out size."""
        message = {"type": event_type, "data": data, "ts": time.time()}
        with self._lock:
            targets = list(self._connections.values())
        delivered = 0
        for conn in targets:
            try:
                conn.loop.call_soon_threadsafe(conn.queue.put_nowait, message)
            except RuntimeError:
                # The connection's loop has already shut down.
                logger.warning("Dropping admin feed message for a closed loop")
                continue
            delivered += 1
        return delivered

    def stats(self) -> dict:
        with self._lock:
            return {"connections": len(self._connections)}


manager = ConnectionManager()

_PENDING_KEY = "pending_admin_notifications"


def publish_after_commit(db: DbSession, event_type: str, data: dict) -> None:
    """Publish once the current transaction commits; a rollback discards it."""
    db.info.setdefault(_PENDING_KEY, []).append((event_type, data))


@sa_event.listens_for(DbSession, "after_commit")
def _publish_pending(session: DbSession) -> None:
    for event_type, data in session.info.pop(_PENDING_KEY, []):
        manager.publish(event_type, data)


@sa_event.listens_for(DbSession, "after_rollback")
def _discard_pending(session: DbSession) -> None:
    session.info.pop(_PENDING_KEY, None)


async def _pump(conn: AdminConnection) -> None:
    while True:
        message = await conn.queue.get()
        await conn.websocket.send_json(message)


async def _drain(websocket: WebSocket) -> None:
    # Client messages are ignored; receiving detects the disconnect.
    while True:
        await websocket.receive_text()


def _is_admin_token(token: str | None) -> bool:
    with get_session() as db:
        return resolve_session(db, token).is_admin


@router.websocket("/ws/admin")
async def admin_feed(websocket: WebSocket):
    """Push review notifications to admins.

    Connect with: ws://localhost:8000/ws/admin?token=<admin token>
    """
    token = websocket.query_params.get("token")
    if not token:
        await websocket.close(code=4001, reason="Missing token")
        return
    if not await run_in_threadpool(_is_admin_token, token):
        await websocket.close(code=4003, reason="Administrator access required")
        return

    # Register before the handshake completes so nothing published after
    # the client sees the accept is missed.
    try:
        conn = manager.register(websocket)
        await websocket.accept()
        sender = asyncio.create_task(_pump(conn))
        receiver = asyncio.create_task(_drain(websocket))
        done, pending = await asyncio.wait(
            {sender, receiver}, return_when=asyncio.FIRST_COMPLETED
        )
        for task in pending:
            task.cancel()
        for task in done:
            exc = task.exception()
            if exc is not None and not isinstance(exc, WebSocketDisconnect):
                logger.error("Admin feed error: %s", exc)
    finally:
        manager.unregister(websocket)
