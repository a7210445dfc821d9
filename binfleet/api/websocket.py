from __future__ import annotations

import logging
from collections.abc import Iterable

from fastapi import APIRouter, Query, WebSocket, WebSocketDisconnect

LOGGER = logging.getLogger(__name__)

router = APIRouter()

TRIAGE_TOPIC = "triage"


def parse_topics(raw: str | Iterable[str] | None) -> frozenset[str] | None:
    """`None` or an empty selection means every topic."""
    if raw is None:
        return None
    parts = raw.split(",") if isinstance(raw, str) else raw
    topics = frozenset(str(part).strip() for part in parts if str(part).strip())
    return topics or None


class ConnectionManager:
    """Fans change and triage messages out to dashboard clients, filtered by topic.

    A topic is a backend table name (``devices``, ``historical``, ``routes``...)
    or ``triage`` for recomputed pickup candidates. The latest triage message is
    kept so a client that connects between recomputes still sees the current
    due set.
    """

    def __init__(self) -> None:
        self._connections: dict[WebSocket, frozenset[str] | None] = {}
        self._latest_triage: dict | None = None

    @property
    def client_count(self) -> int:
        return len(self._connections)

    def wants(self, websocket: WebSocket, topic: str) -> bool:
        topics = self._connections.get(websocket)
        return topics is None or topic in topics

    async def connect(self, websocket: WebSocket, topics: frozenset[str] | None = None) -> None:
        await websocket.accept()
        self._connections[websocket] = topics
        LOGGER.info("Websocket client connected, topics=%s", sorted(topics) if topics else "all")
        if self._latest_triage is not None and self.wants(websocket, TRIAGE_TOPIC):
            await self._send(websocket, self._latest_triage)

    def subscribe(self, websocket: WebSocket, topics: frozenset[str] | None) -> None:
        if websocket in self._connections:
            self._connections[websocket] = topics

    def disconnect(self, websocket: WebSocket) -> None:
        self._connections.pop(websocket, None)

    async def broadcast(self, message: dict, *, topic: str) -> int:
        if topic == TRIAGE_TOPIC:
            self._latest_triage = message

        sent = 0
        for websocket in [ws for ws in list(self._connections) if self.wants(ws, topic)]:
            if await self._send(websocket, message):
                sent += 1
        return sent

    async def _send(self, websocket: WebSocket, message: dict) -> bool:
        try:
            await websocket.send_json(message)
        except Exception as exc:
            LOGGER.info("Dropping websocket client: %s", exc)
            self.disconnect(websocket)
            return False
        return True


@router.websocket("/ws/changes")
async def changes_ws(websocket: WebSocket, topics: str | None = Query(default=None)) -> None:
    manager: ConnectionManager = websocket.app.state.ws_manager
    await manager.connect(websocket, parse_topics(topics))

    try:
        while True:
            # clients may narrow or widen their filter with {"topics": [...]}
            try:
                message = await websocket.receive_json()
            except ValueError:
                LOGGER.debug("Ignoring non-JSON websocket message")
                continue
            if isinstance(message, dict) and "topics" in message:
                manager.subscribe(websocket, parse_topics(message["topics"]))
    except WebSocketDisconnect:
        manager.disconnect(websocket)
