"""
WebSocket feed for wager events.
Pushes duel countdowns and jackpot announcements to subscribed clients.
"""

import asyncio
from typing import Dict, Optional, Set

import orjson
from fastapi import WebSocket

from app.core.logger import get_logger

logger = get_logger("websocket")

TOPICS = ("duels", "jackpot")


def topic_for(event_type: str) -> Optional[str]:
    if event_type.startswith("duel"):
        return "duels"
    if event_type.startswith("jackpot"):
        return "jackpot"
    return None


class ConnectionManager:
    """
    Tracks websocket clients and their topic subscriptions.

    Engine events arrive synchronously through `publish`, which hands the
    broadcast to the running event loop.
    """

    def __init__(self):
        self.all_connections: Set[WebSocket] = set()
        self.topics: Dict[str, Set[WebSocket]] = {topic: set() for topic in TOPICS}
        self._pending: Set[asyncio.Task] = set()

    async def _send_json(self, websocket: WebSocket, data: dict):
        # orjson.dumps returns bytes, so send_bytes avoids a decode/encode round trip
        await websocket.send_bytes(orjson.dumps(data))

    async def connect(self, websocket: WebSocket):
        """Accept a new WebSocket connection, subscribed to every topic."""
        await websocket.accept()
        self.all_connections.add(websocket)
        for subscribers in self.topics.values():
            subscribers.add(websocket)
        logger.info(f"WebSocket connected: total={len(self.all_connections)}")

    def disconnect(self, websocket: WebSocket):
        self.all_connections.discard(websocket)
        for subscribers in self.topics.values():
            subscribers.discard(websocket)
        logger.info(f"WebSocket disconnected: total={len(self.all_connections)}")

    async def subscribe(self, websocket: WebSocket, topic: str):
        if topic in self.topics:
            self.topics[topic].add(websocket)
            await self._send_json(websocket, {"type": "status", "message": f"Subscribed to {topic}"})
        else:
            await self._send_json(websocket, {"type": "error", "message": "Topic not found"})

    async def unsubscribe(self, websocket: WebSocket, topic: str):
        if topic in self.topics:
            self.topics[topic].discard(websocket)
            await self._send_json(websocket, {"type": "status", "message": f"Unsubscribed from {topic}"})

    async def broadcast(self, topic: str, message: dict):
        """Send to every subscriber of `topic`, dropping clients that fail."""
        subscribers = list(self.topics.get(topic, ()))
        if not subscribers:
            return

        results = await asyncio.gather(
            *(self._send_json(ws, message) for ws in subscribers), return_exceptions=True
        )
        disconnected = [ws for ws, result in zip(subscribers, results) if isinstance(result, Exception)]
        if disconnected:
            logger.info(f"Dropping {len(disconnected)} disconnected clients during broadcast")
            for ws in disconnected:
                self.disconnect(ws)

    def publish(self, event: dict):
        """Engine event listener. No-op outside a running event loop."""
        topic = topic_for(event.get("type", ""))
        if topic is None or not self.topics[topic]:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return
        task = loop.create_task(self.broadcast(topic, event))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    def get_connection_count(self) -> int:
        return len(self.all_connections)


# Global WebSocket manager instance
ws_manager = ConnectionManager()
