from __future__ import annotations

import asyncio
import json
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict

from fastapi import WebSocket

logger = logging.getLogger(__name__)

SEND_TIMEOUT = 5.0
SYSTEM_AVATAR = "https://ui-avatars.com/api/?name=System&background=6366f1&color=fff"


@dataclass
class ConnectionInfo:
    client: str
    connected_at: float = field(default_factory=time.time)


def welcome_frame(text: str) -> dict:
    return {
        "id": 0,
        "author_name": "System",
        "author_avatar": SYSTEM_AVATAR,
        "content": text,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


class ConnectionManager:
    """Fan-out hub holding every open ``/ws/chat`` socket."""

    def __init__(self, welcome_message: str = "") -> None:
        self.connections: Dict[WebSocket, ConnectionInfo] = {}
        self.welcome_message = welcome_message

    async def connect(self, websocket: WebSocket) -> None:
        await websocket.accept()
        client = getattr(getattr(websocket, "client", None), "host", None) or "unknown"
        self.connections[websocket] = ConnectionInfo(client)
        logger.info(
            "chat.ws connect client=%s count=%s", client, len(self.connections)
        )
        if self.welcome_message:
            await websocket.send_text(json.dumps(welcome_frame(self.welcome_message)))

    def disconnect(self, websocket: WebSocket) -> None:
        info = self.connections.pop(websocket, None)
        if info is not None:
            logger.info(
                "chat.ws disconnect client=%s remaining=%s",
                info.client,
                len(self.connections),
            )

    async def broadcast_text(self, message: str) -> int:
        targets = list(self.connections.keys())
        coros = [asyncio.wait_for(ws.send_text(message), SEND_TIMEOUT) for ws in targets]
        results = await asyncio.gather(*coros, return_exceptions=True)
        sent = 0
        for ws, result in zip(targets, results):
            if isinstance(result, Exception):
                logger.warning("chat.ws send failed client=%s", self.connections.get(ws))
                self.disconnect(ws)
            else:
                sent += 1
        return sent

    async def broadcast_message(self, message: dict) -> int:
        logger.info("chat.ws broadcast id=%s clients=%s", message.get("id"), len(self.connections))
        sent = await self.broadcast_text(json.dumps(message))
        logger.debug("chat.ws broadcast delivered=%s", sent)
        return sent


manager = ConnectionManager()


async def websocket_endpoint_chat(websocket: WebSocket) -> None:
    await manager.connect(websocket)
    try:
        while True:
            frame = await websocket.receive()
            if frame["type"] == "websocket.disconnect":
                break
            text = frame.get("text")
            if text is None:
                logger.debug("chat.ws inbound ignored binary frame")
                continue
            logger.debug("chat.ws inbound ignored frame=%s", text[:100])
    finally:
        manager.disconnect(websocket)
