from __future__ import annotations

from typing import Any, Dict


async def emit_chat_message(message: Dict[str, Any]) -> None:
    """Push a persisted chat message to every websocket subscriber.

    ``message`` is the wire form of a stored row, one frame per message.
    """
    if not message:
        return
    # Import lazily to avoid circular imports with :mod:`ws`.
    from .ws import manager

    await manager.broadcast_message(message)
