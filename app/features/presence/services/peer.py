"""
Socket peers for the presence service.

The service only talks to the small PresencePeer surface so the socket
transport can be swapped (and faked in tests).
"""

import json
from typing import Any, Protocol

from fastapi import WebSocket
from starlette.websockets import WebSocketState


class PresencePeer(Protocol):
    @property
    def is_open(self) -> bool: ...

    async def send_json(self, payload: dict[str, Any]) -> None: ...

    async def close(self, code: int, reason: str = "") -> None: ...

    async def ping(self) -> None: ...


class WebSocketPeer:
    """PresencePeer backed by a Starlette WebSocket."""

    def __init__(self, websocket: WebSocket):
        self.websocket = websocket

    @property
    def is_open(self) -> bool:
        return (
            self.websocket.client_state == WebSocketState.CONNECTED
            and self.websocket.application_state == WebSocketState.CONNECTED
        )

    async def send_json(self, payload: dict[str, Any]) -> None:
        await self.websocket.send_text(json.dumps(payload))

    async def close(self, code: int, reason: str = "") -> None:
        if self.websocket.application_state == WebSocketState.DISCONNECTED:
            return
        await self.websocket.close(code=code, reason=reason)

    async def ping(self) -> None:
        # Protocol-level pings are sent by the ASGI server; a peer that missed
        # them has been disconnected underneath us
        if not self.is_open:
            raise ConnectionError("Presence socket is no longer connected")

    async def receive_text(self) -> str | None:
        """Next text frame, or None once the socket is gone."""
        if self.websocket.client_state != WebSocketState.CONNECTED:
            return None

        message = await self.websocket.receive()
        if message["type"] == "websocket.disconnect":
            return None
        if message.get("text") is not None:
            return message["text"]
        return (message.get("bytes") or b"").decode("utf-8", errors="replace")
