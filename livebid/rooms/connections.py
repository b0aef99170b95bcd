"""WebSocket-backed connection handle."""

from __future__ import annotations

import asyncio
from typing import Any
from uuid import uuid4

from fastapi import WebSocket

from ..bidding.models import Identity
from ..transport.canonical_json import dumps_text


class WebSocketConnection:
    def __init__(self, websocket: WebSocket) -> None:
        self.connection_id = f"conn_{uuid4().hex}"
        self.identity: Identity | None = None
        self._websocket = websocket
        self._send_lock = asyncio.Lock()

    async def send(self, message: dict[str, Any]) -> None:
        async with self._send_lock:
            await self._websocket.send_text(dumps_text(message))

    def __repr__(self) -> str:
        who = self.identity.identity_id if self.identity else "anonymous"
        return f"<WebSocketConnection {self.connection_id} {who}>"
