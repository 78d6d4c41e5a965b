"""Best-effort event push to WebSocket subscribers."""

from __future__ import annotations

import json
import logging
from typing import Any, Dict, Optional, Protocol, Set

import websockets

logger = logging.getLogger("crypto_pilot.notify")


class Notifier(Protocol):
    async def start(self) -> None: ...

    def publish(self, event: Dict[str, Any]) -> None: ...

    async def stop(self) -> None: ...


class NullNotifier:
    """Drops every event."""

    async def start(self) -> None:
        return None

    def publish(self, event: Dict[str, Any]) -> None:
        return None

    async def stop(self) -> None:
        return None


class WebSocketNotifier:
    """Broadcasts JSON events to every connected client; no replay, no acks."""

    def __init__(self, host: str = "0.0.0.0", port: int = 5001) -> None:
        self.host = host
        self.port = port
        self._clients: Set[Any] = set()
        self._server: Optional[Any] = None

    async def start(self) -> None:
        self._server = await websockets.serve(self._handler, self.host, self.port)
        logger.info("ws_notifier listening host=%s port=%d", self.host, self.port)

    async def _handler(self, connection: Any) -> None:
        self._clients.add(connection)
        try:
            await connection.wait_closed()
        finally:
            self._clients.discard(connection)

    def publish(self, event: Dict[str, Any]) -> None:
        if not self._clients:
            return
        websockets.broadcast(self._clients, json.dumps(event, default=str))

    async def stop(self) -> None:
        if self._server is None:
            return
        self._server.close()
        await self._server.wait_closed()
        self._server = None
