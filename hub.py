import asyncio
from typing import Dict, Iterable, Optional

from fastapi import WebSocket
from fastapi.websockets import WebSocketState

from events import Outbound
from logging_config import get_logger

logger = get_logger(__name__)


class ConnectionHub:
    """Live WebSocket per connection id; the only place frames are written.

    Delivery is fire-and-forget: a peer that vanished mid-send is logged and
    skipped, never retried.
    """

    def __init__(self):
        self._sockets: Dict[str, WebSocket] = {}

    def add(self, connection_id: str, websocket: WebSocket):
        self._sockets[connection_id] = websocket
        logger.debug(f"Tracking socket {connection_id} ({len(self._sockets)} open)")

    def remove(self, connection_id: str) -> Optional[WebSocket]:
        return self._sockets.pop(connection_id, None)

    def __contains__(self, connection_id: str) -> bool:
        return connection_id in self._sockets

    def __len__(self) -> int:
        return len(self._sockets)

    async def send(self, message: Outbound) -> bool:
        websocket = self._sockets.get(message.to)
        if websocket is None or websocket.client_state != WebSocketState.CONNECTED:
            logger.debug(f"Dropped {message.event} for {message.to}: not connected")
            return False
        try:
            await websocket.send_json(message.frame())
            return True
        except Exception as e:
            logger.debug(f"Error sending {message.event} to {message.to}: {e}")
            return False

    async def deliver(self, messages: Iterable[Outbound]):
        # Preserve per-destination ordering: send sequentially
        for message in messages:
            await self.send(message)

    async def broadcast(self, event: str, data: dict):
        await asyncio.gather(
            *(self.send(Outbound(connection_id, event, data)) for connection_id in list(self._sockets)),
            return_exceptions=True,
        )

    async def close(self, connection_id: str, code: int = 1000, reason: str = ""):
        websocket = self.remove(connection_id)
        if websocket is None:
            return
        try:
            await websocket.close(code=code, reason=reason)
        except Exception as e:
            logger.debug(f"Error closing WebSocket {connection_id}: {e}")

    async def close_all(self, code: int = 1000, reason: str = ""):
        for connection_id in list(self._sockets):
            await self.close(connection_id, code=code, reason=reason)
