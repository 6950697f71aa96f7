"""Live connection set with unicast and broadcast delivery."""

from __future__ import annotations

import asyncio
import logging
import threading
from typing import Any, Dict, List, Optional

from starlette.websockets import WebSocket, WebSocketState

from .events import encode
from .registry import ConnectionRegistry

logger = logging.getLogger(__name__)


class Connection:
    """One live WebSocket plus the lock that serialises writes to it."""

    def __init__(self, ws: Optional[WebSocket], connection_id: str):
        self.ws = ws
        self.connection_id = connection_id
        self.alive = True
        self._lock = asyncio.Lock()

    @property
    def connected(self) -> bool:
        return (
            self.alive
            and self.ws is not None
            and self.ws.application_state == WebSocketState.CONNECTED
            and self.ws.client_state == WebSocketState.CONNECTED
        )

    async def send_event(self, event: Dict[str, Any]) -> None:
        async with self._lock:
            if self.connected:
                await self.ws.send_text(encode(event))

    async def close(self, code: int = 1000) -> None:
        async with self._lock:
            if self.connected:
                await self.ws.close(code=code)
            self.alive = False

    def __repr__(self) -> str:
        return f"<Connection {self.connection_id}>"


class ConnectionHub:
    """
    Every live connection, announced or not, plus the id registry.

    Delivery is fire-and-forget from the caller's point of view: a transport
    failure on one recipient is logged and counted as undelivered, never
    raised into the sender's flow and never retried.
    """

    def __init__(self, registry: Optional[ConnectionRegistry[Connection]] = None):
        self.registry: ConnectionRegistry[Connection] = registry if registry is not None else ConnectionRegistry()
        self._connections: Dict[str, Connection] = {}
        self._lock = threading.Lock()

    def attach(self, connection: Connection) -> None:
        with self._lock:
            self._connections[connection.connection_id] = connection

    def detach(self, connection: Connection) -> None:
        with self._lock:
            self._connections.pop(connection.connection_id, None)

    def connections(self, exclude: Optional[Connection] = None) -> List[Connection]:
        with self._lock:
            return [c for c in self._connections.values() if c is not exclude]

    def __len__(self) -> int:
        with self._lock:
            return len(self._connections)

    async def deliver(self, connection: Connection, event: Dict[str, Any]) -> bool:
        try:
            await connection.send_event(event)
        except Exception as exc:
            logger.warning("Delivery of %s to %s failed: %s", event.get("type"), connection, exc)
            return False
        return True

    async def send_to(self, participant_id: str, event: Dict[str, Any]) -> bool:
        """Unicast *event* to the connection registered as *participant_id*."""

        target = self.registry.lookup(participant_id)
        if target is None:
            return False
        return await self.deliver(target, event)

    async def broadcast(self, event: Dict[str, Any], exclude: Optional[Connection] = None) -> int:
        """Send *event* to every attached connection except *exclude*."""

        targets = self.connections(exclude=exclude)
        if not targets:
            return 0
        results = await asyncio.gather(*(self.deliver(c, event) for c in targets))
        return sum(1 for ok in results if ok)

    async def close_all(self, code: int = 1001) -> None:
        for connection in self.connections():
            try:
                await connection.close(code=code)
            except Exception as exc:
                logger.warning("Closing %s failed: %s", connection, exc)
        with self._lock:
            self._connections.clear()
        self.registry.clear()


__all__ = ["Connection", "ConnectionHub"]
