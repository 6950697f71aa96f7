"""Per-connection protocol state machine for presence and negotiation events."""

from __future__ import annotations

import enum
import logging
from typing import Any, Dict, Optional, Union

from . import events
from .config import PRESENCE_MODES
from .events import (
    InboundEvent,
    PresenceAnnounce,
    PresenceQuery,
    PresenceWithdraw,
    ProtocolError,
    RoutedEvent,
)
from .hub import Connection, ConnectionHub

logger = logging.getLogger(__name__)


class SessionState(str, enum.Enum):
    UNANNOUNCED = "unannounced"
    ANNOUNCED = "announced"
    CLOSED = "closed"


class RelayDispatcher:
    """
    Interprets the events of a single connection.

    The id attached to every forwarded event is the one this dispatcher
    registered, never anything the client put in the payload.

    ``presence_mode`` picks how a successful announce is advertised:
      - "join": a ``peer-joined`` notice to every other connection
      - "list": the full ``presence-list`` to every connection
    """

    def __init__(self, hub: ConnectionHub, connection: Connection, *, presence_mode: str = "join"):
        if presence_mode not in PRESENCE_MODES:
            raise ValueError(f"Unknown presence mode {presence_mode!r}")
        self.hub = hub
        self.connection = connection
        self.presence_mode = presence_mode
        self.state = SessionState.UNANNOUNCED
        self.participant_id: Optional[str] = None

    @property
    def registry(self):
        return self.hub.registry

    def _others(self) -> list[str]:
        return [pid for pid in self.registry.snapshot_ids() if pid != self.participant_id]

    # --------------------------------------------------------------------------
    # Lifecycle
    # --------------------------------------------------------------------------
    async def open(self) -> None:
        """Attach the connection and tell it who is already online."""

        self.hub.attach(self.connection)
        logger.info("Connection %s opened", self.connection.connection_id)
        await self.hub.deliver(self.connection, events.presence_list(self._others()))

    async def close(self) -> None:
        if self.state is SessionState.CLOSED:
            return
        self.hub.detach(self.connection)
        if self.state is SessionState.ANNOUNCED:
            await self._withdraw()
        self.state = SessionState.CLOSED
        logger.info("Connection %s closed", self.connection.connection_id)

    # --------------------------------------------------------------------------
    # Inbound events
    # --------------------------------------------------------------------------
    async def handle_frame(self, raw: Union[str, bytes, Dict[str, Any]]) -> None:
        """Decode and handle one frame; malformed frames are dropped."""

        try:
            event = events.parse_event(raw)
        except ProtocolError as exc:
            logger.debug("Dropping frame from %s: %s", self.connection.connection_id, exc)
            return
        await self.handle(event)

    async def handle(self, event: InboundEvent) -> None:
        if self.state is SessionState.CLOSED:
            return

        if isinstance(event, PresenceAnnounce):
            await self._announce(event.id)
        elif isinstance(event, PresenceWithdraw):
            if self.state is SessionState.ANNOUNCED:
                await self._withdraw()
        elif isinstance(event, PresenceQuery):
            await self.hub.deliver(self.connection, events.presence_list(self._others()))
        elif isinstance(event, RoutedEvent):
            await self._route(event)
        else:
            raise TypeError(f"Unhandled event type {type(event).__name__}")

    async def _announce(self, participant_id: Optional[str]) -> None:
        if not participant_id:
            return
        if self.state is SessionState.ANNOUNCED:
            if participant_id == self.participant_id and self.registry.lookup(participant_id) is self.connection:
                return
            if participant_id != self.participant_id:
                await self._withdraw()

        previous = self.registry.register(participant_id, self.connection)
        if previous is not None and previous is not self.connection:
            logger.warning(
                "Participant %r taken over by %s; %s is no longer routable",
                participant_id,
                self.connection.connection_id,
                previous.connection_id,
            )
        self.participant_id = participant_id
        self.state = SessionState.ANNOUNCED
        logger.info("Participant %r announced on %s", participant_id, self.connection.connection_id)

        if self.presence_mode == "list":
            await self.hub.broadcast(events.presence_list(self.registry.snapshot_ids()))
        else:
            await self.hub.broadcast(events.peer_joined(participant_id), exclude=self.connection)

    async def _withdraw(self) -> None:
        participant_id = self.participant_id
        self.participant_id = None
        self.state = SessionState.UNANNOUNCED
        if participant_id is None:
            return
        if self.registry.unregister(participant_id, self.connection):
            logger.info("Participant %r left", participant_id)
            await self.hub.broadcast(events.peer_left(participant_id), exclude=self.connection)

    async def _route(self, event: RoutedEvent) -> None:
        if self.participant_id is None:
            logger.debug(
                "Dropping %s from unannounced connection %s", event.type, self.connection.connection_id
            )
            return
        delivered = await self.hub.send_to(event.target_id, events.relayed(event, self.participant_id))
        if delivered:
            logger.debug("Forwarded %s from %r to %r", event.type, self.participant_id, event.target_id)
        else:
            logger.debug("Dropped %s from %r: %r is not reachable", event.type, self.participant_id, event.target_id)


__all__ = ["RelayDispatcher", "SessionState"]
