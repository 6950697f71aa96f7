"""Async client for talking to a running relay over WebSocket."""

from __future__ import annotations

import argparse
import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, Optional

from . import events
from .config import LOG_FORMAT
from .events import encode

logger = logging.getLogger(__name__)


class SignalingClient:
    """Thin wrapper that speaks the relay vocabulary over an open websocket."""

    def __init__(self, ws, participant_id: Optional[str] = None):
        self.ws = ws
        self.participant_id = participant_id

    async def _send(self, event: Dict[str, Any]) -> None:
        await self.ws.send(encode(event))

    async def announce(self, participant_id: Optional[str] = None) -> None:
        if participant_id is not None:
            self.participant_id = participant_id
        if not self.participant_id:
            raise ValueError("Participant id cannot be empty")
        await self._send({"type": events.PRESENCE_ANNOUNCE, "id": self.participant_id})

    async def withdraw(self) -> None:
        await self._send({"type": events.PRESENCE_WITHDRAW})

    async def query(self) -> None:
        await self._send({"type": events.PRESENCE_QUERY})

    async def _route(self, event_type: str, blob_field: str, target_id: str, blob: Any) -> None:
        if not target_id:
            raise ValueError("Target id cannot be empty")
        await self._send({"type": event_type, "targetId": target_id, blob_field: blob})

    async def offer(self, target_id: str, offer: Any) -> None:
        await self._route(events.NEGOTIATION_OFFER, "offer", target_id, offer)

    async def answer(self, target_id: str, answer: Any) -> None:
        await self._route(events.NEGOTIATION_ANSWER, "answer", target_id, answer)

    async def candidate(self, target_id: str, candidate: Any) -> None:
        await self._route(events.CONNECTIVITY_CANDIDATE, "candidate", target_id, candidate)

    async def message(self, target_id: str, message: Any) -> None:
        await self._route(events.OPAQUE_MESSAGE, "message", target_id, message)

    async def signal(self, target_id: str, signal: Any) -> None:
        await self._route(events.SIGNAL, "signal", target_id, signal)

    async def receive(self) -> Dict[str, Any]:
        """Wait for the next event from the relay."""

        return events.decode(await self.ws.recv())

    def __aiter__(self) -> AsyncIterator[Dict[str, Any]]:
        return self._iter_events()

    async def _iter_events(self) -> AsyncIterator[Dict[str, Any]]:
        async for raw in self.ws:
            yield events.decode(raw)


@asynccontextmanager
async def connect(url: str, participant_id: Optional[str] = None, **kwargs) -> AsyncIterator[SignalingClient]:
    """Open *url*, announce *participant_id* when given, and yield a client."""

    import websockets  # lazy import

    async with websockets.connect(url, **kwargs) as ws:
        client = SignalingClient(ws, participant_id)
        if participant_id:
            await client.announce()
        yield client


async def run(url: str, participant_id: str, target: Optional[str] = None, text: Optional[str] = None) -> None:
    async with connect(url, participant_id) as client:
        logger.info("Connected to %s as %r", url, participant_id)
        if target and text is not None:
            await client.message(target, text)
        async for event in client:
            print(encode(event), flush=True)


def main(argv=None):
    parser = argparse.ArgumentParser(description="Connect to a rendezvous relay and print incoming events.")
    parser.add_argument("url", help="Relay WebSocket URL, e.g. ws://localhost:3000/ws")
    parser.add_argument("id", help="Participant id to announce.")
    parser.add_argument("--to", help="Participant id to send a chat message to.")
    parser.add_argument("--say", help="Chat message text to send once connected.")
    parser.add_argument("--verbose", action="store_true", help="Enable debug logging.")
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format=LOG_FORMAT,
    )
    try:
        asyncio.run(run(args.url, args.id, target=args.to, text=args.say))
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":  # pragma: no cover
    main()
