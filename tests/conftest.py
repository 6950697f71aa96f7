import asyncio

import pytest

from rendezvous.dispatcher import RelayDispatcher
from rendezvous.hub import ConnectionHub


class FakeConnection:
    """Stands in for a live WebSocket connection and records what it was sent."""

    def __init__(self, connection_id: str, fail: bool = False):
        self.connection_id = connection_id
        self.fail = fail
        self.closed = False
        self.sent = []

    async def send_event(self, event):
        if self.fail:
            raise RuntimeError("transport gone")
        self.sent.append(event)

    async def close(self, code: int = 1000):
        self.closed = True

    def of_type(self, event_type):
        return [event for event in self.sent if event["type"] == event_type]

    def __repr__(self):
        return f"<FakeConnection {self.connection_id}>"


@pytest.fixture
def hub():
    return ConnectionHub()


@pytest.fixture
def open_session(hub):
    """Open a dispatcher bound to a fresh fake connection."""

    def _open(connection_id, presence_mode="join", fail=False):
        connection = FakeConnection(connection_id, fail=fail)
        dispatcher = RelayDispatcher(hub, connection, presence_mode=presence_mode)
        asyncio.run(dispatcher.open())
        return dispatcher, connection

    return _open
