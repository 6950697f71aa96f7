"""Wire vocabulary of the relay: inbound event models and outbound builders."""

from __future__ import annotations

from typing import Annotated, Any, ClassVar, Dict, Iterable, Literal, Optional, Union

import orjson
from pydantic import AliasChoices, BaseModel, ConfigDict, Field, TypeAdapter, ValidationError

PRESENCE_ANNOUNCE = "presence-announce"
PRESENCE_WITHDRAW = "presence-withdraw"
PRESENCE_QUERY = "presence-query"
NEGOTIATION_OFFER = "negotiation-offer"
NEGOTIATION_ANSWER = "negotiation-answer"
CONNECTIVITY_CANDIDATE = "connectivity-candidate"
OPAQUE_MESSAGE = "opaque-message"
SIGNAL = "signal"

PRESENCE_LIST = "presence-list"
PEER_JOINED = "peer-joined"
PEER_LEFT = "peer-left"


class ProtocolError(ValueError):
    """Raised when an inbound frame is not a recognisable relay event."""


def _dumps(obj: Any) -> bytes:
    return orjson.dumps(obj)


def _loads(b: Union[str, bytes]) -> Any:
    return orjson.loads(b)


def encode(event: Dict[str, Any]) -> str:
    """Serialise an outbound event to the text of a WebSocket frame."""

    return _dumps(event).decode("utf-8")


def decode(raw: Union[str, bytes]) -> Any:
    return _loads(raw)


# ------------------------------------------------------------------------------
# Inbound events
# ------------------------------------------------------------------------------
class InboundEvent(BaseModel):
    # Unknown keys (including any client-supplied "from") are discarded.
    model_config = ConfigDict(extra="ignore", frozen=True)


class PresenceAnnounce(InboundEvent):
    type: Literal["presence-announce"]
    id: Optional[str] = None


class PresenceWithdraw(InboundEvent):
    type: Literal["presence-withdraw"]


class PresenceQuery(InboundEvent):
    type: Literal["presence-query"]


class RoutedEvent(InboundEvent):
    """Event forwarded verbatim to the participant named by ``targetId``."""

    blob_field: ClassVar[str]

    target_id: str = Field(min_length=1, validation_alias=AliasChoices("targetId", "to"))

    @property
    def blob(self) -> Any:
        return getattr(self, self.blob_field)


class NegotiationOffer(RoutedEvent):
    blob_field: ClassVar[str] = "offer"

    type: Literal["negotiation-offer"]
    offer: Any


class NegotiationAnswer(RoutedEvent):
    blob_field: ClassVar[str] = "answer"

    type: Literal["negotiation-answer"]
    answer: Any


class ConnectivityCandidate(RoutedEvent):
    blob_field: ClassVar[str] = "candidate"

    type: Literal["connectivity-candidate"]
    candidate: Any


class OpaqueMessage(RoutedEvent):
    blob_field: ClassVar[str] = "message"

    type: Literal["opaque-message"]
    message: Any


class Signal(RoutedEvent):
    """Combined offer/answer/candidate channel used by simpler clients."""

    blob_field: ClassVar[str] = "signal"

    type: Literal["signal"]
    signal: Any


Event = Annotated[
    Union[
        PresenceAnnounce,
        PresenceWithdraw,
        PresenceQuery,
        NegotiationOffer,
        NegotiationAnswer,
        ConnectivityCandidate,
        OpaqueMessage,
        Signal,
    ],
    Field(discriminator="type"),
]

_EVENT_ADAPTER: TypeAdapter[Event] = TypeAdapter(Event)


def parse_event(raw: Union[str, bytes, Dict[str, Any]]) -> InboundEvent:
    """Decode one inbound frame (or an already decoded object) into an event."""

    if isinstance(raw, dict):
        data = raw
    else:
        try:
            data = _loads(raw)
        except orjson.JSONDecodeError as exc:
            raise ProtocolError("Frame is not valid JSON") from exc
    if not isinstance(data, dict):
        raise ProtocolError("Frame must be a JSON object")
    try:
        return _EVENT_ADAPTER.validate_python(data)
    except ValidationError as exc:
        raise ProtocolError(f"Invalid {data.get('type')!r} event: {exc.error_count()} error(s)") from exc


# ------------------------------------------------------------------------------
# Outbound events
# ------------------------------------------------------------------------------
def presence_list(ids: Iterable[str]) -> Dict[str, Any]:
    return {"type": PRESENCE_LIST, "ids": sorted(ids)}


def peer_joined(participant_id: str) -> Dict[str, Any]:
    return {"type": PEER_JOINED, "id": participant_id}


def peer_left(participant_id: str) -> Dict[str, Any]:
    return {"type": PEER_LEFT, "id": participant_id}


def relayed(event: RoutedEvent, from_id: str) -> Dict[str, Any]:
    """Build the event delivered to the target, stamped with the sender's id."""

    return {"type": event.type, "fromId": from_id, event.blob_field: event.blob}


__all__ = [
    "ConnectivityCandidate",
    "Event",
    "InboundEvent",
    "NegotiationAnswer",
    "NegotiationOffer",
    "OpaqueMessage",
    "PresenceAnnounce",
    "PresenceQuery",
    "PresenceWithdraw",
    "ProtocolError",
    "RoutedEvent",
    "Signal",
    "decode",
    "encode",
    "parse_event",
    "peer_joined",
    "peer_left",
    "presence_list",
    "relayed",
]
