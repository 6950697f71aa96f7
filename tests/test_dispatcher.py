import asyncio

import pytest

from rendezvous.dispatcher import RelayDispatcher, SessionState
from rendezvous.events import PresenceAnnounce


def send(dispatcher, frame):
    asyncio.run(dispatcher.handle_frame(frame))


def close(dispatcher):
    asyncio.run(dispatcher.close())


def announce(dispatcher, participant_id):
    send(dispatcher, {"type": "presence-announce", "id": participant_id})


def test_open_sends_current_snapshot(open_session):
    alice, alice_conn = open_session("c-alice")
    assert alice_conn.sent == [{"type": "presence-list", "ids": []}]
    announce(alice, "alice")

    _, bob_conn = open_session("c-bob")
    assert bob_conn.sent == [{"type": "presence-list", "ids": ["alice"]}]


def test_offer_answer_and_leave_scenario(hub, open_session):
    alice, alice_conn = open_session("c-alice")
    bob, bob_conn = open_session("c-bob")
    announce(alice, "alice")
    announce(bob, "bob")

    assert alice_conn.of_type("peer-joined") == [{"type": "peer-joined", "id": "bob"}]
    assert bob_conn.of_type("peer-joined") == [{"type": "peer-joined", "id": "alice"}]

    send(alice, {"type": "negotiation-offer", "targetId": "bob", "offer": "sdp1"})
    assert bob_conn.of_type("negotiation-offer") == [
        {"type": "negotiation-offer", "fromId": "alice", "offer": "sdp1"}
    ]

    send(bob, {"type": "negotiation-answer", "targetId": "alice", "answer": "sdp2"})
    assert alice_conn.of_type("negotiation-answer") == [
        {"type": "negotiation-answer", "fromId": "bob", "answer": "sdp2"}
    ]

    close(bob)
    assert "bob" not in hub.registry
    assert alice_conn.of_type("peer-left") == [{"type": "peer-left", "id": "bob"}]

    before = list(alice_conn.sent)
    send(alice, {"type": "negotiation-offer", "targetId": "bob", "offer": "sdp1"})
    assert alice_conn.sent == before
    assert bob_conn.of_type("negotiation-offer") == [
        {"type": "negotiation-offer", "fromId": "alice", "offer": "sdp1"}
    ]


@pytest.mark.parametrize(
    "frame, blob_field",
    [
        ({"type": "connectivity-candidate", "targetId": "bob", "candidate": {"candidate": "c1"}}, "candidate"),
        ({"type": "opaque-message", "targetId": "bob", "message": "hello"}, "message"),
        ({"type": "signal", "to": "bob", "signal": {"sdp": "x"}}, "signal"),
    ],
)
def test_routed_event_delivered_once_with_server_recorded_sender(open_session, frame, blob_field):
    alice, alice_conn = open_session("c-alice")
    bob, bob_conn = open_session("c-bob")
    announce(alice, "alice")
    announce(bob, "bob")

    spoofed = dict(frame, fromId="mallory", **{"from": "mallory"})
    send(alice, spoofed)

    delivered = bob_conn.of_type(frame["type"])
    assert delivered == [{"type": frame["type"], "fromId": "alice", blob_field: frame[blob_field]}]
    assert alice_conn.of_type(frame["type"]) == []


def test_routing_to_absent_target_emits_nothing(hub, open_session):
    alice, alice_conn = open_session("c-alice")
    _, bob_conn = open_session("c-bob")
    announce(alice, "alice")
    sent_before = (len(alice_conn.sent), len(bob_conn.sent))

    for kind, field in [
        ("negotiation-offer", "offer"),
        ("negotiation-answer", "answer"),
        ("connectivity-candidate", "candidate"),
        ("opaque-message", "message"),
    ]:
        send(alice, {"type": kind, "targetId": "ghost", field: "blob"})

    assert (len(alice_conn.sent), len(bob_conn.sent)) == sent_before


def test_unannounced_connection_cannot_route(open_session):
    anon, _ = open_session("c-anon")
    bob, bob_conn = open_session("c-bob")
    announce(bob, "bob")

    send(anon, {"type": "opaque-message", "targetId": "bob", "message": "hi"})

    assert anon.state is SessionState.UNANNOUNCED
    assert bob_conn.of_type("opaque-message") == []


def test_empty_or_missing_announce_is_ignored(hub, open_session):
    alice, alice_conn = open_session("c-alice")
    _, other_conn = open_session("c-other")

    announce(alice, "")
    send(alice, {"type": "presence-announce"})
    send(alice, {"type": "presence-announce", "id": None})

    assert alice.state is SessionState.UNANNOUNCED
    assert len(hub.registry) == 0
    assert other_conn.of_type("peer-joined") == []


def test_close_broadcasts_leave_to_every_remaining_connection_once(hub, open_session):
    alice, _ = open_session("c-alice")
    bob, bob_conn = open_session("c-bob")
    carol, carol_conn = open_session("c-carol")
    _, lurker_conn = open_session("c-lurker")
    for dispatcher, pid in ((alice, "alice"), (bob, "bob"), (carol, "carol")):
        announce(dispatcher, pid)

    close(alice)
    close(alice)

    for conn in (bob_conn, carol_conn, lurker_conn):
        assert conn.of_type("peer-left") == [{"type": "peer-left", "id": "alice"}]
    assert hub.registry.snapshot_ids() == {"bob", "carol"}
    assert alice.state is SessionState.CLOSED


def test_close_of_unannounced_connection_is_silent(hub, open_session):
    anon, _ = open_session("c-anon")
    _, bob_conn = open_session("c-bob")

    close(anon)

    assert bob_conn.of_type("peer-left") == []
    assert len(hub) == 1


def test_events_after_close_are_ignored(hub, open_session):
    alice, _ = open_session("c-alice")
    close(alice)
    announce(alice, "alice")
    assert "alice" not in hub.registry


def test_duplicate_announce_overwrites_and_ghost_close_keeps_new_owner(hub, open_session):
    first, first_conn = open_session("c-first")
    second, second_conn = open_session("c-second")
    caller, caller_conn = open_session("c-caller")
    announce(first, "alice")
    announce(caller, "carol")
    announce(second, "alice")

    assert hub.registry.lookup("alice") is second_conn
    assert hub.registry.snapshot_ids() == {"alice", "carol"}

    send(caller, {"type": "opaque-message", "targetId": "alice", "message": "hi"})
    assert second_conn.of_type("opaque-message") == [{"type": "opaque-message", "fromId": "carol", "message": "hi"}]
    assert first_conn.of_type("opaque-message") == []

    close(first)
    assert hub.registry.lookup("alice") is second_conn
    assert caller_conn.of_type("peer-left") == []


def test_reannounce_same_id_is_noop(open_session):
    alice, _ = open_session("c-alice")
    _, bob_conn = open_session("c-bob")
    announce(alice, "alice")
    announce(alice, "alice")

    assert bob_conn.of_type("peer-joined") == [{"type": "peer-joined", "id": "alice"}]


def test_reannounce_with_new_id_renames(hub, open_session):
    alice, _ = open_session("c-alice")
    _, bob_conn = open_session("c-bob")
    announce(alice, "alice")
    announce(alice, "alicia")

    assert hub.registry.snapshot_ids() == {"alicia"}
    assert bob_conn.of_type("peer-left") == [{"type": "peer-left", "id": "alice"}]
    assert bob_conn.of_type("peer-joined")[-1] == {"type": "peer-joined", "id": "alicia"}


def test_withdraw_returns_to_unannounced(hub, open_session):
    alice, _ = open_session("c-alice")
    _, bob_conn = open_session("c-bob")
    announce(alice, "alice")

    send(alice, {"type": "presence-withdraw"})

    assert alice.state is SessionState.UNANNOUNCED
    assert alice.participant_id is None
    assert "alice" not in hub.registry
    assert bob_conn.of_type("peer-left") == [{"type": "peer-left", "id": "alice"}]

    close(alice)
    assert bob_conn.of_type("peer-left") == [{"type": "peer-left", "id": "alice"}]


def test_presence_query_excludes_self(open_session):
    alice, alice_conn = open_session("c-alice")
    bob, _ = open_session("c-bob")
    announce(alice, "alice")
    announce(bob, "bob")

    send(alice, {"type": "presence-query"})
    assert alice_conn.sent[-1] == {"type": "presence-list", "ids": ["bob"]}


def test_list_mode_broadcasts_full_presence_to_everyone(open_session):
    alice, alice_conn = open_session("c-alice", presence_mode="list")
    bob, bob_conn = open_session("c-bob", presence_mode="list")
    announce(alice, "alice")
    announce(bob, "bob")

    assert alice_conn.sent[-1] == {"type": "presence-list", "ids": ["alice", "bob"]}
    assert bob_conn.sent[-1] == {"type": "presence-list", "ids": ["alice", "bob"]}
    assert alice_conn.of_type("peer-joined") == []


def test_malformed_frames_are_dropped(hub, open_session):
    alice, alice_conn = open_session("c-alice")
    send(alice, "{not json")
    send(alice, {"type": "negotiation-offer"})
    send(alice, b'{"type": "presence-announce", "id": "alice"}')

    assert alice.state is SessionState.ANNOUNCED
    assert alice_conn.sent == [{"type": "presence-list", "ids": []}]


def test_failing_recipient_does_not_break_broadcast(hub, open_session):
    alice, _ = open_session("c-alice")
    _, broken_conn = open_session("c-broken", fail=True)
    _, bob_conn = open_session("c-bob")

    announce(alice, "alice")

    assert bob_conn.of_type("peer-joined") == [{"type": "peer-joined", "id": "alice"}]
    assert hub.registry.lookup("alice") is not None


def test_handle_accepts_parsed_events(hub, open_session):
    alice, _ = open_session("c-alice")
    asyncio.run(alice.handle(PresenceAnnounce(type="presence-announce", id="alice")))
    assert alice.participant_id == "alice"


def test_unknown_presence_mode_rejected(hub):
    with pytest.raises(ValueError):
        RelayDispatcher(hub, object(), presence_mode="shout")
