"""Tests for the channel hub and the signaling relay policy."""
from __future__ import annotations

import pytest

from pairroom.services.channel import ChannelConnection, ChannelHub
from pairroom.services.relay import SignalingRelay
from pairroom.services.rooms import RoomRegistry


class DummyConnection:
    def __init__(self, connection_id: str) -> None:
        self.connection_id = connection_id
        self.messages: list[dict] = []

    async def send(self, message: dict) -> None:
        self.messages.append(message)

    def types(self) -> list[str]:
        return [message["type"] for message in self.messages]


class BrokenConnection(DummyConnection):
    async def send(self, message: dict) -> None:
        raise RuntimeError("socket gone")


def make_relay(*ids: str) -> tuple[SignalingRelay, dict[str, DummyConnection]]:
    hub = ChannelHub()
    relay = SignalingRelay(RoomRegistry(min_code_length=4), hub)
    connections = {}
    for participant_id in ids:
        conn = DummyConnection(participant_id)
        hub.register(ChannelConnection(participant_id, conn.send))
        connections[participant_id] = conn
    return relay, connections


def join(code: str) -> dict:
    return {"type": "join_room", "payload": {"roomCode": code}}


@pytest.mark.asyncio
async def test_channel_hub_broadcast_skips_sender_and_survives_failures():
    hub = ChannelHub()
    conn_a = DummyConnection("a")
    conn_b = BrokenConnection("b")
    conn_c = DummyConnection("c")
    for conn in (conn_a, conn_b, conn_c):
        hub.register(ChannelConnection(conn.connection_id, conn.send))
        hub.add_to_group("room-1", conn.connection_id)

    await hub.broadcast("room-1", "a", {"type": "offer"})
    assert conn_a.messages == []
    assert conn_c.messages == [{"type": "offer"}]

    hub.unregister("c")
    await hub.send_to_group("room-1", {"type": "candidate"})
    assert conn_a.messages == [{"type": "candidate"}]
    assert hub.group_members("room-1") == {"a", "b"}


@pytest.mark.asyncio
async def test_first_join_waits_and_second_join_notifies_both():
    relay, conns = make_relay("a", "b")

    await relay.dispatch("a", join("abcd"))
    assert conns["a"].messages == [
        {"type": "room_joined", "payload": {"roomCode": "ABCD"}},
        {"type": "waiting_for_partner", "payload": None},
    ]

    await relay.dispatch("b", join("ABCD"))
    assert conns["b"].types() == ["room_joined", "partner_connected"]
    assert conns["a"].types()[-1] == "partner_connected"


@pytest.mark.asyncio
async def test_third_participant_gets_room_full_only():
    relay, conns = make_relay("a", "b", "c")
    await relay.dispatch("a", join("ABCD"))
    await relay.dispatch("b", join("ABCD"))
    before_a, before_b = list(conns["a"].messages), list(conns["b"].messages)

    await relay.dispatch("c", join("ABCD"))

    assert conns["c"].messages == [{"type": "room_full", "payload": None}]
    assert conns["a"].messages == before_a
    assert conns["b"].messages == before_b
    assert relay.registry.members("ABCD") == {"a", "b"}
    assert relay.channel.group_members("ABCD") == {"a", "b"}


@pytest.mark.asyncio
async def test_invalid_room_code_reports_error_to_sender():
    relay, conns = make_relay("a")

    await relay.dispatch("a", join("ab"))
    await relay.dispatch("a", {"type": "join_room", "payload": {}})

    assert conns["a"].types() == ["error", "error"]
    assert len(relay.registry) == 0


@pytest.mark.asyncio
async def test_negotiation_payloads_are_forwarded_verbatim_in_order():
    relay, conns = make_relay("a", "b")
    await relay.dispatch("a", join("ABCD"))
    await relay.dispatch("b", join("ABCD"))
    conns["a"].messages.clear()

    offer = {"roomCode": "ABCD", "offer": {"type": "offer", "sdp": "v=0"}}
    c1 = {"roomCode": "ABCD", "candidate": {"candidate": "candidate:1 1 udp 1 1.1.1.1 1 typ host"}}
    c2 = {"roomCode": "ABCD", "candidate": {"candidate": "candidate:2 1 udp 1 1.1.1.1 2 typ host"}}
    await relay.dispatch("b", {"type": "offer", "payload": offer})
    await relay.dispatch("b", {"type": "ice-candidate", "payload": c1})
    await relay.dispatch("b", {"type": "ice-candidate", "payload": c2})

    assert conns["a"].messages == [
        {"type": "offer", "payload": offer},
        {"type": "ice-candidate", "payload": c1},
        {"type": "ice-candidate", "payload": c2},
    ]
    assert conns["b"].types() == ["room_joined", "partner_connected"]


@pytest.mark.asyncio
async def test_no_cross_room_delivery():
    relay, conns = make_relay("a", "b")
    await relay.dispatch("a", join("ABCD"))
    await relay.dispatch("b", join("WXYZ"))

    await relay.dispatch("a", {"type": "chat_message", "payload": {"roomCode": "ABCD", "text": "hi"}})
    await relay.dispatch("a", {"type": "offer", "payload": {"roomCode": "WXYZ", "offer": {}}})

    assert conns["b"].types() == ["room_joined", "waiting_for_partner"]
    assert conns["a"].types()[-1] == "error"


@pytest.mark.asyncio
async def test_chat_is_validated_and_relayed_as_text_only():
    relay, conns = make_relay("a", "b")
    await relay.dispatch("a", join("ABCD"))
    await relay.dispatch("b", join("ABCD"))
    conns["b"].messages.clear()

    await relay.dispatch("a", {"type": "chat_message", "payload": {"roomCode": "ABCD", "text": "  "}})
    await relay.dispatch("a", {"type": "chat_message", "payload": {"text": "hello"}})
    await relay.dispatch("a", {"type": "chat_message", "payload": {"roomCode": "ABCD", "text": " hello "}})

    assert conns["a"].types()[-2:] == ["error", "error"]
    assert conns["b"].messages == [{"type": "chat_message", "payload": {"text": "hello"}}]


@pytest.mark.asyncio
async def test_disconnect_notifies_remaining_member_and_cleans_up():
    relay, conns = make_relay("a", "b")
    await relay.dispatch("a", join("ABCD"))
    await relay.dispatch("b", join("ABCD"))

    await relay.disconnect("b")
    assert conns["a"].types()[-1] == "partner_disconnected"
    assert relay.registry.members("ABCD") == {"a"}

    await relay.disconnect("a")
    assert "ABCD" not in relay.registry
    assert relay.channel.group_members("ABCD") == frozenset()


@pytest.mark.asyncio
async def test_stale_offer_after_partner_left_is_dropped():
    relay, conns = make_relay("a", "b")
    await relay.dispatch("a", join("ABCD"))
    await relay.dispatch("b", join("ABCD"))
    await relay.disconnect("b")
    count = len(conns["a"].messages)

    await relay.dispatch("a", {"type": "answer", "payload": {"roomCode": "ABCD", "answer": {}}})

    assert len(conns["a"].messages) == count
    assert conns["b"].types() == ["room_joined", "partner_connected"]


@pytest.mark.asyncio
async def test_leave_room_keeps_connection_and_notifies_partner():
    relay, conns = make_relay("a", "b")
    await relay.dispatch("a", join("ABCD"))
    await relay.dispatch("b", join("ABCD"))

    await relay.dispatch("a", {"type": "leave_room", "payload": {"roomCode": "ABCD"}})

    assert conns["a"].messages[-1] == {"type": "room_left", "payload": {"roomCode": "ABCD"}}
    assert conns["b"].types()[-1] == "partner_disconnected"
    assert relay.registry.room_of("a") is None
    assert relay.channel.is_connected("a")


@pytest.mark.asyncio
async def test_switching_rooms_notifies_previous_partner():
    relay, conns = make_relay("a", "b")
    await relay.dispatch("a", join("ABCD"))
    await relay.dispatch("b", join("ABCD"))

    await relay.dispatch("a", join("WXYZ"))

    assert conns["b"].types()[-1] == "partner_disconnected"
    assert conns["a"].types()[-2:] == ["room_joined", "waiting_for_partner"]
    assert relay.channel.group_members("ABCD") == {"b"}


@pytest.mark.asyncio
async def test_malformed_envelopes_produce_errors():
    relay, conns = make_relay("a")

    await relay.dispatch("a", ["not", "an", "object"])
    await relay.dispatch("a", {"type": "teleport"})
    await relay.dispatch("a", {"type": "partner_connected"})

    assert conns["a"].types() == ["error", "error", "error"]


@pytest.mark.asyncio
async def test_rejoining_current_room_only_confirms_membership():
    relay, conns = make_relay("a", "b")
    await relay.dispatch("a", join("ABCD"))
    await relay.dispatch("b", join("ABCD"))
    before_b = list(conns["b"].messages)
    count_a = len(conns["a"].messages)

    await relay.dispatch("a", join("abcd"))

    assert conns["a"].messages[count_a:] == [{"type": "room_joined", "payload": {"roomCode": "ABCD"}}]
    assert conns["b"].messages == before_b
    assert relay.registry.members("ABCD") == {"a", "b"}
