"""Tests for the real-time relay"""

import uuid

import pytest
from sqlalchemy import func, select

from tempsocial.db.models import Message
from tempsocial.services.relay import (
    SESSION_ENDED_CLOSE_CODE,
    SESSION_REPLACED_CLOSE_CODE,
    ClientConnection,
)


@pytest.fixture
async def alice(make_user):
    return await make_user("alice", "+15550002")


@pytest.fixture
async def bob(make_user):
    return await make_user("bob", "+15550003")


@pytest.fixture
async def joined(relay, connection_factory, alice, bob):
    """alice and bob both connected and joined"""
    alice_conn = connection_factory(authenticated_id=alice.id)
    bob_conn = connection_factory(authenticated_id=bob.id)
    await relay.dispatch(alice_conn, {"event": "join", "data": str(alice.id)})
    await relay.dispatch(bob_conn, {"event": "join", "data": str(bob.id)})
    return alice_conn, bob_conn


class TestJoin:
    async def test_join_registers_presence(self, relay, presence, joined, alice):
        alice_conn, _ = joined

        assert presence.lookup(alice.id) is alice_conn
        assert alice_conn.events("joined") == [{"userId": str(alice.id)}]

    async def test_join_must_match_authenticated_identity(
        self, relay, presence, connection_factory, alice, bob
    ):
        connection = connection_factory(authenticated_id=alice.id)
        joined = await relay.join(connection, str(bob.id))

        assert joined is False
        assert not presence.is_present(bob.id)
        assert connection.events("error") == [{"error": "Identity does not match session"}]

    async def test_join_with_garbage_id(self, relay, presence, connection_factory):
        connection = connection_factory()
        await relay.dispatch(connection, {"event": "join", "data": "not-a-uuid"})

        assert len(presence) == 0
        assert connection.events("error")

    async def test_second_connection_evicts_first(
        self, relay, presence, connection_factory, joined, alice
    ):
        first, _ = joined
        second = connection_factory(authenticated_id=alice.id)

        await relay.join(second, str(alice.id))

        assert presence.lookup(alice.id) is second
        assert first.events("sessionReplaced")
        assert first.close_code == SESSION_REPLACED_CLOSE_CODE

        # The evicted connection's late disconnect must not drop its successor
        await relay.disconnect(first)
        assert presence.lookup(alice.id) is second

    async def test_closed_connection_cannot_register(self, relay, presence, connection_factory, alice):
        connection = connection_factory(authenticated_id=alice.id)
        await relay.disconnect(connection)

        assert await relay.join(connection, str(alice.id)) is False
        assert not presence.is_present(alice.id)


class TestSendMessage:
    async def test_message_reaches_recipient_once(self, relay, joined, alice, bob):
        alice_conn, bob_conn = joined

        await relay.dispatch(
            alice_conn,
            {"event": "sendMessage", "data": {"recipientId": str(bob.id), "content": "hi bob"}},
        )

        assert len(bob_conn.events("newMessage")) == 1
        assert len(alice_conn.events("messageSent")) == 1
        delivered = bob_conn.events("newMessage")[0]
        assert delivered["content"] == "hi bob"
        assert delivered["senderId"] == str(alice.id)
        assert delivered["messageType"] == "text"
        assert delivered == alice_conn.events("messageSent")[0]

    async def test_two_sends_create_two_messages(self, relay, joined, bob, test_db):
        alice_conn, bob_conn = joined
        frame = {"event": "sendMessage", "data": {"recipientId": str(bob.id), "content": "same"}}

        await relay.dispatch(alice_conn, frame)
        await relay.dispatch(alice_conn, frame)

        ids = [m["id"] for m in alice_conn.events("messageSent")]
        assert len(set(ids)) == 2
        count = await test_db.execute(select(func.count(Message.id)))
        assert count.scalar() == 2

    async def test_offline_recipient_still_gets_stored_message(
        self, relay, connection_factory, alice, bob, test_db
    ):
        alice_conn = connection_factory(authenticated_id=alice.id)
        await relay.join(alice_conn, str(alice.id))

        await relay.send_message(alice_conn, {"recipientId": str(bob.id), "content": "later"})

        assert len(alice_conn.events("messageSent")) == 1
        assert not alice_conn.events("messageError")
        result = await test_db.execute(select(Message).where(Message.recipient_id == bob.id))
        assert result.scalar_one().content == "later"

    async def test_send_before_join(self, relay, connection_factory, alice, bob):
        connection = connection_factory(authenticated_id=alice.id)
        await relay.send_message(connection, {"recipientId": str(bob.id), "content": "hi"})

        assert connection.events("messageError") == [{"error": "Join before sending messages"}]

    @pytest.mark.parametrize("data", [
        {"content": "no recipient"},
        {"recipientId": "nope", "content": "bad id"},
        {"content": ""},
    ])
    async def test_invalid_message_reported(self, relay, joined, data):
        alice_conn, bob_conn = joined
        await relay.dispatch(alice_conn, {"event": "sendMessage", "data": data})

        assert len(alice_conn.events("messageError")) == 1
        assert not alice_conn.events("messageSent")
        assert not bob_conn.events("newMessage")

    async def test_unknown_recipient(self, relay, joined):
        alice_conn, _ = joined
        await relay.send_message(alice_conn, {"recipientId": str(uuid.uuid4()), "content": "hello?"})

        assert alice_conn.events("messageError") == [{"error": "Recipient not found"}]

    async def test_content_too_long(self, relay, joined, bob):
        alice_conn, _ = joined
        await relay.send_message(alice_conn, {"recipientId": str(bob.id), "content": "x" * 1001})

        assert len(alice_conn.events("messageError")) == 1


class TestReadReceiptsAndTyping:
    async def _send(self, relay, sender_conn, recipient):
        await relay.send_message(sender_conn, {"recipientId": str(recipient.id), "content": "ping"})
        return sender_conn.events("messageSent")[-1]["id"]

    async def test_recipient_read_notifies_sender(self, relay, joined, bob):
        alice_conn, bob_conn = joined
        message_id = await self._send(relay, alice_conn, bob)

        await relay.dispatch(bob_conn, {"event": "markMessageRead", "data": message_id})

        receipts = alice_conn.events("messageRead")
        assert len(receipts) == 1
        assert receipts[0]["messageId"] == message_id
        assert receipts[0]["readAt"]

    async def test_non_recipient_read_is_ignored(self, relay, joined, bob):
        alice_conn, bob_conn = joined
        message_id = await self._send(relay, alice_conn, bob)

        await relay.dispatch(alice_conn, {"event": "markMessageRead", "data": {"messageId": message_id}})

        assert not alice_conn.events("messageRead")
        assert not alice_conn.events("error")

    async def test_typing_forwarded(self, relay, joined, alice, bob):
        alice_conn, bob_conn = joined
        await relay.dispatch(
            alice_conn, {"event": "typing", "data": {"recipientId": str(bob.id), "isTyping": True}}
        )

        assert bob_conn.events("userTyping") == [{"userId": str(alice.id), "isTyping": True}]

    async def test_typing_to_offline_peer_dropped(self, relay, joined):
        alice_conn, _ = joined
        await relay.typing(alice_conn, {"recipientId": str(uuid.uuid4()), "isTyping": True})

        assert not alice_conn.events("error")


class TestConnectionLifecycle:
    async def test_disconnect_removes_presence(self, relay, presence, joined, alice):
        alice_conn, _ = joined
        await relay.disconnect(alice_conn)

        assert not presence.is_present(alice.id)

    async def test_ping_pong(self, relay, connection_factory):
        connection = connection_factory()
        await relay.dispatch(connection, {"event": "ping", "data": {"timestamp": 42}})

        assert connection.events("pong") == [{"timestamp": 42}]

    async def test_unknown_event(self, relay, connection_factory):
        connection = connection_factory()
        await relay.dispatch(connection, {"event": "teleport"})

        assert connection.events("error") == [{"error": "Unknown event: teleport"}]

    async def test_failed_push_treated_as_offline(self, relay, presence, connection_factory, alice):
        class BrokenConnection(connection_factory):
            async def _send(self, frame):
                raise ConnectionResetError("peer went away")

        broken = BrokenConnection(authenticated_id=alice.id)
        presence.register(alice.id, broken)

        assert await relay.push(alice.id, "newMessage", {}) is False
        assert not presence.is_present(alice.id)

    @pytest.mark.parametrize("frame", [
        {"event": "typing", "data": "bob"},
        {"event": "ping", "data": 5},
        {"event": "sendMessage", "data": ["hi"]},
    ])
    async def test_non_object_payload_reported(self, relay, joined, frame):
        alice_conn, bob_conn = joined

        await relay.dispatch(alice_conn, frame)

        assert alice_conn.events("error") == [{"error": f"Invalid payload for {frame['event']}"}]
        assert not alice_conn.closed
        assert not bob_conn.events("newMessage")

    async def test_logged_out_sender_is_expired(self, relay, presence, joined, alice, bob, test_db):
        alice_conn, bob_conn = joined
        alice.is_active = False
        await test_db.commit()

        await relay.send_message(alice_conn, {"recipientId": str(bob.id), "content": "still here?"})

        assert alice_conn.events("messageError") == [{"error": "Session expired"}]
        assert alice_conn.events("sessionExpired")
        assert alice_conn.close_code == SESSION_ENDED_CLOSE_CODE
        assert not presence.is_present(alice.id)
        assert not bob_conn.events("newMessage")

    def test_connection_requires_transport(self):
        class Incomplete(ClientConnection):
            async def _send(self, frame):
                pass

        with pytest.raises(TypeError):
            Incomplete()
