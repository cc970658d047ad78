"""Real-time relay: per-connection identity binding and event fan-out to present peers"""

import asyncio
import logging
import uuid
from abc import ABC, abstractmethod
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from tempsocial.db.models import User
from tempsocial.errors import AppError
from tempsocial.schemas.messages import MessageResponse
from tempsocial.services.messages import MessageService
from tempsocial.services.presence import PresenceRegistry

logger = logging.getLogger(__name__)

# Close code sent to connections whose session has ended or been replaced
SESSION_ENDED_CLOSE_CODE = 4001
SESSION_REPLACED_CLOSE_CODE = 4002

OBJECT_PAYLOAD_EVENTS = {"sendMessage", "typing", "ping"}


class ClientConnection(ABC):
    """Transport-independent state of one client channel.

    Subclasses implement `_send` and `_close` for a concrete transport.
    """

    def __init__(self, connection_id: str | None = None, authenticated_id: uuid.UUID | None = None):
        self.connection_id = connection_id or uuid.uuid4().hex
        self.authenticated_id = authenticated_id
        self.identity_id: uuid.UUID | None = None
        self.closed = False
        self._send_lock = asyncio.Lock()

    async def emit(self, event: str, data: Any = None) -> None:
        if self.closed:
            raise ConnectionError(f"Connection {self.connection_id} is closed")
        async with self._send_lock:
            await self._send({"event": event, "data": data})

    async def close(self, code: int = 1000) -> None:
        if self.closed:
            return
        self.closed = True
        await self._close(code)

    @abstractmethod
    async def _send(self, frame: dict[str, Any]) -> None:
        ...

    @abstractmethod
    async def _close(self, code: int) -> None:
        ...


def _parse_uuid(value: Any) -> uuid.UUID | None:
    try:
        return uuid.UUID(str(value))
    except (TypeError, ValueError):
        return None


class RelayService:
    """Handles connection-level events and pushes to present identities"""

    def __init__(
        self,
        presence: PresenceRegistry,
        session_factory: async_sessionmaker[AsyncSession],
    ):
        self.presence = presence
        self.session_factory = session_factory

    async def dispatch(self, connection: ClientConnection, frame: dict[str, Any]) -> None:
        """Route one inbound frame {"event": ..., "data": ...}"""
        event = frame.get("event")
        data = frame.get("data")

        if event in OBJECT_PAYLOAD_EVENTS:
            if data is None:
                data = {}
            if not isinstance(data, dict):
                logger.warning(f"Non-object payload for {event} on {connection.connection_id}")
                await self._safe_emit(connection, "error", {"error": f"Invalid payload for {event}"})
                return

        if event == "join":
            await self.join(connection, data)
        elif event == "sendMessage":
            await self.send_message(connection, data)
        elif event == "markMessageRead":
            await self.mark_message_read(connection, data)
        elif event == "typing":
            await self.typing(connection, data)
        elif event == "ping":
            await connection.emit("pong", {"timestamp": data.get("timestamp")})
        else:
            logger.warning(f"Unknown relay event {event!r} on {connection.connection_id}")
            await connection.emit("error", {"error": f"Unknown event: {event}"})

    async def join(self, connection: ClientConnection, identity_id: Any) -> bool:
        user_id = _parse_uuid(identity_id)
        if user_id is None:
            await connection.emit("error", {"error": "Invalid identity"})
            return False
        if connection.authenticated_id is not None and user_id != connection.authenticated_id:
            logger.warning(
                f"Connection {connection.connection_id} tried to join as {user_id}"
            )
            await connection.emit("error", {"error": "Identity does not match session"})
            return False

        # No suspension point between the closed check and registration,
        # so a disconnect cannot slip in and leave a stale entry behind
        if connection.closed:
            return False
        if connection.identity_id is not None and connection.identity_id != user_id:
            self.presence.remove(connection.identity_id, connection)
        connection.identity_id = user_id
        evicted = self.presence.register(user_id, connection)

        logger.info(f"User {user_id} joined with connection {connection.connection_id}")
        if evicted is not None:
            await self._evict(evicted)
        await connection.emit("joined", {"userId": str(user_id)})
        return True

    async def _evict(self, connection: ClientConnection) -> None:
        try:
            await connection.emit("sessionReplaced", {"message": "Signed in from another connection"})
            await connection.close(SESSION_REPLACED_CLOSE_CODE)
        except Exception as e:
            logger.debug(f"Evicted connection {connection.connection_id} already gone: {e}")

    async def send_message(self, connection: ClientConnection, data: dict[str, Any]) -> None:
        if connection.identity_id is None:
            await self._safe_emit(connection, "messageError", {"error": "Join before sending messages"})
            return

        try:
            async with self.session_factory() as db:
                sender = await db.get(User, connection.identity_id)
                if sender is None or not sender.is_live():
                    message = None
                else:
                    message = await MessageService(db).send(
                        sender_id=connection.identity_id,
                        recipient_id=data.get("recipientId"),
                        content=data.get("content"),
                        message_type=data.get("messageType") or data.get("kind") or "text",
                        payment_data=data.get("paymentData"),
                    )
        except AppError as e:
            await self._safe_emit(connection, "messageError", {"error": e.message})
            return
        except Exception as e:
            logger.error(f"Failed to persist message from {connection.identity_id}: {e}", exc_info=True)
            await self._safe_emit(connection, "messageError", {"error": "Failed to send message"})
            return

        if message is None:
            # Logged out or expired since the socket was accepted
            await self._safe_emit(connection, "messageError", {"error": "Session expired"})
            await self.expire(connection.identity_id)
            return

        payload = MessageResponse.from_message(message).to_wire()
        await self.push(message.recipient_id, "newMessage", payload)
        await self._safe_emit(connection, "messageSent", payload)

    async def mark_message_read(self, connection: ClientConnection, message_id: Any) -> None:
        if connection.identity_id is None:
            return
        if isinstance(message_id, dict):
            message_id = message_id.get("messageId")
        try:
            message_id = int(message_id)
        except (TypeError, ValueError):
            return

        try:
            async with self.session_factory() as db:
                message = await MessageService(db).mark_read(message_id, connection.identity_id)
        except AppError as e:
            # Not the recipient, unknown or already read: say nothing
            logger.debug(f"Ignored read receipt for message {message_id}: {e.message}")
            return
        except Exception as e:
            logger.error(f"Error marking message {message_id} as read: {e}", exc_info=True)
            return

        await self.push(
            message.sender_id,
            "messageRead",
            {"messageId": message.id, "readAt": message.read_at.isoformat()},
        )

    async def typing(self, connection: ClientConnection, data: dict[str, Any]) -> None:
        if connection.identity_id is None:
            return
        recipient_id = _parse_uuid(data.get("recipientId"))
        if recipient_id is None:
            return
        await self.push(
            recipient_id,
            "userTyping",
            {"userId": str(connection.identity_id), "isTyping": bool(data.get("isTyping"))},
        )

    async def disconnect(self, connection: ClientConnection) -> None:
        connection.closed = True
        if connection.identity_id is not None:
            removed = self.presence.remove(connection.identity_id, connection)
            if removed:
                logger.info(f"User {connection.identity_id} disconnected")

    async def push(self, identity_id: uuid.UUID, event: str, data: Any = None) -> bool:
        """Emit to the identity's live connection. False when offline or the push fails."""
        connection = self.presence.lookup(identity_id)
        if connection is None:
            return False
        try:
            await connection.emit(event, data)
            return True
        except Exception as e:
            logger.warning(f"Push of {event} to {identity_id} failed, treating as offline: {e}")
            self.presence.remove(identity_id, connection)
            return False

    async def expire(
        self, identity_id: uuid.UUID, message: str = "Your session has expired"
    ) -> bool:
        """Tell a present identity its session is over and sever the connection"""
        connection = self.presence.lookup(identity_id)
        if connection is None:
            return False
        self.presence.remove(identity_id, connection)
        try:
            await connection.emit("sessionExpired", {"message": message})
            await connection.close(SESSION_ENDED_CLOSE_CODE)
        except Exception as e:
            logger.warning(f"Could not notify {identity_id} of session expiry: {e}")
        return True

    async def _safe_emit(self, connection: ClientConnection, event: str, data: Any) -> None:
        try:
            await connection.emit(event, data)
        except Exception as e:
            logger.debug(f"Could not emit {event} to {connection.connection_id}: {e}")
