"""Direct message persistence and conversation queries"""

import logging
import uuid
from datetime import timedelta
from typing import Any

from sqlalchemy import and_, delete, func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from tempsocial.config import settings
from tempsocial.db.models import Message, MessageType, User
from tempsocial.errors import ConflictError, NotFoundError, ValidationError
from tempsocial.utils.time import utcnow

logger = logging.getLogger(__name__)


def parse_message_type(value: str | MessageType | None) -> MessageType:
    if isinstance(value, MessageType):
        return value
    try:
        return MessageType(value or MessageType.TEXT.value)
    except ValueError:
        raise ValidationError(f"Unknown message type: {value}")


class MessageService:
    def __init__(self, db: AsyncSession):
        self.db = db

    def _not_expired(self):
        return Message.expires_at > utcnow()

    async def send(
        self,
        sender_id: uuid.UUID,
        recipient_id: uuid.UUID | str | None,
        content: str | None,
        message_type: str | MessageType | None = MessageType.TEXT,
        payment_data: dict[str, Any] | None = None,
    ) -> Message:
        """Persist a new message. Every call creates a distinct row."""
        if not recipient_id or not content or not content.strip():
            raise ValidationError("Recipient ID and content are required")
        if len(content) > settings.message_max_length:
            raise ValidationError(
                f"Message content exceeds {settings.message_max_length} characters"
            )

        try:
            recipient_id = uuid.UUID(str(recipient_id))
        except ValueError:
            raise ValidationError("Invalid recipient ID")

        if recipient_id == sender_id:
            raise ValidationError("Cannot send message to yourself")

        kind = parse_message_type(message_type)

        recipient = await self.db.get(User, recipient_id)
        if recipient is None:
            raise NotFoundError("Recipient not found")

        now = utcnow()
        message = Message(
            sender_id=sender_id,
            recipient_id=recipient_id,
            content=content,
            message_type=kind,
            payment_data=payment_data,
            created_at=now,
            expires_at=now + timedelta(hours=settings.message_ttl_hours),
        )
        self.db.add(message)
        await self.db.commit()
        await self.db.refresh(message)

        logger.info(f"Message {message.id} stored from {sender_id} to {recipient_id}")
        return message

    async def get(self, message_id: int) -> Message | None:
        result = await self.db.execute(
            select(Message).where(Message.id == message_id, self._not_expired())
        )
        return result.scalar_one_or_none()

    async def mark_read(self, message_id: int, reader_id: uuid.UUID) -> Message:
        """Mark a message read on behalf of its recipient"""
        message = await self.get(message_id)
        if message is None or message.recipient_id != reader_id:
            raise NotFoundError("Message not found")

        result = await self.db.execute(
            update(Message)
            .where(
                Message.id == message_id,
                Message.recipient_id == reader_id,
                Message.is_read.is_(False),
            )
            .values(is_read=True, read_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        await self.db.commit()
        if result.rowcount == 0:
            raise ConflictError("Message already read")

        await self.db.refresh(message)
        return message

    async def get_conversation(
        self, user_id: uuid.UUID, other_id: uuid.UUID, limit: int = 50
    ) -> list[Message]:
        """Latest `limit` messages between two users, oldest first"""
        result = await self.db.execute(
            select(Message)
            .where(
                or_(
                    and_(Message.sender_id == user_id, Message.recipient_id == other_id),
                    and_(Message.sender_id == other_id, Message.recipient_id == user_id),
                ),
                self._not_expired(),
            )
            .order_by(Message.created_at.desc(), Message.id.desc())
            .limit(limit)
        )
        messages = list(result.scalars().all())
        messages.reverse()
        return messages

    async def mark_conversation_read(self, user_id: uuid.UUID, other_id: uuid.UUID) -> int:
        result = await self.db.execute(
            update(Message)
            .where(
                Message.sender_id == other_id,
                Message.recipient_id == user_id,
                Message.is_read.is_(False),
            )
            .values(is_read=True, read_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        await self.db.commit()
        return result.rowcount

    async def list_conversations(self, user_id: uuid.UUID) -> list[dict[str, Any]]:
        """One entry per peer: latest message and unread count, newest first"""
        result = await self.db.execute(
            select(Message)
            .where(
                or_(Message.sender_id == user_id, Message.recipient_id == user_id),
                self._not_expired(),
            )
            .order_by(Message.created_at.desc(), Message.id.desc())
        )

        summaries: dict[uuid.UUID, dict[str, Any]] = {}
        for message in result.scalars().all():
            peer_id = message.recipient_id if message.sender_id == user_id else message.sender_id
            summary = summaries.setdefault(
                peer_id, {"last_message": message, "unread_count": 0}
            )
            if message.recipient_id == user_id and not message.is_read:
                summary["unread_count"] += 1

        if not summaries:
            return []

        users = await self.db.execute(select(User).where(User.id.in_(summaries.keys())))
        peers = {user.id: user for user in users.scalars().all()}

        # Peers whose identity has been purged drop out of the list
        return [
            {"user": peers[peer_id], **summary}
            for peer_id, summary in summaries.items()
            if peer_id in peers
        ]

    async def unread_count(self, user_id: uuid.UUID) -> int:
        result = await self.db.execute(
            select(func.count(Message.id)).where(
                Message.recipient_id == user_id,
                Message.is_read.is_(False),
                self._not_expired(),
            )
        )
        return result.scalar() or 0

    async def delete(self, message_id: int, sender_id: uuid.UUID) -> None:
        """Only the sender may delete a message"""
        result = await self.db.execute(
            delete(Message).where(Message.id == message_id, Message.sender_id == sender_id)
        )
        await self.db.commit()
        if result.rowcount == 0:
            raise NotFoundError("Message not found or unauthorized")

    async def stats(self, user_id: uuid.UUID) -> dict[str, int]:
        sent = await self.db.execute(
            select(func.count(Message.id)).where(Message.sender_id == user_id, self._not_expired())
        )
        received = await self.db.execute(
            select(func.count(Message.id)).where(
                Message.recipient_id == user_id, self._not_expired()
            )
        )
        sent_count = sent.scalar() or 0
        received_count = received.scalar() or 0
        return {
            "total_messages": sent_count + received_count,
            "sent_messages": sent_count,
            "received_messages": received_count,
            "unread_messages": await self.unread_count(user_id),
        }
