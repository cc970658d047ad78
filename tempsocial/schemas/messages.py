"""Pydantic schemas for direct messaging"""

from datetime import datetime
from typing import Any
from uuid import UUID

from tempsocial.schemas.common import CamelModel, UserBrief


class PaymentData(CamelModel):
    amount: int | None = None
    upi_id: str | None = None
    transaction_id: str | None = None
    status: str | None = None


class SendMessageRequest(CamelModel):
    recipient_id: UUID | None = None
    content: str | None = None
    message_type: str = "text"
    payment_data: PaymentData | None = None


class MessageResponse(CamelModel):
    id: int
    sender_id: UUID
    recipient_id: UUID
    content: str
    message_type: str
    is_read: bool
    read_at: datetime | None = None
    payment_data: dict[str, Any] | None = None
    created_at: datetime
    expires_at: datetime

    @classmethod
    def from_message(cls, message) -> "MessageResponse":
        return cls(
            id=message.id,
            sender_id=message.sender_id,
            recipient_id=message.recipient_id,
            content=message.content,
            message_type=message.message_type.value,
            is_read=message.is_read,
            read_at=message.read_at,
            payment_data=message.payment_data,
            created_at=message.created_at,
            expires_at=message.expires_at,
        )


class SendMessageResponse(CamelModel):
    message: str
    data: MessageResponse


class ConversationResponse(CamelModel):
    messages: list[MessageResponse]
    other_user: UserBrief


class LastMessage(CamelModel):
    id: int
    content: str
    message_type: str
    created_at: datetime
    is_read: bool
    sender: UUID


class ConversationSummary(CamelModel):
    user: UserBrief
    last_message: LastMessage
    unread_count: int


class ConversationListResponse(CamelModel):
    conversations: list[ConversationSummary]


class MarkReadResponse(CamelModel):
    message: str
    read_at: datetime


class UnreadCountResponse(CamelModel):
    unread_count: int


class MessageStatsResponse(CamelModel):
    total_messages: int
    sent_messages: int
    received_messages: int
    unread_messages: int
