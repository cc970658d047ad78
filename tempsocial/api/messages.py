"""Direct messaging endpoints"""

import logging
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from tempsocial.api.deps import get_current_user, get_relay
from tempsocial.db.database import get_db
from tempsocial.db.models import User
from tempsocial.errors import AppError, NotFoundError
from tempsocial.schemas.common import MessageOut, UserBrief
from tempsocial.schemas.messages import (
    ConversationListResponse,
    ConversationResponse,
    ConversationSummary,
    LastMessage,
    MarkReadResponse,
    MessageResponse,
    MessageStatsResponse,
    SendMessageRequest,
    SendMessageResponse,
    UnreadCountResponse,
)
from tempsocial.services.messages import MessageService
from tempsocial.services.relay import RelayService

logger = logging.getLogger(__name__)
router = APIRouter()


@router.get("/conversations", response_model=ConversationListResponse)
async def list_conversations(
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> ConversationListResponse:
    """Latest message and unread count for every peer"""
    try:
        summaries = await MessageService(db).list_conversations(user.id)
        return ConversationListResponse(
            conversations=[
                ConversationSummary(
                    user=UserBrief.model_validate(summary["user"]),
                    last_message=LastMessage(
                        id=summary["last_message"].id,
                        content=summary["last_message"].content,
                        message_type=summary["last_message"].message_type.value,
                        created_at=summary["last_message"].created_at,
                        is_read=summary["last_message"].is_read,
                        sender=summary["last_message"].sender_id,
                    ),
                    unread_count=summary["unread_count"],
                )
                for summary in summaries
            ]
        )
    except Exception as e:
        logger.error(f"Error listing conversations for {user.id}: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to get conversations",
        )


@router.get("/conversation/{other_user_id}", response_model=ConversationResponse)
async def get_conversation(
    other_user_id: UUID,
    limit: int = Query(50, ge=1, le=200),
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> ConversationResponse:
    """Messages with one peer, oldest first; the peer's messages are marked read"""
    try:
        other = await db.get(User, other_user_id)
        if other is None:
            raise NotFoundError("User not found")

        message_service = MessageService(db)
        messages = await message_service.get_conversation(user.id, other.id, limit)
        await message_service.mark_conversation_read(user.id, other.id)

        return ConversationResponse(
            messages=[MessageResponse.from_message(m) for m in messages],
            other_user=UserBrief.model_validate(other),
        )
    except AppError:
        raise
    except Exception as e:
        await db.rollback()
        logger.error(f"Error getting conversation {user.id}/{other_user_id}: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to get conversation",
        )


@router.post("/send", response_model=SendMessageResponse, status_code=status.HTTP_201_CREATED)
async def send_message(
    request: SendMessageRequest,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    relay: RelayService = Depends(get_relay),
) -> SendMessageResponse:
    """Store a message and push it to the recipient if they are connected"""
    try:
        message = await MessageService(db).send(
            sender_id=user.id,
            recipient_id=request.recipient_id,
            content=request.content,
            message_type=request.message_type,
            payment_data=(
                request.payment_data.model_dump(by_alias=True, exclude_none=True)
                if request.payment_data
                else None
            ),
        )
    except AppError:
        await db.rollback()
        raise
    except Exception as e:
        await db.rollback()
        logger.error(f"Error sending message from {user.id}: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to send message",
        )

    data = MessageResponse.from_message(message)
    await relay.push(message.recipient_id, "newMessage", data.to_wire())
    return SendMessageResponse(message="Message sent successfully", data=data)


@router.put("/{message_id}/read", response_model=MarkReadResponse)
async def mark_as_read(
    message_id: int,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    relay: RelayService = Depends(get_relay),
) -> MarkReadResponse:
    try:
        message = await MessageService(db).mark_read(message_id, user.id)
    except AppError:
        await db.rollback()
        raise
    except Exception as e:
        await db.rollback()
        logger.error(f"Error marking message {message_id} as read: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to mark message as read",
        )

    await relay.push(
        message.sender_id,
        "messageRead",
        {"messageId": message.id, "readAt": message.read_at.isoformat()},
    )
    return MarkReadResponse(message="Message marked as read", read_at=message.read_at)


@router.get("/unread-count", response_model=UnreadCountResponse)
async def unread_count(
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> UnreadCountResponse:
    try:
        return UnreadCountResponse(unread_count=await MessageService(db).unread_count(user.id))
    except Exception as e:
        logger.error(f"Error counting unread messages for {user.id}: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to get unread count",
        )


@router.delete("/{message_id}", response_model=MessageOut)
async def delete_message(
    message_id: int,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> MessageOut:
    """Delete a message (sender only)"""
    try:
        await MessageService(db).delete(message_id, user.id)
        return MessageOut(message="Message deleted successfully")
    except AppError:
        await db.rollback()
        raise
    except Exception as e:
        await db.rollback()
        logger.error(f"Error deleting message {message_id}: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to delete message",
        )


@router.get("/stats", response_model=MessageStatsResponse)
async def message_stats(
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> MessageStatsResponse:
    try:
        return MessageStatsResponse(**await MessageService(db).stats(user.id))
    except Exception as e:
        logger.error(f"Error getting message stats for {user.id}: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to get message statistics",
        )
