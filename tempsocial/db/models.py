"""Database models for Temporary Social"""

import enum
import uuid
from datetime import datetime
from typing import Any

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    Uuid,
)
from sqlalchemy import Enum as SQLEnum
from sqlalchemy.orm import Mapped, mapped_column

from tempsocial.db.database import Base
from tempsocial.utils.time import utcnow


class TimestampMixin:
    """Mixin for adding timestamp columns to models"""
    created_at: Mapped[datetime] = mapped_column(
        DateTime,
        default=utcnow,
        nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime,
        default=utcnow,
        onupdate=utcnow,
        nullable=False
    )


class MessageType(enum.Enum):
    """Kinds of direct message"""
    TEXT = "text"
    PAYMENT_REQUEST = "payment_request"
    PAYMENT_CONFIRMATION = "payment_confirmation"


class PaymentStatus(enum.Enum):
    """Payment lifecycle states"""
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"
    REFUNDED = "refunded"


class PaymentMethod(enum.Enum):
    UPI = "upi"
    QR_CODE = "qr_code"


def default_social_links() -> dict[str, str | None]:
    return {
        "instagram": None,
        "discord": None,
        "reddit": None,
        "snapchat": None,
        "twitter": None,
    }


class User(Base, TimestampMixin):
    """A time-bounded identity; live while the session window is open and the user is active"""
    __tablename__ = "users"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid.uuid4
    )
    phone_number: Mapped[str] = mapped_column(String(20), unique=True, nullable=False)
    username: Mapped[str] = mapped_column(String(30), unique=True, nullable=False)

    # Session window [session_start, session_end)
    session_start: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)
    session_end: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    last_active: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)
    otp_verified: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    # Profile
    upi_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    social_links: Mapped[dict[str, Any]] = mapped_column(JSON, default=default_social_links, nullable=False)
    profile_picture: Mapped[str | None] = mapped_column(Text, nullable=True)
    bio: Mapped[str] = mapped_column(String(150), default="", nullable=False)

    __table_args__ = (
        CheckConstraint("session_end > session_start", name="ck_user_session_window"),
        Index("idx_user_session_end", "session_end"),
        Index("idx_user_active_session", "is_active", "session_end"),
    )

    def is_live(self, now: datetime | None = None) -> bool:
        now = now or utcnow()
        return self.is_active and now < self.session_end


class Follow(Base):
    """Directional follow edge: follower_id follows following_id"""
    __tablename__ = "follows"

    follower_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("users.id", ondelete="CASCADE"),
        primary_key=True
    )
    following_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("users.id", ondelete="CASCADE"),
        primary_key=True
    )
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)

    __table_args__ = (
        CheckConstraint("follower_id != following_id", name="ck_follow_not_self"),
        Index("idx_follow_following", "following_id"),
    )


class OTPChallenge(Base):
    """One-time code issued to a phone number"""
    __tablename__ = "otp_challenges"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid.uuid4
    )
    phone_number: Mapped[str] = mapped_column(String(20), nullable=False)
    code: Mapped[str] = mapped_column(String(6), nullable=False)
    attempts: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    verified: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    expires_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)

    __table_args__ = (
        Index("idx_otp_phone_created", "phone_number", "created_at"),
        Index("idx_otp_expires", "expires_at"),
    )


class Message(Base):
    """Direct message; the integer id is the insertion sequence"""
    __tablename__ = "messages"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    sender_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False
    )
    recipient_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False
    )
    content: Mapped[str] = mapped_column(Text, nullable=False)
    message_type: Mapped[MessageType] = mapped_column(
        SQLEnum(MessageType),
        default=MessageType.TEXT,
        nullable=False
    )
    is_read: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    read_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    payment_data: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)
    expires_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)

    __table_args__ = (
        Index("idx_message_conversation", "sender_id", "recipient_id", "created_at"),
        Index("idx_message_unread", "recipient_id", "is_read"),
        Index("idx_message_expires", "expires_at"),
    )


class Payment(Base, TimestampMixin):
    """UPI payment request between two identities"""
    __tablename__ = "payments"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid.uuid4
    )
    sender_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False
    )
    recipient_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False
    )
    amount: Mapped[int] = mapped_column(Integer, nullable=False)
    currency: Mapped[str] = mapped_column(String(3), default="INR", nullable=False)
    description: Mapped[str] = mapped_column(String(200), default="", nullable=False)
    payment_method: Mapped[PaymentMethod] = mapped_column(
        SQLEnum(PaymentMethod),
        default=PaymentMethod.UPI,
        nullable=False
    )
    sender_upi_id: Mapped[str] = mapped_column(String(100), nullable=False)
    recipient_upi_id: Mapped[str] = mapped_column(String(100), nullable=False)
    transaction_id: Mapped[str] = mapped_column(String(32), unique=True, nullable=False)
    gateway_order_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    gateway_payment_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    status: Mapped[PaymentStatus] = mapped_column(
        SQLEnum(PaymentStatus),
        default=PaymentStatus.PENDING,
        nullable=False
    )
    failure_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    qr_code_data: Mapped[str | None] = mapped_column(Text, nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    expires_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    extra_metadata: Mapped[dict[str, Any]] = mapped_column(JSON, default=dict, nullable=False)

    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_payment_amount_positive"),
        Index("idx_payment_sender", "sender_id", "created_at"),
        Index("idx_payment_recipient", "recipient_id", "created_at"),
        Index("idx_payment_status", "status", "created_at"),
        Index("idx_payment_expires", "expires_at"),
    )
