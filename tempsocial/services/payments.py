"""Payment requests between identities and their state machine"""

import json
import logging
import uuid
from datetime import timedelta
from typing import Any
from urllib.parse import quote

from sqlalchemy import or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from tempsocial.config import settings
from tempsocial.db.models import (
    Message,
    MessageType,
    Payment,
    PaymentMethod,
    PaymentStatus,
    User,
)
from tempsocial.errors import (
    ConflictError,
    DependencyError,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
)
from tempsocial.services.messages import MessageService
from tempsocial.services.payment_gateway import PaymentGateway
from tempsocial.utils.time import utcnow

logger = logging.getLogger(__name__)

ALLOWED_TRANSITIONS: dict[PaymentStatus, set[PaymentStatus]] = {
    PaymentStatus.PENDING: {
        PaymentStatus.PROCESSING,
        PaymentStatus.CANCELLED,
    },
    PaymentStatus.PROCESSING: {
        PaymentStatus.COMPLETED,
        PaymentStatus.FAILED,
    },
}

TERMINAL_STATES = {
    PaymentStatus.COMPLETED,
    PaymentStatus.FAILED,
    PaymentStatus.CANCELLED,
    PaymentStatus.REFUNDED,
}


def can_transition(current: PaymentStatus, target: PaymentStatus) -> bool:
    return target in ALLOWED_TRANSITIONS.get(current, set())


def generate_transaction_id() -> str:
    return f"TXN_{uuid.uuid4().hex.upper()[:16]}"


def build_upi_url(payment: Payment, recipient_name: str) -> str:
    note = payment.description or "Payment from Temporary Social"
    return (
        f"upi://pay?pa={payment.recipient_upi_id}"
        f"&pn={quote(recipient_name)}"
        f"&am={payment.amount}"
        f"&cu={payment.currency}"
        f"&tn={quote(note)}"
        f"&tr={payment.transaction_id}"
    )


class PaymentService:
    """Creates, verifies and cancels payment requests"""

    def __init__(self, db: AsyncSession, gateway: PaymentGateway | None = None):
        self.db = db
        self.gateway = gateway
        self.messages = MessageService(db)

    async def create_payment(
        self,
        sender: User,
        recipient_id: uuid.UUID | None,
        amount: int | None,
        description: str = "",
        payment_method: str = "upi",
        metadata: dict[str, Any] | None = None,
    ) -> tuple[Payment, Message]:
        """Validate, open a gateway order and persist the payment plus its request message"""
        if not recipient_id or amount is None:
            raise ValidationError("Recipient ID and amount are required")
        if not settings.payment_min_amount <= amount <= settings.payment_max_amount:
            raise ValidationError(
                f"Amount must be between ₹{settings.payment_min_amount} "
                f"and ₹{settings.payment_max_amount}"
            )
        if len(description or "") > 200:
            raise ValidationError("Description must be at most 200 characters")
        if not sender.upi_id:
            raise ValidationError("Please add your UPI ID in profile first")
        try:
            method = PaymentMethod(payment_method)
        except ValueError:
            raise ValidationError(f"Unknown payment method: {payment_method}")

        recipient = await self.db.get(User, recipient_id)
        if recipient is None:
            raise NotFoundError("Recipient not found")
        if not recipient.upi_id:
            raise ValidationError("Recipient has not added UPI ID")
        if recipient.id == sender.id:
            raise ValidationError("Cannot send payment to yourself")

        now = utcnow()
        payment = Payment(
            sender_id=sender.id,
            recipient_id=recipient.id,
            amount=amount,
            currency=settings.payment_currency,
            description=description or "",
            payment_method=method,
            sender_upi_id=sender.upi_id,
            recipient_upi_id=recipient.upi_id,
            transaction_id=generate_transaction_id(),
            status=PaymentStatus.PENDING,
            expires_at=now + timedelta(hours=settings.payment_ttl_hours),
            extra_metadata=metadata or {},
        )

        if self.gateway is not None:
            payment.gateway_order_id = await self._create_gateway_order(payment)

        self.db.add(payment)
        await self.db.commit()
        await self.db.refresh(payment)

        content = f"Payment request for ₹{amount}"
        if description:
            content += f": {description}"
        message = await self.messages.send(
            sender_id=sender.id,
            recipient_id=recipient.id,
            content=content,
            message_type=MessageType.PAYMENT_REQUEST,
            payment_data={
                "amount": amount,
                "upiId": recipient.upi_id,
                "transactionId": payment.transaction_id,
                "status": PaymentStatus.PENDING.value,
            },
        )

        logger.info(
            f"Payment {payment.transaction_id} of ₹{amount} requested by {sender.id} to {recipient.id}"
        )
        return payment, message

    async def _create_gateway_order(self, payment: Payment) -> str | None:
        notes = {
            "sender_upi": payment.sender_upi_id,
            "recipient_upi": payment.recipient_upi_id,
            "description": payment.description,
        }
        last_error: DependencyError | None = None
        for attempt in (1, 2):
            try:
                return await self.gateway.create_order(
                    payment.amount, payment.currency, payment.transaction_id, notes
                )
            except DependencyError as e:
                logger.warning(f"Gateway order attempt {attempt} failed for {payment.transaction_id}: {e}")
                last_error = e
        if settings.is_production:
            raise last_error
        logger.warning(f"[DEV] Continuing without gateway order for {payment.transaction_id}")
        return None

    async def get_payment(self, payment_id: uuid.UUID) -> Payment:
        payment = await self.db.get(Payment, payment_id)
        if payment is None or payment.expires_at <= utcnow():
            raise NotFoundError("Payment not found")
        return payment

    async def transition(
        self,
        payment: Payment,
        target: PaymentStatus,
        failure_reason: str | None = None,
        gateway_payment_id: str | None = None,
    ) -> Payment:
        """Move a payment to `target` if the state machine allows it, atomically"""
        current = payment.status
        if not can_transition(current, target):
            raise ConflictError(
                f"Cannot move payment from {current.value} to {target.value}"
            )

        values: dict[str, Any] = {"status": target}
        if target is PaymentStatus.COMPLETED:
            values["completed_at"] = utcnow()
        if failure_reason is not None:
            values["failure_reason"] = failure_reason
        if gateway_payment_id:
            values["gateway_payment_id"] = gateway_payment_id

        result = await self.db.execute(
            update(Payment)
            .where(Payment.id == payment.id, Payment.status == current)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        await self.db.commit()
        await self.db.refresh(payment)
        if result.rowcount == 0:
            raise ConflictError(f"Payment status changed concurrently to {payment.status.value}")

        logger.info(f"Payment {payment.transaction_id}: {current.value} -> {target.value}")
        return payment

    async def generate_upi_link(self, payment_id: uuid.UUID, user: User) -> tuple[Payment, str, dict[str, Any]]:
        payment = await self.get_payment(payment_id)
        if payment.sender_id != user.id:
            raise PermissionDeniedError("Unauthorized access to payment")

        recipient = await self.db.get(User, payment.recipient_id)
        recipient_name = recipient.username if recipient else ""
        upi_url = build_upi_url(payment, recipient_name)
        qr_code_data = {
            "upiUrl": upi_url,
            "amount": payment.amount,
            "recipientName": recipient_name,
            "recipientUpi": payment.recipient_upi_id,
            "transactionId": payment.transaction_id,
            "description": payment.description,
        }
        payment.qr_code_data = json.dumps(qr_code_data)
        await self.db.commit()
        return payment, upi_url, qr_code_data

    async def verify_payment(
        self,
        payment_id: uuid.UUID,
        user: User,
        gateway_payment_id: str | None = None,
        signature: str | None = None,
    ) -> tuple[Payment, Message | None]:
        """Complete a payment; in production the gateway signature must check out"""
        payment = await self.get_payment(payment_id)
        if user.id not in (payment.sender_id, payment.recipient_id):
            raise PermissionDeniedError("Unauthorized access to payment")
        if payment.status in TERMINAL_STATES:
            raise ConflictError(f"Payment already {payment.status.value}")

        if settings.is_production and (
            self.gateway is None
            or not payment.gateway_order_id
            or not gateway_payment_id
            or not signature
        ):
            raise ValidationError("Invalid payment verification data")

        if payment.status is PaymentStatus.PENDING:
            payment = await self.transition(payment, PaymentStatus.PROCESSING)

        # Development completes manually without a gateway signature
        if settings.is_production and not self.gateway.verify_signature(
            payment.gateway_order_id, gateway_payment_id, signature
        ):
            await self.transition(
                payment, PaymentStatus.FAILED, failure_reason="Invalid signature verification"
            )
            raise ValidationError("Payment verification failed")

        payment = await self.transition(
            payment, PaymentStatus.COMPLETED, gateway_payment_id=gateway_payment_id
        )

        confirmation = await self.messages.send(
            sender_id=payment.recipient_id,
            recipient_id=payment.sender_id,
            content=f"Payment of ₹{payment.amount} received successfully!",
            message_type=MessageType.PAYMENT_CONFIRMATION,
            payment_data={
                "amount": payment.amount,
                "transactionId": payment.transaction_id,
                "status": PaymentStatus.COMPLETED.value,
            },
        )
        return payment, confirmation

    async def cancel_payment(self, payment_id: uuid.UUID, user: User) -> Payment:
        payment = await self.get_payment(payment_id)
        if payment.sender_id != user.id:
            raise PermissionDeniedError("Unauthorized to cancel this payment")
        if payment.status is not PaymentStatus.PENDING:
            raise ConflictError("Cannot cancel non-pending payment")
        return await self.transition(payment, PaymentStatus.CANCELLED)

    async def list_payments(
        self,
        user: User,
        limit: int = 50,
        status: PaymentStatus | None = None,
    ) -> list[Payment]:
        query = select(Payment).where(
            or_(Payment.sender_id == user.id, Payment.recipient_id == user.id),
            Payment.expires_at > utcnow(),
        )
        if status is not None:
            query = query.where(Payment.status == status)
        result = await self.db.execute(query.order_by(Payment.created_at.desc()).limit(limit))
        return list(result.scalars().all())

    async def load_users(self, payments: list[Payment]) -> dict[uuid.UUID, User]:
        ids = {p.sender_id for p in payments} | {p.recipient_id for p in payments}
        if not ids:
            return {}
        result = await self.db.execute(select(User).where(User.id.in_(ids)))
        return {u.id: u for u in result.scalars().all()}

    async def stats(self, user: User) -> dict[str, int]:
        payments = await self.list_payments(user, limit=10_000)
        completed = [p for p in payments if p.status is PaymentStatus.COMPLETED]
        return {
            "total_payments": len(payments),
            "total_amount_sent": sum(p.amount for p in completed if p.sender_id == user.id),
            "total_amount_received": sum(p.amount for p in completed if p.recipient_id == user.id),
            "pending_payments": sum(1 for p in payments if p.status is PaymentStatus.PENDING),
            "completed_payments": len(completed),
            "failed_payments": sum(1 for p in payments if p.status is PaymentStatus.FAILED),
        }
