"""UPI payment request endpoints"""

import json
import logging
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from tempsocial.api.deps import get_current_user, get_gateway, get_relay
from tempsocial.db.database import get_db
from tempsocial.db.models import Message, Payment, PaymentStatus, User
from tempsocial.errors import AppError, ValidationError
from tempsocial.schemas.common import UserBrief
from tempsocial.schemas.messages import MessageResponse
from tempsocial.schemas.payments import (
    CreatePaymentRequest,
    PaymentHistoryItem,
    PaymentHistoryResponse,
    PaymentIdRequest,
    PaymentResponse,
    PaymentStatsResponse,
    PaymentSummary,
    PendingPaymentsResponse,
    UPILinkResponse,
    VerifyPaymentRequest,
)
from tempsocial.services.payment_gateway import PaymentGateway
from tempsocial.services.payments import PaymentService
from tempsocial.services.relay import RelayService

logger = logging.getLogger(__name__)
router = APIRouter()


def _history_item(payment: Payment, user: User, users: dict[UUID, User]) -> PaymentHistoryItem:
    sent = payment.sender_id == user.id
    other = users.get(payment.recipient_id if sent else payment.sender_id)
    upi_url = json.loads(payment.qr_code_data)["upiUrl"] if payment.qr_code_data else None
    return PaymentHistoryItem(
        id=payment.id,
        transaction_id=payment.transaction_id,
        amount=payment.amount,
        description=payment.description,
        status=payment.status.value,
        payment_method=payment.payment_method.value,
        created_at=payment.created_at,
        completed_at=payment.completed_at,
        direction="sent" if sent else "received",
        other_user=UserBrief.model_validate(other) if other else None,
        failure_reason=payment.failure_reason,
        upi_url=upi_url,
    )


async def _push_message(relay: RelayService, message: Message | None) -> None:
    if message is not None:
        await relay.push(
            message.recipient_id, "newMessage", MessageResponse.from_message(message).to_wire()
        )


@router.post("/create", response_model=PaymentResponse, status_code=status.HTTP_201_CREATED)
async def create_payment(
    request: CreatePaymentRequest,
    http_request: Request,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    gateway: PaymentGateway | None = Depends(get_gateway),
    relay: RelayService = Depends(get_relay),
) -> PaymentResponse:
    """Create a payment request and drop a payment-request message into the conversation"""
    try:
        payment, message = await PaymentService(db, gateway).create_payment(
            sender=user,
            recipient_id=request.recipient_id,
            amount=request.amount,
            description=request.description,
            payment_method=request.payment_method,
            metadata={
                "user_agent": http_request.headers.get("user-agent"),
                "ip_address": http_request.client.host if http_request.client else None,
            },
        )
    except AppError:
        await db.rollback()
        raise
    except Exception as e:
        await db.rollback()
        logger.error(f"Error creating payment for {user.id}: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to create payment request",
        )

    await _push_message(relay, message)
    return PaymentResponse(
        message="Payment request created successfully",
        payment=PaymentSummary.from_payment(payment),
    )


@router.post("/upi-link", response_model=UPILinkResponse)
async def generate_upi_link(
    request: PaymentIdRequest,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> UPILinkResponse:
    try:
        if request.payment_id is None:
            raise ValidationError("Payment ID is required")
        payment, upi_url, qr_code_data = await PaymentService(db).generate_upi_link(
            request.payment_id, user
        )
        return UPILinkResponse(
            message="UPI payment link generated",
            upi_url=upi_url,
            qr_code_data=qr_code_data,
            payment=PaymentSummary.from_payment(payment),
        )
    except AppError:
        await db.rollback()
        raise
    except Exception as e:
        await db.rollback()
        logger.error(f"Error generating UPI link: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to generate UPI payment link",
        )


@router.post("/verify", response_model=PaymentResponse)
async def verify_payment(
    request: VerifyPaymentRequest,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    gateway: PaymentGateway | None = Depends(get_gateway),
    relay: RelayService = Depends(get_relay),
) -> PaymentResponse:
    """Mark a payment completed, checking the gateway signature in production"""
    try:
        if request.payment_id is None:
            raise ValidationError("Payment ID is required")
        payment, confirmation = await PaymentService(db, gateway).verify_payment(
            request.payment_id,
            user,
            gateway_payment_id=request.gateway_payment_id,
            signature=request.signature,
        )
    except AppError:
        await db.rollback()
        raise
    except Exception as e:
        await db.rollback()
        logger.error(f"Error verifying payment {request.payment_id}: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to verify payment",
        )

    await _push_message(relay, confirmation)
    return PaymentResponse(
        message="Payment verified successfully",
        payment=PaymentSummary.from_payment(payment),
    )


@router.get("/history", response_model=PaymentHistoryResponse)
async def payment_history(
    limit: int = Query(50, ge=1, le=200),
    status_filter: str | None = Query(None, alias="status"),
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> PaymentHistoryResponse:
    try:
        payment_status = None
        if status_filter:
            try:
                payment_status = PaymentStatus(status_filter)
            except ValueError:
                raise ValidationError(f"Unknown payment status: {status_filter}")

        payment_service = PaymentService(db)
        payments = await payment_service.list_payments(user, limit, payment_status)
        users = await payment_service.load_users(payments)
        return PaymentHistoryResponse(
            payments=[_history_item(p, user, users) for p in payments]
        )
    except AppError:
        raise
    except Exception as e:
        logger.error(f"Error getting payment history for {user.id}: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to get payment history",
        )


@router.get("/pending", response_model=PendingPaymentsResponse)
async def pending_payments(
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> PendingPaymentsResponse:
    try:
        payment_service = PaymentService(db)
        payments = await payment_service.list_payments(user, status=PaymentStatus.PENDING)
        users = await payment_service.load_users(payments)
        return PendingPaymentsResponse(
            pending_payments=[_history_item(p, user, users) for p in payments]
        )
    except Exception as e:
        logger.error(f"Error getting pending payments for {user.id}: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to get pending payments",
        )


@router.put("/{payment_id}/cancel", response_model=PaymentResponse)
async def cancel_payment(
    payment_id: UUID,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> PaymentResponse:
    try:
        payment = await PaymentService(db).cancel_payment(payment_id, user)
        return PaymentResponse(
            message="Payment cancelled successfully",
            payment=PaymentSummary.from_payment(payment),
        )
    except AppError:
        await db.rollback()
        raise
    except Exception as e:
        await db.rollback()
        logger.error(f"Error cancelling payment {payment_id}: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to cancel payment",
        )


@router.get("/stats", response_model=PaymentStatsResponse)
async def payment_stats(
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> PaymentStatsResponse:
    try:
        return PaymentStatsResponse(**await PaymentService(db).stats(user))
    except Exception as e:
        logger.error(f"Error getting payment stats for {user.id}: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to get payment statistics",
        )
