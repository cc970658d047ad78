"""Pydantic schemas for UPI payment requests"""

from datetime import datetime
from typing import Any
from uuid import UUID

from tempsocial.schemas.common import CamelModel, UserBrief


class CreatePaymentRequest(CamelModel):
    recipient_id: UUID | None = None
    amount: int | None = None
    description: str = ""
    payment_method: str = "upi"


class PaymentIdRequest(CamelModel):
    payment_id: UUID | None = None


class VerifyPaymentRequest(CamelModel):
    payment_id: UUID | None = None
    gateway_payment_id: str | None = None
    signature: str | None = None


class PaymentSummary(CamelModel):
    id: UUID
    transaction_id: str
    amount: int
    currency: str
    description: str
    status: str
    recipient_upi_id: str | None = None
    gateway_order_id: str | None = None
    failure_reason: str | None = None
    created_at: datetime
    completed_at: datetime | None = None

    @classmethod
    def from_payment(cls, payment) -> "PaymentSummary":
        return cls(
            id=payment.id,
            transaction_id=payment.transaction_id,
            amount=payment.amount,
            currency=payment.currency,
            description=payment.description,
            status=payment.status.value,
            recipient_upi_id=payment.recipient_upi_id,
            gateway_order_id=payment.gateway_order_id,
            failure_reason=payment.failure_reason,
            created_at=payment.created_at,
            completed_at=payment.completed_at,
        )


class PaymentResponse(CamelModel):
    message: str
    payment: PaymentSummary


class UPILinkResponse(CamelModel):
    message: str
    upi_url: str
    qr_code_data: dict[str, Any]
    payment: PaymentSummary


class PaymentHistoryItem(CamelModel):
    id: UUID
    transaction_id: str
    amount: int
    description: str
    status: str
    payment_method: str
    created_at: datetime
    completed_at: datetime | None = None
    direction: str
    other_user: UserBrief | None = None
    failure_reason: str | None = None
    upi_url: str | None = None


class PaymentHistoryResponse(CamelModel):
    payments: list[PaymentHistoryItem]


class PendingPaymentsResponse(CamelModel):
    pending_payments: list[PaymentHistoryItem]


class PaymentStatsResponse(CamelModel):
    total_payments: int
    total_amount_sent: int
    total_amount_received: int
    pending_payments: int
    completed_payments: int
    failed_payments: int
