# learnhub/schemas/payment.py - Payment events, ledger entries and gateway checkout schemas
from pydantic import BaseModel, Field, field_validator
from typing import Optional, List, Literal, Union, Annotated
from datetime import datetime
from decimal import Decimal
from uuid import UUID

from learnhub.schemas.common import SideEffectWarning

PaymentStatus = Literal["completed", "failed", "pending"]
PaymentMethod = Literal["razorpay", "card", "upi", "netbanking", "wallet", "bank_transfer", "cash", "manual"]


class _PaymentEventBase(BaseModel):
    amount: Decimal = Field(..., ge=0, decimal_places=2)
    currency: str = Field(..., min_length=3, max_length=3)
    method: PaymentMethod = "razorpay"
    transaction_id: str = Field(..., min_length=1, max_length=128)
    status: PaymentStatus = "completed"
    gateway_order_id: Optional[str] = Field(None, max_length=128)

    @field_validator("currency")
    @classmethod
    def normalize_currency(cls, v: str) -> str:
        return v.strip().upper()

    @field_validator("transaction_id")
    @classmethod
    def validate_transaction_id(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("Transaction id cannot be empty or whitespace")
        return v.strip()


class FullPayment(_PaymentEventBase):
    kind: Literal["full"] = "full"


class InstallmentPayment(_PaymentEventBase):
    kind: Literal["installment"] = "installment"
    installment_number: int = Field(..., ge=1)


PaymentEvent = Annotated[Union[FullPayment, InstallmentPayment], Field(discriminator="kind")]


class PaymentEventRequest(BaseModel):
    """Wrapper so the tagged union can be posted as a request body"""
    event: PaymentEvent


class PaymentRecordOut(BaseModel):
    id: UUID
    enrollment_id: UUID
    amount: Decimal
    currency: str
    method: str
    transaction_id: str
    status: PaymentStatus
    installment_number: Optional[int] = None
    gateway_order_id: Optional[str] = None
    copied_from_enrollment_id: Optional[UUID] = None
    recorded_at: datetime

    class Config:
        from_attributes = True


class PaymentResult(BaseModel):
    entry: PaymentRecordOut
    duplicate: bool = False
    enrollment_id: UUID
    enrollment_status: str
    total_amount_paid: Decimal
    next_payment_date: Optional[datetime] = None
    warnings: List[SideEffectWarning] = []


class LedgerOut(BaseModel):
    enrollment_id: UUID
    currency: str
    total_amount_paid: Decimal
    entries: List[PaymentRecordOut]


# Gateway checkout
class OrderCreate(BaseModel):
    enrollment_id: UUID
    installment_number: Optional[int] = Field(None, ge=1)


class OrderOut(BaseModel):
    order_id: str
    amount: Decimal
    amount_minor: int
    currency: str
    receipt: str
    key_id: Optional[str] = None
    installment_number: Optional[int] = None


class PaymentVerifyRequest(BaseModel):
    enrollment_id: UUID
    razorpay_order_id: str = Field(..., min_length=1)
    razorpay_payment_id: str = Field(..., min_length=1)
    razorpay_signature: str = Field(..., min_length=1)
    installment_number: Optional[int] = Field(None, ge=1)


class WebhookAck(BaseModel):
    status: Literal["processed", "ignored", "duplicate"]
    event: Optional[str] = None
    detail: Optional[str] = None
