# learnhub/models/payment.py - Append-only payment ledger entries
from __future__ import annotations
import uuid
from datetime import datetime
from decimal import Decimal

from sqlalchemy import (
    String, Integer, Numeric, DateTime, ForeignKey, CheckConstraint, Index, UniqueConstraint, Uuid, event, text
)
from sqlalchemy.orm import Mapped, mapped_column, relationship, object_session

from learnhub.core.errors import StateError, IMMUTABLE_FIELD
from learnhub.models.base import Base, utcnow

PAYMENT_STATUSES = ("completed", "failed", "pending")
PAYMENT_METHODS = ("razorpay", "card", "upi", "netbanking", "wallet", "bank_transfer", "cash", "manual", "transfer")


class PaymentRecord(Base):
    """One monetary transaction against an enrollment. Rows are never updated or deleted."""
    __tablename__ = "payment_records"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    enrollment_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("enrollments.id", ondelete="RESTRICT"), nullable=False, index=True)
    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False)
    method: Mapped[str] = mapped_column(String(32), nullable=False, default="razorpay")
    transaction_id: Mapped[str] = mapped_column(String(128), nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False)  # completed|failed|pending
    installment_number: Mapped[int | None] = mapped_column(Integer, nullable=True)
    gateway_order_id: Mapped[str | None] = mapped_column(String(128), nullable=True)
    # Set on entries carried over by a transfer
    copied_from_enrollment_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)

    recorded_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)

    enrollment: Mapped["Enrollment"] = relationship("Enrollment", back_populates="payments")

    __table_args__ = (
        UniqueConstraint("enrollment_id", "transaction_id", name="uq_payment_enrollment_transaction"),
        CheckConstraint("status IN ('completed','failed','pending')", name="ck_payment_record_status"),
        CheckConstraint("amount >= 0", name="ck_payment_record_amount_non_negative"),
        Index("ix_payment_records_enrollment_status", "enrollment_id", "status"),
        # A gateway transaction credits at most one enrollment; transfer copies are exempt
        Index(
            "uq_payment_transaction_original",
            "transaction_id",
            unique=True,
            sqlite_where=text("copied_from_enrollment_id IS NULL"),
            postgresql_where=text("copied_from_enrollment_id IS NULL"),
        ),
    )

    @property
    def is_completed(self) -> bool:
        return self.status == "completed"


@event.listens_for(PaymentRecord, "before_update")
def _reject_ledger_update(mapper, connection, target):
    session = object_session(target)
    if session is not None and not session.is_modified(target, include_collections=False):
        return
    raise StateError(
        "Payment records are append-only and cannot be modified",
        code=IMMUTABLE_FIELD,
        details={"payment_record_id": str(target.id)},
    )


@event.listens_for(PaymentRecord, "before_delete")
def _reject_ledger_delete(mapper, connection, target):
    raise StateError(
        "Payment records are append-only and cannot be deleted",
        code=IMMUTABLE_FIELD,
        details={"payment_record_id": str(target.id)},
    )
