# learnhub/models/enrollment.py - Enrollment, its installment schedule and batch members
from __future__ import annotations
import uuid
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import (
    String, Integer, Boolean, Numeric, DateTime, Text, ForeignKey, CheckConstraint, Index, UniqueConstraint, Uuid
)
from sqlalchemy.orm import Mapped, mapped_column, relationship, validates

from learnhub.core.errors import StateError, IMMUTABLE_FIELD
from learnhub.models.base import Base, utcnow

ENROLLMENT_TYPES = ("individual", "batch")
ENROLLMENT_STATUSES = ("pending", "active", "on_hold", "completed", "cancelled", "expired")
PAYMENT_PLANS = ("full", "installment")
INSTALLMENT_STATUSES = ("pending", "paid", "skipped")
PRICING_SNAPSHOT_FIELDS = (
    "original_price", "final_price", "currency", "discount_applied", "pricing_type", "discount_code",
)


@dataclass(frozen=True)
class PricingSnapshot:
    original_price: Decimal
    final_price: Decimal
    currency: str
    discount_applied: Decimal
    pricing_type: str
    discount_code: Optional[str] = None


class Enrollment(Base):
    """
    A learner's enrollment in a course, either individually or as part of a batch.
    Price terms are frozen at creation; payments are tracked in the ledger
    (PaymentRecord) and, for installment plans, in the installment schedule.
    """
    __tablename__ = "enrollments"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    student_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("students.id", ondelete="CASCADE"), nullable=False, index=True)
    course_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("courses.id", ondelete="RESTRICT"), nullable=False, index=True)
    batch_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, ForeignKey("batches.id", ondelete="RESTRICT"), nullable=True, index=True)

    enrollment_type: Mapped[str] = mapped_column(String(16), nullable=False, default="individual")
    enrollment_source: Mapped[str] = mapped_column(String(16), nullable=False, default="website")
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="pending")
    payment_plan: Mapped[str] = mapped_column(String(16), nullable=False, default="full")
    installments_count: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    # Pricing snapshot, frozen at creation
    original_price: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    final_price: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False)
    discount_applied: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=Decimal("0.00"))
    pricing_type: Mapped[str] = mapped_column(String(16), nullable=False)
    discount_code: Mapped[str | None] = mapped_column(String(64), nullable=True)

    enrollment_date: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)
    access_expiry_date: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    total_amount_paid: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=Decimal("0.00"))
    next_payment_date: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    # Batch info
    batch_size: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    is_batch_leader: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    # Progress, fed by the course progress tracker
    progress_percentage: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    lessons_completed: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_activity_date: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_by: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)
    transferred_to_enrollment_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    cancelled_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    version: Mapped[int] = mapped_column(Integer, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    student: Mapped["Student"] = relationship("Student", back_populates="enrollments", foreign_keys=[student_id])
    course: Mapped["Course"] = relationship("Course")
    batch: Mapped["Batch | None"] = relationship("Batch")
    installments: Mapped[list["Installment"]] = relationship(
        "Installment",
        back_populates="enrollment",
        cascade="all, delete-orphan",
        order_by="Installment.number",
    )
    payments: Mapped[list["PaymentRecord"]] = relationship(
        "PaymentRecord",
        back_populates="enrollment",
        order_by="PaymentRecord.recorded_at",
    )
    batch_members: Mapped[list["BatchMember"]] = relationship(
        "BatchMember",
        back_populates="enrollment",
        cascade="all, delete-orphan",
    )

    # Optimistic concurrency: every UPDATE is guarded by the version counter
    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        CheckConstraint(
            "status IN ('pending','active','on_hold','completed','cancelled','expired')",
            name="ck_enrollment_status",
        ),
        CheckConstraint("enrollment_type IN ('individual','batch')", name="ck_enrollment_type"),
        CheckConstraint("payment_plan IN ('full','installment')", name="ck_enrollment_payment_plan"),
        CheckConstraint("final_price >= 0 AND total_amount_paid >= 0", name="ck_enrollment_amounts"),
        CheckConstraint(
            "(enrollment_type = 'batch' AND batch_id IS NOT NULL) OR (enrollment_type = 'individual' AND batch_id IS NULL)",
            name="ck_enrollment_batch_reference",
        ),
        Index("ix_enrollments_student_course", "student_id", "course_id"),
        Index("ix_enrollments_status_expiry", "status", "access_expiry_date"),
    )

    @validates(*PRICING_SNAPSHOT_FIELDS)
    def _freeze_pricing_snapshot(self, key, value):
        current = getattr(self, key)
        if current is not None and current != value:
            raise StateError(
                f"Pricing snapshot field '{key}' cannot change after enrollment",
                code=IMMUTABLE_FIELD,
                details={"field": key},
            )
        return value

    @property
    def pricing_snapshot(self) -> PricingSnapshot:
        return PricingSnapshot(
            original_price=self.original_price,
            final_price=self.final_price,
            currency=self.currency,
            discount_applied=self.discount_applied,
            pricing_type=self.pricing_type,
            discount_code=self.discount_code,
        )

    @property
    def is_installment_plan(self) -> bool:
        return self.payment_plan == "installment"

    @property
    def is_batch_enrollment(self) -> bool:
        return self.enrollment_type == "batch" and self.batch_id is not None

    @property
    def is_open(self) -> bool:
        """Still able to take payments and change state"""
        return self.status in ("pending", "active", "on_hold")

    def installment(self, number: int) -> "Installment | None":
        for item in self.installments:
            if item.number == number:
                return item
        return None


class Installment(Base):
    __tablename__ = "installments"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    enrollment_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("enrollments.id", ondelete="CASCADE"), nullable=False, index=True)
    number: Mapped[int] = mapped_column(Integer, nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    due_date: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="pending")
    paid_date: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    transaction_id: Mapped[str | None] = mapped_column(String(128), nullable=True)
    late_fee: Mapped[Decimal | None] = mapped_column(Numeric(12, 2), nullable=True)
    skip_reason: Mapped[str | None] = mapped_column(String(255), nullable=True)

    enrollment: Mapped["Enrollment"] = relationship("Enrollment", back_populates="installments")

    __table_args__ = (
        UniqueConstraint("enrollment_id", "number", name="uq_installment_number"),
        CheckConstraint("status IN ('pending','paid','skipped')", name="ck_installment_status"),
        CheckConstraint("amount >= 0", name="ck_installment_amount_non_negative"),
        CheckConstraint("number >= 1", name="ck_installment_number_positive"),
    )

    @validates("number", "amount")
    def _freeze_schedule_terms(self, key, value):
        current = getattr(self, key)
        if current is not None and current != value:
            raise StateError(
                f"Installment {key} cannot change once scheduled",
                code=IMMUTABLE_FIELD,
                details={"field": key},
            )
        return value

    @property
    def amount_due(self) -> Decimal:
        return self.amount + (self.late_fee or Decimal("0.00"))


class BatchMember(Base):
    __tablename__ = "batch_members"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    enrollment_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("enrollments.id", ondelete="CASCADE"), nullable=False, index=True)
    student_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("students.id", ondelete="CASCADE"), nullable=False)
    joined_date: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)

    enrollment: Mapped["Enrollment"] = relationship("Enrollment", back_populates="batch_members")

    __table_args__ = (
        UniqueConstraint("enrollment_id", "student_id", name="uq_batch_member"),
    )
