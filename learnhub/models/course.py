# learnhub/models/course.py - Courses, their pricing tiers and batches
from __future__ import annotations
import uuid
from datetime import datetime
from decimal import Decimal

from sqlalchemy import (
    String, Integer, Boolean, Numeric, DateTime, ForeignKey, CheckConstraint, Index, UniqueConstraint, Uuid
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from learnhub.models.base import Base, utcnow


class Course(Base):
    __tablename__ = "courses"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="published")

    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    prices: Mapped[list["CoursePricing"]] = relationship(
        "CoursePricing",
        back_populates="course",
        cascade="all, delete-orphan",
        order_by="CoursePricing.position",
    )
    batches: Mapped[list["Batch"]] = relationship("Batch", back_populates="course")

    def pricing_for(self, currency: str | None) -> "CoursePricing | None":
        """Tier matching the currency, falling back to the first tier"""
        tiers = [p for p in self.prices if p.is_active]
        if not tiers:
            return None
        if currency:
            for tier in tiers:
                if tier.currency == currency.upper():
                    return tier
        return tiers[0]


class CoursePricing(Base):
    __tablename__ = "course_pricing"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    course_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("courses.id", ondelete="CASCADE"), nullable=False, index=True)
    currency: Mapped[str] = mapped_column(String(3), nullable=False)
    individual: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=Decimal("0.00"))
    batch: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=Decimal("0.00"))
    min_batch_size: Mapped[int] = mapped_column(Integer, nullable=False, default=2)
    max_batch_size: Mapped[int] = mapped_column(Integer, nullable=False, default=10)
    early_bird_discount_pct: Mapped[Decimal] = mapped_column(Numeric(5, 2), nullable=False, default=Decimal("0"))
    group_discount_pct: Mapped[Decimal] = mapped_column(Numeric(5, 2), nullable=False, default=Decimal("0"))
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    position: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    course: Mapped["Course"] = relationship("Course", back_populates="prices")

    __table_args__ = (
        UniqueConstraint("course_id", "currency", name="uq_course_pricing_currency"),
        CheckConstraint("individual >= 0 AND batch >= 0", name="ck_course_pricing_non_negative"),
        CheckConstraint("max_batch_size >= min_batch_size", name="ck_course_pricing_batch_sizes"),
        CheckConstraint(
            "early_bird_discount_pct BETWEEN 0 AND 100 AND group_discount_pct BETWEEN 0 AND 100",
            name="ck_course_pricing_discount_pct",
        ),
    )


class Batch(Base):
    __tablename__ = "batches"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    course_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("courses.id", ondelete="RESTRICT"), nullable=False, index=True)
    batch_name: Mapped[str] = mapped_column(String(128), nullable=False)
    batch_code: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="Upcoming")
    capacity: Mapped[int] = mapped_column(Integer, nullable=False)
    # Only changed through BatchRepository.atomic_increment
    enrolled_students: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    start_date: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    end_date: Mapped[datetime] = mapped_column(DateTime, nullable=False)

    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    course: Mapped["Course"] = relationship("Course", back_populates="batches")

    @property
    def available_spots(self) -> int:
        return max(0, self.capacity - self.enrolled_students)

    @property
    def is_open(self) -> bool:
        return self.status in ("Active", "Upcoming")

    __table_args__ = (
        CheckConstraint("status IN ('Upcoming','Active','Closed')", name="ck_batch_status"),
        CheckConstraint("capacity >= 1", name="ck_batch_capacity_positive"),
        CheckConstraint("enrolled_students >= 0 AND enrolled_students <= capacity", name="ck_batch_within_capacity"),
        CheckConstraint("end_date > start_date", name="ck_batch_dates"),
        Index("ix_batches_course_status", "course_id", "status"),
    )
