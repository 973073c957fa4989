# learnhub/repositories/enrollment_repository.py - Enrollment and ledger queries
from datetime import datetime
from typing import List, Optional
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session, selectinload

from learnhub.models.enrollment import Enrollment
from learnhub.models.payment import PaymentRecord

# Statuses that block a second enrollment in the same course
BLOCKING_STATUSES = ("active", "on_hold", "completed")
OPEN_STATUSES = ("pending", "active", "on_hold")


class EnrollmentRepository:
    def __init__(self, db: Session):
        self.db = db

    def find_by_id(self, enrollment_id: UUID) -> Optional[Enrollment]:
        return self.db.execute(
            select(Enrollment)
            .options(
                selectinload(Enrollment.installments),
                selectinload(Enrollment.payments),
                selectinload(Enrollment.batch_members),
            )
            .where(Enrollment.id == enrollment_id)
        ).scalar_one_or_none()

    def find_blocking(
        self,
        student_id: UUID,
        course_id: UUID,
        exclude_enrollment_id: Optional[UUID] = None,
    ) -> Optional[Enrollment]:
        query = select(Enrollment).where(
            Enrollment.student_id == student_id,
            Enrollment.course_id == course_id,
            Enrollment.status.in_(BLOCKING_STATUSES),
        )
        if exclude_enrollment_id is not None:
            query = query.where(Enrollment.id != exclude_enrollment_id)
        return self.db.execute(query.limit(1)).scalar_one_or_none()

    def list_open(self, expiring_before: Optional[datetime] = None) -> List[Enrollment]:
        query = select(Enrollment).where(Enrollment.status.in_(OPEN_STATUSES))
        if expiring_before is not None:
            query = query.where(Enrollment.access_expiry_date < expiring_before)
        return list(self.db.execute(query.order_by(Enrollment.access_expiry_date.asc())).scalars().all())

    def list_for_student(self, student_id: UUID) -> List[Enrollment]:
        return list(self.db.execute(
            select(Enrollment)
            .options(selectinload(Enrollment.installments), selectinload(Enrollment.payments))
            .where(Enrollment.student_id == student_id)
            .order_by(Enrollment.enrollment_date.asc())
        ).scalars().all())

    def list_installment_plans_for_course(self, course_id: UUID) -> List[Enrollment]:
        return list(self.db.execute(
            select(Enrollment)
            .options(selectinload(Enrollment.installments), selectinload(Enrollment.payments))
            .where(
                Enrollment.course_id == course_id,
                Enrollment.payment_plan == "installment",
            )
        ).scalars().all())

    def find_payment(self, enrollment_id: UUID, transaction_id: str) -> Optional[PaymentRecord]:
        return self.db.execute(
            select(PaymentRecord).where(
                PaymentRecord.enrollment_id == enrollment_id,
                PaymentRecord.transaction_id == transaction_id,
            )
        ).scalar_one_or_none()

    def find_original_payment(self, transaction_id: str) -> Optional[PaymentRecord]:
        """The ledger entry a gateway transaction was first recorded as, on any enrollment"""
        return self.db.execute(
            select(PaymentRecord).where(
                PaymentRecord.transaction_id == transaction_id,
                PaymentRecord.copied_from_enrollment_id.is_(None),
            )
        ).scalar_one_or_none()
