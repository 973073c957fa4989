# learnhub/services/access_gate.py - Derived course access decision
from datetime import datetime, timedelta
from typing import Optional
from uuid import UUID

from sqlalchemy.orm import Session

from learnhub.core.config import EnrollmentPolicy, get_enrollment_policy
from learnhub.core.errors import NotFoundError
from learnhub.models.base import utcnow
from learnhub.models.enrollment import Enrollment
from learnhub.repositories.enrollment_repository import EnrollmentRepository
from learnhub.schemas.access import AccessStatus


def has_overdue_installment(enrollment: Enrollment, now: datetime, grace_period_days: int) -> bool:
    grace = timedelta(days=grace_period_days)
    return any(
        i.status == "pending" and now > i.due_date + grace
        for i in enrollment.installments
    )


def compute_access_status(
    enrollment: Enrollment,
    now: datetime,
    policy: Optional[EnrollmentPolicy] = None,
) -> AccessStatus:
    """
    Decide whether the learner can use the course right now.

    Reads only; never assesses late fees or changes the enrollment.
    """
    policy = policy or get_enrollment_policy()

    if now > enrollment.access_expiry_date or enrollment.status == "expired":
        return AccessStatus.expired(now)

    if enrollment.is_installment_plan and has_overdue_installment(enrollment, now, policy.emi_grace_period_days):
        scope = "all" if policy.overdue_blocks_all_access else "new_content"
        return AccessStatus.restricted("overdue_installment", now, scope=scope)

    if enrollment.status == "cancelled":
        return AccessStatus.restricted("enrollment_cancelled", now)
    if enrollment.status == "on_hold":
        return AccessStatus.restricted("on_hold", now)

    if (
        enrollment.payment_plan == "full"
        and enrollment.final_price > 0
        and not any(p.status == "completed" for p in enrollment.payments)
    ):
        return AccessStatus.restricted("payment_pending", now)

    return AccessStatus.active(now)


class AccessGate:
    def __init__(self, db: Session, policy: Optional[EnrollmentPolicy] = None):
        self.db = db
        self.policy = policy or get_enrollment_policy()
        self.enrollments = EnrollmentRepository(db)

    def get_access_status(self, enrollment_id: UUID, now: Optional[datetime] = None) -> AccessStatus:
        enrollment = self.enrollments.find_by_id(enrollment_id)
        if not enrollment:
            raise NotFoundError("Enrollment not found", details={"enrollment_id": str(enrollment_id)})
        return compute_access_status(enrollment, now or utcnow(), self.policy)
