# learnhub/services/financial_analytics.py - Read-only payment rollups for reporting
from datetime import datetime, timedelta
from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable, List, Optional
from uuid import UUID
import logging

from sqlalchemy.orm import Session

from learnhub.core.config import ConsistencyThresholds, EnrollmentPolicy, get_enrollment_policy
from learnhub.core.errors import NotFoundError
from learnhub.models.base import MONEY_QUANT, utcnow
from learnhub.models.course import Course
from learnhub.models.enrollment import Enrollment
from learnhub.models.payment import PaymentRecord
from learnhub.models.student import Student
from learnhub.repositories.enrollment_repository import EnrollmentRepository
from learnhub.schemas.analytics import (
    ConsistencyResult, OutstandingTotals, StudentFinancialSummary, CourseEMIAnalytics,
)

logger = logging.getLogger(__name__)

ZERO = Decimal("0.00")


def classify_payment_frequency(timestamps: Iterable[datetime]) -> str:
    """Bucket the mean interval between payments"""
    ordered = sorted(timestamps)
    if len(ordered) < 2:
        return "insufficient_data"

    gaps = [(later - earlier).total_seconds() for earlier, later in zip(ordered, ordered[1:])]
    mean_days = sum(gaps) / len(gaps) / 86400

    if mean_days <= 7:
        return "very_frequent"
    if mean_days <= 30:
        return "frequent"
    if mean_days <= 90:
        return "moderate"
    return "infrequent"


def consistency_score(
    entries: Iterable[PaymentRecord],
    thresholds: Optional[ConsistencyThresholds] = None,
) -> ConsistencyResult:
    """Success ratio of settled ledger entries; pending entries are not counted"""
    thresholds = thresholds or ConsistencyThresholds()
    statuses = [e.status for e in entries]
    completed = statuses.count("completed")
    failed = statuses.count("failed")

    if completed + failed == 0:
        return ConsistencyResult(score=None, rating="no_history")

    score = round(completed / (completed + failed) * 100, 2)
    if score >= thresholds.excellent:
        rating = "excellent"
    elif score >= thresholds.good:
        rating = "good"
    elif score >= thresholds.fair:
        rating = "fair"
    else:
        rating = "poor"
    return ConsistencyResult(score=score, rating=rating, completed=completed, failed=failed)


def outstanding_totals(enrollment: Enrollment, now: datetime, grace_period_days: int) -> OutstandingTotals:
    """Pending installment amounts (with late fees), and the part past the grace period"""
    grace = timedelta(days=grace_period_days)
    totals = OutstandingTotals()
    for installment in enrollment.installments:
        if installment.status != "pending":
            continue
        totals.pending_installments += 1
        totals.outstanding_amount += installment.amount_due
        if now > installment.due_date + grace:
            totals.overdue_installments += 1
            totals.overdue_amount += installment.amount_due
    return totals


def overdue_risk(overdue_installments: int, consistency: ConsistencyResult) -> str:
    if overdue_installments >= 2 or (overdue_installments and consistency.rating == "poor"):
        return "high"
    if overdue_installments or consistency.rating in ("fair", "poor"):
        return "medium"
    return "low"


class FinancialAnalyticsService:
    def __init__(self, db: Session, policy: Optional[EnrollmentPolicy] = None):
        self.db = db
        self.policy = policy or get_enrollment_policy()
        self.enrollments = EnrollmentRepository(db)

    def student_financial_summary(self, student_id: UUID, now: Optional[datetime] = None) -> StudentFinancialSummary:
        now = now or utcnow()
        if not self.db.get(Student, student_id):
            raise NotFoundError("Student not found", details={"student_id": str(student_id)})

        enrollments = self.enrollments.list_for_student(student_id)
        entries: List[PaymentRecord] = [
            p for e in enrollments for p in e.payments
            # Copies made by a transfer would double count
            if p.copied_from_enrollment_id is None
        ]

        total_paid = outstanding = overdue = ZERO
        overdue_count = 0
        for enrollment in enrollments:
            if enrollment.status in ("cancelled", "expired"):
                continue
            total_paid += enrollment.total_amount_paid
            totals = outstanding_totals(enrollment, now, self.policy.emi_grace_period_days)
            outstanding += totals.outstanding_amount
            overdue += totals.overdue_amount
            overdue_count += totals.overdue_installments

        consistency = consistency_score(entries, self.policy.consistency_thresholds)
        frequency = classify_payment_frequency(e.recorded_at for e in entries if e.status == "completed")

        return StudentFinancialSummary(
            student_id=student_id,
            enrollments=len(enrollments),
            emi_enrollments=sum(1 for e in enrollments if e.is_installment_plan),
            total_paid=total_paid,
            outstanding_amount=outstanding,
            overdue_amount=overdue,
            overdue_installments=overdue_count,
            consistency=consistency,
            payment_frequency=frequency,
            overdue_risk=overdue_risk(overdue_count, consistency),
        )

    def course_emi_analytics(self, course_id: UUID, now: Optional[datetime] = None) -> CourseEMIAnalytics:
        now = now or utcnow()
        if not self.db.get(Course, course_id):
            raise NotFoundError("Course not found", details={"course_id": str(course_id)})

        grace = timedelta(days=self.policy.emi_grace_period_days)
        # A transferred enrollment lives on as its batch copy
        enrollments = [
            e for e in self.enrollments.list_installment_plans_for_course(course_id)
            if e.transferred_to_enrollment_id is None
        ]

        by_status = {"paid": 0, "pending": 0, "overdue": 0, "skipped": 0}
        collected = pending = total_scheduled = ZERO
        installment_count = paid_count = on_time = 0

        for enrollment in enrollments:
            for installment in enrollment.installments:
                installment_count += 1
                total_scheduled += installment.amount
                if installment.status == "paid":
                    by_status["paid"] += 1
                    paid_count += 1
                    collected += installment.amount_due
                    if installment.paid_date and installment.paid_date <= installment.due_date + grace:
                        on_time += 1
                elif installment.status == "skipped":
                    by_status["skipped"] += 1
                elif now > installment.due_date + grace:
                    by_status["overdue"] += 1
                    pending += installment.amount_due
                else:
                    by_status["pending"] += 1
                    pending += installment.amount_due

        average = (total_scheduled / installment_count).quantize(MONEY_QUANT, rounding=ROUND_HALF_UP) if installment_count else ZERO
        on_time_pct = round(on_time / paid_count * 100, 2) if paid_count else None

        logger.debug(f"EMI analytics for course {course_id}: {len(enrollments)} plans, {installment_count} installments")

        return CourseEMIAnalytics(
            course_id=course_id,
            emi_enrollments=len(enrollments),
            collected_revenue=collected,
            pending_revenue=pending,
            average_installment_amount=average,
            installments_by_status=by_status,
            on_time_payment_percentage=on_time_pct,
        )
