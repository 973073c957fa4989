# learnhub/services/emi_scheduler.py - Installment schedule generation, settlement and overdue tracking
from datetime import datetime, timedelta
from decimal import Decimal, ROUND_DOWN, ROUND_HALF_UP
from typing import List, Optional
from uuid import UUID
import logging

from sqlalchemy.orm import Session

from learnhub.core.config import EnrollmentPolicy, get_enrollment_policy
from learnhub.core.errors import (
    ValidationError, NotFoundError, StateError, ALREADY_SETTLED, INSTALLMENT_SKIPPED,
)
from learnhub.models.base import MONEY_QUANT, utcnow
from learnhub.models.enrollment import Enrollment, Installment
from learnhub.models.payment import PaymentRecord
from learnhub.repositories.enrollment_repository import EnrollmentRepository
from learnhub.schemas.emi import EMISummary, InstallmentView
from learnhub.services.financial_analytics import outstanding_totals

logger = logging.getLogger(__name__)

ZERO = Decimal("0.00")


def split_amounts(final_price: Decimal, installments: int) -> List[Decimal]:
    """
    Split a price into installment amounts.

    Installments 1..N-1 get floor(price / N) whole currency units; the last one
    absorbs the remainder so the amounts always sum to the price exactly.
    """
    if installments < 1:
        raise ValidationError("Number of installments must be at least 1", details={"installments": installments})

    price = Decimal(final_price).quantize(MONEY_QUANT, rounding=ROUND_HALF_UP)
    if price < 0:
        raise ValidationError("Price cannot be negative", details={"final_price": str(final_price)})

    regular = (price / installments).quantize(Decimal("1"), rounding=ROUND_DOWN).quantize(MONEY_QUANT)
    amounts = [regular] * (installments - 1)
    amounts.append(price - regular * (installments - 1))
    return amounts


def touch(enrollment: Enrollment, now: Optional[datetime] = None) -> None:
    """Mark the enrollment row dirty so its version counter guards the flush"""
    enrollment.updated_at = now or utcnow()


class EMIScheduler:
    """Owns the installment schedule of an enrollment"""

    def __init__(self, db: Session, policy: Optional[EnrollmentPolicy] = None):
        self.db = db
        self.policy = policy or get_enrollment_policy()
        self.enrollments = EnrollmentRepository(db)

    def generate_schedule(
        self,
        final_price: Decimal,
        installments: int,
        start_date: datetime,
        cadence_days: Optional[int] = None,
    ) -> List[Installment]:
        """
        Build an unsaved installment schedule. Installment 1 is due on start_date,
        installment k on start_date + (k - 1) * cadence_days.
        """
        if installments > self.policy.emi_max_installments:
            raise ValidationError(
                f"Installment plans allow at most {self.policy.emi_max_installments} installments",
                details={"installments": installments, "max": self.policy.emi_max_installments},
            )

        cadence = cadence_days or self.policy.emi_cadence_days
        if cadence < 1:
            raise ValidationError("Installment cadence must be at least 1 day", details={"cadence_days": cadence})

        return [
            Installment(
                number=number,
                amount=amount,
                due_date=start_date + timedelta(days=cadence * (number - 1)),
                status="pending",
            )
            for number, amount in enumerate(split_amounts(final_price, installments), start=1)
        ]

    # Overdue derivation

    def is_overdue(self, installment: Installment, now: datetime) -> bool:
        grace = timedelta(days=self.policy.emi_grace_period_days)
        return installment.status == "pending" and now > installment.due_date + grace

    def derived_status(self, installment: Installment, now: datetime) -> str:
        if self.is_overdue(installment, now):
            return "overdue"
        return installment.status

    def late_fee_for(self, installment: Installment) -> Decimal:
        mode = self.policy.late_fee_mode
        value = Decimal(self.policy.late_fee_value or 0)
        if mode == "fixed":
            return value.quantize(MONEY_QUANT, rounding=ROUND_HALF_UP)
        if mode == "percentage":
            return (installment.amount * value / Decimal(100)).quantize(MONEY_QUANT, rounding=ROUND_HALF_UP)
        return ZERO

    def assess_late_fees(self, enrollment: Enrollment, now: datetime) -> List[int]:
        """
        Capture the late fee on installments seen overdue for the first time.
        A late fee is set at most once per installment. Returns the numbers assessed.
        """
        if self.policy.late_fee_mode == "none" or not enrollment.is_installment_plan:
            return []

        assessed = []
        for installment in enrollment.installments:
            if installment.late_fee is None and self.is_overdue(installment, now):
                fee = self.late_fee_for(installment)
                if fee <= 0:
                    continue
                installment.late_fee = fee
                assessed.append(installment.number)

        if assessed:
            touch(enrollment, now)
            logger.info(f"Late fees assessed on enrollment {enrollment.id} installments {assessed}")
        return assessed

    # Settlement

    def next_payment_date(self, enrollment: Enrollment) -> Optional[datetime]:
        pending = [i.due_date for i in enrollment.installments if i.status == "pending"]
        return min(pending) if pending else None

    def get_installment(self, enrollment: Enrollment, number: int) -> Installment:
        installment = enrollment.installment(number)
        if installment is None:
            raise ValidationError(
                f"Installment {number} does not exist",
                details={"installment_number": number, "installments_count": len(enrollment.installments)},
            )
        return installment

    def check_payable(self, installment: Installment, transaction_id: str) -> bool:
        """
        Raise if the installment cannot take this transaction.
        Returns True when it is already settled by the same transaction.
        """
        if installment.status == "skipped":
            raise StateError(
                f"Installment {installment.number} was skipped",
                code=INSTALLMENT_SKIPPED,
                details={"installment_number": installment.number},
            )
        if installment.status == "paid":
            if installment.transaction_id == transaction_id:
                return True
            raise StateError(
                f"Installment {installment.number} is already paid",
                code=ALREADY_SETTLED,
                details={
                    "installment_number": installment.number,
                    "transaction_id": installment.transaction_id,
                },
            )
        return False

    def mark_installment_paid(
        self,
        enrollment: Enrollment,
        number: int,
        entry: PaymentRecord,
        now: Optional[datetime] = None,
    ) -> Installment:
        """
        Settle an installment with a completed ledger entry. Idempotent for the
        same transaction id. The caller owns the transaction.
        """
        now = now or utcnow()
        installment = self.get_installment(enrollment, number)

        if self.check_payable(installment, entry.transaction_id):
            return installment

        installment.status = "paid"
        installment.paid_date = now
        installment.transaction_id = entry.transaction_id
        enrollment.next_payment_date = self.next_payment_date(enrollment)
        touch(enrollment, now)

        logger.info(f"Installment {number} of enrollment {enrollment.id} paid by {entry.transaction_id}")
        return installment

    def skip_installment(
        self,
        enrollment_id: UUID,
        number: int,
        reason: str,
        now: Optional[datetime] = None,
    ) -> Installment:
        """Admin action: waive a pending installment"""
        now = now or utcnow()
        enrollment = self.enrollments.find_by_id(enrollment_id)
        if not enrollment:
            raise NotFoundError("Enrollment not found", details={"enrollment_id": str(enrollment_id)})
        if not enrollment.is_installment_plan:
            raise ValidationError("Enrollment is not on an installment plan")
        if not enrollment.is_open:
            raise StateError(
                f"Cannot skip installments on a {enrollment.status} enrollment",
                details={"status": enrollment.status},
            )

        installment = self.get_installment(enrollment, number)
        if installment.status == "paid":
            raise StateError(
                f"Installment {number} is already paid",
                code=ALREADY_SETTLED,
                details={"installment_number": number},
            )
        if installment.status == "skipped":
            raise StateError(
                f"Installment {number} was already skipped",
                code=INSTALLMENT_SKIPPED,
                details={"installment_number": number},
            )

        try:
            installment.status = "skipped"
            installment.skip_reason = reason
            enrollment.next_payment_date = self.next_payment_date(enrollment)
            touch(enrollment, now)
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        logger.info(f"Installment {number} of enrollment {enrollment_id} skipped: {reason}")
        return installment

    def get_emi_summary(self, enrollment_id: UUID, now: Optional[datetime] = None) -> EMISummary:
        now = now or utcnow()
        enrollment = self.enrollments.find_by_id(enrollment_id)
        if not enrollment:
            raise NotFoundError("Enrollment not found", details={"enrollment_id": str(enrollment_id)})

        if enrollment.is_open and self.assess_late_fees(enrollment, now):
            try:
                self.db.commit()
            except Exception:
                self.db.rollback()
                raise

        totals = outstanding_totals(enrollment, now, self.policy.emi_grace_period_days)
        schedule = [
            InstallmentView(
                number=i.number,
                amount=i.amount,
                due_date=i.due_date,
                status=self.derived_status(i, now),
                late_fee=i.late_fee,
                amount_due=i.amount_due,
                paid_date=i.paid_date,
                transaction_id=i.transaction_id,
                skip_reason=i.skip_reason,
            )
            for i in enrollment.installments
        ]

        return EMISummary(
            enrollment_id=enrollment.id,
            payment_plan=enrollment.payment_plan,
            currency=enrollment.currency,
            final_price=enrollment.final_price,
            total_amount_paid=enrollment.total_amount_paid,
            schedule=schedule,
            next_payment_date=enrollment.next_payment_date,
            overdue_amount=totals.overdue_amount,
            outstanding_amount=totals.outstanding_amount,
            paid_installments=sum(1 for i in enrollment.installments if i.status == "paid"),
            remaining_installments=sum(1 for i in enrollment.installments if i.status == "pending"),
        )
