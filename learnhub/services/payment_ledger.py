# learnhub/services/payment_ledger.py - Idempotent, append-only payment recording
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import List, Optional, Union
from uuid import UUID
import logging

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from learnhub.core.config import EnrollmentPolicy, get_enrollment_policy
from learnhub.core.errors import (
    ValidationError, NotFoundError, ConflictError, StateError,
    AMOUNT_MISMATCH, CONCURRENT_UPDATE, ALREADY_SETTLED,
)
from learnhub.models.base import utcnow
from learnhub.models.enrollment import Enrollment
from learnhub.models.payment import PaymentRecord
from learnhub.repositories.enrollment_repository import EnrollmentRepository
from learnhub.schemas.common import SideEffectWarning
from learnhub.schemas.payment import FullPayment, InstallmentPayment
from learnhub.services.emi_scheduler import EMIScheduler, touch
from learnhub.services.notification_service import NotificationService, enrollment_payload, run_best_effort

logger = logging.getLogger(__name__)

ZERO = Decimal("0.00")


@dataclass
class PaymentOutcome:
    enrollment: Enrollment
    entry: PaymentRecord
    duplicate: bool = False
    warnings: List[SideEffectWarning] = field(default_factory=list)


class PaymentLedger:
    """
    Records gateway and admin payments against an enrollment.

    The gateway transaction id is the idempotency key: a replayed event returns
    the original entry without touching balances, and a transaction already
    recorded on another enrollment is rejected. Mutations of a
    single enrollment are serialized by its version counter and retried on
    conflict.
    """

    def __init__(
        self,
        db: Session,
        policy: Optional[EnrollmentPolicy] = None,
        notifier: Optional[NotificationService] = None,
    ):
        self.db = db
        self.policy = policy or get_enrollment_policy()
        self.notifier = notifier
        self.enrollments = EnrollmentRepository(db)
        self.scheduler = EMIScheduler(db, self.policy)

    def record_payment(
        self,
        enrollment_id: UUID,
        event: Union[FullPayment, InstallmentPayment],
        now: Optional[datetime] = None,
    ) -> PaymentOutcome:
        """
        Record a payment event.

        Raises:
            NotFoundError: Enrollment missing
            StateError: Enrollment cancelled/expired, installment settled or skipped
            ValidationError: Currency or plan mismatch
            ConflictError: AMOUNT_MISMATCH, or CONCURRENT_UPDATE after retries
        """
        now = now or utcnow()
        attempts = max(1, self.policy.payment_max_retries)

        for attempt in range(1, attempts + 1):
            try:
                outcome = self._apply(enrollment_id, event, now)
                self.db.commit()
                break
            except (StaleDataError, IntegrityError) as e:
                self.db.rollback()
                logger.warning(
                    f"Concurrent update on enrollment {enrollment_id} "
                    f"(attempt {attempt}/{attempts}): {type(e).__name__}"
                )
                if attempt == attempts:
                    raise ConflictError(
                        "Enrollment was modified concurrently, please retry",
                        code=CONCURRENT_UPDATE,
                        details={"enrollment_id": str(enrollment_id), "attempts": attempts},
                    )
            except Exception:
                self.db.rollback()
                raise

        if outcome.duplicate:
            logger.info(f"Duplicate transaction {event.transaction_id} on enrollment {enrollment_id}, no-op")
            return outcome

        logger.info(
            f"Payment {event.transaction_id} ({event.status}) recorded on enrollment {enrollment_id}: "
            f"{event.amount} {event.currency}"
        )

        if outcome.entry.is_completed and self.notifier is not None:
            entry = outcome.entry
            warning = run_best_effort(
                "payment_notification",
                lambda: self.notifier.send("payment_received", enrollment_payload(
                    outcome.enrollment,
                    amount=entry.amount,
                    transaction_id=entry.transaction_id,
                    installment_number=entry.installment_number,
                )),
            )
            if warning:
                outcome.warnings.append(warning)

        return outcome

    def _apply(self, enrollment_id: UUID, event, now: datetime) -> PaymentOutcome:
        enrollment = self.enrollments.find_by_id(enrollment_id)
        if not enrollment:
            raise NotFoundError("Enrollment not found", details={"enrollment_id": str(enrollment_id)})

        existing = self.enrollments.find_payment(enrollment.id, event.transaction_id)
        if existing is not None:
            return PaymentOutcome(enrollment=enrollment, entry=existing, duplicate=True)

        original = self.enrollments.find_original_payment(event.transaction_id)
        if original is not None:
            raise StateError(
                f"Transaction {event.transaction_id} is already recorded on another enrollment",
                code=ALREADY_SETTLED,
                details={
                    "transaction_id": event.transaction_id,
                    "enrollment_id": str(original.enrollment_id),
                },
            )

        if enrollment.status in ("cancelled", "expired"):
            raise StateError(
                f"Cannot record payments on a {enrollment.status} enrollment",
                details={"enrollment_id": str(enrollment.id), "status": enrollment.status},
            )

        if event.currency != enrollment.currency:
            raise ValidationError(
                f"Payment currency {event.currency} does not match enrollment currency {enrollment.currency}",
                details={"expected": enrollment.currency, "actual": event.currency},
            )

        if isinstance(event, InstallmentPayment):
            if not enrollment.is_installment_plan:
                raise ValidationError(
                    "Installment payment sent for an enrollment on the full payment plan",
                    details={"payment_plan": enrollment.payment_plan},
                )
            return self._apply_installment(enrollment, event, now)

        if enrollment.is_installment_plan:
            raise ValidationError(
                "Full payment sent for an enrollment on an installment plan",
                details={"payment_plan": enrollment.payment_plan},
            )
        return self._apply_full(enrollment, event, now)

    def _apply_full(self, enrollment: Enrollment, event: FullPayment, now: datetime) -> PaymentOutcome:
        self._check_amount(expected=enrollment.final_price, actual=event.amount)

        if event.status == "completed" and any(p.is_completed for p in enrollment.payments):
            raise StateError(
                "Enrollment is already paid in full",
                code=ALREADY_SETTLED,
                details={"enrollment_id": str(enrollment.id)},
            )

        entry = self._append(enrollment, event, now)
        if entry.is_completed:
            self._credit(enrollment, entry, now)
        return PaymentOutcome(enrollment=enrollment, entry=entry)

    def _apply_installment(self, enrollment: Enrollment, event: InstallmentPayment, now: datetime) -> PaymentOutcome:
        installment = self.scheduler.get_installment(enrollment, event.installment_number)

        if enrollment.is_open:
            self.scheduler.assess_late_fees(enrollment, now)
        self._check_amount(
            expected=installment.amount_due,
            actual=event.amount,
            installment_number=installment.number,
        )

        if event.status == "completed":
            # Reject before anything is appended
            self.scheduler.check_payable(installment, event.transaction_id)

        entry = self._append(enrollment, event, now, installment_number=installment.number)
        if entry.is_completed:
            self.scheduler.mark_installment_paid(enrollment, installment.number, entry, now)
            self._credit(enrollment, entry, now)
        return PaymentOutcome(enrollment=enrollment, entry=entry)

    def _check_amount(self, expected: Decimal, actual: Decimal, installment_number: Optional[int] = None):
        if Decimal(actual) != Decimal(expected):
            details = {"expected": str(expected), "actual": str(actual)}
            if installment_number is not None:
                details["installment_number"] = installment_number
            raise ConflictError(
                f"Payment amount {actual} does not match expected amount {expected}",
                code=AMOUNT_MISMATCH,
                details=details,
            )

    def _append(self, enrollment: Enrollment, event, now: datetime, installment_number: Optional[int] = None) -> PaymentRecord:
        entry = PaymentRecord(
            enrollment_id=enrollment.id,
            amount=event.amount,
            currency=event.currency,
            method=event.method,
            transaction_id=event.transaction_id,
            status=event.status,
            installment_number=installment_number,
            gateway_order_id=event.gateway_order_id,
            recorded_at=now,
        )
        enrollment.payments.append(entry)
        touch(enrollment, now)
        self.db.flush()
        return entry

    def _credit(self, enrollment: Enrollment, entry: PaymentRecord, now: datetime):
        enrollment.total_amount_paid = (enrollment.total_amount_paid or ZERO) + entry.amount
        if enrollment.status == "pending":
            enrollment.status = "active"
            logger.info(f"Enrollment {enrollment.id} activated by payment {entry.transaction_id}")
        touch(enrollment, now)

    def list_entries(self, enrollment_id: UUID) -> List[PaymentRecord]:
        enrollment = self.enrollments.find_by_id(enrollment_id)
        if not enrollment:
            raise NotFoundError("Enrollment not found", details={"enrollment_id": str(enrollment_id)})
        return list(enrollment.payments)

    def recalculate_total(self, enrollment: Enrollment) -> Decimal:
        """Recompute total_amount_paid from completed ledger entries"""
        total = sum((p.amount for p in enrollment.payments if p.is_completed), ZERO)
        if enrollment.total_amount_paid != total:
            logger.warning(
                f"Enrollment {enrollment.id} total_amount_paid {enrollment.total_amount_paid} "
                f"differs from ledger {total}, correcting"
            )
            enrollment.total_amount_paid = total
            touch(enrollment)
        return total
