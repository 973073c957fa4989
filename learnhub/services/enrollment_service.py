# learnhub/services/enrollment_service.py - Enrollment creation, validation and status transitions
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Dict, List, Optional, Tuple
from uuid import UUID
import logging

from sqlalchemy import select
from sqlalchemy.orm import Session

from learnhub.core.config import EnrollmentPolicy, get_enrollment_policy
from learnhub.core.errors import (
    ValidationError, NotFoundError, ConflictError, StateError,
    ALREADY_ENROLLED, CAPACITY_EXCEEDED, INVALID_TRANSITION,
)
from learnhub.models.base import utcnow
from learnhub.models.course import Course, Batch
from learnhub.models.enrollment import Enrollment, Installment, BatchMember
from learnhub.models.payment import PaymentRecord
from learnhub.models.student import Student
from learnhub.repositories.course_repository import CourseRepository, BatchRepository
from learnhub.repositories.enrollment_repository import EnrollmentRepository
from learnhub.schemas.common import SideEffectWarning
from learnhub.schemas.enrollment import EnrollmentOptions, ProgressUpdate, BatchInfoUpdate
from learnhub.schemas.pricing import PriceBreakdown
from learnhub.services.emi_scheduler import EMIScheduler, touch
from learnhub.services.notification_service import NotificationService, enrollment_payload, run_best_effort
from learnhub.services.pricing_service import calculate_pricing, resolve_tier

logger = logging.getLogger(__name__)

ALLOWED_TRANSITIONS: Dict[str, Tuple[str, ...]] = {
    "pending": ("active", "cancelled", "expired"),
    "active": ("on_hold", "completed", "cancelled", "expired"),
    "on_hold": ("active", "cancelled", "expired"),
    "completed": (),
    "cancelled": (),
    "expired": (),
}

TRANSFERABLE_STATUSES = ("pending", "active", "on_hold")


def can_transition(from_status: str, to_status: str) -> bool:
    return to_status in ALLOWED_TRANSITIONS.get(from_status, ())


@dataclass
class Prerequisites:
    student: Student
    course: Course
    batch: Optional[Batch] = None


@dataclass
class EnrollmentOutcome:
    enrollment: Enrollment
    warnings: List[SideEffectWarning] = field(default_factory=list)


class EnrollmentService:
    """Lifecycle of an enrollment from creation to completion, cancellation or expiry"""

    def __init__(
        self,
        db: Session,
        policy: Optional[EnrollmentPolicy] = None,
        notifier: Optional[NotificationService] = None,
    ):
        self.db = db
        self.policy = policy or get_enrollment_policy()
        self.notifier = notifier
        self.courses = CourseRepository(db)
        self.batches = BatchRepository(db)
        self.enrollments = EnrollmentRepository(db)
        self.scheduler = EMIScheduler(db, self.policy)

    # Lookups

    def get_enrollment(self, enrollment_id: UUID) -> Enrollment:
        enrollment = self.enrollments.find_by_id(enrollment_id)
        if not enrollment:
            raise NotFoundError("Enrollment not found", details={"enrollment_id": str(enrollment_id)})
        return enrollment

    def get_available_batches(self, course_id: UUID) -> List[Batch]:
        if not self.courses.find_by_id(course_id):
            raise NotFoundError("Course not found", details={"course_id": str(course_id)})
        return self.batches.list_open_for_course(course_id)

    # Validation

    def validate_prerequisites(
        self,
        student_id: UUID,
        course_id: UUID,
        enrollment_type: str,
        batch_id: Optional[UUID] = None,
        exclude_enrollment_id: Optional[UUID] = None,
        seats: int = 1,
    ) -> Prerequisites:
        """
        Check that the student can enroll in the course (and batch).

        Raises:
            NotFoundError: Student, course or batch missing
            ConflictError: ALREADY_ENROLLED, CAPACITY_EXCEEDED
            ValidationError: Missing batch id, batch from another course
            StateError: Batch closed
        """
        if enrollment_type not in ("individual", "batch"):
            raise ValidationError(
                f"Invalid enrollment type: {enrollment_type}",
                details={"enrollment_type": enrollment_type},
            )

        student = self.db.get(Student, student_id)
        if not student:
            raise NotFoundError("Student not found", details={"student_id": str(student_id)})

        course = self.courses.find_by_id(course_id)
        if not course:
            raise NotFoundError("Course not found", details={"course_id": str(course_id)})

        existing = self.enrollments.find_blocking(student_id, course_id, exclude_enrollment_id)
        if existing:
            raise ConflictError(
                "Student is already enrolled in this course",
                code=ALREADY_ENROLLED,
                details={"enrollment_id": str(existing.id), "status": existing.status},
            )

        batch = None
        if enrollment_type == "batch":
            if not batch_id:
                raise ValidationError("Batch id is required for batch enrollment")

            batch = self.batches.find_by_id(batch_id)
            if not batch:
                raise NotFoundError("Batch not found", details={"batch_id": str(batch_id)})
            if batch.course_id != course.id:
                raise ValidationError(
                    "Batch does not belong to the selected course",
                    details={"batch_id": str(batch_id), "course_id": str(course_id)},
                )
            if not batch.is_open:
                raise StateError(
                    f"Batch is {batch.status} and not accepting enrollments",
                    details={"batch_id": str(batch_id), "status": batch.status},
                )
            if batch.enrolled_students + seats > batch.capacity:
                raise ConflictError(
                    "Batch has reached maximum capacity",
                    code=CAPACITY_EXCEEDED,
                    details={"batch_id": str(batch_id), "available_spots": batch.available_spots},
                )

        return Prerequisites(student=student, course=course, batch=batch)

    # Creation

    def create_enrollment(
        self,
        student_id: UUID,
        course_id: UUID,
        enrollment_type: str,
        options: Optional[EnrollmentOptions] = None,
        created_by: Optional[UUID] = None,
        now: Optional[datetime] = None,
    ) -> EnrollmentOutcome:
        options = options or EnrollmentOptions()
        if enrollment_type == "individual":
            enrollment = self.create_individual_enrollment(student_id, course_id, options, created_by, now)
        elif enrollment_type == "batch":
            enrollment = self.create_batch_enrollment(student_id, course_id, options, created_by, now)
        else:
            raise ValidationError(
                f"Invalid enrollment type: {enrollment_type}",
                details={"enrollment_type": enrollment_type},
            )

        outcome = EnrollmentOutcome(enrollment=enrollment)
        self._notify(outcome, "enrollment_created")
        return outcome

    def create_individual_enrollment(
        self,
        student_id: UUID,
        course_id: UUID,
        options: EnrollmentOptions,
        created_by: Optional[UUID] = None,
        now: Optional[datetime] = None,
    ) -> Enrollment:
        now = now or utcnow()
        prereq = self.validate_prerequisites(student_id, course_id, "individual")

        pricing = calculate_pricing(
            prereq.course,
            "individual",
            currency=options.currency or self.policy.default_currency,
            custom_discount=options.custom_discount,
            discount_code=options.discount_code,
        )
        duration = options.access_duration_days or self.policy.access_duration_days

        try:
            enrollment = self._build(
                student_id=student_id,
                course_id=course_id,
                batch_id=None,
                enrollment_type="individual",
                pricing=pricing,
                options=options,
                access_expiry_date=now + timedelta(days=duration),
                created_by=created_by or student_id,
                now=now,
            )
            self.db.add(enrollment)
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        logger.info(
            f"Individual enrollment {enrollment.id} created: student {student_id}, course {course_id}, "
            f"{pricing.final_price} {pricing.currency} ({enrollment.payment_plan})"
        )
        return enrollment

    def create_batch_enrollment(
        self,
        student_id: UUID,
        course_id: UUID,
        options: EnrollmentOptions,
        created_by: Optional[UUID] = None,
        now: Optional[datetime] = None,
    ) -> Enrollment:
        now = now or utcnow()
        if not options.batch_id:
            raise ValidationError("Batch id is required for batch enrollment")

        batch_size = options.batch_size
        prereq = self.validate_prerequisites(student_id, course_id, "batch", options.batch_id, seats=batch_size)
        currency = options.currency or self.policy.default_currency
        tier = resolve_tier(prereq.course, currency)

        if batch_size < 1 or batch_size > tier.max_batch_size:
            raise ValidationError(
                f"Batch size must be between 1 and {tier.max_batch_size}",
                details={"batch_size": batch_size, "max_batch_size": tier.max_batch_size},
            )
        members = self._validate_members(student_id, options.batch_members, batch_size)

        pricing = calculate_pricing(
            prereq.course,
            "batch",
            currency=currency,
            batch_size=batch_size,
            custom_discount=options.custom_discount,
            discount_code=options.discount_code,
        )

        try:
            if not self.batches.atomic_increment(prereq.batch.id, batch_size):
                raise ConflictError(
                    "Batch has reached maximum capacity",
                    code=CAPACITY_EXCEEDED,
                    details={"batch_id": str(prereq.batch.id), "requested_seats": batch_size},
                )

            enrollment = self._build(
                student_id=student_id,
                course_id=course_id,
                batch_id=prereq.batch.id,
                enrollment_type="batch",
                pricing=pricing,
                options=options,
                access_expiry_date=prereq.batch.end_date + timedelta(days=self.policy.batch_access_grace_days),
                created_by=created_by or student_id,
                now=now,
                batch_size=batch_size,
                is_batch_leader=True,
            )
            for member_id in members:
                enrollment.batch_members.append(BatchMember(student_id=member_id, joined_date=now))

            self.db.add(enrollment)
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        logger.info(
            f"Batch enrollment {enrollment.id} created: student {student_id}, batch {prereq.batch.id}, "
            f"size {batch_size}, {pricing.final_price} {pricing.currency}"
        )
        return enrollment

    def _validate_members(self, leader_id: UUID, member_ids: List[UUID], batch_size: int) -> List[UUID]:
        members = list(dict.fromkeys(member_ids))
        if leader_id in members:
            raise ValidationError("The batch leader cannot also be listed as a member")
        if len(members) > batch_size - 1:
            raise ValidationError(
                "More batch members than seats in the batch",
                details={"batch_size": batch_size, "members": len(members)},
            )
        found = set(self.db.execute(select(Student.id).where(Student.id.in_(members))).scalars().all()) if members else set()
        missing = [str(m) for m in members if m not in found]
        if missing:
            raise NotFoundError("Batch member not found", details={"student_ids": missing})
        return members

    def _build(
        self,
        student_id: UUID,
        course_id: UUID,
        batch_id: Optional[UUID],
        enrollment_type: str,
        pricing: PriceBreakdown,
        options: EnrollmentOptions,
        access_expiry_date: datetime,
        created_by: Optional[UUID],
        now: datetime,
        batch_size: int = 1,
        is_batch_leader: bool = False,
    ) -> Enrollment:
        payment_plan = options.payment_plan
        installments_count = options.installments_count if payment_plan == "installment" else 1
        status = "pending"

        # Nothing to pay: skip checkout entirely
        if pricing.final_price == 0:
            payment_plan, installments_count, status = "full", 1, "active"

        enrollment = Enrollment(
            student_id=student_id,
            course_id=course_id,
            batch_id=batch_id,
            enrollment_type=enrollment_type,
            enrollment_source=options.source,
            status=status,
            payment_plan=payment_plan,
            installments_count=installments_count,
            original_price=pricing.original_price,
            final_price=pricing.final_price,
            currency=pricing.currency,
            discount_applied=pricing.discount_applied,
            pricing_type=pricing.pricing_type,
            discount_code=pricing.discount_code,
            enrollment_date=now,
            access_expiry_date=access_expiry_date,
            total_amount_paid=Decimal("0.00"),
            batch_size=batch_size,
            is_batch_leader=is_batch_leader,
            notes=options.notes,
            created_by=created_by,
            created_at=now,
            updated_at=now,
        )

        if payment_plan == "installment":
            schedule = self.scheduler.generate_schedule(
                pricing.final_price,
                installments_count,
                options.emi_start_date or now,
                options.emi_cadence_days,
            )
            enrollment.installments.extend(schedule)
            enrollment.next_payment_date = self.scheduler.next_payment_date(enrollment)

        return enrollment

    # Transfer

    def transfer_to_batch_enrollment(
        self,
        enrollment_id: UUID,
        batch_id: UUID,
        now: Optional[datetime] = None,
    ) -> EnrollmentOutcome:
        """
        Move an individual enrollment into a batch. The new enrollment keeps the
        original price terms, schedule and payment plan; ledger entries and
        progress are copied and the source is cancelled.
        """
        now = now or utcnow()
        source = self.get_enrollment(enrollment_id)

        if source.enrollment_type != "individual":
            raise ValidationError(
                "Only individual enrollments can be transferred to a batch",
                details={"enrollment_type": source.enrollment_type},
            )
        if source.status not in TRANSFERABLE_STATUSES:
            raise StateError(
                f"Cannot transfer a {source.status} enrollment",
                code=INVALID_TRANSITION,
                details={"status": source.status},
            )

        prereq = self.validate_prerequisites(
            source.student_id,
            source.course_id,
            "batch",
            batch_id,
            exclude_enrollment_id=source.id,
        )
        batch = prereq.batch

        try:
            if not self.batches.atomic_increment(batch.id, 1):
                raise ConflictError(
                    "Batch has reached maximum capacity",
                    code=CAPACITY_EXCEEDED,
                    details={"batch_id": str(batch.id)},
                )

            target = Enrollment(
                student_id=source.student_id,
                course_id=source.course_id,
                batch_id=batch.id,
                enrollment_type="batch",
                enrollment_source="transfer",
                status=source.status,
                payment_plan=source.payment_plan,
                installments_count=source.installments_count,
                original_price=source.original_price,
                final_price=source.final_price,
                currency=source.currency,
                discount_applied=source.discount_applied,
                pricing_type=source.pricing_type,
                discount_code=source.discount_code,
                enrollment_date=now,
                access_expiry_date=batch.end_date + timedelta(days=self.policy.batch_access_grace_days),
                total_amount_paid=Decimal("0.00"),
                next_payment_date=source.next_payment_date,
                batch_size=1,
                is_batch_leader=True,
                progress_percentage=source.progress_percentage,
                lessons_completed=source.lessons_completed,
                last_activity_date=source.last_activity_date,
                created_by=source.created_by,
                created_at=now,
                updated_at=now,
            )
            for item in source.installments:
                target.installments.append(Installment(
                    number=item.number,
                    amount=item.amount,
                    due_date=item.due_date,
                    status=item.status,
                    paid_date=item.paid_date,
                    transaction_id=item.transaction_id,
                    late_fee=item.late_fee,
                    skip_reason=item.skip_reason,
                ))
            for entry in source.payments:
                target.payments.append(PaymentRecord(
                    amount=entry.amount,
                    currency=entry.currency,
                    method=entry.method,
                    transaction_id=entry.transaction_id,
                    status=entry.status,
                    installment_number=entry.installment_number,
                    gateway_order_id=entry.gateway_order_id,
                    copied_from_enrollment_id=source.id,
                    recorded_at=entry.recorded_at,
                ))
            target.total_amount_paid = sum(
                (p.amount for p in source.payments if p.is_completed), Decimal("0.00")
            )

            self.db.add(target)
            self.db.flush()
            source.transferred_to_enrollment_id = target.id
            self._transition(source, "cancelled", now, note=f"Transferred to batch enrollment: {target.id}")
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        logger.info(f"Enrollment {source.id} transferred to batch enrollment {target.id} (batch {batch.id})")

        outcome = EnrollmentOutcome(enrollment=target)
        self._notify(outcome, "enrollment_transferred", batch_name=batch.batch_name)
        return outcome

    # Status transitions

    def _transition(self, enrollment: Enrollment, to_status: str, now: datetime, note: Optional[str] = None):
        if not can_transition(enrollment.status, to_status):
            raise StateError(
                f"Cannot move enrollment from {enrollment.status} to {to_status}",
                code=INVALID_TRANSITION,
                details={"from": enrollment.status, "to": to_status},
            )
        previous = enrollment.status
        enrollment.status = to_status
        if to_status == "completed":
            enrollment.completed_at = now
        elif to_status == "cancelled":
            enrollment.cancelled_at = now
        if note:
            enrollment.notes = f"{enrollment.notes}\n{note}" if enrollment.notes else note
        touch(enrollment, now)
        logger.info(f"Enrollment {enrollment.id}: {previous} -> {to_status}")

    def _change_status(self, enrollment_id: UUID, to_status: str, now: Optional[datetime], note: Optional[str] = None) -> Enrollment:
        now = now or utcnow()
        enrollment = self.get_enrollment(enrollment_id)
        try:
            self._transition(enrollment, to_status, now, note)
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise
        return enrollment

    def mark_completed(self, enrollment_id: UUID, now: Optional[datetime] = None) -> Enrollment:
        return self._change_status(enrollment_id, "completed", now)

    def put_on_hold(self, enrollment_id: UUID, note: Optional[str] = None, now: Optional[datetime] = None) -> Enrollment:
        return self._change_status(enrollment_id, "on_hold", now, note)

    def resume(self, enrollment_id: UUID, now: Optional[datetime] = None) -> Enrollment:
        enrollment = self.get_enrollment(enrollment_id)
        if enrollment.status != "on_hold":
            raise StateError(
                f"Only enrollments on hold can be resumed (status is {enrollment.status})",
                code=INVALID_TRANSITION,
                details={"from": enrollment.status, "to": "active"},
            )
        return self._change_status(enrollment_id, "active", now)

    def cancel(self, enrollment_id: UUID, note: Optional[str] = None, now: Optional[datetime] = None) -> Enrollment:
        return self._change_status(enrollment_id, "cancelled", now, note)

    def expire_if_due(self, enrollment: Enrollment, now: Optional[datetime] = None) -> bool:
        """Expire an open enrollment whose access window has passed. Caller commits."""
        now = now or utcnow()
        if not enrollment.is_open:
            return False
        if now <= enrollment.access_expiry_date:
            return False
        self._transition(enrollment, "expired", now)
        return True

    def expire_overdue_enrollments(self, now: Optional[datetime] = None) -> Tuple[int, List[UUID]]:
        """Admin sweep: expire every open enrollment past its access date"""
        now = now or utcnow()
        candidates = self.enrollments.list_open(expiring_before=now)
        expired = []
        try:
            for enrollment in candidates:
                if self.expire_if_due(enrollment, now):
                    expired.append(enrollment.id)
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        logger.info(f"Expiry sweep: {len(expired)} of {len(candidates)} candidate enrollments expired")
        return len(candidates), expired

    # Batch members

    def merge_batch_info(self, enrollment: Enrollment, update: BatchInfoUpdate) -> Enrollment:
        """Apply only the batch info fields that are set"""
        if update.batch_size is not None:
            enrollment.batch_size = update.batch_size
        if update.is_batch_leader is not None:
            enrollment.is_batch_leader = update.is_batch_leader
        return enrollment

    def _batch_enrollment_for_members(self, enrollment_id: UUID) -> Enrollment:
        enrollment = self.get_enrollment(enrollment_id)
        if not enrollment.is_batch_enrollment:
            raise ValidationError("Members can only be managed on batch enrollments")
        if not enrollment.is_open:
            raise StateError(
                f"Cannot change members of a {enrollment.status} enrollment",
                details={"status": enrollment.status},
            )
        return enrollment

    def add_batch_member(self, enrollment_id: UUID, student_id: UUID, now: Optional[datetime] = None) -> Enrollment:
        now = now or utcnow()
        enrollment = self._batch_enrollment_for_members(enrollment_id)

        if student_id == enrollment.student_id or any(m.student_id == student_id for m in enrollment.batch_members):
            raise ConflictError(
                "Student is already a member of this batch enrollment",
                details={"student_id": str(student_id)},
            )
        if not self.db.get(Student, student_id):
            raise NotFoundError("Student not found", details={"student_id": str(student_id)})

        tier = resolve_tier(enrollment.course, enrollment.currency)
        if len(enrollment.batch_members) + 2 > tier.max_batch_size:
            raise ValidationError(
                f"Batch size cannot exceed {tier.max_batch_size}",
                details={"batch_size": len(enrollment.batch_members) + 2, "max_batch_size": tier.max_batch_size},
            )

        try:
            # A member beyond the seats already reserved needs a new seat
            if len(enrollment.batch_members) + 1 >= enrollment.batch_size:
                if not self.batches.atomic_increment(enrollment.batch_id, 1):
                    raise ConflictError(
                        "Batch has reached maximum capacity",
                        code=CAPACITY_EXCEEDED,
                        details={"batch_id": str(enrollment.batch_id)},
                    )
            enrollment.batch_members.append(BatchMember(student_id=student_id, joined_date=now))
            self.merge_batch_info(enrollment, BatchInfoUpdate(
                batch_size=max(enrollment.batch_size, len(enrollment.batch_members) + 1),
            ))
            touch(enrollment, now)
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        logger.info(f"Student {student_id} added to batch enrollment {enrollment_id}")
        return enrollment

    def remove_batch_member(self, enrollment_id: UUID, student_id: UUID, now: Optional[datetime] = None) -> Enrollment:
        now = now or utcnow()
        enrollment = self._batch_enrollment_for_members(enrollment_id)

        member = next((m for m in enrollment.batch_members if m.student_id == student_id), None)
        if member is None:
            raise NotFoundError("Batch member not found", details={"student_id": str(student_id)})

        try:
            # Reserved seats are not released; batch_size stays as booked
            enrollment.batch_members.remove(member)
            touch(enrollment, now)
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        logger.info(f"Student {student_id} removed from batch enrollment {enrollment_id}")
        return enrollment

    # Progress

    def merge_progress(self, enrollment: Enrollment, update: ProgressUpdate) -> Enrollment:
        """Apply only the progress fields that are set"""
        if update.progress_percentage is not None:
            enrollment.progress_percentage = update.progress_percentage
        if update.lessons_completed is not None:
            enrollment.lessons_completed = update.lessons_completed
        if update.last_activity_date is not None:
            enrollment.last_activity_date = update.last_activity_date
        return enrollment

    def update_progress(self, enrollment_id: UUID, update: ProgressUpdate, now: Optional[datetime] = None) -> Enrollment:
        now = now or utcnow()
        enrollment = self.get_enrollment(enrollment_id)
        if enrollment.status in ("cancelled", "expired"):
            raise StateError(
                f"Cannot record progress on a {enrollment.status} enrollment",
                details={"status": enrollment.status},
            )
        try:
            self.merge_progress(enrollment, update)
            if update.last_activity_date is None:
                enrollment.last_activity_date = now
            touch(enrollment, now)
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise
        return enrollment

    def _notify(self, outcome: EnrollmentOutcome, event: str, **extra):
        if self.notifier is None:
            return
        warning = run_best_effort(
            f"{event}_notification",
            lambda: self.notifier.send(event, enrollment_payload(outcome.enrollment, **extra)),
        )
        if warning:
            outcome.warnings.append(warning)
