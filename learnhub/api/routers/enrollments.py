# learnhub/api/routers/enrollments.py - Enrollment lifecycle, pricing, access and EMI endpoints
from fastapi import APIRouter, Depends, HTTPException, Query, status
from typing import Dict, Any, List, Optional
from uuid import UUID
from decimal import Decimal
import logging

from learnhub.api.deps.auth import (
    ADMIN_ROLES, get_current_user, require_admin, require_roles, ensure_self_or_admin, is_admin,
)
from learnhub.api.deps.services import (
    get_enrollment_service, get_pricing_service, get_emi_scheduler, get_access_gate,
)
from learnhub.schemas.access import AccessStatusOut
from learnhub.schemas.emi import EMISummary
from learnhub.schemas.enrollment import (
    EnrollmentCreate, EnrollmentDetail, EnrollmentResult, TransferRequest, TransferResult,
    StatusChange, SkipInstallmentRequest, InstallmentOut, AvailableBatchOut, ExpirySweepResult,
    BatchMemberCreate, ProgressUpdate,
)
from learnhub.schemas.pricing import PricingQuote, EnrollmentType
from learnhub.services.access_gate import AccessGate
from learnhub.services.emi_scheduler import EMIScheduler
from learnhub.services.enrollment_service import EnrollmentService
from learnhub.services.pricing_service import PricingService

logger = logging.getLogger(__name__)
router = APIRouter()


def _reject_custom_discount(ctx: Dict[str, Any], custom_discount: Decimal):
    if custom_discount and custom_discount > 0 and not is_admin(ctx):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Only administrators can apply a custom discount"
        )


def _owned_enrollment(service: EnrollmentService, enrollment_id: UUID, ctx: Dict[str, Any]):
    enrollment = service.get_enrollment(enrollment_id)
    ensure_self_or_admin(ctx, enrollment.student_id)
    return enrollment


@router.get("/pricing/{course_id}", response_model=PricingQuote)
async def get_pricing_quote(
    course_id: UUID,
    enrollment_type: EnrollmentType = Query("individual"),
    currency: Optional[str] = Query(None, min_length=3, max_length=3),
    batch_size: int = Query(1, ge=1),
    custom_discount: Decimal = Query(Decimal("0"), ge=0),
    discount_code: Optional[str] = Query(None, max_length=64),
    ctx: Dict[str, Any] = Depends(get_current_user),
    service: PricingService = Depends(get_pricing_service),
):
    """Price breakdown for a course before enrolling"""
    _reject_custom_discount(ctx, custom_discount)
    return service.get_pricing_quote(
        course_id,
        enrollment_type,
        currency=currency.upper() if currency else None,
        batch_size=batch_size,
        custom_discount=custom_discount,
        discount_code=discount_code,
    )


@router.get("/batches/{course_id}", response_model=List[AvailableBatchOut])
async def list_available_batches(
    course_id: UUID,
    ctx: Dict[str, Any] = Depends(get_current_user),
    service: EnrollmentService = Depends(get_enrollment_service),
):
    """Open batches with free seats, soonest first"""
    return service.get_available_batches(course_id)


@router.post("/", response_model=EnrollmentResult, status_code=status.HTTP_201_CREATED)
async def create_enrollment(
    data: EnrollmentCreate,
    ctx: Dict[str, Any] = Depends(get_current_user),
    service: EnrollmentService = Depends(get_enrollment_service),
):
    """Enroll a student in a course, individually or as a batch leader"""
    ensure_self_or_admin(ctx, data.student_id)
    _reject_custom_discount(ctx, data.options.custom_discount)

    outcome = service.create_enrollment(
        data.student_id,
        data.course_id,
        data.enrollment_type,
        data.options,
        created_by=ctx["user_id"],
    )
    logger.info(f"Enrollment {outcome.enrollment.id} created by {ctx['user_id']}")
    return EnrollmentResult(
        enrollment=EnrollmentDetail.model_validate(outcome.enrollment),
        warnings=outcome.warnings,
    )


@router.post("/expire-sweep", response_model=ExpirySweepResult)
async def expire_overdue_enrollments(
    ctx: Dict[str, Any] = Depends(require_roles(ADMIN_ROLES)),
    service: EnrollmentService = Depends(get_enrollment_service),
):
    """Expire every open enrollment whose access window has passed"""
    checked, expired = service.expire_overdue_enrollments()
    return ExpirySweepResult(checked=checked, expired=len(expired), enrollment_ids=expired)


@router.get("/{enrollment_id}", response_model=EnrollmentDetail)
async def get_enrollment(
    enrollment_id: UUID,
    ctx: Dict[str, Any] = Depends(get_current_user),
    service: EnrollmentService = Depends(get_enrollment_service),
):
    return _owned_enrollment(service, enrollment_id, ctx)


@router.get("/{enrollment_id}/access", response_model=AccessStatusOut)
async def get_access_status(
    enrollment_id: UUID,
    ctx: Dict[str, Any] = Depends(get_current_user),
    service: EnrollmentService = Depends(get_enrollment_service),
    gate: AccessGate = Depends(get_access_gate),
):
    """Whether the learner can use the course right now, and why not"""
    _owned_enrollment(service, enrollment_id, ctx)
    access = gate.get_access_status(enrollment_id)
    return AccessStatusOut(enrollment_id=enrollment_id, **access.model_dump())


@router.get("/{enrollment_id}/emi", response_model=EMISummary)
async def get_emi_summary(
    enrollment_id: UUID,
    ctx: Dict[str, Any] = Depends(get_current_user),
    service: EnrollmentService = Depends(get_enrollment_service),
    scheduler: EMIScheduler = Depends(get_emi_scheduler),
):
    """Installment schedule with derived overdue status and amounts owed"""
    _owned_enrollment(service, enrollment_id, ctx)
    return scheduler.get_emi_summary(enrollment_id)


@router.post("/{enrollment_id}/transfer", response_model=TransferResult)
async def transfer_to_batch(
    enrollment_id: UUID,
    data: TransferRequest,
    ctx: Dict[str, Any] = Depends(get_current_user),
    service: EnrollmentService = Depends(get_enrollment_service),
):
    """Move an individual enrollment into a batch, carrying over payments and progress"""
    source = _owned_enrollment(service, enrollment_id, ctx)
    outcome = service.transfer_to_batch_enrollment(source.id, data.batch_id)
    return TransferResult(
        source_enrollment_id=enrollment_id,
        enrollment=EnrollmentDetail.model_validate(outcome.enrollment),
        copied_payments=len(outcome.enrollment.payments),
        warnings=outcome.warnings,
    )


@router.post("/{enrollment_id}/status", response_model=EnrollmentDetail)
async def change_status(
    enrollment_id: UUID,
    data: StatusChange,
    ctx: Dict[str, Any] = Depends(get_current_user),
    service: EnrollmentService = Depends(get_enrollment_service),
):
    """Hold, resume, complete or cancel an enrollment"""
    _owned_enrollment(service, enrollment_id, ctx)

    # Learners may only cancel their own enrollment
    if data.action != "cancel" and not is_admin(ctx):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin access required"
        )

    if data.action == "hold":
        return service.put_on_hold(enrollment_id, note=data.note)
    if data.action == "resume":
        return service.resume(enrollment_id)
    if data.action == "complete":
        return service.mark_completed(enrollment_id)
    return service.cancel(enrollment_id, note=data.note)


@router.post("/{enrollment_id}/installments/{number}/skip", response_model=InstallmentOut)
async def skip_installment(
    enrollment_id: UUID,
    number: int,
    data: SkipInstallmentRequest,
    ctx: Dict[str, Any] = Depends(require_admin),
    scheduler: EMIScheduler = Depends(get_emi_scheduler),
):
    """Waive a pending installment"""
    installment = scheduler.skip_installment(enrollment_id, number, data.reason)
    logger.info(f"Installment {number} of {enrollment_id} skipped by {ctx['user_id']}")
    return installment


@router.post("/{enrollment_id}/members", response_model=EnrollmentDetail, status_code=status.HTTP_201_CREATED)
async def add_batch_member(
    enrollment_id: UUID,
    data: BatchMemberCreate,
    ctx: Dict[str, Any] = Depends(get_current_user),
    service: EnrollmentService = Depends(get_enrollment_service),
):
    _owned_enrollment(service, enrollment_id, ctx)
    return service.add_batch_member(enrollment_id, data.student_id)


@router.delete("/{enrollment_id}/members/{student_id}", response_model=EnrollmentDetail)
async def remove_batch_member(
    enrollment_id: UUID,
    student_id: UUID,
    ctx: Dict[str, Any] = Depends(get_current_user),
    service: EnrollmentService = Depends(get_enrollment_service),
):
    _owned_enrollment(service, enrollment_id, ctx)
    return service.remove_batch_member(enrollment_id, student_id)


@router.patch("/{enrollment_id}/progress", response_model=EnrollmentDetail)
async def update_progress(
    enrollment_id: UUID,
    data: ProgressUpdate,
    ctx: Dict[str, Any] = Depends(require_admin),
    service: EnrollmentService = Depends(get_enrollment_service),
):
    """Progress feed from the course player"""
    return service.update_progress(enrollment_id, data)
