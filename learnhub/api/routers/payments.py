# learnhub/api/routers/payments.py - Gateway checkout, webhooks and admin payment recording
from fastapi import APIRouter, Depends, Header, Request, status
from typing import Dict, Any, Optional
from uuid import UUID
import json
import logging

from learnhub.api.deps.auth import get_current_user, require_admin, ensure_self_or_admin
from learnhub.api.deps.services import get_enrollment_service, get_emi_scheduler, get_payment_ledger
from learnhub.core.errors import (
    LearnHubError, ValidationError, StateError, ConflictError,
    SIGNATURE_INVALID, CONCURRENT_UPDATE, ALREADY_SETTLED, INSTALLMENT_SKIPPED,
)
from learnhub.schemas.payment import (
    FullPayment, InstallmentPayment, PaymentEventRequest, PaymentResult, PaymentRecordOut,
    LedgerOut, OrderCreate, OrderOut, PaymentVerifyRequest, WebhookAck,
)
from learnhub.services.emi_scheduler import EMIScheduler
from learnhub.services.enrollment_service import EnrollmentService
from learnhub.services.payment_gateway import RazorpayClient, PaymentDetails, get_gateway_client, to_minor_units
from learnhub.services.payment_ledger import PaymentLedger, PaymentOutcome

logger = logging.getLogger(__name__)
router = APIRouter()

GATEWAY_METHODS = {"card", "upi", "netbanking", "wallet"}

# Only final gateway states reach the ledger
GATEWAY_STATUS_MAP = {"captured": "completed", "failed": "failed"}


def _result(outcome: PaymentOutcome) -> PaymentResult:
    enrollment = outcome.enrollment
    return PaymentResult(
        entry=PaymentRecordOut.model_validate(outcome.entry),
        duplicate=outcome.duplicate,
        enrollment_id=enrollment.id,
        enrollment_status=enrollment.status,
        total_amount_paid=enrollment.total_amount_paid,
        next_payment_date=enrollment.next_payment_date,
        warnings=outcome.warnings,
    )


def _event_from_gateway(details: PaymentDetails, installment_number: Optional[int]):
    """Build a ledger event from a captured or failed gateway payment"""
    fields = dict(
        amount=details.amount,
        currency=details.currency,
        method=details.method if details.method in GATEWAY_METHODS else "razorpay",
        transaction_id=details.payment_id,
        status=GATEWAY_STATUS_MAP[details.status],
        gateway_order_id=details.order_id,
    )
    if installment_number:
        return InstallmentPayment(installment_number=installment_number, **fields)
    return FullPayment(**fields)


def _nested_object(data: Dict[str, Any], *keys: str) -> Dict[str, Any]:
    """Walk nested webhook objects, yielding {} when any level is missing or not an object"""
    for key in keys:
        data = data.get(key)
        if not isinstance(data, dict):
            return {}
    return data


@router.post("/orders", response_model=OrderOut, status_code=status.HTTP_201_CREATED)
async def create_order(
    data: OrderCreate,
    ctx: Dict[str, Any] = Depends(get_current_user),
    service: EnrollmentService = Depends(get_enrollment_service),
    scheduler: EMIScheduler = Depends(get_emi_scheduler),
    gateway: RazorpayClient = Depends(get_gateway_client),
):
    """Open a gateway order for the full price or for one installment"""
    enrollment = service.get_enrollment(data.enrollment_id)
    ensure_self_or_admin(ctx, enrollment.student_id)

    if not enrollment.is_open:
        raise StateError(
            f"Cannot take payments on a {enrollment.status} enrollment",
            details={"status": enrollment.status},
        )

    if enrollment.is_installment_plan:
        if not data.installment_number:
            raise ValidationError("installment_number is required for installment plans")
        # Summary assesses any late fee before we quote the amount
        summary = scheduler.get_emi_summary(enrollment.id)
        view = next((i for i in summary.schedule if i.number == data.installment_number), None)
        if view is None:
            raise ValidationError(
                f"Installment {data.installment_number} does not exist",
                details={"installment_number": data.installment_number},
            )
        if view.status in ("paid", "skipped"):
            raise StateError(
                f"Installment {view.number} is already {view.status}",
                code=ALREADY_SETTLED if view.status == "paid" else INSTALLMENT_SKIPPED,
                details={"installment_number": view.number},
            )
        amount = view.amount_due
    else:
        if data.installment_number:
            raise ValidationError("Enrollment is on the full payment plan")
        if any(p.is_completed for p in enrollment.payments):
            raise StateError("Enrollment is already paid in full", code=ALREADY_SETTLED)
        amount = enrollment.final_price

    receipt = f"enr_{enrollment.id.hex[:12]}_{data.installment_number or 'full'}"
    notes = {"enrollment_id": str(enrollment.id)}
    if data.installment_number:
        notes["installment_number"] = str(data.installment_number)

    order = await gateway.create_order(amount, enrollment.currency, receipt, notes=notes)
    return OrderOut(
        order_id=order["id"],
        amount=amount,
        amount_minor=to_minor_units(amount),
        currency=enrollment.currency,
        receipt=receipt,
        key_id=gateway.key_id,
        installment_number=data.installment_number,
    )


@router.post("/verify", response_model=PaymentResult)
async def verify_payment(
    data: PaymentVerifyRequest,
    ctx: Dict[str, Any] = Depends(get_current_user),
    service: EnrollmentService = Depends(get_enrollment_service),
    ledger: PaymentLedger = Depends(get_payment_ledger),
    gateway: RazorpayClient = Depends(get_gateway_client),
):
    """Checkout callback: check the signature, fetch the payment and record it"""
    enrollment = service.get_enrollment(data.enrollment_id)
    ensure_self_or_admin(ctx, enrollment.student_id)

    if not gateway.verify_signature(data.razorpay_order_id, data.razorpay_payment_id, data.razorpay_signature):
        logger.warning(f"Invalid checkout signature for payment {data.razorpay_payment_id}")
        raise ValidationError("Payment signature verification failed", code=SIGNATURE_INVALID)

    details = await gateway.get_payment_details(data.razorpay_payment_id)
    if details.order_id and details.order_id != data.razorpay_order_id:
        raise ValidationError(
            "Payment does not belong to this order",
            details={"order_id": data.razorpay_order_id, "payment_order_id": details.order_id},
        )
    if details.status not in GATEWAY_STATUS_MAP:
        raise StateError(
            f"Payment is {details.status}, not yet settled",
            details={"payment_id": details.payment_id, "gateway_status": details.status},
        )

    # The order notes, not the request body, say what the payment is for
    if details.notes.get("enrollment_id") != str(enrollment.id):
        raise ValidationError(
            "Payment was not made for this enrollment",
            details={"enrollment_id": str(enrollment.id), "payment_enrollment_id": details.notes.get("enrollment_id")},
        )
    noted = details.notes.get("installment_number")
    try:
        installment_number = int(noted) if noted else None
    except (TypeError, ValueError):
        raise ValidationError("Payment notes carry an invalid installment number", details={"installment_number": noted})
    if data.installment_number is not None and data.installment_number != installment_number:
        raise ValidationError(
            "Payment was not made for this installment",
            details={"installment_number": data.installment_number, "payment_installment_number": installment_number},
        )

    event = _event_from_gateway(details, installment_number)
    outcome = ledger.record_payment(enrollment.id, event)
    return _result(outcome)


@router.post("/webhook", response_model=WebhookAck)
async def razorpay_webhook(
    request: Request,
    x_razorpay_signature: Optional[str] = Header(None),
    ledger: PaymentLedger = Depends(get_payment_ledger),
    gateway: RazorpayClient = Depends(get_gateway_client),
):
    """Gateway webhook for payment.captured and payment.failed"""
    body = await request.body()
    if not gateway.verify_webhook_signature(body, x_razorpay_signature or ""):
        logger.warning("Rejected webhook with invalid signature")
        raise ValidationError("Webhook signature verification failed", code=SIGNATURE_INVALID)

    try:
        payload = json.loads(body)
    except ValueError:
        raise ValidationError("Webhook body is not valid JSON")

    if not isinstance(payload, dict):
        return WebhookAck(status="ignored", detail="Webhook body is not an object")

    event_name = payload.get("event")
    if not isinstance(event_name, str):
        event_name = None
    entity = _nested_object(payload, "payload", "payment", "entity")
    if event_name not in ("payment.captured", "payment.failed") or not entity.get("id"):
        return WebhookAck(status="ignored", event=event_name, detail="Event not handled")

    details = PaymentDetails.from_entity(entity)
    if details.status not in GATEWAY_STATUS_MAP:
        return WebhookAck(status="ignored", event=event_name, detail=f"Payment status {details.status}")

    enrollment_id = details.notes.get("enrollment_id")
    if not enrollment_id:
        return WebhookAck(status="ignored", event=event_name, detail="No enrollment on payment notes")

    try:
        installment_number = details.notes.get("installment_number")
        event = _event_from_gateway(details, int(installment_number) if installment_number else None)
        outcome = ledger.record_payment(UUID(enrollment_id), event)
    except ValueError as e:
        return WebhookAck(status="ignored", event=event_name, detail=f"Malformed payment notes: {e}")
    except ConflictError as e:
        if e.code == CONCURRENT_UPDATE:
            raise
        logger.warning(f"Webhook payment {details.payment_id} not recorded: {e.message}")
        return WebhookAck(status="ignored", event=event_name, detail=e.code)
    except LearnHubError as e:
        # Non-retryable: acknowledge so the gateway stops redelivering
        logger.warning(f"Webhook payment {details.payment_id} not recorded: {e.message}")
        return WebhookAck(status="ignored", event=event_name, detail=e.code)

    if outcome.duplicate:
        return WebhookAck(status="duplicate", event=event_name, detail=details.payment_id)
    return WebhookAck(status="processed", event=event_name, detail=details.payment_id)


@router.post("/enrollments/{enrollment_id}", response_model=PaymentResult)
async def record_payment(
    enrollment_id: UUID,
    data: PaymentEventRequest,
    ctx: Dict[str, Any] = Depends(require_admin),
    ledger: PaymentLedger = Depends(get_payment_ledger),
):
    """Record an offline or manually reconciled payment"""
    outcome = ledger.record_payment(enrollment_id, data.event)
    logger.info(f"Payment {data.event.transaction_id} recorded by admin {ctx['user_id']}")
    return _result(outcome)


@router.get("/enrollments/{enrollment_id}/ledger", response_model=LedgerOut)
async def get_ledger(
    enrollment_id: UUID,
    ctx: Dict[str, Any] = Depends(get_current_user),
    service: EnrollmentService = Depends(get_enrollment_service),
    ledger: PaymentLedger = Depends(get_payment_ledger),
):
    enrollment = service.get_enrollment(enrollment_id)
    ensure_self_or_admin(ctx, enrollment.student_id)
    return LedgerOut(
        enrollment_id=enrollment.id,
        currency=enrollment.currency,
        total_amount_paid=enrollment.total_amount_paid,
        entries=[PaymentRecordOut.model_validate(p) for p in ledger.list_entries(enrollment_id)],
    )
