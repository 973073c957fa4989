from dataclasses import replace
from datetime import timedelta
from decimal import Decimal
import threading
import uuid

import pytest
from sqlalchemy.orm import sessionmaker
from sqlalchemy.orm.exc import StaleDataError

from learnhub.core.errors import (
    ValidationError, NotFoundError, ConflictError, StateError,
    AMOUNT_MISMATCH, ALREADY_SETTLED, CONCURRENT_UPDATE,
)
from learnhub.models import Enrollment, PaymentRecord
from learnhub.schemas.enrollment import EnrollmentOptions
from learnhub.schemas.payment import FullPayment, InstallmentPayment
from learnhub.services.enrollment_service import EnrollmentService
from learnhub.services.payment_ledger import PaymentLedger
from tests.conftest import NOW, RecordingNotifier, make_course, make_student


def enroll(db, policy, price="999.00", plan="full", installments=1):
    course = make_course(db, individual=price)
    student = make_student(db)
    return EnrollmentService(db, policy).create_enrollment(
        student.id,
        course.id,
        "individual",
        EnrollmentOptions(payment_plan=plan, installments_count=installments, emi_start_date=NOW),
        now=NOW,
    ).enrollment


def installment_payment(number, amount, txn, status="completed", currency="INR"):
    return InstallmentPayment(
        installment_number=number, amount=Decimal(amount), currency=currency, transaction_id=txn, status=status,
    )


def test_full_payment_activates_enrollment(db, policy):
    enrollment = enroll(db, policy)

    outcome = PaymentLedger(db, policy).record_payment(
        enrollment.id, FullPayment(amount=Decimal("999.00"), currency="INR", transaction_id="pay_full_1"), now=NOW,
    )

    assert not outcome.duplicate
    assert outcome.entry.status == "completed"
    assert enrollment.status == "active"
    assert enrollment.total_amount_paid == Decimal("999.00")
    assert len(enrollment.payments) == 1


def test_amount_mismatch_leaves_installment_pending(db, policy):
    enrollment = enroll(db, policy, plan="installment", installments=3)
    ledger = PaymentLedger(db, policy)

    with pytest.raises(ConflictError) as exc:
        ledger.record_payment(enrollment.id, installment_payment(1, "200", "pay_short"), now=NOW)

    assert exc.value.code == AMOUNT_MISMATCH
    assert exc.value.details["expected"] == "333.00"
    refreshed = ledger.enrollments.find_by_id(enrollment.id)
    assert refreshed.installments[0].status == "pending"
    assert refreshed.payments == []
    assert refreshed.total_amount_paid == Decimal("0.00")


def test_replayed_transaction_is_a_no_op(db, policy):
    enrollment = enroll(db, policy, plan="installment", installments=3)
    ledger = PaymentLedger(db, policy)
    event = installment_payment(2, "333.00", "pay_inst_2")

    first = ledger.record_payment(enrollment.id, event, now=NOW)
    version = first.enrollment.version
    second = ledger.record_payment(enrollment.id, event, now=NOW + timedelta(minutes=5))

    assert not first.duplicate
    assert second.duplicate
    assert second.entry.id == first.entry.id
    assert second.enrollment.total_amount_paid == Decimal("333.00")
    assert second.enrollment.version == version
    assert len(second.enrollment.payments) == 1
    assert second.enrollment.installments[1].status == "paid"
    assert second.enrollment.installments[1].transaction_id == "pay_inst_2"


def test_replay_is_a_no_op_even_with_different_payload(db, policy):
    enrollment = enroll(db, policy)
    ledger = PaymentLedger(db, policy)
    ledger.record_payment(enrollment.id, FullPayment(amount=Decimal("999.00"), currency="INR", transaction_id="pay_x"), now=NOW)

    replay = ledger.record_payment(
        enrollment.id, FullPayment(amount=Decimal("1.00"), currency="INR", transaction_id="pay_x"), now=NOW,
    )

    assert replay.duplicate
    assert replay.entry.amount == Decimal("999.00")


def test_settled_installment_rejects_other_transaction(db, policy):
    enrollment = enroll(db, policy, plan="installment", installments=3)
    ledger = PaymentLedger(db, policy)
    ledger.record_payment(enrollment.id, installment_payment(1, "333.00", "pay_a"), now=NOW)

    with pytest.raises(StateError) as exc:
        ledger.record_payment(enrollment.id, installment_payment(1, "333.00", "pay_b"), now=NOW)

    assert exc.value.code == ALREADY_SETTLED
    assert len(ledger.list_entries(enrollment.id)) == 1


def test_second_full_payment_rejected(db, policy):
    enrollment = enroll(db, policy)
    ledger = PaymentLedger(db, policy)
    ledger.record_payment(enrollment.id, FullPayment(amount=Decimal("999.00"), currency="INR", transaction_id="pay_1"), now=NOW)

    with pytest.raises(StateError) as exc:
        ledger.record_payment(enrollment.id, FullPayment(amount=Decimal("999.00"), currency="INR", transaction_id="pay_2"), now=NOW)
    assert exc.value.code == ALREADY_SETTLED


def test_failed_payment_is_recorded_without_crediting(db, policy):
    enrollment = enroll(db, policy, plan="installment", installments=2)
    ledger = PaymentLedger(db, policy)

    outcome = ledger.record_payment(enrollment.id, installment_payment(1, "499.00", "pay_fail", status="failed"), now=NOW)

    assert outcome.entry.status == "failed"
    assert enrollment.total_amount_paid == Decimal("0.00")
    assert enrollment.status == "pending"
    assert enrollment.installments[0].status == "pending"

    retry = ledger.record_payment(enrollment.id, installment_payment(1, "499.00", "pay_ok"), now=NOW + timedelta(minutes=1))
    assert retry.enrollment.installments[0].status == "paid"
    assert [p.status for p in ledger.list_entries(enrollment.id)] == ["failed", "completed"]


def test_currency_mismatch_rejected(db, policy):
    enrollment = enroll(db, policy)
    with pytest.raises(ValidationError):
        PaymentLedger(db, policy).record_payment(
            enrollment.id, FullPayment(amount=Decimal("999.00"), currency="USD", transaction_id="pay_usd"), now=NOW,
        )


def test_plan_mismatch_rejected(db, policy):
    full = enroll(db, policy)
    emi = enroll(db, policy, plan="installment", installments=3)
    ledger = PaymentLedger(db, policy)

    with pytest.raises(ValidationError):
        ledger.record_payment(full.id, installment_payment(1, "999.00", "pay_1"), now=NOW)
    with pytest.raises(ValidationError):
        ledger.record_payment(emi.id, FullPayment(amount=Decimal("999.00"), currency="INR", transaction_id="pay_2"), now=NOW)


def test_unknown_installment_number_rejected(db, policy):
    enrollment = enroll(db, policy, plan="installment", installments=3)
    with pytest.raises(ValidationError):
        PaymentLedger(db, policy).record_payment(enrollment.id, installment_payment(4, "333.00", "pay_4"), now=NOW)


def test_payment_on_cancelled_enrollment_rejected(db, policy):
    enrollment = enroll(db, policy)
    EnrollmentService(db, policy).cancel(enrollment.id, now=NOW)

    with pytest.raises(StateError):
        PaymentLedger(db, policy).record_payment(
            enrollment.id, FullPayment(amount=Decimal("999.00"), currency="INR", transaction_id="pay_1"), now=NOW,
        )


def test_missing_enrollment(db, policy):
    with pytest.raises(NotFoundError):
        PaymentLedger(db, policy).record_payment(
            uuid.uuid4(), FullPayment(amount=Decimal("1.00"), currency="INR", transaction_id="pay_1"), now=NOW,
        )


def test_overdue_installment_must_include_late_fee(db, policy):
    fee_policy = replace(policy, late_fee_mode="fixed", late_fee_value=Decimal("25"))
    enrollment = enroll(db, fee_policy, plan="installment", installments=3)
    ledger = PaymentLedger(db, fee_policy)
    late = NOW + timedelta(days=8)

    with pytest.raises(ConflictError) as exc:
        ledger.record_payment(enrollment.id, installment_payment(1, "333.00", "pay_late"), now=late)
    assert exc.value.details["expected"] == "358.00"

    outcome = ledger.record_payment(enrollment.id, installment_payment(1, "358.00", "pay_late"), now=late)
    assert outcome.enrollment.total_amount_paid == Decimal("358.00")


def test_stale_version_is_retried(db, policy, monkeypatch):
    enrollment = enroll(db, policy)
    ledger = PaymentLedger(db, policy)
    original = ledger._apply
    calls = []

    def flaky(*args, **kwargs):
        calls.append(1)
        if len(calls) == 1:
            raise StaleDataError("version mismatch")
        return original(*args, **kwargs)

    monkeypatch.setattr(ledger, "_apply", flaky)
    outcome = ledger.record_payment(
        enrollment.id, FullPayment(amount=Decimal("999.00"), currency="INR", transaction_id="pay_1"), now=NOW,
    )

    assert len(calls) == 2
    assert outcome.enrollment.total_amount_paid == Decimal("999.00")


def test_retries_exhausted_raise_concurrent_update(db, policy, monkeypatch):
    enrollment = enroll(db, policy)
    ledger = PaymentLedger(db, replace(policy, payment_max_retries=2))

    def always_stale(*args, **kwargs):
        raise StaleDataError("version mismatch")

    monkeypatch.setattr(ledger, "_apply", always_stale)
    with pytest.raises(ConflictError) as exc:
        ledger.record_payment(
            enrollment.id, FullPayment(amount=Decimal("999.00"), currency="INR", transaction_id="pay_1"), now=NOW,
        )
    assert exc.value.code == CONCURRENT_UPDATE


def test_payment_notification_failure_is_a_warning(db, policy):
    enrollment = enroll(db, policy)
    ledger = PaymentLedger(db, policy, RecordingNotifier(fail=True))

    outcome = ledger.record_payment(
        enrollment.id, FullPayment(amount=Decimal("999.00"), currency="INR", transaction_id="pay_1"), now=NOW,
    )

    assert outcome.entry.is_completed
    assert [w.effect for w in outcome.warnings] == ["payment_notification"]
    assert outcome.warnings[0].error_type == "NotificationError"


def test_ledger_entries_are_append_only(db, policy):
    enrollment = enroll(db, policy)
    outcome = PaymentLedger(db, policy).record_payment(
        enrollment.id, FullPayment(amount=Decimal("999.00"), currency="INR", transaction_id="pay_1"), now=NOW,
    )

    outcome.entry.amount = Decimal("1.00")
    with pytest.raises(StateError):
        db.commit()
    db.rollback()

    db.delete(outcome.entry)
    with pytest.raises(StateError):
        db.commit()
    db.rollback()


def test_recalculate_total_corrects_drift(db, policy):
    enrollment = enroll(db, policy, plan="installment", installments=3)
    ledger = PaymentLedger(db, policy)
    ledger.record_payment(enrollment.id, installment_payment(1, "333.00", "pay_1"), now=NOW)
    ledger.record_payment(enrollment.id, installment_payment(2, "333.00", "pay_2", status="failed"), now=NOW)

    enrollment.total_amount_paid = Decimal("999.00")

    assert ledger.recalculate_total(enrollment) == Decimal("333.00")
    assert enrollment.total_amount_paid == Decimal("333.00")


def test_transaction_credits_only_one_enrollment(db, policy):
    course = make_course(db)
    student = make_student(db)
    service = EnrollmentService(db, policy)
    first, second = (
        service.create_enrollment(student.id, course.id, "individual", now=NOW).enrollment
        for _ in range(2)
    )
    ledger = PaymentLedger(db, policy)
    event = FullPayment(amount=Decimal("999.00"), currency="INR", transaction_id="pay_ONE")

    ledger.record_payment(first.id, event, now=NOW)
    with pytest.raises(StateError) as exc:
        ledger.record_payment(second.id, event, now=NOW)

    assert exc.value.code == ALREADY_SETTLED
    assert exc.value.details["enrollment_id"] == str(first.id)
    assert second.status == "pending"
    assert second.total_amount_paid == Decimal("0.00")
    assert ledger.list_entries(second.id) == []


def test_concurrent_delivery_records_once(file_engine, policy):
    Session = sessionmaker(bind=file_engine, autoflush=False, expire_on_commit=False)
    with Session() as setup:
        enrollment_id = enroll(setup, policy).id

    retrying = replace(policy, payment_max_retries=10)
    deliveries = 6
    barrier = threading.Barrier(deliveries)
    duplicates, errors = [], []

    def deliver():
        with Session() as session:
            ledger = PaymentLedger(session, retrying)
            barrier.wait()
            try:
                outcome = ledger.record_payment(
                    enrollment_id, FullPayment(amount=Decimal("999.00"), currency="INR", transaction_id="pay_X"), now=NOW,
                )
                duplicates.append(outcome.duplicate)
            except Exception as e:
                errors.append(e)

    threads = [threading.Thread(target=deliver) for _ in range(deliveries)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=60)

    assert errors == []
    assert sorted(duplicates) == [False] + [True] * (deliveries - 1)
    with Session() as check:
        assert check.get(Enrollment, enrollment_id).total_amount_paid == Decimal("999.00")
        assert check.query(PaymentRecord).filter(PaymentRecord.transaction_id == "pay_X").count() == 1
