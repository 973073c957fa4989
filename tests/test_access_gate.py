from dataclasses import replace
from datetime import timedelta
from decimal import Decimal
import uuid

import pytest

from learnhub.core.errors import NotFoundError
from learnhub.models import Enrollment, Installment, PaymentRecord
from learnhub.services.access_gate import AccessGate, compute_access_status, has_overdue_installment
from tests.conftest import NOW


def build_enrollment(statuses, plan="installment", status="active", price="900.00", paid=False):
    """Unsaved enrollment with one installment per entry of `statuses`, due 30 days apart"""
    enrollment = Enrollment(
        id=uuid.uuid4(),
        student_id=uuid.uuid4(),
        course_id=uuid.uuid4(),
        enrollment_type="individual",
        status=status,
        payment_plan=plan,
        installments_count=max(1, len(statuses)),
        original_price=Decimal(price),
        final_price=Decimal(price),
        currency="INR",
        discount_applied=Decimal("0.00"),
        pricing_type="individual",
        enrollment_date=NOW,
        access_expiry_date=NOW + timedelta(days=365),
        total_amount_paid=Decimal("0.00"),
    )
    for number, item_status in enumerate(statuses, start=1):
        enrollment.installments.append(Installment(
            number=number,
            amount=Decimal("300.00"),
            due_date=NOW + timedelta(days=30 * (number - 1)),
            status=item_status,
        ))
    if paid:
        enrollment.payments.append(PaymentRecord(
            amount=Decimal(price), currency="INR", method="razorpay", transaction_id="pay_1", status="completed",
        ))
    return enrollment


def test_active_when_nothing_is_overdue(policy):
    enrollment = build_enrollment(["paid", "pending", "pending"])
    access = compute_access_status(enrollment, NOW + timedelta(days=10), policy)

    assert access.state == "active"
    assert access.has_access


def test_overdue_installment_restricts_access(policy):
    enrollment = build_enrollment(["pending", "pending"])
    access = compute_access_status(enrollment, NOW + timedelta(days=6), policy)

    assert access.state == "restricted"
    assert access.reason == "overdue_installment"
    assert access.scope == "all"


def test_overdue_scope_follows_policy(policy):
    enrollment = build_enrollment(["pending"])
    access = compute_access_status(
        enrollment, NOW + timedelta(days=6), replace(policy, overdue_blocks_all_access=False),
    )

    assert access.reason == "overdue_installment"
    assert access.scope == "new_content"


def test_skipped_installment_never_overdue(policy):
    enrollment = build_enrollment(["skipped", "pending"])
    assert compute_access_status(enrollment, NOW + timedelta(days=20), policy).state == "active"


@pytest.mark.parametrize("statuses", [
    ["pending", "pending", "pending"],
    ["paid", "pending", "pending"],
    ["paid", "paid", "pending"],
    ["skipped", "paid", "pending"],
    ["paid", "paid", "paid"],
])
def test_restricted_for_overdue_iff_an_installment_is_overdue(policy, statuses):
    enrollment = build_enrollment(statuses)
    grace = timedelta(days=policy.emi_grace_period_days)

    for day in range(0, 100, 3):
        now = NOW + timedelta(days=day)
        overdue = any(i.status == "pending" and now > i.due_date + grace for i in enrollment.installments)
        access = compute_access_status(enrollment, now, policy)

        assert (access.reason == "overdue_installment") == overdue
        assert has_overdue_installment(enrollment, now, policy.emi_grace_period_days) == overdue


def test_expired_takes_precedence(policy):
    enrollment = build_enrollment(["pending"])
    access = compute_access_status(enrollment, NOW + timedelta(days=400), policy)

    assert access.state == "expired"
    assert access.reason is None


def test_expired_status(policy):
    enrollment = build_enrollment([], plan="full", status="expired", paid=True)
    assert compute_access_status(enrollment, NOW, policy).state == "expired"


def test_unpaid_full_plan_is_payment_pending(policy):
    enrollment = build_enrollment([], plan="full", status="pending")
    access = compute_access_status(enrollment, NOW, policy)

    assert access.reason == "payment_pending"
    assert not access.has_access


def test_paid_full_plan_is_active(policy):
    enrollment = build_enrollment([], plan="full", paid=True)
    assert compute_access_status(enrollment, NOW, policy).has_access


def test_free_enrollment_is_active(policy):
    enrollment = build_enrollment([], plan="full", price="0.00")
    assert compute_access_status(enrollment, NOW, policy).has_access


@pytest.mark.parametrize("status,reason", [("cancelled", "enrollment_cancelled"), ("on_hold", "on_hold")])
def test_inactive_statuses_restrict(policy, status, reason):
    enrollment = build_enrollment([], plan="full", status=status, paid=True)
    assert compute_access_status(enrollment, NOW, policy).reason == reason


def test_gate_looks_up_enrollment(db, policy):
    with pytest.raises(NotFoundError):
        AccessGate(db, policy).get_access_status(uuid.uuid4())
