import hashlib
import hmac
import json
import uuid

import httpx
import pytest
from fastapi.testclient import TestClient

from learnhub.api.deps.services import get_notifier
from learnhub.core.db import get_db
from learnhub.main import app
from learnhub.schemas.enrollment import EnrollmentOptions
from learnhub.services.enrollment_service import EnrollmentService
from learnhub.services.payment_gateway import RazorpayClient, get_gateway_client
from tests.conftest import RecordingNotifier, auth_headers, make_course, make_student

KEY_SECRET = "checkout-secret"
WEBHOOK_SECRET = "webhook-secret"


class FakeGateway:
    """Canned Razorpay responses keyed by payment id"""

    def __init__(self):
        self.payments = {}
        self.orders = []

    def handler(self, request):
        if request.method == "POST" and request.url.path.endswith("/orders"):
            body = json.loads(request.content)
            self.orders.append(body)
            return httpx.Response(200, json={"id": f"order_{len(self.orders)}", **body})
        payment_id = request.url.path.rsplit("/", 1)[-1]
        if payment_id in self.payments:
            return httpx.Response(200, json=self.payments[payment_id])
        return httpx.Response(404, json={"error": {"description": "The id provided does not exist"}})


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def client(db, gateway):
    def override_db():
        yield db

    app.dependency_overrides[get_db] = override_db
    app.dependency_overrides[get_notifier] = lambda: RecordingNotifier()
    app.dependency_overrides[get_gateway_client] = lambda: RazorpayClient(
        key_id="rzp_test_key",
        key_secret=KEY_SECRET,
        webhook_secret=WEBHOOK_SECRET,
        base_url="https://gateway.test/v1",
        max_retries=0,
        retry_delay=0,
        transport=httpx.MockTransport(gateway.handler),
    )
    yield TestClient(app)
    app.dependency_overrides.clear()


def enroll(db, student, course, plan="full", installments=1):
    return EnrollmentService(db).create_enrollment(
        student.id, course.id, "individual",
        EnrollmentOptions(payment_plan=plan, installments_count=installments),
    ).enrollment


def captured_entity(payment_id, enrollment, amount_minor, installment_number=None, status="captured"):
    notes = {"enrollment_id": str(enrollment.id)}
    if installment_number:
        notes["installment_number"] = str(installment_number)
    return {
        "id": payment_id,
        "order_id": "order_1",
        "status": status,
        "amount": amount_minor,
        "currency": "INR",
        "method": "upi",
        "notes": notes,
    }


def signed_webhook(client, payload):
    body = json.dumps(payload).encode()
    signature = hmac.new(WEBHOOK_SECRET.encode(), body, hashlib.sha256).hexdigest()
    return client.post(
        "/api/payments/webhook",
        content=body,
        headers={"X-Razorpay-Signature": signature, "Content-Type": "application/json"},
    )


def test_root_and_health(client):
    assert client.get("/").status_code == 200
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "healthy"


def test_requests_without_token_are_rejected(client, course):
    response = client.get(f"/api/enrollments/pricing/{course.id}")
    assert response.status_code in (401, 403)


def test_pricing_quote(client, course, student):
    response = client.get(f"/api/enrollments/pricing/{course.id}", headers=auth_headers(student.id))

    assert response.status_code == 200
    assert response.json()["final_price"] == "999.00"


def test_custom_discount_requires_admin(client, course, student, admin_headers):
    url = f"/api/enrollments/pricing/{course.id}?custom_discount=10"

    assert client.get(url, headers=auth_headers(student.id)).status_code == 403
    assert client.get(url, headers=admin_headers).status_code == 200


def test_student_enrolls_themselves(client, db, course, student):
    response = client.post(
        "/api/enrollments/",
        json={"student_id": str(student.id), "course_id": str(course.id), "options": {"payment_plan": "installment", "installments_count": 3}},
        headers=auth_headers(student.id),
    )

    assert response.status_code == 201
    body = response.json()
    assert body["enrollment"]["status"] == "pending"
    assert [i["amount"] for i in body["enrollment"]["installments"]] == ["333.00", "333.00", "333.00"]
    assert body["warnings"] == []


def test_cannot_enroll_someone_else(client, course, student):
    response = client.post(
        "/api/enrollments/",
        json={"student_id": str(student.id), "course_id": str(course.id)},
        headers=auth_headers(uuid.uuid4()),
    )
    assert response.status_code == 403


def test_service_errors_carry_a_code(client, db, course, student):
    enroll(db, student, course)
    response = client.post(
        "/api/enrollments/",
        json={"student_id": str(student.id), "course_id": str(course.id)},
        headers=auth_headers(student.id),
    )
    # Pending enrollments do not block a new one; an active one does
    assert response.status_code == 201

    enrollment_id = response.json()["enrollment"]["id"]
    client.post(
        f"/api/payments/enrollments/{enrollment_id}",
        json={"event": {"kind": "full", "amount": "999.00", "currency": "INR", "transaction_id": "pay_cash", "method": "cash"}},
        headers=auth_headers(uuid.uuid4(), ["ADMIN"]),
    )
    again = client.post(
        "/api/enrollments/",
        json={"student_id": str(student.id), "course_id": str(course.id)},
        headers=auth_headers(student.id),
    )

    assert again.status_code == 409
    assert again.json()["code"] == "ALREADY_ENROLLED"
    assert set(again.json()) == {"detail", "code", "details"}


def test_missing_enrollment_is_404(client, admin_headers):
    response = client.get(f"/api/enrollments/{uuid.uuid4()}", headers=admin_headers)
    assert response.status_code == 404
    assert response.json()["code"] == "NOT_FOUND"


def test_admin_records_payment_and_reads_ledger(client, db, course, student, admin_headers):
    enrollment = enroll(db, student, course, plan="installment", installments=3)
    url = f"/api/payments/enrollments/{enrollment.id}"
    event = {"event": {"kind": "installment", "installment_number": 1, "amount": "333.00", "currency": "INR", "transaction_id": "pay_001"}}

    first = client.post(url, json=event, headers=admin_headers)
    replay = client.post(url, json=event, headers=admin_headers)

    assert first.status_code == 200
    assert first.json()["enrollment_status"] == "active"
    assert replay.json()["duplicate"] is True
    assert replay.json()["total_amount_paid"] == "333.00"

    ledger = client.get(f"{url}/ledger", headers=auth_headers(student.id))
    assert [e["transaction_id"] for e in ledger.json()["entries"]] == ["pay_001"]

    emi = client.get(f"/api/enrollments/{enrollment.id}/emi", headers=auth_headers(student.id))
    assert emi.json()["paid_installments"] == 1


def test_amount_mismatch_over_http(client, db, course, student, admin_headers):
    enrollment = enroll(db, student, course, plan="installment", installments=3)

    response = client.post(
        f"/api/payments/enrollments/{enrollment.id}",
        json={"event": {"kind": "installment", "installment_number": 1, "amount": "200.00", "currency": "INR", "transaction_id": "pay_short"}},
        headers=admin_headers,
    )

    assert response.status_code == 409
    assert response.json()["code"] == "AMOUNT_MISMATCH"


def test_students_cannot_record_payments(client, db, course, student):
    enrollment = enroll(db, student, course)
    response = client.post(
        f"/api/payments/enrollments/{enrollment.id}",
        json={"event": {"kind": "full", "amount": "999.00", "currency": "INR", "transaction_id": "pay_1"}},
        headers=auth_headers(student.id),
    )
    assert response.status_code == 403


def test_checkout_order_and_verify(client, db, gateway, course, student):
    enrollment = enroll(db, student, course, plan="installment", installments=3)
    headers = auth_headers(student.id)

    order = client.post(
        "/api/payments/orders",
        json={"enrollment_id": str(enrollment.id), "installment_number": 1},
        headers=headers,
    )
    assert order.status_code == 201
    assert order.json()["amount_minor"] == 33300
    assert gateway.orders[0]["notes"] == {"enrollment_id": str(enrollment.id), "installment_number": "1"}

    gateway.payments["pay_1"] = captured_entity("pay_1", enrollment, 33300, installment_number=1)
    signature = hmac.new(KEY_SECRET.encode(), b"order_1|pay_1", hashlib.sha256).hexdigest()
    verify = client.post(
        "/api/payments/verify",
        json={
            "enrollment_id": str(enrollment.id),
            "razorpay_order_id": "order_1",
            "razorpay_payment_id": "pay_1",
            "razorpay_signature": signature,
            "installment_number": 1,
        },
        headers=headers,
    )

    assert verify.status_code == 200
    assert verify.json()["entry"]["method"] == "upi"
    assert verify.json()["entry"]["gateway_order_id"] == "order_1"
    assert verify.json()["total_amount_paid"] == "333.00"

    settled = client.post(
        "/api/payments/orders",
        json={"enrollment_id": str(enrollment.id), "installment_number": 1},
        headers=headers,
    )
    assert settled.status_code == 422
    assert settled.json()["code"] == "ALREADY_SETTLED"


def test_verify_rejects_bad_signature(client, db, course, student):
    enrollment = enroll(db, student, course)
    response = client.post(
        "/api/payments/verify",
        json={
            "enrollment_id": str(enrollment.id),
            "razorpay_order_id": "order_1",
            "razorpay_payment_id": "pay_1",
            "razorpay_signature": "forged",
        },
        headers=auth_headers(student.id),
    )

    assert response.status_code == 400
    assert response.json()["code"] == "SIGNATURE_INVALID"


def test_webhook_processes_then_deduplicates(client, db, course, student):
    enrollment = enroll(db, student, course)
    payload = {
        "event": "payment.captured",
        "payload": {"payment": {"entity": captured_entity("pay_wh", enrollment, 99900)}},
    }

    first = signed_webhook(client, payload)
    second = signed_webhook(client, payload)

    assert first.json()["status"] == "processed"
    assert second.json()["status"] == "duplicate"
    assert db.get(type(enrollment), enrollment.id).status == "active"


def test_webhook_failed_payment_is_recorded(client, db, course, student):
    enrollment = enroll(db, student, course)
    payload = {
        "event": "payment.failed",
        "payload": {"payment": {"entity": captured_entity("pay_bad", enrollment, 99900, status="failed")}},
    }

    assert signed_webhook(client, payload).json()["status"] == "processed"
    assert [p.status for p in enrollment.payments] == ["failed"]


def test_webhook_ignores_unhandled_events(client):
    response = signed_webhook(client, {"event": "order.paid", "payload": {}})
    assert response.json()["status"] == "ignored"


def test_webhook_acknowledges_non_retryable_errors(client, db, course, student):
    enrollment = enroll(db, student, course)
    payload = {
        "event": "payment.captured",
        "payload": {"payment": {"entity": captured_entity("pay_short", enrollment, 100)}},
    }

    response = signed_webhook(client, payload)

    assert response.status_code == 200
    assert response.json() == {"status": "ignored", "event": "payment.captured", "detail": "AMOUNT_MISMATCH"}


def test_webhook_rejects_bad_signature(client):
    response = client.post(
        "/api/payments/webhook",
        content=b'{"event": "payment.captured"}',
        headers={"X-Razorpay-Signature": "nope"},
    )
    assert response.status_code == 400
    assert response.json()["code"] == "SIGNATURE_INVALID"


def test_access_status_endpoint(client, db, course, student):
    enrollment = enroll(db, student, course)
    response = client.get(f"/api/enrollments/{enrollment.id}/access", headers=auth_headers(student.id))

    assert response.status_code == 200
    assert response.json()["state"] == "restricted"
    assert response.json()["reason"] == "payment_pending"


def test_student_cancels_but_cannot_hold(client, db, course, student):
    enrollment = enroll(db, student, course)
    url = f"/api/enrollments/{enrollment.id}/status"

    assert client.post(url, json={"action": "hold"}, headers=auth_headers(student.id)).status_code == 403
    response = client.post(url, json={"action": "cancel", "note": "Changed my mind"}, headers=auth_headers(student.id))
    assert response.json()["status"] == "cancelled"


def test_financial_summary_endpoints(client, db, course, student, admin_headers):
    enroll(db, student, course, plan="installment", installments=3)

    summary = client.get(f"/api/analytics/students/{student.id}/financial-summary", headers=auth_headers(student.id))
    assert summary.status_code == 200
    assert summary.json()["emi_enrollments"] == 1
    assert summary.json()["consistency"]["rating"] == "no_history"

    other = make_student(db, "Ravi", "ravi@example.com")
    assert client.get(
        f"/api/analytics/students/{other.id}/financial-summary", headers=auth_headers(student.id),
    ).status_code == 403

    analytics = client.get(f"/api/analytics/courses/{course.id}/emi", headers=admin_headers)
    assert analytics.json()["installments_by_status"]["pending"] == 3
    assert client.get(f"/api/analytics/courses/{course.id}/emi", headers=auth_headers(student.id)).status_code == 403


def test_unknown_course_pricing(client, student):
    response = client.get(f"/api/enrollments/pricing/{uuid.uuid4()}", headers=auth_headers(student.id))
    assert response.status_code == 404


def test_second_course_enrollments_are_independent(client, db, student):
    first, second = make_course(db, "SQL"), make_course(db, "Pandas")
    for course in (first, second):
        response = client.post(
            "/api/enrollments/",
            json={"student_id": str(student.id), "course_id": str(course.id)},
            headers=auth_headers(student.id),
        )
        assert response.status_code == 201


def test_expiry_sweep_is_admin_only(client, db, course, student, admin_headers):
    enroll(db, student, course)

    assert client.post("/api/enrollments/expire-sweep", headers=auth_headers(student.id)).status_code == 403
    response = client.post("/api/enrollments/expire-sweep", headers=admin_headers)
    assert response.status_code == 200
    assert response.json()["expired"] == 0


def verify_body(enrollment, payment_id, installment_number=None):
    signature = hmac.new(KEY_SECRET.encode(), f"order_1|{payment_id}".encode(), hashlib.sha256).hexdigest()
    body = {
        "enrollment_id": str(enrollment.id),
        "razorpay_order_id": "order_1",
        "razorpay_payment_id": payment_id,
        "razorpay_signature": signature,
    }
    if installment_number is not None:
        body["installment_number"] = installment_number
    return body


def test_verify_rejects_payment_made_for_another_enrollment(client, db, gateway, course, student):
    paid_for, other = enroll(db, student, course), enroll(db, student, course)
    gateway.payments["pay_1"] = captured_entity("pay_1", paid_for, 99900)
    headers = auth_headers(student.id)

    assert client.post("/api/payments/verify", json=verify_body(paid_for, "pay_1"), headers=headers).status_code == 200
    response = client.post("/api/payments/verify", json=verify_body(other, "pay_1"), headers=headers)

    assert response.status_code == 400
    assert other.status == "pending"
    assert other.payments == []


def test_verify_takes_installment_from_order_notes(client, db, gateway, course, student):
    enrollment = enroll(db, student, course, plan="installment", installments=3)
    gateway.payments["pay_1"] = captured_entity("pay_1", enrollment, 33300, installment_number=1)
    headers = auth_headers(student.id)

    mismatched = client.post("/api/payments/verify", json=verify_body(enrollment, "pay_1", installment_number=2), headers=headers)
    assert mismatched.status_code == 400

    response = client.post("/api/payments/verify", json=verify_body(enrollment, "pay_1"), headers=headers)
    assert response.status_code == 200
    assert response.json()["entry"]["installment_number"] == 1


def test_webhook_does_not_credit_a_second_enrollment(client, db, course, student):
    first, second = enroll(db, student, course), enroll(db, student, course)
    entity = captured_entity("pay_shared", first, 99900)
    assert signed_webhook(client, {"event": "payment.captured", "payload": {"payment": {"entity": entity}}}).json()["status"] == "processed"

    entity["notes"] = {"enrollment_id": str(second.id)}
    response = signed_webhook(client, {"event": "payment.captured", "payload": {"payment": {"entity": entity}}})

    assert response.json() == {"status": "ignored", "event": "payment.captured", "detail": "ALREADY_SETTLED"}
    assert second.status == "pending"


@pytest.mark.parametrize("payload", [
    [1, 2, 3],
    "payment.captured",
    {"event": "payment.captured", "payload": []},
    {"event": "payment.captured", "payload": {"payment": "pay_1"}},
    {"event": "payment.captured", "payload": {"payment": {"entity": None}}},
    {"event": ["payment.captured"], "payload": {}},
])
def test_webhook_ignores_malformed_bodies(client, payload):
    response = signed_webhook(client, payload)

    assert response.status_code == 200
    assert response.json()["status"] == "ignored"
