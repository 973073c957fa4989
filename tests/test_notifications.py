import smtplib

import pytest
from jinja2 import UndefinedError

from learnhub.services import notification_service
from learnhub.services.notification_service import NotificationError, NotificationService, render, run_best_effort

PAYLOAD = {
    "to_email": "asha@example.com",
    "student_name": "Asha",
    "course_title": "Python <Basics>",
    "enrollment_id": "e-1",
    "currency": "INR",
    "amount": "333.00",
    "installment_number": 2,
    "transaction_id": "pay_2",
    "total_amount_paid": "666.00",
    "next_payment_date": "2026-03-06",
}


def test_render_payment_received():
    subject, text, html = render("payment_received", PAYLOAD)

    assert subject == "Payment received for Python &lt;Basics&gt;"
    assert "installment 2" in text
    assert "Next payment due: 2026-03-06" in text
    assert "<strong>INR 333.00</strong>" in html


def test_render_unknown_event():
    with pytest.raises(NotificationError):
        render("course_deleted", PAYLOAD)


def test_render_requires_every_field():
    with pytest.raises(UndefinedError):
        render("payment_received", {"student_name": "Asha"})


def test_send_without_recipient_is_skipped():
    assert NotificationService().send("payment_received", {**PAYLOAD, "to_email": None}) is False


def test_send_without_smtp_is_skipped():
    service = NotificationService()
    service.smtp_host = ""
    assert service.send("payment_received", PAYLOAD) is False


def test_smtp_failure_raises_notification_error(monkeypatch):
    class BrokenSMTP:
        def __init__(self, *args, **kwargs):
            raise smtplib.SMTPConnectError(421, "unavailable")

    monkeypatch.setattr(notification_service.smtplib, "SMTP", BrokenSMTP)
    service = NotificationService()
    service.smtp_host = "smtp.test"
    service.from_email = "noreply@test"

    with pytest.raises(NotificationError):
        service.send("payment_received", PAYLOAD)


def test_send_delivers_message(monkeypatch):
    sent = []

    class FakeSMTP:
        def __init__(self, host, port, timeout=None):
            self.host = host

        def __enter__(self):
            return self

        def __exit__(self, *exc):
            return False

        def starttls(self):
            pass

        def login(self, user, password):
            pass

        def send_message(self, msg):
            sent.append(msg)

    monkeypatch.setattr(notification_service.smtplib, "SMTP", FakeSMTP)
    service = NotificationService()
    service.smtp_host = "smtp.test"
    service.from_email = "noreply@test"

    assert service.send("payment_received", PAYLOAD) is True
    assert sent[0]["To"] == "asha@example.com"


def test_run_best_effort_returns_warning():
    def boom():
        raise NotificationError("smtp down")

    warning = run_best_effort("payment_notification", boom)

    assert warning.effect == "payment_notification"
    assert warning.message == "smtp down"
    assert warning.error_type == "NotificationError"


def test_run_best_effort_success():
    assert run_best_effort("noop", lambda: None) is None
