# learnhub/services/notification_service.py - Enrollment and payment emails, sent best effort
import smtplib
from email.mime.text import MIMEText
from email.mime.multipart import MIMEMultipart
from typing import Any, Callable, Dict, Optional
import logging

from jinja2 import Environment, StrictUndefined

from learnhub.core.config import settings
from learnhub.schemas.common import SideEffectWarning

logger = logging.getLogger(__name__)


class NotificationError(Exception):
    """Raised when a notification cannot be delivered"""
    pass


_env = Environment(autoescape=True, undefined=StrictUndefined)

# event -> (subject, text body, html body)
TEMPLATES: Dict[str, tuple] = {
    "enrollment_created": (
        "You're enrolled in {{ course_title }}",
        """Hi {{ student_name }},

Your enrollment in {{ course_title }} has been created.

Amount: {{ currency }} {{ final_price }}
Payment plan: {{ payment_plan }}{% if next_payment_date %}
First payment due: {{ next_payment_date }}{% endif %}
Access until: {{ access_expiry_date }}

Enrollment reference: {{ enrollment_id }}
""",
        """<p>Hi {{ student_name }},</p>
<p>Your enrollment in <strong>{{ course_title }}</strong> has been created.</p>
<table>
  <tr><td>Amount</td><td>{{ currency }} {{ final_price }}</td></tr>
  <tr><td>Payment plan</td><td>{{ payment_plan }}</td></tr>
  {% if next_payment_date %}<tr><td>First payment due</td><td>{{ next_payment_date }}</td></tr>{% endif %}
  <tr><td>Access until</td><td>{{ access_expiry_date }}</td></tr>
</table>
<p>Enrollment reference: {{ enrollment_id }}</p>""",
    ),
    "payment_received": (
        "Payment received for {{ course_title }}",
        """Hi {{ student_name }},

We received your payment of {{ currency }} {{ amount }}{% if installment_number %} for installment {{ installment_number }}{% endif %}.

Transaction: {{ transaction_id }}
Total paid so far: {{ currency }} {{ total_amount_paid }}{% if next_payment_date %}
Next payment due: {{ next_payment_date }}{% endif %}
""",
        """<p>Hi {{ student_name }},</p>
<p>We received your payment of <strong>{{ currency }} {{ amount }}</strong>{% if installment_number %} for installment {{ installment_number }}{% endif %}.</p>
<p>Transaction: {{ transaction_id }}<br>
Total paid so far: {{ currency }} {{ total_amount_paid }}{% if next_payment_date %}<br>
Next payment due: {{ next_payment_date }}{% endif %}</p>""",
    ),
    "enrollment_transferred": (
        "Your enrollment moved to batch {{ batch_name }}",
        """Hi {{ student_name }},

Your enrollment in {{ course_title }} has been moved to batch {{ batch_name }}.
Your payments and progress were carried over.

New enrollment reference: {{ enrollment_id }}
""",
        """<p>Hi {{ student_name }},</p>
<p>Your enrollment in <strong>{{ course_title }}</strong> has been moved to batch <strong>{{ batch_name }}</strong>.
Your payments and progress were carried over.</p>
<p>New enrollment reference: {{ enrollment_id }}</p>""",
    ),
}


def render(event: str, payload: Dict[str, Any]) -> tuple[str, str, str]:
    if event not in TEMPLATES:
        raise NotificationError(f"Unknown notification event: {event}")
    subject, text, html = TEMPLATES[event]
    return (
        _env.from_string(subject).render(**payload),
        _env.from_string(text).render(**payload),
        _env.from_string(html).render(**payload),
    )


class NotificationService:
    """Email notifications over SMTP"""

    def __init__(self):
        self.smtp_host = settings.SMTP_HOST
        self.smtp_port = settings.SMTP_PORT
        self.smtp_user = settings.SMTP_USER
        self.smtp_password = settings.SMTP_PASSWORD
        self.from_email = settings.SMTP_FROM_EMAIL
        self.from_name = settings.SMTP_FROM_NAME
        self.use_tls = settings.SMTP_USE_TLS
        self.timeout = settings.SMTP_TIMEOUT_SECONDS

    @property
    def configured(self) -> bool:
        return bool(self.smtp_host and self.from_email)

    def send(self, event: str, payload: Dict[str, Any]) -> bool:
        """
        Render and send a notification.

        Returns False when there is nobody to send to or SMTP is not configured.

        Raises:
            NotificationError: Rendering or SMTP delivery failed
        """
        to_email = payload.get("to_email")
        if not to_email:
            logger.debug(f"No recipient for {event} notification, skipping")
            return False
        if not self.configured:
            logger.debug(f"SMTP not configured, {event} notification to {to_email} not sent")
            return False

        subject, body_text, body_html = render(event, payload)

        msg = MIMEMultipart('alternative')
        msg['Subject'] = subject
        msg['From'] = f"{self.from_name} <{self.from_email}>"
        msg['To'] = to_email
        msg.attach(MIMEText(body_text, 'plain', 'utf-8'))
        msg.attach(MIMEText(body_html, 'html', 'utf-8'))

        try:
            with smtplib.SMTP(self.smtp_host, self.smtp_port, timeout=self.timeout) as server:
                if self.use_tls:
                    server.starttls()
                if self.smtp_user:
                    server.login(self.smtp_user, self.smtp_password)
                server.send_message(msg)
        except (smtplib.SMTPException, OSError) as e:
            raise NotificationError(f"SMTP delivery of {event} to {to_email} failed: {e}") from e

        logger.info(f"{event} notification sent to {to_email}")
        return True


def enrollment_payload(enrollment, **extra) -> Dict[str, Any]:
    """Template context shared by enrollment notifications"""
    student = enrollment.student
    payload = {
        "to_email": student.email if student else None,
        "student_name": student.full_name if student else "there",
        "course_title": enrollment.course.title if enrollment.course else "your course",
        "enrollment_id": str(enrollment.id),
        "currency": enrollment.currency,
        "final_price": enrollment.final_price,
        "payment_plan": enrollment.payment_plan,
        "total_amount_paid": enrollment.total_amount_paid,
        "next_payment_date": enrollment.next_payment_date.date().isoformat() if enrollment.next_payment_date else None,
        "access_expiry_date": enrollment.access_expiry_date.date().isoformat(),
    }
    payload.update(extra)
    return payload


def run_best_effort(effect: str, func: Callable[..., Any], *args, **kwargs) -> Optional[SideEffectWarning]:
    """
    Run a non-critical side effect. Failures are logged and returned as a
    warning, never raised into the caller's transaction.
    """
    try:
        func(*args, **kwargs)
        return None
    except Exception as e:
        logger.warning(f"Side effect '{effect}' failed: {e}", exc_info=True)
        return SideEffectWarning(effect=effect, message=str(e), error_type=type(e).__name__)
