# learnhub/api/deps/services.py - Service wiring for the routers
from fastapi import Depends
from sqlalchemy.orm import Session

from learnhub.core.config import get_enrollment_policy
from learnhub.core.db import get_db
from learnhub.services.access_gate import AccessGate
from learnhub.services.emi_scheduler import EMIScheduler
from learnhub.services.enrollment_service import EnrollmentService
from learnhub.services.financial_analytics import FinancialAnalyticsService
from learnhub.services.notification_service import NotificationService
from learnhub.services.payment_ledger import PaymentLedger
from learnhub.services.pricing_service import PricingService


def get_notifier() -> NotificationService:
    return NotificationService()


def get_enrollment_service(
    db: Session = Depends(get_db),
    notifier: NotificationService = Depends(get_notifier),
) -> EnrollmentService:
    return EnrollmentService(db, get_enrollment_policy(), notifier)


def get_payment_ledger(
    db: Session = Depends(get_db),
    notifier: NotificationService = Depends(get_notifier),
) -> PaymentLedger:
    return PaymentLedger(db, get_enrollment_policy(), notifier)


def get_pricing_service(db: Session = Depends(get_db)) -> PricingService:
    return PricingService(db)


def get_emi_scheduler(db: Session = Depends(get_db)) -> EMIScheduler:
    return EMIScheduler(db, get_enrollment_policy())


def get_access_gate(db: Session = Depends(get_db)) -> AccessGate:
    return AccessGate(db, get_enrollment_policy())


def get_analytics_service(db: Session = Depends(get_db)) -> FinancialAnalyticsService:
    return FinancialAnalyticsService(db, get_enrollment_policy())
