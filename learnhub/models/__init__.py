# learnhub/models/__init__.py - Import all models so SQLAlchemy can discover them

from learnhub.models.base import Base

from learnhub.models.course import Course, CoursePricing, Batch
from learnhub.models.student import Student
from learnhub.models.enrollment import Enrollment, Installment, BatchMember, PricingSnapshot
from learnhub.models.payment import PaymentRecord

__all__ = [
    "Base",
    "Course",
    "CoursePricing",
    "Batch",
    "Student",
    "Enrollment",
    "Installment",
    "BatchMember",
    "PricingSnapshot",
    "PaymentRecord",
]
