# learnhub/services/pricing_service.py - Course price computation for individual and batch enrollments
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional
from uuid import UUID
import logging

from sqlalchemy.orm import Session

from learnhub.core.errors import ValidationError, NotFoundError
from learnhub.models.base import MONEY_QUANT
from learnhub.models.course import Course, CoursePricing
from learnhub.repositories.course_repository import CourseRepository
from learnhub.schemas.pricing import PriceBreakdown, PricingQuote

logger = logging.getLogger(__name__)

ZERO = Decimal("0.00")


def _money(value) -> Decimal:
    return Decimal(value).quantize(MONEY_QUANT, rounding=ROUND_HALF_UP)


def _percentage_of(base: Decimal, pct: Decimal) -> Decimal:
    return _money(Decimal(base) * Decimal(pct) / Decimal(100))


def resolve_tier(course: Course, currency: Optional[str]) -> CoursePricing:
    """Tier for the requested currency, else the course's first tier"""
    tier = course.pricing_for(currency)
    if tier is None:
        raise NotFoundError(
            f"No pricing available for course {course.id}",
            details={"course_id": str(course.id), "currency": currency},
        )
    return tier


def calculate_pricing(
    course: Course,
    enrollment_type: str,
    currency: Optional[str] = None,
    batch_size: int = 1,
    custom_discount: Decimal = ZERO,
    discount_code: Optional[str] = None,
) -> PriceBreakdown:
    """
    Compute the price breakdown for an enrollment.

    Args:
        course: Course with its pricing tiers loaded
        enrollment_type: 'individual' or 'batch'
        currency: Preferred currency; falls back to the first tier
        batch_size: Learners in the batch (group discount threshold)
        custom_discount: Flat discount added on top of tier discounts
        discount_code: Recorded on the snapshot only

    Returns:
        PriceBreakdown with quantized amounts

    Raises:
        ValidationError: Unknown enrollment type or negative custom discount
        NotFoundError: Course has no pricing tiers
    """
    custom_discount = Decimal(custom_discount or 0)
    if custom_discount < 0:
        raise ValidationError(
            "Custom discount cannot be negative",
            details={"custom_discount": str(custom_discount)},
        )

    if enrollment_type not in ("individual", "batch"):
        raise ValidationError(
            f"Invalid enrollment type: {enrollment_type}",
            details={"enrollment_type": enrollment_type},
        )

    tier = resolve_tier(course, currency)
    discount = ZERO

    if enrollment_type == "individual":
        base = _money(tier.individual)
        pricing_type = "individual"
        if tier.early_bird_discount_pct and tier.early_bird_discount_pct > 0:
            discount = _percentage_of(base, tier.early_bird_discount_pct)
            pricing_type = "early_bird"
    else:
        base = _money(tier.batch)
        pricing_type = "batch"
        if batch_size >= tier.min_batch_size and tier.group_discount_pct and tier.group_discount_pct > 0:
            discount = _percentage_of(base, tier.group_discount_pct)
            pricing_type = "group_discount"

    if custom_discount > 0:
        discount += _money(custom_discount)

    final_price = max(ZERO, base - discount)

    return PriceBreakdown(
        original_price=base,
        final_price=_money(final_price),
        discount_applied=_money(discount),
        currency=tier.currency,
        pricing_type=pricing_type,
        discount_code=discount_code,
        savings=_money(base - final_price),
    )


class PricingService:
    """Pricing quotes for the enrollment checkout"""

    def __init__(self, db: Session):
        self.db = db
        self.courses = CourseRepository(db)

    def get_pricing_quote(
        self,
        course_id: UUID,
        enrollment_type: str = "individual",
        currency: Optional[str] = None,
        batch_size: int = 1,
        custom_discount: Decimal = ZERO,
        discount_code: Optional[str] = None,
    ) -> PricingQuote:
        course = self.courses.find_by_id(course_id)
        if not course:
            raise NotFoundError("Course not found", details={"course_id": str(course_id)})

        breakdown = calculate_pricing(
            course,
            enrollment_type,
            currency=currency,
            batch_size=batch_size,
            custom_discount=custom_discount,
            discount_code=discount_code,
        )
        tier = resolve_tier(course, currency)

        logger.debug(f"Quote for course {course_id}: {breakdown.pricing_type} {breakdown.final_price} {breakdown.currency}")

        return PricingQuote(
            **breakdown.model_dump(),
            course_id=course.id,
            enrollment_type=enrollment_type,
            batch_size=batch_size,
            min_batch_size=tier.min_batch_size,
            max_batch_size=tier.max_batch_size,
            early_bird_discount_pct=tier.early_bird_discount_pct,
            group_discount_pct=tier.group_discount_pct,
        )
