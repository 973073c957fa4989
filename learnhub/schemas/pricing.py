# learnhub/schemas/pricing.py - Price breakdown and quote schemas
from pydantic import BaseModel
from typing import Optional, Literal
from decimal import Decimal
from uuid import UUID

EnrollmentType = Literal["individual", "batch"]
PricingType = Literal["individual", "early_bird", "batch", "group_discount"]


class PriceBreakdown(BaseModel):
    original_price: Decimal
    final_price: Decimal
    discount_applied: Decimal
    currency: str
    pricing_type: PricingType
    discount_code: Optional[str] = None
    savings: Decimal = Decimal("0.00")


class PricingQuote(PriceBreakdown):
    """Breakdown plus the tier parameters the price was derived from"""
    course_id: UUID
    enrollment_type: EnrollmentType
    batch_size: int
    min_batch_size: int
    max_batch_size: int
    early_bird_discount_pct: Decimal
    group_discount_pct: Decimal
