# learnhub/schemas/analytics.py - Reporting rollups over the ledger and schedules
from pydantic import BaseModel
from typing import Optional, Literal, Dict
from decimal import Decimal
from uuid import UUID

FrequencyBucket = Literal["very_frequent", "frequent", "moderate", "infrequent", "insufficient_data"]
ConsistencyRating = Literal["excellent", "good", "fair", "poor", "no_history"]


class ConsistencyResult(BaseModel):
    score: Optional[float] = None
    rating: ConsistencyRating
    completed: int = 0
    failed: int = 0


class OutstandingTotals(BaseModel):
    outstanding_amount: Decimal = Decimal("0.00")
    overdue_amount: Decimal = Decimal("0.00")
    pending_installments: int = 0
    overdue_installments: int = 0


class StudentFinancialSummary(BaseModel):
    student_id: UUID
    enrollments: int
    emi_enrollments: int
    total_paid: Decimal
    outstanding_amount: Decimal
    overdue_amount: Decimal
    overdue_installments: int
    consistency: ConsistencyResult
    payment_frequency: FrequencyBucket
    overdue_risk: Literal["high", "medium", "low"]


class CourseEMIAnalytics(BaseModel):
    course_id: UUID
    emi_enrollments: int
    collected_revenue: Decimal
    pending_revenue: Decimal
    average_installment_amount: Decimal
    installments_by_status: Dict[str, int]
    on_time_payment_percentage: Optional[float] = None
