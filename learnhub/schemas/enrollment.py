# learnhub/schemas/enrollment.py - Enrollment request/response schemas
from pydantic import BaseModel, Field, field_validator
from typing import Optional, List, Literal
from datetime import datetime
from decimal import Decimal
from uuid import UUID

from learnhub.schemas.common import SideEffectWarning
from learnhub.schemas.pricing import EnrollmentType

EnrollmentStatus = Literal["pending", "active", "on_hold", "completed", "cancelled", "expired"]
PaymentPlan = Literal["full", "installment"]
EnrollmentSource = Literal["website", "admin", "corporate", "referral", "transfer"]


class EnrollmentOptions(BaseModel):
    """Optional knobs accepted by create_enrollment"""
    batch_id: Optional[UUID] = None
    batch_size: int = Field(1, ge=1)
    batch_members: List[UUID] = Field(default_factory=list)
    currency: Optional[str] = Field(None, min_length=3, max_length=3)
    custom_discount: Decimal = Field(Decimal("0"), ge=0)
    discount_code: Optional[str] = Field(None, max_length=64)
    payment_plan: PaymentPlan = "full"
    installments_count: int = Field(1, ge=1)
    emi_start_date: Optional[datetime] = None
    emi_cadence_days: Optional[int] = Field(None, ge=1, le=366)
    access_duration_days: Optional[int] = Field(None, ge=1)
    source: EnrollmentSource = "website"
    notes: Optional[str] = Field(None, max_length=2000)

    @field_validator("currency")
    @classmethod
    def normalize_currency(cls, v: Optional[str]) -> Optional[str]:
        return v.strip().upper() if v else None


class EnrollmentCreate(BaseModel):
    student_id: UUID
    course_id: UUID
    enrollment_type: EnrollmentType = "individual"
    options: EnrollmentOptions = Field(default_factory=EnrollmentOptions)


class TransferRequest(BaseModel):
    batch_id: UUID


class StatusChange(BaseModel):
    action: Literal["hold", "resume", "complete", "cancel"]
    note: Optional[str] = Field(None, max_length=2000)


class SkipInstallmentRequest(BaseModel):
    reason: str = Field(..., min_length=1, max_length=255)

    @field_validator("reason")
    @classmethod
    def validate_reason(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("Skip reason cannot be empty or whitespace")
        return v.strip()


class BatchMemberCreate(BaseModel):
    student_id: UUID


class ProgressUpdate(BaseModel):
    """Partial progress update; only fields that are set are merged"""
    progress_percentage: Optional[int] = Field(None, ge=0, le=100)
    lessons_completed: Optional[int] = Field(None, ge=0)
    last_activity_date: Optional[datetime] = None


class BatchInfoUpdate(BaseModel):
    """Partial batch info update applied through EnrollmentService.merge_batch_info"""
    batch_size: Optional[int] = Field(None, ge=1)
    is_batch_leader: Optional[bool] = None


# Response Schemas
class InstallmentOut(BaseModel):
    number: int
    amount: Decimal
    due_date: datetime
    status: Literal["pending", "paid", "skipped"]
    paid_date: Optional[datetime] = None
    transaction_id: Optional[str] = None
    late_fee: Optional[Decimal] = None
    skip_reason: Optional[str] = None

    class Config:
        from_attributes = True


class BatchMemberOut(BaseModel):
    student_id: UUID
    joined_date: datetime

    class Config:
        from_attributes = True


class EnrollmentOut(BaseModel):
    id: UUID
    student_id: UUID
    course_id: UUID
    batch_id: Optional[UUID] = None
    enrollment_type: EnrollmentType
    enrollment_source: str
    status: EnrollmentStatus
    payment_plan: PaymentPlan
    installments_count: int
    original_price: Decimal
    final_price: Decimal
    currency: str
    discount_applied: Decimal
    pricing_type: str
    discount_code: Optional[str] = None
    enrollment_date: datetime
    access_expiry_date: datetime
    total_amount_paid: Decimal
    next_payment_date: Optional[datetime] = None
    batch_size: int
    is_batch_leader: bool
    progress_percentage: int
    lessons_completed: int
    last_activity_date: Optional[datetime] = None
    notes: Optional[str] = None
    version: int
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class EnrollmentDetail(EnrollmentOut):
    installments: List[InstallmentOut] = []
    batch_members: List[BatchMemberOut] = []


class EnrollmentResult(BaseModel):
    enrollment: EnrollmentDetail
    warnings: List[SideEffectWarning] = []


class TransferResult(BaseModel):
    source_enrollment_id: UUID
    enrollment: EnrollmentDetail
    copied_payments: int
    warnings: List[SideEffectWarning] = []


class AvailableBatchOut(BaseModel):
    id: UUID
    course_id: UUID
    batch_name: str
    batch_code: str
    status: str
    capacity: int
    enrolled_students: int
    available_spots: int
    start_date: datetime
    end_date: datetime

    class Config:
        from_attributes = True


class ExpirySweepResult(BaseModel):
    checked: int
    expired: int
    enrollment_ids: List[UUID] = []
