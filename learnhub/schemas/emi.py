# learnhub/schemas/emi.py - Installment schedule views
from pydantic import BaseModel
from typing import Optional, List, Literal
from datetime import datetime
from decimal import Decimal
from uuid import UUID


class InstallmentView(BaseModel):
    """Installment with its derived status; overdue is never stored"""
    number: int
    amount: Decimal
    due_date: datetime
    status: Literal["pending", "paid", "skipped", "overdue"]
    late_fee: Optional[Decimal] = None
    amount_due: Decimal
    paid_date: Optional[datetime] = None
    transaction_id: Optional[str] = None
    skip_reason: Optional[str] = None


class EMISummary(BaseModel):
    enrollment_id: UUID
    payment_plan: str
    currency: str
    final_price: Decimal
    total_amount_paid: Decimal
    schedule: List[InstallmentView]
    next_payment_date: Optional[datetime] = None
    overdue_amount: Decimal
    outstanding_amount: Decimal
    paid_installments: int
    remaining_installments: int
