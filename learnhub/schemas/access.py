# learnhub/schemas/access.py - Derived access decision
from pydantic import BaseModel
from typing import Optional, Literal
from datetime import datetime
from uuid import UUID

AccessState = Literal["active", "restricted", "expired"]
RestrictionReason = Literal["overdue_installment", "payment_pending", "enrollment_cancelled", "on_hold"]


class AccessStatus(BaseModel):
    state: AccessState
    reason: Optional[RestrictionReason] = None
    # all | new_content; only set for overdue restrictions
    scope: Optional[Literal["all", "new_content"]] = None
    evaluated_at: datetime

    @property
    def has_access(self) -> bool:
        return self.state == "active"

    @classmethod
    def active(cls, now: datetime) -> "AccessStatus":
        return cls(state="active", evaluated_at=now)

    @classmethod
    def expired(cls, now: datetime) -> "AccessStatus":
        return cls(state="expired", evaluated_at=now)

    @classmethod
    def restricted(cls, reason: str, now: datetime, scope: Optional[str] = None) -> "AccessStatus":
        return cls(state="restricted", reason=reason, scope=scope, evaluated_at=now)


class AccessStatusOut(AccessStatus):
    enrollment_id: UUID
