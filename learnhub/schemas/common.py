# learnhub/schemas/common.py - Shared response shapes
from pydantic import BaseModel, Field
from typing import Any, Dict, Optional


class SideEffectWarning(BaseModel):
    """A non-critical side effect (email, gateway lookup) that failed without aborting the operation"""
    effect: str
    message: str
    error_type: Optional[str] = None


class ErrorResponse(BaseModel):
    detail: str
    code: str
    details: Dict[str, Any] = Field(default_factory=dict)
