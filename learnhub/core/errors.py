# learnhub/core/errors.py - Domain error taxonomy for the enrollment and payment engine
from typing import Any, Dict, Optional


class LearnHubError(Exception):
    """Base class for errors raised by the service layer"""

    status_code: int = 500
    default_code: str = "INTERNAL_ERROR"

    def __init__(self, message: str, code: Optional[str] = None, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.code = code or self.default_code
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        return {"detail": self.message, "code": self.code, "details": self.details}


class ValidationError(LearnHubError):
    """Malformed or missing input"""
    status_code = 400
    default_code = "INVALID_ARGUMENT"


class NotFoundError(LearnHubError):
    """Course, batch, student or enrollment missing"""
    status_code = 404
    default_code = "NOT_FOUND"


class ConflictError(LearnHubError):
    """Duplicate enrollment, capacity exceeded, amount mismatch"""
    status_code = 409
    default_code = "CONFLICT"


class StateError(LearnHubError):
    """Operation not allowed in the current state"""
    status_code = 422
    default_code = "INVALID_STATE"


class ExternalServiceError(LearnHubError):
    """Payment gateway timeout, 5xx or misconfiguration"""
    status_code = 502
    default_code = "EXTERNAL_SERVICE_ERROR"


class GatewayNotConfiguredError(ExternalServiceError):
    """Gateway credentials missing"""
    status_code = 503
    default_code = "GATEWAY_NOT_CONFIGURED"


# Machine-readable codes
ALREADY_ENROLLED = "ALREADY_ENROLLED"
CAPACITY_EXCEEDED = "CAPACITY_EXCEEDED"
AMOUNT_MISMATCH = "AMOUNT_MISMATCH"
CONCURRENT_UPDATE = "CONCURRENT_UPDATE"
ALREADY_SETTLED = "ALREADY_SETTLED"
INSTALLMENT_SKIPPED = "INSTALLMENT_SKIPPED"
INVALID_TRANSITION = "INVALID_TRANSITION"
IMMUTABLE_FIELD = "IMMUTABLE_FIELD"
SIGNATURE_INVALID = "SIGNATURE_INVALID"
GATEWAY_NOT_CONFIGURED = "GATEWAY_NOT_CONFIGURED"

__all__ = [
    "LearnHubError", "ValidationError", "NotFoundError", "ConflictError",
    "StateError", "ExternalServiceError", "GatewayNotConfiguredError",
    "ALREADY_ENROLLED", "CAPACITY_EXCEEDED", "AMOUNT_MISMATCH", "CONCURRENT_UPDATE",
    "ALREADY_SETTLED", "INSTALLMENT_SKIPPED", "INVALID_TRANSITION", "IMMUTABLE_FIELD",
    "SIGNATURE_INVALID", "GATEWAY_NOT_CONFIGURED",
]
