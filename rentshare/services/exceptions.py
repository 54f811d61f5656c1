"""Operational errors raised by the discount services."""

from typing import Dict, Optional


class DiscountError(Exception):
    """Base exception for discount operational errors."""
    def __init__(self, message: str, details: Optional[Dict] = None):
        self.message = message
        self.details = details or {}
        super().__init__(self.message)


class DiscountValidationError(DiscountError):
    """Malformed issuance or assignment input."""


class DiscountNotFound(DiscountError):
    """No discount code matches the given id or code."""


class CodeGenerationFailed(DiscountError):
    """Every code generation attempt collided. Retry the whole issuance."""


class DiscountAccessDenied(DiscountError):
    """The user may not see or use this private code. details["reason"] says why."""
