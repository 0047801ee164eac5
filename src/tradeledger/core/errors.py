"""
Error classes for the ledger core.

  ValidationError      : malformed input, nothing was changed
  BusinessRejection    : order/plan left unexecuted, retried on the next natural trigger
  InfrastructureError  : store failure, transaction rolled back
  InvariantViolation   : attempted negative balance, aborted at the ledger boundary
"""

from typing import Any, Dict, Optional


class LedgerError(Exception):
    """Base class for every error raised by the core."""

    def __init__(self, message: str, context: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.context = context or {}


# ----------------------------------------------------------------------
# (a) validation
# ----------------------------------------------------------------------
class ValidationError(LedgerError):
    """Malformed request."""


class NotFoundError(ValidationError):
    """Referenced user, order or plan does not exist (or is not owned by the caller)."""


# ----------------------------------------------------------------------
# (b) business rejections
# ----------------------------------------------------------------------
class BusinessRejection(LedgerError):
    """Non-fatal refusal to execute."""


class InsufficientFunds(BusinessRejection):
    def __init__(self, message: str, *, user_id: int, currency: str, required: int, **kwargs):
        super().__init__(message, **kwargs)
        self.user_id = user_id
        self.currency = currency
        self.required = required


class PriceBoundBreach(BusinessRejection):
    def __init__(self, message: str, *, quote: int, min_price: Optional[int], max_price: Optional[int], **kwargs):
        super().__init__(message, **kwargs)
        self.quote = quote
        self.min_price = min_price
        self.max_price = max_price


class AmountTooSmall(BusinessRejection):
    """Conversion produced a zero leg."""


class PriceUnavailable(BusinessRejection):
    """No reference price has been observed yet."""


# ----------------------------------------------------------------------
# (c) infrastructure
# ----------------------------------------------------------------------
class InfrastructureError(LedgerError):
    def __init__(self, message: str, operation: Optional[str] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.operation = operation


class PriceFetchError(InfrastructureError):
    """Price source failed; the tick is skipped."""


# ----------------------------------------------------------------------
# (d) invariants
# ----------------------------------------------------------------------
class InvariantViolation(LedgerError):
    """A balance column would have gone negative."""


class ClaimLost(LedgerError):
    """The claimed plan row changed before finalize; the execution must roll back."""


class CacheUnavailable(InfrastructureError):
    """Cache backend unreachable. Logged and degraded to the durable store, never fatal."""
