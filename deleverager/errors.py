"""Repay error taxonomy — every error aborts the enclosing atomic unit."""
from __future__ import annotations


class RepayError(Exception):
    """Base class for deleveraging failures."""


class NotAuthorized(RepayError):
    """Caller is not permitted to perform the operation."""


class InvalidCaller(NotAuthorized):
    """Flash-loan callback invoked by someone other than the lending pool."""


class UnauthorizedInitiator(RepayError):
    """Flash-loan callback for an operation this orchestrator did not start."""


class InvalidRange(RepayError):
    """Policy maximum health factor is below its minimum."""


class HealthFactorNotLow(RepayError):
    """Health factor is not below the user's floor; nothing to do."""


class HealthFactorOutOfRange(RepayError):
    """Resulting health factor lies outside the user's band."""


class SlippageExceeded(RepayError):
    """Quoted collateral input exceeds the authorized bound."""


class InsufficientDebtToRepay(RepayError):
    """The effective repay amount is zero."""
