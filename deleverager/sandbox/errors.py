"""Errors raised by the sandbox market; each one reverts the atomic unit."""
from __future__ import annotations


class SandboxError(Exception):
    """Base class for sandbox protocol reverts."""


class UnknownReserve(SandboxError):
    pass


class UnknownAsset(SandboxError):
    pass


class FlashLoanNotRepaid(SandboxError):
    pass


class ExcessiveInputAmount(SandboxError):
    """Exact-out swap would need more input than the caller allowed."""
