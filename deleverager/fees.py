"""Service fee charged on the collateral converted during a repay."""
from __future__ import annotations

from dataclasses import dataclass

FEE_NUMERATOR = 10
FEE_DENOMINATOR = 10_000


@dataclass(frozen=True)
class FeeSchedule:
    numerator: int = FEE_NUMERATOR
    denominator: int = FEE_DENOMINATOR

    def __post_init__(self) -> None:
        if self.denominator <= 0:
            raise ValueError("Fee denominator must be positive")
        if not 0 <= self.numerator < self.denominator:
            raise ValueError("Fee numerator must be in [0, denominator)")

    def fee_for(self, amount: int) -> int:
        """Fee owed on ``amount``, rounded down."""
        return amount * self.numerator // self.denominator


DEFAULT_FEE_SCHEDULE = FeeSchedule()
