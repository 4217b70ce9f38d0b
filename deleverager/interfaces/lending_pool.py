"""Lending pool protocol — the lending protocol the service repays into."""
from __future__ import annotations

from typing import Protocol, Sequence

from ..models import AccountData, RateMode, ReserveTokens
from .flash_loan_receiver import FlashLoanReceiver


class LendingPool(Protocol):
    """Abstract interface for the external lending protocol."""

    @property
    def address(self) -> str: ...

    async def get_user_account_data(self, user: str) -> AccountData: ...

    async def get_reserve_tokens(self, asset: str) -> ReserveTokens: ...

    async def repay(
        self,
        account: str,
        asset: str,
        amount: int,
        rate_mode: RateMode,
        on_behalf_of: str,
    ) -> int: ...

    async def withdraw(self, account: str, asset: str, amount: int, to: str) -> int: ...

    async def flash_loan(
        self,
        receiver: FlashLoanReceiver,
        assets: Sequence[str],
        amounts: Sequence[int],
        modes: Sequence[int],
        on_behalf_of: str,
        params: bytes,
        referral_code: int,
        *,
        caller: str,
    ) -> None: ...
