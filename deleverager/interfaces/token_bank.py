"""Token bank protocol — balances, allowances and the atomic unit of work."""
from __future__ import annotations

from typing import AsyncContextManager, Protocol

from ..models import PermitSignature


class TokenBank(Protocol):
    async def balance_of(self, token: str, holder: str) -> int: ...

    async def allowance(self, token: str, owner: str, spender: str) -> int: ...

    async def transfer(self, token: str, sender: str, to: str, amount: int) -> int: ...

    async def transfer_from(
        self, token: str, spender: str, owner: str, to: str, amount: int
    ) -> int: ...

    async def approve(self, token: str, owner: str, spender: str, amount: int) -> None: ...

    async def permit(
        self, token: str, owner: str, spender: str, signature: PermitSignature
    ) -> None: ...

    def atomic(self) -> AsyncContextManager[None]: ...
