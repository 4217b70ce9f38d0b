"""Flash loan receiver protocol — re-entry point invoked by the lending pool."""
from __future__ import annotations

from typing import Protocol, Sequence


class FlashLoanReceiver(Protocol):
    @property
    def address(self) -> str: ...

    async def execute_operation(
        self,
        assets: Sequence[str],
        amounts: Sequence[int],
        premiums: Sequence[int],
        initiator: str,
        params: bytes,
        *,
        caller: str,
    ) -> bool: ...
