"""Exchange protocol — swap venue used to convert collateral into debt."""
from __future__ import annotations

from typing import Protocol


class Exchange(Protocol):
    """Abstract interface for an exact-output swap venue."""

    @property
    def address(self) -> str: ...

    async def quote_amounts_in(
        self, asset_from: str, asset_to: str, amount_out: int, use_native_path: bool
    ) -> list[int]: ...

    async def swap_exact_out(
        self,
        account: str,
        asset_from: str,
        asset_to: str,
        amount_in_max: int,
        amount_out: int,
        use_native_path: bool,
    ) -> list[int]: ...
