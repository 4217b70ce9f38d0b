"""Fixed prices taken from the market configuration."""
from __future__ import annotations

from decimal import Decimal


class StaticOracle:
    def __init__(self, prices: dict[str, Decimal]) -> None:
        self._prices = dict(prices)

    async def fetch_prices(self, symbols: list[str] | None = None) -> dict[str, Decimal]:
        if symbols is None:
            return dict(self._prices)
        return {k: v for k, v in self._prices.items() if k in symbols}
