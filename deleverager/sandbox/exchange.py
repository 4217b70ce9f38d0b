"""Constant-price swap venue settling on the token ledger."""
from __future__ import annotations

import logging
from decimal import ROUND_CEILING, Decimal

from ..ledger import TokenLedger
from . import accounting
from .errors import ExcessiveInputAmount, UnknownAsset

logger = logging.getLogger(__name__)

DEFAULT_SWAP_FEE_BPS = 30


class SandboxExchange:
    """Exact-output swaps priced from oracle prices, with a fee per hop.

    Receipt tokens registered through :meth:`alias` trade at the price of
    their underlying asset.
    """

    def __init__(
        self,
        ledger: TokenLedger,
        address: str = "exchange",
        native_asset: str = "WETH",
        fee_bps: int = DEFAULT_SWAP_FEE_BPS,
    ) -> None:
        if not 0 <= fee_bps < 10_000:
            raise ValueError(f"Invalid swap fee: {fee_bps}")
        self._ledger = ledger
        self._address = address
        self._native_asset = native_asset
        self._fee_bps = fee_bps
        self._decimals: dict[str, int] = {}
        self._prices: dict[str, Decimal] = {}
        self._aliases: dict[str, str] = {}

    @property
    def address(self) -> str:
        return self._address

    @property
    def native_asset(self) -> str:
        return self._native_asset

    def list_asset(self, symbol: str, decimals: int, price: Decimal) -> None:
        self._decimals[symbol] = decimals
        self._prices[symbol] = Decimal(price)

    def alias(self, token: str, underlying: str) -> None:
        self._aliases[token] = underlying
        self._decimals[token] = self._decimals_of(underlying)

    def set_prices(self, prices: dict[str, Decimal]) -> None:
        for symbol, price in prices.items():
            if symbol in self._prices:
                self._prices[symbol] = Decimal(price)

    def _decimals_of(self, symbol: str) -> int:
        try:
            return self._decimals[symbol]
        except KeyError:
            raise UnknownAsset(f"{symbol} is not traded on this exchange") from None

    def _price_of(self, symbol: str) -> Decimal:
        price = accounting.resolve_price(symbol, self._prices, self._aliases)
        if price <= 0:
            raise UnknownAsset(f"No price for {symbol}")
        return price

    def _path(self, asset_from: str, asset_to: str, use_native_path: bool) -> list[str]:
        native = self._native_asset
        if use_native_path and native not in (asset_from, asset_to):
            return [asset_from, native, asset_to]
        return [asset_from, asset_to]

    def _hop_amount_in(self, asset_from: str, asset_to: str, amount_out: int) -> int:
        value = accounting.to_units(amount_out, self._decimals_of(asset_to)) * self._price_of(asset_to)
        units_in = value / self._price_of(asset_from)
        gross = units_in * 10_000 / (10_000 - self._fee_bps)
        raw = gross * (Decimal(10) ** self._decimals_of(asset_from))
        return int(raw.to_integral_value(rounding=ROUND_CEILING))

    async def quote_amounts_in(
        self, asset_from: str, asset_to: str, amount_out: int, use_native_path: bool
    ) -> list[int]:
        """Input amounts along the path needed to receive exactly ``amount_out``."""
        path = self._path(asset_from, asset_to, use_native_path)
        amounts = [0] * len(path)
        amounts[-1] = amount_out
        for i in range(len(path) - 2, -1, -1):
            amounts[i] = self._hop_amount_in(path[i], path[i + 1], amounts[i + 1])
        return amounts

    async def swap_exact_out(
        self,
        account: str,
        asset_from: str,
        asset_to: str,
        amount_in_max: int,
        amount_out: int,
        use_native_path: bool,
    ) -> list[int]:
        amounts = await self.quote_amounts_in(asset_from, asset_to, amount_out, use_native_path)
        if amounts[0] > amount_in_max:
            raise ExcessiveInputAmount(
                f"Swap needs {amounts[0]} {asset_from}, max {amount_in_max}"
            )

        await self._ledger.transfer_from(
            asset_from, self._address, account, self._address, amounts[0]
        )
        await self._ledger.transfer(asset_to, self._address, account, amount_out)
        logger.debug(
            "Swapped %d %s -> %d %s for %s", amounts[0], asset_from, amount_out, asset_to, account
        )
        return amounts
