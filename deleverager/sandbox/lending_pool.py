"""In-memory lending pool with receipt tokens, debt tokens and flash loans."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Sequence

from ..interfaces.flash_loan_receiver import FlashLoanReceiver
from ..ledger import TokenLedger
from ..models import AccountData, RateMode, ReserveTokens
from . import accounting
from .errors import FlashLoanNotRepaid, UnknownReserve

logger = logging.getLogger(__name__)

DEFAULT_FLASH_LOAN_PREMIUM_BPS = 9


@dataclass(frozen=True)
class SandboxReserve:
    asset: str
    decimals: int
    liquidation_threshold_bps: int
    ltv_bps: int
    tokens: ReserveTokens


def reserve_tokens_for(asset: str) -> ReserveTokens:
    return ReserveTokens(
        receipt_token=f"a{asset}",
        stable_debt_token=f"stableDebt{asset}",
        variable_debt_token=f"variableDebt{asset}",
    )


class SandboxLendingPool:
    """Lending pool whose whole state lives on a :class:`TokenLedger`.

    Collateral is held as receipt tokens (``a<ASSET>``) and debt as debt
    tokens, so every pool effect is covered by the ledger's atomic units.
    """

    def __init__(
        self,
        ledger: TokenLedger,
        address: str = "lending-pool",
        flash_loan_premium_bps: int = DEFAULT_FLASH_LOAN_PREMIUM_BPS,
    ) -> None:
        self._ledger = ledger
        self._address = address
        self._premium_bps = flash_loan_premium_bps
        self._reserves: dict[str, SandboxReserve] = {}
        self._prices: dict[str, Decimal] = {}

    @property
    def address(self) -> str:
        return self._address

    @property
    def flash_loan_premium_bps(self) -> int:
        return self._premium_bps

    # ------------------------------------------------------------------
    # Market setup
    # ------------------------------------------------------------------

    def add_reserve(
        self,
        asset: str,
        decimals: int,
        price: Decimal,
        liquidation_threshold_bps: int,
        ltv_bps: int | None = None,
    ) -> SandboxReserve:
        reserve = SandboxReserve(
            asset=asset,
            decimals=decimals,
            liquidation_threshold_bps=liquidation_threshold_bps,
            ltv_bps=liquidation_threshold_bps if ltv_bps is None else ltv_bps,
            tokens=reserve_tokens_for(asset),
        )
        self._reserves[asset] = reserve
        self._prices[asset] = Decimal(price)
        return reserve

    def set_prices(self, prices: dict[str, Decimal]) -> None:
        for asset, price in prices.items():
            if asset in self._reserves:
                self._prices[asset] = Decimal(price)
                logger.debug("Pool price %s = %s", asset, price)

    def reserve(self, asset: str) -> SandboxReserve:
        try:
            return self._reserves[asset]
        except KeyError:
            raise UnknownReserve(f"No reserve for {asset}") from None

    def reserves(self) -> tuple[SandboxReserve, ...]:
        return tuple(self._reserves.values())

    def price(self, asset: str) -> Decimal:
        self.reserve(asset)
        return self._prices[asset]

    # ------------------------------------------------------------------
    # Views
    # ------------------------------------------------------------------

    async def get_reserve_tokens(self, asset: str) -> ReserveTokens:
        return self.reserve(asset).tokens

    def position_details(self, user: str) -> tuple[list[dict[str, Any]], list[dict[str, Any]]]:
        """Per-asset collateral and debt of ``user`` valued at current prices."""
        collateral: list[dict[str, Any]] = []
        debt: list[dict[str, Any]] = []
        for reserve in self._reserves.values():
            price = self._prices[reserve.asset]
            supplied = self._ledger.balance(reserve.tokens.receipt_token, user)
            if supplied:
                amount = accounting.to_units(supplied, reserve.decimals)
                collateral.append({
                    "symbol": reserve.asset,
                    "amount": amount,
                    "price": price,
                    "value": amount * price,
                    "liquidation_threshold_bps": reserve.liquidation_threshold_bps,
                    "ltv_bps": reserve.ltv_bps,
                })
            owed = self._ledger.balance(
                reserve.tokens.stable_debt_token, user
            ) + self._ledger.balance(reserve.tokens.variable_debt_token, user)
            if owed:
                amount = accounting.to_units(owed, reserve.decimals)
                debt.append({
                    "symbol": reserve.asset,
                    "amount": amount,
                    "price": price,
                    "value": amount * price,
                })
        return collateral, debt

    async def get_user_account_data(self, user: str) -> AccountData:
        collateral, debt = self.position_details(user)
        total_collateral = sum((d["value"] for d in collateral), Decimal(0))
        total_debt = sum((d["value"] for d in debt), Decimal(0))
        threshold = accounting.weighted_fraction(collateral, "liquidation_threshold_bps")
        ltv = accounting.weighted_fraction(collateral, "ltv_bps")

        return AccountData(
            total_collateral=total_collateral,
            total_debt=total_debt,
            available_borrows=max(total_collateral * ltv - total_debt, Decimal(0)),
            liquidation_threshold=threshold,
            ltv=ltv,
            health_factor=accounting.calc_health_factor(
                total_collateral, total_debt, threshold
            ),
        )

    # ------------------------------------------------------------------
    # Pool actions
    # ------------------------------------------------------------------

    async def deposit(self, account: str, asset: str, amount: int, on_behalf_of: str) -> None:
        reserve = self.reserve(asset)
        received = await self._ledger.transfer_from(
            asset, self._address, account, self._address, amount
        )
        self._ledger.mint(reserve.tokens.receipt_token, on_behalf_of, received)

    async def borrow(
        self, account: str, asset: str, amount: int, rate_mode: RateMode
    ) -> None:
        reserve = self.reserve(asset)
        self._ledger.mint(reserve.tokens.debt_token(rate_mode), account, amount)
        await self._ledger.transfer(asset, self._address, account, amount)

    async def repay(
        self,
        account: str,
        asset: str,
        amount: int,
        rate_mode: RateMode,
        on_behalf_of: str,
    ) -> int:
        """Repay up to ``amount``; returns what was actually repaid."""
        debt_token = self.reserve(asset).tokens.debt_token(rate_mode)
        owed = self._ledger.balance(debt_token, on_behalf_of)
        payback = min(amount, owed)
        if payback == 0:
            return 0

        await self._ledger.transfer_from(
            asset, self._address, account, self._address, payback
        )
        self._ledger.burn(debt_token, on_behalf_of, payback)
        logger.debug("Repaid %d %s for %s", payback, asset, on_behalf_of)
        return payback

    async def withdraw(self, account: str, asset: str, amount: int, to: str) -> int:
        reserve = self.reserve(asset)
        self._ledger.burn(reserve.tokens.receipt_token, account, amount)
        return await self._ledger.transfer(asset, self._address, to, amount)

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
    ) -> None:
        """Lend ``amounts``, call the receiver back, then pull principal + premium."""
        if not len(assets) == len(amounts) == len(modes):
            raise ValueError("assets, amounts and modes must have the same length")
        if any(mode != 0 for mode in modes):
            raise ValueError("Only flash loans repaid in the same call (mode 0) are supported")

        premiums = [amount * self._premium_bps // 10_000 for amount in amounts]

        async with self._ledger.atomic():
            balances_before = [
                self._ledger.balance(asset, self._address) for asset in assets
            ]
            for asset, amount in zip(assets, amounts):
                self.reserve(asset)
                await self._ledger.transfer(asset, self._address, receiver.address, amount)

            if not await receiver.execute_operation(
                assets, amounts, premiums, caller, params, caller=self._address
            ):
                raise FlashLoanNotRepaid("Flash loan receiver returned false")

            for asset, amount, premium, before in zip(
                assets, amounts, premiums, balances_before
            ):
                await self._ledger.transfer_from(
                    asset, self._address, receiver.address, self._address, amount + premium
                )
                if self._ledger.balance(asset, self._address) < before + premium:
                    raise FlashLoanNotRepaid(f"Flash loan of {asset} not repaid with premium")

        logger.debug(
            "Flash loan %s to %s (referral %d, on behalf of %s) settled",
            list(zip(assets, amounts, premiums)),
            receiver.address,
            referral_code,
            on_behalf_of,
        )
