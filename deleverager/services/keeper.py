"""Keeper — watches configured positions and deleverages those below their floor."""
from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from decimal import Decimal
from typing import TYPE_CHECKING

from ..config import AppConfig, PositionConfig
from ..interfaces.notifier import Notifier
from ..interfaces.price_oracle import PriceOracle
from ..models import AccountData, ExecutedRepay, RequestedRepay, UserPolicy
from ..notifications import EmailNotifier, TelegramNotifier
from ..oracles import PythOracle, StaticOracle
from ..sandbox import accounting
from .planner import plan_repay, target_for

if TYPE_CHECKING:
    from ..sandbox.market import Market

logger = logging.getLogger(__name__)

BPS = Decimal(10_000)


def build_oracle(config: AppConfig) -> PriceOracle:
    if config.price_oracle.provider == "pyth":
        return PythOracle(config.price_oracle.pyth)
    return StaticOracle(
        {symbol: asset.price for symbol, asset in config.market.assets.items()}
    )


def build_notifiers(config: AppConfig) -> list[Notifier]:
    notifiers: list[Notifier] = []
    if config.notifications.telegram.enabled:
        notifiers.append(TelegramNotifier(config.notifications.telegram))
    if config.notifications.email.enabled:
        notifiers.append(EmailNotifier(config.notifications.email))
    return notifiers


class Keeper:
    """Operator bot: one pass checks every position and repays where needed."""

    def __init__(self, config: AppConfig, market: Market) -> None:
        self._config = config
        self._market = market
        self._operator = config.keeper.operator
        self._oracle: PriceOracle = build_oracle(config)
        self._notifiers: list[Notifier] = build_notifiers(config)

    # ------------------------------------------------------------------
    # Formatting helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _format_address(address: str) -> str:
        if len(address) > 16:
            return f"{address[:10]}...{address[-6:]}"
        return address

    @staticmethod
    def _now_str() -> str:
        return datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M:%S")

    @staticmethod
    def _format_hf(health_factor: Decimal) -> str:
        if health_factor.is_infinite():
            return "∞"
        return f"{health_factor:.3f}"

    def _get_status(self, health_factor: Decimal, policy: UserPolicy) -> str:
        if not policy.is_configured:
            return "⏸️ No policy"
        if health_factor < policy.min_health_factor:
            return "🚨 Below floor"
        if health_factor > policy.max_health_factor:
            return "⬆️ Above band"
        return "✅ In band"

    def _build_repay_log(self, position: PositionConfig, executed: ExecutedRepay) -> str:
        mode = "flash loan" if executed.financed else "direct"
        return (
            f"🛟 Repay executed · {position.label} ({mode})\n"
            f"\n"
            f"Repaid: {executed.debt_repaid} {executed.debt_asset}\n"
            f"Collateral used: {executed.collateral_pulled} {executed.collateral_asset}"
            f" (fee {executed.fee}, premium {executed.premium})\n"
            f"HF: {self._format_hf(executed.health_factor_before)} → "
            f"{self._format_hf(executed.health_factor_after)}\n"
            f"\n"
            f"User: {self._format_address(executed.user)}\n"
            f"{self._now_str()} UTC"
        )

    def _build_failure_alert(
        self, position: PositionConfig, account: AccountData, error: Exception
    ) -> str:
        return (
            f"🚨 Repay FAILED · {position.label}\n"
            f"\n"
            f"{type(error).__name__}: {error}\n"
            f"\n"
            f"Health Factor: {self._format_hf(account.health_factor)}\n"
            f"Collateral: ${account.total_collateral:,.2f}\n"
            f"Debt: ${account.total_debt:,.2f}\n"
            f"\n"
            f"User: {self._format_address(position.user)}\n"
            f"{self._now_str()} UTC"
        )

    # ------------------------------------------------------------------
    # Notification dispatch
    # ------------------------------------------------------------------

    async def _send_log(self, message: str, silent: bool = False) -> None:
        for notifier in self._notifiers:
            try:
                await notifier.send_log(message, silent=silent)
            except Exception as e:
                logger.error("Notifier send_log failed: %s", e)

    async def _send_alert(self, message: str, subject: str = "") -> None:
        for notifier in self._notifiers:
            try:
                await notifier.send_alert(message, subject=subject)
            except Exception as e:
                logger.error("Notifier send_alert failed: %s", e)

    # ------------------------------------------------------------------
    # Planning
    # ------------------------------------------------------------------

    def _cost_bps(self, position: PositionConfig) -> int:
        """Swap fees and flash loan premium, as collateral overhead in bps."""
        market = self._config.market
        cost = 0
        if position.collateral != position.debt:
            hops = 1
            if position.use_native_path and market.native_asset not in (
                position.collateral,
                position.debt,
            ):
                hops = 2
            cost += hops * market.swap_fee_bps
        if self._config.keeper.use_financing:
            cost += market.flash_loan_premium_bps
        return cost

    def build_request(
        self, position: PositionConfig, account: AccountData, policy: UserPolicy
    ) -> RequestedRepay | None:
        pool = self._market.pool
        debt_reserve = pool.reserve(position.debt)
        collateral_reserve = pool.reserve(position.collateral)
        outstanding = self._market.ledger.balance(
            debt_reserve.tokens.debt_token(position.rate_mode), position.user
        )

        threshold = Decimal(0)
        if position.collateral_as_receipt_token:
            threshold = Decimal(collateral_reserve.liquidation_threshold_bps) / BPS
        fees = self._market.orchestrator.fees

        plan = plan_repay(
            account,
            target_for(policy, self._config.keeper.target_health_factor),
            outstanding_debt=outstanding,
            debt_price=pool.price(position.debt),
            debt_decimals=debt_reserve.decimals,
            collateral_price=pool.price(position.collateral),
            collateral_decimals=collateral_reserve.decimals,
            collateral_threshold=threshold,
            fee_rate=Decimal(fees.numerator) / Decimal(fees.denominator),
            cost_bps=self._cost_bps(position),
            slippage_bps=self._config.keeper.slippage_bps,
        )
        if plan is None:
            return None

        return RequestedRepay(
            user=position.user,
            collateral_asset=position.collateral,
            debt_asset=position.debt,
            collateral_amount=plan.collateral_amount,
            debt_repay_amount=plan.debt_repay_amount,
            rate_mode=position.rate_mode,
            use_native_path=position.use_native_path,
            collateral_as_receipt_token=position.collateral_as_receipt_token,
            use_financing=self._config.keeper.use_financing,
        )

    # ------------------------------------------------------------------
    # Core workflows
    # ------------------------------------------------------------------

    async def refresh_prices(self) -> None:
        prices = await self._oracle.fetch_prices()
        if prices:
            self._market.set_prices(prices)
        else:
            logger.warning("No prices received, keeping previous prices")

    async def check_and_repay(self) -> list[ExecutedRepay]:
        """Check every configured position and repay those below their floor."""
        await self.refresh_prices()
        executed: list[ExecutedRepay] = []

        for position in self._config.positions:
            account = await self._market.pool.get_user_account_data(position.user)
            policy = self._market.policies.get_policy(position.user)
            logger.info(
                "Position — %s · Collateral: $%.2f  Debt: $%.2f  HF: %s  Band: [%s, %s]",
                position.label,
                account.total_collateral,
                account.total_debt,
                self._format_hf(account.health_factor),
                policy.min_health_factor,
                policy.max_health_factor,
            )

            if not policy.is_configured or account.health_factor >= policy.min_health_factor:
                continue

            request = self.build_request(position, account, policy)
            if request is None:
                logger.warning("No repay reaches the target for %s", position.label)
                continue

            try:
                result = await self._market.orchestrator.increase_health_factor(
                    self._operator, request
                )
            except Exception as e:
                logger.error("Repay for %s failed: %s", position.label, e)
                await self._send_alert(
                    self._build_failure_alert(position, account, e),
                    subject="🚨 Repay failed",
                )
                continue

            executed.append(result)
            await self._send_log(self._build_repay_log(position, result), silent=False)

        return executed

    async def generate_report(self) -> str:
        """Send a health summary of every configured position."""
        await self.refresh_prices()
        sections: list[str] = []

        for position in self._config.positions:
            account = await self._market.pool.get_user_account_data(position.user)
            policy = self._market.policies.get_policy(position.user)
            collateral, debt = self._market.pool.position_details(position.user)
            sections.append(
                f"{position.label} · {self._get_status(account.health_factor, policy)}\n"
                f"  Collateral: {accounting.build_asset_summary(collateral)}\n"
                f"  Debt: {accounting.build_asset_summary(debt)}\n"
                f"  HF: {self._format_hf(account.health_factor)}"
                f" · Band: [{policy.min_health_factor}, {policy.max_health_factor}]"
            )

        body = "\n\n".join(sections) if sections else "No positions configured."
        report = (
            f"📋 Deleverager Position Report\n"
            f"\n"
            f"{body}\n"
            f"\n"
            f"{self._now_str()} UTC"
        )

        await self._send_alert(report)
        logger.info("Position report sent")
        return report

    async def run_continuous(self, check_interval_minutes: int | None = None) -> None:
        """Run the keeper loop forever."""
        interval = check_interval_minutes or self._config.keeper.check_interval_minutes
        logger.info("Starting keeper loop (checking every %d minutes)", interval)

        while True:
            try:
                await self.check_and_repay()
                await asyncio.sleep(interval * 60)
            except Exception as e:
                logger.error("Error in keeper loop: %s", e)
                await asyncio.sleep(60)
