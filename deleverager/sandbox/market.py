"""Wire a sandbox market (ledger, pool, exchange, registries, orchestrator) from config."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal

from ..config import MarketConfig, PositionConfig
from ..ledger import TokenLedger
from ..registry import PolicyStore, Whitelist
from ..services.orchestrator import RepayOrchestrator
from .exchange import SandboxExchange
from .lending_pool import SandboxLendingPool

logger = logging.getLogger(__name__)

UNLIMITED_ALLOWANCE = 2**256 - 1


@dataclass
class Market:
    ledger: TokenLedger
    pool: SandboxLendingPool
    exchange: SandboxExchange
    whitelist: Whitelist
    policies: PolicyStore
    orchestrator: RepayOrchestrator

    def set_prices(self, prices: dict[str, Decimal]) -> None:
        self.pool.set_prices(prices)
        self.exchange.set_prices(prices)


def build_market(
    config: MarketConfig,
    positions: tuple[PositionConfig, ...] = (),
    operators: tuple[str, ...] = (),
) -> Market:
    """Create a funded market and open the configured positions."""
    ledger = TokenLedger()
    pool = SandboxLendingPool(
        ledger, address=config.pool, flash_loan_premium_bps=config.flash_loan_premium_bps
    )
    exchange = SandboxExchange(
        ledger,
        address=config.exchange,
        native_asset=config.native_asset,
        fee_bps=config.swap_fee_bps,
    )

    for symbol, asset in config.assets.items():
        reserve = pool.add_reserve(
            symbol,
            asset.decimals,
            asset.price,
            asset.liquidation_threshold_bps,
            asset.ltv_bps,
        )
        exchange.list_asset(symbol, asset.decimals, asset.price)
        exchange.alias(reserve.tokens.receipt_token, symbol)

        if asset.strict_approval:
            ledger.require_zero_allowance_reset(symbol)

        # Both venues start with the same inventory; the exchange also holds
        # receipt tokens so debt can be bought back in that form.
        ledger.mint(symbol, pool.address, asset.liquidity)
        ledger.mint(symbol, exchange.address, asset.liquidity)
        ledger.mint(reserve.tokens.receipt_token, exchange.address, asset.liquidity)

    whitelist = Whitelist(admin=config.admin)
    for operator in operators:
        whitelist.add(config.admin, operator)

    policies = PolicyStore()
    orchestrator = RepayOrchestrator(
        config.orchestrator, pool, exchange, ledger, whitelist, policies
    )

    for position in positions:
        open_position(ledger, pool, policies, orchestrator.address, position)

    logger.info(
        "Sandbox market ready: %d assets, %d positions, %d operators",
        len(config.assets),
        len(positions),
        len(whitelist),
    )
    return Market(ledger, pool, exchange, whitelist, policies, orchestrator)


def open_position(
    ledger: TokenLedger,
    pool: SandboxLendingPool,
    policies: PolicyStore,
    spender: str,
    position: PositionConfig,
) -> None:
    """Seed a user's deposits and borrows, policy and allowance to ``spender``."""
    for symbol, amount in position.deposits.items():
        ledger.mint(pool.reserve(symbol).tokens.receipt_token, position.user, amount)
        ledger.mint(symbol, pool.address, amount)
    for symbol, amount in position.borrows.items():
        tokens = pool.reserve(symbol).tokens
        ledger.mint(tokens.debt_token(position.rate_mode), position.user, amount)
        # Borrowed funds leave the pool for the user wallet.
        ledger.burn(symbol, pool.address, amount)
        ledger.mint(symbol, position.user, amount)

    if position.max_health_factor > 0:
        policies.set_policy(
            position.user, position.min_health_factor, position.max_health_factor
        )

    pulled = position.collateral
    if position.collateral_as_receipt_token:
        pulled = pool.reserve(position.collateral).tokens.receipt_token
    ledger.set_allowance(pulled, position.user, spender, UNLIMITED_ALLOWANCE)
