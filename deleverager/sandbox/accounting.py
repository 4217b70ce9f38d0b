"""Pure risk arithmetic for the sandbox lending pool — no I/O."""
from __future__ import annotations

from decimal import Decimal
from typing import Any

from ..models import INFINITE_HEALTH_FACTOR

BPS = Decimal(10_000)


def to_units(amount: int, decimals: int) -> Decimal:
    """Convert a raw integer amount into whole token units.

    Examples:
        to_units(1_500_000, 6) → Decimal("1.5")
    """
    return Decimal(amount) / (Decimal(10) ** decimals)


def resolve_price(
    symbol: str,
    prices: dict[str, Decimal],
    aliases: dict[str, str],
) -> Decimal:
    """Resolve the price for a token, falling back to its alias (e.g. aWETH → WETH)."""
    price = prices.get(symbol, Decimal(0))
    if price == 0 and symbol in aliases:
        price = prices.get(aliases[symbol], Decimal(0))
    return price


def weighted_fraction(details: list[dict[str, Any]], key: str) -> Decimal:
    """Collateral-value-weighted average of a basis-point field, as a fraction."""
    total = sum((d["value"] for d in details), Decimal(0))
    if total <= 0:
        return Decimal(0)
    weighted = sum(
        (d["value"] * d[key] for d in details), Decimal(0)
    )
    return weighted / total / BPS


def calc_health_factor(
    total_collateral: Decimal,
    total_debt: Decimal,
    liquidation_threshold: Decimal,
) -> Decimal:
    """health_factor = collateral * liquidation_threshold / debt

    ``liquidation_threshold`` is a fraction (0.85 for 85%). Accounts without
    debt have an infinite health factor.
    """
    if total_debt <= 0:
        return INFINITE_HEALTH_FACTOR
    return total_collateral * liquidation_threshold / total_debt


def build_asset_summary(details: list[dict[str, Any]]) -> str:
    """Human-readable summary such as ``WETH (1.5000 @ $2,000.00)``."""
    parts = [
        f"{d['symbol']} ({d['amount']:.4f} @ ${d['price']:,.2f})"
        for d in details
    ]
    return ", ".join(parts) if parts else "N/A"
