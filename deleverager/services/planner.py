"""Repay sizing — how much debt to repay to land a health factor on target."""
from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_CEILING, ROUND_FLOOR, Decimal

from ..models import AccountData, UserPolicy

BPS = Decimal(10_000)


@dataclass(frozen=True)
class RepayPlan:
    debt_repay_amount: int
    collateral_amount: int
    target_health_factor: Decimal


def target_for(policy: UserPolicy, override: Decimal | None = None) -> Decimal:
    """Keeper target: the override clamped into the band, else the band's middle."""
    if override is None:
        return (policy.min_health_factor + policy.max_health_factor) / 2
    return min(max(override, policy.min_health_factor), policy.max_health_factor)


def plan_repay(
    account: AccountData,
    target_health_factor: Decimal,
    *,
    outstanding_debt: int,
    debt_price: Decimal,
    debt_decimals: int,
    collateral_price: Decimal,
    collateral_decimals: int,
    collateral_threshold: Decimal,
    fee_rate: Decimal,
    cost_bps: int = 0,
    slippage_bps: int = 0,
) -> RepayPlan | None:
    """Size a repay so the account ends at ``target_health_factor``.

    Repaying debt worth ``x`` costs ``x * k`` of collateral value, with
    ``k = (1 + fee_rate) * (1 + cost_bps)``. When the collateral comes out
    of the pool (``collateral_threshold > 0``) it also stops counting towards
    the health factor, so solving

        (C * LT - x * k * lt_c) / (D - x) = T

    gives ``x = (T * D - C * LT) / (T - k * lt_c)``.

    Returns None when the account is already at or above target, or when no
    repay can reach it.
    """
    total_debt = account.total_debt
    weighted_collateral = account.total_collateral * account.liquidation_threshold
    cost = (1 + fee_rate) * (1 + Decimal(cost_bps) / BPS)

    denominator = target_health_factor - cost * collateral_threshold
    numerator = target_health_factor * total_debt - weighted_collateral
    if numerator <= 0 or denominator <= 0 or debt_price <= 0 or collateral_price <= 0:
        return None

    repay_value = min(numerator / denominator, total_debt)
    debt_amount = int(
        (repay_value / debt_price * Decimal(10) ** debt_decimals).to_integral_value(
            rounding=ROUND_FLOOR
        )
    )
    debt_amount = min(debt_amount, outstanding_debt)
    if debt_amount <= 0:
        return None
    repay_value = Decimal(debt_amount) / Decimal(10) ** debt_decimals * debt_price

    swap_value = repay_value * (1 + Decimal(cost_bps) / BPS) * (1 + Decimal(slippage_bps) / BPS)
    collateral_amount = int(
        (swap_value / collateral_price * Decimal(10) ** collateral_decimals).to_integral_value(
            rounding=ROUND_CEILING
        )
    )
    return RepayPlan(
        debt_repay_amount=debt_amount,
        collateral_amount=collateral_amount,
        target_health_factor=target_health_factor,
    )
