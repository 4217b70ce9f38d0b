"""Unit tests for sandbox risk arithmetic — pure functions, no I/O."""
from __future__ import annotations

from decimal import Decimal

from deleverager.sandbox.accounting import (
    build_asset_summary,
    calc_health_factor,
    resolve_price,
    to_units,
    weighted_fraction,
)

PRICES = {"WETH": Decimal(2000), "USDC": Decimal(1)}
ALIASES = {"aWETH": "WETH"}


# ---------------------------------------------------------------------------
# to_units
# ---------------------------------------------------------------------------


class TestToUnits:
    def test_six_decimals(self) -> None:
        assert to_units(1_500_000, 6) == Decimal("1.5")

    def test_zero_decimals(self) -> None:
        assert to_units(42, 0) == Decimal(42)

    def test_eighteen_decimals_exact(self) -> None:
        assert to_units(10**18 + 1, 18) == Decimal("1.000000000000000001")


# ---------------------------------------------------------------------------
# resolve_price
# ---------------------------------------------------------------------------


class TestResolvePrice:
    def test_direct(self) -> None:
        assert resolve_price("WETH", PRICES, ALIASES) == Decimal(2000)

    def test_alias(self) -> None:
        assert resolve_price("aWETH", PRICES, ALIASES) == Decimal(2000)

    def test_unknown(self) -> None:
        assert resolve_price("DOGE", PRICES, ALIASES) == 0


# ---------------------------------------------------------------------------
# weighted_fraction
# ---------------------------------------------------------------------------


class TestWeightedFraction:
    def test_single_asset(self) -> None:
        details = [{"value": Decimal(100), "liquidation_threshold_bps": 8250}]
        assert weighted_fraction(details, "liquidation_threshold_bps") == Decimal("0.825")

    def test_value_weighted(self) -> None:
        details = [
            {"value": Decimal(300), "liquidation_threshold_bps": 8000},
            {"value": Decimal(100), "liquidation_threshold_bps": 6000},
        ]
        assert weighted_fraction(details, "liquidation_threshold_bps") == Decimal("0.75")

    def test_no_collateral(self) -> None:
        assert weighted_fraction([], "ltv_bps") == 0


# ---------------------------------------------------------------------------
# calc_health_factor
# ---------------------------------------------------------------------------


class TestCalcHealthFactor:
    def test_normal(self) -> None:
        hf = calc_health_factor(Decimal(2000), Decimal(1700), Decimal("0.825"))
        assert hf.quantize(Decimal("0.0001")) == Decimal("0.9706")

    def test_no_debt_is_infinite(self) -> None:
        assert calc_health_factor(Decimal(2000), Decimal(0), Decimal("0.825")).is_infinite()


# ---------------------------------------------------------------------------
# build_asset_summary
# ---------------------------------------------------------------------------


class TestBuildAssetSummary:
    def test_with_assets(self) -> None:
        details = [
            {"symbol": "WETH", "amount": Decimal("1.5"), "price": Decimal(2000)},
            {"symbol": "USDC", "amount": Decimal(100), "price": Decimal(1)},
        ]
        assert (
            build_asset_summary(details)
            == "WETH (1.5000 @ $2,000.00), USDC (100.0000 @ $1.00)"
        )

    def test_empty(self) -> None:
        assert build_asset_summary([]) == "N/A"
