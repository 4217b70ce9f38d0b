"""Shared test fixtures and sample data."""
from __future__ import annotations

import textwrap
from decimal import Decimal
from pathlib import Path

import pytest

from deleverager.config import (
    AppConfig,
    AssetConfig,
    EmailConfig,
    KeeperConfig,
    MarketConfig,
    NotificationsConfig,
    PositionConfig,
    PriceOracleConfig,
    PythConfig,
    TelegramConfig,
)
from deleverager.sandbox import Market, build_market

OPERATOR = "operator"
ALICE = "alice"
LIQUIDITY = 1_000_000


# ---------------------------------------------------------------------------
# Sandbox market fixtures
# ---------------------------------------------------------------------------


def make_market_config(
    swap_fee_bps: int = 0,
    flash_loan_premium_bps: int = 9,
    strict_debt_approval: bool = False,
) -> MarketConfig:
    """Two whole-unit assets at price 1, so every quote is exactly 1:1."""
    return MarketConfig(
        admin="admin",
        native_asset="COLL",
        flash_loan_premium_bps=flash_loan_premium_bps,
        swap_fee_bps=swap_fee_bps,
        assets={
            "COLL": AssetConfig(
                symbol="COLL",
                decimals=0,
                price=Decimal(1),
                liquidation_threshold_bps=7500,
                ltv_bps=7000,
                liquidity=LIQUIDITY,
            ),
            "DEBT": AssetConfig(
                symbol="DEBT",
                decimals=0,
                price=Decimal(1),
                liquidation_threshold_bps=8000,
                ltv_bps=7500,
                liquidity=LIQUIDITY,
                strict_approval=strict_debt_approval,
            ),
        },
    )


def make_position(
    deposits: dict[str, int],
    borrows: dict[str, int],
    min_hf: str = "1.0",
    max_hf: str = "1.5",
    receipt: bool = False,
    user: str = ALICE,
) -> PositionConfig:
    return PositionConfig(
        label=user,
        user=user,
        collateral="COLL",
        debt="DEBT",
        min_health_factor=Decimal(min_hf),
        max_health_factor=Decimal(max_hf),
        collateral_as_receipt_token=receipt,
        deposits=deposits,
        borrows=borrows,
    )


def make_market(*positions: PositionConfig, **market_kwargs) -> Market:
    return build_market(
        make_market_config(**market_kwargs), positions, operators=(OPERATOR,)
    )


@pytest.fixture()
def market_factory():
    return make_market


@pytest.fixture()
def position_factory():
    return make_position


@pytest.fixture()
def market() -> Market:
    """Alice at HF 0.9: 3600 aCOLL (LT 0.75) against 3000 variable DEBT,
    plus 1100 COLL in her wallet approved to the orchestrator."""
    mkt = make_market(make_position({"COLL": 3600}, {"DEBT": 3000}))
    mkt.ledger.mint("COLL", ALICE, 1100)
    return mkt


# ---------------------------------------------------------------------------
# Config fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def sample_pyth_config() -> PythConfig:
    return PythConfig(
        hermes_url="https://hermes.pyth.network/v2/updates/price/latest",
        feeds={"WETH": "aaa111", "ETH": "aaa111", "USDC": "bbb222"},
    )


@pytest.fixture()
def sample_app_config(sample_pyth_config: PythConfig) -> AppConfig:
    """WETH collateral against USDC debt at HF ~0.97, band [1.1, 1.5]."""
    return AppConfig(
        keeper=KeeperConfig(operator="0xKEEPER", slippage_bps=100),
        market=MarketConfig(
            admin="0xADMIN",
            native_asset="WETH",
            flash_loan_premium_bps=9,
            swap_fee_bps=30,
            assets={
                "WETH": AssetConfig(
                    symbol="WETH",
                    decimals=18,
                    price=Decimal(2000),
                    liquidation_threshold_bps=8250,
                    ltv_bps=8000,
                    liquidity=10**21,
                ),
                "USDC": AssetConfig(
                    symbol="USDC",
                    decimals=6,
                    price=Decimal(1),
                    liquidation_threshold_bps=8750,
                    ltv_bps=8500,
                    liquidity=10**13,
                    strict_approval=True,
                ),
            },
        ),
        positions=(
            PositionConfig(
                label="test-position",
                user="0xA11CE000000000000000000000000000000000001",
                collateral="WETH",
                debt="USDC",
                min_health_factor=Decimal("1.1"),
                max_health_factor=Decimal("1.5"),
                collateral_as_receipt_token=True,
                deposits={"WETH": 10**18},
                borrows={"USDC": 1_700 * 10**6},
            ),
        ),
        price_oracle=PriceOracleConfig(provider="static", pyth=sample_pyth_config),
        notifications=NotificationsConfig(
            telegram=TelegramConfig(
                enabled=True,
                alert_bot_token="fake-alert-token",
                log_bot_token="fake-log-token",
                chat_id="12345",
            ),
            email=EmailConfig(enabled=False),
        ),
    )


# ---------------------------------------------------------------------------
# Config YAML fixture
# ---------------------------------------------------------------------------

SAMPLE_YAML = textwrap.dedent("""\
    keeper:
      operator: "0xKEEPER"
      check_interval_minutes: 5
      target_health_factor: 1.25
      slippage_bps: 50
    market:
      admin: "0xADMIN"
      native_asset: WETH
      flash_loan_premium_bps: 9
      swap_fee_bps: 30
      assets:
        WETH:
          decimals: 18
          price: 2000
          liquidation_threshold_bps: 8250
          ltv_bps: 8000
          liquidity: 1000000000000000000000
        USDC:
          decimals: 6
          price: 1
          liquidation_threshold_bps: 8750
          liquidity: 10000000000000
          strict_approval: true
    positions:
      - label: test-position
        user: "0xUSER"
        collateral: WETH
        debt: USDC
        rate_mode: variable
        min_health_factor: 1.1
        max_health_factor: 1.5
        deposits: {WETH: 1000000000000000000}
        borrows: {USDC: 1700000000}
    price_oracle:
      provider: pyth
      pyth:
        hermes_url: "https://hermes.example.com"
        feeds: {WETH: "aaa", USDC: "bbb"}
    notifications:
      telegram:
        enabled: true
        alert_bot_token: "tok1"
        log_bot_token: "tok2"
        chat_id: "999"
      email:
        enabled: false
""")


@pytest.fixture()
def sample_yaml_path(tmp_path: Path) -> Path:
    cfg_file = tmp_path / "config.yaml"
    cfg_file.write_text(SAMPLE_YAML)
    return cfg_file
