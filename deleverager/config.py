"""Configuration loader — reads config.yaml, interpolates env vars, validates."""
from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass, field
from decimal import Decimal
from pathlib import Path
from typing import Any

import yaml
from dotenv import load_dotenv

from .models import RateMode

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Frozen config dataclasses
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class KeeperConfig:
    operator: str = ""
    check_interval_minutes: int = 15
    # None: aim for the middle of each user's band
    target_health_factor: Decimal | None = None
    slippage_bps: int = 100
    use_financing: bool = False


@dataclass(frozen=True)
class AssetConfig:
    symbol: str = ""
    decimals: int = 18
    price: Decimal = Decimal(0)
    liquidation_threshold_bps: int = 8000
    ltv_bps: int = 7500
    liquidity: int = 0
    strict_approval: bool = False


@dataclass(frozen=True)
class MarketConfig:
    admin: str = "admin"
    orchestrator: str = "repay-orchestrator"
    pool: str = "lending-pool"
    exchange: str = "exchange"
    native_asset: str = "WETH"
    flash_loan_premium_bps: int = 9
    swap_fee_bps: int = 30
    assets: dict[str, AssetConfig] = field(default_factory=dict)


@dataclass(frozen=True)
class PositionConfig:
    label: str = ""
    user: str = ""
    collateral: str = ""
    debt: str = ""
    rate_mode: RateMode = RateMode.VARIABLE
    min_health_factor: Decimal = Decimal(0)
    max_health_factor: Decimal = Decimal(0)
    collateral_as_receipt_token: bool = True
    use_native_path: bool = False
    deposits: dict[str, int] = field(default_factory=dict)
    borrows: dict[str, int] = field(default_factory=dict)


@dataclass(frozen=True)
class PythConfig:
    hermes_url: str = "https://hermes.pyth.network/v2/updates/price/latest"
    feeds: dict[str, str] = field(default_factory=dict)
    # Seconds; older updates are ignored. 0 disables the check.
    max_price_age: int = 60


@dataclass(frozen=True)
class PriceOracleConfig:
    provider: str = "static"
    pyth: PythConfig = field(default_factory=PythConfig)


@dataclass(frozen=True)
class TelegramConfig:
    enabled: bool = False
    alert_bot_token: str = ""
    log_bot_token: str = ""
    chat_id: str = ""


@dataclass(frozen=True)
class EmailConfig:
    enabled: bool = False
    alert_email: str = ""
    smtp_server: str = "smtp.gmail.com"
    smtp_port: int = 587
    sender_email: str = ""
    sender_password: str = ""


@dataclass(frozen=True)
class NotificationsConfig:
    telegram: TelegramConfig = field(default_factory=TelegramConfig)
    email: EmailConfig = field(default_factory=EmailConfig)


@dataclass(frozen=True)
class AppConfig:
    keeper: KeeperConfig = field(default_factory=KeeperConfig)
    market: MarketConfig = field(default_factory=MarketConfig)
    positions: tuple[PositionConfig, ...] = ()
    price_oracle: PriceOracleConfig = field(default_factory=PriceOracleConfig)
    notifications: NotificationsConfig = field(default_factory=NotificationsConfig)


# ---------------------------------------------------------------------------
# Env interpolation
# ---------------------------------------------------------------------------

_ENV_VAR_RE = re.compile(r"\$\{([^}]+)}")


def _interpolate_env(value: Any) -> Any:
    """Recursively replace ${VAR} references with environment variable values."""
    if isinstance(value, str):
        return _ENV_VAR_RE.sub(lambda m: os.environ.get(m.group(1), ""), value)
    if isinstance(value, dict):
        return {k: _interpolate_env(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_interpolate_env(item) for item in value]
    return value


# ---------------------------------------------------------------------------
# YAML → dataclass builders
# ---------------------------------------------------------------------------


def _decimal(value: Any) -> Decimal:
    return Decimal(str(value))


def _rate_mode(value: Any) -> RateMode:
    if isinstance(value, str):
        try:
            return RateMode[value.upper()]
        except KeyError:
            raise ValueError(f"Unknown rate mode '{value}'") from None
    return RateMode(int(value))


def _build_keeper(raw: dict[str, Any]) -> KeeperConfig:
    target = raw.get("target_health_factor")
    return KeeperConfig(
        operator=raw.get("operator", ""),
        check_interval_minutes=int(raw.get("check_interval_minutes", 15)),
        target_health_factor=None if target is None else _decimal(target),
        slippage_bps=int(raw.get("slippage_bps", 100)),
        use_financing=bool(raw.get("use_financing", False)),
    )


def _build_assets(raw: dict[str, Any]) -> dict[str, AssetConfig]:
    assets: dict[str, AssetConfig] = {}
    for symbol, cfg in raw.items():
        if int(cfg.get("transfer_fee_bps", 0)):
            # Exact-out swaps and flash loan settlement need the full amount delivered.
            raise ValueError(f"Asset '{symbol}': fee-on-transfer tokens are not supported")
        threshold = int(cfg.get("liquidation_threshold_bps", 8000))
        assets[symbol] = AssetConfig(
            symbol=symbol,
            decimals=int(cfg.get("decimals", 18)),
            price=_decimal(cfg.get("price", 0)),
            liquidation_threshold_bps=threshold,
            ltv_bps=int(cfg.get("ltv_bps", threshold)),
            liquidity=int(cfg.get("liquidity", 0)),
            strict_approval=bool(cfg.get("strict_approval", False)),
        )
    return assets


def _build_market(raw: dict[str, Any]) -> MarketConfig:
    return MarketConfig(
        admin=raw.get("admin", "admin"),
        orchestrator=raw.get("orchestrator", "repay-orchestrator"),
        pool=raw.get("pool", "lending-pool"),
        exchange=raw.get("exchange", "exchange"),
        native_asset=raw.get("native_asset", "WETH"),
        flash_loan_premium_bps=int(raw.get("flash_loan_premium_bps", 9)),
        swap_fee_bps=int(raw.get("swap_fee_bps", 30)),
        assets=_build_assets(raw.get("assets", {})),
    )


def _build_positions(raw: list[dict[str, Any]]) -> tuple[PositionConfig, ...]:
    positions: list[PositionConfig] = []
    for p in raw:
        positions.append(
            PositionConfig(
                label=p.get("label", ""),
                user=p.get("user", ""),
                collateral=p.get("collateral", ""),
                debt=p.get("debt", ""),
                rate_mode=_rate_mode(p.get("rate_mode", "variable")),
                min_health_factor=_decimal(p.get("min_health_factor", 0)),
                max_health_factor=_decimal(p.get("max_health_factor", 0)),
                collateral_as_receipt_token=bool(p.get("collateral_as_receipt_token", True)),
                use_native_path=bool(p.get("use_native_path", False)),
                deposits={k: int(v) for k, v in p.get("deposits", {}).items()},
                borrows={k: int(v) for k, v in p.get("borrows", {}).items()},
            )
        )
    return tuple(positions)


def _build_price_oracle(raw: dict[str, Any]) -> PriceOracleConfig:
    pyth_raw = raw.get("pyth", {})
    return PriceOracleConfig(
        provider=raw.get("provider", "static"),
        pyth=PythConfig(
            hermes_url=pyth_raw.get("hermes_url", PythConfig.hermes_url),
            feeds=dict(pyth_raw.get("feeds", {})),
            max_price_age=int(pyth_raw.get("max_price_age", PythConfig.max_price_age)),
        ),
    )


def _build_notifications(raw: dict[str, Any]) -> NotificationsConfig:
    tg = raw.get("telegram", {})
    em = raw.get("email", {})
    return NotificationsConfig(
        telegram=TelegramConfig(
            enabled=bool(tg.get("enabled", False)),
            alert_bot_token=tg.get("alert_bot_token", ""),
            log_bot_token=tg.get("log_bot_token", ""),
            chat_id=tg.get("chat_id", ""),
        ),
        email=EmailConfig(
            enabled=bool(em.get("enabled", False)),
            alert_email=em.get("alert_email", ""),
            smtp_server=em.get("smtp_server", "smtp.gmail.com"),
            smtp_port=int(em.get("smtp_port", 587)),
            sender_email=em.get("sender_email", ""),
            sender_password=em.get("sender_password", ""),
        ),
    )


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def load_config(config_path: str | Path | None = None) -> AppConfig:
    """Load and validate application configuration from YAML + .env.

    Args:
        config_path: Path to config.yaml. Defaults to ``config.yaml`` in the
            project root (two levels up from this file).
    """
    load_dotenv()

    if config_path is None:
        config_path = Path(__file__).resolve().parent.parent / "config.yaml"
    config_path = Path(config_path)

    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    with open(config_path) as f:
        raw = yaml.safe_load(f) or {}

    raw = _interpolate_env(raw)

    cfg = AppConfig(
        keeper=_build_keeper(raw.get("keeper", {})),
        market=_build_market(raw.get("market", {})),
        positions=_build_positions(raw.get("positions", [])),
        price_oracle=_build_price_oracle(raw.get("price_oracle", {})),
        notifications=_build_notifications(raw.get("notifications", {})),
    )

    _validate(cfg)
    logger.info("Configuration loaded from %s", config_path)
    return cfg


def _validate(cfg: AppConfig) -> None:
    """Raise on invalid configuration."""
    if not cfg.keeper.operator:
        raise ValueError("keeper.operator must be set")
    if not cfg.positions:
        raise ValueError("At least one position must be configured")

    assets = cfg.market.assets
    if cfg.market.native_asset not in assets:
        raise ValueError(
            f"Native asset '{cfg.market.native_asset}' is not a listed asset"
        )

    for position in cfg.positions:
        if not position.user:
            raise ValueError(f"Position '{position.label}' has no user")
        for symbol in (
            position.collateral,
            position.debt,
            *position.deposits,
            *position.borrows,
        ):
            if symbol not in assets:
                raise ValueError(
                    f"Position '{position.label}' references unknown asset '{symbol}'"
                )
        if position.max_health_factor < position.min_health_factor:
            raise ValueError(
                f"Position '{position.label}' has max_health_factor below min_health_factor"
            )

    if cfg.price_oracle.provider not in ("static", "pyth"):
        raise ValueError(f"Unknown price oracle provider '{cfg.price_oracle.provider}'")
    if cfg.price_oracle.pyth.max_price_age < 0:
        raise ValueError("price_oracle.pyth.max_price_age must not be negative")
