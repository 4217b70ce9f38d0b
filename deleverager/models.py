"""Data models — all frozen (immutable)."""
from __future__ import annotations

import json
from dataclasses import asdict, dataclass
from decimal import Decimal
from enum import IntEnum

INFINITE_HEALTH_FACTOR = Decimal("Infinity")


class RateMode(IntEnum):
    """Interest accrual scheme of a debt position."""

    STABLE = 1
    VARIABLE = 2


@dataclass(frozen=True)
class PermitSignature:
    """Signed one-time spend allowance. ``deadline == 0`` means no permit."""

    amount: int = 0
    deadline: int = 0
    v: int = 0
    r: str = ""
    s: str = ""

    @property
    def is_set(self) -> bool:
        return self.deadline != 0


NO_PERMIT = PermitSignature()


@dataclass(frozen=True)
class RequestedRepay:
    """What the operator asks for on behalf of a user."""

    user: str
    collateral_asset: str
    debt_asset: str
    collateral_amount: int
    debt_repay_amount: int
    rate_mode: RateMode = RateMode.VARIABLE
    use_native_path: bool = False
    collateral_as_receipt_token: bool = False
    debt_as_receipt_token: bool = False
    use_financing: bool = False

    @property
    def same_asset(self) -> bool:
        return self.collateral_asset == self.debt_asset


@dataclass(frozen=True)
class ExecutedRepay:
    """What actually happened once the operation committed."""

    user: str
    collateral_asset: str
    debt_asset: str
    debt_repaid: int
    collateral_bound: int
    collateral_swapped: int
    collateral_pulled: int
    fee: int
    premium: int = 0
    health_factor_before: Decimal = Decimal(0)
    health_factor_after: Decimal = Decimal(0)
    financed: bool = False


@dataclass(frozen=True)
class UserPolicy:
    """Health-factor band a user wants to be kept in."""

    min_health_factor: Decimal = Decimal(0)
    max_health_factor: Decimal = Decimal(0)

    @property
    def is_configured(self) -> bool:
        return self.max_health_factor > 0

    def contains(self, health_factor: Decimal) -> bool:
        return self.min_health_factor <= health_factor <= self.max_health_factor


@dataclass(frozen=True)
class FinancingContext:
    """Opaque payload carried through the flash loan back into the callback."""

    request: RequestedRepay
    permit: PermitSignature
    operator: str

    def encode(self) -> bytes:
        payload = {
            "request": asdict(self.request),
            "permit": asdict(self.permit),
            "operator": self.operator,
        }
        payload["request"]["rate_mode"] = int(self.request.rate_mode)
        return json.dumps(payload, sort_keys=True, separators=(",", ":")).encode()

    @classmethod
    def decode(cls, data: bytes) -> FinancingContext:
        payload = json.loads(data.decode())
        request = dict(payload["request"])
        request["rate_mode"] = RateMode(request["rate_mode"])
        return cls(
            request=RequestedRepay(**request),
            permit=PermitSignature(**payload["permit"]),
            operator=payload["operator"],
        )


@dataclass(frozen=True)
class ReserveTokens:
    """Ledger symbols backing one lending reserve."""

    receipt_token: str
    stable_debt_token: str
    variable_debt_token: str

    def debt_token(self, rate_mode: RateMode) -> str:
        if rate_mode == RateMode.STABLE:
            return self.stable_debt_token
        return self.variable_debt_token


@dataclass(frozen=True)
class AccountData:
    """Aggregated account risk data as reported by the lending pool."""

    total_collateral: Decimal
    total_debt: Decimal
    available_borrows: Decimal
    liquidation_threshold: Decimal
    ltv: Decimal
    health_factor: Decimal
