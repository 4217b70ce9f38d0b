"""Per-user health factor policies."""
from __future__ import annotations

import logging
from decimal import Decimal

from ..errors import InvalidRange
from ..models import UserPolicy

logger = logging.getLogger(__name__)


def _to_decimal(value: Decimal | float | int | str) -> Decimal:
    if isinstance(value, Decimal):
        return value
    # str() keeps 1.1 as 1.1 instead of its binary expansion
    return Decimal(str(value))


class PolicyStore:
    """Health factor band per user. Only the user may write their own policy."""

    def __init__(self) -> None:
        self._policies: dict[str, UserPolicy] = {}

    def set_policy(
        self,
        caller: str,
        min_health_factor: Decimal | float | int | str,
        max_health_factor: Decimal | float | int | str,
    ) -> UserPolicy:
        low = _to_decimal(min_health_factor)
        high = _to_decimal(max_health_factor)
        if high < low:
            raise InvalidRange(f"max health factor {high} is below min {low}")

        policy = UserPolicy(min_health_factor=low, max_health_factor=high)
        self._policies[caller] = policy
        logger.info("Policy for %s set to [%s, %s]", caller, low, high)
        return policy

    def get_policy(self, user: str) -> UserPolicy:
        """Return the user's policy, or the all-zero default if unset."""
        return self._policies.get(user, UserPolicy())

    def clear_policy(self, caller: str) -> bool:
        if self._policies.pop(caller, None) is None:
            return False
        logger.info("Policy for %s cleared", caller)
        return True

    def users(self) -> tuple[str, ...]:
        return tuple(self._policies)
