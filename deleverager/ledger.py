"""
ledger.py - In-memory token ledger with atomic units of work

TokenLedger stands in for the chain state every deleveraging call runs against:
token balances, spend allowances and consumed permits. It is the only place
that mutates balances.

Key properties:
    - ``atomic()`` scopes are all-or-nothing: on any exception every balance,
      allowance and permit is restored to its state at scope entry
    - the outermost scope holds a lock, so two operations never interleave
    - nested scopes act as save points and join the outer unit
    - tokens may deduct a fee on transfer, or reject non-zero to non-zero
      approvals, like some real-world assets do
"""
from __future__ import annotations

import asyncio
import copy
import logging
import time
from collections import defaultdict
from contextlib import asynccontextmanager
from contextvars import ContextVar
from typing import AsyncIterator, Dict, Set, Tuple

from .models import PermitSignature

logger = logging.getLogger(__name__)

# Ledgers whose outermost unit is open in the current task.
_open_units: ContextVar[Tuple[int, ...]] = ContextVar("open_units", default=())


class LedgerError(Exception):
    """Base class for ledger failures."""


class InsufficientBalance(LedgerError):
    pass


class InsufficientAllowance(LedgerError):
    pass


class UnsafeApproval(LedgerError):
    """Token rejects changing a non-zero allowance to another non-zero value."""


class PermitExpired(LedgerError):
    pass


class PermitReused(LedgerError):
    pass


class TokenLedger:
    """
    Balances, allowances and permits for every token in the market.

    Example:
        ledger = TokenLedger()
        ledger.mint("USDC", "alice", 1_000)
        async with ledger.atomic():
            await ledger.transfer("USDC", "alice", "bob", 400)
    """

    def __init__(self, timestamp: int | None = None) -> None:
        self.timestamp = int(time.time()) if timestamp is None else timestamp
        self._balances: Dict[str, Dict[str, int]] = defaultdict(lambda: defaultdict(int))
        self._allowances: Dict[Tuple[str, str, str], int] = {}
        self._used_permits: Set[Tuple[str, str, int, str, str]] = set()
        self._transfer_fee_bps: Dict[str, int] = {}
        self._strict_approval: Set[str] = set()
        self._lock = asyncio.Lock()

    # ------------------------------------------------------------------
    # Token configuration
    # ------------------------------------------------------------------

    def set_transfer_fee(self, token: str, fee_bps: int) -> None:
        """Deduct ``fee_bps`` from every transfer of ``token``."""
        if not 0 <= fee_bps < 10_000:
            raise ValueError(f"Invalid transfer fee for {token}: {fee_bps}")
        self._transfer_fee_bps[token] = fee_bps

    def require_zero_allowance_reset(self, token: str) -> None:
        self._strict_approval.add(token)

    # ------------------------------------------------------------------
    # Views
    # ------------------------------------------------------------------

    async def balance_of(self, token: str, holder: str) -> int:
        return self.balance(token, holder)

    def balance(self, token: str, holder: str) -> int:
        """Synchronous balance lookup for setup code and tests."""
        if token not in self._balances:
            return 0
        return self._balances[token].get(holder, 0)

    def total_supply(self, token: str) -> int:
        return sum(self._balances.get(token, {}).values())

    def holdings(self) -> dict[str, dict[str, int]]:
        """Plain copy of every non-zero balance, keyed by token then holder."""
        return {
            token: {holder: amount for holder, amount in holders.items() if amount}
            for token, holders in self._balances.items()
            if any(holders.values())
        }

    async def allowance(self, token: str, owner: str, spender: str) -> int:
        return self._allowances.get((token, owner, spender), 0)

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def mint(self, token: str, to: str, amount: int) -> None:
        self._require_amount(amount)
        self._balances[token][to] += amount

    def burn(self, token: str, holder: str, amount: int) -> None:
        self._require_amount(amount)
        self._debit(token, holder, amount)

    def set_allowance(self, token: str, owner: str, spender: str, amount: int) -> None:
        """Setup helper standing in for an approve() signed by ``owner``."""
        self._require_amount(amount)
        self._allowances[(token, owner, spender)] = amount

    async def transfer(self, token: str, sender: str, to: str, amount: int) -> int:
        """Move ``amount`` and return what the recipient actually received."""
        self._require_amount(amount)
        self._debit(token, sender, amount)
        received = amount - amount * self._transfer_fee_bps.get(token, 0) // 10_000
        self._balances[token][to] += received
        logger.debug("transfer %s %d %s -> %s (received %d)", token, amount, sender, to, received)
        return received

    async def transfer_from(
        self, token: str, spender: str, owner: str, to: str, amount: int
    ) -> int:
        """Move ``amount`` from ``owner`` using ``spender``'s allowance."""
        self._require_amount(amount)
        key = (token, owner, spender)
        allowed = self._allowances.get(key, 0)
        if allowed < amount:
            raise InsufficientAllowance(
                f"{spender} may spend {allowed} {token} of {owner}, needs {amount}"
            )
        self._allowances[key] = allowed - amount
        return await self.transfer(token, owner, to, amount)

    async def approve(self, token: str, owner: str, spender: str, amount: int) -> None:
        self._require_amount(amount)
        key = (token, owner, spender)
        current = self._allowances.get(key, 0)
        if token in self._strict_approval and current != 0 and amount != 0:
            raise UnsafeApproval(
                f"{token} allowance of {spender} must be reset to zero first"
            )
        self._allowances[key] = amount

    async def permit(
        self, token: str, owner: str, spender: str, signature: PermitSignature
    ) -> None:
        """Grant a one-time allowance from a signed permit.

        Signature verification itself is the token's business; the ledger
        only enforces the deadline and single use.
        """
        if signature.deadline < self.timestamp:
            raise PermitExpired(
                f"Permit for {token} expired at {signature.deadline} (now {self.timestamp})"
            )
        key = (token, owner, signature.v, signature.r, signature.s)
        if key in self._used_permits:
            raise PermitReused(f"Permit for {token} of {owner} already consumed")
        self._used_permits.add(key)
        self._allowances[(token, owner, spender)] = signature.amount

    # ------------------------------------------------------------------
    # Atomic units
    # ------------------------------------------------------------------

    @asynccontextmanager
    async def atomic(self) -> AsyncIterator[None]:
        """All-or-nothing scope over every ledger mutation made inside it."""
        open_units = _open_units.get()
        if id(self) in open_units:
            async with self._savepoint():
                yield
            return

        async with self._lock:
            token = _open_units.set(open_units + (id(self),))
            try:
                async with self._savepoint():
                    yield
            finally:
                _open_units.reset(token)

    @asynccontextmanager
    async def _savepoint(self) -> AsyncIterator[None]:
        snapshot = self._snapshot()
        try:
            yield
        except BaseException:
            self._restore(snapshot)
            logger.debug("Atomic unit rolled back")
            raise

    def _snapshot(self) -> tuple:
        return (
            copy.deepcopy(self._balances),
            dict(self._allowances),
            set(self._used_permits),
        )

    def _restore(self, snapshot: tuple) -> None:
        balances, allowances, used_permits = snapshot
        self._balances = balances
        self._allowances = allowances
        self._used_permits = used_permits

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    @staticmethod
    def _require_amount(amount: int) -> None:
        if amount < 0:
            raise LedgerError(f"Negative amount: {amount}")

    def _debit(self, token: str, holder: str, amount: int) -> None:
        available = self.balance(token, holder)
        if available < amount:
            raise InsufficientBalance(
                f"{holder} holds {available} {token}, needs {amount}"
            )
        self._balances[token][holder] = available - amount
