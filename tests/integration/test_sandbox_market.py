"""Integration tests for the sandbox lending pool and exchange."""
from __future__ import annotations

from decimal import Decimal
from typing import Sequence

import pytest

from deleverager.ledger import InsufficientAllowance, TokenLedger
from deleverager.models import RateMode
from deleverager.sandbox import SandboxExchange, SandboxLendingPool
from deleverager.sandbox.errors import (
    ExcessiveInputAmount,
    FlashLoanNotRepaid,
    UnknownAsset,
    UnknownReserve,
)


@pytest.fixture()
def ledger() -> TokenLedger:
    return TokenLedger()


@pytest.fixture()
def pool(ledger: TokenLedger) -> SandboxLendingPool:
    pool = SandboxLendingPool(ledger, flash_loan_premium_bps=9)
    pool.add_reserve("WETH", 18, Decimal(2000), 8250, 8000)
    pool.add_reserve("USDC", 6, Decimal(1), 8750)
    ledger.mint("WETH", pool.address, 10**21)
    ledger.mint("USDC", pool.address, 10**12)
    return pool


@pytest.fixture()
def exchange(ledger: TokenLedger) -> SandboxExchange:
    exchange = SandboxExchange(ledger, native_asset="WETH", fee_bps=30)
    exchange.list_asset("WETH", 18, Decimal(2000))
    exchange.list_asset("USDC", 6, Decimal(1))
    exchange.list_asset("DAI", 18, Decimal(1))
    exchange.alias("aWETH", "WETH")
    for token, amount in (("WETH", 10**21), ("USDC", 10**12), ("DAI", 10**24)):
        ledger.mint(token, exchange.address, amount)
    return exchange


class _Receiver:
    """Flash loan receiver with a configurable behaviour."""

    def __init__(self, ledger: TokenLedger, pool: SandboxLendingPool, repay: bool, result: bool = True):
        self.address = "receiver"
        self._ledger = ledger
        self._pool = pool
        self._repay = repay
        self._result = result
        self.calls: list[tuple] = []

    async def execute_operation(
        self,
        assets: Sequence[str],
        amounts: Sequence[int],
        premiums: Sequence[int],
        initiator: str,
        params: bytes,
        *,
        caller: str,
    ) -> bool:
        self.calls.append((list(assets), list(amounts), list(premiums), initiator, caller))
        if self._repay:
            await self._ledger.approve(
                assets[0], self.address, self._pool.address, amounts[0] + premiums[0]
            )
        return self._result


class TestLendingPool:
    @pytest.mark.asyncio
    async def test_deposit_borrow_and_account_data(
        self, ledger: TokenLedger, pool: SandboxLendingPool
    ) -> None:
        ledger.mint("WETH", "alice", 10**18)
        await ledger.approve("WETH", "alice", pool.address, 10**18)
        await pool.deposit("alice", "WETH", 10**18, "alice")
        await pool.borrow("alice", "USDC", 1_000 * 10**6, RateMode.VARIABLE)

        assert ledger.balance("aWETH", "alice") == 10**18
        assert ledger.balance("variableDebtUSDC", "alice") == 1_000 * 10**6
        assert ledger.balance("USDC", "alice") == 1_000 * 10**6

        account = await pool.get_user_account_data("alice")
        assert account.total_collateral == Decimal(2000)
        assert account.total_debt == Decimal(1000)
        assert account.liquidation_threshold == Decimal("0.825")
        assert account.available_borrows == Decimal(600)
        assert account.health_factor == Decimal("1.65")

    @pytest.mark.asyncio
    async def test_no_debt_is_infinite(self, pool: SandboxLendingPool) -> None:
        account = await pool.get_user_account_data("nobody")
        assert account.health_factor.is_infinite()

    @pytest.mark.asyncio
    async def test_repay_caps_at_owed(
        self, ledger: TokenLedger, pool: SandboxLendingPool
    ) -> None:
        ledger.mint("stableDebtUSDC", "alice", 300)
        ledger.mint("USDC", "payer", 1_000)
        await ledger.approve("USDC", "payer", pool.address, 1_000)

        repaid = await pool.repay("payer", "USDC", 1_000, RateMode.STABLE, "alice")

        assert repaid == 300
        assert ledger.balance("stableDebtUSDC", "alice") == 0
        assert ledger.balance("USDC", "payer") == 700

    @pytest.mark.asyncio
    async def test_repay_without_debt_returns_zero(self, pool: SandboxLendingPool) -> None:
        assert await pool.repay("payer", "USDC", 1_000, RateMode.VARIABLE, "alice") == 0

    @pytest.mark.asyncio
    async def test_withdraw_burns_receipt_token(
        self, ledger: TokenLedger, pool: SandboxLendingPool
    ) -> None:
        ledger.mint("aWETH", "alice", 5 * 10**17)
        received = await pool.withdraw("alice", "WETH", 2 * 10**17, "bob")
        assert received == 2 * 10**17
        assert ledger.balance("aWETH", "alice") == 3 * 10**17
        assert ledger.balance("WETH", "bob") == 2 * 10**17

    @pytest.mark.asyncio
    async def test_unknown_reserve(self, pool: SandboxLendingPool) -> None:
        with pytest.raises(UnknownReserve):
            await pool.get_reserve_tokens("DOGE")

    def test_set_prices_ignores_unlisted(self, pool: SandboxLendingPool) -> None:
        pool.set_prices({"WETH": Decimal(1500), "DOGE": Decimal(1)})
        assert pool.price("WETH") == Decimal(1500)
        with pytest.raises(UnknownReserve):
            pool.price("DOGE")


class TestFlashLoan:
    @pytest.mark.asyncio
    async def test_settles_with_premium(
        self, ledger: TokenLedger, pool: SandboxLendingPool
    ) -> None:
        receiver = _Receiver(ledger, pool, repay=True)
        ledger.mint("USDC", receiver.address, 9)
        before = ledger.balance("USDC", pool.address)

        await pool.flash_loan(
            receiver, ["USDC"], [10_000], [0], "alice", b"", 0, caller="initiator"
        )

        assert receiver.calls == [(["USDC"], [10_000], [9], "initiator", pool.address)]
        assert ledger.balance("USDC", pool.address) == before + 9
        assert ledger.balance("USDC", receiver.address) == 0

    @pytest.mark.asyncio
    async def test_unpaid_loan_reverts(
        self, ledger: TokenLedger, pool: SandboxLendingPool
    ) -> None:
        receiver = _Receiver(ledger, pool, repay=False)
        before = ledger.holdings()

        with pytest.raises(InsufficientAllowance):
            await pool.flash_loan(
                receiver, ["USDC"], [10_000], [0], "alice", b"", 0, caller="initiator"
            )
        assert ledger.holdings() == before

    @pytest.mark.asyncio
    async def test_receiver_returning_false_reverts(
        self, ledger: TokenLedger, pool: SandboxLendingPool
    ) -> None:
        receiver = _Receiver(ledger, pool, repay=True, result=False)
        before = ledger.holdings()

        with pytest.raises(FlashLoanNotRepaid):
            await pool.flash_loan(
                receiver, ["USDC"], [10_000], [0], "alice", b"", 0, caller="initiator"
            )
        assert ledger.holdings() == before

    @pytest.mark.asyncio
    async def test_only_mode_zero(self, ledger: TokenLedger, pool: SandboxLendingPool) -> None:
        receiver = _Receiver(ledger, pool, repay=True)
        with pytest.raises(ValueError):
            await pool.flash_loan(
                receiver, ["USDC"], [10_000], [2], "alice", b"", 0, caller="initiator"
            )
        assert receiver.calls == []


class TestExchange:
    @pytest.mark.asyncio
    async def test_direct_quote_includes_fee(self, exchange: SandboxExchange) -> None:
        amounts = await exchange.quote_amounts_in("WETH", "USDC", 2_000 * 10**6, False)
        # 1 WETH / 0.997, rounded up
        assert amounts == [1_003_009_027_081_243_732, 2_000 * 10**6]

    @pytest.mark.asyncio
    async def test_native_path_adds_a_hop(self, exchange: SandboxExchange) -> None:
        direct = await exchange.quote_amounts_in("DAI", "USDC", 10**6, False)
        routed = await exchange.quote_amounts_in("DAI", "USDC", 10**6, True)
        assert len(direct) == 2
        assert len(routed) == 3
        assert routed[0] > direct[0]

    @pytest.mark.asyncio
    async def test_native_endpoint_is_not_rerouted(self, exchange: SandboxExchange) -> None:
        amounts = await exchange.quote_amounts_in("WETH", "USDC", 10**6, True)
        assert len(amounts) == 2

    @pytest.mark.asyncio
    async def test_receipt_token_priced_as_underlying(self, exchange: SandboxExchange) -> None:
        plain = await exchange.quote_amounts_in("USDC", "WETH", 10**18, False)
        receipt = await exchange.quote_amounts_in("USDC", "aWETH", 10**18, False)
        assert plain == receipt

    @pytest.mark.asyncio
    async def test_swap_exact_out(self, ledger: TokenLedger, exchange: SandboxExchange) -> None:
        ledger.mint("USDC", "alice", 3_000 * 10**6)
        await ledger.approve("USDC", "alice", exchange.address, 3_000 * 10**6)

        amounts = await exchange.swap_exact_out("alice", "USDC", "WETH", 3_000 * 10**6, 10**18, False)

        assert ledger.balance("WETH", "alice") == 10**18
        assert ledger.balance("USDC", "alice") == 3_000 * 10**6 - amounts[0]

    @pytest.mark.asyncio
    async def test_swap_over_max_input(
        self, ledger: TokenLedger, exchange: SandboxExchange
    ) -> None:
        ledger.mint("USDC", "alice", 3_000 * 10**6)
        await ledger.approve("USDC", "alice", exchange.address, 3_000 * 10**6)

        with pytest.raises(ExcessiveInputAmount):
            await exchange.swap_exact_out("alice", "USDC", "WETH", 2_000 * 10**6, 10**18, False)

    @pytest.mark.asyncio
    async def test_unlisted_asset(self, exchange: SandboxExchange) -> None:
        with pytest.raises(UnknownAsset):
            await exchange.quote_amounts_in("DOGE", "USDC", 1, False)

    def test_invalid_fee(self, ledger: TokenLedger) -> None:
        with pytest.raises(ValueError):
            SandboxExchange(ledger, fee_bps=10_000)
