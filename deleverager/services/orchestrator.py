"""Repay orchestration — repays a user's debt with their own collateral.

Two entry protocols share one engine:

* direct: the collateral is pulled and swapped first, then the debt is repaid;
* financed: a flash loan of the debt asset repays the debt first, and the
  lending pool re-enters :meth:`RepayOrchestrator.execute_operation`, where
  the collateral is pulled and swapped to cover principal plus premium.

Everything between the precondition and the postcondition runs inside one
atomic unit of the token bank, so a failure at any step leaves no trace.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from decimal import Decimal
from typing import Sequence

from ..errors import (
    HealthFactorNotLow,
    HealthFactorOutOfRange,
    InsufficientDebtToRepay,
    InvalidCaller,
    NotAuthorized,
    RepayError,
    SlippageExceeded,
    UnauthorizedInitiator,
)
from ..fees import DEFAULT_FEE_SCHEDULE, FeeSchedule
from ..interfaces.exchange import Exchange
from ..interfaces.lending_pool import LendingPool
from ..interfaces.token_bank import TokenBank
from ..models import (
    NO_PERMIT,
    ExecutedRepay,
    FinancingContext,
    PermitSignature,
    RequestedRepay,
)
from ..registry import PolicyStore, Whitelist

logger = logging.getLogger(__name__)

# Flash loan mode 0: principal + premium must be returned inside the call.
NO_DEBT_MODE = 0


@dataclass(frozen=True)
class _Conversion:
    swapped: int
    fee: int


def scale_collateral_bound(collateral_amount: int, requested: int, actual: int) -> int:
    """Shrink the collateral bound by ``actual / requested`` when less debt was repaid."""
    if actual >= requested:
        return collateral_amount
    return collateral_amount * actual // requested


class RepayOrchestrator:
    """Deleverages users on request of whitelisted operators."""

    def __init__(
        self,
        address: str,
        pool: LendingPool,
        exchange: Exchange,
        bank: TokenBank,
        whitelist: Whitelist,
        policies: PolicyStore,
        fees: FeeSchedule = DEFAULT_FEE_SCHEDULE,
    ) -> None:
        self._address = address
        self._pool = pool
        self._exchange = exchange
        self._bank = bank
        self._whitelist = whitelist
        self._policies = policies
        self._fees = fees
        # Outcome of the financed leg, handed from the callback to its caller.
        self._financed_result: ExecutedRepay | None = None

    @property
    def address(self) -> str:
        return self._address

    @property
    def fees(self) -> FeeSchedule:
        return self._fees

    # ------------------------------------------------------------------
    # Entry point
    # ------------------------------------------------------------------

    async def increase_health_factor(
        self,
        caller: str,
        request: RequestedRepay,
        permit: PermitSignature = NO_PERMIT,
    ) -> ExecutedRepay:
        """Repay ``request.user``'s debt from their collateral.

        Raises a :class:`~deleverager.errors.RepayError` (or a ledger error
        from a failing transfer) and rolls back every effect when any step
        fails.
        """
        if not self._whitelist.contains(caller):
            raise NotAuthorized(f"{caller} is not a whitelisted operator")

        try:
            async with self._bank.atomic():
                policy = self._policies.get_policy(request.user)
                hf_before = await self._health_factor(request.user)
                # Strictly below the floor; an unconfigured user has floor 0.
                if not hf_before < policy.min_health_factor:
                    raise HealthFactorNotLow(
                        f"Health factor {hf_before} of {request.user} is not below "
                        f"{policy.min_health_factor}"
                    )

                if request.use_financing:
                    executed = await self._repay_financed(caller, request, permit)
                else:
                    executed = await self._repay_direct(caller, request, permit)

                hf_after = await self._health_factor(request.user)
                if not policy.contains(hf_after):
                    raise HealthFactorOutOfRange(
                        f"Health factor {hf_after} of {request.user} outside "
                        f"[{policy.min_health_factor}, {policy.max_health_factor}]"
                    )
        except Exception as e:
            logger.warning("Repay for %s aborted: %s", request.user, e)
            raise

        executed = replace(
            executed, health_factor_before=hf_before, health_factor_after=hf_after
        )
        logger.info(
            "Repaid %d %s for %s with %d %s (fee %d, premium %d), HF %s -> %s",
            executed.debt_repaid,
            executed.debt_asset,
            executed.user,
            executed.collateral_pulled,
            executed.collateral_asset,
            executed.fee,
            executed.premium,
            hf_before,
            hf_after,
        )
        return executed

    # ------------------------------------------------------------------
    # Direct path
    # ------------------------------------------------------------------

    async def _repay_direct(
        self, operator: str, request: RequestedRepay, permit: PermitSignature
    ) -> ExecutedRepay:
        tokens = await self._pool.get_reserve_tokens(request.debt_asset)
        outstanding = await self._bank.balance_of(
            tokens.debt_token(request.rate_mode), request.user
        )
        amount_to_repay = min(request.debt_repay_amount, outstanding)
        if amount_to_repay <= 0:
            raise InsufficientDebtToRepay(
                f"{request.user} owes no {request.debt_asset} in mode {request.rate_mode.name}"
            )

        bound = scale_collateral_bound(
            request.collateral_amount, request.debt_repay_amount, amount_to_repay
        )
        logger.debug("Direct repay of %d (bound %d)", amount_to_repay, bound)

        conversion = await self._swap_and_pull_with_fee(
            operator, request, permit, amount_to_repay, bound, premium=0
        )

        # A transfer deduction on the debt asset leaves less than was bought.
        held = await self._bank.balance_of(request.debt_asset, self._address)
        amount_to_repay = min(amount_to_repay, held)
        await self._approve(request.debt_asset, self._pool.address, amount_to_repay)
        repaid = await self._pool.repay(
            self._address,
            request.debt_asset,
            amount_to_repay,
            request.rate_mode,
            request.user,
        )

        return ExecutedRepay(
            user=request.user,
            collateral_asset=request.collateral_asset,
            debt_asset=request.debt_asset,
            debt_repaid=repaid,
            collateral_bound=bound,
            collateral_swapped=conversion.swapped,
            collateral_pulled=conversion.swapped + conversion.fee,
            fee=conversion.fee,
        )

    # ------------------------------------------------------------------
    # Financed path
    # ------------------------------------------------------------------

    async def _repay_financed(
        self, operator: str, request: RequestedRepay, permit: PermitSignature
    ) -> ExecutedRepay:
        context = FinancingContext(request=request, permit=permit, operator=operator)
        self._financed_result = None
        logger.debug(
            "Requesting flash loan of %d %s", request.debt_repay_amount, request.debt_asset
        )
        await self._pool.flash_loan(
            self,
            [request.debt_asset],
            [request.debt_repay_amount],
            [NO_DEBT_MODE],
            self._address,
            context.encode(),
            0,
            caller=self._address,
        )

        executed, self._financed_result = self._financed_result, None
        if executed is None:
            raise RepayError("Lending pool returned without invoking the flash loan callback")
        return executed

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
        """Flash loan callback; only valid inside a loan this orchestrator requested."""
        if caller != self._pool.address:
            raise InvalidCaller(f"Flash loan callback from untrusted {caller}")
        if initiator != self._address:
            raise UnauthorizedInitiator(f"Flash loan initiated by {initiator}")

        context = FinancingContext.decode(params)
        request = context.request
        asset, amount, premium = assets[0], amounts[0], premiums[0]

        # The loan may arrive short and the repay may take less; measure both.
        before = await self._bank.balance_of(asset, self._address)
        to_repay = min(amount, before)
        await self._approve(asset, self._pool.address, to_repay)
        await self._pool.repay(
            self._address, asset, to_repay, request.rate_mode, request.user
        )
        after = await self._bank.balance_of(asset, self._address)
        repaid = before - after
        if repaid == 0:
            raise InsufficientDebtToRepay(f"{request.user} owes no {asset}")

        bound = scale_collateral_bound(request.collateral_amount, amount, repaid)
        logger.debug(
            "Financed repay of %d (premium %d, bound %d)", repaid, premium, bound
        )

        conversion = await self._swap_and_pull_with_fee(
            context.operator, request, context.permit, repaid, bound, premium=premium
        )

        # The pool pulls principal + premium once this returns.
        await self._approve(asset, self._pool.address, amount + premium)

        self._financed_result = ExecutedRepay(
            user=request.user,
            collateral_asset=request.collateral_asset,
            debt_asset=request.debt_asset,
            debt_repaid=repaid,
            collateral_bound=bound,
            collateral_swapped=conversion.swapped,
            collateral_pulled=conversion.swapped + conversion.fee,
            fee=conversion.fee,
            premium=premium,
            financed=True,
        )
        return True

    # ------------------------------------------------------------------
    # Swap and pull with fee
    # ------------------------------------------------------------------

    async def _swap_and_pull_with_fee(
        self,
        operator: str,
        request: RequestedRepay,
        permit: PermitSignature,
        repay_amount: int,
        bound: int,
        premium: int,
    ) -> _Conversion:
        amount_out = repay_amount + premium

        if request.same_asset:
            if amount_out > bound:
                raise SlippageExceeded(f"Need {amount_out}, authorized {bound}")
            fee = self._fees.fee_for(repay_amount)
            await self._pull_collateral(request, permit, amount_out + fee)
            await self._pay_fee(request.collateral_asset, operator, fee)
            return _Conversion(swapped=amount_out, fee=fee)

        target = request.debt_asset
        if request.debt_as_receipt_token:
            target = (await self._pool.get_reserve_tokens(request.debt_asset)).receipt_token

        amounts = await self._exchange.quote_amounts_in(
            request.collateral_asset, target, amount_out, request.use_native_path
        )
        amount_in = amounts[0]
        if amount_in > bound:
            raise SlippageExceeded(
                f"Swap needs {amount_in} {request.collateral_asset}, authorized {bound}"
            )

        fee = self._fees.fee_for(amount_in)
        await self._pull_collateral(request, permit, amount_in + fee)
        await self._pay_fee(request.collateral_asset, operator, fee)

        await self._approve(request.collateral_asset, self._exchange.address, amount_in)
        await self._exchange.swap_exact_out(
            self._address,
            request.collateral_asset,
            target,
            amount_in,
            amount_out,
            request.use_native_path,
        )

        if request.debt_as_receipt_token:
            await self._pool.withdraw(
                self._address, request.debt_asset, amount_out, self._address
            )

        return _Conversion(swapped=amount_in, fee=fee)

    async def _pull_collateral(
        self, request: RequestedRepay, permit: PermitSignature, amount: int
    ) -> None:
        """Bring ``amount`` of underlying collateral into the orchestrator."""
        token = request.collateral_asset
        if request.collateral_as_receipt_token:
            token = (await self._pool.get_reserve_tokens(request.collateral_asset)).receipt_token

        if permit.is_set:
            await self._bank.permit(token, request.user, self._address, permit)
        await self._bank.transfer_from(
            token, self._address, request.user, self._address, amount
        )

        if request.collateral_as_receipt_token:
            await self._pool.withdraw(
                self._address, request.collateral_asset, amount, self._address
            )

    async def _pay_fee(self, asset: str, operator: str, fee: int) -> None:
        if fee:
            await self._bank.transfer(asset, self._address, operator, fee)

    async def _approve(self, token: str, spender: str, amount: int) -> None:
        # Reset first: some tokens refuse non-zero to non-zero changes.
        await self._bank.approve(token, self._address, spender, 0)
        await self._bank.approve(token, self._address, spender, amount)

    async def _health_factor(self, user: str) -> Decimal:
        return (await self._pool.get_user_account_data(user)).health_factor
