"""
Liquidity Pool for the stablelend engine.

This module models the stable-asset pool that funds borrowing. Lenders
deposit the stable asset and receive LP shares, counted at LP_SHARE_DECIMALS
whatever the stable asset's own decimals; an LP share's claim on the pool
grows with the LP multiplier as borrowers accrue interest.

Borrowed funds leave the pool's recorded balance directly, and repayments and
liquidation proceeds flow back in. The recorded balance is the only amount
LPs may withdraw against; anything the pool holds externally above it is
surplus that an administrator may sweep.
"""

from .constants import PRECISION
from .errors import InvariantViolation, ValidationError
from .fixed_point import (
    checked_add,
    checked_mul,
    checked_sub,
    div_floor,
    mul_div_floor,
)


class LiquidityPool:
    """
    LP-share-backed stable-asset pool.

    Every method that converts between shares and amounts refreshes the LP
    multiplier first through the accrual clock.
    """

    def __init__(self, accrual_clock):
        self.accrual_clock = accrual_clock

    @property
    def _share_unit(self):
        """Fixed point scale of the LP multiplier."""
        return PRECISION * self.accrual_clock.lp_share_scale

    def get_pool_liquidity(self, state):
        """Returns the stable-asset balance the pool can lend or pay out."""
        return state.pool_liquidity_balance

    def deposit_liquidity(self, state, account, amount, now):
        """
        Deposits stable asset into the pool and mints LP shares.

        Args:
            state: LedgerState
            account: Depositor
            amount: Stable-asset amount deposited
            now: Transaction time

        Returns:
            Number of LP shares minted

        Raises:
            ValidationError: If the deposit is too small to mint a single share
        """
        lp_multiplier = self.accrual_clock.refresh_lp_multiplier(state, now)
        lp_shares = div_floor(checked_mul(amount, self._share_unit), lp_multiplier)
        if lp_shares == 0:
            raise ValidationError(f"Deposit of {amount} is too small to mint an LP share")

        state.lp_balances[account] = checked_add(state.get_lp_balance(account), lp_shares)
        state.total_lp_share_supply = checked_add(state.total_lp_share_supply, lp_shares)
        state.pool_liquidity_balance = checked_add(state.pool_liquidity_balance, amount)
        return lp_shares

    def withdraw_liquidity(self, state, account, lp_shares, now):
        """
        Burns LP shares and releases their stable-asset value from the pool.

        Args:
            state: LedgerState
            account: LP holder
            lp_shares: Shares to burn
            now: Transaction time

        Returns:
            Stable-asset amount released

        Raises:
            InvariantViolation: If the holder lacks the shares or the pool lacks liquidity
        """
        held = state.get_lp_balance(account)
        if lp_shares > held:
            raise InvariantViolation(f"Insufficient LP shares: requested {lp_shares}, held {held}")

        lp_multiplier = self.accrual_clock.refresh_lp_multiplier(state, now)
        amount = mul_div_floor(lp_shares, lp_multiplier, self._share_unit)
        if state.pool_liquidity_balance < amount:
            raise InvariantViolation(
                f"Insufficient pool liquidity: requested {amount}, "
                f"available {state.pool_liquidity_balance}"
            )

        remaining = checked_sub(held, lp_shares)
        if remaining:
            state.lp_balances[account] = remaining
        else:
            del state.lp_balances[account]
        state.total_lp_share_supply = checked_sub(state.total_lp_share_supply, lp_shares)
        state.pool_liquidity_balance = checked_sub(state.pool_liquidity_balance, amount)
        return amount

    def lend_out(self, state, amount):
        """Moves borrowed funds out of the pool's recorded balance."""
        if state.pool_liquidity_balance < amount:
            raise InvariantViolation(
                f"Insufficient pool liquidity: requested {amount}, "
                f"available {state.pool_liquidity_balance}"
            )
        state.pool_liquidity_balance = checked_sub(state.pool_liquidity_balance, amount)

    def receive(self, state, amount):
        """Credits repayments and liquidation proceeds back to the pool."""
        state.pool_liquidity_balance = checked_add(state.pool_liquidity_balance, amount)

    def surplus(self, state, external_balance):
        """Returns the externally held stable asset above what the ledger owes LPs."""
        return max(0, external_balance - state.pool_liquidity_balance)

    # --- Views ---

    def lp_value(self, state, lp_shares, now):
        """Returns the stable-asset value of `lp_shares` as of `now`."""
        lp_multiplier = self.accrual_clock.current_lp_multiplier(state, now)
        return mul_div_floor(lp_shares, lp_multiplier, self._share_unit)

    def total_lp_value(self, state, now):
        """Returns the value of every outstanding LP share as of `now`."""
        return self.lp_value(state, state.total_lp_share_supply, now)

    def lp_apy(self, state, now):
        """
        Returns the current annual LP yield in basis points.

        LPs earn the borrow APR on the lent-out part of the pool, so the yield
        is apr scaled by total debt over total LP value.
        """
        total_value = self.total_lp_value(state, now)
        if total_value == 0:
            return 0
        debt_multiplier = self.accrual_clock.current_debt_multiplier(state, now)
        total_debt = self.accrual_clock.total_debt(state, debt_multiplier)
        return mul_div_floor(total_debt, state.apr, total_value)
