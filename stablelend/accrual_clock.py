"""
Accrual Clock for the stablelend engine.

This module computes the two interest multipliers of the ledger:

1. The debt multiplier (acc_debt_per_share) converts debt shares into the
   amount owed. It grows by simple interest over each interval between
   refreshes, so no per-second compounding loop is needed.
2. The LP multiplier (acc_lp_per_share) converts LP shares into their claim on
   the pool. Each interval's interest on the outstanding debt is folded into
   it, spread over the LP share supply.

Both are lazy: a view computes the value as of `now` without touching state,
a refresh persists it and advances the interval start.
"""

import logging

from .constants import BPS, PRECISION, SECONDS_PER_YEAR
from .errors import ArithmeticOverflowError
from .fixed_point import checked_add, checked_mul, div_ceil, div_floor, mul_div_ceil

logger = logging.getLogger(__name__)

# Denominator turning apr (bps) * seconds into a fraction of the principal
_RATE_DENOMINATOR = BPS * SECONDS_PER_YEAR


class AccrualClock:
    """
    Computes and refreshes the debt and LP accrual multipliers.

    The clock is stateless; the multipliers live in the LedgerState passed to
    each call.

    Args:
        lp_share_scale: LP share units per stable-asset native unit
    """

    def __init__(self, lp_share_scale=1):
        self.lp_share_scale = lp_share_scale

    def _elapsed(self, now, last_update_time):
        if now < last_update_time:
            raise ArithmeticOverflowError(
                f"Clock moved backwards: now={now} < last update={last_update_time}"
            )
        return now - last_update_time

    # --- Debt multiplier ---

    def current_debt_multiplier(self, state, now):
        """
        Returns the debt multiplier as of `now` without mutating state.

        m' = m * (1 + apr * elapsed / year). The growth term is rounded up, so
        the amount owed is never under-counted.
        """
        elapsed = self._elapsed(now, state.last_debt_update_time)
        multiplier = state.acc_debt_per_share
        if elapsed == 0 or state.apr == 0:
            return multiplier

        growth = div_ceil(checked_mul(checked_mul(multiplier, state.apr), elapsed), _RATE_DENOMINATOR)
        return checked_add(multiplier, growth)

    def refresh_debt_multiplier(self, state, now):
        """Persists the current debt multiplier and starts a new interval at `now`."""
        state.acc_debt_per_share = self.current_debt_multiplier(state, now)
        state.last_debt_update_time = now
        return state.acc_debt_per_share

    # --- LP multiplier ---

    def total_debt(self, state, debt_multiplier=None):
        """
        Returns the total amount owed by all borrowers.

        Defaults to the ledger's committed debt multiplier.
        """
        if debt_multiplier is None:
            debt_multiplier = state.acc_debt_per_share
        return mul_div_ceil(state.total_debt_shares, debt_multiplier, PRECISION)

    def pending_lp_interest(self, state, now):
        """
        Returns the interest owed to LPs for the interval since the last LP refresh.

        The interest is computed on the total debt at the committed debt
        multiplier, i.e. the debt outstanding at the start of the interval.
        Rounded down so LPs are never credited more than borrowers accrue.
        """
        elapsed = self._elapsed(now, state.last_lp_update_time)
        if elapsed == 0 or state.apr == 0 or state.total_debt_shares == 0:
            return 0

        debt = self.total_debt(state)
        return div_floor(checked_mul(checked_mul(debt, state.apr), elapsed), _RATE_DENOMINATOR)

    def current_lp_multiplier(self, state, now):
        """
        Returns the LP multiplier as of `now` without mutating state.

        The multiplier prices one LP share unit in stable units scaled by
        PRECISION * lp_share_scale.
        """
        multiplier = state.acc_lp_per_share
        if state.total_lp_share_supply == 0:
            # No LP shares, nobody to pay
            return multiplier

        interest = self.pending_lp_interest(state, now)
        if interest == 0:
            return multiplier
        return checked_add(
            multiplier,
            div_floor(
                checked_mul(checked_mul(interest, PRECISION), self.lp_share_scale),
                state.total_lp_share_supply,
            ),
        )

    def refresh_lp_multiplier(self, state, now):
        """Persists the current LP multiplier and starts a new interval at `now`."""
        state.acc_lp_per_share = self.current_lp_multiplier(state, now)
        state.last_lp_update_time = now
        return state.acc_lp_per_share

    # --- Combined ---

    def refresh(self, state, now):
        """
        Refreshes both multipliers at the same instant.

        The LP series goes first so its interval is priced from the debt
        multiplier committed at the start of that same interval.

        Returns:
            Tuple of (debt_multiplier, lp_multiplier)
        """
        lp_multiplier = self.refresh_lp_multiplier(state, now)
        debt_multiplier = self.refresh_debt_multiplier(state, now)
        logger.debug(
            "Accrual multipliers refreshed",
            extra={
                "event": "lending.accrual_refresh",
                "now": now,
                "acc_debt_per_share": debt_multiplier,
                "acc_lp_per_share": lp_multiplier,
            },
        )
        return debt_multiplier, lp_multiplier
