"""
Risk Engine for the stablelend engine.

This module decides whether a position may take on risk and when it may be
liquidated:

1. Borrow and withdraw are gated by the loan-to-value (LTV) ratio, and only
   at the moment they happen. A position can drift past it afterwards purely
   from price or interest movement.
2. A position whose collateral value times the liquidation threshold no
   longer covers its debt is liquidatable. This is detected lazily, when a
   view or a liquidation evaluates it.
3. A liquidator repays part of the debt and receives collateral worth that
   amount plus the liquidation bonus. There is no partial payout: if the
   position cannot cover the bonus-inflated amount the liquidation is
   rejected and the liquidator must pick a smaller amount.

It also guards the admin parameter changes: the risk-parameter ordering, the
price circuit breaker and the APR step limit and cooldown.
"""

import logging
import math
from dataclasses import dataclass

from .constants import BPS
from .errors import InvariantViolation
from .fixed_point import (
    checked_add,
    checked_mul,
    checked_sub,
    div_ceil,
    mul_div_ceil,
    mul_div_floor,
)
from .state import PositionStatus

logger = logging.getLogger(__name__)


@dataclass
class LiquidationValues:
    """
    Values computed for a single liquidation.
    """
    debt_to_repay: int = 0       # Debt the liquidator pays off, in stable units
    base_collateral: int = 0     # Collateral worth exactly debt_to_repay
    collateral_seized: int = 0   # base_collateral plus the liquidation bonus
    debt_before: int = 0         # Position debt before the liquidation
    health_factor_before: float = 0


class RiskEngine:
    """
    Enforces the LTV and liquidation-threshold gates and prices liquidations.
    """

    def __init__(self, collateral_ledger, config):
        self.collateral_ledger = collateral_ledger
        self.config = config

    # --- Position health ---

    def collateral_value(self, state, position):
        """Returns the stable-asset value of a position's collateral."""
        if position is None:
            return 0
        return self.collateral_ledger.value(state, position.collateral_amount)

    def is_liquidatable(self, state, position, current_debt):
        """
        Checks the liquidation condition:

            collateral_value * liquidation_threshold < current_debt * BPS
        """
        if current_debt == 0:
            return False
        value = self.collateral_value(state, position)
        return checked_mul(value, state.liquidation_threshold) < checked_mul(current_debt, BPS)

    def health_factor(self, state, position, current_debt):
        """
        Calculates a position's health factor.

            HF = collateral_value * liquidation_threshold * 10000 / current_debt

        HEALTH_FACTOR_ONE (BPS * BPS) is the liquidation boundary; a position
        is liquidatable exactly when HF < HEALTH_FACTOR_ONE.

        Returns:
            Health factor as an integer, or infinity when there is no debt
        """
        if current_debt == 0:
            return math.inf
        value = self.collateral_value(state, position)
        return mul_div_floor(checked_mul(value, state.liquidation_threshold), BPS, current_debt)

    def position_status(self, state, position, current_debt):
        """Returns the PositionStatus of a position at the given debt."""
        if position is None or (position.collateral_amount == 0 and current_debt == 0):
            return PositionStatus.EMPTY
        if current_debt == 0:
            return PositionStatus.COLLATERALIZED
        if self.is_liquidatable(state, position, current_debt):
            return PositionStatus.LIQUIDATABLE
        return PositionStatus.COLLATERALIZED_WITH_DEBT

    # --- Gates ---

    def check_borrow(self, state, position, current_debt, amount):
        """
        Ensures that borrowing `amount` keeps the position within the LTV:

            collateral_value * ltv >= (current_debt + amount) * BPS

        Raises:
            InvariantViolation: If the LTV would be exceeded
        """
        new_debt = checked_add(current_debt, amount)
        value = self.collateral_value(state, position)
        if checked_mul(value, state.ltv) < checked_mul(new_debt, BPS):
            logger.warning(
                "Borrow rejected - exceeds LTV",
                extra={
                    "event": "lending.borrow_rejected",
                    "reason": "ltv_exceeded",
                    "collateral_value": value,
                    "new_debt": new_debt,
                    "ltv": state.ltv,
                },
            )
            raise InvariantViolation(
                f"Borrow exceeds LTV: debt would be {new_debt}, "
                f"max allowed {mul_div_floor(value, state.ltv, BPS)}"
            )

    def check_withdraw(self, state, position, current_debt, amount):
        """
        Ensures that withdrawing `amount` of collateral keeps the position within the LTV.

        Unconstrained when the position has no debt.

        Raises:
            InvariantViolation: If the LTV would be exceeded
        """
        if amount > position.collateral_amount:
            raise InvariantViolation(
                f"Insufficient collateral: requested {amount}, held {position.collateral_amount}"
            )
        if current_debt == 0:
            return

        remaining = position.collateral_amount - amount
        remaining_value = self.collateral_ledger.value(state, remaining)
        if checked_mul(remaining_value, state.ltv) < checked_mul(current_debt, BPS):
            logger.warning(
                "Withdraw rejected - exceeds LTV",
                extra={
                    "event": "lending.withdraw_rejected",
                    "reason": "ltv_exceeded",
                    "remaining_value": remaining_value,
                    "current_debt": current_debt,
                    "ltv": state.ltv,
                },
            )
            raise InvariantViolation(
                f"Withdrawal exceeds LTV: remaining collateral value {remaining_value} "
                f"cannot support debt {current_debt}"
            )

    # --- Liquidation ---

    def liquidation_payout(self, state, debt_amount):
        """
        Computes the collateral paid to a liquidator for repaying `debt_amount`.

            base   = debt_amount * collateral_scale / price
            payout = base * (BPS + liquidation_bonus) / BPS

        Returns:
            Tuple of (base_collateral, payout)
        """
        base = mul_div_floor(debt_amount, self.collateral_ledger.collateral_scale, state.collateral_price)
        payout = mul_div_floor(base, BPS + state.liquidation_bonus, BPS)
        return base, payout

    def check_liquidation(self, state, position, current_debt, debt_amount):
        """
        Validates a liquidation and prices it.

        Raises:
            InvariantViolation: If the position is healthy, the amount exceeds
                the debt, or the collateral cannot cover the payout

        Returns:
            LiquidationValues for the liquidation
        """
        if not self.is_liquidatable(state, position, current_debt):
            logger.warning(
                "Liquidation rejected - position is healthy",
                extra={
                    "event": "lending.liquidate_rejected",
                    "reason": "position_healthy",
                    "current_debt": current_debt,
                    "collateral_value": self.collateral_value(state, position),
                },
            )
            raise InvariantViolation("Position is not eligible for liquidation")

        if debt_amount > current_debt:
            raise InvariantViolation(
                f"Liquidation amount {debt_amount} exceeds position debt {current_debt}"
            )

        base, payout = self.liquidation_payout(state, debt_amount)
        if position.collateral_amount < payout:
            logger.warning(
                "Liquidation rejected - insufficient collateral for payout",
                extra={
                    "event": "lending.liquidate_rejected",
                    "reason": "insufficient_collateral",
                    "payout": payout,
                    "collateral": position.collateral_amount,
                },
            )
            raise InvariantViolation(
                f"Insufficient collateral for liquidation payout: need {payout}, "
                f"position holds {position.collateral_amount}"
            )

        return LiquidationValues(
            debt_to_repay=debt_amount,
            base_collateral=base,
            collateral_seized=payout,
            debt_before=current_debt,
            health_factor_before=self.health_factor(state, position, current_debt),
        )

    # --- Capacity views ---

    def max_borrowable(self, state, position, current_debt):
        """Returns how much more a position may borrow, capped by pool liquidity."""
        if position is None:
            return 0
        value = self.collateral_value(state, position)
        limit = mul_div_floor(value, state.ltv, BPS)
        headroom = max(0, limit - current_debt)
        return min(headroom, state.pool_liquidity_balance)

    def max_withdrawable(self, state, position, current_debt):
        """Returns the largest collateral withdrawal that passes the LTV gate."""
        if position is None:
            return 0
        if current_debt == 0:
            return position.collateral_amount

        required_value = mul_div_ceil(current_debt, BPS, state.ltv)
        required_collateral = div_ceil(
            checked_mul(required_value, self.collateral_ledger.collateral_scale),
            state.collateral_price,
        )
        return max(0, position.collateral_amount - required_collateral)

    # --- Parameter guards ---

    def check_ltv(self, state, ltv):
        """Raises InvariantViolation unless 0 < ltv < liquidation_threshold."""
        if not 0 < ltv < state.liquidation_threshold:
            raise InvariantViolation(
                f"LTV must be between 1 and {state.liquidation_threshold - 1}, got {ltv}"
            )

    def check_liquidation_threshold(self, state, threshold):
        """Raises InvariantViolation unless ltv < threshold <= BPS."""
        if not state.ltv < threshold <= BPS:
            raise InvariantViolation(
                f"Liquidation threshold must be above LTV {state.ltv} and at most {BPS}, got {threshold}"
            )

    def check_liquidation_bonus(self, state, bonus):
        """Raises InvariantViolation unless 0 <= bonus <= max_liquidation_bonus."""
        if not 0 <= bonus <= self.config.max_liquidation_bonus:
            raise InvariantViolation(
                f"Liquidation bonus must be between 0 and {self.config.max_liquidation_bonus}, got {bonus}"
            )

    def check_price_update(self, state, new_price):
        """
        Circuit breaker: a price update may move the price by at most
        max_price_change_bps of its previous value.

        Raises:
            InvariantViolation: If the price is not positive or moves too far
        """
        if new_price <= 0:
            raise InvariantViolation(f"Price must be greater than zero, got {new_price}")

        old_price = state.collateral_price
        change = abs(new_price - old_price)
        if checked_mul(change, BPS) > checked_mul(old_price, self.config.max_price_change_bps):
            logger.warning(
                "Price update rejected - circuit breaker",
                extra={
                    "event": "lending.set_price_rejected",
                    "reason": "price_change_too_large",
                    "old_price": old_price,
                    "new_price": new_price,
                    "max_change_bps": self.config.max_price_change_bps,
                },
            )
            raise InvariantViolation(
                f"Price change from {old_price} to {new_price} exceeds "
                f"{self.config.max_price_change_bps} bps limit"
            )

    def check_apr_update(self, state, new_apr, now):
        """
        Rate limits APR changes: bounded step, one update per cooldown, absolute cap.

        Raises:
            InvariantViolation: If any limit is breached
        """
        if not 0 <= new_apr <= self.config.max_apr:
            raise InvariantViolation(f"APR must be between 0 and {self.config.max_apr}, got {new_apr}")

        if state.last_apr_update_time is not None:
            next_allowed = checked_add(state.last_apr_update_time, self.config.apr_update_cooldown)
            if now < next_allowed:
                logger.warning(
                    "APR update rejected - cooldown active",
                    extra={
                        "event": "lending.set_apr_rejected",
                        "reason": "cooldown",
                        "next_allowed": next_allowed,
                        "now": now,
                    },
                )
                raise InvariantViolation(
                    f"APR update cooldown active for another {checked_sub(next_allowed, now)} seconds"
                )

        if abs(new_apr - state.apr) > self.config.max_apr_change_bps:
            logger.warning(
                "APR update rejected - step too large",
                extra={
                    "event": "lending.set_apr_rejected",
                    "reason": "apr_change_too_large",
                    "old_apr": state.apr,
                    "new_apr": new_apr,
                },
            )
            raise InvariantViolation(
                f"APR change from {state.apr} to {new_apr} exceeds "
                f"{self.config.max_apr_change_bps} bps limit"
            )
