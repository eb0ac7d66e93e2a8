"""
Collateral Ledger for the stablelend engine.

Tracks the collateral each account has deposited and the aggregate collateral
held by the pool, and values collateral in stable-asset units at the current
price.
"""

from .errors import InvariantViolation
from .fixed_point import checked_add, checked_sub, mul_div_floor
from .state import Position


class CollateralLedger:
    """
    Per-account collateral balances and their valuation.
    """

    def __init__(self, collateral_decimals):
        self.collateral_scale = 10**collateral_decimals

    def deposit(self, state, account, amount):
        """
        Adds collateral to an account's position, creating the position on first deposit.

        Returns:
            The account's Position
        """
        position = state.positions.get(account)
        if position is None:
            position = Position(exists=True)
            state.positions[account] = position

        position.collateral_amount = checked_add(position.collateral_amount, amount)
        state.total_collateral = checked_add(state.total_collateral, amount)
        return position

    def withdraw(self, state, position, amount):
        """
        Removes collateral from a position.

        The caller is responsible for the LTV check; this only guards the balance.
        """
        if amount > position.collateral_amount:
            raise InvariantViolation(
                f"Insufficient collateral: requested {amount}, held {position.collateral_amount}"
            )
        position.collateral_amount = checked_sub(position.collateral_amount, amount)
        state.total_collateral = checked_sub(state.total_collateral, amount)

    def value(self, state, amount):
        """Values a collateral amount in stable-asset units at the current price."""
        return mul_div_floor(amount, state.collateral_price, self.collateral_scale)
