"""
Debt Ledger for the stablelend engine.

Debt is recorded as shares of one global debt pool. Interest is applied to
every borrower at once by growing the debt multiplier; a position's debt is
its shares times that multiplier.

Rounding always favours the ledger:
- shares minted on borrow round up,
- the amount owed rounds up,
- shares burned on a partial repay round down.
"""

from .constants import PRECISION
from .fixed_point import (
    checked_add,
    checked_mul,
    checked_sub,
    div_ceil,
    div_floor,
    mul_div_ceil,
    mul_div_floor,
)


class DebtLedger:
    """
    Per-account debt expressed as shares of the global debt pool.

    All methods take the debt multiplier explicitly; callers must refresh it
    (AccrualClock.refresh) before committing a share mutation.
    """

    def shares_for_amount(self, amount, debt_multiplier):
        """Returns the debt shares that represent `amount`, rounded up."""
        return div_ceil(checked_mul(amount, PRECISION), debt_multiplier)

    def current_debt(self, position, debt_multiplier):
        """Returns the amount a position owes at the given multiplier, rounded up."""
        if position is None or position.debt_shares == 0:
            return 0
        return mul_div_ceil(position.debt_shares, debt_multiplier, PRECISION)

    def borrow(self, state, position, amount, debt_multiplier):
        """
        Records a new borrow against a position.

        Args:
            state: LedgerState
            position: Position borrowing
            amount: Amount borrowed, in stable units
            debt_multiplier: Freshly refreshed debt multiplier

        Returns:
            Number of debt shares minted
        """
        shares = self.shares_for_amount(amount, debt_multiplier)
        position.debt_shares = checked_add(position.debt_shares, shares)
        position.original_principal = checked_add(position.original_principal, amount)
        state.total_debt_shares = checked_add(state.total_debt_shares, shares)
        return shares

    def reduce_debt(self, state, position, repay_amount, current_debt, debt_multiplier):
        """
        Reduces a position's debt by `repay_amount`.

        A repay within one unit of the full debt, or one that would burn at
        least every held share, closes the debt completely. Otherwise shares
        are burned pro rata and the original principal shrinks in proportion.

        Args:
            state: LedgerState
            position: Position repaying
            repay_amount: Amount applied to the debt; must not exceed current_debt
            current_debt: Debt owed before the repayment
            debt_multiplier: Freshly refreshed debt multiplier

        Returns:
            Number of debt shares removed
        """
        held = position.debt_shares
        shares_to_remove = div_floor(checked_mul(repay_amount, PRECISION), debt_multiplier)

        if repay_amount + 1 >= current_debt or shares_to_remove >= held:
            position.debt_shares = 0
            position.original_principal = 0
            state.total_debt_shares = checked_sub(state.total_debt_shares, held)
            return held

        principal_reduction = mul_div_floor(position.original_principal, repay_amount, current_debt)
        position.debt_shares = checked_sub(held, shares_to_remove)
        position.original_principal = checked_sub(position.original_principal, principal_reduction)
        state.total_debt_shares = checked_sub(state.total_debt_shares, shares_to_remove)
        return shares_to_remove
