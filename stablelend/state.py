"""
Ledger state for the stablelend engine.

The LedgerState is the single shared context every component reads and
mutates. It holds the global accrual multipliers, the aggregate counters, the
current risk parameters and the per-account records. Components never keep
their own copy of any of it; it is passed explicitly into every call.
"""

import copy
from dataclasses import dataclass, field, fields
from enum import Enum
from typing import Dict, Optional

from .constants import PRECISION


class PositionStatus(Enum):
    """
    Represents the possible states of a borrower position.

    A position becomes LIQUIDATABLE without any transaction touching it, purely
    from price or interest movement. That state is only observed lazily when
    a view or a liquidation evaluates it.
    """
    EMPTY = 0                     # No position record, or no collateral and no debt
    COLLATERALIZED = 1            # Collateral deposited, no outstanding debt
    COLLATERALIZED_WITH_DEBT = 2  # Outstanding debt within the liquidation threshold
    LIQUIDATABLE = 3              # Debt beyond the liquidation threshold


@dataclass
class Position:
    """
    Represents a single borrower position.

    Debt is not stored as an amount but as shares of the global debt pool; the
    amount owed is debt_shares times the current debt multiplier.
    """
    collateral_amount: int = 0   # Collateral held, in collateral native units
    debt_shares: int = 0         # Shares of the global debt pool
    original_principal: int = 0  # Borrowed principal still outstanding, excluding interest
    exists: bool = False         # Set on first collateral deposit, never cleared


@dataclass
class LedgerState:
    """
    Global ledger state shared by every position.

    Multipliers start at 1.0 (PRECISION) and only ever grow. The timestamps
    are in seconds of the transaction clock.
    """
    # Accrual multipliers
    acc_debt_per_share: int = PRECISION
    last_debt_update_time: int = 0
    acc_lp_per_share: int = PRECISION
    last_lp_update_time: int = 0

    # Aggregate counters
    total_debt_shares: int = 0
    total_collateral: int = 0
    total_lp_share_supply: int = 0
    pool_liquidity_balance: int = 0

    # Risk parameters
    collateral_price: int = 0
    ltv: int = 0
    liquidation_threshold: int = 0
    liquidation_bonus: int = 0
    apr: int = 0
    last_apr_update_time: Optional[int] = None  # None until the first APR update

    # Per-account records
    positions: Dict[str, Position] = field(default_factory=dict)
    lp_balances: Dict[str, int] = field(default_factory=dict)

    def get_position(self, account):
        """Returns the position of an account, or None if it never deposited."""
        return self.positions.get(account)

    def get_lp_balance(self, account):
        """Returns the LP shares held by an account."""
        return self.lp_balances.get(account, 0)

    # --- Transaction support ---

    def checkpoint(self, accounts):
        """
        Captures the global fields and the records of `accounts`.

        Records of other accounts are not copied; a transaction must name
        every account whose position or LP balance it may change.
        """
        scalars = {
            f.name: getattr(self, f.name)
            for f in fields(self)
            if f.name not in ("positions", "lp_balances")
        }
        positions = {account: copy.copy(self.positions.get(account)) for account in accounts}
        lp_balances = {account: self.lp_balances.get(account) for account in accounts}
        return scalars, positions, lp_balances

    def rollback(self, checkpoint):
        """Restores state captured by `checkpoint`."""
        scalars, positions, lp_balances = checkpoint
        for name, value in scalars.items():
            setattr(self, name, value)
        for account, position in positions.items():
            if position is None:
                self.positions.pop(account, None)
            else:
                self.positions[account] = position
        for account, balance in lp_balances.items():
            if balance is None:
                self.lp_balances.pop(account, None)
            else:
                self.lp_balances[account] = balance
