"""
Lending Pool for the stablelend engine.

This main module combines the accounting components into the pool's public
operations:

1. Lenders deposit the stable asset for LP shares and withdraw it with yield.
2. Borrowers deposit collateral, borrow against it up to the LTV, repay and
   withdraw collateral.
3. Anyone may liquidate a position past the liquidation threshold.
4. The owner (and, for prices and APR, the operator) adjusts parameters.

Every mutating operation runs as one transaction:
- callers are serialized on a lock,
- nested entry from a transfer callback is rejected,
- any failure restores the ledger and both assets to their state before the
  call, and
- events reach the event log only when the transaction commits.

Inside a transaction the accrual multipliers are refreshed first, then the
ledgers are mutated, and only then are assets transferred.
"""

import copy
import logging
import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import List, Optional

from .access_control import AccessControl
from .accrual_clock import AccrualClock
from .clock import SystemClock
from .collateral_ledger import CollateralLedger
from .config import LendingConfig
from .constants import LP_SHARE_DECIMALS, POOL_ACCOUNT
from .debt_ledger import DebtLedger
from .errors import ReentrancyError, ValidationError
from .events import Event, EventLog, Operation
from .liquidity_pool import LiquidityPool
from .risk_engine import RiskEngine
from .state import LedgerState, Position, PositionStatus

logger = logging.getLogger(__name__)


@dataclass
class _Transaction:
    now: int
    events: List[Event] = field(default_factory=list)

    def emit(self, operation, **data):
        self.events.append(Event(operation=operation, timestamp=self.now, data=data))


def _require_amount(amount, name="amount"):
    if not isinstance(amount, int) or isinstance(amount, bool):
        raise ValidationError(f"{name} must be an integer, got {amount!r}")
    if amount <= 0:
        raise ValidationError(f"{name} must be greater than zero, got {amount}")


def _require_parameter(value, name):
    if not isinstance(value, int) or isinstance(value, bool):
        raise ValidationError(f"{name} must be an integer, got {value!r}")


class LendingPool:
    """
    Collateralized lending pool with a yield-bearing liquidity pool.

    Args:
        owner: Account allowed to change risk parameters and roles
        stable_token: Asset lent and borrowed (Token-like collaborator)
        collateral_token: Asset locked as collateral (Token-like collaborator)
        config: LendingConfig with initial parameters and limits
        clock: Object with a now() method returning whole seconds
        event_log: Append-only EventLog receiving committed events
        operator: Optional account allowed to publish prices and APR updates
        address: Account name under which the pool holds assets
    """

    def __init__(self, owner, stable_token, collateral_token, config=None, clock=None,
                 event_log=None, operator=None, address=POOL_ACCOUNT):
        self.config = config if config is not None else LendingConfig()
        if stable_token.decimals != self.config.stable_decimals:
            raise ValidationError(
                f"Stable asset has {stable_token.decimals} decimals, config expects {self.config.stable_decimals}"
            )
        if collateral_token.decimals != self.config.collateral_decimals:
            raise ValidationError(
                f"Collateral asset has {collateral_token.decimals} decimals, "
                f"config expects {self.config.collateral_decimals}"
            )

        self.address = address
        self.stable_token = stable_token
        self.collateral_token = collateral_token
        self.clock = clock if clock is not None else SystemClock()
        self.event_log = event_log if event_log is not None else EventLog()
        self.access = AccessControl(owner, operator)

        now = self.clock.now()
        self.state = LedgerState(
            last_debt_update_time=now,
            last_lp_update_time=now,
            collateral_price=self.config.initial_price,
            ltv=self.config.ltv,
            liquidation_threshold=self.config.liquidation_threshold,
            liquidation_bonus=self.config.liquidation_bonus,
            apr=self.config.apr,
        )

        # Components
        self.accrual_clock = AccrualClock(
            lp_share_scale=10**(LP_SHARE_DECIMALS - self.config.stable_decimals)
        )
        self.collateral_ledger = CollateralLedger(self.config.collateral_decimals)
        self.debt_ledger = DebtLedger()
        self.liquidity_pool = LiquidityPool(self.accrual_clock)
        self.risk_engine = RiskEngine(self.collateral_ledger, self.config)

        # Transaction boundary
        self._lock = threading.RLock()
        self._in_transaction = False

    # --- Transaction boundary ---

    @contextmanager
    def _transaction(self, *accounts):
        """
        Runs the body as one atomic operation.

        `accounts` names every account, besides the pool itself, whose ledger
        records or asset balances the operation may change; only those are
        checkpointed.
        """
        with self._lock:
            if self._in_transaction:
                raise ReentrancyError("Reentrant call into the lending pool")
            self._in_transaction = True
            try:
                touched = (self.address,) + accounts
                state_checkpoint = self.state.checkpoint(touched)
                stable_checkpoint = self.stable_token.checkpoint(touched)
                collateral_checkpoint = self.collateral_token.checkpoint(touched)
                tx = _Transaction(now=self.clock.now())
                try:
                    yield tx
                except BaseException:
                    self.state.rollback(state_checkpoint)
                    self.stable_token.rollback(stable_checkpoint)
                    self.collateral_token.rollback(collateral_checkpoint)
                    raise
                self.event_log.extend(tx.events)
            finally:
                self._in_transaction = False

    def _require_position(self, account):
        position = self.state.get_position(account)
        if position is None:
            raise ValidationError(f"No position exists for {account}")
        return position

    def _refresh(self, tx):
        debt_multiplier, _ = self.accrual_clock.refresh(self.state, tx.now)
        return debt_multiplier

    # --- Liquidity provider operations ---

    def deposit_liquidity(self, caller, amount):
        """
        Deposits stable asset into the pool.

        Returns:
            Number of LP shares minted to the caller
        """
        _require_amount(amount)
        with self._transaction(caller) as tx:
            self._refresh(tx)
            lp_shares = self.liquidity_pool.deposit_liquidity(self.state, caller, amount, tx.now)
            tx.emit(Operation.DEPOSIT_LIQUIDITY, account=caller, amount=amount, lp_shares=lp_shares)
            self.stable_token.transfer_from(self.address, caller, self.address, amount)

        logger.info(
            "Liquidity deposited",
            extra={"event": "lending.deposit_liquidity", "account": caller, "amount": amount, "lp_shares": lp_shares},
        )
        return lp_shares

    def withdraw_liquidity(self, caller, lp_shares):
        """
        Burns LP shares for their stable-asset value.

        Returns:
            Stable-asset amount paid to the caller
        """
        _require_amount(lp_shares, "lp_shares")
        with self._transaction(caller) as tx:
            self._refresh(tx)
            amount = self.liquidity_pool.withdraw_liquidity(self.state, caller, lp_shares, tx.now)
            tx.emit(Operation.WITHDRAW_LIQUIDITY, account=caller, amount=amount, lp_shares=lp_shares)
            if amount > 0:
                self.stable_token.transfer(self.address, caller, amount)

        logger.info(
            "Liquidity withdrawn",
            extra={"event": "lending.withdraw_liquidity", "account": caller, "amount": amount, "lp_shares": lp_shares},
        )
        return amount

    # --- Borrower operations ---

    def deposit_collateral(self, caller, amount):
        """Deposits collateral, opening the caller's position on first use."""
        _require_amount(amount)
        with self._transaction(caller) as tx:
            self._refresh(tx)
            position = self.collateral_ledger.deposit(self.state, caller, amount)
            tx.emit(Operation.DEPOSIT_COLLATERAL, account=caller, amount=amount,
                    collateral=position.collateral_amount)
            self.collateral_token.transfer_from(self.address, caller, self.address, amount)

        logger.info(
            "Collateral deposited",
            extra={"event": "lending.deposit_collateral", "account": caller, "amount": amount},
        )

    def borrow(self, caller, amount):
        """
        Borrows stable asset against the caller's collateral.

        Raises:
            ValidationError: If the caller has no position
            InvariantViolation: If the LTV would be exceeded or the pool lacks liquidity
        """
        _require_amount(amount)
        with self._transaction(caller) as tx:
            position = self._require_position(caller)
            debt_multiplier = self._refresh(tx)
            current_debt = self.debt_ledger.current_debt(position, debt_multiplier)

            self.risk_engine.check_borrow(self.state, position, current_debt, amount)
            self.liquidity_pool.lend_out(self.state, amount)
            shares = self.debt_ledger.borrow(self.state, position, amount, debt_multiplier)
            tx.emit(Operation.BORROW, account=caller, amount=amount, debt_shares=shares)
            self.stable_token.transfer(self.address, caller, amount)

        logger.info(
            "Borrowed from lending pool",
            extra={"event": "lending.borrow", "account": caller, "amount": amount, "debt_shares": shares},
        )

    def repay(self, caller, amount):
        """
        Repays the caller's debt.

        Amounts above the current debt are capped at it.

        Returns:
            Amount actually applied to the debt and pulled from the caller

        Raises:
            ValidationError: If the caller has no position or no debt
        """
        _require_amount(amount)
        with self._transaction(caller) as tx:
            position = self._require_position(caller)
            debt_multiplier = self._refresh(tx)
            current_debt = self.debt_ledger.current_debt(position, debt_multiplier)
            if current_debt == 0:
                raise ValidationError(f"{caller} has no debt to repay")

            applied = min(amount, current_debt)
            shares_removed = self.debt_ledger.reduce_debt(
                self.state, position, applied, current_debt, debt_multiplier
            )
            self.liquidity_pool.receive(self.state, applied)
            tx.emit(Operation.REPAY, account=caller, amount=applied, debt_shares_removed=shares_removed,
                    closed=position.debt_shares == 0)
            self.stable_token.transfer_from(self.address, caller, self.address, applied)

        logger.info(
            "Debt repaid",
            extra={"event": "lending.repay", "account": caller, "amount": applied,
                   "debt_shares_removed": shares_removed},
        )
        return applied

    def withdraw_collateral(self, caller, amount):
        """
        Withdraws collateral, provided the remaining collateral still covers the debt at the LTV.
        """
        _require_amount(amount)
        with self._transaction(caller) as tx:
            position = self._require_position(caller)
            debt_multiplier = self._refresh(tx)
            current_debt = self.debt_ledger.current_debt(position, debt_multiplier)

            self.risk_engine.check_withdraw(self.state, position, current_debt, amount)
            self.collateral_ledger.withdraw(self.state, position, amount)
            tx.emit(Operation.WITHDRAW_COLLATERAL, account=caller, amount=amount,
                    collateral=position.collateral_amount)
            self.collateral_token.transfer(self.address, caller, amount)

        logger.info(
            "Collateral withdrawn",
            extra={"event": "lending.withdraw_collateral", "account": caller, "amount": amount},
        )

    # --- Liquidation ---

    def liquidate(self, caller, user, debt_amount):
        """
        Liquidates part or all of an undercollateralized position.

        The caller pays `debt_amount` of the user's debt and receives the
        equivalent collateral plus the liquidation bonus.

        Args:
            caller: Liquidator
            user: Owner of the position being liquidated
            debt_amount: Debt to repay on the user's behalf

        Returns:
            Collateral seized and paid to the liquidator

        Raises:
            ValidationError: If the user has no position
            InvariantViolation: If the position is healthy or cannot cover the payout
        """
        _require_amount(debt_amount, "debt_amount")
        with self._transaction(caller, user) as tx:
            position = self._require_position(user)
            debt_multiplier = self._refresh(tx)
            current_debt = self.debt_ledger.current_debt(position, debt_multiplier)

            values = self.risk_engine.check_liquidation(self.state, position, current_debt, debt_amount)
            shares_removed = self.debt_ledger.reduce_debt(
                self.state, position, debt_amount, current_debt, debt_multiplier
            )
            self.collateral_ledger.withdraw(self.state, position, values.collateral_seized)
            self.liquidity_pool.receive(self.state, debt_amount)
            tx.emit(Operation.LIQUIDATE, liquidator=caller, account=user, debt_repaid=debt_amount,
                    collateral_seized=values.collateral_seized, debt_shares_removed=shares_removed)

            self.stable_token.transfer_from(self.address, caller, self.address, debt_amount)
            if values.collateral_seized > 0:
                self.collateral_token.transfer(self.address, caller, values.collateral_seized)

        logger.warning(
            "Position liquidated",
            extra={
                "event": "lending.liquidate",
                "liquidator": caller,
                "account": user,
                "debt_repaid": debt_amount,
                "collateral_seized": values.collateral_seized,
                "health_factor_before": values.health_factor_before,
            },
        )
        return values.collateral_seized

    # --- Admin operations ---

    def set_ltv(self, caller, ltv):
        """Sets the loan-to-value ratio in bps. Owner only."""
        self.access.require_owner(caller)
        _require_parameter(ltv, "ltv")
        with self._transaction() as tx:
            self.risk_engine.check_ltv(self.state, ltv)
            old = self.state.ltv
            self.state.ltv = ltv
            tx.emit(Operation.SET_LTV, old=old, new=ltv)
        logger.info("LTV updated", extra={"event": "lending.set_ltv", "old": old, "new": ltv})

    def set_liquidation_threshold(self, caller, threshold):
        """Sets the liquidation threshold in bps. Owner only."""
        self.access.require_owner(caller)
        _require_parameter(threshold, "liquidation_threshold")
        with self._transaction() as tx:
            self.risk_engine.check_liquidation_threshold(self.state, threshold)
            old = self.state.liquidation_threshold
            self.state.liquidation_threshold = threshold
            tx.emit(Operation.SET_LIQUIDATION_THRESHOLD, old=old, new=threshold)
        logger.info(
            "Liquidation threshold updated",
            extra={"event": "lending.set_liquidation_threshold", "old": old, "new": threshold},
        )

    def set_liquidation_bonus(self, caller, bonus):
        """Sets the liquidation bonus in bps. Owner only."""
        self.access.require_owner(caller)
        _require_parameter(bonus, "liquidation_bonus")
        with self._transaction() as tx:
            self.risk_engine.check_liquidation_bonus(self.state, bonus)
            old = self.state.liquidation_bonus
            self.state.liquidation_bonus = bonus
            tx.emit(Operation.SET_LIQUIDATION_BONUS, old=old, new=bonus)
        logger.info(
            "Liquidation bonus updated",
            extra={"event": "lending.set_liquidation_bonus", "old": old, "new": bonus},
        )

    def set_price(self, caller, price):
        """
        Publishes a new collateral price. Owner or operator.

        Raises:
            InvariantViolation: If the move exceeds the circuit breaker
        """
        self.access.require_owner_or_operator(caller)
        _require_parameter(price, "price")
        with self._transaction() as tx:
            self.risk_engine.check_price_update(self.state, price)
            old = self.state.collateral_price
            self.state.collateral_price = price
            tx.emit(Operation.SET_PRICE, old=old, new=price)
        logger.info("Price updated", extra={"event": "lending.set_price", "old": old, "new": price})

    def set_apr(self, caller, apr):
        """
        Sets the borrow APR in bps. Owner or operator.

        Both multipliers are brought up to date under the old APR before the
        new one is stored.

        Raises:
            InvariantViolation: If the step limit or cooldown is breached
        """
        self.access.require_owner_or_operator(caller)
        _require_parameter(apr, "apr")
        with self._transaction() as tx:
            self.risk_engine.check_apr_update(self.state, apr, tx.now)
            self._refresh(tx)
            old = self.state.apr
            self.state.apr = apr
            self.state.last_apr_update_time = tx.now
            tx.emit(Operation.SET_APR, old=old, new=apr)
        logger.info("APR updated", extra={"event": "lending.set_apr", "old": old, "new": apr})

    def set_operator(self, caller, operator):
        """Replaces the operator. Owner only."""
        with self._transaction() as tx:
            old = self.access.operator
            self.access.set_operator(caller, operator)
            tx.emit(Operation.SET_OPERATOR, old=old, new=operator)
        logger.info("Operator updated", extra={"event": "lending.set_operator", "old": old, "new": operator})

    def sweep_surplus(self, caller, sink):
        """
        Forwards assets the pool holds beyond its ledger entitlement to `sink`. Owner only.

        Only stable asset above the recorded pool liquidity and collateral
        above the recorded total collateral are moved; nothing owed to LPs or
        borrowers is touched.

        Returns:
            Tuple of (stable_swept, collateral_swept)
        """
        self.access.require_owner(caller)
        with self._transaction(sink) as tx:
            stable_surplus = self.liquidity_pool.surplus(
                self.state, self.stable_token.balance_of(self.address)
            )
            collateral_surplus = max(
                0, self.collateral_token.balance_of(self.address) - self.state.total_collateral
            )
            tx.emit(Operation.SWEEP_SURPLUS, sink=sink, stable=stable_surplus, collateral=collateral_surplus)
            if stable_surplus > 0:
                self.stable_token.transfer(self.address, sink, stable_surplus)
            if collateral_surplus > 0:
                self.collateral_token.transfer(self.address, sink, collateral_surplus)

        logger.info(
            "Surplus swept",
            extra={"event": "lending.sweep_surplus", "sink": sink, "stable": stable_surplus,
                   "collateral": collateral_surplus},
        )
        return stable_surplus, collateral_surplus

    # --- Views ---

    def _debt_multiplier_now(self):
        return self.accrual_clock.current_debt_multiplier(self.state, self.clock.now())

    def current_debt(self, user):
        """Returns the amount `user` owes right now, including accrued interest."""
        with self._lock:
            position = self.state.get_position(user)
            return self.debt_ledger.current_debt(position, self._debt_multiplier_now())

    def max_borrowable(self, user):
        """Returns how much more `user` may borrow right now."""
        with self._lock:
            position = self.state.get_position(user)
            debt = self.debt_ledger.current_debt(position, self._debt_multiplier_now())
            return self.risk_engine.max_borrowable(self.state, position, debt)

    def max_withdrawable(self, user):
        """Returns the most collateral `user` may withdraw right now."""
        with self._lock:
            position = self.state.get_position(user)
            debt = self.debt_ledger.current_debt(position, self._debt_multiplier_now())
            return self.risk_engine.max_withdrawable(self.state, position, debt)

    def health_factor(self, user):
        """Returns the health factor of `user`'s position (infinity without debt)."""
        with self._lock:
            position = self.state.get_position(user)
            debt = self.debt_ledger.current_debt(position, self._debt_multiplier_now())
            return self.risk_engine.health_factor(self.state, position, debt)

    def position_status(self, user):
        """Returns the PositionStatus of `user`'s position."""
        with self._lock:
            position = self.state.get_position(user)
            debt = self.debt_ledger.current_debt(position, self._debt_multiplier_now())
            return self.risk_engine.position_status(self.state, position, debt)

    def is_liquidatable(self, user):
        return self.position_status(user) == PositionStatus.LIQUIDATABLE

    def get_position(self, user) -> Optional[Position]:
        """Returns a copy of `user`'s position, or None."""
        with self._lock:
            position = self.state.get_position(user)
            return copy.copy(position) if position is not None else None

    def lp_balance(self, user):
        with self._lock:
            return self.state.get_lp_balance(user)

    def lp_value(self, lp_shares):
        """Returns the stable-asset value of `lp_shares` right now."""
        with self._lock:
            return self.liquidity_pool.lp_value(self.state, lp_shares, self.clock.now())

    def lp_apy(self):
        """Returns the current annual LP yield in bps."""
        with self._lock:
            return self.liquidity_pool.lp_apy(self.state, self.clock.now())

    def total_debt(self):
        """Returns the debt owed by all borrowers right now."""
        with self._lock:
            return self.accrual_clock.total_debt(self.state, self._debt_multiplier_now())

    def get_system_state(self):
        """
        Returns the current state of the system.

        Returns:
            Dictionary with system state
        """
        with self._lock:
            now = self.clock.now()
            total_debt = self.total_debt()
            collateral_value = self.collateral_ledger.value(self.state, self.state.total_collateral)
            return {
                'time': now,
                'price': self.state.collateral_price,
                'apr': self.state.apr,
                'total_collateral': self.state.total_collateral,
                'total_collateral_value': collateral_value,
                'total_debt': total_debt,
                'total_debt_shares': self.state.total_debt_shares,
                'pool_liquidity': self.state.pool_liquidity_balance,
                'total_lp_shares': self.state.total_lp_share_supply,
                'total_lp_value': self.liquidity_pool.total_lp_value(self.state, now),
                'acc_debt_per_share': self.accrual_clock.current_debt_multiplier(self.state, now),
                'acc_lp_per_share': self.accrual_clock.current_lp_multiplier(self.state, now),
                'positions': len(self.state.positions),
                'collateral_ratio': collateral_value / total_debt if total_debt > 0 else float('inf'),
            }
