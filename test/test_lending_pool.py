"""
Unit tests for the LendingPool module of the stablelend engine.

These tests drive complete flows through the pool: lending, borrowing,
interest accrual, liquidation, admin updates and the transaction boundary.
"""

import math
import threading
import unittest

from stablelend import (
    AuthorizationError,
    InvariantViolation,
    LendingConfig,
    LendingPool,
    ManualClock,
    Operation,
    PositionStatus,
    ReentrancyError,
    Token,
    ValidationError,
)
from stablelend.constants import PRECISION, SECONDS_PER_YEAR

ONE_STABLE = 10**6
ONE_COLLATERAL = 10**18


class ReentrantToken(Token):
    """Token that runs a callback once after its next transfer."""

    def __init__(self, symbol, decimals):
        super().__init__(symbol, decimals)
        self.hook = None

    def transfer(self, sender, recipient, amount):
        result = super().transfer(sender, recipient, amount)
        if self.hook is not None:
            hook, self.hook = self.hook, None
            hook()
        return result


class TestLendingPool(unittest.TestCase):
    def setUp(self):
        """Set up a pool with 10,000 of liquidity at a collateral price of 2000."""
        self.clock = ManualClock(start=1_000_000)
        self.usdc = ReentrantToken("USDC", 6)
        self.weth = Token("WETH", 18)
        self.pool = LendingPool("owner", self.usdc, self.weth, clock=self.clock, operator="oracle")

        self.lender = "lender"
        self.borrower = "borrower"
        self.keeper = "keeper"

        self._fund(self.usdc, self.lender, 10_000 * ONE_STABLE)
        self.lp_shares = self.pool.deposit_liquidity(self.lender, 10_000 * ONE_STABLE)

    def _fund(self, token, account, amount):
        token.mint(account, amount)
        token.approve(account, self.pool.address, token.allowance(account, self.pool.address) + amount)

    def _open_position(self, collateral=ONE_COLLATERAL, borrow=0):
        self._fund(self.weth, self.borrower, collateral)
        self.pool.deposit_collateral(self.borrower, collateral)
        if borrow:
            self.pool.borrow(self.borrower, borrow)

    def _drop_price_until_liquidatable(self):
        for price in (1800, 1620, 1458):
            self.pool.set_price("oracle", price * ONE_STABLE)
        self.pool.set_price("oracle", 1_312_200_000)

    # --- Liquidity ---

    def test_deposit_liquidity(self):
        """Test that depositing liquidity mints shares and moves the asset"""
        self.assertEqual(self.lp_shares, 10_000 * 10**18)
        self.assertEqual(self.pool.lp_balance(self.lender), self.lp_shares)
        self.assertEqual(self.usdc.balance_of(self.pool.address), 10_000 * ONE_STABLE)
        self.assertEqual(self.usdc.balance_of(self.lender), 0)
        self.assertEqual(self.pool.state.pool_liquidity_balance, 10_000 * ONE_STABLE)

    def test_withdraw_liquidity(self):
        amount = self.pool.withdraw_liquidity(self.lender, self.lp_shares // 2)

        self.assertEqual(amount, 5_000 * ONE_STABLE)
        self.assertEqual(self.usdc.balance_of(self.lender), 5_000 * ONE_STABLE)
        self.assertEqual(self.pool.lp_balance(self.lender), self.lp_shares // 2)

    def test_invalid_amounts(self):
        """Test that zero, negative and non-integer amounts are rejected"""
        for amount in (0, -1, 1.5, True, "100"):
            with self.assertRaises(ValidationError):
                self.pool.deposit_liquidity(self.lender, amount)
        self.assertEqual(len(self.pool.event_log), 1)

    # --- Borrowing ---

    def test_borrow_requires_position(self):
        with self.assertRaises(ValidationError) as context:
            self.pool.borrow(self.borrower, 100)
        self.assertIn("No position", str(context.exception))

    def test_borrow_ltv_gate(self):
        """Test that with collateral worth 1000 at 50% LTV, 500 passes and 500.000001 fails"""
        self._open_position(collateral=ONE_COLLATERAL // 2)

        with self.assertRaises(InvariantViolation):
            self.pool.borrow(self.borrower, 500 * ONE_STABLE + 1)
        self.pool.borrow(self.borrower, 500 * ONE_STABLE)

        self.assertEqual(self.pool.current_debt(self.borrower), 500 * ONE_STABLE)
        self.assertEqual(self.usdc.balance_of(self.borrower), 500 * ONE_STABLE)
        self.assertEqual(self.pool.max_borrowable(self.borrower), 0)

    def test_borrow_limited_by_liquidity(self):
        self._open_position(collateral=100 * ONE_COLLATERAL)
        self.assertEqual(self.pool.max_borrowable(self.borrower), 10_000 * ONE_STABLE)
        with self.assertRaises(InvariantViolation) as context:
            self.pool.borrow(self.borrower, 10_000 * ONE_STABLE + 1)
        self.assertIn("Insufficient pool liquidity", str(context.exception))

    def test_interest_accrues_over_one_year(self):
        """Test that 1000 borrowed at 5% owes 1050 after one year"""
        self._open_position(borrow=1000 * ONE_STABLE)

        self.clock.advance(SECONDS_PER_YEAR)

        self.assertEqual(self.pool.current_debt(self.borrower), 1050 * ONE_STABLE)
        self.assertEqual(self.pool.total_debt(), 1050 * ONE_STABLE)

    def test_repay_caps_at_debt(self):
        """Test that overpaying repays exactly the debt and closes the position"""
        self._open_position(borrow=1000 * ONE_STABLE)
        self.clock.advance(SECONDS_PER_YEAR)
        self.usdc.mint(self.borrower, 1000 * ONE_STABLE)
        self.usdc.approve(self.borrower, self.pool.address, 2000 * ONE_STABLE)

        applied = self.pool.repay(self.borrower, 2000 * ONE_STABLE)

        self.assertEqual(applied, 1050 * ONE_STABLE)
        self.assertEqual(self.pool.current_debt(self.borrower), 0)
        self.assertEqual(self.pool.get_position(self.borrower).debt_shares, 0)
        self.assertEqual(self.pool.state.total_debt_shares, 0)
        self.assertEqual(self.usdc.balance_of(self.borrower), 950 * ONE_STABLE)
        self.assertEqual(self.pool.position_status(self.borrower), PositionStatus.COLLATERALIZED)

    def test_repay_without_debt(self):
        self._open_position()
        with self.assertRaises(ValidationError) as context:
            self.pool.repay(self.borrower, 100)
        self.assertIn("no debt", str(context.exception))

    def test_partial_repay(self):
        self._open_position(borrow=1000 * ONE_STABLE)
        self.usdc.approve(self.borrower, self.pool.address, 400 * ONE_STABLE)

        self.assertEqual(self.pool.repay(self.borrower, 400 * ONE_STABLE), 400 * ONE_STABLE)

        self.assertEqual(self.pool.current_debt(self.borrower), 600 * ONE_STABLE)
        self.assertEqual(self.pool.get_position(self.borrower).original_principal, 600 * ONE_STABLE)
        self.assertEqual(self.pool.state.pool_liquidity_balance, 9_400 * ONE_STABLE)

    def test_lenders_earn_borrower_interest(self):
        """Test that interest paid by borrowers accrues to LP shares"""
        self._open_position(borrow=1000 * ONE_STABLE)
        self.clock.advance(SECONDS_PER_YEAR)

        self.assertEqual(self.pool.lp_value(self.lp_shares), 10_050 * ONE_STABLE)
        self.assertEqual(self.pool.lp_apy(), 1050 * 500 // 10_050)

        self.usdc.mint(self.borrower, 50 * ONE_STABLE)
        self.usdc.approve(self.borrower, self.pool.address, 1050 * ONE_STABLE)
        self.pool.repay(self.borrower, 1050 * ONE_STABLE)

        amount = self.pool.withdraw_liquidity(self.lender, self.lp_shares)
        self.assertEqual(amount, 10_050 * ONE_STABLE)
        self.assertEqual(self.pool.state.pool_liquidity_balance, 0)
        self.assertEqual(self.usdc.balance_of(self.pool.address), 0)

    def test_withdraw_collateral_gate(self):
        """Test that collateral can be withdrawn only down to the LTV"""
        self._open_position(borrow=500 * ONE_STABLE)

        self.assertEqual(self.pool.max_withdrawable(self.borrower), ONE_COLLATERAL // 2)
        with self.assertRaises(InvariantViolation):
            self.pool.withdraw_collateral(self.borrower, ONE_COLLATERAL // 2 + 1)

        self.pool.withdraw_collateral(self.borrower, ONE_COLLATERAL // 2)
        self.assertEqual(self.weth.balance_of(self.borrower), ONE_COLLATERAL // 2)
        self.assertEqual(self.pool.state.total_collateral, ONE_COLLATERAL // 2)

    def test_views_for_unknown_account(self):
        self.assertEqual(self.pool.current_debt("nobody"), 0)
        self.assertEqual(self.pool.health_factor("nobody"), math.inf)
        self.assertEqual(self.pool.position_status("nobody"), PositionStatus.EMPTY)
        self.assertEqual(self.pool.max_borrowable("nobody"), 0)
        self.assertEqual(self.pool.max_withdrawable("nobody"), 0)
        self.assertIsNone(self.pool.get_position("nobody"))

    def test_get_position_returns_copy(self):
        self._open_position()
        self.pool.get_position(self.borrower).collateral_amount = 0
        self.assertEqual(self.pool.get_position(self.borrower).collateral_amount, ONE_COLLATERAL)

    # --- Liquidation ---

    def test_liquidation(self):
        """Test a partial liquidation after the price falls below the threshold"""
        self._open_position(borrow=1000 * ONE_STABLE)
        with self.assertRaises(InvariantViolation):
            self.pool.liquidate(self.keeper, self.borrower, 100 * ONE_STABLE)

        self._drop_price_until_liquidatable()
        self.assertTrue(self.pool.is_liquidatable(self.borrower))

        self._fund(self.usdc, self.keeper, 500 * ONE_STABLE)
        _, expected = self.pool.risk_engine.liquidation_payout(self.pool.state, 500 * ONE_STABLE)
        seized = self.pool.liquidate(self.keeper, self.borrower, 500 * ONE_STABLE)

        self.assertEqual(seized, expected)
        self.assertEqual(self.weth.balance_of(self.keeper), seized)
        self.assertEqual(self.pool.get_position(self.borrower).collateral_amount, ONE_COLLATERAL - seized)
        self.assertEqual(self.pool.current_debt(self.borrower), 500 * ONE_STABLE)
        self.assertEqual(self.pool.state.pool_liquidity_balance, 9_500 * ONE_STABLE)
        self.assertEqual(self.pool.state.total_collateral, ONE_COLLATERAL - seized)

        event = self.pool.event_log.last()
        self.assertEqual(event.operation, Operation.LIQUIDATE)
        self.assertEqual(event.data["collateral_seized"], seized)

    def test_liquidation_above_debt(self):
        self._open_position(borrow=1000 * ONE_STABLE)
        self._drop_price_until_liquidatable()
        self._fund(self.usdc, self.keeper, 2000 * ONE_STABLE)
        with self.assertRaises(InvariantViolation):
            self.pool.liquidate(self.keeper, self.borrower, 1000 * ONE_STABLE + 1)

    def test_failed_transfer_rolls_back(self):
        """Test that a liquidation failing at the transfer leaves no trace"""
        self._open_position(borrow=1000 * ONE_STABLE)
        self._drop_price_until_liquidatable()
        events_before = len(self.pool.event_log)
        position_before = self.pool.get_position(self.borrower)
        liquidity_before = self.pool.state.pool_liquidity_balance

        # Keeper has no funds and no allowance
        with self.assertRaises(InvariantViolation) as context:
            self.pool.liquidate(self.keeper, self.borrower, 500 * ONE_STABLE)
        self.assertIn("allowance", str(context.exception))

        self.assertEqual(self.pool.get_position(self.borrower), position_before)
        self.assertEqual(self.pool.state.pool_liquidity_balance, liquidity_before)
        self.assertEqual(len(self.pool.event_log), events_before)
        self.assertEqual(self.weth.balance_of(self.keeper), 0)

    # --- Transaction boundary ---

    def test_reentrant_call_rejected(self):
        """Test that a transfer callback cannot re-enter the pool"""
        self._open_position()
        self.usdc.hook = lambda: self.pool.withdraw_liquidity(self.lender, 1)

        with self.assertRaises(ReentrancyError):
            self.pool.borrow(self.borrower, 100 * ONE_STABLE)

        self.assertEqual(self.pool.current_debt(self.borrower), 0)
        self.assertEqual(self.usdc.balance_of(self.borrower), 0)
        self.assertEqual(self.pool.state.pool_liquidity_balance, 10_000 * ONE_STABLE)
        self.assertEqual(self.pool.lp_balance(self.lender), self.lp_shares)

        # The guard is released afterwards
        self.pool.borrow(self.borrower, 100 * ONE_STABLE)
        self.assertEqual(self.pool.current_debt(self.borrower), 100 * ONE_STABLE)

    def test_interrupt_rolls_back(self):
        """Test that an interrupt raised after a transfer still rolls the borrow back"""
        self._open_position()
        events_before = len(self.pool.event_log)

        def interrupt():
            raise KeyboardInterrupt

        self.usdc.hook = interrupt
        with self.assertRaises(KeyboardInterrupt):
            self.pool.borrow(self.borrower, 100 * ONE_STABLE)

        self.assertEqual(self.pool.current_debt(self.borrower), 0)
        self.assertEqual(self.pool.state.total_debt_shares, 0)
        self.assertEqual(self.usdc.balance_of(self.borrower), 0)
        self.assertEqual(self.usdc.balance_of(self.pool.address), 10_000 * ONE_STABLE)
        self.assertEqual(self.pool.state.pool_liquidity_balance, 10_000 * ONE_STABLE)
        self.assertEqual(len(self.pool.event_log), events_before)

        self.pool.borrow(self.borrower, 100 * ONE_STABLE)
        self.assertEqual(self.pool.current_debt(self.borrower), 100 * ONE_STABLE)

    def test_failed_first_deposit_leaves_no_position(self):
        """Test that a position opened by a failed deposit is discarded"""
        with self.assertRaises(InvariantViolation):
            self.pool.deposit_collateral("newcomer", ONE_COLLATERAL)

        self.assertIsNone(self.pool.get_position("newcomer"))
        self.assertNotIn("newcomer", self.pool.state.positions)
        self.assertEqual(self.pool.state.total_collateral, 0)

    def test_events_recorded_on_commit(self):
        self._open_position(borrow=100 * ONE_STABLE)
        operations = [event.operation for event in self.pool.event_log]
        self.assertEqual(
            operations,
            [Operation.DEPOSIT_LIQUIDITY, Operation.DEPOSIT_COLLATERAL, Operation.BORROW],
        )
        self.assertEqual(self.pool.event_log.last().timestamp, self.clock.now())

    # --- Admin ---

    def test_owner_only_setters(self):
        """Test that risk parameters can only be changed by the owner"""
        for caller in ("oracle", "stranger"):
            with self.assertRaises(AuthorizationError):
                self.pool.set_ltv(caller, 6000)
            with self.assertRaises(AuthorizationError):
                self.pool.set_liquidation_threshold(caller, 8000)
            with self.assertRaises(AuthorizationError):
                self.pool.set_liquidation_bonus(caller, 800)
            with self.assertRaises(AuthorizationError):
                self.pool.set_operator(caller, caller)

        self.pool.set_liquidation_threshold("owner", 8000)
        self.pool.set_ltv("owner", 6000)
        self.pool.set_liquidation_bonus("owner", 800)
        self.assertEqual(self.pool.state.ltv, 6000)
        self.assertEqual(self.pool.state.liquidation_threshold, 8000)
        self.assertEqual(self.pool.state.liquidation_bonus, 800)

        with self.assertRaises(InvariantViolation):
            self.pool.set_ltv("owner", 8000)

    def test_price_updates_by_operator(self):
        self.pool.set_price("oracle", 2100 * ONE_STABLE)
        self.assertEqual(self.pool.state.collateral_price, 2100 * ONE_STABLE)
        with self.assertRaises(AuthorizationError):
            self.pool.set_price("stranger", 2100 * ONE_STABLE)
        with self.assertRaises(InvariantViolation):
            self.pool.set_price("oracle", 3000 * ONE_STABLE)

    def test_set_operator(self):
        self.pool.set_operator("owner", "new_oracle")
        self.pool.set_price("new_oracle", 2100 * ONE_STABLE)
        with self.assertRaises(AuthorizationError):
            self.pool.set_price("oracle", 2000 * ONE_STABLE)
        self.assertEqual(self.pool.event_log.last().operation, Operation.SET_PRICE)

    def test_set_apr_refreshes_before_change(self):
        """Test that both multipliers are settled under the old APR before it changes"""
        self._open_position(borrow=1000 * ONE_STABLE)
        self.clock.advance(SECONDS_PER_YEAR // 2)

        self.pool.set_apr("oracle", 700)

        now = self.clock.now()
        self.assertEqual(self.pool.state.last_debt_update_time, now)
        self.assertEqual(self.pool.state.last_lp_update_time, now)
        self.assertEqual(self.pool.state.acc_debt_per_share, PRECISION * 1025 // 1000)
        self.assertGreater(self.pool.state.acc_lp_per_share, PRECISION)
        self.assertEqual(self.pool.state.apr, 700)
        self.assertEqual(self.pool.state.last_apr_update_time, now)

        with self.assertRaises(InvariantViolation) as context:
            self.pool.set_apr("owner", 800)
        self.assertIn("cooldown", str(context.exception))

    def test_set_apr_requires_owner_or_operator(self):
        with self.assertRaises(AuthorizationError):
            self.pool.set_apr("stranger", 600)
        self.assertEqual(self.pool.state.apr, 500)
        self.assertIsNone(self.pool.state.last_apr_update_time)

        self.pool.set_apr("oracle", 600)
        self.assertEqual(self.pool.state.apr, 600)

    def test_sweep_surplus(self):
        """Test that only balances above the ledger entitlement are swept"""
        self._open_position()
        self.usdc.mint(self.pool.address, 123)
        self.weth.mint(self.pool.address, 456)

        with self.assertRaises(AuthorizationError):
            self.pool.sweep_surplus("oracle", "treasury")

        swept = self.pool.sweep_surplus("owner", "treasury")

        self.assertEqual(swept, (123, 456))
        self.assertEqual(self.usdc.balance_of("treasury"), 123)
        self.assertEqual(self.weth.balance_of("treasury"), 456)
        self.assertEqual(self.usdc.balance_of(self.pool.address), self.pool.state.pool_liquidity_balance)
        self.assertEqual(self.weth.balance_of(self.pool.address), self.pool.state.total_collateral)

        self.assertEqual(self.pool.sweep_surplus("owner", "treasury"), (0, 0))

    def test_config_decimals_must_match_assets(self):
        with self.assertRaises(ValidationError):
            LendingPool("owner", Token("USDC", 18), Token("WETH", 18), config=LendingConfig(), clock=self.clock)

    def test_system_state(self):
        self._open_position(borrow=1000 * ONE_STABLE)
        state = self.pool.get_system_state()
        self.assertEqual(state['total_debt'], 1000 * ONE_STABLE)
        self.assertEqual(state['pool_liquidity'], 9_000 * ONE_STABLE)
        self.assertEqual(state['total_collateral'], ONE_COLLATERAL)
        self.assertEqual(state['positions'], 1)
        self.assertAlmostEqual(state['collateral_ratio'], 2.0)


class TestConcurrentAccess(unittest.TestCase):
    """Several threads drive the same pool; the ledger must stay consistent."""

    THREADS = 8
    ROUNDS = 25

    def setUp(self):
        self.clock = ManualClock(start=1_000_000)
        self.usdc = Token("USDC", 6)
        self.weth = Token("WETH", 18)
        self.pool = LendingPool("owner", self.usdc, self.weth, clock=self.clock)

        self.accounts = [f"user{i}" for i in range(self.THREADS)]
        for account in self.accounts:
            self.usdc.mint(account, self.ROUNDS * 1000 * ONE_STABLE)
            self.usdc.approve(account, self.pool.address, self.ROUNDS * 1100 * ONE_STABLE)
            self.weth.mint(account, ONE_COLLATERAL)
            self.weth.approve(account, self.pool.address, ONE_COLLATERAL)
            self.pool.deposit_collateral(account, ONE_COLLATERAL)

    def _run(self, account, errors, rejected):
        try:
            for _ in range(self.ROUNDS):
                self.pool.deposit_liquidity(account, 1000 * ONE_STABLE)
                self.pool.borrow(account, 100 * ONE_STABLE)
                try:
                    self.pool.borrow(account, 10_000 * ONE_STABLE)
                except InvariantViolation:
                    rejected.append(account)
                self.pool.repay(account, 100 * ONE_STABLE)
        except Exception as exc:
            errors.append(exc)

    def test_concurrent_operations_stay_consistent(self):
        """Test that concurrent deposits, borrows and repays keep the ledger balanced"""
        errors, rejected = [], []
        threads = [
            threading.Thread(target=self._run, args=(account, errors, rejected))
            for account in self.accounts
        ]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        self.assertEqual(errors, [])
        self.assertEqual(len(rejected), self.THREADS * self.ROUNDS)

        state = self.pool.state
        deposited = self.THREADS * self.ROUNDS * 1000 * ONE_STABLE
        self.assertEqual(self.usdc.balance_of(self.pool.address), state.pool_liquidity_balance)
        self.assertEqual(state.pool_liquidity_balance, deposited)
        self.assertEqual(sum(state.lp_balances.values()), state.total_lp_share_supply)
        self.assertEqual(sum(p.debt_shares for p in state.positions.values()), state.total_debt_shares)
        self.assertEqual(state.total_debt_shares, 0)
        self.assertEqual(sum(p.collateral_amount for p in state.positions.values()), state.total_collateral)
        self.assertEqual(self.weth.balance_of(self.pool.address), state.total_collateral)

        for account in self.accounts:
            self.assertEqual(self.pool.lp_value(self.pool.lp_balance(account)), self.ROUNDS * 1000 * ONE_STABLE)
            self.assertEqual(self.usdc.balance_of(account), 0)
        self.assertEqual(len(self.pool.event_log), self.THREADS * (1 + 3 * self.ROUNDS))


if __name__ == '__main__':
    unittest.main()
