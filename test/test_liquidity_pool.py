"""
Unit tests for the LiquidityPool module of the stablelend engine.
"""

import unittest

from stablelend.accrual_clock import AccrualClock
from stablelend.constants import PRECISION
from stablelend.errors import InvariantViolation, ValidationError
from stablelend.liquidity_pool import LiquidityPool
from stablelend.state import LedgerState

# LP share units per native unit of a 6-decimal stable asset
SHARE_SCALE = 10**12


class TestLiquidityPool(unittest.TestCase):
    def setUp(self):
        """Set up an empty pool over a 6-decimal asset at t=0 with a 5% APR."""
        self.pool = LiquidityPool(AccrualClock(lp_share_scale=SHARE_SCALE))
        self.state = LedgerState(apr=500)
        self.now = 0

    def test_deposit_mints_shares(self):
        shares = self.pool.deposit_liquidity(self.state, "lp", 1000 * 10**6, self.now)

        self.assertEqual(shares, 1000 * 10**18)
        self.assertEqual(self.state.get_lp_balance("lp"), shares)
        self.assertEqual(self.state.total_lp_share_supply, shares)
        self.assertEqual(self.pool.get_pool_liquidity(self.state), 1000 * 10**6)

    def test_round_trip_loses_at_most_one_unit(self):
        """Test that deposit then withdraw returns the deposit minus at most one unit"""
        self.state.acc_lp_per_share = 1_333_333_333_333_333_333
        self.state.pool_liquidity_balance = 10**9

        amount = 1000
        shares = self.pool.deposit_liquidity(self.state, "lp", amount, self.now)
        returned = self.pool.withdraw_liquidity(self.state, "lp", shares, self.now)

        self.assertLessEqual(returned, amount)
        self.assertLessEqual(amount - returned, 1)
        self.assertEqual(self.state.get_lp_balance("lp"), 0)
        self.assertNotIn("lp", self.state.lp_balances)

    def test_small_round_trip_after_yield(self):
        """Test that a small deposit after yield has accrued loses at most one unit"""
        self.state.acc_lp_per_share = PRECISION * 10_500_001 // 10_000_000
        self.state.lp_balances["lender"] = 10**24
        self.state.total_lp_share_supply = 10**24
        self.state.pool_liquidity_balance = 10**12

        shares = self.pool.deposit_liquidity(self.state, "carol", 21, self.now)
        returned = self.pool.withdraw_liquidity(self.state, "carol", shares, self.now)

        self.assertGreaterEqual(returned, 20)
        self.assertLessEqual(returned, 21)
        self.assertEqual(self.state.total_lp_share_supply, 10**24)

    def test_dust_deposit_rejected(self):
        """Test that a deposit worth less than one share is rejected"""
        pool = LiquidityPool(AccrualClock())
        self.state.acc_lp_per_share = 2 * PRECISION
        with self.assertRaises(ValidationError) as context:
            pool.deposit_liquidity(self.state, "lp", 1, self.now)
        self.assertIn("too small", str(context.exception))
        self.assertEqual(self.state.total_lp_share_supply, 0)

    def test_withdraw_more_than_held(self):
        shares = self.pool.deposit_liquidity(self.state, "lp", 1000, self.now)
        with self.assertRaises(InvariantViolation) as context:
            self.pool.withdraw_liquidity(self.state, "lp", shares + 1, self.now)
        self.assertIn("Insufficient LP shares", str(context.exception))

    def test_withdraw_beyond_liquidity(self):
        """Test that LPs cannot withdraw funds currently lent out"""
        shares = self.pool.deposit_liquidity(self.state, "lp", 1000, self.now)
        self.pool.lend_out(self.state, 900)

        with self.assertRaises(InvariantViolation) as context:
            self.pool.withdraw_liquidity(self.state, "lp", shares, self.now)
        self.assertIn("Insufficient pool liquidity", str(context.exception))

        self.assertEqual(self.pool.withdraw_liquidity(self.state, "lp", shares // 10, self.now), 100)

    def test_lend_out_and_receive(self):
        self.pool.deposit_liquidity(self.state, "lp", 1000, self.now)
        self.pool.lend_out(self.state, 400)
        self.assertEqual(self.state.pool_liquidity_balance, 600)
        self.pool.receive(self.state, 420)
        self.assertEqual(self.state.pool_liquidity_balance, 1020)

        with self.assertRaises(InvariantViolation):
            self.pool.lend_out(self.state, 1021)

    def test_surplus(self):
        """Test that only the balance above the recorded liquidity is surplus"""
        self.pool.deposit_liquidity(self.state, "lp", 1000, self.now)
        self.assertEqual(self.pool.surplus(self.state, 1050), 50)
        self.assertEqual(self.pool.surplus(self.state, 1000), 0)
        self.assertEqual(self.pool.surplus(self.state, 900), 0)

    def test_lp_apy(self):
        """Test that LP yield is the APR scaled by utilization"""
        self.pool.deposit_liquidity(self.state, "lp", 1000 * 10**6, self.now)
        self.pool.lend_out(self.state, 500 * 10**6)
        self.state.total_debt_shares = 500 * 10**6

        self.assertEqual(self.pool.lp_apy(self.state, self.now), 250)

    def test_lp_apy_empty_pool(self):
        self.assertEqual(self.pool.lp_apy(self.state, self.now), 0)

    def test_lp_value_grows_with_interest(self):
        shares = self.pool.deposit_liquidity(self.state, "lp", 1000 * 10**6, self.now)
        self.state.total_debt_shares = 1000 * 10**6

        one_year = 365 * 24 * 60 * 60
        self.assertEqual(self.pool.lp_value(self.state, shares, self.now + one_year), 1050 * 10**6)


if __name__ == '__main__':
    unittest.main()
