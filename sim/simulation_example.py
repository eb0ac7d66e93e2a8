"""
Simulation Example for the stablelend engine.

This script demonstrates how to set up a lending pool with lenders and
borrowers, let interest accrue, and run a volatile market scenario with
liquidations.
"""

import logging

from stablelend import LendingConfig, LendingPool, ManualClock, Token
from stablelend.simulation import simulate_market_scenario

ONE_STABLE = 10**6
ONE_COLLATERAL = 10**18


def setup_pool(clock):
    """Creates a pool funded by two lenders with three borrowers of differing risk."""
    config = LendingConfig()
    usdc = Token("USDC", config.stable_decimals)
    weth = Token("WETH", config.collateral_decimals)
    pool = LendingPool("admin", usdc, weth, config=config, clock=clock, operator="oracle")

    for lender, amount in (("lender0", 500_000), ("lender1", 250_000)):
        usdc.mint(lender, amount * ONE_STABLE)
        usdc.approve(lender, pool.address, amount * ONE_STABLE)
        pool.deposit_liquidity(lender, amount * ONE_STABLE)

    # (collateral in whole tokens, share of max borrow in percent)
    borrowers = {"borrower0": (10, 50), "borrower1": (25, 90), "borrower2": (50, 99)}
    for borrower, (collateral, utilization) in borrowers.items():
        weth.mint(borrower, collateral * ONE_COLLATERAL)
        weth.approve(borrower, pool.address, collateral * ONE_COLLATERAL)
        pool.deposit_collateral(borrower, collateral * ONE_COLLATERAL)
        pool.borrow(borrower, pool.max_borrowable(borrower) * utilization // 100)

    return pool


def print_state(pool):
    state = pool.get_system_state()
    print(f"  Price:          {state['price'] / ONE_STABLE:,.2f}")
    print(f"  Total debt:     {state['total_debt'] / ONE_STABLE:,.2f}")
    print(f"  Pool liquidity: {state['pool_liquidity'] / ONE_STABLE:,.2f}")
    print(f"  Total LP value: {state['total_lp_value'] / ONE_STABLE:,.2f}")
    print(f"  Collateral:     {state['total_collateral'] / ONE_COLLATERAL:,.4f}")
    for user in sorted(pool.state.positions):
        print(f"  {user}: debt {pool.current_debt(user) / ONE_STABLE:,.2f}, "
              f"status {pool.position_status(user).name}")


def run_interest_simulation():
    """Shows a year of interest accruing on borrowers and flowing to lenders."""
    print("=== Running Interest Accrual Simulation ===")
    clock = ManualClock(start=1_700_000_000)
    pool = setup_pool(clock)
    print_state(pool)

    clock.advance(365 * 24 * 60 * 60)
    print("\n--- After one year ---")
    print_state(pool)
    print(f"  LP APY: {pool.lp_apy() / 100:.2f}%")


def run_market_simulation(days=30, volatility=0.05, plot=True):
    """Runs a volatile market with liquidations."""
    print("\n=== Running Market Simulation ===")
    clock = ManualClock(start=1_700_000_000)
    pool = setup_pool(clock)

    results = simulate_market_scenario(pool, clock, days, price_volatility=volatility,
                                       plot_results=plot, seed=42)

    print(f"  Initial price:   {results['initial_price'] / ONE_STABLE:,.2f}")
    print(f"  Final price:     {results['final_price'] / ONE_STABLE:,.2f}")
    print(f"  Lowest price:    {results['min_price'] / ONE_STABLE:,.2f}")
    print(f"  Liquidations:    {results['liquidations']}")
    print(f"  Debt liquidated: {results['debt_liquidated'] / ONE_STABLE:,.2f}")
    print(f"  Final debt:      {results['final_total_debt'] / ONE_STABLE:,.2f}")
    print(f"  Final LP value:  {results['final_lp_value'] / ONE_STABLE:,.2f}")


if __name__ == "__main__":
    logging.basicConfig(level=logging.WARNING)
    run_interest_simulation()
    run_market_simulation()
