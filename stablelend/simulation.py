"""
Market simulation for the stablelend engine.

Drives a LendingPool through random collateral price movements, advancing a
ManualClock so interest accrues, and liquidates positions as they become
undercollateralized. It can be used to observe how the pool's debt,
collateral and LP value evolve under different volatility regimes.
"""

import logging

import numpy as np
import matplotlib.pyplot as plt

from .constants import BPS
from .fixed_point import div_ceil, div_floor
from .state import PositionStatus

logger = logging.getLogger(__name__)

SECONDS_PER_DAY = 24 * 60 * 60


def _clip_to_circuit_breaker(old_price, proposed, max_change_bps):
    lower = div_ceil(old_price * (BPS - max_change_bps), BPS)
    upper = div_floor(old_price * (BPS + max_change_bps), BPS)
    return max(1, min(max(proposed, lower), upper))


def max_liquidation_amount(pool, user):
    """
    Returns the largest debt amount a liquidator can repay for `user`.

    The payout, including the liquidation bonus, must not exceed the
    position's collateral.
    """
    position = pool.get_position(user)
    if position is None:
        return 0
    state = pool.state
    covered = div_floor(
        position.collateral_amount * state.collateral_price * BPS,
        pool.config.collateral_scale * (BPS + state.liquidation_bonus),
    )
    return min(pool.current_debt(user), covered)


def liquidate_unhealthy_positions(pool, keeper):
    """
    Liquidates every liquidatable position as far as its collateral allows.

    The keeper is funded with freshly minted stable asset for each
    liquidation.

    Returns:
        List of (user, debt_repaid, collateral_seized) tuples
    """
    liquidations = []
    for user in list(pool.state.positions):
        if pool.position_status(user) != PositionStatus.LIQUIDATABLE:
            continue

        debt_amount = max_liquidation_amount(pool, user)
        if debt_amount == 0:
            continue

        pool.stable_token.mint(keeper, debt_amount)
        pool.stable_token.approve(keeper, pool.address, debt_amount)
        seized = pool.liquidate(keeper, user, debt_amount)
        liquidations.append((user, debt_amount, seized))
    return liquidations


def simulate_market_scenario(pool, clock, days, price_volatility=0.02, plot_results=True, seed=None,
                             keeper="keeper"):
    """
    Runs a simulation with random price movements over the specified period.

    Args:
        pool: LendingPool to drive; its owner publishes the prices
        clock: ManualClock the pool reads time from
        days: Number of days to simulate
        price_volatility: Daily price volatility (standard deviation of log returns)
        plot_results: Whether to plot the results
        seed: Seed for the random price path
        keeper: Account performing liquidations

    Returns:
        Dictionary with simulation results
    """
    steps = days * 24  # hourly steps
    step_size = SECONDS_PER_DAY // 24
    hourly_volatility = price_volatility / np.sqrt(24)

    rng = np.random.default_rng(seed)
    log_returns = rng.normal(0, hourly_volatility, steps)

    time_points = np.zeros(steps)
    price_history = np.zeros(steps)
    debt_history = np.zeros(steps)
    collateral_history = np.zeros(steps)
    liquidity_history = np.zeros(steps)
    lp_value_history = np.zeros(steps)

    stable_scale = pool.config.stable_scale
    collateral_scale = pool.config.collateral_scale
    max_change = pool.config.max_price_change_bps
    owner = pool.access.owner
    start_time = clock.now()
    initial_price = pool.state.collateral_price
    min_price = initial_price
    total_liquidations = 0
    debt_liquidated = 0

    for i in range(steps):
        clock.advance(step_size)

        old_price = pool.state.collateral_price
        proposed = int(old_price * np.exp(log_returns[i]))
        new_price = _clip_to_circuit_breaker(old_price, proposed, max_change)
        if new_price != old_price:
            pool.set_price(owner, new_price)
        min_price = min(min_price, new_price)

        for _, debt_repaid, _ in liquidate_unhealthy_positions(pool, keeper):
            total_liquidations += 1
            debt_liquidated += debt_repaid

        state = pool.get_system_state()
        time_points[i] = (clock.now() - start_time) / SECONDS_PER_DAY
        price_history[i] = state['price'] / stable_scale
        debt_history[i] = state['total_debt'] / stable_scale
        collateral_history[i] = state['total_collateral'] / collateral_scale
        liquidity_history[i] = state['pool_liquidity'] / stable_scale
        lp_value_history[i] = state['total_lp_value'] / stable_scale

    if plot_results:
        fig, axs = plt.subplots(4, 1, figsize=(12, 16), sharex=True)

        axs[0].plot(time_points, price_history)
        axs[0].set_title('Collateral Price')
        axs[0].set_ylabel('Stable')

        axs[1].plot(time_points, debt_history, label='Total debt')
        axs[1].plot(time_points, liquidity_history, label='Pool liquidity')
        axs[1].set_title('Debt and Liquidity')
        axs[1].set_ylabel('Stable')
        axs[1].legend()

        axs[2].plot(time_points, collateral_history)
        axs[2].set_title('Total Collateral')
        axs[2].set_ylabel('Collateral')

        axs[3].plot(time_points, lp_value_history)
        axs[3].set_title('Total LP Value')
        axs[3].set_ylabel('Stable')
        axs[3].set_xlabel('Days')

        plt.tight_layout()
        plt.show()

    final_state = pool.get_system_state()
    logger.info(
        "Market simulation finished",
        extra={"event": "lending.simulation", "days": days, "liquidations": total_liquidations},
    )

    return {
        'initial_price': initial_price,
        'final_price': final_state['price'],
        'min_price': min_price,
        'final_total_debt': final_state['total_debt'],
        'final_collateral': final_state['total_collateral'],
        'final_pool_liquidity': final_state['pool_liquidity'],
        'final_lp_value': final_state['total_lp_value'],
        'liquidations': total_liquidations,
        'debt_liquidated': debt_liquidated,
        'price_history': price_history,
        'debt_history': debt_history,
    }
