"""
Protocol constants for the stablelend accounting engine.

All accounting is done in integers. Multipliers use an 18 decimal fixed point
scale, risk parameters and the APR are expressed in basis points.
"""

# Fixed point scale factors
PRECISION = 10**18  # Scale of both accrual multipliers
LP_SHARE_DECIMALS = 18  # Decimals of LP shares, independent of the stable asset
BPS = 10_000  # Basis points (100% = 10000)
HEALTH_FACTOR_ONE = BPS * BPS  # Health factor at the liquidation boundary

# Time constants
SECONDS_PER_YEAR = 365 * 24 * 60 * 60

# Largest value any ledger quantity may take (uint256)
MAX_UINT = 2**256 - 1

# Asset precision
DEFAULT_STABLE_DECIMALS = 6
DEFAULT_COLLATERAL_DECIMALS = 18
DEFAULT_INITIAL_PRICE = 2000 * 10**DEFAULT_STABLE_DECIMALS  # Stable units per whole collateral token

# Risk parameters
DEFAULT_LTV = 5000                    # 50% in bps
DEFAULT_LIQUIDATION_THRESHOLD = 7500  # 75% in bps
DEFAULT_LIQUIDATION_BONUS = 500       # 5% in bps
MAX_LIQUIDATION_BONUS = 2000          # 20% in bps

# Interest rate parameters
DEFAULT_APR = 500                     # 5% in bps
MAX_APR = 10_000                      # 100% in bps
DEFAULT_MAX_APR_CHANGE = 200          # 2% per update, in bps
DEFAULT_APR_UPDATE_COOLDOWN = 24 * 60 * 60

# Price circuit breaker
DEFAULT_MAX_PRICE_CHANGE = 1000       # 10% per update, in bps

# Well-known account names used by the in-memory collaborators
POOL_ACCOUNT = "lending_pool"
