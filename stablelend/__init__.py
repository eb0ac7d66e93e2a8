"""
stablelend: interest-accrual and liquidation accounting engine for a
collateralized stable-asset lending pool.
"""

from .access_control import AccessControl
from .clock import ManualClock, SystemClock
from .config import LendingConfig
from .constants import BPS, HEALTH_FACTOR_ONE, POOL_ACCOUNT, PRECISION, SECONDS_PER_YEAR
from .errors import (
    ArithmeticOverflowError,
    AuthorizationError,
    InvariantViolation,
    LendingError,
    ReentrancyError,
    ValidationError,
)
from .events import Event, EventLog, Operation
from .lending_pool import LendingPool
from .state import LedgerState, Position, PositionStatus
from .token import Token

__all__ = [
    "AccessControl",
    "ArithmeticOverflowError",
    "AuthorizationError",
    "BPS",
    "Event",
    "EventLog",
    "HEALTH_FACTOR_ONE",
    "InvariantViolation",
    "LedgerState",
    "LendingConfig",
    "LendingError",
    "LendingPool",
    "ManualClock",
    "Operation",
    "POOL_ACCOUNT",
    "PRECISION",
    "Position",
    "PositionStatus",
    "ReentrancyError",
    "SECONDS_PER_YEAR",
    "SystemClock",
    "Token",
    "ValidationError",
]
