"""
Event log for the stablelend engine.

State changes are announced as events appended to an EventLog. The log is
append-only; a transaction buffers its events and hands them over only when
it commits, so a rolled back operation leaves no trace in it.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List


class Operation(Enum):
    """
    Represents the operations that emit events.
    """
    DEPOSIT_LIQUIDITY = 0
    WITHDRAW_LIQUIDITY = 1
    DEPOSIT_COLLATERAL = 2
    BORROW = 3
    REPAY = 4
    WITHDRAW_COLLATERAL = 5
    LIQUIDATE = 6
    SET_LTV = 7
    SET_LIQUIDATION_THRESHOLD = 8
    SET_LIQUIDATION_BONUS = 9
    SET_PRICE = 10
    SET_APR = 11
    SET_OPERATOR = 12
    SWEEP_SURPLUS = 13


@dataclass(frozen=True)
class Event:
    """A single state-change notification."""
    operation: Operation
    timestamp: int
    data: Dict[str, Any] = field(default_factory=dict)


class EventLog:
    """
    Append-only sink for events.
    """

    def __init__(self):
        self._events: List[Event] = []

    def append(self, event):
        self._events.append(event)

    def extend(self, events):
        self._events.extend(events)

    def __len__(self):
        return len(self._events)

    def __iter__(self):
        return iter(list(self._events))

    def filter(self, operation):
        """Returns all events of the given operation, oldest first."""
        return [e for e in self._events if e.operation == operation]

    def last(self):
        """Returns the most recent event, or None if the log is empty."""
        return self._events[-1] if self._events else None
