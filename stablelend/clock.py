"""Transaction clocks supplying elapsed time for interest accrual"""

import time

from .errors import ValidationError


class SystemClock:
    """Wall clock in whole seconds."""

    def now(self):
        return int(time.time())


class ManualClock:
    """
    Clock advanced explicitly, for simulations and tests.

    Time only moves forward.
    """

    def __init__(self, start=0):
        if start < 0:
            raise ValidationError("Clock cannot start before zero")
        self.current_time = start

    def now(self):
        return self.current_time

    def advance(self, seconds):
        """Advances the clock by the specified number of seconds."""
        if seconds < 0:
            raise ValidationError("Clock cannot move backwards")
        self.current_time += seconds
        return self.current_time

    def set(self, timestamp):
        """Moves the clock to `timestamp`, which must not be in the past."""
        if timestamp < self.current_time:
            raise ValidationError("Clock cannot move backwards")
        self.current_time = timestamp
        return self.current_time
