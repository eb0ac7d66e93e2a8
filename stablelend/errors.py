"""Custom errors for the lending engine"""


class LendingError(ValueError):
    """Base error class for lending engine errors"""
    pass


class ValidationError(LendingError):
    """Error for malformed input: bad amounts, unknown positions, bad config"""
    pass


class InvariantViolation(LendingError):
    """Error for operations that would break a risk gate or ledger invariant"""
    pass


class ReentrancyError(InvariantViolation):
    """Error for a nested call into the ledger while a transaction is open"""
    pass


class AuthorizationError(LendingError):
    """Error for privileged operations invoked by an unprivileged caller"""
    pass


class ArithmeticOverflowError(LendingError):
    """Error for arithmetic overflow/underflow or division by zero"""
    pass
