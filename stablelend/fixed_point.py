"""
Checked integer arithmetic for the lending engine.

Every quantity on the ledger is bounded to the uint256 range. Anything that
leaves that range, or divides by zero, raises ArithmeticOverflowError instead
of wrapping. Divisions name their rounding direction explicitly.
"""

from .constants import MAX_UINT
from .errors import ArithmeticOverflowError


def _check_range(result: int, op: str) -> int:
    if result < 0:
        raise ArithmeticOverflowError(f"Arithmetic underflow in {op}")
    if result > MAX_UINT:
        raise ArithmeticOverflowError(f"Arithmetic overflow in {op}")
    return result


def checked_add(a: int, b: int) -> int:
    """Add with overflow checking"""
    return _check_range(a + b, "addition")


def checked_sub(a: int, b: int) -> int:
    """Subtract with underflow checking"""
    return _check_range(a - b, "subtraction")


def checked_mul(a: int, b: int) -> int:
    """Multiply with overflow checking"""
    return _check_range(a * b, "multiplication")


def div_floor(a: int, b: int) -> int:
    """Divide rounding towards zero"""
    if b == 0:
        raise ArithmeticOverflowError("Division by zero")
    return _check_range(a, "division") // b


def div_ceil(a: int, b: int) -> int:
    """Divide rounding up; any remainder adds one unit"""
    if b == 0:
        raise ArithmeticOverflowError("Division by zero")
    quotient, remainder = divmod(_check_range(a, "division"), b)
    if remainder > 0:
        quotient += 1
    return quotient


def mul_div_floor(a: int, b: int, denominator: int) -> int:
    """a * b / denominator, rounded down"""
    return div_floor(checked_mul(a, b), denominator)


def mul_div_ceil(a: int, b: int, denominator: int) -> int:
    """a * b / denominator, rounded up"""
    return div_ceil(checked_mul(a, b), denominator)
