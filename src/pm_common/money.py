"""Floating-point helpers for mana-denominated amounts and probabilities.

Amounts, shares and probabilities are floats. Comparisons go through the
epsilon helpers below; anything headed for a balance goes through
ensure_finite first.
"""

import math
from collections.abc import Callable

from src.pm_common.errors import NonFiniteValueError

EPSILON = 1e-8


def floating_equal(a: float, b: float, epsilon: float = EPSILON) -> bool:
    return abs(a - b) < epsilon


def floating_greater_equal(a: float, b: float, epsilon: float = EPSILON) -> bool:
    return a + epsilon >= b


def floating_lesser_equal(a: float, b: float, epsilon: float = EPSILON) -> bool:
    return a - epsilon <= b


def ensure_finite(value: float, what: str = "value") -> float:
    """Return value unchanged, or raise NonFiniteValueError for NaN/inf."""
    if not math.isfinite(value):
        raise NonFiniteValueError(what, value)
    return value


def clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


def binary_search(low: float, high: float, comparator: Callable[[float], float]) -> float:
    """Bisect [low, high] until comparator(mid) == 0 or floats run out of precision.

    comparator must be increasing: negative below the target, positive above.
    """
    mid = 0.0
    while True:
        mid = low + (high - low) / 2
        if mid == low or mid == high:
            break
        comparison = comparator(mid)
        if comparison == 0:
            break
        if comparison > 0:
            high = mid
        else:
            low = mid
    return mid
