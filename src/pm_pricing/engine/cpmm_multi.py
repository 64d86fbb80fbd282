"""Multi-outcome constant product (cpmm-2).

One reserve per answer; the invariant is the product of all reserves.
prob(answer) = (1 / reserve) / sum(1 / reserve_i), so probabilities sum to one.
"""
import math

from src.pm_common.errors import InvalidOrderError, NonFiniteValueError
from src.pm_common.money import ensure_finite
from src.pm_pricing.domain.models import Pool


def _check_pool(pool: Pool) -> None:
    if len(pool) < 2:
        raise NonFiniteValueError("answer count", float(len(pool)))
    for answer, reserve in pool.items():
        ensure_finite(reserve, f"reserve for {answer}")
        if reserve <= 0:
            raise NonFiniteValueError(f"reserve for {answer}", reserve)


def pool_to_probs(pool: Pool) -> dict[str, float]:
    _check_pool(pool)
    inverse_sum = sum(1 / reserve for reserve in pool.values())
    return {answer: 1 / (reserve * inverse_sum) for answer, reserve in pool.items()}


def get_prob(pool: Pool, outcome: str) -> float:
    if outcome not in pool:
        raise InvalidOrderError(f"unknown answer {outcome!r}")
    return pool_to_probs(pool)[outcome]


def _log_k(pool: Pool) -> float:
    return sum(math.log(reserve) for reserve in pool.values())


def buy(pool: Pool, outcome: str, amount: float) -> tuple[Pool, float]:
    """Mint `amount` of every answer, then withdraw `outcome` until the product is restored.

    Returns (new_pool, shares).
    """
    if outcome not in pool:
        raise InvalidOrderError(f"unknown answer {outcome!r}")
    if amount < 0:
        raise InvalidOrderError(f"amount must be non-negative, got {amount}")
    _check_pool(pool)

    log_k = _log_k(pool)
    others = {answer: reserve + amount for answer, reserve in pool.items() if answer != outcome}
    max_shares = pool[outcome] + amount
    new_reserve = math.exp(log_k - _log_k(others))
    shares = ensure_finite(max_shares - new_reserve, "shares")

    new_pool = dict(others)
    new_pool[outcome] = new_reserve
    return new_pool, shares
