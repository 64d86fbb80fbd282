"""Dynamic pari-mutuel (dpm-2) pricing. Legacy; no new contracts use it.

Probability of an outcome is shares^2 / sum(shares_i^2) over outstanding shares.
"""
import math

from config.settings import settings
from src.pm_common.errors import InvalidOrderError, NonFiniteValueError
from src.pm_common.money import ensure_finite


def _square_sum(total_shares: dict[str, float]) -> float:
    square_sum = sum(shares ** 2 for shares in total_shares.values())
    if not square_sum > 0:
        raise NonFiniteValueError("total shares square sum", square_sum)
    return ensure_finite(square_sum, "total shares square sum")


def get_dpm_outcome_probability(total_shares: dict[str, float], outcome: str) -> float:
    square_sum = _square_sum(total_shares)
    shares = total_shares.get(outcome, 0.0)
    return ensure_finite(shares ** 2 / square_sum, "probability")


def get_dpm_outcome_probabilities(total_shares: dict[str, float]) -> dict[str, float]:
    square_sum = _square_sum(total_shares)
    return {
        outcome: ensure_finite(shares ** 2 / square_sum, "probability")
        for outcome, shares in total_shares.items()
    }


def get_dpm_probability(total_shares: dict[str, float]) -> float:
    """YES probability of a binary DPM contract."""
    return get_dpm_outcome_probability(total_shares, "YES")


def calculate_dpm_shares(total_shares: dict[str, float], bet: float, outcome: str) -> float:
    """Shares issued for `bet` on `outcome`."""
    if bet < 0:
        raise InvalidOrderError(f"amount must be non-negative, got {bet}")
    shares = total_shares.get(outcome, 0.0)
    c = 2 * bet * math.sqrt(_square_sum(total_shares))
    return ensure_finite(math.sqrt(bet ** 2 + shares ** 2 + c) - shares, "shares")


def dpm_fee_rate() -> float:
    return settings.DPM_PLATFORM_FEE + settings.DPM_CREATOR_FEE


def deduct_dpm_fees(bet_amount: float, winnings: float) -> float:
    """Fees only apply to the profit part of winnings."""
    if winnings > bet_amount:
        return bet_amount + (1 - dpm_fee_rate()) * (winnings - bet_amount)
    return winnings
