"""Pseudo-numeric markets: a cpmm-1 probability mapped onto a [min, max] range."""
import math

from src.pm_common.enums import OutcomeType
from src.pm_common.errors import InvalidOrderError
from src.pm_market.domain.models import CpmmBinaryContract


def get_pseudo_probability(
    value: float, low: float, high: float, is_log_scale: bool = False
) -> float:
    """Probability that `value` maps to on a [low, high] range, saturating outside it."""
    if high <= low:
        raise InvalidOrderError(f"range max {high} must exceed min {low}")
    if value < low:
        return 0.0
    if value > high:
        return 1.0
    if is_log_scale:
        return math.log10(value - low + 1) / math.log10(high - low + 1)
    return (value - low) / (high - low)


def resolution_probability_for_value(contract: CpmmBinaryContract, value: float) -> float:
    """A pseudo-numeric market resolved to `value` pays out as MKT at this probability."""
    if contract.outcome_type != OutcomeType.PSEUDO_NUMERIC:
        raise InvalidOrderError("only pseudo-numeric contracts resolve to a value")
    return get_pseudo_probability(value, contract.min, contract.max, contract.is_log_scale)
