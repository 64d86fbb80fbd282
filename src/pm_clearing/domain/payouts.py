"""Per-bet payout on resolution, one implementation per mechanism.

Payouts are positive for winning positions and follow the sign of the bet
for synthetic sale/redemption bets, so summing over a user's bets nets out.
"""
from collections.abc import Callable
from typing import Any

from src.pm_common.enums import BinaryOutcome, Mechanism, OutcomeType, Resolution
from src.pm_common.errors import (
    ContractNotResolvedError,
    InvalidOrderError,
    NonFiniteValueError,
)
from src.pm_common.money import ensure_finite
from src.pm_market.domain.models import (
    Contract,
    CpmmBinaryContract,
    CpmmMultiContract,
    DpmContract,
)
from src.pm_order.domain.models import Bet
from src.pm_pricing.engine.dpm import (
    deduct_dpm_fees,
    get_dpm_outcome_probabilities,
    get_dpm_probability,
)
from src.pm_pricing.engine.mechanism import get_probability

YES = BinaryOutcome.YES.value
NO = BinaryOutcome.NO.value
MKT = Resolution.MKT.value
CANCEL = Resolution.CANCEL.value


def mkt_probability(contract: CpmmBinaryContract | DpmContract) -> float:
    """Resolution probability of a MKT resolution, defaulting to the last price."""
    if contract.resolution_probability is not None:
        return contract.resolution_probability
    if isinstance(contract, DpmContract):
        return get_dpm_probability(contract.total_shares)
    return get_probability(contract)


def resolution_weights(resolutions: dict[str, float] | None) -> dict[str, float]:
    """MKT weights per answer, normalised to sum to 1."""
    if not resolutions:
        raise InvalidOrderError("MKT resolution of a multi-outcome contract needs resolutions")
    total = sum(resolutions.values())
    if total <= 0:
        raise InvalidOrderError("MKT resolution weights must sum to a positive number")
    return {answer: weight / total for answer, weight in resolutions.items()}


# --- cpmm-1 ---

def _cpmm_binary_payout(contract: CpmmBinaryContract, bet: Bet, outcome: str) -> float:
    if outcome == CANCEL:
        return bet.amount
    if outcome == MKT:
        prob = mkt_probability(contract)
        return bet.shares * (prob if bet.outcome == YES else 1 - prob)
    if outcome not in (YES, NO):
        raise InvalidOrderError(f"unknown resolution {outcome!r} for a binary contract")
    return bet.shares if bet.outcome == outcome else 0.0


# --- cpmm-2 ---

def _cpmm_multi_payout(contract: CpmmMultiContract, bet: Bet, outcome: str) -> float:
    if outcome == CANCEL:
        return bet.amount
    if outcome == MKT:
        weights = resolution_weights(contract.resolutions)
        return bet.shares * weights.get(bet.outcome, 0.0)
    if outcome not in contract.pool:
        raise InvalidOrderError(f"unknown answer {outcome!r}")
    return bet.shares if bet.outcome == outcome else 0.0


# --- dpm-2 ---

def _dpm_shares_in(bet: Bet, outcome: str) -> float:
    # Numeric bets hold shares in every bucket.
    if bet.all_outcome_shares is not None:
        return bet.all_outcome_shares.get(outcome, 0.0)
    return bet.shares if bet.outcome == outcome else 0.0


def calculate_dpm_cancel_payout(contract: DpmContract, bet: Bet) -> float:
    """Refund of the pool pro rata to the amount staked."""
    bet_total = sum(contract.total_bets.values())
    if bet_total <= 0:
        return 0.0
    return bet.amount / bet_total * sum(contract.pool.values())


def _check_weighted_total(weighted_total: float) -> float:
    if not weighted_total > 0:
        raise NonFiniteValueError("weighted share total", weighted_total)
    return weighted_total


def _dpm_mkt_payout(contract: DpmContract, bet: Bet) -> float:
    pool_total = sum(contract.pool.values())
    total_shares = contract.total_shares
    phantom = contract.phantom_shares

    if contract.outcome_type == OutcomeType.BINARY:
        prob = mkt_probability(contract)
        weighted_total = (
            prob * (total_shares.get(YES, 0.0) - phantom.get(YES, 0.0))
            + (1 - prob) * (total_shares.get(NO, 0.0) - phantom.get(NO, 0.0))
        )
        bet_prob = prob if bet.outcome == YES else 1 - prob
        winnings = bet_prob * bet.shares / _check_weighted_total(weighted_total) * pool_total
        return deduct_dpm_fees(bet.amount, winnings)

    if contract.resolutions:
        probs = resolution_weights(contract.resolutions)
    else:
        probs = get_dpm_outcome_probabilities(total_shares)
    weighted_total = sum(probs.get(o, 0.0) * s for o, s in total_shares.items())
    winnings = probs.get(bet.outcome, 0.0) * bet.shares / _check_weighted_total(weighted_total) * pool_total
    return deduct_dpm_fees(bet.amount, winnings)


def _dpm_payout(contract: DpmContract, bet: Bet, outcome: str) -> float:
    if outcome == CANCEL:
        return calculate_dpm_cancel_payout(contract, bet)
    if outcome == MKT:
        return _dpm_mkt_payout(contract, bet)

    shares = _dpm_shares_in(bet, outcome)
    outstanding = contract.total_shares.get(outcome, 0.0) - contract.phantom_shares.get(outcome, 0.0)
    if shares == 0 or outstanding <= 0:
        return 0.0
    winnings = shares / outstanding * sum(contract.pool.values())
    return deduct_dpm_fees(bet.amount, winnings)


_PAYOUT: dict[Mechanism, Callable[[Any, Bet, str], float]] = {
    Mechanism.CPMM_1: _cpmm_binary_payout,
    Mechanism.CPMM_2: _cpmm_multi_payout,
    Mechanism.DPM_2: _dpm_payout,
}


def calculate_payout(contract: Contract, bet: Bet, outcome: str) -> float:
    """Payout of `bet` if `contract` resolves to `outcome`."""
    payout = _PAYOUT[contract.mechanism](contract, bet, outcome)
    return ensure_finite(payout, f"payout for bet {bet.id}")


def resolved_payout(contract: Contract, bet: Bet) -> float:
    if contract.resolution is None:
        raise ContractNotResolvedError(contract.id)
    return calculate_payout(contract, bet, contract.resolution)
