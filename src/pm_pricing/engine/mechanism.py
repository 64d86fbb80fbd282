"""Probability dispatch: one implementation per mechanism, looked up once."""
from collections.abc import Callable
from typing import Any

from src.pm_common.enums import BinaryOutcome, Mechanism
from src.pm_market.domain.models import (
    Contract,
    CpmmBinaryContract,
    CpmmMultiContract,
    DpmContract,
)
from src.pm_pricing.engine.cpmm import get_cpmm_probability
from src.pm_pricing.engine.cpmm_multi import get_prob
from src.pm_pricing.engine.dpm import get_dpm_outcome_probability


def _cpmm_binary(contract: CpmmBinaryContract, outcome: str) -> float:
    prob = get_cpmm_probability(contract.pool, contract.p)
    return 1 - prob if outcome == BinaryOutcome.NO.value else prob


def _cpmm_multi(contract: CpmmMultiContract, outcome: str) -> float:
    return get_prob(contract.pool, outcome)


def _dpm(contract: DpmContract, outcome: str) -> float:
    return get_dpm_outcome_probability(contract.total_shares, outcome)


_OUTCOME_PROBABILITY: dict[Mechanism, Callable[[Any, str], float]] = {
    Mechanism.CPMM_1: _cpmm_binary,
    Mechanism.CPMM_2: _cpmm_multi,
    Mechanism.DPM_2: _dpm,
}


def get_outcome_probability(contract: Contract, outcome: str) -> float:
    return _OUTCOME_PROBABILITY[contract.mechanism](contract, outcome)


def get_probability(contract: Contract) -> float:
    """YES probability of a binary or pseudo-numeric contract."""
    return get_outcome_probability(contract, BinaryOutcome.YES.value)
