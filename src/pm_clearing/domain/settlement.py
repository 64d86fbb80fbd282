"""Contract settlement: every payout owed when a contract resolves."""

import logging
from collections import defaultdict
from collections.abc import Iterable, Sequence

from config.settings import settings
from src.pm_clearing.domain.loans import get_loan_payouts
from src.pm_clearing.domain.models import Payout, PayoutResult
from src.pm_clearing.domain.payouts import (
    CANCEL,
    MKT,
    calculate_payout,
    mkt_probability,
    resolution_weights,
)
from src.pm_common.enums import BinaryOutcome
from src.pm_common.errors import ContractNotResolvedError
from src.pm_common.money import ensure_finite
from src.pm_market.domain.models import (
    Contract,
    CpmmBinaryContract,
    CpmmMultiContract,
    DpmContract,
    LiquidityProvision,
)
from src.pm_order.domain.models import Bet
from src.pm_pricing.domain.models import Fees
from src.pm_pricing.engine.cpmm import get_cpmm_liquidity_pool_weights
from src.pm_pricing.engine.dpm import dpm_fee_rate

logger = logging.getLogger(__name__)


def _final_pool_value(contract: CpmmBinaryContract | CpmmMultiContract, outcome: str) -> float:
    """What the pool's own shares are worth under `outcome`."""
    pool = contract.pool
    if outcome == MKT:
        if isinstance(contract, CpmmBinaryContract):
            prob = mkt_probability(contract)
            value = prob * pool[BinaryOutcome.YES.value] + (1 - prob) * pool[BinaryOutcome.NO.value]
        else:
            weights = resolution_weights(contract.resolutions)
            value = sum(weight * pool.get(answer, 0.0) for answer, weight in weights.items())
    else:
        value = pool.get(outcome, 0.0)
    return value + contract.subsidy_pool


def get_liquidity_pool_payouts(
    contract: CpmmBinaryContract | CpmmMultiContract,
    outcome: str,
    liquidities: Sequence[LiquidityProvision],
) -> tuple[Payout, ...]:
    if outcome == CANCEL:
        return tuple(Payout(lp.user_id, lp.amount) for lp in liquidities)
    weights = get_cpmm_liquidity_pool_weights(liquidities)
    final_pool = _final_pool_value(contract, outcome)
    return tuple(Payout(user_id, weight * final_pool) for user_id, weight in weights.items())


def _get_fixed_payouts(
    contract: CpmmBinaryContract | CpmmMultiContract,
    outcome: str,
    bets: Sequence[Bet],
    liquidities: Sequence[LiquidityProvision],
) -> PayoutResult:
    payouts = []
    for bet in bets:
        payout = calculate_payout(contract, bet, outcome)
        if payout != 0:
            payouts.append(Payout(bet.user_id, payout))
    return PayoutResult(
        payouts=tuple(payouts),
        # Trading fees were paid out when collected.
        creator_payout=0.0,
        liquidity_payouts=get_liquidity_pool_payouts(contract, outcome, liquidities),
        loan_payouts=get_loan_payouts(bets),
        collected_fees=contract.collected_fees,
    )


def _get_dpm_payouts(contract: DpmContract, outcome: str, bets: Sequence[Bet]) -> PayoutResult:
    open_bets = [bet for bet in bets if not bet.is_sold and bet.sale is None]
    payouts = []
    profits = 0.0
    for bet in open_bets:
        payout = calculate_payout(contract, bet, outcome)
        if outcome != CANCEL:
            profits += max(0.0, payout - bet.amount) / (1 - dpm_fee_rate())
        if payout != 0:
            payouts.append(Payout(bet.user_id, payout))

    fees = Fees()
    if outcome != CANCEL:
        fees = Fees(
            creator_fee=settings.DPM_CREATOR_FEE * profits,
            platform_fee=settings.DPM_PLATFORM_FEE * profits,
        )
    return PayoutResult(
        payouts=tuple(payouts),
        creator_payout=fees.creator_fee,
        loan_payouts=get_loan_payouts(open_bets),
        collected_fees=contract.collected_fees + fees,
    )


def get_payouts(
    contract: Contract,
    bets: Sequence[Bet],
    liquidities: Sequence[LiquidityProvision] = (),
    outcome: str | None = None,
) -> PayoutResult:
    """All payouts for `contract` resolving to `outcome` (default: its resolution)."""
    outcome = outcome if outcome is not None else contract.resolution
    if outcome is None:
        raise ContractNotResolvedError(contract.id)

    if isinstance(contract, DpmContract):
        result = _get_dpm_payouts(contract, outcome, bets)
    else:
        result = _get_fixed_payouts(contract, outcome, bets, liquidities)

    logger.info(
        "Payouts for %s resolved %s: %d bet payouts totalling %.4f, %d liquidity payouts",
        contract.id, outcome, len(result.payouts),
        sum(p.payout for p in result.payouts), len(result.liquidity_payouts),
    )
    return result


def merge_payouts(payouts: Iterable[Payout]) -> dict[str, float]:
    """Net amount per user. Refuses to return anything if a payout is not finite."""
    merged: dict[str, float] = defaultdict(float)
    for payout in payouts:
        ensure_finite(payout.payout, f"payout to {payout.user_id}")
        merged[payout.user_id] += payout.payout
    return dict(merged)
