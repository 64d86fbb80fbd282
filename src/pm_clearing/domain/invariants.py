"""Invariant verification after each trade and each resolution."""

import logging
from collections.abc import Sequence

from src.pm_clearing.domain.models import PayoutResult
from src.pm_clearing.domain.payouts import CANCEL, MKT
from src.pm_common.enums import BinaryOutcome
from src.pm_market.domain.models import Contract
from src.pm_matching.domain.models import BetInfo
from src.pm_order.domain.models import Bet
from src.pm_pricing.domain.models import Pool

logger = logging.getLogger(__name__)

TOLERANCE = 1e-6

YES = BinaryOutcome.YES.value
NO = BinaryOutcome.NO.value


def _close(a: float, b: float) -> bool:
    return abs(a - b) <= TOLERANCE * max(1.0, abs(a), abs(b))


def verify_pool_conservation(pool_before: Pool, info: BetInfo) -> None:
    """Raise AssertionError if the pool gained or lost money on a buy.

    INV-1: the bought side's reserve grows by the pool-filled amount net of
           extracted fees, minus the shares paid out
    INV-2: the other reserve grows by the pool-filled amount net of extracted fees
    Fills against limit orders move money between users, not through the pool.
    """
    bet = info.new_bet
    pool_fills = [fill for fill in bet.fills if fill.matched_bet_id is None and not fill.is_sale]
    amount = sum(fill.amount for fill in pool_fills)
    shares = sum(fill.shares for fill in pool_fills)
    net = amount - info.fees.extracted

    bought, other = (YES, NO) if bet.outcome == YES else (NO, YES)
    delta_bought = info.new_pool[bought] - pool_before[bought]
    delta_other = info.new_pool[other] - pool_before[other]

    assert _close(delta_bought + shares, net), (
        f"INV-1 violated: {bought} reserve moved {delta_bought} with {shares} shares out, "
        f"expected net {net}"
    )
    assert _close(delta_other, net), (
        f"INV-2 violated: {other} reserve moved {delta_other}, expected net {net}"
    )
    logger.debug("Pool conservation OK: contract=%s, bet=%s", bet.contract_id, bet.id)


def verify_settlement_completeness(
    outcome: str, bets: Sequence[Bet], result: PayoutResult
) -> None:
    """INV-3: bet payouts equal the shares outstanding in the resolved outcome.

    For CANCEL, payouts equal the amounts wagered instead. MKT blends shares
    and is not checked.
    """
    if outcome == MKT:
        return
    paid = sum(payout.payout for payout in result.payouts)
    if outcome == CANCEL:
        expected = sum(bet.amount for bet in bets)
    else:
        expected = sum(bet.shares for bet in bets if bet.outcome == outcome)
    assert _close(paid, expected), (
        f"INV-3 violated: paid {paid} for {outcome}, outstanding {expected}"
    )


def verify_contract_after_trade(contract: Contract) -> None:
    """INV-4: every reserve stays positive and finite."""
    for outcome, reserve in contract.pool.items():
        assert reserve > 0 and reserve != float("inf"), (
            f"INV-4 violated: {outcome} reserve of {contract.id} is {reserve}"
        )
