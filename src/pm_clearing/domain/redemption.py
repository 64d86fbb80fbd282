"""Redemption: a full set of outcome shares (YES+NO, or one of every answer) is
worth exactly 1, so complete sets are cashed in immediately after each trade.
"""

import logging
from collections import defaultdict
from collections.abc import Sequence
from datetime import datetime

from src.pm_clearing.domain.models import RedeemableAmount
from src.pm_common.datetime_utils import utc_now
from src.pm_common.enums import BinaryOutcome
from src.pm_common.errors import InvalidOrderError
from src.pm_common.id_generator import generate_bet_id
from src.pm_common.money import EPSILON
from src.pm_market.domain.models import Contract, CpmmBinaryContract, CpmmMultiContract
from src.pm_order.domain.models import Bet
from src.pm_pricing.engine.mechanism import get_outcome_probability

logger = logging.getLogger(__name__)

BINARY_OUTCOMES = (BinaryOutcome.YES.value, BinaryOutcome.NO.value)


def redeemable_outcomes(contract: Contract) -> tuple[str, ...]:
    if isinstance(contract, CpmmBinaryContract):
        return BINARY_OUTCOMES
    if isinstance(contract, CpmmMultiContract):
        return tuple(contract.pool)
    raise InvalidOrderError(f"{contract.mechanism.value} positions cannot be redeemed")


def get_redeemable_amount(
    bets: Sequence[Bet], outcomes: Sequence[str] = BINARY_OUTCOMES
) -> RedeemableAmount:
    """Complete sets held across `bets`; the loan is repaid in proportion to the sets sold."""
    totals: dict[str, float] = defaultdict(float)
    for bet in bets:
        totals[bet.outcome] += bet.shares
    holdings = [totals[outcome] for outcome in outcomes]

    shares = max(min(holdings), 0.0)
    if shares <= EPSILON:
        shares = 0.0
    sold_fraction = shares / max(holdings) if shares > 0 else 0.0
    loan_payment = sum(bet.loan_amount for bet in bets) * sold_fraction
    return RedeemableAmount(
        shares=shares,
        loan_payment=loan_payment,
        net_amount=shares - loan_payment,
    )


def get_redemption_bets(
    shares: float,
    loan_payment: float,
    contract: Contract,
    *,
    user_id: str = "",
    now: datetime | None = None,
) -> tuple[Bet, ...]:
    """One synthetic bet per outcome removing `shares` at the current price.

    The amounts add up to -shares, the value of the complete sets.
    """
    if shares <= 0:
        return ()
    outcomes = redeemable_outcomes(contract)
    now = now or utc_now()
    loan_share = -loan_payment / len(outcomes) if loan_payment else 0.0

    bets = []
    for outcome in outcomes:
        prob = get_outcome_probability(contract, outcome)
        amount = prob * -shares
        bets.append(Bet(
            id=generate_bet_id(),
            user_id=user_id,
            contract_id=contract.id,
            outcome=outcome,
            amount=amount,
            shares=-shares,
            prob_before=prob,
            prob_after=prob,
            created_time=now,
            order_amount=amount,
            is_filled=True,
            is_cancelled=False,
            loan_amount=loan_share,
            is_redemption=True,
        ))
    logger.info("Redeeming %.4f complete sets for %s on %s", shares, user_id, contract.id)
    return tuple(bets)
