"""Hybrid pool/limit-order matching for cpmm-1 binary contracts.

An incoming bet is filled step by step from whichever side is cheaper: the
AMM pool, or the best resting limit order on the opposite outcome. The pool
is only bought up to the next limit order's price, after which that order is
matched at its own limit price.
"""
import logging
from collections.abc import Iterable, Mapping
from datetime import datetime

from src.pm_common.enums import BinaryOutcome
from src.pm_common.money import (
    floating_equal,
    floating_greater_equal,
    floating_lesser_equal,
)
from src.pm_matching.domain.models import FillsResult, FillStep, MakerFill
from src.pm_matching.engine.limit_order import sort_for_matching
from src.pm_order.domain.models import Bet, Fill
from src.pm_pricing.domain.models import NO_FEES, CpmmState, FeeSchedule
from src.pm_pricing.engine.cpmm import (
    calculate_cpmm_amount_to_prob,
    calculate_cpmm_purchase,
    get_cpmm_probability,
)

logger = logging.getLogger(__name__)

YES = BinaryOutcome.YES.value


def _no_fill(outcome: str, prob: float, limit_prob: float, matched_bet: Bet | None) -> bool:
    """True when both the pool and the best resting order are past the taker's limit."""
    if outcome == YES:
        matched_limit = matched_bet.limit_prob if matched_bet else 1.0
        return floating_greater_equal(prob, limit_prob) and matched_limit > limit_prob
    matched_limit = matched_bet.limit_prob if matched_bet else 0.0
    return floating_lesser_equal(prob, limit_prob) and matched_limit < limit_prob


def _pool_is_cheaper(outcome: str, prob: float, matched_bet: Bet) -> bool:
    if outcome == YES:
        return not floating_lesser_equal(matched_bet.limit_prob, prob)
    return not floating_greater_equal(matched_bet.limit_prob, prob)


def compute_fill(
    amount: float,
    outcome: str,
    limit_prob: float | None,
    state: CpmmState,
    matched_bet: Bet | None,
    matched_bet_balance: float | None,
    fee_schedule: FeeSchedule,
    now: datetime,
) -> FillStep | None:
    """Next fill for `amount`, or None when nothing can execute within limit_prob."""
    prob = get_cpmm_probability(state.pool, state.p)

    if limit_prob is not None and _no_fill(outcome, prob, limit_prob, matched_bet):
        return None

    if matched_bet is None or _pool_is_cheaper(outcome, prob, matched_bet):
        # Buy from the pool, stopping at the next order's price or our own limit.
        if matched_bet is None:
            limit = limit_prob
        elif outcome == YES:
            limit = min(matched_bet.limit_prob, limit_prob if limit_prob is not None else 1.0)
        else:
            limit = max(matched_bet.limit_prob, limit_prob if limit_prob is not None else 0.0)

        buy_amount = amount
        if limit is not None:
            buy_amount = min(amount, calculate_cpmm_amount_to_prob(state, limit, outcome, fee_schedule))

        purchase = calculate_cpmm_purchase(state, buy_amount, outcome, fee_schedule)
        return FillStep(
            taker=Fill(None, buy_amount, purchase.shares, now),
            state=purchase.new_state,
            fees=purchase.fees,
        )

    # Match the resting order at its own limit price.
    matched_limit = matched_bet.limit_prob
    amount_to_fill = matched_bet.remaining_amount
    if matched_bet_balance is not None:
        amount_to_fill = min(amount_to_fill, max(matched_bet_balance, 0.0))

    if outcome == YES:
        shares = min(amount / matched_limit, amount_to_fill / (1 - matched_limit))
        maker_amount = shares * (1 - matched_limit)
        taker_amount = shares * matched_limit
    else:
        shares = min(amount / (1 - matched_limit), amount_to_fill / matched_limit)
        maker_amount = shares * matched_limit
        taker_amount = shares * (1 - matched_limit)

    return FillStep(
        taker=Fill(matched_bet.id, taker_amount, shares, now),
        maker=MakerFill(bet=matched_bet, amount=maker_amount, shares=shares, timestamp=now),
    )


def compute_fills(
    outcome: str,
    bet_amount: float,
    state: CpmmState,
    limit_prob: float | None,
    unfilled_bets: Iterable[Bet],
    balance_by_user_id: Mapping[str, float] | None,
    fee_schedule: FeeSchedule,
    now: datetime,
) -> FillsResult:
    """Fill `bet_amount` against the pool and resting orders in price-then-time order.

    balance_by_user_id=None skips maker balance checks. When balances are given,
    a maker missing from the map has none, and any order whose owner cannot fund
    its fill is returned in orders_to_cancel instead of being matched.
    """
    sorted_bets = sort_for_matching(unfilled_bets, outcome)
    balances = dict(balance_by_user_id) if balance_by_user_id is not None else None

    takers: list[Fill] = []
    makers: list[MakerFill] = []
    orders_to_cancel: list[Bet] = []
    total_fees = NO_FEES
    amount = bet_amount
    i = 0

    while not floating_equal(amount, 0):
        matched_bet = sorted_bets[i] if i < len(sorted_bets) else None
        matched_balance = None
        if matched_bet is not None and balances is not None:
            matched_balance = balances.get(matched_bet.user_id, 0.0)

        step = compute_fill(
            amount, outcome, limit_prob, state, matched_bet, matched_balance,
            fee_schedule, now,
        )
        if step is None:
            break

        if step.maker is None:
            if floating_equal(step.taker.amount, 0):
                break
            state = step.state
            total_fees = total_fees + step.fees
            takers.append(step.taker)
        else:
            i += 1
            maker = step.maker
            user_id = maker.bet.user_id
            if balances is not None and (
                floating_equal(maker.amount, 0)
                or not floating_greater_equal(balances.get(user_id, 0.0), maker.amount)
            ):
                logger.info(
                    "Cancelling limit order %s: balance %.4f of %s cannot fund it",
                    maker.bet.id, balances.get(user_id, 0.0), user_id,
                )
                orders_to_cancel.append(maker.bet)
                continue
            if balances is not None:
                balances[user_id] -= maker.amount
            takers.append(step.taker)
            makers.append(maker)

        amount -= step.taker.amount

    return FillsResult(
        takers=tuple(takers),
        makers=tuple(makers),
        total_fees=total_fees,
        state=state,
        orders_to_cancel=tuple(orders_to_cancel),
    )
