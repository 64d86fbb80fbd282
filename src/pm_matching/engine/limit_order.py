"""Limit order lifecycle: OPEN -> PARTIALLY_FILLED* -> FILLED | CANCELLED."""
from collections.abc import Iterable
from dataclasses import replace
from datetime import datetime

from src.pm_common.enums import BinaryOutcome
from src.pm_common.errors import InvalidOrderError, OrderNotCancellableError
from src.pm_common.money import EPSILON, floating_equal
from src.pm_order.domain.models import Bet, Fill


def sort_for_matching(unfilled_bets: Iterable[Bet], outcome: str) -> list[Bet]:
    """Open orders on the opposite side of `outcome`, best price first, then oldest.

    A YES taker buys from NO orders, cheapest (lowest limit) first; a NO taker
    buys from YES orders, highest limit first. Same price and time falls back
    to bet id so the order is total. A resting order priced outside (0, 1)
    raises InvalidOrderError.
    """
    candidates = [
        bet for bet in unfilled_bets
        if bet.outcome != outcome and bet.is_open and bet.remaining_amount > EPSILON
    ]
    for bet in candidates:
        if not 0 < bet.limit_prob < 1:
            raise InvalidOrderError(
                f"resting order {bet.id} has limit probability {bet.limit_prob} outside (0, 1)"
            )
    if outcome == BinaryOutcome.YES.value:
        return sorted(candidates, key=lambda b: (b.limit_prob, b.created_time, b.id))
    return sorted(candidates, key=lambda b: (-b.limit_prob, b.created_time, b.id))


def apply_maker_fill(
    bet: Bet,
    matched_bet_id: str,
    amount: float,
    shares: float,
    timestamp: datetime,
) -> Bet:
    """Append a fill to a resting order; flips is_filled once nothing remains."""
    if not bet.is_open:
        raise InvalidOrderError(f"limit order {bet.id} is {bet.status.value}, cannot fill")
    if amount < 0 or amount - bet.remaining_amount > EPSILON:
        raise InvalidOrderError(
            f"fill of {amount} exceeds remaining {bet.remaining_amount} on {bet.id}"
        )
    order_amount = bet.order_amount if bet.order_amount is not None else bet.amount
    new_amount = bet.amount + amount
    is_filled = floating_equal(order_amount, new_amount)
    return replace(
        bet,
        amount=order_amount if is_filled else new_amount,
        shares=bet.shares + shares,
        fills=bet.fills + (Fill(matched_bet_id, amount, shares, timestamp),),
        is_filled=is_filled,
    )


def cancel_limit_order(bet: Bet) -> Bet:
    if not bet.is_limit_order or not bet.is_open:
        raise OrderNotCancellableError(bet.id, bet.status.value)
    return replace(bet, is_cancelled=True)


def remaining_open_orders(
    open_orders: Iterable[Bet],
    updated: Iterable[Bet],
) -> list[Bet]:
    """Open-order set after replacing `updated` bets by id and dropping closed ones."""
    by_id = {bet.id: bet for bet in open_orders}
    for bet in updated:
        by_id[bet.id] = bet
    return [bet for bet in by_id.values() if bet.is_open]
