"""New-bet calculators, one per mechanism.

Each takes a contract snapshot and a requested trade and returns the complete
proposed state (new bet, new pool, updated counter-orders). Nothing is
persisted here; the trading service commits the result atomically.
"""
import math
from collections.abc import Iterable, Mapping
from dataclasses import replace
from datetime import datetime

from src.pm_common.datetime_utils import utc_now
from src.pm_common.enums import BinaryOutcome, ContractStatus
from src.pm_common.errors import InvalidOrderError, MarketClosedError
from src.pm_common.id_generator import generate_bet_id
from src.pm_common.money import floating_equal
from src.pm_market.domain.models import (
    Contract,
    CpmmBinaryContract,
    CpmmMultiContract,
    DpmContract,
)
from src.pm_matching.domain.models import (
    BetInfo,
    BetStats,
    DpmBetInfo,
    MultiBetInfo,
    RangeOrder,
)
from src.pm_matching.engine.limit_order import apply_maker_fill, cancel_limit_order
from src.pm_matching.engine.matching_algo import compute_fills
from src.pm_order.domain.models import Bet, Fill
from src.pm_pricing.domain.models import FeeSchedule
from src.pm_pricing.engine import cpmm_multi
from src.pm_pricing.engine.cpmm import get_cpmm_probability
from src.pm_pricing.engine.dpm import calculate_dpm_shares, get_dpm_outcome_probability

YES = BinaryOutcome.YES.value
NO = BinaryOutcome.NO.value


def validate_amount(amount: float) -> None:
    if not math.isfinite(amount) or amount <= 0:
        raise InvalidOrderError(f"amount must be a positive finite number, got {amount}")


def validate_limit_prob(limit_prob: float | None) -> None:
    if limit_prob is None:
        return
    if not (0 < limit_prob < 1):  # also rejects NaN
        raise InvalidOrderError(f"limit probability must be in (0, 1), got {limit_prob}")


def ensure_open(contract: Contract, now: datetime) -> None:
    if contract.status(now) != ContractStatus.OPEN:
        raise MarketClosedError(contract.id)


def get_binary_cpmm_bet_info(
    outcome: str,
    bet_amount: float,
    contract: CpmmBinaryContract,
    limit_prob: float | None = None,
    unfilled_bets: Iterable[Bet] = (),
    balance_by_user_id: Mapping[str, float] | None = None,
    *,
    user_id: str = "",
    bet_id: str | None = None,
    fee_schedule: FeeSchedule | None = None,
    now: datetime | None = None,
) -> BetInfo:
    """Fill a cpmm-1 bet against resting limit orders and the pool.

    Any part of a limit order that cannot execute at or better than limit_prob
    stays on the new bet as its remaining amount (an open order).
    """
    if outcome not in (YES, NO):
        raise InvalidOrderError(f"outcome must be YES or NO, got {outcome!r}")
    validate_amount(bet_amount)
    validate_limit_prob(limit_prob)
    now = now or utc_now()
    ensure_open(contract, now)
    fee_schedule = fee_schedule or FeeSchedule.from_settings()
    bet_id = bet_id or generate_bet_id()

    result = compute_fills(
        outcome, bet_amount, contract.state, limit_prob, unfilled_bets,
        balance_by_user_id, fee_schedule, now,
    )

    amount = sum(fill.amount for fill in result.takers)
    shares = sum(fill.shares for fill in result.takers)
    is_filled = floating_equal(bet_amount, amount)

    new_bet = Bet(
        id=bet_id,
        user_id=user_id,
        contract_id=contract.id,
        outcome=outcome,
        amount=bet_amount if is_filled else amount,
        shares=shares,
        prob_before=get_cpmm_probability(contract.pool, contract.p),
        prob_after=get_cpmm_probability(result.state.pool, result.state.p),
        created_time=now,
        fees=result.total_fees,
        limit_prob=limit_prob,
        order_amount=bet_amount,
        fills=result.takers,
        is_filled=is_filled,
        is_cancelled=False,
    )

    makers = tuple(
        apply_maker_fill(maker.bet, bet_id, maker.amount, maker.shares, maker.timestamp)
        for maker in result.makers
    )
    return BetInfo(
        new_bet=new_bet,
        new_pool=result.state.pool,
        new_p=result.state.p,
        new_total_liquidity=contract.total_liquidity + result.total_fees.liquidity_fee,
        fees=result.total_fees,
        makers=makers,
        orders_to_cancel=tuple(cancel_limit_order(bet) for bet in result.orders_to_cancel),
    )


def apply_bet_info(contract: CpmmBinaryContract, info: BetInfo) -> CpmmBinaryContract:
    """Contract snapshot after committing `info`."""
    return replace(
        contract,
        pool=info.new_pool,
        p=info.new_p,
        total_liquidity=info.new_total_liquidity,
        volume=contract.volume + abs(info.new_bet.amount),
        collected_fees=contract.collected_fees + info.fees,
    )


def get_binary_bet_stats(
    outcome: str,
    bet_amount: float,
    contract: CpmmBinaryContract,
    limit_prob: float | None = None,
    unfilled_bets: Iterable[Bet] = (),
    balance_by_user_id: Mapping[str, float] | None = None,
    fee_schedule: FeeSchedule | None = None,
) -> BetStats:
    """Payout if the bet wins, counting the unfilled remainder as filled at its limit."""
    info = get_binary_cpmm_bet_info(
        outcome, bet_amount, contract, limit_prob, unfilled_bets, balance_by_user_id,
        fee_schedule=fee_schedule,
    )
    return bet_stats_from_info(info)


def bet_stats_from_info(info: BetInfo) -> BetStats:
    bet = info.new_bet
    limit = bet.limit_prob if bet.limit_prob is not None else bet.prob_before
    price = limit if bet.outcome == YES else 1 - limit
    current_payout = bet.shares + bet.remaining_amount / price
    return BetStats(
        current_payout=current_payout,
        current_return=(current_payout - bet.order_amount) / bet.order_amount,
        total_fees=info.fees.total,
        new_bet=bet,
    )


def get_range_order(amount: float, low_limit_prob: float, high_limit_prob: float) -> RangeOrder:
    """Split `amount` into a YES limit at the low end and a NO limit at the high end.

    Both legs buy the same number of shares, so if both fill the position
    redeems for `shares` regardless of resolution.
    """
    validate_amount(amount)
    validate_limit_prob(low_limit_prob)
    validate_limit_prob(high_limit_prob)
    if low_limit_prob >= high_limit_prob:
        raise InvalidOrderError(
            f"low limit {low_limit_prob} must be below high limit {high_limit_prob}"
        )
    shares = min(amount / low_limit_prob, amount / (1 - high_limit_prob))
    return RangeOrder(
        shares=shares,
        yes_amount=shares * low_limit_prob,
        no_amount=shares * (1 - high_limit_prob),
        yes_limit_prob=low_limit_prob,
        no_limit_prob=high_limit_prob,
    )


def get_cpmm_multi_bet_info(
    outcome: str,
    bet_amount: float,
    contract: CpmmMultiContract,
    *,
    user_id: str = "",
    bet_id: str | None = None,
    now: datetime | None = None,
) -> MultiBetInfo:
    validate_amount(bet_amount)
    now = now or utc_now()
    ensure_open(contract, now)

    new_pool, shares = cpmm_multi.buy(contract.pool, outcome, bet_amount)
    new_bet = Bet(
        id=bet_id or generate_bet_id(),
        user_id=user_id,
        contract_id=contract.id,
        outcome=outcome,
        amount=bet_amount,
        shares=shares,
        prob_before=cpmm_multi.get_prob(contract.pool, outcome),
        prob_after=cpmm_multi.get_prob(new_pool, outcome),
        created_time=now,
        order_amount=bet_amount,
        fills=(Fill(None, bet_amount, shares, now),),
        is_filled=True,
    )
    return MultiBetInfo(new_bet=new_bet, new_pool=new_pool)


def get_dpm_bet_info(
    outcome: str,
    bet_amount: float,
    contract: DpmContract,
    *,
    user_id: str = "",
    bet_id: str | None = None,
    now: datetime | None = None,
) -> DpmBetInfo:
    """Legacy dpm-2 bet on a categorical outcome. Stakes the pool, issues shares."""
    validate_amount(bet_amount)
    if outcome not in contract.total_shares:
        raise InvalidOrderError(f"unknown outcome {outcome!r}")
    now = now or utc_now()
    ensure_open(contract, now)

    shares = calculate_dpm_shares(contract.total_shares, bet_amount, outcome)
    new_pool = {**contract.pool, outcome: contract.pool.get(outcome, 0.0) + bet_amount}
    new_total_shares = {**contract.total_shares, outcome: contract.total_shares[outcome] + shares}
    new_total_bets = {**contract.total_bets, outcome: contract.total_bets.get(outcome, 0.0) + bet_amount}

    new_bet = Bet(
        id=bet_id or generate_bet_id(),
        user_id=user_id,
        contract_id=contract.id,
        outcome=outcome,
        amount=bet_amount,
        shares=shares,
        prob_before=get_dpm_outcome_probability(contract.total_shares, outcome),
        prob_after=get_dpm_outcome_probability(new_total_shares, outcome),
        created_time=now,
    )
    return DpmBetInfo(
        new_bet=new_bet,
        new_pool=new_pool,
        new_total_shares=new_total_shares,
        new_total_bets=new_total_bets,
    )
