"""Selling cpmm-1 shares.

Shares are sold by buying the same number of opposite-outcome shares (through
the normal matcher, so resting limit orders take part) and redeeming each
YES+NO pair for 1. The seller keeps shares - cost for every pair.
"""
import logging
import math
from collections.abc import Iterable, Mapping
from dataclasses import replace
from datetime import datetime

from src.pm_common.datetime_utils import utc_now
from src.pm_common.enums import opposite_outcome
from src.pm_common.errors import InvalidOrderError
from src.pm_common.id_generator import generate_bet_id
from src.pm_common.money import binary_search
from src.pm_market.domain.models import CpmmBinaryContract
from src.pm_matching.domain.models import BetInfo
from src.pm_matching.engine.bet_info import ensure_open
from src.pm_matching.engine.limit_order import apply_maker_fill, cancel_limit_order
from src.pm_matching.engine.matching_algo import compute_fills
from src.pm_order.domain.models import Bet
from src.pm_pricing.domain.models import CpmmState, FeeSchedule
from src.pm_pricing.engine.cpmm import get_cpmm_probability
from src.pm_sale.domain.models import CpmmSale

logger = logging.getLogger(__name__)


def calculate_amount_to_buy_shares(
    state: CpmmState,
    shares: float,
    outcome: str,
    unfilled_bets: Iterable[Bet],
    balance_by_user_id: Mapping[str, float] | None,
    fee_schedule: FeeSchedule,
    now: datetime,
) -> float:
    """Money that buys exactly `shares` of `outcome`; share prices are within [0, 1]."""
    unfilled_bets = list(unfilled_bets)

    def shares_for(amount: float) -> float:
        result = compute_fills(
            outcome, amount, state, None, unfilled_bets, balance_by_user_id, fee_schedule, now,
        )
        return sum(taker.shares for taker in result.takers) - shares

    return binary_search(0, shares, shares_for)


def calculate_cpmm_sale(
    state: CpmmState,
    shares: float,
    outcome: str,
    unfilled_bets: Iterable[Bet] = (),
    balance_by_user_id: Mapping[str, float] | None = None,
    fee_schedule: FeeSchedule | None = None,
    now: datetime | None = None,
) -> CpmmSale:
    if not math.isfinite(shares) or shares <= 0:
        raise InvalidOrderError(f"shares to sell must be positive, got {shares}")
    fee_schedule = fee_schedule or FeeSchedule.from_settings()
    now = now or utc_now()
    unfilled_bets = list(unfilled_bets)
    opposite = opposite_outcome(outcome)

    buy_amount = calculate_amount_to_buy_shares(
        state, shares, opposite, unfilled_bets, balance_by_user_id, fee_schedule, now,
    )
    result = compute_fills(
        opposite, buy_amount, state, None, unfilled_bets, balance_by_user_id, fee_schedule, now,
    )
    # Each bought opposite share cancels one held share; the pair is worth 1.
    sale_takers = tuple(
        replace(taker, shares=-taker.shares, amount=-(taker.shares - taker.amount), is_sale=True)
        for taker in result.takers
    )
    return CpmmSale(
        sale_value=-sum(taker.amount for taker in sale_takers),
        state=result.state,
        fees=result.total_fees,
        takers=sale_takers,
        makers=result.makers,
        orders_to_cancel=result.orders_to_cancel,
    )


def get_cpmm_sell_bet_info(
    shares: float,
    outcome: str,
    contract: CpmmBinaryContract,
    prev_loan_amount: float = 0.0,
    unfilled_bets: Iterable[Bet] = (),
    balance_by_user_id: Mapping[str, float] | None = None,
    *,
    user_id: str = "",
    bet_id: str | None = None,
    fee_schedule: FeeSchedule | None = None,
    now: datetime | None = None,
) -> BetInfo:
    """Sale bet for `shares` of `outcome`, repaying the loan out of the proceeds."""
    now = now or utc_now()
    ensure_open(contract, now)
    bet_id = bet_id or generate_bet_id()

    sale = calculate_cpmm_sale(
        contract.state, shares, outcome, unfilled_bets, balance_by_user_id, fee_schedule, now,
    )
    loan_paid = min(prev_loan_amount, sale.sale_value)
    new_bet = Bet(
        id=bet_id,
        user_id=user_id,
        contract_id=contract.id,
        outcome=outcome,
        amount=-sale.sale_value,
        shares=-shares,
        prob_before=get_cpmm_probability(contract.pool, contract.p),
        prob_after=get_cpmm_probability(sale.state.pool, sale.state.p),
        created_time=now,
        fees=sale.fees,
        order_amount=sum(taker.amount for taker in sale.takers),
        fills=sale.takers,
        is_filled=True,
        is_cancelled=False,
        loan_amount=-loan_paid,
    )
    logger.debug("Sale of %.4f %s shares on %s for %.4f", shares, outcome, contract.id, sale.sale_value)
    return BetInfo(
        new_bet=new_bet,
        new_pool=sale.state.pool,
        new_p=sale.state.p,
        new_total_liquidity=contract.total_liquidity + sale.fees.liquidity_fee,
        fees=sale.fees,
        makers=tuple(
            apply_maker_fill(maker.bet, bet_id, maker.amount, maker.shares, maker.timestamp)
            for maker in sale.makers
        ),
        orders_to_cancel=tuple(cancel_limit_order(bet) for bet in sale.orders_to_cancel),
    )
