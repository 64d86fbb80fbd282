"""Stateless quotes: the caller supplies the pool and open orders, nothing is stored."""

from src.pm_market.domain.models import CpmmBinaryContract
from src.pm_matching.engine.bet_info import bet_stats_from_info, get_binary_cpmm_bet_info
from src.pm_pricing.engine.cpmm import get_cpmm_probability
from src.pm_trading.application.schemas import (
    BetQuoteRequest,
    BetQuoteResponse,
    FeesOut,
    FillOut,
    MakerOut,
    ProbabilityQuoteRequest,
    ProbabilityQuoteResponse,
)

_QUOTE_CONTRACT_ID = "quote"


def quote_probability(req: ProbabilityQuoteRequest) -> ProbabilityQuoteResponse:
    return ProbabilityQuoteResponse(probability=get_cpmm_probability(req.pool, req.p))


def quote_bet(req: BetQuoteRequest) -> BetQuoteResponse:
    contract = CpmmBinaryContract(
        id=_QUOTE_CONTRACT_ID,
        pool=req.pool,
        p=req.p,
        total_liquidity=req.total_liquidity,
    )
    unfilled = [order.to_bet(contract.id) for order in req.unfilled_bets]
    info = get_binary_cpmm_bet_info(
        req.outcome, req.amount, contract, req.limit_prob, unfilled, req.balance_by_user_id,
    )
    stats = bet_stats_from_info(info)
    bet = info.new_bet
    return BetQuoteResponse(
        bet_id=bet.id,
        outcome=bet.outcome,
        order_amount=bet.order_amount,
        amount=bet.amount,
        shares=bet.shares,
        prob_before=bet.prob_before,
        prob_after=bet.prob_after,
        is_filled=bool(bet.is_filled),
        current_payout=stats.current_payout,
        current_return=stats.current_return,
        fees=FeesOut(
            creator_fee=info.fees.creator_fee,
            platform_fee=info.fees.platform_fee,
            liquidity_fee=info.fees.liquidity_fee,
            total=info.fees.total,
        ),
        new_pool=info.new_pool,
        new_p=info.new_p,
        fills=[
            FillOut(matched_bet_id=f.matched_bet_id, amount=f.amount, shares=f.shares)
            for f in bet.fills
        ],
        makers=[
            MakerOut(
                bet_id=maker.id,
                user_id=maker.user_id,
                fill_amount=maker.fills[-1].amount,
                fill_shares=maker.fills[-1].shares,
                is_filled=bool(maker.is_filled),
            )
            for maker in info.makers
        ],
        orders_to_cancel=[order.id for order in info.orders_to_cancel],
    )
