"""Early sale of dpm-2 (legacy) positions.

Sale value comes from the current share totals, not from what the bet cost:
the seller receives the drop in sqrt(sum(shares^2)) their shares account for,
scaled down when the pool holds less money than the bets expect, and capped at
the money staked on their outcome. Profit pays the DPM fees.
"""
import logging
import math
from dataclasses import replace
from datetime import datetime

from config.settings import settings
from src.pm_common.datetime_utils import utc_now
from src.pm_common.enums import BinaryOutcome
from src.pm_common.errors import InsufficientSharesError, InvalidOrderError
from src.pm_common.id_generator import generate_bet_id
from src.pm_common.money import ensure_finite
from src.pm_market.domain.models import DpmContract
from src.pm_matching.engine.bet_info import ensure_open
from src.pm_order.domain.models import Bet, SaleInfo
from src.pm_pricing.domain.models import Fees
from src.pm_pricing.engine.dpm import deduct_dpm_fees, get_dpm_outcome_probability
from src.pm_sale.domain.models import DpmSellBetInfo

logger = logging.getLogger(__name__)


def calculate_dpm_raw_share_value(
    total_shares: dict[str, float], shares: float, outcome: str
) -> float:
    current_value = math.sqrt(sum(s ** 2 for s in total_shares.values()))
    post_sale_value = math.sqrt(sum(
        max(0.0, s - shares) ** 2 if o == outcome else s ** 2
        for o, s in total_shares.items()
    ))
    return current_value - post_sale_value


def calculate_dpm_money_ratio(contract: DpmContract, bet: Bet, share_value: float) -> float:
    """Money actually in the pool relative to what outstanding bets expect."""
    total_shares = contract.total_shares
    prob = get_dpm_outcome_probability(total_shares, bet.outcome)
    actual = sum(contract.pool.values()) - share_value
    expected = sum(
        get_dpm_outcome_probability(total_shares, outcome) * amount
        for outcome, amount in contract.total_bets.items()
    ) - prob * bet.amount
    if actual <= 0 or expected <= 0:
        return 0.0
    return actual / expected


def calculate_dpm_share_value(contract: DpmContract, bet: Bet) -> float:
    share_value = calculate_dpm_raw_share_value(contract.total_shares, bet.shares, bet.outcome)
    ratio = calculate_dpm_money_ratio(contract, bet, share_value)
    value = min(min(1.0, ratio) * share_value, contract.pool.get(bet.outcome, 0.0))
    return ensure_finite(value, "share value")


def calculate_dpm_sale_amount(contract: DpmContract, bet: Bet) -> float:
    return deduct_dpm_fees(bet.amount, calculate_dpm_share_value(contract, bet))


def get_dpm_probability_after_sale(
    total_shares: dict[str, float], outcome: str, shares: float
) -> float:
    """Probability shown after the sale: YES for binary markets, else `outcome`."""
    new_total_shares = {**total_shares, outcome: total_shares.get(outcome, 0.0) - shares}
    shown = BinaryOutcome.YES.value if outcome == BinaryOutcome.NO.value else outcome
    return get_dpm_outcome_probability(new_total_shares, shown)


def get_dpm_sell_bet_info(
    bet: Bet,
    contract: DpmContract,
    *,
    bet_id: str | None = None,
    now: datetime | None = None,
) -> DpmSellBetInfo:
    """Sell a whole dpm-2 bet back to the pool.

    Returns the synthetic sale bet (negative amount and shares, negated loan)
    and the contract totals after it; the caller marks `bet` as sold.
    """
    if bet.contract_id != contract.id:
        raise InvalidOrderError(f"bet {bet.id} is not on contract {contract.id}")
    if bet.is_sold or bet.sale is not None or bet.shares <= 0:
        raise InsufficientSharesError(f"bet {bet.id} has nothing left to sell")
    now = now or utc_now()
    ensure_open(contract, now)

    outcome = bet.outcome
    share_value = calculate_dpm_share_value(contract, bet)
    new_pool = {**contract.pool, outcome: contract.pool[outcome] - share_value}
    new_total_shares = {**contract.total_shares, outcome: contract.total_shares[outcome] - bet.shares}
    new_total_bets = {**contract.total_bets, outcome: contract.total_bets.get(outcome, 0.0) - bet.amount}

    profit = max(0.0, share_value - bet.amount)
    fees = Fees(
        creator_fee=settings.DPM_CREATOR_FEE * profit,
        platform_fee=settings.DPM_PLATFORM_FEE * profit,
    )
    sale_amount = deduct_dpm_fees(bet.amount, share_value)

    new_bet = Bet(
        id=bet_id or generate_bet_id(),
        user_id=bet.user_id,
        contract_id=contract.id,
        outcome=outcome,
        amount=-share_value,
        shares=-bet.shares,
        prob_before=get_dpm_outcome_probability(contract.total_shares, outcome),
        prob_after=get_dpm_outcome_probability(new_total_shares, outcome),
        created_time=now,
        fees=fees,
        loan_amount=-bet.loan_amount,
        sale=SaleInfo(amount=sale_amount, bet_id=bet.id),
    )
    logger.debug("DPM sale of %s: value %.4f, proceeds %.4f", bet.id, share_value, sale_amount)
    return DpmSellBetInfo(
        new_bet=new_bet,
        new_pool=new_pool,
        new_total_shares=new_total_shares,
        new_total_bets=new_total_bets,
        fees=fees,
        balance_change=sale_amount - bet.loan_amount,
    )


def mark_sold(bet: Bet) -> Bet:
    return replace(bet, is_sold=True)
