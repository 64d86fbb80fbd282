"""Per-user contract metrics, recomputed from bet history."""
from collections import defaultdict
from collections.abc import Sequence

from src.pm_clearing.domain.models import ContractMetric
from src.pm_clearing.domain.payouts import MKT, calculate_payout
from src.pm_common.enums import BinaryOutcome, Mechanism
from src.pm_common.money import floating_equal
from src.pm_market.domain.models import Contract
from src.pm_order.domain.models import Bet
from src.pm_pricing.engine.mechanism import get_outcome_probability


def get_cpmm_invested(bets: Sequence[Bet]) -> float:
    """Cost basis per outcome; sales remove shares at the running average price."""
    total_shares: dict[str, float] = defaultdict(float)
    total_spent: dict[str, float] = defaultdict(float)
    for bet in sorted(bets, key=lambda b: b.created_time):
        if floating_equal(bet.shares, 0):
            continue
        position = total_shares[bet.outcome]
        if bet.amount > 0:
            total_shares[bet.outcome] = position + bet.shares
            total_spent[bet.outcome] += bet.amount
        elif bet.amount < 0:
            average_price = 0.0 if position == 0 else total_spent[bet.outcome] / position
            total_shares[bet.outcome] = position + bet.shares
            total_spent[bet.outcome] += average_price * bet.shares
    return sum(total_spent.values())


def get_dpm_invested(bets: Sequence[Bet]) -> float:
    by_id = {bet.id: bet for bet in bets}
    invested = 0.0
    for bet in bets:
        if bet.sale is not None:
            original = by_id.get(bet.sale.bet_id)
            invested -= original.amount if original else 0.0
        else:
            invested += bet.amount
    return invested


def _current_value(contract: Contract, bet: Bet) -> float:
    """Payout if the contract resolved to its current price now."""
    if contract.resolution is not None:
        return calculate_payout(contract, bet, contract.resolution)
    if contract.mechanism == Mechanism.CPMM_2:
        return bet.shares * get_outcome_probability(contract, bet.outcome)
    return calculate_payout(contract, bet, MKT)


def get_contract_bet_metrics(contract: Contract, bets: Sequence[Bet]) -> ContractMetric:
    total_invested = 0.0
    payout = 0.0
    loan = 0.0
    sale_value = 0.0
    redeemed = 0.0
    total_shares: dict[str, float] = defaultdict(float)

    for bet in bets:
        total_shares[bet.outcome] += bet.shares
        if bet.is_sold:
            total_invested += bet.amount
        elif bet.sale is not None:
            sale_value += bet.sale.amount
        else:
            if bet.is_redemption:
                redeemed -= bet.amount
            elif bet.amount > 0:
                total_invested += bet.amount
            else:
                sale_value -= bet.amount
            payout += _current_value(contract, bet)
        loan += bet.loan_amount

    if contract.mechanism in (Mechanism.CPMM_1, Mechanism.CPMM_2):
        invested = get_cpmm_invested(bets)
    else:
        invested = get_dpm_invested(bets)

    profit = payout + sale_value + redeemed - total_invested
    profit_percent = profit / total_invested * 100 if total_invested else 0.0
    held = dict(total_shares)

    def has(outcome: str) -> bool:
        return not floating_equal(held.get(outcome, 0.0), 0)

    return ContractMetric(
        invested=invested,
        payout=payout,
        profit=profit,
        profit_percent=profit_percent,
        loan=loan,
        total_shares=held,
        has_shares=any(not floating_equal(shares, 0) for shares in held.values()),
        has_yes_shares=has(BinaryOutcome.YES.value),
        has_no_shares=has(BinaryOutcome.NO.value),
    )
