"""Loans: daily advances against a position's invested value.

A loan is recorded as loan_amount on the user's oldest bet in the contract and
repaid out of sale proceeds, redemptions and resolution payouts.
"""
import math
from collections import defaultdict
from collections.abc import Sequence

from config.settings import settings
from src.pm_clearing.domain.metrics import get_contract_bet_metrics
from src.pm_clearing.domain.models import LoanUpdate, Payout
from src.pm_market.domain.models import Contract
from src.pm_order.domain.models import Bet


def get_loan_payouts(bets: Sequence[Bet]) -> tuple[Payout, ...]:
    """Negative payout per user: the outstanding loan, deducted at resolution."""
    loans: dict[str, float] = defaultdict(float)
    for bet in bets:
        if bet.loan_amount:
            loans[bet.user_id] -= bet.loan_amount
    return tuple(Payout(user_id, amount) for user_id, amount in loans.items())


def get_outstanding_loan(bets: Sequence[Bet]) -> float:
    return sum(bet.loan_amount for bet in bets)


def calculate_new_loan(invested: float, loan_total: float) -> float:
    return (invested - loan_total) * settings.LOAN_DAILY_RATE


def get_cpmm_loan_update(contract: Contract, bets: Sequence[Bet]) -> LoanUpdate | None:
    """Today's loan for one user's bets in `contract`, or None when nothing is due."""
    if not bets or contract.is_resolved:
        return None
    invested = get_contract_bet_metrics(contract, bets).invested
    loan_total = get_outstanding_loan(bets)
    new_loan = calculate_new_loan(invested, loan_total)
    if not math.isfinite(new_loan) or new_loan <= 0:
        return None

    oldest = min(bets, key=lambda bet: bet.created_time)
    return LoanUpdate(
        user_id=oldest.user_id,
        contract_id=contract.id,
        bet_id=oldest.id,
        new_loan=new_loan,
        loan_total=oldest.loan_amount + new_loan,
    )
