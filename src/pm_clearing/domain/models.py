from dataclasses import dataclass, field

from src.pm_pricing.domain.models import NO_FEES, Fees


@dataclass(frozen=True)
class Payout:
    user_id: str
    payout: float


@dataclass(frozen=True)
class PayoutResult:
    """Everything disbursed when a contract resolves."""

    payouts: tuple[Payout, ...]
    creator_payout: float = 0.0
    liquidity_payouts: tuple[Payout, ...] = ()
    loan_payouts: tuple[Payout, ...] = ()  # negative: loans are repaid out of winnings
    collected_fees: Fees = NO_FEES

    def all_payouts(self, creator_id: str) -> list[Payout]:
        combined = [*self.payouts, *self.liquidity_payouts, *self.loan_payouts]
        if self.creator_payout:
            combined.append(Payout(creator_id, self.creator_payout))
        return combined


@dataclass(frozen=True)
class RedeemableAmount:
    shares: float        # complete sets held, each worth 1
    loan_payment: float  # part of the outstanding loan repaid by redeeming
    net_amount: float    # credited to the balance


@dataclass(frozen=True)
class LoanUpdate:
    user_id: str
    contract_id: str
    bet_id: str       # oldest bet; carries the whole loan
    new_loan: float
    loan_total: float


@dataclass(frozen=True)
class ContractMetric:
    """Per-user position summary, derived from bet history; a cache, never authoritative."""

    invested: float
    payout: float
    profit: float
    profit_percent: float
    loan: float
    total_shares: dict[str, float] = field(default_factory=dict)
    has_shares: bool = False
    has_yes_shares: bool = False
    has_no_shares: bool = False
