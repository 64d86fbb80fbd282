"""Bet domain model: frozen dataclasses, updated only through dataclasses.replace."""
from dataclasses import dataclass, field
from datetime import datetime

from src.pm_common.enums import LimitOrderStatus
from src.pm_common.money import floating_equal
from src.pm_pricing.domain.models import NO_FEES, Fees


@dataclass(frozen=True)
class Fill:
    """One partial execution of a bet, against the pool or another bet."""

    matched_bet_id: str | None  # None = filled by the pool
    amount: float
    shares: float
    timestamp: datetime
    is_sale: bool = False


@dataclass(frozen=True)
class SaleInfo:
    """Attached to the synthetic bet recording a DPM sale."""

    amount: float  # proceeds after fees, before loan repayment
    bet_id: str    # the bet being sold


@dataclass(frozen=True)
class Bet:
    id: str
    user_id: str
    contract_id: str
    outcome: str
    amount: float   # money in (negative for sales/redemptions)
    shares: float   # tokens out (negative for sales/redemptions)
    prob_before: float
    prob_after: float
    created_time: datetime
    fees: Fees = NO_FEES
    # Limit orders
    limit_prob: float | None = None
    order_amount: float | None = None
    fills: tuple[Fill, ...] = ()
    is_filled: bool | None = None
    is_cancelled: bool | None = None
    # Position bookkeeping
    loan_amount: float = 0.0
    is_redemption: bool = False
    is_ante: bool = False
    is_sold: bool = False
    sale: SaleInfo | None = None
    # DPM numeric bets spread shares over buckets
    all_outcome_shares: dict[str, float] | None = field(default=None, compare=False)

    @property
    def is_limit_order(self) -> bool:
        return self.limit_prob is not None

    @property
    def remaining_amount(self) -> float:
        """Unfilled part of a limit order; 0 for market orders."""
        if self.order_amount is None:
            return 0.0
        return max(0.0, self.order_amount - self.amount)

    @property
    def status(self) -> LimitOrderStatus:
        if self.is_cancelled:
            return LimitOrderStatus.CANCELLED
        if self.is_filled or (
            self.order_amount is not None and floating_equal(self.order_amount, self.amount)
        ):
            return LimitOrderStatus.FILLED
        if self.fills:
            return LimitOrderStatus.PARTIALLY_FILLED
        return LimitOrderStatus.OPEN

    @property
    def is_open(self) -> bool:
        return self.is_limit_order and self.status in (
            LimitOrderStatus.OPEN,
            LimitOrderStatus.PARTIALLY_FILLED,
        )
