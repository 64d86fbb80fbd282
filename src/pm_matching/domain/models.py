from dataclasses import dataclass, field
from datetime import datetime

from src.pm_order.domain.models import Bet, Fill
from src.pm_pricing.domain.models import NO_FEES, CpmmState, Fees, Pool


@dataclass(frozen=True)
class MakerFill:
    """Execution against a resting limit order, seen from the maker's side."""

    bet: Bet
    amount: float
    shares: float
    timestamp: datetime


@dataclass(frozen=True)
class FillStep:
    """Single step of the matching loop: one pool trade or one limit-order match."""

    taker: Fill
    maker: MakerFill | None = None   # None = filled by the pool
    state: CpmmState | None = None   # pool state after a pool fill
    fees: Fees = NO_FEES


@dataclass(frozen=True)
class FillsResult:
    takers: tuple[Fill, ...]
    makers: tuple[MakerFill, ...]
    total_fees: Fees
    state: CpmmState
    orders_to_cancel: tuple[Bet, ...]


@dataclass(frozen=True)
class BetInfo:
    """Proposed result of a cpmm-1 bet; nothing is applied until the caller commits."""

    new_bet: Bet
    new_pool: Pool
    new_p: float
    new_total_liquidity: float
    fees: Fees
    makers: tuple[Bet, ...] = ()  # matched limit orders with the new fill appended
    orders_to_cancel: tuple[Bet, ...] = ()  # already transitioned to CANCELLED


@dataclass(frozen=True)
class BetStats:
    current_payout: float
    current_return: float
    total_fees: float
    new_bet: Bet


@dataclass(frozen=True)
class RangeOrder:
    """A YES limit at the low end paired with a NO limit at the high end."""

    shares: float
    yes_amount: float
    no_amount: float
    yes_limit_prob: float
    no_limit_prob: float


@dataclass(frozen=True)
class MultiBetInfo:
    new_bet: Bet
    new_pool: Pool


@dataclass(frozen=True)
class DpmBetInfo:
    new_bet: Bet
    new_pool: Pool
    new_total_shares: dict[str, float]
    new_total_bets: dict[str, float] = field(default_factory=dict)
