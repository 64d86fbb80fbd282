from dataclasses import dataclass

from src.pm_matching.domain.models import MakerFill
from src.pm_order.domain.models import Bet, Fill
from src.pm_pricing.domain.models import CpmmState, Fees, Pool


@dataclass(frozen=True)
class CpmmSale:
    """Selling `shares` of an outcome, executed as a buy of the opposite outcome."""

    sale_value: float
    state: CpmmState
    fees: Fees
    takers: tuple[Fill, ...]        # is_sale fills with negative shares and amount
    makers: tuple[MakerFill, ...]
    orders_to_cancel: tuple[Bet, ...]


@dataclass(frozen=True)
class DpmSellBetInfo:
    new_bet: Bet
    new_pool: Pool
    new_total_shares: dict[str, float]
    new_total_bets: dict[str, float]
    fees: Fees
    balance_change: float  # sale proceeds after fees, minus the loan repaid
