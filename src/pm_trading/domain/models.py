from dataclasses import dataclass, field

from src.pm_clearing.domain.models import PayoutResult
from src.pm_market.domain.models import Contract, LiquidityProvision
from src.pm_order.domain.models import Bet


@dataclass(frozen=True)
class ContractSnapshot:
    """Everything a trade on one contract is computed from, at one version."""

    contract: Contract
    version: int
    bets: tuple[Bet, ...] = ()
    balances: dict[str, float] = field(default_factory=dict)
    liquidities: tuple[LiquidityProvision, ...] = ()

    @property
    def open_orders(self) -> list[Bet]:
        return [bet for bet in self.bets if bet.is_open]

    def user_bets(self, user_id: str) -> list[Bet]:
        return [bet for bet in self.bets if bet.user_id == user_id]

    def balance(self, user_id: str) -> float:
        return self.balances.get(user_id, 0.0)

    def find_bet(self, bet_id: str) -> Bet | None:
        return next((bet for bet in self.bets if bet.id == bet_id), None)


@dataclass(frozen=True)
class Commit:
    """Result of one compute step, applied as a unit or not at all."""

    contract: Contract
    bets: tuple[Bet, ...] = ()                    # new or replaced, by id
    balance_changes: dict[str, float] = field(default_factory=dict)
    # Balances the compute relied on; the commit fails if any has moved since
    balances_read: dict[str, float] = field(default_factory=dict)


@dataclass(frozen=True)
class TradeResult:
    bet: Bet
    contract: Contract
    makers: tuple[Bet, ...] = ()
    cancelled_orders: tuple[Bet, ...] = ()
    redemptions: tuple[Bet, ...] = ()


@dataclass(frozen=True)
class ResolutionResult:
    contract: Contract
    payouts: PayoutResult
    net_payouts: dict[str, float]
    cancelled_orders: tuple[Bet, ...] = ()
