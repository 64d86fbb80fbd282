"""Tests for pm_trading.application.service: compute, commit, retry."""

import logging
import math
from collections.abc import Callable
from datetime import UTC, datetime

import pytest

from src.pm_common.enums import LimitOrderStatus, OutcomeType
from src.pm_common.errors import (
    ConcurrentModificationError,
    ContractNotFoundError,
    InsufficientBalanceError,
    InsufficientSharesError,
    InvalidOrderError,
    MarketClosedError,
    OrderNotCancellableError,
    OrderNotFoundError,
)
from src.pm_market.domain.models import (
    CpmmBinaryContract,
    CpmmMultiContract,
    DpmContract,
    LiquidityProvision,
)
from src.pm_order.domain.models import Bet
from src.pm_pricing.domain.models import FeeSchedule
from src.pm_trading.application.service import TradingService
from src.pm_trading.domain.models import Commit, ContractSnapshot
from src.pm_trading.infrastructure.memory_store import InMemoryContractStore

T0 = datetime(2026, 1, 1, tzinfo=UTC)
YES_SHARES_FOR_50 = 150 - 10000 / 150  # 50 YES on a 100/100 pool


def _resting_no(bet_id: str = "bob-limit", limit_prob: float = 0.4,
                order_amount: float = 20.0) -> Bet:
    return Bet(id=bet_id, user_id="bob", contract_id="c-1", outcome="NO", amount=0.0,
               shares=0.0, prob_before=0.3, prob_after=0.3, created_time=T0,
               limit_prob=limit_prob, order_amount=order_amount,
               is_filled=False, is_cancelled=False)


def _store(*bets: Bet, **contract_fields) -> InMemoryContractStore:
    store = InMemoryContractStore()
    contract = CpmmBinaryContract(id="c-1", creator_id="creator",
                                  pool={"YES": 100.0, "NO": 100.0}, p=0.5,
                                  total_liquidity=100.0, **contract_fields)
    store.add_contract(contract, [LiquidityProvision("creator", 100, 100, is_anteing=True)], bets)
    store.set_balance("alice", 1000.0)
    store.set_balance("bob", 1000.0)
    return store


def _service(store) -> TradingService:
    return TradingService(store, fee_schedule=FeeSchedule())


class FlakyStore:
    """Runs `interleave` just before the first commit, as if another request won the race."""

    def __init__(self, inner: InMemoryContractStore, interleave: Callable[[], object]) -> None:
        self.inner = inner
        self.interleave = interleave
        self.snapshots = 0

    def get_snapshot(self, contract_id: str) -> ContractSnapshot:
        self.snapshots += 1
        return self.inner.get_snapshot(contract_id)

    def commit(self, contract_id: str, expected_version: int, commit: Commit) -> int:
        if self.interleave is not None:
            interleave, self.interleave = self.interleave, None
            interleave()
        return self.inner.commit(contract_id, expected_version, commit)


class AlwaysStaleStore(FlakyStore):
    def commit(self, contract_id: str, expected_version: int, commit: Commit) -> int:
        raise ConcurrentModificationError(contract_id, expected_version, expected_version + 1)


class TestPlaceBet:
    def test_market_bet(self) -> None:
        store = _store()
        result = _service(store).place_bet("alice", "c-1", "YES", 50)
        assert result.bet.shares == pytest.approx(YES_SHARES_FOR_50)
        assert store.get_balance("alice") == pytest.approx(950)
        snapshot = store.get_snapshot("c-1")
        assert snapshot.version == 1
        assert snapshot.contract.pool["NO"] == pytest.approx(150)
        assert snapshot.contract.volume == pytest.approx(50)

    def test_insufficient_balance(self) -> None:
        store = _store()
        with pytest.raises(InsufficientBalanceError):
            _service(store).place_bet("carol", "c-1", "YES", 10)
        assert store.get_snapshot("c-1").version == 0

    def test_invalid_amount(self) -> None:
        with pytest.raises(InvalidOrderError):
            _service(_store()).place_bet("alice", "c-1", "YES", -5)

    def test_unknown_contract(self) -> None:
        with pytest.raises(ContractNotFoundError):
            _service(_store()).place_bet("alice", "nope", "YES", 5)

    def test_matches_resting_limit_order(self) -> None:
        store = _store(_resting_no())
        result = _service(store).place_bet("alice", "c-1", "YES", 20)
        (maker,) = result.makers
        assert maker.id == "bob-limit"
        assert maker.is_filled
        assert store.get_balance("alice") == pytest.approx(980)
        assert store.get_balance("bob") == pytest.approx(980)
        assert store.get_snapshot("c-1").find_bet("bob-limit").status == LimitOrderStatus.FILLED

    def test_complete_sets_are_redeemed(self) -> None:
        store = _store()
        service = _service(store)
        service.place_bet("alice", "c-1", "YES", 50)
        result = service.place_bet("alice", "c-1", "NO", 50)
        assert len(result.redemptions) == 2
        assert store.get_balance("alice") == pytest.approx(1000 - 100 + YES_SHARES_FOR_50)

    def test_closed_market(self) -> None:
        store = _store(close_time=T0)
        with pytest.raises(MarketClosedError):
            _service(store).place_bet("alice", "c-1", "YES", 10)


class TestRetry:
    def test_conflict_recomputes_from_fresh_snapshot(
        self, caplog: pytest.LogCaptureFixture
    ) -> None:
        inner = _store()
        rival = _service(inner)
        store = FlakyStore(inner, lambda: rival.place_bet("bob", "c-1", "NO", 30))

        with caplog.at_level(logging.WARNING):
            result = _service(store).place_bet("alice", "c-1", "YES", 10)

        assert store.snapshots == 2
        assert result.bet.prob_before < 0.5  # priced after bob's trade
        assert inner.get_snapshot("c-1").version == 2
        assert inner.get_balance("alice") == pytest.approx(990)
        assert "Commit conflict" in caplog.text

    def test_gives_up_after_max_retries(self) -> None:
        inner = _store()
        store = AlwaysStaleStore(inner, lambda: None)
        service = TradingService(store, max_retries=3, fee_schedule=FeeSchedule())
        with pytest.raises(ConcurrentModificationError):
            service.place_bet("alice", "c-1", "YES", 10)
        assert store.snapshots == 3
        assert inner.get_balance("alice") == 1000

    def test_balance_spent_on_another_contract_forces_recompute(self) -> None:
        inner = _store()
        inner.add_contract(
            CpmmBinaryContract(id="c-2", creator_id="creator",
                               pool={"YES": 100.0, "NO": 100.0}, p=0.5, total_liquidity=100.0),
            [LiquidityProvision("creator", 100, 100, is_anteing=True)],
        )
        inner.set_balance("alice", 100.0)
        rival = _service(inner)
        store = FlakyStore(inner, lambda: rival.place_bet("alice", "c-1", "YES", 100))

        with pytest.raises(InsufficientBalanceError):
            _service(store).place_bet("alice", "c-2", "YES", 100)

        assert store.snapshots == 2
        assert inner.get_balance("alice") == pytest.approx(0)
        assert inner.get_snapshot("c-1").version == 1
        assert inner.get_snapshot("c-2").version == 0

    def test_maker_balance_spent_elsewhere_forces_recompute(self) -> None:
        inner = _store(_resting_no())
        inner.add_contract(CpmmBinaryContract(id="c-2", creator_id="creator",
                                              pool={"YES": 100.0, "NO": 100.0}, p=0.5))
        inner.set_balance("bob", 20.0)
        rival = _service(inner)
        store = FlakyStore(inner, lambda: rival.place_bet("bob", "c-2", "NO", 20))

        result = _service(store).place_bet("alice", "c-1", "YES", 20)

        assert store.snapshots == 2
        assert result.makers == ()
        assert [bet.id for bet in result.cancelled_orders] == ["bob-limit"]
        assert inner.get_balance("bob") == pytest.approx(0)
        assert inner.get_balance("alice") == pytest.approx(980)


class TestCancelOrder:
    def test_cancelled_order_no_longer_matches(self) -> None:
        store = _store(_resting_no())
        service = _service(store)
        cancelled = service.cancel_order("bob", "c-1", "bob-limit")
        assert cancelled.status == LimitOrderStatus.CANCELLED

        result = service.place_bet("alice", "c-1", "YES", 20)
        assert result.makers == ()
        assert store.get_balance("bob") == 1000

    def test_cancel_twice(self) -> None:
        service = _service(_store(_resting_no()))
        service.cancel_order("bob", "c-1", "bob-limit")
        with pytest.raises(OrderNotCancellableError):
            service.cancel_order("bob", "c-1", "bob-limit")

    def test_cannot_cancel_someone_elses_order(self) -> None:
        with pytest.raises(OrderNotFoundError):
            _service(_store(_resting_no())).cancel_order("alice", "c-1", "bob-limit")


class TestSellShares:
    def test_sell_everything(self) -> None:
        store = _store()
        service = _service(store)
        service.place_bet("alice", "c-1", "YES", 50)
        result = service.sell_shares("alice", "c-1", "YES")
        assert result.bet.shares == pytest.approx(-YES_SHARES_FOR_50)
        assert store.get_balance("alice") == pytest.approx(1000, rel=1e-6)
        assert store.get_snapshot("c-1").contract.pool["YES"] == pytest.approx(100, rel=1e-6)

    def test_sell_more_than_held(self) -> None:
        service = _service(_store())
        service.place_bet("alice", "c-1", "YES", 50)
        with pytest.raises(InsufficientSharesError):
            service.sell_shares("alice", "c-1", "YES", 1000)

    def test_sell_nothing_held(self) -> None:
        with pytest.raises(InsufficientSharesError):
            _service(_store()).sell_shares("alice", "c-1", "NO")


class TestResolve:
    def test_yes_pays_winners_and_liquidity(self) -> None:
        store = _store()
        service = _service(store)
        service.place_bet("alice", "c-1", "YES", 50)
        result = service.resolve("c-1", "YES")
        assert result.net_payouts["alice"] == pytest.approx(YES_SHARES_FOR_50)
        assert result.net_payouts["creator"] == pytest.approx(10000 / 150)
        assert store.get_balance("alice") == pytest.approx(950 + YES_SHARES_FOR_50)
        assert store.get_snapshot("c-1").contract.resolution == "YES"

    def test_cancel_refunds(self) -> None:
        store = _store()
        service = _service(store)
        service.place_bet("alice", "c-1", "YES", 50)
        result = service.resolve("c-1", "CANCEL")
        assert result.net_payouts == {"alice": pytest.approx(50), "creator": pytest.approx(100)}
        assert store.get_balance("alice") == pytest.approx(1000)

    def test_open_orders_are_cancelled(self) -> None:
        store = _store(_resting_no())
        result = _service(store).resolve("c-1", "NO")
        assert [bet.id for bet in result.cancelled_orders] == ["bob-limit"]
        assert store.get_snapshot("c-1").find_bet("bob-limit").is_cancelled

    def test_resolved_contract_is_closed(self) -> None:
        service = _service(_store())
        service.resolve("c-1", "NO")
        with pytest.raises(MarketClosedError):
            service.place_bet("alice", "c-1", "YES", 10)
        with pytest.raises(MarketClosedError):
            service.resolve("c-1", "YES")

    def test_invalid_outcome(self) -> None:
        with pytest.raises(InvalidOrderError):
            _service(_store()).resolve("c-1", "MAYBE")

    @pytest.mark.parametrize(("value", "resolution", "probability"), [
        (100, "YES", 1.0),
        (0, "NO", 0.0),
        (30, "MKT", 0.3),
    ])
    def test_pseudo_numeric(self, value: float, resolution: str, probability: float) -> None:
        store = _store(outcome_type=OutcomeType.PSEUDO_NUMERIC, min=0.0, max=100.0)
        service = _service(store)
        service.place_bet("alice", "c-1", "YES", 50)
        result = service.resolve_pseudo_numeric("c-1", value)
        assert result.contract.resolution == resolution
        assert result.contract.resolution_probability == pytest.approx(probability)
        assert result.net_payouts.get("alice", 0.0) == pytest.approx(YES_SHARES_FOR_50 * probability)

    def test_pseudo_numeric_needs_numeric_contract(self) -> None:
        with pytest.raises(InvalidOrderError):
            _service(_store()).resolve_pseudo_numeric("c-1", 30)


class TestLoans:
    def test_issue_loans(self) -> None:
        store = _store()
        service = _service(store)
        bet = service.place_bet("alice", "c-1", "YES", 50).bet
        (update,) = service.issue_loans("c-1")
        assert update.bet_id == bet.id
        assert update.new_loan == pytest.approx(1.0)
        assert store.get_balance("alice") == pytest.approx(951)
        assert store.get_snapshot("c-1").find_bet(bet.id).loan_amount == pytest.approx(1.0)


class TestOtherMechanisms:
    def _multi_store(self) -> InMemoryContractStore:
        store = InMemoryContractStore()
        store.add_contract(CpmmMultiContract(id="m-1", pool={"A": 100.0, "B": 100.0, "C": 100.0}))
        store.set_balance("alice", 1000.0)
        return store

    def test_multi_bets_redeem_full_sets(self) -> None:
        store = self._multi_store()
        service = _service(store)
        service.place_bet("alice", "m-1", "A", 30)
        service.place_bet("alice", "m-1", "B", 30)
        result = service.place_bet("alice", "m-1", "C", 30)
        assert len(result.redemptions) == 3
        assert store.get_balance("alice") > 910

    def test_limit_orders_need_binary_cpmm(self) -> None:
        with pytest.raises(InvalidOrderError):
            _service(self._multi_store()).place_bet("alice", "m-1", "A", 10, limit_prob=0.5)

    def test_dpm_bet_and_sale(self) -> None:
        store = InMemoryContractStore()
        bet = Bet(id="b-1", user_id="alice", contract_id="d-1", outcome="YES", amount=5.0,
                  shares=5.0, prob_before=0.5, prob_after=0.5, created_time=T0)
        contract = DpmContract(
            id="d-1",
            pool={"YES": 10.0, "NO": 10.0},
            total_shares={"YES": 10.0, "NO": 10.0},
            total_bets={"YES": 10.0, "NO": 10.0},
        )
        store.add_contract(contract, bets=[bet])
        store.set_balance("alice", 100.0)
        service = _service(store)

        with pytest.raises(OrderNotFoundError):
            service.sell_dpm_bet("bob", "d-1", "b-1")

        service.sell_dpm_bet("alice", "d-1", "b-1")
        assert store.get_balance("alice") == pytest.approx(100 + math.sqrt(200) - math.sqrt(125))
        assert store.get_snapshot("d-1").find_bet("b-1").is_sold

        service.place_bet("alice", "d-1", "NO", 1)
        assert store.get_snapshot("d-1").version == 2
