"""Tests for pm_matching.engine.limit_order: order lifecycle and priority."""

from dataclasses import replace
from datetime import UTC, datetime, timedelta

import pytest

from src.pm_common.enums import LimitOrderStatus
from src.pm_common.errors import InvalidOrderError, OrderNotCancellableError
from src.pm_matching.engine.limit_order import (
    apply_maker_fill,
    cancel_limit_order,
    remaining_open_orders,
    sort_for_matching,
)
from src.pm_order.domain.models import Bet

T0 = datetime(2026, 1, 1, tzinfo=UTC)


def _limit(bet_id: str, outcome: str, limit_prob: float, order_amount: float = 20.0,
           amount: float = 0.0, created: datetime = T0, **kwargs) -> Bet:
    bet = Bet(id=bet_id, user_id=f"u-{bet_id}", contract_id="c-1", outcome=outcome,
              amount=amount, shares=0.0, prob_before=0.5, prob_after=0.5,
              created_time=created, limit_prob=limit_prob, order_amount=order_amount,
              is_filled=False, is_cancelled=False)
    return replace(bet, **kwargs)


class TestBetStatus:
    def test_new_limit_order_is_open(self) -> None:
        bet = _limit("b1", "NO", 0.4)
        assert bet.status == LimitOrderStatus.OPEN
        assert bet.is_open
        assert bet.remaining_amount == 20.0

    def test_market_order_is_never_open(self) -> None:
        bet = Bet(id="m1", user_id="u", contract_id="c-1", outcome="YES", amount=10,
                  shares=15, prob_before=0.5, prob_after=0.55, created_time=T0)
        assert not bet.is_limit_order
        assert not bet.is_open
        assert bet.remaining_amount == 0.0


class TestSortForMatching:
    def test_yes_taker_gets_cheapest_no_orders_first(self) -> None:
        orders = [
            _limit("a", "NO", 0.45),
            _limit("b", "NO", 0.40, created=T0 + timedelta(seconds=5)),
            _limit("c", "NO", 0.40),
            _limit("same-side", "YES", 0.30),
        ]
        assert [b.id for b in sort_for_matching(orders, "YES")] == ["c", "b", "a"]

    def test_no_taker_gets_highest_yes_orders_first(self) -> None:
        orders = [_limit("low", "YES", 0.6), _limit("high", "YES", 0.7)]
        assert [b.id for b in sort_for_matching(orders, "NO")] == ["high", "low"]

    def test_ties_fall_back_to_id(self) -> None:
        orders = [_limit("z", "NO", 0.4), _limit("y", "NO", 0.4)]
        assert [b.id for b in sort_for_matching(orders, "YES")] == ["y", "z"]

    @pytest.mark.parametrize("limit_prob", [0.0, 1.0, float("nan")])
    def test_resting_order_outside_unit_interval_raises(self, limit_prob: float) -> None:
        with pytest.raises(InvalidOrderError):
            sort_for_matching([_limit("bad", "NO", limit_prob)], "YES")

    def test_bad_order_on_own_side_is_ignored(self) -> None:
        assert sort_for_matching([_limit("own", "YES", 0.0)], "YES") == []

    def test_closed_orders_are_skipped(self) -> None:
        orders = [
            _limit("filled", "NO", 0.4, amount=20.0, is_filled=True),
            _limit("cancelled", "NO", 0.4, is_cancelled=True),
            _limit("open", "NO", 0.4),
        ]
        assert [b.id for b in sort_for_matching(orders, "YES")] == ["open"]


class TestApplyMakerFill:
    def test_partial_then_full(self) -> None:
        bet = _limit("b1", "NO", 0.4)
        partial = apply_maker_fill(bet, "taker-1", 5.0, 8.0, T0)
        assert partial.amount == 5.0
        assert partial.shares == 8.0
        assert partial.status == LimitOrderStatus.PARTIALLY_FILLED
        assert partial.fills[0].matched_bet_id == "taker-1"
        assert partial.is_filled is False

        full = apply_maker_fill(partial, "taker-2", 15.0, 25.0, T0)
        assert full.amount == 20.0
        assert full.status == LimitOrderStatus.FILLED
        assert full.is_filled is True
        assert len(full.fills) == 2
        assert bet.fills == ()  # original untouched

    def test_rounding_dust_snaps_to_order_amount(self) -> None:
        full = apply_maker_fill(_limit("b1", "NO", 0.4), "t", 20.0 - 1e-10, 33.3, T0)
        assert full.amount == 20.0
        assert full.is_filled

    def test_overfill_raises(self) -> None:
        with pytest.raises(InvalidOrderError):
            apply_maker_fill(_limit("b1", "NO", 0.4), "t", 25.0, 40.0, T0)

    def test_fill_after_cancel_raises(self) -> None:
        cancelled = cancel_limit_order(_limit("b1", "NO", 0.4))
        with pytest.raises(InvalidOrderError):
            apply_maker_fill(cancelled, "t", 1.0, 1.0, T0)


class TestCancel:
    def test_cancel_open_order(self) -> None:
        cancelled = cancel_limit_order(_limit("b1", "NO", 0.4))
        assert cancelled.is_cancelled
        assert cancelled.status == LimitOrderStatus.CANCELLED
        assert not cancelled.is_open

    def test_cancel_twice_raises(self) -> None:
        cancelled = cancel_limit_order(_limit("b1", "NO", 0.4))
        with pytest.raises(OrderNotCancellableError) as exc_info:
            cancel_limit_order(cancelled)
        assert exc_info.value.code == 4006

    def test_cancel_filled_order_raises(self) -> None:
        with pytest.raises(OrderNotCancellableError):
            cancel_limit_order(_limit("b1", "NO", 0.4, amount=20.0, is_filled=True))

    def test_remaining_open_orders(self) -> None:
        a, b = _limit("a", "NO", 0.4), _limit("b", "NO", 0.45)
        filled_a = apply_maker_fill(a, "t", 20.0, 50.0, T0)
        assert [bet.id for bet in remaining_open_orders([a, b], [filled_a])] == ["b"]
