"""Tests for pm_matching.engine.bet_info: new-bet calculators and bet stats."""

import math
from datetime import UTC, datetime, timedelta

import pytest

from src.pm_common.errors import InvalidOrderError, MarketClosedError
from src.pm_market.domain.models import CpmmBinaryContract, CpmmMultiContract, DpmContract
from src.pm_matching.engine.bet_info import (
    apply_bet_info,
    get_binary_bet_stats,
    get_binary_cpmm_bet_info,
    get_cpmm_multi_bet_info,
    get_dpm_bet_info,
    get_range_order,
    validate_amount,
)
from src.pm_pricing.domain.models import FeeSchedule

NOW = datetime(2026, 1, 1, tzinfo=UTC)
NO_FEE_SCHEDULE = FeeSchedule()


def _contract(**kwargs) -> CpmmBinaryContract:
    return CpmmBinaryContract(id="c-1", pool={"YES": 100.0, "NO": 100.0}, p=0.5,
                              total_liquidity=100.0, **kwargs)


class TestValidation:
    @pytest.mark.parametrize("amount", [0, -1, math.nan, math.inf])
    def test_bad_amounts(self, amount: float) -> None:
        with pytest.raises(InvalidOrderError) as exc_info:
            validate_amount(amount)
        assert exc_info.value.code == 4001

    @pytest.mark.parametrize("limit_prob", [0.0, 1.0, 1.5, math.nan])
    def test_bad_limit(self, limit_prob: float) -> None:
        with pytest.raises(InvalidOrderError):
            get_binary_cpmm_bet_info("YES", 10, _contract(), limit_prob, now=NOW)

    def test_bad_outcome(self) -> None:
        with pytest.raises(InvalidOrderError):
            get_binary_cpmm_bet_info("MAYBE", 10, _contract(), now=NOW)

    def test_closed_market(self) -> None:
        contract = _contract(close_time=NOW - timedelta(minutes=1))
        with pytest.raises(MarketClosedError) as exc_info:
            get_binary_cpmm_bet_info("YES", 10, contract, now=NOW)
        assert exc_info.value.code == 3002

    def test_resolved_market(self) -> None:
        with pytest.raises(MarketClosedError):
            get_binary_cpmm_bet_info("YES", 10, _contract(resolution="YES"), now=NOW)


class TestBinaryBetInfo:
    def test_market_bet(self) -> None:
        info = get_binary_cpmm_bet_info(
            "YES", 50, _contract(), user_id="alice", fee_schedule=NO_FEE_SCHEDULE, now=NOW,
        )
        bet = info.new_bet
        assert bet.user_id == "alice"
        assert bet.amount == 50
        assert bet.shares == pytest.approx(150 - 10000 / 150)
        assert bet.prob_before == pytest.approx(0.5)
        assert 0.5 < bet.prob_after < 0.7
        assert bet.is_filled
        assert len(bet.fills) == 1
        assert bet.id.startswith("bet_")

    def test_fees_feed_total_liquidity(self) -> None:
        schedule = FeeSchedule(liquidity=0.01, platform=0.01, creator=0.01)
        info = get_binary_cpmm_bet_info("NO", 10, _contract(), fee_schedule=schedule, now=NOW)
        assert info.fees.total > 0
        assert info.new_total_liquidity == pytest.approx(100 + info.fees.liquidity_fee)
        assert info.new_bet.fees == info.fees

    def test_apply_bet_info(self) -> None:
        contract = _contract()
        info = get_binary_cpmm_bet_info("YES", 50, contract, fee_schedule=NO_FEE_SCHEDULE, now=NOW)
        updated = apply_bet_info(contract, info)
        assert updated.pool == info.new_pool
        assert updated.volume == pytest.approx(50)
        assert contract.pool == {"YES": 100.0, "NO": 100.0}


class TestBetStats:
    def test_market_bet_payout(self) -> None:
        stats = get_binary_bet_stats("YES", 50, _contract(), fee_schedule=NO_FEE_SCHEDULE)
        shares = 150 - 10000 / 150
        assert stats.current_payout == pytest.approx(shares)
        assert stats.current_return == pytest.approx((shares - 50) / 50)
        assert stats.total_fees == 0

    def test_unfilled_limit_counts_at_limit_price(self) -> None:
        stats = get_binary_bet_stats("YES", 20, _contract(), 0.4, fee_schedule=NO_FEE_SCHEDULE)
        assert stats.current_payout == pytest.approx(50)
        assert stats.current_return == pytest.approx(1.5)

    def test_no_limit_uses_complement_price(self) -> None:
        stats = get_binary_bet_stats("NO", 20, _contract(), 0.6, fee_schedule=NO_FEE_SCHEDULE)
        assert stats.current_payout == pytest.approx(50)


class TestRangeOrder:
    def test_symmetric_range(self) -> None:
        order = get_range_order(10, 0.4, 0.6)
        assert order.shares == pytest.approx(25)
        assert order.yes_amount == pytest.approx(10)
        assert order.no_amount == pytest.approx(10)

    def test_legs_buy_equal_shares(self) -> None:
        order = get_range_order(10, 0.2, 0.6)
        assert order.shares == pytest.approx(25)
        assert order.yes_amount == pytest.approx(5)
        assert order.no_amount == pytest.approx(10)
        assert order.yes_amount / order.yes_limit_prob == pytest.approx(
            order.no_amount / (1 - order.no_limit_prob)
        )

    def test_inverted_range_raises(self) -> None:
        with pytest.raises(InvalidOrderError):
            get_range_order(10, 0.6, 0.4)


class TestOtherMechanisms:
    def test_multi_bet(self) -> None:
        contract = CpmmMultiContract(id="m-1", pool={"A": 100.0, "B": 100.0, "C": 100.0})
        info = get_cpmm_multi_bet_info("A", 30, contract, user_id="alice", now=NOW)
        assert info.new_bet.shares == pytest.approx(130 - 1e6 / 130 ** 2)
        assert info.new_bet.prob_before == pytest.approx(1 / 3)
        assert info.new_bet.prob_after > 1 / 3
        assert info.new_pool["B"] == pytest.approx(130)

    def test_dpm_bet(self) -> None:
        contract = DpmContract(
            id="d-1",
            pool={"YES": 3.0, "NO": 4.0},
            total_shares={"YES": 3.0, "NO": 4.0},
            total_bets={"YES": 3.0, "NO": 4.0},
        )
        info = get_dpm_bet_info("YES", 1, contract, user_id="alice", now=NOW)
        assert info.new_bet.shares == pytest.approx(math.sqrt(20) - 3)
        assert info.new_pool == {"YES": 4.0, "NO": 4.0}
        assert info.new_total_bets["YES"] == 4.0
        assert info.new_bet.prob_before == pytest.approx(0.36)

    def test_dpm_unknown_outcome(self) -> None:
        contract = DpmContract(id="d-1", pool={"YES": 1.0}, total_shares={"YES": 1.0},
                               total_bets={"YES": 1.0})
        with pytest.raises(InvalidOrderError):
            get_dpm_bet_info("NO", 1, contract, now=NOW)
