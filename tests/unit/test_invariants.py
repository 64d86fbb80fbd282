"""Tests for pm_clearing.domain.invariants."""

from dataclasses import replace
from datetime import UTC, datetime

import pytest

from src.pm_clearing.domain.invariants import (
    verify_contract_after_trade,
    verify_pool_conservation,
    verify_settlement_completeness,
)
from src.pm_clearing.domain.models import Payout, PayoutResult
from src.pm_market.domain.models import CpmmBinaryContract
from src.pm_matching.engine.bet_info import get_binary_cpmm_bet_info
from src.pm_order.domain.models import Bet
from src.pm_pricing.domain.models import FeeSchedule

NOW = datetime(2026, 1, 1, tzinfo=UTC)
CONTRACT = CpmmBinaryContract(id="c-1", pool={"YES": 100.0, "NO": 100.0}, total_liquidity=100.0)


def _bet(user_id: str, outcome: str, amount: float, shares: float) -> Bet:
    return Bet(id=f"b-{user_id}", user_id=user_id, contract_id="c-1", outcome=outcome,
               amount=amount, shares=shares, prob_before=0.5, prob_after=0.5,
               created_time=NOW)


class TestPoolConservation:
    @pytest.mark.parametrize("outcome", ["YES", "NO"])
    def test_holds_with_fees(self, outcome: str) -> None:
        schedule = FeeSchedule(liquidity=0.02, platform=0.01, creator=0.03)
        info = get_binary_cpmm_bet_info(outcome, 25, CONTRACT, fee_schedule=schedule, now=NOW)
        verify_pool_conservation(CONTRACT.pool, info)

    def test_detects_leak(self) -> None:
        info = get_binary_cpmm_bet_info("YES", 25, CONTRACT, fee_schedule=FeeSchedule(), now=NOW)
        leaky = replace(info, new_pool={**info.new_pool, "NO": info.new_pool["NO"] + 1})
        with pytest.raises(AssertionError, match="INV-2"):
            verify_pool_conservation(CONTRACT.pool, leaky)


class TestSettlementCompleteness:
    BETS = [_bet("alice", "YES", 6, 10), _bet("bob", "NO", 4, 8)]

    def test_yes_pays_outstanding_yes_shares(self) -> None:
        result = PayoutResult(payouts=(Payout("alice", 10),))
        verify_settlement_completeness("YES", self.BETS, result)

    def test_cancel_pays_amounts(self) -> None:
        result = PayoutResult(payouts=(Payout("alice", 6), Payout("bob", 4)))
        verify_settlement_completeness("CANCEL", self.BETS, result)

    def test_short_payout_detected(self) -> None:
        result = PayoutResult(payouts=(Payout("bob", 7),))
        with pytest.raises(AssertionError, match="INV-3"):
            verify_settlement_completeness("NO", self.BETS, result)

    def test_mkt_is_not_checked(self) -> None:
        verify_settlement_completeness("MKT", self.BETS, PayoutResult(payouts=()))


class TestContractAfterTrade:
    def test_positive_reserves_pass(self) -> None:
        verify_contract_after_trade(CONTRACT)

    def test_empty_reserve_fails(self) -> None:
        drained = replace(CONTRACT, pool={"YES": 0.0, "NO": 200.0})
        with pytest.raises(AssertionError, match="INV-4"):
            verify_contract_after_trade(drained)
