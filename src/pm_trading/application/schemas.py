# src/pm_trading/application/schemas.py
from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field, ValidationInfo, field_validator

from src.pm_order.domain.models import Bet


def _check_binary_pool(v: dict[str, float]) -> dict[str, float]:
    if set(v) != {"YES", "NO"}:
        raise ValueError("pool must have exactly the YES and NO reserves")
    if any(not reserve > 0 for reserve in v.values()):
        raise ValueError("pool reserves must be positive")
    return v


class ProbabilityQuoteRequest(BaseModel):
    pool: dict[str, float]
    p: float = Field(default=0.5, gt=0, lt=1, description="Pool weight of YES")

    @field_validator("pool")
    @classmethod
    def binary_pool(cls, v: dict[str, float]) -> dict[str, float]:
        return _check_binary_pool(v)


class ProbabilityQuoteResponse(BaseModel):
    probability: float


class LimitOrderIn(BaseModel):
    """A resting limit order supplied by the caller for matching."""

    id: str
    user_id: str
    outcome: Literal["YES", "NO"]
    limit_prob: float = Field(gt=0, lt=1)
    order_amount: float = Field(gt=0)
    amount: float = Field(default=0.0, ge=0, description="Already filled part of order_amount")
    shares: float = 0.0
    created_time: datetime

    @field_validator("amount")
    @classmethod
    def within_order(cls, v: float, info: ValidationInfo) -> float:
        order_amount = info.data.get("order_amount")
        if order_amount is not None and v > order_amount:
            raise ValueError("filled amount cannot exceed order_amount")
        return v

    def to_bet(self, contract_id: str) -> Bet:
        return Bet(
            id=self.id,
            user_id=self.user_id,
            contract_id=contract_id,
            outcome=self.outcome,
            amount=self.amount,
            shares=self.shares,
            prob_before=self.limit_prob,
            prob_after=self.limit_prob,
            created_time=self.created_time,
            limit_prob=self.limit_prob,
            order_amount=self.order_amount,
            is_filled=False,
            is_cancelled=False,
        )


class BetQuoteRequest(BaseModel):
    outcome: Literal["YES", "NO"]
    amount: float
    pool: dict[str, float]
    p: float = Field(default=0.5, gt=0, lt=1, description="Pool weight of YES")
    limit_prob: float | None = None
    total_liquidity: float = 0.0
    unfilled_bets: list[LimitOrderIn] = []
    balance_by_user_id: dict[str, float] | None = None

    @field_validator("pool")
    @classmethod
    def binary_pool(cls, v: dict[str, float]) -> dict[str, float]:
        return _check_binary_pool(v)


class FeesOut(BaseModel):
    creator_fee: float
    platform_fee: float
    liquidity_fee: float
    total: float


class FillOut(BaseModel):
    matched_bet_id: str | None
    amount: float
    shares: float


class MakerOut(BaseModel):
    bet_id: str
    user_id: str
    fill_amount: float
    fill_shares: float
    is_filled: bool


class BetQuoteResponse(BaseModel):
    bet_id: str
    outcome: str
    order_amount: float
    amount: float
    shares: float
    prob_before: float
    prob_after: float
    is_filled: bool
    current_payout: float
    current_return: float
    fees: FeesOut
    new_pool: dict[str, float]
    new_p: float
    fills: list[FillOut]
    makers: list[MakerOut]
    orders_to_cancel: list[str]
