"""Pricing value objects: pure dataclasses, no persistence dependency."""
from dataclasses import dataclass, field

from config.settings import settings

Pool = dict[str, float]  # outcome -> reserve; treated as immutable


@dataclass(frozen=True)
class Fees:
    creator_fee: float = 0.0
    platform_fee: float = 0.0
    liquidity_fee: float = 0.0

    @property
    def total(self) -> float:
        return self.creator_fee + self.platform_fee + self.liquidity_fee

    @property
    def extracted(self) -> float:
        """Fees that leave the pool (liquidity fee stays in it)."""
        return self.creator_fee + self.platform_fee

    def __add__(self, other: "Fees") -> "Fees":
        return Fees(
            creator_fee=self.creator_fee + other.creator_fee,
            platform_fee=self.platform_fee + other.platform_fee,
            liquidity_fee=self.liquidity_fee + other.liquidity_fee,
        )


NO_FEES = Fees()


@dataclass(frozen=True)
class FeeSchedule:
    """Per-trade fee rates for CPMM pool trades."""

    liquidity: float = 0.0
    platform: float = 0.0
    creator: float = 0.0

    @classmethod
    def from_settings(cls) -> "FeeSchedule":
        return cls(
            liquidity=settings.CPMM_LIQUIDITY_FEE,
            platform=settings.CPMM_PLATFORM_FEE,
            creator=settings.CPMM_CREATOR_FEE,
        )


@dataclass(frozen=True)
class CpmmState:
    """Snapshot of a binary constant-product pool."""

    pool: Pool
    p: float


@dataclass(frozen=True)
class CpmmPurchase:
    shares: float
    new_state: CpmmState
    fees: Fees = field(default=NO_FEES)
