"""Contract snapshots: one frozen dataclass per market mechanism.

Contract is a closed union; pricing and clearing pick the implementation for
a contract once, from its `mechanism`, and never re-check it downstream.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import ClassVar, Union

from src.pm_common.enums import ContractStatus, Mechanism, OutcomeType, Resolution
from src.pm_pricing.domain.models import NO_FEES, CpmmState, Fees, Pool


@dataclass(frozen=True, kw_only=True)
class _ContractBase:
    id: str
    creator_id: str = ""
    outcome_type: OutcomeType = OutcomeType.BINARY
    close_time: datetime | None = None
    resolution: str | None = None           # YES / NO / MKT / CANCEL / answer id
    resolution_probability: float | None = None
    resolutions: dict[str, float] | None = None  # MKT weights for multi-outcome
    collected_fees: Fees = NO_FEES
    volume: float = 0.0

    @property
    def is_resolved(self) -> bool:
        return self.resolution is not None

    def status(self, now: datetime) -> ContractStatus:
        if self.resolution == Resolution.CANCEL.value:
            return ContractStatus.CANCELLED
        if self.resolution is not None:
            return ContractStatus.RESOLVED
        if self.close_time is not None and now >= self.close_time:
            return ContractStatus.CLOSED
        return ContractStatus.OPEN


@dataclass(frozen=True, kw_only=True)
class CpmmBinaryContract(_ContractBase):
    """cpmm-1: binary or pseudo-numeric market backed by a YES/NO pool."""

    mechanism: ClassVar[Mechanism] = Mechanism.CPMM_1

    pool: Pool
    p: float = 0.5
    total_liquidity: float = 0.0
    subsidy_pool: float = 0.0
    # PSEUDO_NUMERIC only
    min: float = 0.0
    max: float = 1.0
    is_log_scale: bool = False

    @property
    def state(self) -> CpmmState:
        return CpmmState(pool=self.pool, p=self.p)


@dataclass(frozen=True, kw_only=True)
class CpmmMultiContract(_ContractBase):
    """cpmm-2: one pool reserve per answer, probabilities sum to one."""

    mechanism: ClassVar[Mechanism] = Mechanism.CPMM_2

    pool: Pool
    outcome_type: OutcomeType = OutcomeType.MULTIPLE_CHOICE
    subsidy_pool: float = 0.0


@dataclass(frozen=True, kw_only=True)
class DpmContract(_ContractBase):
    """dpm-2: legacy dynamic pari-mutuel. Frozen; kept to price historical bets."""

    mechanism: ClassVar[Mechanism] = Mechanism.DPM_2

    pool: Pool                                 # money staked per outcome
    total_shares: dict[str, float]
    total_bets: dict[str, float]
    phantom_shares: dict[str, float] = field(default_factory=dict)


Contract = Union[CpmmBinaryContract, CpmmMultiContract, DpmContract]


@dataclass(frozen=True)
class LiquidityProvision:
    """A user's stake in a cpmm-1 pool."""

    user_id: str
    amount: float      # money provided
    liquidity: float   # pool liquidity units credited
    is_anteing: bool = False
