"""Global enums shared by pricing, matching and clearing."""

from enum import Enum


class Mechanism(str, Enum):
    """Market-maker variant behind a contract."""
    CPMM_1 = "cpmm-1"   # binary / pseudo-numeric constant product
    CPMM_2 = "cpmm-2"   # multi-outcome constant product
    DPM_2 = "dpm-2"     # legacy dynamic pari-mutuel


class OutcomeType(str, Enum):
    BINARY = "BINARY"
    PSEUDO_NUMERIC = "PSEUDO_NUMERIC"
    MULTIPLE_CHOICE = "MULTIPLE_CHOICE"
    FREE_RESPONSE = "FREE_RESPONSE"
    NUMERIC = "NUMERIC"


class BinaryOutcome(str, Enum):
    YES = "YES"
    NO = "NO"


class Resolution(str, Enum):
    """Special resolutions. Multi-outcome contracts also resolve to an answer id."""
    YES = "YES"
    NO = "NO"
    MKT = "MKT"
    CANCEL = "CANCEL"


class ContractStatus(str, Enum):
    OPEN = "OPEN"
    CLOSED = "CLOSED"
    RESOLVED = "RESOLVED"
    CANCELLED = "CANCELLED"


class LimitOrderStatus(str, Enum):
    OPEN = "OPEN"
    PARTIALLY_FILLED = "PARTIALLY_FILLED"
    FILLED = "FILLED"
    CANCELLED = "CANCELLED"


def opposite_outcome(outcome: str) -> str:
    return BinaryOutcome.NO.value if outcome == BinaryOutcome.YES.value else BinaryOutcome.YES.value
