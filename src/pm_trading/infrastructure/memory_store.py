"""In-memory ContractStore: versioned compare-and-set under one lock.

Reference implementation of the persistence contract; a database-backed store
would do the same check with a conditional UPDATE on the version column, plus
a conditional UPDATE on every balance listed in Commit.balances_read.
"""

import logging
import threading
from collections.abc import Iterable

from src.pm_common.errors import ConcurrentModificationError, ContractNotFoundError
from src.pm_market.domain.models import Contract, LiquidityProvision
from src.pm_order.domain.models import Bet
from src.pm_trading.domain.models import Commit, ContractSnapshot

logger = logging.getLogger(__name__)


class _ContractRecord:
    def __init__(self, contract: Contract, liquidities: tuple[LiquidityProvision, ...]) -> None:
        self.contract = contract
        self.version = 0
        self.bets: dict[str, Bet] = {}  # insertion order = creation order
        self.liquidities = liquidities


class InMemoryContractStore:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._records: dict[str, _ContractRecord] = {}
        self._balances: dict[str, float] = {}

    def add_contract(
        self,
        contract: Contract,
        liquidities: Iterable[LiquidityProvision] = (),
        bets: Iterable[Bet] = (),
    ) -> None:
        with self._lock:
            record = _ContractRecord(contract, tuple(liquidities))
            for bet in bets:
                record.bets[bet.id] = bet
            self._records[contract.id] = record

    def set_balance(self, user_id: str, balance: float) -> None:
        with self._lock:
            self._balances[user_id] = balance

    def get_balance(self, user_id: str) -> float:
        with self._lock:
            return self._balances.get(user_id, 0.0)

    def _record(self, contract_id: str) -> _ContractRecord:
        record = self._records.get(contract_id)
        if record is None:
            raise ContractNotFoundError(contract_id)
        return record

    def get_snapshot(self, contract_id: str) -> ContractSnapshot:
        with self._lock:
            record = self._record(contract_id)
            snapshot = ContractSnapshot(
                contract=record.contract,
                version=record.version,
                bets=tuple(record.bets.values()),
                balances=dict(self._balances),
                liquidities=record.liquidities,
            )
        logger.debug("Snapshot %s at version %d", contract_id, snapshot.version)
        return snapshot

    def commit(self, contract_id: str, expected_version: int, commit: Commit) -> int:
        with self._lock:
            record = self._record(contract_id)
            if record.version != expected_version:
                raise ConcurrentModificationError(contract_id, expected_version, record.version)
            # Balances are shared across contracts, so the version alone cannot vouch for them
            for user_id, expected in commit.balances_read.items():
                actual = self._balances.get(user_id, 0.0)
                if actual != expected:
                    raise ConcurrentModificationError(
                        contract_id, expected, actual, what=f"balance of {user_id}"
                    )
            record.contract = commit.contract
            for bet in commit.bets:
                record.bets[bet.id] = bet
            for user_id, change in commit.balance_changes.items():
                self._balances[user_id] = self._balances.get(user_id, 0.0) + change
            record.version += 1
            return record.version
