"""ContractStore Protocol: interface contract for the persistence layer."""
from typing import Protocol

from src.pm_trading.domain.models import Commit, ContractSnapshot


class ContractStoreProtocol(Protocol):
    def get_snapshot(self, contract_id: str) -> ContractSnapshot: ...

    def commit(self, contract_id: str, expected_version: int, commit: Commit) -> int:
        """Apply `commit` if the contract is still at `expected_version`; return the new version.

        Raises ConcurrentModificationError when another commit got there first.
        """
        ...
