"""Unified error codes and custom exceptions.

Error code ranges:
  2xxx: Account
  3xxx: Market
  4xxx: Order
  5xxx: Position
  9xxx: System
"""


class AppError(Exception):
    """Base application error."""

    def __init__(
        self,
        code: int,
        message: str,
        http_status: int = 500,
    ) -> None:
        self.code = code
        self.message = message
        self.http_status = http_status
        super().__init__(message)


# --- 2xxx: Account ---

class InsufficientBalanceError(AppError):
    def __init__(self, required: float, available: float) -> None:
        super().__init__(
            2001,
            f"Insufficient balance: required {required:.2f}, available {available:.2f}",
            422,
        )


# --- 3xxx: Market ---

class ContractNotFoundError(AppError):
    def __init__(self, contract_id: str) -> None:
        super().__init__(3001, f"Contract not found: {contract_id}", 404)


class MarketClosedError(AppError):
    def __init__(self, contract_id: str) -> None:
        super().__init__(3002, f"Market is closed or resolved: {contract_id}", 422)


class ContractNotResolvedError(AppError):
    def __init__(self, contract_id: str) -> None:
        super().__init__(3003, f"Contract is not resolved: {contract_id}", 422)


# --- 4xxx: Order ---

class InvalidOrderError(AppError):
    def __init__(self, detail: str) -> None:
        super().__init__(4001, f"Invalid order: {detail}", 422)


class OrderNotFoundError(AppError):
    def __init__(self, bet_id: str) -> None:
        super().__init__(4004, f"Order not found: {bet_id}", 404)


class OrderNotCancellableError(AppError):
    def __init__(self, bet_id: str, status: str) -> None:
        super().__init__(4006, f"Order {bet_id} in status {status} cannot be cancelled", 422)


# --- 5xxx: Position ---

class InsufficientSharesError(AppError):
    def __init__(self, detail: str) -> None:
        super().__init__(5001, f"Insufficient shares: {detail}", 422)


# --- 9xxx: System ---

class NonFiniteValueError(AppError, ArithmeticError):
    """A money, share or probability value came out NaN, infinite or out of domain."""

    def __init__(self, what: str, value: float) -> None:
        super().__init__(9003, f"Non-finite or out-of-domain {what}: {value}", 500)


class ConcurrentModificationError(AppError):
    def __init__(
        self, contract_id: str, expected: float, actual: float, what: str = "version"
    ) -> None:
        super().__init__(
            9004,
            f"Contract {contract_id} changed during compute: "
            f"expected {what} {expected}, found {actual}",
            409,
        )
