"""Trade application service.

Every operation reads a versioned ContractSnapshot, computes the complete
result with the pure calculators, and commits it with compare-and-set on the
snapshot version and on every balance the compute read. A conflicting commit
means the snapshot went stale; the whole compute-and-commit cycle is retried
from a fresh snapshot.
"""

import logging
from collections import defaultdict
from collections.abc import Callable, Iterable
from dataclasses import replace
from datetime import datetime
from typing import TypeVar

from config.settings import settings
from src.pm_clearing.domain.invariants import (
    verify_contract_after_trade,
    verify_pool_conservation,
    verify_settlement_completeness,
)
from src.pm_clearing.domain.loans import get_cpmm_loan_update
from src.pm_clearing.domain.models import LoanUpdate
from src.pm_clearing.domain.redemption import (
    get_redeemable_amount,
    get_redemption_bets,
    redeemable_outcomes,
)
from src.pm_clearing.domain.settlement import get_payouts, merge_payouts
from src.pm_common.datetime_utils import utc_now
from src.pm_common.enums import BinaryOutcome, Mechanism, OutcomeType, Resolution
from src.pm_common.errors import (
    ConcurrentModificationError,
    InsufficientBalanceError,
    InsufficientSharesError,
    InvalidOrderError,
    MarketClosedError,
    OrderNotFoundError,
)
from src.pm_common.money import floating_lesser_equal
from src.pm_market.domain.models import (
    Contract,
    CpmmBinaryContract,
    CpmmMultiContract,
    DpmContract,
)
from src.pm_matching.domain.models import BetInfo
from src.pm_matching.engine.bet_info import (
    apply_bet_info,
    get_binary_cpmm_bet_info,
    get_cpmm_multi_bet_info,
    get_dpm_bet_info,
    validate_amount,
)
from src.pm_matching.engine.limit_order import cancel_limit_order
from src.pm_order.domain.models import Bet
from src.pm_pricing.domain.models import FeeSchedule
from src.pm_pricing.engine.pseudo_numeric import resolution_probability_for_value
from src.pm_sale.engine.cpmm_sale import get_cpmm_sell_bet_info
from src.pm_sale.engine.dpm_sale import get_dpm_sell_bet_info, mark_sold
from src.pm_trading.domain.models import (
    Commit,
    ContractSnapshot,
    ResolutionResult,
    TradeResult,
)
from src.pm_trading.domain.repository import ContractStoreProtocol

logger = logging.getLogger(__name__)

T = TypeVar("T")


def _redeem_complete_sets(
    snapshot: ContractSnapshot,
    contract: Contract,
    updated_bets: Iterable[Bet],
    user_ids: Iterable[str],
    balance_changes: dict[str, float],
    now: datetime,
) -> list[Bet]:
    """Redemption bets for every listed user holding complete sets after the trade."""
    by_id = {bet.id: bet for bet in snapshot.bets}
    by_id.update({bet.id: bet for bet in updated_bets})
    outcomes = redeemable_outcomes(contract)

    redemptions: list[Bet] = []
    for user_id in sorted(set(user_ids)):
        user_bets = [bet for bet in by_id.values() if bet.user_id == user_id]
        redeemable = get_redeemable_amount(user_bets, outcomes)
        if redeemable.shares == 0:
            continue
        redemptions.extend(get_redemption_bets(
            redeemable.shares, redeemable.loan_payment, contract, user_id=user_id, now=now,
        ))
        balance_changes[user_id] = balance_changes.get(user_id, 0.0) + redeemable.net_amount
    return redemptions


def _debit_makers(info: BetInfo, balance_changes: dict[str, float]) -> None:
    for maker in info.makers:
        balance_changes[maker.user_id] -= maker.fills[-1].amount


def _balances_read(snapshot: ContractSnapshot, user_ids: Iterable[str]) -> dict[str, float]:
    """Snapshot balances a compute step decided on, re-checked by the store at commit."""
    return {user_id: snapshot.balance(user_id) for user_id in user_ids}


def _matched_user_ids(info: BetInfo) -> list[str]:
    """Makers whose balance capped or cancelled their fill."""
    return [bet.user_id for bet in (*info.makers, *info.orders_to_cancel)]


def _validate_resolution(
    contract: Contract, outcome: str, resolution_probability: float | None
) -> None:
    special = (Resolution.MKT.value, Resolution.CANCEL.value)
    if isinstance(contract, CpmmMultiContract):
        valid = outcome in special or outcome in contract.pool
    elif isinstance(contract, DpmContract):
        valid = outcome in special or outcome in contract.total_shares
    else:
        valid = outcome in (Resolution.YES.value, Resolution.NO.value, *special)
    if not valid:
        raise InvalidOrderError(f"cannot resolve {contract.id} to {outcome!r}")
    if resolution_probability is not None and not (0 <= resolution_probability <= 1):
        raise InvalidOrderError(f"resolution probability must be in [0, 1], got {resolution_probability}")


class TradingService:
    def __init__(
        self,
        store: ContractStoreProtocol,
        max_retries: int | None = None,
        fee_schedule: FeeSchedule | None = None,
    ) -> None:
        self._store = store
        self._max_retries = max(1, max_retries if max_retries is not None else settings.MAX_COMMIT_RETRIES)
        self._fee_schedule = fee_schedule or FeeSchedule.from_settings()

    def _run(
        self,
        contract_id: str,
        compute: Callable[[ContractSnapshot], tuple[Commit, T]],
    ) -> T:
        attempt = 1
        while True:
            snapshot = self._store.get_snapshot(contract_id)
            commit, result = compute(snapshot)
            try:
                self._store.commit(contract_id, snapshot.version, commit)
            except ConcurrentModificationError:
                if attempt >= self._max_retries:
                    logger.error(
                        "Giving up on %s after %d conflicting commits", contract_id, attempt
                    )
                    raise
                logger.warning(
                    "Commit conflict on %s (attempt %d/%d), recomputing",
                    contract_id, attempt, self._max_retries,
                )
                attempt += 1
                continue
            return result

    # --- bets ---

    def place_bet(
        self,
        user_id: str,
        contract_id: str,
        outcome: str,
        amount: float,
        limit_prob: float | None = None,
    ) -> TradeResult:
        validate_amount(amount)

        def compute(snapshot: ContractSnapshot) -> tuple[Commit, TradeResult]:
            balance = snapshot.balance(user_id)
            if balance < amount:
                raise InsufficientBalanceError(amount, balance)
            contract = snapshot.contract
            now = utc_now()
            if isinstance(contract, CpmmBinaryContract):
                return self._place_binary(snapshot, user_id, outcome, amount, limit_prob, now)
            if limit_prob is not None:
                raise InvalidOrderError("limit orders are only supported on cpmm-1 contracts")
            if isinstance(contract, CpmmMultiContract):
                return self._place_multi(snapshot, user_id, outcome, amount, now)
            return self._place_dpm(snapshot, user_id, outcome, amount, now)

        result = self._run(contract_id, compute)
        logger.info(
            "Bet %s: %s %.4f on %s %s -> %.4f shares, %d fills",
            result.bet.id, user_id, amount, contract_id, outcome,
            result.bet.shares, len(result.bet.fills),
        )
        return result

    def _place_binary(
        self,
        snapshot: ContractSnapshot,
        user_id: str,
        outcome: str,
        amount: float,
        limit_prob: float | None,
        now: datetime,
    ) -> tuple[Commit, TradeResult]:
        contract = snapshot.contract
        info = get_binary_cpmm_bet_info(
            outcome, amount, contract, limit_prob, snapshot.open_orders, snapshot.balances,
            user_id=user_id, fee_schedule=self._fee_schedule, now=now,
        )
        verify_pool_conservation(contract.pool, info)
        new_contract = apply_bet_info(contract, info)
        verify_contract_after_trade(new_contract)

        changes: dict[str, float] = defaultdict(float)
        changes[user_id] -= info.new_bet.amount
        _debit_makers(info, changes)
        updated = [info.new_bet, *info.makers, *info.orders_to_cancel]
        redemptions = _redeem_complete_sets(
            snapshot, new_contract, updated,
            [user_id, *(maker.user_id for maker in info.makers)], changes, now,
        )
        commit = Commit(
            contract=new_contract,
            bets=tuple(updated + redemptions),
            balance_changes=dict(changes),
            balances_read=_balances_read(snapshot, [user_id, *_matched_user_ids(info)]),
        )
        return commit, TradeResult(
            bet=info.new_bet,
            contract=new_contract,
            makers=info.makers,
            cancelled_orders=info.orders_to_cancel,
            redemptions=tuple(redemptions),
        )

    def _place_multi(
        self, snapshot: ContractSnapshot, user_id: str, outcome: str, amount: float, now: datetime
    ) -> tuple[Commit, TradeResult]:
        contract = snapshot.contract
        info = get_cpmm_multi_bet_info(outcome, amount, contract, user_id=user_id, now=now)
        new_contract = replace(contract, pool=info.new_pool, volume=contract.volume + amount)
        verify_contract_after_trade(new_contract)

        changes = {user_id: -amount}
        redemptions = _redeem_complete_sets(
            snapshot, new_contract, [info.new_bet], [user_id], changes, now,
        )
        commit = Commit(
            contract=new_contract,
            bets=(info.new_bet, *redemptions),
            balance_changes=changes,
            balances_read=_balances_read(snapshot, [user_id]),
        )
        return commit, TradeResult(
            bet=info.new_bet, contract=new_contract, redemptions=tuple(redemptions),
        )

    def _place_dpm(
        self, snapshot: ContractSnapshot, user_id: str, outcome: str, amount: float, now: datetime
    ) -> tuple[Commit, TradeResult]:
        contract = snapshot.contract
        info = get_dpm_bet_info(outcome, amount, contract, user_id=user_id, now=now)
        new_contract = replace(
            contract,
            pool=info.new_pool,
            total_shares=info.new_total_shares,
            total_bets=info.new_total_bets,
            volume=contract.volume + amount,
        )
        commit = Commit(
            contract=new_contract,
            bets=(info.new_bet,),
            balance_changes={user_id: -amount},
            balances_read=_balances_read(snapshot, [user_id]),
        )
        return commit, TradeResult(bet=info.new_bet, contract=new_contract)

    def cancel_order(self, user_id: str, contract_id: str, bet_id: str) -> Bet:
        def compute(snapshot: ContractSnapshot) -> tuple[Commit, Bet]:
            bet = snapshot.find_bet(bet_id)
            if bet is None or bet.user_id != user_id:
                raise OrderNotFoundError(bet_id)
            cancelled = cancel_limit_order(bet)
            return Commit(contract=snapshot.contract, bets=(cancelled,)), cancelled

        cancelled = self._run(contract_id, compute)
        logger.info("Cancelled limit order %s (%.4f unfilled)", bet_id, cancelled.remaining_amount)
        return cancelled

    # --- sales ---

    def sell_shares(
        self,
        user_id: str,
        contract_id: str,
        outcome: str,
        shares: float | None = None,
    ) -> TradeResult:
        """Sell cpmm-1 shares; all of them when `shares` is None."""

        def compute(snapshot: ContractSnapshot) -> tuple[Commit, TradeResult]:
            contract = snapshot.contract
            if not isinstance(contract, CpmmBinaryContract):
                raise InvalidOrderError("share sales need a cpmm-1 contract; sell dpm-2 bets whole")
            now = utc_now()
            outcome_bets = [bet for bet in snapshot.user_bets(user_id) if bet.outcome == outcome]
            held = sum(bet.shares for bet in outcome_bets)
            to_sell = held if shares is None else shares
            if held <= 0 or not floating_lesser_equal(to_sell, held):
                raise InsufficientSharesError(f"holding {held:.4f} {outcome}, asked to sell {to_sell}")
            to_sell = min(to_sell, held)
            loan = sum(bet.loan_amount for bet in outcome_bets) * (to_sell / held)

            info = get_cpmm_sell_bet_info(
                to_sell, outcome, contract, loan, snapshot.open_orders, snapshot.balances,
                user_id=user_id, fee_schedule=self._fee_schedule, now=now,
            )
            new_contract = apply_bet_info(contract, info)
            verify_contract_after_trade(new_contract)

            changes: dict[str, float] = defaultdict(float)
            # Proceeds, less the loan repaid (loan_amount is negative on a sale)
            changes[user_id] += -info.new_bet.amount + info.new_bet.loan_amount
            _debit_makers(info, changes)
            updated = [info.new_bet, *info.makers, *info.orders_to_cancel]
            redemptions = _redeem_complete_sets(
                snapshot, new_contract, updated,
                [user_id, *(maker.user_id for maker in info.makers)], changes, now,
            )
            commit = Commit(
                contract=new_contract,
                bets=tuple(updated + redemptions),
                balance_changes=dict(changes),
                balances_read=_balances_read(snapshot, _matched_user_ids(info)),
            )
            return commit, TradeResult(
                bet=info.new_bet,
                contract=new_contract,
                makers=info.makers,
                cancelled_orders=info.orders_to_cancel,
                redemptions=tuple(redemptions),
            )

        return self._run(contract_id, compute)

    def sell_dpm_bet(self, user_id: str, contract_id: str, bet_id: str) -> TradeResult:
        def compute(snapshot: ContractSnapshot) -> tuple[Commit, TradeResult]:
            contract = snapshot.contract
            if not isinstance(contract, DpmContract):
                raise InvalidOrderError("whole-bet sales are only for dpm-2 contracts")
            bet = snapshot.find_bet(bet_id)
            if bet is None or bet.user_id != user_id:
                raise OrderNotFoundError(bet_id)
            info = get_dpm_sell_bet_info(bet, contract, now=utc_now())
            new_contract = replace(
                contract,
                pool=info.new_pool,
                total_shares=info.new_total_shares,
                total_bets=info.new_total_bets,
                volume=contract.volume + abs(info.new_bet.amount),
                collected_fees=contract.collected_fees + info.fees,
            )
            commit = Commit(
                contract=new_contract,
                bets=(mark_sold(bet), info.new_bet),
                balance_changes={user_id: info.balance_change},
            )
            return commit, TradeResult(bet=info.new_bet, contract=new_contract)

        return self._run(contract_id, compute)

    # --- resolution ---

    def _resolve(
        self,
        snapshot: ContractSnapshot,
        outcome: str,
        resolution_probability: float | None,
        resolutions: dict[str, float] | None,
    ) -> tuple[Commit, ResolutionResult]:
        contract = snapshot.contract
        if contract.is_resolved:
            raise MarketClosedError(contract.id)
        _validate_resolution(contract, outcome, resolution_probability)

        resolved = replace(
            contract,
            resolution=outcome,
            resolution_probability=resolution_probability,
            resolutions=resolutions,
        )
        cancelled = tuple(cancel_limit_order(bet) for bet in snapshot.open_orders)
        payouts = get_payouts(resolved, snapshot.bets, snapshot.liquidities)
        if resolved.mechanism != Mechanism.DPM_2:
            verify_settlement_completeness(outcome, snapshot.bets, payouts)
        net_payouts = merge_payouts(payouts.all_payouts(contract.creator_id))

        commit = Commit(contract=resolved, bets=cancelled, balance_changes=net_payouts)
        return commit, ResolutionResult(
            contract=resolved,
            payouts=payouts,
            net_payouts=net_payouts,
            cancelled_orders=cancelled,
        )

    def resolve(
        self,
        contract_id: str,
        outcome: str,
        resolution_probability: float | None = None,
        resolutions: dict[str, float] | None = None,
    ) -> ResolutionResult:
        result = self._run(
            contract_id,
            lambda snapshot: self._resolve(snapshot, outcome, resolution_probability, resolutions),
        )
        logger.info(
            "Resolved %s to %s: %d users paid, %d open orders cancelled",
            contract_id, outcome, len(result.net_payouts), len(result.cancelled_orders),
        )
        return result

    def resolve_pseudo_numeric(self, contract_id: str, value: float) -> ResolutionResult:
        """Resolve to a numeric value: the range ends are NO and YES, anything between is MKT."""

        def compute(snapshot: ContractSnapshot) -> tuple[Commit, ResolutionResult]:
            contract = snapshot.contract
            if not isinstance(contract, CpmmBinaryContract) or contract.outcome_type != OutcomeType.PSEUDO_NUMERIC:
                raise InvalidOrderError(f"{contract.id} is not a pseudo-numeric contract")
            prob = resolution_probability_for_value(contract, value)
            if prob <= 0:
                return self._resolve(snapshot, BinaryOutcome.NO.value, 0.0, None)
            if prob >= 1:
                return self._resolve(snapshot, BinaryOutcome.YES.value, 1.0, None)
            return self._resolve(snapshot, Resolution.MKT.value, prob, None)

        return self._run(contract_id, compute)

    # --- loans ---

    def issue_loans(self, contract_id: str) -> list[LoanUpdate]:
        """Daily loan run for every bettor on a cpmm-1 contract."""

        def compute(snapshot: ContractSnapshot) -> tuple[Commit, list[LoanUpdate]]:
            contract = snapshot.contract
            if contract.mechanism != Mechanism.CPMM_1:
                return Commit(contract=contract), []
            updates: list[LoanUpdate] = []
            loan_bets: list[Bet] = []
            changes: dict[str, float] = {}
            for user_id in sorted({bet.user_id for bet in snapshot.bets}):
                update = get_cpmm_loan_update(contract, snapshot.user_bets(user_id))
                if update is None:
                    continue
                bet = snapshot.find_bet(update.bet_id)
                loan_bets.append(replace(bet, loan_amount=update.loan_total))
                changes[user_id] = update.new_loan
                updates.append(update)
            return Commit(contract=contract, bets=tuple(loan_bets), balance_changes=changes), updates

        updates = self._run(contract_id, compute)
        logger.info("Issued %d loans on %s", len(updates), contract_id)
        return updates
