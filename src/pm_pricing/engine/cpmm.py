"""Weighted constant-product pricing for binary cpmm-1 pools.

Invariant: YES^p * NO^(1-p) = k.
A purchase of `amount` mints `amount` YES+NO pairs into the pool, then
withdraws the bought outcome until k is restored; the withdrawn shares go to
the bettor. `p` skews the price away from 50/50 for equal reserves.
"""
from collections import defaultdict
from collections.abc import Iterable

from src.pm_common.enums import BinaryOutcome
from src.pm_common.errors import InvalidOrderError, NonFiniteValueError
from src.pm_common.money import binary_search, clamp, ensure_finite
from src.pm_market.domain.models import LiquidityProvision
from src.pm_pricing.domain.models import CpmmPurchase, CpmmState, Fees, FeeSchedule, Pool

YES = BinaryOutcome.YES.value
NO = BinaryOutcome.NO.value

MIN_PROB = 1e-9
MAX_PROB = 1 - 1e-9

# Upper bound search for calculate_cpmm_amount_to_prob: 10^3 .. 10^32
_MAX_GUESS_STEPS = 30


def _reserves(pool: Pool) -> tuple[float, float]:
    y = pool.get(YES, 0.0)
    n = pool.get(NO, 0.0)
    for what, value in (("YES reserve", y), ("NO reserve", n)):
        ensure_finite(value, what)
        if value <= 0:
            raise NonFiniteValueError(what, value)
    return y, n


def _check_p(p: float) -> float:
    ensure_finite(p, "pool weight p")
    if not (0 < p < 1):
        raise NonFiniteValueError("pool weight p", p)
    return p


def _check_outcome(outcome: str) -> None:
    if outcome not in (YES, NO):
        raise InvalidOrderError(f"outcome must be YES or NO, got {outcome!r}")


def get_cpmm_probability(pool: Pool, p: float) -> float:
    """Implied probability of YES, clamped into (0, 1)."""
    y, n = _reserves(pool)
    _check_p(p)
    prob = p * n / ((1 - p) * y + p * n)
    return clamp(ensure_finite(prob, "probability"), MIN_PROB, MAX_PROB)


def get_cpmm_liquidity(pool: Pool, p: float) -> float:
    y, n = _reserves(pool)
    return y ** p * n ** (1 - p)


def _pool_after_shares_out(pool: Pool, p: float, bet: float, outcome: str) -> tuple[Pool, float]:
    """Mint `bet` pairs, then solve the invariant for the bought side's reserve."""
    y, n = _reserves(pool)
    k = y ** p * n ** (1 - p)
    if outcome == YES:
        new_y = (k * (n + bet) ** (p - 1)) ** (1 / p)
        new_pool = {YES: new_y, NO: n + bet}
        shares = y + bet - new_y
    else:
        new_n = (k * (y + bet) ** -p) ** (1 / (1 - p))
        new_pool = {YES: y + bet, NO: new_n}
        shares = n + bet - new_n
    return new_pool, ensure_finite(shares, "shares")


def calculate_cpmm_shares(pool: Pool, p: float, bet: float, outcome: str) -> float:
    """Shares received for `bet`, before fees."""
    _check_outcome(outcome)
    if bet == 0:
        return 0.0
    _, shares = _pool_after_shares_out(pool, _check_p(p), bet, outcome)
    return shares


def get_cpmm_probability_after_bet_before_fees(
    state: CpmmState, outcome: str, bet: float
) -> float:
    if bet == 0:
        return get_cpmm_probability(state.pool, state.p)
    new_pool, _ = _pool_after_shares_out(state.pool, state.p, bet, outcome)
    return get_cpmm_probability(new_pool, state.p)


def get_cpmm_fees(
    state: CpmmState, bet: float, outcome: str, fee_schedule: FeeSchedule
) -> tuple[float, Fees]:
    """Return (remaining_bet, fees).

    Each fee is rate * bet * (1 - price of the bought outcome after the trade),
    so the fee grows with the size of the trade.
    """
    prob = get_cpmm_probability_after_bet_before_fees(state, outcome, bet)
    bet_p = 1 - prob if outcome == YES else prob
    fees = Fees(
        liquidity_fee=fee_schedule.liquidity * bet_p * bet,
        platform_fee=fee_schedule.platform * bet_p * bet,
        creator_fee=fee_schedule.creator * bet_p * bet,
    )
    return bet - fees.total, fees


def add_cpmm_liquidity(pool: Pool, p: float, amount: float) -> tuple[Pool, float, float]:
    """Add `amount` to both reserves, re-weighting p so the probability is unchanged.

    Returns (new_pool, new_p, liquidity_added).
    """
    prob = get_cpmm_probability(pool, p)
    y, n = _reserves(pool)
    numerator = prob * (amount + y)
    denominator = amount - n * (prob - 1) + prob * y
    new_p = _check_p(ensure_finite(numerator / denominator, "pool weight p"))
    new_pool = {YES: y + amount, NO: n + amount}
    liquidity = get_cpmm_liquidity(new_pool, new_p) - get_cpmm_liquidity(pool, new_p)
    return new_pool, new_p, liquidity


def calculate_cpmm_purchase(
    state: CpmmState,
    bet: float,
    outcome: str,
    fee_schedule: FeeSchedule | None = None,
) -> CpmmPurchase:
    """Buy `outcome` from the pool with `bet`; the liquidity fee is added back to the pool."""
    _check_outcome(outcome)
    fee_schedule = fee_schedule or FeeSchedule.from_settings()
    remaining_bet, fees = get_cpmm_fees(state, bet, outcome, fee_schedule)
    if remaining_bet == 0:
        return CpmmPurchase(shares=0.0, new_state=state, fees=fees)

    post_bet_pool, shares = _pool_after_shares_out(state.pool, state.p, remaining_bet, outcome)
    new_pool, new_p = post_bet_pool, state.p
    if fees.liquidity_fee > 0:
        new_pool, new_p, _ = add_cpmm_liquidity(post_bet_pool, state.p, fees.liquidity_fee)
    return CpmmPurchase(shares=shares, new_state=CpmmState(pool=new_pool, p=new_p), fees=fees)


def get_cpmm_outcome_probability_after_bet(
    state: CpmmState, outcome: str, bet: float, fee_schedule: FeeSchedule | None = None
) -> float:
    purchase = calculate_cpmm_purchase(state, bet, outcome, fee_schedule)
    prob = get_cpmm_probability(purchase.new_state.pool, purchase.new_state.p)
    return 1 - prob if outcome == NO else prob


def calculate_cpmm_amount_to_prob(
    state: CpmmState,
    prob: float,
    outcome: str,
    fee_schedule: FeeSchedule | None = None,
) -> float:
    """Amount that moves the pool to YES-probability `prob` by buying `outcome`.

    Inverse of the purchase formula; the clip point for limit orders.
    Returns 0 when the pool is already at or past `prob`.
    """
    _check_outcome(outcome)
    ensure_finite(prob, "limit probability")
    if not (0 < prob < 1):
        raise InvalidOrderError(f"probability must be in (0, 1), got {prob}")
    target = 1 - prob if outcome == NO else prob

    def outcome_prob(amount: float) -> float:
        return get_cpmm_outcome_probability_after_bet(state, outcome, amount, fee_schedule)

    if outcome_prob(0) >= target:
        return 0.0

    max_guess = 10.0
    for _ in range(_MAX_GUESS_STEPS):
        max_guess *= 10
        if outcome_prob(max_guess) >= target:
            break
    else:
        raise NonFiniteValueError("amount to reach probability", prob)

    return binary_search(0, max_guess, lambda amount: outcome_prob(amount) - target)


def get_cpmm_liquidity_pool_weights(
    liquidities: Iterable[LiquidityProvision],
) -> dict[str, float]:
    """Fraction of the pool owned by each provider, by amount provided."""
    amounts: dict[str, float] = defaultdict(float)
    for provision in liquidities:
        amounts[provision.user_id] += provision.amount
    total = sum(amounts.values())
    if total <= 0:
        return {}
    return {user_id: amount / total for user_id, amount in amounts.items()}
