from __future__ import annotations
from dataclasses import dataclass
from typing import Optional
import logging

from .config import BPS, VaultConfig
from .core import Clock, DeploymentResult, PriceOracle, TokenBalances, format_inventory
from .errors import AccountingInvariantViolation, SlippageExceeded, VaultError, VenueRejected
from .strategy import Strategy
from .venue import SwapExecutor

logger = logging.getLogger(__name__)


def _external_failure(strategy_id: str, exc: Exception) -> VenueRejected:
    logger.exception("unexpected error from venue or swap executor for %s", strategy_id)
    return VenueRejected(f"{type(exc).__name__}: {exc}", reason="venue_error")

@dataclass
class SwapLeg:
    asset_in: str
    asset_out: str
    amount_in: int
    fair_out: int
    min_out: int = 0

@dataclass
class RatioPlan:
    asset_a: str
    asset_b: str
    incoming_a: int
    incoming_b: int
    held_a: int
    held_b: int
    ratio_a: int
    ratio_b: int
    target_a: int
    target_b: int
    need_a: int
    need_b: int
    swap: Optional[SwapLeg] = None


def plan_ratio_match(
    asset_a: str,
    asset_b: str,
    incoming_a: int,
    incoming_b: int,
    held_a: int,
    held_b: int,
    ratio_a: int,
    ratio_b: int,
    price_a: int,
    price_b: int,
    min_swap_amount: int = 1,
) -> RatioPlan:
    """
    Work out what a strategy must offer its venue so the pair matches the
    venue's current holding ratio.

    The target split is computed over everything the strategy will have
    (incoming plus already held) and the amounts still *needed* are
    ``max(0, target - held)``. Only the excess of one asset beyond its target
    is swapped, and only as much as the other side is short.
    """
    avail_a = incoming_a + held_a
    avail_b = incoming_b + held_b

    if ratio_a <= 0 and ratio_b <= 0:
        # empty venue: it sets its ratio from whatever we bring
        return RatioPlan(asset_a, asset_b, incoming_a, incoming_b, held_a, held_b, 0, 0,
                         avail_a, avail_b, incoming_a, incoming_b)

    # value kept WAD-scaled so the split does not lose precision
    value_total = avail_a * price_a + avail_b * price_b
    denominator = ratio_a * price_a + ratio_b * price_b
    target_a = value_total * ratio_a // denominator
    target_b = value_total * ratio_b // denominator

    need_a = max(0, target_a - held_a)
    need_b = max(0, target_b - held_b)
    plan = RatioPlan(asset_a, asset_b, incoming_a, incoming_b, held_a, held_b, ratio_a, ratio_b,
                     target_a, target_b, need_a, need_b)

    excess_a = max(0, avail_a - target_a)
    excess_b = max(0, avail_b - target_b)
    deficit_a = max(0, target_a - avail_a)
    deficit_b = max(0, target_b - avail_b)

    if excess_a > 0 and deficit_b > 0:
        amount_in = min(excess_a, deficit_b * price_b // price_a)
        if amount_in >= min_swap_amount:
            plan.swap = SwapLeg(asset_a, asset_b, amount_in, amount_in * price_a // price_b)
    elif excess_b > 0 and deficit_a > 0:
        amount_in = min(excess_b, deficit_a * price_a // price_b)
        if amount_in >= min_swap_amount:
            plan.swap = SwapLeg(asset_b, asset_a, amount_in, amount_in * price_b // price_a)
    return plan


class Rebalancer:
    """
    Moves one slice of idle funds into one strategy: ratio match, optional
    swap, venue deposit, then every unconsumed token back to idle before
    returning. All-or-nothing per call; failures come back as receipts.
    """
    def __init__(self, cfg: VaultConfig, oracle: PriceOracle, executor: SwapExecutor, clock: Clock) -> None:
        self.cfg = cfg
        self.oracle = oracle
        self.executor = executor
        self.clock = clock

    def plan(self, strategy: Strategy, amount_a: int, amount_b: int) -> RatioPlan:
        held_a, held_b = strategy.held()
        ratio_a, ratio_b = strategy.current_ratio()
        return plan_ratio_match(
            strategy.asset_a, strategy.asset_b,
            amount_a, amount_b, held_a, held_b, ratio_a, ratio_b,
            self.oracle.price(strategy.asset_a), self.oracle.price(strategy.asset_b),
            min_swap_amount=self.cfg.min_swap_amount,
        )

    def check_quote(self, leg: SwapLeg) -> int:
        quoted = self.executor.quote(leg.asset_in, leg.asset_out, leg.amount_in)
        leg.min_out = leg.fair_out * (BPS - self.cfg.max_swap_slippage_bps) // BPS
        if quoted < leg.min_out:
            raise SlippageExceeded(
                f"quote {quoted} {leg.asset_out} for {leg.amount_in} {leg.asset_in} "
                f"below bound {leg.min_out} (fair {leg.fair_out})")
        return quoted

    def _failed(self, result: DeploymentResult, exc: VaultError) -> DeploymentResult:
        result.status = "failed"
        result.fail_reason = exc.reason
        logger.warning("deployment to %s failed (%s): %s", result.strategy_id, exc.reason, exc)
        return result

    def deploy(self, idle: TokenBalances, strategy: Strategy, amount_a: int, amount_b: int) -> DeploymentResult:
        sid = strategy.strategy_id
        asset_a, asset_b = strategy.asset_a, strategy.asset_b
        result = DeploymentResult(ts=self.clock(), strategy_id=sid, requested_a=amount_a, requested_b=amount_b)
        if amount_a < 0 or amount_b < 0:
            raise ValueError("deployment amounts must be non-negative")
        if idle.get(asset_a) < amount_a or idle.get(asset_b) < amount_b:
            raise AccountingInvariantViolation(
                f"deployment of ({amount_a}, {amount_b}) exceeds idle {{ {format_inventory(idle.inventory)} }}")
        if amount_a == 0 and amount_b == 0:
            result.status = "noop"
            return result

        # quote and plan before anything leaves idle
        try:
            plan = self.plan(strategy, amount_a, amount_b)
            if plan.swap is not None:
                self.check_quote(plan.swap)
        except VaultError as exc:
            return self._failed(result, exc)
        except Exception as exc:
            return self._failed(result, _external_failure(sid, exc))
        result.held_a, result.held_b = plan.held_a, plan.held_b

        debug = self.cfg.debug_inventory and logger.isEnabledFor(logging.DEBUG)
        if debug:
            before = dict(idle.inventory)
        idle.sub(asset_a, amount_a)
        idle.sub(asset_b, amount_b)
        strategy.receive(amount_a, amount_b)
        if debug:
            logger.debug("[INV] idle action=deploy strategy=%s a=%d b=%d before={ %s } after={ %s }",
                         sid, amount_a, amount_b, format_inventory(before), format_inventory(idle.inventory))

        deadline = self.clock() + self.cfg.external_call_timeout_s
        failure: Optional[VaultError] = None
        try:
            if plan.swap is not None:
                leg = plan.swap
                amount_out = strategy.execute_swap(self.executor, leg.asset_in, leg.amount_in, leg.min_out, deadline)
                result.swap_asset_in = leg.asset_in
                result.swap_amount_in = leg.amount_in
                result.swap_amount_out = amount_out
            offer_a, offer_b = strategy.held()
            outcome = strategy.deposit(offer_a, offer_b, deadline)
            result.consumed_a = outcome.consumed_a
            result.consumed_b = outcome.consumed_b
            result.received_position_value = outcome.position_value
        except AccountingInvariantViolation:
            raise
        except VaultError as exc:
            failure = exc
        except Exception as exc:
            # third party venue or swap client errors still release leftovers
            failure = _external_failure(sid, exc)

        returned_a, returned_b = strategy.release_leftovers()
        idle.add(asset_a, returned_a)
        idle.add(asset_b, returned_b)
        result.returned_a, result.returned_b = returned_a, returned_b
        self._check_conservation(strategy, result)

        if failure is not None:
            return self._failed(result, failure)
        if result.consumed_a == 0 and result.consumed_b == 0:
            result.status = "noop"
            logger.info("deployment to %s: venue accepted nothing, all funds back to idle", sid)
            return result
        logger.info("deployment to %s: consumed (%d, %d) returned (%d, %d) position value %d",
                    sid, result.consumed_a, result.consumed_b, returned_a, returned_b,
                    result.received_position_value)
        return result

    def _check_conservation(self, strategy: Strategy, r: DeploymentResult) -> None:
        swap_in_a = r.swap_amount_in if r.swap_asset_in == strategy.asset_a else 0
        swap_in_b = r.swap_amount_in if r.swap_asset_in == strategy.asset_b else 0
        swap_out_a = r.swap_amount_out if r.swap_asset_in == strategy.asset_b else 0
        swap_out_b = r.swap_amount_out if r.swap_asset_in == strategy.asset_a else 0
        lhs_a = r.requested_a + r.held_a + swap_out_a
        lhs_b = r.requested_b + r.held_b + swap_out_b
        rhs_a = r.consumed_a + r.returned_a + swap_in_a
        rhs_b = r.consumed_b + r.returned_b + swap_in_b
        if lhs_a != rhs_a or lhs_b != rhs_b or strategy.held() != (0, 0):
            logger.error("leftover reconciliation broken for %s: in=(%d, %d) out=(%d, %d) loose=%s",
                         strategy.strategy_id, lhs_a, lhs_b, rhs_a, rhs_b, strategy.held())
            raise AccountingInvariantViolation(f"{strategy.strategy_id} deployment does not balance")
