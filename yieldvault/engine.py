from __future__ import annotations
from typing import Any, Dict, List, Optional, Tuple
import json
import logging
import time

from .config import WAD, VaultConfig
from .core import (
    Clock, DeploymentResult, Event, EventLog, PriceOracle, ReceiptStore, ReentrancyGuard,
    ShareLedger, TokenBalances, format_inventory,
)
from .errors import (
    AccountingInvariantViolation, DeploymentGateClosed, InsufficientLiquidity, InsufficientShares,
    InvalidConfiguration, StaleValuation, VaultError, VaultInsolvent, VaultPaused, ZeroDeposit,
)
from .metrics import MetricsStore
from .nav import NavAggregator, NavReport
from .rebalancer import Rebalancer
from .registry import StrategyEntry, StrategyRegistry
from .scheduler import DeploymentPass, DeploymentScheduler
from .strategy import Strategy
from .venue import SwapExecutor

logger = logging.getLogger(__name__)

STATE_VERSION = 1

class VaultEngine:
    """
    Allocation and accounting engine for one two-asset vault.

    Owns idle balances and the share supply; strategies own their venue
    positions. Every mutating call runs under one reentrancy guard, and every
    external call made inside it carries a deadline.
    """
    def __init__(self, cfg: VaultConfig, oracle: PriceOracle, swaps: SwapExecutor,
                 clock: Optional[Clock] = None) -> None:
        self.cfg = cfg
        self.clock: Clock = clock or time.time
        self.asset_a = cfg.asset_a_symbol
        self.asset_b = cfg.asset_b_symbol
        self.oracle = oracle

        self.log = EventLog(maxlen=cfg.event_log_maxlen)
        self.metrics = MetricsStore()
        self.receipts = ReceiptStore()

        self.idle = TokenBalances()
        self.shares = ShareLedger()
        self.registry = StrategyRegistry(cfg)
        self.nav = NavAggregator(oracle, self.registry, self.asset_a, self.asset_b, self.clock)
        self.rebalancer = Rebalancer(cfg, oracle, swaps, self.clock)
        self.scheduler = DeploymentScheduler(cfg, self.clock)
        self.guard = ReentrancyGuard()

        self.paused: bool = False
        self.last_pass: Optional[DeploymentPass] = None
        self._ops: int = 0

    # -----------------------------
    # Inventory plumbing
    # -----------------------------
    def _debug_inventory_change(self, action: str, counterparty: str, asset: str, amount: int,
                                before: Dict[str, int], after: Dict[str, int]) -> None:
        if not self.cfg.debug_inventory or not logger.isEnabledFor(logging.DEBUG):
            return
        logger.debug(
            "[INV] vault action=%s counterparty=%s asset=%s amount=%d before={ %s } after={ %s }",
            action,
            counterparty,
            asset,
            amount,
            format_inventory(before),
            format_inventory(after),
        )

    def _idle_add(self, asset: str, amount: int, action: str, counterparty: str) -> None:
        if amount == 0:
            return
        debug = self.cfg.debug_inventory and logger.isEnabledFor(logging.DEBUG)
        if debug:
            before = dict(self.idle.inventory)
        self.idle.add(asset, amount)
        if debug:
            self._debug_inventory_change(action, counterparty, asset, amount, before, dict(self.idle.inventory))

    def _idle_sub(self, asset: str, amount: int, action: str, counterparty: str) -> None:
        if amount == 0:
            return
        debug = self.cfg.debug_inventory and logger.isEnabledFor(logging.DEBUG)
        if debug:
            before = dict(self.idle.inventory)
        if not self.idle.sub(asset, amount):
            raise AccountingInvariantViolation(
                f"{action}: idle {asset} {self.idle.get(asset)} cannot cover {amount}")
        if debug:
            self._debug_inventory_change(action, counterparty, asset, amount, before, dict(self.idle.inventory))

    def _value(self, amount_a: int, amount_b: int) -> int:
        return self.oracle.value_pair(self.asset_a, amount_a, self.asset_b, amount_b)

    def _deadline(self) -> float:
        return self.clock() + self.cfg.external_call_timeout_s

    # -----------------------------
    # Reads
    # -----------------------------
    def nav_report(self) -> NavReport:
        with self.guard.reading("nav_report"):
            return self.nav.report(self.idle)

    def total_assets(self) -> int:
        with self.guard.reading("total_assets"):
            return self.nav.total_assets(self.idle)

    @property
    def total_shares(self) -> int:
        return self.shares.total_shares

    def balance_of(self, holder: str) -> int:
        return self.shares.balance_of(holder)

    def idle_balances(self) -> Tuple[int, int]:
        return self.idle.pair(self.asset_a, self.asset_b)

    def total_strategy_weight(self) -> int:
        return self.registry.total_weight_bps()

    def share_price(self) -> int:
        """Value of one whole share (WAD) in the reference unit."""
        # assets and supply come from the same guarded snapshot
        with self.guard.reading("share_price"):
            total = self.nav.total_assets(self.idle)
            if self.shares.total_shares == 0:
                return WAD
            return total * WAD // self.shares.total_shares

    def convert_to_shares(self, value: int) -> int:
        with self.guard.reading("convert_to_shares"):
            return self.shares.shares_for_value(value, self.nav.total_assets(self.idle))

    def convert_to_assets(self, shares: int) -> int:
        with self.guard.reading("convert_to_assets"):
            return self.shares.value_for_shares(shares, self.nav.total_assets(self.idle))

    def preview_mint(self, amount_a: int, amount_b: int) -> int:
        return self.convert_to_shares(self._value(amount_a, amount_b))

    def should_deploy(self) -> Tuple[bool, str]:
        with self.guard.reading("should_deploy"):
            return self.scheduler.check(self.nav.idle_value(self.idle), self.registry)

    def max_redeem(self, holder: str) -> int:
        with self.guard.reading("max_redeem"):
            held = self.shares.balance_of(holder)
            if held == 0:
                return 0
            rep = self.nav.report(self.idle)
            liquid = rep.idle_value
            for entry in self.registry.active_entries():
                try:
                    liquid += entry.strategy.withdrawable_value()
                except StaleValuation:
                    continue
            if self.shares.value_for_shares(held, rep.total_value) <= liquid:
                return held
            if rep.total_value <= 0:
                return 0
            return min(held, liquid * self.shares.total_shares // rep.total_value)

    def strategy_table(self) -> List[Dict[str, Any]]:
        rows = []
        for entry in self.registry.entries.values():
            sid = entry.strategy_id
            try:
                a, b = entry.strategy.current_holdings()
                value = self._value(a, b)
                stale = False
            except StaleValuation:
                a, b = None, None
                value = self.nav.last_known.get(sid)
                stale = True
            rows.append({
                "strategy_id": sid,
                "weight_bps": entry.weight_bps,
                "active": entry.active,
                "holdings_a": a,
                "holdings_b": b,
                "value": value,
                "stale": stale,
            })
        return rows

    # -----------------------------
    # Depositor surface
    # -----------------------------
    def mint(self, depositor: str, amount_a: int, amount_b: int) -> int:
        with self.guard.mutating("mint"):
            if self.paused:
                raise VaultPaused("deposits are paused")
            if amount_a < 0 or amount_b < 0:
                raise ValueError("deposit amounts must be non-negative")
            if amount_a == 0 and amount_b == 0:
                raise ZeroDeposit("both deposit amounts are zero")
            deposit_value = self._value(amount_a, amount_b)
            if deposit_value == 0:
                raise ZeroDeposit("deposit has no value", reason="zero_value")

            # single snapshot of NAV before any balance moves
            total_before = self.nav.total_assets(self.idle)
            if self.shares.total_shares > 0 and total_before <= 0:
                raise VaultInsolvent("shares outstanding against zero assets")
            issued = self.shares.shares_for_value(deposit_value, total_before)
            if issued <= 0:
                raise ZeroDeposit("deposit too small to mint a share", reason="dust_deposit")

            self.shares.mint(depositor, issued)
            self._idle_add(self.asset_a, amount_a, "deposit", depositor)
            self._idle_add(self.asset_b, amount_b, "deposit", depositor)
            self.log.add(Event(self.clock(), "DEPOSIT", actor_id=depositor, amount=issued,
                               meta={"amount_a": amount_a, "amount_b": amount_b, "value": deposit_value}))
            logger.info("mint depositor=%s a=%d b=%d value=%d shares=%d", depositor, amount_a, amount_b,
                        deposit_value, issued)

            self._maybe_deploy()
            self._after_op()
            return issued

    def burn(self, holder: str, share_amount: int) -> Tuple[int, int]:
        with self.guard.mutating("burn"):
            held = self.shares.balance_of(holder)
            if share_amount <= 0 or share_amount > held:
                raise InsufficientShares(f"{holder} holds {held} shares, asked to burn {share_amount}")

            rep = self.nav.report(self.idle)
            entitlement = self.shares.value_for_shares(share_amount, rep.total_value)
            shortfall = entitlement - rep.idle_value
            full_exit = share_amount == self.shares.total_shares
            if full_exit:
                # last shares out empty every strategy, no residue for the next depositor
                self._pull_from_strategies(max(0, shortfall), full_exit=True)
            elif shortfall > 0:
                self._pull_from_strategies(shortfall)

            idle_a, idle_b = self.idle.pair(self.asset_a, self.asset_b)
            idle_value = self.nav.idle_value(self.idle)
            if idle_value <= 0 or entitlement <= 0:
                out_a, out_b = 0, 0
            elif full_exit or entitlement >= idle_value:
                out_a, out_b = idle_a, idle_b
            else:
                out_a = idle_a * entitlement // idle_value
                out_b = idle_b * entitlement // idle_value

            self.shares.burn(holder, share_amount)
            self._idle_sub(self.asset_a, out_a, "withdraw", holder)
            self._idle_sub(self.asset_b, out_b, "withdraw", holder)
            self.log.add(Event(self.clock(), "WITHDRAW", actor_id=holder, amount=share_amount,
                               meta={"amount_a": out_a, "amount_b": out_b, "entitlement": entitlement,
                                     "stale": sorted(rep.stale)}))
            logger.info("burn holder=%s shares=%d entitlement=%d out=(%d, %d)", holder, share_amount,
                        entitlement, out_a, out_b)
            self._after_op()
            return out_a, out_b

    def _pull_from_strategies(self, shortfall: int, *, full_exit: bool = False) -> None:
        """
        Bring ``shortfall`` of value from strategies into idle, all or nothing.
        Pulled amounts are staged and credited to idle only once the whole
        shortfall is met; on failure each strategy keeps what it released as
        loose balance, so idle and NAV are unchanged. A full exit empties
        every active strategy instead of pulling by value.
        """
        deadline = self._deadline()
        if full_exit:
            sources = [(entry, 0) for entry in self.registry.active_entries()]
        else:
            sources = []
            available = 0
            for entry in self.registry.active_entries():
                try:
                    liquid = entry.strategy.withdrawable_value()
                except StaleValuation as exc:
                    logger.warning("strategy=%s skipped for redemption: %s", entry.strategy_id, exc)
                    continue
                if liquid > 0:
                    sources.append((entry, liquid))
                    available += liquid
            if available + self.cfg.redemption_dust < shortfall:
                raise InsufficientLiquidity(f"shortfall {shortfall} but strategies can release {available}")

        staged: List[Tuple[StrategyEntry, int, int]] = []
        remaining = shortfall
        try:
            for entry, liquid in sources:
                if remaining <= 0 and not full_exit:
                    break
                ask = liquid if full_exit else min(remaining, liquid)
                try:
                    if full_exit:
                        got_a, got_b = entry.strategy.withdraw_all(deadline)
                    else:
                        got_a, got_b = entry.strategy.withdraw(ask, deadline)
                except VaultError as exc:
                    raise InsufficientLiquidity(
                        f"{entry.strategy_id} failed to release funds: {exc}", reason=exc.reason) from exc
                staged.append((entry, got_a, got_b))
                remaining -= self._value(got_a, got_b)
            if remaining > self.cfg.redemption_dust:
                raise InsufficientLiquidity(f"strategies left {remaining} of {shortfall} unmet")
        except Exception:
            for entry, got_a, got_b in staged:
                entry.strategy.receive(got_a, got_b)
                logger.warning("strategy=%s keeps released (%d, %d) after failed redemption",
                               entry.strategy_id, got_a, got_b)
            raise

        for entry, got_a, got_b in staged:
            self._idle_add(self.asset_a, got_a, "strategy_withdraw", entry.strategy_id)
            self._idle_add(self.asset_b, got_b, "strategy_withdraw", entry.strategy_id)
            self.log.add(Event(self.clock(), "STRATEGY_WITHDRAW", strategy_id=entry.strategy_id,
                               amount=self._value(got_a, got_b), meta={"amount_a": got_a, "amount_b": got_b}))

    # -----------------------------
    # Deployment
    # -----------------------------
    def _maybe_deploy(self) -> Optional[DeploymentPass]:
        try:
            idle_value = self.nav.idle_value(self.idle)
        except StaleValuation as exc:
            logger.warning("deployment check skipped: %s", exc)
            return None
        ok, reason = self.scheduler.check(idle_value, self.registry)
        if not ok:
            logger.debug("deployment not triggered: %s (idle value %d)", reason, idle_value)
            return None
        return self._run_pass(forced=False)

    def _run_pass(self, forced: bool) -> DeploymentPass:
        dp = self.scheduler.run_pass(self.idle, self.registry, self.rebalancer,
                                     self.asset_a, self.asset_b, forced=forced)
        for r in dp.results:
            self._record_deployment(r)
        self.log.add(Event(dp.ts, "DEPLOYMENT_PASS",
                           meta={"forced": forced, "executed": len(dp.executed), "failed": len(dp.failed)}))
        self.last_pass = dp
        return dp

    def _record_deployment(self, r: DeploymentResult) -> None:
        self.receipts.add(r)
        self.metrics.add_deployment(r.to_dict())
        event_type = {"executed": "DEPLOYMENT_EXECUTED", "noop": "DEPLOYMENT_NOOP"}.get(r.status, "DEPLOYMENT_FAILED")
        self.log.add(Event(r.ts, event_type, strategy_id=r.strategy_id,
                           amount=r.received_position_value, meta=r.to_dict()))

    def force_deploy(self) -> DeploymentPass:
        with self.guard.mutating("force_deploy"):
            ok, reason = self.scheduler.check(self.nav.idle_value(self.idle), self.registry, force=True)
            if not ok:
                raise DeploymentGateClosed(f"forced deployment refused: {reason}", reason=reason)
            dp = self._run_pass(forced=True)
            self._after_op()
            return dp

    # -----------------------------
    # Operator surface
    # -----------------------------
    def add_strategy(self, strategy: Strategy, weight_bps: int) -> None:
        with self.guard.mutating("add_strategy"):
            if (strategy.asset_a, strategy.asset_b) != (self.asset_a, self.asset_b):
                raise InvalidConfiguration(
                    f"{strategy.strategy_id} trades ({strategy.asset_a}, {strategy.asset_b})", reason="asset_mismatch")
            self.registry.add(strategy, weight_bps)
            self.log.add(Event(self.clock(), "STRATEGY_ADDED", strategy_id=strategy.strategy_id,
                               meta={"weight_bps": int(weight_bps)}))

    def remove_strategy(self, strategy_id: str) -> None:
        with self.guard.mutating("remove_strategy"):
            self.registry.remove(strategy_id)
            self.nav.last_known.pop(strategy_id, None)
            self.log.add(Event(self.clock(), "STRATEGY_REMOVED", strategy_id=strategy_id))

    def set_weight(self, strategy_id: str, weight_bps: int) -> None:
        with self.guard.mutating("set_weight"):
            self.registry.set_weight(strategy_id, weight_bps)
            self.log.add(Event(self.clock(), "STRATEGY_WEIGHT_SET", strategy_id=strategy_id,
                               meta={"weight_bps": int(weight_bps)}))

    def _sweep(self, entry: StrategyEntry) -> Tuple[int, int]:
        got_a, got_b = entry.strategy.withdraw_all(self._deadline())
        self._idle_add(self.asset_a, got_a, "sweep", entry.strategy_id)
        self._idle_add(self.asset_b, got_b, "sweep", entry.strategy_id)
        self.log.add(Event(self.clock(), "STRATEGY_SWEPT", strategy_id=entry.strategy_id,
                           meta={"amount_a": got_a, "amount_b": got_b}))
        return got_a, got_b

    def sweep_strategy(self, strategy_id: str) -> Tuple[int, int]:
        with self.guard.mutating("sweep_strategy"):
            out = self._sweep(self.registry.get(strategy_id))
            self._after_op()
            return out

    def deactivate_strategy(self, strategy_id: str) -> Tuple[int, int]:
        with self.guard.mutating("deactivate_strategy"):
            entry = self.registry.get(strategy_id)
            out = (0, 0)
            if entry.active:
                # NAV skips inactive strategies, so nothing may stay behind
                out = self._sweep(entry)
                self.registry.set_active(strategy_id, False)
                self.log.add(Event(self.clock(), "STRATEGY_DEACTIVATED", strategy_id=strategy_id))
            return out

    def activate_strategy(self, strategy_id: str) -> None:
        with self.guard.mutating("activate_strategy"):
            self.registry.set_active(strategy_id, True)
            self.log.add(Event(self.clock(), "STRATEGY_ACTIVATED", strategy_id=strategy_id))

    def set_deployment_params(self, threshold: int, min_interval_s: float) -> None:
        with self.guard.mutating("set_deployment_params"):
            if threshold < 0 or min_interval_s < 0:
                raise InvalidConfiguration("deployment params must be non-negative", reason="bad_params")
            self.cfg.deployment_threshold = int(threshold)
            self.cfg.min_deployment_interval_s = float(min_interval_s)
            self.log.add(Event(self.clock(), "DEPLOYMENT_PARAMS_SET",
                               meta={"threshold": int(threshold), "min_interval_s": float(min_interval_s)}))

    def pause(self) -> None:
        with self.guard.mutating("pause"):
            self.paused = True
            self.log.add(Event(self.clock(), "PAUSED"))

    def unpause(self) -> None:
        with self.guard.mutating("unpause"):
            self.paused = False
            self.log.add(Event(self.clock(), "UNPAUSED"))

    def inject_capital(self, amount_a: int, amount_b: int, source: str = "operator") -> int:
        """Add assets to idle without minting, raising the share price."""
        with self.guard.mutating("inject_capital"):
            if self.shares.total_shares == 0:
                raise InvalidConfiguration("cannot inject into an empty vault", reason="empty_vault")
            if amount_a < 0 or amount_b < 0 or (amount_a == 0 and amount_b == 0):
                raise ZeroDeposit("nothing to inject")
            value = self._value(amount_a, amount_b)
            self._idle_add(self.asset_a, amount_a, "inject", source)
            self._idle_add(self.asset_b, amount_b, "inject", source)
            self.log.add(Event(self.clock(), "CAPITAL_INJECTED", actor_id=source, amount=value,
                               meta={"amount_a": amount_a, "amount_b": amount_b}))
            self._after_op()
            return value

    # -----------------------------
    # Metrics
    # -----------------------------
    def _after_op(self) -> None:
        self._ops += 1
        stride = int(self.cfg.metrics_stride or 0)
        if stride > 0 and self._ops % stride == 0:
            self._snapshot_metrics()

    def _snapshot_metrics(self) -> None:
        try:
            rep = self.nav.report(self.idle)
        except StaleValuation as exc:
            logger.debug("metrics snapshot skipped: %s", exc)
            return
        total_shares = self.shares.total_shares
        self.metrics.add_nav({
            "ts": rep.ts,
            "total_assets": rep.total_value,
            "idle_value": rep.idle_value,
            "strategies_value": rep.strategies_value,
            "total_shares": total_shares,
            "share_price": (rep.total_value / total_shares) if total_shares else None,
            "stale_strategies": len(rep.stale),
        })
        self.metrics.add_strategy_rows([
            {"ts": rep.ts, "strategy_id": sid, "value": value, "stale": sid in rep.stale}
            for sid, value in rep.strategy_values.items()
        ])

    def snapshot_metrics(self) -> None:
        with self.guard.reading("snapshot_metrics"):
            self._snapshot_metrics()

    # -----------------------------
    # Persistence
    # -----------------------------
    def export_state(self) -> Dict[str, Any]:
        with self.guard.reading("export_state"):
            return {
                "version": STATE_VERSION,
                "asset_a": self.asset_a,
                "asset_b": self.asset_b,
                "idle": {self.asset_a: self.idle.get(self.asset_a), self.asset_b: self.idle.get(self.asset_b)},
                "total_shares": self.shares.total_shares,
                "balances": dict(self.shares.balances),
                "strategies": [
                    {"strategy_id": e.strategy_id, "weight_bps": e.weight_bps, "active": e.active}
                    for e in self.registry.entries.values()
                ],
                "last_deployment_ts": self.scheduler.last_deployment_ts,
                "paused": self.paused,
                "deployment_threshold": self.cfg.deployment_threshold,
                "min_deployment_interval_s": self.cfg.min_deployment_interval_s,
            }

    def save_state(self, path: str) -> None:
        with open(path, "w", encoding="utf-8") as handle:
            json.dump(self.export_state(), handle, sort_keys=True)

    @classmethod
    def load_state(cls, path: str, cfg: VaultConfig, oracle: PriceOracle, swaps: SwapExecutor,
                   strategies: Dict[str, Strategy], clock: Optional[Clock] = None) -> "VaultEngine":
        with open(path, "r", encoding="utf-8") as handle:
            state = json.load(handle)
        return cls.restore(state, cfg, oracle, swaps, strategies, clock=clock)

    @classmethod
    def restore(cls, state: Dict[str, Any], cfg: VaultConfig, oracle: PriceOracle, swaps: SwapExecutor,
                strategies: Dict[str, Strategy], clock: Optional[Clock] = None) -> "VaultEngine":
        if state.get("version") != STATE_VERSION:
            raise InvalidConfiguration(f"unsupported state version {state.get('version')}", reason="state_version")
        if (state["asset_a"], state["asset_b"]) != (cfg.asset_a_symbol, cfg.asset_b_symbol):
            raise InvalidConfiguration("state assets do not match config", reason="asset_mismatch")
        cfg.deployment_threshold = int(state["deployment_threshold"])
        cfg.min_deployment_interval_s = float(state["min_deployment_interval_s"])
        engine = cls(cfg, oracle, swaps, clock=clock)

        balances = {str(k): int(v) for k, v in state["balances"].items()}
        if sum(balances.values()) != int(state["total_shares"]):
            raise AccountingInvariantViolation("persisted balances do not sum to total shares")
        engine.shares.balances = balances
        engine.shares.total_shares = int(state["total_shares"])
        for asset, amount in state["idle"].items():
            engine.idle.add(asset, int(amount))

        for item in state["strategies"]:
            sid = item["strategy_id"]
            strategy = strategies.get(sid)
            if strategy is None:
                raise InvalidConfiguration(f"no strategy bound for handle {sid}", reason="unknown_strategy")
            active = bool(item["active"])
            engine.registry.add(strategy, int(item["weight_bps"]) if active else 0)
            if not active:
                engine.registry.set_active(sid, False)
                engine.registry.entries[sid].weight_bps = int(item["weight_bps"])
        engine.scheduler.last_deployment_ts = float(state["last_deployment_ts"])
        engine.paused = bool(state["paused"])
        engine.log.add(Event(engine.clock(), "STATE_RESTORED",
                             meta={"total_shares": engine.shares.total_shares, "strategies": len(engine.registry)}))
        return engine
