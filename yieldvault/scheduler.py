from __future__ import annotations
from dataclasses import dataclass, field
from typing import List, Literal, Tuple
import logging

from .config import BPS, VaultConfig
from .core import Clock, DeploymentResult, TokenBalances
from .errors import ReentrantCall
from .rebalancer import Rebalancer
from .registry import StrategyRegistry

logger = logging.getLogger(__name__)

SchedulerState = Literal["idle", "deploying"]

@dataclass
class DeploymentPass:
    ts: float
    forced: bool
    idle_a_before: int
    idle_b_before: int
    results: List[DeploymentResult] = field(default_factory=list)

    @property
    def executed(self) -> List[DeploymentResult]:
        return [r for r in self.results if r.status == "executed"]

    @property
    def failed(self) -> List[DeploymentResult]:
        return [r for r in self.results if r.status == "failed"]

class DeploymentScheduler:
    """
    Gate for pushing idle funds out. A pass needs idle value at or above the
    threshold, the minimum interval since the last pass, and at least one
    active strategy with weight. Forcing skips only the interval.
    """
    def __init__(self, cfg: VaultConfig, clock: Clock) -> None:
        self.cfg = cfg
        self.clock = clock
        self.state: SchedulerState = "idle"
        self.last_deployment_ts: float = 0.0

    def check(self, idle_value: int, registry: StrategyRegistry, *, force: bool = False) -> Tuple[bool, str]:
        if self.state == "deploying":
            return False, "deploying"
        if not registry.has_deployable():
            return False, "no_active_strategies"
        if idle_value < self.cfg.deployment_threshold:
            return False, "below_threshold"
        if not force:
            elapsed = self.clock() - self.last_deployment_ts
            if elapsed < self.cfg.min_deployment_interval_s:
                return False, "interval_not_elapsed"
        return True, "ok"

    def seconds_until_ready(self) -> float:
        return max(0.0, self.last_deployment_ts + self.cfg.min_deployment_interval_s - self.clock())

    def run_pass(self, idle: TokenBalances, registry: StrategyRegistry, rebalancer: Rebalancer,
                 asset_a: str, asset_b: str, *, forced: bool = False) -> DeploymentPass:
        if self.state == "deploying":
            raise ReentrantCall("deployment pass already in progress")
        self.state = "deploying"
        try:
            idle_a, idle_b = idle.pair(asset_a, asset_b)
            dp = DeploymentPass(ts=self.clock(), forced=forced, idle_a_before=idle_a, idle_b_before=idle_b)
            # slices come from the pre-pass snapshot; leftovers returned mid-pass stay idle
            for entry in registry.active_entries():
                if entry.weight_bps <= 0:
                    continue
                amount_a = idle_a * entry.weight_bps // BPS
                amount_b = idle_b * entry.weight_bps // BPS
                result = rebalancer.deploy(idle, entry.strategy, amount_a, amount_b)
                dp.results.append(result)
            self.last_deployment_ts = dp.ts
            logger.info("deployment pass forced=%s executed=%d failed=%d",
                        forced, len(dp.executed), len(dp.failed))
            return dp
        finally:
            self.state = "idle"
