from __future__ import annotations
from dataclasses import dataclass, field
from typing import Dict, Set
import logging

from .core import Clock, PriceOracle, TokenBalances
from .errors import StaleValuation
from .registry import StrategyRegistry

logger = logging.getLogger(__name__)

@dataclass
class NavReport:
    ts: float
    idle_a: int
    idle_b: int
    idle_value: int
    strategy_values: Dict[str, int] = field(default_factory=dict)
    stale: Set[str] = field(default_factory=set)

    @property
    def strategies_value(self) -> int:
        return sum(self.strategy_values.values())

    @property
    def total_value(self) -> int:
        return self.idle_value + self.strategies_value

    @property
    def is_stale(self) -> bool:
        return bool(self.stale)

class NavAggregator:
    """
    Idle balances plus every active strategy's reported holdings, valued by
    the oracle. A strategy that cannot report contributes its last known
    value and is flagged; it is never counted as zero.
    """
    def __init__(self, oracle: PriceOracle, registry: StrategyRegistry,
                 asset_a: str, asset_b: str, clock: Clock) -> None:
        self.oracle = oracle
        self.registry = registry
        self.asset_a = asset_a
        self.asset_b = asset_b
        self.clock = clock
        self.last_known: Dict[str, int] = {}

    def idle_value(self, idle: TokenBalances) -> int:
        a, b = idle.pair(self.asset_a, self.asset_b)
        return self.oracle.value_pair(self.asset_a, a, self.asset_b, b)

    def report(self, idle: TokenBalances) -> NavReport:
        a, b = idle.pair(self.asset_a, self.asset_b)
        rep = NavReport(ts=self.clock(), idle_a=a, idle_b=b, idle_value=self.idle_value(idle))
        for entry in self.registry.active_entries():
            sid = entry.strategy_id
            try:
                value = entry.strategy.holdings_value()
            except StaleValuation as exc:
                if sid not in self.last_known:
                    raise StaleValuation(
                        f"{sid} cannot report and has no last known value: {exc}",
                        reason="strategy_unpriced") from exc
                value = self.last_known[sid]
                rep.stale.add(sid)
                logger.warning("strategy=%s stale (%s); using last known value %d", sid, exc.reason, value)
            else:
                self.last_known[sid] = value
            rep.strategy_values[sid] = value
        return rep

    def total_assets(self, idle: TokenBalances) -> int:
        return self.report(idle).total_value
