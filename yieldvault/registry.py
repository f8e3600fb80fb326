from __future__ import annotations
from dataclasses import dataclass
from typing import Dict, List, Optional
import logging

from .config import BPS, VaultConfig
from .errors import InvalidConfiguration, StaleValuation, StrategyNotRemovable
from .strategy import Strategy

logger = logging.getLogger(__name__)

@dataclass
class StrategyEntry:
    strategy: Strategy
    weight_bps: int
    active: bool = True

    @property
    def strategy_id(self) -> str:
        return self.strategy.strategy_id

class StrategyRegistry:
    """Strategies keyed by stable handle, iterated in registration order."""

    def __init__(self, cfg: VaultConfig) -> None:
        self.cfg = cfg
        self.entries: Dict[str, StrategyEntry] = {}

    def __contains__(self, strategy_id: str) -> bool:
        return strategy_id in self.entries

    def __len__(self) -> int:
        return len(self.entries)

    def get(self, strategy_id: str) -> StrategyEntry:
        entry = self.entries.get(strategy_id)
        if entry is None:
            raise InvalidConfiguration(f"unknown strategy {strategy_id}", reason="unknown_strategy")
        return entry

    def active_entries(self) -> List[StrategyEntry]:
        return [e for e in self.entries.values() if e.active]

    def total_weight_bps(self, exclude: Optional[str] = None) -> int:
        return sum(e.weight_bps for e in self.entries.values() if e.active and e.strategy_id != exclude)

    def has_deployable(self) -> bool:
        return any(e.active and e.weight_bps > 0 for e in self.entries.values())

    def _check_weight(self, strategy_id: str, weight_bps: int) -> None:
        if weight_bps < 0 or weight_bps > BPS:
            raise InvalidConfiguration(f"weight {weight_bps} outside 0..{BPS}", reason="bad_weight")
        total = self.total_weight_bps(exclude=strategy_id) + weight_bps
        if total > self.cfg.max_total_weight_bps:
            raise InvalidConfiguration(
                f"total weight {total} exceeds {self.cfg.max_total_weight_bps}", reason="weight_overflow")

    def add(self, strategy: Strategy, weight_bps: int) -> StrategyEntry:
        sid = strategy.strategy_id
        if sid in self.entries:
            raise InvalidConfiguration(f"strategy {sid} already registered", reason="duplicate_strategy")
        if len(self.entries) >= self.cfg.max_strategies:
            raise InvalidConfiguration(f"at most {self.cfg.max_strategies} strategies", reason="too_many_strategies")
        self._check_weight(sid, int(weight_bps))
        entry = StrategyEntry(strategy=strategy, weight_bps=int(weight_bps), active=True)
        self.entries[sid] = entry
        return entry

    def set_weight(self, strategy_id: str, weight_bps: int) -> None:
        entry = self.get(strategy_id)
        if entry.active:
            self._check_weight(strategy_id, int(weight_bps))
        entry.weight_bps = int(weight_bps)

    def set_active(self, strategy_id: str, active: bool) -> None:
        entry = self.get(strategy_id)
        if active and not entry.active:
            self._check_weight(strategy_id, entry.weight_bps)
        entry.active = bool(active)

    def remove(self, strategy_id: str) -> StrategyEntry:
        entry = self.get(strategy_id)
        try:
            amount_a, amount_b = entry.strategy.current_holdings()
        except StaleValuation as exc:
            raise StrategyNotRemovable(
                f"{strategy_id} cannot report its holdings: {exc}", reason="holdings_unknown") from exc
        if amount_a or amount_b:
            raise StrategyNotRemovable(f"{strategy_id} still holds ({amount_a}, {amount_b})")
        return self.entries.pop(strategy_id)
