from __future__ import annotations
from dataclasses import dataclass, field
from typing import Dict, Any, List
import numpy as np
import pandas as pd

@dataclass
class MetricsStore:
    nav_rows: List[Dict[str, Any]] = field(default_factory=list)
    strategy_rows: List[Dict[str, Any]] = field(default_factory=list)
    deployment_rows: List[Dict[str, Any]] = field(default_factory=list)

    def add_nav(self, row: Dict[str, Any]) -> None:
        self.nav_rows.append(row)

    def add_strategy_rows(self, rows: List[Dict[str, Any]]) -> None:
        self.strategy_rows.extend(rows)

    def add_deployment(self, row: Dict[str, Any]) -> None:
        self.deployment_rows.append(row)

    def nav_df(self) -> pd.DataFrame:
        return pd.DataFrame(self.nav_rows)

    def strategy_df(self) -> pd.DataFrame:
        return pd.DataFrame(self.strategy_rows)

    def deployment_df(self) -> pd.DataFrame:
        return pd.DataFrame(self.deployment_rows)

    def share_price_stats(self) -> Dict[str, float]:
        prices = np.array([float(r["share_price"]) for r in self.nav_rows if r.get("share_price")], dtype=float)
        if prices.size < 2:
            return {"samples": float(prices.size), "total_return": 0.0, "mean_step_return": 0.0, "max_drawdown": 0.0}
        steps = np.diff(prices) / prices[:-1]
        running_peak = np.maximum.accumulate(prices)
        drawdowns = 1.0 - prices / running_peak
        return {
            "samples": float(prices.size),
            "total_return": float(prices[-1] / prices[0] - 1.0),
            "mean_step_return": float(np.mean(steps)),
            "max_drawdown": float(np.max(drawdowns)),
        }
