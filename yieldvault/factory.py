from __future__ import annotations
from typing import Dict, List, Optional, Tuple
import logging

import numpy as np

from .config import BPS, WAD, VaultConfig
from .core import PriceOracle
from .engine import VaultEngine
from .strategy import Strategy, VenueStrategy
from .venue import SimulatedLendingVenue, SimulatedPairVenue, SimulatedSwapExecutor

logger = logging.getLogger(__name__)

class ManualClock:
    """Simulation time that only moves when told to."""

    def __init__(self, start: float = 1_000_000.0) -> None:
        self.now = float(start)

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> float:
        self.now += max(0.0, float(seconds))
        return self.now

class VaultFactory:
    """
    Wires an oracle, a swap executor and a set of simulated venues into a
    ready VaultEngine. Venue depth and price drift come from a seeded numpy
    generator so runs are reproducible.
    """
    def __init__(self, cfg: VaultConfig, seed: Optional[int] = None, clock: Optional[ManualClock] = None) -> None:
        self.cfg = cfg
        self.rng = np.random.default_rng(seed)
        self.clock = clock or ManualClock()
        self.oracle = PriceOracle(ref_unit=cfg.ref_unit, max_age_s=cfg.max_price_age_s, clock=self.clock)
        self.swaps = SimulatedSwapExecutor(self.oracle, fee_bps=30, clock=self.clock)
        self.strategies: Dict[str, Strategy] = {}
        self.venues: Dict[str, object] = {}
        self.venue_counter = 0

    def _new_venue_id(self, kind: str) -> str:
        self.venue_counter += 1
        return f"{kind}_{self.venue_counter:02d}"

    def set_prices(self, price_a: float, price_b: float = 1.0) -> None:
        self.oracle.set_price(self.cfg.asset_a_symbol, int(price_a * WAD))
        self.oracle.set_price(self.cfg.asset_b_symbol, int(price_b * WAD))

    def new_pair_strategy(self, depth_value: float = 1_000_000.0) -> VenueStrategy:
        cfg = self.cfg
        price_a = self.oracle.price(cfg.asset_a_symbol)
        price_b = self.oracle.price(cfg.asset_b_symbol)
        # pools sit near, not exactly at, the oracle ratio
        skew = float(np.clip(self.rng.normal(1.0, 0.05), 0.8, 1.2))
        half = int(depth_value * WAD) // 2
        reserve_a = int(half * WAD // price_a * skew)
        reserve_b = half * WAD // price_b
        venue_id = self._new_venue_id("pair")
        venue = SimulatedPairVenue(venue_id, reserve_a, reserve_b, clock=self.clock)
        return self._register(venue_id, venue)

    def new_lending_strategy(self, supplied: str = "b", depth_value: float = 500_000.0) -> VenueStrategy:
        asset = self.cfg.asset_a_symbol if supplied == "a" else self.cfg.asset_b_symbol
        reserve = int(depth_value * WAD) * WAD // self.oracle.price(asset)
        venue_id = self._new_venue_id("lend")
        venue = SimulatedLendingVenue(venue_id, supplied=supplied, reserve=reserve, clock=self.clock)
        return self._register(venue_id, venue)

    def _register(self, venue_id: str, venue) -> VenueStrategy:
        cfg = self.cfg
        strategy = VenueStrategy(f"strat_{venue_id}", cfg.asset_a_symbol, cfg.asset_b_symbol, self.oracle,
                                 venue, min_consumed_bps=cfg.deposit_min_consumed_bps)
        self.venues[venue_id] = venue
        self.strategies[strategy.strategy_id] = strategy
        return strategy

    def build_engine(
        self,
        price_a: float = 2.0,
        pair_venues: int = 1,
        lending_venues: int = 1,
        weights_bps: Optional[List[int]] = None,
    ) -> VaultEngine:
        if not self.oracle.prices:
            self.set_prices(price_a, 1.0)
        engine = VaultEngine(self.cfg, self.oracle, self.swaps, clock=self.clock)
        strategies = [self.new_pair_strategy() for _ in range(pair_venues)]
        strategies += [self.new_lending_strategy() for _ in range(lending_venues)]
        if not strategies:
            return engine
        if weights_bps is None:
            each = min(BPS, self.cfg.max_total_weight_bps) // len(strategies)
            weights_bps = [each] * len(strategies)
        for strategy, weight in zip(strategies, weights_bps):
            engine.add_strategy(strategy, weight)
        logger.info("built vault with %d strategies", len(strategies))
        return engine

    def drift_prices(self, volatility: float = 0.01) -> Tuple[int, int]:
        """Random walk asset_a against the reference unit; asset_b is held flat."""
        cfg = self.cfg
        price_a = self.oracle.price(cfg.asset_a_symbol)
        shock = float(np.exp(self.rng.normal(0.0, max(0.0, volatility))))
        new_a = max(1, int(price_a * shock))
        self.oracle.set_price(cfg.asset_a_symbol, new_a)
        self.oracle.set_price(cfg.asset_b_symbol, self.oracle.prices[cfg.asset_b_symbol])
        return new_a, self.oracle.prices[cfg.asset_b_symbol]

    def accrue_yield(self, apr_bps: int, seconds: float) -> None:
        """Grow every venue's reserves by ``apr_bps`` prorated over ``seconds``."""
        year = 365.0 * 24 * 3600
        for venue in self.venues.values():
            rate = apr_bps / BPS * seconds / year
            venue.accrue(int(venue.reserve_a * rate), int(venue.reserve_b * rate))

    def step(self, seconds: float, volatility: float = 0.01, apr_bps: int = 800) -> float:
        now = self.clock.advance(seconds)
        self.drift_prices(volatility)
        self.accrue_yield(apr_bps, seconds)
        return now
