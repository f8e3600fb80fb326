import pytest

from yieldvault.config import WAD, VaultConfig
from yieldvault.core import PriceOracle
from yieldvault.engine import VaultEngine
from yieldvault.rebalancer import Rebalancer
from yieldvault.strategy import VenueStrategy
from yieldvault.venue import SimulatedLendingVenue, SimulatedPairVenue, SimulatedSwapExecutor

TOKEN = "TOKEN"
USD = "USD"


class FakeClock:
    def __init__(self, now: float = 1_000_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def cfg():
    return VaultConfig(asset_a_symbol=TOKEN, asset_b_symbol=USD)


@pytest.fixture
def oracle(clock):
    o = PriceOracle(ref_unit="USD", max_age_s=3600.0, clock=clock)
    o.set_price(TOKEN, 2 * WAD)
    o.set_price(USD, WAD)
    return o


@pytest.fixture
def swaps(oracle, clock):
    return SimulatedSwapExecutor(oracle, fee_bps=30, clock=clock)


@pytest.fixture
def engine(cfg, oracle, swaps, clock):
    return VaultEngine(cfg, oracle, swaps, clock=clock)


@pytest.fixture
def rebalancer(cfg, oracle, swaps, clock):
    return Rebalancer(cfg, oracle, swaps, clock)


@pytest.fixture
def pair_venue(clock):
    # 1 TOKEN : 2 USD, matching the oracle
    return SimulatedPairVenue("pair", reserve_a=1000 * WAD, reserve_b=2000 * WAD, clock=clock)


@pytest.fixture
def pair_strategy(oracle, pair_venue):
    return VenueStrategy("pair", TOKEN, USD, oracle, pair_venue)


@pytest.fixture
def lending_venue(clock):
    return SimulatedLendingVenue("lend", supplied="b", reserve=1000 * WAD, clock=clock)


@pytest.fixture
def lending_strategy(oracle, lending_venue):
    return VenueStrategy("lend", TOKEN, USD, oracle, lending_venue)


@pytest.fixture
def pair_engine(engine, pair_strategy):
    engine.add_strategy(pair_strategy, 10_000)
    return engine
