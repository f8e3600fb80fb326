import pytest

from yieldvault.config import WAD
from yieldvault.core import PriceOracle
from yieldvault.errors import StaleValuation
from yieldvault.nav import NavAggregator

# tests


def test_oracle_fails_closed(clock):
    oracle = PriceOracle(max_age_s=60.0, clock=clock)

    with pytest.raises(StaleValuation) as exc:
        oracle.price("TOKEN")
    assert exc.value.reason == "price_unavailable"

    oracle.set_price("TOKEN", 3 * WAD)
    assert oracle.valuation("TOKEN", 2 * WAD) == 6 * WAD
    assert oracle.is_fresh("TOKEN")

    clock.advance(61)
    assert not oracle.is_fresh("TOKEN")
    with pytest.raises(StaleValuation) as exc:
        oracle.valuation("TOKEN", WAD)
    assert exc.value.reason == "price_stale"


def test_zero_amount_needs_no_price(oracle):
    assert oracle.valuation("UNPRICED", 0) == 0


def test_mint_refuses_stale_prices(engine, clock):
    clock.advance(3601)
    with pytest.raises(StaleValuation):
        engine.mint("alice", 0, 10 * WAD)
    assert engine.total_shares == 0


def test_nav_counts_idle_and_strategies(pair_engine):
    pair_engine.mint("alice", 50 * WAD, 100 * WAD)

    rep = pair_engine.nav_report()
    assert rep.idle_value == 0
    assert rep.strategy_values == {"pair": 200 * WAD}
    assert rep.total_value == 200 * WAD
    assert not rep.is_stale


def test_stale_strategy_keeps_last_known_value(pair_engine, pair_venue):
    """A strategy that cannot report is carried at its last value and flagged, never zeroed"""
    pair_engine.mint("alice", 50 * WAD, 100 * WAD)
    before = pair_engine.total_assets()

    pair_venue.stale = True
    rep = pair_engine.nav_report()

    assert rep.stale == {"pair"}
    assert rep.total_value == before
    # deposits keep working on the last known value
    assert pair_engine.mint("bob", 0, 20 * WAD) == 20 * WAD


def test_stale_strategy_without_history_raises(pair_engine, pair_venue, oracle, clock):
    pair_engine.mint("alice", 50 * WAD, 100 * WAD)
    fresh = NavAggregator(oracle, pair_engine.registry, "TOKEN", "USD", clock)

    pair_venue.stale = True
    with pytest.raises(StaleValuation) as exc:
        fresh.report(pair_engine.idle)
    assert exc.value.reason == "strategy_unpriced"


def test_venue_yield_raises_share_price(pair_engine, pair_venue):
    pair_engine.mint("alice", 50 * WAD, 100 * WAD)
    assert pair_engine.share_price() == WAD

    # outside LPs own 3000 of 3150 units, the vault the other 150
    pair_venue.accrue(105 * WAD, 210 * WAD)

    assert pair_engine.total_assets() == 220 * WAD
    assert pair_engine.share_price() == WAD * 11 // 10


def test_inactive_strategy_excluded_after_sweep(pair_engine, pair_venue):
    pair_engine.mint("alice", 50 * WAD, 100 * WAD)

    out = pair_engine.deactivate_strategy("pair")

    assert out == (50 * WAD, 100 * WAD)
    rep = pair_engine.nav_report()
    assert rep.strategy_values == {}
    assert rep.total_value == 200 * WAD


def test_nav_is_idempotent(pair_engine):
    pair_engine.mint("alice", 50 * WAD, 100 * WAD)
    pair_engine.mint("bob", 3 * WAD, 7 * WAD)

    assert pair_engine.total_assets() == pair_engine.total_assets()
    assert pair_engine.nav_report().strategy_values == pair_engine.nav_report().strategy_values


def test_mint_and_burn_do_not_dilute(pair_engine):
    pair_engine.mint("alice", 50 * WAD, 100 * WAD)
    price = pair_engine.share_price()

    for holder, a, b in (("bob", 7 * WAD, 3 * WAD), ("carol", 0, 11 * WAD), ("dave", 13 * WAD, 0)):
        pair_engine.mint(holder, a, b)
        assert abs(pair_engine.share_price() - price) <= 1
    pair_engine.burn("carol", pair_engine.balance_of("carol"))
    pair_engine.burn("bob", pair_engine.balance_of("bob") // 3)

    assert abs(pair_engine.share_price() - price) <= 1
