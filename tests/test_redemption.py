import pytest

from yieldvault.config import WAD
from yieldvault.errors import InsufficientLiquidity

# tests


def test_redeem_pulls_shortfall_from_strategy(pair_engine, pair_strategy):
    pair_engine.mint("alice", 50 * WAD, 100 * WAD)
    assert pair_engine.idle_balances() == (0, 0)

    out = pair_engine.burn("alice", 100 * WAD)

    assert out == (25 * WAD, 50 * WAD)
    assert pair_engine.balance_of("alice") == 100 * WAD
    assert pair_strategy.position_units == 75 * WAD
    assert pair_engine.total_assets() == 100 * WAD
    assert pair_engine.log.of_type("STRATEGY_WITHDRAW")[-1].strategy_id == "pair"


def test_redeem_everything_after_deploy(pair_engine):
    pair_engine.mint("alice", 50 * WAD, 100 * WAD)

    out = pair_engine.burn("alice", 200 * WAD)

    assert out == (50 * WAD, 100 * WAD)
    assert pair_engine.total_shares == 0
    assert pair_engine.total_assets() == 0


def test_redeem_prefers_idle(engine, pair_strategy):
    engine.add_strategy(pair_strategy, 5000)
    engine.mint("alice", 50 * WAD, 100 * WAD)

    # 100 of value sits idle, enough for a quarter of the shares
    out = engine.burn("alice", 50 * WAD)

    assert out == (25 * WAD // 2, 25 * WAD)
    assert pair_strategy.position_units == 75 * WAD


def test_illiquid_strategy_fails_whole_redemption(pair_engine, pair_venue, pair_strategy):
    """A redemption that cannot be met in full changes nothing"""
    pair_engine.mint("alice", 50 * WAD, 100 * WAD)
    pair_venue.illiquid = True

    with pytest.raises(InsufficientLiquidity):
        pair_engine.burn("alice", 100 * WAD)

    assert pair_engine.balance_of("alice") == 200 * WAD
    assert pair_engine.idle_balances() == (0, 0)
    assert pair_strategy.position_units == 150 * WAD


def test_partially_liquid_strategy(pair_engine, pair_venue):
    pair_engine.mint("alice", 50 * WAD, 100 * WAD)
    pair_venue.liquid_bps = 5000

    assert pair_engine.max_redeem("alice") == 100 * WAD
    with pytest.raises(InsufficientLiquidity):
        pair_engine.burn("alice", 150 * WAD)

    assert pair_engine.burn("alice", 100 * WAD) == (25 * WAD, 50 * WAD)


def test_max_redeem(pair_engine, pair_venue):
    assert pair_engine.max_redeem("alice") == 0
    pair_engine.mint("alice", 50 * WAD, 100 * WAD)
    assert pair_engine.max_redeem("alice") == 200 * WAD

    pair_venue.illiquid = True
    assert pair_engine.max_redeem("alice") == 0


def test_redeem_draws_strategies_in_registry_order(engine, pair_strategy, lending_strategy):
    engine.add_strategy(pair_strategy, 5000)
    engine.add_strategy(lending_strategy, 5000)
    engine.mint("alice", 0, 200 * WAD)
    lend_units = lending_strategy.position_units

    engine.burn("alice", 50 * WAD)

    assert lending_strategy.position_units == lend_units
    assert pair_strategy.position_units < 50 * WAD


def test_venue_timeout_during_pull(pair_engine, pair_venue, pair_strategy):
    pair_engine.mint("alice", 50 * WAD, 100 * WAD)
    pair_venue.latency_s = 60.0

    with pytest.raises(InsufficientLiquidity) as exc:
        pair_engine.burn("alice", 100 * WAD)
    assert exc.value.reason == "deadline_expired"
    assert pair_engine.balance_of("alice") == 200 * WAD
    assert pair_strategy.position_units == 150 * WAD


def test_failed_second_pull_leaves_idle_untouched(engine, oracle, clock, pair_strategy):
    """If a later strategy fails, funds released by earlier ones stay with them, not in idle"""
    from yieldvault.strategy import VenueStrategy
    from yieldvault.venue import SimulatedPairVenue

    slow_venue = SimulatedPairVenue("pair2", 1000 * WAD, 2000 * WAD, clock=clock)
    second = VenueStrategy("pair2", "TOKEN", "USD", oracle, slow_venue)
    engine.add_strategy(pair_strategy, 5000)
    engine.add_strategy(second, 5000)
    engine.mint("alice", 50 * WAD, 100 * WAD)
    slow_venue.latency_s = 60.0

    with pytest.raises(InsufficientLiquidity) as exc:
        engine.burn("alice", 150 * WAD)

    assert exc.value.reason == "deadline_expired"
    assert engine.idle_balances() == (0, 0)
    assert engine.balance_of("alice") == 200 * WAD
    assert pair_strategy.held() == (25 * WAD, 50 * WAD)
    assert engine.total_assets() == 200 * WAD

    slow_venue.latency_s = 0.0
    assert engine.burn("alice", 150 * WAD) == (75 * WAD // 2, 75 * WAD)
    assert pair_strategy.held() == (0, 0)


def test_full_exit_empties_strategies(pair_engine, pair_venue, pair_strategy):
    pair_engine.mint("alice", 0, 110 * WAD)
    pair_venue.accrue(7, 13)

    pair_engine.burn("alice", pair_engine.balance_of("alice"))

    assert pair_engine.total_shares == 0
    assert pair_strategy.position_units == 0
    assert pair_strategy.held() == (0, 0)
    assert pair_engine.idle_balances() == (0, 0)
    assert pair_engine.total_assets() == 0

    # next depositor starts from an empty vault
    assert pair_engine.mint("bob", 0, 10 * WAD) == 10 * WAD


def test_full_exit_from_illiquid_strategy_changes_nothing(pair_engine, pair_venue, pair_strategy):
    pair_engine.mint("alice", 50 * WAD, 100 * WAD)
    pair_venue.illiquid = True

    with pytest.raises(InsufficientLiquidity):
        pair_engine.burn("alice", 200 * WAD)

    assert pair_engine.total_shares == 200 * WAD
    assert pair_strategy.position_units == 150 * WAD
    assert pair_engine.idle_balances() == (0, 0)
