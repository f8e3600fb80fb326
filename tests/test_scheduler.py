import pytest

from yieldvault.config import WAD
from yieldvault.errors import DeploymentGateClosed

# tests


def test_deployment_waits_for_threshold(pair_engine):
    """Idle value below the threshold stays idle; crossing it deploys"""
    pair_engine.mint("alice", 0, 40 * WAD)
    pair_engine.mint("bob", 0, 40 * WAD)
    assert pair_engine.last_pass is None
    assert pair_engine.should_deploy() == (False, "below_threshold")
    assert pair_engine.idle_balances() == (0, 80 * WAD)

    pair_engine.mint("carol", 0, 30 * WAD)

    assert pair_engine.last_pass is not None
    assert len(pair_engine.receipts.receipts) == 1
    receipt = pair_engine.receipts.receipts[0]
    assert receipt.status == "executed"
    assert receipt.requested_b == 110 * WAD


def test_interval_blocks_second_pass(pair_engine, clock):
    pair_engine.mint("alice", 50 * WAD, 100 * WAD)
    first = pair_engine.last_pass
    assert first is not None
    assert pair_engine.scheduler.last_deployment_ts == clock()

    clock.advance(60)
    pair_engine.mint("bob", 50 * WAD, 100 * WAD)
    assert pair_engine.last_pass is first
    assert pair_engine.should_deploy() == (False, "interval_not_elapsed")
    assert pair_engine.scheduler.seconds_until_ready() == 240

    clock.advance(240)
    assert pair_engine.should_deploy() == (True, "ok")


def test_force_deploy_skips_interval_only(pair_engine, clock):
    pair_engine.mint("alice", 50 * WAD, 100 * WAD)
    clock.advance(10)
    pair_engine.mint("bob", 50 * WAD, 100 * WAD)
    assert pair_engine.idle_balances() == (50 * WAD, 100 * WAD)

    dp = pair_engine.force_deploy()

    assert dp.forced
    assert len(dp.executed) == 1
    assert pair_engine.idle_balances() == (0, 0)
    assert pair_engine.scheduler.last_deployment_ts == clock()


def test_force_deploy_below_threshold_refused(pair_engine):
    pair_engine.mint("alice", 0, 10 * WAD)

    with pytest.raises(DeploymentGateClosed) as exc:
        pair_engine.force_deploy()
    assert exc.value.reason == "below_threshold"
    assert pair_engine.idle_balances() == (0, 10 * WAD)


def test_force_deploy_without_strategies_refused(engine):
    engine.mint("alice", 0, 500 * WAD)

    with pytest.raises(DeploymentGateClosed) as exc:
        engine.force_deploy()
    assert exc.value.reason == "no_active_strategies"


def test_zero_weight_strategies_are_not_deployable(engine, pair_strategy):
    engine.add_strategy(pair_strategy, 0)
    engine.mint("alice", 0, 500 * WAD)

    assert engine.last_pass is None
    assert engine.should_deploy() == (False, "no_active_strategies")


def test_pass_splits_idle_by_weight(engine, pair_strategy, lending_strategy):
    engine.add_strategy(pair_strategy, 6000)
    engine.add_strategy(lending_strategy, 4000)

    engine.mint("alice", 50 * WAD, 100 * WAD)

    pair_r, lend_r = engine.last_pass.results
    assert (pair_r.requested_a, pair_r.requested_b) == (30 * WAD, 60 * WAD)
    assert (lend_r.requested_a, lend_r.requested_b) == (20 * WAD, 40 * WAD)
    assert pair_r.status == "executed"
    assert lend_r.status == "executed"
    assert lend_r.consumed_a == 0


def test_partial_weights_leave_remainder_idle(engine, pair_strategy):
    engine.add_strategy(pair_strategy, 5000)

    engine.mint("alice", 50 * WAD, 100 * WAD)

    assert engine.idle_balances() == (25 * WAD, 50 * WAD)
    assert engine.total_assets() == 200 * WAD


def test_deployment_params_update(pair_engine, clock):
    pair_engine.set_deployment_params(10 * WAD, 0)

    pair_engine.mint("alice", 0, 20 * WAD)

    assert pair_engine.last_pass is not None
    assert pair_engine.log.of_type("DEPLOYMENT_PARAMS_SET")[-1].meta["threshold"] == 10 * WAD
