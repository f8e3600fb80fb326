from yieldvault.config import WAD, VaultConfig
from yieldvault.factory import VaultFactory
from yieldvault.metrics import MetricsStore

# tests


def test_nav_rows_track_share_price(engine):
    engine.mint("alice", 0, 40 * WAD)
    engine.inject_capital(0, 40 * WAD)

    df = engine.metrics.nav_df()
    assert list(df["share_price"]) == [1.0, 2.0]
    assert df["total_assets"].iloc[-1] == 80 * WAD

    stats = engine.metrics.share_price_stats()
    assert stats["samples"] == 2.0
    assert stats["total_return"] == 1.0
    assert stats["max_drawdown"] == 0.0


def test_drawdown_from_rows():
    store = MetricsStore()
    for price in (1.0, 1.2, 0.9, 1.1):
        store.add_nav({"share_price": price})

    stats = store.share_price_stats()
    assert abs(stats["max_drawdown"] - 0.25) < 1e-12
    assert abs(stats["total_return"] - 0.1) < 1e-12


def test_deployments_recorded(pair_engine):
    pair_engine.mint("alice", 50 * WAD, 100 * WAD)

    df = pair_engine.metrics.deployment_df()
    assert list(df["status"]) == ["executed"]
    assert df["strategy_id"].iloc[0] == "pair"
    strategy_df = pair_engine.metrics.strategy_df()
    assert strategy_df["value"].iloc[-1] == 200 * WAD


def test_metrics_stride(oracle, swaps, clock):
    from yieldvault.engine import VaultEngine

    engine = VaultEngine(VaultConfig(metrics_stride=2), oracle, swaps, clock=clock)
    engine.mint("alice", 0, 10 * WAD)
    assert engine.metrics.nav_df().empty
    engine.mint("alice", 0, 10 * WAD)
    assert len(engine.metrics.nav_rows) == 1


def test_factory_builds_working_vault():
    factory = VaultFactory(VaultConfig(), seed=7)
    engine = factory.build_engine(price_a=2.0, pair_venues=1, lending_venues=1)

    assert len(engine.registry) == 2
    assert engine.total_strategy_weight() == 10_000

    engine.mint("alice", 100 * WAD, 200 * WAD)
    assert engine.last_pass is not None
    assert [r.status for r in engine.last_pass.results] == ["executed", "executed"]

    before = engine.total_assets()
    factory.step(3600.0, volatility=0.0, apr_bps=800)
    assert engine.total_assets() > before
    assert factory.oracle.is_fresh("TOKEN")
