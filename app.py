import json
import time
import streamlit as st
import pandas as pd

from yieldvault.config import BPS, WAD, VaultConfig
from yieldvault.engine import VaultEngine
from yieldvault.errors import VaultError
from yieldvault.factory import VaultFactory

st.set_page_config(page_title="Yield Vault Console", layout="wide")


def get_engine() -> VaultEngine:
    if "engine" not in st.session_state:
        reset_engine()
    return st.session_state.engine


def reset_engine(seed: int = 1) -> None:
    cfg = VaultConfig()
    factory = VaultFactory(cfg, seed=seed)
    st.session_state.cfg = cfg
    st.session_state.factory = factory
    st.session_state.engine = factory.build_engine(price_a=2.0, pair_venues=2, lending_venues=1,
                                                   weights_bps=[4000, 3000, 2000])
    st.session_state.last_error = None


engine = get_engine()
factory: VaultFactory = st.session_state.factory

st.title("Yield Vault Console")
st.caption("Simulated venues; amounts are entered in whole tokens and valued in the reference unit.")

def _fmt_duration(seconds: float) -> str:
    if seconds < 0:
        seconds = 0.0
    mins = int(seconds // 60)
    secs = seconds - (mins * 60)
    return f"{mins}m {secs:0.1f}s"

def _units(amount) -> float:
    if amount is None:
        return float("nan")
    return int(amount) / WAD

def _fmt(value: float) -> str:
    return f"{float(value):,.4f}"

def _render_kpi_grid(kpis, columns: int = 5) -> None:
    for idx in range(0, len(kpis), columns):
        row = kpis[idx: idx + columns]
        cols = st.columns(columns)
        for col, (label, value) in zip(cols, row):
            col.metric(label, value)

def _format_event_meta(meta) -> str:
    if not meta:
        return ""
    parts = []
    for key, value in meta.items():
        if isinstance(value, int) and not isinstance(value, bool) and abs(value) >= WAD // 1000:
            parts.append(f"{key}={_units(value):,.4f}")
        else:
            parts.append(f"{key}={value}")
    return ", ".join(parts)

def _run(action, label: str):
    try:
        out = action()
    except VaultError as exc:
        st.session_state.last_error = f"{label}: {exc.reason} ({exc})"
        return None
    st.session_state.last_error = None
    return out


with st.sidebar:
    st.header("Vault Controls")

    if st.button("Restart vault"):
        reset_engine(seed=int(st.session_state.get("seed", 1)))
        engine = st.session_state.engine
        factory = st.session_state.factory
    if "seed" not in st.session_state:
        st.session_state.seed = 1
    st.number_input("Random seed", min_value=1, max_value=100000, key="seed")

    st.subheader("Time")
    step_minutes = st.slider("Minutes per step", min_value=1, max_value=240, value=10)
    volatility = st.number_input("Price volatility per step", min_value=0.0, value=0.01, step=0.005, format="%.3f")
    apr_bps = st.number_input("Venue APR (bps)", min_value=0, max_value=BPS, value=800, step=50)
    steps = st.slider("Steps to run", min_value=1, max_value=200, value=12)
    c1, c2 = st.columns(2)
    if c1.button("Step once"):
        factory.step(step_minutes * 60, volatility, int(apr_bps))
        engine.snapshot_metrics()
    if c2.button("Run N steps"):
        start_ts = time.time()
        bar = st.progress(0.0, text="Run progress: 0%")
        for idx in range(int(steps)):
            factory.step(step_minutes * 60, volatility, int(apr_bps))
            engine.snapshot_metrics()
            bar.progress((idx + 1) / steps, text=f"Run progress: {(idx + 1) / steps:.0%}")
        bar.progress(1.0, text=f"Run progress: 100% ({_fmt_duration(time.time() - start_ts)})")

    st.subheader("Depositor")
    holder = st.text_input("Account", value="alice")
    amt_a = st.number_input(f"{engine.asset_a} amount", min_value=0.0, value=10.0, step=1.0)
    amt_b = st.number_input(f"{engine.asset_b} amount", min_value=0.0, value=20.0, step=1.0)
    d1, d2 = st.columns(2)
    if d1.button("Deposit"):
        _run(lambda: engine.mint(holder, int(amt_a * WAD), int(amt_b * WAD)), "deposit")
    burn_fraction = st.slider("Redeem share of balance", min_value=0.0, max_value=1.0, value=0.5, step=0.05)
    if d2.button("Redeem"):
        shares = int(engine.balance_of(holder) * burn_fraction)
        _run(lambda: engine.burn(holder, shares), "redeem")

    st.subheader("Operator")
    threshold = st.number_input("Deployment threshold", min_value=0.0,
                                value=float(_units(engine.cfg.deployment_threshold)), step=10.0)
    interval = st.number_input("Min interval (s)", min_value=0.0,
                               value=float(engine.cfg.min_deployment_interval_s), step=60.0)
    if st.button("Apply deployment params"):
        _run(lambda: engine.set_deployment_params(int(threshold * WAD), interval), "params")
    o1, o2 = st.columns(2)
    if o1.button("Force deploy"):
        _run(engine.force_deploy, "force deploy")
    if o2.button("Unpause" if engine.paused else "Pause"):
        _run(engine.unpause if engine.paused else engine.pause, "pause")

    if st.session_state.get("last_error"):
        st.error(st.session_state.last_error)


tab_overview, tab_strategies, tab_deployments, tab_events, tab_state = st.tabs(
    ["Overview", "Strategies", "Deployments", "Events", "State"]
)

with tab_overview:
    try:
        rep = engine.nav_report()
    except VaultError as exc:
        rep = None
        st.warning(f"NAV unavailable: {exc.reason}")
    idle_a, idle_b = engine.idle_balances()
    try:
        _, reason = engine.should_deploy()
    except VaultError as exc:
        reason = exc.reason
    kpis = [
        ("Total assets", _fmt(_units(rep.total_value)) if rep else "n/a"),
        ("Share price", _fmt(_units(rep.total_value * WAD // engine.total_shares))
         if rep and engine.total_shares else "1.0000"),
        ("Total shares", _fmt(_units(engine.total_shares))),
        (f"Idle {engine.asset_a}", _fmt(_units(idle_a))),
        (f"Idle {engine.asset_b}", _fmt(_units(idle_b))),
        ("Strategy weight (bps)", engine.total_strategy_weight()),
        ("Deploy gate", reason),
        ("Next pass in", _fmt_duration(engine.scheduler.seconds_until_ready())),
        ("Paused", "yes" if engine.paused else "no"),
        ("Stale strategies", len(rep.stale) if rep else "n/a"),
    ]
    _render_kpi_grid(kpis)

    nav_df = engine.metrics.nav_df()
    if not nav_df.empty:
        chart = nav_df.set_index("ts")[["total_assets", "idle_value", "strategies_value"]].astype(float) / WAD
        st.line_chart(chart)
        st.caption("Share price stats")
        st.json(engine.metrics.share_price_stats())

with tab_strategies:
    rows = engine.strategy_table()
    if rows:
        df = pd.DataFrame(rows)
        for col in ("holdings_a", "holdings_b", "value"):
            df[col] = df[col].map(_units)
        st.dataframe(df, use_container_width=True)
        sid = st.selectbox("Strategy", [r["strategy_id"] for r in rows])
        weight = st.number_input("Weight (bps)", min_value=0, max_value=BPS,
                                 value=int(engine.registry.get(sid).weight_bps), step=100)
        s1, s2, s3, s4 = st.columns(4)
        if s1.button("Set weight"):
            _run(lambda: engine.set_weight(sid, int(weight)), "set weight")
        if s2.button("Sweep to idle"):
            _run(lambda: engine.sweep_strategy(sid), "sweep")
        if s3.button("Deactivate" if engine.registry.get(sid).active else "Activate"):
            if engine.registry.get(sid).active:
                _run(lambda: engine.deactivate_strategy(sid), "deactivate")
            else:
                _run(lambda: engine.activate_strategy(sid), "activate")
        if s4.button("Remove"):
            _run(lambda: engine.remove_strategy(sid), "remove")
    c1, c2 = st.columns(2)
    if c1.button("Add pair venue strategy"):
        _run(lambda: engine.add_strategy(factory.new_pair_strategy(), 0), "add strategy")
    if c2.button("Add lending venue strategy"):
        _run(lambda: engine.add_strategy(factory.new_lending_strategy(), 0), "add strategy")

with tab_deployments:
    dep_df = engine.metrics.deployment_df()
    if dep_df.empty:
        st.info("No deployments yet.")
    else:
        st.dataframe(dep_df.tail(200), use_container_width=True)
        st.bar_chart(dep_df["status"].value_counts())

with tab_events:
    event_types = sorted({e.event_type for e in engine.log.events})
    selected = st.multiselect("Event types", event_types, default=event_types)
    events = [e for e in engine.log.tail(500) if e.event_type in selected]
    st.dataframe(
        pd.DataFrame([
            {
                "ts": e.ts,
                "type": e.event_type,
                "actor": e.actor_id,
                "strategy": e.strategy_id,
                "amount": _units(e.amount) if e.amount is not None else None,
                "meta": _format_event_meta(e.meta),
            }
            for e in reversed(events)
        ]),
        use_container_width=True,
    )

with tab_state:
    state = engine.export_state()
    st.download_button("Download state (JSON)", json.dumps(state, indent=2, sort_keys=True),
                       file_name="vault_state.json", mime="application/json")
    st.json(state)
