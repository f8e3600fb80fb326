from dataclasses import dataclass

WAD = 10**18
BPS = 10_000

@dataclass
class VaultConfig:
    # Assets
    asset_a_symbol: str = "TOKEN"
    asset_b_symbol: str = "USD"
    ref_unit: str = "USD"

    # Deployment scheduler
    deployment_threshold: int = 100 * WAD      # idle value that triggers a pass
    min_deployment_interval_s: float = 300.0   # 5 minutes between passes

    # Strategy registry
    max_strategies: int = 5
    max_total_weight_bps: int = BPS

    # Rebalancer / swaps
    max_swap_slippage_bps: int = 300           # 3% below oracle fair value
    min_swap_amount: int = 1
    deposit_min_consumed_bps: int = 0          # venues may legitimately take less
    external_call_timeout_s: float = 30.0

    # Valuation
    max_price_age_s: float = 3600.0
    redemption_dust: int = 10                  # value units lost to rounding on strategy pulls

    # Observability
    event_log_maxlen: int | None = 5000
    metrics_stride: int = 1
    debug_inventory: bool = True

    def __post_init__(self) -> None:
        if self.asset_a_symbol == self.asset_b_symbol:
            raise ValueError("vault assets must be distinct")
        self.deployment_threshold = max(0, int(self.deployment_threshold))
        self.min_deployment_interval_s = max(0.0, float(self.min_deployment_interval_s))
        self.max_strategies = max(1, int(self.max_strategies))
        self.max_total_weight_bps = min(BPS, max(0, int(self.max_total_weight_bps)))
        self.max_swap_slippage_bps = min(BPS, max(0, int(self.max_swap_slippage_bps)))
        self.deposit_min_consumed_bps = min(BPS, max(0, int(self.deposit_min_consumed_bps)))
        self.min_swap_amount = max(1, int(self.min_swap_amount))
        self.external_call_timeout_s = max(0.0, float(self.external_call_timeout_s))
        self.redemption_dust = max(0, int(self.redemption_dust))
