"""Vault error taxonomy.

Every error carries a short machine readable ``reason`` that ends up in
deployment receipts and event metadata.
"""

from __future__ import annotations


class VaultError(Exception):
    reason = "vault_error"

    def __init__(self, message: str = "", *, reason: str | None = None) -> None:
        super().__init__(message or self.reason)
        if reason is not None:
            self.reason = reason


class ZeroDeposit(VaultError):
    reason = "zero_deposit"


class VaultPaused(VaultError):
    reason = "paused"


class InsufficientShares(VaultError):
    reason = "insufficient_shares"


class InsufficientLiquidity(VaultError):
    """Redemption cannot be satisfied in full from idle plus strategies."""
    reason = "insufficient_liquidity"


class SlippageExceeded(VaultError):
    reason = "slippage_exceeded"


class VenueRejected(VaultError):
    """External venue deposit or withdraw reverted."""
    reason = "venue_rejected"


class ExternalCallTimeout(VenueRejected):
    reason = "deadline_expired"


class StaleValuation(VaultError):
    reason = "stale_valuation"


class StrategyNotRemovable(VaultError):
    reason = "strategy_not_removable"


class ReentrantCall(VaultError):
    reason = "reentrant_call"


class DeploymentGateClosed(VaultError):
    reason = "deployment_gate_closed"


class InvalidConfiguration(VaultError):
    reason = "invalid_configuration"


class VaultInsolvent(VaultError):
    """Shares are outstanding but the vault reports no value."""
    reason = "vault_insolvent"


class AccountingInvariantViolation(VaultError):
    """Idle and strategy accounting no longer partition the vault's value."""
    reason = "accounting_invariant"
