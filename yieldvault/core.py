from __future__ import annotations
from dataclasses import dataclass, field
from typing import Callable, Dict, Tuple, Optional, Literal, List
from collections import deque
from contextlib import contextmanager
import logging
import threading
import time

from .config import WAD
from .errors import InsufficientShares, ReentrantCall, StaleValuation

logger = logging.getLogger(__name__)

Clock = Callable[[], float]
DeploymentStatus = Literal["executed", "noop", "failed"]

def format_inventory(inv: Dict[str, int]) -> str:
    if not inv:
        return "(empty)"
    items = sorted(inv.items(), key=lambda kv: kv[0])
    return ", ".join(f"{asset}:{amount}" for asset, amount in items)

# -----------------------------
# Events
# -----------------------------
@dataclass
class Event:
    ts: float
    event_type: str
    actor_id: Optional[str] = None
    strategy_id: Optional[str] = None
    amount: Optional[int] = None
    meta: dict = field(default_factory=dict)

class EventLog:
    def __init__(self, maxlen: Optional[int] = None) -> None:
        self.events = deque(maxlen=maxlen)

    def add(self, e: Event) -> None:
        self.events.append(e)

    def of_type(self, event_type: str) -> List[Event]:
        return [e for e in self.events if e.event_type == event_type]

    def tail(self, n: int = 200) -> List[Event]:
        if n <= 0:
            return []
        if n >= len(self.events):
            return list(self.events)
        return list(self.events)[-n:]


# -----------------------------
# Assets / valuation
# -----------------------------
class PriceOracle:
    """
    Prices every vault asset in the reference unit, as WAD fixed point per base unit.
    Fails closed: a missing or expired price raises StaleValuation instead of
    falling back to zero.
    """
    def __init__(self, ref_unit: str = "USD", max_age_s: float = 3600.0, clock: Optional[Clock] = None) -> None:
        self.ref_unit = ref_unit
        self.max_age_s = float(max_age_s)
        self.clock: Clock = clock or time.time
        self.prices: Dict[str, int] = {}
        self.updated_at: Dict[str, float] = {}

    def set_price(self, asset_id: str, price_wad: int, at: Optional[float] = None) -> None:
        self.prices[asset_id] = max(0, int(price_wad))
        self.updated_at[asset_id] = self.clock() if at is None else float(at)

    def is_fresh(self, asset_id: str) -> bool:
        ts = self.updated_at.get(asset_id)
        if ts is None or self.prices.get(asset_id, 0) <= 0:
            return False
        return self.clock() - ts <= self.max_age_s

    def price(self, asset_id: str) -> int:
        p = self.prices.get(asset_id, 0)
        if p <= 0:
            raise StaleValuation(f"no price for {asset_id}", reason="price_unavailable")
        age = self.clock() - self.updated_at[asset_id]
        if age > self.max_age_s:
            raise StaleValuation(f"price for {asset_id} is {age:.0f}s old", reason="price_stale")
        return p

    def valuation(self, asset_id: str, amount: int) -> int:
        if amount == 0:
            return 0
        return int(amount) * self.price(asset_id) // WAD

    def value_pair(self, asset_a: str, amount_a: int, asset_b: str, amount_b: int) -> int:
        return self.valuation(asset_a, amount_a) + self.valuation(asset_b, amount_b)


# -----------------------------
# Balances
# -----------------------------
class TokenBalances:
    def __init__(self) -> None:
        self.inventory: Dict[str, int] = {}

    def get(self, asset_id: str) -> int:
        return int(self.inventory.get(asset_id, 0))

    def add(self, asset_id: str, amount: int) -> None:
        if amount < 0:
            raise ValueError("negative credit")
        if amount == 0:
            return
        self.inventory[asset_id] = self.get(asset_id) + int(amount)

    def sub(self, asset_id: str, amount: int) -> bool:
        amt = int(amount)
        if amt < 0 or self.get(asset_id) < amt:
            return False
        self.inventory[asset_id] = self.get(asset_id) - amt
        if self.inventory[asset_id] == 0:
            self.inventory.pop(asset_id, None)
        return True

    def pair(self, asset_a: str, asset_b: str) -> Tuple[int, int]:
        return self.get(asset_a), self.get(asset_b)

    def is_empty(self) -> bool:
        return not any(self.inventory.values())


class ShareLedger:
    """Holder -> share balance. Conversion helpers floor in the vault's favour."""

    def __init__(self) -> None:
        self.balances: Dict[str, int] = {}
        self.total_shares: int = 0

    def balance_of(self, holder: str) -> int:
        return int(self.balances.get(holder, 0))

    def mint(self, holder: str, shares: int) -> None:
        if shares <= 0:
            raise ValueError("mint requires a positive share amount")
        self.balances[holder] = self.balance_of(holder) + int(shares)
        self.total_shares += int(shares)

    def burn(self, holder: str, shares: int) -> None:
        have = self.balance_of(holder)
        if shares <= 0 or shares > have:
            raise InsufficientShares(f"{holder} holds {have} shares, asked to burn {shares}")
        remaining = have - int(shares)
        if remaining == 0:
            self.balances.pop(holder, None)
        else:
            self.balances[holder] = remaining
        self.total_shares -= int(shares)

    def shares_for_value(self, value: int, total_assets: int) -> int:
        if self.total_shares == 0:
            return int(value)
        if total_assets <= 0:
            return 0
        return self.total_shares * int(value) // int(total_assets)

    def value_for_shares(self, shares: int, total_assets: int) -> int:
        if self.total_shares == 0:
            return 0
        if shares == self.total_shares:
            return int(total_assets)
        return int(shares) * int(total_assets) // self.total_shares


# -----------------------------
# Reentrancy
# -----------------------------
class ReentrancyGuard:
    """
    One mutating operation at a time per vault. A call that re-enters from the
    thread already holding the guard (e.g. a venue calling back) raises
    ReentrantCall instead of deadlocking; other threads wait.
    """
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._owner: Optional[int] = None
        self._op: Optional[str] = None

    @contextmanager
    def mutating(self, op: str):
        ident = threading.get_ident()
        if self._owner == ident:
            raise ReentrantCall(f"{op} re-entered during {self._op}")
        with self._lock:
            self._owner = ident
            self._op = op
            try:
                yield
            finally:
                self._owner = None
                self._op = None

    @contextmanager
    def reading(self, op: str):
        if self._owner == threading.get_ident():
            raise ReentrantCall(f"{op} read during {self._op}")
        with self._lock:
            yield


# -----------------------------
# Receipts
# -----------------------------
@dataclass
class DeploymentResult:
    ts: float
    strategy_id: str
    requested_a: int
    requested_b: int
    consumed_a: int = 0
    consumed_b: int = 0
    returned_a: int = 0
    returned_b: int = 0
    received_position_value: int = 0
    held_a: int = 0
    held_b: int = 0
    swap_asset_in: Optional[str] = None
    swap_amount_in: int = 0
    swap_amount_out: int = 0
    status: DeploymentStatus = "executed"
    fail_reason: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "ts": self.ts,
            "strategy_id": self.strategy_id,
            "requested_a": int(self.requested_a),
            "requested_b": int(self.requested_b),
            "consumed_a": int(self.consumed_a),
            "consumed_b": int(self.consumed_b),
            "returned_a": int(self.returned_a),
            "returned_b": int(self.returned_b),
            "received_position_value": int(self.received_position_value),
            "held_a": int(self.held_a),
            "held_b": int(self.held_b),
            "swap_asset_in": self.swap_asset_in,
            "swap_amount_in": int(self.swap_amount_in),
            "swap_amount_out": int(self.swap_amount_out),
            "status": self.status,
            "fail_reason": self.fail_reason,
        }

class ReceiptStore:
    def __init__(self) -> None:
        self.receipts: List[DeploymentResult] = []

    def add(self, r: DeploymentResult) -> None:
        self.receipts.append(r)
