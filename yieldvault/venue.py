from __future__ import annotations
from typing import Optional, Protocol, Tuple
import logging
import time

from .config import BPS
from .core import Clock, PriceOracle
from .errors import ExternalCallTimeout, SlippageExceeded, StaleValuation, VenueRejected

logger = logging.getLogger(__name__)

# -----------------------------
# Collaborator contracts
# -----------------------------
class SwapExecutor(Protocol):
    def quote(self, asset_in: str, asset_out: str, amount_in: int) -> int: ...

    def swap(self, asset_in: str, asset_out: str, amount_in: int, min_amount_out: int,
             deadline: Optional[float]) -> int: ...

class LiquidityVenue(Protocol):
    def deposit(self, amount_a: int, amount_b: int, min_amount_a: int, min_amount_b: int,
                deadline: Optional[float] = None) -> Tuple[int, int, int]: ...

    def withdraw(self, position_units: int, deadline: Optional[float] = None) -> Tuple[int, int]: ...

    def current_ratio(self) -> Tuple[int, int]: ...

    def total_position_value(self, position_units: int) -> Tuple[int, int]: ...

    def max_withdraw_units(self, position_units: int) -> int: ...


def _check_deadline(clock: Clock, latency_s: float, deadline: Optional[float], what: str) -> None:
    if deadline is None:
        return
    if clock() + latency_s > deadline:
        raise ExternalCallTimeout(f"{what} did not complete before deadline")


# -----------------------------
# Simulated swap venue
# -----------------------------
class SimulatedSwapExecutor:
    """
    Oracle priced swaps. The fee and a fixed price impact are taken from the
    gross output, the way a constant-fee pool quotes.
    """
    def __init__(self, oracle: PriceOracle, fee_bps: int = 30, impact_bps: int = 0,
                 clock: Optional[Clock] = None) -> None:
        self.oracle = oracle
        self.fee_bps = int(fee_bps)
        self.impact_bps = int(impact_bps)
        self.clock: Clock = clock or time.time
        self.latency_s: float = 0.0
        self.paused: bool = False
        self.volume_in: dict = {}

    def quote(self, asset_in: str, asset_out: str, amount_in: int) -> int:
        if self.paused:
            raise VenueRejected("swap venue paused")
        p_in = self.oracle.price(asset_in)
        p_out = self.oracle.price(asset_out)
        gross = int(amount_in) * p_in // p_out
        haircut = max(0, BPS - self.fee_bps - self.impact_bps)
        return gross * haircut // BPS

    def swap(self, asset_in: str, asset_out: str, amount_in: int, min_amount_out: int,
             deadline: Optional[float]) -> int:
        _check_deadline(self.clock, self.latency_s, deadline, "swap")
        amount_out = self.quote(asset_in, asset_out, amount_in)
        if amount_out < min_amount_out:
            raise SlippageExceeded(f"swap out {amount_out} below minimum {min_amount_out}")
        self.volume_in[asset_in] = self.volume_in.get(asset_in, 0) + int(amount_in)
        return amount_out


# -----------------------------
# Simulated liquidity venues
# -----------------------------
class _SimulatedVenueBase:
    def __init__(self, venue_id: str, clock: Optional[Clock] = None) -> None:
        self.venue_id = venue_id
        self.clock: Clock = clock or time.time
        self.reserve_a: int = 0
        self.reserve_b: int = 0
        self.total_units: int = 0
        # failure knobs
        self.max_accept_bps: int = BPS
        self.rejecting: bool = False
        self.illiquid: bool = False
        self.stale: bool = False
        self.liquid_bps: int = BPS
        self.latency_s: float = 0.0
        self.on_deposit = None  # hook invoked mid-call, used to exercise reentrancy

    def accrue(self, amount_a: int = 0, amount_b: int = 0) -> None:
        """Yield or loss lands in reserves without issuing units."""
        self.reserve_a = max(0, self.reserve_a + int(amount_a))
        self.reserve_b = max(0, self.reserve_b + int(amount_b))

    def total_position_value(self, position_units: int) -> Tuple[int, int]:
        if self.stale:
            raise StaleValuation(f"{self.venue_id} cannot price positions", reason="venue_stale")
        if position_units <= 0 or self.total_units == 0:
            return 0, 0
        return (position_units * self.reserve_a // self.total_units,
                position_units * self.reserve_b // self.total_units)

    def max_withdraw_units(self, position_units: int) -> int:
        if self.illiquid:
            return 0
        return int(position_units) * self.liquid_bps // BPS

    def withdraw(self, position_units: int, deadline: Optional[float] = None) -> Tuple[int, int]:
        _check_deadline(self.clock, self.latency_s, deadline, f"{self.venue_id}.withdraw")
        if self.illiquid:
            raise VenueRejected(f"{self.venue_id} is illiquid", reason="venue_illiquid")
        if position_units <= 0 or position_units > self.total_units:
            raise VenueRejected(f"{self.venue_id} bad unit amount {position_units}")
        amount_a = position_units * self.reserve_a // self.total_units
        amount_b = position_units * self.reserve_b // self.total_units
        self.reserve_a -= amount_a
        self.reserve_b -= amount_b
        self.total_units -= position_units
        return amount_a, amount_b

    def _enter_deposit(self, deadline: Optional[float]) -> None:
        _check_deadline(self.clock, self.latency_s, deadline, f"{self.venue_id}.deposit")
        if self.rejecting:
            raise VenueRejected(f"{self.venue_id} rejected deposit")
        if self.on_deposit is not None:
            self.on_deposit()

    def _settle(self, consumed_a: int, consumed_b: int, units: int,
                min_amount_a: int, min_amount_b: int) -> Tuple[int, int, int]:
        if consumed_a < min_amount_a or consumed_b < min_amount_b:
            raise VenueRejected(f"{self.venue_id} consumed below minimum", reason="venue_min_amounts")
        self.reserve_a += consumed_a
        self.reserve_b += consumed_b
        self.total_units += units
        return consumed_a, consumed_b, units


class SimulatedPairVenue(_SimulatedVenueBase):
    """Two-asset pool. Accepts deposits only at its current reserve ratio."""

    def __init__(self, venue_id: str, reserve_a: int = 0, reserve_b: int = 0,
                 clock: Optional[Clock] = None) -> None:
        super().__init__(venue_id, clock=clock)
        self.reserve_a = int(reserve_a)
        self.reserve_b = int(reserve_b)
        # bootstrap liquidity belongs to outside LPs
        self.total_units = self.reserve_a + self.reserve_b

    def current_ratio(self) -> Tuple[int, int]:
        return self.reserve_a, self.reserve_b

    def deposit(self, amount_a: int, amount_b: int, min_amount_a: int, min_amount_b: int,
                deadline: Optional[float] = None) -> Tuple[int, int, int]:
        self._enter_deposit(deadline)
        if self.total_units == 0 or (self.reserve_a == 0 and self.reserve_b == 0):
            consumed_a = amount_a * self.max_accept_bps // BPS
            consumed_b = amount_b * self.max_accept_bps // BPS
            units = consumed_a + consumed_b
            return self._settle(consumed_a, consumed_b, units, min_amount_a, min_amount_b)

        candidates = []
        if self.reserve_a > 0:
            candidates.append(amount_a * self.total_units // self.reserve_a)
        if self.reserve_b > 0:
            candidates.append(amount_b * self.total_units // self.reserve_b)
        units = min(candidates) * self.max_accept_bps // BPS
        consumed_a = units * self.reserve_a // self.total_units
        consumed_b = units * self.reserve_b // self.total_units
        if consumed_a == 0 and consumed_b == 0:
            units = 0
        return self._settle(consumed_a, consumed_b, units, min_amount_a, min_amount_b)


class SimulatedLendingVenue(_SimulatedVenueBase):
    """Single-asset venue: only ``supplied`` ('a' or 'b') is ever consumed."""

    def __init__(self, venue_id: str, supplied: str = "b", reserve: int = 0,
                 clock: Optional[Clock] = None) -> None:
        super().__init__(venue_id, clock=clock)
        if supplied not in ("a", "b"):
            raise ValueError("supplied must be 'a' or 'b'")
        self.supplied = supplied
        if supplied == "a":
            self.reserve_a = int(reserve)
        else:
            self.reserve_b = int(reserve)
        self.total_units = int(reserve)

    def current_ratio(self) -> Tuple[int, int]:
        return (1, 0) if self.supplied == "a" else (0, 1)

    def deposit(self, amount_a: int, amount_b: int, min_amount_a: int, min_amount_b: int,
                deadline: Optional[float] = None) -> Tuple[int, int, int]:
        self._enter_deposit(deadline)
        offered = amount_a if self.supplied == "a" else amount_b
        reserve = self.reserve_a if self.supplied == "a" else self.reserve_b
        consumed = offered * self.max_accept_bps // BPS
        if self.total_units == 0 or reserve == 0:
            units = consumed
        else:
            units = consumed * self.total_units // reserve
        if units == 0:
            consumed = 0
        if self.supplied == "a":
            return self._settle(consumed, 0, units, min_amount_a, min_amount_b)
        return self._settle(0, consumed, units, min_amount_a, min_amount_b)
