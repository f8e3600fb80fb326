from __future__ import annotations
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional, Tuple
import logging

from .config import BPS
from .core import PriceOracle, TokenBalances, format_inventory
from .errors import AccountingInvariantViolation, StaleValuation, VenueRejected
from .venue import LiquidityVenue, SwapExecutor

logger = logging.getLogger(__name__)

@dataclass
class DepositOutcome:
    consumed_a: int
    consumed_b: int
    position_units: int
    position_value: int


class Strategy(ABC):
    """
    One external venue behind the vault. The strategy owns the venue's
    position receipt; the vault only ever asks what it is worth and for
    withdrawals. Tokens handed over but not yet in the venue sit in ``loose``.
    """

    def __init__(self, strategy_id: str, asset_a: str, asset_b: str, oracle: PriceOracle) -> None:
        self.strategy_id = strategy_id
        self.asset_a = asset_a
        self.asset_b = asset_b
        self.oracle = oracle
        self.loose = TokenBalances()

    # capability set
    @abstractmethod
    def current_ratio(self) -> Tuple[int, int]:
        ...

    @abstractmethod
    def position_holdings(self) -> Tuple[int, int]:
        ...

    @abstractmethod
    def deposit(self, amount_a: int, amount_b: int, deadline: Optional[float] = None) -> DepositOutcome:
        ...

    @abstractmethod
    def withdraw(self, target_value: int, deadline: Optional[float] = None) -> Tuple[int, int]:
        ...

    @abstractmethod
    def withdrawable_value(self) -> int:
        ...

    @abstractmethod
    def withdraw_all(self, deadline: Optional[float] = None) -> Tuple[int, int]:
        ...

    # shared plumbing
    def held(self) -> Tuple[int, int]:
        return self.loose.pair(self.asset_a, self.asset_b)

    def current_holdings(self) -> Tuple[int, int]:
        pos_a, pos_b = self.position_holdings()
        held_a, held_b = self.held()
        return pos_a + held_a, pos_b + held_b

    def holdings_value(self) -> int:
        a, b = self.current_holdings()
        return self.oracle.value_pair(self.asset_a, a, self.asset_b, b)

    def receive(self, amount_a: int, amount_b: int) -> None:
        self.loose.add(self.asset_a, amount_a)
        self.loose.add(self.asset_b, amount_b)

    def release_leftovers(self) -> Tuple[int, int]:
        amount_a, amount_b = self.held()
        self.loose.sub(self.asset_a, amount_a)
        self.loose.sub(self.asset_b, amount_b)
        if amount_a or amount_b:
            logger.debug("[INV] strategy=%s action=release_leftovers a=%d b=%d",
                         self.strategy_id, amount_a, amount_b)
        return amount_a, amount_b

    def execute_swap(self, executor: SwapExecutor, asset_in: str, amount_in: int,
                     min_amount_out: int, deadline: Optional[float]) -> int:
        asset_out = self.asset_b if asset_in == self.asset_a else self.asset_a
        if self.loose.get(asset_in) < amount_in:
            raise AccountingInvariantViolation(
                f"{self.strategy_id} cannot swap {amount_in} {asset_in}: holds {self.loose.get(asset_in)}")
        amount_out = executor.swap(asset_in, asset_out, amount_in, min_amount_out, deadline)
        self.loose.sub(asset_in, amount_in)
        self.loose.add(asset_out, amount_out)
        logger.debug("[INV] strategy=%s action=swap in=%s:%d out=%s:%d loose={ %s }",
                     self.strategy_id, asset_in, amount_in, asset_out, amount_out,
                     format_inventory(self.loose.inventory))
        return amount_out


class VenueStrategy(Strategy):
    """Strategy over any LiquidityVenue (pair pools and single-asset lending alike)."""

    def __init__(self, strategy_id: str, asset_a: str, asset_b: str, oracle: PriceOracle,
                 venue: LiquidityVenue, min_consumed_bps: int = 0) -> None:
        super().__init__(strategy_id, asset_a, asset_b, oracle)
        self.venue = venue
        self.min_consumed_bps = int(min_consumed_bps)
        self.position_units: int = 0

    def current_ratio(self) -> Tuple[int, int]:
        return self.venue.current_ratio()

    def position_holdings(self) -> Tuple[int, int]:
        if self.position_units <= 0:
            return 0, 0
        return self.venue.total_position_value(self.position_units)

    def _value(self, amount_a: int, amount_b: int) -> int:
        return self.oracle.value_pair(self.asset_a, amount_a, self.asset_b, amount_b)

    def deposit(self, amount_a: int, amount_b: int, deadline: Optional[float] = None) -> DepositOutcome:
        held_a, held_b = self.held()
        if amount_a > held_a or amount_b > held_b:
            raise AccountingInvariantViolation(
                f"{self.strategy_id} offered ({amount_a}, {amount_b}) but holds ({held_a}, {held_b})")
        min_a = amount_a * self.min_consumed_bps // BPS
        min_b = amount_b * self.min_consumed_bps // BPS
        consumed_a, consumed_b, units = self.venue.deposit(amount_a, amount_b, min_a, min_b, deadline)
        if consumed_a > amount_a or consumed_b > amount_b or consumed_a < 0 or consumed_b < 0:
            raise AccountingInvariantViolation(
                f"{self.strategy_id} venue consumed ({consumed_a}, {consumed_b}) of ({amount_a}, {amount_b})")
        self.loose.sub(self.asset_a, consumed_a)
        self.loose.sub(self.asset_b, consumed_b)
        self.position_units += units

        position_value = 0
        if units > 0:
            try:
                position_value = self._value(*self.venue.total_position_value(units))
            except StaleValuation:
                logger.warning("strategy=%s cannot price new position; recording consumed value",
                               self.strategy_id)
                position_value = self._value(consumed_a, consumed_b)
        return DepositOutcome(consumed_a=consumed_a, consumed_b=consumed_b,
                              position_units=units, position_value=position_value)

    def withdrawable_value(self) -> int:
        held_value = self._value(*self.held())
        if self.position_units <= 0:
            return held_value
        liquid_units = min(self.position_units, self.venue.max_withdraw_units(self.position_units))
        if liquid_units <= 0:
            return held_value
        return held_value + self._value(*self.venue.total_position_value(liquid_units))

    def withdraw(self, target_value: int, deadline: Optional[float] = None) -> Tuple[int, int]:
        if target_value <= 0:
            return 0, 0
        remaining = int(target_value)

        # loose balances move only after the venue call succeeds
        take_a, take_b = 0, 0
        held_a, held_b = self.held()
        held_value = self._value(held_a, held_b)
        if held_value > 0:
            if held_value <= remaining:
                take_a, take_b = held_a, held_b
            else:
                take_a = held_a * remaining // held_value
                take_b = held_b * remaining // held_value
            remaining -= self._value(take_a, take_b)

        got_a, got_b = 0, 0
        if remaining > 0 and self.position_units > 0:
            position_value = self._value(*self.venue.total_position_value(self.position_units))
            if position_value > 0:
                # ceil so a full pull is not short by a rounding unit
                units = -(-remaining * self.position_units // position_value)
                units = min(units, self.position_units, self.venue.max_withdraw_units(self.position_units))
                if units <= 0:
                    raise VenueRejected(f"{self.strategy_id} has no withdrawable units", reason="venue_illiquid")
                got_a, got_b = self.venue.withdraw(units, deadline)
                self.position_units -= units

        self.loose.sub(self.asset_a, take_a)
        self.loose.sub(self.asset_b, take_b)
        return take_a + got_a, take_b + got_b

    def withdraw_all(self, deadline: Optional[float] = None) -> Tuple[int, int]:
        got_a, got_b = 0, 0
        if self.position_units > 0:
            got_a, got_b = self.venue.withdraw(self.position_units, deadline)
            self.position_units = 0
        out_a, out_b = self.release_leftovers()
        return out_a + got_a, out_b + got_b
