"""Energy economy helpers and balance constants."""

from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import datetime, timedelta
from types import MappingProxyType
from typing import Any, Dict, Mapping, Optional

from .errors import InsufficientResource
from .models.map import Tile, parse_timestamp

# Energy cap for a fresh player, 24 hours worth at the default rate.
DEFAULT_MAX_ENERGY = 240

# Points regenerated per hour of wall-clock time.
DEFAULT_REGEN_RATE = 10

# Flat action costs.
DUNGEON_ENTRY_COST = 10
TELEPORT_COST = 40
PORTAL_ENERGY_COST = 20

# Movement cost is charged per tile in units of this much terrain cost.
MOVEMENT_COST_UNIT = 100

ACTION_COSTS: Mapping[str, int] = MappingProxyType(
    {
        "dungeon": DUNGEON_ENTRY_COST,
        "teleport": TELEPORT_COST,
        "portal": PORTAL_ENERGY_COST,
    }
)


@dataclass(frozen=True, slots=True)
class EnergySpend:
    """Outcome of a spend attempt."""

    ok: bool
    required: int
    available: int

    @property
    def shortfall(self) -> int:
        return 0 if self.ok else max(0, self.required - self.available)

    def raise_for_shortfall(self) -> None:
        if not self.ok:
            raise InsufficientResource("energy", self.required, self.available)


@dataclass(slots=True)
class EnergyState:
    """Bounded energy pool; ``0 <= current <= maximum`` after every call."""

    current: int = DEFAULT_MAX_ENERGY
    maximum: int = DEFAULT_MAX_ENERGY
    regen_rate: int = DEFAULT_REGEN_RATE
    last_regen_at: Optional[datetime] = None
    last_reset_on: Optional[str] = None

    def __post_init__(self) -> None:
        try:
            self.maximum = max(0, int(self.maximum))
        except (TypeError, ValueError):
            self.maximum = DEFAULT_MAX_ENERGY
        try:
            self.current = int(self.current)
        except (TypeError, ValueError):
            self.current = self.maximum
        self.current = min(self.maximum, max(0, self.current))
        self.regen_rate = max(0, int(self.regen_rate))
        if self.last_regen_at is not None:
            self.last_regen_at = parse_timestamp(self.last_regen_at)

    def check(self, cost: int, *, unlimited: bool = False) -> EnergySpend:
        """Evaluate ``cost`` without spending anything."""

        required = max(0, int(cost))
        if unlimited:
            return EnergySpend(ok=True, required=required, available=self.current)
        return EnergySpend(
            ok=self.current >= required, required=required, available=self.current
        )

    def spend(self, cost: int, *, unlimited: bool = False) -> EnergySpend:
        """Deduct ``cost`` when affordable; leave the pool untouched otherwise.

        With ``unlimited`` set the sufficiency check is skipped entirely and the
        stored value is not changed.
        """

        result = self.check(cost, unlimited=unlimited)
        if result.ok and not unlimited:
            self.current -= result.required
        return result

    def regenerate(self, elapsed_hours: float) -> int:
        """Add ``floor(elapsed_hours * regen_rate)`` clamped to the cap."""

        if elapsed_hours <= 0:
            return 0
        gained = math.floor(elapsed_hours * self.regen_rate)
        before = self.current
        self.current = min(self.maximum, self.current + gained)
        return self.current - before

    def regenerate_since(self, now: datetime) -> int:
        """Apply regeneration for wall-clock time since the last evaluation.

        Only the time converted into whole points is consumed, so fractional
        progress carries into the next call.
        """

        now = parse_timestamp(now)
        if self.last_regen_at is None or self.regen_rate <= 0:
            self.last_regen_at = now
            return 0
        elapsed = now - self.last_regen_at
        if elapsed <= timedelta(0):
            return 0
        if self.current >= self.maximum:
            self.last_regen_at = now
            return 0
        whole_points = math.floor(elapsed.total_seconds() / 3600.0 * self.regen_rate)
        if whole_points <= 0:
            return 0
        gained = self.regenerate(whole_points / self.regen_rate)
        if self.current >= self.maximum:
            self.last_regen_at = now
        else:
            self.last_regen_at += timedelta(hours=whole_points / self.regen_rate)
        return gained

    def daily_reset(self, now: datetime) -> bool:
        """Refill once per UTC calendar day; return ``True`` when it happened."""

        today = parse_timestamp(now).date().isoformat()
        if self.last_reset_on == today:
            return False
        first_seen = self.last_reset_on is None
        self.last_reset_on = today
        if first_seen:
            return False
        self.refill()
        return True

    def set(self, value: int) -> None:
        self.current = min(self.maximum, max(0, int(value)))

    def refill(self) -> None:
        self.current = self.maximum

    def hours_to_full(self) -> float:
        if self.current >= self.maximum or self.regen_rate <= 0:
            return 0.0
        return (self.maximum - self.current) / self.regen_rate

    def to_mapping(self) -> Dict[str, Any]:
        return {
            "current": self.current,
            "maximum": self.maximum,
            "regen_rate": self.regen_rate,
            "last_regen_at": self.last_regen_at,
            "last_reset_on": self.last_reset_on,
        }

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "EnergyState":
        return cls(
            current=data.get("current", DEFAULT_MAX_ENERGY),
            maximum=data.get("maximum", DEFAULT_MAX_ENERGY),
            regen_rate=data.get("regen_rate", DEFAULT_REGEN_RATE),
            last_regen_at=data.get("last_regen_at"),
            last_reset_on=data.get("last_reset_on"),
        )


def movement_cost(distance: int, tile: Tile) -> int:
    """Energy needed to move ``distance`` tiles onto ``tile``."""

    per_tile = math.ceil(tile.movement_cost / MOVEMENT_COST_UNIT)
    return max(0, int(distance)) * per_tile


def spend_gold(balance: int, amount: int) -> int:
    """Return the balance left after paying ``amount`` gold."""

    cost = max(0, int(amount))
    if cost > balance:
        raise InsufficientResource("gold", cost, balance)
    return balance - cost


__all__ = [
    "ACTION_COSTS",
    "DEFAULT_MAX_ENERGY",
    "DEFAULT_REGEN_RATE",
    "DUNGEON_ENTRY_COST",
    "EnergySpend",
    "EnergyState",
    "PORTAL_ENERGY_COST",
    "TELEPORT_COST",
    "movement_cost",
    "spend_gold",
]
