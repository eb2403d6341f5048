"""Weather and time-of-day cyclers.

Both cycles are evaluated lazily: callers hand in the stored state and the
current time and get back either the same object (nothing due) or a new state
advanced past ``now``.  The next phase is always chosen at the moment the
current one is set so a client can show what is coming without recomputing.
"""

from __future__ import annotations

import logging
import random
from datetime import datetime, timedelta
from types import MappingProxyType
from typing import Dict, Mapping, Optional

from .models.map import parse_timestamp
from .models.world import CycleState

log = logging.getLogger(__name__)

# Hours between weather changes.
WEATHER_CHANGE_INTERVAL_HOURS = 3

# Hours between time of day phases, four phases per real day.
TIME_CHANGE_INTERVAL_HOURS = 6

# Upper bound on transitions applied by one catch-up evaluation.
MAX_CATCH_UP_STEPS = 64

WEATHER_WEIGHTS: Mapping[str, int] = MappingProxyType(
    {
        "clear": 40,
        "rain": 20,
        "fog": 20,
        "storm": 10,
        "snow": 10,
    }
)

WEATHER_SPAWN_MODIFIERS: Mapping[str, float] = MappingProxyType(
    {
        "clear": 1.0,
        "rain": 0.8,
        "storm": 0.6,
        "fog": 1.2,
        "snow": 0.7,
    }
)

TIME_PHASES: tuple[str, ...] = ("dawn", "day", "dusk", "night")

TIME_ENEMY_FLAGS: Mapping[str, Mapping[str, bool]] = MappingProxyType(
    {
        "dawn": MappingProxyType({"day_enemies": True, "night_enemies": True}),
        "day": MappingProxyType({"day_enemies": True, "night_enemies": False}),
        "dusk": MappingProxyType({"day_enemies": True, "night_enemies": True}),
        "night": MappingProxyType({"day_enemies": False, "night_enemies": True}),
    }
)


class CycleScheduler:
    """Shared advance logic; subclasses pick phases and derive modifiers."""

    name = "cycle"

    def __init__(self, interval: timedelta) -> None:
        if interval <= timedelta(0):
            raise ValueError("Cycle interval must be positive")
        self.interval = interval

    def initial_phase(self) -> str:
        raise NotImplementedError

    def next_phase(self, current: str) -> str:
        raise NotImplementedError

    def modifier_for(self, phase: str):
        raise NotImplementedError

    def initialize(self, now: datetime) -> CycleState:
        current = self.initial_phase()
        return self._state_for(current, parse_timestamp(now))

    def advance_if_due(self, state: CycleState, now: datetime) -> CycleState:
        """Return ``state`` untouched unless its change time has passed."""

        now = parse_timestamp(now)
        changes_at = parse_timestamp(state.changes_at)
        if now < changes_at:
            return state

        current = state.next
        steps = 1
        # One transition per elapsed interval so a long absence walks the ring.
        boundary = changes_at + self.interval
        while boundary <= now and steps < MAX_CATCH_UP_STEPS:
            current = self.next_phase(current)
            boundary += self.interval
            steps += 1

        advanced = self._state_for(current, now)
        log.debug(
            "%s advanced %s -> %s (%d step(s)), next %s at %s",
            self.name,
            state.current,
            advanced.current,
            steps,
            advanced.next,
            advanced.changes_at.isoformat(),
        )
        return advanced

    def time_until_change(self, state: CycleState, now: datetime) -> str:
        remaining = parse_timestamp(state.changes_at) - parse_timestamp(now)
        seconds = int(remaining.total_seconds())
        if seconds <= 0:
            return "Soon"
        hours, remainder = divmod(seconds, 3600)
        minutes = remainder // 60
        if hours > 0:
            return f"{hours}h {minutes}m"
        return f"{minutes}m"

    def _state_for(self, current: str, now: datetime) -> CycleState:
        return CycleState(
            current=current,
            next=self.next_phase(current),
            changes_at=now + self.interval,
            modifier=self.modifier_for(current),
        )


class WeatherCycle(CycleScheduler):
    """Weighted random weather that never repeats the outgoing category."""

    name = "weather"

    def __init__(
        self,
        rng: Optional[random.Random] = None,
        *,
        interval: timedelta = timedelta(hours=WEATHER_CHANGE_INTERVAL_HOURS),
        weights: Mapping[str, int] = WEATHER_WEIGHTS,
    ) -> None:
        super().__init__(interval)
        self.rng = rng or random.Random()
        self.weights = dict(weights)
        if len([weight for weight in self.weights.values() if weight > 0]) < 2:
            raise ValueError("Weather needs at least two weighted categories")

    def initial_phase(self) -> str:
        return self._draw(avoid=None)

    def next_phase(self, current: str) -> str:
        return self._draw(avoid=current)

    def modifier_for(self, phase: str) -> float:
        return WEATHER_SPAWN_MODIFIERS.get(phase, 1.0)

    def _draw(self, avoid: Optional[str]) -> str:
        weights: Dict[str, int] = dict(self.weights)
        if avoid is not None and avoid in weights:
            weights[avoid] = 0
        total = sum(max(weight, 0) for weight in weights.values())
        threshold = self.rng.random() * total
        cumulative = 0.0
        choice = None
        for name, weight in weights.items():
            if weight <= 0:
                continue
            cumulative += weight
            choice = name
            if threshold < cumulative:
                break
        return choice


class TimeOfDayCycle(CycleScheduler):
    """Deterministic dawn -> day -> dusk -> night ring."""

    name = "time_of_day"

    def __init__(
        self, *, interval: timedelta = timedelta(hours=TIME_CHANGE_INTERVAL_HOURS)
    ) -> None:
        super().__init__(interval)

    def initial_phase(self) -> str:
        return TIME_PHASES[0]

    def next_phase(self, current: str) -> str:
        try:
            index = TIME_PHASES.index(current)
        except ValueError:
            return TIME_PHASES[0]
        return TIME_PHASES[(index + 1) % len(TIME_PHASES)]

    def modifier_for(self, phase: str) -> Dict[str, bool]:
        return dict(TIME_ENEMY_FLAGS.get(phase, TIME_ENEMY_FLAGS["dawn"]))


def is_dark(phase: str) -> bool:
    return phase in ("dusk", "night")


__all__ = [
    "CycleScheduler",
    "TIME_PHASES",
    "TimeOfDayCycle",
    "WEATHER_SPAWN_MODIFIERS",
    "WEATHER_WEIGHTS",
    "WeatherCycle",
    "is_dark",
]
