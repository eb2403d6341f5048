"""In-memory world and player state with debounced persistence.

Every mutator applies its change synchronously, bumps :attr:`revision` and
(re)starts a short timer on the running event loop.  When the timer fires the
store snapshots its state and hands it to the save collaborator.  A snapshot is
taken at write time, so all mutations made before it are included; anything
that happens while a save is in flight schedules another one.
"""

from __future__ import annotations

import asyncio
import logging
import random
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Mapping, Optional

from .cycles import TimeOfDayCycle, WeatherCycle
from .dynamic import refresh_dynamic_objects
from .energy import EnergyState, spend_gold
from .errors import PersistenceFailure, RejectionReason, ValidationError
from .fog import DiscoveryLog, explored_locations
from .generation import CAPITAL_NAME, GenerationConfig, WorldGenerator, epoch_for
from .models._validation import ModelValidationError
from .models.equipment import Character
from .models.map import Position, parse_timestamp, utcnow
from .models.world import DiscoveredLocation, WorldMap
from .storage import SaveService

log = logging.getLogger(__name__)

DEFAULT_SAVE_DEBOUNCE_SECONDS = 2.0


@dataclass(slots=True)
class PlayerState:
    player_id: str
    position: Optional[Position] = None
    energy: EnergyState = field(default_factory=EnergyState)
    gold: int = 0
    discoveries: DiscoveryLog = field(default_factory=DiscoveryLog)
    characters: Dict[str, Character] = field(default_factory=dict)

    def to_mapping(self) -> Dict[str, Any]:
        return {
            "position": self.position.to_mapping() if self.position else None,
            "energy": self.energy.to_mapping(),
            "gold": self.gold,
            "discovered_locations": [entry.to_mapping() for entry in self.discoveries],
            "characters": [character.to_mapping() for character in self.characters.values()],
        }

    @classmethod
    def from_mapping(cls, player_id: str, data: Mapping[str, Any]) -> "PlayerState":
        position = data.get("position")
        energy = data.get("energy")
        characters = [Character.from_mapping(item) for item in data.get("characters") or []]
        return cls(
            player_id=player_id,
            position=Position.from_mapping(position) if position else None,
            energy=EnergyState.from_mapping(energy) if isinstance(energy, Mapping) else EnergyState(),
            gold=max(0, int(data.get("gold", 0))),
            discoveries=DiscoveryLog(
                DiscoveredLocation.from_mapping(item)
                for item in data.get("discovered_locations") or []
            ),
            characters={character.id: character for character in characters},
        )


class WorldStateStore:
    """Single owner of the mutable game state for one player."""

    def __init__(
        self,
        player_id: str,
        save_service: SaveService,
        *,
        debounce_seconds: float = DEFAULT_SAVE_DEBOUNCE_SECONDS,
        generator: Optional[WorldGenerator] = None,
        generation_overrides: Optional[Mapping[str, Any]] = None,
        merchant_count: int = 2,
        rng: Optional[random.Random] = None,
        energy: Optional[EnergyState] = None,
    ) -> None:
        self.player_id = str(player_id)
        self._save_service = save_service
        self._debounce = max(0.0, float(debounce_seconds))
        self._generator = generator or WorldGenerator()
        self._generation_overrides = dict(generation_overrides or {})
        self._merchant_count = merchant_count
        self._rng = rng or random.Random()
        self._weather = WeatherCycle(self._rng)
        self._time_of_day = TimeOfDayCycle()

        self.world: Optional[WorldMap] = None
        self.player = PlayerState(player_id=self.player_id, energy=energy or EnergyState())
        self.revision = 0
        self.saved_revision = 0
        self.last_error: Optional[BaseException] = None

        self._timer: Optional[asyncio.TimerHandle] = None
        self._flush_task: Optional[asyncio.Task] = None
        self._pending = False

    # -- state accessors -------------------------------------------------

    @property
    def dirty(self) -> bool:
        return self.revision != self.saved_revision

    @property
    def flush_in_flight(self) -> bool:
        return self._flush_task is not None and not self._flush_task.done()

    @property
    def flush_scheduled(self) -> bool:
        return self._timer is not None

    def require_world(self) -> WorldMap:
        if self.world is None:
            raise ValidationError(RejectionReason.NO_WORLD, "No world map is loaded")
        return self.world

    def character(self, character_id: str) -> Character:
        try:
            return self.player.characters[character_id]
        except KeyError:
            raise ValidationError(
                RejectionReason.UNKNOWN_CHARACTER,
                f"Unknown character: {character_id}",
                details={"character_id": character_id},
            ) from None

    # -- mutators --------------------------------------------------------

    def mark_dirty(self) -> None:
        self.revision += 1
        self._schedule_flush()

    def update_world_map(self, world: WorldMap) -> None:
        self.world = world
        self.mark_dirty()

    def update_player_pos(self, x: int, y: int) -> None:
        self.player.position = Position(int(x), int(y))
        self.mark_dirty()

    def set_energy(self, value: int) -> None:
        self.player.energy.set(value)
        self.mark_dirty()

    def set_gold(self, value: int) -> None:
        self.player.gold = max(0, int(value))
        self.mark_dirty()

    def spend_gold(self, amount: int) -> int:
        self.player.gold = spend_gold(self.player.gold, amount)
        self.mark_dirty()
        return self.player.gold

    def add_discovered_location(self, location: DiscoveredLocation) -> bool:
        added = self.player.discoveries.add(location)
        if added:
            self.mark_dirty()
        return added

    def update_character(self, character: Character) -> None:
        character.recalculate_stats()
        self.player.characters[character.id] = character
        self.mark_dirty()

    # -- world lifecycle -------------------------------------------------

    def ensure_world(self, now: Optional[datetime] = None) -> bool:
        """Generate today's world when none is loaded or the epoch rolled over."""

        now = parse_timestamp(now) if now is not None else utcnow()
        epoch = epoch_for(now)
        if self.world is not None and self.world.epoch == epoch:
            return False

        previous = self.world.epoch if self.world is not None else None
        config = GenerationConfig.daily(now, **self._generation_overrides)
        world = self._generator.generate(config, now)
        capital = world.find_static_named(CAPITAL_NAME)

        # A new world brings fresh fog, so the teleport list starts over.
        self.player.discoveries = DiscoveryLog(explored_locations(world))
        if capital is not None:
            self.player.position = capital.position
        self.update_world_map(world)
        log.info("World epoch %s -> %s for player %s", previous, epoch, self.player_id)
        return True

    def tick(self, now: Optional[datetime] = None) -> bool:
        """Advance time-driven state; return ``True`` when anything changed."""

        now = parse_timestamp(now) if now is not None else utcnow()
        changed = self.ensure_world(now)
        world = self.world
        if world is None:
            return changed

        weather = self._weather.advance_if_due(world.weather, now)
        if weather is not world.weather:
            world.weather = weather
            changed = True
        time_of_day = self._time_of_day.advance_if_due(world.time_of_day, now)
        if time_of_day is not world.time_of_day:
            world.time_of_day = time_of_day
            changed = True
        if refresh_dynamic_objects(world, now, self._rng, merchant_count=self._merchant_count):
            changed = True
        if self.player.energy.daily_reset(now):
            changed = True
        if self.player.energy.regenerate_since(now):
            changed = True

        if changed:
            self.mark_dirty()
        return changed

    # -- persistence -----------------------------------------------------

    def snapshot(self) -> Dict[str, Any]:
        return {
            "player_id": self.player_id,
            "revision": self.revision,
            "saved_at": utcnow(),
            "player": self.player.to_mapping(),
            "world": self.world.to_mapping() if self.world is not None else None,
        }

    def restore(self, data: Mapping[str, Any]) -> None:
        player = data.get("player")
        self.player = PlayerState.from_mapping(
            self.player_id, player if isinstance(player, Mapping) else {}
        )
        world = data.get("world")
        self.world = None
        if isinstance(world, Mapping):
            try:
                self.world = WorldMap.from_mapping(world)
            except (ModelValidationError, KeyError, ValueError):
                log.warning("Stored world for %s is unusable, it will be regenerated", self.player_id, exc_info=True)
        revision = int(data.get("revision", 0) or 0)
        self.revision = revision
        self.saved_revision = revision

    async def load(self) -> bool:
        data = await self._save_service.load(self.player_id)
        if not data:
            return False
        self.restore(data)
        log.info("Loaded state for %s at revision %d", self.player_id, self.revision)
        return True

    def _schedule_flush(self) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # No loop: the state stays dirty until flush_now() runs.
            return
        if self._timer is not None:
            self._timer.cancel()
        self._timer = loop.call_later(self._debounce, self._on_timer)

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _on_timer(self) -> None:
        self._timer = None
        if self.flush_in_flight:
            self._pending = True
            return
        if not self.dirty:
            return
        self._flush_task = asyncio.get_running_loop().create_task(self._flush())

    async def _flush(self) -> bool:
        while True:
            self._pending = False
            revision = self.revision
            snapshot = self.snapshot()
            try:
                await self._save_service.save(self.player_id, snapshot)
            except (PersistenceFailure, OSError) as exc:
                self.last_error = exc
                log.exception("Saving state for %s failed at revision %d", self.player_id, revision)
                if self._pending:
                    # Changes arrived during the failed save; give them their own attempt.
                    self._pending = False
                    self._schedule_flush()
                return False
            self.saved_revision = max(self.saved_revision, revision)
            self.last_error = None
            log.debug("Saved state for %s at revision %d", self.player_id, revision)
            if not (self._pending and self.dirty):
                return True

    async def flush_now(self) -> bool:
        """Write immediately, waiting for any save already in flight."""

        self._cancel_timer()
        if self.flush_in_flight:
            self._pending = True
            ok = await self._flush_task
            if not self.dirty:
                return ok
        if not self.dirty:
            return True
        self._flush_task = asyncio.get_running_loop().create_task(self._flush())
        return await self._flush_task

    async def close(self) -> None:
        await self.flush_now()


__all__ = ["DEFAULT_SAVE_DEBOUNCE_SECONDS", "PlayerState", "WorldStateStore"]
