"""Deterministic world generation from a seed.

Every random choice is drawn from a ``random.Random`` seeded with the world
seed, so two calls with the same :class:`GenerationConfig` produce the same
terrain and the same object layout.  The wall clock is only used for the
expiry times of dynamic objects and the first cycle change.
"""

from __future__ import annotations

import logging
import math
import random
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Dict, Iterable, List, Optional, Sequence

from . import dynamic
from .cycles import TimeOfDayCycle, WeatherCycle
from .energy import PORTAL_ENERGY_COST
from .fog import reveal
from .models.map import (
    DungeonEntrance,
    HiddenPath,
    Portal,
    Position,
    RareSpawn,
    StaticObject,
    Terrain,
    Tile,
    Town,
    TreasureChest,
    make_tile,
    parse_timestamp,
    utcnow,
)
from .models.world import WorldMap
from .noise import PerlinNoise

log = logging.getLogger(__name__)

CAPITAL_NAME = "Capital"

NOISE_SCALE = 0.08
NOISE_OCTAVES = 4
NOISE_PERSISTENCE = 0.5

# Upper bounds of each terrain band on the octave noise value.
TERRAIN_BANDS: Sequence[tuple[float, Terrain]] = (
    (-0.4, Terrain.WATER),
    (-0.2, Terrain.SWAMP),
    (0.0, Terrain.PLAINS),
    (0.3, Terrain.FOREST),
    (0.5, Terrain.DESERT),
)


@dataclass(frozen=True, slots=True)
class _TownTemplate:
    name: str
    fx: float
    fy: float
    level: int
    faction: str


@dataclass(frozen=True, slots=True)
class _DungeonTemplate:
    name: str
    fx: float
    fy: float
    difficulty: str
    max_floors: int
    level: int
    theme: str


TOWN_TEMPLATES: tuple[_TownTemplate, ...] = (
    _TownTemplate(CAPITAL_NAME, 0.5, 0.5, 3, "Kingdom"),
    _TownTemplate("Mountain Stronghold", 0.2, 0.2, 2, "Mountain Dwarves"),
    _TownTemplate("Desert Oasis", 0.5, 0.9, 2, "Desert Nomads"),
    _TownTemplate("Forest Outpost", 0.1, 0.5, 1, "Forest Elves"),
)

DUNGEON_TEMPLATES: tuple[_DungeonTemplate, ...] = (
    _DungeonTemplate("Goblin Caves", 0.4, 0.4, "Easy", 10, 1, "Goblin Caves"),
    _DungeonTemplate("Forest Ruins", 0.15, 0.55, "Medium", 25, 10, "Ancient Ruins"),
    _DungeonTemplate("Mountain Depths", 0.25, 0.15, "Hard", 50, 20, "Mountain Depths"),
    _DungeonTemplate("Ancient Temple", 0.55, 0.95, "Hard", 50, 25, "Desert Temple"),
    _DungeonTemplate("Endless Abyss", 0.8, 0.5, "Nightmare", 999, 30, "Endless Abyss"),
)

RARE_SPAWN_ENEMIES: tuple[tuple[str, int], ...] = (
    ("Bandit Leader", 12),
    ("Dark Knight", 18),
    ("Frost Giant", 22),
    ("Manticore", 26),
    ("Wyvern", 30),
)

CHEST_QUALITY_WEIGHTS: Dict[str, int] = {
    "common": 50,
    "uncommon": 30,
    "rare": 15,
    "epic": 5,
}

HIDDEN_PATH_QUALITIES: tuple[str, ...] = ("rare", "epic", "legendary")


@dataclass(slots=True)
class GenerationConfig:
    """Inputs for one world; the defaults follow the live balance."""

    width: int = 50
    height: int = 50
    seed: str = "world"
    town_count: int = 4
    dungeon_count: int = 5
    encounter_count: int = 10
    resource_count: int = 20
    portal_count: int = 6
    hidden_path_count: int = 3
    treasure_chest_count: int = 8
    rare_spawn_count: int = 4
    merchant_count: int = 2
    min_separation: int = 3
    max_placement_attempts: int = 200
    initial_reveal_radius: int = 5
    epoch: Optional[str] = None

    def __post_init__(self) -> None:
        if self.width < 1 or self.height < 1:
            raise ValueError("World dimensions must be positive")
        if not str(self.seed):
            raise ValueError("A generation seed is required")
        self.seed = str(self.seed)
        for name in (
            "town_count",
            "dungeon_count",
            "encounter_count",
            "resource_count",
            "portal_count",
            "hidden_path_count",
            "treasure_chest_count",
            "rare_spawn_count",
            "merchant_count",
            "min_separation",
            "initial_reveal_radius",
        ):
            setattr(self, name, max(0, int(getattr(self, name))))
        self.max_placement_attempts = max(1, int(self.max_placement_attempts))

    @classmethod
    def daily(cls, now: Optional[datetime] = None, **overrides) -> "GenerationConfig":
        moment = parse_timestamp(now) if now is not None else utcnow()
        overrides.setdefault("seed", daily_seed(moment))
        overrides.setdefault("epoch", epoch_for(moment))
        return cls(**overrides)


def epoch_for(now: datetime) -> str:
    """UTC calendar date a world belongs to."""

    return parse_timestamp(now).date().isoformat()


def daily_seed(now: datetime) -> str:
    return f"daily-{epoch_for(now)}"


def terrain_for(value: float) -> Terrain:
    for upper, terrain in TERRAIN_BANDS:
        if value < upper:
            return terrain
    return Terrain.MOUNTAINS


def _chebyshev(a: Position, b: Position) -> int:
    return max(abs(a.x - b.x), abs(a.y - b.y))


class _Placer:
    """Tracks occupied tiles and finds free, passable spots for objects."""

    def __init__(self, tiles: List[List[Tile]], rng: random.Random, config: GenerationConfig) -> None:
        self.tiles = tiles
        self.rng = rng
        self.width = config.width
        self.height = config.height
        self.min_separation = config.min_separation
        self.attempts = config.max_placement_attempts
        self.placed: List[Position] = []

    def _free(self, x: int, y: int) -> bool:
        tile = self.tiles[y][x]
        return tile.passable and tile.static_object is None

    def _spaced(self, position: Position, separation: int) -> bool:
        return all(_chebyshev(position, other) >= separation for other in self.placed)

    def _free_tiles(self) -> List[Position]:
        return [
            Position(x, y)
            for y in range(self.height)
            for x in range(self.width)
            if self._free(x, y)
        ]

    def near(self, anchor: Position) -> Optional[Position]:
        """Closest free tile to ``anchor``, scanning rings outward."""

        limit = max(self.width, self.height)
        for radius in range(limit + 1):
            for dy in range(-radius, radius + 1):
                for dx in range(-radius, radius + 1):
                    if max(abs(dx), abs(dy)) != radius:
                        continue
                    x, y = anchor.x + dx, anchor.y + dy
                    if 0 <= x < self.width and 0 <= y < self.height and self._free(x, y):
                        return Position(x, y)
        return None

    def sample(self, label: str) -> Optional[Position]:
        """Rejection-sample a free tile, relaxing separation when stuck."""

        separation = self.min_separation
        while separation > 0:
            for _ in range(self.attempts):
                position = Position(self.rng.randrange(self.width), self.rng.randrange(self.height))
                if self._free(position.x, position.y) and self._spaced(position, separation):
                    return position
            separation -= 1
            log.warning("Relaxed %s separation to %d", label, separation)

        candidates = self._free_tiles()
        if not candidates:
            log.warning("No free tile left for %s, skipping", label)
            return None
        return self.rng.choice(candidates)

    def claim(self, obj: StaticObject) -> None:
        self.tiles[obj.position.y][obj.position.x].static_object = obj
        self.placed.append(obj.position)


class WorldGenerator:
    """Build a :class:`WorldMap` from a :class:`GenerationConfig`."""

    def generate(self, config: GenerationConfig, now: Optional[datetime] = None) -> WorldMap:
        now = parse_timestamp(now) if now is not None else utcnow()
        rng = random.Random(config.seed)
        log.info("Generating %dx%d world from seed %s", config.width, config.height, config.seed)

        tiles = self._terrain(config, PerlinNoise(rng))
        placer = _Placer(tiles, rng, config)

        towns = self._towns(config, placer)
        dungeons = self._dungeons(config, placer)
        self._roads(tiles, towns)
        portals = self._portals(config, placer)
        hidden_paths = self._scatter(
            config.hidden_path_count, placer, "hidden path", self._hidden_path
        )
        chests = self._scatter(
            config.treasure_chest_count, placer, "treasure chest", self._chest
        )
        rare_spawns = self._scatter(config.rare_spawn_count, placer, "rare spawn", self._rare_spawn)

        static_objects: List[StaticObject] = [
            *towns,
            *dungeons,
            *portals,
            *hidden_paths,
            *chests,
            *rare_spawns,
        ]

        cycle_rng = random.Random(f"{config.seed}:cycles")
        world = WorldMap(
            width=config.width,
            height=config.height,
            seed=config.seed,
            epoch=config.epoch or epoch_for(now),
            tiles=tiles,
            weather=WeatherCycle(cycle_rng).initialize(now),
            time_of_day=TimeOfDayCycle().initialize(now),
            static_objects=static_objects,
        )
        world.dynamic_objects.extend(self._dynamic_objects(config, world, rng, now))

        capital = towns[0]
        reveal(world, capital.position, config.initial_reveal_radius)
        log.info(
            "World %s ready: %d static and %d dynamic object(s), capital at (%d, %d)",
            config.seed,
            len(world.static_objects),
            len(world.dynamic_objects),
            capital.position.x,
            capital.position.y,
        )
        return world

    # -- terrain ---------------------------------------------------------

    def _terrain(self, config: GenerationConfig, noise: PerlinNoise) -> List[List[Tile]]:
        tiles: List[List[Tile]] = []
        for y in range(config.height):
            row = []
            for x in range(config.width):
                value = noise.octave(x * NOISE_SCALE, y * NOISE_SCALE, NOISE_OCTAVES, NOISE_PERSISTENCE)
                row.append(make_tile(terrain_for(value)))
            tiles.append(row)
        return tiles

    @staticmethod
    def _pave(tile: Tile, terrain: Terrain) -> None:
        tile.terrain = terrain
        tile.movement_cost = terrain.movement_cost

    def _roads(self, tiles: List[List[Tile]], towns: Iterable[Town]) -> None:
        towns = list(towns)
        capital = towns[0]
        for town in towns[1:]:
            start, end = capital.position, town.position
            dx, dy = end.x - start.x, end.y - start.y
            steps = max(abs(dx), abs(dy))
            for step in range(steps + 1):
                t = 0.0 if steps == 0 else step / steps
                x = math.floor(start.x + dx * t + 0.5)
                y = math.floor(start.y + dy * t + 0.5)
                tile = tiles[y][x]
                if tile.static_object is None and tile.passable:
                    self._pave(tile, Terrain.ROAD)

    # -- static objects --------------------------------------------------

    def _anchor(self, config: GenerationConfig, fx: float, fy: float) -> Position:
        x = min(config.width - 1, int(config.width * fx))
        y = min(config.height - 1, int(config.height * fy))
        return Position(x, y)

    def _towns(self, config: GenerationConfig, placer: _Placer) -> List[Town]:
        towns: List[Town] = []
        # The capital is always placed, even if that means clearing a tile.
        count = max(1, config.town_count)
        for index in range(count):
            if index < len(TOWN_TEMPLATES):
                template = TOWN_TEMPLATES[index]
                position = placer.near(self._anchor(config, template.fx, template.fy))
                name, level, faction = template.name, template.level, template.faction
            else:
                position = placer.sample("town")
                name, level, faction = f"Village {index - len(TOWN_TEMPLATES) + 1}", 1, "Kingdom"

            if position is None and index == 0:
                position = self._anchor(config, 0.5, 0.5)
                self._pave(placer.tiles[position.y][position.x], Terrain.PLAINS)
            if position is None:
                log.warning("No room for town %s, skipping", name)
                continue

            self._pave(placer.tiles[position.y][position.x], Terrain.PLAINS)
            town = Town(
                id=f"town-{index}",
                name=name,
                position=position,
                level=level,
                faction=faction,
                buildings={
                    "tavern": True,
                    "smithy": level >= 2,
                    "healer": True,
                    "market": level >= 2,
                    "bank": level >= 3,
                },
            )
            placer.claim(town)
            towns.append(town)
        return towns

    def _dungeons(self, config: GenerationConfig, placer: _Placer) -> List[DungeonEntrance]:
        dungeons: List[DungeonEntrance] = []
        for index in range(config.dungeon_count):
            template = DUNGEON_TEMPLATES[index % len(DUNGEON_TEMPLATES)]
            name = template.name
            if index < len(DUNGEON_TEMPLATES):
                position = placer.near(self._anchor(config, template.fx, template.fy))
            else:
                name = f"{template.name} {index // len(DUNGEON_TEMPLATES) + 1}"
                position = placer.sample("dungeon")
            if position is None:
                log.warning("No room for dungeon %s, skipping", name)
                continue
            dungeon = DungeonEntrance(
                id=f"dungeon-{index}",
                name=name,
                position=position,
                difficulty=template.difficulty,
                max_floors=template.max_floors,
                recommended_level=template.level,
                theme=template.theme,
            )
            placer.claim(dungeon)
            dungeons.append(dungeon)
        return dungeons

    def _portals(self, config: GenerationConfig, placer: _Placer) -> List[Portal]:
        portals: List[Portal] = []
        for index in range(config.portal_count):
            position = placer.sample("portal")
            if position is None:
                continue
            portal = Portal(
                id=f"portal-{index}",
                name=f"Ancient Portal {len(portals) + 1}",
                position=position,
                energy_cost=PORTAL_ENERGY_COST,
            )
            placer.claim(portal)
            portals.append(portal)

        # Pair neighbours in placement order; an odd one out stays unlinked.
        for first, second in zip(portals[0::2], portals[1::2]):
            first.linked_portal_id = second.id
            second.linked_portal_id = first.id
        return portals

    def _scatter(
        self,
        count: int,
        placer: _Placer,
        label: str,
        factory: Callable[[int, Position, random.Random], StaticObject],
    ) -> List[StaticObject]:
        placed: List[StaticObject] = []
        for index in range(count):
            position = placer.sample(label)
            if position is None:
                continue
            obj = factory(index, position, placer.rng)
            placer.claim(obj)
            placed.append(obj)
        return placed

    @staticmethod
    def _hidden_path(index: int, position: Position, rng: random.Random) -> HiddenPath:
        return HiddenPath(
            id=f"hidden-path-{index}",
            name=f"Hidden Path {index + 1}",
            position=position,
            required_level=rng.randint(5, 25),
            loot_quality=rng.choice(HIDDEN_PATH_QUALITIES),
        )

    @staticmethod
    def _chest(index: int, position: Position, rng: random.Random) -> TreasureChest:
        qualities = list(CHEST_QUALITY_WEIGHTS)
        weights = [CHEST_QUALITY_WEIGHTS[name] for name in qualities]
        return TreasureChest(
            id=f"chest-{index}",
            name=f"Treasure Chest {index + 1}",
            position=position,
            loot_quality=rng.choices(qualities, weights=weights)[0],
        )

    @staticmethod
    def _rare_spawn(index: int, position: Position, rng: random.Random) -> RareSpawn:
        enemy, level = rng.choice(RARE_SPAWN_ENEMIES)
        return RareSpawn(
            id=f"rare-{index}",
            name=f"{enemy}'s Lair",
            position=position,
            enemy_name=enemy,
            enemy_level=level,
        )

    # -- dynamic objects -------------------------------------------------

    def _open_ground(self, world: WorldMap, rng: random.Random, attempts: int) -> Optional[Position]:
        for _ in range(attempts):
            x, y = rng.randrange(world.width), rng.randrange(world.height)
            tile = world.tiles[y][x]
            if tile.passable and tile.static_object is None and tile.terrain is not Terrain.ROAD:
                return Position(x, y)
        return None

    def _dynamic_objects(
        self,
        config: GenerationConfig,
        world: WorldMap,
        rng: random.Random,
        now: datetime,
    ) -> List:
        objects: List = []
        for index in range(config.encounter_count):
            position = self._open_ground(world, rng, config.max_placement_attempts)
            if position is not None:
                objects.append(dynamic.make_monster(rng, position, index))

        merchants = []
        for index in range(config.merchant_count):
            merchant = dynamic.spawn_merchant(world, rng, now, serial=index, existing=merchants)
            if merchant is not None:
                merchants.append(merchant)
        objects.extend(merchants)

        for index in range(config.resource_count):
            position = self._open_ground(world, rng, config.max_placement_attempts)
            if position is not None:
                objects.append(dynamic.make_resource(rng, position, index))
        return objects


def generate(config: GenerationConfig, now: Optional[datetime] = None) -> WorldMap:
    return WorldGenerator().generate(config, now)


__all__ = [
    "CAPITAL_NAME",
    "GenerationConfig",
    "WorldGenerator",
    "daily_seed",
    "epoch_for",
    "generate",
    "terrain_for",
]
