"""Tile grid and map object models for the daily world.

Map objects are tagged variants: every object carries a ``kind`` value and the
code that consumes them branches on it.  Static objects keep one-shot state
(opened chests, discovered paths, defeated rare spawns) while dynamic objects
re-arm after a time window.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from types import MappingProxyType
from typing import Any, Dict, Iterator, List, Mapping, Optional, Union


# ---------------------------------------------------------------------------
# Core map primitives
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class Position:
    """Integer grid coordinate."""

    x: int
    y: int

    def to_mapping(self) -> Dict[str, int]:
        return {"x": self.x, "y": self.y}

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "Position":
        return cls(int(data["x"]), int(data["y"]))


class Terrain(str, Enum):
    """Terrain bands produced by the generator."""

    PLAINS = "plains"
    FOREST = "forest"
    MOUNTAINS = "mountains"
    WATER = "water"
    ROAD = "road"
    DESERT = "desert"
    SWAMP = "swamp"

    @property
    def movement_cost(self) -> int:
        return TERRAIN_MOVEMENT_COST[self]

    @property
    def passable(self) -> bool:
        return self not in IMPASSABLE_TERRAIN


TERRAIN_MOVEMENT_COST: Mapping[Terrain, int] = MappingProxyType(
    {
        Terrain.PLAINS: 100,
        Terrain.FOREST: 150,
        Terrain.MOUNTAINS: 250,
        Terrain.WATER: 9999,
        Terrain.ROAD: 75,
        Terrain.DESERT: 175,
        Terrain.SWAMP: 200,
    }
)

IMPASSABLE_TERRAIN = frozenset({Terrain.WATER, Terrain.MOUNTAINS})


# ---------------------------------------------------------------------------
# Object lifecycles
# ---------------------------------------------------------------------------


@dataclass(slots=True)
class OneShot:
    """Flag that flips to consumed once and never resets."""

    consumed: bool = False
    consumed_at: Optional[datetime] = None

    def consume(self, now: datetime) -> bool:
        """Mark consumed; return ``False`` if it already was."""

        if self.consumed:
            return False
        self.consumed = True
        self.consumed_at = now
        return True

    def to_mapping(self) -> Dict[str, Any]:
        return {"consumed": self.consumed, "consumed_at": self.consumed_at}

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any] | None) -> "OneShot":
        if not data:
            return cls()
        consumed_at = data.get("consumed_at")
        return cls(
            consumed=bool(data.get("consumed", False)),
            consumed_at=parse_timestamp(consumed_at) if consumed_at else None,
        )


@dataclass(slots=True)
class Rearming:
    """Defeat flag that becomes eligible again after ``respawn_minutes``."""

    respawn_minutes: int
    defeated: bool = False
    eligible_at: Optional[datetime] = None

    def consume(self, now: datetime) -> bool:
        if self.defeated:
            return False
        self.defeated = True
        self.eligible_at = now + timedelta(minutes=self.respawn_minutes)
        return True

    def rearm_if_due(self, now: datetime) -> bool:
        if not self.defeated or self.eligible_at is None:
            return False
        if now < self.eligible_at:
            return False
        self.defeated = False
        self.eligible_at = None
        return True

    def to_mapping(self) -> Dict[str, Any]:
        return {
            "respawn_minutes": self.respawn_minutes,
            "defeated": self.defeated,
            "eligible_at": self.eligible_at,
        }

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "Rearming":
        eligible_at = data.get("eligible_at")
        return cls(
            respawn_minutes=int(data.get("respawn_minutes", 30)),
            defeated=bool(data.get("defeated", False)),
            eligible_at=parse_timestamp(eligible_at) if eligible_at else None,
        )


# ---------------------------------------------------------------------------
# Static objects
# ---------------------------------------------------------------------------


class StaticKind(str, Enum):
    TOWN = "town"
    DUNGEON = "dungeon"
    PORTAL = "portal"
    HIDDEN_PATH = "hidden_path"
    TREASURE_CHEST = "treasure_chest"
    RARE_SPAWN = "rare_spawn"


@dataclass(slots=True)
class Town:
    id: str
    name: str
    position: Position
    level: int = 1
    faction: str = "Kingdom"
    buildings: Dict[str, bool] = field(default_factory=dict)
    kind: StaticKind = field(default=StaticKind.TOWN, init=False)


@dataclass(slots=True)
class DungeonEntrance:
    id: str
    name: str
    position: Position
    difficulty: str = "Easy"
    max_floors: int = 10
    recommended_level: int = 1
    theme: str = ""
    kind: StaticKind = field(default=StaticKind.DUNGEON, init=False)


@dataclass(slots=True)
class Portal:
    id: str
    name: str
    position: Position
    linked_portal_id: Optional[str] = None
    energy_cost: int = 20
    kind: StaticKind = field(default=StaticKind.PORTAL, init=False)


@dataclass(slots=True)
class HiddenPath:
    id: str
    name: str
    position: Position
    required_level: int = 1
    loot_quality: str = "rare"
    state: OneShot = field(default_factory=OneShot)
    kind: StaticKind = field(default=StaticKind.HIDDEN_PATH, init=False)

    @property
    def discovered(self) -> bool:
        return self.state.consumed


@dataclass(slots=True)
class TreasureChest:
    id: str
    name: str
    position: Position
    loot_quality: str = "common"
    state: OneShot = field(default_factory=OneShot)
    kind: StaticKind = field(default=StaticKind.TREASURE_CHEST, init=False)

    @property
    def opened(self) -> bool:
        return self.state.consumed


@dataclass(slots=True)
class RareSpawn:
    id: str
    name: str
    position: Position
    enemy_name: str = ""
    enemy_level: int = 1
    state: OneShot = field(default_factory=OneShot)
    kind: StaticKind = field(default=StaticKind.RARE_SPAWN, init=False)

    @property
    def defeated(self) -> bool:
        return self.state.consumed


StaticObject = Union[Town, DungeonEntrance, Portal, HiddenPath, TreasureChest, RareSpawn]

_STATIC_TYPES: Mapping[StaticKind, type] = MappingProxyType(
    {
        StaticKind.TOWN: Town,
        StaticKind.DUNGEON: DungeonEntrance,
        StaticKind.PORTAL: Portal,
        StaticKind.HIDDEN_PATH: HiddenPath,
        StaticKind.TREASURE_CHEST: TreasureChest,
        StaticKind.RARE_SPAWN: RareSpawn,
    }
)


# ---------------------------------------------------------------------------
# Dynamic objects
# ---------------------------------------------------------------------------


class DynamicKind(str, Enum):
    WANDERING_MONSTER = "wandering_monster"
    TRAVELING_MERCHANT = "traveling_merchant"
    EVENT = "event"


@dataclass(slots=True)
class MerchantOffer:
    item_type: str
    price: int
    rarity: str = "uncommon"


@dataclass(slots=True)
class WanderingMonster:
    id: str
    position: Position
    enemy_name: str
    enemy_level: int = 1
    enemy_count: int = 1
    lifecycle: Rearming = field(default_factory=lambda: Rearming(respawn_minutes=30))
    kind: DynamicKind = field(default=DynamicKind.WANDERING_MONSTER, init=False)

    @property
    def defeated(self) -> bool:
        return self.lifecycle.defeated

    @property
    def respawn_minutes(self) -> int:
        return self.lifecycle.respawn_minutes

    @property
    def is_active(self) -> bool:
        return not self.lifecycle.defeated


@dataclass(slots=True)
class TravelingMerchant:
    id: str
    position: Position
    merchant_name: str
    stays_until: datetime
    offers: List[MerchantOffer] = field(default_factory=list)
    is_active: bool = True
    kind: DynamicKind = field(default=DynamicKind.TRAVELING_MERCHANT, init=False)


@dataclass(slots=True)
class WorldEvent:
    id: str
    position: Position
    event_type: str
    resource_type: Optional[str] = None
    amount: int = 0
    is_active: bool = True
    kind: DynamicKind = field(default=DynamicKind.EVENT, init=False)


DynamicObject = Union[WanderingMonster, TravelingMerchant, WorldEvent]


# ---------------------------------------------------------------------------
# Tiles
# ---------------------------------------------------------------------------


@dataclass(slots=True)
class Tile:
    terrain: Terrain
    movement_cost: int
    is_explored: bool = False
    static_object: Optional[StaticObject] = None

    @property
    def passable(self) -> bool:
        return self.terrain.passable


def make_tile(terrain: Terrain) -> Tile:
    return Tile(terrain=terrain, movement_cost=terrain.movement_cost)


# ---------------------------------------------------------------------------
# Serialisation
# ---------------------------------------------------------------------------


def static_object_to_mapping(obj: StaticObject) -> Dict[str, Any]:
    payload: Dict[str, Any] = {
        "kind": obj.kind.value,
        "id": obj.id,
        "name": obj.name,
        "position": obj.position.to_mapping(),
    }
    if obj.kind is StaticKind.TOWN:
        payload.update(level=obj.level, faction=obj.faction, buildings=dict(obj.buildings))
    elif obj.kind is StaticKind.DUNGEON:
        payload.update(
            difficulty=obj.difficulty,
            max_floors=obj.max_floors,
            recommended_level=obj.recommended_level,
            theme=obj.theme,
        )
    elif obj.kind is StaticKind.PORTAL:
        payload.update(linked_portal_id=obj.linked_portal_id, energy_cost=obj.energy_cost)
    elif obj.kind is StaticKind.HIDDEN_PATH:
        payload.update(
            required_level=obj.required_level,
            loot_quality=obj.loot_quality,
            state=obj.state.to_mapping(),
        )
    elif obj.kind is StaticKind.TREASURE_CHEST:
        payload.update(loot_quality=obj.loot_quality, state=obj.state.to_mapping())
    elif obj.kind is StaticKind.RARE_SPAWN:
        payload.update(
            enemy_name=obj.enemy_name,
            enemy_level=obj.enemy_level,
            state=obj.state.to_mapping(),
        )
    else:
        raise ValueError(f"Unknown static object kind: {obj.kind}")
    return payload


def static_object_from_mapping(data: Mapping[str, Any]) -> StaticObject:
    payload = dict(data)
    kind = StaticKind(payload.pop("kind"))
    payload["position"] = Position.from_mapping(payload["position"])
    if "state" in payload:
        payload["state"] = OneShot.from_mapping(payload["state"])
    try:
        cls = _STATIC_TYPES[kind]
    except KeyError:
        raise ValueError(f"Unknown static object kind: {kind}") from None
    return cls(**payload)


def dynamic_object_to_mapping(obj: DynamicObject) -> Dict[str, Any]:
    payload: Dict[str, Any] = {
        "kind": obj.kind.value,
        "id": obj.id,
        "position": obj.position.to_mapping(),
    }
    if obj.kind is DynamicKind.WANDERING_MONSTER:
        payload.update(
            enemy_name=obj.enemy_name,
            enemy_level=obj.enemy_level,
            enemy_count=obj.enemy_count,
            lifecycle=obj.lifecycle.to_mapping(),
        )
    elif obj.kind is DynamicKind.TRAVELING_MERCHANT:
        payload.update(
            merchant_name=obj.merchant_name,
            stays_until=obj.stays_until,
            is_active=obj.is_active,
            offers=[
                {"item_type": offer.item_type, "price": offer.price, "rarity": offer.rarity}
                for offer in obj.offers
            ],
        )
    elif obj.kind is DynamicKind.EVENT:
        payload.update(
            event_type=obj.event_type,
            resource_type=obj.resource_type,
            amount=obj.amount,
            is_active=obj.is_active,
        )
    else:
        raise ValueError(f"Unknown dynamic object kind: {obj.kind}")
    return payload


def dynamic_object_from_mapping(data: Mapping[str, Any]) -> DynamicObject:
    kind = DynamicKind(data["kind"])
    position = Position.from_mapping(data["position"])
    if kind is DynamicKind.WANDERING_MONSTER:
        return WanderingMonster(
            id=str(data["id"]),
            position=position,
            enemy_name=str(data.get("enemy_name", "")),
            enemy_level=int(data.get("enemy_level", 1)),
            enemy_count=int(data.get("enemy_count", 1)),
            lifecycle=Rearming.from_mapping(data.get("lifecycle", {})),
        )
    if kind is DynamicKind.TRAVELING_MERCHANT:
        return TravelingMerchant(
            id=str(data["id"]),
            position=position,
            merchant_name=str(data.get("merchant_name", "")),
            stays_until=parse_timestamp(data["stays_until"]),
            offers=[MerchantOffer(**offer) for offer in data.get("offers", [])],
            is_active=bool(data.get("is_active", True)),
        )
    if kind is DynamicKind.EVENT:
        return WorldEvent(
            id=str(data["id"]),
            position=position,
            event_type=str(data.get("event_type", "")),
            resource_type=data.get("resource_type"),
            amount=int(data.get("amount", 0)),
            is_active=bool(data.get("is_active", True)),
        )
    raise ValueError(f"Unknown dynamic object kind: {kind}")


# ---------------------------------------------------------------------------
# Utility helpers
# ---------------------------------------------------------------------------


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def parse_timestamp(value: datetime | str | int | float) -> datetime:
    """Accept a datetime, an ISO string or epoch seconds and return aware UTC."""

    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, (int, float)) and not isinstance(value, bool):
        parsed = datetime.fromtimestamp(float(value), tz=timezone.utc)
    elif isinstance(value, str):
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            raise ValueError(f"Invalid timestamp: {value!r}") from None
    else:
        raise TypeError(f"Unsupported timestamp type: {type(value).__name__}")
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def manhattan_distance(a: Position, b: Position) -> int:
    return abs(a.x - b.x) + abs(a.y - b.y)


def square_around(center: Position, radius: int) -> Iterator[Position]:
    """Yield every position in the Chebyshev neighbourhood of ``center``."""

    for dy in range(-radius, radius + 1):
        for dx in range(-radius, radius + 1):
            yield Position(center.x + dx, center.y + dy)
