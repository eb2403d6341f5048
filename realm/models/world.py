"""World map container, cycle state and discovery models."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Iterator, List, Mapping, Optional

from ._validation import FieldSpec, ModelValidator, is_non_empty_str
from .map import (
    DynamicObject,
    Position,
    StaticKind,
    StaticObject,
    Terrain,
    Tile,
    dynamic_object_from_mapping,
    dynamic_object_to_mapping,
    make_tile,
    parse_timestamp,
    static_object_from_mapping,
    static_object_to_mapping,
)


@dataclass(slots=True)
class CycleState:
    """Current phase of a cycle plus the pre-computed next phase.

    ``modifier`` is derived from ``current`` by the owning cycle (spawn-rate
    multiplier for weather, enemy eligibility flags for time of day).
    """

    current: str
    next: str
    changes_at: datetime
    modifier: Any = None

    def to_mapping(self) -> Dict[str, Any]:
        return {
            "current": self.current,
            "next": self.next,
            "changes_at": self.changes_at,
            "modifier": dict(self.modifier) if isinstance(self.modifier, Mapping) else self.modifier,
        }

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "CycleState":
        modifier = data.get("modifier")
        if isinstance(modifier, Mapping):
            modifier = dict(modifier)
        return cls(
            current=str(data["current"]),
            next=str(data["next"]),
            changes_at=parse_timestamp(data["changes_at"]),
            modifier=modifier,
        )


@dataclass(frozen=True, slots=True)
class DiscoveredLocation:
    name: str
    x: int
    y: int
    kind: str

    @property
    def position(self) -> Position:
        return Position(self.x, self.y)

    def to_mapping(self) -> Dict[str, Any]:
        return {"name": self.name, "x": self.x, "y": self.y, "kind": self.kind}

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "DiscoveredLocation":
        payload = DiscoveredLocationValidator.validate(data)
        return cls(
            name=payload["name"],
            x=int(payload["x"]),
            y=int(payload["y"]),
            kind=str(payload["kind"]),
        )

    @classmethod
    def for_object(cls, obj: StaticObject) -> "DiscoveredLocation":
        return cls(name=obj.name, x=obj.position.x, y=obj.position.y, kind=obj.kind.value)


class DiscoveredLocationValidator(ModelValidator):
    model = DiscoveredLocation
    fields = {
        "name": FieldSpec(is_non_empty_str, "a location name"),
        "x": FieldSpec(int, "an integer x coordinate"),
        "y": FieldSpec(int, "an integer y coordinate"),
        "kind": FieldSpec(is_non_empty_str, "an object kind"),
    }


@dataclass(slots=True)
class WorldMap:
    """One generated world; replaced wholesale when the daily epoch rolls."""

    width: int
    height: int
    seed: str
    epoch: str
    tiles: List[List[Tile]]
    weather: CycleState
    time_of_day: CycleState
    static_objects: List[StaticObject] = field(default_factory=list)
    dynamic_objects: List[DynamicObject] = field(default_factory=list)

    def in_bounds(self, x: int, y: int) -> bool:
        return 0 <= x < self.width and 0 <= y < self.height

    def tile_at(self, x: int, y: int) -> Optional[Tile]:
        if not self.in_bounds(x, y):
            return None
        return self.tiles[y][x]

    def iter_tiles(self) -> Iterator[tuple[Position, Tile]]:
        for y, row in enumerate(self.tiles):
            for x, tile in enumerate(row):
                yield Position(x, y), tile

    def explored_count(self) -> int:
        return sum(1 for _, tile in self.iter_tiles() if tile.is_explored)

    def find_static(self, object_id: str) -> Optional[StaticObject]:
        for obj in self.static_objects:
            if obj.id == object_id:
                return obj
        return None

    def find_static_named(self, name: str) -> Optional[StaticObject]:
        for obj in self.static_objects:
            if obj.name == name:
                return obj
        return None

    def statics_of(self, kind: StaticKind) -> List[StaticObject]:
        return [obj for obj in self.static_objects if obj.kind is kind]

    def active_dynamic_at(self, x: int, y: int) -> Optional[DynamicObject]:
        for obj in self.dynamic_objects:
            if obj.position.x == x and obj.position.y == y and obj.is_active:
                return obj
        return None

    def to_mapping(self) -> Dict[str, Any]:
        return {
            "width": self.width,
            "height": self.height,
            "seed": self.seed,
            "epoch": self.epoch,
            "terrain": [
                "".join(_TERRAIN_CODES[tile.terrain] for tile in row) for row in self.tiles
            ],
            "explored": [
                "".join("1" if tile.is_explored else "0" for tile in row)
                for row in self.tiles
            ],
            "weather": self.weather.to_mapping(),
            "time_of_day": self.time_of_day.to_mapping(),
            "static_objects": [static_object_to_mapping(obj) for obj in self.static_objects],
            "dynamic_objects": [dynamic_object_to_mapping(obj) for obj in self.dynamic_objects],
        }

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "WorldMap":
        payload = WorldMapValidator.validate(data)
        width = int(payload["width"])
        height = int(payload["height"])
        terrain_rows = list(payload["terrain"])
        explored_rows = list(payload.get("explored") or [])
        if len(terrain_rows) != height or any(len(row) != width for row in terrain_rows):
            raise ValueError("Stored terrain does not match the world dimensions")

        tiles: List[List[Tile]] = []
        for y, row in enumerate(terrain_rows):
            explored = explored_rows[y] if y < len(explored_rows) else ""
            tile_row: List[Tile] = []
            for x, code in enumerate(row):
                tile = make_tile(_TERRAIN_FROM_CODE[code])
                tile.is_explored = x < len(explored) and explored[x] == "1"
                tile_row.append(tile)
            tiles.append(tile_row)

        static_objects = [static_object_from_mapping(item) for item in payload.get("static_objects", [])]
        for obj in static_objects:
            tiles[obj.position.y][obj.position.x].static_object = obj

        return cls(
            width=width,
            height=height,
            seed=str(payload["seed"]),
            epoch=str(payload["epoch"]),
            tiles=tiles,
            weather=CycleState.from_mapping(payload["weather"]),
            time_of_day=CycleState.from_mapping(payload["time_of_day"]),
            static_objects=static_objects,
            dynamic_objects=[
                dynamic_object_from_mapping(item) for item in payload.get("dynamic_objects", [])
            ],
        )


class WorldMapValidator(ModelValidator):
    model = WorldMap
    fields = {
        "width": FieldSpec(int, "an integer width"),
        "height": FieldSpec(int, "an integer height"),
        "seed": FieldSpec(is_non_empty_str, "the generation seed"),
        "epoch": FieldSpec(is_non_empty_str, "the daily epoch"),
        "terrain": FieldSpec(list, "a list of terrain rows"),
        "weather": FieldSpec(dict, "a weather state table"),
        "time_of_day": FieldSpec(dict, "a time of day state table"),
    }


_TERRAIN_CODES: Dict[Terrain, str] = {
    Terrain.PLAINS: "p",
    Terrain.FOREST: "f",
    Terrain.MOUNTAINS: "m",
    Terrain.WATER: "w",
    Terrain.ROAD: "r",
    Terrain.DESERT: "d",
    Terrain.SWAMP: "s",
}
_TERRAIN_FROM_CODE: Dict[str, Terrain] = {code: terrain for terrain, code in _TERRAIN_CODES.items()}


__all__ = [
    "CycleState",
    "DiscoveredLocation",
    "WorldMap",
]
