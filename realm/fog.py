"""Fog of war and the discovered-location projection."""

from __future__ import annotations

import logging
from typing import Iterable, Iterator, List, Optional

from .models.map import Position, square_around
from .models.world import DiscoveredLocation, WorldMap

log = logging.getLogger(__name__)


def is_explored(world: Optional[WorldMap], x: int, y: int) -> bool:
    if world is None:
        return False
    tile = world.tile_at(x, y)
    return tile is not None and tile.is_explored


def reveal(world: WorldMap, center: Position, radius: int) -> List[DiscoveredLocation]:
    """Explore the square of ``radius`` around ``center``.

    Tiles outside the grid are ignored and already explored tiles are left
    alone.  Returns a location for every static object that became visible.
    """

    found: List[DiscoveredLocation] = []
    newly = 0
    for position in square_around(center, max(0, int(radius))):
        tile = world.tile_at(position.x, position.y)
        if tile is None or tile.is_explored:
            continue
        tile.is_explored = True
        newly += 1
        if tile.static_object is not None:
            found.append(DiscoveredLocation.for_object(tile.static_object))
    if newly:
        log.debug(
            "Revealed %d tile(s) around (%d, %d), %d location(s) found",
            newly,
            center.x,
            center.y,
            len(found),
        )
    return found


def explored_locations(world: WorldMap) -> Iterator[DiscoveredLocation]:
    """Yield a location for every static object on an explored tile."""

    for obj in world.static_objects:
        tile = world.tile_at(obj.position.x, obj.position.y)
        if tile is not None and tile.is_explored:
            yield DiscoveredLocation.for_object(obj)


class DiscoveryLog:
    """Append-only list of discovered locations, unique by coordinate."""

    __slots__ = ("_entries", "_seen")

    def __init__(self, entries: Iterable[DiscoveredLocation] = ()) -> None:
        self._entries: List[DiscoveredLocation] = []
        self._seen: set[tuple[int, int]] = set()
        for entry in entries:
            self.add(entry)

    def add(self, location: DiscoveredLocation) -> bool:
        key = (location.x, location.y)
        if key in self._seen:
            return False
        self._seen.add(key)
        self._entries.append(location)
        return True

    def extend(self, locations: Iterable[DiscoveredLocation]) -> int:
        return sum(1 for location in locations if self.add(location))

    def contains(self, x: int, y: int) -> bool:
        return (x, y) in self._seen

    def get(self, x: int, y: int) -> Optional[DiscoveredLocation]:
        for entry in self._entries:
            if entry.x == x and entry.y == y:
                return entry
        return None

    def entries(self) -> List[DiscoveredLocation]:
        return list(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[DiscoveredLocation]:
        return iter(list(self._entries))


__all__ = ["DiscoveryLog", "explored_locations", "is_explored", "reveal"]
