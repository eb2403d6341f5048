from __future__ import annotations

import random
import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path

PROJECT_BASE = Path(__file__).resolve().parents[1]
if str(PROJECT_BASE) not in sys.path:
    sys.path.insert(0, str(PROJECT_BASE))

from realm.fog import DiscoveryLog, explored_locations, is_explored, reveal
from realm.models.map import Position, Terrain, TreasureChest, Town, make_tile
from realm.models.world import CycleState, DiscoveredLocation, WorldMap

NOW = datetime(2025, 1, 1, 12, 0, tzinfo=timezone.utc)


def _make_world(width: int = 9, height: int = 9) -> WorldMap:
    tiles = [[make_tile(Terrain.PLAINS) for _ in range(width)] for _ in range(height)]
    world = WorldMap(
        width=width,
        height=height,
        seed="fog-test",
        epoch="2025-01-01",
        tiles=tiles,
        weather=CycleState("clear", "rain", NOW + timedelta(hours=3), 1.0),
        time_of_day=CycleState("dawn", "day", NOW + timedelta(hours=6), {}),
    )
    for obj in (
        Town(id="town-0", name="Capital", position=Position(4, 4)),
        TreasureChest(id="chest-0", name="Treasure Chest 1", position=Position(7, 4)),
    ):
        world.static_objects.append(obj)
        tiles[obj.position.y][obj.position.x].static_object = obj
    return world


def test_reveal_marks_square_neighbourhood() -> None:
    world = _make_world()

    found = reveal(world, Position(4, 4), 1)

    assert world.explored_count() == 9
    assert is_explored(world, 3, 3)
    assert is_explored(world, 5, 5)
    assert not is_explored(world, 6, 4)
    assert [location.name for location in found] == ["Capital"]


def test_reveal_is_idempotent_and_reports_only_new_objects() -> None:
    world = _make_world()
    reveal(world, Position(4, 4), 1)

    again = reveal(world, Position(4, 4), 1)
    wider = reveal(world, Position(5, 4), 2)

    assert again == []
    assert [location.name for location in wider] == ["Treasure Chest 1"]


def test_reveal_clips_at_grid_edges() -> None:
    world = _make_world()

    reveal(world, Position(0, 0), 2)

    assert world.explored_count() == 9


def test_fog_never_closes_again() -> None:
    world = _make_world()
    rng = random.Random(5)
    explored: set[tuple[int, int]] = set()
    for _ in range(40):
        reveal(world, Position(rng.randrange(-2, 11), rng.randrange(-2, 11)), rng.randrange(0, 3))
        now_explored = {
            (position.x, position.y) for position, tile in world.iter_tiles() if tile.is_explored
        }
        assert explored <= now_explored
        explored = now_explored


def test_is_explored_handles_missing_world_and_bounds() -> None:
    world = _make_world()

    assert not is_explored(None, 0, 0)
    assert not is_explored(world, -1, 0)
    assert not is_explored(world, 0, 99)


def test_discovery_log_deduplicates_by_position() -> None:
    log = DiscoveryLog()
    first = DiscoveredLocation("Capital", 4, 4, "town")

    assert log.add(first)
    assert not log.add(DiscoveredLocation("Renamed", 4, 4, "town"))
    assert len(log) == 1
    assert log.get(4, 4) is first
    assert log.extend([first, DiscoveredLocation("Chest", 7, 4, "treasure_chest")]) == 1
    assert [entry.name for entry in log] == ["Capital", "Chest"]


def test_explored_locations_follow_the_fog() -> None:
    world = _make_world()
    assert list(explored_locations(world)) == []

    reveal(world, Position(7, 4), 0)

    assert [location.kind for location in explored_locations(world)] == ["treasure_chest"]
