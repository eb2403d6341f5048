"""Merchants, monsters and resource events on the daily map."""

from __future__ import annotations

import random
import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path

PROJECT_BASE = Path(__file__).resolve().parents[1]
if str(PROJECT_BASE) not in sys.path:
    sys.path.insert(0, str(PROJECT_BASE))

from realm.dynamic import (
    MERCHANT_ITEMS,
    MERCHANT_NAMES,
    WANDERING_MONSTER_RESPAWN_MINUTES,
    make_monster,
    make_resource,
    refresh_dynamic_objects,
    roll_offers,
    spawn_merchant,
)
from realm.models.map import (
    DynamicKind,
    Position,
    Terrain,
    Town,
    dynamic_object_from_mapping,
    dynamic_object_to_mapping,
    make_tile,
)
from realm.models.world import CycleState, WorldMap

NOW = datetime(2025, 1, 1, 12, 0, tzinfo=timezone.utc)


def _make_world(terrain: Terrain = Terrain.PLAINS) -> WorldMap:
    return WorldMap(
        width=6,
        height=6,
        seed="dynamic-test",
        epoch="2025-01-01",
        tiles=[[make_tile(terrain) for _ in range(6)] for _ in range(6)],
        weather=CycleState("clear", "rain", NOW + timedelta(hours=3), 1.0),
        time_of_day=CycleState("day", "dusk", NOW + timedelta(hours=6), {}),
    )


def test_offers_price_within_half_markup() -> None:
    rng = random.Random(4)
    for _ in range(50):
        offers = roll_offers(rng)
        assert 2 <= len(offers) <= 5
        for offer in offers:
            base = next(t.base_price for t in MERCHANT_ITEMS if t.item_type == offer.item_type)
            assert base <= offer.price <= base * 1.5


def test_merchant_spawns_on_safe_ground() -> None:
    world = _make_world()
    world.tiles[0][0] = make_tile(Terrain.WATER)

    merchant = spawn_merchant(world, random.Random(1), NOW, serial=3)

    assert merchant.id == "merchant-3"
    assert merchant.merchant_name in MERCHANT_NAMES
    assert merchant.stays_until == NOW + timedelta(hours=4)
    assert world.tile_at(merchant.position.x, merchant.position.y).passable


def test_merchant_cannot_spawn_on_water_world() -> None:
    world = _make_world(Terrain.WATER)

    assert spawn_merchant(world, random.Random(1), NOW, serial=0) is None


def test_refresh_expires_and_replaces_merchants() -> None:
    world = _make_world()
    rng = random.Random(2)
    assert refresh_dynamic_objects(world, NOW, rng, merchant_count=2)
    merchants = [obj for obj in world.dynamic_objects if obj.kind is DynamicKind.TRAVELING_MERCHANT]
    assert [merchant.id for merchant in merchants] == ["merchant-0", "merchant-1"]
    assert not refresh_dynamic_objects(world, NOW + timedelta(hours=1), rng, merchant_count=2)

    assert refresh_dynamic_objects(world, NOW + timedelta(hours=4), rng, merchant_count=2)

    active = [obj for obj in world.dynamic_objects if obj.kind is DynamicKind.TRAVELING_MERCHANT and obj.is_active]
    assert sorted(merchant.id for merchant in active) == ["merchant-2", "merchant-3"]
    assert not merchants[0].is_active


def test_monster_rearms_after_window() -> None:
    world = _make_world()
    monster = make_monster(random.Random(3), Position(2, 2), 0)
    world.dynamic_objects.append(monster)
    monster.lifecycle.consume(NOW)

    assert not refresh_dynamic_objects(world, NOW + timedelta(minutes=5), merchant_count=0)
    assert monster.defeated
    assert refresh_dynamic_objects(
        world, NOW + timedelta(minutes=WANDERING_MONSTER_RESPAWN_MINUTES), merchant_count=0
    )
    assert monster.is_active


def test_dynamic_objects_round_trip_with_string_timestamps() -> None:
    rng = random.Random(9)
    world = _make_world()
    merchant = spawn_merchant(world, rng, NOW, serial=0)
    monster = make_monster(rng, Position(1, 1), 4)
    monster.lifecycle.consume(NOW)
    resource = make_resource(rng, Position(3, 3), 7)

    for obj in (merchant, monster, resource):
        payload = dynamic_object_to_mapping(obj)
        payload = {
            key: value.isoformat() if isinstance(value, datetime) else value
            for key, value in payload.items()
        }
        restored = dynamic_object_from_mapping(payload)
        assert restored.kind is obj.kind
        assert restored.id == obj.id
        assert restored.position == obj.position

    assert 100 <= resource.amount < 600
    assert resource.id == "resource-7"
    assert monster.id == "monster-4"


def test_merchant_never_spawns_on_a_static_object() -> None:
    world = _make_world()
    for y, row in enumerate(world.tiles):
        for x, tile in enumerate(row):
            if (x, y) != (5, 5):
                tile.static_object = Town(id=f"town-{x}-{y}", name="Town", position=Position(x, y))

    spawned = [spawn_merchant(world, random.Random(seed), NOW, serial=seed) for seed in range(20)]
    placed = [merchant for merchant in spawned if merchant is not None]
    assert placed
    assert all(merchant.position == Position(5, 5) for merchant in placed)

    world.tiles[5][5].static_object = Town(id="town-5-5", name="Town", position=Position(5, 5))
    assert spawn_merchant(world, random.Random(0), NOW, serial=0) is None
