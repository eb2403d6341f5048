"""Spawning and refreshing of the world's dynamic objects."""

from __future__ import annotations

import logging
import random
from dataclasses import dataclass
from datetime import datetime, timedelta
from types import MappingProxyType
from typing import Iterable, List, Mapping, Optional

from .models.map import (
    DynamicKind,
    MerchantOffer,
    Position,
    Rearming,
    Terrain,
    TravelingMerchant,
    WanderingMonster,
    WorldEvent,
    parse_timestamp,
)
from .models.world import WorldMap

log = logging.getLogger(__name__)

WANDERING_MONSTER_RESPAWN_MINUTES = 30
TRAVELING_MERCHANT_STAY_HOURS = 4
MERCHANT_SPAWN_ATTEMPTS = 100

WANDERING_ENEMIES: tuple[str, ...] = (
    "Dire Wolf",
    "Troll",
    "Ogre",
    "Harpy",
    "Frost Giant",
    "Manticore",
    "Wyvern",
)

MERCHANT_NAMES: tuple[str, ...] = (
    "Wandering Trader Marcus",
    "Mysterious Merchant Aria",
    "Desert Vendor Khalid",
    "Forest Merchant Elena",
    "Mountain Trader Boris",
    "Coastal Vendor Luna",
)


@dataclass(frozen=True, slots=True)
class _OfferTemplate:
    item_type: str
    rarity: str
    base_price: int


MERCHANT_ITEMS: tuple[_OfferTemplate, ...] = (
    _OfferTemplate("Healing Potion", "uncommon", 50),
    _OfferTemplate("Mana Potion", "uncommon", 50),
    _OfferTemplate("Rare Gem", "rare", 200),
    _OfferTemplate("Ancient Scroll", "rare", 300),
    _OfferTemplate("Legendary Weapon Fragment", "epic", 1000),
    _OfferTemplate("Mystic Armor Piece", "epic", 1200),
)

RESOURCE_TYPES: tuple[str, ...] = ("gold", "wood", "stone", "ore", "gems")

# Merchants avoid these; monsters and resources also keep off roads.
_MERCHANT_BLOCKED: frozenset = frozenset({Terrain.WATER, Terrain.MOUNTAINS})

MONSTER_LEVEL_RANGE: Mapping[str, int] = MappingProxyType({"min": 1, "max": 10})


def _merchant_tile_ok(world: WorldMap, x: int, y: int, merchants: Iterable[TravelingMerchant]) -> bool:
    tile = world.tile_at(x, y)
    if tile is None or tile.terrain in _MERCHANT_BLOCKED:
        return False
    if tile.static_object is not None:
        return False
    return not any(
        merchant.is_active and merchant.position.x == x and merchant.position.y == y
        for merchant in merchants
    )


def roll_offers(rng: random.Random) -> List[MerchantOffer]:
    offers: List[MerchantOffer] = []
    for _ in range(rng.randint(2, 5)):
        template = rng.choice(MERCHANT_ITEMS)
        price = template.base_price + int(rng.random() * template.base_price * 0.5)
        offers.append(MerchantOffer(template.item_type, price, template.rarity))
    return offers


def spawn_merchant(
    world: WorldMap,
    rng: random.Random,
    now: datetime,
    *,
    serial: int,
    existing: Iterable[TravelingMerchant] = (),
    stay_hours: int = TRAVELING_MERCHANT_STAY_HOURS,
) -> Optional[TravelingMerchant]:
    """Create a merchant on a random safe tile or return ``None``."""

    existing = list(existing)
    for _ in range(MERCHANT_SPAWN_ATTEMPTS):
        x = rng.randrange(world.width)
        y = rng.randrange(world.height)
        if _merchant_tile_ok(world, x, y, existing):
            return TravelingMerchant(
                id=f"merchant-{serial}",
                position=Position(x, y),
                merchant_name=rng.choice(MERCHANT_NAMES),
                stays_until=parse_timestamp(now) + timedelta(hours=stay_hours),
                offers=roll_offers(rng),
            )
    log.warning("Could not find a free tile for a traveling merchant")
    return None


def make_monster(rng: random.Random, position: Position, serial: int) -> WanderingMonster:
    return WanderingMonster(
        id=f"monster-{serial}",
        position=position,
        enemy_name=rng.choice(WANDERING_ENEMIES),
        enemy_level=rng.randint(MONSTER_LEVEL_RANGE["min"], MONSTER_LEVEL_RANGE["max"]),
        enemy_count=rng.randint(1, 3),
        lifecycle=Rearming(respawn_minutes=WANDERING_MONSTER_RESPAWN_MINUTES),
    )


def make_resource(rng: random.Random, position: Position, serial: int) -> WorldEvent:
    return WorldEvent(
        id=f"resource-{serial}",
        position=position,
        event_type="resource",
        resource_type=rng.choice(RESOURCE_TYPES),
        amount=rng.randint(100, 599),
    )


def _next_merchant_serial(world: WorldMap) -> int:
    serials = []
    for obj in world.dynamic_objects:
        if obj.kind is not DynamicKind.TRAVELING_MERCHANT:
            continue
        _, _, tail = obj.id.rpartition("-")
        if tail.isdigit():
            serials.append(int(tail))
    return max(serials, default=-1) + 1


def refresh_dynamic_objects(
    world: WorldMap,
    now: datetime,
    rng: Optional[random.Random] = None,
    *,
    merchant_count: int = 2,
) -> bool:
    """Re-arm monsters, expire merchants and top merchants back up.

    Returns ``True`` when anything in ``world.dynamic_objects`` changed.
    """

    now = parse_timestamp(now)
    rng = rng or random.Random()
    changed = False

    merchants: List[TravelingMerchant] = []
    for obj in world.dynamic_objects:
        if obj.kind is DynamicKind.WANDERING_MONSTER:
            if obj.lifecycle.rearm_if_due(now):
                log.debug("Respawned %s at (%d, %d)", obj.enemy_name, obj.position.x, obj.position.y)
                changed = True
        elif obj.kind is DynamicKind.TRAVELING_MERCHANT:
            if obj.is_active and now >= parse_timestamp(obj.stays_until):
                obj.is_active = False
                log.debug("%s left (%d, %d)", obj.merchant_name, obj.position.x, obj.position.y)
                changed = True
            merchants.append(obj)
        elif obj.kind is DynamicKind.EVENT:
            continue
        else:
            raise ValueError(f"Unknown dynamic object kind: {obj.kind}")

    active = sum(1 for merchant in merchants if merchant.is_active)
    serial = _next_merchant_serial(world)
    for _ in range(max(0, merchant_count - active)):
        merchant = spawn_merchant(world, rng, now, serial=serial, existing=merchants)
        if merchant is None:
            break
        serial += 1
        merchants.append(merchant)
        world.dynamic_objects.append(merchant)
        log.info(
            "%s arrived at (%d, %d)",
            merchant.merchant_name,
            merchant.position.x,
            merchant.position.y,
        )
        changed = True

    return changed


__all__ = [
    "MERCHANT_ITEMS",
    "MERCHANT_NAMES",
    "RESOURCE_TYPES",
    "TRAVELING_MERCHANT_STAY_HOURS",
    "WANDERING_ENEMIES",
    "WANDERING_MONSTER_RESPAWN_MINUTES",
    "make_monster",
    "make_resource",
    "refresh_dynamic_objects",
    "roll_offers",
    "spawn_merchant",
]
