"""Player actions on the world map.

:class:`WorldEngine` validates every action against the in-memory state held
by :class:`realm.state.WorldStateStore`, spends energy, moves the player and
reveals fog.  All checks happen before the first mutation, so a rejected
action leaves the store untouched.  Routes are computed with networkx over the
explored, passable part of the grid.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Iterable, List, Optional

import networkx as nx

from ..config import EngineConfig
from ..energy import (
    DUNGEON_ENTRY_COST,
    TELEPORT_COST,
    EnergySpend,
    movement_cost,
)
from ..errors import InsufficientResource, RejectionReason, ValidationError
from ..fog import reveal
from ..models.map import (
    DynamicKind,
    Position,
    StaticKind,
    manhattan_distance,
    parse_timestamp,
    utcnow,
)
from ..models.world import DiscoveredLocation, WorldMap
from ..state import WorldStateStore
from .events import (
    CombatOutcome,
    CombatResolver,
    Encounter,
    InteractionOutcome,
    InteractionStatus,
    MoveResult,
)

log = logging.getLogger(__name__)

# Square radius uncovered around the player after moving or using a portal.
FOG_REVEAL_RADIUS = 3

# Objects can be used from their own tile or any tile touching it.
INTERACTION_RANGE = 1


def walkable_graph(world: WorldMap, *, include: Iterable[Position] = ()) -> nx.Graph:
    """Graph of explored passable tiles joined to their four neighbours."""

    graph = nx.Graph()
    extra = set(include)
    for position, tile in world.iter_tiles():
        if (tile.is_explored and tile.passable) or position in extra:
            graph.add_node(position)
    for node in list(graph.nodes):
        for neighbour in (Position(node.x + 1, node.y), Position(node.x, node.y + 1)):
            if neighbour in graph:
                graph.add_edge(node, neighbour)
    return graph


def find_route(world: WorldMap, start: Position, goal: Position) -> Optional[List[Position]]:
    graph = walkable_graph(world, include=(start,))
    if goal not in graph:
        return None
    try:
        return nx.shortest_path(graph, start, goal)
    except nx.NetworkXNoPath:
        return None


class WorldEngine:
    """Action paths gated by fog, terrain and energy."""

    def __init__(self, store: WorldStateStore, *, unlimited_energy: bool = False) -> None:
        self.store = store
        self.unlimited_energy = unlimited_energy
        if unlimited_energy:
            log.warning("Unlimited energy is enabled for %s", store.player_id)

    @classmethod
    def from_config(cls, store: WorldStateStore, config: EngineConfig) -> "WorldEngine":
        return cls(store, unlimited_energy=config.unlimited_energy)

    # -- shared checks ---------------------------------------------------

    def _now(self, now: Optional[datetime]) -> datetime:
        moment = parse_timestamp(now) if now is not None else utcnow()
        # The first action after midnight UTC lands in the new day's world.
        self.store.ensure_world(moment)
        self.store.player.energy.regenerate_since(moment)
        return moment

    def _position(self, world: WorldMap) -> Position:
        position = self.store.player.position
        if position is None:
            raise ValidationError(RejectionReason.NO_WORLD, "Player has no position on the map")
        return position

    def _check_energy(self, cost: int) -> EnergySpend:
        result = self.store.player.energy.check(cost, unlimited=self.unlimited_energy)
        result.raise_for_shortfall()
        return result

    def _spend(self, cost: int) -> None:
        self.store.player.energy.spend(cost, unlimited=self.unlimited_energy)

    def _relocate(self, target: Position, radius: Optional[int]) -> List[DiscoveredLocation]:
        world = self.store.require_world()
        self.store.player.position = target
        found: List[DiscoveredLocation] = []
        if radius is not None:
            for location in reveal(world, target, radius):
                if self.store.player.discoveries.add(location):
                    found.append(location)
        self.store.mark_dirty()
        return found

    def _target_tile(self, world: WorldMap, x: int, y: int):
        tile = world.tile_at(x, y)
        if tile is None:
            raise ValidationError(
                RejectionReason.OUT_OF_BOUNDS,
                f"({x}, {y}) is outside the map",
                details={"x": x, "y": y},
            )
        if not tile.is_explored:
            raise ValidationError(
                RejectionReason.UNEXPLORED,
                f"({x}, {y}) has not been explored",
                details={"x": x, "y": y},
            )
        return tile

    # -- actions ---------------------------------------------------------

    def move(self, x: int, y: int, now: Optional[datetime] = None) -> MoveResult:
        self._now(now)
        world = self.store.require_world()
        start = self._position(world)
        tile = self._target_tile(world, x, y)
        if not tile.passable:
            raise ValidationError(
                RejectionReason.IMPASSABLE,
                f"{tile.terrain.value.title()} at ({x}, {y}) cannot be crossed",
                details={"x": x, "y": y, "terrain": tile.terrain.value},
            )

        goal = Position(x, y)
        if goal == start:
            return MoveResult(position=start, cost=0, path=(start,))
        route = find_route(world, start, goal)
        if route is None:
            raise ValidationError(
                RejectionReason.UNREACHABLE,
                f"No explored route to ({x}, {y})",
                details={"x": x, "y": y},
            )

        cost = movement_cost(manhattan_distance(start, goal), tile)
        self._check_energy(cost)

        self._spend(cost)
        found = self._relocate(goal, FOG_REVEAL_RADIUS)
        log.debug("Moved %s to (%d, %d) for %d energy", self.store.player_id, x, y, cost)
        return MoveResult(position=goal, cost=cost, path=tuple(route), discovered=tuple(found))

    def enter_dungeon(self, dungeon_id: str, now: Optional[datetime] = None) -> InteractionOutcome:
        self._now(now)
        world = self.store.require_world()
        dungeon = world.find_static(dungeon_id)
        if dungeon is None or dungeon.kind is not StaticKind.DUNGEON:
            raise ValidationError(
                RejectionReason.UNKNOWN_OBJECT,
                f"Unknown dungeon: {dungeon_id}",
                details={"object_id": dungeon_id},
            )
        self._target_tile(world, dungeon.position.x, dungeon.position.y)
        self._check_energy(DUNGEON_ENTRY_COST)

        self._spend(DUNGEON_ENTRY_COST)
        self.store.player.discoveries.add(DiscoveredLocation.for_object(dungeon))
        self._relocate(dungeon.position, FOG_REVEAL_RADIUS)
        log.info("%s entered %s", self.store.player_id, dungeon.name)
        return InteractionOutcome(
            status=InteractionStatus.DUNGEON,
            object_id=dungeon.id,
            name=dungeon.name,
            details={
                "difficulty": dungeon.difficulty,
                "max_floors": dungeon.max_floors,
                "recommended_level": dungeon.recommended_level,
                "theme": dungeon.theme,
            },
        )

    def teleport(self, x: int, y: int, now: Optional[datetime] = None) -> MoveResult:
        self._now(now)
        world = self.store.require_world()
        location = self.store.player.discoveries.get(x, y)
        if location is None:
            raise ValidationError(
                RejectionReason.NOT_DISCOVERED,
                f"({x}, {y}) is not a discovered location",
                details={"x": x, "y": y},
            )
        if world.tile_at(x, y) is None:
            raise ValidationError(
                RejectionReason.OUT_OF_BOUNDS,
                f"({x}, {y}) is outside the map",
                details={"x": x, "y": y},
            )
        self._check_energy(TELEPORT_COST)

        self._spend(TELEPORT_COST)
        self._relocate(location.position, None)
        log.debug("Teleported %s to %s", self.store.player_id, location.name)
        return MoveResult(position=location.position, cost=TELEPORT_COST)

    def use_portal(self, portal_id: str, now: Optional[datetime] = None) -> MoveResult:
        self._now(now)
        world = self.store.require_world()
        portal = world.find_static(portal_id)
        if portal is None or portal.kind is not StaticKind.PORTAL:
            raise ValidationError(
                RejectionReason.UNKNOWN_OBJECT,
                f"Unknown portal: {portal_id}",
                details={"object_id": portal_id},
            )
        self._target_tile(world, portal.position.x, portal.position.y)
        linked = world.find_static(portal.linked_portal_id) if portal.linked_portal_id else None
        if linked is None or linked.kind is not StaticKind.PORTAL:
            raise ValidationError(
                RejectionReason.PORTAL_UNLINKED,
                f"{portal.name} is not connected",
                details={"object_id": portal_id},
            )
        self._check_energy(portal.energy_cost)

        self._spend(portal.energy_cost)
        found = self._relocate(linked.position, FOG_REVEAL_RADIUS)
        log.debug("%s travelled %s -> %s", self.store.player_id, portal.name, linked.name)
        return MoveResult(
            position=linked.position,
            cost=portal.energy_cost,
            path=(portal.position, linked.position),
            discovered=tuple(found),
        )

    def interact(
        self,
        x: int,
        y: int,
        now: Optional[datetime] = None,
        *,
        level: Optional[int] = None,
        combat: Optional[CombatResolver] = None,
    ) -> InteractionOutcome:
        """Use whatever sits on ``(x, y)``.

        Combat objects are handed to ``combat`` when given; otherwise an
        ``ENCOUNTER`` outcome is returned and :meth:`record_victory` settles
        the fight later.
        """

        now = self._now(now)
        world = self.store.require_world()
        start = self._position(world)
        self._target_tile(world, x, y)
        target = Position(x, y)
        if max(abs(start.x - x), abs(start.y - y)) > INTERACTION_RANGE:
            raise ValidationError(
                RejectionReason.NOT_INTERACTIVE,
                f"({x}, {y}) is too far away",
                details={"x": x, "y": y, "distance": manhattan_distance(start, target)},
            )
        level = level if level is not None else self._party_level()

        tile = world.tile_at(x, y)
        obj = tile.static_object
        if obj is not None:
            return self._interact_static(obj, now, level, combat)

        dynamic = world.active_dynamic_at(x, y)
        if dynamic is not None:
            return self._interact_dynamic(dynamic, now, combat)

        for candidate in world.dynamic_objects:
            if (
                candidate.kind is DynamicKind.WANDERING_MONSTER
                and candidate.position == target
                and candidate.defeated
            ):
                return InteractionOutcome(
                    status=InteractionStatus.ALREADY_CONSUMED,
                    object_id=candidate.id,
                    name=candidate.enemy_name,
                )
        return InteractionOutcome(status=InteractionStatus.NOTHING)

    def record_victory(self, object_id: str, now: Optional[datetime] = None) -> InteractionOutcome:
        """Mark a rare spawn or wandering monster as beaten."""

        now = self._now(now)
        world = self.store.require_world()
        obj = world.find_static(object_id)
        if obj is not None and obj.kind is StaticKind.RARE_SPAWN:
            if not obj.state.consume(now):
                return InteractionOutcome(InteractionStatus.ALREADY_CONSUMED, obj.id, obj.name)
            self.store.mark_dirty()
            return InteractionOutcome(InteractionStatus.VICTORY, obj.id, obj.name)
        for candidate in world.dynamic_objects:
            if candidate.id == object_id and candidate.kind is DynamicKind.WANDERING_MONSTER:
                if not candidate.lifecycle.consume(now):
                    return InteractionOutcome(
                        InteractionStatus.ALREADY_CONSUMED, candidate.id, candidate.enemy_name
                    )
                self.store.mark_dirty()
                return InteractionOutcome(InteractionStatus.VICTORY, candidate.id, candidate.enemy_name)
        raise ValidationError(
            RejectionReason.UNKNOWN_OBJECT,
            f"Nothing to fight with id {object_id}",
            details={"object_id": object_id},
        )

    # -- interaction helpers ---------------------------------------------

    def _party_level(self) -> int:
        levels = [character.level for character in self.store.player.characters.values()]
        return max(levels, default=1)

    def _fight(
        self, encounter: Encounter, now: datetime, combat: Optional[CombatResolver], consume
    ) -> InteractionOutcome:
        if combat is None:
            return InteractionOutcome(
                status=InteractionStatus.ENCOUNTER,
                object_id=encounter.object_id,
                name=encounter.enemy_name,
                encounter=encounter,
            )
        result: CombatOutcome = combat(encounter)
        if not result.victory:
            return InteractionOutcome(
                status=InteractionStatus.DEFEAT,
                object_id=encounter.object_id,
                name=encounter.enemy_name,
                encounter=encounter,
                combat=result,
            )
        consume(now)
        self.store.mark_dirty()
        return InteractionOutcome(
            status=InteractionStatus.VICTORY,
            object_id=encounter.object_id,
            name=encounter.enemy_name,
            encounter=encounter,
            combat=result,
        )

    def _interact_static(self, obj, now: datetime, level: int, combat) -> InteractionOutcome:
        if obj.kind is StaticKind.TREASURE_CHEST:
            if not obj.state.consume(now):
                return InteractionOutcome(InteractionStatus.ALREADY_CONSUMED, obj.id, obj.name)
            self.store.mark_dirty()
            return InteractionOutcome(
                InteractionStatus.OPENED, obj.id, obj.name, loot_quality=obj.loot_quality
            )
        elif obj.kind is StaticKind.HIDDEN_PATH:
            if obj.discovered:
                return InteractionOutcome(InteractionStatus.ALREADY_CONSUMED, obj.id, obj.name)
            if level < obj.required_level:
                raise ValidationError(
                    RejectionReason.LEVEL_REQUIREMENT,
                    f"{obj.name} requires level {obj.required_level}",
                    details={"required_level": obj.required_level, "level": level},
                )
            obj.state.consume(now)
            self.store.mark_dirty()
            return InteractionOutcome(
                InteractionStatus.DISCOVERED, obj.id, obj.name, loot_quality=obj.loot_quality
            )
        elif obj.kind is StaticKind.RARE_SPAWN:
            if obj.defeated:
                return InteractionOutcome(InteractionStatus.ALREADY_CONSUMED, obj.id, obj.name)
            encounter = Encounter(
                object_id=obj.id,
                source=obj.kind.value,
                enemy_name=obj.enemy_name,
                enemy_level=obj.enemy_level,
                enemy_count=2,
                position=obj.position,
            )
            return self._fight(encounter, now, combat, obj.state.consume)
        elif obj.kind is StaticKind.TOWN:
            return InteractionOutcome(
                InteractionStatus.TOWN,
                obj.id,
                obj.name,
                details={"level": obj.level, "faction": obj.faction, "buildings": dict(obj.buildings)},
            )
        elif obj.kind is StaticKind.DUNGEON:
            return InteractionOutcome(
                InteractionStatus.DUNGEON,
                obj.id,
                obj.name,
                details={"difficulty": obj.difficulty, "recommended_level": obj.recommended_level},
            )
        elif obj.kind is StaticKind.PORTAL:
            return InteractionOutcome(
                InteractionStatus.PORTAL,
                obj.id,
                obj.name,
                details={"linked_portal_id": obj.linked_portal_id, "energy_cost": obj.energy_cost},
            )
        raise ValueError(f"Unknown static object kind: {obj.kind}")

    def _interact_dynamic(self, obj, now: datetime, combat) -> InteractionOutcome:
        if obj.kind is DynamicKind.WANDERING_MONSTER:
            encounter = Encounter(
                object_id=obj.id,
                source=obj.kind.value,
                enemy_name=obj.enemy_name,
                enemy_level=obj.enemy_level,
                enemy_count=obj.enemy_count,
                position=obj.position,
            )
            return self._fight(encounter, now, combat, obj.lifecycle.consume)
        elif obj.kind is DynamicKind.TRAVELING_MERCHANT:
            return InteractionOutcome(
                InteractionStatus.MERCHANT,
                obj.id,
                obj.merchant_name,
                details={
                    "stays_until": obj.stays_until,
                    "offers": [
                        {"item_type": offer.item_type, "price": offer.price, "rarity": offer.rarity}
                        for offer in obj.offers
                    ],
                },
            )
        elif obj.kind is DynamicKind.EVENT:
            obj.is_active = False
            if obj.resource_type == "gold":
                self.store.player.gold += obj.amount
            self.store.mark_dirty()
            return InteractionOutcome(
                InteractionStatus.COLLECTED,
                obj.id,
                obj.event_type,
                details={"resource_type": obj.resource_type, "amount": obj.amount},
            )
        raise ValueError(f"Unknown dynamic object kind: {obj.kind}")

    def buy(self, merchant_id: str, offer_index: int, now: Optional[datetime] = None) -> int:
        """Pay for a merchant offer; returns the remaining gold."""

        self._now(now)
        world = self.store.require_world()
        for obj in world.dynamic_objects:
            if obj.id == merchant_id and obj.kind is DynamicKind.TRAVELING_MERCHANT and obj.is_active:
                break
        else:
            raise ValidationError(
                RejectionReason.UNKNOWN_OBJECT,
                f"No merchant with id {merchant_id}",
                details={"object_id": merchant_id},
            )
        try:
            if offer_index < 0:
                raise IndexError(offer_index)
            offer = obj.offers[offer_index]
        except IndexError:
            raise ValidationError(
                RejectionReason.UNKNOWN_OBJECT,
                f"{obj.merchant_name} has no offer {offer_index}",
                details={"object_id": merchant_id, "offer": offer_index},
            ) from None
        if offer.price > self.store.player.gold:
            raise InsufficientResource("gold", offer.price, self.store.player.gold)
        del obj.offers[offer_index]
        return self.store.spend_gold(offer.price)


__all__ = [
    "FOG_REVEAL_RADIUS",
    "WorldEngine",
    "find_route",
    "walkable_graph",
]
