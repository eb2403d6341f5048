"""World state store: debounced saves, failure handling and epoch rollover."""

from __future__ import annotations

import asyncio
import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

PROJECT_BASE = Path(__file__).resolve().parents[1]
if str(PROJECT_BASE) not in sys.path:
    sys.path.insert(0, str(PROJECT_BASE))

from realm.errors import InsufficientResource, PersistenceFailure, RejectionReason, ValidationError
from realm.fog import explored_locations
from realm.generation import CAPITAL_NAME
from realm.models.equipment import Character, EquipmentSlot, Item, Stats
from realm.models.map import Position
from realm.models.world import DiscoveredLocation
from realm.state import WorldStateStore
from realm.storage import MemorySaveService, TomlSaveStore

MORNING = datetime(2025, 1, 1, 8, 0, tzinfo=timezone.utc)
SMALL_WORLD = {"width": 20, "height": 20}


class _GatedSaveService(MemorySaveService):
    def __init__(self) -> None:
        super().__init__()
        self.gate = asyncio.Event()
        self.started = asyncio.Event()

    async def save(self, player_id, snapshot) -> None:
        self.started.set()
        await self.gate.wait()
        await super().save(player_id, snapshot)


class _FailingSaveService:
    def __init__(self) -> None:
        self.calls = 0

    async def save(self, player_id, snapshot) -> None:
        self.calls += 1
        raise PersistenceFailure(player_id, "offline")

    async def load(self, player_id):
        return None


def _make_store(service=None, **kwargs) -> WorldStateStore:
    kwargs.setdefault("generation_overrides", SMALL_WORLD)
    return WorldStateStore("player-1", service or MemorySaveService(), **kwargs)


def test_burst_of_mutations_is_written_once() -> None:
    async def scenario() -> None:
        service = MemorySaveService()
        store = _make_store(service, debounce_seconds=0.02)

        store.set_gold(10)
        store.update_player_pos(3, 4)
        store.set_energy(50)
        store.add_discovered_location(DiscoveredLocation("Capital", 3, 4, "town"))
        assert store.flush_scheduled
        assert service.save_count == 0

        await asyncio.sleep(0.1)

        assert service.save_count == 1
        saved = service.saves["player-1"]["player"]
        assert saved["gold"] == 10
        assert saved["position"] == {"x": 3, "y": 4}
        assert saved["energy"]["current"] == 50
        assert len(saved["discovered_locations"]) == 1
        assert not store.dirty

    asyncio.run(scenario())


def test_mutation_during_inflight_save_is_not_lost() -> None:
    async def scenario() -> None:
        service = _GatedSaveService()
        store = _make_store(service, debounce_seconds=0)

        store.set_gold(10)
        await service.started.wait()
        assert store.flush_in_flight

        store.set_gold(20)
        await asyncio.sleep(0.01)
        service.gate.set()
        await asyncio.sleep(0.05)

        assert service.save_count == 2
        assert service.saves["player-1"]["player"]["gold"] == 20
        assert not store.dirty

    asyncio.run(scenario())


def test_failed_save_keeps_memory_state_and_stays_dirty() -> None:
    async def scenario() -> None:
        failing = _FailingSaveService()
        store = _make_store(failing, debounce_seconds=0)
        store.set_gold(5)

        assert await store.flush_now() is False
        assert failing.calls == 1
        assert store.dirty
        assert store.player.gold == 5
        assert isinstance(store.last_error, PersistenceFailure)

        recovered = MemorySaveService()
        store._save_service = recovered
        assert await store.flush_now() is True
        assert recovered.saves["player-1"]["player"]["gold"] == 5
        assert store.last_error is None

    asyncio.run(scenario())


class _FlakyGatedSaveService(_GatedSaveService):
    """Fails the first save once the gate opens, then behaves."""

    def __init__(self) -> None:
        super().__init__()
        self.calls = 0

    async def save(self, player_id, snapshot) -> None:
        self.calls += 1
        if self.calls == 1:
            self.started.set()
            await self.gate.wait()
            raise PersistenceFailure(player_id, "offline")
        await MemorySaveService.save(self, player_id, snapshot)


def test_mutation_during_failed_save_is_retried() -> None:
    async def scenario() -> None:
        service = _FlakyGatedSaveService()
        store = _make_store(service, debounce_seconds=0)

        store.set_gold(1)
        await service.started.wait()
        store.set_gold(2)
        await asyncio.sleep(0.01)
        service.gate.set()
        await asyncio.sleep(0.05)

        assert service.calls == 2
        assert service.saves["player-1"]["player"]["gold"] == 2
        assert not store.dirty
        assert store.last_error is None

    asyncio.run(scenario())


def test_mutators_without_event_loop_stay_dirty() -> None:
    store = _make_store()

    store.set_gold(3)

    assert store.dirty
    assert not store.flush_scheduled


def test_discovery_marks_dirty_only_when_new() -> None:
    store = _make_store()
    location = DiscoveredLocation("Capital", 1, 1, "town")

    assert store.add_discovered_location(location)
    revision = store.revision
    assert not store.add_discovered_location(location)
    assert store.revision == revision
    assert len(store.player.discoveries) == 1


def test_spend_gold_is_atomic() -> None:
    store = _make_store()
    store.set_gold(40)

    with pytest.raises(InsufficientResource):
        store.spend_gold(60)
    assert store.player.gold == 40

    assert store.spend_gold(15) == 25


def test_update_character_recalculates_stats() -> None:
    store = _make_store()
    hero = Character(id="hero", name="Aria", level=5, base=Stats(hp=100))
    hero.slots[EquipmentSlot.HELMET] = Item(id="cap", name="Cap", slot="helmet", stats=Stats(hp=20))

    store.update_character(hero)

    assert store.character("hero").max_hp == 120
    with pytest.raises(ValidationError) as excinfo:
        store.character("ghost")
    assert excinfo.value.reason is RejectionReason.UNKNOWN_CHARACTER


def test_ensure_world_places_player_at_capital() -> None:
    store = _make_store()

    assert store.ensure_world(MORNING) is True
    assert store.ensure_world(MORNING + timedelta(hours=10)) is False

    capital = store.world.find_static_named(CAPITAL_NAME)
    assert store.world.epoch == "2025-01-01"
    assert store.world.seed == "daily-2025-01-01"
    assert store.player.position == capital.position
    assert store.player.discoveries.contains(capital.position.x, capital.position.y)


def test_new_epoch_regenerates_world_and_resets_discoveries() -> None:
    store = _make_store()
    store.ensure_world(MORNING)
    store.add_discovered_location(DiscoveredLocation("Far Away", 19, 19, "portal"))

    assert store.ensure_world(MORNING + timedelta(days=1)) is True

    assert store.world.epoch == "2025-01-02"
    assert store.world.seed == "daily-2025-01-02"
    assert [entry.name for entry in store.player.discoveries] == [
        location.name for location in explored_locations(store.world)
    ]
    assert store.player.position == store.world.find_static_named(CAPITAL_NAME).position


def test_tick_advances_cycles_and_energy() -> None:
    store = _make_store()
    store.tick(MORNING)
    weather = store.world.weather
    time_of_day = store.world.time_of_day
    store.player.energy.set(0)
    revision = store.revision

    assert store.tick(MORNING + timedelta(hours=6, minutes=1)) is True

    # Weather changes every three hours, so it walked two steps.
    assert store.world.weather is not weather
    assert store.world.weather.current != store.world.weather.next
    assert store.world.time_of_day.current == time_of_day.next
    assert store.player.energy.current == 60
    assert store.revision > revision


def test_tick_refills_energy_on_new_day() -> None:
    store = _make_store()
    store.tick(MORNING)
    store.player.energy.set(0)

    store.tick(MORNING + timedelta(days=1))

    assert store.player.energy.current == store.player.energy.maximum


def test_snapshot_round_trips_through_toml(tmp_path: Path) -> None:
    async def scenario() -> None:
        service = TomlSaveStore(tmp_path)
        store = _make_store(service, debounce_seconds=0)
        store.tick(MORNING)
        hero = Character(id="hero", name="Aria", level=5, base=Stats(hp=80, atk=9, crit=2.5))
        hero.equip(Item(id="cap", name="Cap", slot="helmet", stats=Stats(hp=20), set_id="warrior_set"))
        store.update_character(hero)
        store.set_gold(1234)
        assert await store.flush_now()

        restored = _make_store(service)
        assert await restored.load()

        assert restored.player.gold == 1234
        assert restored.player.position == store.player.position
        assert restored.player.energy.current == store.player.energy.current
        assert restored.character("hero").stats == store.character("hero").stats
        assert [entry.name for entry in restored.player.discoveries] == [
            entry.name for entry in store.player.discoveries
        ]
        original, loaded = store.world, restored.world
        assert loaded.epoch == original.epoch
        assert [[tile.terrain for tile in row] for row in loaded.tiles] == [
            [tile.terrain for tile in row] for row in original.tiles
        ]
        assert loaded.explored_count() == original.explored_count()
        assert [obj.position for obj in loaded.static_objects] == [
            obj.position for obj in original.static_objects
        ]
        assert [obj.id for obj in loaded.dynamic_objects] == [obj.id for obj in original.dynamic_objects]
        assert loaded.weather.changes_at == original.weather.changes_at
        assert loaded.time_of_day.modifier == original.time_of_day.modifier
        assert not restored.dirty
        assert restored.ensure_world(MORNING + timedelta(hours=1)) is False

    asyncio.run(scenario())


def test_load_without_save_returns_false() -> None:
    store = _make_store()

    assert asyncio.run(store.load()) is False
    assert store.world is None


def test_unusable_stored_world_is_dropped() -> None:
    store = _make_store()

    store.restore({"revision": 4, "player": {"gold": 9, "position": {"x": 1, "y": 2}}, "world": {"width": "wide"}})

    assert store.world is None
    assert store.player.gold == 9
    assert store.player.position == Position(1, 2)
    assert store.revision == 4
    assert not store.dirty
