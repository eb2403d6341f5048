import asyncio
import sys
from pathlib import Path

import pytest

PROJECT_BASE = Path(__file__).resolve().parents[1]
if str(PROJECT_BASE) not in sys.path:
    sys.path.insert(0, str(PROJECT_BASE))

from realm.errors import PersistenceFailure
from realm.state import WorldStateStore
from realm.storage import (
    SCHEMA_VERSION,
    MemorySaveService,
    MissingMigrationError,
    SnapshotMigrator,
    TomlSaveStore,
    _write_toml,
)


def _legacy_payload() -> dict:
    return {
        "playerId": "alpha",
        "playerPos": {"x": 4, "y": 7},
        "energy": 35,
        "maxEnergy": 120,
        "gold": 80,
        "discoveredLocations": [{"name": "Capital", "x": 4, "y": 7, "type": "town"}],
    }


def test_legacy_snapshot_is_upgraded_to_current_schema() -> None:
    payload = SnapshotMigrator().upgrade(_legacy_payload())

    assert payload["schema_version"] == SCHEMA_VERSION
    assert payload["player_id"] == "alpha"
    player = payload["player"]
    assert player["position"] == {"x": 4, "y": 7}
    assert player["energy"] == {"current": 35, "maximum": 120}
    assert player["gold"] == 80
    assert player["discovered_locations"] == [{"name": "Capital", "x": 4, "y": 7, "kind": "town"}]
    assert "playerPos" not in payload


def test_current_snapshot_is_left_alone() -> None:
    payload = {"schema_version": SCHEMA_VERSION, "player": {"gold": 3}}

    assert SnapshotMigrator().upgrade(payload) is payload


def test_missing_migration_chain_is_reported(tmp_path: Path) -> None:
    (tmp_path / "saves").mkdir()
    migrator = SnapshotMigrator(tmp_path)

    with pytest.raises(MissingMigrationError):
        migrator.upgrade({"schema_version": 0})


def test_broken_migration_module_is_skipped(tmp_path: Path) -> None:
    directory = tmp_path / "saves"
    directory.mkdir()
    (directory / "0001_broken.py").write_text("raise RuntimeError('nope')\n", encoding="utf8")
    (directory / "0002_step.py").write_text(
        "FROM_VERSION = 0\nTO_VERSION = 2\n\n"
        "def migrate(payload):\n    payload['touched'] = True\n    return payload\n",
        encoding="utf8",
    )

    payload = SnapshotMigrator(tmp_path).upgrade({})

    assert payload["touched"] is True
    assert payload["schema_version"] == 2


def test_store_loads_and_migrates_legacy_file(tmp_path: Path) -> None:
    service = TomlSaveStore(tmp_path)
    _write_toml(service.path_for("alpha"), _legacy_payload())

    store = WorldStateStore("alpha", service)
    assert asyncio.run(store.load())

    assert store.player.gold == 80
    assert store.player.energy.current == 35
    assert store.player.energy.maximum == 120
    assert store.player.discoveries.contains(4, 7)
    assert store.world is None


def test_store_surfaces_unmigratable_file(tmp_path: Path) -> None:
    empty = tmp_path / "migrations"
    (empty / "saves").mkdir(parents=True)
    service = TomlSaveStore(tmp_path, migrator=SnapshotMigrator(empty))
    _write_toml(service.path_for("alpha"), {"schema_version": 1})

    with pytest.raises(PersistenceFailure):
        asyncio.run(service.load("alpha"))


def test_memory_service_returns_copies() -> None:
    service = MemorySaveService()
    snapshot = {"player": {"gold": 1}}
    asyncio.run(service.save("alpha", snapshot))
    snapshot["player"]["gold"] = 99

    loaded = asyncio.run(service.load("alpha"))
    loaded["player"]["gold"] = 50

    assert asyncio.run(service.load("alpha"))["player"]["gold"] == 1
    assert asyncio.run(service.load("missing")) is None
