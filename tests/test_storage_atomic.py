from __future__ import annotations

import asyncio
import sys
from datetime import datetime, timezone
from pathlib import Path

import pytest

PROJECT_BASE = Path(__file__).resolve().parents[1]
if str(PROJECT_BASE) not in sys.path:
    sys.path.insert(0, str(PROJECT_BASE))

import tomllib

from realm.errors import PersistenceFailure
from realm.models.map import Terrain
from realm.storage import TomlSaveStore, _toml_dumps, _write_toml


def test_write_toml_preserves_original_on_replace_failure(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    target = tmp_path / "save.toml"
    _write_toml(target, {"gold": 1})
    original_contents = target.read_text(encoding="utf8")

    def _boom(src: Path, dst: Path) -> None:
        raise RuntimeError("simulated failure")

    monkeypatch.setattr("realm.storage.os.replace", _boom)

    with pytest.raises(RuntimeError):
        _write_toml(target, {"gold": 2})

    assert target.read_text(encoding="utf8") == original_contents
    leftovers = [p for p in target.parent.iterdir() if p.name != "save.toml"]
    assert leftovers == []


def test_save_store_reports_persistence_failure(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    store = TomlSaveStore(tmp_path)
    asyncio.run(store.save("alpha", {"player": {"gold": 5}}))

    def _boom(src: Path, dst: Path) -> None:
        raise OSError("disk full")

    monkeypatch.setattr("realm.storage.os.replace", _boom)

    with pytest.raises(PersistenceFailure) as excinfo:
        asyncio.run(store.save("alpha", {"player": {"gold": 9}}))

    assert excinfo.value.player_id == "alpha"
    loaded = asyncio.run(store.load("alpha"))
    assert loaded["player"]["gold"] == 5


def test_nested_tables_and_quoted_keys_parse_back() -> None:
    document = {
        "world": {
            "weather": {"current": "rain", "modifier": 0.8},
            "static_objects": [
                {"id": "chest-0", "position": {"x": 1, "y": 2}, "state": {"consumed": True}},
                {"id": "chest-1", "position": {"x": 3, "y": 4}},
            ],
            "dynamic_objects": [
                {"id": "merchant-0", "offers": [{"item_type": "Rare Gem", "price": 210}]},
            ],
        },
        "player": {"slots": {"accessory 1": {"name": "Ring \"of\" Dawn"}}, "position": None},
    }

    parsed = tomllib.loads(_toml_dumps(document))

    assert parsed["world"]["weather"]["modifier"] == pytest.approx(0.8)
    assert parsed["world"]["static_objects"][0]["position"] == {"x": 1, "y": 2}
    assert parsed["world"]["static_objects"][1]["id"] == "chest-1"
    assert parsed["world"]["dynamic_objects"][0]["offers"][0]["price"] == 210
    assert parsed["player"]["slots"]["accessory 1"]["name"] == 'Ring "of" Dawn'
    assert "position" not in parsed["player"]


def test_player_ids_round_trip_unsafe_characters(tmp_path: Path) -> None:
    store = TomlSaveStore(tmp_path)

    asyncio.run(store.save("guild/42:user", {"player": {"gold": 1}}))

    assert store.player_ids() == ["guild/42:user"]
    assert store.path_for("guild/42:user").parent == tmp_path / "saves"


def test_snapshot_values_are_reduced_to_toml_types() -> None:
    saved_at = datetime(2025, 1, 1, 8, 0, tzinfo=timezone.utc)
    document = {"saved_at": saved_at, "player": {"terrain": Terrain.FOREST, "tags": ("a", None, "b")}}

    parsed = tomllib.loads(_toml_dumps(document))

    assert parsed["saved_at"] == saved_at.isoformat()
    assert parsed["player"] == {"terrain": "forest", "tags": ["a", "b"]}


def test_unsupported_values_are_refused() -> None:
    with pytest.raises(TypeError):
        _toml_dumps({"player": {"blob": object()}})
    with pytest.raises(ValueError):
        _toml_dumps({"player": {"gold": float("nan")}})
