"""Rename camelCase snapshot keys written by early clients."""

from __future__ import annotations

from collections.abc import MutableMapping
from typing import Any

FROM_VERSION = 0
TO_VERSION = 1
DESCRIPTION = "Rename camelCase snapshot keys"


_RENAMES: dict[str, str] = {
    "playerPos": "player_pos",
    "worldMap": "world",
    "discoveredLocations": "discovered_locations",
    "maxEnergy": "max_energy",
    "playerId": "player_id",
}


def migrate(payload: MutableMapping[str, Any]) -> MutableMapping[str, Any]:
    for old, new in _RENAMES.items():
        if old in payload and new not in payload:
            payload[new] = payload.pop(old)

    locations = payload.get("discovered_locations")
    if isinstance(locations, list):
        for entry in locations:
            if isinstance(entry, MutableMapping) and "type" in entry and "kind" not in entry:
                entry["kind"] = entry.pop("type")
    return payload
