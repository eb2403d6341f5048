"""Group player fields into a ``player`` table with a structured energy pool."""

from __future__ import annotations

from collections.abc import MutableMapping
from typing import Any

FROM_VERSION = 1
TO_VERSION = 2
DESCRIPTION = "Move player fields into a player table"

_PLAYER_KEYS = ("player_pos", "gold", "discovered_locations", "characters")


def migrate(payload: MutableMapping[str, Any]) -> MutableMapping[str, Any]:
    player = payload.get("player")
    if not isinstance(player, MutableMapping):
        player = {}
        payload["player"] = player

    for key in _PLAYER_KEYS:
        if key in payload:
            target = "position" if key == "player_pos" else key
            player.setdefault(target, payload.pop(key))

    energy = payload.pop("energy", None)
    max_energy = payload.pop("max_energy", None)
    if energy is not None and not isinstance(energy, MutableMapping):
        table: dict[str, Any] = {"current": energy}
        if max_energy is not None:
            table["maximum"] = max_energy
        player.setdefault("energy", table)
    elif isinstance(energy, MutableMapping):
        player.setdefault("energy", energy)
    return payload
