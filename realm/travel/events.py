"""Outcomes of map interactions and the combat collaborator boundary."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional, Protocol

from ..models.map import Position


class InteractionStatus(str, Enum):
    OPENED = "opened"
    DISCOVERED = "discovered"
    ENCOUNTER = "encounter"
    VICTORY = "victory"
    DEFEAT = "defeat"
    COLLECTED = "collected"
    ALREADY_CONSUMED = "already_consumed"
    TOWN = "town"
    DUNGEON = "dungeon"
    PORTAL = "portal"
    MERCHANT = "merchant"
    NOTHING = "nothing"


@dataclass(frozen=True, slots=True)
class Encounter:
    """What the combat collaborator is asked to fight."""

    object_id: str
    source: str
    enemy_name: str
    enemy_level: int
    enemy_count: int = 1
    position: Optional[Position] = None


@dataclass(frozen=True, slots=True)
class CombatOutcome:
    victory: bool
    rewards: Dict[str, Any] = field(default_factory=dict)


class CombatResolver(Protocol):
    def __call__(self, encounter: Encounter) -> CombatOutcome:
        ...


@dataclass(frozen=True, slots=True)
class InteractionOutcome:
    status: InteractionStatus
    object_id: Optional[str] = None
    name: Optional[str] = None
    loot_quality: Optional[str] = None
    encounter: Optional[Encounter] = None
    combat: Optional[CombatOutcome] = None
    details: Dict[str, Any] = field(default_factory=dict)

    @property
    def already_consumed(self) -> bool:
        return self.status is InteractionStatus.ALREADY_CONSUMED


@dataclass(frozen=True, slots=True)
class MoveResult:
    position: Position
    cost: int
    path: tuple[Position, ...] = ()
    discovered: tuple = ()


__all__ = [
    "CombatOutcome",
    "CombatResolver",
    "Encounter",
    "InteractionOutcome",
    "InteractionStatus",
    "MoveResult",
]
