"""Character equipment, set bonuses and derived combat stats."""

from __future__ import annotations

import logging
import math
import random
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any, Dict, Iterable, Iterator, List, Mapping, Optional

from ..errors import RejectionReason, ValidationError
from ._validation import FieldSpec, ModelValidator, is_non_empty_str, is_non_negative_int

log = logging.getLogger(__name__)

STAT_NAMES: tuple[str, ...] = ("hp", "atk", "defense", "spd", "crit")

# Short labels used by stored payloads and set tables.
_STAT_ALIASES: Mapping[str, str] = MappingProxyType(
    {
        "HP": "hp",
        "ATK": "atk",
        "DEF": "defense",
        "SPD": "spd",
        "CRIT": "crit",
        "def": "defense",
    }
)

MAX_ENCHANT_LEVEL = 10
ENCHANT_STEP = 0.1

ENCHANT_SUCCESS_CHANCE: Mapping[int, float] = MappingProxyType(
    {0: 0.90, 1: 0.85, 2: 0.80, 3: 0.70, 4: 0.60, 5: 0.50, 6: 0.40, 7: 0.35, 8: 0.32, 9: 0.30}
)


def _stat_key(name: str) -> str:
    return _STAT_ALIASES.get(name, name)


@dataclass(slots=True)
class Stats:
    """Combat stats; CRIT is a percentage kept to two decimals."""

    hp: int = 0
    atk: int = 0
    defense: int = 0
    spd: int = 0
    crit: float = 0.0

    def copy(self) -> "Stats":
        return Stats(**self.to_mapping())

    def to_mapping(self) -> Dict[str, float]:
        return {name: getattr(self, name) for name in STAT_NAMES}

    @classmethod
    def from_mapping(cls, mapping: Mapping[str, Any] | None) -> "Stats":
        data: Dict[str, Any] = {}
        for key, value in (mapping or {}).items():
            name = _stat_key(str(key))
            if name not in STAT_NAMES or value is None:
                continue
            data[name] = float(value) if name == "crit" else int(value)
        return cls(**data)

    def items(self) -> Iterator[tuple[str, float]]:
        for name in STAT_NAMES:
            yield name, getattr(self, name)

    def add_in_place(self, other: "Stats") -> None:
        for name in STAT_NAMES:
            setattr(self, name, getattr(self, name) + getattr(other, name))
        self.crit = round(self.crit, 2)

    def added(self, other: "Stats") -> "Stats":
        result = self.copy()
        result.add_in_place(other)
        return result

    def scaled(self, factor: float) -> "Stats":
        """Integer stats are floored; CRIT is rounded to two decimals."""

        return Stats(
            hp=math.floor(self.hp * factor),
            atk=math.floor(self.atk * factor),
            defense=math.floor(self.defense * factor),
            spd=math.floor(self.spd * factor),
            crit=round(self.crit * factor, 2),
        )


def power_score(stats: Stats) -> float:
    return stats.hp + stats.atk * 2 + stats.defense * 1.5 + stats.spd + stats.crit * 10


class EquipmentSlot(str, Enum):
    HELMET = "helmet"
    WEAPON = "weapon"
    CHEST = "chest"
    GLOVES = "gloves"
    LEGS = "legs"
    BOOTS = "boots"
    ACCESSORY1 = "accessory1"
    ACCESSORY2 = "accessory2"

    @classmethod
    def from_value(cls, value: "EquipmentSlot | str") -> "EquipmentSlot":
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            raise ValidationError(
                RejectionReason.INVALID_SLOT,
                f"Unknown equipment slot: {value}",
                details={"slot": value},
            ) from None


# Logical slot on an item; accessories resolve to one of two physical slots.
ACCESSORY = "accessory"
ITEM_SLOTS: frozenset = frozenset(
    {slot.value for slot in EquipmentSlot if not slot.value.startswith(ACCESSORY)} | {ACCESSORY}
)


@dataclass(slots=True)
class Item:
    id: str
    name: str
    slot: str
    level: int = 1
    stats: Stats = field(default_factory=Stats)
    set_id: Optional[str] = None
    enchant_level: int = 0
    rarity: str = "common"

    def __post_init__(self) -> None:
        self.slot = str(self.slot).strip().lower()
        if self.slot not in ITEM_SLOTS:
            raise ValidationError(
                RejectionReason.INVALID_SLOT,
                f"Item {self.name} has unknown slot {self.slot}",
                details={"item_id": self.id, "slot": self.slot},
            )
        self.enchant_level = min(MAX_ENCHANT_LEVEL, max(0, int(self.enchant_level)))

    @property
    def display_name(self) -> str:
        if self.enchant_level > 0:
            return f"{self.name} +{self.enchant_level}"
        return self.name

    def effective_stats(self) -> Stats:
        return self.stats.scaled(1 + self.enchant_level * ENCHANT_STEP)

    def to_mapping(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "slot": self.slot,
            "level": self.level,
            "stats": self.stats.to_mapping(),
            "set_id": self.set_id,
            "enchant_level": self.enchant_level,
            "rarity": self.rarity,
        }

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "Item":
        payload = ItemValidator.validate(data)
        return cls(
            id=payload["id"],
            name=payload["name"],
            slot=payload["slot"],
            level=int(payload.get("level", 1)),
            stats=Stats.from_mapping(payload.get("stats")),
            set_id=payload.get("set_id") or None,
            enchant_level=int(payload.get("enchant_level", 0)),
            rarity=str(payload.get("rarity", "common")),
        )


class ItemValidator(ModelValidator):
    model = Item
    fields = {
        "id": FieldSpec(is_non_empty_str, "an item id"),
        "name": FieldSpec(is_non_empty_str, "an item name"),
        "slot": FieldSpec(is_non_empty_str, "an equipment slot"),
        "level": FieldSpec(int, "an integer level", required=False),
        "stats": FieldSpec(dict, "a stats table", required=False),
        "set_id": FieldSpec(str, "a set id", required=False, allow_none=True),
        "enchant_level": FieldSpec(is_non_negative_int, "a non-negative enchant level", required=False),
    }


@dataclass(frozen=True, slots=True)
class EnchantResult:
    success: bool
    new_level: int
    chance: float


def enchant_item(item: Item, rng: random.Random, *, guaranteed: bool = False) -> EnchantResult:
    """Roll one enchant attempt; failures leave the item unchanged."""

    if item.enchant_level >= MAX_ENCHANT_LEVEL:
        return EnchantResult(False, item.enchant_level, 0.0)
    chance = ENCHANT_SUCCESS_CHANCE.get(item.enchant_level, 0.3)
    if guaranteed or rng.random() < chance:
        item.enchant_level += 1
        return EnchantResult(True, item.enchant_level, chance)
    return EnchantResult(False, item.enchant_level, chance)


# ---------------------------------------------------------------------------
# Set bonuses
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class SetBonus:
    stats: Stats
    special: Optional[str] = None


@dataclass(frozen=True, slots=True)
class EquipmentSet:
    set_id: str
    name: str
    bonuses: Mapping[int, SetBonus]


@dataclass(frozen=True, slots=True)
class ActiveSet:
    set_id: str
    name: str
    pieces: int
    bonuses: tuple[tuple[int, SetBonus], ...]


class SetBonusTable:
    """Lookup of set bonuses keyed by set id and equipped piece count."""

    def __init__(self, sets: Iterable[EquipmentSet] = ()) -> None:
        self._sets: Dict[str, EquipmentSet] = {}
        for entry in sets:
            self.register(entry)

    def register(self, entry: EquipmentSet) -> None:
        self._sets[entry.set_id] = entry

    def get_set(self, set_id: str) -> Optional[EquipmentSet]:
        return self._sets.get(set_id)

    def bonus_for(self, set_id: str, count: int) -> Optional[SetBonus]:
        """Bonus of the highest threshold reached by ``count`` pieces."""

        entry = self._sets.get(set_id)
        if entry is None:
            return None
        reached = [threshold for threshold in entry.bonuses if threshold <= count]
        if not reached:
            return None
        return entry.bonuses[max(reached)]

    def thresholds_reached(self, set_id: str, count: int) -> tuple[tuple[int, SetBonus], ...]:
        entry = self._sets.get(set_id)
        if entry is None:
            return ()
        return tuple(
            (threshold, entry.bonuses[threshold])
            for threshold in sorted(entry.bonuses)
            if threshold <= count
        )

    def __contains__(self, set_id: object) -> bool:
        return set_id in self._sets


def _bonus(special: Optional[str] = None, **values: float) -> SetBonus:
    return SetBonus(stats=Stats.from_mapping(values), special=special)


DEFAULT_SETS: tuple[EquipmentSet, ...] = (
    EquipmentSet(
        "warrior_set",
        "Warrior's Valor",
        MappingProxyType(
            {
                2: _bonus(HP=50, DEF=10),
                3: _bonus(HP=100, DEF=20, ATK=10),
                4: _bonus(HP=200, DEF=40, ATK=20),
                5: _bonus("Battle Rage", HP=350, DEF=70, ATK=35),
            }
        ),
    ),
    EquipmentSet(
        "archer_set",
        "Hunter's Focus",
        MappingProxyType(
            {
                2: _bonus(SPD=5, CRIT=2),
                3: _bonus(SPD=10, CRIT=5, ATK=10),
                4: _bonus(SPD=20, CRIT=10, ATK=20),
                5: _bonus("Perfect Shot", SPD=35, CRIT=18, ATK=35),
            }
        ),
    ),
    EquipmentSet(
        "mage_set",
        "Arcane Wisdom",
        MappingProxyType(
            {
                2: _bonus(ATK=15, HP=20),
                3: _bonus(ATK=30, HP=50, SPD=5),
                4: _bonus(ATK=50, HP=100, SPD=10),
                5: _bonus("Mana Surge", ATK=80, HP=200, SPD=20),
            }
        ),
    ),
    EquipmentSet(
        "cleric_set",
        "Divine Grace",
        MappingProxyType(
            {
                2: _bonus(HP=80, DEF=15),
                3: _bonus(HP=150, DEF=30),
                4: _bonus(HP=250, DEF=50, SPD=10),
                5: _bonus("Holy Aura", HP=400, DEF=80, SPD=20),
            }
        ),
    ),
    EquipmentSet(
        "paladin_set",
        "Righteous Protector",
        MappingProxyType(
            {
                2: _bonus(HP=60, ATK=10, DEF=10),
                3: _bonus(HP=120, ATK=20, DEF=20),
                4: _bonus(HP=200, ATK=35, DEF=35, SPD=10),
                5: _bonus("Divine Shield", HP=350, ATK=60, DEF=60, SPD=20),
            }
        ),
    ),
)


def default_set_table() -> SetBonusTable:
    return SetBonusTable(DEFAULT_SETS)


# ---------------------------------------------------------------------------
# Characters
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class EquipResult:
    slot: EquipmentSlot
    unequipped: Optional[Item] = None


@dataclass(slots=True)
class Character:
    """A hero whose effective stats are derived from base stats and gear.

    ``stats`` and ``max_hp`` are outputs of :meth:`recalculate_stats` and are
    rewritten on every slot change.
    """

    id: str
    name: str
    level: int = 1
    base: Stats = field(default_factory=Stats)
    current_hp: Optional[int] = None
    slots: Dict[EquipmentSlot, Optional[Item]] = field(
        default_factory=lambda: {slot: None for slot in EquipmentSlot}
    )
    set_table: SetBonusTable = field(default_factory=default_set_table, repr=False, compare=False)
    stats: Stats = field(default_factory=Stats)
    equipped_sets: Dict[str, int] = field(default_factory=dict)

    def __post_init__(self) -> None:
        for slot in EquipmentSlot:
            self.slots.setdefault(slot, None)
        fresh = self.current_hp is None
        if fresh:
            self.current_hp = self.base.hp
        self.recalculate_stats()
        if fresh:
            self.current_hp = self.stats.hp

    @property
    def max_hp(self) -> int:
        return self.stats.hp

    def equipped(self, slot: EquipmentSlot | str) -> Optional[Item]:
        return self.slots[EquipmentSlot.from_value(slot)]

    def items(self) -> List[tuple[EquipmentSlot, Item]]:
        return [(slot, item) for slot, item in self.slots.items() if item is not None]

    def _target_slot(self, item: Item) -> EquipmentSlot:
        if item.slot == ACCESSORY:
            if self.slots[EquipmentSlot.ACCESSORY1] is None:
                return EquipmentSlot.ACCESSORY1
            if self.slots[EquipmentSlot.ACCESSORY2] is None:
                return EquipmentSlot.ACCESSORY2
            return EquipmentSlot.ACCESSORY1
        return EquipmentSlot.from_value(item.slot)

    def equip(self, item: Item) -> EquipResult:
        if item.level > self.level:
            raise ValidationError(
                RejectionReason.LEVEL_REQUIREMENT,
                f"{item.display_name} requires level {item.level}, {self.name} is level {self.level}",
                details={"required_level": item.level, "level": self.level},
            )
        slot = self._target_slot(item)
        previous = self.slots[slot]
        self.slots[slot] = item
        self.recalculate_stats()
        log.debug("%s equipped %s in %s", self.name, item.display_name, slot.value)
        return EquipResult(slot=slot, unequipped=previous)

    def unequip(self, slot: EquipmentSlot | str) -> Item:
        slot = EquipmentSlot.from_value(slot)
        item = self.slots[slot]
        if item is None:
            raise ValidationError(
                RejectionReason.SLOT_EMPTY,
                f"Nothing equipped in {slot.value}",
                details={"slot": slot.value},
            )
        self.slots[slot] = None
        self.recalculate_stats()
        return item

    def enchant(
        self, slot: EquipmentSlot | str, rng: random.Random, *, guaranteed: bool = False
    ) -> EnchantResult:
        slot = EquipmentSlot.from_value(slot)
        item = self.slots[slot]
        if item is None:
            raise ValidationError(
                RejectionReason.SLOT_EMPTY,
                f"Nothing equipped in {slot.value}",
                details={"slot": slot.value},
            )
        result = enchant_item(item, rng, guaranteed=guaranteed)
        if result.success:
            self.recalculate_stats()
        return result

    def _count_sets(self) -> Dict[str, int]:
        counts: Dict[str, int] = {}
        for item in self.slots.values():
            if item is not None and item.set_id:
                counts[item.set_id] = counts.get(item.set_id, 0) + 1
        return counts

    def set_bonus_stats(self) -> Stats:
        total = Stats()
        for set_id, count in self.equipped_sets.items():
            bonus = self.set_table.bonus_for(set_id, count)
            if bonus is not None:
                total.add_in_place(bonus.stats)
        return total

    def equipment_stats(self) -> Stats:
        total = Stats()
        for item in self.slots.values():
            if item is not None:
                total.add_in_place(item.effective_stats())
        total.add_in_place(self.set_bonus_stats())
        return total

    def recalculate_stats(self) -> Stats:
        self.equipped_sets = self._count_sets()
        self.stats = self.base.added(self.equipment_stats())
        self.current_hp = min(max(0, int(self.current_hp)), self.stats.hp)
        return self.stats

    def active_sets(self) -> List[ActiveSet]:
        active: List[ActiveSet] = []
        for set_id, count in sorted(self.equipped_sets.items()):
            entry = self.set_table.get_set(set_id)
            if entry is None:
                continue
            reached = self.set_table.thresholds_reached(set_id, count)
            if reached:
                active.append(ActiveSet(set_id, entry.name, count, reached))
        return active

    def power_score(self) -> float:
        return power_score(self.equipment_stats())

    def to_mapping(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "level": self.level,
            "base": self.base.to_mapping(),
            "current_hp": self.current_hp,
            "slots": {
                slot.value: item.to_mapping() for slot, item in self.slots.items() if item is not None
            },
        }

    @classmethod
    def from_mapping(
        cls, data: Mapping[str, Any], *, set_table: Optional[SetBonusTable] = None
    ) -> "Character":
        payload = CharacterValidator.validate(data)
        slots: Dict[EquipmentSlot, Optional[Item]] = {slot: None for slot in EquipmentSlot}
        for slot_name, item_data in (payload.get("slots") or {}).items():
            slots[EquipmentSlot.from_value(slot_name)] = Item.from_mapping(item_data)
        return cls(
            id=payload["id"],
            name=payload["name"],
            level=int(payload.get("level", 1)),
            base=Stats.from_mapping(payload.get("base")),
            current_hp=payload.get("current_hp"),
            slots=slots,
            set_table=set_table or default_set_table(),
        )


class CharacterValidator(ModelValidator):
    model = Character
    fields = {
        "id": FieldSpec(is_non_empty_str, "a character id"),
        "name": FieldSpec(is_non_empty_str, "a character name"),
        "level": FieldSpec(int, "an integer level", required=False),
        "base": FieldSpec(dict, "a base stats table", required=False),
        "slots": FieldSpec(dict, "an equipment table", required=False),
    }


__all__ = [
    "ActiveSet",
    "Character",
    "DEFAULT_SETS",
    "EnchantResult",
    "EquipResult",
    "EquipmentSet",
    "EquipmentSlot",
    "Item",
    "MAX_ENCHANT_LEVEL",
    "SetBonus",
    "SetBonusTable",
    "Stats",
    "default_set_table",
    "enchant_item",
    "power_score",
]
