"""Tests for equipping, set bonuses and derived character stats."""

from __future__ import annotations

import random
import sys
from pathlib import Path

import pytest

PROJECT_BASE = Path(__file__).resolve().parents[1]
if str(PROJECT_BASE) not in sys.path:
    sys.path.insert(0, str(PROJECT_BASE))

from realm.errors import RejectionReason, ValidationError
from realm.models.equipment import (
    Character,
    EquipmentSlot,
    Item,
    Stats,
    default_set_table,
    power_score,
)


def _make_character(level: int = 10, hp: int = 100) -> Character:
    return Character(id="hero", name="Aria", level=level, base=Stats(hp=hp, atk=10, defense=5, spd=8, crit=5.0))


def _piece(slot: str, set_id: str | None = None, **stats) -> Item:
    return Item(
        id=f"{set_id or 'plain'}-{slot}",
        name=f"{slot.title()} Piece",
        slot=slot,
        level=1,
        stats=Stats(**stats),
        set_id=set_id,
    )


def test_helmet_raises_and_restores_max_hp() -> None:
    hero = _make_character()
    assert hero.max_hp == 100
    assert hero.current_hp == 100

    hero.equip(_piece("helmet", hp=20))
    assert hero.max_hp == 120

    hero.current_hp = 120
    hero.unequip(EquipmentSlot.HELMET)
    assert hero.max_hp == 100
    assert hero.current_hp == 100


def test_equip_above_level_is_rejected_without_change() -> None:
    hero = _make_character(level=3)
    item = Item(id="blade", name="Great Blade", slot="weapon", level=8, stats=Stats(atk=40))

    with pytest.raises(ValidationError) as excinfo:
        hero.equip(item)

    assert excinfo.value.reason is RejectionReason.LEVEL_REQUIREMENT
    assert hero.equipped("weapon") is None
    assert hero.stats.atk == 10


def test_equip_returns_previous_item() -> None:
    hero = _make_character()
    first = _piece("weapon", atk=5)
    second = Item(id="axe", name="Axe", slot="weapon", stats=Stats(atk=9))

    assert hero.equip(first).unequipped is None
    result = hero.equip(second)

    assert result.slot is EquipmentSlot.WEAPON
    assert result.unequipped is first
    assert hero.stats.atk == 19


def test_accessories_fill_first_empty_then_overwrite_first() -> None:
    hero = _make_character()
    ring = Item(id="ring", name="Ring", slot="accessory", stats=Stats(crit=1.5))
    amulet = Item(id="amulet", name="Amulet", slot="accessory", stats=Stats(spd=2))
    charm = Item(id="charm", name="Charm", slot="accessory", stats=Stats(hp=5))

    assert hero.equip(ring).slot is EquipmentSlot.ACCESSORY1
    assert hero.equip(amulet).slot is EquipmentSlot.ACCESSORY2
    result = hero.equip(charm)

    assert result.slot is EquipmentSlot.ACCESSORY1
    assert result.unequipped is ring
    assert hero.equipped("accessory2") is amulet


def test_unequip_empty_slot_reports_reason() -> None:
    hero = _make_character()

    with pytest.raises(ValidationError) as excinfo:
        hero.unequip("boots")

    assert excinfo.value.reason is RejectionReason.SLOT_EMPTY


def test_unknown_slot_is_rejected() -> None:
    with pytest.raises(ValidationError) as excinfo:
        Item(id="x", name="Cape", slot="cape")
    assert excinfo.value.reason is RejectionReason.INVALID_SLOT


def test_recalculate_is_idempotent() -> None:
    hero = _make_character()
    hero.equip(_piece("chest", "warrior_set", hp=30, defense=6))
    hero.equip(_piece("legs", "warrior_set", hp=20, defense=4))

    first = hero.recalculate_stats().copy()
    second = hero.recalculate_stats().copy()

    assert first == second
    assert hero.current_hp <= hero.max_hp


def test_sets_below_threshold_contribute_nothing() -> None:
    hero = _make_character()
    hero.equip(_piece("helmet", "warrior_set"))
    hero.equip(_piece("boots", "mage_set"))

    assert hero.equipped_sets == {"warrior_set": 1, "mage_set": 1}
    assert hero.set_bonus_stats() == Stats()
    assert hero.active_sets() == []


def test_crossing_one_threshold_applies_only_that_set() -> None:
    hero = _make_character()
    hero.equip(_piece("helmet", "warrior_set"))
    hero.equip(_piece("chest", "warrior_set"))
    hero.equip(_piece("boots", "mage_set"))

    bonus = hero.set_bonus_stats()

    assert bonus == Stats(hp=50, defense=10)
    assert hero.max_hp == 150
    [active] = hero.active_sets()
    assert active.set_id == "warrior_set"
    assert active.pieces == 2


def test_two_sets_compose_additively() -> None:
    hero = _make_character()
    for slot in ("helmet", "chest", "gloves"):
        hero.equip(_piece(slot, "warrior_set"))
    for slot in ("legs", "boots"):
        hero.equip(_piece(slot, "archer_set"))

    bonus = hero.set_bonus_stats()

    assert bonus.hp == 100
    assert bonus.defense == 20
    assert bonus.atk == 10
    assert bonus.spd == 5
    assert bonus.crit == pytest.approx(2.0)


def test_six_pieces_keep_the_five_piece_bonus() -> None:
    table = default_set_table()

    assert table.bonus_for("cleric_set", 1) is None
    assert table.bonus_for("cleric_set", 6) == table.bonus_for("cleric_set", 5)
    assert table.bonus_for("cleric_set", 5).special == "Holy Aura"
    assert table.bonus_for("unknown_set", 3) is None


def test_enchant_scales_item_stats() -> None:
    hero = _make_character()
    hero.equip(Item(id="sword", name="Sword", slot="weapon", stats=Stats(atk=25, crit=1.5)))

    result = hero.enchant("weapon", random.Random(0), guaranteed=True)

    assert result.success
    assert hero.equipped("weapon").display_name == "Sword +1"
    assert hero.stats.atk == 10 + 27
    assert hero.stats.crit == pytest.approx(5.0 + 1.65)


def test_power_score_weights() -> None:
    stats = Stats(hp=100, atk=10, defense=4, spd=3, crit=1.5)

    assert power_score(stats) == pytest.approx(100 + 20 + 6 + 3 + 15)


def test_character_mapping_restores_equipment() -> None:
    hero = _make_character()
    hero.equip(_piece("helmet", "warrior_set", hp=20))
    hero.equip(_piece("chest", "warrior_set", defense=5))
    hero.current_hp = 90

    restored = Character.from_mapping(hero.to_mapping())

    assert restored.stats == hero.stats
    assert restored.current_hp == 90
    assert restored.equipped_sets == {"warrior_set": 2}
