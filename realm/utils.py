"""Command line helpers for inspecting worlds and player saves."""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from collections import Counter
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Mapping, Sequence, SupportsInt

from .config import EngineConfig
from .cycles import TimeOfDayCycle, WeatherCycle
from .energy import EnergyState
from .errors import InsufficientResource, PersistenceFailure, ValidationError
from .generation import GenerationConfig, WorldGenerator
from .models.world import WorldMap
from .state import WorldStateStore
from .storage import TomlSaveStore
from .ticker import WorldTicker
from .travel import WorldEngine

log = logging.getLogger(__name__)


def format_number(value: SupportsInt) -> str:
    """Return ``value`` with ``'`` as the thousands separator."""

    integer = int(value)
    sign = "-" if integer < 0 else ""
    formatted = f"{abs(integer):,}".replace(",", "'")
    return f"{sign}{formatted}"


def _parse_date(value: str | None) -> datetime:
    if not value:
        return datetime.now(timezone.utc)
    try:
        parsed = datetime.strptime(value, "%Y-%m-%d")
    except ValueError:
        raise argparse.ArgumentTypeError(f"Expected YYYY-MM-DD, got {value!r}") from None
    return parsed.replace(hour=12, tzinfo=timezone.utc)


def describe_world(world: WorldMap, now: datetime) -> list[str]:
    terrain = Counter(tile.terrain.value for _, tile in world.iter_tiles())
    kinds = Counter(obj.kind.value for obj in world.static_objects)
    dynamic = Counter(obj.kind.value for obj in world.dynamic_objects)
    weather_eta = WeatherCycle(None).time_until_change(world.weather, now)
    time_eta = TimeOfDayCycle().time_until_change(world.time_of_day, now)

    lines = [
        f"World {world.seed} ({world.width}x{world.height}, epoch {world.epoch})",
        f"Explored tiles: {format_number(world.explored_count())}",
        f"Weather: {world.weather.current} -> {world.weather.next} in {weather_eta}",
        f"Time of day: {world.time_of_day.current} -> {world.time_of_day.next} in {time_eta}",
        "Terrain: " + ", ".join(f"{name} {count}" for name, count in sorted(terrain.items())),
        "Static objects: " + ", ".join(f"{name} {count}" for name, count in sorted(kinds.items())),
        "Dynamic objects: " + ", ".join(f"{name} {count}" for name, count in sorted(dynamic.items())),
    ]
    for obj in world.static_objects:
        if obj.kind.value in {"town", "dungeon"}:
            lines.append(f"  - {obj.name} [{obj.kind.value}] at ({obj.position.x}, {obj.position.y})")
    return lines


def _command_summary(args: argparse.Namespace) -> int:
    now = _parse_date(args.date)
    overrides: dict[str, Any] = {"width": args.width, "height": args.height}
    if args.seed:
        overrides["seed"] = args.seed
    world = WorldGenerator().generate(GenerationConfig.daily(now, **overrides), now)
    for line in describe_world(world, now):
        print(line)
    return 0


def _save_store(args: argparse.Namespace) -> TomlSaveStore:
    root = Path(args.data_root).resolve() if args.data_root else None
    return TomlSaveStore(root)


def _command_list_saves(args: argparse.Namespace) -> int:
    store = _save_store(args)
    players = store.player_ids()
    if not players:
        print(f"No saves found in {store.directory}.")
        return 0
    print(f"Saves in {store.directory}:")
    for player_id in players:
        print(f"  - {player_id}")
    return 0


def _command_show_save(args: argparse.Namespace) -> int:
    store = _save_store(args)
    try:
        data = asyncio.run(store.load(args.player))
    except PersistenceFailure as exc:
        print(f"Could not read save for {args.player}: {exc}", file=sys.stderr)
        return 1
    if data is None:
        print(f"No save found for {args.player}.", file=sys.stderr)
        return 1

    player: Mapping[str, Any] = data.get("player") or {}
    energy = player.get("energy") or {}
    position = player.get("position") or {}
    print(f"Player {args.player} (schema {data.get('schema_version')}, revision {data.get('revision', 0)})")
    print(f"Position: ({position.get('x', '?')}, {position.get('y', '?')})")
    if isinstance(energy, Mapping) and energy:
        pool = EnergyState.from_mapping(energy)
        line = f"Energy: {pool.current}/{pool.maximum}"
        if pool.hours_to_full():
            line += f" (full in {pool.hours_to_full():.1f}h)"
        print(line)
    else:
        print("Energy: 0/0")
    print(f"Gold: {format_number(player.get('gold', 0))}")
    print(f"Discovered locations: {len(player.get('discovered_locations') or [])}")
    for character in player.get("characters") or []:
        print(f"  - {character.get('name')} (level {character.get('level', 1)})")
    world = data.get("world")
    if isinstance(world, Mapping):
        print(f"World: {world.get('seed')} epoch {world.get('epoch')}")
    return 0


def _open_store(config: EngineConfig) -> WorldStateStore:
    root = Path(config.data_root).resolve() if config.data_root else None
    return WorldStateStore(
        config.player_id,
        TomlSaveStore(root),
        debounce_seconds=config.save_debounce_seconds,
        merchant_count=config.merchant_count,
        energy=EnergyState(
            current=config.max_energy,
            maximum=config.max_energy,
            regen_rate=config.energy_regen_rate,
        ),
    )


async def _run(config: EngineConfig, duration: float) -> None:
    store = _open_store(config)
    await store.load()
    store.tick()
    ticker = WorldTicker(
        store,
        cycle_check_seconds=config.cycle_check_seconds,
        heartbeat_seconds=config.heartbeat_seconds,
    )
    ticker.start()
    try:
        if duration > 0:
            await asyncio.sleep(duration)
        else:
            await asyncio.Event().wait()
    finally:
        await ticker.stop()
        await store.close()


def _command_run(args: argparse.Namespace) -> int:
    config = EngineConfig.from_env()
    if args.player:
        config.player_id = args.player
    if args.data_root:
        config.data_root = args.data_root
    try:
        asyncio.run(_run(config, args.duration))
    except KeyboardInterrupt:
        log.info("Interrupted, state flushed")
    return 0


async def _move(config: EngineConfig, x: int, y: int) -> int:
    store = _open_store(config)
    await store.load()
    engine = WorldEngine.from_config(store, config)
    try:
        result = engine.move(x, y)
    except (ValidationError, InsufficientResource) as exc:
        print(f"Move rejected: {exc}", file=sys.stderr)
        return 1
    finally:
        await store.close()
    energy = store.player.energy
    print(f"Moved to ({x}, {y}) for {result.cost} energy, {energy.current}/{energy.maximum} left")
    for location in result.discovered:
        print(f"  discovered {location.name} [{location.kind}]")
    return 0


def _command_move(args: argparse.Namespace) -> int:
    config = EngineConfig.from_env()
    if args.player:
        config.player_id = args.player
    if args.data_root:
        config.data_root = args.data_root
    return asyncio.run(_move(config, args.x, args.y))


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Utilities for generated worlds and player saves.")
    parser.add_argument(
        "--data-root",
        help="Directory that holds the saves folder (default: REALM_DATA_ROOT or the package root)",
    )
    parser.add_argument("--verbose", action="store_true", help="Enable debug logging")

    subparsers = parser.add_subparsers(dest="command")

    summary_parser = subparsers.add_parser("summary", help="Generate a world and describe it")
    summary_parser.add_argument("--date", help="UTC day to generate (YYYY-MM-DD, default: today)")
    summary_parser.add_argument("--seed", help="Explicit seed instead of the daily one")
    summary_parser.add_argument("--width", type=int, default=50)
    summary_parser.add_argument("--height", type=int, default=50)
    summary_parser.set_defaults(func=_command_summary)

    list_parser = subparsers.add_parser("list-saves", help="Show stored player saves")
    list_parser.set_defaults(func=_command_list_saves)

    show_parser = subparsers.add_parser("show-save", help="Print one player's save")
    show_parser.add_argument("player", help="Player identifier")
    show_parser.set_defaults(func=_command_show_save)

    run_parser = subparsers.add_parser("run", help="Keep a player's world ticking")
    run_parser.add_argument("--player", help="Player identifier (default: REALM_PLAYER_ID)")
    run_parser.add_argument(
        "--duration",
        type=float,
        default=0.0,
        help="Seconds to run before flushing and exiting (default: until interrupted)",
    )
    run_parser.set_defaults(func=_command_run)

    move_parser = subparsers.add_parser("move", help="Move a player to an explored tile")
    move_parser.add_argument("x", type=int)
    move_parser.add_argument("y", type=int)
    move_parser.add_argument("--player", help="Player identifier (default: REALM_PLAYER_ID)")
    move_parser.set_defaults(func=_command_move)

    return parser


def main(argv: Sequence[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.INFO)
    if not getattr(args, "command", None):
        parser.print_help()
        return 0
    try:
        return args.func(args)
    except argparse.ArgumentTypeError as exc:
        parser.error(str(exc))
        return 2


__all__ = ["build_parser", "describe_world", "format_number", "main"]


if __name__ == "__main__":  # pragma: no cover - CLI entry point
    raise SystemExit(main())
