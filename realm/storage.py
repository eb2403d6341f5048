"""Save collaborators for player snapshots.

Snapshots are plain mappings produced by :class:`realm.state.WorldStateStore`.
:class:`TomlSaveStore` keeps one TOML document per player under
``<storage root>/saves`` and upgrades older documents through the migration
modules in ``realm/migrations/saves`` when they are read back.
"""

from __future__ import annotations

import asyncio
import importlib.util
import logging
import math
import os
import tempfile
from copy import deepcopy
from dataclasses import dataclass
from datetime import date, datetime
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, Mapping, MutableMapping, Optional, Protocol
from urllib.parse import quote, unquote

import tomllib

from .errors import PersistenceFailure

log = logging.getLogger(__name__)

# Version written into every snapshot document.
SCHEMA_VERSION = 2

_MIGRATIONS_BASE = Path(__file__).resolve().parent / "migrations"


def _is_site_packages(path: Path) -> bool:
    """Return ``True`` if ``path`` is inside a site/dist-packages directory."""

    normalized = {part.lower() for part in path.parts}
    return "site-packages" in normalized or "dist-packages" in normalized


def resolve_storage_root(package_root: Path) -> Path:
    """Determine where save files should live.

    ``REALM_DATA_ROOT`` (or ``REALM_STORAGE_ROOT``) wins when set.  An
    installed, read-only package falls back to the working directory;
    otherwise data stays next to the source tree.
    """

    override = os.getenv("REALM_DATA_ROOT") or os.getenv("REALM_STORAGE_ROOT")
    if override:
        return Path(override).expanduser().resolve()

    if _is_site_packages(package_root) or not os.access(package_root, os.W_OK):
        return Path.cwd().resolve()

    return package_root


# ---------------------------------------------------------------------------
# Serialisation helpers
# ---------------------------------------------------------------------------


def _normalize_for_toml(value: Any) -> Any:
    """Reduce a snapshot to TOML types; ``None`` entries are dropped."""

    if isinstance(value, Mapping):
        return {
            str(key.value if isinstance(key, Enum) else key): _normalize_for_toml(item)
            for key, item in value.items()
            if item is not None
        }
    if isinstance(value, (list, tuple)):
        return [_normalize_for_toml(item) for item in value if item is not None]
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, float) and not math.isfinite(value):
        raise ValueError(f"Cannot store non-finite number {value!r}")
    if isinstance(value, (str, int, float)):
        return value
    raise TypeError(f"Cannot store {type(value).__name__} in a save")


def _quote_string(value: str) -> str:
    replacements = {
        "\\": "\\\\",
        '"': '\\"',
        "\b": "\\b",
        "\t": "\\t",
        "\n": "\\n",
        "\f": "\\f",
        "\r": "\\r",
    }

    def _escape_char(char: str) -> str:
        if char in replacements:
            return replacements[char]
        code = ord(char)
        if 0x20 <= code <= 0x7E:
            return char
        if code > 0xFFFF:
            return f"\\U{code:08x}"
        return f"\\u{code:04x}"

    return '"' + "".join(_escape_char(char) for char in value) + '"'


def _format_key(key: str) -> str:
    if key and all(char.isascii() and (char.isalnum() or char in "-_") for char in key):
        return key
    return _quote_string(key)


def _format_toml_value(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, int):
        return str(value)
    if isinstance(value, float):
        text = repr(value)
        if "e" in text or "E" in text or "." in text:
            return text
        return f"{text}.0"
    if isinstance(value, str):
        return _quote_string(value)
    if isinstance(value, list):
        if value and all(isinstance(item, Mapping) for item in value):
            raise TypeError("Nested table arrays handled separately")
        return "[" + ", ".join(_format_toml_value(item) for item in value) + "]"
    if isinstance(value, Mapping):
        raise TypeError("Mappings must be serialised via table handlers")
    return _quote_string(str(value))


def _serialize_table(
    data: Mapping[str, Any],
    *,
    parent: tuple[str, ...] | None = None,
    output: list[str],
) -> None:
    parent = parent or ()
    simple_items: list[tuple[str, Any]] = []
    tables: list[tuple[str, Mapping[str, Any]]] = []
    array_tables: list[tuple[str, list[Mapping[str, Any]]]] = []

    for key, value in data.items():
        if isinstance(value, Mapping):
            tables.append((key, value))
        elif isinstance(value, list) and value and all(
            isinstance(item, Mapping) for item in value
        ):
            array_tables.append((key, value))
        else:
            simple_items.append((key, value))

    simple_items.sort(key=lambda item: item[0])
    tables.sort(key=lambda item: item[0])

    for key, value in simple_items:
        output.append(f"{_format_key(key)} = {_format_toml_value(value)}")

    for key, value in tables:
        path = (*parent, _format_key(key))
        if output and output[-1] != "":
            output.append("")
        output.append(f"[{'.'.join(path)}]")
        _serialize_table(value, parent=path, output=output)

    for key, items in array_tables:
        path = (*parent, _format_key(key))
        for item in items:
            if output and output[-1] != "":
                output.append("")
            output.append(f"[[{'.'.join(path)}]]")
            _serialize_table(item, parent=path, output=output)


def _toml_dumps(data: Mapping[str, Any]) -> str:
    normalized = _normalize_for_toml(data)
    if not isinstance(normalized, Mapping):
        raise TypeError("Top level TOML document must be a mapping")
    ordered = dict(sorted(normalized.items(), key=lambda item: item[0]))
    output: list[str] = []
    _serialize_table(ordered, output=output)
    return "\n".join(output) + "\n"


def _read_toml(path: Path) -> Any:
    try:
        with path.open("rb") as handle:
            return tomllib.load(handle)
    except FileNotFoundError:
        return None
    except (tomllib.TOMLDecodeError, OSError):
        log.warning("Unreadable save document at %s", path, exc_info=True)
        return None


def _write_toml(path: Path, payload: Mapping[str, Any]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    temp_path: Path | None = None
    data = _toml_dumps(payload)
    try:
        with tempfile.NamedTemporaryFile(
            "w", encoding="utf8", dir=path.parent, delete=False
        ) as handle:
            temp_path = Path(handle.name)
            handle.write(data)
            handle.flush()
            os.fsync(handle.fileno())
        os.replace(temp_path, path)
        temp_path = None
    finally:
        if temp_path is not None:
            try:
                temp_path.unlink()
            except FileNotFoundError:
                pass


# ---------------------------------------------------------------------------
# Migration runner
# ---------------------------------------------------------------------------


@dataclass(slots=True)
class MigrationModule:
    from_version: int
    to_version: int
    migrate: Callable[[MutableMapping[str, Any]], MutableMapping[str, Any] | None]
    description: str


class MissingMigrationError(RuntimeError):
    pass


class SnapshotMigrator:
    """Walks a stored snapshot from its recorded version up to ``target``."""

    def __init__(self, migrations_base: Path = _MIGRATIONS_BASE, *, collection: str = "saves") -> None:
        self._directory = migrations_base / collection
        self._collection = collection
        self._modules: Optional[list[MigrationModule]] = None

    def upgrade(self, payload: MutableMapping[str, Any], target: int = SCHEMA_VERSION) -> MutableMapping[str, Any]:
        current = _coerce_version(payload.get("schema_version"))
        if current >= target:
            return payload

        migrations = self._load()
        version = current
        while version < target:
            step = next((m for m in migrations if m.from_version == version), None)
            if step is None:
                raise MissingMigrationError(
                    f"Missing migration for {self._collection!r}: {version} -> {target}"
                )
            result = step.migrate(payload)
            if result is not None:
                payload = result
            log.info("Applied %s migration %d -> %d: %s", self._collection, version, step.to_version, step.description)
            version = step.to_version

        if version != target:
            raise MissingMigrationError(
                f"Incomplete migration chain for {self._collection!r}: {current} -> {target}"
            )
        payload["schema_version"] = target
        return payload

    def _load(self) -> list[MigrationModule]:
        if self._modules is not None:
            return self._modules
        modules: list[MigrationModule] = []
        if self._directory.is_dir():
            for path in sorted(self._directory.glob("*.py")):
                if path.name.startswith("__"):
                    continue
                spec = importlib.util.spec_from_file_location(
                    f"realm.migrations.{self._collection}.{path.stem}", path
                )
                if spec is None or spec.loader is None:
                    continue
                module = importlib.util.module_from_spec(spec)
                try:
                    spec.loader.exec_module(module)  # type: ignore[assignment]
                except Exception:
                    log.exception("Could not load migration %s", path)
                    continue
                from_version = getattr(module, "FROM_VERSION", None)
                to_version = getattr(module, "TO_VERSION", None)
                migrate = getattr(module, "migrate", None)
                if not isinstance(from_version, int) or not isinstance(to_version, int):
                    continue
                if not callable(migrate):
                    continue
                modules.append(
                    MigrationModule(
                        from_version=from_version,
                        to_version=to_version,
                        migrate=migrate,
                        description=str(getattr(module, "DESCRIPTION", path.stem)),
                    )
                )
        modules.sort(key=lambda module: module.from_version)
        self._modules = modules
        return modules


def _coerce_version(value: Any) -> int:
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    try:
        return int(value)
    except (TypeError, ValueError):
        return 0


# ---------------------------------------------------------------------------
# Save services
# ---------------------------------------------------------------------------


class SaveService(Protocol):
    """Opaque, eventually consistent snapshot persistence."""

    async def save(self, player_id: str, snapshot: Mapping[str, Any]) -> None:
        ...

    async def load(self, player_id: str) -> Optional[Mapping[str, Any]]:
        ...


class TomlSaveStore:
    """One TOML document per player, replaced atomically on every save."""

    def __init__(self, root: Optional[Path] = None, *, migrator: Optional[SnapshotMigrator] = None) -> None:
        if root is None:
            package_root = Path(__file__).resolve().parent.parent
            root = resolve_storage_root(package_root)
        self._root = Path(root)
        self._migrator = migrator or SnapshotMigrator()
        self._lock = asyncio.Lock()

    @property
    def directory(self) -> Path:
        return self._root / "saves"

    def path_for(self, player_id: str) -> Path:
        return self.directory / f"{quote(str(player_id), safe='')}.toml"

    async def save(self, player_id: str, snapshot: Mapping[str, Any]) -> None:
        async with self._lock:
            payload = dict(deepcopy(snapshot))
            payload["schema_version"] = SCHEMA_VERSION
            path = self.path_for(player_id)
            try:
                _write_toml(path, payload)
            except (OSError, TypeError, ValueError, RuntimeError) as exc:
                raise PersistenceFailure(str(player_id), f"could not write {path}: {exc}") from exc

    async def load(self, player_id: str) -> Optional[Mapping[str, Any]]:
        async with self._lock:
            path = self.path_for(player_id)
            payload = _read_toml(path)
            if not isinstance(payload, MutableMapping):
                return None
            try:
                return self._migrator.upgrade(payload)
            except MissingMigrationError as exc:
                raise PersistenceFailure(str(player_id), str(exc)) from exc

    def player_ids(self) -> list[str]:
        if not self.directory.exists():
            return []
        return [unquote(path.stem) for path in sorted(self.directory.glob("*.toml"))]


class MemorySaveService:
    """Keeps snapshots in a dictionary; used for tests and offline play."""

    def __init__(self) -> None:
        self.saves: Dict[str, Dict[str, Any]] = {}
        self.save_count = 0

    async def save(self, player_id: str, snapshot: Mapping[str, Any]) -> None:
        self.saves[str(player_id)] = deepcopy(dict(snapshot))
        self.save_count += 1

    async def load(self, player_id: str) -> Optional[Mapping[str, Any]]:
        stored = self.saves.get(str(player_id))
        return deepcopy(stored) if stored is not None else None


__all__ = [
    "MemorySaveService",
    "MissingMigrationError",
    "SCHEMA_VERSION",
    "SaveService",
    "SnapshotMigrator",
    "TomlSaveStore",
    "resolve_storage_root",
]
