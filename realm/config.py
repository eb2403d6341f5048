"""Engine configuration utilities."""

from __future__ import annotations

import os
from dataclasses import dataclass

from .energy import DEFAULT_MAX_ENERGY, DEFAULT_REGEN_RATE

_TRUTHY = {"1", "true", "yes", "on"}


def env(name: str, default: str | None = None) -> str:
    value = os.getenv(name, default)
    if value is None:
        raise RuntimeError(f"Missing required environment variable: {name}")
    return value


def env_flag(name: str, default: bool = False) -> bool:
    return env(name, "1" if default else "0").strip().lower() in _TRUTHY


@dataclass(slots=True)
class EngineConfig:
    player_id: str = "local"
    unlimited_energy: bool = False
    save_debounce_seconds: float = 2.0
    cycle_check_seconds: float = 60.0
    heartbeat_seconds: float = 15.0
    max_energy: int = DEFAULT_MAX_ENERGY
    energy_regen_rate: int = DEFAULT_REGEN_RATE
    merchant_count: int = 2
    data_root: str | None = None

    @classmethod
    def from_env(cls) -> "EngineConfig":
        player_id = env("REALM_PLAYER_ID", "local")
        unlimited_energy = env_flag("REALM_UNLIMITED_ENERGY")
        save_debounce_seconds = float(os.getenv("REALM_SAVE_DEBOUNCE", "2.0"))
        cycle_check_seconds = float(os.getenv("REALM_CYCLE_CHECK_INTERVAL", "60"))
        heartbeat_seconds = float(os.getenv("REALM_HEARTBEAT_INTERVAL", "15"))
        max_energy = int(os.getenv("REALM_MAX_ENERGY", str(DEFAULT_MAX_ENERGY)))
        energy_regen_rate = int(os.getenv("REALM_ENERGY_REGEN", str(DEFAULT_REGEN_RATE)))
        merchant_count = int(os.getenv("REALM_MERCHANT_COUNT", "2"))
        data_root = os.getenv("REALM_DATA_ROOT") or None

        save_debounce_seconds = max(0.0, save_debounce_seconds)
        cycle_check_seconds = max(1.0, cycle_check_seconds)
        heartbeat_seconds = max(1.0, heartbeat_seconds)
        max_energy = max(0, max_energy)
        energy_regen_rate = max(0, energy_regen_rate)
        merchant_count = max(0, merchant_count)

        return cls(
            player_id=player_id,
            unlimited_energy=unlimited_energy,
            save_debounce_seconds=save_debounce_seconds,
            cycle_check_seconds=cycle_check_seconds,
            heartbeat_seconds=heartbeat_seconds,
            max_energy=max_energy,
            energy_regen_rate=energy_regen_rate,
            merchant_count=merchant_count,
            data_root=data_root,
        )


__all__ = ["EngineConfig", "env", "env_flag"]
