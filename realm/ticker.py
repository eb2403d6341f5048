"""Background loops that keep a running world current.

Two cadences run side by side: a cycle check that advances weather, time of
day, dynamic objects and energy, and a presence heartbeat that tells an
optional reporter the player is still connected.  A failing iteration is
logged and the loop keeps going.
"""

from __future__ import annotations

import asyncio
import logging
import time
from datetime import datetime
from typing import Awaitable, Callable, Optional, Protocol

from .models.map import utcnow
from .state import WorldStateStore

log = logging.getLogger(__name__)

DEFAULT_CYCLE_CHECK_SECONDS = 60.0
DEFAULT_HEARTBEAT_SECONDS = 15.0


class PresenceReporter(Protocol):
    async def heartbeat(self, player_id: str, now: datetime) -> None:
        ...


class WorldTicker:
    def __init__(
        self,
        store: WorldStateStore,
        *,
        cycle_check_seconds: float = DEFAULT_CYCLE_CHECK_SECONDS,
        heartbeat_seconds: float = DEFAULT_HEARTBEAT_SECONDS,
        presence: Optional[PresenceReporter] = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.store = store
        self.cycle_check_seconds = max(0.0, float(cycle_check_seconds))
        self.heartbeat_seconds = max(0.0, float(heartbeat_seconds))
        self.presence = presence
        self._clock = clock
        self._tasks: list[asyncio.Task] = []
        self.ticks = 0
        self.heartbeats = 0

    @property
    def running(self) -> bool:
        return any(not task.done() for task in self._tasks)

    def tick_once(self) -> bool:
        self.ticks += 1
        return self.store.tick(self._clock())

    async def heartbeat_once(self) -> None:
        self.heartbeats += 1
        if self.presence is not None:
            await self.presence.heartbeat(self.store.player_id, self._clock())

    async def _run_every(self, interval: float, label: str, step: Callable[[], Awaitable[None]]) -> None:
        started = time.monotonic()
        iteration = 0
        while True:
            try:
                await step()
            except asyncio.CancelledError:
                raise
            except Exception:
                log.exception("%s for %s failed", label, self.store.player_id)
            iteration += 1
            # Sleep to the next slot so a slow step does not push the cadence.
            target = started + iteration * interval
            await asyncio.sleep(max(0.0, target - time.monotonic()))

    async def _tick_step(self) -> None:
        if self.tick_once():
            log.debug("World state advanced for %s", self.store.player_id)

    def start(self) -> None:
        if self.running:
            return
        loop = asyncio.get_running_loop()
        self._tasks = [
            loop.create_task(self._run_every(self.cycle_check_seconds, "Cycle check", self._tick_step)),
            loop.create_task(self._run_every(self.heartbeat_seconds, "Heartbeat", self.heartbeat_once)),
        ]
        log.info(
            "Ticker started for %s (cycle check %.0fs, heartbeat %.0fs)",
            self.store.player_id,
            self.cycle_check_seconds,
            self.heartbeat_seconds,
        )

    async def stop(self) -> None:
        tasks, self._tasks = self._tasks, []
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        if tasks:
            log.info("Ticker stopped for %s", self.store.player_id)


__all__ = [
    "DEFAULT_CYCLE_CHECK_SECONDS",
    "DEFAULT_HEARTBEAT_SECONDS",
    "PresenceReporter",
    "WorldTicker",
]
