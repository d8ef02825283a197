from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from typing import Callable

from loguru import logger


@dataclass
class HealthMonitor:
    on_stale: Callable[[float], None]
    interval_sec: float = 30.0
    max_inactivity_sec: float = 120.0
    clock: Callable[[], float] = time.time
    last_activity_at: float = 0.0
    last_checked_at: float | None = None
    monitoring: bool = False
    _task: asyncio.Task | None = field(default=None, repr=False)

    def touch(self) -> None:
        self.last_activity_at = self.clock()

    def seconds_since_activity(self) -> float:
        return self.clock() - self.last_activity_at

    def start(self) -> None:
        self.stop()
        self.touch()
        self.monitoring = True
        self._task = asyncio.get_running_loop().create_task(self._run())
        logger.debug("Health monitoring started (every {}s)", self.interval_sec)

    def stop(self) -> None:
        self.monitoring = False
        if self._task is not None:
            self._task.cancel()
            self._task = None
            logger.debug("Health monitoring stopped")

    def check(self) -> bool:
        """One tick; returns True when the connection was declared stale."""
        idle = self.seconds_since_activity()
        if self.monitoring and idle > self.max_inactivity_sec:
            logger.warning("Connection dead: no activity for {:.0f}s, forcing reconnect", idle)
            self.monitoring = False
            self.on_stale(idle)
            return True
        self.last_checked_at = self.clock()
        logger.debug("Health check: connection alive (last activity {:.0f}s ago)", idle)
        return False

    async def _run(self) -> None:
        while self.monitoring:
            await asyncio.sleep(self.interval_sec)
            if not self.monitoring:
                break
            try:
                self.check()
            except Exception as e:
                logger.exception("Health check failed: {}", e)
