from __future__ import annotations

import asyncio
from typing import List, Optional

from .connections import ConnectionDirectory
from .constants import SWEEP_INTERVAL_SEC, CloseReason
from .logging_config import get_logger
from .registry import RoomRegistry
from .room_logic import close_room

logger = get_logger(__name__)


class ExpirySweeper:
    """Periodically closes rooms older than the registry's age limit.

    The task is owned by the application lifespan: ``start()`` on startup,
    ``stop()`` on shutdown.
    """

    def __init__(
        self,
        registry: RoomRegistry,
        connections: ConnectionDirectory,
        interval: float = SWEEP_INTERVAL_SEC,
    ):
        self.registry = registry
        self.connections = connections
        self.interval = interval
        self.task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self.task is not None and not self.task.done()

    def start(self) -> None:
        if self.running:
            return
        self.task = asyncio.create_task(self._run(), name="room-expiry-sweeper")
        logger.info(f"Expiry sweeper started (interval={self.interval}s, max age={self.registry.max_age_ms // 1000}s)")

    async def stop(self) -> None:
        if self.task is None:
            return
        self.task.cancel()
        try:
            await self.task
        except asyncio.CancelledError:
            pass
        self.task = None
        logger.info("Expiry sweeper stopped")

    async def sweep(self, now: Optional[int] = None) -> List[str]:
        """Close every expired room once; returns the closed codes."""
        closed: List[str] = []
        for room in self.registry.expired(now):
            # A handler may have removed it while an earlier close was sending.
            if self.registry.get(room.code) is not room:
                continue
            await close_room(self.registry, self.connections, room, CloseReason.TIMEOUT)
            closed.append(room.code)
        if closed:
            logger.info(f"Expired {len(closed)} room(s): {', '.join(closed)}")
        return closed

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.interval)
            try:
                await self.sweep()
            except Exception as e:
                logger.error(f"Room sweep failed: {e}", exc_info=True)


__all__ = ["ExpirySweeper"]
