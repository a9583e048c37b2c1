import asyncio
from dataclasses import dataclass, field
from typing import Awaitable, Callable, List, Optional

from backend import ConnectionRegistry, RoomTable
from constants import IDLE_TIMEOUT_SECONDS, REAP_INTERVAL_SECONDS
from events import REASON_INACTIVE, Outbound
from logging_config import get_logger
from presence import PresenceNotifier

logger = get_logger(__name__)


@dataclass
class ReapResult:
    evicted: List[str] = field(default_factory=list)
    pruned_rooms: List[str] = field(default_factory=list)
    outbound: List[Outbound] = field(default_factory=list)


class IdleReaper:
    """Periodically evicts connections that stopped sending anything.

    ``sweep()`` is synchronous, so on the event loop it never interleaves
    with a message handler. The background loop hands each result to
    ``on_sweep`` for delivery and socket teardown.
    """

    def __init__(
        self,
        registry: ConnectionRegistry,
        rooms: RoomTable,
        presence: PresenceNotifier,
        *,
        interval: float = REAP_INTERVAL_SECONDS,
        threshold: float = IDLE_TIMEOUT_SECONDS,
    ) -> None:
        if interval <= 0:
            raise ValueError("interval must be > 0")
        if threshold <= 0:
            raise ValueError("threshold must be > 0")
        self.registry = registry
        self.rooms = rooms
        self.presence = presence
        self.interval = interval
        self.threshold = threshold
        self._task: Optional[asyncio.Task] = None

    def sweep(self, now: Optional[float] = None) -> ReapResult:
        now = self.registry.now() if now is None else now
        result = ReapResult()

        for connection_id in self.registry.ids():
            if not self.registry.is_stale(connection_id, now, self.threshold):
                continue
            vacated = self.rooms.leave(connection_id)
            result.outbound.extend(self.presence.disconnected(connection_id, vacated, REASON_INACTIVE))
            self.registry.unregister(connection_id)
            result.evicted.append(connection_id)
            logger.info(f"Evicted inactive connection {connection_id}")

        result.pruned_rooms = self.rooms.prune_empty()
        if result.evicted or result.pruned_rooms:
            logger.info(
                f"Reaper sweep: evicted {len(result.evicted)} connections, "
                f"pruned {len(result.pruned_rooms)} rooms"
            )
        return result

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self, on_sweep: Callable[[ReapResult], Awaitable[None]]) -> asyncio.Task:
        if self.running:
            return self._task
        self._task = asyncio.create_task(self._loop(on_sweep), name="idle-reaper")
        logger.info(f"Idle reaper started (interval={self.interval}s, threshold={self.threshold}s)")
        return self._task

    async def stop(self) -> None:
        if self._task is None:
            return
        task, self._task = self._task, None
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        logger.info("Idle reaper stopped")

    async def _loop(self, on_sweep: Callable[[ReapResult], Awaitable[None]]) -> None:
        while True:
            await asyncio.sleep(self.interval)
            result = self.sweep()
            if result.outbound or result.evicted:
                await on_sweep(result)
