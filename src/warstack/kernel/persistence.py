"""
Persistence scheduler - debounced, forced and periodic snapshot saves

Decides WHEN a save runs; what a save does is the caller's business. All
timers live on the running asyncio loop:

- schedule_save: cancel-and-replace debounce, only the last request in a
  burst actually saves
- force_save: skip the debounce and await the save right now
- start_auto_persist: background task that saves every interval

Timer-driven saves have nobody to raise to, so their failures are logged and
counted instead. There is no automatic retry; the next trigger simply tries
again.
"""

import asyncio
import contextlib
from collections.abc import Awaitable, Callable

from warstack.kernel.config import PersistencePolicy
from warstack.kernel.logging import get_logger
from warstack.kernel.metrics import snapshot_saves_total

logger = get_logger(__name__)

SaveFn = Callable[[], Awaitable[None]]


class PersistenceScheduler:
    """Debounce and interval timers around an async save function"""

    def __init__(self, policy: PersistencePolicy | None = None) -> None:
        self.policy = policy or PersistencePolicy()
        self._debounce: asyncio.TimerHandle | None = None
        self._auto_task: asyncio.Task[None] | None = None
        self._inflight: set[asyncio.Task[None]] = set()

    @property
    def has_pending_save(self) -> bool:
        """True while a debounced save is waiting for its quiet period"""
        return self._debounce is not None

    @property
    def is_auto_persisting(self) -> bool:
        return self._auto_task is not None and not self._auto_task.done()

    def schedule_save(self, save_fn: SaveFn) -> None:
        """
        Request a save after the debounce period

        A later request within the window replaces this one. Must be called
        from inside a running event loop.
        """
        loop = asyncio.get_running_loop()
        self._cancel_debounce()
        self._debounce = loop.call_later(
            self.policy.debounce_ms / 1000.0, self._fire_debounced, loop, save_fn
        )

    def _fire_debounced(self, loop: asyncio.AbstractEventLoop, save_fn: SaveFn) -> None:
        self._debounce = None
        task = loop.create_task(self._run_save(save_fn, trigger="debounce"))
        self._inflight.add(task)
        task.add_done_callback(self._inflight.discard)

    async def force_save(self, save_fn: SaveFn) -> None:
        """
        Cancel any pending debounced save and save immediately

        Raises:
            Whatever save_fn raises
        """
        self._cancel_debounce()
        try:
            await save_fn()
        except Exception as e:
            snapshot_saves_total.labels(trigger="forced", status="failure").inc()
            logger.error("Forced save failed", error=str(e))
            raise
        snapshot_saves_total.labels(trigger="forced", status="success").inc()

    def start_auto_persist(self, save_fn: SaveFn) -> None:
        """Start (or restart) the periodic save loop"""
        self.stop_auto_persist()
        self._auto_task = asyncio.get_running_loop().create_task(self._auto_loop(save_fn))
        logger.debug(
            "Auto-persist started",
            interval_ms=self.policy.auto_persist_interval_ms,
        )

    def stop_auto_persist(self) -> None:
        if self._auto_task is not None:
            self._auto_task.cancel()
            self._auto_task = None
            logger.debug("Auto-persist stopped")

    async def drain(self) -> None:
        """Wait for debounced saves that have already started"""
        if self._inflight:
            await asyncio.gather(*list(self._inflight), return_exceptions=True)

    async def aclose(self) -> None:
        """Cancel every timer and wait for running saves to finish"""
        self._cancel_debounce()
        task = self._auto_task
        self.stop_auto_persist()
        if task is not None:
            with contextlib.suppress(asyncio.CancelledError):
                await task
        await self.drain()

    async def _auto_loop(self, save_fn: SaveFn) -> None:
        interval = self.policy.auto_persist_interval_ms / 1000.0
        while True:
            await asyncio.sleep(interval)
            await self._run_save(save_fn, trigger="interval")

    async def _run_save(self, save_fn: SaveFn, *, trigger: str) -> None:
        try:
            await save_fn()
        except Exception as e:
            snapshot_saves_total.labels(trigger=trigger, status="failure").inc()
            logger.error("Scheduled save failed", trigger=trigger, error=str(e), exc_info=True)
            return
        snapshot_saves_total.labels(trigger=trigger, status="success").inc()

    def _cancel_debounce(self) -> None:
        if self._debounce is not None:
            self._debounce.cancel()
            self._debounce = None
