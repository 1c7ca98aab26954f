from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable
from datetime import datetime
from typing import Any

from . import config
from .schemas import RuntimeHealthRead
from .services.collaborators import utcnow
from .services.session_registry import SessionRegistry

logger = logging.getLogger(__name__)


class TickLoop:
    """Drives the registry clock from the event loop.

    Whole elapsed seconds are applied: one second is a regular tick, a longer
    gap (a stalled loop, a slept host) is applied at once through
    SessionRegistry.advance so timers stay in step with wall time.
    """

    def __init__(
        self,
        registry: SessionRegistry,
        interval_sec: float | None = None,
        monotonic: Callable[[], float] = time.monotonic,
    ) -> None:
        self._registry = registry
        self._interval_sec = interval_sec if interval_sec is not None else config.TICK_INTERVAL_SEC
        self._monotonic = monotonic
        self._task: asyncio.Task[Any] | None = None
        self._last_mark: float | None = None
        self._carry_sec = 0.0

        self.ticks_total = 0
        self.dropped_ticks_total = 0
        self.dropped_ticks_last = 0
        self.tick_lag_sec = 0.0
        self.last_tick_at: datetime | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._last_mark = self._monotonic()
        self._carry_sec = 0.0
        self._task = asyncio.get_running_loop().create_task(self._run())
        logger.info("Tick loop started, interval %.2fs", self._interval_sec)

    async def stop(self) -> None:
        task = self._task
        self._task = None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        logger.info("Tick loop stopped after %s ticks", self.ticks_total)

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self._interval_sec)
            try:
                self.step()
            except Exception:
                logger.exception("Tick loop step failed")

    def step(self) -> int:
        """Apply the whole seconds elapsed since the previous step; returns them."""
        now_mark = self._monotonic()
        if self._last_mark is None:
            self._last_mark = now_mark
            return 0
        raw_delta = max(0.0, now_mark - self._last_mark)
        self._last_mark = now_mark

        if self._registry.is_suspended:
            # resume() reconciles the suspended interval from wall time.
            self._carry_sec = 0.0
            return 0

        self._carry_sec += raw_delta
        whole_seconds = int(self._carry_sec)
        if whole_seconds <= 0:
            return 0
        self._carry_sec -= whole_seconds

        if whole_seconds == 1:
            self._registry.tick()
        else:
            self._registry.advance(float(whole_seconds))

        self.ticks_total += 1
        self.dropped_ticks_last = whole_seconds - 1
        self.dropped_ticks_total += self.dropped_ticks_last
        self.tick_lag_sec = round(max(0.0, raw_delta - self._interval_sec), 3)
        self.last_tick_at = utcnow()
        if self.dropped_ticks_last:
            logger.warning(
                "Tick loop lagged %.3fs, applied %s seconds at once",
                self.tick_lag_sec,
                whole_seconds,
            )
        return whole_seconds

    def health(self) -> RuntimeHealthRead:
        return RuntimeHealthRead(
            ticks_total=self.ticks_total,
            dropped_ticks_total=self.dropped_ticks_total,
            dropped_ticks_last=self.dropped_ticks_last,
            tick_lag_sec=self.tick_lag_sec,
            last_tick_at=self.last_tick_at,
            loop_interval_sec=self._interval_sec,
        )
