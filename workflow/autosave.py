"""Periodic background save for an open review session."""

import asyncio
import logging
from typing import Awaitable, Callable, Optional

logger = logging.getLogger(__name__)


class AutosaveScheduler:
    """
    Runs a save callback every `interval_seconds` on the running event loop.

    One instance belongs to one session. start() and stop() are idempotent,
    so the timer can never be duplicated.
    """

    def __init__(self, save: Callable[[], Awaitable[bool]], interval_seconds: float):
        if interval_seconds <= 0:
            raise ValueError("Autosave interval must be positive")
        self._save = save
        self.interval_seconds = interval_seconds
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.get_running_loop().create_task(
            self._run(), name="review-autosave"
        )
        logger.debug("Autosave started (every %ss)", self.interval_seconds)

    def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        self._task = None
        logger.debug("Autosave stopped")

    async def shutdown(
        self, final_save: Callable[[], Awaitable[None]], grace_seconds: float
    ) -> None:
        """
        Stop ticking and make one last save attempt.

        The attempt is abandoned after `grace_seconds` and its outcome is
        only logged: at teardown there is nobody left to tell.
        """
        task = self._task
        self.stop()
        if task is not None and task is not asyncio.current_task():
            await asyncio.wait([task])
        try:
            await asyncio.wait_for(final_save(), timeout=grace_seconds)
        except asyncio.TimeoutError:
            logger.debug("Teardown save abandoned after %ss", grace_seconds)
        except Exception as e:
            logger.debug("Teardown save failed: %s", e)

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.interval_seconds)
            try:
                await self._save()
            except Exception:
                logger.exception("Autosave tick failed")
