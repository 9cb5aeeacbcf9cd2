import asyncio
from typing import Awaitable, Callable, Optional

from core.config import settings
from core.logger import logger
from services.live_session import LiveSession
from services.task_manager import TaskManager, task_manager


class ExamTimer:
    """
    Per-second countdown for a timed session.
    Completes the session when time runs out and checkpoints it every
    `checkpoint_interval` ticks.
    """

    def __init__(
        self,
        service,
        live: LiveSession,
        tick_seconds: float = None,
        checkpoint_interval: int = None,
        tasks: TaskManager = None,
        sleep: Callable[[float], Awaitable] = asyncio.sleep,
    ):
        self.service = service
        self.live = live
        self.tick_seconds = settings.TICK_SECONDS if tick_seconds is None else tick_seconds
        self.checkpoint_interval = checkpoint_interval or settings.CHECKPOINT_INTERVAL_TICKS
        self.tasks = tasks or task_manager
        self._sleep = sleep

    @property
    def running(self) -> bool:
        return self.tasks.is_running(self.live.id)

    def start(self) -> Optional[asyncio.Task]:
        if not self.live.timer_enabled or not self.live.is_active:
            return None
        if self.running:
            return self.tasks.get_task(self.live.id)
        task = asyncio.create_task(self._run(), name=f"exam-timer:{self.live.id}")
        self.tasks.register_task(self.live.id, task)
        logger.debug("Exam timer started", session_id=self.live.id, time_remaining=self.live.time_remaining)
        return task

    def stop(self):
        self.tasks.cancel_task(self.live.id)

    async def _run(self):
        elapsed = 0
        try:
            while True:
                await self._sleep(self.tick_seconds)
                remaining = await self.service.tick(self.live)
                if remaining is None:
                    return
                elapsed += 1
                if remaining <= 0:
                    await self.service.complete(self.live, reason="timeout")
                    return
                if elapsed % self.checkpoint_interval == 0:
                    await self.service.checkpoint(self.live)
        except asyncio.CancelledError:
            logger.debug("Exam timer cancelled", session_id=self.live.id, elapsed=elapsed)
            raise
