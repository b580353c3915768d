"""后台定时评估：周期性检查定时器与消费上限"""
from __future__ import annotations

import asyncio
import contextlib
from typing import Optional

import structlog

from .billing_engine import BillingEngine

logger = structlog.get_logger()


class EvaluationLoop:
    """
    Runs ``engine.evaluate_active`` every ``interval`` seconds on the default
    executor. Passes are idempotent so a late or doubled pass is harmless.
    Cancelling waits for the pass in flight; the engine write it is doing
    completes under its station lock.
    """

    def __init__(self, engine: BillingEngine, interval: float = 30.0):
        self.engine = engine
        self.interval = interval
        self._task: Optional[asyncio.Task] = None

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def run_once(self) -> int:
        loop = asyncio.get_running_loop()
        fired = await loop.run_in_executor(None, self.engine.evaluate_active)
        return len(fired)

    async def _run(self) -> None:
        while True:
            try:
                fired = await self.run_once()
                if fired:
                    logger.info("evaluation_pass", events=fired)
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                logger.error("evaluation_pass_failed", error=str(exc))
            await asyncio.sleep(self.interval)

    def start(self) -> None:
        if self.is_running:
            return
        self._task = asyncio.create_task(self._run())
        logger.info("evaluation_loop_started", interval=self.interval)

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task
        logger.info("evaluation_loop_stopped")
