"""
Submission Queue Service
Timer-driven scheduling of submission attempts and periodic queue health checks
"""

import asyncio
from typing import Awaitable, Callable, Dict, List, Any, Optional, Set

from utils.logger import get_logger

logger = get_logger(__name__)


class SubmissionQueueService:
    """
    Delay queue keyed by task id.

    Each scheduled task owns exactly one single-shot timer; re-arming a task
    replaces its previous timer. Timers carry only the task id, and firing hands
    the id to `process_callback`. At most `max_concurrent` attempts run at once.
    """

    def __init__(
        self,
        process_callback: Callable[[str], Awaitable[Any]],
        max_concurrent: int = 5,
        health_check: Optional[Callable[[], Awaitable[Any]]] = None,
        health_interval_seconds: float = 60
    ):
        self.process_callback = process_callback
        self.health_check = health_check
        self.health_interval_seconds = health_interval_seconds
        self.semaphore = asyncio.Semaphore(max_concurrent)
        self.is_running = False
        self._timers: Dict[str, asyncio.TimerHandle] = {}
        self._in_flight: Set[asyncio.Task] = set()
        self._monitor_task: Optional[asyncio.Task] = None

    def schedule(self, task_id: str, delay_ms: float = 0):
        """Arm (or re-arm) the timer for a task"""
        loop = asyncio.get_running_loop()
        self.cancel(task_id)
        delay_seconds = max(0.0, delay_ms) / 1000
        self._timers[task_id] = loop.call_later(delay_seconds, self._fire, task_id)
        logger.info(f"Scheduled task {task_id} in {delay_seconds:.1f}s")

    def cancel(self, task_id: str) -> bool:
        """Disarm a task's timer, if any"""
        handle = self._timers.pop(task_id, None)
        if handle is None:
            return False
        handle.cancel()
        return True

    def is_scheduled(self, task_id: str) -> bool:
        return task_id in self._timers

    def scheduled_task_ids(self) -> List[str]:
        return list(self._timers)

    def in_flight_count(self) -> int:
        return len(self._in_flight)

    async def run_now(self, task_id: str) -> Any:
        """Run one attempt immediately, inside the concurrency bound"""
        self.cancel(task_id)
        async with self.semaphore:
            return await self.process_callback(task_id)

    def _fire(self, task_id: str):
        self._timers.pop(task_id, None)
        job = asyncio.get_running_loop().create_task(self._run(task_id))
        self._in_flight.add(job)
        job.add_done_callback(self._in_flight.discard)

    async def _run(self, task_id: str):
        try:
            async with self.semaphore:
                await self.process_callback(task_id)
        except Exception as e:
            logger.error(f"Scheduled attempt for task {task_id} failed: {str(e)}")

    def start(self):
        """Start the health monitor"""
        if self.is_running:
            logger.warning("Submission queue is already running")
            return

        self.is_running = True
        if self.health_check is not None:
            self._monitor_task = asyncio.get_running_loop().create_task(self.start_health_monitor())
        logger.info("Submission queue started")

    async def start_health_monitor(self):
        """Run the health check every interval until stopped"""
        try:
            while self.is_running:
                await asyncio.sleep(self.health_interval_seconds)
                try:
                    await self.health_check()
                except Exception as e:
                    # Keep monitoring even if one sample fails
                    logger.error(f"Error in queue health check: {str(e)}")
        finally:
            logger.info("Queue health monitor stopped")

    async def stop(self):
        """Disarm every timer, stop the monitor and wait for running attempts"""
        self.is_running = False

        for task_id in list(self._timers):
            self.cancel(task_id)

        if self._monitor_task is not None:
            self._monitor_task.cancel()
            try:
                await self._monitor_task
            except asyncio.CancelledError:
                pass
            self._monitor_task = None

        if self._in_flight:
            logger.info(f"Waiting for {len(self._in_flight)} in-flight submissions")
            await asyncio.gather(*list(self._in_flight), return_exceptions=True)

        logger.info("Submission queue stopped")
