"""
Periodic Reconciliation Scheduler

Fires a reconciliation run on a fixed interval.

DESIGN DECISION: Ticks are guarded by a run-lock. A tick that fires while
the previous one is still running is skipped and audited, never run
concurrently. Ticks are launched as tasks so a slow run does not shift
the schedule.

Shutdown goes through an asyncio.Event; stop() sets it, wakes the loop
and waits for in-flight ticks to finish.
"""

import asyncio
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable, Optional

from reconciler.audit import AuditLogger
from reconciler.models.finance import utcnow


RunCallable = Callable[[datetime], Awaitable[Any]]


class ReconciliationScheduler:
    """Runs a coroutine every interval without overlapping runs."""

    def __init__(
        self,
        run: RunCallable,
        interval: timedelta,
        clock: Callable[[], datetime] = utcnow,
        audit_logger: Optional[AuditLogger] = None,
    ):
        """
        Initialize scheduler.

        Args:
            run: Coroutine function called with the tick time
            interval: Time between ticks
            clock: Source of the tick time
            audit_logger: Optional audit logger
        """
        if interval.total_seconds() <= 0:
            raise ValueError("Scheduler interval must be positive")

        self._run = run
        self._interval = interval
        self._clock = clock
        self._audit = audit_logger or AuditLogger()

        self._run_lock = asyncio.Lock()
        self._stop_event = asyncio.Event()
        self._loop_task: Optional[asyncio.Task] = None
        self._tick_tasks: set[asyncio.Task] = set()

        self.completed = 0
        self.skipped = 0
        self.failed = 0

    @property
    def is_running(self) -> bool:
        return self._loop_task is not None and not self._loop_task.done()

    @property
    def is_busy(self) -> bool:
        """True while a tick holds the run-lock."""
        return self._run_lock.locked()

    async def tick(self) -> bool:
        """
        Run once unless a run is already in progress.

        Returns:
            True if the run executed (even if it raised), False if skipped
        """
        if self._run_lock.locked():
            self.skipped += 1
            await self._audit.log_sweep_skipped(self._clock())
            return False

        async with self._run_lock:
            try:
                await self._run(self._clock())
            except Exception as e:
                self.failed += 1
                await self._audit.log_sweep_failed(error_message=str(e))
            else:
                self.completed += 1
        return True

    def _launch_tick(self) -> None:
        task = asyncio.create_task(self.tick())
        self._tick_tasks.add(task)
        task.add_done_callback(self._tick_tasks.discard)

    async def _wait_for_stop(self) -> bool:
        """Sleep one interval. Returns True if stop was requested."""
        try:
            await asyncio.wait_for(
                self._stop_event.wait(),
                timeout=self._interval.total_seconds(),
            )
        except asyncio.TimeoutError:
            return False
        return True

    async def run_forever(self, run_immediately: bool = False) -> None:
        """Tick every interval until stop() is called."""
        if run_immediately:
            self._launch_tick()

        while not self._stop_event.is_set():
            if await self._wait_for_stop():
                break
            self._launch_tick()

    def start(self, run_immediately: bool = False) -> asyncio.Task:
        """Start the loop in the background."""
        if self.is_running:
            raise RuntimeError("Scheduler already running")
        self._stop_event.clear()
        self._loop_task = asyncio.create_task(self.run_forever(run_immediately))
        return self._loop_task

    async def stop(self) -> None:
        """Stop the loop and wait for in-flight ticks."""
        self._stop_event.set()
        if self._loop_task is not None:
            await self._loop_task
            self._loop_task = None
        if self._tick_tasks:
            await asyncio.gather(*list(self._tick_tasks))
