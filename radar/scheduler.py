"""
REBOUND RADAR SCAN SCHEDULER
------------------------------------------------------------------------------
Drives tracker scan cycles on a fixed interval.
- IDLE -> SCANNING on a trigger when nothing is in flight
- SCANNING -> IDLE when the cycle finishes (success or failure)
- A trigger while SCANNING is dropped, never queued
- The next deadline is counted from the end of the previous cycle
"""

import asyncio
import logging
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Callable, Optional


class ScanState(Enum):
    IDLE = "idle"
    SCANNING = "scanning"


class ScanScheduler:
    def __init__(self, tracker, clock: Optional[Callable[[], datetime]] = None):
        self.tracker = tracker
        self.logger = logging.getLogger("Scheduler")
        self._clock = clock or (lambda: datetime.now(timezone.utc))

        self.state = ScanState.IDLE
        self.is_running = False
        self.next_scan_at: Optional[datetime] = None
        self.last_result = None

        # Counters
        self.cycles_started = 0
        self.triggers_dropped = 0

        self._task: Optional[asyncio.Task] = None
        self._wakeup = asyncio.Event()

    @property
    def interval_seconds(self) -> int:
        return self.tracker.current_config.scan_interval_seconds

    async def trigger(self):
        """
        Runs one cycle unless one is already in flight.
        Returns the CycleResult, or None when the trigger was dropped.
        """
        if self.state is ScanState.SCANNING:
            self.triggers_dropped += 1
            self.logger.debug("Trigger dropped: scan already in flight")
            return None

        self.state = ScanState.SCANNING
        self.cycles_started += 1
        try:
            self.last_result = await self.tracker.run_cycle()
            return self.last_result
        finally:
            self.state = ScanState.IDLE
            self.next_scan_at = self._clock() + timedelta(seconds=self.interval_seconds)

    def request_scan(self):
        """Wakes the loop so the next cycle starts now instead of at the deadline."""
        self._wakeup.set()

    async def run(self):
        """Main background loop."""
        self.is_running = True
        self.logger.info(f"⏱️ Scheduler started (every {self.interval_seconds}s after each scan)")
        while self.is_running:
            try:
                await self.trigger()
                await self._wait_for_deadline()
            except asyncio.CancelledError:
                break
            except Exception as e:
                self.logger.error(f"Scheduler cycle error: {e}")
                await asyncio.sleep(self.interval_seconds)
        self.is_running = False
        self.logger.info("Scheduler stopped")

    async def _wait_for_deadline(self):
        try:
            await asyncio.wait_for(self._wakeup.wait(), timeout=self.interval_seconds)
        except asyncio.TimeoutError:
            pass
        self._wakeup.clear()

    def start(self) -> asyncio.Task:
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self.run())
        return self._task

    async def stop(self):
        """Stops the loop, cancelling an in-flight fetch cooperatively."""
        self.is_running = False
        task = self._task
        if task and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._task = None

    def get_stats(self):
        return {
            'state': self.state.value,
            'running': self.is_running,
            'cycles_started': self.cycles_started,
            'triggers_dropped': self.triggers_dropped,
            'next_scan_at': self.next_scan_at.isoformat() if self.next_scan_at else None,
        }
