"""
Periodic delta sync - a cooperative loop handing each due tick to the sync runner.
"""

import threading
import time
from typing import Callable, Optional

from .config import SYNC_INTERVAL_SEC, is_sync_schedule_enabled, validate_sync_config
from .sync import SyncReport, SyncRunner
from util.logging import logger

TASK_NAME = "delta_sync"


class SyncScheduler:
    """Runs the sync every `interval_sec` through the shared run slot.

    The interval counts from the end of the previous attempt. Failed runs and
    ticks that find the slot busy count as attempts.
    """

    def __init__(self, runner: SyncRunner, interval_sec: int = SYNC_INTERVAL_SEC,
                 clock: Callable[[], float] = time.monotonic, poll_sec: float = 1.0):
        if interval_sec < 1:
            raise ValueError(f"Interval must be >= 1 second: {interval_sec}")

        self.runner = runner
        self.interval_sec = interval_sec
        self.clock = clock
        self.poll_sec = poll_sec
        self.last_attempt: Optional[float] = None
        self.last_report: Optional[SyncReport] = None
        self._stop = threading.Event()

    def is_due(self) -> bool:
        return self.last_attempt is None or self.clock() - self.last_attempt >= self.interval_sec

    def tick(self) -> Optional[SyncReport]:
        """Run the sync if due. None when not due, busy or the run raised."""
        if not self.is_due():
            return None

        start_time = self.clock()
        try:
            report = self.runner.run()
        except Exception as e:
            self.last_attempt = self.clock()
            logger.log_scheduler_task(TASK_NAME, start_time, self.last_attempt, status="failed",
                                      details={"error": str(e)[:200]})
            return None

        self.last_attempt = self.clock()
        if report is None:
            logger.log_scheduler_task(TASK_NAME, start_time, self.last_attempt, status="skipped",
                                      details={"reason": "sync already running"})
            return None

        self.last_report = report
        logger.log_scheduler_task(TASK_NAME, start_time, self.last_attempt,
                                  status="success" if report.success else "failed",
                                  details={"message": report.message})
        return report

    def start(self) -> None:
        """Tick until stop() or Ctrl+C. Returns at once when scheduling is disabled."""
        if not is_sync_schedule_enabled():
            print("Scheduler disabled (SYNC_SCHEDULE_ENABLED=false). Skipping start.")
            return

        issues = validate_sync_config()
        if issues:
            raise ValueError(f"Sync configuration invalid: {issues}")

        self._stop.clear()
        print(f"🚀 Starting sync scheduler (every {self.interval_sec}s)")

        try:
            while not self._stop.is_set():
                self.tick()
                self._stop.wait(self.poll_sec)
        except KeyboardInterrupt:
            print("\n🛑 Scheduler interrupted by user")
        finally:
            print("🏁 Scheduler loop stopped")

    def stop(self) -> None:
        self._stop.set()
