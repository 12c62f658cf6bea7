"""
Midnight scheduler for TaskFlow.

Runs the overdue scan once per calendar day at local midnight.

A single-shot timer is armed for "time until next midnight"; when it fires it
runs the scan and arms the next one. Each firing recomputes the delay from the
clock, so drift from slow ticks never accumulates the way a fixed 24h
interval would. The manual trigger runs the same scan under the same lock.

Shutdown: stop() cancels the pending timer and, with wait, blocks until an
in-progress scan finishes. A timer scan that has not yet started when stop()
runs is dropped.
"""
import threading
from datetime import datetime, time, timedelta
from typing import Any, Callable, Dict, Optional

from core.lifecycle import TRIGGER_MANUAL, TRIGGER_TIMER, LifecycleScanner
from core.logger import get_logger
from core.models import ScanSummary

logger = get_logger("scheduler")


def next_midnight(now: datetime) -> datetime:
    return datetime.combine(now.date() + timedelta(days=1), time.min)


def seconds_until_next_midnight(now: datetime) -> float:
    """Delay until the next local midnight; exactly at midnight -> a full day."""
    return max(0.0, (next_midnight(now) - now).total_seconds())


class MidnightScheduler:
    """Self-rescheduling single-shot timer around LifecycleScanner.scan."""

    def __init__(
        self,
        scanner: LifecycleScanner,
        clock: Callable[[], datetime] = datetime.now,
        timer_factory: Callable[..., Any] = threading.Timer,
    ):
        self._scanner = scanner
        self._clock = clock
        self._timer_factory = timer_factory
        self._state_lock = threading.Lock()
        self._scan_lock = threading.Lock()
        self._timer = None
        self._running = False
        self._next_run: Optional[datetime] = None
        self._last_summary: Optional[ScanSummary] = None

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def last_summary(self) -> Optional[ScanSummary]:
        return self._last_summary

    def _arm(self, target: datetime) -> None:
        delay = max(0.0, (target - self._clock()).total_seconds())
        self._next_run = target
        timer = self._timer_factory(delay, self._fire)
        timer.daemon = True
        self._timer = timer
        timer.start()
        logger.debug("Next overdue scan at %s (in %.0fs)", target.isoformat(), delay)

    def start(self) -> None:
        with self._state_lock:
            if self._running:
                return
            self._running = True
            self._arm(next_midnight(self._clock()))
        logger.info("Midnight scheduler started, next scan at %s", self._next_run.isoformat())

    def stop(self, wait: bool = True) -> None:
        """Cancel the pending timer; with wait, let an in-progress scan finish."""
        with self._state_lock:
            self._running = False
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None
            self._next_run = None
        if wait:
            with self._scan_lock:
                pass
        logger.info("Midnight scheduler stopped")

    def _run_scan(self, trigger: str, only_while_running: bool = False) -> Optional[ScanSummary]:
        with self._scan_lock:
            # stop() may have run between the timer firing and this lock.
            if only_while_running and not self._running:
                logger.info("Scheduler stopped before the %s scan started, skipping", trigger)
                return None
            summary = self._scanner.scan(now=self._clock(), trigger=trigger)
            self._last_summary = summary
            return summary

    def _fire(self) -> None:
        with self._state_lock:
            if not self._running:
                return
            target = self._next_run
            if target is not None and self._clock() < target:
                # Woke up early; wait out the remainder instead of scanning yesterday.
                self._arm(target)
                return

        try:
            self._run_scan(TRIGGER_TIMER, only_while_running=True)
        except Exception as e:
            logger.error("Scheduled overdue scan crashed: %s", e, exc_info=True)

        with self._state_lock:
            if self._running:
                self._arm(next_midnight(self._clock()))

    def trigger_now(self) -> ScanSummary:
        """Operator path: identical scan, outside the timer."""
        logger.info("Manual overdue scan triggered")
        return self._run_scan(TRIGGER_MANUAL)

    def status(self) -> Dict[str, Any]:
        return {
            "running": self._running,
            "next_run": self._next_run.isoformat() if self._next_run else None,
            "current_time": self._clock().isoformat(),
            "last_summary": self._last_summary.to_dict() if self._last_summary else None,
        }
