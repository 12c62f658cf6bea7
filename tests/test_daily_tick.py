import threading
from datetime import datetime

import pytest

from core.lifecycle import TRIGGER_MANUAL, TRIGGER_TIMER
from core.models import ScanSummary
from scheduler.daily_tick import MidnightScheduler, next_midnight, seconds_until_next_midnight


class FakeTimer:
    def __init__(self, delay, function):
        self.delay = delay
        self.function = function
        self.daemon = False
        self.started = False
        self.cancelled = False

    def start(self):
        self.started = True

    def cancel(self):
        self.cancelled = True


class FakeClock:
    def __init__(self, now):
        self.now = now

    def __call__(self):
        return self.now


class RecordingScanner:
    def __init__(self, fail=False):
        self.calls = []
        self.fail = fail

    def scan(self, now=None, trigger=TRIGGER_MANUAL):
        self.calls.append((now, trigger))
        if self.fail:
            raise RuntimeError("store exploded")
        return ScanSummary(trigger=trigger, started_at=now, finished_at=now)


def _scheduler(now, scanner=None):
    timers = []

    def factory(delay, function):
        timer = FakeTimer(delay, function)
        timers.append(timer)
        return timer

    clock = FakeClock(now)
    sched = MidnightScheduler(scanner or RecordingScanner(), clock=clock, timer_factory=factory)
    return sched, clock, timers


def test_delay_until_next_midnight():
    assert seconds_until_next_midnight(datetime(2026, 3, 10, 23, 0)) == 3600
    assert seconds_until_next_midnight(datetime(2026, 3, 10, 0, 0)) == 86400
    assert next_midnight(datetime(2026, 12, 31, 18, 30)) == datetime(2027, 1, 1)


def test_start_arms_a_daemon_timer_for_midnight():
    sched, _, timers = _scheduler(datetime(2026, 3, 10, 22, 0))

    sched.start()
    sched.start()

    assert len(timers) == 1
    assert timers[0].delay == 7200
    assert timers[0].daemon is True
    assert timers[0].started
    assert sched.is_running
    assert sched.status()["next_run"] == "2026-03-11T00:00:00"


def test_firing_runs_timer_scan_and_rearms_for_next_day():
    scanner = RecordingScanner()
    sched, clock, timers = _scheduler(datetime(2026, 3, 10, 22, 0), scanner)
    sched.start()

    clock.now = datetime(2026, 3, 11, 0, 0, 1)
    timers[-1].function()

    assert scanner.calls == [(datetime(2026, 3, 11, 0, 0, 1), TRIGGER_TIMER)]
    assert sched.last_summary.trigger == TRIGGER_TIMER
    assert len(timers) == 2
    assert timers[-1].delay == pytest.approx(86399)
    assert sched.status()["next_run"] == "2026-03-12T00:00:00"


def test_early_wake_rearms_without_scanning():
    scanner = RecordingScanner()
    sched, clock, timers = _scheduler(datetime(2026, 3, 10, 22, 0), scanner)
    sched.start()

    clock.now = datetime(2026, 3, 10, 23, 59, 55)
    timers[-1].function()

    assert scanner.calls == []
    assert len(timers) == 2
    assert timers[-1].delay == 5
    assert sched.status()["next_run"] == "2026-03-11T00:00:00"


def test_stop_cancels_and_stale_fire_is_ignored():
    scanner = RecordingScanner()
    sched, clock, timers = _scheduler(datetime(2026, 3, 10, 22, 0), scanner)
    sched.start()
    stale = timers[-1]

    sched.stop()
    clock.now = datetime(2026, 3, 11, 0, 0)
    stale.function()

    assert stale.cancelled
    assert not sched.is_running
    assert scanner.calls == []
    assert len(timers) == 1
    assert sched.status()["next_run"] is None


def test_manual_trigger_runs_the_same_scan():
    scanner = RecordingScanner()
    sched, _, timers = _scheduler(datetime(2026, 3, 10, 14, 0), scanner)

    summary = sched.trigger_now()

    assert summary.trigger == TRIGGER_MANUAL
    assert scanner.calls == [(datetime(2026, 3, 10, 14, 0), TRIGGER_MANUAL)]
    assert sched.status()["last_summary"]["trigger"] == TRIGGER_MANUAL
    assert timers == []


def test_crashing_scan_does_not_kill_the_schedule():
    sched, clock, timers = _scheduler(datetime(2026, 3, 10, 22, 0), RecordingScanner(fail=True))
    sched.start()

    clock.now = datetime(2026, 3, 11, 0, 0)
    timers[-1].function()

    assert sched.is_running
    assert len(timers) == 2
    assert sched.last_summary is None


class GatedLock:
    """Lock whose first acquisition parks until the test opens the gate."""

    def __init__(self):
        self._lock = threading.Lock()
        self._gated = True
        self.reached = threading.Event()
        self.gate = threading.Event()

    def __enter__(self):
        if self._gated:
            self._gated = False
            self.reached.set()
            self.gate.wait(timeout=5)
        self._lock.acquire()
        return self

    def __exit__(self, *exc):
        self._lock.release()


def test_stop_between_firing_and_scan_drops_the_scan():
    scanner = RecordingScanner()
    sched, clock, timers = _scheduler(datetime(2026, 3, 10, 22, 0), scanner)
    sched.start()
    gated = GatedLock()
    sched._scan_lock = gated

    clock.now = datetime(2026, 3, 11, 0, 0)
    worker = threading.Thread(target=timers[-1].function)
    worker.start()
    assert gated.reached.wait(timeout=5)

    sched.stop(wait=True)
    calls_when_stopped = list(scanner.calls)
    gated.gate.set()
    worker.join(timeout=5)

    assert not worker.is_alive()
    assert calls_when_stopped == []
    assert scanner.calls == []
    assert sched.last_summary is None
    assert len(timers) == 1
