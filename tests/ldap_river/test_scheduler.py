#  Copyright (c) 2022. The Pycroft Authors. See the AUTHORS file.
#  This file is part of the Pycroft project and licensed under the terms of
#  the Apache License, Version 2.0. See the LICENSE file for details
import threading
from datetime import datetime, timedelta, timezone

import pytest

from ldap_river.concepts.outcome import SyncOutcome
from ldap_river.exc import SourceUnreachable
from ldap_river.scheduler import Scheduler, SchedulerState
from . import wait_until


def outcome(**kwargs) -> SyncOutcome:
    return SyncOutcome(started_at=datetime.now(timezone.utc), duration=timedelta(0), **kwargs)


class RecordingScan:
    """A scan function counting its calls, optionally blocking until released."""

    def __init__(self, error: Exception | None = None, block: bool = False) -> None:
        self.error = error
        self.calls = 0
        self.running = 0
        self.max_running = 0
        self.started = threading.Event()
        self.release = threading.Event()
        if not block:
            self.release.set()
        self.cancel_seen: list[bool] = []
        self._lock = threading.Lock()

    def __call__(self, cancelled) -> SyncOutcome:
        with self._lock:
            self.calls += 1
            self.running += 1
            self.max_running = max(self.max_running, self.running)
        self.started.set()
        try:
            self.release.wait(5)
            self.cancel_seen.append(cancelled())
            if self.error is not None:
                raise self.error
            return outcome(upserts=self.calls)
        finally:
            with self._lock:
                self.running -= 1


@pytest.fixture
def scheduler_factory():
    schedulers = []

    def scheduler_factory(scan, poll_interval=60.0):
        scheduler = Scheduler("test", scan, poll_interval)
        schedulers.append(scheduler)
        return scheduler

    yield scheduler_factory
    for scheduler in schedulers:
        scheduler.stop(timeout=5)


@pytest.mark.usefixtures("muted_river_logger")
class TestPolling:
    def test_initially_stopped(self, scheduler_factory):
        scheduler = scheduler_factory(RecordingScan())
        assert scheduler.status() == (SchedulerState.STOPPED, None, None)
        assert not scheduler.trigger_now()

    def test_first_scan_immediately(self, scheduler_factory):
        scan = RecordingScan()
        scheduler = scheduler_factory(scan)
        scheduler.start()
        assert scheduler.wait_for_scans(1, timeout=5)
        assert scheduler.status().last_outcome.upserts == 1

    def test_idle_until_next_scan(self, scheduler_factory):
        scheduler = scheduler_factory(RecordingScan(), poll_interval=60)
        before = datetime.now(timezone.utc)
        scheduler.start()
        assert wait_until(lambda: scheduler.state is SchedulerState.IDLE)
        next_scan = scheduler.status().next_scan_time
        assert before + timedelta(seconds=59) < next_scan
        assert next_scan <= datetime.now(timezone.utc) + timedelta(seconds=60)

    def test_polls_repeatedly(self, scheduler_factory):
        scan = RecordingScan()
        scheduler = scheduler_factory(scan, poll_interval=0.01)
        scheduler.start()
        assert scheduler.wait_for_scans(3, timeout=5)

    def test_start_twice_fails(self, scheduler_factory):
        scheduler = scheduler_factory(RecordingScan())
        scheduler.start()
        with pytest.raises(RuntimeError):
            scheduler.start()


@pytest.mark.usefixtures("muted_river_logger")
class TestTrigger:
    def test_trigger_while_idle(self, scheduler_factory):
        scan = RecordingScan()
        scheduler = scheduler_factory(scan, poll_interval=60)
        scheduler.start()
        assert scheduler.wait_for_scans(1, timeout=5)
        assert scheduler.trigger_now()
        assert scheduler.wait_for_scans(2, timeout=5)
        assert scan.calls == 2

    def test_trigger_while_scanning_does_not_overlap(self, scheduler_factory):
        scan = RecordingScan(block=True)
        scheduler = scheduler_factory(scan, poll_interval=60)
        scheduler.start()
        assert scan.started.wait(5)
        assert scheduler.state is SchedulerState.SCANNING
        for _ in range(3):
            assert scheduler.trigger_now()
        scan.release.set()
        assert scheduler.wait_for_scans(2, timeout=5)
        assert wait_until(lambda: scheduler.state is SchedulerState.IDLE)
        assert scan.max_running == 1
        # triggers during a scan amount to a single rescan
        assert scan.calls == 2


@pytest.mark.usefixtures("muted_river_logger")
class TestErrors:
    def test_aborted_scan_is_retried(self, scheduler_factory):
        scan = RecordingScan(error=SourceUnreachable("connection refused"))
        scheduler = scheduler_factory(scan, poll_interval=0.01)
        scheduler.start()
        assert scheduler.wait_for_scans(2, timeout=5)
        assert scheduler.is_running
        last = scheduler.status().last_outcome
        assert not last.succeeded
        assert isinstance(last.error, SourceUnreachable)

    def test_unexpected_error_stops(self, scheduler_factory):
        scan = RecordingScan(error=ValueError("bug"))
        scheduler = scheduler_factory(scan, poll_interval=0.01)
        scheduler.start()
        assert wait_until(lambda: not scheduler.is_running)
        status = scheduler.status()
        assert status.state is SchedulerState.STOPPED
        assert isinstance(status.last_outcome.error, ValueError)
        assert scan.calls == 1


@pytest.mark.usefixtures("muted_river_logger")
class TestStop:
    def test_scan_in_progress_finishes(self, scheduler_factory):
        scan = RecordingScan(block=True)
        scheduler = scheduler_factory(scan)
        scheduler.start()
        assert scan.started.wait(5)
        scheduler.stop(wait=False)
        assert not scheduler.trigger_now()
        scan.release.set()
        scheduler.stop(timeout=5)
        assert not scheduler.is_running
        assert scheduler.state is SchedulerState.STOPPED
        assert scheduler.scans_finished == 1
        # the scan was told to wrap up
        assert scan.cancel_seen == [True]

    def test_stop_while_idle(self, scheduler_factory):
        scheduler = scheduler_factory(RecordingScan(), poll_interval=60)
        scheduler.start()
        assert wait_until(lambda: scheduler.state is SchedulerState.IDLE)
        scheduler.stop(timeout=5)
        assert not scheduler.is_running

    def test_restart(self, scheduler_factory):
        scan = RecordingScan()
        scheduler = scheduler_factory(scan)
        scheduler.start()
        assert scheduler.wait_for_scans(1, timeout=5)
        scheduler.stop(timeout=5)
        scheduler.start()
        assert scheduler.wait_for_scans(2, timeout=5)


@pytest.mark.usefixtures("muted_river_logger")
class TestScanJob:
    def test_paused_while_scanning(self, scheduler_factory):
        scan = RecordingScan(block=True)
        scheduler = scheduler_factory(scan, poll_interval=60)
        assert scheduler.scan_job is None
        scheduler.start()
        assert scan.started.wait(5)
        assert wait_until(lambda: scheduler.scan_job.next_run_time is None)
        scan.release.set()
        assert wait_until(lambda: scheduler.state is SchedulerState.IDLE)
        assert scheduler.scan_job.next_run_time == scheduler.status().next_scan_time

    def test_trigger_moves_next_run(self, scheduler_factory):
        scan = RecordingScan(block=True)
        scheduler = scheduler_factory(scan, poll_interval=60)
        scheduler.start()
        assert scan.started.wait(5)
        scan.release.set()
        assert wait_until(lambda: scheduler.state is SchedulerState.IDLE)
        scan.release.clear()
        scan.started.clear()
        assert scheduler.trigger_now()
        assert scan.started.wait(5)
        assert scheduler.state is SchedulerState.SCANNING
        scan.release.set()
        assert scheduler.wait_for_scans(2, timeout=5)
