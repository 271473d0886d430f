#  Copyright (c) 2022. The Pycroft Authors. See the AUTHORS file.
#  This file is part of the Pycroft project and licensed under the terms of
#  the Apache License, Version 2.0. See the LICENSE file for details
"""
ldap_river.scheduler
~~~~~~~~~~~~~~~~~~~~

Periodic scans of a single source.  A :class:`Scheduler` runs its scans as
a job of its own APScheduler ``BackgroundScheduler`` and goes through the
following states::

    STOPPED → (SCANNING ⇄ IDLE) → STOPPED

The delay is fixed: the poll interval is measured from the end of one
scan to the start of the next one.  The job is paused while it runs and
rescheduled when the scan is over.
"""
from __future__ import annotations

import enum
import logging
import threading
import time
import typing
from datetime import datetime, timedelta, timezone

from apscheduler.executors.pool import ThreadPoolExecutor
from apscheduler.job import Job
from apscheduler.schedulers import SchedulerNotRunningError
from apscheduler.schedulers.background import BackgroundScheduler

from .concepts.outcome import SyncOutcome
from .exc import ScanAborted

#: runs one scan, given a callable telling whether to stop early
ScanFunction = typing.Callable[[typing.Callable[[], bool]], SyncOutcome]

SCAN_JOB_ID = "scan"


class SchedulerState(enum.Enum):
    STOPPED = "stopped"
    SCANNING = "scanning"
    IDLE = "idle"


class SourceStatus(typing.NamedTuple):
    state: SchedulerState
    last_outcome: SyncOutcome | None
    next_scan_time: datetime | None


def build_background_scheduler() -> BackgroundScheduler:
    """A scheduler running at most one scan at a time, however late."""
    return BackgroundScheduler(
        timezone="UTC",
        executors={"default": ThreadPoolExecutor(max_workers=1)},
        job_defaults={"max_instances": 1, "coalesce": True, "misfire_grace_time": None},
    )


class Scheduler:
    """Runs `scan` for a source, every `poll_interval` seconds.

    Usage:

        >>> scheduler = Scheduler("ldapserver0", functools.partial(sync_source, config, index),
        ...                       poll_interval=config.poll_interval)
        >>> scheduler.start()
        >>> scheduler.trigger_now()
        >>> scheduler.status().state
        <SchedulerState.SCANNING: 'scanning'>
        >>> scheduler.stop()

    :class:`~ldap_river.exc.ScanAborted` errors are recorded and the next scan
    happens as usual.  Any other error stops the scheduler.
    """

    def __init__(
        self,
        source_id: str,
        scan: ScanFunction,
        poll_interval: float,
        logger: logging.Logger | None = None,
    ) -> None:
        self.source_id = source_id
        self.scan = scan
        self.poll_interval = poll_interval
        self.logger = logger or logging.getLogger(f"ldap_river.source.{source_id}")

        self._lock = threading.Lock()
        #: notified on every change of state and every finished scan
        self._changed = threading.Condition(self._lock)
        self._state = SchedulerState.STOPPED
        self._last_outcome: SyncOutcome | None = None
        self._next_scan_time: datetime | None = None
        self._scheduler: BackgroundScheduler | None = None
        self._scanning = False
        # a trigger arrived during a scan
        self._rescan = False
        # set by `stop`, checked between pages and batches
        self._stop = threading.Event()
        self.scans_finished = 0

    @property
    def state(self) -> SchedulerState:
        with self._lock:
            return self._state

    def status(self) -> SourceStatus:
        with self._lock:
            return SourceStatus(self._state, self._last_outcome, self._next_scan_time)

    @property
    def is_running(self) -> bool:
        return self.state is not SchedulerState.STOPPED

    @property
    def scan_job(self) -> Job | None:
        scheduler = self._scheduler
        return scheduler.get_job(SCAN_JOB_ID) if scheduler is not None else None

    def start(self) -> None:
        """Start polling.  The first scan is triggered immediately."""
        scheduler = build_background_scheduler()
        scheduler.add_job(
            self._run_scan,
            trigger="interval",
            seconds=self.poll_interval,
            args=[scheduler],
            id=SCAN_JOB_ID,
            name=f"Scan of {self.source_id}",
            next_run_time=datetime.now(timezone.utc),
        )
        with self._lock:
            if self._state is not SchedulerState.STOPPED:
                raise RuntimeError(f"Scheduler for {self.source_id} is already running")
            self._stop.clear()
            self._rescan = False
            self._scheduler = scheduler
            self._set_state(SchedulerState.SCANNING)
        scheduler.start()
        self.logger.info("Started polling every %ss", self.poll_interval)

    def stop(self, wait: bool = True, timeout: float | None = None) -> None:
        """Stop polling.  A scan in progress is allowed to finish."""
        self._stop.set()
        with self._lock:
            scheduler = self._scheduler
            if not self._scanning and self._state is not SchedulerState.STOPPED:
                self._set_state(SchedulerState.STOPPED)
                self.logger.info("Stopped polling")
        if scheduler is not None:
            self._shutdown(scheduler)
        if wait:
            with self._changed:
                self._changed.wait_for(
                    lambda: self._state is SchedulerState.STOPPED, timeout
                )

    def trigger_now(self) -> bool:
        """Start a scan without waiting for the rest of the poll interval.

        If a scan is running, another one follows right after it.

        :returns: whether the scheduler is running at all.
        """
        with self._lock:
            if self._state is SchedulerState.STOPPED or self._stop.is_set():
                return False
            self.logger.info("Scan triggered")
            if self._scanning:
                self._rescan = True
            else:
                self._scheduler.modify_job(
                    SCAN_JOB_ID, next_run_time=datetime.now(timezone.utc)
                )
            return True

    def wait_for_scans(self, count: int, timeout: float | None = None) -> bool:
        """Block until `count` scans have finished since the start."""
        with self._changed:
            return self._changed.wait_for(
                lambda: self.scans_finished >= count, timeout
            )

    def _set_state(self, state: SchedulerState, next_scan_time: datetime | None = None) -> None:
        # callers hold the lock
        self._state = state
        self._next_scan_time = next_scan_time
        self._changed.notify_all()

    def _shutdown(self, scheduler: BackgroundScheduler) -> None:
        try:
            scheduler.shutdown(wait=False)
        except SchedulerNotRunningError:
            pass

    def _record(self, outcome: SyncOutcome) -> None:
        with self._lock:
            self._last_outcome = outcome
            self.scans_finished += 1
            self._changed.notify_all()

    def _scan_once(self) -> bool:
        """Run a scan and record its outcome.

        :returns: whether polling may continue.
        """
        started_at = datetime.now(timezone.utc)
        start = time.monotonic()

        def elapsed() -> timedelta:
            return timedelta(seconds=time.monotonic() - start)

        try:
            outcome = self.scan(self._stop.is_set)
        except ScanAborted as e:
            self.logger.warning("Scan failed, retrying in %ss: %s", self.poll_interval, e)
            self._record(SyncOutcome.failed(e, started_at, elapsed()))
            return True
        except Exception as e:
            self.logger.exception("Scan failed unexpectedly, stopping")
            self._record(SyncOutcome.failed(e, started_at, elapsed()))
            return False
        self.logger.info("Scan finished: %s", outcome)
        self._record(outcome)
        return True

    def _run_scan(self, scheduler: BackgroundScheduler) -> None:
        with self._lock:
            if self._stop.is_set():
                return
            self._scanning = True
            self._rescan = False
            self._set_state(SchedulerState.SCANNING)
        # the interval trigger must not fire while scanning
        scheduler.pause_job(SCAN_JOB_ID)

        keep_polling = self._scan_once()

        with self._lock:
            self._scanning = False
            if self._stop.is_set() or not keep_polling:
                self._set_state(SchedulerState.STOPPED)
                next_scan = None
            else:
                now = datetime.now(timezone.utc)
                # triggers during the scan lead to another scan right after
                next_scan = now if self._rescan else now + timedelta(seconds=self.poll_interval)
                self._set_state(SchedulerState.IDLE, next_scan)
                scheduler.modify_job(SCAN_JOB_ID, next_run_time=next_scan)
        if next_scan is None:
            self._shutdown(scheduler)
            self.logger.info("Stopped polling")
