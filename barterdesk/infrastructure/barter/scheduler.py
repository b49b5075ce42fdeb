"""
Background deadline sweeper.

Uses APScheduler to run the deadline sweep on a fixed interval:
- IN_TRANSIT trades past their delivery deadline are auto-confirmed
- trades waiting on ratings past their rating deadline are completed
- dispute tickets nobody answered are closed automatically

Every run is also recorded so the last outcome can be inspected.
"""

import logging
import threading
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Optional

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger

from barterdesk.application.barter.dtos import SweepResult

logger = logging.getLogger(__name__)

SWEEP_JOB_ID = "barter_deadline_sweep"


@dataclass
class SweepRun:
    """Outcome of one scheduled sweep."""

    started_at: str
    finished_at: Optional[str] = None
    result: Optional[SweepResult] = None
    error: Optional[str] = None


class DeadlineSweepScheduler:
    """Runs a sweep callable periodically in a background thread.

    Usage:
        scheduler = DeadlineSweepScheduler(sweep.execute, interval_seconds=300)
        scheduler.start()
        scheduler.run_now()
        scheduler.stop()
    """

    def __init__(
        self,
        sweep: Callable[[], SweepResult],
        interval_seconds: int = 300,
    ) -> None:
        self._sweep = sweep
        self._interval = interval_seconds
        self._scheduler: Optional[BackgroundScheduler] = None
        self._lock = threading.Lock()
        self._last_run: Optional[SweepRun] = None

    @property
    def is_running(self) -> bool:
        return self._scheduler is not None

    @property
    def last_run(self) -> Optional[SweepRun]:
        return self._last_run

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        if self._scheduler is not None:
            logger.warning("Deadline sweeper already running.")
            return

        self._scheduler = BackgroundScheduler(
            timezone="UTC",
            job_defaults={"coalesce": True, "max_instances": 1},
        )
        self._scheduler.add_job(
            self.run_now,
            IntervalTrigger(seconds=self._interval),
            id=SWEEP_JOB_ID,
            name="Barter deadline sweep",
        )
        self._scheduler.start()
        logger.info("Deadline sweeper started: interval=%ds", self._interval)

    def stop(self) -> None:
        if self._scheduler is not None:
            self._scheduler.shutdown(wait=False)
            self._scheduler = None
        logger.info("Deadline sweeper stopped.")

    # ------------------------------------------------------------------
    # Job
    # ------------------------------------------------------------------

    def run_now(self) -> SweepRun:
        """Run one sweep immediately (blocking). Never raises."""
        run = SweepRun(started_at=datetime.now(timezone.utc).isoformat())
        with self._lock:
            try:
                run.result = self._sweep()
            except Exception as exc:
                logger.exception("Deadline sweep failed")
                run.error = str(exc)
            run.finished_at = datetime.now(timezone.utc).isoformat()
            self._last_run = run
        return run
