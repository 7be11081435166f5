"""Scheduler Thread Module

This module provides a scheduler thread for periodic housekeeping such as
the cache sweep. It uses the schedule library to run jobs at fixed intervals.

Every SchedulerThread owns its own schedule.Scheduler, so independent
components never share (or clear) each other's jobs. Stopping the thread
interrupts its idle wait right away.
"""

import threading
import logging
from typing import Callable, Optional

import schedule

logger = logging.getLogger(__name__)

VALID_UNITS = ['seconds', 'minutes', 'hours', 'days', 'weeks']
MAX_IDLE_SECONDS = 300
DEFAULT_IDLE_SECONDS = 10


def _wrap_job(name: str, job: Callable) -> Callable:
    """Wrap a job to catch exceptions and add logging."""
    def wrapped_job():
        try:
            logger.debug("Running scheduled job: %s", name)
            job()
            logger.debug("Completed scheduled job: %s", name)
        except Exception as e:  # pylint: disable=broad-except
            logger.error("Error in scheduled job '%s': %s", name, e, exc_info=True)

    wrapped_job.__name__ = name
    return wrapped_job


class SchedulerThread:
    """Thread-based scheduler that runs periodic tasks using the schedule library."""

    def __init__(self, name: str = "SchedulerThread"):
        self.name = name
        self.scheduler = schedule.Scheduler()
        self._thread: Optional[threading.Thread] = None
        self._stop_event = threading.Event()
        self._running = False
        self._lock = threading.Lock()
        logger.debug("Scheduler thread %s initialized", name)

    def schedule_every(self, interval: int, unit: str, job: Callable, job_name: str = ""):
        """
        Schedule a job to run at regular intervals

        Args:
            interval: The interval value (e.g., 5 for "every 5 minutes")
            unit: The unit of time ('seconds', 'minutes', 'hours', 'days', 'weeks')
            job: The callable function to execute
            job_name: Optional name for the job (for logging purposes)

        Returns:
            The scheduled job object
        """
        if unit not in VALID_UNITS:
            raise ValueError(f"Invalid unit '{unit}'. Must be one of: {VALID_UNITS}")

        name = job_name or job.__name__
        logger.info("Scheduling job '%s' to run every %d %s", name, interval, unit)
        task = getattr(self.scheduler.every(interval), unit)
        return task.do(_wrap_job(name, job))

    def clear_jobs(self):
        """Clear all jobs of this scheduler"""
        self.scheduler.clear()

    def get_jobs(self):
        """Get all currently scheduled jobs"""
        return self.scheduler.get_jobs()

    def start(self):
        """Start the scheduler thread"""
        with self._lock:
            if self._running:
                logger.warning("Scheduler thread %s is already running", self.name)
                return

            self._stop_event.clear()
            self._running = True
            self._thread = threading.Thread(target=self._run, daemon=True, name=self.name)
            self._thread.start()
            logger.info("Scheduler thread %s started", self.name)

    def stop(self, timeout: float = 5.0):
        """Stop the scheduler thread"""
        with self._lock:
            if not self._running:
                return

            logger.info("Stopping scheduler thread %s...", self.name)
            self._stop_event.set()
            self._running = False

        if self._thread and self._thread.is_alive():
            self._thread.join(timeout=timeout)
            if self._thread.is_alive():
                logger.warning("Scheduler thread %s did not stop gracefully", self.name)
            else:
                logger.info("Scheduler thread %s stopped", self.name)

    def _run(self):
        """Main loop for the scheduler thread"""
        logger.debug("Scheduler thread loop started")
        while not self._stop_event.is_set():
            try:
                self.scheduler.run_pending()
                n = self.scheduler.idle_seconds
                if n is None:
                    n = DEFAULT_IDLE_SECONDS
                if n > 0:
                    self._stop_event.wait(min(n, MAX_IDLE_SECONDS))
            except Exception as e:  # pylint: disable=broad-except
                logger.error("Error in scheduler thread: %s", e, exc_info=True)
                self._stop_event.wait(1)

        logger.debug("Scheduler thread loop ended")

    def is_running(self) -> bool:
        """Check if the scheduler thread is running"""
        return self._running
