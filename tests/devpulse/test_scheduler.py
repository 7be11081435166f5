"""Tests for the SchedulerThread"""

import threading

import pytest
from devpulse.scheduler import SchedulerThread


class TestSchedulerThread:

    def test_invalid_unit(self):
        scheduler = SchedulerThread()
        with pytest.raises(ValueError):
            scheduler.schedule_every(1, 'fortnights', lambda: None)

    def test_runs_job(self):
        ran = threading.Event()
        scheduler = SchedulerThread(name='test_scheduler')
        scheduler.schedule_every(1, 'seconds', ran.set, 'signal')
        scheduler.start()
        try:
            assert ran.wait(timeout=5)
        finally:
            scheduler.stop()
        assert scheduler.is_running() is False

    def test_failing_job_does_not_stop_the_thread(self):
        calls = []

        def job():
            calls.append(1)
            raise RuntimeError('boom')

        scheduler = SchedulerThread()
        scheduler.schedule_every(1, 'seconds', job)
        # run the wrapped job directly
        scheduler.get_jobs()[0].job_func()
        assert calls == [1]

    def test_jobs_are_private_per_instance(self):
        first = SchedulerThread()
        second = SchedulerThread()
        first.schedule_every(1, 'minutes', lambda: None, 'a')
        assert len(first.get_jobs()) == 1
        assert second.get_jobs() == []

        first.clear_jobs()
        assert first.get_jobs() == []

    def test_start_twice_and_stop_twice(self):
        scheduler = SchedulerThread()
        scheduler.start()
        scheduler.start()
        assert scheduler.is_running() is True
        scheduler.stop()
        scheduler.stop()
        assert scheduler.is_running() is False
