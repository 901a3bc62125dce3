"""Tests for the named periodic task scheduler."""

import pytest

from core.correlation import get_correlation_id
from core.scheduler import PeriodicTaskScheduler


@pytest.fixture
def scheduler():
    scheduler = PeriodicTaskScheduler(max_workers=2)
    yield scheduler
    scheduler.shutdown(wait=False)


def noop() -> None:
    return None


class TestRegistration:
    def test_interval_task_registered(self, scheduler) -> None:
        scheduler.add_interval_task("cleanup", noop, seconds=60, description="Cleanup")

        assert scheduler.has_task("cleanup")
        jobs = scheduler.status()["jobs"]
        assert jobs == [{"id": "cleanup", "name": "Cleanup", "next_run_time": None}]

    def test_cron_task_registered(self, scheduler) -> None:
        scheduler.add_cron_task("weekly", noop, "0 3 * * 0")
        assert scheduler.status()["jobs"][0]["name"] == "weekly"

    def test_invalid_cron_expression(self, scheduler) -> None:
        with pytest.raises(ValueError):
            scheduler.add_cron_task("broken", noop, "every tuesday")

    def test_same_name_replaces(self, scheduler) -> None:
        scheduler.add_interval_task("cleanup", noop, seconds=60)
        scheduler.add_interval_task("cleanup", noop, seconds=120)
        assert len(scheduler.status()["jobs"]) == 1

    def test_remove_task(self, scheduler) -> None:
        scheduler.add_interval_task("cleanup", noop, seconds=60)

        assert scheduler.remove_task("cleanup") is True
        assert scheduler.has_task("cleanup") is False
        assert scheduler.remove_task("cleanup") is False

    def test_run_once_registers_date_task(self, scheduler) -> None:
        scheduler.run_once("privacy.access.abc", noop, delay_seconds=30)
        assert scheduler.has_task("privacy.access.abc")


class TestLifecycle:
    def test_start_and_shutdown(self, scheduler) -> None:
        scheduler.add_interval_task("cleanup", noop, seconds=3600)
        scheduler.start()
        assert scheduler.running is True
        assert scheduler.status()["jobs"][0]["next_run_time"] is not None

        scheduler.start()  # second start is a no-op
        scheduler.shutdown()
        assert scheduler.running is False

    def test_pause_and_resume(self, scheduler) -> None:
        scheduler.add_interval_task("cleanup", noop, seconds=3600)
        scheduler.start()

        scheduler.pause_task("cleanup")
        assert scheduler.status()["jobs"][0]["next_run_time"] is None

        scheduler.resume_task("cleanup")
        assert scheduler.status()["jobs"][0]["next_run_time"] is not None


class TestTaskWrapper:
    def test_failure_is_contained(self) -> None:
        def explode() -> None:
            raise RuntimeError("boom")

        runner = PeriodicTaskScheduler._wrap("explode", explode)
        assert runner() is None

    def test_runs_under_job_correlation_id(self) -> None:
        seen = []
        runner = PeriodicTaskScheduler._wrap("correlated", lambda: seen.append(get_correlation_id()))

        runner()
        assert seen[0].startswith("job-")

    def test_arguments_passed_through(self) -> None:
        runner = PeriodicTaskScheduler._wrap("add", lambda a, b: a + b)
        assert runner(2, 3) == 5
