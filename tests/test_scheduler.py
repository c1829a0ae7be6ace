"""
Tests for the APScheduler-backed Scheduler.

Passes are plain async functions; run_job() drives them directly, and
run_forever() is exercised once end to end.
"""

from __future__ import annotations

import asyncio

import pytest
from apscheduler.triggers.interval import IntervalTrigger

from adroom.scheduler import Scheduler


@pytest.fixture
def scheduler():
    return Scheduler()


def _recording_job(log: list[str], name: str):
    async def job():
        log.append(name)
    return job


class TestAddJob:
    def test_rejects_non_positive_interval(self, scheduler):
        with pytest.raises(ValueError):
            scheduler.add_job("bad", _recording_job([], "bad"), minutes=0)

    def test_rejects_duplicate_name(self, scheduler):
        scheduler.add_job("worker", _recording_job([], "w"), minutes=15)
        with pytest.raises(ValueError, match="already registered"):
            scheduler.add_job("worker", _recording_job([], "w"), minutes=15)

    def test_interval_in_seconds(self, scheduler):
        job = scheduler.add_job("worker", _recording_job([], "w"), minutes=15)
        assert job.interval_seconds == 900

    def test_registered_as_interval_job_without_overlap(self, scheduler):
        scheduler.add_job("optimization", _recording_job([], "o"), minutes=360)

        aps_job = scheduler.scheduler.get_job("optimization")

        assert isinstance(aps_job.trigger, IntervalTrigger)
        assert aps_job.trigger.interval.total_seconds() == 360 * 60
        assert aps_job.max_instances == 1
        assert aps_job.coalesce is True
        assert aps_job.args == ("optimization",)

    def test_jobs_in_registration_order(self, scheduler):
        scheduler.add_job("worker", _recording_job([], "w"), minutes=15)
        scheduler.add_job("execution", _recording_job([], "e"), minutes=15)
        assert [j.name for j in scheduler.jobs] == ["worker", "execution"]


class TestRunJob:
    @pytest.mark.asyncio
    async def test_success_counted(self, scheduler):
        log: list[str] = []
        job = scheduler.add_job("worker", _recording_job(log, "worker"), minutes=15)

        assert await scheduler.run_job("worker") is True

        assert log == ["worker"]
        assert job.runs == 1
        assert job.failures == 0

    @pytest.mark.asyncio
    async def test_failure_logged_and_counted(self, scheduler, caplog):
        async def broken():
            raise RuntimeError("supabase timeout")

        job = scheduler.add_job("intelligence", broken, minutes=60)

        assert await scheduler.run_job("intelligence") is False

        assert job.failures == 1
        assert job.runs == 1
        assert job.last_error == "supabase timeout"
        assert any(r.getMessage() == "job_failed" for r in caplog.records)

    @pytest.mark.asyncio
    async def test_success_clears_last_error(self, scheduler):
        calls = {"n": 0}

        async def flaky():
            calls["n"] += 1
            if calls["n"] == 1:
                raise RuntimeError("first try")

        job = scheduler.add_job("flaky", flaky, minutes=1)
        await scheduler.run_job("flaky")
        await scheduler.run_job("flaky")

        assert job.last_error is None
        assert job.failures == 1
        assert job.runs == 2

    @pytest.mark.asyncio
    async def test_passes_never_overlap(self, scheduler):
        events: list[str] = []

        def _slow(name: str):
            async def job():
                events.append(f"{name}:start")
                await asyncio.sleep(0.01)
                events.append(f"{name}:end")
            return job

        scheduler.add_job("worker", _slow("worker"), minutes=15)
        scheduler.add_job("execution", _slow("execution"), minutes=15)

        await asyncio.gather(
            scheduler.run_job("worker"), scheduler.run_job("execution")
        )

        assert events == [
            "worker:start", "worker:end", "execution:start", "execution:end",
        ]


class TestRunForever:
    @pytest.mark.asyncio
    async def test_fires_immediately_and_stops_when_asked(self):
        scheduler = Scheduler()

        async def job():
            scheduler.stop()

        scheduler.add_job("once", job, minutes=15)

        await asyncio.wait_for(scheduler.run_forever(), timeout=5)

        assert scheduler.jobs[0].runs == 1
        assert scheduler.scheduler.running is False
