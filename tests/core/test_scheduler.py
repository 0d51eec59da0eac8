"""
Tests for the job registry and manual triggering.
"""

from unittest.mock import AsyncMock

import pytest
from apscheduler.triggers.interval import IntervalTrigger

from alumni.core import scheduler


@pytest.fixture(autouse=True)
def empty_registry():
    scheduler.clear_registry()
    yield
    scheduler.clear_registry()


@pytest.mark.asyncio
async def test_trigger_registered_job():
    job = AsyncMock(return_value={"selected": 2})
    scheduler.register_job("verify", job, IntervalTrigger(minutes=2))

    result = await scheduler.trigger_job_manually("verify")

    assert result["status"] == "success"
    assert result["result"] == {"selected": 2}
    job.assert_awaited_once()


@pytest.mark.asyncio
async def test_trigger_reports_failure():
    scheduler.register_job(
        "verify", AsyncMock(side_effect=RuntimeError("registry down")), IntervalTrigger(minutes=2)
    )

    result = await scheduler.trigger_job_manually("verify")

    assert result["status"] == "error"
    assert "registry down" in result["error"]


@pytest.mark.asyncio
async def test_trigger_unknown_job():
    with pytest.raises(ValueError):
        await scheduler.trigger_job_manually("nope")


def test_list_registered_jobs_before_start():
    scheduler.register_job("verify", AsyncMock(), IntervalTrigger(minutes=2))

    jobs = scheduler.list_registered_jobs()

    assert [j["job_id"] for j in jobs] == ["verify"]
