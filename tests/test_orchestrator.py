import asyncio

import pytest

from pipelines.orchestrator import JobResult, OrchestratorReport, run_jobs


def job(value, delay=0.0, error=None, log=None):
    async def factory():
        if log is not None:
            log.append(("start", value))
        await asyncio.sleep(delay)
        if log is not None:
            log.append(("end", value))
        if error is not None:
            raise error
        return value
    return factory


@pytest.mark.asyncio
async def test_failing_job_does_not_cancel_siblings():
    report = await run_jobs({
        "docs": job("docs", delay=0.02),
        "swift": job("swift", error=RuntimeError("boom")),
        "evolution": job("evolution", delay=0.01),
    })

    assert len(report.results) == 3
    assert report.failures == 1
    assert report.succeeded is False
    assert report.get("docs").result == "docs"
    assert report.get("evolution").succeeded
    assert isinstance(report.get("swift").error, RuntimeError)


@pytest.mark.asyncio
async def test_results_arrive_in_completion_order():
    report = await run_jobs({
        "slow": job("slow", delay=0.05),
        "fast": job("fast"),
    })

    assert [r.name for r in report.results] == ["fast", "slow"]


@pytest.mark.asyncio
async def test_max_concurrency_serializes_jobs():
    log = []
    await run_jobs({
        "a": job("a", delay=0.01, log=log),
        "b": job("b", delay=0.01, log=log),
    }, max_concurrency=1)

    assert log == [("start", "a"), ("end", "a"), ("start", "b"), ("end", "b")]


@pytest.mark.asyncio
async def test_no_jobs():
    report = await run_jobs({})
    assert report.results == []
    assert report.succeeded


@pytest.mark.asyncio
async def test_cancellation_reaches_every_job():
    cancelled = []

    def waiting(name):
        async def factory():
            try:
                await asyncio.sleep(10)
            except asyncio.CancelledError:
                cancelled.append(name)
                raise
        return factory

    task = asyncio.ensure_future(run_jobs({"a": waiting("a"), "b": waiting("b")}))
    await asyncio.sleep(0.01)
    task.cancel()

    with pytest.raises(asyncio.CancelledError):
        await task
    assert sorted(cancelled) == ["a", "b"]


def test_report_lookup_misses():
    report = OrchestratorReport([JobResult(name="docs")])
    assert report.get("docs").succeeded
    assert report.get("other") is None
