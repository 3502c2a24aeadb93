"""Parallel fan-out of independent crawl and fetch jobs.

Every job runs as its own asyncio task. A failing job never cancels its
siblings; results are collected as jobs complete and summarized in an
:class:`OrchestratorReport`.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional

logger = logging.getLogger(__name__)

JobFactory = Callable[[], Awaitable[Any]]


@dataclass
class JobResult:
    """Terminal state of one job."""
    name: str
    result: Any = None
    error: Optional[BaseException] = None
    duration: float = 0.0

    @property
    def succeeded(self) -> bool:
        return self.error is None


@dataclass
class OrchestratorReport:
    """Aggregate outcome of a fan-out, in completion order."""
    results: List[JobResult] = field(default_factory=list)

    @property
    def failures(self) -> int:
        return sum(1 for r in self.results if not r.succeeded)

    @property
    def succeeded(self) -> bool:
        return self.failures == 0

    def get(self, name: str) -> Optional[JobResult]:
        for result in self.results:
            if result.name == name:
                return result
        return None


async def run_jobs(jobs: Dict[str, JobFactory],
                   max_concurrency: Optional[int] = None,
                   log: Optional[logging.Logger] = None) -> OrchestratorReport:
    """Run ``jobs`` concurrently and wait for all of them.

    Args:
        jobs: Job name -> zero-argument coroutine factory
        max_concurrency: Upper bound on simultaneously running jobs
            (None for no bound)
        log: Log sink

    Returns:
        Report with one :class:`JobResult` per job. Exceptions raised by a
        job are captured in its result; cancellation of the caller is
        propagated to every job.
    """
    log = log or logger
    report = OrchestratorReport()
    if not jobs:
        return report

    semaphore = asyncio.Semaphore(max_concurrency) if max_concurrency else None

    async def run_one(name: str, factory: JobFactory) -> JobResult:
        started = time.monotonic()
        try:
            if semaphore is not None:
                async with semaphore:
                    result = await factory()
            else:
                result = await factory()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            log.error(f"Job {name} failed: {e}")
            return JobResult(name=name, error=e, duration=time.monotonic() - started)

        log.info(f"Job {name} finished in {time.monotonic() - started:.1f}s")
        return JobResult(name=name, result=result, duration=time.monotonic() - started)

    tasks = [asyncio.ensure_future(run_one(name, factory)) for name, factory in jobs.items()]
    try:
        for next_done in asyncio.as_completed(tasks):
            report.results.append(await next_done)
    except asyncio.CancelledError:
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        raise

    log.info(f"{len(report.results)} jobs finished, {report.failures} failed")
    return report
