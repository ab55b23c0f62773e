"""Query job polling loop."""

import asyncio
import logging
from typing import List, Optional, Sequence

from .errors import ExtractionError, JobNotFound, RemoteError
from .extraction import extract_samples
from .http_client import HumioClient
from .registry import MetricRegistry
from .schemas import QueryConfig, QueryJob

logger = logging.getLogger("humio_exporter.poller")

# Remote statuses that mean the token is wrong rather than a single query
CREDENTIAL_STATUSES = (401, 403)


class QueryPoller:
    """
    Submits one live query job per configured query and publishes their results.

    Every tick polls all active jobs in order; completed results go through
    extraction and label resolution into the registry. By default any job
    failure stops the loop. With isolate_job_failures a failing job is logged
    and skipped so the other metrics keep updating; transport and credential
    failures still stop the loop.
    """

    def __init__(
        self,
        client: HumioClient,
        registry: MetricRegistry,
        queries: Sequence[QueryConfig],
        poll_interval: float = 5.0,
        isolate_job_failures: bool = False,
        cancel_timeout: float = 30.0,
    ):
        self.client = client
        self.registry = registry
        self.queries = list(queries)
        self.poll_interval = poll_interval
        self.isolate_job_failures = isolate_job_failures
        self.cancel_timeout = cancel_timeout
        self.jobs: List[QueryJob] = []

    async def _call(self, func, *args):
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, func, *args)

    async def start(self) -> List[QueryJob]:
        """Submit a job per query. On failure, jobs submitted so far are stopped."""
        for query in self.queries:
            try:
                job = await self._call(self.client.start_query_job, query)
            except Exception:
                await self.cancel_all()
                raise
            self.jobs.append(job)
        logger.info("submitted %d query jobs", len(self.jobs))
        return list(self.jobs)

    async def poll_job(self, job: QueryJob) -> int:
        """
        Poll one job and publish its samples.

        Returns:
            Number of samples published (0 while the job is still running)
        """
        result = await self._call(self.client.poll_query_job, job)
        if not result.done:
            logger.debug("skipped %s: query job %s isn't done (interval=%s)",
                         job.metric_name, job.id, job.timespan)
            return 0

        samples = extract_samples(job, result)
        for sample in samples:
            self.registry.set(sample.metric_name, sample.labels, sample.value)
        logger.debug("updated %s with %d samples", job.metric_name, len(samples))
        return len(samples)

    async def poll_once(self) -> int:
        """Run one polling pass over every active job."""
        published = 0
        for job in list(self.jobs):
            try:
                published += await self.poll_job(job)
            except (ExtractionError, JobNotFound, RemoteError) as e:
                if not self._isolated(e):
                    raise
                if isinstance(e, JobNotFound):
                    logger.error("query job %s for %s expired, dropping it", job.id, job.metric_name)
                    self.jobs.remove(job)
                    if not self.jobs:
                        raise
                else:
                    logger.error("failed to update %s, keeping other queries running: %s",
                                 job.metric_name, e)
        return published

    def _isolated(self, error: Exception) -> bool:
        if not self.isolate_job_failures:
            return False
        if isinstance(error, RemoteError) and error.status in CREDENTIAL_STATUSES:
            return False
        return True

    async def cancel_all(self) -> None:
        """Stop every active job on the server, best effort and bounded by cancel_timeout."""
        if not self.jobs:
            return
        jobs, self.jobs = self.jobs, []
        logger.info("stopping %d query jobs", len(jobs))
        pending = [self._call(self.client.stop_query_job, job) for job in jobs]
        try:
            await asyncio.wait_for(asyncio.gather(*pending, return_exceptions=True),
                                   timeout=self.cancel_timeout)
        except asyncio.TimeoutError:
            logger.warning("gave up stopping query jobs after %ss", self.cancel_timeout)

    async def run(self, stop_event: Optional[asyncio.Event] = None) -> None:
        """
        Poll until stop_event is set.

        Returns normally when stopped; re-raises the first fatal error. Active
        jobs are stopped on the server in both cases.
        """
        stop_event = stop_event or asyncio.Event()
        try:
            if not self.jobs:
                await self.start()
            logger.info("polling %d query jobs every %ss", len(self.jobs), self.poll_interval)

            while not stop_event.is_set():
                await self.poll_once()
                try:
                    await asyncio.wait_for(stop_event.wait(), timeout=self.poll_interval)
                except asyncio.TimeoutError:
                    pass
            logger.info("stop requested, shutting down poller")
        finally:
            await self.cancel_all()
