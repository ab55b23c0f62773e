"""Unit tests for the query poller

Tests the polling loop including:
- Job submission and cancellation
- Completed / pending results
- Fatal errors and per-job isolation
- Stop handling
"""
import asyncio
from unittest.mock import MagicMock

import pytest

from humio_exporter.errors import ExtractionError, JobNotFound, RemoteError, TransportError
from humio_exporter.poller import QueryPoller
from humio_exporter.schemas import JobResult

from tests.helpers import make_job


def sample(registry, name, labels):
    return registry.collector_registry.get_sample_value(name, labels)


@pytest.fixture
def client():
    client = MagicMock()
    client.start_query_job.side_effect = lambda q: make_job(
        metric_name=q.metric_name, labels=q.labels, job_id=f"job-{q.metric_name}",
        repo=q.repo, interval=q.interval,
    )
    client.stop_query_job.return_value = True
    return client


@pytest.fixture
def poller(client, registry, simple_query, table_query):
    for query in (simple_query, table_query):
        registry.declare(query.metric_name, query.labels)
    return QueryPoller(client, registry, [simple_query, table_query], poll_interval=0.01)


def results_by_job(results):
    """poll_query_job side effect returning a result per job id"""
    def poll(job):
        result = results[job.id]
        if isinstance(result, Exception):
            raise result
        return result
    return poll


class TestStart:

    def test_submits_one_job_per_query(self, poller, client):
        jobs = asyncio.run(poller.start())

        assert [j.id for j in jobs] == ["job-errors_total", "job-requests_by_host"]
        assert client.start_query_job.call_count == 2
        assert poller.jobs == jobs

    def test_submit_failure_stops_submitted_jobs(self, poller, client, simple_query):
        client.start_query_job.side_effect = [
            make_job(job_id="job-1"),
            TransportError("connection refused"),
        ]

        with pytest.raises(TransportError):
            asyncio.run(poller.start())

        client.stop_query_job.assert_called_once()
        assert client.stop_query_job.call_args[0][0].id == "job-1"
        assert poller.jobs == []


class TestPollOnce:

    def test_completed_results_update_gauges(self, poller, client, registry):
        client.poll_query_job.side_effect = results_by_job({
            "job-errors_total": JobResult(done=True, events=[{"_count": "42"}]),
            "job-requests_by_host": JobResult(done=True, events=[
                {"hostname": "a", "value": "1"},
                {"hostname": "", "value": "2"},
            ]),
        })

        async def scenario():
            await poller.start()
            return await poller.poll_once()

        assert asyncio.run(scenario()) == 3
        assert sample(registry, "errors_total", {"interval": "5m", "repo": "sandbox"}) == 42
        assert sample(registry, "requests_by_host",
                      {"interval": "15m", "repo": "sandbox", "host": "a"}) == 1
        assert sample(registry, "requests_by_host",
                      {"interval": "15m", "repo": "sandbox", "host": "unknown"}) == 2

    def test_pending_result_does_not_touch_gauges(self, poller, client, registry):
        client.poll_query_job.return_value = JobResult(done=False, events=[{"_count": "1"}])

        async def scenario():
            await poller.start()
            return await poller.poll_once()

        assert asyncio.run(scenario()) == 0
        assert sample(registry, "errors_total", {"interval": "5m", "repo": "sandbox"}) is None
        assert "errors_total{" not in registry.expose().decode()

    def test_repeated_poll_is_idempotent(self, poller, client, registry):
        client.poll_query_job.side_effect = results_by_job({
            "job-errors_total": JobResult(done=True, events=[{"_count": "5"}]),
            "job-requests_by_host": JobResult(done=True, events=[]),
        })

        async def scenario():
            await poller.start()
            await poller.poll_once()
            await poller.poll_once()

        asyncio.run(scenario())
        assert sample(registry, "errors_total", {"interval": "5m", "repo": "sandbox"}) == 5

    @pytest.mark.parametrize("error", [
        JobNotFound("job-errors_total"),
        TransportError("connection reset"),
        RemoteError(500, "boom"),
        ExtractionError("cannot parse 'x' as a number"),
    ], ids=["not-found", "transport", "remote", "extraction"])
    def test_errors_are_fatal_by_default(self, poller, client, error):
        client.poll_query_job.side_effect = results_by_job({
            "job-errors_total": error,
            "job-requests_by_host": JobResult(done=True, events=[]),
        })

        async def scenario():
            await poller.start()
            await poller.poll_once()

        with pytest.raises(type(error)):
            asyncio.run(scenario())

    def test_unparseable_single_row_value_is_fatal(self, poller, client):
        client.poll_query_job.return_value = JobResult(done=True, events=[{"_count": "n/a"}])

        async def scenario():
            await poller.start()
            await poller.poll_once()

        with pytest.raises(ExtractionError):
            asyncio.run(scenario())


class TestIsolatedFailures:
    """Per-job isolation keeps the remaining queries updating"""

    @pytest.fixture
    def isolated(self, poller):
        poller.isolate_job_failures = True
        return poller

    def test_extraction_error_is_isolated(self, isolated, client, registry):
        client.poll_query_job.side_effect = results_by_job({
            "job-errors_total": JobResult(done=True, events=[{"_count": "n/a"}]),
            "job-requests_by_host": JobResult(done=True, events=[{"hostname": "a", "value": "9"}]),
        })

        async def scenario():
            await isolated.start()
            return await isolated.poll_once()

        assert asyncio.run(scenario()) == 1
        assert sample(registry, "requests_by_host",
                      {"interval": "15m", "repo": "sandbox", "host": "a"}) == 9
        assert len(isolated.jobs) == 2

    def test_expired_job_is_dropped(self, isolated, client):
        client.poll_query_job.side_effect = results_by_job({
            "job-errors_total": JobNotFound("job-errors_total"),
            "job-requests_by_host": JobResult(done=False),
        })

        async def scenario():
            await isolated.start()
            await isolated.poll_once()

        asyncio.run(scenario())
        assert [j.id for j in isolated.jobs] == ["job-requests_by_host"]

    def test_last_expired_job_is_fatal(self, isolated, client):
        client.poll_query_job.side_effect = JobNotFound("any")

        async def scenario():
            await isolated.start()
            await isolated.poll_once()

        with pytest.raises(JobNotFound):
            asyncio.run(scenario())

    @pytest.mark.parametrize("error", [
        TransportError("connection reset"),
        RemoteError(401, "bad token"),
        RemoteError(403, "forbidden"),
    ], ids=["transport", "401", "403"])
    def test_transport_and_credential_errors_stay_fatal(self, isolated, client, error):
        client.poll_query_job.side_effect = error

        async def scenario():
            await isolated.start()
            await isolated.poll_once()

        with pytest.raises(type(error)):
            asyncio.run(scenario())


class TestRun:

    def test_stop_event_cancels_all_jobs(self, poller, client):
        client.poll_query_job.return_value = JobResult(done=False)

        async def scenario():
            stop = asyncio.Event()

            async def stop_soon():
                await asyncio.sleep(0.05)
                stop.set()

            await asyncio.gather(poller.run(stop), stop_soon())

        asyncio.run(scenario())

        assert client.poll_query_job.call_count >= 1
        stopped = sorted(call[0][0].id for call in client.stop_query_job.call_args_list)
        assert stopped == ["job-errors_total", "job-requests_by_host"]
        assert poller.jobs == []

    def test_stop_before_first_wait(self, poller, client):
        client.poll_query_job.return_value = JobResult(done=False)
        poller.poll_interval = 60

        async def scenario():
            stop = asyncio.Event()
            stop.set()
            await asyncio.wait_for(poller.run(stop), timeout=5)

        asyncio.run(scenario())
        assert client.stop_query_job.call_count == 2

    def test_fatal_error_cancels_and_raises(self, poller, client):
        client.poll_query_job.side_effect = JobNotFound("job-errors_total")

        with pytest.raises(JobNotFound):
            asyncio.run(poller.run(asyncio.Event()))

        assert client.stop_query_job.call_count == 2

    def test_cancel_failures_do_not_block_shutdown(self, poller, client):
        client.poll_query_job.return_value = JobResult(done=False)
        client.stop_query_job.side_effect = RuntimeError("unexpected")

        async def scenario():
            stop = asyncio.Event()
            stop.set()
            await poller.run(stop)

        asyncio.run(scenario())
        assert client.stop_query_job.call_count == 2
