"""
Humio API client for running live query jobs.

Provides submit / poll / stop for query jobs on top of urllib, with bearer
authentication, JSON content negotiation and typed errors.
"""

import http.client
import json
import logging
import os
import urllib.error
import urllib.parse
import urllib.request
from typing import Any, Dict, Optional

from dotenv import load_dotenv
from pydantic import ValidationError

from .errors import ConfigurationError, JobNotFound, RemoteError, TransportError
from .schemas import JobResult, QueryConfig, QueryJob

load_dotenv()

logger = logging.getLogger("humio_exporter.http_client")

QUERY_END = "now"


class HumioClient:
    """Client for the Humio query jobs API."""

    def __init__(self, base_url: str, api_token: Optional[str] = None, timeout: float = 10):
        """
        Initialize Humio client.

        Args:
            base_url: Humio base URL (e.g., https://cloud.humio.com)
            api_token: Humio API token. If None, reads from HUMIO_API_TOKEN env var.
            timeout: Request timeout in seconds
        """
        self.api_token = api_token or os.getenv("HUMIO_API_TOKEN")
        if not self.api_token:
            raise ConfigurationError("HUMIO_API_TOKEN not found in arguments or environment variables")

        self.base_url = base_url.rstrip("/")
        self.timeout = timeout

    def _jobs_url(self, repo: str, job_id: Optional[str] = None) -> str:
        url = f"{self.base_url}/api/v1/repositories/{urllib.parse.quote(repo, safe='')}/queryjobs"
        if job_id is not None:
            url = f"{url}/{urllib.parse.quote(job_id, safe='')}"
        return url

    def _request(self, method: str, url: str, payload: Optional[Dict[str, Any]] = None,
                 job_id: Optional[str] = None) -> Any:
        """
        Send a request and decode the JSON response.

        Raises:
            JobNotFound: On 404
            RemoteError: On any other non-2xx status
            TransportError: On connection, timeout or decoding failures
        """
        body = json.dumps(payload).encode("utf-8") if payload is not None else None
        req = urllib.request.Request(url, data=body, method=method)
        req.add_header("Authorization", f"Bearer {self.api_token}")
        req.add_header("Content-Type", "application/json")
        req.add_header("Accept", "application/json")

        try:
            with urllib.request.urlopen(req, timeout=self.timeout) as response:
                raw = response.read()
        except urllib.error.HTTPError as e:
            raise self._status_error(req, e, job_id) from None
        except (OSError, http.client.HTTPException) as e:
            # also raised by response.read() inside the with block
            raise TransportError(f"{method} {url} failed: {e}") from e

        if not raw:
            return {}
        try:
            return json.loads(raw)
        except (ValueError, UnicodeDecodeError) as e:
            raise TransportError(f"{method} {url}: invalid JSON response: {e}") from e

    def _status_error(self, req: urllib.request.Request, error: urllib.error.HTTPError,
                      job_id: Optional[str]) -> Exception:
        try:
            body = error.read().decode("utf-8", errors="replace")
        except Exception as e:
            logger.error("read body failed: %s", e)
            body = "failed to read body"

        # 404 means the query job expired on the server
        if error.code == 404:
            return JobNotFound(job_id or req.full_url)

        logger.debug("Failed request dump: %s", self._dump_request(req))
        return RemoteError(error.code, body, str(error.reason or ""))

    @staticmethod
    def _dump_request(req: urllib.request.Request) -> str:
        lines = [f"{req.get_method()} {req.full_url}"]
        for name, value in req.header_items():
            if name.lower() == "authorization":
                value = "Bearer <redacted>"
            lines.append(f"{name}: {value}")
        if req.data:
            lines.append("")
            lines.append(req.data.decode("utf-8", errors="replace"))
        return "\n".join(lines)

    def start_query_job(self, query: QueryConfig) -> QueryJob:
        """
        Start a live query job for a configured query.

        The job covers the window from the configured interval (e.g. "5m")
        until now and keeps updating on the server while it is polled.
        """
        payload = {
            "queryString": query.query,
            "start": query.interval,
            "end": QUERY_END,
            "isLive": True,
        }
        data = self._request("POST", self._jobs_url(query.repo), payload)
        job_id = data.get("id") if isinstance(data, dict) else None
        if not job_id:
            raise RemoteError(None, json.dumps(data), "query job response without id")

        logger.info("started query job %s for %s (repo=%s, interval=%s)",
                    job_id, query.metric_name, query.repo, query.interval)
        return QueryJob(
            id=str(job_id),
            query=query.query,
            start=query.interval,
            end=QUERY_END,
            repo=query.repo,
            metric_name=query.metric_name,
            labels=tuple(query.labels),
        )

    def poll_query_job(self, job: QueryJob) -> JobResult:
        """Fetch the current state and events of a query job."""
        data = self._request("GET", self._jobs_url(job.repo, job.id), job_id=job.id)
        if not isinstance(data, dict):
            raise TransportError(f"unexpected poll response for job {job.id}: {data!r}")
        try:
            return JobResult.model_validate(data)
        except ValidationError as e:
            raise TransportError(f"invalid poll response for job {job.id}: {e}") from e

    def stop_query_job(self, job: QueryJob) -> bool:
        """
        Delete a query job on the server.

        Best effort: errors are logged and never raised, so shutdown can't
        be blocked by an unreachable server.

        Returns:
            True if the job was deleted
        """
        try:
            self._request("DELETE", self._jobs_url(job.repo, job.id), job_id=job.id)
        except Exception as e:
            logger.warning("failed to stop query job %s (%s): %s", job.id, job.metric_name, e)
            return False
        logger.debug("stopped query job %s", job.id)
        return True
