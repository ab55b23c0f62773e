"""Helpers shared by the unit tests"""
import io
import json
import urllib.error
from unittest.mock import MagicMock

from humio_exporter.schemas import QueryJob


def make_job(metric_name="errors_total", labels=(), job_id="job-1", repo="sandbox", interval="5m"):
    """Build a QueryJob as the client would return it"""
    return QueryJob(
        id=job_id,
        query="count()",
        start=interval,
        end="now",
        repo=repo,
        metric_name=metric_name,
        labels=tuple(labels),
    )


def json_response(data):
    """Mock urlopen() context manager returning JSON"""
    response = MagicMock()
    response.read.return_value = json.dumps(data).encode()
    response.__enter__.return_value = response
    return response


def http_error(code, body=b"", url="https://humio.example.com/api"):
    return urllib.error.HTTPError(url, code, "error", {}, io.BytesIO(body))
