"""Error types raised by the humio exporter."""

from typing import Optional


class ExporterError(Exception):
    """Base class for exporter errors."""


class TransportError(ExporterError):
    """Network, timeout or encoding failure while talking to Humio."""


class RemoteError(ExporterError):
    """Humio answered with a non-success status other than 404."""

    def __init__(self, status: Optional[int], body: str, reason: str = ""):
        self.status = status
        self.body = body
        self.reason = reason
        status_text = f"{status} {reason}".strip()
        super().__init__(f"request not OK: {status_text}: body: {body}")


class JobNotFound(ExporterError):
    """Humio no longer knows the query job (it expired)."""

    def __init__(self, job_id: str):
        self.job_id = job_id
        super().__init__(f"query job not found: {job_id}")


class ExtractionError(ExporterError):
    """A value could not be parsed where one is required."""


class ConfigurationError(ExporterError):
    """Invalid queries file, settings or metric declarations."""
