"""Pytest configuration and shared fixtures"""
import pytest

from humio_exporter.registry import MetricRegistry
from humio_exporter.schemas import LabelDeclaration, QueryConfig


@pytest.fixture
def registry():
    """Fresh registry backed by its own CollectorRegistry"""
    return MetricRegistry()


@pytest.fixture
def host_label():
    return LabelDeclaration(key="host", valueFromTable="hostname")


@pytest.fixture
def simple_query():
    return QueryConfig(query="count()", repo="sandbox", interval="5m", metric_name="errors_total")


@pytest.fixture
def table_query(host_label):
    return QueryConfig(
        query="groupby(hostname)",
        repo="sandbox",
        interval="15m",
        metric_name="requests_by_host",
        labels=[host_label],
    )
