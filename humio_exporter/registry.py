"""Gauge registry for published query values."""

import logging
import threading
from typing import Dict, Iterable, List, Mapping, Optional, Tuple

from prometheus_client import CollectorRegistry, Gauge, generate_latest

from .errors import ConfigurationError
from .labels import label_keys
from .schemas import LabelDeclaration

logger = logging.getLogger("humio_exporter.registry")

GAUGE_HELP = "Gauge for humio query"


class MetricRegistry:
    """
    Owns one gauge per metric name and the label-key schema it was declared with.

    The poller is the only writer; the /metrics handler reads through the
    wrapped CollectorRegistry.
    """

    def __init__(self, collector_registry: Optional[CollectorRegistry] = None):
        self.collector_registry = collector_registry or CollectorRegistry()
        self._gauges: Dict[str, Gauge] = {}
        self._schemas: Dict[str, Tuple[str, ...]] = {}
        self._lock = threading.Lock()

    def declare(self, metric_name: str, declarations: Iterable[LabelDeclaration]) -> Tuple[str, ...]:
        """
        Create the gauge for a metric, or reuse it when already declared.

        Args:
            metric_name: Prometheus metric name
            declarations: Label declarations of the query publishing it

        Returns:
            The label-key schema of the metric

        Raises:
            ConfigurationError: If the metric exists with another schema or a name is invalid
        """
        schema = label_keys(declarations)
        with self._lock:
            existing = self._schemas.get(metric_name)
            if existing is not None:
                if existing != schema:
                    raise ConfigurationError(
                        f"metric '{metric_name}' declared with labels {list(existing)} "
                        f"and {list(schema)}"
                    )
                logger.debug("metric %s already declared, sharing gauge", metric_name)
                return existing

            try:
                gauge = Gauge(metric_name, GAUGE_HELP, labelnames=schema,
                              registry=self.collector_registry)
            except ValueError as e:
                raise ConfigurationError(f"invalid metric '{metric_name}': {e}") from e

            self._gauges[metric_name] = gauge
            self._schemas[metric_name] = schema
            logger.info("registered gauge %s with labels %s", metric_name, list(schema))
            return schema

    def set(self, metric_name: str, labels: Mapping[str, str], value: float) -> None:
        """Overwrite the value of the series identified by labels."""
        with self._lock:
            schema = self._schemas.get(metric_name)
            if schema is None:
                raise ConfigurationError(f"metric '{metric_name}' was not declared")
            if set(labels) != set(schema):
                raise ConfigurationError(
                    f"metric '{metric_name}' expects labels {list(schema)}, got {sorted(labels)}"
                )
            self._gauges[metric_name].labels(*[labels[key] for key in schema]).set(value)

    def schema(self, metric_name: str) -> Tuple[str, ...]:
        return self._schemas[metric_name]

    def metric_names(self) -> List[str]:
        return sorted(self._schemas)

    def expose(self) -> bytes:
        """Current state in the Prometheus text exposition format."""
        return generate_latest(self.collector_registry)
