"""
Value extraction from completed query job results.

Single-row mode reads the aggregate fields of the first event only, table
mode emits one sample per event. A query runs in table mode as soon as one of
its labels is taken from a result column.
"""

import logging
from typing import Any, List, Mapping, Optional, Sequence

from .errors import ExtractionError
from .labels import resolve_labels
from .schemas import JobResult, QueryJob, ResolvedSample, scalar_to_text

logger = logging.getLogger("humio_exporter.extraction")

# Checked in order, the first field present wins
SINGLE_ROW_FIELDS = ("_count", "_min", "_max", "_avg", "_rate", "_range", "_stddev", "_sum")
TABLE_FIELDS = ("value", "_value", "count", "_count")


def parse_float(value: Any) -> float:
    """Parse a result cell as float. Raises ExtractionError for null or non-numeric text."""
    text = scalar_to_text(value)
    if text is None:
        raise ExtractionError("cannot parse null as a number")
    try:
        return float(text.strip())
    except ValueError:
        raise ExtractionError(f"cannot parse {text!r} as a number") from None


def extract_single_value(job: QueryJob, events: Sequence[Mapping[str, Any]]) -> Optional[float]:
    """
    Value of a single-row query.

    Returns None when there is nothing to publish this tick (no events or no
    known aggregate field). Raises ExtractionError when the chosen field does
    not parse.
    """
    if not events:
        logger.info("no events returned for %s (repo=%s, interval=%s), skipping",
                    job.metric_name, job.repo, job.timespan)
        return None

    row = events[0]
    for name in SINGLE_ROW_FIELDS:
        if row.get(name) is not None:
            try:
                return parse_float(row[name])
            except ExtractionError as e:
                raise ExtractionError(f"{job.metric_name}: field {name}: {e}") from None

    logger.info("no aggregate field found for %s in fields %s, skipping",
                job.metric_name, sorted(row.keys()))
    return None


def extract_row_value(row: Mapping[str, Any]) -> Optional[float]:
    """First parseable table field of a row, or None."""
    for name in TABLE_FIELDS:
        if name not in row:
            continue
        try:
            return parse_float(row[name])
        except ExtractionError:
            continue
    return None


def extract_samples(job: QueryJob, result: JobResult) -> List[ResolvedSample]:
    """Turn a completed poll result into the samples to publish for a job."""
    if not job.table_mode:
        value = extract_single_value(job, result.events)
        if value is None:
            return []
        return [ResolvedSample(job.metric_name, value, resolve_labels(job))]

    samples = []
    for index, row in enumerate(result.events):
        value = extract_row_value(row)
        if value is None:
            logger.warning("%s: row %d has no parseable value in %s, skipping row",
                           job.metric_name, index, list(TABLE_FIELDS))
            continue
        samples.append(ResolvedSample(job.metric_name, value, resolve_labels(job, row)))

    logger.debug(f"{job.metric_name}: extracted {len(samples)} of {len(result.events)} rows")
    return samples
