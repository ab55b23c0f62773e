"""
humio_exporter schemas - queries file models, query jobs and poll results
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

INTERVAL_LABEL = "interval"
REPO_LABEL = "repo"
FIXED_LABELS = (INTERVAL_LABEL, REPO_LABEL)

# A single cell of a result row as decoded from JSON
Scalar = Union[str, int, float, bool, None]


class LabelDeclaration(BaseModel):
    """A label declared on a query: either a fixed value or a result column."""
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    key: str = Field(..., pattern=r"^[a-zA-Z_][a-zA-Z0-9_]*$")
    value: Optional[str] = None
    value_from_table: Optional[str] = Field(None, alias="valueFromTable")

    @model_validator(mode="after")
    def _exactly_one_source(self) -> "LabelDeclaration":
        if self.value is None and self.value_from_table is None:
            raise ValueError(f"label '{self.key}' needs either 'value' or 'valueFromTable'")
        if self.value is not None and self.value_from_table is not None:
            raise ValueError(f"label '{self.key}' cannot set both 'value' and 'valueFromTable'")
        if self.key in FIXED_LABELS:
            raise ValueError(f"label '{self.key}' is reserved")
        return self

    @property
    def is_dynamic(self) -> bool:
        return self.value_from_table is not None


class QueryConfig(BaseModel):
    query: str = Field(..., min_length=1)
    repo: str = Field(..., min_length=1)
    interval: str = Field(..., min_length=1)
    metric_name: str = Field(..., pattern=r"^[a-zA-Z_:][a-zA-Z0-9_:]*$")
    labels: List[LabelDeclaration] = []

    @field_validator("labels")
    @classmethod
    def _unique_keys(cls, labels: List[LabelDeclaration]) -> List[LabelDeclaration]:
        seen = set()
        for label in labels:
            if label.key in seen:
                raise ValueError(f"duplicate label key '{label.key}'")
            seen.add(label.key)
        return labels


class QueriesFile(BaseModel):
    queries: List[QueryConfig] = []


class JobResult(BaseModel):
    """One poll response for a query job."""
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    done: bool = False
    events: List[Dict[str, Any]] = []
    field_order: List[str] = Field(default_factory=list, alias="fieldOrder")
    meta_data: Dict[str, Any] = Field(default_factory=dict, alias="metaData")
    extra_data: Dict[str, Any] = Field(default_factory=dict, alias="extraData")
    processed_events: int = Field(0, alias="processedEvents")

    @field_validator("events", "field_order", mode="before")
    @classmethod
    def _null_as_empty_list(cls, v):
        return [] if v is None else v

    @field_validator("meta_data", "extra_data", mode="before")
    @classmethod
    def _null_as_empty_dict(cls, v):
        return {} if v is None else v


@dataclass(frozen=True)
class QueryJob:
    """A live query job submitted to Humio."""
    id: str
    query: str
    start: str
    end: str
    repo: str
    metric_name: str
    labels: Tuple[LabelDeclaration, ...] = ()
    live: bool = True

    @property
    def timespan(self) -> str:
        return self.start

    @property
    def table_mode(self) -> bool:
        return any(label.is_dynamic for label in self.labels)


@dataclass(frozen=True)
class ResolvedSample:
    metric_name: str
    value: float
    labels: Dict[str, str] = field(default_factory=dict)


def scalar_to_text(value: Any) -> Optional[str]:
    """
    Text form of a result cell.

    Humio returns most fields as strings but numbers, booleans and nulls
    do show up. Returns None for null so callers can tell it from "".
    """
    if value is None:
        return None
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, str):
        return value
    return str(value)
