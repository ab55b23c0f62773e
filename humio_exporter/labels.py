"""Label resolution for published series."""

from typing import Dict, Iterable, List, Mapping, Optional, Tuple

from .schemas import INTERVAL_LABEL, REPO_LABEL, LabelDeclaration, QueryJob, Scalar, scalar_to_text

UNKNOWN_LABEL_VALUE = "unknown"


def effective_declarations(declarations: Iterable[LabelDeclaration]) -> List[LabelDeclaration]:
    """Declarations that produce a label; static labels with an empty value are dropped."""
    return [d for d in declarations if d.is_dynamic or d.value != ""]


def label_keys(declarations: Iterable[LabelDeclaration]) -> Tuple[str, ...]:
    """Full label-key schema for a metric: fixed labels first, then declared keys in order."""
    return (INTERVAL_LABEL, REPO_LABEL) + tuple(d.key for d in effective_declarations(declarations))


def column_label_value(row: Mapping[str, Scalar], column: str) -> str:
    text = scalar_to_text(row.get(column))
    if not text:
        return UNKNOWN_LABEL_VALUE
    return text


def resolve_labels(
    job: QueryJob,
    row: Optional[Mapping[str, Scalar]] = None,
) -> Dict[str, str]:
    """
    Build the label set for one sample of a job.

    Args:
        job: Query job the sample belongs to
        row: Result row, required to resolve dynamic labels (table mode)

    Returns:
        Mapping of label key to value, covering every key of label_keys()
    """
    labels = {INTERVAL_LABEL: job.timespan, REPO_LABEL: job.repo}
    for declaration in effective_declarations(job.labels):
        if declaration.is_dynamic:
            labels[declaration.key] = column_label_value(row or {}, declaration.value_from_table)
        else:
            labels[declaration.key] = declaration.value
    return labels
