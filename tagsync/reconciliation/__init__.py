"""Tag reconciliation package."""

from tagsync.reconciliation.engine import TagReconciler, compute_diff
from tagsync.reconciliation.normalizer import (
    TagNormalizer,
    normalize_tag_name,
    parse_tag_string,
)
from tagsync.reconciliation.outcomes import (
    Conflict,
    Failed,
    Ok,
    Outcome,
    capture,
    describe_error,
)

__all__ = [
    "TagReconciler",
    "compute_diff",
    "TagNormalizer",
    "normalize_tag_name",
    "parse_tag_string",
    "Conflict",
    "Failed",
    "Ok",
    "Outcome",
    "capture",
    "describe_error",
]
