"""Table-level comparison and merge of two database copies."""

from handoff_sync.merge.analyze import (
    DivergenceKind,
    MergeReport,
    Resolution,
    TableDiff,
    analyze,
    analyze_tables,
)
from handoff_sync.merge.apply import apply
from handoff_sync.merge.registry import DEFAULT_REGISTRY, TableSpec, generic_description

__all__ = [
    "DivergenceKind",
    "MergeReport",
    "Resolution",
    "TableDiff",
    "analyze",
    "analyze_tables",
    "apply",
    "DEFAULT_REGISTRY",
    "TableSpec",
    "generic_description",
]
