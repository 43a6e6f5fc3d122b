"""
Aggregation of single-cell counts.

Provides:
- Pseudobulk (cell type x sample) sums, means and fractions expressing
- Group-level summaries over kept samples
- Relative cell type abundance per group
- Expressed-gene calls per cell type and group
"""

from multiniche_pipeline.aggregation.base import (
    AbundanceExpressionInfo,
    log_transform,
    normalize_expression,
)
from multiniche_pipeline.aggregation.pseudobulk import (
    AbundanceAggregator,
    aggregate_pseudobulk,
)

__all__ = [
    "AbundanceExpressionInfo",
    "log_transform",
    "normalize_expression",
    "AbundanceAggregator",
    "aggregate_pseudobulk",
]
