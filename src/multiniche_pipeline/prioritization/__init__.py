"""
Interaction prioritization.

Provides:
- Empirical CDF rescaling and NA-aware weighted scoring
- Criterion construction (DE, expression, co-expression, abundance, activity)
- Group-level and sample-level ranked tables
"""

from multiniche_pipeline.prioritization.scaling import (
    ecdf_scale,
    grouped_ecdf,
    row_zscore,
    signed_log_pval,
    weighted_mean,
)
from multiniche_pipeline.prioritization.criteria import (
    SCALING_GROUPS,
    add_scaled_criteria,
    coexpression_fraction,
    expression_specificity,
)
from multiniche_pipeline.prioritization.engine import (
    PrioritizationEngine,
    PrioritizationResult,
    group_comparison,
)

__all__ = [
    # Scaling
    "ecdf_scale",
    "grouped_ecdf",
    "row_zscore",
    "signed_log_pval",
    "weighted_mean",
    # Criteria
    "SCALING_GROUPS",
    "add_scaled_criteria",
    "coexpression_fraction",
    "expression_specificity",
    # Engine
    "PrioritizationEngine",
    "PrioritizationResult",
    "group_comparison",
]
