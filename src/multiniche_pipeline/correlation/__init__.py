"""
Correlation analysis pipeline.

Sample-level correlation of ligand-receptor products with target expression.
"""

from multiniche_pipeline.correlation.pearson import (
    pearson_correlation,
    PearsonCorrelator,
)
from multiniche_pipeline.correlation.spearman import (
    spearman_correlation,
    SpearmanCorrelator,
)
from multiniche_pipeline.correlation.lr_target import (
    CorrelationInference,
    CorrelationResult,
)

__all__ = [
    # Pearson
    "pearson_correlation",
    "PearsonCorrelator",
    # Spearman
    "spearman_correlation",
    "SpearmanCorrelator",
    # Ligand-receptor to target
    "CorrelationInference",
    "CorrelationResult",
]
