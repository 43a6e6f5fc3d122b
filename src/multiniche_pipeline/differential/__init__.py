"""
Differential expression pipeline.

Pseudobulk count models per cell type, contrast handling and p-value
adjustment.
"""

from multiniche_pipeline.differential.contrasts import (
    contrast_coefficients,
    contrast_matrix,
    format_contrasts,
    parse_contrasts,
    validate_contrast_table,
)
from multiniche_pipeline.differential.fdr import (
    apply_fdr,
    FDRCorrector,
)
from multiniche_pipeline.differential.empirical import (
    apply_empirical_null,
    empirical_pvalues,
)
from multiniche_pipeline.differential.deseq import (
    DEEngine,
    DESeq2Engine,
)
from multiniche_pipeline.differential.runner import (
    DEResult,
    DifferentialExpressionRunner,
    build_design,
    run_differential,
)

__all__ = [
    # Contrasts
    "contrast_coefficients",
    "contrast_matrix",
    "format_contrasts",
    "parse_contrasts",
    "validate_contrast_table",
    # FDR
    "apply_fdr",
    "FDRCorrector",
    # Empirical null
    "apply_empirical_null",
    "empirical_pvalues",
    # Engine
    "DEEngine",
    "DESeq2Engine",
    # Runner
    "DEResult",
    "DifferentialExpressionRunner",
    "build_design",
    "run_differential",
]
