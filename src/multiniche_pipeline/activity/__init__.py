"""
Ligand activity inference.

Enrichment of prior ligand targets among the DE genes of receiver cell types.
"""

from multiniche_pipeline.activity.enrichment import (
    enrichment_metrics,
    ligand_activities,
    zscore,
)
from multiniche_pipeline.activity.geneset import (
    background_genes,
    select_de_genes,
)
from multiniche_pipeline.activity.scorer import (
    ActivityResult,
    LigandActivityScorer,
    score_ligand_activity,
)

__all__ = [
    # Enrichment
    "enrichment_metrics",
    "ligand_activities",
    "zscore",
    # Gene sets
    "background_genes",
    "select_de_genes",
    # Scorer
    "ActivityResult",
    "LigandActivityScorer",
    "score_ligand_activity",
]
