"""
Target enrichment statistics.

Scores how well a ligand's prior target weights separate a DE gene set from
the rest of the background.
"""

from __future__ import annotations

import numpy as np
import pandas as pd
from sklearn.metrics import average_precision_score, roc_auc_score

METRIC_COLUMNS = ["activity", "aupr", "aupr_corrected", "pearson"]


def enrichment_metrics(weights: np.ndarray, response: np.ndarray) -> dict[str, float]:
    """
    Enrichment of one ligand's prior weights for a gene set.

    Args:
        weights: Prior weight per background gene (0 outside the top targets).
        response: Boolean gene-set membership per background gene.

    Returns:
        Dict with activity (AUROC), aupr, aupr_corrected (AUPR minus
        prevalence) and pearson. All NaN when either input is constant.
    """
    weights = np.asarray(weights, dtype=float)
    response = np.asarray(response, dtype=bool)
    if weights.std() == 0 or response.all() or not response.any():
        return {m: np.nan for m in METRIC_COLUMNS}

    auroc = roc_auc_score(response, weights)
    aupr = average_precision_score(response, weights)
    pearson = np.corrcoef(weights, response.astype(float))[0, 1]
    return {
        "activity": float(auroc),
        "aupr": float(aupr),
        "aupr_corrected": float(aupr - response.mean()),
        "pearson": float(pearson),
    }


def ligand_activities(prior: pd.DataFrame, geneset: set) -> pd.DataFrame:
    """
    Enrichment metrics for every ligand column of a background prior matrix.

    Args:
        prior: Background genes x ligands, truncated to top targets.
        geneset: DE genes.

    Returns:
        DataFrame with ligand plus METRIC_COLUMNS; ligands whose weights are
        constant over the background are left out.
    """
    response = prior.index.isin(list(geneset))
    rows = []
    for ligand in prior.columns:
        metrics = enrichment_metrics(prior[ligand].to_numpy(), response)
        if np.isnan(metrics["activity"]):
            continue
        rows.append({"ligand": ligand, **metrics})
    return pd.DataFrame(rows, columns=["ligand"] + METRIC_COLUMNS)


def zscore(values: pd.Series) -> pd.Series:
    """Standard score with sample SD; constant or single values map to 0."""
    sd = values.std(ddof=1)
    if len(values) < 2 or not np.isfinite(sd) or sd == 0:
        return pd.Series(0.0, index=values.index)
    return (values - values.mean()) / sd
