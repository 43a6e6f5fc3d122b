"""
DE gene sets of receiver cell types.
"""

from __future__ import annotations

import numpy as np
import pandas as pd

from multiniche_pipeline.aggregation.base import AbundanceExpressionInfo
from multiniche_pipeline.core.config import ActivityConfig

GENESET_COLUMNS = [
    "gene", "receiver", "contrast", "logFC", "p_val", "p_adj", "direction_regulation",
]


def max_fraction(info: AbundanceExpressionInfo, celltype: str) -> pd.Series:
    """Highest group-level fraction expressing per gene for one cell type."""
    if celltype not in info.frq_group.columns.get_level_values(0):
        return pd.Series(0.0, index=info.frq_group.index)
    return info.frq_group[celltype].max(axis=1).fillna(0.0)


def select_de_genes(
    de_table: pd.DataFrame,
    info: AbundanceExpressionInfo,
    config: ActivityConfig,
    receivers: list[str] | None = None,
) -> pd.DataFrame:
    """
    Up- and down-regulated gene sets per receiver and contrast.

    A gene is up when logFC >= logfc_threshold, its p-value (adjusted if
    ``config.p_val_adj``) is <= p_val_threshold and the receiver expresses it
    in at least ``fraction_cutoff`` of cells in some group; down is the same
    with logFC <= -logfc_threshold. Genes with logFC == 0 are in neither set.

    Args:
        de_table: Long DE table.
        info: Aggregated expression (fractions).
        config: Activity thresholds.
        receivers: Receiver cell types (None = all cell types in the DE table).

    Returns:
        DataFrame with gene, receiver, contrast, logFC, p_val, p_adj,
        direction_regulation ("up" or "down").
    """
    pcol = "p_adj" if config.p_val_adj else "p_val"
    table = de_table.rename(columns={"celltype": "receiver"})
    if receivers is not None:
        table = table.loc[table["receiver"].isin(receivers)]
    if table.empty:
        return pd.DataFrame(columns=GENESET_COLUMNS)

    frames = []
    for receiver, sub in table.groupby("receiver", sort=True):
        frac = max_fraction(info, receiver)
        expressed = sub["gene"].map(frac).fillna(0.0) >= config.fraction_cutoff
        significant = sub[pcol] <= config.p_val_threshold
        up = (sub["logFC"] >= config.logfc_threshold) & (sub["logFC"] > 0)
        down = (sub["logFC"] <= -config.logfc_threshold) & (sub["logFC"] < 0)
        keep = expressed & significant & (up | down)
        passing = sub.loc[keep].copy()
        passing["direction_regulation"] = np.where(up[keep], "up", "down")
        frames.append(passing)

    out = pd.concat(frames, ignore_index=True) if frames else pd.DataFrame()
    if out.empty:
        return pd.DataFrame(columns=GENESET_COLUMNS)
    return (
        out[GENESET_COLUMNS]
        .sort_values(["receiver", "contrast", "direction_regulation", "gene"], kind="mergesort")
        .reset_index(drop=True)
    )


def background_genes(
    info: AbundanceExpressionInfo,
    receiver: str,
    de_genes: pd.DataFrame,
) -> pd.Index:
    """Expressed genes of a receiver plus any of its DE genes."""
    genes = set(info.expressed_genes(receiver))
    genes |= set(de_genes.loc[de_genes["receiver"] == receiver, "gene"])
    return pd.Index(sorted(genes), name="gene")
