"""
Raw and rescaled prioritization criteria.

Each criterion is rescaled with an empirical CDF within the records that
share its contrast and, for cell-type specific criteria, its sender or
receiver.
"""

from __future__ import annotations

import numpy as np
import pandas as pd

from multiniche_pipeline.aggregation.base import AbundanceExpressionInfo
from multiniche_pipeline.interaction.keys import KEY_COLUMNS
from multiniche_pipeline.prioritization.scaling import (
    grouped_ecdf,
    row_zscore,
    signed_log_pval,
)

SCALING_GROUPS = {
    "de_ligand": ["contrast", "sender"],
    "de_receptor": ["contrast", "receiver"],
    "activity_up": ["contrast", "receiver"],
    "activity_down": ["contrast", "receiver"],
    "exprs_ligand": ["contrast", "sender"],
    "exprs_receptor": ["contrast", "receiver"],
    "frac_exprs_ligand_receptor": ["contrast"],
    "abund_sender": ["contrast"],
    "abund_receiver": ["contrast"],
}
"""Records sharing these columns are rescaled together."""

RAW_COLUMNS = {
    "activity_up": "activity_up",
    "activity_down": "activity_down",
    "exprs_ligand": "pb_ligand_group_z",
    "exprs_receptor": "pb_receptor_group_z",
    "frac_exprs_ligand_receptor": "fraction_expressing_ligand_receptor",
    "abund_sender": "rel_abundance_sender",
    "abund_receiver": "rel_abundance_receiver",
}
"""Raw value column of each single-column criterion."""


def expression_specificity(info: AbundanceExpressionInfo) -> pd.DataFrame:
    """
    Group-level pseudobulk z-scored across groups per cell type and gene.

    Returns:
        Long DataFrame with celltype, group, gene, pb_group_z.
    """
    frames = []
    for celltype in info.pb_group.columns.get_level_values(0).unique():
        z = row_zscore(info.pb_group[celltype])
        frames.append(pd.DataFrame({
            "celltype": celltype,
            "group": np.tile(z.columns.to_numpy(), len(z)),
            "gene": np.repeat(z.index.to_numpy(), z.shape[1]),
            "pb_group_z": z.to_numpy().ravel(),
        }))
    if not frames:
        return pd.DataFrame(columns=["celltype", "group", "gene", "pb_group_z"])
    return pd.concat(frames, ignore_index=True).dropna(subset=["pb_group_z"])


def coexpression_fraction(
    sample_level: pd.DataFrame,
    sample_info: pd.DataFrame,
    fraction_cutoff: float,
) -> pd.DataFrame:
    """
    Fraction of each group's samples where ligand and receptor are both expressed.

    A sample counts when both cell types pass the minimum-cell filter and
    both genes are detected in at least ``fraction_cutoff`` of cells.

    Returns:
        DataFrame with group, KEY_COLUMNS, fraction_expressing_ligand_receptor.
    """
    columns = ["group"] + KEY_COLUMNS + ["fraction_expressing_ligand_receptor"]
    if sample_level.empty:
        return pd.DataFrame(columns=columns)

    ok = (
        (sample_level["fraction_ligand"] >= fraction_cutoff)
        & (sample_level["fraction_receptor"] >= fraction_cutoff)
        & (sample_level["keep_sender"] == 1)
        & (sample_level["keep_receiver"] == 1)
    )
    counted = (
        sample_level.assign(coexpressed=ok.astype(float))
        .groupby(["group"] + KEY_COLUMNS, sort=False)["coexpressed"].sum()
        .reset_index()
    )
    n_samples = sample_info.groupby("group")["sample"].nunique()
    counted["fraction_expressing_ligand_receptor"] = (
        counted["coexpressed"] / counted["group"].map(n_samples)
    )
    return counted[columns]


def add_scaled_criteria(records: pd.DataFrame, use_adjusted_pval: bool = False) -> pd.DataFrame:
    """
    Add scaled_<criterion> columns to raw prioritization records.

    DE criteria average the rescaled fold change and the rescaled signed
    -log10 p-value of the gene in its cell type.

    Args:
        records: Raw records (see PrioritizationEngine.build_records).
        use_adjusted_pval: Use p_adj instead of p_val.

    Returns:
        Copy of records with the rescaled columns.
    """
    out = records.copy()
    pkind = "p_adj" if use_adjusted_pval else "p_val"

    for side, celltype in (("ligand", "sender"), ("receptor", "receiver")):
        by = SCALING_GROUPS[f"de_{side}"]
        out[f"signed_log_p_{side}"] = signed_log_pval(out[f"{pkind}_{side}"], out[f"lfc_{side}"])
        out[f"scaled_lfc_{side}"] = grouped_ecdf(out, f"lfc_{side}", by)
        out[f"scaled_p_val_{side}"] = grouped_ecdf(out, f"signed_log_p_{side}", by)
        out[f"scaled_de_{side}"] = (out[f"scaled_lfc_{side}"] + out[f"scaled_p_val_{side}"]) / 2

    for criterion, column in RAW_COLUMNS.items():
        out[f"scaled_{criterion}"] = grouped_ecdf(out, column, SCALING_GROUPS[criterion])

    return out
