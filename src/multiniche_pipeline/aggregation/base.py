"""
Base containers and helpers for pseudobulk aggregation.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Optional, Union

import numpy as np
import pandas as pd

from multiniche_pipeline.core.config import AbundanceConfig


def normalize_expression(
    expr: Union[np.ndarray, pd.DataFrame],
    target_sum: float = 1e6,
) -> Union[np.ndarray, pd.DataFrame]:
    """
    CPM normalize expression.

    Args:
        expr: Expression matrix (genes x samples).
        target_sum: Target sum per sample.

    Returns:
        Normalized expression. Empty libraries stay all-zero.
    """
    if isinstance(expr, pd.DataFrame):
        col_sums = expr.sum(axis=0).replace(0, 1)
        return expr.div(col_sums, axis=1) * target_sum
    else:
        col_sums = expr.sum(axis=0, keepdims=True)
        col_sums = np.where(col_sums == 0, 1, col_sums)
        return expr / col_sums * target_sum


def log_transform(
    expr: Union[np.ndarray, pd.DataFrame],
    pseudocount: float = 1.0,
) -> Union[np.ndarray, pd.DataFrame]:
    """
    Log2 transform expression.

    Args:
        expr: Expression matrix.
        pseudocount: Pseudocount to add before log.

    Returns:
        Log-transformed expression.
    """
    return np.log2(expr + pseudocount)


@dataclass
class AbundanceExpressionInfo:
    """
    Result of pseudobulk aggregation.

    Expression tables are genes x (celltype, sample) or genes x
    (celltype, group) DataFrames with two-level column indexes.
    """

    abundance: pd.DataFrame
    """One row per (celltype, sample) present: sample, group, celltype, n_cells, keep."""

    sample_info: pd.DataFrame
    """One row per sample: sample, group plus batch/covariate columns."""

    counts: pd.DataFrame
    """Summed raw counts, genes x (celltype, sample)."""

    avg_sample: pd.DataFrame
    """Mean count per cell, genes x (celltype, sample)."""

    frq_sample: pd.DataFrame
    """Fraction of cells with nonzero count, genes x (celltype, sample)."""

    pb_sample: pd.DataFrame
    """log2(CPM + 1) of summed counts, genes x (celltype, sample)."""

    avg_group: pd.DataFrame
    """Unweighted mean of kept samples' avg_sample, genes x (celltype, group)."""

    frq_group: pd.DataFrame
    """Unweighted mean of kept samples' frq_sample, genes x (celltype, group)."""

    pb_group: pd.DataFrame
    """Unweighted mean of kept samples' pb_sample, genes x (celltype, group)."""

    rel_abundance: pd.DataFrame
    """One row per (group, celltype): rel_abundance, rel_abundance_scaled."""

    expressed: pd.DataFrame
    """Boolean genes x (celltype, group) expression calls."""

    config: AbundanceConfig = field(default_factory=AbundanceConfig)
    """Configuration used."""

    stats: dict[str, Any] = field(default_factory=dict)
    """Diagnostics (kept / dropped pairs)."""

    @property
    def gene_names(self) -> list[str]:
        return list(self.pb_sample.index)

    @property
    def celltypes(self) -> list[str]:
        return sorted(self.abundance["celltype"].unique())

    @property
    def groups(self) -> list[str]:
        return sorted(self.sample_info["group"].unique())

    def kept(self) -> pd.DataFrame:
        """Pairs passing the minimum-cell threshold."""
        return self.abundance.loc[self.abundance["keep"] == 1].reset_index(drop=True)

    def counts_for(self, celltype: str, kept_only: bool = True) -> pd.DataFrame:
        """Summed counts of one cell type, genes x samples."""
        if celltype not in self.counts.columns.get_level_values(0):
            return pd.DataFrame(index=self.counts.index)
        sub = self.counts[celltype]
        if kept_only:
            keep = self.kept()
            samples = keep.loc[keep["celltype"] == celltype, "sample"]
            sub = sub[[s for s in sub.columns if s in set(samples)]]
        return sub

    def expressed_genes(self, celltype: str, group: Optional[str] = None) -> list[str]:
        """Genes expressed by a cell type in a group (or in any group)."""
        if celltype not in self.expressed.columns.get_level_values(0):
            return []
        calls = self.expressed[celltype]
        if group is not None:
            if group not in calls.columns:
                return []
            mask = calls[group]
        else:
            mask = calls.any(axis=1)
        return list(calls.index[mask])

    def to_long(self, level: str = "sample", genes: Optional[list[str]] = None) -> pd.DataFrame:
        """
        Long-form expression table.

        Args:
            level: "sample" or "group".
            genes: Restrict to these genes.

        Returns:
            DataFrame with celltype, sample|group, gene, average, fraction, pb.
        """
        if level == "sample":
            tables = {"average_sample": self.avg_sample,
                      "fraction_sample": self.frq_sample,
                      "pb_sample": self.pb_sample}
            unit = "sample"
        elif level == "group":
            tables = {"average_group": self.avg_group,
                      "fraction_group": self.frq_group,
                      "pb_group": self.pb_group}
            unit = "group"
        else:
            raise ValueError(f"Unknown level: {level}")

        first = next(iter(tables.values()))
        if genes is not None:
            first = first.reindex([g for g in genes if g in first.index])
        cols = first.columns
        n_genes = len(first)

        out = pd.DataFrame({
            "celltype": np.repeat(cols.get_level_values(0).to_numpy(), n_genes),
            unit: np.repeat(cols.get_level_values(1).to_numpy(), n_genes),
            "gene": np.tile(first.index.to_numpy(), len(cols)),
        })
        for name, table in tables.items():
            table = table.reindex(index=first.index, columns=cols)
            out[name] = table.to_numpy().T.ravel()
        return out
