"""
Pseudobulk aggregation.

Aggregates single-cell counts by cell type and sample combinations, creating
a "pseudo-bulk" expression profile for each combination, then summarizes the
profiles per group and computes relative cell type abundance.
"""

from __future__ import annotations

import logging
from typing import Optional

import numpy as np
import pandas as pd
from scipy import sparse as sp

from multiniche_pipeline.aggregation.base import (
    AbundanceExpressionInfo,
    log_transform,
    normalize_expression,
)
from multiniche_pipeline.core.config import AbundanceConfig, ColumnSchema
from multiniche_pipeline.ingest.base import CellData

logger = logging.getLogger(__name__)


class AbundanceAggregator:
    """
    Aggregates expression by cell type x sample combinations.

    Each biological sample contributes one data point per cell type. Pairs
    with fewer than ``min_cells`` cells stay in the abundance table with
    ``keep = 0`` but are excluded from group summaries and from DE.

    Example:
        >>> aggregator = AbundanceAggregator(schema, AbundanceConfig(min_cells=10))
        >>> info = aggregator.aggregate(cells)
        >>> info.abundance.head()
    """

    def __init__(
        self,
        schema: Optional[ColumnSchema] = None,
        config: Optional[AbundanceConfig] = None,
    ):
        """
        Initialize pseudobulk aggregator.

        Args:
            schema: Metadata column names.
            config: Aggregation configuration.
        """
        self.schema = schema or ColumnSchema()
        self.config = config or AbundanceConfig()

    def aggregate(self, cells: CellData) -> AbundanceExpressionInfo:
        """
        Aggregate by cell type x sample.

        Args:
            cells: Cell-level counts with sample/group/celltype annotations.

        Returns:
            Pseudobulk, group and abundance tables.
        """
        schema = self.schema
        schema.validate(cells.obs)

        obs = cells.obs[schema.required].astype(str).reset_index(drop=True)
        obs.columns = ["sample", "group", "celltype"]

        celltypes_oi = self._celltypes_of_interest(obs["celltype"].unique())
        in_scope = obs["celltype"].isin(celltypes_oi).to_numpy()
        obs_scope = obs.loc[in_scope].reset_index(drop=True)
        X = cells.to_csr()[np.flatnonzero(in_scope)]

        sample_info = self._sample_info(cells.obs)

        # Membership matrix: one row per (celltype, sample) pair present
        grouped = obs_scope.groupby(["celltype", "sample"], sort=True)
        pair_codes = grouped.ngroup().to_numpy()
        columns = grouped.size().index.set_names(["celltype", "sample"])
        n_pairs = len(columns)
        membership = sp.csr_matrix(
            (np.ones(len(pair_codes)), (pair_codes, np.arange(len(pair_codes)))),
            shape=(n_pairs, X.shape[0]),
        )

        n_cells = np.asarray(membership.sum(axis=1)).ravel()
        sums = np.asarray((membership @ X).todense()).T
        expressing = X.copy()
        expressing.data = (expressing.data > 0).astype(np.float64)
        nonzero = np.asarray((membership @ expressing).todense()).T

        genes = pd.Index(cells.var_names, name="gene")

        counts = pd.DataFrame(sums, index=genes, columns=columns)
        safe_n = np.where(n_cells == 0, 1, n_cells)
        avg_sample = pd.DataFrame(sums / safe_n, index=genes, columns=columns)
        frq_sample = pd.DataFrame(nonzero / safe_n, index=genes, columns=columns)
        pb_sample = log_transform(normalize_expression(counts))

        abundance = pd.DataFrame({
            "celltype": columns.get_level_values("celltype"),
            "sample": columns.get_level_values("sample"),
            "n_cells": n_cells.astype(int),
        })
        abundance["group"] = abundance["sample"].map(sample_info.set_index("sample")["group"])
        abundance["keep"] = (abundance["n_cells"] >= self.config.min_cells).astype(int)
        abundance = abundance[["sample", "group", "celltype", "n_cells", "keep"]]

        kept_columns = pd.MultiIndex.from_frame(
            abundance.loc[abundance["keep"] == 1, ["celltype", "sample"]]
        )
        group_of = sample_info.set_index("sample")["group"]

        avg_group = self._group_mean(avg_sample, kept_columns, group_of)
        frq_group = self._group_mean(frq_sample, kept_columns, group_of)
        pb_group = self._group_mean(pb_sample, kept_columns, group_of)

        expressed = self._expression_calls(frq_sample, kept_columns, group_of)
        rel_abundance = self.relative_abundance(abundance, sample_info["group"].unique())

        n_dropped = int((abundance["keep"] == 0).sum())
        if n_dropped:
            logger.warning(
                "%d celltype/sample pairs have fewer than %d cells (keep = 0)",
                n_dropped, self.config.min_cells,
            )
        logger.info(
            "Aggregated %d cells into %d pseudobulk pairs (%d kept) over %d genes",
            X.shape[0], n_pairs, n_pairs - n_dropped, len(genes),
        )

        return AbundanceExpressionInfo(
            abundance=abundance,
            sample_info=sample_info,
            counts=counts,
            avg_sample=avg_sample,
            frq_sample=frq_sample,
            pb_sample=pb_sample,
            avg_group=avg_group,
            frq_group=frq_group,
            pb_group=pb_group,
            rel_abundance=rel_abundance,
            expressed=expressed,
            config=self.config,
            stats={
                "n_pairs": n_pairs,
                "n_pairs_kept": n_pairs - n_dropped,
                "dropped_pairs": abundance.loc[
                    abundance["keep"] == 0, ["celltype", "sample"]
                ].to_records(index=False).tolist(),
            },
        )

    def _celltypes_of_interest(self, present) -> list[str]:
        present = set(present)
        senders = self.config.senders_oi
        receivers = self.config.receivers_oi
        if senders is None or receivers is None:
            return sorted(present)

        wanted = set(senders) | set(receivers)
        absent = sorted(wanted - present)
        if absent:
            logger.warning("Cell types of interest not present in data: %s", absent)
        return sorted(wanted & present)

    def _sample_info(self, obs: pd.DataFrame) -> pd.DataFrame:
        schema = self.schema
        extra = list(schema.batches) + list(schema.covariates)
        cols = [schema.sample_col, schema.group_col] + extra
        info = obs[cols].drop_duplicates(subset=[schema.sample_col]).copy()
        info = info.rename(columns={schema.sample_col: "sample", schema.group_col: "group"})
        info["sample"] = info["sample"].astype(str)
        info["group"] = info["group"].astype(str)
        for col in schema.batches:
            info[col] = info[col].astype(str)
        return info.sort_values("sample").reset_index(drop=True)

    @staticmethod
    def _group_mean(
        table: pd.DataFrame,
        kept_columns: pd.MultiIndex,
        group_of: pd.Series,
    ) -> pd.DataFrame:
        """Unweighted mean over each group's kept samples."""
        kept = table.loc[:, kept_columns]
        celltypes = kept_columns.get_level_values("celltype").to_numpy()
        groups = group_of.reindex(kept_columns.get_level_values("sample")).to_numpy()
        if kept.shape[1] == 0:
            empty = pd.MultiIndex.from_arrays([[], []], names=["celltype", "group"])
            return pd.DataFrame(index=table.index, columns=empty, dtype=float)
        means = kept.T.groupby([celltypes, groups]).mean().T
        means.columns = means.columns.set_names(["celltype", "group"])
        return means

    def _expression_calls(
        self,
        frq_sample: pd.DataFrame,
        kept_columns: pd.MultiIndex,
        group_of: pd.Series,
    ) -> pd.DataFrame:
        """A gene is expressed in (celltype, group) when enough kept samples express it."""
        passes = (frq_sample.loc[:, kept_columns] >= self.config.fraction_cutoff).astype(float)
        prop = self._group_mean(passes, kept_columns, group_of)
        return prop.fillna(0.0) >= self.config.min_sample_prop

    def relative_abundance(self, abundance: pd.DataFrame, groups) -> pd.DataFrame:
        """
        Relative abundance of each cell type per group.

        The share of a cell type's cells falling in each group is min-max
        scaled across groups; cell types absent from a group and the
        scaled minimum both get the abundance floor.

        Args:
            abundance: Abundance table from aggregate().
            groups: All groups in the data.

        Returns:
            DataFrame with group, celltype, n_cells, rel_abundance,
            rel_abundance_scaled.
        """
        floor = self.config.abundance_floor
        per_group = (
            abundance.groupby(["celltype", "group"], observed=True)["n_cells"].sum()
            .unstack("group")
            .reindex(columns=sorted(groups))
            .fillna(0)
        )
        totals = per_group.sum(axis=1).replace(0, np.nan)
        share = per_group.div(totals, axis=0)

        lo = share.min(axis=1)
        hi = share.max(axis=1)
        span = (hi - lo).replace(0, np.nan)
        scaled = share.sub(lo, axis=0).div(span, axis=0)
        # identical share across groups: no group is depleted
        scaled.loc[span.isna()] = 1.0
        scaled = scaled.where(per_group > 0, 0.0).clip(lower=floor)

        out = pd.DataFrame({
            "celltype": np.repeat(per_group.index.to_numpy(), per_group.shape[1]),
            "group": np.tile(per_group.columns.to_numpy(), per_group.shape[0]),
            "n_cells": per_group.to_numpy().ravel().astype(int),
            "rel_abundance": share.fillna(0.0).to_numpy().ravel(),
            "rel_abundance_scaled": scaled.to_numpy().ravel(),
        })
        return out[["group", "celltype", "n_cells", "rel_abundance", "rel_abundance_scaled"]]


def aggregate_pseudobulk(
    cells: CellData,
    sample_col: str = "sample_id",
    group_col: str = "group_id",
    celltype_col: str = "celltype_id",
    min_cells: int = 10,
) -> AbundanceExpressionInfo:
    """
    Convenience function for pseudobulk aggregation.

    Args:
        cells: Cell-level counts and annotations.
        sample_col: Column for sample.
        group_col: Column for group.
        celltype_col: Column for cell type.
        min_cells: Minimum cells per pair.

    Returns:
        AbundanceExpressionInfo.
    """
    schema = ColumnSchema(sample_col=sample_col, group_col=group_col, celltype_col=celltype_col)
    aggregator = AbundanceAggregator(schema, AbundanceConfig(min_cells=min_cells))
    return aggregator.aggregate(cells)
