"""
Ligand-receptor to target correlation.

For prioritized interactions, correlates the per-sample ligand-receptor
pseudobulk product with the pseudobulk expression of the ligand's top prior
targets that are DE in the receiver.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Optional

import numpy as np
import pandas as pd

from multiniche_pipeline.aggregation.base import AbundanceExpressionInfo
from multiniche_pipeline.correlation.pearson import MIN_SAMPLES, PearsonCorrelator
from multiniche_pipeline.correlation.spearman import SpearmanCorrelator
from multiniche_pipeline.ingest.priors import PriorNetworks
from multiniche_pipeline.interaction.keys import KEY_COLUMNS, add_interaction_id
from multiniche_pipeline.interaction.linker import SenderReceiverInfo, lr_pb_prod_matrix

logger = logging.getLogger(__name__)

CORRELATION_COLUMNS = [
    "id", "contrast", "ligand", "receptor", "sender", "receiver", "target",
    "direction_regulation", "ligand_target_weight", "target_rank",
    "pearson", "pearson_pval", "spearman", "spearman_pval", "n_samples",
]


@dataclass
class CorrelationResult:
    """Ligand-receptor to target correlations."""

    table: pd.DataFrame
    """One row per (interaction, contrast, target)."""

    diagnostics: dict[str, Any] = field(default_factory=dict)


class CorrelationInference:
    """
    Correlates ligand-receptor products with downstream target expression.

    Only samples where both sender and receiver pass the minimum-cell filter
    and both values are present are used; fewer than ``min_samples`` such
    samples gives NA correlations.

    Example:
        >>> inference = CorrelationInference(priors, top_n_target=250)
        >>> result = inference.correlate(group_table, sr_info, info, activity.de_genes)
        >>> CorrelationInference.filter(result.table, cor_cutoff=0.33)
    """

    def __init__(
        self,
        priors: PriorNetworks,
        top_n_target: int = 250,
        min_samples: int = MIN_SAMPLES,
    ):
        """
        Initialize correlation inference.

        Args:
            priors: Prior networks.
            top_n_target: Prior targets considered per ligand.
            min_samples: Minimum paired samples for a defined correlation.
        """
        self.priors = priors
        self.top_n_target = top_n_target
        self.pearson = PearsonCorrelator(min_samples=min_samples)
        self.spearman = SpearmanCorrelator(min_samples=min_samples)

    def candidate_pairs(
        self,
        group_table: pd.DataFrame,
        de_genes: pd.DataFrame,
        top_n: Optional[int] = None,
    ) -> pd.DataFrame:
        """
        Interaction x target pairs to correlate.

        Args:
            group_table: Group-level prioritization table.
            de_genes: DE gene sets (gene, receiver, contrast, direction_regulation).
            top_n: Only the best ``top_n`` scored interactions per contrast.

        Returns:
            DataFrame with contrast, KEY_COLUMNS, target, direction_regulation,
            ligand_target_weight, target_rank.
        """
        scored = group_table.loc[group_table["prioritization_score"].notna()]
        if top_n is not None:
            scored = scored.loc[scored["prioritization_rank"] <= top_n]
        interactions = scored[["contrast"] + KEY_COLUMNS].drop_duplicates()

        ligands = list(dict.fromkeys(interactions["ligand"]))
        targets = self.priors.top_target_table(ligands, self.top_n_target)
        de = de_genes[["gene", "receiver", "contrast", "direction_regulation"]].rename(
            columns={"gene": "target"}
        )
        pairs = (
            interactions
            .merge(targets, on="ligand")
            .merge(de, on=["target", "receiver", "contrast"])
        )
        return pairs.reset_index(drop=True)

    def correlate(
        self,
        group_table: pd.DataFrame,
        sr: SenderReceiverInfo,
        info: AbundanceExpressionInfo,
        de_genes: pd.DataFrame,
        top_n: Optional[int] = None,
    ) -> CorrelationResult:
        """
        Correlate LR products with target expression across samples.

        Args:
            group_table: Group-level prioritization table.
            sr: Sender-receiver records (per-sample LR products and keep flags).
            info: Aggregated expression (per-sample target pseudobulk).
            de_genes: DE gene sets.
            top_n: Only the best ``top_n`` interactions per contrast.

        Returns:
            CorrelationResult.
        """
        pairs = self.candidate_pairs(group_table, de_genes, top_n)
        if pairs.empty:
            logger.info("No interaction has a DE prior target to correlate")
            return CorrelationResult(
                table=pd.DataFrame(columns=CORRELATION_COLUMNS),
                diagnostics={"n_pairs": 0, "undefined_correlations": 0},
            )

        samples = list(info.sample_info["sample"])
        products = lr_pb_prod_matrix(sr.sample_level)
        if products.empty:
            X = np.full((len(pairs), len(samples)), np.nan)
        else:
            X = products.reindex(
                index=pd.MultiIndex.from_frame(pairs[KEY_COLUMNS]), columns=samples
            ).to_numpy(dtype=float)
        Y = self._target_matrix(pairs, info, samples)

        pearson, pearson_p, n = self.pearson.correlate(X, Y)
        spearman, spearman_p, _ = self.spearman.correlate(X, Y)

        table = pairs.assign(
            pearson=pearson, pearson_pval=pearson_p,
            spearman=spearman, spearman_pval=spearman_p,
            n_samples=n.astype(int),
        )
        table = add_interaction_id(table)[CORRELATION_COLUMNS]

        n_undefined = int(np.isnan(pearson).sum())
        if n_undefined:
            logger.warning(
                "%d of %d LR-target correlations undefined (< %d paired samples or constant values)",
                n_undefined, len(table), self.pearson.min_samples,
            )
        return CorrelationResult(
            table=table,
            diagnostics={"n_pairs": len(table), "undefined_correlations": n_undefined},
        )

    @staticmethod
    def _target_matrix(
        pairs: pd.DataFrame,
        info: AbundanceExpressionInfo,
        samples: list[str],
    ) -> np.ndarray:
        """Target pseudobulk in the receiver per pair, kept samples only."""
        kept = info.kept()
        Y = np.full((len(pairs), len(samples)), np.nan)
        for receiver, idx in pairs.groupby("receiver", sort=False).groups.items():
            if receiver not in info.pb_sample.columns.get_level_values(0):
                continue
            receiver_samples = set(kept.loc[kept["celltype"] == receiver, "sample"])
            pb = info.pb_sample[receiver].reindex(columns=samples)
            pb.loc[:, [s not in receiver_samples for s in samples]] = np.nan
            rows = pairs.loc[idx, "target"]
            Y[pairs.index.get_indexer(idx)] = pb.reindex(rows).to_numpy(dtype=float)
        return Y

    @staticmethod
    def filter(
        table: pd.DataFrame,
        cor_cutoff: float = 0.33,
        max_rank: int = 250,
        method: str = "pearson",
    ) -> pd.DataFrame:
        """
        Keep correlations that are strong, within the top prior targets and
        agree in sign with the target's regulation (up: positive, down: negative).

        Args:
            table: CorrelationResult.table.
            cor_cutoff: Minimum absolute correlation.
            max_rank: Maximum prior target rank.
            method: "pearson" or "spearman".

        Returns:
            Filtered table.
        """
        if method not in ("pearson", "spearman"):
            raise ValueError(f"Unknown method: {method}")
        cor = table[method]
        sign_ok = np.where(table["direction_regulation"] == "up", cor > 0, cor < 0)
        mask = (cor.abs() >= cor_cutoff) & (table["target_rank"] <= max_rank) & sign_ok
        return table.loc[mask.fillna(False)].reset_index(drop=True)
